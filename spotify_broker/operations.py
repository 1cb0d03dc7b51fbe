"""Spotify operations built on the request dispatcher, formatted as text."""
from __future__ import annotations

import functools
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional, Protocol, Sequence

from .errors import BrokerError


logger = logging.getLogger(__name__)

SEARCH_TYPES = ("album", "artist", "playlist", "track", "show", "episode")
PLAYABLE_TYPES = ("track", "album", "artist", "playlist")
FOLLOW_TYPES = ("artist", "user")
MAX_IDS = 50
MAX_PLAYLIST_ITEMS = 100


class Requester(Protocol):
    def request(
        self,
        method: str,
        path: str,
        query: Optional[Mapping[str, Any]] = None,
        body: Any = None,
    ) -> Any: ...


@dataclass(slots=True)
class OperationResult:
    text: str
    is_error: bool = False


def _error(text: str) -> OperationResult:
    return OperationResult(text=text, is_error=True)


def _reports_errors(context: str) -> Callable[[Callable[..., OperationResult]], Callable[..., OperationResult]]:
    """Turn broker errors into error results prefixed with ``context``.

    ``context`` is formatted with the operation's bound arguments.
    """

    def decorator(func: Callable[..., OperationResult]) -> Callable[..., OperationResult]:
        signature = inspect.signature(func)

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> OperationResult:
            try:
                return func(*args, **kwargs)
            except BrokerError as exc:
                bound = signature.bind(*args, **kwargs)
                bound.apply_defaults()
                prefix = context.format(**bound.arguments)
                logger.error("%s: %s", prefix, exc)
                return _error(f"{prefix}: {exc}")

        return wrapper

    return decorator


def format_duration(ms: Optional[int]) -> str:
    if ms is None:
        return "Unknown Duration"
    minutes, remainder = divmod(int(ms), 60000)
    seconds = round(remainder / 1000)
    if seconds == 60:
        return f"{minutes + 1}:00"
    return f"{minutes}:{seconds:02d}"


def _plural(count: int, noun: str) -> str:
    return f"{count} {noun}{'' if count == 1 else 's'}"


def _artists(item: Mapping[str, Any]) -> str:
    names = [artist.get("name") for artist in item.get("artists") or [] if artist.get("name")]
    return ", ".join(names) or "Unknown Artist(s)"


def _is_track(item: Any) -> bool:
    return isinstance(item, dict) and item.get("type") == "track" and "artists" in item


def _track_line(index: int, track: Mapping[str, Any]) -> str:
    return (
        f'{index}. "{track.get("name") or "Unknown Track"}" by {_artists(track)} '
        f'({format_duration(track.get("duration_ms"))}) - ID: {track.get("id")}'
    )


def _item_lines(items: Sequence[Mapping[str, Any]], *, container: str) -> str:
    lines = []
    for index, entry in enumerate(items, start=1):
        track = entry.get("track")
        if not track:
            lines.append(f"{index}. [Removed track or item could not be retrieved]")
        elif _is_track(track):
            lines.append(_track_line(index, track))
        else:
            lines.append(f"{index}. Unknown item type in {container}")
    return "\n".join(lines)


def _check_limit(limit: int, maximum: int = 50) -> Optional[OperationResult]:
    if not 1 <= limit <= maximum:
        return _error(f"Error: limit must be between 1 and {maximum}, got {limit}.")
    return None


def _check_ids(ids: Sequence[str], *, noun: str = "ID", maximum: int = MAX_IDS) -> Optional[OperationResult]:
    if not ids:
        return _error(f"Error: No {noun}s provided.")
    if len(ids) > maximum:
        return _error(f"Error: Cannot send more than {maximum} {noun}s at once. You provided {len(ids)}.")
    return None


def _resolve_uri(uri: Optional[str], type_: Optional[str], id_: Optional[str]) -> Optional[str]:
    if uri:
        return uri
    if type_ and id_:
        return f"spotify:{type_}:{id_}"
    return None


# ---------------------------------------------------------------------------
# Read operations
# ---------------------------------------------------------------------------

@_reports_errors("Error searching for {type_}s")
def search(api: Requester, query: str, type_: str, limit: int = 10) -> OperationResult:
    if type_ not in SEARCH_TYPES:
        return _error(f"Error: type must be one of {', '.join(SEARCH_TYPES)}.")
    if (invalid := _check_limit(limit)) is not None:
        return invalid

    results = api.request("GET", "/v1/search", {"q": query, "type": type_, "limit": limit}) or {}
    items = (results.get(f"{type_}s") or {}).get("items") or []
    lines = []
    for index, item in enumerate(items, start=1):
        if not item:
            continue
        if type_ == "track":
            lines.append(_track_line(index, item))
        elif type_ == "album":
            lines.append(f'{index}. "{item.get("name") or "Unknown Album"}" by {_artists(item)} - ID: {item.get("id")}')
        elif type_ == "artist":
            lines.append(f'{index}. {item.get("name") or "Unknown Artist"} - ID: {item.get("id")}')
        elif type_ == "playlist":
            total = (item.get("tracks") or {}).get("total")
            tracks = f"{total} tracks" if total else "Unknown tracks"
            owner = (item.get("owner") or {}).get("display_name") or "Unknown Owner"
            lines.append(f'{index}. "{item.get("name") or "Unknown Playlist"}" ({tracks}) by {owner} - ID: {item.get("id")}')
        elif type_ == "show":
            lines.append(
                f'{index}. "{item.get("name") or "Unknown Show"}" - '
                f'{item.get("description") or "No description"} - ID: {item.get("id")}'
            )
        else:
            lines.append(
                f'{index}. "{item.get("name") or "Unknown Episode"}" ({format_duration(item.get("duration_ms"))}) - '
                f'{item.get("description") or "No description"} - ID: {item.get("id")}'
            )

    if not lines:
        return OperationResult(f'No {type_} results found for "{query}".')
    header = f'# Search results for "{query}" (type: {type_}, limit: {limit})'
    return OperationResult(header + "\n\n" + "\n".join(lines))


@_reports_errors("Error getting current item")
def get_now_playing(api: Requester) -> OperationResult:
    current = api.request("GET", "/v1/me/player/currently-playing")
    if not current or not current.get("item"):
        return OperationResult("Nothing is currently playing on Spotify.")

    item = current["item"]
    progress = format_duration(current.get("progress_ms") or 0)
    text = f"# Currently {'Playing' if current.get('is_playing') else 'Paused'}\n\n"
    if _is_track(item):
        album = (item.get("album") or {}).get("name") or "Unknown Album"
        text += (
            f'**Track**: "{item.get("name")}"\n'
            f"**Artist**: {_artists(item)}\n"
            f"**Album**: {album}\n"
            f"**Progress**: {progress} / {format_duration(item.get('duration_ms'))}\n"
            f"**ID**: {item.get('id')}"
        )
    else:
        text += f"Item Type: {item.get('type') or 'Unknown'}\n"
        if item.get("name"):
            text += f'Name: "{item["name"]}"\n'
        if item.get("id"):
            text += f"ID: {item['id']}\n"
        text += f"Progress: {progress} / {format_duration(item.get('duration_ms'))}"
        text += "\nNote: Currently playing item is not a standard track. It might be a podcast episode, ad, etc."
    return OperationResult(text)


@_reports_errors("Error getting user playlists")
def get_my_playlists(api: Requester, limit: int = 20) -> OperationResult:
    if (invalid := _check_limit(limit)) is not None:
        return invalid
    playlists = api.request("GET", "/v1/me/playlists", {"limit": limit}) or {}
    items = playlists.get("items") or []
    if not items:
        return OperationResult("You don't have any playlists on Spotify or an error occurred retrieving them.")

    lines = []
    for index, playlist in enumerate(items, start=1):
        total = (playlist.get("tracks") or {}).get("total") or 0
        owner = (playlist.get("owner") or {}).get("display_name") or "Unknown Owner"
        lines.append(
            f'{index}. "{playlist.get("name") or "Unknown Playlist"}" ({_plural(total, "track")}) '
            f"by {owner} - ID: {playlist.get('id')}"
        )
    return OperationResult(f"# Your Spotify Playlists (limit: {limit})\n\n" + "\n".join(lines))


@_reports_errors("Error getting playlist tracks")
def get_playlist_tracks(api: Requester, playlist_id: str, limit: int = 50) -> OperationResult:
    if (invalid := _check_limit(limit)) is not None:
        return invalid
    page = api.request("GET", f"/v1/playlists/{playlist_id}/tracks", {"limit": limit}) or {}
    items = page.get("items") or []
    if not items:
        return OperationResult(
            f"Playlist (ID: {playlist_id}) doesn't have any tracks or an error occurred retrieving them."
        )
    body = _item_lines(items, container="playlist")
    return OperationResult(f"# Tracks in Playlist (ID: {playlist_id}, limit: {limit})\n\n{body}")


@_reports_errors("Error getting recently played tracks")
def get_recently_played(api: Requester, limit: int = 20) -> OperationResult:
    if (invalid := _check_limit(limit)) is not None:
        return invalid
    history = api.request("GET", "/v1/me/player/recently-played", {"limit": limit}) or {}
    items = history.get("items") or []
    if not items:
        return OperationResult(
            "You don't have any recently played tracks on Spotify or an error occurred retrieving them."
        )
    body = _item_lines(items, container="history")
    return OperationResult(f"# Recently Played Tracks (limit: {limit})\n\n{body}")


@_reports_errors("Error following playlist (ID: {playlist_id})")
def follow_playlist(api: Requester, playlist_id: str, public: bool = True) -> OperationResult:
    api.request("PUT", f"/v1/playlists/{playlist_id}/followers", None, {"public": public})
    return OperationResult(f"Successfully followed playlist (ID: {playlist_id}).")


@_reports_errors("Error unfollowing playlist (ID: {playlist_id})")
def unfollow_playlist(api: Requester, playlist_id: str) -> OperationResult:
    api.request("DELETE", f"/v1/playlists/{playlist_id}/followers")
    return OperationResult(f"Successfully unfollowed playlist (ID: {playlist_id}).")


def _check_follow_type(type_: str) -> Optional[OperationResult]:
    if type_ not in FOLLOW_TYPES:
        return _error("Error: type must be 'artist' or 'user'.")
    return None


@_reports_errors("Error following {type_}s")
def follow_artists_or_users(api: Requester, type_: str, ids: Sequence[str]) -> OperationResult:
    if (invalid := _check_follow_type(type_) or _check_ids(ids)) is not None:
        return invalid
    api.request("PUT", "/v1/me/following", {"type": type_}, {"ids": list(ids)})
    return OperationResult(f"Successfully followed {_plural(len(ids), type_)}.")


@_reports_errors("Error unfollowing {type_}s")
def unfollow_artists_or_users(api: Requester, type_: str, ids: Sequence[str]) -> OperationResult:
    if (invalid := _check_follow_type(type_) or _check_ids(ids)) is not None:
        return invalid
    api.request("DELETE", "/v1/me/following", {"type": type_}, {"ids": list(ids)})
    return OperationResult(f"Successfully unfollowed {_plural(len(ids), type_)}.")


@_reports_errors("Failed to save tracks")
def save_tracks(api: Requester, ids: Sequence[str]) -> OperationResult:
    if (invalid := _check_ids(ids, noun="track ID")) is not None:
        return invalid
    api.request("PUT", "/v1/me/tracks", None, {"ids": list(ids)})
    return OperationResult(f"Successfully saved {_plural(len(ids), 'track')} to your library.")


@_reports_errors("Error removing tracks")
def remove_saved_tracks(api: Requester, ids: Sequence[str]) -> OperationResult:
    if (invalid := _check_ids(ids, noun="track ID")) is not None:
        return invalid
    api.request("DELETE", "/v1/me/tracks", None, {"ids": list(ids)})
    return OperationResult(f"Successfully removed {_plural(len(ids), 'track')} from your library.")


@_reports_errors("Error checking user follow status for {type_}s")
def check_follows_artists_or_users(api: Requester, type_: str, ids: Sequence[str]) -> OperationResult:
    if (invalid := _check_follow_type(type_) or _check_ids(ids)) is not None:
        return invalid
    results = api.request("GET", "/v1/me/following/contains", {"type": type_, "ids": list(ids)})
    if not isinstance(results, list):
        return _error(f"Error checking if user follows {type_}s.")
    lines = [f"{id_}: {'Following' if followed else 'Not Following'}" for id_, followed in zip(ids, results)]
    return OperationResult(f"# User Follow Status ({type_}s):\n\n" + "\n".join(lines))


@_reports_errors("Error checking playlist follow status (ID: {playlist_id})")
def check_follows_playlist(api: Requester, playlist_id: str) -> OperationResult:
    results = api.request("GET", f"/v1/playlists/{playlist_id}/followers/contains", {"ids": "me"})
    if not isinstance(results, list) or not results:
        return _error(f"Error checking if user follows playlist (ID: {playlist_id}).")
    status = "are following" if results[0] else "are not following"
    return OperationResult(f"You {status} playlist (ID: {playlist_id}).")


@_reports_errors("Error checking saved tracks")
def check_saved_tracks(api: Requester, ids: Sequence[str]) -> OperationResult:
    if (invalid := _check_ids(ids, noun="track ID")) is not None:
        return invalid
    results = api.request("GET", "/v1/me/tracks/contains", {"ids": list(ids)})
    if not isinstance(results, list):
        return _error("Error checking saved tracks.")
    lines = [f"{id_}: {'Saved' if saved else 'Not Saved'}" for id_, saved in zip(ids, results)]
    return OperationResult("# Saved Tracks Status:\n\n" + "\n".join(lines))


# ---------------------------------------------------------------------------
# Playback and playlist operations
# ---------------------------------------------------------------------------

@_reports_errors("Error playing music")
def play_music(
    api: Requester,
    uri: Optional[str] = None,
    type_: Optional[str] = None,
    id_: Optional[str] = None,
    device_id: Optional[str] = None,
) -> OperationResult:
    if type_ is not None and type_ not in PLAYABLE_TYPES:
        return _error(f"Error: type must be one of {', '.join(PLAYABLE_TYPES)}.")
    spotify_uri = _resolve_uri(uri, type_, id_)
    if not spotify_uri and device_id is None:
        return _error(
            "Error: Must provide a Spotify URI (spotify:...) or both type and id. "
            "If trying to resume, provide deviceId."
        )

    body: dict[str, Any] = {}
    if spotify_uri:
        if not type_ or type_ == "track":
            if not spotify_uri.startswith("spotify:track:"):
                return _error(
                    f"Error: Invalid Spotify Track URI format provided: {spotify_uri}. "
                    "Must start with 'spotify:track:'."
                )
            body["uris"] = [spotify_uri]
        else:
            if not spotify_uri.startswith(f"spotify:{type_}:"):
                return _error(
                    f"Error: Invalid Spotify URI format for type '{type_}': {spotify_uri}. "
                    f"Must start with 'spotify:{type_}:'."
                )
            body["context_uri"] = spotify_uri
    else:
        logger.info("play_music called without a URI; resuming on device %s", device_id or "active")

    api.request("PUT", "/v1/me/player/play", {"device_id": device_id or None}, body or None)

    if spotify_uri:
        suffix = f" on device {device_id}" if device_id else ""
        return OperationResult(f"Started playing {spotify_uri}{suffix}.")
    if device_id:
        return OperationResult(f"Attempted to resume playback on device {device_id}.")
    return OperationResult("Attempted to resume playback on the active device.")


def _device_suffix(device_id: Optional[str]) -> str:
    return f"device {device_id}" if device_id else "the active device"


@_reports_errors("Error pausing playback")
def pause_playback(api: Requester, device_id: Optional[str] = None) -> OperationResult:
    api.request("PUT", "/v1/me/player/pause", {"device_id": device_id})
    return OperationResult(f"Playback paused on {_device_suffix(device_id)}.")


@_reports_errors("Error skipping to next track")
def skip_to_next(api: Requester, device_id: Optional[str] = None) -> OperationResult:
    api.request("POST", "/v1/me/player/next", {"device_id": device_id})
    return OperationResult(f"Skipped to next track on {_device_suffix(device_id)}.")


@_reports_errors("Error skipping to previous track")
def skip_to_previous(api: Requester, device_id: Optional[str] = None) -> OperationResult:
    api.request("POST", "/v1/me/player/previous", {"device_id": device_id})
    return OperationResult(f"Skipped to previous track on {_device_suffix(device_id)}.")


@_reports_errors("Error resuming playback")
def resume_playback(api: Requester, device_id: Optional[str] = None) -> OperationResult:
    api.request("PUT", "/v1/me/player/play", {"device_id": device_id})
    return OperationResult(f"Playback resumed on {_device_suffix(device_id)}.")


@_reports_errors("Error adding item to queue")
def add_to_queue(
    api: Requester,
    uri: Optional[str] = None,
    type_: Optional[str] = None,
    id_: Optional[str] = None,
    device_id: Optional[str] = None,
) -> OperationResult:
    if not uri and type_ and type_ != "track":
        return _error(f"Error: Spotify API /queue endpoint only supports track URIs. You provided type: {type_}.")
    spotify_uri = _resolve_uri(uri, type_, id_)
    if not spotify_uri:
        return _error("Error: Must provide a Spotify URI (spotify:...) or both type and id (for type 'track').")
    if (not type_ or type_ == "track") and not spotify_uri.startswith("spotify:track:"):
        return _error(
            f"Error: Invalid Spotify Track URI format provided: {spotify_uri}. Must start with 'spotify:track:'."
        )

    api.request("POST", "/v1/me/player/queue", {"uri": spotify_uri, "device_id": device_id})
    return OperationResult(f"Added {spotify_uri} to the queue on {_device_suffix(device_id)}.")


@_reports_errors("Error creating playlist")
def create_playlist(
    api: Requester,
    name: str,
    description: Optional[str] = None,
    public: bool = False,
) -> OperationResult:
    profile = api.request("GET", "/v1/me")
    user_id = (profile or {}).get("id")
    if not user_id:
        return _error("Error: Could not retrieve current user ID.")

    body = {"name": name, "description": description, "public": public, "collaborative": False}
    playlist = api.request("POST", f"/v1/users/{user_id}/playlists", None, body)
    if not playlist or not playlist.get("id"):
        return _error("Error: Spotify API did not return a playlist ID after creation.")
    return OperationResult(f'Successfully created playlist "{name}" (ID: {playlist["id"]}).')


@_reports_errors("Error adding tracks to playlist (ID: {playlist_id})")
def add_tracks_to_playlist(
    api: Requester,
    playlist_id: str,
    track_ids: Sequence[str],
    position: Optional[int] = None,
) -> OperationResult:
    if (invalid := _check_ids(track_ids, noun="track ID", maximum=MAX_PLAYLIST_ITEMS)) is not None:
        return invalid
    if position is not None and position < 0:
        return _error("Error: position must not be negative.")
    uris = [f"spotify:track:{track_id}" for track_id in track_ids]
    api.request("POST", f"/v1/playlists/{playlist_id}/tracks", {"position": position}, {"uris": uris})
    return OperationResult(f"Successfully added {_plural(len(track_ids), 'track')} to playlist (ID: {playlist_id}).")


@_reports_errors("Error updating playlist items (ID: {playlist_id})")
def update_playlist_items(
    api: Requester,
    playlist_id: str,
    *,
    replace_uris: Optional[Sequence[str]] = None,
    range_start: Optional[int] = None,
    insert_before: Optional[int] = None,
    range_length: int = 1,
    snapshot_id: Optional[str] = None,
) -> OperationResult:
    reordering = range_start is not None or insert_before is not None
    if (replace_uris is None) == (not reordering):
        return _error("Error: Provide either replace_uris or a reorder range, but not both.")

    if replace_uris is not None:
        if len(replace_uris) > MAX_PLAYLIST_ITEMS:
            return _error(f"Error: Cannot replace with more than {MAX_PLAYLIST_ITEMS} items.")
        body: dict[str, Any] = {"uris": list(replace_uris)}
    else:
        if range_start is None or insert_before is None or not snapshot_id:
            return _error("Error: Reordering requires range_start, insert_before and snapshot_id.")
        body = {
            "range_start": range_start,
            "insert_before": insert_before,
            "range_length": range_length,
            "snapshot_id": snapshot_id,
        }

    result = api.request("PUT", f"/v1/playlists/{playlist_id}/tracks", None, body) or {}
    snapshot = result.get("snapshot_id")
    action = "replaced items in" if replace_uris is not None else "reordered items in"
    text = f"Successfully {action} playlist (ID: {playlist_id})."
    if snapshot:
        text += f" New snapshot ID: {snapshot}"
    return OperationResult(text)
