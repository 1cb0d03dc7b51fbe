"""Command-line entry point for the Spotify credential broker."""
from __future__ import annotations

import logging
import sys
from typing import List, NoReturn, Optional

import typer

from . import operations
from .broker import SpotifyBroker
from .errors import BrokerError
from .operations import OperationResult
from .token_manager import now_ms


app = typer.Typer(add_completion=False, help="Spotify Web API credential broker.")


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        stream=sys.stderr,
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _open_broker() -> SpotifyBroker:
    return SpotifyBroker.from_env()


def _fail(exc: BrokerError) -> NoReturn:
    typer.echo(f"Error: {exc}", err=True)
    raise typer.Exit(code=1)


def _emit(result: OperationResult) -> None:
    typer.echo(result.text)
    if result.is_error:
        raise typer.Exit(code=1)


def _run(operation, *args, **kwargs) -> None:
    try:
        with _open_broker() as broker:
            result = operation(broker, *args, **kwargs)
    except BrokerError as exc:
        _fail(exc)
    _emit(result)


@app.callback()
def cli(
    log_level: str = typer.Option("WARNING", help="Logging level (DEBUG, INFO, WARNING)."),
) -> None:
    configure_logging(log_level)


# ---------------------------------------------------------------------------
# Credential commands
# ---------------------------------------------------------------------------

@app.command()
def auth() -> None:
    """Open the consent page and store the tokens returned to the callback."""
    try:
        with _open_broker() as broker:
            typer.echo(f"Waiting for the Spotify callback on {broker.store.load().redirect_uri} ...")
            broker.authorize()
            path = broker.store.path
    except BrokerError as exc:
        _fail(exc)
    typer.echo(f"Authentication successful. Tokens saved to {path}")


@app.command()
def status() -> None:
    """Show whether tokens are stored and when the access token expires."""
    try:
        with _open_broker() as broker:
            record = broker.store.load()
            path = broker.store.path
    except BrokerError as exc:
        _fail(exc)

    typer.echo(f"Config file: {path}")
    typer.echo(f"Access token: {'present' if record.access_token else 'missing'}")
    typer.echo(f"Refresh token: {'present' if record.refresh_token else 'missing'}")
    remaining = record.expires_in_ms(now_ms())
    if remaining is None:
        typer.echo("Expires: unknown")
    elif remaining <= 0:
        typer.echo(f"Expires: expired {-remaining // 1000}s ago")
    else:
        typer.echo(f"Expires: in {remaining // 1000}s")
    if not record.is_authorized:
        typer.echo("Not authorized yet. Run `spotify-broker auth`.")
        raise typer.Exit(code=1)


@app.command()
def refresh() -> None:
    """Force a token refresh now."""
    try:
        with _open_broker() as broker:
            record = broker.force_refresh()
    except BrokerError as exc:
        _fail(exc)
    typer.echo(f"Token refreshed; expires in {record.expires_in_ms(now_ms()) // 1000}s")


# ---------------------------------------------------------------------------
# Read commands
# ---------------------------------------------------------------------------

@app.command()
def search(
    query: str = typer.Argument(..., help="Search query"),
    type_: str = typer.Option("track", "--type", "-t", help="track, album, artist, playlist, show or episode"),
    limit: int = typer.Option(10, help="Maximum number of results (1-50)"),
) -> None:
    """Search Spotify for tracks, albums, artists, playlists, shows or episodes."""
    _run(operations.search, query, type_, limit)


@app.command("now-playing")
def now_playing() -> None:
    """Show the item currently playing."""
    _run(operations.get_now_playing)


@app.command()
def playlists(limit: int = typer.Option(20, help="Maximum number of playlists (1-50)")) -> None:
    """List the current user's playlists."""
    _run(operations.get_my_playlists, limit)


@app.command("playlist-tracks")
def playlist_tracks(
    playlist_id: str = typer.Argument(...),
    limit: int = typer.Option(50, help="Maximum number of tracks (1-50)"),
) -> None:
    """List the tracks of a playlist."""
    _run(operations.get_playlist_tracks, playlist_id, limit)


@app.command()
def recent(limit: int = typer.Option(20, help="Maximum number of tracks (1-50)")) -> None:
    """List recently played tracks."""
    _run(operations.get_recently_played, limit)


@app.command("follow-playlist")
def follow_playlist(
    playlist_id: str = typer.Argument(...),
    public: bool = typer.Option(True, help="Show the playlist on your profile"),
) -> None:
    _run(operations.follow_playlist, playlist_id, public)


@app.command("unfollow-playlist")
def unfollow_playlist(playlist_id: str = typer.Argument(...)) -> None:
    _run(operations.unfollow_playlist, playlist_id)


@app.command()
def follow(
    ids: List[str] = typer.Argument(..., help="Artist or user IDs"),
    type_: str = typer.Option("artist", "--type", "-t", help="artist or user"),
) -> None:
    _run(operations.follow_artists_or_users, type_, ids)


@app.command()
def unfollow(
    ids: List[str] = typer.Argument(..., help="Artist or user IDs"),
    type_: str = typer.Option("artist", "--type", "-t", help="artist or user"),
) -> None:
    _run(operations.unfollow_artists_or_users, type_, ids)


@app.command("save-tracks")
def save_tracks(ids: List[str] = typer.Argument(..., help="Track IDs")) -> None:
    _run(operations.save_tracks, ids)


@app.command("remove-tracks")
def remove_tracks(ids: List[str] = typer.Argument(..., help="Track IDs")) -> None:
    _run(operations.remove_saved_tracks, ids)


@app.command("check-following")
def check_following(
    ids: List[str] = typer.Argument(..., help="Artist or user IDs"),
    type_: str = typer.Option("artist", "--type", "-t", help="artist or user"),
) -> None:
    _run(operations.check_follows_artists_or_users, type_, ids)


@app.command("check-playlist-follow")
def check_playlist_follow(playlist_id: str = typer.Argument(...)) -> None:
    _run(operations.check_follows_playlist, playlist_id)


@app.command("check-saved")
def check_saved(ids: List[str] = typer.Argument(..., help="Track IDs")) -> None:
    _run(operations.check_saved_tracks, ids)


# ---------------------------------------------------------------------------
# Playback and playlist commands
# ---------------------------------------------------------------------------

@app.command()
def play(
    uri: Optional[str] = typer.Option(None, help="Spotify URI, e.g. spotify:track:..."),
    type_: Optional[str] = typer.Option(None, "--type", "-t", help="track, album, artist or playlist"),
    id_: Optional[str] = typer.Option(None, "--id", help="Spotify ID used with --type"),
    device_id: Optional[str] = typer.Option(None, help="Target device"),
) -> None:
    """Start playing a track, album, artist or playlist."""
    _run(operations.play_music, uri, type_, id_, device_id)


@app.command()
def pause(device_id: Optional[str] = typer.Option(None, help="Target device")) -> None:
    _run(operations.pause_playback, device_id)


@app.command("next")
def next_track(device_id: Optional[str] = typer.Option(None, help="Target device")) -> None:
    _run(operations.skip_to_next, device_id)


@app.command()
def previous(device_id: Optional[str] = typer.Option(None, help="Target device")) -> None:
    _run(operations.skip_to_previous, device_id)


@app.command()
def resume(device_id: Optional[str] = typer.Option(None, help="Target device")) -> None:
    _run(operations.resume_playback, device_id)


@app.command()
def queue(
    uri: Optional[str] = typer.Option(None, help="Spotify track URI"),
    type_: Optional[str] = typer.Option(None, "--type", "-t", help="Only 'track' is supported"),
    id_: Optional[str] = typer.Option(None, "--id", help="Spotify ID used with --type"),
    device_id: Optional[str] = typer.Option(None, help="Target device"),
) -> None:
    """Add a track to the playback queue."""
    _run(operations.add_to_queue, uri, type_, id_, device_id)


@app.command("create-playlist")
def create_playlist(
    name: str = typer.Argument(...),
    description: Optional[str] = typer.Option(None),
    public: bool = typer.Option(False),
) -> None:
    _run(operations.create_playlist, name, description, public)


@app.command("add-tracks")
def add_tracks(
    playlist_id: str = typer.Argument(...),
    track_ids: List[str] = typer.Argument(..., help="Track IDs (1-100)"),
    position: Optional[int] = typer.Option(None, help="Zero-based insert position"),
) -> None:
    _run(operations.add_tracks_to_playlist, playlist_id, track_ids, position)


@app.command("update-playlist")
def update_playlist(
    playlist_id: str = typer.Argument(...),
    replace_uri: Optional[List[str]] = typer.Option(None, help="Replace all items with these URIs"),
    range_start: Optional[int] = typer.Option(None),
    insert_before: Optional[int] = typer.Option(None),
    range_length: int = typer.Option(1),
    snapshot_id: Optional[str] = typer.Option(None),
) -> None:
    """Replace or reorder the items of a playlist."""
    _run(
        operations.update_playlist_items,
        playlist_id,
        replace_uris=replace_uri or None,
        range_start=range_start,
        insert_before=insert_before,
        range_length=range_length,
        snapshot_id=snapshot_id,
    )


def main() -> None:
    app()


if __name__ == "__main__":
    main()
