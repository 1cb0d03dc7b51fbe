from __future__ import annotations

from typing import Any

import pytest

from spotify_broker import operations
from spotify_broker.errors import ApiError, AuthRequiredError


class FakeApi:
    """Records calls and answers from a (method, path) table."""

    def __init__(self, responses: dict | None = None, error: Exception | None = None) -> None:
        self.responses = responses or {}
        self.error = error
        self.calls: list[tuple[str, str, Any, Any]] = []

    def request(self, method, path, query=None, body=None):
        self.calls.append((method, path, query, body))
        if self.error is not None:
            raise self.error
        return self.responses.get((method, path))


def _track(track_id: str, name: str, duration_ms: int = 185_000) -> dict:
    return {
        "type": "track",
        "id": track_id,
        "name": name,
        "duration_ms": duration_ms,
        "artists": [{"name": "Daft Punk"}, {"name": "Pharrell"}],
        "album": {"name": "Random Access Memories"},
    }


@pytest.mark.parametrize(
    ("ms", "expected"),
    [(0, "0:00"), (61_000, "1:01"), (185_000, "3:05"), (59_600, "1:00"), (119_999, "2:00"), (None, "Unknown Duration")],
)
def test_format_duration(ms, expected) -> None:
    assert operations.format_duration(ms) == expected


def test_search_tracks() -> None:
    api = FakeApi({("GET", "/v1/search"): {"tracks": {"items": [_track("t1", "Get Lucky")]}}})

    result = operations.search(api, "get lucky", "track")

    assert not result.is_error
    assert '1. "Get Lucky" by Daft Punk, Pharrell (3:05) - ID: t1' in result.text
    assert api.calls == [("GET", "/v1/search", {"q": "get lucky", "type": "track", "limit": 10}, None)]


def test_search_playlists_and_artists() -> None:
    api = FakeApi(
        {
            ("GET", "/v1/search"): {
                "playlists": {
                    "items": [
                        None,
                        {"id": "p1", "name": "Focus", "tracks": {"total": 12}, "owner": {"display_name": "me"}},
                    ]
                }
            }
        }
    )

    result = operations.search(api, "focus", "playlist", limit=5)

    assert '2. "Focus" (12 tracks) by me - ID: p1' in result.text


def test_search_without_results() -> None:
    api = FakeApi({("GET", "/v1/search"): {"artists": {"items": []}}})

    assert operations.search(api, "zzz", "artist").text == 'No artist results found for "zzz".'


@pytest.mark.parametrize(("type_", "limit"), [("podcast", 10), ("track", 0), ("track", 51)])
def test_search_validates_before_calling(type_, limit) -> None:
    api = FakeApi()

    result = operations.search(api, "x", type_, limit)

    assert result.is_error
    assert api.calls == []


def test_now_playing_track() -> None:
    api = FakeApi(
        {
            ("GET", "/v1/me/player/currently-playing"): {
                "is_playing": False,
                "progress_ms": 61_000,
                "item": _track("t1", "Get Lucky"),
            }
        }
    )

    text = operations.get_now_playing(api).text

    assert text.startswith("# Currently Paused")
    assert '**Track**: "Get Lucky"' in text
    assert "**Album**: Random Access Memories" in text
    assert "**Progress**: 1:01 / 3:05" in text
    assert "**ID**: t1" in text


def test_nothing_playing() -> None:
    assert operations.get_now_playing(FakeApi()).text == "Nothing is currently playing on Spotify."


def test_playlist_tracks_marks_removed_items() -> None:
    api = FakeApi(
        {("GET", "/v1/playlists/p1/tracks"): {"items": [{"track": _track("t1", "One")}, {"track": None}]}}
    )

    text = operations.get_playlist_tracks(api, "p1").text

    assert "# Tracks in Playlist (ID: p1, limit: 50)" in text
    assert '1. "One" by' in text
    assert "2. [Removed track or item could not be retrieved]" in text


def test_my_playlists_pluralizes() -> None:
    api = FakeApi(
        {
            ("GET", "/v1/me/playlists"): {
                "items": [{"id": "p1", "name": "Solo", "tracks": {"total": 1}, "owner": {"display_name": "me"}}]
            }
        }
    )

    assert '1. "Solo" (1 track) by me - ID: p1' in operations.get_my_playlists(api).text


def test_api_errors_become_error_results() -> None:
    api = FakeApi(error=ApiError(403, "Insufficient client scope"))

    result = operations.save_tracks(api, ["t1"])

    assert result.is_error
    assert result.text == "Failed to save tracks: Spotify API Error (403): Insufficient client scope"


def test_error_prefix_names_the_playlist() -> None:
    api = FakeApi(error=AuthRequiredError("Spotify authentication required."))

    result = operations.follow_playlist(api, "p9")

    assert result.is_error
    assert result.text.startswith("Error following playlist (ID: p9): ")


def test_unexpected_errors_are_not_swallowed() -> None:
    with pytest.raises(RuntimeError):
        operations.unfollow_playlist(FakeApi(error=RuntimeError("boom")), "p1")


def test_save_tracks_sends_ids() -> None:
    api = FakeApi()

    result = operations.save_tracks(api, ["t1", "t2"])

    assert result.text == "Successfully saved 2 tracks to your library."
    assert api.calls == [("PUT", "/v1/me/tracks", None, {"ids": ["t1", "t2"]})]


@pytest.mark.parametrize("ids", [[], [f"t{i}" for i in range(51)]])
def test_id_lists_are_bounded(ids) -> None:
    api = FakeApi()

    assert operations.remove_saved_tracks(api, ids).is_error
    assert api.calls == []


def test_follow_rejects_unknown_type() -> None:
    api = FakeApi()

    assert operations.follow_artists_or_users(api, "band", ["a1"]).is_error
    assert api.calls == []


def test_follow_artists() -> None:
    api = FakeApi()

    result = operations.follow_artists_or_users(api, "artist", ["a1"])

    assert result.text == "Successfully followed 1 artist."
    assert api.calls == [("PUT", "/v1/me/following", {"type": "artist"}, {"ids": ["a1"]})]


def test_check_saved_tracks() -> None:
    api = FakeApi({("GET", "/v1/me/tracks/contains"): [True, False]})

    text = operations.check_saved_tracks(api, ["t1", "t2"]).text

    assert "t1: Saved" in text
    assert "t2: Not Saved" in text


def test_check_follows_playlist() -> None:
    api = FakeApi({("GET", "/v1/playlists/p1/followers/contains"): [True]})

    assert operations.check_follows_playlist(api, "p1").text == "You are following playlist (ID: p1)."
    assert api.calls[0][2] == {"ids": "me"}


def test_play_track_uri() -> None:
    api = FakeApi()

    result = operations.play_music(api, uri="spotify:track:t1", device_id="d1")

    assert result.text == "Started playing spotify:track:t1 on device d1."
    assert api.calls == [("PUT", "/v1/me/player/play", {"device_id": "d1"}, {"uris": ["spotify:track:t1"]})]


def test_play_album_uses_context_uri() -> None:
    api = FakeApi()

    operations.play_music(api, type_="album", id_="al1")

    assert api.calls[0][3] == {"context_uri": "spotify:album:al1"}


@pytest.mark.parametrize(
    "kwargs",
    [{}, {"uri": "spotify:album:al1"}, {"uri": "spotify:track:t1", "type_": "playlist"}, {"type_": "show", "id_": "s1"}],
)
def test_play_validation_errors(kwargs) -> None:
    api = FakeApi()

    assert operations.play_music(api, **kwargs).is_error
    assert api.calls == []


def test_play_without_uri_resumes_on_device() -> None:
    api = FakeApi()

    result = operations.play_music(api, device_id="d1")

    assert result.text == "Attempted to resume playback on device d1."
    assert api.calls == [("PUT", "/v1/me/player/play", {"device_id": "d1"}, None)]


def test_playback_controls() -> None:
    api = FakeApi()

    assert operations.pause_playback(api).text == "Playback paused on the active device."
    assert operations.skip_to_next(api, "d1").text == "Skipped to next track on device d1."
    assert operations.skip_to_previous(api).text == "Skipped to previous track on the active device."
    assert operations.resume_playback(api).text == "Playback resumed on the active device."
    assert [call[:2] for call in api.calls] == [
        ("PUT", "/v1/me/player/pause"),
        ("POST", "/v1/me/player/next"),
        ("POST", "/v1/me/player/previous"),
        ("PUT", "/v1/me/player/play"),
    ]


def test_queue_only_accepts_tracks() -> None:
    api = FakeApi()

    assert operations.add_to_queue(api, type_="album", id_="al1").is_error
    assert operations.add_to_queue(api, uri="spotify:episode:e1").is_error
    assert api.calls == []

    result = operations.add_to_queue(api, type_="track", id_="t1")
    assert not result.is_error
    assert api.calls == [("POST", "/v1/me/player/queue", {"uri": "spotify:track:t1", "device_id": None}, None)]


def test_create_playlist_uses_current_user() -> None:
    api = FakeApi({("GET", "/v1/me"): {"id": "u1"}, ("POST", "/v1/users/u1/playlists"): {"id": "p1"}})

    result = operations.create_playlist(api, "Road Trip", "summer", public=True)

    assert result.text == 'Successfully created playlist "Road Trip" (ID: p1).'
    assert api.calls[1][3] == {"name": "Road Trip", "description": "summer", "public": True, "collaborative": False}


def test_add_tracks_builds_uris() -> None:
    api = FakeApi()

    result = operations.add_tracks_to_playlist(api, "p1", ["t1", "t2"], position=0)

    assert result.text == "Successfully added 2 tracks to playlist (ID: p1)."
    assert api.calls == [
        ("POST", "/v1/playlists/p1/tracks", {"position": 0}, {"uris": ["spotify:track:t1", "spotify:track:t2"]})
    ]


def test_add_tracks_allows_one_hundred_ids() -> None:
    api = FakeApi()

    assert not operations.add_tracks_to_playlist(api, "p1", [f"t{i}" for i in range(100)]).is_error
    assert operations.add_tracks_to_playlist(api, "p1", [f"t{i}" for i in range(101)]).is_error
    assert len(api.calls) == 1


def test_update_playlist_replace() -> None:
    api = FakeApi({("PUT", "/v1/playlists/p1/tracks"): {"snapshot_id": "s2"}})

    result = operations.update_playlist_items(api, "p1", replace_uris=["spotify:track:t1"])

    assert result.text == "Successfully replaced items in playlist (ID: p1). New snapshot ID: s2"
    assert api.calls[0][3] == {"uris": ["spotify:track:t1"]}


def test_update_playlist_reorder() -> None:
    api = FakeApi()

    operations.update_playlist_items(api, "p1", range_start=3, insert_before=0, range_length=2, snapshot_id="s1")

    assert api.calls[0][3] == {"range_start": 3, "insert_before": 0, "range_length": 2, "snapshot_id": "s1"}


@pytest.mark.parametrize(
    "kwargs",
    [
        {},
        {"replace_uris": ["spotify:track:t1"], "range_start": 0},
        {"range_start": 1, "insert_before": 0},
    ],
)
def test_update_playlist_validation(kwargs) -> None:
    api = FakeApi()

    assert operations.update_playlist_items(api, "p1", **kwargs).is_error
    assert api.calls == []
