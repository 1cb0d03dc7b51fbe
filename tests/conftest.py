"""Pytest fixtures and fakes shared across the suite."""
from __future__ import annotations

import dataclasses
import json
from typing import Any, Optional

import httpx
import pytest

from spotify_broker.config import SpotifySettings
from spotify_broker.dispatcher import RequestDispatcher
from spotify_broker.token_manager import TokenLifecycleManager
from spotify_broker.token_store import CredentialRecord


NOW = 1_700_000_000_000
TOKEN_PATH = "/api/token"


class FakeClock:
    def __init__(self, now: int = NOW) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now


class MemoryStore:
    """Keeps the record in memory and snapshots every save."""

    def __init__(self, record: CredentialRecord) -> None:
        self.record = record
        self.saved: list[CredentialRecord] = []

    def load(self) -> CredentialRecord:
        return self.record

    def save(self, record: CredentialRecord) -> None:
        self.record = record
        self.saved.append(dataclasses.replace(record))


class FakeSpotify:
    """MockTransport handler serving canned replies keyed by (method, path).

    Replies queued for a route are consumed in order; the last one repeats.
    A reply may be an exception instance, which is raised instead, or a callable
    taking the request and returning one of the other reply forms.
    """

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], list[Any]] = {}
        self.requests: list[httpx.Request] = []

    def on(self, method: str, path: str, *replies: Any) -> None:
        self.routes.setdefault((method, path), []).extend(replies)

    def token(self, *replies: Any) -> None:
        self.on("POST", TOKEN_PATH, *replies)

    def calls(self, path: str) -> list[httpx.Request]:
        return [request for request in self.requests if request.url.path == path]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.routes.get((request.method, request.url.path))
        if not queue:
            return httpx.Response(404, json={"error": {"status": 404, "message": "No such route"}})
        reply = queue.pop(0) if len(queue) > 1 else queue[0]
        if callable(reply):
            reply = reply(request)
        if isinstance(reply, Exception):
            raise reply
        status, payload = reply
        if payload is None:
            return httpx.Response(status)
        if isinstance(payload, (bytes, str)):
            return httpx.Response(status, content=payload)
        return httpx.Response(status, json=payload)


def token_reply(access_token: str = "fresh-access", *, expires_in: Any = 3600, refresh_token: Optional[str] = None):
    payload: dict[str, Any] = {"access_token": access_token, "token_type": "Bearer", "expires_in": expires_in}
    if refresh_token is not None:
        payload["refresh_token"] = refresh_token
    return 200, payload


def write_config(path, **values: Any) -> None:
    payload = {
        "clientId": "client",
        "clientSecret": "secret",
        "redirectUri": "http://127.0.0.1:4321/callback",
    }
    payload.update(values)
    path.write_text(json.dumps(payload), encoding="utf-8")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def spotify() -> FakeSpotify:
    return FakeSpotify()


@pytest.fixture
def http(spotify: FakeSpotify):
    client = httpx.Client(transport=httpx.MockTransport(spotify))
    yield client
    client.close()


@pytest.fixture
def settings(tmp_path) -> SpotifySettings:
    return SpotifySettings(
        config_path=tmp_path / "spotify-config.json",
        accounts_base_url="https://accounts.test",
        api_base_url="https://api.test",
    )


@pytest.fixture
def record(clock: FakeClock) -> CredentialRecord:
    return CredentialRecord(
        client_id="client",
        client_secret="secret",
        redirect_uri="http://127.0.0.1:4321/callback",
        access_token="A",
        refresh_token="R",
        expires_at=clock.now + 3_600_000,
    )


@pytest.fixture
def store(record: CredentialRecord) -> MemoryStore:
    return MemoryStore(record)


@pytest.fixture
def tokens(settings, store, http, clock) -> TokenLifecycleManager:
    return TokenLifecycleManager(settings, store, http, margin_ms=60_000, clock=clock)


@pytest.fixture
def dispatcher(settings, store, tokens, http) -> RequestDispatcher:
    return RequestDispatcher(settings, store, tokens, http)
