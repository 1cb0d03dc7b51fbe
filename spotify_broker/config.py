"""Configuration helpers for the Spotify credential broker."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .errors import ConfigMissingError


load_dotenv()


DEFAULT_CONFIG_PATH = Path("spotify-config.json")
DEFAULT_ACCOUNTS_BASE_URL = "https://accounts.spotify.com"
DEFAULT_API_BASE_URL = "https://api.spotify.com"
DEFAULT_REFRESH_MARGIN_SECONDS = 60
DEFAULT_HTTP_TIMEOUT = 20.0
DEFAULT_CALLBACK_PORT = 4321
DEFAULT_CALLBACK_PATH = "/callback"
DEFAULT_SCOPES = (
    "user-read-private",
    "user-read-email",
    "user-read-playback-state",
    "user-modify-playback-state",
    "user-read-currently-playing",
    "playlist-read-private",
    "playlist-modify-private",
    "playlist-modify-public",
    "user-library-read",
    "user-library-modify",
    "user-read-recently-played",
    "user-follow-read",
    "user-follow-modify",
)


@dataclass(slots=True)
class SpotifySettings:
    client_id: Optional[str] = field(default=None, repr=False)
    client_secret: Optional[str] = field(default=None, repr=False)
    redirect_uri: Optional[str] = None
    config_path: Path = DEFAULT_CONFIG_PATH
    accounts_base_url: str = DEFAULT_ACCOUNTS_BASE_URL
    api_base_url: str = DEFAULT_API_BASE_URL
    refresh_margin_ms: int = DEFAULT_REFRESH_MARGIN_SECONDS * 1000
    http_timeout: float = DEFAULT_HTTP_TIMEOUT
    scopes: tuple[str, ...] = DEFAULT_SCOPES

    @property
    def token_url(self) -> str:
        return self.accounts_base_url.rstrip("/") + "/api/token"

    @property
    def authorize_url(self) -> str:
        return self.accounts_base_url.rstrip("/") + "/authorize"

    @classmethod
    def from_env(cls) -> "SpotifySettings":
        def optional(name: str) -> Optional[str]:
            value = os.getenv(name)
            if value is None or not value.strip():
                return None
            return value.strip()

        def number(name: str, default: float) -> float:
            raw = optional(name)
            if raw is None:
                return default
            try:
                value = float(raw)
            except ValueError as exc:
                raise ConfigMissingError(f"{name} must be a number, got {raw!r}") from exc
            if value < 0:
                raise ConfigMissingError(f"{name} must not be negative, got {raw!r}")
            return value

        margin_seconds = number("SPOTIFY_REFRESH_MARGIN_SECONDS", DEFAULT_REFRESH_MARGIN_SECONDS)

        return cls(
            client_id=optional("SPOTIFY_CLIENT_ID"),
            client_secret=optional("SPOTIFY_CLIENT_SECRET"),
            redirect_uri=optional("SPOTIFY_REDIRECT_URI"),
            config_path=Path(optional("SPOTIFY_CONFIG_PATH") or DEFAULT_CONFIG_PATH),
            accounts_base_url=optional("SPOTIFY_ACCOUNTS_BASE_URL") or DEFAULT_ACCOUNTS_BASE_URL,
            api_base_url=optional("SPOTIFY_API_BASE_URL") or DEFAULT_API_BASE_URL,
            refresh_margin_ms=int(margin_seconds * 1000),
            http_timeout=number("SPOTIFY_HTTP_TIMEOUT", DEFAULT_HTTP_TIMEOUT),
        )
