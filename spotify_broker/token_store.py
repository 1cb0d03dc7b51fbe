"""Persistence helper for the Spotify credential record."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from .config import SpotifySettings
from .errors import ConfigMissingError


logger = logging.getLogger(__name__)

# Client fields use camelCase keys in spotify-config.json.
_CLIENT_KEYS = {
    "client_id": "clientId",
    "client_secret": "clientSecret",
    "redirect_uri": "redirectUri",
}
_CONFIG_EXAMPLE = (
    "Example: {\n"
    '  "clientId": "YOUR_CLIENT_ID",\n'
    '  "clientSecret": "YOUR_CLIENT_SECRET",\n'
    '  "redirectUri": "http://127.0.0.1:4321/callback"\n'
    "}"
)


@dataclass(slots=True)
class CredentialRecord:
    client_id: str = field(repr=False)
    client_secret: str = field(repr=False)
    redirect_uri: str
    access_token: Optional[str] = field(default=None, repr=False)
    refresh_token: Optional[str] = field(default=None, repr=False)
    expires_at: Optional[int] = None  # epoch milliseconds

    @property
    def is_authorized(self) -> bool:
        return bool(self.access_token or self.refresh_token)

    def expires_in_ms(self, now_ms: int) -> Optional[int]:
        if self.expires_at is None:
            return None
        return self.expires_at - now_ms


class CredentialStore:
    """Loads and saves the credential record.

    Client fields supplied through the environment take precedence over the
    file and are never written back to it, so secrets kept in ``.env`` stay
    off disk. Token fields always live in the file.
    """

    def __init__(self, settings: SpotifySettings) -> None:
        self._settings = settings
        self._path = Path(settings.config_path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> CredentialRecord:
        payload = self._read()
        env_values = self._env_client_values()
        if not payload and not env_values:
            raise ConfigMissingError(
                f"Spotify configuration file not found at {self._path}.\n"
                "Please create one with clientId, clientSecret, and redirectUri, "
                "or set SPOTIFY_CLIENT_ID, SPOTIFY_CLIENT_SECRET and SPOTIFY_REDIRECT_URI.\n"
                + _CONFIG_EXAMPLE
            )

        client: dict[str, str] = {}
        missing: list[str] = []
        for attr, key in _CLIENT_KEYS.items():
            value = env_values.get(attr) or payload.get(key)
            if not isinstance(value, str) or not value.strip():
                missing.append(key)
                continue
            client[attr] = value.strip()
        if missing:
            raise ConfigMissingError(
                "Spotify configuration must include clientId, clientSecret, and redirectUri "
                f"(missing: {', '.join(missing)})."
            )

        expires_at = payload.get("expires_at")
        return CredentialRecord(
            access_token=payload.get("accessToken") or None,
            refresh_token=payload.get("refreshToken") or None,
            expires_at=int(expires_at) if isinstance(expires_at, (int, float)) else None,
            **client,
        )

    def save(self, record: CredentialRecord) -> None:
        payload = self._read() if self._path.exists() else {}
        env_values = self._env_client_values()
        for attr, key in _CLIENT_KEYS.items():
            if attr in env_values:
                continue
            payload[key] = getattr(record, attr)
        payload["accessToken"] = record.access_token
        payload["refreshToken"] = record.refresh_token
        payload["expires_at"] = record.expires_at

        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        logger.debug("Saved credentials to %s", self._path)

    def _env_client_values(self) -> dict[str, str]:
        values = {
            "client_id": self._settings.client_id,
            "client_secret": self._settings.client_secret,
            "redirect_uri": self._settings.redirect_uri,
        }
        return {attr: value for attr, value in values.items() if value}

    def _read(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise ConfigMissingError(f"Failed to parse Spotify configuration at {self._path}: {exc}") from exc
        if not isinstance(payload, dict):
            raise ConfigMissingError(f"Spotify configuration at {self._path} must be a JSON object.")
        return payload
