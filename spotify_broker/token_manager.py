"""Access/refresh token lifecycle for the Spotify accounts service."""
from __future__ import annotations

import base64
import logging
import threading
import time
from typing import Any, Callable, Optional

import httpx

from .config import SpotifySettings
from .errors import (
    AuthRequiredError,
    NoRefreshTokenError,
    RefreshRejectedError,
    TokenEndpointError,
    TokenExchangeError,
)
from .token_store import CredentialRecord, CredentialStore


logger = logging.getLogger(__name__)

Clock = Callable[[], int]


def now_ms() -> int:
    return int(time.time() * 1000)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class TokenLifecycleManager:
    """Exchanges authorization codes and keeps the access token fresh.

    Every successful exchange or refresh mutates the record in place and is
    persisted through the store before the call returns.
    """

    def __init__(
        self,
        settings: SpotifySettings,
        store: CredentialStore,
        http: httpx.Client,
        *,
        margin_ms: Optional[int] = None,
        clock: Clock = now_ms,
    ) -> None:
        self._settings = settings
        self._store = store
        self._http = http
        self._margin_ms = settings.refresh_margin_ms if margin_ms is None else margin_ms
        self._clock = clock
        # Refreshes within one process are serialized; other processes are not coordinated.
        self._lock = threading.RLock()

    @property
    def margin_ms(self) -> int:
        return self._margin_ms

    def exchange_code(self, record: CredentialRecord, code: str) -> CredentialRecord:
        logger.info("Exchanging authorization code for tokens")
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": record.redirect_uri,
        }
        try:
            response = self._post_token(record, data)
        except httpx.HTTPError as exc:
            raise TokenExchangeError(f"Token endpoint unreachable during code exchange: {exc}") from exc

        if response.status_code >= 400:
            logger.error("Failed to exchange code for token: %s - %s", response.status_code, response.text)
            raise TokenExchangeError(
                f"Failed to exchange code for token ({response.status_code}): {response.text}",
                status=response.status_code,
            )

        payload = self._parse_payload(response, error_cls=TokenExchangeError, action="Token exchange")
        requested_at = self._clock()
        record.access_token = payload["access_token"]
        if payload.get("refresh_token"):
            record.refresh_token = payload["refresh_token"]
        record.expires_at = requested_at + int(payload["expires_in"] * 1000)
        self._store.save(record)
        logger.info("Authorization code exchanged; access token valid for %ss", payload["expires_in"])
        return record

    def ensure_fresh(self, record: CredentialRecord) -> CredentialRecord:
        with self._lock:
            return self._ensure_fresh(record)

    def _ensure_fresh(self, record: CredentialRecord) -> CredentialRecord:
        if not record.access_token and not record.refresh_token:
            raise AuthRequiredError("Spotify authentication required. Run `spotify-broker auth` first.")

        if not record.access_token:
            logger.info("No access token stored; refreshing")
            return self.refresh(record)

        if record.expires_at is None:
            logger.info("Access token has no recorded expiry; refreshing")
            return self.refresh(record)

        remaining = record.expires_at - self._clock()
        if remaining < self._margin_ms:
            logger.info("Access token expires in %sms (margin %sms); refreshing", remaining, self._margin_ms)
            return self.refresh(record)
        return record

    def refresh(self, record: CredentialRecord) -> CredentialRecord:
        with self._lock:
            return self._refresh(record)

    def _refresh(self, record: CredentialRecord) -> CredentialRecord:
        if not record.refresh_token:
            raise NoRefreshTokenError("No refresh token available. User needs to re-authorize.")

        logger.info("Attempting to refresh Spotify token")
        data = {
            "grant_type": "refresh_token",
            "refresh_token": record.refresh_token,
            "client_id": record.client_id,
        }
        try:
            response = self._post_token(record, data)
        except httpx.HTTPError as exc:
            raise TokenEndpointError(f"Token endpoint unreachable during refresh: {exc}") from exc

        if response.status_code in (400, 401):
            logger.error("Refresh token rejected: %s - %s", response.status_code, response.text)
            raise RefreshRejectedError(response.status_code, _error_description(response))
        if response.status_code >= 400:
            logger.error("Failed to refresh token: %s - %s", response.status_code, response.text)
            raise TokenEndpointError(
                f"Failed to refresh token ({response.status_code}): {response.text}",
                status=response.status_code,
            )

        payload = self._parse_payload(response, error_cls=TokenEndpointError, action="Token refresh")
        requested_at = self._clock()
        record.access_token = payload["access_token"]
        if payload.get("refresh_token"):
            record.refresh_token = payload["refresh_token"]
        record.expires_at = requested_at + int(payload["expires_in"] * 1000)
        self._store.save(record)
        logger.info("Spotify token refreshed successfully")
        return record

    def _post_token(self, record: CredentialRecord, data: dict[str, str]) -> httpx.Response:
        auth_value = base64.b64encode(
            f"{record.client_id}:{record.client_secret}".encode("utf-8")
        ).decode("ascii")
        return self._http.post(
            self._settings.token_url,
            data=data,
            headers={
                "Authorization": f"Basic {auth_value}",
                "Content-Type": "application/x-www-form-urlencoded",
            },
        )

    @staticmethod
    def _parse_payload(
        response: httpx.Response,
        *,
        error_cls: type[TokenEndpointError],
        action: str,
    ) -> dict[str, Any]:
        try:
            payload = response.json()
        except ValueError as exc:
            raise error_cls(f"{action} response was not JSON: {response.text}", status=response.status_code) from exc
        if not isinstance(payload, dict):
            raise error_cls(f"{action} response was not an object", status=response.status_code)
        if not _is_number(payload.get("expires_in")):
            raise error_cls(f"{action} response missing expires_in", status=response.status_code)
        if not payload.get("access_token"):
            raise error_cls(f"{action} response missing access_token", status=response.status_code)
        return payload


def _error_description(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(payload, dict):
        description = payload.get("error_description") or payload.get("error")
        if isinstance(description, str) and description:
            return description
    return response.text or response.reason_phrase
