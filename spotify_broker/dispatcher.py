"""Authenticated request dispatch against the Spotify Web API."""
from __future__ import annotations

import json
import logging
import urllib.parse
from typing import Any, Mapping, Optional

import httpx

from .config import SpotifySettings
from .errors import (
    ApiError,
    AuthExpiredError,
    BrokerError,
    MalformedResponseError,
    TransportError,
)
from .token_manager import TokenLifecycleManager
from .token_store import CredentialStore


logger = logging.getLogger(__name__)


def build_http_client(settings: SpotifySettings) -> httpx.Client:
    return httpx.Client(timeout=httpx.Timeout(settings.http_timeout, read=settings.http_timeout))


def build_query_params(query: Optional[Mapping[str, Any]]) -> list[tuple[str, str]]:
    """Flatten query values the way the API expects them.

    ``None`` values are dropped, sequences are comma-joined and booleans are
    lower-cased. The mapping's own order is kept.
    """
    if not query:
        return []
    params: list[tuple[str, str]] = []
    for key, value in query.items():
        if value is None:
            continue
        if isinstance(value, (list, tuple)):
            params.append((key, ",".join(_stringify(item) for item in value)))
        else:
            params.append((key, _stringify(value)))
    return params


def canonical_query_string(query: Optional[Mapping[str, Any]]) -> str:
    return urllib.parse.urlencode(build_query_params(query))


def expects_body(method: str, status: int, has_request_body: bool) -> bool:
    """Return whether a 2xx response to this call must carry JSON.

    =====================================  ========
    situation                              expected
    =====================================  ========
    status 202                             no
    HEAD                                   no
    GET                                    yes
    any call sent with a request body      yes
    other methods without a request body   no
    =====================================  ========
    """
    method = method.upper()
    if status == 202 or method == "HEAD":
        return False
    if method == "GET":
        return True
    return has_request_body


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class RequestDispatcher:
    def __init__(
        self,
        settings: SpotifySettings,
        store: CredentialStore,
        tokens: TokenLifecycleManager,
        http: httpx.Client,
    ) -> None:
        self._settings = settings
        self._store = store
        self._tokens = tokens
        self._http = http

    def request(
        self,
        method: str,
        path: str,
        query: Optional[Mapping[str, Any]] = None,
        body: Any = None,
        allow_retry: bool = True,
    ) -> Any:
        method = method.upper()
        url = self._build_url(path)
        params = build_query_params(query)

        record = self._tokens.ensure_fresh(self._store.load())
        response = self._send(method, url, params, body, record.access_token)

        if response.status_code == 401 and allow_retry:
            logger.warning("Spotify API returned 401 Unauthorized; refreshing token and retrying")
            try:
                record = self._tokens.refresh(record)
            except BrokerError as exc:
                logger.error("Token refresh failed on retry after 401: %s", exc)
                raise AuthExpiredError("Spotify authentication expired or invalid refresh token") from exc

            # The refreshed record is used as-is; the retry never refreshes again.
            response = self._send(method, url, params, body, record.access_token)
            if response.status_code == 401:
                raise AuthExpiredError(f"Spotify rejected the refreshed access token: {_error_message(response)}")

        return self._classify(method, path, response, has_request_body=body is not None)

    def _classify(self, method: str, path: str, response: httpx.Response, *, has_request_body: bool) -> Any:
        if response.status_code == 204:
            return None
        if not response.is_success:
            message = _error_message(response)
            logger.error("Spotify API error %s for %s %s: %s", response.status_code, method, path, message)
            raise ApiError(response.status_code, message)
        return self._decode(method, path, response, has_request_body=has_request_body)

    def _build_url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return self._settings.api_base_url.rstrip("/") + "/" + path.lstrip("/")

    def _send(
        self,
        method: str,
        url: str,
        params: list[tuple[str, str]],
        body: Any,
        access_token: Optional[str],
    ) -> httpx.Response:
        headers = {"Authorization": f"Bearer {access_token}"}
        content: Optional[bytes] = None
        if body is not None:
            headers["Content-Type"] = "application/json"
            content = json.dumps(body).encode("utf-8")

        logger.info("Spotify API Request: %s %s", method, url)
        if body is not None:
            logger.debug("Body: %s", content.decode("utf-8"))
        try:
            return self._http.request(method, url, params=params or None, content=content, headers=headers)
        except httpx.TransportError as exc:
            raise TransportError(f"Spotify API request failed: {method} {url}: {exc}") from exc

    @staticmethod
    def _decode(method: str, path: str, response: httpx.Response, *, has_request_body: bool) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            if expects_body(method, response.status_code, has_request_body):
                raise MalformedResponseError(
                    f"Failed to parse Spotify API response JSON for status {response.status_code}. "
                    f"Expected JSON for {method} {path}"
                ) from exc
            logger.debug("Ignoring non-JSON body for %s %s (%s)", method, path, response.status_code)
            return None


def _error_message(response: httpx.Response) -> str:
    text = response.text
    try:
        payload = json.loads(text)
    except ValueError:
        return text
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return payload.get("error_description") or error
    return text
