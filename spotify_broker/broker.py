"""Wiring of the store, token manager, dispatcher and authorization flow."""
from __future__ import annotations

from typing import Any, Mapping, Optional

import httpx

from .authorization import AuthorizationFlow
from .config import SpotifySettings
from .dispatcher import RequestDispatcher, build_http_client
from .token_manager import Clock, TokenLifecycleManager, now_ms
from .token_store import CredentialRecord, CredentialStore


class SpotifyBroker:
    """Owns one HTTP client and the components sharing it.

    Use as a context manager so the underlying ``httpx.Client`` is closed.
    """

    def __init__(
        self,
        settings: SpotifySettings,
        *,
        http: Optional[httpx.Client] = None,
        clock: Clock = now_ms,
    ) -> None:
        self.settings = settings
        self._owns_http = http is None
        self._http = http or build_http_client(settings)
        self.store = CredentialStore(settings)
        self.tokens = TokenLifecycleManager(settings, self.store, self._http, clock=clock)
        self.dispatcher = RequestDispatcher(settings, self.store, self.tokens, self._http)

    @classmethod
    def from_env(cls) -> "SpotifyBroker":
        return cls(SpotifySettings.from_env())

    def request(
        self,
        method: str,
        path: str,
        query: Optional[Mapping[str, Any]] = None,
        body: Any = None,
    ) -> Any:
        return self.dispatcher.request(method, path, query, body)

    def authorize(self, **flow_options: Any) -> CredentialRecord:
        flow = AuthorizationFlow(self.settings, self.store, self.tokens, **flow_options)
        return flow.run()

    def force_refresh(self) -> CredentialRecord:
        return self.tokens.refresh(self.store.load())

    def close(self) -> None:
        if self._owns_http:
            self._http.close()

    def __enter__(self) -> "SpotifyBroker":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
