"""Interactive authorization-code flow with a one-shot loopback listener."""
from __future__ import annotations

import contextlib
import html
import logging
import secrets
import socket
import string
import threading
import urllib.parse
import webbrowser
from concurrent.futures import Future
from dataclasses import dataclass
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Callable, Iterator, Optional

from .config import DEFAULT_CALLBACK_PATH, DEFAULT_CALLBACK_PORT, SpotifySettings
from .errors import (
    AuthorizationDeniedError,
    AuthorizationFlowError,
    ListenerError,
    MissingCodeError,
    StateMismatchError,
)
from .token_manager import TokenLifecycleManager
from .token_store import CredentialRecord, CredentialStore


logger = logging.getLogger(__name__)

LOOPBACK_HOSTS = frozenset({"localhost", "127.0.0.1", "::1"})
LISTEN_HOST = "127.0.0.1"
LISTEN_HOST_V6 = "::1"
STATE_LENGTH = 16
_STATE_ALPHABET = string.ascii_letters + string.digits

_PAGE = "<html><body><h1>{title}</h1><p>{message}</p></body></html>"
SUCCESS_PAGE = _PAGE.format(
    title="Authentication Successful!",
    message="You can now close this window and return to the application.",
)


def generate_state(length: int = STATE_LENGTH) -> str:
    return "".join(secrets.choice(_STATE_ALPHABET) for _ in range(length))


def build_authorization_url(
    *,
    authorize_url: str,
    client_id: str,
    redirect_uri: str,
    scope: tuple[str, ...] | list[str] | str,
    state: str,
) -> str:
    scope_value = scope if isinstance(scope, str) else " ".join(scope)
    query = {
        "client_id": client_id,
        "response_type": "code",
        "redirect_uri": redirect_uri,
        "scope": scope_value,
        "state": state,
    }
    return authorize_url + "?" + urllib.parse.urlencode(query, quote_via=urllib.parse.quote)


def _failure_page(message: str) -> str:
    return _PAGE.format(title="Authentication Failed", message=html.escape(message))


@dataclass(slots=True)
class CallbackTarget:
    host: str
    port: int
    path: str

    @property
    def is_loopback(self) -> bool:
        return self.host in LOOPBACK_HOSTS

    @property
    def listen_host(self) -> str:
        return LISTEN_HOST_V6 if self.host == LISTEN_HOST_V6 else LISTEN_HOST

    @classmethod
    def from_redirect_uri(cls, redirect_uri: str) -> "CallbackTarget":
        parsed = urllib.parse.urlsplit(redirect_uri)
        try:
            port = parsed.port
        except ValueError as exc:
            raise ListenerError(f"Redirect URI has an invalid port: {redirect_uri}") from exc
        return cls(
            host=(parsed.hostname or "").lower(),
            port=port or DEFAULT_CALLBACK_PORT,
            path=parsed.path or DEFAULT_CALLBACK_PATH,
        )


class _CallbackServer(HTTPServer):
    """HTTPServer carrying the state of one authorization attempt."""

    def __init__(
        self,
        address: tuple[str, int],
        *,
        callback_path: str,
        expected_state: str,
        exchange: Callable[[str], CredentialRecord],
    ) -> None:
        self.address_family = socket.AF_INET6 if ":" in address[0] else socket.AF_INET
        super().__init__(address, _CallbackHandler)
        self.callback_path = callback_path
        self.expected_state = expected_state
        self.exchange = exchange
        self.outcome: Future[CredentialRecord] = Future()
        self._settle_lock = threading.Lock()

    def settle(self, *, record: Optional[CredentialRecord] = None, error: Optional[BaseException] = None) -> bool:
        """Resolve the outcome once; later calls are ignored and return False."""
        with self._settle_lock:
            if self.outcome.done():
                return False
            if error is not None:
                self.outcome.set_exception(error)
            else:
                self.outcome.set_result(record)
            return True


class _CallbackHandler(BaseHTTPRequestHandler):
    server: _CallbackServer
    server_version = "SpotifyBrokerCallback/1.0"

    def do_GET(self) -> None:  # noqa: N802
        parsed = urllib.parse.urlsplit(self.path)
        if parsed.path != self.server.callback_path:
            self.send_response(404)
            self.send_header("Content-Length", "0")
            self.end_headers()
            return

        if self.server.outcome.done():
            self._respond(_failure_page("This authorization attempt has already completed."))
            return

        params = urllib.parse.parse_qs(parsed.query)
        code = params.get("code", [None])[0]
        returned_state = params.get("state", [None])[0]
        error = params.get("error", [None])[0]

        if error:
            logger.error("Authorization error: %s", error)
            self._fail(AuthorizationDeniedError(error), f"Error: {error}. Please close this window.")
            return

        if returned_state != self.server.expected_state:
            logger.error("State mismatch error")
            self._fail(
                StateMismatchError("State mismatch in authorization callback"),
                "State verification failed. Please close this window and try again.",
            )
            return

        if not code:
            logger.error("No authorization code received")
            self._fail(
                MissingCodeError("No authorization code received"),
                "No authorization code received. Please close this window and try again.",
            )
            return

        try:
            record = self.server.exchange(code)
        except Exception as exc:
            logger.error("Token exchange error: %s", exc)
            self._fail(
                exc,
                "Failed to exchange authorization code for tokens. Please close this window and try again.",
            )
            return

        self.server.settle(record=record)
        self._respond(SUCCESS_PAGE)

    def _fail(self, error: BaseException, message: str) -> None:
        self.server.settle(error=error)
        self._respond(_failure_page(message))

    def _respond(self, page: str) -> None:
        # The outcome is already settled; a browser that went away only loses the page.
        payload = page.encode("utf-8")
        try:
            self.send_response(200)
            self.send_header("Content-Type", "text/html; charset=utf-8")
            self.send_header("Content-Length", str(len(payload)))
            self.end_headers()
            self.wfile.write(payload)
        except OSError as exc:
            logger.warning("Could not deliver the callback page to the browser: %s", exc)

    def log_message(self, format: str, *args) -> None:  # noqa: A002
        logger.debug("Callback listener: " + format, *args)


class AuthorizationFlow:
    """Drives the first-time grant: URL, browser, callback, code exchange.

    ``run`` blocks until the provider redirects back to the loopback listener.
    There is no built-in timeout; a caller needing one must impose it.
    """

    def __init__(
        self,
        settings: SpotifySettings,
        store: CredentialStore,
        tokens: TokenLifecycleManager,
        *,
        open_browser: Callable[[str], bool] = webbrowser.open,
        state_factory: Callable[[], str] = generate_state,
    ) -> None:
        self._settings = settings
        self._store = store
        self._tokens = tokens
        self._open_browser = open_browser
        self._state_factory = state_factory
        self._running = threading.Lock()

    def authorization_url(self, record: CredentialRecord, state: str) -> str:
        return build_authorization_url(
            authorize_url=self._settings.authorize_url,
            client_id=record.client_id,
            redirect_uri=record.redirect_uri,
            scope=self._settings.scopes,
            state=state,
        )

    def run(self) -> CredentialRecord:
        if not self._running.acquire(blocking=False):
            raise AuthorizationFlowError("An authorization flow is already in progress.")
        try:
            return self._run()
        finally:
            self._running.release()

    def _run(self) -> CredentialRecord:
        record = self._store.load()
        target = CallbackTarget.from_redirect_uri(record.redirect_uri)
        if not target.is_loopback:
            logger.warning(
                "Redirect URI %s does not use a loopback host; the local callback listener "
                "will not receive the redirect. Example: http://127.0.0.1:4321/callback",
                record.redirect_uri,
            )

        state = self._state_factory()
        url = self.authorization_url(record, state)

        def exchange(code: str) -> CredentialRecord:
            return self._tokens.exchange_code(record, code)

        with self._listening(target, state, exchange) as server:
            logger.info(
                "Listening for Spotify authentication callback on %s port %s path %s",
                target.listen_host,
                server.server_address[1],
                target.path,
            )
            self._launch_browser(url)
            result = server.outcome.result()
        logger.info("Authentication successful! Access token and refresh token have been saved.")
        return result

    @contextlib.contextmanager
    def _listening(
        self,
        target: CallbackTarget,
        state: str,
        exchange: Callable[[str], CredentialRecord],
    ) -> Iterator[_CallbackServer]:
        try:
            server = _CallbackServer(
                (target.listen_host, target.port),
                callback_path=target.path,
                expected_state=state,
                exchange=exchange,
            )
        except OSError as exc:
            logger.error("HTTP server error during auth flow: %s", exc)
            raise ListenerError(f"Could not listen on {target.listen_host} port {target.port}: {exc}") from exc

        thread = threading.Thread(target=server.serve_forever, name="spotify-auth-callback", daemon=True)
        thread.start()
        try:
            yield server
        finally:
            server.shutdown()
            server.server_close()
            thread.join()
            logger.debug("Callback listener closed")

    def _launch_browser(self, url: str) -> None:
        logger.info("Opening browser for authorization...")
        try:
            opened = self._open_browser(url)
        except webbrowser.Error as exc:
            logger.debug("Browser launch raised: %s", exc)
            opened = False
        if opened:
            logger.info("If the browser did not open, visit: %s", url)
            return
        logger.warning("Failed to open browser automatically. Please visit this URL to authorize:")
        logger.warning("%s", url)
