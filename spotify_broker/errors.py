"""Exceptions raised by the credential broker."""
from __future__ import annotations

from typing import Optional


REAUTHORIZE_HINT = "Run `spotify-broker auth` to authorize again."


class BrokerError(Exception):
    """Base class for every error the broker surfaces."""


class ConfigMissingError(BrokerError):
    """Raised when client configuration is absent or unreadable."""


class AuthRequiredError(BrokerError):
    """Raised when no token is available and the user must authorize first."""


class NoRefreshTokenError(AuthRequiredError):
    """Raised when a refresh is needed but no refresh token was ever stored."""


class RefreshRejectedError(BrokerError):
    """Raised when the token endpoint refuses the refresh token (HTTP 400/401)."""

    def __init__(self, status: int, message: str) -> None:
        super().__init__(f"Refresh token rejected ({status}): {message}. {REAUTHORIZE_HINT}")
        self.status = status
        self.message = message


class TokenEndpointError(BrokerError):
    """Raised for transient token endpoint failures."""

    def __init__(self, message: str, *, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class TokenExchangeError(TokenEndpointError):
    """Raised when an authorization code cannot be exchanged for tokens."""


class TransportError(BrokerError):
    """Raised when the resource API cannot be reached at all."""


class ApiError(BrokerError):
    """Raised for non-2xx responses from the resource API."""

    def __init__(self, status: int, message: str) -> None:
        super().__init__(f"Spotify API Error ({status}): {message}")
        self.status = status
        self.message = message


class AuthExpiredError(ApiError):
    """Raised when a 401 cannot be recovered by refreshing the access token."""

    def __init__(self, message: str, *, status: int = 401) -> None:
        super().__init__(status, f"{message}. {REAUTHORIZE_HINT}")


class MalformedResponseError(BrokerError):
    """Raised when a 2xx response that should carry JSON cannot be parsed."""


class AuthorizationFlowError(BrokerError):
    """Base class for failures of one interactive authorization attempt."""


class AuthorizationDeniedError(AuthorizationFlowError):
    """Raised when the provider redirects back with an ``error`` parameter."""

    def __init__(self, error: str) -> None:
        super().__init__(f"Authorization failed: {error}")
        self.error = error


class StateMismatchError(AuthorizationFlowError):
    """Raised when the callback ``state`` does not match the generated nonce."""


class MissingCodeError(AuthorizationFlowError):
    """Raised when the callback carries neither an error nor a code."""


class ListenerError(AuthorizationFlowError):
    """Raised when the loopback callback listener cannot be started."""
