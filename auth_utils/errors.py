"""Error types shared by the OAuth and WebAuthn handlers.

Every failure a handler can report is an ``AuthError``. Each one carries an
HTTP status code and a small diagnostic payload. Handlers pass these errors
to the caller's ``on_error`` callback. Without a callback they raise them,
and ``auth_error_handler`` turns them into JSON responses for the host app.
"""

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class AuthError(Exception):
    """Base error for authentication handlers."""

    status_code: int = 401

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        provider: str | None = None,
        data: Any = None,
    ):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.provider = provider
        self.data = data

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the JSON error body returned to clients."""
        return {
            "error": type(self).__name__,
            "status_code": self.status_code,
            "message": self.message,
            "provider": self.provider,
            "data": self.data,
        }


class ConfigurationError(AuthError):
    """Required configuration is missing or malformed."""

    status_code = 500

    def __init__(self, message: str, *, missing: list[str] | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.missing = missing or []


class TransportError(AuthError):
    """An outbound request failed or returned something unusable."""

    status_code = 502


class DiscoveryError(TransportError):
    """The OpenID Connect discovery document could not be fetched or parsed."""

    pass


class OAuthProtocolError(AuthError):
    """The provider answered with an OAuth error payload."""

    status_code = 401

    @classmethod
    def from_payload(cls, provider: str, display_name: str, payload: dict[str, Any]) -> "OAuthProtocolError":
        """Build the error from a token or callback error payload.

        Only the standard ``error`` / ``error_description`` fields are used in
        the message; the payload itself is attached as ``data``.
        """
        reason = payload.get("error_description") or payload.get("error") or "Unknown error"
        return cls(
            f"{display_name} login failed: {reason}",
            provider=provider,
            data=payload,
        )


class StateError(AuthError):
    """The callback ``state`` was not issued by this handler or has expired."""

    status_code = 401


class ProfileFetchError(AuthError):
    """The user-info endpoint returned nothing usable."""

    status_code = 410


class VerificationError(AuthError):
    """A WebAuthn ceremony failed verification."""

    status_code = 400


async def auth_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Exception handler that renders an ``AuthError`` as JSON."""
    if not isinstance(exc, AuthError):
        raise exc
    logger.debug(f"Reporting {type(exc).__name__} for {request.url.path}: {exc.message}")
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)


def install_error_handler(app: FastAPI) -> None:
    """Register ``auth_error_handler`` for every ``AuthError`` raised by a route."""
    app.add_exception_handler(AuthError, auth_error_handler)
