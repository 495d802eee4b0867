"""Token endpoint response handling."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

logger = logging.getLogger(__name__)

# Keys never included in safe (loggable / error payload) dumps
_SECRET_KEYS = ("access_token", "refresh_token", "id_token")


@dataclass
class TokenResponse:
    """Provider-issued tokens from an authorization-code exchange.

    The module passes this object to ``on_success`` and never stores it.

    Attributes:
        access_token: The access token, if issued
        token_type: Token type (typically "Bearer")
        refresh_token: Optional refresh token
        id_token: OpenID Connect ID token, if issued
        expires_in: Access token lifetime in seconds
        scope: Space-separated granted scopes
        error: OAuth error code when the exchange failed
        error_description: Human-readable error description
        raw: The untouched response payload
        issued_at: When the response was received (UTC)
    """

    access_token: str | None = None
    token_type: str = "Bearer"
    refresh_token: str | None = None
    id_token: str | None = None
    expires_in: int | None = None
    scope: str | None = None
    error: str | None = None
    error_description: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)
    issued_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TokenResponse":
        """Create from a token endpoint JSON payload."""
        expires_in = data.get("expires_in")
        if expires_in is not None:
            try:
                expires_in = int(expires_in)
            except (TypeError, ValueError):
                logger.debug(f"Ignoring non-numeric expires_in: {expires_in!r}")
                expires_in = None

        return cls(
            access_token=data.get("access_token"),
            token_type=data.get("token_type") or "Bearer",
            refresh_token=data.get("refresh_token"),
            id_token=data.get("id_token"),
            expires_in=expires_in,
            scope=data.get("scope"),
            error=data.get("error"),
            error_description=data.get("error_description"),
            raw=dict(data),
        )

    def is_error(self) -> bool:
        """Check whether the provider returned an OAuth error."""
        return bool(self.error)

    @property
    def expires_at(self) -> datetime | None:
        """When the access token expires, if the provider said."""
        if self.expires_in is None:
            return None
        return self.issued_at + timedelta(seconds=self.expires_in)

    def get_auth_header(self) -> str:
        """Authorization header value for user-info requests.

        Always "Bearer" per RFC 6750; some providers return a lowercase
        ``token_type``.
        """
        return f"Bearer {self.access_token}"

    def safe_dict(self) -> dict[str, Any]:
        """Payload with token values removed, for logs and error data."""
        return {k: v for k, v in self.raw.items() if k not in _SECRET_KEYS}
