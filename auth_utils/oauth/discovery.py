"""OpenID Connect discovery.

Providers that publish an OIDC discovery document have their authorization,
token and user-info endpoints read from
``{issuer}/.well-known/openid-configuration``. Each handler keeps the
documents it fetched in a ``DiscoveryCache`` so only the first request per
URL pays for the round trip.
"""

import logging
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlparse

import httpx

from ..errors import DiscoveryError

logger = logging.getLogger(__name__)

_LOOPBACK_HOSTS = {"localhost", "127.0.0.1", "::1"}


def _http_status_hint(status_code: int) -> str:
    """Get a short hint for common HTTP status codes."""
    hints = {
        401: "the discovery endpoint should not require authentication",
        403: "access forbidden - check the domain and authorization server",
        404: "endpoint not found - check the domain, realm or authorization server ID",
        500: "the identity provider may be experiencing issues",
        502: "there may be a proxy or network issue",
        503: "the identity provider may be temporarily down",
    }
    return hints.get(status_code, "")


def require_https(url: str, context: str) -> None:
    """Validate that an endpoint uses HTTPS.

    Loopback hosts are allowed over plain HTTP for local development.

    Raises:
        DiscoveryError: If the URL is neither HTTPS nor loopback
    """
    parsed = urlparse(url)
    if parsed.scheme == "https":
        return
    if parsed.scheme == "http" and parsed.hostname in _LOOPBACK_HOSTS:
        return
    raise DiscoveryError(f"{context} must use HTTPS, got: {url}")


@dataclass
class ProviderMetadata:
    """Endpoints for one provider, discovered or statically configured."""

    authorization_endpoint: str
    token_endpoint: str
    userinfo_endpoint: str
    issuer: str | None = None
    jwks_uri: str | None = None
    end_session_endpoint: str | None = None
    revocation_endpoint: str | None = None
    scopes_supported: list[str] | None = None
    code_challenge_methods_supported: list[str] | None = None

    def supports_pkce(self) -> bool:
        """Check if the provider advertises S256 PKCE (or says nothing)."""
        methods = self.code_challenge_methods_supported
        return methods is None or "S256" in methods

    def validate(self) -> "ProviderMetadata":
        """Check that the endpoints used by the flow are HTTPS."""
        require_https(self.authorization_endpoint, "Authorization endpoint")
        require_https(self.token_endpoint, "Token endpoint")
        require_https(self.userinfo_endpoint, "User-info endpoint")
        return self

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProviderMetadata":
        """Create from an OIDC discovery document.

        Raises:
            DiscoveryError: If a required endpoint is missing or not HTTPS
        """
        try:
            metadata = cls(
                authorization_endpoint=data["authorization_endpoint"],
                token_endpoint=data["token_endpoint"],
                userinfo_endpoint=data["userinfo_endpoint"],
                issuer=data.get("issuer"),
                jwks_uri=data.get("jwks_uri"),
                end_session_endpoint=data.get("end_session_endpoint"),
                revocation_endpoint=data.get("revocation_endpoint"),
                scopes_supported=data.get("scopes_supported"),
                code_challenge_methods_supported=data.get("code_challenge_methods_supported"),
            )
        except KeyError as e:
            raise DiscoveryError(f"Discovery document missing required field: {e}") from e
        except TypeError as e:
            raise DiscoveryError(f"Discovery document is not a JSON object: {e}") from e
        return metadata.validate()


async def fetch_openid_configuration(
    url: str,
    http_client: httpx.AsyncClient | None = None,
    timeout: float = 30.0,
) -> ProviderMetadata:
    """Fetch and parse an OIDC discovery document.

    Args:
        url: Full ``.well-known/openid-configuration`` URL
        http_client: Optional HTTP client to use
        timeout: Request timeout in seconds

    Returns:
        ProviderMetadata instance

    Raises:
        DiscoveryError: If the document cannot be fetched or parsed
    """
    require_https(url, "Discovery URL")

    client = http_client or httpx.AsyncClient(timeout=timeout)
    should_close = http_client is None

    logger.debug(f"Fetching OpenID configuration from {url}")

    try:
        response = await client.get(url, headers={"Accept": "application/json"})

        if response.status_code != 200:
            hint = _http_status_hint(response.status_code)
            message = f"Failed to fetch OpenID configuration from {url}: HTTP {response.status_code}"
            if hint:
                message += f" ({hint})"
            raise DiscoveryError(message, data={"url": url, "status": response.status_code})

        try:
            data = response.json()
        except (ValueError, TypeError) as e:
            raise DiscoveryError(f"OpenID configuration at {url} was not valid JSON: {e}") from e

        metadata = ProviderMetadata.from_dict(data)
        logger.debug(f"Fetched OpenID configuration from {url}")
        return metadata

    except httpx.TimeoutException as e:
        raise DiscoveryError(f"Timeout fetching OpenID configuration from {url}: {e}") from e
    except httpx.RequestError as e:
        raise DiscoveryError(f"Could not connect to {url}: {e}") from e
    finally:
        if should_close:
            await client.aclose()


class DiscoveryCache:
    """Per-handler cache of discovery documents keyed by URL.

    Failed fetches are not cached. Two concurrent first requests may both
    fetch; the later result simply overwrites the earlier one.
    """

    def __init__(self) -> None:
        self._documents: dict[str, ProviderMetadata] = {}

    def __contains__(self, url: object) -> bool:
        return url in self._documents

    def __len__(self) -> int:
        return len(self._documents)

    async def get(
        self,
        url: str,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> ProviderMetadata:
        """Return the cached document for ``url``, fetching it on first use."""
        cached = self._documents.get(url)
        if cached is not None:
            return cached

        metadata = await fetch_openid_configuration(url, http_client, timeout)
        self._documents[url] = metadata
        return metadata

    def clear(self) -> None:
        """Forget every cached document."""
        self._documents.clear()
