"""Identity provider descriptions.

Every provider runs through the same authorization-code state machine in
``handler.py``. What differs between providers (endpoints, required config,
default scopes, extra authorization parameters, token request quirks) is
captured by an ``OAuthProvider`` record.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable

import httpx

from ..config import ProviderConfig
from ..errors import ConfigurationError
from .discovery import DiscoveryCache, ProviderMetadata

logger = logging.getLogger(__name__)

UrlBuilder = Callable[[ProviderConfig], str]
ExtrasBuilder = Callable[[ProviderConfig], dict[str, str]]


def _host(domain: str | None) -> str:
    """Strip scheme and trailing slash from a configured domain."""
    value = (domain or "").strip().rstrip("/")
    for prefix in ("https://", "http://"):
        if value.startswith(prefix):
            return value[len(prefix):]
    return value


def _base_url(domain: str | None) -> str:
    """Normalize a domain to a base URL, defaulting to HTTPS."""
    value = (domain or "").strip().rstrip("/")
    if value.startswith(("https://", "http://")):
        return value
    return f"https://{value}"


def _static(url: str) -> UrlBuilder:
    return lambda config: url


def no_extras(config: ProviderConfig) -> dict[str, str]:
    return {}


@dataclass(frozen=True)
class OAuthProvider:
    """Description of one OAuth2 / OIDC identity provider.

    Attributes:
        name: Identifier used in env variable names and errors (e.g. "okta")
        display_name: Human-readable name used in error messages
        required: Config fields that must be set
        discovery_url: Builds the OIDC discovery URL; when set, endpoints are
            discovered and the static builders are ignored
        authorization_url: Static authorization endpoint builder
        token_url: Static token endpoint builder
        userinfo_url: Static user-info endpoint builder
        default_scope: Scopes requested when the config sets none
        email_scope: Scope added when ``email_required`` is set
        authorization_extras: Provider-specific authorization parameters
        token_headers: Extra headers for the token request
        pkce: Whether PKCE is used when the config does not say
    """

    name: str
    display_name: str
    required: tuple[str, ...] = ("client_id", "client_secret")
    discovery_url: UrlBuilder | None = None
    authorization_url: UrlBuilder | None = None
    token_url: UrlBuilder | None = None
    userinfo_url: UrlBuilder | None = None
    default_scope: tuple[str, ...] = ()
    email_scope: str = "email"
    authorization_extras: ExtrasBuilder = no_extras
    token_headers: dict[str, str] = field(default_factory=dict)
    pkce: bool = False

    def uses_discovery(self) -> bool:
        return self.discovery_url is not None

    def use_pkce(self, config: ProviderConfig) -> bool:
        return self.pkce if config.pkce is None else config.pkce

    def scopes(self, config: ProviderConfig) -> list[str]:
        """Scopes to request for this config.

        Uses the configured scopes or the provider default, then appends the
        email scope when required and absent. The config is not mutated.
        """
        scope = list(config.scope) if config.scope is not None else list(self.default_scope)
        if config.email_required and self.email_scope not in scope:
            scope.append(self.email_scope)
        return scope

    async def resolve_metadata(
        self,
        config: ProviderConfig,
        cache: DiscoveryCache,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> ProviderMetadata:
        """Get the provider's endpoints for a config.

        Raises:
            DiscoveryError: If discovery fails or returns non-HTTPS endpoints
            ConfigurationError: If the record defines neither discovery nor
                static endpoints
        """
        if self.discovery_url is not None:
            return await cache.get(self.discovery_url(config), http_client, timeout)

        if not (self.authorization_url and self.token_url and self.userinfo_url):
            raise ConfigurationError(
                f"Provider {self.name} has neither a discovery URL nor static endpoints",
                provider=self.name,
            )

        return ProviderMetadata(
            authorization_endpoint=self.authorization_url(config),
            token_endpoint=self.token_url(config),
            userinfo_endpoint=self.userinfo_url(config),
        ).validate()


def audience_extras(config: ProviderConfig) -> dict[str, str]:
    """Audience, max_age and connection parameters, when configured."""
    extras: dict[str, str] = {}
    if config.audience:
        extras["audience"] = config.audience
    if config.max_age is not None:
        extras["max_age"] = str(config.max_age)
    if config.connection:
        extras["connection"] = config.connection
    return extras


def max_age_extras(config: ProviderConfig) -> dict[str, str]:
    if config.max_age is not None:
        return {"max_age": str(config.max_age)}
    return {}


def okta_discovery_url(config: ProviderConfig) -> str:
    """Org or custom authorization server discovery URL.

    See https://developer.okta.com/docs/guides/customize-authz-server/
    """
    host = _host(config.domain)
    if config.authorization_server:
        return f"https://{host}/oauth2/{config.authorization_server}/.well-known/openid-configuration"
    return f"https://{host}/.well-known/openid-configuration"


def keycloak_discovery_url(config: ProviderConfig) -> str:
    return f"{_base_url(config.domain)}/realms/{config.realm}/.well-known/openid-configuration"


OKTA = OAuthProvider(
    name="okta",
    display_name="Okta",
    required=("client_id", "client_secret", "domain"),
    discovery_url=okta_discovery_url,
    default_scope=("openid", "offline_access"),
    authorization_extras=audience_extras,
)

AUTH0 = OAuthProvider(
    name="auth0",
    display_name="Auth0",
    required=("client_id", "client_secret", "domain"),
    authorization_url=lambda config: f"https://{_host(config.domain)}/authorize",
    token_url=lambda config: f"https://{_host(config.domain)}/oauth/token",
    userinfo_url=lambda config: f"https://{_host(config.domain)}/userinfo",
    default_scope=("openid", "offline_access"),
    authorization_extras=audience_extras,
)

KEYCLOAK = OAuthProvider(
    name="keycloak",
    display_name="Keycloak",
    required=("client_id", "client_secret", "domain", "realm"),
    discovery_url=keycloak_discovery_url,
    default_scope=("openid",),
    authorization_extras=max_age_extras,
)

GOOGLE = OAuthProvider(
    name="google",
    display_name="Google",
    discovery_url=_static("https://accounts.google.com/.well-known/openid-configuration"),
    default_scope=("openid", "email", "profile"),
    authorization_extras=max_age_extras,
)

GITHUB = OAuthProvider(
    name="github",
    display_name="GitHub",
    authorization_url=_static("https://github.com/login/oauth/authorize"),
    token_url=_static("https://github.com/login/oauth/access_token"),
    userinfo_url=_static("https://api.github.com/user"),
    email_scope="user:email",
    # GitHub answers form-encoded unless JSON is asked for
    token_headers={"Accept": "application/json"},
)

_registry: dict[str, OAuthProvider] = {
    provider.name: provider for provider in (OKTA, AUTH0, KEYCLOAK, GOOGLE, GITHUB)
}


def register_provider(provider: OAuthProvider, replace: bool = False) -> None:
    """Add a provider record to the registry.

    Raises:
        ValueError: If the name is taken and ``replace`` is False
    """
    if provider.name in _registry and not replace:
        raise ValueError(f"Provider '{provider.name}' is already registered")
    _registry[provider.name] = provider
    logger.debug(f"Registered OAuth provider {provider.name}")


def get_provider(name: str) -> OAuthProvider:
    """Look up a provider record by name.

    Raises:
        ConfigurationError: If no provider has that name
    """
    try:
        return _registry[name.lower()]
    except KeyError:
        available = ", ".join(sorted(_registry))
        raise ConfigurationError(
            f"Unknown OAuth provider '{name}'. Available: {available}",
            provider=name,
        ) from None


def list_providers() -> list[OAuthProvider]:
    """All registered providers, sorted by name."""
    return [_registry[name] for name in sorted(_registry)]
