"""OAuth 2.0 / OpenID Connect login handlers.

Main Components:
    define_oauth_event_handler: Build a login endpoint for any provider
    OAuthProvider: Description of one identity provider
    ProviderMetadata: Discovered or static provider endpoints
    TokenResponse: Token endpoint response

Quick Start:
    from auth_utils.oauth import define_oauth_okta_event_handler

    async def on_success(request, result):
        request.session["user"] = result.user

    app.add_api_route("/auth/okta", define_oauth_okta_event_handler(on_success=on_success))
"""

from .discovery import DiscoveryCache, ProviderMetadata, fetch_openid_configuration, require_https
from .flow import (
    build_authorization_params,
    build_authorization_url,
    exchange_code_for_tokens,
    fetch_user_profile,
)
from .handler import (
    OAuthEventHandler,
    OAuthResult,
    PendingAuthorization,
    define_oauth_auth0_event_handler,
    define_oauth_event_handler,
    define_oauth_github_event_handler,
    define_oauth_google_event_handler,
    define_oauth_keycloak_event_handler,
    define_oauth_okta_event_handler,
    get_oauth_redirect_url,
)
from .pkce import PKCEPair, generate_code_challenge, generate_code_verifier, generate_pkce_pair
from .providers import (
    AUTH0,
    GITHUB,
    GOOGLE,
    KEYCLOAK,
    OKTA,
    OAuthProvider,
    get_provider,
    list_providers,
    register_provider,
)
from .tokens import TokenResponse

__all__ = [
    # Handlers (main entry point)
    "define_oauth_event_handler",
    "define_oauth_okta_event_handler",
    "define_oauth_auth0_event_handler",
    "define_oauth_keycloak_event_handler",
    "define_oauth_google_event_handler",
    "define_oauth_github_event_handler",
    "OAuthEventHandler",
    "OAuthResult",
    "PendingAuthorization",
    "get_oauth_redirect_url",
    # Providers
    "OAuthProvider",
    "OKTA",
    "AUTH0",
    "KEYCLOAK",
    "GOOGLE",
    "GITHUB",
    "get_provider",
    "list_providers",
    "register_provider",
    # Discovery
    "DiscoveryCache",
    "ProviderMetadata",
    "fetch_openid_configuration",
    "require_https",
    # Flow
    "build_authorization_params",
    "build_authorization_url",
    "exchange_code_for_tokens",
    "fetch_user_profile",
    # PKCE
    "PKCEPair",
    "generate_code_challenge",
    "generate_code_verifier",
    "generate_pkce_pair",
    # Tokens
    "TokenResponse",
]
