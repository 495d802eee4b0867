"""Authorization-code flow steps.

The three network-facing steps of a provider round trip:

1. Build the authorization URL the browser is redirected to
2. Exchange the returned code for tokens at the token endpoint
3. Fetch the user profile from the user-info endpoint

Each function accepts an optional ``httpx.AsyncClient`` so a handler can
reuse one client for discovery, exchange and profile fetch.
"""

import logging
from typing import Any
from urllib.parse import urlencode

import httpx

from ..config import ProviderConfig
from ..errors import ProfileFetchError, TransportError
from .providers import OAuthProvider
from .tokens import TokenResponse

logger = logging.getLogger(__name__)

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


def build_authorization_params(
    provider: OAuthProvider,
    config: ProviderConfig,
    redirect_uri: str,
    state: str,
    code_challenge: str | None = None,
) -> dict[str, str]:
    """Compute the query parameters for the authorization redirect.

    Precedence, lowest to highest: standard OAuth parameters, provider
    extras, PKCE, then ``config.authorization_params``. ``state`` is always
    the value minted for this request.

    Args:
        provider: Provider record
        config: Resolved provider config
        redirect_uri: Callback URL registered with the provider
        state: Freshly generated state nonce
        code_challenge: S256 PKCE challenge, when PKCE is on

    Returns:
        Parameter mapping ready for URL encoding
    """
    params: dict[str, str] = {
        "response_type": "code",
        "client_id": config.client_id or "",
        "redirect_uri": redirect_uri,
    }

    scope = provider.scopes(config)
    if scope:
        params["scope"] = " ".join(scope)

    params.update(provider.authorization_extras(config))

    if code_challenge:
        params["code_challenge"] = code_challenge
        params["code_challenge_method"] = "S256"

    params.update(config.authorization_params)
    params["state"] = state
    return params


def build_authorization_url(authorization_endpoint: str, params: dict[str, str]) -> str:
    """Append parameters to the authorization endpoint.

    Endpoints that already carry a query string keep it.
    """
    separator = "&" if "?" in authorization_endpoint else "?"
    return f"{authorization_endpoint}{separator}{urlencode(params)}"


def _error_payload(response: httpx.Response) -> dict[str, Any] | None:
    """Return the body if it is a JSON object with an OAuth ``error`` field."""
    try:
        data = response.json()
    except ValueError:
        return None
    if isinstance(data, dict) and data.get("error"):
        return data
    return None


async def exchange_code_for_tokens(
    token_endpoint: str,
    *,
    client_id: str,
    client_secret: str | None,
    code: str,
    redirect_uri: str,
    state: str | None = None,
    code_verifier: str | None = None,
    headers: dict[str, str] | None = None,
    http_client: httpx.AsyncClient | None = None,
    timeout: float = 30.0,
) -> dict[str, Any]:
    """Exchange an authorization code for tokens.

    OAuth error payloads are returned, not raised. GitHub sends them with
    HTTP 200, others with 400/401, and the caller routes them the same way.

    Args:
        token_endpoint: Provider token endpoint
        client_id: OAuth client ID
        client_secret: OAuth client secret (omitted when None)
        code: Authorization code from the callback
        redirect_uri: The redirect URI used in the authorization request
        state: The callback's state, echoed back to the provider
        code_verifier: PKCE verifier, when PKCE was used
        headers: Provider-specific extra headers
        http_client: Optional HTTP client

    Returns:
        Token endpoint response payload (possibly an OAuth error payload)

    Raises:
        TransportError: On network failure, timeout, or a response that is
            neither a JSON token payload nor an OAuth error payload
    """
    http = http_client or httpx.AsyncClient(timeout=timeout)
    should_close = http_client is None

    body: dict[str, str] = {
        "grant_type": "authorization_code",
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "code": code,
    }
    if client_secret:
        body["client_secret"] = client_secret
    if state:
        body["state"] = state
    if code_verifier:
        body["code_verifier"] = code_verifier

    request_headers = {"Content-Type": FORM_CONTENT_TYPE, "Accept": "application/json"}
    request_headers.update(headers or {})

    try:
        response = await http.post(token_endpoint, data=body, headers=request_headers)

        if response.status_code >= 400:
            payload = _error_payload(response)
            if payload is not None:
                logger.debug(f"Token endpoint returned OAuth error '{payload.get('error')}'")
                return payload
            # Raw body is left out on purpose: it may echo credentials
            raise TransportError(
                f"Token exchange failed (HTTP {response.status_code})",
                data={"status": response.status_code},
            )

        try:
            result = response.json()
        except ValueError as e:
            raise TransportError(f"Token endpoint response was not valid JSON: {e}") from e

        if not isinstance(result, dict):
            raise TransportError("Token endpoint response was not a JSON object")

        return result

    except httpx.TimeoutException as e:
        raise TransportError(f"Timeout during token exchange: {e}") from e
    except httpx.RequestError as e:
        raise TransportError(f"Network error during token exchange: {e}") from e
    finally:
        if should_close:
            await http.aclose()


async def fetch_user_profile(
    userinfo_endpoint: str,
    tokens: TokenResponse,
    http_client: httpx.AsyncClient | None = None,
    timeout: float = 30.0,
) -> dict[str, Any] | None:
    """Fetch the user profile with the access token as a bearer credential.

    Args:
        userinfo_endpoint: Provider user-info endpoint
        tokens: Tokens from the exchange
        http_client: Optional HTTP client

    Returns:
        The profile object, or None if the provider returned an empty body

    Raises:
        ProfileFetchError: If the endpoint answers with a non-2xx status
        TransportError: On network failure or timeout
    """
    http = http_client or httpx.AsyncClient(timeout=timeout)
    should_close = http_client is None

    try:
        response = await http.get(
            userinfo_endpoint,
            headers={"Authorization": tokens.get_auth_header(), "Accept": "application/json"},
        )

        if response.status_code >= 400:
            raise ProfileFetchError(
                f"User-info request failed (HTTP {response.status_code})",
                data={"status": response.status_code},
            )

        if not response.content:
            return None

        try:
            profile = response.json()
        except ValueError as e:
            raise TransportError(f"User-info response was not valid JSON: {e}") from e

        if not profile:
            return None
        if not isinstance(profile, dict):
            raise TransportError("User-info response was not a JSON object")
        return profile

    except httpx.TimeoutException as e:
        raise TransportError(f"Timeout fetching user profile: {e}") from e
    except httpx.RequestError as e:
        raise TransportError(f"Network error fetching user profile: {e}") from e
    finally:
        if should_close:
            await http.aclose()
