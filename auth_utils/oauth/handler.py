"""OAuth authorization-code event handlers.

One state machine serves every provider:

    GET /auth/okta                  -> 302 to the provider (phase 1)
    GET /auth/okta?code=...&state=  -> token exchange, profile fetch,
                                       on_success (phase 2)

Usage:
    app = FastAPI()
    install_error_handler(app)

    async def login(request, result):
        request.session["user"] = result.user

    app.add_api_route("/auth/okta", define_oauth_okta_event_handler(on_success=login))
"""

import logging
import time
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass
from typing import Any, Awaitable, Callable

import httpx
from fastapi import Request, Response
from fastapi.responses import RedirectResponse

from ..config import DEFAULT_STATE_TTL, ProviderConfig, missing_configuration_error, resolve_provider_config
from ..errors import AuthError, OAuthProtocolError, ProfileFetchError, StateError
from ..events import ErrorCallback, call, route_error, to_response
from ..state import MemoryStateStore, StateStore, generate_state
from .discovery import DiscoveryCache, ProviderMetadata
from .flow import build_authorization_params, build_authorization_url, exchange_code_for_tokens, fetch_user_profile
from .pkce import generate_pkce_pair
from .providers import OAuthProvider, get_provider
from .tokens import TokenResponse

logger = logging.getLogger(__name__)

Handler = Callable[[Request], Awaitable[Response]]


@dataclass
class PendingAuthorization:
    """What phase 1 remembers for phase 2, saved under the ``state`` nonce."""

    provider: str
    created_at: float
    return_to: str = ""
    code_verifier: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PendingAuthorization":
        return cls(
            provider=data["provider"],
            created_at=data.get("created_at", 0.0),
            return_to=data.get("return_to") or "",
            code_verifier=data.get("code_verifier"),
        )


@dataclass
class OAuthResult:
    """Passed to ``on_success`` after a completed login.

    Attributes:
        provider: Provider name (e.g. "okta")
        tokens: Tokens from the exchange; never stored by this module
        user: The user-info object, with ``return_to`` added
    """

    provider: str
    tokens: TokenResponse
    user: dict[str, Any]


SuccessCallback = Callable[[Request, OAuthResult], Any]


def get_oauth_redirect_url(request: Request) -> str:
    """The current URL without its query string, used as ``redirect_uri``."""
    return str(request.url.replace(query=""))


class OAuthEventHandler:
    """Runs the authorization-code flow for one provider.

    Each instance owns a discovery cache and, unless one is injected, an
    in-memory state store.
    """

    def __init__(
        self,
        provider: OAuthProvider,
        *,
        config: Mapping[str, Any] | ProviderConfig | None = None,
        on_success: SuccessCallback,
        on_error: ErrorCallback | None = None,
        state_store: StateStore | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
        environ: Mapping[str, str] | None = None,
    ):
        if isinstance(config, ProviderConfig):
            config = config.overrides()
        self.provider = provider
        self.config = dict(config or {})
        self.on_success = on_success
        self.on_error = on_error
        self.state_store: StateStore = (
            state_store if state_store is not None else MemoryStateStore(ttl=DEFAULT_STATE_TTL)
        )
        self.http_client = http_client
        self.timeout = timeout
        self.environ = environ
        self.discovery = DiscoveryCache()

    def resolve_config(self) -> ProviderConfig:
        """Merge call-site, environment and default configuration.

        Raises:
            ConfigurationError: If a required field is missing
        """
        config = resolve_provider_config(self.provider.name, self.config, environ=self.environ)
        missing = config.missing(self.provider.required)
        if missing:
            raise missing_configuration_error(self.provider.name, missing)
        return config

    @asynccontextmanager
    async def _http(self) -> AsyncIterator[httpx.AsyncClient]:
        """Yield the injected client, or a client scoped to this request."""
        if self.http_client is not None:
            yield self.http_client
            return
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            yield client

    async def _metadata(self, config: ProviderConfig, http: httpx.AsyncClient) -> ProviderMetadata:
        return await self.provider.resolve_metadata(config, self.discovery, http, self.timeout)

    async def __call__(self, request: Request) -> Response:
        try:
            config = self.resolve_config()
            query = request.query_params
            if not query.get("code") and "error" not in query:
                return await self._authorize(request, config)
            return await self._callback(request, config)
        except AuthError as e:
            if e.provider is None:
                e.provider = self.provider.name
            return await route_error(request, e, self.on_error)

    async def _authorize(self, request: Request, config: ProviderConfig) -> Response:
        redirect_uri = config.redirect_url or get_oauth_redirect_url(request)
        state = generate_state()
        pending = PendingAuthorization(
            provider=self.provider.name,
            created_at=time.time(),
            return_to=request.query_params.get("return_to", ""),
        )

        code_challenge = None
        if self.provider.use_pkce(config):
            pair = generate_pkce_pair()
            pending.code_verifier = pair.verifier
            code_challenge = pair.challenge

        async with self._http() as http:
            metadata = await self._metadata(config, http)

        await self.state_store.save(state, pending.to_dict(), ttl=config.state_ttl)

        params = build_authorization_params(self.provider, config, redirect_uri, state, code_challenge)
        url = build_authorization_url(metadata.authorization_endpoint, params)
        logger.debug(f"Redirecting to {self.provider.display_name} authorization endpoint")
        return RedirectResponse(url, status_code=302)

    async def _consume_state(self, state: str | None, config: ProviderConfig) -> PendingAuthorization | None:
        stored = await self.state_store.consume(state) if state else None
        if stored is not None:
            pending = PendingAuthorization.from_dict(stored)
            if pending.provider == self.provider.name:
                return pending
            logger.warning(f"Callback for {self.provider.name} carried a state issued for {pending.provider}")

        if config.verify_state:
            raise StateError(
                f"{self.provider.display_name} login failed: unknown or expired state",
                provider=self.provider.name,
            )
        logger.warning(f"Callback for {self.provider.name} carried an unknown or expired state")
        return None

    async def _callback(self, request: Request, config: ProviderConfig) -> Response:
        query = request.query_params
        state = query.get("state")
        pending = await self._consume_state(state, config)

        if "error" in query and not query.get("code"):
            payload = {
                key: query[key] for key in ("error", "error_description", "error_uri") if key in query
            }
            raise OAuthProtocolError.from_payload(self.provider.name, self.provider.display_name, payload)

        redirect_uri = config.redirect_url or get_oauth_redirect_url(request)

        async with self._http() as http:
            metadata = await self._metadata(config, http)

            payload = await exchange_code_for_tokens(
                metadata.token_endpoint,
                client_id=config.client_id or "",
                client_secret=config.client_secret,
                code=query["code"],
                redirect_uri=redirect_uri,
                state=state,
                code_verifier=pending.code_verifier if pending else None,
                headers=self.provider.token_headers,
                http_client=http,
                timeout=self.timeout,
            )
            tokens = TokenResponse.from_dict(payload)
            if tokens.is_error():
                raise OAuthProtocolError.from_payload(self.provider.name, self.provider.display_name, payload)
            if not tokens.access_token:
                raise OAuthProtocolError(
                    f"{self.provider.display_name} login failed: no access token in response",
                    provider=self.provider.name,
                    data=tokens.safe_dict(),
                )

            user = await self._fetch_user(metadata, tokens, http)

        return_to = query.get("return_to") or (pending.return_to if pending else "") or ""
        user["return_to"] = return_to

        result = OAuthResult(provider=self.provider.name, tokens=tokens, user=user)
        logger.debug(f"{self.provider.display_name} login completed")
        value = await call(self.on_success, request, result)
        return to_response(value, default=lambda: RedirectResponse(return_to or "/", status_code=302))

    async def _fetch_user(
        self,
        metadata: ProviderMetadata,
        tokens: TokenResponse,
        http: httpx.AsyncClient,
    ) -> dict[str, Any]:
        message = f"Could not get {self.provider.display_name} user"
        try:
            user = await fetch_user_profile(metadata.userinfo_endpoint, tokens, http, self.timeout)
        except ProfileFetchError as e:
            raise ProfileFetchError(
                message,
                provider=self.provider.name,
                data={**(e.data or {}), "tokens": tokens.safe_dict()},
            ) from e
        if not user:
            raise ProfileFetchError(message, provider=self.provider.name, data={"tokens": tokens.safe_dict()})
        return user


def define_oauth_event_handler(
    provider: str | OAuthProvider,
    *,
    config: Mapping[str, Any] | ProviderConfig | None = None,
    on_success: SuccessCallback,
    on_error: ErrorCallback | None = None,
    state_store: StateStore | None = None,
    http_client: httpx.AsyncClient | None = None,
    timeout: float = 30.0,
    environ: Mapping[str, str] | None = None,
) -> Handler:
    """Build an endpoint that logs users in with an OAuth provider.

    Args:
        provider: Provider name or record
        config: Call-site configuration; overrides environment variables
        on_success: Called with ``(request, OAuthResult)``; may be async.
            A returned ``Response`` is sent as is, ``None`` redirects to
            ``return_to`` (or "/"), anything else is sent as JSON.
        on_error: Called with ``(request, AuthError)``; may be async.
            Without it, errors are raised to the host app.
        state_store: Storage for pending authorizations
        http_client: Shared client for outbound requests
        timeout: Outbound request timeout in seconds
        environ: Environment mapping (defaults to ``os.environ``)

    Returns:
        ``async def handler(request) -> Response``
    """
    record = get_provider(provider) if isinstance(provider, str) else provider
    handler = OAuthEventHandler(
        record,
        config=config,
        on_success=on_success,
        on_error=on_error,
        state_store=state_store,
        http_client=http_client,
        timeout=timeout,
        environ=environ,
    )

    async def oauth_event_handler(request: Request) -> Response:
        return await handler(request)

    oauth_event_handler.__name__ = f"oauth_{record.name}_event_handler"
    oauth_event_handler.handler = handler  # type: ignore[attr-defined]
    return oauth_event_handler


def define_oauth_okta_event_handler(**kwargs: Any) -> Handler:
    """Okta login handler. See ``define_oauth_event_handler``."""
    return define_oauth_event_handler("okta", **kwargs)


def define_oauth_auth0_event_handler(**kwargs: Any) -> Handler:
    return define_oauth_event_handler("auth0", **kwargs)


def define_oauth_keycloak_event_handler(**kwargs: Any) -> Handler:
    return define_oauth_event_handler("keycloak", **kwargs)


def define_oauth_google_event_handler(**kwargs: Any) -> Handler:
    return define_oauth_event_handler("google", **kwargs)


def define_oauth_github_event_handler(**kwargs: Any) -> Handler:
    return define_oauth_event_handler("github", **kwargs)
