"""WebAuthn (passkey) event handlers.

Each handler is a POST endpoint serving both halves of a ceremony:

    {"userName": ...}                               -> ceremony options
    {"verify": true, "attemptId": ..., "response": PublicKeyCredentialJSON}
                                                    -> verification, on_success

Challenges are stored between the two requests under the ``attemptId``
returned with the options.
"""

import logging
import secrets
from typing import Any, Awaitable, Callable

from fastapi import Request, Response
from fastapi.responses import JSONResponse

from ..errors import AuthError, VerificationError
from ..events import ErrorCallback, call, route_error, to_response
from ..state import DEFAULT_TTL, MemoryStateStore
from .types import WebAuthnAuthenticationResult, WebAuthnCredential, WebAuthnRegistrationResult
from .verify import (
    SUPPORTED_ALGORITHMS,
    b64url_encode,
    generate_challenge,
    response_field,
    verify_authentication_response,
    verify_client_data,
    verify_registration_response,
)

logger = logging.getLogger(__name__)

Handler = Callable[[Request], Awaitable[Response]]
StoreChallenge = Callable[[Request, str, str], Any]
GetChallenge = Callable[[Request, str], Any]


class ChallengeStore:
    """Binds the caller's challenge callbacks, or an in-memory fallback."""

    def __init__(self, store_challenge: StoreChallenge | None, get_challenge: GetChallenge | None):
        if (store_challenge is None) != (get_challenge is None):
            raise ValueError("store_challenge and get_challenge must be provided together")
        self._store_challenge = store_challenge
        self._get_challenge = get_challenge
        self._memory = MemoryStateStore(ttl=DEFAULT_TTL) if store_challenge is None else None

    async def save(self, request: Request, challenge: str, attempt_id: str) -> None:
        if self._memory is not None:
            await self._memory.save(attempt_id, challenge)
        else:
            await call(self._store_challenge, request, challenge, attempt_id)

    async def get(self, request: Request, attempt_id: Any) -> str:
        """Return the challenge for an attempt.

        Raises:
            VerificationError: If the attempt is unknown or has expired
        """
        if not isinstance(attempt_id, str) or not attempt_id:
            raise VerificationError("Missing attemptId")
        if self._memory is not None:
            challenge = await self._memory.consume(attempt_id)
        else:
            challenge = await call(self._get_challenge, request, attempt_id)
        if not challenge:
            raise VerificationError("Challenge not found or expired")
        return challenge


def _rp_id(request: Request, rp_id: str | None) -> str:
    return rp_id or request.url.hostname or ""


def _origin(request: Request, origin: str | list[str] | None) -> str | list[str]:
    return origin or f"{request.url.scheme}://{request.url.netloc}"


async def _read_body(request: Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except ValueError as e:
        raise VerificationError("Request body must be JSON") from e
    if not isinstance(body, dict):
        raise VerificationError("Request body must be a JSON object")
    return body


def _credential_response(body: dict[str, Any]) -> dict[str, Any]:
    response = body.get("response")
    if not isinstance(response, dict) or not isinstance(response.get("id"), str):
        raise VerificationError("Request body is missing the credential response")
    return response


def _descriptor(credential: WebAuthnCredential | dict[str, Any]) -> dict[str, Any]:
    """PublicKeyCredentialDescriptor for allow/exclude lists."""
    if isinstance(credential, dict):
        credential = WebAuthnCredential.from_dict(credential)
    descriptor: dict[str, Any] = {"type": "public-key", "id": credential.id}
    if credential.transports:
        descriptor["transports"] = list(credential.transports)
    return descriptor


async def _descriptors(callback: Callable[..., Any] | None, *args: Any) -> list[dict[str, Any]]:
    if callback is None:
        return []
    credentials = await call(callback, *args)
    return [_descriptor(credential) for credential in credentials or []]


async def _extra_options(get_options: Callable[..., Any] | None, request: Request, body: dict[str, Any]) -> dict[str, Any]:
    if get_options is None:
        return {}
    return dict(await call(get_options, request, body) or {})


def define_webauthn_authenticate_event_handler(
    *,
    get_credential: Callable[[Request, str], Any],
    on_success: Callable[[Request, WebAuthnAuthenticationResult], Any],
    store_challenge: StoreChallenge | None = None,
    get_challenge: GetChallenge | None = None,
    allow_credentials: Callable[[Request, str | None], Any] | None = None,
    get_options: Callable[[Request, dict[str, Any]], Any] | None = None,
    on_error: ErrorCallback | None = None,
    rp_id: str | None = None,
    origin: str | list[str] | None = None,
    user_verification: str = "preferred",
    timeout: int = 60000,
) -> Handler:
    """Build an endpoint that signs users in with a passkey.

    Args:
        get_credential: ``(request, credential_id)`` -> stored credential
            (``WebAuthnCredential`` or dict) or None. Only called once the
            client data has verified.
        on_success: ``(request, WebAuthnAuthenticationResult)``; persist
            ``authentication_info.new_counter`` here.
        store_challenge: ``(request, challenge, attempt_id)``
        get_challenge: ``(request, attempt_id)`` -> challenge
        allow_credentials: ``(request, user_name)`` -> credentials to list
        get_options: ``(request, body)`` -> option overrides
        on_error: ``(request, AuthError)``; without it errors are raised
        rp_id: Relying party ID (defaults to the request host)
        origin: Expected origin(s) (defaults to the request origin)
        user_verification: "required", "preferred" or "discouraged"
        timeout: Ceremony timeout in milliseconds

    Raises:
        ValueError: If only one of ``store_challenge`` / ``get_challenge`` is given
    """
    challenges = ChallengeStore(store_challenge, get_challenge)

    async def options(request: Request, body: dict[str, Any]) -> Response:
        challenge = generate_challenge()
        attempt_id = secrets.token_hex(16)
        result: dict[str, Any] = {
            "challenge": challenge,
            "rpId": _rp_id(request, rp_id),
            "timeout": timeout,
            "userVerification": user_verification,
            "allowCredentials": await _descriptors(allow_credentials, request, body.get("userName")),
        }
        result.update(await _extra_options(get_options, request, body))
        result["challenge"] = challenge
        result["attemptId"] = attempt_id

        await challenges.save(request, challenge, attempt_id)
        logger.debug(f"Issued authentication options for attempt {attempt_id}")
        return JSONResponse(result)

    async def verify(request: Request, body: dict[str, Any]) -> Response:
        response = _credential_response(body)
        expected_challenge = await challenges.get(request, body.get("attemptId"))
        expected_origin = _origin(request, origin)

        verify_client_data(
            response_field(response, "clientDataJSON"),
            expected_type="webauthn.get",
            expected_challenge=expected_challenge,
            expected_origin=expected_origin,
        )

        stored = await call(get_credential, request, response["id"])
        if not stored:
            raise VerificationError("Credential not found")
        credential = stored if isinstance(stored, WebAuthnCredential) else WebAuthnCredential.from_dict(stored)

        info = verify_authentication_response(
            response,
            credential=credential,
            expected_challenge=expected_challenge,
            expected_origin=expected_origin,
            expected_rp_id=_rp_id(request, rp_id),
            require_user_verification=user_verification == "required",
        )
        result = WebAuthnAuthenticationResult(credential=credential, authentication_info=info)
        value = await call(on_success, request, result)
        return to_response(value, default=lambda: JSONResponse({"verified": True}))

    async def webauthn_authenticate_event_handler(request: Request) -> Response:
        try:
            body = await _read_body(request)
            if body.get("verify"):
                return await verify(request, body)
            return await options(request, body)
        except AuthError as e:
            return await route_error(request, e, on_error)

    return webauthn_authenticate_event_handler


def define_webauthn_register_event_handler(
    *,
    on_success: Callable[[Request, WebAuthnRegistrationResult], Any],
    store_challenge: StoreChallenge | None = None,
    get_challenge: GetChallenge | None = None,
    validate_user: Callable[[Request, dict[str, Any]], Any] | None = None,
    exclude_credentials: Callable[[Request, str], Any] | None = None,
    get_options: Callable[[Request, dict[str, Any]], Any] | None = None,
    on_error: ErrorCallback | None = None,
    rp_id: str | None = None,
    rp_name: str | None = None,
    origin: str | list[str] | None = None,
    user_verification: str = "preferred",
    resident_key: str = "preferred",
    timeout: int = 60000,
) -> Handler:
    """Build an endpoint that registers a new passkey.

    Args:
        on_success: ``(request, WebAuthnRegistrationResult)``; store the
            new credential here.
        store_challenge: ``(request, challenge, attempt_id)``
        get_challenge: ``(request, attempt_id)`` -> challenge
        validate_user: ``(request, user)`` -> normalized user dict; raise
            an ``AuthError`` to reject
        exclude_credentials: ``(request, user_name)`` -> credentials the
            user already has
        get_options: ``(request, body)`` -> option overrides
        on_error: ``(request, AuthError)``; without it errors are raised
        rp_id: Relying party ID (defaults to the request host)
        rp_name: Relying party display name (defaults to ``rp_id``)
        origin: Expected origin(s) (defaults to the request origin)

    Raises:
        ValueError: If only one of ``store_challenge`` / ``get_challenge`` is given
    """
    challenges = ChallengeStore(store_challenge, get_challenge)

    async def resolve_user(request: Request, body: dict[str, Any]) -> dict[str, Any]:
        user = body.get("user")
        if not isinstance(user, dict) or not user.get("userName"):
            raise VerificationError("Request body is missing user.userName")
        if validate_user is not None:
            validated = await call(validate_user, request, user)
            if validated is not None:
                user = dict(validated)
        return user

    async def options(request: Request, body: dict[str, Any]) -> Response:
        user = await resolve_user(request, body)
        relying_party = _rp_id(request, rp_id)
        challenge = generate_challenge()
        attempt_id = secrets.token_hex(16)

        result: dict[str, Any] = {
            "rp": {"name": rp_name or relying_party, "id": relying_party},
            "user": {
                "id": b64url_encode(secrets.token_bytes(32)),
                "name": user["userName"],
                "displayName": user.get("displayName") or user["userName"],
            },
            "challenge": challenge,
            "pubKeyCredParams": [{"type": "public-key", "alg": alg} for alg in SUPPORTED_ALGORITHMS],
            "timeout": timeout,
            "attestation": "none",
            "excludeCredentials": await _descriptors(exclude_credentials, request, user["userName"]),
            "authenticatorSelection": {
                "residentKey": resident_key,
                "userVerification": user_verification,
            },
        }
        result.update(await _extra_options(get_options, request, body))
        result["challenge"] = challenge
        result["attemptId"] = attempt_id

        await challenges.save(request, challenge, attempt_id)
        logger.debug(f"Issued registration options for attempt {attempt_id}")
        return JSONResponse(result)

    async def verify(request: Request, body: dict[str, Any]) -> Response:
        user = await resolve_user(request, body)
        response = _credential_response(body)
        expected_challenge = await challenges.get(request, body.get("attemptId"))

        info = verify_registration_response(
            response,
            expected_challenge=expected_challenge,
            expected_origin=_origin(request, origin),
            expected_rp_id=_rp_id(request, rp_id),
            require_user_verification=user_verification == "required",
        )
        credential = WebAuthnCredential(
            id=info.credential_id,
            public_key=info.public_key,
            user_id=user.get("id") or user["userName"],
            counter=info.counter,
            transports=list(response["response"].get("transports") or []),
            algorithm=info.algorithm,
            backed_up=info.backed_up,
        )
        result = WebAuthnRegistrationResult(user=user, credential=credential, registration_info=info)
        value = await call(on_success, request, result)
        return to_response(value, default=lambda: JSONResponse({"verified": True}))

    async def webauthn_register_event_handler(request: Request) -> Response:
        try:
            body = await _read_body(request)
            if body.get("verify"):
                return await verify(request, body)
            return await options(request, body)
        except AuthError as e:
            return await route_error(request, e, on_error)

    return webauthn_register_event_handler
