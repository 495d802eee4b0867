"""WebAuthn (passkey) registration and authentication handlers."""

from .handlers import (
    ChallengeStore,
    define_webauthn_authenticate_event_handler,
    define_webauthn_register_event_handler,
)
from .types import (
    AuthenticationInfo,
    AuthenticatorData,
    RegistrationInfo,
    WebAuthnAuthenticationResult,
    WebAuthnCredential,
    WebAuthnRegistrationResult,
)
from .verify import (
    generate_challenge,
    parse_authenticator_data,
    verify_authentication_response,
    verify_client_data,
    verify_registration_response,
    verify_signature,
)

__all__ = [
    # Handlers
    "define_webauthn_authenticate_event_handler",
    "define_webauthn_register_event_handler",
    "ChallengeStore",
    # Types
    "WebAuthnCredential",
    "AuthenticatorData",
    "AuthenticationInfo",
    "RegistrationInfo",
    "WebAuthnAuthenticationResult",
    "WebAuthnRegistrationResult",
    # Verification
    "generate_challenge",
    "parse_authenticator_data",
    "verify_authentication_response",
    "verify_client_data",
    "verify_registration_response",
    "verify_signature",
]
