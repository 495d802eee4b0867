"""WebAuthn ceremony verification.

Registration uses ``attestation: "none"``: the attestation statement is not
checked, and the credential public key is read from the SubjectPublicKeyInfo
that browsers expose as ``response.publicKey``. Authentication verifies the
assertion signature over ``authenticatorData || SHA-256(clientDataJSON)``.

See https://www.w3.org/TR/webauthn-3/#sctn-verifying-assertion
"""

import base64
import binascii
import hashlib
import hmac
import json
import logging
import secrets
import struct
from collections.abc import Iterable
from typing import Any

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, padding, rsa

from ..errors import VerificationError
from .types import AuthenticationInfo, AuthenticatorData, RegistrationInfo, WebAuthnCredential

logger = logging.getLogger(__name__)

# COSE algorithm identifiers
COSE_EDDSA = -8
COSE_ES256 = -7
COSE_RS256 = -257
SUPPORTED_ALGORITHMS = (COSE_EDDSA, COSE_ES256, COSE_RS256)

_RP_ID_HASH_LENGTH = 32
_HEADER_LENGTH = 37  # rpIdHash + flags + counter
_AAGUID_LENGTH = 16

PublicKey = ec.EllipticCurvePublicKey | rsa.RSAPublicKey | ed25519.Ed25519PublicKey


def b64url_encode(data: bytes) -> str:
    """Base64url-encode without padding."""
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def b64url_decode(value: str, name: str = "value") -> bytes:
    """Decode base64url with or without padding.

    Raises:
        VerificationError: If ``value`` is not valid base64url
    """
    if not isinstance(value, str):
        raise VerificationError(f"{name} must be a base64url string")
    try:
        return base64.urlsafe_b64decode(value + "=" * (-len(value) % 4))
    except (binascii.Error, ValueError) as e:
        raise VerificationError(f"{name} is not valid base64url") from e


def generate_challenge(nbytes: int = 32) -> str:
    """Generate a random ceremony challenge (base64url)."""
    return b64url_encode(secrets.token_bytes(nbytes))


def parse_client_data(client_data_json: bytes) -> dict[str, Any]:
    try:
        data = json.loads(client_data_json)
    except (ValueError, UnicodeDecodeError) as e:
        raise VerificationError("clientDataJSON is not valid JSON") from e
    if not isinstance(data, dict):
        raise VerificationError("clientDataJSON is not a JSON object")
    return data


def verify_client_data(
    client_data_json: bytes,
    *,
    expected_type: str,
    expected_challenge: str,
    expected_origin: str | Iterable[str],
) -> dict[str, Any]:
    """Check the ceremony type, challenge and origin in the client data.

    Returns:
        The parsed client data

    Raises:
        VerificationError: On any mismatch
    """
    client_data = parse_client_data(client_data_json)

    if client_data.get("type") != expected_type:
        raise VerificationError(
            f"Unexpected client data type {client_data.get('type')!r}, expected {expected_type!r}"
        )

    challenge = client_data.get("challenge")
    if not isinstance(challenge, str) or not hmac.compare_digest(
        challenge.rstrip("="), expected_challenge.rstrip("=")
    ):
        raise VerificationError("Challenge mismatch")

    origins = [expected_origin] if isinstance(expected_origin, str) else list(expected_origin)
    if client_data.get("origin") not in origins:
        raise VerificationError(f"Unexpected origin {client_data.get('origin')!r}")

    return client_data


def parse_authenticator_data(data: bytes) -> AuthenticatorData:
    """Parse the binary authenticator data.

    Layout: rpIdHash (32) | flags (1) | signCount (4, big-endian) and, when
    the AT flag is set, aaguid (16) | credentialIdLength (2) | credentialId.

    Raises:
        VerificationError: If the data is truncated
    """
    if len(data) < _HEADER_LENGTH:
        raise VerificationError("Authenticator data is too short")

    rp_id_hash = data[:_RP_ID_HASH_LENGTH]
    flags, counter = struct.unpack(">BI", data[_RP_ID_HASH_LENGTH:_HEADER_LENGTH])
    parsed = AuthenticatorData(rp_id_hash=rp_id_hash, flags=flags, counter=counter)

    if parsed.attested_credential_data:
        offset = _HEADER_LENGTH
        if len(data) < offset + _AAGUID_LENGTH + 2:
            raise VerificationError("Attested credential data is truncated")
        parsed.aaguid = data[offset:offset + _AAGUID_LENGTH]
        offset += _AAGUID_LENGTH
        (length,) = struct.unpack(">H", data[offset:offset + 2])
        offset += 2
        if len(data) < offset + length:
            raise VerificationError("Credential ID is truncated")
        parsed.credential_id = data[offset:offset + length]

    return parsed


def load_public_key(encoded: str) -> PublicKey:
    """Load a base64url SubjectPublicKeyInfo DER public key.

    Raises:
        VerificationError: If the key cannot be loaded or its type is unsupported
    """
    der = b64url_decode(encoded, "public key")
    try:
        key = serialization.load_der_public_key(der)
    except (ValueError, UnsupportedAlgorithm) as e:
        raise VerificationError("Public key could not be loaded") from e
    if not isinstance(key, (ec.EllipticCurvePublicKey, rsa.RSAPublicKey, ed25519.Ed25519PublicKey)):
        raise VerificationError(f"Unsupported public key type {type(key).__name__}")
    return key


def key_algorithm(key: PublicKey) -> int:
    """COSE algorithm identifier for a loaded public key."""
    if isinstance(key, ed25519.Ed25519PublicKey):
        return COSE_EDDSA
    if isinstance(key, ec.EllipticCurvePublicKey):
        if not isinstance(key.curve, ec.SECP256R1):
            raise VerificationError(f"Unsupported elliptic curve {key.curve.name}")
        return COSE_ES256
    return COSE_RS256


def verify_signature(key: PublicKey, signature: bytes, data: bytes) -> None:
    """Verify a signature with ES256, RS256 or EdDSA depending on the key.

    Raises:
        VerificationError: If the signature does not verify
    """
    try:
        if isinstance(key, ed25519.Ed25519PublicKey):
            key.verify(signature, data)
        elif isinstance(key, ec.EllipticCurvePublicKey):
            key.verify(signature, data, ec.ECDSA(hashes.SHA256()))
        else:
            key.verify(signature, data, padding.PKCS1v15(), hashes.SHA256())
    except InvalidSignature as e:
        raise VerificationError("Signature verification failed") from e


def _rp_id_matches(auth_data: AuthenticatorData, rp_id: str) -> bool:
    expected = hashlib.sha256(rp_id.encode("utf-8")).digest()
    return hmac.compare_digest(auth_data.rp_id_hash, expected)


def response_field(response: dict[str, Any], name: str) -> bytes:
    payload = response.get("response")
    if not isinstance(payload, dict) or not payload.get(name):
        raise VerificationError(f"Credential response is missing {name}")
    return b64url_decode(payload[name], name)


def verify_authentication_response(
    response: dict[str, Any],
    *,
    credential: WebAuthnCredential,
    expected_challenge: str,
    expected_origin: str | Iterable[str],
    expected_rp_id: str,
    require_user_verification: bool = False,
) -> AuthenticationInfo:
    """Verify an assertion against a stored credential.

    Args:
        response: The browser's ``PublicKeyCredential`` JSON
        credential: The stored credential matching ``response["id"]``
        expected_challenge: Challenge issued for this attempt
        expected_origin: Allowed origin(s)
        expected_rp_id: Relying party ID
        require_user_verification: Require the UV flag

    Returns:
        AuthenticationInfo with the new signature counter

    Raises:
        VerificationError: If any check fails
    """
    client_data_json = response_field(response, "clientDataJSON")
    client_data = verify_client_data(
        client_data_json,
        expected_type="webauthn.get",
        expected_challenge=expected_challenge,
        expected_origin=expected_origin,
    )

    if response.get("id") != credential.id:
        raise VerificationError("Credential ID does not match the stored credential")

    raw_auth_data = response_field(response, "authenticatorData")
    auth_data = parse_authenticator_data(raw_auth_data)

    if not _rp_id_matches(auth_data, expected_rp_id):
        raise VerificationError("RP ID hash mismatch")
    if not auth_data.user_present:
        raise VerificationError("User was not present")
    if require_user_verification and not auth_data.user_verified:
        raise VerificationError("User verification was required but not performed")

    signature = response_field(response, "signature")
    key = load_public_key(credential.public_key)
    verify_signature(key, signature, raw_auth_data + hashlib.sha256(client_data_json).digest())

    if (auth_data.counter or credential.counter) and auth_data.counter <= credential.counter:
        raise VerificationError(
            f"Signature counter did not increase ({auth_data.counter} <= {credential.counter}); "
            "the authenticator may be cloned"
        )

    logger.debug(f"Verified assertion for credential {credential.id}")
    return AuthenticationInfo(
        credential_id=credential.id,
        new_counter=auth_data.counter,
        user_verified=auth_data.user_verified,
        origin=client_data["origin"],
        rp_id=expected_rp_id,
        backed_up=auth_data.backed_up,
    )


def verify_registration_response(
    response: dict[str, Any],
    *,
    expected_challenge: str,
    expected_origin: str | Iterable[str],
    expected_rp_id: str,
    require_user_verification: bool = False,
    supported_algorithms: Iterable[int] = SUPPORTED_ALGORITHMS,
) -> RegistrationInfo:
    """Verify a registration response with ``attestation: "none"``.

    Returns:
        RegistrationInfo describing the new credential

    Raises:
        VerificationError: If any check fails
    """
    client_data_json = response_field(response, "clientDataJSON")
    client_data = verify_client_data(
        client_data_json,
        expected_type="webauthn.create",
        expected_challenge=expected_challenge,
        expected_origin=expected_origin,
    )

    auth_data = parse_authenticator_data(response_field(response, "authenticatorData"))

    if not _rp_id_matches(auth_data, expected_rp_id):
        raise VerificationError("RP ID hash mismatch")
    if not auth_data.user_present:
        raise VerificationError("User was not present")
    if require_user_verification and not auth_data.user_verified:
        raise VerificationError("User verification was required but not performed")
    if auth_data.credential_id is None:
        raise VerificationError("Authenticator data has no attested credential")

    credential_id = response.get("id")
    if not isinstance(credential_id, str) or b64url_decode(credential_id, "id") != auth_data.credential_id:
        raise VerificationError("Credential ID does not match authenticator data")

    payload = response["response"]
    public_key = payload.get("publicKey")
    if not public_key:
        raise VerificationError("Credential response is missing publicKey")
    key = load_public_key(public_key)
    algorithm = key_algorithm(key)

    declared = payload.get("publicKeyAlgorithm")
    if declared is not None and declared != algorithm:
        raise VerificationError(f"Public key does not match declared algorithm {declared}")
    if algorithm not in tuple(supported_algorithms):
        raise VerificationError(f"Unsupported algorithm {algorithm}")

    logger.debug(f"Verified registration of credential {credential_id}")
    return RegistrationInfo(
        credential_id=b64url_encode(auth_data.credential_id),
        public_key=b64url_encode(b64url_decode(public_key, "publicKey")),
        algorithm=algorithm,
        counter=auth_data.counter,
        user_verified=auth_data.user_verified,
        origin=client_data["origin"],
        rp_id=expected_rp_id,
        aaguid=auth_data.aaguid.hex() if auth_data.aaguid else None,
        backup_eligible=auth_data.backup_eligible,
        backed_up=auth_data.backed_up,
    )
