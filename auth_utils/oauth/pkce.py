"""PKCE (Proof Key for Code Exchange) helpers per RFC 7636.

Providers that require PKCE, or configs with ``pkce`` enabled, send an S256
code challenge with the authorization redirect and the matching verifier
with the token request. The verifier travels between the two requests inside
the pending authorization saved under the ``state`` nonce.
"""

import base64
import hashlib
import secrets
from dataclasses import dataclass

MIN_VERIFIER_LENGTH = 43
MAX_VERIFIER_LENGTH = 128


@dataclass(frozen=True)
class PKCEPair:
    """Code verifier (kept server-side) and its S256 challenge (sent to the provider)."""

    verifier: str
    challenge: str
    method: str = "S256"


def generate_code_verifier(nbytes: int = 48) -> str:
    """Generate a random code verifier.

    ``token_urlsafe`` only emits unreserved URI characters, so the result is
    a valid RFC 7636 verifier as long as its length is in range.

    Args:
        nbytes: Random bytes to encode (48 bytes -> 64 characters)

    Raises:
        ValueError: If the encoded verifier would be too short or too long
    """
    verifier = secrets.token_urlsafe(nbytes)
    if not MIN_VERIFIER_LENGTH <= len(verifier) <= MAX_VERIFIER_LENGTH:
        raise ValueError(
            f"Code verifier length must be between {MIN_VERIFIER_LENGTH} "
            f"and {MAX_VERIFIER_LENGTH}, got {len(verifier)}"
        )
    return verifier


def generate_code_challenge(verifier: str) -> str:
    """Compute ``BASE64URL(SHA256(verifier))`` without padding."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


def generate_pkce_pair() -> PKCEPair:
    """Generate a verifier and its S256 challenge."""
    verifier = generate_code_verifier()
    return PKCEPair(verifier=verifier, challenge=generate_code_challenge(verifier))
