"""WebAuthn data structures."""

from dataclasses import dataclass, field
from typing import Any


@dataclass
class WebAuthnCredential:
    """A registered passkey, owned and persisted by the application.

    Attributes:
        id: Credential ID (base64url, no padding)
        public_key: SubjectPublicKeyInfo DER of the credential key (base64url)
        user_id: Application reference to the owning user
        counter: Last seen signature counter
        transports: Authenticator transports reported at registration
        algorithm: COSE algorithm identifier (-7 ES256, -8 EdDSA, -257 RS256)
        backed_up: Whether the credential is synced (backup state flag)
    """

    id: str
    public_key: str
    user_id: str | None = None
    counter: int = 0
    transports: list[str] = field(default_factory=list)
    algorithm: int | None = None
    backed_up: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "public_key": self.public_key,
            "user_id": self.user_id,
            "counter": self.counter,
            "transports": list(self.transports),
            "algorithm": self.algorithm,
            "backed_up": self.backed_up,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WebAuthnCredential":
        return cls(
            id=data["id"],
            public_key=data["public_key"],
            user_id=data.get("user_id"),
            counter=data.get("counter", 0),
            transports=list(data.get("transports") or []),
            algorithm=data.get("algorithm"),
            backed_up=data.get("backed_up", False),
        )


@dataclass
class AuthenticatorData:
    """Parsed authenticator data.

    Attributes:
        rp_id_hash: SHA-256 of the relying party ID
        flags: Raw flags byte
        counter: Signature counter
        aaguid: Authenticator model ID (registration only)
        credential_id: Attested credential ID (registration only)
    """

    rp_id_hash: bytes
    flags: int
    counter: int
    aaguid: bytes | None = None
    credential_id: bytes | None = None

    @property
    def user_present(self) -> bool:
        return bool(self.flags & 0x01)

    @property
    def user_verified(self) -> bool:
        return bool(self.flags & 0x04)

    @property
    def backup_eligible(self) -> bool:
        return bool(self.flags & 0x08)

    @property
    def backed_up(self) -> bool:
        return bool(self.flags & 0x10)

    @property
    def attested_credential_data(self) -> bool:
        return bool(self.flags & 0x40)


@dataclass
class AuthenticationInfo:
    """Outcome of a verified assertion."""

    credential_id: str
    new_counter: int
    user_verified: bool
    origin: str
    rp_id: str
    backed_up: bool = False


@dataclass
class RegistrationInfo:
    """Outcome of a verified registration."""

    credential_id: str
    public_key: str
    algorithm: int
    counter: int
    user_verified: bool
    origin: str
    rp_id: str
    aaguid: str | None = None
    backup_eligible: bool = False
    backed_up: bool = False


@dataclass
class WebAuthnAuthenticationResult:
    """Passed to the authentication handler's ``on_success``."""

    credential: WebAuthnCredential
    authentication_info: AuthenticationInfo


@dataclass
class WebAuthnRegistrationResult:
    """Passed to the registration handler's ``on_success``.

    ``credential`` is new; the application stores it.
    """

    user: dict[str, Any]
    credential: WebAuthnCredential
    registration_info: RegistrationInfo
