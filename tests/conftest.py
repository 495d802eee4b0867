"""Shared fixtures and utilities for auth-utils tests."""

import hashlib
import json
import os
import struct
from collections.abc import Callable
from typing import Any
from urllib.parse import parse_qs

import httpx
import pytest
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, padding, rsa

from auth_utils.webauthn.types import WebAuthnCredential
from auth_utils.webauthn.verify import b64url_encode


# ============================================================================
# Environment
# ============================================================================


@pytest.fixture(autouse=True)
def clean_auth_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove AUTH_OAUTH_* variables so the host environment never leaks in."""
    for name in list(os.environ):
        if name.startswith("AUTH_OAUTH_"):
            monkeypatch.delenv(name, raising=False)


# ============================================================================
# OAuth Provider Fixtures
# ============================================================================


OKTA_DOMAIN = "x.okta.com"


@pytest.fixture
def okta_config() -> dict[str, Any]:
    """Minimal explicit Okta handler config."""
    return {"client_id": "a", "client_secret": "b", "domain": OKTA_DOMAIN}


@pytest.fixture
def okta_discovery_doc() -> dict[str, Any]:
    """Okta org authorization server discovery document."""
    return {
        "issuer": f"https://{OKTA_DOMAIN}",
        "authorization_endpoint": f"https://{OKTA_DOMAIN}/oauth2/v1/authorize",
        "token_endpoint": f"https://{OKTA_DOMAIN}/oauth2/v1/token",
        "userinfo_endpoint": f"https://{OKTA_DOMAIN}/oauth2/v1/userinfo",
        "jwks_uri": f"https://{OKTA_DOMAIN}/oauth2/v1/keys",
        "scopes_supported": ["openid", "email", "profile", "offline_access"],
        "code_challenge_methods_supported": ["S256"],
    }


class FakeIdentityProvider:
    """Answers discovery, token and user-info requests for an httpx MockTransport.

    Every request is recorded so tests can assert what was (or was not) sent.
    """

    def __init__(self, discovery: dict[str, Any]):
        self.discovery = discovery
        self.requests: list[httpx.Request] = []
        self.discovery_status = 200
        self.token_status = 200
        self.token_body: Any = {
            "access_token": "at-123",
            "token_type": "Bearer",
            "expires_in": 3600,
            "refresh_token": "rt-456",
            "id_token": "id-789",
            "scope": "openid offline_access email",
        }
        self.userinfo_status = 200
        self.userinfo_body: Any = {"sub": "00u1", "email": "ada@example.com", "name": "Ada"}
        self.fail_with: Exception | None = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_with is not None:
            raise self.fail_with

        url = str(request.url)
        if url.endswith("/.well-known/openid-configuration"):
            return httpx.Response(self.discovery_status, json=self.discovery)
        if url == self.discovery["token_endpoint"]:
            return self._respond(self.token_status, self.token_body)
        if url == self.discovery["userinfo_endpoint"]:
            return self._respond(self.userinfo_status, self.userinfo_body)
        return httpx.Response(404, json={"error": "not_found"})

    @staticmethod
    def _respond(status: int, body: Any) -> httpx.Response:
        if body is None:
            return httpx.Response(status, content=b"")
        if isinstance(body, (bytes, str)):
            return httpx.Response(status, content=body)
        return httpx.Response(status, json=body)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))

    def requests_to(self, url: str) -> list[httpx.Request]:
        return [r for r in self.requests if str(r.url) == url]

    def token_request_form(self) -> dict[str, str]:
        """Form fields of the last token request."""
        (request,) = self.requests_to(self.discovery["token_endpoint"])[-1:]
        return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}


@pytest.fixture
def okta_idp(okta_discovery_doc: dict[str, Any]) -> FakeIdentityProvider:
    """Fake Okta org serving discovery, token and user-info endpoints."""
    return FakeIdentityProvider(okta_discovery_doc)


@pytest.fixture
def github_idp() -> FakeIdentityProvider:
    """Fake GitHub with its static endpoints."""
    return FakeIdentityProvider(
        {
            "authorization_endpoint": "https://github.com/login/oauth/authorize",
            "token_endpoint": "https://github.com/login/oauth/access_token",
            "userinfo_endpoint": "https://api.github.com/user",
        }
    )


# ============================================================================
# WebAuthn Fixtures
# ============================================================================


class SoftAuthenticator:
    """Software authenticator producing real signatures for one credential."""

    def __init__(
        self,
        key: Any = None,
        rp_id: str = "testserver",
        origin: str = "http://testserver",
    ):
        self.private_key = key if key is not None else ec.generate_private_key(ec.SECP256R1())
        self.rp_id = rp_id
        self.origin = origin
        self.raw_id = os.urandom(16)
        self.counter = 0

    @property
    def credential_id(self) -> str:
        return b64url_encode(self.raw_id)

    @property
    def public_key(self) -> str:
        der = self.private_key.public_key().public_bytes(
            serialization.Encoding.DER,
            serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        return b64url_encode(der)

    @property
    def algorithm(self) -> int:
        if isinstance(self.private_key, ed25519.Ed25519PrivateKey):
            return -8
        if isinstance(self.private_key, rsa.RSAPrivateKey):
            return -257
        return -7

    def credential(self, counter: int = 0) -> WebAuthnCredential:
        return WebAuthnCredential(
            id=self.credential_id,
            public_key=self.public_key,
            user_id="user-1",
            counter=counter,
            algorithm=self.algorithm,
        )

    def authenticator_data(
        self,
        flags: int = 0x05,
        counter: int | None = None,
        rp_id: str | None = None,
        attested: bool = False,
    ) -> bytes:
        rp_id_hash = hashlib.sha256((rp_id or self.rp_id).encode()).digest()
        if attested:
            flags |= 0x40
        data = rp_id_hash + struct.pack(">BI", flags, self.counter if counter is None else counter)
        if attested:
            data += bytes(16) + struct.pack(">H", len(self.raw_id)) + self.raw_id
        return data

    def client_data(self, ceremony: str, challenge: str, origin: str | None = None) -> bytes:
        return json.dumps(
            {"type": ceremony, "challenge": challenge, "origin": origin or self.origin, "crossOrigin": False}
        ).encode()

    def sign(self, data: bytes) -> bytes:
        if isinstance(self.private_key, ed25519.Ed25519PrivateKey):
            return self.private_key.sign(data)
        if isinstance(self.private_key, rsa.RSAPrivateKey):
            return self.private_key.sign(data, padding.PKCS1v15(), hashes.SHA256())
        return self.private_key.sign(data, ec.ECDSA(hashes.SHA256()))

    def assertion(
        self,
        challenge: str,
        *,
        origin: str | None = None,
        ceremony: str = "webauthn.get",
        flags: int = 0x05,
        rp_id: str | None = None,
        bump: bool = True,
    ) -> dict[str, Any]:
        """Browser ``PublicKeyCredential`` JSON for an authentication."""
        if bump:
            self.counter += 1
        client_data = self.client_data(ceremony, challenge, origin)
        auth_data = self.authenticator_data(flags=flags, rp_id=rp_id)
        signature = self.sign(auth_data + hashlib.sha256(client_data).digest())
        return {
            "id": self.credential_id,
            "rawId": self.credential_id,
            "type": "public-key",
            "response": {
                "clientDataJSON": b64url_encode(client_data),
                "authenticatorData": b64url_encode(auth_data),
                "signature": b64url_encode(signature),
                "userHandle": None,
            },
        }

    def attestation(
        self,
        challenge: str,
        *,
        origin: str | None = None,
        flags: int = 0x05,
        declared_algorithm: int | None = None,
    ) -> dict[str, Any]:
        """Browser ``PublicKeyCredential`` JSON for a registration."""
        client_data = self.client_data("webauthn.create", challenge, origin)
        auth_data = self.authenticator_data(flags=flags, attested=True)
        return {
            "id": self.credential_id,
            "rawId": self.credential_id,
            "type": "public-key",
            "response": {
                "clientDataJSON": b64url_encode(client_data),
                "attestationObject": "",
                "authenticatorData": b64url_encode(auth_data),
                "publicKey": self.public_key,
                "publicKeyAlgorithm": self.algorithm if declared_algorithm is None else declared_algorithm,
                "transports": ["internal", "hybrid"],
            },
        }


@pytest.fixture
def make_authenticator() -> Callable[..., SoftAuthenticator]:
    """Factory for software authenticators."""
    return SoftAuthenticator


@pytest.fixture
def authenticator() -> SoftAuthenticator:
    """ES256 software authenticator for ``testserver``."""
    return SoftAuthenticator()
