"""Tests for WebAuthn ceremony verification."""

import hashlib
import json
import struct

import pytest
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, rsa

from auth_utils.errors import VerificationError
from auth_utils.webauthn.verify import (
    COSE_EDDSA,
    COSE_ES256,
    COSE_RS256,
    b64url_decode,
    b64url_encode,
    generate_challenge,
    key_algorithm,
    load_public_key,
    parse_authenticator_data,
    verify_authentication_response,
    verify_client_data,
    verify_registration_response,
    verify_signature,
)

ORIGIN = "http://testserver"
RP_ID = "testserver"


class TestBase64Url:
    """Tests for base64url helpers."""

    def test_no_padding(self):
        assert b64url_encode(b"\xff\xfe") == "__4"

    def test_decode_without_padding(self):
        assert b64url_decode("__4") == b"\xff\xfe"

    def test_decode_invalid(self):
        with pytest.raises(VerificationError, match="base64url"):
            b64url_decode("a")

    def test_decode_non_string(self):
        with pytest.raises(VerificationError):
            b64url_decode(None)  # type: ignore[arg-type]

    def test_challenge_is_32_bytes(self):
        assert len(b64url_decode(generate_challenge())) == 32


class TestVerifyClientData:
    """Tests for client data checks."""

    def _client_data(self, **overrides) -> bytes:
        data = {"type": "webauthn.get", "challenge": "abc", "origin": ORIGIN}
        data.update(overrides)
        return json.dumps(data).encode()

    def test_valid(self):
        result = verify_client_data(
            self._client_data(), expected_type="webauthn.get", expected_challenge="abc", expected_origin=ORIGIN
        )
        assert result["origin"] == ORIGIN

    def test_wrong_type(self):
        with pytest.raises(VerificationError, match="type"):
            verify_client_data(
                self._client_data(type="webauthn.create"),
                expected_type="webauthn.get",
                expected_challenge="abc",
                expected_origin=ORIGIN,
            )

    def test_challenge_mismatch(self):
        with pytest.raises(VerificationError, match="Challenge mismatch"):
            verify_client_data(
                self._client_data(challenge="other"),
                expected_type="webauthn.get",
                expected_challenge="abc",
                expected_origin=ORIGIN,
            )

    def test_origin_mismatch(self):
        with pytest.raises(VerificationError, match="origin"):
            verify_client_data(
                self._client_data(origin="https://evil.example"),
                expected_type="webauthn.get",
                expected_challenge="abc",
                expected_origin=ORIGIN,
            )

    def test_origin_list(self):
        verify_client_data(
            self._client_data(origin="https://app.example"),
            expected_type="webauthn.get",
            expected_challenge="abc",
            expected_origin=[ORIGIN, "https://app.example"],
        )

    def test_invalid_json(self):
        with pytest.raises(VerificationError, match="JSON"):
            verify_client_data(b"{", expected_type="webauthn.get", expected_challenge="abc", expected_origin=ORIGIN)


class TestParseAuthenticatorData:
    """Tests for the binary authenticator data parser."""

    def test_header(self):
        data = hashlib.sha256(b"testserver").digest() + struct.pack(">BI", 0x05, 7)
        parsed = parse_authenticator_data(data)
        assert parsed.rp_id_hash == hashlib.sha256(b"testserver").digest()
        assert parsed.counter == 7
        assert parsed.user_present
        assert parsed.user_verified
        assert not parsed.attested_credential_data
        assert parsed.credential_id is None

    def test_attested_credential(self, authenticator):
        parsed = parse_authenticator_data(authenticator.authenticator_data(attested=True))
        assert parsed.attested_credential_data
        assert parsed.aaguid == bytes(16)
        assert parsed.credential_id == authenticator.raw_id

    def test_backup_flags(self):
        data = bytes(32) + struct.pack(">BI", 0x01 | 0x08 | 0x10, 0)
        parsed = parse_authenticator_data(data)
        assert parsed.backup_eligible
        assert parsed.backed_up

    def test_too_short(self):
        with pytest.raises(VerificationError, match="too short"):
            parse_authenticator_data(bytes(36))

    def test_truncated_credential_id(self):
        data = bytes(32) + struct.pack(">BI", 0x41, 0) + bytes(16) + struct.pack(">H", 64) + bytes(10)
        with pytest.raises(VerificationError, match="truncated"):
            parse_authenticator_data(data)


class TestKeys:
    """Tests for public key loading and signature checks."""

    @pytest.mark.parametrize(
        "key,algorithm",
        [
            (ec.generate_private_key(ec.SECP256R1()), COSE_ES256),
            (rsa.generate_private_key(public_exponent=65537, key_size=2048), COSE_RS256),
            (ed25519.Ed25519PrivateKey.generate(), COSE_EDDSA),
        ],
    )
    def test_sign_and_verify(self, make_authenticator, key, algorithm):
        authenticator = make_authenticator(key=key)
        public_key = load_public_key(authenticator.public_key)
        assert key_algorithm(public_key) == algorithm

        signature = authenticator.sign(b"payload")
        verify_signature(public_key, signature, b"payload")
        with pytest.raises(VerificationError, match="Signature"):
            verify_signature(public_key, signature, b"tampered")

    def test_unsupported_curve(self, make_authenticator):
        authenticator = make_authenticator(key=ec.generate_private_key(ec.SECP384R1()))
        with pytest.raises(VerificationError, match="curve"):
            key_algorithm(load_public_key(authenticator.public_key))

    def test_garbage_key(self):
        with pytest.raises(VerificationError, match="could not be loaded"):
            load_public_key(b64url_encode(b"not a key"))


class TestVerifyAuthenticationResponse:
    """Tests for assertion verification."""

    def test_valid_assertion(self, authenticator):
        credential = authenticator.credential()
        challenge = generate_challenge()

        info = verify_authentication_response(
            authenticator.assertion(challenge),
            credential=credential,
            expected_challenge=challenge,
            expected_origin=ORIGIN,
            expected_rp_id=RP_ID,
        )

        assert info.credential_id == credential.id
        assert info.new_counter == 1
        assert info.user_verified
        assert info.origin == ORIGIN

    def test_wrong_key(self, authenticator, make_authenticator):
        credential = authenticator.credential()
        other = make_authenticator()
        other.raw_id = authenticator.raw_id
        challenge = generate_challenge()

        with pytest.raises(VerificationError, match="Signature"):
            verify_authentication_response(
                other.assertion(challenge),
                credential=credential,
                expected_challenge=challenge,
                expected_origin=ORIGIN,
                expected_rp_id=RP_ID,
            )

    def test_rp_id_mismatch(self, authenticator):
        challenge = generate_challenge()
        with pytest.raises(VerificationError, match="RP ID"):
            verify_authentication_response(
                authenticator.assertion(challenge, rp_id="evil.example"),
                credential=authenticator.credential(),
                expected_challenge=challenge,
                expected_origin=ORIGIN,
                expected_rp_id=RP_ID,
            )

    def test_user_not_present(self, authenticator):
        challenge = generate_challenge()
        with pytest.raises(VerificationError, match="not present"):
            verify_authentication_response(
                authenticator.assertion(challenge, flags=0x04),
                credential=authenticator.credential(),
                expected_challenge=challenge,
                expected_origin=ORIGIN,
                expected_rp_id=RP_ID,
            )

    def test_user_verification_required(self, authenticator):
        challenge = generate_challenge()
        with pytest.raises(VerificationError, match="verification was required"):
            verify_authentication_response(
                authenticator.assertion(challenge, flags=0x01),
                credential=authenticator.credential(),
                expected_challenge=challenge,
                expected_origin=ORIGIN,
                expected_rp_id=RP_ID,
                require_user_verification=True,
            )

    def test_counter_must_increase(self, authenticator):
        authenticator.counter = 5
        challenge = generate_challenge()
        with pytest.raises(VerificationError, match="counter"):
            verify_authentication_response(
                authenticator.assertion(challenge, bump=False),
                credential=authenticator.credential(counter=5),
                expected_challenge=challenge,
                expected_origin=ORIGIN,
                expected_rp_id=RP_ID,
            )

    def test_zero_counters_allowed(self, authenticator):
        challenge = generate_challenge()
        info = verify_authentication_response(
            authenticator.assertion(challenge, bump=False),
            credential=authenticator.credential(counter=0),
            expected_challenge=challenge,
            expected_origin=ORIGIN,
            expected_rp_id=RP_ID,
        )
        assert info.new_counter == 0

    def test_credential_id_mismatch(self, authenticator, make_authenticator):
        challenge = generate_challenge()
        with pytest.raises(VerificationError, match="Credential ID"):
            verify_authentication_response(
                authenticator.assertion(challenge),
                credential=make_authenticator().credential(),
                expected_challenge=challenge,
                expected_origin=ORIGIN,
                expected_rp_id=RP_ID,
            )

    def test_missing_signature(self, authenticator):
        challenge = generate_challenge()
        response = authenticator.assertion(challenge)
        del response["response"]["signature"]
        with pytest.raises(VerificationError, match="signature"):
            verify_authentication_response(
                response,
                credential=authenticator.credential(),
                expected_challenge=challenge,
                expected_origin=ORIGIN,
                expected_rp_id=RP_ID,
            )


class TestVerifyRegistrationResponse:
    """Tests for registration verification."""

    def test_valid_registration(self, authenticator):
        challenge = generate_challenge()

        info = verify_registration_response(
            authenticator.attestation(challenge),
            expected_challenge=challenge,
            expected_origin=ORIGIN,
            expected_rp_id=RP_ID,
        )

        assert info.credential_id == authenticator.credential_id
        assert info.public_key == authenticator.public_key
        assert info.algorithm == COSE_ES256
        assert info.aaguid == "00" * 16

    def test_ed25519_registration(self, make_authenticator):
        authenticator = make_authenticator(key=ed25519.Ed25519PrivateKey.generate())
        challenge = generate_challenge()
        info = verify_registration_response(
            authenticator.attestation(challenge),
            expected_challenge=challenge,
            expected_origin=ORIGIN,
            expected_rp_id=RP_ID,
        )
        assert info.algorithm == COSE_EDDSA

    def test_wrong_ceremony_type(self, authenticator):
        challenge = generate_challenge()
        with pytest.raises(VerificationError, match="type"):
            verify_registration_response(
                authenticator.assertion(challenge),
                expected_challenge=challenge,
                expected_origin=ORIGIN,
                expected_rp_id=RP_ID,
            )

    def test_declared_algorithm_mismatch(self, authenticator):
        challenge = generate_challenge()
        with pytest.raises(VerificationError, match="declared algorithm"):
            verify_registration_response(
                authenticator.attestation(challenge, declared_algorithm=COSE_RS256),
                expected_challenge=challenge,
                expected_origin=ORIGIN,
                expected_rp_id=RP_ID,
            )

    def test_credential_id_must_match_auth_data(self, authenticator):
        challenge = generate_challenge()
        response = authenticator.attestation(challenge)
        response["id"] = b64url_encode(b"different")
        with pytest.raises(VerificationError, match="Credential ID"):
            verify_registration_response(
                response,
                expected_challenge=challenge,
                expected_origin=ORIGIN,
                expected_rp_id=RP_ID,
            )

    def test_unsupported_algorithm(self, authenticator):
        challenge = generate_challenge()
        with pytest.raises(VerificationError, match="Unsupported algorithm"):
            verify_registration_response(
                authenticator.attestation(challenge),
                expected_challenge=challenge,
                expected_origin=ORIGIN,
                expected_rp_id=RP_ID,
                supported_algorithms=(COSE_EDDSA,),
            )
