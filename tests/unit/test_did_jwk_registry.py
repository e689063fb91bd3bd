"""
Unit tests for the did:jwk and VC-JWT registries.

These use real Ed25519 keys; nothing is mocked.
"""

import json
from datetime import datetime, timezone

import pytest

from src.adapters.registry.did_jwk import (
    IssuerKey,
    JwkIdentityRegistry,
    JwtCredentialRegistry,
    b64url_decode,
    b64url_encode,
    generate_issuer_key,
    load_issuer_key,
    public_jwk,
    public_key_from_did,
)
from src.domain.exceptions import UpstreamError, ValidationError
from src.domain.identity import is_did_uri
from src.domain.models import CredentialDraft
from tests.fakes import FrozenClock


@pytest.fixture
def issuer_key() -> IssuerKey:
    return generate_issuer_key()


@pytest.fixture
def registry(clock: FrozenClock) -> JwtCredentialRegistry:
    return JwtCredentialRegistry(clock=clock)


def make_draft(issuer: str, months: int = 12) -> CredentialDraft:
    return CredentialDraft(
        credential_type="ai",
        issuer=issuer,
        subject="did:jwk:subject",
        issuance_date=datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc),
        expiration_date=datetime(2026 + months // 12, 1 + months % 12, 15, 12, 0, tzinfo=timezone.utc),
        claims={"email": "ada@example.com", "company": "Acme"},
    )


def sign_draft(registry: JwtCredentialRegistry, key: IssuerKey) -> str:
    return registry.sign(registry.create(make_draft(key.did)), key)


class TestIdentityRegistry:
    """Tests for JwkIdentityRegistry."""

    def test_create_mints_resolvable_did(self) -> None:
        """A created did:jwk resolves to the same document without a lookup."""
        registry = JwkIdentityRegistry()

        created = registry.create()
        resolved = registry.resolve(created.uri)

        assert created.uri.startswith("did:jwk:")
        assert is_did_uri(created.uri)
        assert resolved.document == created.document
        assert created.document["verificationMethod"][0]["id"] == f"{created.uri}#0"

    def test_key_material_is_private_jwk(self) -> None:
        """The private key is handed back for the caller to persist."""
        created = JwkIdentityRegistry().create()

        private = created.key_material["privateJwk"]
        assert private["kty"] == "OKP"
        assert "d" in private
        assert "d" not in created.document["verificationMethod"][0]["publicKeyJwk"]

    def test_each_create_is_a_new_key(self) -> None:
        """Two calls never share a DID."""
        registry = JwkIdentityRegistry()

        assert registry.create().uri != registry.create().uri

    @pytest.mark.parametrize("uri", ["did:web:example.com", "did:jwk:not-base64!", "did:jwk:e30"])
    def test_unresolvable(self, uri: str) -> None:
        """Foreign methods and malformed keys raise UpstreamError."""
        with pytest.raises(UpstreamError):
            JwkIdentityRegistry().resolve(uri)


class TestIssuerKey:
    """Tests for issuer key loading."""

    def test_round_trip_through_jwk(self, issuer_key: IssuerKey) -> None:
        """A private JWK loads back to the same identity."""
        loaded = load_issuer_key(json.dumps(issuer_key.private_jwk()))

        assert loaded.did == issuer_key.did
        assert loaded.kid == f"{issuer_key.did}#0"

    def test_public_key_recoverable_from_did(self, issuer_key: IssuerKey) -> None:
        """The DID embeds the public key."""
        recovered = public_key_from_did(issuer_key.kid)

        assert public_jwk(recovered) == public_jwk(issuer_key.private_key.public_key())

    @pytest.mark.parametrize(
        "jwk",
        [
            {"kty": "EC", "crv": "P-256", "d": "AAAA"},
            {"kty": "OKP", "crv": "Ed25519", "x": "AAAA"},
        ],
    )
    def test_rejects_non_ed25519_or_public_only(self, jwk: dict) -> None:
        """Only private Ed25519 JWKs are accepted."""
        with pytest.raises(ValueError):
            load_issuer_key(json.dumps(jwk))

    def test_rejects_mismatched_public_part(self, issuer_key: IssuerKey) -> None:
        """An x that does not belong to d is rejected."""
        jwk = issuer_key.private_jwk()
        jwk["x"] = generate_issuer_key().private_jwk()["x"]

        with pytest.raises(ValueError):
            load_issuer_key(json.dumps(jwk))


class TestCredentialRegistry:
    """Tests for JwtCredentialRegistry."""

    def test_create_follows_vc_data_model(self, registry: JwtCredentialRegistry, issuer_key: IssuerKey) -> None:
        """The data model carries context, urn:uuid id, type pair and subject claims."""
        credential = registry.create(make_draft(issuer_key.did))

        assert credential["@context"] == ["https://www.w3.org/2018/credentials/v1"]
        assert credential["id"].startswith("urn:uuid:")
        assert credential["type"] == ["VerifiableCredential", "ai"]
        assert credential["issuanceDate"] == "2026-01-15T12:00:00Z"
        assert credential["expirationDate"] == "2027-01-15T12:00:00Z"
        assert credential["credentialSubject"] == {
            "id": "did:jwk:subject",
            "email": "ada@example.com",
            "company": "Acme",
        }

    def test_signed_jwt_verifies(self, registry: JwtCredentialRegistry, issuer_key: IssuerKey) -> None:
        """A freshly signed credential verifies."""
        signed = sign_draft(registry, issuer_key)

        assert signed.count(".") == 2
        assert registry.verify(signed) is True

    def test_jwt_claims(self, registry: JwtCredentialRegistry, issuer_key: IssuerKey) -> None:
        """The JWT header and payload bind issuer, subject and credential id."""
        credential = registry.create(make_draft(issuer_key.did))
        header_b64, payload_b64, _ = registry.sign(credential, issuer_key).split(".")

        header = json.loads(b64url_decode(header_b64))
        payload = json.loads(b64url_decode(payload_b64))
        assert header == {"alg": "EdDSA", "typ": "JWT", "kid": issuer_key.kid}
        assert payload["iss"] == issuer_key.did
        assert payload["sub"] == "did:jwk:subject"
        assert payload["jti"] == credential["id"]
        assert payload["exp"] > payload["nbf"]
        assert payload["vc"] == credential

    def test_wrong_signer_rejected(self, registry: JwtCredentialRegistry, issuer_key: IssuerKey) -> None:
        """Signing with a key that is not the credential issuer raises ValidationError."""
        credential = registry.create(make_draft(issuer_key.did))

        with pytest.raises(ValidationError):
            registry.sign(credential, generate_issuer_key())

    def test_tampered_payload_fails(self, registry: JwtCredentialRegistry, issuer_key: IssuerKey) -> None:
        """Changing the payload breaks the signature."""
        header_b64, payload_b64, signature_b64 = sign_draft(registry, issuer_key).split(".")
        payload = json.loads(b64url_decode(payload_b64))
        payload["vc"]["credentialSubject"]["email"] = "mallory@example.com"
        forged_payload = b64url_encode(json.dumps(payload).encode())

        assert registry.verify(f"{header_b64}.{forged_payload}.{signature_b64}") is False

    def test_other_issuer_signature_fails(self, registry: JwtCredentialRegistry, issuer_key: IssuerKey) -> None:
        """A signature by another key does not verify against the claimed issuer."""
        header_b64, payload_b64, _ = sign_draft(registry, issuer_key).split(".")
        _, _, foreign_signature = sign_draft(registry, generate_issuer_key()).split(".")

        assert registry.verify(f"{header_b64}.{payload_b64}.{foreign_signature}") is False

    def test_expired_credential_fails(self, clock: FrozenClock, issuer_key: IssuerKey) -> None:
        """A credential past its expiration date no longer verifies."""
        registry = JwtCredentialRegistry(clock=clock)
        signed = sign_draft(registry, issuer_key)

        clock.advance(366 * 24 * 3600)

        assert registry.verify(signed) is False

    @pytest.mark.parametrize("token", ["", "garbage", "a.b.c", "e30.e30.e30", "a.b"])
    def test_malformed_input_is_false(self, registry: JwtCredentialRegistry, token: str) -> None:
        """Malformed tokens verify as False and never raise."""
        assert registry.verify(token) is False
