"""
did:jwk identity and VC-JWT credential registries.

Identifiers are did:jwk URIs: the base64url-encoded public JWK of a fresh
Ed25519 key. They resolve without any network lookup, which keeps the
registry self-contained. Credentials follow the W3C VC data model and are
signed as compact JWTs (alg EdDSA) whose kid names the issuer's
verification method.

Key material:
- JwkIdentityRegistry.create() mints a new keypair on every call and
  returns the private JWK as key_material for the caller to persist.
- The issuer key is loaded once at startup (IssuerKey) and passed to
  sign() by the credential issuer.
"""

import base64
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey

from src.domain.exceptions import UpstreamError, ValidationError
from src.domain.models import CredentialDraft, RegisteredIdentifier, utcnow

logger = logging.getLogger(__name__)

DID_JWK_PREFIX = "did:jwk:"
VC_CONTEXT = "https://www.w3.org/2018/credentials/v1"
DID_CONTEXTS = ["https://www.w3.org/ns/did/v1", "https://w3id.org/security/suites/jws-2020/v1"]
JWT_ALGORITHM = "EdDSA"


def b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(value: str) -> bytes:
    pad = "=" * ((4 - len(value) % 4) % 4)
    return base64.urlsafe_b64decode((value + pad).encode("ascii"))


def _raw_public_bytes(public_key: Ed25519PublicKey) -> bytes:
    return public_key.public_bytes(
        encoding=serialization.Encoding.Raw, format=serialization.PublicFormat.Raw
    )


def _raw_private_bytes(private_key: Ed25519PrivateKey) -> bytes:
    return private_key.private_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PrivateFormat.Raw,
        encryption_algorithm=serialization.NoEncryption(),
    )


def public_jwk(public_key: Ed25519PublicKey) -> dict[str, str]:
    """OKP JWK for an Ed25519 public key, members in lexicographic order."""
    return {"crv": "Ed25519", "kty": "OKP", "x": b64url_encode(_raw_public_bytes(public_key))}


def did_from_public_key(public_key: Ed25519PublicKey) -> str:
    encoded = json.dumps(public_jwk(public_key), separators=(",", ":"), sort_keys=True)
    return DID_JWK_PREFIX + b64url_encode(encoded.encode())


def public_key_from_did(did: str) -> Ed25519PublicKey:
    """
    Decode the Ed25519 key embedded in a did:jwk URI.

    Raises:
        ValueError: If did is not a did:jwk URI carrying an Ed25519 key
    """
    base = did.split("#", 1)[0]
    if not base.startswith(DID_JWK_PREFIX):
        raise ValueError(f"Not a did:jwk uri: {did!r}")
    jwk = json.loads(b64url_decode(base[len(DID_JWK_PREFIX):]))
    if jwk.get("kty") != "OKP" or jwk.get("crv") != "Ed25519" or "x" not in jwk:
        raise ValueError("did:jwk does not carry an Ed25519 public key")
    return Ed25519PublicKey.from_public_bytes(b64url_decode(jwk["x"]))


def did_document(did: str, jwk: dict[str, str]) -> dict[str, Any]:
    method_id = f"{did}#0"
    return {
        "@context": list(DID_CONTEXTS),
        "id": did,
        "verificationMethod": [
            {
                "id": method_id,
                "type": "JsonWebKey2020",
                "controller": did,
                "publicKeyJwk": dict(jwk),
            }
        ],
        "authentication": [method_id],
        "assertionMethod": [method_id],
        "capabilityInvocation": [method_id],
        "capabilityDelegation": [method_id],
    }


@dataclass(frozen=True)
class IssuerKey:
    """Signing key of the credential issuer and its did:jwk identity."""

    private_key: Ed25519PrivateKey

    @property
    def did(self) -> str:
        return did_from_public_key(self.private_key.public_key())

    @property
    def kid(self) -> str:
        return f"{self.did}#0"

    def private_jwk(self) -> dict[str, str]:
        jwk = public_jwk(self.private_key.public_key())
        jwk["d"] = b64url_encode(_raw_private_bytes(self.private_key))
        return jwk


def generate_issuer_key() -> IssuerKey:
    return IssuerKey(Ed25519PrivateKey.generate())


def load_issuer_key(jwk_json: str) -> IssuerKey:
    """
    Parse a private Ed25519 JWK.

    Raises:
        ValueError: If the JWK is malformed or its x does not match d
    """
    jwk = json.loads(jwk_json)
    if jwk.get("kty") != "OKP" or jwk.get("crv") != "Ed25519" or "d" not in jwk:
        raise ValueError("Issuer signing key must be a private Ed25519 OKP JWK")
    key = IssuerKey(Ed25519PrivateKey.from_private_bytes(b64url_decode(jwk["d"])))
    if "x" in jwk and jwk["x"] != public_jwk(key.private_key.public_key())["x"]:
        raise ValueError("Issuer signing key public part does not match private part")
    return key


class JwkIdentityRegistry:
    """Implements IdentityRegistry protocol with did:jwk."""

    def create(self) -> RegisteredIdentifier:
        private_key = Ed25519PrivateKey.generate()
        did = did_from_public_key(private_key.public_key())
        key = IssuerKey(private_key)
        logger.debug("Minted did:jwk identifier %s", did)
        return RegisteredIdentifier(
            uri=did,
            document=did_document(did, public_jwk(private_key.public_key())),
            key_material={"privateJwk": key.private_jwk()},
        )

    def resolve(self, uri: str) -> RegisteredIdentifier:
        """
        Raises:
            UpstreamError: If uri cannot be resolved
        """
        try:
            public_key = public_key_from_did(uri)
        except ValueError as e:
            raise UpstreamError(f"Cannot resolve {uri}: {e}") from e
        base = uri.split("#", 1)[0]
        return RegisteredIdentifier(uri=base, document=did_document(base, public_jwk(public_key)))


@dataclass
class JwtCredentialRegistry:
    """Implements CredentialRegistry protocol with VC-JWT (EdDSA)."""

    clock: Callable[[], datetime] = field(default=utcnow)

    def create(self, draft: CredentialDraft) -> dict[str, Any]:
        subject = {"id": draft.subject}
        subject.update(draft.claims)
        return {
            "@context": [VC_CONTEXT],
            "id": f"urn:uuid:{uuid4()}",
            "type": ["VerifiableCredential", draft.credential_type],
            "issuer": draft.issuer,
            "issuanceDate": _rfc3339(draft.issuance_date),
            "expirationDate": _rfc3339(draft.expiration_date),
            "credentialSubject": subject,
        }

    def sign(self, credential: dict[str, Any], signer_key: IssuerKey) -> str:
        """
        Sign credential as a compact JWT.

        Raises:
            ValidationError: If the issuer of credential is not signer_key
        """
        if credential.get("issuer") != signer_key.did:
            raise ValidationError("Credential issuer does not match signing key")

        header = {"alg": JWT_ALGORITHM, "typ": "JWT", "kid": signer_key.kid}
        payload = {
            "iss": credential["issuer"],
            "sub": credential["credentialSubject"]["id"],
            "jti": credential["id"],
            "iat": int(self.clock().timestamp()),
            "nbf": _epoch(credential["issuanceDate"]),
            "exp": _epoch(credential["expirationDate"]),
            "vc": credential,
        }
        signing_input = f"{_encode_segment(header)}.{_encode_segment(payload)}"
        signature = signer_key.private_key.sign(signing_input.encode("ascii"))
        return f"{signing_input}.{b64url_encode(signature)}"

    def verify(self, signed_jwt: str) -> bool:
        """
        Check signature, issuer binding and expiry of a VC-JWT.

        Malformed input verifies as False; this never raises.
        """
        try:
            header_b64, payload_b64, signature_b64 = signed_jwt.split(".")
            header = json.loads(b64url_decode(header_b64))
            payload = json.loads(b64url_decode(payload_b64))
            if header.get("alg") != JWT_ALGORITHM:
                return False
            issuer = payload["iss"]
            if header.get("kid", "").split("#", 1)[0] != issuer:
                return False
            if payload["vc"].get("issuer") != issuer:
                return False
            public_key_from_did(issuer).verify(
                b64url_decode(signature_b64), f"{header_b64}.{payload_b64}".encode("ascii")
            )
            expires = payload.get("exp")
            if expires is not None and float(expires) < self.clock().timestamp():
                logger.info("Credential JWT %s expired", payload.get("jti"))
                return False
        except (ValueError, KeyError, TypeError, AttributeError, InvalidSignature) as e:
            logger.info("Credential JWT rejected: %s", type(e).__name__)
            return False
        return True


def _encode_segment(data: dict[str, Any]) -> str:
    return b64url_encode(json.dumps(data, separators=(",", ":")).encode())


def _rfc3339(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _epoch(value: str) -> int:
    return int(datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp())
