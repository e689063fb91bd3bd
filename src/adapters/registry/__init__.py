"""Registry adapters - Identifier and credential primitives."""

from .did_jwk import (
    IssuerKey,
    JwkIdentityRegistry,
    JwtCredentialRegistry,
    generate_issuer_key,
    load_issuer_key,
)

__all__ = [
    "IssuerKey",
    "JwkIdentityRegistry",
    "JwtCredentialRegistry",
    "generate_issuer_key",
    "load_issuer_key",
]
