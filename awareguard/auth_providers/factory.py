"""Factory for creating token verifiers based on configuration."""

from __future__ import annotations

import logging

from awareguard.auth_providers.base import TokenVerifier
from awareguard.auth_providers.jwt_provider import PublicKeyVerifier, SecretKeyVerifier

logger = logging.getLogger("awareguard.auth_providers.factory")


def create_verifier(
    provider_name: str,
    *,
    secret: str | None = None,
    public_key: str | None = None,
    issuer: str | None = None,
    audience: str | None = None,
    leeway: int = 0,
) -> TokenVerifier:
    """Create a token verifier by name."""
    if provider_name == "hs256":
        if not secret:
            msg = "jwt_secret required for hs256 token verifier"
            raise ValueError(msg)
        verifier: TokenVerifier = SecretKeyVerifier(
            secret, issuer=issuer, audience=audience, leeway=leeway
        )
    elif provider_name == "public_key":
        if not public_key:
            msg = "jwt_public_key required for public_key token verifier"
            raise ValueError(msg)
        verifier = PublicKeyVerifier(public_key, issuer=issuer, audience=audience, leeway=leeway)
    else:
        msg = f"Unknown token verifier: {provider_name}"
        raise ValueError(msg)

    logger.info("Token verifier configured: %s", verifier.name)
    return verifier
