"""JWT verifiers for identity-provider session tokens (shared secret or public key)."""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from typing import Any

import jwt
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.hazmat.primitives.serialization import load_pem_public_key

from awareguard.auth_providers.base import TokenClaims, TokenErrorKind, VerificationResult

logger = logging.getLogger("awareguard.auth_providers.jwt")

#: Claims every session token must carry.
REQUIRED_CLAIMS = ["sub", "exp", "iat"]


def decode_token(token: str) -> VerificationResult:
    """Decode *token* WITHOUT verifying its signature.

    Only checks structure: three dot-separated base64url segments whose
    header and payload are JSON objects.  The returned claims are
    untrusted and must never be used to authorize anything.
    """
    if not isinstance(token, str) or token.count(".") != 2:
        return VerificationResult.failure(
            TokenErrorKind.MALFORMED,
            "Token must have three dot-separated segments",
            provider="decode",
        )
    header_segment, payload_segment, _ = token.split(".")
    if not header_segment or not payload_segment:
        return VerificationResult.failure(
            TokenErrorKind.MALFORMED, "Token header or payload is empty", provider="decode"
        )
    try:
        header = jwt.get_unverified_header(token)
        payload = jwt.decode(token, options={"verify_signature": False})
    except jwt.PyJWTError as e:
        return VerificationResult.failure(
            TokenErrorKind.MALFORMED, f"Invalid token format: {e}", provider="decode"
        )
    return VerificationResult.success(TokenClaims.from_payload(payload, header), provider="decode")


def _is_expired(payload: dict[str, Any], leeway: int) -> bool:
    exp = payload.get("exp")
    if isinstance(exp, bool) or not isinstance(exp, (int, float)):
        return False
    return exp < time.time() - leeway


class _PyJWTVerifier:
    """Shared verification flow; subclasses supply the key and algorithms."""

    name = "jwt"

    def __init__(
        self,
        key: Any,
        algorithms: Sequence[str],
        *,
        issuer: str | None = None,
        audience: str | None = None,
        leeway: int = 0,
    ) -> None:
        if not algorithms:
            raise ValueError("At least one signing algorithm is required")
        self._key = key
        self._algorithms = list(algorithms)
        self._issuer = issuer
        self._audience = audience
        self._leeway = leeway

    @property
    def algorithms(self) -> list[str]:
        return list(self._algorithms)

    def verify(self, token: str) -> VerificationResult:
        decoded = decode_token(token)
        if not decoded.valid or decoded.claims is None:
            return VerificationResult.failure(
                TokenErrorKind.MALFORMED, decoded.error or "Malformed token", provider=self.name
            )

        # Expiry is reported before the signature is checked.
        if _is_expired(decoded.claims.raw, self._leeway):
            return self._fail(TokenErrorKind.EXPIRED, "Token has expired")

        try:
            payload = jwt.decode(
                token,
                self._key,
                algorithms=self._algorithms,
                audience=self._audience,
                issuer=self._issuer,
                leeway=self._leeway,
                options={"require": REQUIRED_CLAIMS, "verify_aud": self._audience is not None},
            )
        except jwt.ExpiredSignatureError:
            return self._fail(TokenErrorKind.EXPIRED, "Token has expired")
        except jwt.ImmatureSignatureError:
            return self._fail(TokenErrorKind.NOT_YET_VALID, "Token is not yet valid")
        except jwt.MissingRequiredClaimError as e:
            return self._fail(TokenErrorKind.MALFORMED, str(e))
        except (jwt.InvalidAudienceError, jwt.InvalidIssuerError) as e:
            return self._fail(TokenErrorKind.INVALID_CLAIMS, str(e))
        except (jwt.InvalidSignatureError, jwt.InvalidAlgorithmError, jwt.InvalidKeyError) as e:
            return self._fail(TokenErrorKind.INVALID_SIGNATURE, f"Signature verification failed: {e}")
        except jwt.DecodeError as e:
            return self._fail(TokenErrorKind.MALFORMED, f"Invalid token format: {e}")
        except jwt.PyJWTError as e:
            return self._fail(TokenErrorKind.INVALID_CLAIMS, f"JWT validation failed: {e}")

        header = jwt.get_unverified_header(token)
        claims = TokenClaims.from_payload(payload, header)
        if not claims.subject:
            return self._fail(TokenErrorKind.MALFORMED, "Token subject must be a non-empty string")
        return VerificationResult.success(claims, provider=self.name)

    def _fail(self, kind: TokenErrorKind, error: str) -> VerificationResult:
        logger.debug("Token rejected by %s verifier: %s (%s)", self.name, kind, error)
        return VerificationResult.failure(kind, error, provider=self.name)


class SecretKeyVerifier(_PyJWTVerifier):
    """Verify HMAC-signed tokens against a shared secret."""

    name = "hs256"

    def __init__(
        self,
        secret: str,
        algorithms: Sequence[str] = ("HS256",),
        *,
        issuer: str | None = None,
        audience: str | None = None,
        leeway: int = 0,
    ) -> None:
        if not secret:
            raise ValueError("A non-empty secret is required for HMAC token verification")
        super().__init__(secret, algorithms, issuer=issuer, audience=audience, leeway=leeway)


class PublicKeyVerifier(_PyJWTVerifier):
    """Verify RSA or EC signed tokens against the identity provider's PEM public key.

    The key is parsed once at construction so a bad key fails at startup
    rather than on the first request.  Algorithms default to the family
    matching the key type.
    """

    name = "public_key"

    def __init__(
        self,
        public_key_pem: str,
        algorithms: Sequence[str] | None = None,
        *,
        issuer: str | None = None,
        audience: str | None = None,
        leeway: int = 0,
    ) -> None:
        try:
            key = load_pem_public_key(public_key_pem.encode("utf-8"))
        except (ValueError, TypeError) as e:
            raise ValueError(f"Invalid PEM public key: {e}") from e

        if algorithms is None:
            if isinstance(key, rsa.RSAPublicKey):
                algorithms = ("RS256", "RS384", "RS512")
            elif isinstance(key, ec.EllipticCurvePublicKey):
                algorithms = ("ES256", "ES384", "ES512")
            else:
                raise ValueError(f"Unsupported public key type: {type(key).__name__}")
        super().__init__(key, algorithms, issuer=issuer, audience=audience, leeway=leeway)
