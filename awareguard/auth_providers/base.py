"""Token verifier protocol and result types."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any, Protocol, runtime_checkable


class TokenErrorKind(StrEnum):
    """Why a token was rejected."""

    INVALID_SIGNATURE = "invalid_signature"
    EXPIRED = "expired"
    MALFORMED = "malformed"
    NOT_YET_VALID = "not_yet_valid"
    INVALID_CLAIMS = "invalid_claims"


def _timestamp(value: Any) -> datetime | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    try:
        return datetime.fromtimestamp(value, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


@dataclass(frozen=True)
class TokenClaims:
    """Decoded token fields, scoped to a single request."""

    subject: str
    email: str | None = None
    issued_at: datetime | None = None
    expires_at: datetime | None = None
    not_before: datetime | None = None
    algorithm: str | None = None
    token_type: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: dict[str, Any], header: dict[str, Any] | None = None) -> TokenClaims:
        header = header or {}
        sub = payload.get("sub")
        email = payload.get("email")
        return cls(
            subject=sub if isinstance(sub, str) else "",
            email=email if isinstance(email, str) else None,
            issued_at=_timestamp(payload.get("iat")),
            expires_at=_timestamp(payload.get("exp")),
            not_before=_timestamp(payload.get("nbf")),
            algorithm=header.get("alg"),
            token_type=header.get("typ", "JWT"),
            raw=dict(payload),
        )


@dataclass
class VerificationResult:
    """Outcome of a verify or decode call.  Never raised, always returned."""

    valid: bool
    claims: TokenClaims | None = None
    error_kind: TokenErrorKind | None = None
    error: str | None = None
    provider: str = ""

    @classmethod
    def success(cls, claims: TokenClaims, provider: str = "") -> VerificationResult:
        return cls(valid=True, claims=claims, provider=provider)

    @classmethod
    def failure(cls, kind: TokenErrorKind, error: str, provider: str = "") -> VerificationResult:
        return cls(valid=False, error_kind=kind, error=error, provider=provider)


@runtime_checkable
class TokenVerifier(Protocol):
    """Protocol that all token verifiers must implement."""

    name: str

    def verify(self, token: str) -> VerificationResult:
        """Check signature and validity window, returning decoded claims."""
        ...
