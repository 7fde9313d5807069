"""Auth routes: permission/role checks and token verification."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import Field

from awareguard.api.ratelimit import TOKEN_CHECK_LIMIT, limiter
from awareguard.api.schemas import CamelModel
from awareguard.auth import extract_token, get_principal, get_resolver, get_verifier
from awareguard.auth_providers.base import TokenVerifier
from awareguard.auth_providers.jwt_provider import decode_token
from awareguard.config import settings
from awareguard.core.models import Principal
from awareguard.core.resolver import PermissionResolver
from awareguard.exceptions import InvalidRoleError
from awareguard.rbac import Role, parse_permission, parse_role

router = APIRouter(prefix="/auth", tags=["Auth"])

_audit_logger = logging.getLogger("awareguard.audit")


class CheckPermissionRequest(CamelModel):
    permission: str = Field(min_length=1, max_length=128)


class CheckPermissionResponse(CamelModel):
    has_permission: bool
    role: Role
    user_id: str


class CheckRoleRequest(CamelModel):
    allowed_roles: list[str] = Field(max_length=32)


class CheckRoleResponse(CamelModel):
    has_access: bool
    role: Role
    user_id: str
    allowed_roles: list[Role]


class VerifyTokenRequest(CamelModel):
    token: str = Field(min_length=1, max_length=16384)


class TokenInfo(CamelModel):
    algorithm: str
    type: str
    issued_at: datetime | None = None
    expires_at: datetime | None = None


class VerifyTokenResponse(CamelModel):
    valid: bool
    user_id: str
    email: str | None = None
    claims: dict[str, Any]
    issued_at: datetime | None = None
    expires_at: datetime | None = None


class VerifyRequestTokenResponse(CamelModel):
    valid: bool
    source: str
    user_id: str
    email: str | None = None
    token_info: TokenInfo
    claims: dict[str, Any]


def _rejected(status_code: int, error: str, **fields: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"valid": False, "error": error, **fields})


@router.post("/check-permission", response_model=CheckPermissionResponse)
async def check_permission(
    req: CheckPermissionRequest,
    principal: Principal = Depends(get_principal),
    resolver: PermissionResolver = Depends(get_resolver),
):
    """Whether the caller's persisted role grants a permission."""
    permission = parse_permission(req.permission)
    granted = await resolver.has_permission(permission, principal.external_id)
    return CheckPermissionResponse(
        has_permission=granted, role=principal.role, user_id=principal.external_id
    )


@router.post("/check-role", response_model=CheckRoleResponse)
async def check_role(
    req: CheckRoleRequest,
    principal: Principal = Depends(get_principal),
    resolver: PermissionResolver = Depends(get_resolver),
):
    """Whether the caller's persisted role is one of ``allowedRoles``."""
    allowed: list[Role] = []
    invalid: list[str] = []
    for name in req.allowed_roles:
        try:
            allowed.append(parse_role(name))
        except InvalidRoleError:
            invalid.append(name)
    if invalid:
        raise InvalidRoleError(f"Invalid roles: {', '.join(invalid)}")
    has_access = await resolver.has_role(allowed, principal.external_id)
    return CheckRoleResponse(
        has_access=has_access,
        role=principal.role,
        user_id=principal.external_id,
        allowed_roles=allowed,
    )


@router.get("/verify-token", response_model=VerifyRequestTokenResponse)
async def verify_request_token(request: Request, verifier: TokenVerifier = Depends(get_verifier)):
    """Verify the token carried by this request's header or session cookie."""
    token = extract_token(request, settings.session_cookie)
    if token is None:
        return _rejected(401, "No token found in request")

    decoded = decode_token(token)
    if not decoded.valid:
        return _rejected(400, "Invalid token format", details=decoded.error)

    result = verifier.verify(token)
    if not result.valid or result.claims is None:
        _audit_logger.warning(
            "Token rejected: %s",
            result.error_kind,
            extra={"event_category": "audit", "action": "token_rejected", "path": request.url.path},
        )
        return _rejected(
            401,
            result.error or "Invalid token",
            errorKind=result.error_kind,
            tokenDecoded=True,
        )

    claims = result.claims
    return VerifyRequestTokenResponse(
        valid=True,
        source="request_headers",
        user_id=claims.subject,
        email=claims.email,
        token_info=TokenInfo(
            algorithm=decoded.claims.algorithm or "unknown",
            type=decoded.claims.token_type or "JWT",
            issued_at=claims.issued_at,
            expires_at=claims.expires_at,
        ),
        claims=claims.raw,
    )


@router.post("/verify-token", response_model=VerifyTokenResponse)
@limiter.limit(TOKEN_CHECK_LIMIT)
async def verify_token(
    request: Request,
    req: VerifyTokenRequest,
    verifier: TokenVerifier = Depends(get_verifier),
):
    """Verify a token supplied in the request body."""
    result = verifier.verify(req.token)
    if not result.valid or result.claims is None:
        return _rejected(401, result.error or "Invalid token", errorKind=result.error_kind)

    claims = result.claims
    return VerifyTokenResponse(
        valid=True,
        user_id=claims.subject,
        email=claims.email,
        claims=claims.raw,
        issued_at=claims.issued_at,
        expires_at=claims.expires_at,
    )
