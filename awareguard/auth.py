"""Request authentication and authorization guards for AwareGuard.

Every protected request walks the same state machine:

- no token                      -> ``unauthenticated`` (401)
- token fails verification      -> ``token_invalid`` (401, terminal)
- resolved role lacks a grant   -> ``denied`` (403)
- otherwise                     -> ``allowed``

Clients supply the session token via:
- ``Authorization: Bearer <token>`` header (preferred)
- the identity provider's session cookie (``AG_SESSION_COOKIE``)

The authenticated :class:`Principal` is returned from the dependency and
passed explicitly to handlers; nothing is stashed on ``request.state``.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import StrEnum

from fastapi import Depends, Request

from awareguard.auth_providers.base import TokenErrorKind, TokenVerifier
from awareguard.config import settings
from awareguard.core.models import Principal
from awareguard.core.resolver import PermissionResolver
from awareguard.core.service import RoleService
from awareguard.exceptions import AuthenticationError, ForbiddenError
from awareguard.rbac import Permission, Role, parse_permission, parse_role
from awareguard.storage.database import Database

_audit_logger = logging.getLogger("awareguard.audit")


def extract_token(request: Request, cookie_name: str = "__session") -> str | None:
    """Extract the session token from the request.

    Priority: Authorization Bearer > session cookie.
    """
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.lower().startswith("bearer "):
        token = auth_header[7:].strip()
        if token:
            return token

    cookie = request.cookies.get(cookie_name)
    if cookie:
        return cookie.strip() or None
    return None


class AccessState(StrEnum):
    UNAUTHENTICATED = "unauthenticated"
    TOKEN_INVALID = "token_invalid"
    DENIED = "denied"
    ALLOWED = "allowed"


@dataclass
class AccessOutcome:
    state: AccessState
    principal: Principal | None = None
    missing: list[Permission] = field(default_factory=list)
    detail: str | None = None
    error_kind: TokenErrorKind | None = None

    @property
    def allowed(self) -> bool:
        return self.state is AccessState.ALLOWED


async def evaluate_access(
    token: str | None,
    verifier: TokenVerifier,
    resolver: PermissionResolver,
    *,
    permissions: Iterable[Permission | str] = (),
    allowed_roles: Iterable[Role | str] | None = None,
) -> AccessOutcome:
    """Run one request through the access state machine.

    All *permissions* must be held.  When *allowed_roles* is given the
    resolved role must also be one of them.
    """
    if not token:
        return AccessOutcome(AccessState.UNAUTHENTICATED, detail="Not authenticated.")

    result = verifier.verify(token)
    if not result.valid or result.claims is None:
        return AccessOutcome(
            AccessState.TOKEN_INVALID,
            detail=result.error or "Invalid token.",
            error_kind=result.error_kind,
        )

    claims = result.claims
    role = await resolver.resolve_role(claims.subject)
    principal = Principal(
        external_id=claims.subject, role=role, email=claims.email, claims=claims.raw
    )

    required = [parse_permission(p) for p in permissions]
    if required:
        check = await resolver.check_permissions(required, claims.subject)
        if not check.granted:
            names = ", ".join(p.value for p in check.missing)
            return AccessOutcome(
                AccessState.DENIED,
                principal=principal,
                missing=check.missing,
                detail=f"Requires permission: {names}",
            )

    if allowed_roles is not None:
        roles = [parse_role(r) for r in allowed_roles]
        if not await resolver.has_role(roles, claims.subject):
            names = ", ".join(r.value for r in roles)
            return AccessOutcome(
                AccessState.DENIED,
                principal=principal,
                detail=f"Requires one of roles: {names}" if roles else "No role is allowed.",
            )

    return AccessOutcome(AccessState.ALLOWED, principal=principal)


# ---------------------------------------------------------------------------
# FastAPI dependencies
# ---------------------------------------------------------------------------


def get_database(request: Request) -> Database:
    return request.app.state.db


def get_verifier(request: Request) -> TokenVerifier:
    return request.app.state.verifier


def get_resolver(db: Database = Depends(get_database)) -> PermissionResolver:
    """A fresh resolver per request; FastAPI shares it between dependencies."""
    return PermissionResolver(db, settings.default_role)


def get_role_service(
    db: Database = Depends(get_database),
    resolver: PermissionResolver = Depends(get_resolver),
) -> RoleService:
    return RoleService(
        db,
        resolver,
        audit_page_size=settings.audit_page_size,
        max_page_size=settings.audit_max_page_size,
        bootstrap_first_admin=settings.bootstrap_first_admin,
    )


def _log_rejection(request: Request, outcome: AccessOutcome) -> None:
    principal = outcome.principal
    _audit_logger.warning(
        "Access %s: %s %s from %s",
        outcome.state.value,
        request.method,
        request.url.path,
        request.client.host if request.client else "unknown",
        extra={
            "event_category": "audit",
            "action": "access_" + outcome.state.value,
            "actor": principal.external_id if principal else None,
            "path": request.url.path,
            "reason": outcome.error_kind.value if outcome.error_kind else outcome.detail,
        },
    )


def _enforce(request: Request, outcome: AccessOutcome) -> Principal:
    if outcome.allowed and outcome.principal is not None:
        return outcome.principal
    _log_rejection(request, outcome)
    if outcome.state is AccessState.DENIED:
        raise ForbiddenError(outcome.detail or "Forbidden.")
    raise AuthenticationError(outcome.detail or "Not authenticated.")


async def get_principal(
    request: Request,
    verifier: TokenVerifier = Depends(get_verifier),
    resolver: PermissionResolver = Depends(get_resolver),
) -> Principal:
    """FastAPI dependency that requires a verified session token."""
    token = extract_token(request, settings.session_cookie)
    outcome = await evaluate_access(token, verifier, resolver)
    return _enforce(request, outcome)


def require_permission(*permissions: Permission | str):
    """Dependency factory: require every one of the given permissions.

    Usage::

        @router.get("/admin/users")
        async def list_users(principal: Principal = Depends(require_permission("view_all_users"))):
            ...
    """
    required = [parse_permission(p) for p in permissions]
    if not required:
        msg = "require_permission needs at least one permission"
        raise ValueError(msg)

    async def _check(
        request: Request,
        verifier: TokenVerifier = Depends(get_verifier),
        resolver: PermissionResolver = Depends(get_resolver),
    ) -> Principal:
        token = extract_token(request, settings.session_cookie)
        outcome = await evaluate_access(token, verifier, resolver, permissions=required)
        return _enforce(request, outcome)

    return _check


def require_role(*roles: Role | str):
    """Dependency factory: require the resolved role to be one of *roles*.

    Role names are validated here, so a typo fails at import time rather
    than silently denying every request.
    """
    allowed = [parse_role(r) for r in roles]

    async def _check(
        request: Request,
        verifier: TokenVerifier = Depends(get_verifier),
        resolver: PermissionResolver = Depends(get_resolver),
    ) -> Principal:
        token = extract_token(request, settings.session_cookie)
        outcome = await evaluate_access(token, verifier, resolver, allowed_roles=allowed)
        return _enforce(request, outcome)

    return _check
