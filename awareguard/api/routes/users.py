"""User provisioning routes: self-sync, self-lookup and admin user management."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import EmailStr, Field

from awareguard.api.schemas import CamelModel, UserOut
from awareguard.auth import get_principal, get_resolver, get_role_service
from awareguard.core.models import Principal
from awareguard.core.resolver import PermissionResolver
from awareguard.core.service import RoleService
from awareguard.exceptions import ValidationError
from awareguard.rbac import Role

router = APIRouter(prefix="/users", tags=["Users"])
admin_router = APIRouter(prefix="/admin", tags=["Admin"])


class SyncUserRequest(CamelModel):
    email: EmailStr | None = None
    first_name: str | None = Field(default=None, max_length=255)
    last_name: str | None = Field(default=None, max_length=255)


class SyncUserResponse(CamelModel):
    success: bool = True
    action: str
    user: UserOut


class MeResponse(CamelModel):
    user: UserOut | None
    role: Role
    permissions: list[str]


class CreateUserRequest(CamelModel):
    user_id: str = Field(min_length=1, max_length=255)
    email: EmailStr
    first_name: str | None = Field(default=None, max_length=255)
    last_name: str | None = Field(default=None, max_length=255)
    role: str | None = None
    reason: str | None = Field(default=None, max_length=500)


class UserListResponse(CamelModel):
    users: list[UserOut]
    total: int


def _claim(principal: Principal, *names: str) -> str | None:
    for name in names:
        value = principal.claims.get(name)
        if isinstance(value, str) and value:
            return value
    return None


@router.post("/sync", response_model=SyncUserResponse)
async def sync_user(
    req: SyncUserRequest,
    principal: Principal = Depends(get_principal),
    service: RoleService = Depends(get_role_service),
):
    """Provision or refresh the caller's local record from their verified token.

    Body fields override the token's profile claims; the role is never
    taken from either.
    """
    email = req.email or principal.email
    if not email:
        raise ValidationError("An email address is required")
    result = await service.sync_user(
        principal.external_id,
        email,
        req.first_name or _claim(principal, "first_name", "given_name"),
        req.last_name or _claim(principal, "last_name", "family_name"),
    )
    return SyncUserResponse(action=result.action.value, user=UserOut.from_user(result.user))


@router.get("/me", response_model=MeResponse)
async def me(
    principal: Principal = Depends(get_principal),
    service: RoleService = Depends(get_role_service),
    resolver: PermissionResolver = Depends(get_resolver),
):
    user = await service.get_user(principal.external_id)
    permissions = await resolver.permissions_for(principal.external_id)
    return MeResponse(
        user=UserOut.from_user(user) if user else None,
        role=principal.role,
        permissions=sorted(p.value for p in permissions),
    )


@admin_router.get("/users", response_model=UserListResponse)
async def list_users(
    principal: Principal = Depends(get_principal),
    service: RoleService = Depends(get_role_service),
):
    """All provisioned users, highest role first."""
    users = await service.list_users(principal)
    return UserListResponse(users=[UserOut.from_user(u) for u in users], total=len(users))


@admin_router.post("/users", response_model=UserOut, status_code=201)
async def create_user(
    req: CreateUserRequest,
    principal: Principal = Depends(get_principal),
    service: RoleService = Depends(get_role_service),
):
    user = await service.create_user(
        principal,
        req.user_id,
        req.email,
        req.first_name,
        req.last_name,
        role=req.role,
        reason=req.reason,
    )
    return UserOut.from_user(user)
