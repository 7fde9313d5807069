"""Admin routes for the role catalogue, role assignment and the audit log."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from awareguard.api.schemas import AuditEntryOut, CamelModel
from awareguard.auth import get_principal, get_resolver, get_role_service, require_permission
from awareguard.core.models import Principal, RoleChange
from awareguard.core.resolver import PermissionResolver
from awareguard.core.service import RoleService
from awareguard.rbac import ROLE_PERMISSIONS, Permission, Role, role_catalogue

router = APIRouter(prefix="/admin", tags=["Admin"])


class AssignRoleRequest(CamelModel):
    role: str = ""
    reason: str | None = None


class RoleChangeResponse(CamelModel):
    success: bool = True
    user_id: str
    previous_role: Role
    new_role: Role
    assigned_by: str

    @classmethod
    def from_change(cls, change: RoleChange) -> RoleChangeResponse:
        return cls(
            user_id=change.user_id,
            previous_role=change.previous_role,
            new_role=change.new_role,
            assigned_by=change.assigned_by,
        )


class UserRoleResponse(CamelModel):
    user_id: str
    role: Role


class RoleInfo(CamelModel):
    role: Role
    display_name: str
    rank: int
    permissions: list[str]


class AuditLogResponse(CamelModel):
    entries: list[AuditEntryOut]
    total: int


@router.get("/roles")
async def list_roles(_: Principal = Depends(require_permission(Permission.VIEW_ALL_USERS))):
    """All roles with their permissions, ordered highest rank first."""
    return {
        "roles": [
            RoleInfo(**entry).model_dump(by_alias=True, mode="json") for entry in role_catalogue()
        ],
        "permissions": [p.value for p in Permission],
        "rolePermissions": {
            role.value: sorted(p.value for p in perms) for role, perms in ROLE_PERMISSIONS.items()
        },
    }


@router.get("/roles/{user_id}", response_model=UserRoleResponse)
async def get_user_role(
    user_id: str,
    _: Principal = Depends(require_permission(Permission.VIEW_ALL_USERS)),
    resolver: PermissionResolver = Depends(get_resolver),
):
    """The effective role of a user; unprovisioned users report the default role."""
    return UserRoleResponse(user_id=user_id, role=await resolver.resolve_role(user_id))


@router.put("/roles/{user_id}", response_model=RoleChangeResponse)
async def assign_role(
    user_id: str,
    req: AssignRoleRequest,
    principal: Principal = Depends(get_principal),
    service: RoleService = Depends(get_role_service),
):
    change = await service.assign_role(principal, user_id, req.role, req.reason)
    return RoleChangeResponse.from_change(change)


@router.delete("/roles/{user_id}", response_model=RoleChangeResponse)
async def remove_role(
    user_id: str,
    reason: str | None = Query(default=None, max_length=500),
    principal: Principal = Depends(get_principal),
    service: RoleService = Depends(get_role_service),
):
    """Reset a user to the default role."""
    change = await service.remove_role(principal, user_id, reason)
    return RoleChangeResponse.from_change(change)


@router.get("/audit-log", response_model=AuditLogResponse)
async def audit_log(
    user_id: str | None = Query(default=None, alias="userId", max_length=255),
    limit: int | None = Query(default=None, ge=1),
    principal: Principal = Depends(get_principal),
    service: RoleService = Depends(get_role_service),
):
    """Role audit entries, most recent first."""
    records = await service.list_audit_log(principal, user_id, limit)
    total = await service.count_audit_log(principal, user_id)
    return AuditLogResponse(entries=[AuditEntryOut.from_record(r) for r in records], total=total)
