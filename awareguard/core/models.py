"""Domain models for AwareGuard.

- User: a provisioned principal with exactly one role
- UserProfile: validated profile fields written on sync and creation
- RoleAuditRecord: immutable entry describing a role change
- Principal: the authenticated caller, threaded explicitly through guards
- RoleChange / SyncResult / PermissionCheck: service results
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from awareguard.rbac import Permission, Role

#: Sentinel actor for changes not performed by a person.
SYSTEM_ACTOR = "system"

DEFAULT_AUDIT_REASON = "No reason provided"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> UUID:
    return uuid4()


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class AuditAction(str, Enum):
    ROLE_CHANGED = "role_changed"
    ROLE_REMOVED = "role_removed"
    ROLE_ASSIGNED = "role_assigned"
    BOOTSTRAP_ADMIN = "bootstrap_admin"


class SyncAction(str, Enum):
    CREATED = "created"
    CREATED_AS_ADMIN = "created_as_admin"
    UPDATED = "updated"


# ---------------------------------------------------------------------------
# Persisted records
# ---------------------------------------------------------------------------


class User(BaseModel):
    """Locally provisioned principal keyed by the identity provider's subject id."""

    id: UUID = Field(default_factory=_new_id)
    external_id: str = Field(min_length=1, max_length=255)
    email: str = Field(min_length=3, max_length=320)
    first_name: str | None = None
    last_name: str | None = None
    role: Role
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def display_name(self) -> str:
        parts = [p for p in (self.first_name, self.last_name) if p]
        return " ".join(parts) if parts else self.email


class RoleAuditRecord(BaseModel):
    """Append-only record of a single role mutation."""

    model_config = ConfigDict(frozen=True)

    id: UUID = Field(default_factory=_new_id)
    target_user_id: str = Field(description="External id of the principal whose role changed")
    performed_by: str = Field(description="External id of the actor, or 'system'")
    action: AuditAction
    previous_role: Role | None = None
    new_role: Role | None = None
    reason: str = DEFAULT_AUDIT_REASON
    timestamp: datetime = Field(default_factory=utcnow)


class UserProfile(BaseModel):
    """Identity-provider profile fields accepted for a user record."""

    email: EmailStr
    first_name: str | None = Field(default=None, max_length=255)
    last_name: str | None = Field(default=None, max_length=255)


# ---------------------------------------------------------------------------
# Request-scoped values
# ---------------------------------------------------------------------------


class Principal(BaseModel):
    """An authenticated caller with the role resolved for this request."""

    model_config = ConfigDict(frozen=True)

    external_id: str
    role: Role
    email: str | None = None
    claims: dict[str, Any] = Field(default_factory=dict)


class PermissionCheck(BaseModel):
    """Detailed result of checking several permissions at once."""

    granted: bool
    role: Role
    required: list[Permission]
    held: list[Permission]
    missing: list[Permission]


class RoleChange(BaseModel):
    user_id: str
    previous_role: Role
    new_role: Role
    assigned_by: str


class SyncResult(BaseModel):
    action: SyncAction
    user: User
