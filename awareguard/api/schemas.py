"""Wire schemas shared by the route modules.

JSON bodies use camelCase on the wire; Python code uses snake_case.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from awareguard.core.models import RoleAuditRecord, User
from awareguard.rbac import ROLE_DISPLAY_NAMES, Role


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UserOut(CamelModel):
    id: str
    user_id: str
    email: str
    first_name: str | None = None
    last_name: str | None = None
    display_name: str
    role: Role
    role_display_name: str
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_user(cls, user: User) -> UserOut:
        return cls(
            id=str(user.id),
            user_id=user.external_id,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            display_name=user.display_name,
            role=user.role,
            role_display_name=ROLE_DISPLAY_NAMES[user.role],
            created_at=user.created_at,
            updated_at=user.updated_at,
        )


class AuditEntryOut(CamelModel):
    id: str
    target_user_id: str
    performed_by: str
    action: str
    previous_role: Role | None = None
    new_role: Role | None = None
    reason: str
    timestamp: datetime

    @classmethod
    def from_record(cls, record: RoleAuditRecord) -> AuditEntryOut:
        return cls(
            id=str(record.id),
            target_user_id=record.target_user_id,
            performed_by=record.performed_by,
            action=record.action.value,
            previous_role=record.previous_role,
            new_role=record.new_role,
            reason=record.reason,
            timestamp=record.timestamp,
        )
