"""Role service layer: audited role mutations, provisioning and audit queries."""

from __future__ import annotations

import logging

import pydantic

from awareguard.core.models import (
    DEFAULT_AUDIT_REASON,
    SYSTEM_ACTOR,
    AuditAction,
    Principal,
    RoleAuditRecord,
    RoleChange,
    SyncAction,
    SyncResult,
    User,
    UserProfile,
    utcnow,
)
from awareguard.core.resolver import PermissionResolver
from awareguard.exceptions import (
    AuthenticationError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    SelfModificationDenied,
    ValidationError,
)
from awareguard.rbac import ROLE_RANK, Permission, Role, parse_role
from awareguard.storage.database import Database

logger = logging.getLogger("awareguard.service")
_audit_logger = logging.getLogger("awareguard.audit")


def _validate_profile(email: str, first_name: str | None, last_name: str | None) -> UserProfile:
    """Validate profile fields before anything is written.  Token claims may be malformed."""
    try:
        return UserProfile(email=email, first_name=first_name, last_name=last_name)
    except pydantic.ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(p) for p in first["loc"])
        raise ValidationError(f"Invalid {field}: {first['msg']}") from e


class RoleService:
    """Orchestrates role assignment, user provisioning and the role audit log.

    Authorization is always evaluated through the resolver against the
    persisted role of the actor, never against token claims.
    """

    def __init__(
        self,
        db: Database,
        resolver: PermissionResolver,
        *,
        audit_page_size: int = 100,
        max_page_size: int = 500,
        bootstrap_first_admin: bool = False,
    ) -> None:
        self.db = db
        self.resolver = resolver
        self.audit_page_size = audit_page_size
        self.max_page_size = max_page_size
        self.bootstrap_first_admin = bootstrap_first_admin

    @property
    def default_role(self) -> Role:
        return self.resolver.default_role

    async def _require(self, actor: Principal | None, permission: Permission) -> Principal:
        if actor is None:
            raise AuthenticationError("Not authenticated.")
        if not await self.resolver.has_permission(permission, actor.external_id):
            _audit_logger.warning(
                "Permission denied: %s lacks %s",
                actor.external_id,
                permission.value,
                extra={
                    "event_category": "audit",
                    "action": "permission_denied",
                    "actor": actor.external_id,
                },
            )
            raise ForbiddenError(f"Requires permission: {permission.value}")
        return actor

    # --- Role mutation ---

    async def assign_role(
        self,
        actor: Principal | None,
        target_external_id: str,
        new_role: Role | str,
        reason: str | None = None,
        *,
        action: AuditAction = AuditAction.ROLE_CHANGED,
    ) -> RoleChange:
        """Assign *new_role* to the target and append one audit record.

        Checks run in order and stop at the first failure, before any
        write: authenticated actor, ``assign_roles`` permission, actor is
        not the target, valid role, target exists.
        """
        actor = await self._require(actor, Permission.ASSIGN_ROLES)
        if actor.external_id == target_external_id:
            raise SelfModificationDenied("Cannot change your own role")
        role = parse_role(new_role)

        target = await self.db.get_user(target_external_id)
        if target is None:
            raise NotFoundError(f"User {target_external_id} not found")

        previous_role = target.role
        record = RoleAuditRecord(
            target_user_id=target_external_id,
            performed_by=actor.external_id,
            action=action,
            previous_role=previous_role,
            new_role=role,
            reason=reason or DEFAULT_AUDIT_REASON,
        )
        await self.db.change_role(
            target_external_id,
            expected_role=previous_role,
            new_role=role,
            record=record,
            updated_at=record.timestamp,
        )
        self.resolver.forget(target_external_id)

        _audit_logger.info(
            "Role of %s changed from %s to %s by %s",
            target_external_id,
            previous_role.value,
            role.value,
            actor.external_id,
            extra={
                "event_category": "audit",
                "action": action.value,
                "actor": actor.external_id,
                "target": target_external_id,
            },
        )
        return RoleChange(
            user_id=target_external_id,
            previous_role=previous_role,
            new_role=role,
            assigned_by=actor.external_id,
        )

    async def remove_role(
        self, actor: Principal | None, target_external_id: str, reason: str | None = None
    ) -> RoleChange:
        """Reset the target to the default role."""
        return await self.assign_role(
            actor,
            target_external_id,
            self.default_role,
            reason,
            action=AuditAction.ROLE_REMOVED,
        )

    # --- Audit queries ---

    def clamp_limit(self, limit: int | None) -> int:
        if limit is None:
            return self.audit_page_size
        return max(1, min(limit, self.max_page_size))

    async def list_audit_log(
        self,
        actor: Principal | None,
        target_external_id: str | None = None,
        limit: int | None = None,
    ) -> list[RoleAuditRecord]:
        """Most recent audit entries first, bounded by the page size."""
        await self._require(actor, Permission.AUDIT_SYSTEM)
        return await self.db.list_role_audit(target_external_id, limit=self.clamp_limit(limit))

    async def count_audit_log(
        self, actor: Principal | None, target_external_id: str | None = None
    ) -> int:
        await self._require(actor, Permission.AUDIT_SYSTEM)
        return await self.db.count_role_audit(target_external_id)

    # --- Users ---

    async def get_user(self, external_id: str) -> User | None:
        return await self.db.get_user(external_id)

    async def list_users(self, actor: Principal | None) -> list[User]:
        await self._require(actor, Permission.VIEW_ALL_USERS)
        users = await self.db.list_users()
        return sorted(users, key=lambda u: (-ROLE_RANK[u.role], u.email))

    async def sync_user(
        self,
        external_id: str,
        email: str,
        first_name: str | None = None,
        last_name: str | None = None,
    ) -> SyncResult:
        """Provision or refresh the local record of a verified identity.

        Existing users keep their role.  New users get the default role,
        or ``admin`` when bootstrap is enabled and no admin exists yet.
        """
        if not external_id:
            raise ValidationError("A verified subject id is required")
        if not email:
            raise ValidationError("An email address is required")
        profile = _validate_profile(email, first_name, last_name)

        now = utcnow()
        existing = await self.db.get_user(external_id)
        if existing is not None:
            user = await self.db.update_user_profile(
                external_id,
                email=profile.email,
                first_name=profile.first_name,
                last_name=profile.last_name,
                updated_at=now,
            )
            return SyncResult(action=SyncAction.UPDATED, user=user)

        if self.bootstrap_first_admin and await self.db.count_users_with_role(Role.ADMIN) == 0:
            user = User(
                external_id=external_id,
                email=profile.email,
                first_name=profile.first_name,
                last_name=profile.last_name,
                role=Role.ADMIN,
                created_at=now,
                updated_at=now,
            )
            record = RoleAuditRecord(
                target_user_id=external_id,
                performed_by=SYSTEM_ACTOR,
                action=AuditAction.BOOTSTRAP_ADMIN,
                previous_role=None,
                new_role=Role.ADMIN,
                reason="First user provisioned while no admin existed",
                timestamp=now,
            )
            await self.db.insert_user_with_audit(user, record)
            _audit_logger.warning(
                "Bootstrapped %s as first admin",
                external_id,
                extra={
                    "event_category": "audit",
                    "action": AuditAction.BOOTSTRAP_ADMIN.value,
                    "actor": SYSTEM_ACTOR,
                    "target": external_id,
                },
            )
            return SyncResult(action=SyncAction.CREATED_AS_ADMIN, user=user)

        user = User(
            external_id=external_id,
            email=profile.email,
            first_name=profile.first_name,
            last_name=profile.last_name,
            role=self.default_role,
            created_at=now,
            updated_at=now,
        )
        await self.db.insert_user(user)
        logger.info("Provisioned %s with role %s", external_id, user.role.value)
        return SyncResult(action=SyncAction.CREATED, user=user)

    async def create_user(
        self,
        actor: Principal | None,
        external_id: str,
        email: str,
        first_name: str | None = None,
        last_name: str | None = None,
        role: Role | str | None = None,
        reason: str | None = None,
    ) -> User:
        """Create a user ahead of their first sign-in; the initial role is audited."""
        actor = await self._require(actor, Permission.MANAGE_USERS)
        profile = _validate_profile(email, first_name, last_name)
        initial_role = parse_role(role) if role is not None else self.default_role
        if initial_role != self.default_role and not await self.resolver.has_permission(
            Permission.ASSIGN_ROLES, actor.external_id
        ):
            raise ForbiddenError(f"Requires permission: {Permission.ASSIGN_ROLES.value}")

        if await self.db.get_user(external_id) is not None:
            raise ConflictError(f"User {external_id} already exists")

        now = utcnow()
        user = User(
            external_id=external_id,
            email=profile.email,
            first_name=profile.first_name,
            last_name=profile.last_name,
            role=initial_role,
            created_at=now,
            updated_at=now,
        )
        record = RoleAuditRecord(
            target_user_id=external_id,
            performed_by=actor.external_id,
            action=AuditAction.ROLE_ASSIGNED,
            previous_role=None,
            new_role=initial_role,
            reason=reason or DEFAULT_AUDIT_REASON,
            timestamp=now,
        )
        await self.db.insert_user_with_audit(user, record)
        _audit_logger.info(
            "User %s created with role %s by %s",
            external_id,
            initial_role.value,
            actor.external_id,
            extra={
                "event_category": "audit",
                "action": AuditAction.ROLE_ASSIGNED.value,
                "actor": actor.external_id,
                "target": external_id,
            },
        )
        return user
