"""Permission resolver: persisted role lookup plus table evaluation.

A principal without a local record, or whose lookup fails, is treated as
unprovisioned and gets the least-privileged default role.  Unrecognised
stored roles are already mapped to that role by the storage layer when
the row is read.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from awareguard.core.models import PermissionCheck
from awareguard.exceptions import InvalidPermissionError
from awareguard.rbac import Permission, Role, parse_permission, parse_role, permissions_of
from awareguard.storage.database import Database

logger = logging.getLogger("awareguard.resolver")


class PermissionResolver:
    """Resolve roles and evaluate permissions for principals.

    Create one instance per request: resolved roles are cached on the
    instance and must not outlive the request that loaded them.
    """

    def __init__(self, db: Database, default_role: Role | str = Role.STUDENT) -> None:
        self.db = db
        self.default_role = parse_role(default_role)
        self._roles: dict[str, Role] = {}

    async def resolve_role(self, external_id: str) -> Role:
        """Return the persisted role of *external_id*, or the default role.  Never raises."""
        cached = self._roles.get(external_id)
        if cached is not None:
            return cached

        role = self.default_role
        try:
            user = await self.db.get_user(external_id)
        except Exception:
            logger.warning(
                "Role lookup failed for %s; using default role %s",
                external_id,
                self.default_role.value,
                exc_info=True,
            )
            # Not cached so a later lookup in the same request can still succeed.
            return role

        if user is None:
            logger.debug("No local record for %s; using default role", external_id)
        else:
            role = user.role
        self._roles[external_id] = role
        return role

    def forget(self, external_id: str) -> None:
        """Drop a cached role, e.g. after it was changed during this request."""
        self._roles.pop(external_id, None)

    async def permissions_for(self, external_id: str) -> frozenset[Permission]:
        return permissions_of(await self.resolve_role(external_id))

    async def has_permission(self, permission: Permission | str, external_id: str) -> bool:
        try:
            required = parse_permission(permission)
        except InvalidPermissionError:
            return False
        return required in await self.permissions_for(external_id)

    async def has_any_permission(
        self, permissions: Iterable[Permission | str], external_id: str
    ) -> bool:
        held = await self.permissions_for(external_id)
        return any(p in held for p in permissions)

    async def has_all_permissions(
        self, permissions: Iterable[Permission | str], external_id: str
    ) -> bool:
        required = list(permissions)
        if not required:
            return False
        held = await self.permissions_for(external_id)
        return all(p in held for p in required)

    async def check_permissions(
        self, required: Iterable[Permission | str], external_id: str
    ) -> PermissionCheck:
        """Detailed check listing which of *required* the principal is missing.

        Raises :class:`InvalidPermissionError` if *required* names an
        unknown permission.
        """
        wanted = [parse_permission(p) for p in required]
        role = await self.resolve_role(external_id)
        held = permissions_of(role)
        missing = [p for p in wanted if p not in held]
        return PermissionCheck(
            granted=bool(wanted) and not missing,
            role=role,
            required=wanted,
            held=sorted(held),
            missing=missing,
        )

    async def has_role(self, allowed_roles: Iterable[Role | str], external_id: str) -> bool:
        """Whether the resolved role is in *allowed_roles*.

        Every entry is validated first; an unknown role raises
        :class:`InvalidRoleError` instead of evaluating to a denial.
        An empty allowed set grants nobody.
        """
        allowed = {parse_role(r) for r in allowed_roles}
        if not allowed:
            return False
        return await self.resolve_role(external_id) in allowed
