"""Tests for role resolution and permission evaluation."""

from __future__ import annotations

import pytest

from awareguard.core.resolver import PermissionResolver
from awareguard.exceptions import InvalidPermissionError, InvalidRoleError
from awareguard.rbac import ROLE_PERMISSIONS, Permission, Role


class TestResolveRole:
    async def test_persisted_role(self, db, resolver, seed_user):
        await seed_user(db, "user_1", Role.HR)
        assert await resolver.resolve_role("user_1") is Role.HR

    async def test_unprovisioned_gets_default(self, resolver):
        assert await resolver.resolve_role("ghost") is Role.STUDENT

    async def test_configured_default(self, db):
        resolver = PermissionResolver(db, "employee")
        assert await resolver.resolve_role("ghost") is Role.EMPLOYEE

    async def test_invalid_default_rejected(self, db):
        with pytest.raises(InvalidRoleError):
            PermissionResolver(db, "root")

    async def test_lookup_failure_falls_back(self, db, resolver, seed_user, monkeypatch):
        await seed_user(db, "user_1", Role.ADMIN)

        async def boom(external_id):
            raise RuntimeError("database unavailable")

        monkeypatch.setattr(db, "get_user", boom)
        assert await resolver.resolve_role("user_1") is Role.STUDENT

        # The failure is not cached; the next lookup can succeed.
        monkeypatch.undo()
        assert await resolver.resolve_role("user_1") is Role.ADMIN

    async def test_unrecognised_stored_role_resolves_to_default(
        self, db, resolver, seed_user, caplog
    ):
        await seed_user(db, "user_1", Role.ADMIN)
        await db.db.execute("UPDATE users SET role = 'superuser' WHERE external_id = 'user_1'")
        await db.db.commit()

        assert await resolver.resolve_role("user_1") is Role.STUDENT
        assert not await resolver.has_permission(Permission.ASSIGN_ROLES, "user_1")
        assert "Role lookup failed" not in caplog.text

    async def test_role_cached_per_instance(self, db, resolver, seed_user, monkeypatch):
        await seed_user(db, "user_1", Role.TEACHER)
        assert await resolver.resolve_role("user_1") is Role.TEACHER

        calls = []

        async def counting(external_id):
            calls.append(external_id)
            return None

        monkeypatch.setattr(db, "get_user", counting)
        assert await resolver.resolve_role("user_1") is Role.TEACHER
        assert calls == []

        resolver.forget("user_1")
        assert await resolver.resolve_role("user_1") is Role.STUDENT
        assert calls == ["user_1"]

    async def test_new_instance_sees_fresh_role(self, db, seed_user):
        await seed_user(db, "user_1", Role.TEACHER)
        first = PermissionResolver(db)
        assert await first.resolve_role("user_1") is Role.TEACHER
        await db.db.execute("UPDATE users SET role = 'manager' WHERE external_id = 'user_1'")
        await db.db.commit()
        assert await PermissionResolver(db).resolve_role("user_1") is Role.MANAGER


class TestPermissionChecks:
    async def test_permissions_for(self, db, resolver, seed_user):
        await seed_user(db, "user_1", Role.SECURITY_OFFICER)
        assert await resolver.permissions_for("user_1") == ROLE_PERMISSIONS[Role.SECURITY_OFFICER]

    async def test_unprovisioned_fails_closed(self, resolver):
        assert await resolver.has_permission(Permission.ACCESS_TRAINING, "ghost")
        assert not await resolver.has_permission(Permission.VIEW_ALL_USERS, "ghost")
        assert not await resolver.has_permission(Permission.ASSIGN_ROLES, "ghost")

    async def test_has_permission(self, db, resolver, seed_user):
        await seed_user(db, "user_1", Role.ADMIN)
        assert await resolver.has_permission("assign_roles", "user_1")

    async def test_unknown_permission_is_false(self, db, resolver, seed_user):
        await seed_user(db, "user_1", Role.ADMIN)
        assert await resolver.has_permission("launch_rockets", "user_1") is False

    async def test_has_any_permission(self, db, resolver, seed_user):
        await seed_user(db, "user_1", Role.TEACHER)
        assert await resolver.has_any_permission(
            [Permission.MANAGE_SYSTEM, Permission.CREATE_QUIZ], "user_1"
        )
        assert not await resolver.has_any_permission([Permission.MANAGE_SYSTEM], "user_1")
        assert not await resolver.has_any_permission([], "user_1")

    async def test_has_all_permissions(self, db, resolver, seed_user):
        await seed_user(db, "user_1", Role.TEACHER)
        assert await resolver.has_all_permissions(
            [Permission.CREATE_QUIZ, Permission.DELETE_ANY_QUIZ], "user_1"
        )
        assert not await resolver.has_all_permissions(
            [Permission.CREATE_QUIZ, Permission.MANAGE_SYSTEM], "user_1"
        )

    async def test_has_all_permissions_empty_is_false(self, db, resolver, seed_user):
        await seed_user(db, "user_1", Role.ADMIN)
        assert await resolver.has_all_permissions([], "user_1") is False

    async def test_check_permissions_lists_missing(self, db, resolver, seed_user):
        await seed_user(db, "user_1", Role.EMPLOYEE)
        check = await resolver.check_permissions(
            ["take_quiz", "audit_system", "export_data"], "user_1"
        )
        assert check.granted is False
        assert check.role is Role.EMPLOYEE
        assert check.missing == [Permission.AUDIT_SYSTEM, Permission.EXPORT_DATA]

    async def test_check_permissions_granted(self, db, resolver, seed_user):
        await seed_user(db, "user_1", Role.ADMIN)
        check = await resolver.check_permissions([Permission.MANAGE_SETTINGS], "user_1")
        assert check.granted is True
        assert check.missing == []

    async def test_check_permissions_rejects_unknown(self, resolver):
        with pytest.raises(InvalidPermissionError):
            await resolver.check_permissions(["not_a_permission"], "ghost")


class TestHasRole:
    async def test_matches(self, db, resolver, seed_user):
        await seed_user(db, "user_1", Role.HR)
        assert await resolver.has_role([Role.ADMIN, Role.HR], "user_1")
        assert not await resolver.has_role(["admin"], "user_1")

    async def test_empty_set_grants_nobody(self, db, resolver, seed_user):
        await seed_user(db, "user_1", Role.ADMIN)
        assert await resolver.has_role([], "user_1") is False

    async def test_invalid_role_raises(self, db, resolver, seed_user):
        await seed_user(db, "user_1", Role.ADMIN)
        with pytest.raises(InvalidRoleError):
            await resolver.has_role(["admin", "superuser"], "user_1")

    async def test_unprovisioned_matches_default(self, resolver):
        assert await resolver.has_role([Role.STUDENT], "ghost")
