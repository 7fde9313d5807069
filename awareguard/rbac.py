"""Role-Based Access Control table for AwareGuard.

Defines the closed role and permission sets, the static role -> permission
table and the display hierarchy.  Permission checks are set membership
against ``ROLE_PERMISSIONS``; rank exists for ordering only.

Roles (highest -> lowest rank):
    admin              Full platform access, role assignment, system settings
    manager            Team oversight, quiz authoring, team reporting
    hr                 Compliance, certifications, HR reporting
    security_officer   Security policies, incidents, system audit
    teacher            Quiz authoring and class results
    employee           Assigned training, policies and quizzes
    student            Quiz taking and own progress
"""

from __future__ import annotations

from collections.abc import Iterable
from enum import StrEnum
from typing import Any

from awareguard.exceptions import InvalidPermissionError, InvalidRoleError


class Role(StrEnum):
    """Enumerated platform roles."""

    ADMIN = "admin"
    MANAGER = "manager"
    HR = "hr"
    SECURITY_OFFICER = "security_officer"
    TEACHER = "teacher"
    EMPLOYEE = "employee"
    STUDENT = "student"


class Permission(StrEnum):
    """Enumerated fine-grained capabilities."""

    # User management
    MANAGE_USERS = "manage_users"
    VIEW_ALL_USERS = "view_all_users"
    ASSIGN_ROLES = "assign_roles"
    VIEW_TEAM_USERS = "view_team_users"

    # Content management
    CREATE_QUIZ = "create_quiz"
    EDIT_ANY_QUIZ = "edit_any_quiz"
    DELETE_ANY_QUIZ = "delete_any_quiz"
    VIEW_ALL_QUIZZES = "view_all_quizzes"
    MANAGE_TRAINING = "manage_training"
    MANAGE_POLICIES = "manage_policies"

    # Learning
    TAKE_QUIZ = "take_quiz"
    VIEW_OWN_RESULTS = "view_own_results"
    VIEW_OWN_PROGRESS = "view_own_progress"
    ACCESS_TRAINING = "access_training"
    ACCESS_POLICIES = "access_policies"
    ACCESS_FAQ = "access_faq"
    ACCESS_PCI_TRAINING = "access_pci_training"
    VIEW_DATA_HANDLING_POLICIES = "view_data_handling_policies"
    ACCESS_CALL_SECURITY_TRAINING = "access_call_security_training"

    # Analytics & reporting
    VIEW_ALL_RESULTS = "view_all_results"
    VIEW_TEAM_RESULTS = "view_team_results"
    VIEW_CLASS_RESULTS = "view_class_results"
    EXPORT_DATA = "export_data"
    VIEW_ANALYTICS = "view_analytics"
    VIEW_COMPLIANCE_REPORTS = "view_compliance_reports"

    # HR & compliance
    MANAGE_COMPLIANCE = "manage_compliance"
    VIEW_HR_REPORTS = "view_hr_reports"
    MANAGE_CERTIFICATIONS = "manage_certifications"

    # Security
    MANAGE_SECURITY_POLICIES = "manage_security_policies"
    VIEW_SECURITY_INCIDENTS = "view_security_incidents"
    AUDIT_SYSTEM = "audit_system"
    MANAGE_2FA_REQUIREMENTS = "manage_2fa_requirements"

    # System administration
    MANAGE_SYSTEM = "manage_system"
    MANAGE_SETTINGS = "manage_settings"


#: Baseline learner access shared by every role.
_LEARNER: frozenset[Permission] = frozenset(
    {
        Permission.TAKE_QUIZ,
        Permission.VIEW_OWN_RESULTS,
        Permission.VIEW_OWN_PROGRESS,
        Permission.ACCESS_TRAINING,
        Permission.ACCESS_FAQ,
    }
)

#: Workforce training content (policies and financial-services modules).
_WORKFORCE: frozenset[Permission] = _LEARNER | {
    Permission.VIEW_ALL_QUIZZES,
    Permission.ACCESS_POLICIES,
    Permission.ACCESS_PCI_TRAINING,
    Permission.VIEW_DATA_HANDLING_POLICIES,
    Permission.ACCESS_CALL_SECURITY_TRAINING,
}

#: Hand-listed per role.  Not derived from rank: e.g. teacher may delete
#: any quiz while manager may not.
ROLE_PERMISSIONS: dict[Role, frozenset[Permission]] = {
    Role.ADMIN: frozenset(Permission),
    Role.MANAGER: _WORKFORCE
    | {
        Permission.VIEW_TEAM_USERS,
        Permission.CREATE_QUIZ,
        Permission.EDIT_ANY_QUIZ,
        Permission.MANAGE_TRAINING,
        Permission.VIEW_TEAM_RESULTS,
        Permission.VIEW_CLASS_RESULTS,
        Permission.EXPORT_DATA,
        Permission.VIEW_ANALYTICS,
    },
    Role.HR: _WORKFORCE
    | {
        Permission.VIEW_ALL_USERS,
        Permission.MANAGE_COMPLIANCE,
        Permission.VIEW_HR_REPORTS,
        Permission.MANAGE_CERTIFICATIONS,
        Permission.MANAGE_TRAINING,
        Permission.VIEW_ALL_RESULTS,
        Permission.VIEW_COMPLIANCE_REPORTS,
        Permission.EXPORT_DATA,
    },
    Role.SECURITY_OFFICER: _WORKFORCE
    | {
        Permission.MANAGE_SECURITY_POLICIES,
        Permission.VIEW_SECURITY_INCIDENTS,
        Permission.AUDIT_SYSTEM,
        Permission.MANAGE_POLICIES,
        Permission.VIEW_ALL_RESULTS,
        Permission.VIEW_COMPLIANCE_REPORTS,
        Permission.EXPORT_DATA,
        Permission.VIEW_ANALYTICS,
    },
    Role.TEACHER: _LEARNER
    | {
        Permission.CREATE_QUIZ,
        Permission.EDIT_ANY_QUIZ,
        Permission.DELETE_ANY_QUIZ,
        Permission.VIEW_ALL_QUIZZES,
        Permission.MANAGE_TRAINING,
        Permission.VIEW_CLASS_RESULTS,
        Permission.EXPORT_DATA,
        Permission.VIEW_ANALYTICS,
    },
    Role.EMPLOYEE: _WORKFORCE,
    Role.STUDENT: _LEARNER,
}

#: Canonical rank per role, used for display sorting and tie-breaks.
ROLE_RANK: dict[Role, int] = {
    Role.ADMIN: 7,
    Role.MANAGER: 6,
    Role.HR: 5,
    Role.SECURITY_OFFICER: 4,
    Role.TEACHER: 3,
    Role.EMPLOYEE: 2,
    Role.STUDENT: 1,
}

ROLE_DISPLAY_NAMES: dict[Role, str] = {
    Role.ADMIN: "Administrator",
    Role.MANAGER: "Manager",
    Role.HR: "HR Specialist",
    Role.SECURITY_OFFICER: "Security Officer",
    Role.TEACHER: "Teacher",
    Role.EMPLOYEE: "Employee",
    Role.STUDENT: "Student",
}

#: Roles ordered from highest to lowest rank.
ROLE_HIERARCHY: list[Role] = sorted(Role, key=lambda r: ROLE_RANK[r], reverse=True)


def _check_tables_total() -> None:
    for name, table in (
        ("ROLE_PERMISSIONS", ROLE_PERMISSIONS),
        ("ROLE_RANK", ROLE_RANK),
        ("ROLE_DISPLAY_NAMES", ROLE_DISPLAY_NAMES),
    ):
        missing = set(Role) - set(table)
        if missing:
            msg = f"{name} has no entry for: {', '.join(sorted(missing))}"
            raise RuntimeError(msg)
    if len(set(ROLE_RANK.values())) != len(ROLE_RANK):
        raise RuntimeError("ROLE_RANK values must be unique")


_check_tables_total()


def _coerce_role(role: Role | str) -> Role | None:
    try:
        return Role(role)
    except ValueError:
        return None


def parse_role(value: Any) -> Role:
    """Convert *value* to a :class:`Role` or raise :class:`InvalidRoleError`."""
    role = _coerce_role(value) if isinstance(value, str) else None
    if role is None:
        raise InvalidRoleError(f"Invalid role: {value!r}")
    return role


def parse_permission(value: Any) -> Permission:
    """Convert *value* to a :class:`Permission` or raise :class:`InvalidPermissionError`."""
    if isinstance(value, str):
        try:
            return Permission(value)
        except ValueError:
            pass
    raise InvalidPermissionError(f"Invalid permission: {value!r}")


def permissions_of(role: Role | str) -> frozenset[Permission]:
    """Return the fixed permission set for *role*; unknown roles get nothing."""
    resolved = _coerce_role(role)
    if resolved is None:
        return frozenset()
    return ROLE_PERMISSIONS[resolved]


def rank_of(role: Role | str) -> int:
    """Return the display rank of *role* (0 for unknown values)."""
    resolved = _coerce_role(role)
    if resolved is None:
        return 0
    return ROLE_RANK[resolved]


def is_higher_role(role: Role | str, other: Role | str) -> bool:
    return rank_of(role) > rank_of(other)


def sort_by_rank(roles: Iterable[Role | str]) -> list[Role | str]:
    """Order *roles* from highest to lowest rank; unknown values sort last."""
    return sorted(roles, key=rank_of, reverse=True)


def role_catalogue() -> list[dict[str, Any]]:
    """Serialisable description of every role, highest rank first."""
    return [
        {
            "role": role.value,
            "display_name": ROLE_DISPLAY_NAMES[role],
            "rank": ROLE_RANK[role],
            "permissions": sorted(p.value for p in ROLE_PERMISSIONS[role]),
        }
        for role in ROLE_HIERARCHY
    ]
