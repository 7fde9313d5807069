"""Shared fixtures for AwareGuard tests."""

from __future__ import annotations

import time

import jwt
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from awareguard.api.app import _db, app, limiter
from awareguard.auth_providers.jwt_provider import SecretKeyVerifier
from awareguard.core.models import User
from awareguard.core.resolver import PermissionResolver
from awareguard.core.service import RoleService
from awareguard.rbac import Role
from awareguard.storage.database import Database

TEST_SECRET = "awareguard-test-secret-0123456789abcdef"

#: Users present in every API test database.
SEEDED_USERS = {
    "user_admin": Role.ADMIN,
    "user_security": Role.SECURITY_OFFICER,
    "user_hr": Role.HR,
    "user_teacher": Role.TEACHER,
    "user_employee": Role.EMPLOYEE,
    "user_student": Role.STUDENT,
}


def _mint(
    sub: str | None = "user_admin",
    *,
    email: str | None = None,
    secret: str = TEST_SECRET,
    algorithm: str = "HS256",
    expires_in: int = 3600,
    issued_at: int | None = None,
    **extra,
) -> str:
    now = int(time.time()) if issued_at is None else issued_at
    payload = {"iat": now, "exp": now + expires_in, **extra}
    if sub is not None:
        payload["sub"] = sub
        payload["email"] = email or f"{sub}@example.com"
    return jwt.encode(payload, secret, algorithm=algorithm)


@pytest.fixture
def make_token():
    """Mint a session token; defaults to a valid HS256 token for user_admin."""
    return _mint


@pytest.fixture
def auth_headers():
    def _headers(sub: str = "user_admin", **kwargs) -> dict[str, str]:
        return {"Authorization": f"Bearer {_mint(sub, **kwargs)}"}

    return _headers


@pytest.fixture
def verifier():
    return SecretKeyVerifier(TEST_SECRET)


@pytest_asyncio.fixture
async def db(tmp_path):
    """Fresh database for each test."""
    database = Database(tmp_path / "test.db")
    await database.connect()
    yield database
    await database.close()


@pytest.fixture
def resolver(db):
    return PermissionResolver(db, Role.STUDENT)


@pytest.fixture
def service(db, resolver):
    return RoleService(db, resolver, audit_page_size=100, max_page_size=500)


@pytest.fixture
def seed_user():
    """Insert a user directly, bypassing the service and its audit trail."""

    async def _seed(database: Database, external_id: str, role: Role, **fields) -> User:
        user = User(
            external_id=external_id,
            email=fields.pop("email", f"{external_id}@example.com"),
            role=role,
            **fields,
        )
        await database.insert_user(user)
        return user

    return _seed


@pytest_asyncio.fixture
async def client(tmp_path, seed_user):
    """HTTP test client wired to a fresh, seeded database."""
    _db.db_path = tmp_path / "api_test.db"
    await _db.connect()
    for external_id, role in SEEDED_USERS.items():
        await seed_user(_db, external_id, role)

    app.state.verifier = SecretKeyVerifier(TEST_SECRET)

    # Disable rate limiter for tests
    limiter.enabled = False

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    await _db.close()
