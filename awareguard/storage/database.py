"""Async SQLite storage layer for users and the role audit log.

Uses aiosqlite for async access. Repository pattern for clean separation.
All statements share one connection, so every read and write goes through
an ``asyncio.Lock``: a role update and its audit append commit together
and no other coroutine can observe the state in between.
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path

import aiosqlite

from awareguard.core.models import RoleAuditRecord, User
from awareguard.exceptions import ConflictError, InvalidRoleError, NotFoundError, StorageError
from awareguard.rbac import Role, parse_role

logger = logging.getLogger("awareguard.storage")

DEFAULT_DB_PATH = Path(os.environ.get("AG_DB_PATH", "awareguard.db"))

# Stored role as it is read back: values outside the Role enum map to the
# default role bound to the placeholder.
_EFFECTIVE_ROLE_SQL = "CASE WHEN role IN (%s) THEN role ELSE ? END" % ", ".join(
    f"'{r.value}'" for r in Role
)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    external_id TEXT NOT NULL UNIQUE,
    email TEXT NOT NULL UNIQUE,
    first_name TEXT,
    last_name TEXT,
    role TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_users_role
    ON users (role);

CREATE TABLE IF NOT EXISTS role_audit_log (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT NOT NULL UNIQUE,
    target_user_id TEXT NOT NULL,
    performed_by TEXT NOT NULL,
    action TEXT NOT NULL,
    previous_role TEXT,
    new_role TEXT,
    reason TEXT NOT NULL,
    timestamp TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_role_audit_target
    ON role_audit_log (target_user_id, seq DESC);

CREATE INDEX IF NOT EXISTS idx_role_audit_performer
    ON role_audit_log (performed_by);

CREATE TRIGGER IF NOT EXISTS role_audit_log_no_update
BEFORE UPDATE ON role_audit_log
BEGIN
    SELECT RAISE(ABORT, 'role_audit_log is append-only');
END;

CREATE TRIGGER IF NOT EXISTS role_audit_log_no_delete
BEFORE DELETE ON role_audit_log
BEGIN
    SELECT RAISE(ABORT, 'role_audit_log is append-only');
END;
"""


class Database:
    """Async SQLite database wrapper."""

    def __init__(
        self, db_path: Path | str = DEFAULT_DB_PATH, default_role: Role | str = Role.STUDENT
    ) -> None:
        self.db_path = Path(db_path)
        self.default_role = parse_role(default_role)
        self._db: aiosqlite.Connection | None = None
        self._lock: asyncio.Lock | None = None

    async def connect(self) -> None:
        self._db = await aiosqlite.connect(self.db_path)
        self._db.row_factory = aiosqlite.Row
        # Created here so the lock belongs to the running event loop.
        self._lock = asyncio.Lock()
        await self._db.executescript(SCHEMA_SQL)
        await self._db.commit()

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None
            self._lock = None

    @property
    def db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._db

    @property
    def lock(self) -> asyncio.Lock:
        if self._lock is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._lock

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Run statements atomically: commit on success, roll back on any error."""
        async with self.lock:
            try:
                yield self.db
            except aiosqlite.IntegrityError as e:
                await self.db.rollback()
                raise ConflictError(f"Write conflicts with existing data: {e}") from e
            except aiosqlite.Error as e:
                await self.db.rollback()
                logger.error("Transaction rolled back: %s", e)
                raise StorageError(f"Storage write failed: {e}") from e
            except BaseException:
                await self.db.rollback()
                raise
            else:
                await self.db.commit()

    async def _fetchone(self, sql: str, params: tuple | list = ()) -> aiosqlite.Row | None:
        async with self.lock:
            cursor = await self.db.execute(sql, params)
            return await cursor.fetchone()

    async def _fetchall(self, sql: str, params: tuple | list = ()) -> list[aiosqlite.Row]:
        async with self.lock:
            cursor = await self.db.execute(sql, params)
            return list(await cursor.fetchall())

    # --- Users ---

    async def get_user(self, external_id: str) -> User | None:
        row = await self._fetchone("SELECT * FROM users WHERE external_id = ?", (external_id,))
        if row is None:
            return None
        return self._row_to_user(row)

    async def list_users(self) -> list[User]:
        rows = await self._fetchall("SELECT * FROM users ORDER BY created_at ASC")
        return [self._row_to_user(r) for r in rows]

    async def count_users_with_role(self, role: Role) -> int:
        row = await self._fetchone("SELECT COUNT(*) FROM users WHERE role = ?", (role.value,))
        return row[0] if row else 0

    async def insert_user(self, user: User) -> None:
        async with self._transaction() as conn:
            await self._insert_user_row(conn, user)

    async def insert_user_with_audit(self, user: User, record: RoleAuditRecord) -> None:
        """Create *user* and append the audit entry for its initial role atomically."""
        async with self._transaction() as conn:
            await self._insert_user_row(conn, user)
            await self._insert_audit_row(conn, record)

    async def update_user_profile(
        self,
        external_id: str,
        *,
        email: str,
        first_name: str | None,
        last_name: str | None,
        updated_at: datetime,
    ) -> User:
        """Refresh identity-provider profile fields.  The role is never touched here."""
        async with self._transaction() as conn:
            cursor = await conn.execute(
                """UPDATE users SET email = ?, first_name = ?, last_name = ?, updated_at = ?
                   WHERE external_id = ?""",
                (email, first_name, last_name, updated_at.isoformat(), external_id),
            )
            if cursor.rowcount != 1:
                raise NotFoundError(f"User {external_id} not found")
            cursor = await conn.execute("SELECT * FROM users WHERE external_id = ?", (external_id,))
            row = await cursor.fetchone()
            return self._row_to_user(row)

    async def change_role(
        self,
        external_id: str,
        *,
        expected_role: Role,
        new_role: Role,
        record: RoleAuditRecord,
        updated_at: datetime,
    ) -> None:
        """Set a user's role and append its audit record in one transaction.

        The update only applies while the stored role, read the way
        :meth:`get_user` reads it, still equals *expected_role*; otherwise
        :class:`ConflictError` is raised and nothing is written.  If the
        audit append fails the role update is rolled back.
        """
        async with self._transaction() as conn:
            cursor = await conn.execute(
                f"""UPDATE users SET role = ?, updated_at = ?
                    WHERE external_id = ? AND {_EFFECTIVE_ROLE_SQL} = ?""",
                (
                    new_role.value,
                    updated_at.isoformat(),
                    external_id,
                    self.default_role.value,
                    expected_role.value,
                ),
            )
            if cursor.rowcount != 1:
                raise ConflictError(
                    f"Role of {external_id} changed concurrently; expected {expected_role.value}"
                )
            await self._insert_audit_row(conn, record)

    async def _insert_user_row(self, conn: aiosqlite.Connection, user: User) -> None:
        await conn.execute(
            """INSERT INTO users
               (id, external_id, email, first_name, last_name, role, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                str(user.id),
                user.external_id,
                user.email,
                user.first_name,
                user.last_name,
                user.role.value,
                user.created_at.isoformat(),
                user.updated_at.isoformat(),
            ),
        )

    def _row_to_user(self, row: aiosqlite.Row) -> User:
        try:
            role = parse_role(row["role"])
        except InvalidRoleError:
            logger.warning(
                "Unrecognised stored role %r for %s; treating as %s",
                row["role"],
                row["external_id"],
                self.default_role.value,
            )
            role = self.default_role
        return User(
            id=row["id"],
            external_id=row["external_id"],
            email=row["email"],
            first_name=row["first_name"],
            last_name=row["last_name"],
            role=role,
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    # --- Role audit log ---

    async def _insert_audit_row(self, conn: aiosqlite.Connection, record: RoleAuditRecord) -> None:
        await conn.execute(
            """INSERT INTO role_audit_log
               (id, target_user_id, performed_by, action, previous_role, new_role, reason, timestamp)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                str(record.id),
                record.target_user_id,
                record.performed_by,
                record.action.value,
                record.previous_role.value if record.previous_role else None,
                record.new_role.value if record.new_role else None,
                record.reason,
                record.timestamp.isoformat(),
            ),
        )

    async def list_role_audit(
        self, target_user_id: str | None = None, limit: int = 100
    ) -> list[RoleAuditRecord]:
        """Return audit entries most recent first, optionally for one target."""
        if target_user_id is not None:
            rows = await self._fetchall(
                "SELECT * FROM role_audit_log WHERE target_user_id = ? ORDER BY seq DESC LIMIT ?",
                (target_user_id, limit),
            )
        else:
            rows = await self._fetchall(
                "SELECT * FROM role_audit_log ORDER BY seq DESC LIMIT ?", (limit,)
            )
        return [self._row_to_audit(r) for r in rows]

    async def count_role_audit(self, target_user_id: str | None = None) -> int:
        if target_user_id is not None:
            row = await self._fetchone(
                "SELECT COUNT(*) FROM role_audit_log WHERE target_user_id = ?", (target_user_id,)
            )
        else:
            row = await self._fetchone("SELECT COUNT(*) FROM role_audit_log")
        return row[0] if row else 0

    def _row_to_audit(self, row: aiosqlite.Row) -> RoleAuditRecord:
        return RoleAuditRecord(
            id=row["id"],
            target_user_id=row["target_user_id"],
            performed_by=row["performed_by"],
            action=row["action"],
            previous_role=row["previous_role"],
            new_role=row["new_role"],
            reason=row["reason"],
            timestamp=row["timestamp"],
        )
