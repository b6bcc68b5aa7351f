"""Database repository for back-office account data."""

from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, Optional, Tuple

import psycopg
from psycopg.rows import tuple_row
from psycopg.types.json import Json
from psycopg_pool import ConnectionPool

from .domain.account import Account
from .domain.errors import DuplicateEmail, PersistenceError

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).with_name("schema.sql")

_ACCOUNT_COLUMNS = (
    "account_id, name, email, password_hash, created_at, updated_at, "
    "email_verified_at, suspended_at"
)


@dataclass(slots=True)
class AuditLogRecord:
    """Row projection for items in account_audit_log."""

    audit_id: int
    account_id: str | None
    event_type: str
    actor: str | None
    metadata: dict[str, Any]
    created_at: datetime


@contextmanager
def _store_errors(operation: str) -> Iterator[None]:
    """Re-raise driver and pool failures as ``PersistenceError``."""
    try:
        yield
    except psycopg.Error as exc:
        logger.error("account store %s failed: %s", operation, exc)
        raise PersistenceError(f"{operation} failed") from exc


class AccountRepository:
    """Postgres-backed account persistence."""

    def __init__(self, pool: ConnectionPool) -> None:
        """Store the connection pool used for all database interactions."""
        self._pool = pool

    def apply_schema(self) -> None:
        """Create the account tables when they do not exist yet."""
        ddl = SCHEMA_PATH.read_text(encoding="utf-8")
        with _store_errors("apply_schema"):
            with self._pool.connection() as conn:
                conn.execute(ddl)
                conn.commit()

    def create_account(
        self, *, name: str, email: str, password_hash: str, actor: str | None = None
    ) -> Account:
        """Insert a new account row and its ``account.created`` audit entry."""
        account_id = str(uuid.uuid4())
        now = datetime.now(timezone.utc)
        with _store_errors("create_account"):
            with self._pool.connection() as conn:
                with conn.transaction():
                    with conn.cursor(row_factory=tuple_row) as cur:
                        try:
                            cur.execute(
                                f"""
                                INSERT INTO accounts (account_id, name, email, password_hash, created_at, updated_at)
                                VALUES (%s, %s, %s, %s, %s, %s)
                                RETURNING {_ACCOUNT_COLUMNS}
                                """,
                                (account_id, name, email, password_hash, now, now),
                            )
                        except psycopg.errors.UniqueViolation as exc:
                            raise DuplicateEmail(email) from exc
                        account = self._map_record(cur.fetchone())
                        self._insert_audit(
                            cur, account_id, "account.created", actor, {"email": account.email}
                        )
        return account

    def get_account(self, account_id: str) -> Account | None:
        """Fetch an account by primary key or return ``None``."""
        return self._fetch_one(
            f"SELECT {_ACCOUNT_COLUMNS} FROM accounts WHERE account_id = %s",
            (account_id,),
            "get_account",
        )

    def get_account_by_email(self, email: str) -> Account | None:
        """Fetch an account by case-insensitive e-mail match."""
        return self._fetch_one(
            f"SELECT {_ACCOUNT_COLUMNS} FROM accounts WHERE lower(email) = lower(%s)",
            (email,),
            "get_account_by_email",
        )

    def list_accounts(self, *, suspended: bool | None = None) -> list[Account]:
        """Return accounts ordered by creation, optionally filtered by suspension status."""
        where_sql = ""
        if suspended is True:
            where_sql = "WHERE suspended_at IS NOT NULL"
        elif suspended is False:
            where_sql = "WHERE suspended_at IS NULL"
        query = f"SELECT {_ACCOUNT_COLUMNS} FROM accounts {where_sql} ORDER BY created_at, account_id"
        with _store_errors("list_accounts"):
            with self._pool.connection() as conn:
                with conn.cursor(row_factory=tuple_row) as cur:
                    cur.execute(query)
                    rows = cur.fetchall()
        return [self._map_record(row) for row in rows]

    def update_account(
        self,
        account_id: str,
        *,
        name: str | None = None,
        email: str | None = None,
        password_hash: str | None = None,
        actor: str | None = None,
        changed_fields: list[str] | None = None,
    ) -> Account | None:
        """Apply a partial edit; ``None`` columns keep their stored value."""
        now = datetime.now(timezone.utc)
        with _store_errors("update_account"):
            with self._pool.connection() as conn:
                with conn.transaction():
                    with conn.cursor(row_factory=tuple_row) as cur:
                        try:
                            cur.execute(
                                f"""
                                UPDATE accounts
                                SET name = COALESCE(%s, name),
                                    email = COALESCE(%s, email),
                                    password_hash = COALESCE(%s, password_hash),
                                    updated_at = %s
                                WHERE account_id = %s
                                RETURNING {_ACCOUNT_COLUMNS}
                                """,
                                (name, email, password_hash, now, account_id),
                            )
                        except psycopg.errors.UniqueViolation as exc:
                            raise DuplicateEmail(email or "") from exc
                        row = cur.fetchone()
                        if row is None:
                            return None
                        self._insert_audit(
                            cur, account_id, "account.updated", actor, {"fields": changed_fields or []}
                        )
        return self._map_record(row)

    def delete_account(self, account_id: str, *, actor: str | None = None) -> bool:
        """Delete the account row, returning ``False`` when nothing matched."""
        with _store_errors("delete_account"):
            with self._pool.connection() as conn:
                with conn.transaction():
                    with conn.cursor() as cur:
                        cur.execute("DELETE FROM accounts WHERE account_id = %s", (account_id,))
                        if cur.rowcount == 0:
                            return False
                        self._insert_audit(cur, account_id, "account.deleted", actor, {})
        return True

    def mark_suspended(
        self, account_id: str, at: datetime, *, actor: str | None = None
    ) -> Account | None:
        """Stamp ``suspended_at`` unless the account is already suspended.

        The stored value is never earlier than ``created_at``. The update and
        its ``account.suspended`` audit entry commit together.
        """
        with _store_errors("mark_suspended"):
            with self._pool.connection() as conn:
                with conn.transaction():
                    with conn.cursor(row_factory=tuple_row) as cur:
                        cur.execute(
                            f"""
                            UPDATE accounts
                            SET suspended_at = COALESCE(suspended_at, GREATEST(%s, created_at)),
                                updated_at = %s
                            WHERE account_id = %s
                            RETURNING {_ACCOUNT_COLUMNS}
                            """,
                            (at, at, account_id),
                        )
                        row = cur.fetchone()
                        if row is None:
                            return None
                        account = self._map_record(row)
                        self._insert_audit(
                            cur,
                            account_id,
                            "account.suspended",
                            actor,
                            {"suspended_at": account.suspended_at.isoformat()},
                        )
        return account

    def clear_suspension(self, account_id: str, *, actor: str | None = None) -> Account | None:
        """Reset ``suspended_at`` to NULL and record ``account.unsuspended``."""
        now = datetime.now(timezone.utc)
        with _store_errors("clear_suspension"):
            with self._pool.connection() as conn:
                with conn.transaction():
                    with conn.cursor(row_factory=tuple_row) as cur:
                        cur.execute(
                            "SELECT suspended_at FROM accounts WHERE account_id = %s FOR UPDATE",
                            (account_id,),
                        )
                        previous = cur.fetchone()
                        if previous is None:
                            return None
                        cur.execute(
                            f"""
                            UPDATE accounts
                            SET suspended_at = NULL, updated_at = %s
                            WHERE account_id = %s
                            RETURNING {_ACCOUNT_COLUMNS}
                            """,
                            (now, account_id),
                        )
                        account = self._map_record(cur.fetchone())
                        self._insert_audit(
                            cur,
                            account_id,
                            "account.unsuspended",
                            actor,
                            {"was_suspended": previous[0] is not None},
                        )
        return account

    def _fetch_one(self, query: str, params: tuple, operation: str) -> Account | None:
        with _store_errors(operation):
            with self._pool.connection() as conn:
                with conn.cursor(row_factory=tuple_row) as cur:
                    cur.execute(query, params)
                    row = cur.fetchone()
        return self._map_record(row) if row else None

    def _map_record(self, row: tuple) -> Account:
        """Convert a raw database tuple into the domain ``Account`` dataclass."""
        return Account(
            account_id=str(row[0]),
            name=row[1],
            email=row[2],
            password_hash=row[3],
            created_at=row[4],
            updated_at=row[5],
            email_verified_at=row[6],
            suspended_at=row[7],
        )

    @staticmethod
    def _insert_audit(
        cur: psycopg.Cursor,
        account_id: str | None,
        event_type: str,
        actor: str | None,
        metadata: dict[str, Any],
    ) -> None:
        cur.execute(
            """
            INSERT INTO account_audit_log (account_id, event_type, actor, metadata)
            VALUES (%s, %s, %s, %s)
            """,
            (account_id, event_type, actor, Json(metadata)),
        )

    def write_audit_event(
        self,
        *,
        account_id: str | None,
        event_type: str,
        actor: str | None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Record a standalone audit entry, such as a login outcome."""
        with _store_errors("write_audit_event"):
            with self._pool.connection() as conn:
                with conn.transaction():
                    with conn.cursor() as cur:
                        self._insert_audit(cur, account_id, event_type, actor, metadata or {})

    def list_audit_events(
        self,
        *,
        account_id: str | None = None,
        event_type: str | None = None,
        created_after: datetime | None = None,
        created_before: datetime | None = None,
        limit: int = 50,
        cursor: Tuple[datetime, int] | None = None,
    ) -> tuple[list[AuditLogRecord], Optional[Tuple[datetime, int]]]:
        """Return audit log entries with optional filters and cursor pagination."""
        limit = max(1, min(limit, 100))
        clauses = ["TRUE"]
        params: list[Any] = []

        if account_id:
            clauses.append("account_id = %s")
            params.append(account_id)
        if event_type:
            clauses.append("event_type = %s")
            params.append(event_type)
        if created_after:
            clauses.append("created_at >= %s")
            params.append(created_after)
        if created_before:
            clauses.append("created_at <= %s")
            params.append(created_before)
        if cursor:
            clauses.append("(created_at, audit_id) < (%s, %s)")
            params.extend(cursor)

        where_sql = " AND ".join(clauses)
        query = f"""
            SELECT audit_id, account_id, event_type, actor, metadata, created_at
            FROM account_audit_log
            WHERE {where_sql}
            ORDER BY created_at DESC, audit_id DESC
            LIMIT %s
        """
        params.append(limit)

        records: list[AuditLogRecord] = []
        with _store_errors("list_audit_events"):
            with self._pool.connection() as conn:
                with conn.cursor(row_factory=tuple_row) as cur:
                    cur.execute(query, params)
                    for row in cur.fetchall():
                        records.append(
                            AuditLogRecord(
                                audit_id=row[0],
                                account_id=str(row[1]) if row[1] is not None else None,
                                event_type=row[2],
                                actor=row[3],
                                metadata=row[4] or {},
                                created_at=row[5],
                            )
                        )

        next_cursor: Tuple[datetime, int] | None = None
        if len(records) == limit:
            last = records[-1]
            next_cursor = (last.created_at, last.audit_id)
        return records, next_cursor
