"""Writes into the AYB PostgreSQL target database."""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator, Optional, Sequence, Tuple

import psycopg
from psycopg import sql
from psycopg.types.json import Json, Jsonb

from ..exceptions import AnalysisError, MigrationError

logger = logging.getLogger(__name__)

USERS_TABLE_MISSING = "_ayb_users table not found; run 'ayb start' or 'ayb migrate up' first"

# SQLSTATEs that defer a table to a later retry pass
SKIPPABLE_SCHEMA_SQLSTATES = {
    "42883",  # undefined_function
    "42704",  # undefined_object (usually an unknown type)
    "42P01",  # undefined_table (FK to a table not created yet)
    "0A000",  # feature_not_supported
}
RETRIABLE_DATA_SQLSTATES = {
    "23503",  # foreign_key_violation
    "42P01",  # undefined_table
}


def sqlstate(err: BaseException) -> Optional[str]:
    return getattr(err, "sqlstate", None)


def is_skippable_schema_error(err: BaseException) -> bool:
    return isinstance(err, psycopg.Error) and sqlstate(err) in SKIPPABLE_SCHEMA_SQLSTATES


def is_retriable_data_error(err: BaseException) -> bool:
    return isinstance(err, psycopg.Error) and sqlstate(err) in RETRIABLE_DATA_SQLSTATES


def adapt_value(value: Any, data_type: str = "") -> Any:
    """Wrap dicts and lists so psycopg sends them as json/jsonb."""
    if isinstance(value, (dict, list)):
        return Json(value) if data_type == "json" else Jsonb(value)
    return value


class PostgresTarget:
    """
    Connection to the AYB target database.

    The connection runs in autocommit mode; every write happens inside an
    explicit transaction() block, and nested savepoints isolate the
    statements that are allowed to fail.
    """

    def __init__(self, url: str):
        try:
            self.conn: Optional[psycopg.Connection] = psycopg.connect(url, autocommit=True)
        except psycopg.Error as e:
            raise AnalysisError(f"connecting to target database: {e}") from e

    def close(self) -> None:
        if self.conn is not None:
            self.conn.close()
            self.conn = None

    def ping(self) -> None:
        try:
            self.conn.execute("SELECT 1")
        except psycopg.Error as e:
            raise AnalysisError(f"pinging target database: {e}") from e

    @contextmanager
    def transaction(self, rollback: bool = False) -> Iterator[None]:
        """
        Run the block in one transaction.

        Args:
            rollback: Roll back on exit even when the block succeeds (dry runs)
        """
        with self.conn.transaction(force_rollback=rollback):
            yield

    @contextmanager
    def savepoint(self, name: str) -> Iterator[None]:
        """Named savepoint; an exception rolls back to it and propagates."""
        with self.conn.transaction(savepoint_name=name):
            yield

    def execute(self, query: Any, params: Optional[Sequence[Any]] = None) -> int:
        """Execute a statement and return the affected row count."""
        with self.conn.cursor() as cur:
            cur.execute(query, params)
            return cur.rowcount

    def scalar(self, query: Any, params: Optional[Sequence[Any]] = None) -> Any:
        with self.conn.cursor() as cur:
            cur.execute(query, params)
            row = cur.fetchone()
            return row[0] if row else None

    # Users

    def users_table_exists(self) -> bool:
        return bool(self.scalar(
            "SELECT EXISTS (SELECT 1 FROM information_schema.tables WHERE table_name = '_ayb_users')"
        ))

    def count_users(self) -> int:
        return int(self.scalar("SELECT COUNT(*) FROM _ayb_users"))

    def require_users_table(self) -> None:
        """Refuse to run against a target without _ayb_users."""
        if not self.users_table_exists():
            raise MigrationError(USERS_TABLE_MISSING)

    def check_users_table(self, force: bool) -> None:
        """
        Refuse to run against a target without _ayb_users, or with users
        already present unless force is set.
        """
        self.require_users_table()
        if force:
            return
        try:
            count = self.count_users()
        except psycopg.Error as e:
            raise MigrationError(f"checking existing users: {e}") from e
        if count > 0:
            raise MigrationError(f"_ayb_users table is not empty ({count} users); use --force to proceed")

    def insert_user(
        self,
        user_id: str,
        email: str,
        password_hash: str,
        email_verified: bool,
        created_at: Optional[datetime],
        updated_at: Optional[datetime]
    ) -> bool:
        """Insert one user keyed by id; False when the id already exists."""
        return self.execute(
            "INSERT INTO _ayb_users (id, email, password_hash, email_verified, created_at, updated_at) "
            "VALUES (%s, %s, %s, %s, COALESCE(%s, now()), COALESCE(%s, now())) "
            "ON CONFLICT (id) DO NOTHING",
            (user_id, email.lower(), password_hash, email_verified, created_at, updated_at),
        ) > 0

    def insert_oauth_account(
        self,
        user_id: str,
        provider: str,
        provider_user_id: str,
        email: str,
        name: str,
        created_at: Optional[datetime]
    ) -> bool:
        return self.execute(
            "INSERT INTO _ayb_oauth_accounts (user_id, provider, provider_user_id, email, name, created_at) "
            "VALUES (%s, %s, %s, %s, %s, COALESCE(%s, now())) "
            "ON CONFLICT (provider, provider_user_id) DO NOTHING",
            (user_id, provider, provider_user_id, email, name, created_at),
        ) > 0

    # Generic rows

    def insert_row(
        self,
        table: str,
        columns: Sequence[str],
        values: Sequence[Any],
        conflict: str = "ON CONFLICT DO NOTHING"
    ) -> bool:
        """Insert one row into public.<table>; True when a row was written."""
        query = sql.SQL("INSERT INTO {} ({}) VALUES ({}) {}").format(
            sql.Identifier(table),
            sql.SQL(", ").join(sql.Identifier(c) for c in columns),
            sql.SQL(", ").join([sql.Placeholder()] * len(columns)),
            sql.SQL(conflict),
        )
        return self.execute(query, list(values)) > 0

    def insert_document(self, table: str, doc_id: str, data: Any) -> bool:
        """Insert into a (id, data jsonb) table; existing ids are left alone."""
        return self.insert_row(table, ("id", "data"), (doc_id, Jsonb(data)), 'ON CONFLICT ("id") DO NOTHING')

    def fetch_row(self, query: Any, params: Optional[Sequence[Any]] = None) -> Optional[Tuple[Any, ...]]:
        with self.conn.cursor() as cur:
            cur.execute(query, params)
            return cur.fetchone()
