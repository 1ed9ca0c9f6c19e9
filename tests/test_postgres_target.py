"""
Tests for the target-side _ayb_users guard.

PostgresTarget runs against a scripted connection that answers the
existence and count queries, so the guard's SQL path is exercised
without a database.
"""

from typing import Any, List, Optional

import psycopg
import pytest

from ayb_migrate.exceptions import MigrationError
from ayb_migrate.loaders.postgres import USERS_TABLE_MISSING, PostgresTarget

TARGET_URL = "postgres://ayb:pw@localhost:5432/ayb"


class ScriptedCursor:
    def __init__(self, conn: "ScriptedConnection"):
        self.conn = conn
        self.row: Optional[tuple] = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, query: Any, params: Any = None) -> None:
        text = str(query)
        self.conn.queries.append(text)
        if "information_schema.tables" in text:
            self.row = (self.conn.table_exists,)
        elif "COUNT(*) FROM _ayb_users" in text:
            if self.conn.count_error is not None:
                raise self.conn.count_error
            self.row = (self.conn.user_count,)

    def fetchone(self) -> Optional[tuple]:
        return self.row


class ScriptedConnection:
    """Answers the users-table queries from fixed values."""

    def __init__(self, table_exists: bool = True, user_count: int = 0,
                 count_error: Optional[Exception] = None):
        self.table_exists = table_exists
        self.user_count = user_count
        self.count_error = count_error
        self.queries: List[str] = []

    def cursor(self) -> ScriptedCursor:
        return ScriptedCursor(self)

    def close(self) -> None:
        pass


@pytest.fixture
def connect(monkeypatch):
    """Make PostgresTarget(url) connect to the given ScriptedConnection."""
    def factory(conn: ScriptedConnection) -> PostgresTarget:
        monkeypatch.setattr(psycopg, "connect", lambda url, autocommit: conn)
        return PostgresTarget(TARGET_URL)
    return factory


class TestUsersTableGuard:
    """Tests for PostgresTarget.check_users_table and require_users_table."""

    def test_empty_table_passes(self, connect):
        conn = ScriptedConnection(user_count=0)
        connect(conn).check_users_table(force=False)
        assert len(conn.queries) == 2

    def test_refuses_existing_users_without_force(self, connect):
        target = connect(ScriptedConnection(user_count=3))
        with pytest.raises(MigrationError) as exc_info:
            target.check_users_table(force=False)
        assert str(exc_info.value) == "_ayb_users table is not empty (3 users); use --force to proceed"
        assert exc_info.value.step is None

    def test_force_skips_the_count(self, connect):
        conn = ScriptedConnection(user_count=3)
        connect(conn).check_users_table(force=True)
        assert not any("COUNT(*)" in q for q in conn.queries)

    def test_missing_table_fails_even_with_force(self, connect):
        target = connect(ScriptedConnection(table_exists=False))
        with pytest.raises(MigrationError, match="^_ayb_users table not found; run 'ayb start'"):
            target.check_users_table(force=True)

    def test_count_failure_is_wrapped(self, connect):
        target = connect(ScriptedConnection(user_count=0, count_error=psycopg.Error("permission denied")))
        with pytest.raises(MigrationError, match="^checking existing users: permission denied$"):
            target.check_users_table(force=False)

    def test_require_users_table_ignores_existing_users(self, connect):
        conn = ScriptedConnection(user_count=5)
        connect(conn).require_users_table()
        assert len(conn.queries) == 1

    def test_require_users_table_missing(self, connect):
        target = connect(ScriptedConnection(table_exists=False))
        with pytest.raises(MigrationError) as exc_info:
            target.require_users_table()
        assert str(exc_info.value) == USERS_TABLE_MISSING
