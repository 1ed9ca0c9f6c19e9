"""
Shared fixtures for the ayb_migrate test suite.

Builds temporary PocketBase pb_data directories and Firebase export
trees, and provides in-memory stand-ins for the AYB target database and
the Supabase source so adapters can be driven end to end without a
running PostgreSQL.
"""

import copy
import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

from ayb_migrate.adapters.base import SourceAdapter
from ayb_migrate.exceptions import MigrationError
from ayb_migrate.loaders.postgres import USERS_TABLE_MISSING
from ayb_migrate.models.migration import MigrationOptions, SourceType
from ayb_migrate.models.report import AnalysisReport, MigrationStats, ValidationSummary
from ayb_migrate.models.source import (
    ColumnInfo,
    ForeignKeyInfo,
    RLSPolicy,
    StorageBucket,
    StorageObject,
    SupabaseUser,
    TableInfo,
    ViewInfo,
)


class FakeTarget:
    """
    Records what an adapter writes to the AYB target.

    Transactions snapshot the stored rows, users, OAuth links and
    created policies and restore them on rollback, so dry runs and
    failures can be asserted on. The _ayb_users guard behaves like the
    real target: set has_users_table to False to simulate a database
    AYB has not initialized.
    """

    instances: List["FakeTarget"] = []
    has_users_table = True

    def __init__(self, url: str):
        self.url = url
        self.statements: List[str] = []
        self.users: Dict[str, Dict[str, Any]] = {}
        self.oauth: Dict[tuple, Dict[str, Any]] = {}
        self.rows: Dict[str, Dict[Any, Dict[str, Any]]] = {}
        self.policies: List[str] = []
        self.commits = 0
        self.rollbacks = 0
        self.closed = False
        self.failures: Dict[str, List[BaseException]] = {}
        FakeTarget.instances.append(self)

    def close(self) -> None:
        self.closed = True

    def ping(self) -> None:
        pass

    def snapshot(self):
        return copy.deepcopy((self.users, self.oauth, self.rows, self.policies))

    @contextmanager
    def transaction(self, rollback: bool = False):
        saved = self.snapshot()
        try:
            yield
        except BaseException:
            self.users, self.oauth, self.rows, self.policies = saved
            self.rollbacks += 1
            raise
        if rollback:
            self.users, self.oauth, self.rows, self.policies = saved
            self.rollbacks += 1
        else:
            self.commits += 1

    @contextmanager
    def savepoint(self, name: str):
        yield

    def execute(self, query: Any, params: Optional[Any] = None) -> int:
        text = str(query)
        for needle, errors in self.failures.items():
            if needle in text and errors:
                raise errors.pop(0)
        self.statements.append(text)
        if text.startswith("CREATE POLICY"):
            self.policies.append(text)
        return 0

    def require_users_table(self) -> None:
        if not self.has_users_table:
            raise MigrationError(USERS_TABLE_MISSING)

    def check_users_table(self, force: bool) -> None:
        self.require_users_table()
        if self.users and not force:
            raise MigrationError(
                f"_ayb_users table is not empty ({len(self.users)} users); use --force to proceed"
            )

    def insert_user(self, user_id, email, password_hash, email_verified, created_at, updated_at) -> bool:
        if user_id in self.users:
            return False
        self.users[user_id] = {
            "email": email.lower(),
            "password_hash": password_hash,
            "email_verified": email_verified,
            "created_at": created_at,
        }
        return True

    def insert_oauth_account(self, user_id, provider, provider_user_id, email, name, created_at) -> bool:
        key = (provider, provider_user_id)
        if key in self.oauth:
            return False
        self.oauth[key] = {"user_id": user_id, "email": email, "name": name}
        return True

    def insert_row(self, table, columns, values, conflict="ON CONFLICT DO NOTHING") -> bool:
        rows = self.rows.setdefault(table, {})
        key = values[0]
        if key in rows:
            return False
        rows[key] = dict(zip(columns, values))
        return True

    def insert_document(self, table, doc_id, data) -> bool:
        return self.insert_row(table, ("id", "data"), (doc_id, data))


@pytest.fixture
def fake_target(monkeypatch):
    """Patch every adapter module to write into FakeTarget instances."""
    FakeTarget.instances = []
    monkeypatch.setattr(FakeTarget, "has_users_table", True)
    for module in (
        "ayb_migrate.adapters.firebase",
        "ayb_migrate.adapters.pocketbase",
        "ayb_migrate.adapters.supabase",
    ):
        monkeypatch.setattr(f"{module}.PostgresTarget", FakeTarget)
    return FakeTarget


# PocketBase

def _field(name: str, type_: str, **extra) -> Dict[str, Any]:
    data = {"id": f"f_{name}", "name": name, "type": type_, "system": False, "required": False}
    data.update(extra)
    return data


POSTS_SCHEMA = [
    _field("title", "text", required=True),
    _field("published", "bool"),
    _field("tags", "select", maxSelect=3),
    _field("meta", "json"),
    _field("attachment", "file", maxSelect=1),
]

USERS_SCHEMA = [
    _field("email", "email"),
    _field("verified", "bool"),
    _field("name", "text"),
]


def _create_collections_table(conn: sqlite3.Connection, schema_column: str) -> None:
    conn.execute(
        f"CREATE TABLE _collections (id TEXT PRIMARY KEY, name TEXT, type TEXT, system INTEGER, "
        f"{schema_column} TEXT, indexes TEXT, listRule TEXT, viewRule TEXT, createRule TEXT, "
        "updateRule TEXT, deleteRule TEXT, options TEXT, created TEXT)"
    )


def _add_collection(conn, schema_column, id_, name, type_, schema, rules=(None, None, None, None, None),
                    options=None, system=0, created="2024-01-01 00:00:00.000Z"):
    conn.execute(
        f"INSERT INTO _collections (id, name, type, system, {schema_column}, indexes, listRule, viewRule, "
        "createRule, updateRule, deleteRule, options, created) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
        (id_, name, type_, system, json.dumps(schema), "[]", *rules, json.dumps(options or {}), created),
    )


def build_pb_data(root: Path, schema_column: str = "schema") -> Path:
    """
    Create a pb_data directory with one base, one auth, one view and one
    system collection, plus an uploaded file for the base collection.
    """
    pb_data = root / "pb_data"
    pb_data.mkdir()
    conn = sqlite3.connect(str(pb_data / "data.db"))
    try:
        _create_collections_table(conn, schema_column)
        _add_collection(conn, schema_column, "c_posts", "posts", "base", POSTS_SCHEMA,
                        rules=("", "", "@request.auth.id != ''", "author = @request.auth.id", None),
                        created="2024-01-01 00:00:01.000Z")
        _add_collection(conn, schema_column, "c_users", "users", "auth", USERS_SCHEMA,
                        rules=("id = @request.auth.id", None, "", None, None),
                        created="2024-01-01 00:00:00.000Z")
        _add_collection(conn, schema_column, "c_stats", "post_stats", "view", [],
                        options={"query": "SELECT id, title FROM posts"},
                        created="2024-01-01 00:00:02.000Z")
        _add_collection(conn, schema_column, "c_admins", "_admins_log", "base", [], system=1,
                        created="2024-01-01 00:00:03.000Z")

        conn.execute(
            "CREATE TABLE posts (id TEXT PRIMARY KEY, created TEXT, updated TEXT, title TEXT, "
            "published INTEGER, tags TEXT, meta TEXT, attachment TEXT)"
        )
        conn.executemany(
            "INSERT INTO posts VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            [
                ("post000000000a1", "2024-02-01 10:00:00.000Z", "2024-02-01 10:00:00.000Z",
                 "Hello", 1, '["a","b"]', '{"views": 3}', "photo.png"),
                ("post000000000a2", "2024-02-02 10:00:00.000Z", "2024-02-02 11:00:00.000Z",
                 "Draft", 0, "[]", "", ""),
            ],
        )

        conn.execute(
            "CREATE TABLE users (id TEXT PRIMARY KEY, created TEXT, updated TEXT, email TEXT, "
            "passwordHash TEXT, verified INTEGER, tokenKey TEXT, emailVisibility INTEGER, name TEXT)"
        )
        conn.executemany(
            "INSERT INTO users VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            [
                ("user00000000001", "2024-01-05 08:00:00.000Z", "2024-01-05 08:00:00.000Z",
                 "Alice@Example.com", "$2a$10$abcdefghijklmnopqrstuv", 1, "tok1", 0, "Alice"),
                ("user00000000002", "2024-01-06 08:00:00.000Z", "2024-01-06 08:00:00.000Z",
                 "bob@example.com", "$2a$10$zyxwvutsrqponmlkjihgfe", 0, "tok2", 1, "Bob"),
            ],
        )
        conn.execute("CREATE TABLE _admins_log (id TEXT PRIMARY KEY)")
        conn.commit()
    finally:
        conn.close()

    upload_dir = pb_data / "storage" / "posts" / "post000000000a1"
    upload_dir.mkdir(parents=True)
    (upload_dir / "photo.png").write_bytes(b"\x89PNG fake image")
    return pb_data


@pytest.fixture
def pb_data(tmp_path) -> Path:
    return build_pb_data(tmp_path)


@pytest.fixture
def pb_data_factory(tmp_path):
    """Build a pb_data directory with a chosen _collections schema column."""
    def factory(schema_column: str = "schema") -> Path:
        root = tmp_path / f"pb_{schema_column}"
        root.mkdir()
        return build_pb_data(root, schema_column)
    return factory


# Firebase

AUTH_EXPORT = {
    "users": [
        {
            "localId": "firebaseuid0001",
            "email": "Carol@Example.com",
            "emailVerified": True,
            "passwordHash": "aGFzaA==",
            "salt": "c2FsdA==",
            "createdAt": "1700000000000",
            "providerUserInfo": [
                {"providerId": "password", "rawId": "carol@example.com"},
                {"providerId": "google.com", "rawId": "g-123", "displayName": "Carol G"},
            ],
        },
        {
            "localId": "11111111-2222-3333-4444-555555555555",
            "email": "dave@example.com",
            "createdAt": "1700000001000",
            "providerUserInfo": [
                {"providerId": "github.com", "rawId": "gh-9", "email": "dave@github.test"},
            ],
        },
        {"localId": "disabled01", "email": "eve@example.com", "disabled": True},
        {"localId": "anon01"},
        {"localId": "phone01", "providerUserInfo": [{"providerId": "phone", "rawId": "+15550100"}]},
    ],
    "hash_config": {
        "algorithm": "SCRYPT",
        "base64_signer_key": "c2lnbmVy",
        "base64_salt_separator": "Bw==",
        "rounds": 8,
        "mem_cost": 14,
    },
}


@pytest.fixture
def firebase_exports(tmp_path) -> Dict[str, Path]:
    """Auth export, a two-collection Firestore export, an RTDB dump and a storage tree."""
    auth_path = tmp_path / "auth.json"
    auth_path.write_text(json.dumps(AUTH_EXPORT))

    firestore_dir = tmp_path / "firestore"
    firestore_dir.mkdir()
    (firestore_dir / "posts.json").write_text(json.dumps([
        {"__name__": "posts/p1", "fields": {
            "title": {"stringValue": "First"},
            "likes": {"integerValue": "4"},
            "tags": {"arrayValue": {"values": [{"stringValue": "x"}]}},
        }},
        {"__name__": "posts/p2", "fields": {"title": {"stringValue": "Second"}}},
    ]))
    (firestore_dir / "comments.json").write_text(json.dumps([
        {"__name__": "comments/c1", "fields": {"body": {"stringValue": "hi"}, "gone": {"nullValue": None}}},
    ]))
    (firestore_dir / "README.txt").write_text("not a collection")

    rtdb_path = tmp_path / "rtdb.json"
    rtdb_path.write_text(json.dumps({
        "chat-rooms": {"r1": {"name": "general"}, "r2": {"name": "random"}},
        "motd": "hello",
    }))

    storage_dir = tmp_path / "storage"
    (storage_dir / "My.Bucket" / "avatars").mkdir(parents=True)
    (storage_dir / "My.Bucket" / "avatars" / "a.png").write_bytes(b"12345")
    (storage_dir / "My.Bucket" / "readme.txt").write_bytes(b"abc")
    (storage_dir / "stray-file.txt").write_bytes(b"ignored")

    return {
        "auth": auth_path,
        "firestore": firestore_dir,
        "rtdb": rtdb_path,
        "storage": storage_dir,
    }


# Orchestrator

class FakeAdapter(SourceAdapter):
    """Adapter double that records calls and returns canned results."""

    source_type = SourceType.POCKETBASE

    def __init__(self, options: MigrationOptions, report: Optional[AnalysisReport] = None,
                 stats: Optional[MigrationStats] = None, analyze_error: Optional[Exception] = None,
                 migrate_error: Optional[Exception] = None):
        super().__init__(options)
        self.report = report or AnalysisReport(source_type="PocketBase", tables=2, records=10)
        self.result_stats = stats or MigrationStats(tables=2, records=10)
        self.analyze_error = analyze_error
        self.migrate_error = migrate_error
        self.calls: List[str] = []

    def analyze(self) -> AnalysisReport:
        self.calls.append("analyze")
        if self.analyze_error:
            raise self.analyze_error
        return self.report

    def migrate(self) -> MigrationStats:
        self.calls.append("migrate")
        if self.migrate_error:
            raise self.migrate_error
        if self.options.dry_run:
            return self.result_stats.without_writes()
        return self.result_stats

    def build_validation_summary(self, report: AnalysisReport, stats: MigrationStats) -> ValidationSummary:
        summary = ValidationSummary(source_label="Source", target_label="Target")
        summary.add_row("Tables", report.tables, stats.tables)
        summary.add_row("Records", report.records, stats.records)
        return summary

    def close(self) -> None:
        self.calls.append("close")
        super().close()


# Supabase

SUPABASE_TABLES = [
    TableInfo(
        name="posts",
        columns=[
            ColumnInfo("id", "bigint", is_nullable=False, default_value="nextval('posts_id_seq'::regclass)"),
            ColumnInfo("author_id", "uuid"),
            ColumnInfo("tags", "ARRAY"),
        ],
        primary_key="id",
        foreign_keys=[ForeignKeyInfo("posts_author_id_fkey", "author_id", "profiles", "id")],
        row_count=2,
    ),
    TableInfo(
        name="profiles",
        columns=[ColumnInfo("id", "uuid", is_nullable=False), ColumnInfo("name", "character varying")],
        primary_key="id",
        row_count=2,
    ),
]

SUPABASE_ROWS = {
    "posts": [(1, "aaaaaaaa-0000-0000-0000-000000000001", ["x", "y"]), (2, "aaaaaaaa-0000-0000-0000-000000000002", [])],
    "profiles": [("aaaaaaaa-0000-0000-0000-000000000001", "Ann"), ("aaaaaaaa-0000-0000-0000-000000000002", "Ben")],
}

SUPABASE_USERS = [
    SupabaseUser(
        id="aaaaaaaa-0000-0000-0000-000000000001", email="Ann@Example.com", encrypted_password="$2a$10$ann",
        email_confirmed_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
    ),
    SupabaseUser(id="aaaaaaaa-0000-0000-0000-000000000002", email="ben@example.com", encrypted_password=""),
    SupabaseUser(id="aaaaaaaa-0000-0000-0000-000000000003", email="", encrypted_password=""),
]

SUPABASE_IDENTITIES = [
    ("aaaaaaaa-0000-0000-0000-000000000001", "email", '{"sub": "ann"}', None),
    ("aaaaaaaa-0000-0000-0000-000000000001", "github", '{"sub": "42", "email": "ann@gh.test", "name": "Ann"}', None),
    ("aaaaaaaa-0000-0000-0000-000000000002", "google", '{"provider_id": "g-1", "full_name": "Ben B"}', None),
    ("aaaaaaaa-0000-0000-0000-000000000002", "discord", "not json", None),
    ("aaaaaaaa-0000-0000-0000-000000000003", "gitlab", "{}", None),
]

SUPABASE_POLICIES = [
    RLSPolicy(
        policy_name="own posts",
        table_name="posts",
        schema_name="public",
        command="ALL",
        using_expr="(auth.uid() = author_id)",
    ),
]


class FakeSupabaseSource:
    """Serves a fixed Supabase project: two tables, a view, users, identities, a policy and a bucket."""

    instances: List["FakeSupabaseSource"] = []
    has_auth_schema = True

    def __init__(self, url: str):
        self.url = url
        self.closed = False
        FakeSupabaseSource.instances.append(self)

    def close(self) -> None:
        self.closed = True

    def ping(self) -> None:
        pass

    def table_exists(self, schema: str, table: str) -> bool:
        return self.has_auth_schema

    def count_auth_users(self, include_anonymous: bool) -> int:
        return len(SUPABASE_USERS)

    def count_oauth_identities(self) -> int:
        return sum(1 for row in SUPABASE_IDENTITIES if row[1] != "email")

    def count_rls_policies(self) -> int:
        return len(SUPABASE_POLICIES)

    def introspect_tables(self) -> List[TableInfo]:
        return copy.deepcopy(SUPABASE_TABLES)

    def introspect_views(self) -> List[ViewInfo]:
        return [ViewInfo(name="recent_posts", definition=" SELECT id FROM posts;")]

    def iter_table_batches(self, table: TableInfo, batch_size: int = 1000):
        rows = SUPABASE_ROWS[table.name]
        for start in range(0, len(rows), batch_size):
            yield rows[start:start + batch_size]

    def iter_users(self, include_anonymous: bool):
        yield from SUPABASE_USERS

    def iter_identity_rows(self):
        yield from SUPABASE_IDENTITIES

    def read_rls_policies(self) -> List[RLSPolicy]:
        return list(SUPABASE_POLICIES)

    def list_storage_buckets(self) -> List[StorageBucket]:
        return [StorageBucket(id="avatars-id", name="Avatars", public=True)]

    def list_storage_objects(self, bucket_id: str) -> List[StorageObject]:
        return [StorageObject(id="o1", bucket_id=bucket_id, name="ann/pic.png", size=4)]


@pytest.fixture
def fake_supabase(monkeypatch, fake_target):
    """Patch the Supabase adapter to read from FakeSupabaseSource."""
    FakeSupabaseSource.instances = []
    monkeypatch.setattr(FakeSupabaseSource, "has_auth_schema", True)
    monkeypatch.setattr("ayb_migrate.adapters.supabase.SupabaseSource", FakeSupabaseSource)
    return FakeSupabaseSource


@pytest.fixture
def supabase_storage_export(tmp_path) -> Path:
    root = tmp_path / "supabase_storage"
    (root / "Avatars" / "ann").mkdir(parents=True)
    (root / "Avatars" / "ann" / "pic.png").write_bytes(b"\x89PNG")
    return root
