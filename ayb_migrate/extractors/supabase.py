"""Read-only introspection of a Supabase PostgreSQL database."""

import json
import logging
from typing import Any, Dict, Iterator, List, Optional, Tuple

import psycopg
from psycopg import sql

from ..exceptions import AnalysisError
from ..models.source import (
    ColumnInfo,
    ForeignKeyInfo,
    RLSPolicy,
    StorageBucket,
    StorageObject,
    SupabaseIdentity,
    SupabaseUser,
    TableInfo,
    ViewInfo,
)

logger = logging.getLogger(__name__)

BATCH_SIZE = 1000

# Supabase-internal tables that never migrate
INTERNAL_TABLE_PREFIXES = (
    "_supabase_",
    "_realtime_",
    "_analytics_",
    "_pgsodium_",
    "_prisma_",
    "schema_migrations",
    "supabase_migrations",
)


def is_internal_table(name: str) -> bool:
    return name.startswith(INTERNAL_TABLE_PREFIXES)


def is_ayb_table(name: str) -> bool:
    return name.startswith("_ayb_")


def extract_string(data: Dict[str, Any], *keys: str) -> str:
    """Return the first non-empty string value among keys."""
    for key in keys:
        value = data.get(key)
        if isinstance(value, str) and value:
            return value
    return ""


def build_auth_users_count_query(include_anonymous: bool, has_is_anonymous: bool, has_deleted_at: bool) -> str:
    query = "SELECT COUNT(*) FROM auth.users WHERE 1=1"
    if has_deleted_at:
        query += " AND deleted_at IS NULL"
    if has_is_anonymous and not include_anonymous:
        query += " AND (is_anonymous = false OR is_anonymous IS NULL)"
    return query


def build_auth_users_select_query(
    include_anonymous: bool,
    has_is_anonymous: bool,
    has_deleted_at: bool,
    confirmed_at_expr: str
) -> str:
    """
    Build the auth.users SELECT, tolerating older GoTrue schemas.

    Args:
        include_anonymous: Keep anonymous users
        has_is_anonymous: auth.users has is_anonymous
        has_deleted_at: auth.users has deleted_at
        confirmed_at_expr: Column (or NULL expression) holding the confirmation time
    """
    anonymous_expr = "COALESCE(is_anonymous, false)" if has_is_anonymous else "false"
    if not confirmed_at_expr.strip():
        confirmed_at_expr = "NULL::timestamptz"

    query = (
        "SELECT id, COALESCE(email, ''), COALESCE(encrypted_password, ''), "
        f"{confirmed_at_expr} AS email_confirmed_at, created_at, updated_at, "
        f"{anonymous_expr} AS is_anonymous "
        "FROM auth.users WHERE 1=1"
    )
    if has_deleted_at:
        query += " AND deleted_at IS NULL"
    if has_is_anonymous and not include_anonymous:
        query += " AND (is_anonymous = false OR is_anonymous IS NULL)"
    return query + " ORDER BY created_at"


def build_oauth_identities_query(
    has_identity_data: bool,
    has_provider_id: bool,
    has_created_at: bool,
    users_has_deleted_at: bool
) -> str:
    if has_identity_data:
        identity_data_expr = "COALESCE(i.identity_data::text, '{}')"
    elif has_provider_id:
        identity_data_expr = (
            "jsonb_build_object('provider_id', COALESCE(i.provider_id::text, ''), "
            "'sub', COALESCE(i.provider_id::text, ''))::text"
        )
    else:
        identity_data_expr = "'{}'::text"

    created_at_expr = "i.created_at" if has_created_at else "NULL::timestamptz"
    order_by = "i.created_at" if has_created_at else "i.user_id"
    users_where = " WHERE u.deleted_at IS NULL" if users_has_deleted_at else ""

    return (
        f"SELECT i.user_id, i.provider, {identity_data_expr}, {created_at_expr} "
        "FROM auth.identities i JOIN auth.users u ON u.id = i.user_id"
        f"{users_where} ORDER BY {order_by}"
    )


def parse_identity(user_id: str, provider: str, identity_json: str, created_at: Any) -> SupabaseIdentity:
    """Decode identity_data; raises ValueError when it is not a JSON object."""
    data = json.loads(identity_json or "{}")
    if not isinstance(data, dict):
        raise ValueError("identity_data is not a JSON object")
    return SupabaseIdentity(user_id=str(user_id), provider=provider, identity_data=data, created_at=created_at)


class SupabaseSource:
    """
    Connection to the Supabase source database.

    Runs in autocommit mode so a failed probe query never poisons
    later reads; streaming reads open their own transaction.
    """

    def __init__(self, url: str):
        try:
            self.conn: Optional[psycopg.Connection] = psycopg.connect(url, autocommit=True)
        except psycopg.Error as e:
            raise AnalysisError(f"connecting to source database: {e}") from e
        self._column_cache: Dict[str, bool] = {}

    def close(self) -> None:
        if self.conn is not None:
            self.conn.close()
            self.conn = None

    def _fetch_one(self, query: Any, params: Optional[Tuple[Any, ...]] = None) -> Optional[Tuple[Any, ...]]:
        with self.conn.cursor() as cur:
            cur.execute(query, params)
            return cur.fetchone()

    def _fetch_all(self, query: Any, params: Optional[Tuple[Any, ...]] = None) -> List[Tuple[Any, ...]]:
        with self.conn.cursor() as cur:
            cur.execute(query, params)
            return cur.fetchall()

    def _scalar(self, query: Any, params: Optional[Tuple[Any, ...]] = None) -> Any:
        row = self._fetch_one(query, params)
        return row[0] if row else None

    def ping(self) -> None:
        try:
            self._scalar("SELECT 1")
        except psycopg.Error as e:
            raise AnalysisError(f"pinging source database: {e}") from e

    def table_exists(self, schema: str, table: str) -> bool:
        return bool(self._scalar(
            "SELECT EXISTS (SELECT 1 FROM information_schema.tables "
            "WHERE table_schema = %s AND table_name = %s)",
            (schema, table),
        ))

    def column_exists(self, schema: str, table: str, column: str) -> bool:
        """Check information_schema once per column; results are cached."""
        key = f"{schema}.{table}.{column}"
        if key in self._column_cache:
            return self._column_cache[key]
        try:
            exists = bool(self._scalar(
                "SELECT EXISTS (SELECT 1 FROM information_schema.columns "
                "WHERE table_schema = %s AND table_name = %s AND column_name = %s)",
                (schema, table, column),
            ))
        except psycopg.Error as e:
            raise AnalysisError(f"checking source schema for {key}: {e}") from e
        self._column_cache[key] = exists
        return exists

    # Auth

    def count_auth_users(self, include_anonymous: bool) -> int:
        query = build_auth_users_count_query(
            include_anonymous,
            self.column_exists("auth", "users", "is_anonymous"),
            self.column_exists("auth", "users", "deleted_at"),
        )
        return int(self._scalar(query))

    def count_oauth_identities(self) -> int:
        return int(self._scalar("SELECT COUNT(*) FROM auth.identities WHERE provider != 'email'"))

    def count_rls_policies(self) -> int:
        return int(self._scalar(
            "SELECT COUNT(*) FROM pg_policy pol "
            "JOIN pg_class c ON c.oid = pol.polrelid "
            "JOIN pg_namespace n ON n.oid = c.relnamespace "
            "WHERE n.nspname = 'public'"
        ))

    def iter_users(self, include_anonymous: bool) -> Iterator[SupabaseUser]:
        """Stream live auth.users rows ordered by creation time."""
        if self.column_exists("auth", "users", "email_confirmed_at"):
            confirmed_at_expr = "email_confirmed_at"
        elif self.column_exists("auth", "users", "confirmed_at"):
            confirmed_at_expr = "confirmed_at"
        else:
            confirmed_at_expr = "NULL::timestamptz"

        query = build_auth_users_select_query(
            include_anonymous,
            self.column_exists("auth", "users", "is_anonymous"),
            self.column_exists("auth", "users", "deleted_at"),
            confirmed_at_expr,
        )
        for row in self._stream(query, "ayb_auth_users"):
            yield SupabaseUser(
                id=str(row[0]),
                email=row[1],
                encrypted_password=row[2],
                email_confirmed_at=row[3],
                created_at=row[4],
                updated_at=row[5],
                is_anonymous=bool(row[6]),
            )

    def iter_identity_rows(self) -> Iterator[Tuple[str, str, str, Any]]:
        """Yield (user_id, provider, identity_data_json, created_at) for live users."""
        query = build_oauth_identities_query(
            self.column_exists("auth", "identities", "identity_data"),
            self.column_exists("auth", "identities", "provider_id"),
            self.column_exists("auth", "identities", "created_at"),
            self.column_exists("auth", "users", "deleted_at"),
        )
        for row in self._stream(query, "ayb_auth_identities"):
            yield str(row[0]), row[1], row[2], row[3]

    def read_rls_policies(self) -> List[RLSPolicy]:
        rows = self._fetch_all(
            "SELECT pol.polname, c.relname, n.nspname, "
            "CASE pol.polcmd WHEN 'r' THEN 'SELECT' WHEN 'a' THEN 'INSERT' "
            "WHEN 'w' THEN 'UPDATE' WHEN 'd' THEN 'DELETE' WHEN '*' THEN 'ALL' END, "
            "pol.polpermissive, "
            "pg_get_expr(pol.polqual, pol.polrelid), "
            "pg_get_expr(pol.polwithcheck, pol.polrelid) "
            "FROM pg_policy pol "
            "JOIN pg_class c ON c.oid = pol.polrelid "
            "JOIN pg_namespace n ON n.oid = c.relnamespace "
            "WHERE n.nspname = 'public' "
            "ORDER BY c.relname, pol.polname"
        )
        return [
            RLSPolicy(
                policy_name=row[0],
                table_name=row[1],
                schema_name=row[2],
                command=row[3],
                permissive=bool(row[4]),
                using_expr=row[5] or "",
                check_expr=row[6] or "",
            )
            for row in rows
        ]

    # Schema and data

    def introspect_tables(self) -> List[TableInfo]:
        """Describe every user table in the public schema."""
        rows = self._fetch_all(
            "SELECT table_name FROM information_schema.tables "
            "WHERE table_schema = 'public' AND table_type = 'BASE TABLE' "
            "ORDER BY table_name"
        )
        names = [r[0] for r in rows if not is_internal_table(r[0]) and not is_ayb_table(r[0])]
        return [self.introspect_table(name) for name in names]

    def introspect_table(self, name: str) -> TableInfo:
        table = TableInfo(name=name)

        for row in self._fetch_all(
            "SELECT column_name, data_type, is_nullable, COALESCE(column_default, ''), ordinal_position "
            "FROM information_schema.columns "
            "WHERE table_schema = 'public' AND table_name = %s "
            "ORDER BY ordinal_position",
            (name,),
        ):
            table.columns.append(ColumnInfo(
                name=row[0],
                data_type=row[1],
                is_nullable=row[2] == "YES",
                default_value=row[3],
                ordinal_position=int(row[4]),
            ))

        pk = self._fetch_one(
            "SELECT a.attname FROM pg_index i "
            "JOIN pg_attribute a ON a.attrelid = i.indrelid AND a.attnum = ANY(i.indkey) "
            "WHERE i.indrelid = %s::regclass AND i.indisprimary LIMIT 1",
            (sql.Identifier("public", name).as_string(self.conn),),
        )
        if pk:
            table.primary_key = pk[0]

        for row in self._fetch_all(
            "SELECT tc.constraint_name, kcu.column_name, "
            "ccu.table_name AS ref_table, ccu.column_name AS ref_column "
            "FROM information_schema.table_constraints tc "
            "JOIN information_schema.key_column_usage kcu "
            "ON tc.constraint_name = kcu.constraint_name AND tc.table_schema = kcu.table_schema "
            "JOIN information_schema.constraint_column_usage ccu "
            "ON tc.constraint_name = ccu.constraint_name AND tc.table_schema = ccu.table_schema "
            "WHERE tc.table_schema = 'public' AND tc.table_name = %s "
            "AND tc.constraint_type = 'FOREIGN KEY' "
            "ORDER BY tc.constraint_name",
            (name,),
        ):
            table.foreign_keys.append(ForeignKeyInfo(
                constraint_name=row[0], column_name=row[1], ref_table=row[2], ref_column=row[3],
            ))

        table.row_count = int(self._scalar(
            sql.SQL("SELECT COUNT(*) FROM {}").format(sql.Identifier("public", name))
        ))
        return table

    def introspect_views(self) -> List[ViewInfo]:
        rows = self._fetch_all(
            "SELECT viewname, definition FROM pg_views "
            "WHERE schemaname = 'public' ORDER BY viewname"
        )
        return [ViewInfo(name=r[0], definition=r[1]) for r in rows]

    def iter_table_batches(self, table: TableInfo, batch_size: int = BATCH_SIZE) -> Iterator[List[Tuple[Any, ...]]]:
        """Stream a table's rows, columns in ordinal order, ordered by the first column."""
        query = sql.SQL("SELECT {} FROM {} ORDER BY 1").format(
            sql.SQL(", ").join(sql.Identifier(c.name) for c in table.columns),
            sql.Identifier("public", table.name),
        )
        with self.conn.transaction():
            with self.conn.cursor(name="ayb_copy_table") as cur:
                cur.execute(query)
                while True:
                    rows = cur.fetchmany(batch_size)
                    if not rows:
                        break
                    yield rows

    def _stream(self, query: Any, cursor_name: str) -> Iterator[Tuple[Any, ...]]:
        with self.conn.transaction():
            with self.conn.cursor(name=cursor_name) as cur:
                cur.execute(query)
                while True:
                    rows = cur.fetchmany(BATCH_SIZE)
                    if not rows:
                        break
                    yield from rows

    # Storage

    def list_storage_buckets(self) -> List[StorageBucket]:
        """List buckets; an instance without the storage schema has none."""
        if not self.table_exists("storage", "buckets"):
            return []
        rows = self._fetch_all("SELECT id, name, public FROM storage.buckets ORDER BY name")
        return [StorageBucket(id=str(r[0]), name=r[1], public=bool(r[2])) for r in rows]

    def list_storage_objects(self, bucket_id: str) -> List[StorageObject]:
        rows = self._fetch_all(
            "SELECT id, bucket_id, name, COALESCE(metadata->>'size', '0')::bigint, "
            "COALESCE(metadata->>'mimetype', 'application/octet-stream'), created_at "
            "FROM storage.objects WHERE bucket_id = %s ORDER BY name",
            (bucket_id,),
        )
        return [
            StorageObject(
                id=str(r[0]), bucket_id=str(r[1]), name=r[2], size=int(r[3]), mime_type=r[4], created_at=r[5],
            )
            for r in rows
        ]
