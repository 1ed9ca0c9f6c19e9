"""PocketBase source adapter.

Schema, records, auth users and API rules move in one target transaction;
uploaded files are copied once that transaction has committed.
"""

import logging
import os
from datetime import datetime, timezone
from contextlib import closing
from typing import Any, Dict, List, Optional

import psycopg
from psycopg.types.json import Jsonb

from ..exceptions import AnalysisError, ConfigurationError, MigrationError
from ..extractors.pocketbase import (
    PocketBaseReader,
    coerce_field_value,
    custom_auth_fields,
    parse_timestamp,
)
from ..loaders.postgres import PostgresTarget
from ..models.migration import PocketBaseOptions, SourceType
from ..models.report import AnalysisReport, MigrationStats, ValidationSummary, format_bytes
from ..models.source import PBCollection, PBField, PBRecord
from ..services.identity import pocketbase_id_to_uuid
from ..services.rls import count_policies, enable_rls_sql, generate_rls_policies
from ..services.typemap import (
    build_create_table_sql,
    build_create_view_sql,
    custom_fields,
    field_type_to_pg_type,
    quote_ident,
)
from ..services.validator import build_pocketbase_summary
from .base import FileCopy, SourceAdapter

logger = logging.getLogger(__name__)

ID_MAP_TABLE = "_ayb_pb_id_map"
PROFILE_TABLE_PREFIX = "_ayb_user_profiles_"

CREATE_ID_MAP_SQL = f"""CREATE TABLE IF NOT EXISTS {ID_MAP_TABLE} (
  pb_id TEXT PRIMARY KEY,
  ayb_id UUID NOT NULL UNIQUE,
  collection_name TEXT NOT NULL,
  created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);"""


def is_auth_collection(collection: PBCollection) -> bool:
    return collection.type == "auth" and not collection.system


def is_file_collection(collection: PBCollection) -> bool:
    """Collections whose uploads live under pb_data/storage/<name>."""
    return not collection.system and collection.type != "view" and collection.has_file_fields


def profile_table_name(collection_name: str) -> str:
    return f"{PROFILE_TABLE_PREFIX}{collection_name}"


def build_profile_table_sql(collection_name: str, fields: List[PBField]) -> str:
    """CREATE TABLE for the custom fields of an auth collection, keyed by AYB user id."""
    columns = ["user_id UUID PRIMARY KEY REFERENCES _ayb_users(id) ON DELETE CASCADE"]
    for pb_field in fields:
        column = f"{quote_ident(pb_field.name)} {field_type_to_pg_type(pb_field)}"
        if pb_field.required:
            column += " NOT NULL"
        columns.append(column)
    columns.append("created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()")
    columns.append("updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()")
    return f"CREATE TABLE IF NOT EXISTS {quote_ident(profile_table_name(collection_name))} ({', '.join(columns)})"


def column_value(pb_field: PBField, value: Any) -> Any:
    """Coerce a SQLite value and wrap JSON fields for a JSONB column."""
    value = coerce_field_value(pb_field, value)
    if pb_field.type == "json" and value is not None:
        return Jsonb(value)
    return value


def record_time(record: PBRecord, key: str) -> datetime:
    """A record's created/updated timestamp, or now when unreadable."""
    return parse_timestamp(record.data.get(key)) or datetime.now(timezone.utc)


def auth_user_fields(record: PBRecord) -> Dict[str, Any]:
    """
    Pull the built-in auth fields out of an auth-collection record.

    Raises:
        MigrationError: if the email or password hash is missing
    """
    email = record.data.get("email")
    if not isinstance(email, str) or not email:
        raise MigrationError(f"missing or invalid email for user {record.id}")

    password_hash = record.data.get("passwordHash")
    if not isinstance(password_hash, str):
        password_hash = record.data.get("password")
    if not isinstance(password_hash, str):
        raise MigrationError(f"missing password hash for user {email}")

    verified = record.data.get("verified")
    return {
        "email": email,
        "password_hash": password_hash,
        "verified": bool(verified) if isinstance(verified, (bool, int)) else False,
        "created_at": parse_timestamp(record.data.get("created")),
        "updated_at": parse_timestamp(record.data.get("updated")),
    }


class PocketBaseAdapter(SourceAdapter):
    """Migrates a PocketBase pb_data directory into AYB."""

    source_type = SourceType.POCKETBASE

    def __init__(self, options: PocketBaseOptions):
        super().__init__(options)
        self.options: PocketBaseOptions = options
        self.reader: Optional[PocketBaseReader] = None
        self.target: Optional[PostgresTarget] = None

        try:
            self.reader = PocketBaseReader(options.source_path)
            self.target = PostgresTarget(options.database_url)
            self.target.ping()
        except (ConfigurationError, AnalysisError):
            self.close()
            raise

    def validate_options(self) -> List[str]:
        errors = []
        if not self.options.source_path:
            errors.append("source path is required")
        if not self.options.database_url:
            errors.append("database URL is required")
        return errors

    def _resources(self):
        return [("PocketBase reader", self.reader), ("target connection", self.target)]

    def _files_enabled(self) -> bool:
        return not self.options.skip_files and not self.options.dry_run

    def phase_count(self) -> int:
        return 5 if self._files_enabled() else 4

    # Analysis

    def analyze(self) -> AnalysisReport:
        """
        Count tables, views, records, auth users, policies and files.

        Per-collection count failures become warnings.
        """
        collections = self.reader.read_collections()
        report = AnalysisReport(
            source_type=self.source_type.value,
            source_info=f"SQLite {format_bytes(self.reader.database_size())}",
        )

        for collection in collections:
            if collection.system:
                continue
            if collection.type == "auth":
                try:
                    report.auth_users += self.reader.count_records(collection.name)
                except AnalysisError as e:
                    report.warnings.append(f"could not count auth users in {collection.name}: {e}")
                continue
            if collection.type == "view":
                report.views += 1
                continue

            report.tables += 1
            report.rls_policies += count_policies(collection)
            try:
                report.records += self.reader.count_records(collection.name)
            except AnalysisError as e:
                report.warnings.append(f"could not count records in {collection.name}: {e}")

        for item in self._collect_files(collections):
            report.files += 1
            report.file_size_bytes += os.path.getsize(item.source_path)

        return report

    # Migration

    def migrate(self) -> MigrationStats:
        """
        Run Schema, Data, Auth users and RLS policies in one transaction,
        then copy files unless skipped or dry-running.
        """
        self.stats = MigrationStats()
        collections = self.reader.read_collections()
        total = self.phase_count()
        logger.info(f"Starting PocketBase migration ({len(collections)} collections)")

        with self.target.transaction(rollback=self.options.dry_run):
            self.target.check_users_table(self.options.force)
            self._run_step("schema migration", self._migrate_schema, collections, 1, total)
            self._run_step("data migration", self._migrate_data, collections, 2, total)
            self._run_step("auth migration", self._migrate_auth_users, collections, 3, total)
            self._run_step("RLS migration", self._migrate_rls, collections, 4, total)
            self._check_cancelled("commit")

        if self._files_enabled():
            self._run_step("file migration", self._migrate_files, collections, 5, total)

        return self._finish()

    def _migrate_schema(self, collections: List[PBCollection], index: int, total: int) -> None:
        targets = [c for c in collections if not c.system and c.type != "auth"]
        phase, started = self._start_phase("Schema", index, total, len(targets))

        for i, collection in enumerate(targets):
            self._check_cancelled("schema migration")
            if collection.type == "view":
                statement, kind = build_create_view_sql(collection), "view"
            else:
                statement, kind = build_create_table_sql(collection), "table"
            try:
                self.target.execute(statement)
            except psycopg.Error as e:
                raise MigrationError(f"failed to create {kind} {collection.name}: {e}") from e

            if kind == "view":
                self.stats.views += 1
            else:
                self.stats.tables += 1
            logger.debug(f"+ {collection.name} ({kind})")
            self.progress.progress(phase, i + 1, len(targets))

        self._complete_phase(phase, self.stats.tables + self.stats.views, started)

    def _migrate_data(self, collections: List[PBCollection], index: int, total: int) -> None:
        tables = [c for c in collections if c.is_data_table]
        counts = {c.name: self.reader.count_records(c.name) for c in tables}
        total_records = sum(counts.values())
        phase, started = self._start_phase("Data", index, total, total_records)

        for collection in tables:
            if counts[collection.name] == 0:
                logger.debug(f"{collection.name}: 0 records (skipping)")
                continue

            fields = list(custom_fields(collection))
            columns = ["id", "created", "updated"] + [f.name for f in fields]
            with closing(self.reader.iter_records(collection.name)) as batches:
                for batch in batches:
                    self._check_cancelled("data migration")
                    for record in batch:
                        values = [record.id, record_time(record, "created"), record_time(record, "updated")]
                        values.extend(column_value(f, record.data.get(f.name)) for f in fields)
                        try:
                            inserted = self.target.insert_row(
                                collection.name, columns, values, 'ON CONFLICT ("id") DO NOTHING'
                            )
                        except psycopg.Error as e:
                            raise MigrationError(
                                f"failed to insert record {record.id} into {collection.name}: {e}"
                            ) from e
                        if inserted:
                            self.stats.records += 1
                    self.progress.progress(phase, self.stats.records, total_records)

        self._complete_phase(phase, self.stats.records, started)

    def _migrate_auth_users(self, collections: List[PBCollection], index: int, total: int) -> None:
        auth_collections = [c for c in collections if is_auth_collection(c)]
        counts = {c.name: self.reader.count_records(c.name) for c in auth_collections}
        phase, started = self._start_phase("Auth users", index, total, sum(counts.values()))

        if auth_collections:
            self.target.execute(CREATE_ID_MAP_SQL)

        for collection in auth_collections:
            if counts[collection.name] == 0:
                logger.debug(f"{collection.name}: 0 users (skipping)")
                continue

            profile_fields = custom_auth_fields(collection.schema)
            if profile_fields:
                try:
                    self.target.execute(build_profile_table_sql(collection.name, profile_fields))
                except psycopg.Error as e:
                    raise MigrationError(f"failed to create user_profiles table: {e}") from e

            with closing(self.reader.iter_records(collection.name)) as batches:
                for batch in batches:
                    self._check_cancelled("auth migration")
                    for record in batch:
                        self._migrate_auth_user(collection, record, profile_fields)
                    self.progress.progress(phase, self.stats.users, sum(counts.values()))

            logger.info(f"{collection.name}: users -> _ayb_users")

        self._complete_phase(phase, self.stats.users, started)

    def _migrate_auth_user(self, collection: PBCollection, record: PBRecord, profile_fields: List[PBField]) -> None:
        user = auth_user_fields(record)
        ayb_id = pocketbase_id_to_uuid(collection.name, record.id)

        try:
            inserted = self.target.insert_user(
                ayb_id,
                user["email"],
                user["password_hash"],
                user["verified"],
                user["created_at"],
                user["updated_at"],
            )
            self.target.insert_row(
                ID_MAP_TABLE,
                ("pb_id", "ayb_id", "collection_name"),
                (record.id, ayb_id, collection.name),
                "ON CONFLICT (pb_id) DO NOTHING",
            )
        except psycopg.Error as e:
            raise MigrationError(f"failed to insert user {user['email']}: {e}") from e
        if inserted:
            self.stats.users += 1

        present = [f for f in profile_fields if f.name in record.data]
        if not present:
            return
        try:
            self.target.insert_row(
                profile_table_name(collection.name),
                ["user_id"] + [f.name for f in present],
                [ayb_id] + [column_value(f, record.data[f.name]) for f in present],
                "ON CONFLICT (user_id) DO NOTHING",
            )
        except psycopg.Error as e:
            raise MigrationError(f"failed to insert user profile for {user['email']}: {e}") from e

    def _migrate_rls(self, collections: List[PBCollection], index: int, total: int) -> None:
        phase, started = self._start_phase("RLS policies", index, total)

        for collection in collections:
            if not collection.is_data_table:
                continue
            policies = generate_rls_policies(collection)
            if not policies:
                continue

            self._check_cancelled("RLS migration")
            try:
                self.target.execute(enable_rls_sql(collection.name))
            except psycopg.Error as e:
                raise MigrationError(f"failed to enable RLS on {collection.name}: {e}") from e
            for policy in policies:
                try:
                    self.target.execute(policy)
                except psycopg.Error as e:
                    raise MigrationError(f"failed to create policy on {collection.name}: {e}") from e
                self.stats.policies += 1
            logger.debug(f"+ {collection.name}: {len(policies)} policies")

        self._complete_phase(phase, self.stats.policies, started)

    def _collect_files(self, collections: List[PBCollection]) -> List[FileCopy]:
        """Every uploaded file under pb_data/storage for collections with file fields."""
        files = []
        for collection in collections:
            if not is_file_collection(collection):
                continue
            root = self.reader.storage_dir(collection.name)
            if not root.is_dir():
                continue
            for dirpath, dirnames, filenames in os.walk(root):
                dirnames.sort()
                for filename in sorted(filenames):
                    path = os.path.join(dirpath, filename)
                    relative = os.path.relpath(path, root).replace(os.sep, "/")
                    files.append(FileCopy(
                        label=f"{collection.name}/{relative}",
                        source_path=path,
                        bucket=collection.name,
                        relative_path=relative,
                    ))
        return files

    def _migrate_files(self, collections: List[PBCollection], index: int, total: int) -> None:
        phase, started = self._start_phase("Storage files", index, total)

        if not self.reader.storage_root.is_dir():
            logger.info("No storage directory found (skipping)")
            self._complete_phase(phase, 0, started)
            return

        files = self._collect_files(collections)
        self._copy_files(phase, files, len(files))
        self._complete_phase(phase, self.stats.storage_files, started)

    def build_validation_summary(self, report: AnalysisReport, stats: MigrationStats) -> ValidationSummary:
        return build_pocketbase_summary(report, stats)
