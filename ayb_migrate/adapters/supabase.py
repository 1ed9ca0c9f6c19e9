"""Supabase source adapter.

Copies public tables, views, data, auth users, OAuth identities and RLS
policies into AYB in one target transaction, then copies storage files
from a local export once that transaction has committed.
"""

import logging
import os
from contextlib import closing
from typing import Callable, Dict, List, Optional, Tuple
from urllib.parse import parse_qs, urlsplit

import psycopg

from ..exceptions import AnalysisError, MigrationError
from ..extractors.supabase import SupabaseSource, extract_string, parse_identity
from ..loaders.postgres import (
    PostgresTarget,
    adapt_value,
    is_retriable_data_error,
    is_skippable_schema_error,
)
from ..loaders.storage import normalize_bucket_name
from ..models.migration import SourceType, SupabaseOptions
from ..models.report import AnalysisReport, MigrationStats, ValidationSummary
from ..models.source import SupabaseIdentity, SupabaseUser, TableInfo
from ..services.detect import redact_url
from ..services.rls import (
    drop_policy_sql,
    enable_rls_on_policy_table_sql,
    generate_rewritten_policy,
)
from ..services.scrypt import NO_PASSWORD_HASH
from ..services.typemap import create_table_sql, create_view_sql, sequence_reset_sql
from ..services.validator import build_supabase_summary
from .base import FileCopy, SourceAdapter

logger = logging.getLogger(__name__)

POOLER_PORT = 6543


def is_pooler_url(url: str) -> bool:
    """Transaction poolers (Supavisor/PgBouncer) cannot hold the migration transaction."""
    try:
        parts = urlsplit(url)
        port = parts.port
    except ValueError:
        return False
    if port == POOLER_PORT:
        return True
    query = parse_qs(parts.query)
    return any(v.lower() == "true" for v in query.get("pgbouncer", []))


class SupabaseAdapter(SourceAdapter):
    """
    Migrates a Supabase project into AYB.

    Everything except storage runs in a single target transaction: any
    failure (or cancellation) leaves the target exactly as it was.
    """

    source_type = SourceType.SUPABASE

    def __init__(self, options: SupabaseOptions):
        super().__init__(options)
        self.options: SupabaseOptions = options
        self.source: Optional[SupabaseSource] = None
        self.target: Optional[PostgresTarget] = None
        self._tables: List[TableInfo] = []
        self._skipped_tables: Dict[str, str] = {}

        try:
            self.source = SupabaseSource(options.source_url)
            self.source.ping()
            self.target = PostgresTarget(options.database_url)
            self.target.ping()
            if not self.source.table_exists("auth", "users"):
                raise AnalysisError(
                    "source database does not appear to be a Supabase database (auth.users table not found)"
                )
        except AnalysisError:
            self.close()
            raise
        except psycopg.Error as e:
            self.close()
            raise AnalysisError(f"checking source database: {e}") from e

    def validate_options(self) -> List[str]:
        errors = []
        if not self.options.source_url:
            errors.append("source database URL is required")
        elif is_pooler_url(self.options.source_url):
            errors.append("source URL points at a connection pooler; use the direct database connection (port 5432)")
        if not self.options.database_url:
            errors.append("target database URL is required")
        elif is_pooler_url(self.options.database_url):
            errors.append("target URL points at a connection pooler; use a direct database connection")
        return errors

    def _resources(self):
        return [("source connection", self.source), ("target connection", self.target)]

    def phase_count(self) -> int:
        count = 1  # auth users always run
        if not self.options.skip_data:
            count += 2  # schema + data
        if not self.options.skip_oauth:
            count += 1
        if not self.options.skip_rls:
            count += 1
        if self._storage_enabled():
            count += 1
        return count

    def _storage_enabled(self) -> bool:
        return not self.options.skip_storage and bool(self.options.storage_export_path)

    # Analysis

    def analyze(self) -> AnalysisReport:
        """
        Count what a migration would move.

        Auth users are mandatory; OAuth, RLS, table and storage counts
        degrade to warnings when they cannot be read.
        """
        report = AnalysisReport(source_type=self.source_type.value, source_info=redact_url(self.options.source_url))

        try:
            report.auth_users = self.source.count_auth_users(self.options.include_anonymous)
        except psycopg.Error as e:
            raise AnalysisError(f"counting auth users: {e}") from e

        try:
            report.oauth_links = self.source.count_oauth_identities()
        except psycopg.Error as e:
            report.warnings.append(f"could not count OAuth identities: {e}")

        try:
            report.rls_policies = self.source.count_rls_policies()
        except psycopg.Error as e:
            report.warnings.append(f"could not count RLS policies: {e}")

        if not self.options.skip_data:
            try:
                tables = self.source.introspect_tables()
            except psycopg.Error as e:
                report.warnings.append(f"could not introspect tables: {e}")
            else:
                report.tables = len(tables)
                report.records = sum(t.row_count for t in tables)

            try:
                report.views = len(self.source.introspect_views())
            except psycopg.Error as e:
                report.warnings.append(f"could not introspect views: {e}")

        if not self.options.skip_storage:
            try:
                buckets = self.source.list_storage_buckets()
            except psycopg.Error as e:
                report.warnings.append(f"could not list storage buckets: {e}")
                buckets = []
            for bucket in buckets:
                try:
                    objects = self.source.list_storage_objects(bucket.id)
                except psycopg.Error as e:
                    report.warnings.append(f"could not list objects in bucket {bucket.name}: {e}")
                    continue
                report.files += len(objects)
                report.file_size_bytes += sum(o.size for o in objects)

        logger.info(
            f"Analyzed Supabase source: {report.tables} tables, {report.records} records, "
            f"{report.auth_users} users"
        )
        return report

    # Migration

    def migrate(self) -> MigrationStats:
        """
        Run every enabled phase.

        Phase order: Schema, Data, Auth users, OAuth, RLS policies, then
        Storage files after commit. Dry runs roll back and skip storage.
        """
        self.stats = MigrationStats()
        self._tables = []
        self._skipped_tables = {}
        total = self.phase_count()
        index = 0

        logger.info("Starting Supabase migration")
        with self.target.transaction(rollback=self.options.dry_run):
            self.target.check_users_table(self.options.force)

            if not self.options.skip_data:
                index += 1
                self._run_step("schema migration", self._migrate_schema, index, total)
                index += 1
                self._run_step("data migration", self._migrate_data, index, total)

            index += 1
            self._run_step("auth user migration", self._migrate_auth_users, index, total)

            if not self.options.skip_oauth:
                index += 1
                self._run_step("OAuth identity migration", self._migrate_oauth, index, total)

            if not self.options.skip_rls:
                index += 1
                self._run_step("RLS policy migration", self._migrate_rls, index, total)

            self._check_cancelled("commit")

        if self._storage_enabled() and not self.options.dry_run:
            index += 1
            self._run_step("storage migration", self._migrate_storage, index, total)

        return self._finish()

    def _migrate_schema(self, index: int, total: int) -> None:
        self._tables = self.source.introspect_tables()
        views = self.source.introspect_views()
        total_items = len(self._tables) + len(views)
        phase, started = self._start_phase("Schema", index, total, total_items)

        deferred: List[Tuple[TableInfo, Exception]] = []
        for i, table in enumerate(self._tables):
            self._check_cancelled("schema migration")
            try:
                self._create_table(table, f"ayb_schema_table_{i}")
            except psycopg.Error as e:
                if not is_skippable_schema_error(e):
                    raise MigrationError(f"creating table {table.name}: {e}") from e
                deferred.append((table, e))
                continue
            self.stats.tables += 1
            self.progress.progress(phase, i + 1, total_items)

        self._retry_deferred(
            deferred,
            lambda table, savepoint: self._create_table(table, savepoint) or 0,
            is_skippable_schema_error,
            "ayb_schema_table_retry",
            "creating table",
            "skipping table {name} due source/target schema incompatibility: {err}",
            lambda table, _count: setattr(self.stats, "tables", self.stats.tables + 1),
        )

        for i, view in enumerate(views):
            self._check_cancelled("schema migration")
            try:
                with self.target.savepoint(f"ayb_schema_view_{i}"):
                    self.target.execute(create_view_sql(view))
            except psycopg.Error as e:
                self.add_warning(f"skipping view {view.name}: {e}")
                continue
            self.stats.views += 1
            logger.debug(f"CREATE VIEW {view.name}")

        self._complete_phase(phase, total_items, started)

    def _create_table(self, table: TableInfo, savepoint: str) -> None:
        with self.target.savepoint(savepoint):
            self.target.execute(create_table_sql(table))
        logger.debug(f"CREATE TABLE {table.name} ({len(table.columns)} columns)")

    def _retry_deferred(
        self,
        deferred: List[Tuple[TableInfo, Exception]],
        attempt: Callable[[TableInfo, str], int],
        retriable: Callable[[BaseException], bool],
        savepoint_prefix: str,
        action: str,
        warning: str,
        on_success: Callable[[TableInfo, int], None]
    ) -> None:
        """
        Retry deferred tables until a pass makes no progress.

        Tables still failing after that are skipped with a warning.
        """
        passes = len(deferred)
        for pass_number in range(1, passes + 1):
            if not deferred:
                break
            remaining = []
            progressed = False
            for i, (table, _last_error) in enumerate(deferred):
                self._check_cancelled()
                try:
                    count = attempt(table, f"{savepoint_prefix}_{pass_number}_{i}")
                except psycopg.Error as e:
                    if not retriable(e):
                        raise MigrationError(f"{action} {table.name}: {e}") from e
                    remaining.append((table, e))
                    continue
                progressed = True
                on_success(table, count)

            if not progressed:
                for table, error in remaining:
                    self._skipped_tables[table.name] = str(error)
                    self.stats.skipped += 1
                    self.add_warning(warning.format(name=table.name, err=error))
                break
            deferred = remaining

    def _migrate_data(self, index: int, total: int) -> None:
        tables = [t for t in self._tables if t.name not in self._skipped_tables]
        for t in self._tables:
            if t.name in self._skipped_tables:
                logger.debug(f"Skipped data copy for {t.name} (schema incompatibility)")

        total_rows = sum(t.row_count for t in tables)
        phase, started = self._start_phase("Data", index, total, total_rows)
        copied = 0

        def report_progress(n: int) -> None:
            self.progress.progress(phase, copied + n, total_rows)

        deferred: List[Tuple[TableInfo, Exception]] = []
        for i, table in enumerate(tables):
            try:
                count = self._copy_table(table, f"ayb_data_table_{i}", report_progress)
            except psycopg.Error as e:
                if not is_retriable_data_error(e):
                    raise MigrationError(f"copying data for {table.name}: {e}") from e
                deferred.append((table, e))
                continue
            copied += count
            self.stats.records += count
            logger.debug(f"{table.name}: {count} rows")

        def record_copied(table: TableInfo, count: int) -> None:
            nonlocal copied
            copied += count
            self.stats.records += count

        self._retry_deferred(
            deferred,
            lambda table, savepoint: self._copy_table(table, savepoint, report_progress),
            is_retriable_data_error,
            "ayb_data_table_retry",
            "copying data for",
            "skipping data copy for {name} due unresolved dependency: {err}",
            record_copied,
        )

        self._reset_sequences(tables)
        self._complete_phase(phase, total_rows, started)

    def _copy_table(self, table: TableInfo, savepoint: str, report_progress: Callable[[int], None]) -> int:
        """Copy one table inside a savepoint; returns the number of rows written."""
        if not table.columns:
            return 0
        columns = [c.name for c in table.columns]
        count = 0
        with self.target.savepoint(savepoint):
            with closing(self.source.iter_table_batches(table)) as batches:
                for batch in batches:
                    self._check_cancelled("data migration")
                    for row in batch:
                        values = [adapt_value(v, c.data_type) for v, c in zip(row, table.columns)]
                        if self.target.insert_row(table.name, columns, values):
                            count += 1
                    report_progress(count)
        return count

    def _reset_sequences(self, tables: List[TableInfo]) -> None:
        for i, table in enumerate(tables):
            statement = sequence_reset_sql(table)
            if not statement:
                continue
            try:
                with self.target.savepoint(f"ayb_sequence_{i}"):
                    self.target.execute(statement)
            except psycopg.Error as e:
                self.add_warning(f"sequence reset: resetting sequence for {table.name}.{table.primary_key}: {e}")
                continue
            self.stats.sequences += 1

    def _migrate_auth_users(self, index: int, total: int) -> None:
        phase, started = self._start_phase("Auth users", index, total)
        with closing(self.source.iter_users(self.options.include_anonymous)) as users:
            for user in users:
                self._check_cancelled("auth user migration")
                self._migrate_user(user)
                self.progress.progress(phase, self.stats.users, 0)
        self._complete_phase(phase, self.stats.users, started)

    def _migrate_user(self, user: SupabaseUser) -> None:
        if not user.email:
            self.stats.skipped += 1
            logger.debug(f"Skipped user {user.id} (no email)")
            return

        password_hash = user.encrypted_password or NO_PASSWORD_HASH
        verified = user.email_confirmed_at is not None
        try:
            inserted = self.target.insert_user(
                user.id, user.email, password_hash, verified, user.created_at, user.updated_at
            )
        except psycopg.Error as e:
            raise MigrationError(f"inserting user {user.email}: {e}") from e
        if inserted:
            self.stats.users += 1

    def _migrate_oauth(self, index: int, total: int) -> None:
        phase, started = self._start_phase("OAuth", index, total)
        with closing(self.source.iter_identity_rows()) as rows:
            for user_id, provider, identity_json, created_at in rows:
                self._check_cancelled("OAuth identity migration")
                if provider == "email":
                    continue
                try:
                    identity = parse_identity(user_id, provider, identity_json, created_at)
                except ValueError as e:
                    self.add_error(f"parsing identity_data for user {user_id}: {e}")
                    continue
                self._migrate_identity(identity)
                self.progress.progress(phase, self.stats.oauth_links, 0)
        self._complete_phase(phase, self.stats.oauth_links, started)

    def _migrate_identity(self, identity: SupabaseIdentity) -> None:
        provider_user_id = extract_string(identity.identity_data, "sub", "provider_id")
        if not provider_user_id:
            self.stats.skipped += 1
            logger.debug(f"Skipped identity for user {identity.user_id} (no provider_user_id)")
            return

        try:
            inserted = self.target.insert_oauth_account(
                identity.user_id,
                identity.provider,
                provider_user_id,
                extract_string(identity.identity_data, "email"),
                extract_string(identity.identity_data, "name", "full_name"),
                identity.created_at,
            )
        except psycopg.Error as e:
            raise MigrationError(f"inserting OAuth account for user {identity.user_id}: {e}") from e
        if inserted:
            self.stats.oauth_links += 1

    def _migrate_rls(self, index: int, total: int) -> None:
        phase, started = self._start_phase("RLS policies", index, total)
        policies = self.source.read_rls_policies()

        for policy in policies:
            self._check_cancelled("RLS policy migration")
            if policy.table_name in self._skipped_tables:
                self.add_warning(
                    f"skipping policy {policy.policy_name} on {policy.table_name}: "
                    "table was skipped during schema migration"
                )
                continue

            logger.debug(f"{policy.table_name}.{policy.policy_name}: {policy.command}")
            try:
                self.target.execute(drop_policy_sql(policy))
                self.target.execute(enable_rls_on_policy_table_sql(policy))
                self.target.execute(generate_rewritten_policy(policy))
            except psycopg.Error as e:
                raise MigrationError(f"creating policy {policy.policy_name} on {policy.table_name}: {e}") from e
            self.stats.policies += 1
            self.progress.progress(phase, self.stats.policies, len(policies))

        self._complete_phase(phase, self.stats.policies, started)

    def _migrate_storage(self, index: int, total: int) -> None:
        buckets = self.source.list_storage_buckets()
        if not buckets:
            phase, started = self._start_phase("Storage files", index, total)
            self._complete_phase(phase, 0, started)
            logger.info("No storage buckets found (skipping)")
            return

        files = []
        for bucket in buckets:
            destination = normalize_bucket_name(bucket.name)
            for obj in self.source.list_storage_objects(bucket.id):
                files.append(FileCopy(
                    label=f"{bucket.name}/{obj.name}",
                    source_path=os.path.join(self.options.storage_export_path, bucket.name, obj.name),
                    bucket=destination,
                    relative_path=obj.name,
                ))

        phase, started = self._start_phase("Storage files", index, total, len(files))
        self._copy_files(phase, files, len(files))
        self._complete_phase(phase, len(files), started)

    def build_validation_summary(self, report: AnalysisReport, stats: MigrationStats) -> ValidationSummary:
        return build_supabase_summary(report, stats)
