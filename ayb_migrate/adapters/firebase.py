"""Firebase source adapter.

Reads offline exports (auth JSON, Firestore collection files, an RTDB dump
and a Cloud Storage directory tree) and writes them into AYB. Each write
step commits on its own, so a failed step leaves earlier steps in place;
deterministic keys make a re-run pick up where it stopped.
"""

import logging
import os
from typing import List, Optional

import psycopg

from ..exceptions import AnalysisError, MigrationError
from ..extractors.firebase import (
    create_collection_index_sql,
    create_collection_table_sql,
    create_rtdb_index_sql,
    create_rtdb_table_sql,
    flatten_firestore_fields,
    normalize_collection_name,
    normalize_provider,
    normalize_rtdb_table_name,
    oauth_providers,
    parse_auth_export,
    parse_epoch_ms,
    parse_firestore_export,
    parse_rtdb_export,
    scan_storage_export,
    skip_reason,
)
from ..loaders.postgres import PostgresTarget
from ..loaders.storage import normalize_bucket_name
from ..models.migration import FirebaseOptions, SourceType
from ..models.report import AnalysisReport, MigrationStats, ValidationSummary
from ..models.source import FirebaseHashConfig, FirebaseUser
from ..services.identity import firebase_id_to_uuid
from ..services.scrypt import NO_PASSWORD_HASH, encode_firebase_scrypt_hash
from ..services.validator import build_firebase_summary
from .base import FileCopy, SourceAdapter

logger = logging.getLogger(__name__)

ROW_SAVEPOINT = "ayb_firebase_row"


class FirebaseAdapter(SourceAdapter):
    """
    Migrates Firebase export files into AYB.

    Any subset of the four exports may be supplied; each one enables its
    own phases.
    """

    source_type = SourceType.FIREBASE

    def __init__(self, options: FirebaseOptions):
        super().__init__(options)
        self.options: FirebaseOptions = options
        self.target: Optional[PostgresTarget] = None

        try:
            self.target = PostgresTarget(options.database_url)
            self.target.ping()
        except AnalysisError:
            self.close()
            raise

    def validate_options(self) -> List[str]:
        opts = self.options
        errors = []
        if not (opts.auth_export_path or opts.firestore_export_path
                or opts.rtdb_export_path or opts.storage_export_path):
            errors.append("at least one export path is required (auth, Firestore, RTDB, or storage)")
        if not opts.database_url:
            errors.append("database URL is required")

        if opts.auth_export_path and not os.path.isfile(opts.auth_export_path):
            errors.append(f"auth export file not found: {opts.auth_export_path}")
        if opts.firestore_export_path:
            if not os.path.exists(opts.firestore_export_path):
                errors.append(f"Firestore export path not found: {opts.firestore_export_path}")
            elif not os.path.isdir(opts.firestore_export_path):
                errors.append("Firestore export path must be a directory")
        if opts.rtdb_export_path and not os.path.isfile(opts.rtdb_export_path):
            errors.append(f"RTDB export file not found: {opts.rtdb_export_path}")
        if opts.storage_export_path:
            if not os.path.exists(opts.storage_export_path):
                errors.append(f"storage export path not found: {opts.storage_export_path}")
            elif not os.path.isdir(opts.storage_export_path):
                errors.append("storage export path must be a directory")
        return errors

    def _resources(self):
        return [("target connection", self.target)]

    def phase_count(self) -> int:
        count = 0
        if self.options.auth_export_path:
            count += 2  # auth users + OAuth links
        if self.options.firestore_export_path:
            count += 1
        if self.options.rtdb_export_path:
            count += 1
        if self.options.storage_export_path:
            count += 1
        return count

    # Analysis

    def analyze(self) -> AnalysisReport:
        """
        Count importable users and links, collections, documents and files.

        A broken auth export fails the analysis; the other exports degrade
        to warnings.
        """
        opts = self.options
        report = AnalysisReport(source_type=self.source_type.value)

        if opts.auth_export_path:
            try:
                users, _ = parse_auth_export(opts.auth_export_path)
            except AnalysisError as e:
                raise AnalysisError(f"parsing auth export: {e}") from e
            report.source_info = opts.auth_export_path
            for user in users:
                if skip_reason(user):
                    continue
                report.auth_users += 1
                report.oauth_links += len(oauth_providers(user))

        if opts.firestore_export_path:
            try:
                collections = parse_firestore_export(opts.firestore_export_path)
            except AnalysisError as e:
                report.warnings.append(f"could not read Firestore export: {e}")
            else:
                report.tables += len(collections)
                report.records += sum(len(c.documents) for c in collections)

        if opts.rtdb_export_path:
            try:
                nodes = parse_rtdb_export(opts.rtdb_export_path)
            except AnalysisError as e:
                report.warnings.append(f"could not read RTDB export: {e}")
            else:
                report.tables += len(nodes)
                report.records += sum(len(n.children) for n in nodes)

        if opts.storage_export_path:
            try:
                buckets = scan_storage_export(opts.storage_export_path)
            except AnalysisError as e:
                report.warnings.append(f"could not scan storage export: {e}")
            else:
                for files in buckets.values():
                    report.files += len(files)
                    report.file_size_bytes += sum(f.size for f in files)

        if not report.source_info:
            report.source_info = opts.firestore_export_path or opts.rtdb_export_path or opts.storage_export_path
        return report

    # Migration

    def migrate(self) -> MigrationStats:
        """
        Run every phase whose export was supplied.

        Steps: auth users and OAuth links (one transaction), Firestore,
        RTDB, then storage files. In a dry run every transaction rolls
        back and no files are copied.

        Users, links and rows that already exist are left alone, so running
        again after a failed step picks up where the committed steps stopped.
        Only the presence of _ayb_users is checked.
        """
        opts = self.options
        self.stats = MigrationStats()
        total = self.phase_count()
        index = 0

        logger.info("Starting Firebase migration")

        if opts.auth_export_path:
            users, hash_config = parse_auth_export(opts.auth_export_path)
            if opts.hash_config is not None:
                hash_config = opts.hash_config
            with self.target.transaction(rollback=opts.dry_run):
                self.target.require_users_table()
                self._run_step("auth migration", self._migrate_auth_users, users, hash_config, index + 1, total)
                self._run_step("OAuth migration", self._migrate_oauth_links, users, index + 2, total)
            index += 2

        if opts.firestore_export_path:
            index += 1
            with self.target.transaction(rollback=opts.dry_run):
                self._run_step("Firestore migration", self._migrate_firestore, index, total)

        if opts.rtdb_export_path:
            index += 1
            with self.target.transaction(rollback=opts.dry_run):
                self._run_step("RTDB migration", self._migrate_rtdb, index, total)

        if opts.storage_export_path and not opts.dry_run:
            index += 1
            self._run_step("storage migration", self._migrate_storage, index, total)

        return self._finish()

    def _migrate_auth_users(
        self,
        users: List[FirebaseUser],
        hash_config: Optional[FirebaseHashConfig],
        index: int,
        total: int
    ) -> None:
        phase, started = self._start_phase("Auth users", index, total, len(users))

        for i, user in enumerate(users):
            self._check_cancelled("auth migration")
            reason = skip_reason(user)
            if reason:
                self.stats.skipped += 1
                logger.debug(f"Skipped user {user.local_id} ({reason})")
                self.progress.progress(phase, i + 1, len(users))
                continue

            password_hash = NO_PASSWORD_HASH
            if user.password_hash:
                password_hash = encode_firebase_scrypt_hash(user.password_hash, user.salt, hash_config)
            created_at = parse_epoch_ms(user.created_at)

            try:
                with self.target.savepoint(ROW_SAVEPOINT):
                    inserted = self.target.insert_user(
                        firebase_id_to_uuid(user.local_id),
                        user.email,
                        password_hash,
                        user.email_verified,
                        created_at,
                        created_at,
                    )
            except psycopg.Error as e:
                self.add_error(f"inserting user {user.email}: {e}")
            else:
                if inserted:
                    self.stats.users += 1
            self.progress.progress(phase, i + 1, len(users))

        self._complete_phase(phase, self.stats.users, started)
        logger.info(f"{self.stats.users} users migrated ({self.stats.skipped} skipped)")

    def _migrate_oauth_links(self, users: List[FirebaseUser], index: int, total: int) -> None:
        phase, started = self._start_phase("OAuth", index, total)

        for user in users:
            self._check_cancelled("OAuth migration")
            if user.disabled or not user.email:
                continue
            for provider in oauth_providers(user):
                try:
                    with self.target.savepoint(ROW_SAVEPOINT):
                        inserted = self.target.insert_oauth_account(
                            firebase_id_to_uuid(user.local_id),
                            normalize_provider(provider.provider_id),
                            provider.raw_id,
                            provider.email or user.email,
                            provider.display_name,
                            parse_epoch_ms(user.created_at),
                        )
                except psycopg.Error as e:
                    self.add_error(f"inserting OAuth for user {user.local_id}: {e}")
                    continue
                if inserted:
                    self.stats.oauth_links += 1

        self._complete_phase(phase, self.stats.oauth_links, started)

    def _migrate_firestore(self, index: int, total: int) -> None:
        collections = parse_firestore_export(self.options.firestore_export_path)
        total_docs = sum(len(c.documents) for c in collections)
        phase, started = self._start_phase("Firestore", index, total, total_docs)

        processed = 0
        for collection in collections:
            table = normalize_collection_name(collection.name)
            self._create_document_table(
                table, create_collection_table_sql(table), create_collection_index_sql(table)
            )
            self.stats.collections += 1

            for doc in collection.documents:
                self._check_cancelled("Firestore migration")
                try:
                    with self.target.savepoint(ROW_SAVEPOINT):
                        inserted = self.target.insert_document(table, doc.id, flatten_firestore_fields(doc.fields))
                except (psycopg.Error, TypeError, ValueError) as e:
                    self.add_error(f"inserting document {doc.id} into {table}: {e}")
                else:
                    if inserted:
                        self.stats.documents += 1
                processed += 1
                self.progress.progress(phase, processed, total_docs)

            logger.debug(f"{table}: {len(collection.documents)} documents")

        self._complete_phase(phase, total_docs, started)
        logger.info(f"{self.stats.documents} documents across {self.stats.collections} collections")

    def _migrate_rtdb(self, index: int, total: int) -> None:
        nodes = parse_rtdb_export(self.options.rtdb_export_path)
        total_records = sum(len(n.children) for n in nodes)
        phase, started = self._start_phase("RTDB", index, total, total_records)

        processed = 0
        for node in nodes:
            table = normalize_rtdb_table_name(node.name)
            self._create_document_table(table, create_rtdb_table_sql(table), create_rtdb_index_sql(table))
            self.stats.rtdb_nodes += 1

            for key, value in node.children.items():
                self._check_cancelled("RTDB migration")
                try:
                    with self.target.savepoint(ROW_SAVEPOINT):
                        inserted = self.target.insert_document(table, key, value)
                except (psycopg.Error, TypeError, ValueError) as e:
                    self.add_error(f"inserting {table}/{key}: {e}")
                else:
                    if inserted:
                        self.stats.rtdb_records += 1
                processed += 1
                self.progress.progress(phase, processed, total_records)

        self._complete_phase(phase, total_records, started)
        logger.info(f"{self.stats.rtdb_records} records across {self.stats.rtdb_nodes} nodes")

    def _create_document_table(self, table: str, table_sql: str, index_sql: str) -> None:
        """Create a (id, data jsonb) table; a failed GIN index is only a warning."""
        try:
            self.target.execute(table_sql)
        except psycopg.Error as e:
            raise MigrationError(f"creating table {table}: {e}") from e
        try:
            with self.target.savepoint("ayb_firebase_index"):
                self.target.execute(index_sql)
        except psycopg.Error as e:
            self.add_warning(f"creating index on {table}: {e}")

    def _migrate_storage(self, index: int, total: int) -> None:
        buckets = scan_storage_export(self.options.storage_export_path)
        files = [
            FileCopy(
                label=f"{bucket}/{f.path}",
                source_path=f.full_path,
                bucket=normalize_bucket_name(bucket),
                relative_path=f.path,
            )
            for bucket in sorted(buckets)
            for f in buckets[bucket]
        ]

        phase, started = self._start_phase("Storage files", index, total, len(files))
        if not files:
            self._complete_phase(phase, 0, started)
            logger.info("No storage files found (skipping)")
            return

        self._copy_files(phase, files, len(files))
        self._complete_phase(phase, len(files), started)

    def build_validation_summary(self, report: AnalysisReport, stats: MigrationStats) -> ValidationSummary:
        return build_firebase_summary(report, stats)
