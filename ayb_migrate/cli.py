"""Command-line entry point: ayb-migrate supabase|firebase|pocketbase|from."""

import argparse
import logging
import os
import sys
from typing import Callable, List, Optional, TextIO, Tuple

from .adapters.base import SourceAdapter
from .adapters.firebase import FirebaseAdapter
from .adapters.pocketbase import PocketBaseAdapter
from .adapters.supabase import SupabaseAdapter
from .exceptions import ConfigurationError, MigrationToolError
from .models.migration import (
    FirebaseOptions,
    MigrationOptions,
    PocketBaseOptions,
    SourceType,
    SupabaseOptions,
)
from .orchestrator import MigrationOrchestrator, OrchestratorResult
from .services.detect import detect_source, redact_url
from .services.progress import CLIReporter, NopReporter, ProgressReporter

logger = logging.getLogger(__name__)

DATABASE_URL_ENV_VARS = ("AYB_DATABASE_URL", "DATABASE_URL")

AdapterFactory = Callable[[MigrationOptions], SourceAdapter]


def default_database_url() -> str:
    """Target URL from the environment when --database-url is not given."""
    for name in DATABASE_URL_ENV_VARS:
        value = os.environ.get(name)
        if value:
            return value
    return ""


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--database-url", default="", help="AYB PostgreSQL connection URL (target)")
    parser.add_argument("--dry-run", action="store_true", help="Preview what would be migrated without making changes")
    parser.add_argument("--force", action="store_true", help="Allow migration when _ayb_users is not empty")
    parser.add_argument("--verbose", "-v", action="store_true", help="Show detailed progress")
    parser.add_argument("--yes", "-y", action="store_true", help="Skip confirmation prompt")
    parser.add_argument("--json", action="store_true", help="Output migration stats as JSON")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ayb-migrate",
        description="Migrate Supabase, Firebase or PocketBase projects into AYB",
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Supabase
    sb_parser = subparsers.add_parser(
        "supabase",
        help="Migrate data, auth users, OAuth identities and RLS policies from a Supabase database",
        description="Use the direct database connection (port 5432), not the connection pooler (port 6543). "
                    "The migration runs in a single transaction, so either everything succeeds or nothing is changed.",
    )
    sb_parser.add_argument("--source-url", required=True, help="Supabase PostgreSQL connection URL (source)")
    sb_parser.add_argument("--storage-export", default="", help="Path to exported Supabase storage directory")
    sb_parser.add_argument("--storage-path", default="", help="Destination directory for AYB storage files (default: ./ayb_storage)")
    sb_parser.add_argument("--skip-rls", action="store_true", help="Skip RLS policy rewriting")
    sb_parser.add_argument("--skip-oauth", action="store_true", help="Skip OAuth identity migration")
    sb_parser.add_argument("--skip-data", action="store_true", help="Skip data table migration (auth and RLS only)")
    sb_parser.add_argument("--skip-storage", action="store_true", help="Skip storage file migration")
    sb_parser.add_argument("--include-anonymous", action="store_true", help="Include anonymous Supabase users")
    _add_common_arguments(sb_parser)

    # Firebase
    fb_parser = subparsers.add_parser("firebase", help="Migrate Firebase export files")
    fb_parser.add_argument("--auth-export", default="", help="Path to Firebase auth export JSON file (firebase auth:export)")
    fb_parser.add_argument("--firestore-export", default="", help="Path to Firestore export directory")
    fb_parser.add_argument("--rtdb-export", default="", help="Path to Realtime Database export JSON file")
    fb_parser.add_argument("--storage-export", default="", help="Path to Cloud Storage export directory (bucket subdirectories)")
    fb_parser.add_argument("--storage-path", default="", help="Destination directory for AYB storage files (default: ./ayb_storage)")
    _add_common_arguments(fb_parser)

    # PocketBase
    pb_parser = subparsers.add_parser("pocketbase", help="Migrate a PocketBase pb_data directory")
    pb_parser.add_argument("--source", required=True, help="Path to PocketBase data directory (pb_data)")
    pb_parser.add_argument("--storage-path", default="", help="Destination directory for AYB storage files (default: ./ayb_storage)")
    pb_parser.add_argument("--skip-files", action="store_true", help="Skip file migration (only migrate schema and data)")
    _add_common_arguments(pb_parser)

    # Auto-detected source
    from_parser = subparsers.add_parser("from", help="Detect the source type from a locator and migrate it")
    from_parser.add_argument("locator", help="Path to pb_data, postgres:// URL, or Firebase auth export .json")
    _add_common_arguments(from_parser)

    return parser


def _progress_reporter(args: argparse.Namespace, stderr: TextIO) -> ProgressReporter:
    if args.json:
        return NopReporter()
    return CLIReporter(stderr)


def _common_options(args: argparse.Namespace, stderr: TextIO) -> dict:
    return {
        "database_url": args.database_url or default_database_url(),
        "dry_run": args.dry_run,
        "force": args.force,
        "verbose": args.verbose,
        "progress": _progress_reporter(args, stderr),
    }


def resolve_command(args: argparse.Namespace, stderr: TextIO) -> Tuple[AdapterFactory, MigrationOptions]:
    """
    Map parsed arguments to an adapter class and its options.

    Raises:
        ConfigurationError: if a `from` locator cannot be migrated
    """
    common = _common_options(args, stderr)

    if args.command == "supabase":
        return SupabaseAdapter, SupabaseOptions(
            source_url=args.source_url,
            storage_export_path=args.storage_export,
            storage_path=args.storage_path,
            skip_rls=args.skip_rls,
            skip_oauth=args.skip_oauth,
            skip_data=args.skip_data,
            skip_storage=args.skip_storage,
            include_anonymous=args.include_anonymous,
            **common,
        )

    if args.command == "firebase":
        return FirebaseAdapter, FirebaseOptions(
            auth_export_path=args.auth_export,
            firestore_export_path=args.firestore_export,
            rtdb_export_path=args.rtdb_export,
            storage_export_path=args.storage_export,
            storage_path=args.storage_path,
            **common,
        )

    if args.command == "pocketbase":
        return PocketBaseAdapter, PocketBaseOptions(
            source_path=args.source,
            storage_path=args.storage_path,
            skip_files=args.skip_files,
            **common,
        )

    if args.command == "from":
        return resolve_locator(args.locator, common)

    raise ConfigurationError(f"unknown command: {args.command}")


def resolve_locator(locator: str, common: dict) -> Tuple[AdapterFactory, MigrationOptions]:
    """
    Pick an adapter for a `from` locator using source detection.

    A .json locator is treated as a Firebase auth export.
    """
    source_type = detect_source(locator)
    logger.info(f"Detected {source_type.value} source ({source_type.category.value}): {redact_url(locator)}")

    if source_type == SourceType.POCKETBASE:
        return PocketBaseAdapter, PocketBaseOptions(source_path=locator, **common)
    if source_type == SourceType.SUPABASE:
        return SupabaseAdapter, SupabaseOptions(source_url=locator, **common)
    if source_type == SourceType.FIREBASE:
        if not locator.endswith(".json"):
            raise ConfigurationError("firebase --from requires a path to a .json auth export file")
        return FirebaseAdapter, FirebaseOptions(auth_export_path=locator, **common)
    if source_type == SourceType.POSTGRES:
        raise ConfigurationError("generic PostgreSQL --from migration is not yet implemented")
    raise ConfigurationError(
        f"could not detect migration source type from {locator!r} "
        "(expected: path to pb_data, postgres:// URL, or firebase:// URL)"
    )


def run_command(
    args: argparse.Namespace,
    stdin: Optional[TextIO] = None,
    stdout: Optional[TextIO] = None,
    stderr: Optional[TextIO] = None
) -> OrchestratorResult:
    """Build the adapter for a parsed command and run it through the orchestrator."""
    stderr = stderr or sys.stderr
    factory, options = resolve_command(args, stderr)
    orchestrator = MigrationOrchestrator(
        factory,
        options,
        json_output=args.json,
        # `from` runs unattended, like the start-time migration it mirrors
        assume_yes=args.yes or args.command == "from",
        input_stream=stdin,
        stdout=stdout,
        stderr=stderr,
    )
    return orchestrator.run()


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    # Progress owns stderr in human mode; only warnings get logged there
    log_level = logging.DEBUG if args.verbose else logging.WARNING
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    try:
        run_command(args)
    except MigrationToolError as e:
        sys.stderr.write(f"Error: {e}\n")
        return 1
    except KeyboardInterrupt:
        sys.stderr.write("Error: interrupted\n")
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())
