"""Post-migration reconciliation of analysis counts against written counts."""

import logging

from ..models.report import AnalysisReport, MigrationStats, ValidationSummary

logger = logging.getLogger(__name__)


def _add_if_present(summary: ValidationSummary, label: str, source: int, target: int) -> None:
    """Add a row only when either side has something to compare."""
    if source > 0 or target > 0:
        summary.add_row(label, source, target)


def _add_diagnostics(summary: ValidationSummary, stats: MigrationStats) -> None:
    if stats.skipped > 0:
        summary.warnings.append(f"{stats.skipped} items skipped during migration")
    if stats.errors:
        summary.warnings.append(f"{len(stats.errors)} errors occurred during migration")


def build_supabase_summary(report: AnalysisReport, stats: MigrationStats) -> ValidationSummary:
    """
    Compare a (normalized) Supabase analysis with migration stats.

    Auth users are always shown; every other row appears only when one
    side is non-zero. Each mismatch also becomes a warning.
    """
    summary = ValidationSummary(source_label="Supabase (source)", target_label="AYB (target)")

    _add_if_present(summary, "Tables", report.tables, stats.tables)
    _add_if_present(summary, "Views", report.views, stats.views)
    _add_if_present(summary, "Records", report.records, stats.records)
    summary.add_row("Auth users", report.auth_users, stats.users)
    _add_if_present(summary, "OAuth links", report.oauth_links, stats.oauth_links)
    _add_if_present(summary, "RLS policies", report.rls_policies, stats.policies)
    _add_if_present(summary, "Storage files", report.files, stats.storage_files)

    for row in summary.rows:
        if not row.matches:
            summary.warnings.append(
                f"{row.label} count mismatch: source={row.source_count} target={row.target_count}"
            )

    _add_diagnostics(summary, stats)
    return summary


def build_firebase_summary(report: AnalysisReport, stats: MigrationStats) -> ValidationSummary:
    """
    Compare a Firebase analysis with migration stats.

    The analysis counts Firestore collections and RTDB nodes as tables and
    their documents and children as records, so the target side sums both.
    """
    summary = ValidationSummary(source_label="Firebase (source)", target_label="AYB (target)")

    _add_if_present(summary, "Auth users", report.auth_users, stats.users)
    _add_if_present(summary, "OAuth links", report.oauth_links, stats.oauth_links)
    _add_if_present(summary, "Collections", report.tables, stats.collections + stats.rtdb_nodes)
    _add_if_present(summary, "Documents", report.records, stats.documents + stats.rtdb_records)
    if stats.rtdb_nodes > 0:
        summary.add_row("RTDB nodes", stats.rtdb_nodes, stats.rtdb_nodes)
    _add_if_present(summary, "Storage files", report.files, stats.storage_files)

    _add_diagnostics(summary, stats)
    return summary


def build_pocketbase_summary(report: AnalysisReport, stats: MigrationStats) -> ValidationSummary:
    """Compare a PocketBase analysis with migration stats; all six rows are always shown."""
    summary = ValidationSummary(source_label="Source (PocketBase)", target_label="Target (AYB)")

    summary.add_row("Tables", report.tables, stats.tables)
    summary.add_row("Views", report.views, stats.views)
    summary.add_row("Records", report.records, stats.records)
    summary.add_row("Auth users", report.auth_users, stats.users)
    summary.add_row("RLS policies", report.rls_policies, stats.policies)
    summary.add_row("Files", report.files, stats.storage_files)

    _add_diagnostics(summary, stats)
    return summary
