"""Analysis, statistics and validation models shared by all adapters."""

import copy
import sys
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, TextIO

from .migration import ScopeSkips


def format_bytes(size: int) -> str:
    """Format a byte count as a human-readable string (B, KB, MB, GB)."""
    if size >= 1 << 30:
        return f"{size / (1 << 30):.1f} GB"
    if size >= 1 << 20:
        return f"{size / (1 << 20):.1f} MB"
    if size >= 1 << 10:
        return f"{size / (1 << 10):.1f} KB"
    return f"{size} B"


@dataclass
class AnalysisReport:
    """
    Read-only summary of a source, shown before migrating.

    All counts default to zero when the corresponding source artifact
    does not exist.
    """
    source_type: str
    source_info: str = ""  # e.g. "SQLite 7.2 MB" or a redacted URL
    tables: int = 0
    views: int = 0
    records: int = 0
    auth_users: int = 0
    oauth_links: int = 0
    rls_policies: int = 0
    files: int = 0
    file_size_bytes: int = 0
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        result = {
            "sourceType": self.source_type,
            "sourceInfo": self.source_info,
            "tables": self.tables,
            "views": self.views,
            "records": self.records,
            "authUsers": self.auth_users,
            "oauthLinks": self.oauth_links,
            "rlsPolicies": self.rls_policies,
            "files": self.files,
            "fileSizeBytes": self.file_size_bytes,
        }
        if self.warnings:
            result["warnings"] = list(self.warnings)
        return result

    def print_report(self, stream: Optional[TextIO] = None) -> None:
        """Write the formatted pre-flight report."""
        out = stream or sys.stderr
        out.write("\n")
        out.write(f"  AYB Migration Report — {self.source_type}\n")
        out.write("\n")
        if self.source_info:
            out.write(f"  Source: {self.source_info}\n")
            out.write("\n")

        out.write(f"  Tables:       {self.tables}\n")
        if self.views > 0:
            out.write(f"  Views:        {self.views}\n")
        out.write(f"  Records:      {self.records}\n")
        if self.auth_users > 0:
            out.write(f"  Auth users:   {self.auth_users}\n")
        if self.oauth_links > 0:
            out.write(f"  OAuth links:  {self.oauth_links}\n")
        if self.rls_policies > 0:
            out.write(f"  RLS policies: {self.rls_policies}\n")
        if self.files > 0:
            out.write(f"  Files:        {self.files} ({format_bytes(self.file_size_bytes)})\n")
        out.write("\n")

        if self.warnings:
            out.write("  Warnings:\n")
            for warning in self.warnings:
                out.write(f"    - {warning}\n")
            out.write("\n")


def normalize_report(report: AnalysisReport, skips: ScopeSkips) -> AnalysisReport:
    """
    Return a copy of the report with every skipped scope zeroed.

    The original report is left untouched so it can still be displayed
    as-is; the copy is what gets compared against migration stats.
    """
    normalized = copy.deepcopy(report)
    if skips.data:
        normalized.tables = 0
        normalized.views = 0
        normalized.records = 0
    if skips.oauth:
        normalized.oauth_links = 0
    if skips.rls:
        normalized.rls_policies = 0
    if skips.storage:
        normalized.files = 0
        normalized.file_size_bytes = 0
    return normalized


@dataclass
class MigrationStats:
    """Write-side outcome of a migration. Skipped scopes stay at zero."""
    users: int = 0
    oauth_links: int = 0
    policies: int = 0
    tables: int = 0
    views: int = 0
    records: int = 0
    sequences: int = 0
    collections: int = 0
    documents: int = 0
    rtdb_nodes: int = 0
    rtdb_records: int = 0
    storage_files: int = 0
    storage_bytes: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)
    dry_run: bool = False

    def add_error(self, message: str) -> None:
        self.errors.append(message)

    def without_writes(self) -> "MigrationStats":
        """Stats for a dry run: nothing was written, diagnostics are kept."""
        return MigrationStats(skipped=self.skipped, errors=list(self.errors), dry_run=True)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the JSON shape printed by --json."""
        result = {
            "users": self.users,
            "oauthLinks": self.oauth_links,
            "policies": self.policies,
            "tables": self.tables,
            "views": self.views,
            "records": self.records,
            "sequences": self.sequences,
            "collections": self.collections,
            "documents": self.documents,
            "rtdbNodes": self.rtdb_nodes,
            "rtdbRecords": self.rtdb_records,
            "storageFiles": self.storage_files,
            "storageBytes": self.storage_bytes,
            "skipped": self.skipped,
            "dryRun": self.dry_run,
        }
        if self.errors:
            result["errors"] = list(self.errors)
        return result


@dataclass
class ValidationRow:
    """A single line in the validation summary."""
    label: str
    source_count: int
    target_count: int

    @property
    def matches(self) -> bool:
        return self.source_count == self.target_count


@dataclass
class ValidationSummary:
    """Post-migration reconciliation of source counts against target counts."""
    source_label: str
    target_label: str
    rows: List[ValidationRow] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def add_row(self, label: str, source_count: int, target_count: int) -> None:
        self.rows.append(ValidationRow(label, source_count, target_count))

    @property
    def all_match(self) -> bool:
        return all(row.matches for row in self.rows)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sourceLabel": self.source_label,
            "targetLabel": self.target_label,
            "rows": [
                {"label": r.label, "source": r.source_count, "target": r.target_count}
                for r in self.rows
            ],
            "warnings": list(self.warnings),
        }

    def print_summary(self, stream: Optional[TextIO] = None) -> None:
        """Write the formatted validation table."""
        out = stream or sys.stderr
        out.write("\n")
        out.write("  Validation Summary\n")
        out.write("\n")
        out.write(f"  {self.source_label:<28}  {self.target_label:<20}\n")
        out.write(f"  {'-' * 24:<28}  {'-' * 16:<20}\n")

        for row in self.rows:
            match = "ok" if row.matches else "MISMATCH"
            out.write(
                f"  {row.label:<16} {row.source_count:>6}  ->  {row.target_count:>6}  {match}\n"
            )
        out.write("\n")

        if self.all_match:
            out.write("  All counts match.\n")

        if self.warnings:
            out.write("  Warnings:\n")
            for warning in self.warnings:
                out.write(f"    - {warning}\n")
        out.write("\n")
