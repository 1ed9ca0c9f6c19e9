"""Data models for the migration engine."""

from .migration import (
    SourceCategory,
    SourceType,
    Phase,
    ScopeSkips,
    MigrationOptions,
    SupabaseOptions,
    FirebaseOptions,
    PocketBaseOptions,
)
from .report import (
    AnalysisReport,
    MigrationStats,
    ValidationRow,
    ValidationSummary,
    format_bytes,
    normalize_report,
)
from .source import (
    FirebaseHashConfig,
    FirebaseUser,
    PBCollection,
    PBField,
    TableInfo,
)

__all__ = [
    "SourceCategory",
    "SourceType",
    "Phase",
    "ScopeSkips",
    "MigrationOptions",
    "SupabaseOptions",
    "FirebaseOptions",
    "PocketBaseOptions",
    "AnalysisReport",
    "MigrationStats",
    "ValidationRow",
    "ValidationSummary",
    "format_bytes",
    "normalize_report",
    "FirebaseHashConfig",
    "FirebaseUser",
    "PBCollection",
    "PBField",
    "TableInfo",
]
