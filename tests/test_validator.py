"""Validation summary builder tests."""

from ayb_migrate.models.report import AnalysisReport, MigrationStats
from ayb_migrate.services.validator import (
    build_firebase_summary,
    build_pocketbase_summary,
    build_supabase_summary,
)


def _labels(summary):
    return [row.label for row in summary.rows]


class TestSupabaseSummary:
    """Tests for build_supabase_summary()."""

    def test_auth_row_always_present(self):
        summary = build_supabase_summary(AnalysisReport(source_type="Supabase"), MigrationStats())
        assert _labels(summary) == ["Auth users"]
        assert summary.source_label == "Supabase (source)"
        assert summary.all_match

    def test_mismatches_become_warnings(self):
        report = AnalysisReport(source_type="Supabase", tables=3, records=100, auth_users=5, rls_policies=2)
        stats = MigrationStats(tables=2, records=100, users=5, policies=2)
        summary = build_supabase_summary(report, stats)

        assert _labels(summary) == ["Tables", "Records", "Auth users", "RLS policies"]
        assert summary.warnings == ["Tables count mismatch: source=3 target=2"]

    def test_diagnostics(self):
        stats = MigrationStats(skipped=2)
        stats.add_error("a")
        stats.add_error("b")
        summary = build_supabase_summary(AnalysisReport(source_type="Supabase"), stats)
        assert summary.warnings == [
            "2 items skipped during migration",
            "2 errors occurred during migration",
        ]


class TestFirebaseSummary:
    """Tests for build_firebase_summary()."""

    def test_rtdb_counts_toward_collections_and_documents(self):
        report = AnalysisReport(source_type="Firebase", auth_users=10, tables=2, records=50)
        stats = MigrationStats(users=10, rtdb_nodes=2, rtdb_records=50)
        summary = build_firebase_summary(report, stats)

        rows = {row.label: (row.source_count, row.target_count) for row in summary.rows}
        assert rows == {
            "Auth users": (10, 10),
            "Collections": (2, 2),
            "Documents": (50, 50),
            "RTDB nodes": (2, 2),
        }
        assert summary.all_match

    def test_storage_only(self):
        summary = build_firebase_summary(AnalysisReport(source_type="Firebase", files=15), MigrationStats(storage_files=15))
        assert _labels(summary) == ["Storage files"]

    def test_empty(self):
        assert build_firebase_summary(AnalysisReport(source_type="Firebase"), MigrationStats()).rows == []


class TestPocketBaseSummary:
    """Tests for build_pocketbase_summary()."""

    def test_all_rows_always_present(self):
        summary = build_pocketbase_summary(AnalysisReport(source_type="PocketBase"), MigrationStats())
        assert _labels(summary) == ["Tables", "Views", "Records", "Auth users", "RLS policies", "Files"]
        assert summary.all_match

    def test_file_mismatch(self):
        summary = build_pocketbase_summary(
            AnalysisReport(source_type="PocketBase", files=3), MigrationStats(storage_files=2)
        )
        assert not summary.all_match
        assert summary.warnings == []
