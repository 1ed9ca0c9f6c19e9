"""
Preflight orchestrator tests.

Covers the analyze, report, confirm, migrate, validate sequence and its
error wrapping, using FakeAdapter from conftest.
"""

import io
import json

import pytest

from ayb_migrate.exceptions import (
    AnalysisError,
    ConfigurationError,
    MigrationCancelled,
    MigrationError,
)
from ayb_migrate.models.migration import MigrationOptions, ScopeSkips
from ayb_migrate.models.report import AnalysisReport, MigrationStats, ValidationSummary
from ayb_migrate.orchestrator import MigrationOrchestrator, RunStatus

from conftest import FakeAdapter

TARGET_URL = "postgres://ayb:pw@localhost:5432/ayb"


class Harness:
    """Builds an orchestrator around one FakeAdapter and captures its streams."""

    def __init__(self, answer: str = "\n", dry_run: bool = False, **adapter_kwargs):
        self.options = MigrationOptions(database_url=TARGET_URL, dry_run=dry_run)
        self.adapter_kwargs = adapter_kwargs
        self.adapter = None
        self.stdin = io.StringIO(answer)
        self.stdout = io.StringIO()
        self.stderr = io.StringIO()

    def factory(self, options):
        self.adapter = FakeAdapter(options, **self.adapter_kwargs)
        return self.adapter

    def orchestrator(self, **kwargs) -> MigrationOrchestrator:
        return MigrationOrchestrator(
            self.factory,
            self.options,
            input_stream=self.stdin,
            stdout=self.stdout,
            stderr=self.stderr,
            **kwargs
        )


class TestWorkflow:
    """Tests for the happy paths."""

    def test_default_answer_proceeds(self):
        harness = Harness(answer="\n")
        result = harness.orchestrator().run()

        assert result.status == RunStatus.COMPLETED
        assert harness.adapter.calls == ["analyze", "migrate", "close"]
        text = harness.stderr.getvalue()
        assert "  AYB Migration Report — PocketBase\n" in text
        assert "  Proceed? [Y/n] " in text
        assert "  Validation Summary\n" in text
        assert "  All counts match.\n" in text
        assert result.summary.all_match
        assert harness.stdout.getvalue() == ""

    @pytest.mark.parametrize("answer", ["y\n", "YES\n", "  yes  \n"])
    def test_affirmative_answers(self, answer):
        assert Harness(answer=answer).orchestrator().run().status == RunStatus.COMPLETED

    @pytest.mark.parametrize("answer", ["n\n", "no\n", "later\n"])
    def test_decline_cancels(self, answer):
        harness = Harness(answer=answer)
        result = harness.orchestrator().run()

        assert result.status == RunStatus.CANCELLED
        assert result.stats is None
        assert harness.adapter.calls == ["analyze", "close"]
        assert harness.stderr.getvalue().endswith("  Migration cancelled.\n")

    def test_assume_yes_skips_prompt(self):
        harness = Harness(answer="n\n")
        result = harness.orchestrator(assume_yes=True).run()
        assert result.status == RunStatus.COMPLETED
        assert "Proceed?" not in harness.stderr.getvalue()

    def test_dry_run_skips_prompt_and_summary(self):
        harness = Harness(answer="n\n", dry_run=True)
        result = harness.orchestrator().run()

        assert result.status == RunStatus.DRY_RUN
        assert result.summary is None
        assert result.stats.dry_run
        text = harness.stderr.getvalue()
        assert "Proceed?" not in text
        assert "Validation Summary" not in text

    def test_json_mode(self):
        harness = Harness(answer="n\n", stats=MigrationStats(tables=2, records=10, users=4))
        result = harness.orchestrator(json_output=True).run()

        assert result.status == RunStatus.COMPLETED
        assert harness.stderr.getvalue() == ""
        data = json.loads(harness.stdout.getvalue())
        assert data["users"] == 4
        assert data["tables"] == 2
        assert data["dryRun"] is False

    def test_skips_normalize_before_validation(self):
        harness = Harness(
            report=AnalysisReport(source_type="Supabase", tables=5, records=40),
            stats=MigrationStats(),
        )
        result = harness.orchestrator(assume_yes=True, skips=ScopeSkips(data=True)).run()

        assert result.summary.all_match
        # the displayed report keeps the original counts
        assert result.report.tables == 5
        assert "  Tables:       5\n" in harness.stderr.getvalue()

    def test_custom_summary_builder(self):
        calls = []

        def builder(report, stats):
            calls.append((report.tables, stats.tables))
            summary = ValidationSummary(source_label="Custom", target_label="AYB")
            summary.add_row("Tables", report.tables, stats.tables)
            return summary

        harness = Harness()
        result = harness.orchestrator(assume_yes=True, summary_builder=builder).run()
        assert calls == [(2, 2)]
        assert result.summary.source_label == "Custom"


class TestErrors:
    """Tests for error wrapping and cleanup."""

    def test_configuration_error_from_factory(self):
        def factory(options):
            raise ConfigurationError("database URL is required")

        orchestrator = MigrationOrchestrator(factory, MigrationOptions(), stderr=io.StringIO())
        with pytest.raises(ConfigurationError, match="^failed to create migrator: database URL is required$"):
            orchestrator.run()

    def test_connection_error_from_factory(self):
        def factory(options):
            raise AnalysisError("connecting to target database: refused")

        orchestrator = MigrationOrchestrator(factory, MigrationOptions(), stderr=io.StringIO())
        with pytest.raises(AnalysisError, match="^failed to create migrator: connecting"):
            orchestrator.run()

    def test_analysis_failure(self):
        harness = Harness(analyze_error=AnalysisError("parsing auth export: bad"))
        with pytest.raises(AnalysisError, match="^analysis failed: parsing auth export: bad$"):
            harness.orchestrator().run()
        assert harness.adapter.calls == ["analyze", "close"]

    def test_migration_failure(self):
        harness = Harness(migrate_error=MigrationError("duplicate key", step="data migration"))
        with pytest.raises(MigrationError, match="^migration failed: data migration: duplicate key$"):
            harness.orchestrator(assume_yes=True).run()
        assert harness.adapter.calls == ["analyze", "migrate", "close"]

    def test_cancellation_is_a_migration_failure(self):
        harness = Harness(migrate_error=MigrationCancelled("RLS migration"))
        with pytest.raises(MigrationError) as exc_info:
            harness.orchestrator(assume_yes=True).run()
        assert isinstance(exc_info.value.__cause__, MigrationCancelled)
        assert harness.adapter.calls[-1] == "close"

    def test_unexpected_errors_still_close(self):
        harness = Harness(migrate_error=RuntimeError("bug"))
        with pytest.raises(RuntimeError):
            harness.orchestrator(assume_yes=True).run()
        assert harness.adapter.calls[-1] == "close"
