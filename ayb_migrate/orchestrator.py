"""Migration orchestrator - runs the preflight, confirm, migrate, validate workflow."""

import json
import logging
import sys
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, TextIO

from .adapters.base import SourceAdapter
from .exceptions import AnalysisError, ConfigurationError, MigrationError, MigrationToolError
from .models.migration import MigrationOptions, ScopeSkips
from .models.report import AnalysisReport, MigrationStats, ValidationSummary, normalize_report

logger = logging.getLogger(__name__)

AFFIRMATIVE_ANSWERS = ("", "y", "yes")


class RunStatus(str, Enum):
    """How an orchestrated run ended."""
    COMPLETED = "completed"
    DRY_RUN = "dry_run"
    CANCELLED = "cancelled"


@dataclass
class OrchestratorResult:
    """Outcome of one orchestrated run."""
    status: RunStatus
    report: Optional[AnalysisReport] = None
    stats: Optional[MigrationStats] = None
    summary: Optional[ValidationSummary] = None


class MigrationOrchestrator:
    """
    Drives one source adapter through the preflight workflow.

    Handles:
    - Adapter construction from validated options
    - Analysis and the pre-flight report
    - The confirmation prompt (default yes)
    - Migration, then validation against the normalized report
    - Closing the adapter whatever happens
    """

    def __init__(
        self,
        adapter_factory: Callable[[MigrationOptions], SourceAdapter],
        options: MigrationOptions,
        summary_builder: Optional[Callable[[AnalysisReport, MigrationStats], ValidationSummary]] = None,
        skips: Optional[ScopeSkips] = None,
        json_output: bool = False,
        assume_yes: bool = False,
        input_stream: Optional[TextIO] = None,
        stdout: Optional[TextIO] = None,
        stderr: Optional[TextIO] = None
    ):
        """
        Initialize the orchestrator.

        Args:
            adapter_factory: Builds the adapter; raises on invalid options
            options: Options passed to the factory
            summary_builder: Overrides the adapter's validation summary
            skips: Scopes to zero before validation (default: from options)
            json_output: Print only the stats JSON, never prompt
            assume_yes: Skip the confirmation prompt
            input_stream: Where the confirmation answer is read from
            stdout: Machine-readable output
            stderr: Human-readable report, prompt and summary
        """
        self.adapter_factory = adapter_factory
        self.options = options
        self.summary_builder = summary_builder
        self.skips = skips if skips is not None else options.scope_skips()
        self.json_output = json_output
        self.assume_yes = assume_yes
        self.input_stream = input_stream or sys.stdin
        self.stdout = stdout or sys.stdout
        self.stderr = stderr or sys.stderr

    def run(self) -> OrchestratorResult:
        """
        Run the complete workflow.

        Returns:
            OrchestratorResult describing how the run ended

        Raises:
            MigrationToolError: wrapped with the phase that failed
        """
        try:
            adapter = self.adapter_factory(self.options)
        except ConfigurationError as e:
            raise ConfigurationError(f"failed to create migrator: {e}") from e
        except MigrationToolError as e:
            raise AnalysisError(f"failed to create migrator: {e}") from e

        try:
            return self._run_with(adapter)
        finally:
            adapter.close()

    def _run_with(self, adapter: SourceAdapter) -> OrchestratorResult:
        try:
            report = adapter.analyze()
        except MigrationToolError as e:
            raise AnalysisError(f"analysis failed: {e}") from e

        if not self.json_output:
            report.print_report(self.stderr)
            if not self.assume_yes and not self.options.dry_run:
                if not self._confirm():
                    self.stderr.write("  Migration cancelled.\n")
                    return OrchestratorResult(status=RunStatus.CANCELLED, report=report)
            self.stderr.write("\n")

        try:
            stats = adapter.migrate()
        except MigrationToolError as e:
            raise MigrationError(f"migration failed: {e}") from e

        summary = None
        if not self.json_output and not self.options.dry_run:
            summary = self._build_summary(adapter, report, stats)
            summary.print_summary(self.stderr)

        if self.json_output:
            self.stdout.write(json.dumps(stats.to_dict()) + "\n")

        status = RunStatus.DRY_RUN if self.options.dry_run else RunStatus.COMPLETED
        logger.info(f"Migration run finished: {status.value}")
        return OrchestratorResult(status=status, report=report, stats=stats, summary=summary)

    def _confirm(self) -> bool:
        self.stderr.write("  Proceed? [Y/n] ")
        self.stderr.flush()
        answer = self.input_stream.readline()
        return answer.strip().lower() in AFFIRMATIVE_ANSWERS

    def _build_summary(self, adapter: SourceAdapter, report: AnalysisReport, stats: MigrationStats) -> ValidationSummary:
        normalized = normalize_report(report, self.skips)
        if self.summary_builder is not None:
            return self.summary_builder(normalized, stats)
        return adapter.build_validation_summary(normalized, stats)
