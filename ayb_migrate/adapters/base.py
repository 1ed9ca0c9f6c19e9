"""Base source adapter interface."""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

import psycopg

from ..exceptions import ConfigurationError, MigrationCancelled, MigrationError, MigrationToolError
from ..loaders.storage import LocalStorageWriter
from ..models.migration import MigrationOptions, Phase, ScopeSkips, SourceType
from ..models.report import AnalysisReport, MigrationStats, ValidationSummary
from ..services.progress import NopReporter, ProgressReporter

logger = logging.getLogger(__name__)


@dataclass
class FileCopy:
    """One file to place in AYB storage."""
    label: str  # "<source bucket>/<path>" for error messages
    source_path: str
    bucket: str  # normalized destination bucket
    relative_path: str


class SourceAdapter(ABC):
    """
    Base class for all source adapters.

    An adapter is constructed from validated options, then driven through
    analyze() -> migrate() -> close(). Construction performs option
    validation before any I/O and raises ConfigurationError on problems.
    """

    source_type: SourceType = SourceType.UNKNOWN

    def __init__(self, options: MigrationOptions):
        """
        Initialize the adapter.

        Args:
            options: Adapter-specific options

        Raises:
            ConfigurationError: if validate_options() reports any problem
        """
        self.options = options
        errors = self.validate_options()
        if errors:
            raise ConfigurationError("; ".join(errors))

        self.progress: ProgressReporter = options.progress or NopReporter()
        self.stats = MigrationStats()
        self._closed = False

    def validate_options(self) -> List[str]:
        """
        Validate the options.

        Returns:
            List of validation error messages
        """
        errors = []
        if not self.options.database_url:
            errors.append("database URL is required")
        return errors

    @abstractmethod
    def analyze(self) -> AnalysisReport:
        """Inspect the source without writing anything."""

    @abstractmethod
    def migrate(self) -> MigrationStats:
        """Copy the source into the target; honors dry_run."""

    @abstractmethod
    def build_validation_summary(self, report: AnalysisReport, stats: MigrationStats) -> ValidationSummary:
        """Reconcile a normalized report against migration stats."""

    def scope_skips(self) -> ScopeSkips:
        return self.options.scope_skips()

    def close(self) -> None:
        """Release connections and handles. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        for name, resource in self._resources():
            if resource is None:
                continue
            try:
                resource.close()
            except (psycopg.Error, OSError) as e:
                logger.warning(f"Failed to close {name}: {e}")

    def _resources(self) -> List[Tuple[str, object]]:
        """(name, object with close()) pairs released by close()."""
        return []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    # Helpers for subclasses

    def _check_cancelled(self, step: Optional[str] = None) -> None:
        event = self.options.cancel_event
        if event is not None and event.is_set():
            raise MigrationCancelled(step)

    def add_warning(self, message: str) -> None:
        """Report a non-fatal problem through the progress sink."""
        logger.warning(f"Migration warning: {message}")
        self.progress.warn(message)

    def add_error(self, message: str) -> None:
        """Record a per-item failure in the stats."""
        logger.error(f"Migration error: {message}")
        self.stats.add_error(message)

    def _start_phase(self, name: str, index: int, total: int, total_items: int = 0) -> Tuple[Phase, float]:
        phase = Phase(name=name, index=index, total=total)
        logger.info(f"=== PHASE {index}/{total}: {name.upper()} ===")
        self.progress.start_phase(phase, total_items)
        return phase, time.monotonic()

    def _complete_phase(self, phase: Phase, total_items: int, started: float) -> None:
        self.progress.complete_phase(phase, total_items, time.monotonic() - started)

    def _run_step(self, step: str, func, *args) -> None:
        """
        Run one migration step, attributing failures to it.

        Driver and filesystem errors become MigrationError(step=...);
        cancellation and already-attributed errors pass through.
        """
        try:
            func(*args)
        except MigrationError as e:
            if e.step is not None:
                raise
            raise MigrationError(str(e), step=step) from e
        except MigrationToolError:
            raise
        except (psycopg.Error, OSError) as e:
            raise MigrationError(str(e), step=step) from e

    def _finish(self) -> MigrationStats:
        if self.options.dry_run:
            logger.info("[DRY RUN] Rolled back, no changes made")
            return self.stats.without_writes()
        return self.stats

    def _copy_files(self, phase: Phase, files: Iterable[FileCopy], total: int) -> None:
        """
        Copy files into AYB storage, recording per-file failures as errors.

        Paths that would escape their bucket are refused.
        """
        writer = LocalStorageWriter(self.options.storage_path)
        writer.ensure_root()

        processed = 0
        for item in files:
            self._check_cancelled("storage migration")
            try:
                size = writer.copy(item.source_path, item.bucket, item.relative_path)
            except ValueError:
                self.add_error(f"skipping {item.label}: path traversal detected")
            except OSError as e:
                self.add_error(f"copying {item.label}: {e}")
            else:
                self.stats.storage_files += 1
                self.stats.storage_bytes += size
            processed += 1
            self.progress.progress(phase, processed, total)
