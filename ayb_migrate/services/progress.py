"""Progress reporting for long-running migration phases."""

import logging
import sys
import threading
from abc import ABC, abstractmethod
from typing import Optional, TextIO

from ..models.migration import Phase

logger = logging.getLogger(__name__)


def format_duration(seconds: float) -> str:
    """Format an elapsed time as "<n>ms" under a second, else "<n.n>s"."""
    if seconds < 1:
        return f"{int(seconds * 1000)}ms"
    return f"{seconds:.1f}s"


class ProgressReporter(ABC):
    """
    Receives progress updates from an adapter.

    Calls are synchronous and made from the migrating thread.
    """

    @abstractmethod
    def start_phase(self, phase: Phase, total_items: int) -> None:
        """Called when a new migration phase begins."""

    @abstractmethod
    def progress(self, phase: Phase, completed: int, total_items: int) -> None:
        """Called as items are processed within a phase."""

    @abstractmethod
    def complete_phase(self, phase: Phase, total_items: int, elapsed: float) -> None:
        """Called when a phase finishes; elapsed is in seconds."""

    @abstractmethod
    def warn(self, message: str) -> None:
        """Report a non-fatal warning."""


class CLIReporter(ProgressReporter):
    """Prints incremental progress lines to a terminal stream."""

    def __init__(self, stream: Optional[TextIO] = None):
        self.stream = stream or sys.stderr
        self._lock = threading.Lock()

    def start_phase(self, phase: Phase, total_items: int) -> None:
        with self._lock:
            self.stream.write(f"  [{phase.index}/{phase.total}] {phase.name:<16}")
            self.stream.flush()

    def progress(self, phase: Phase, completed: int, total_items: int) -> None:
        # Overwrite the current line in place
        if total_items <= 0:
            return
        with self._lock:
            self.stream.write(
                f"\r  [{phase.index}/{phase.total}] {phase.name:<16} {completed}/{total_items}"
            )
            self.stream.flush()

    def complete_phase(self, phase: Phase, total_items: int, elapsed: float) -> None:
        label = f"{total_items} items" if total_items else "skipped"
        with self._lock:
            self.stream.write(
                f"\r  [{phase.index}/{phase.total}] {phase.name:<16} {label:<20} done  "
                f"({format_duration(elapsed)})\n"
            )
            self.stream.flush()

    def warn(self, message: str) -> None:
        with self._lock:
            self.stream.write(f"  Warning: {message}\n")
            self.stream.flush()


class NopReporter(ProgressReporter):
    """Discards all progress updates (used in tests and --json mode)."""

    def start_phase(self, phase: Phase, total_items: int) -> None:
        pass

    def progress(self, phase: Phase, completed: int, total_items: int) -> None:
        pass

    def complete_phase(self, phase: Phase, total_items: int, elapsed: float) -> None:
        pass

    def warn(self, message: str) -> None:
        logger.debug(f"Suppressed warning: {message}")
