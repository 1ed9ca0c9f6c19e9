"""Error classes raised by the migration engine."""

from typing import Optional


class MigrationToolError(Exception):
    """Base class for all migration engine errors."""


class ConfigurationError(MigrationToolError):
    """Invalid or missing options, detected before any I/O."""


class AnalysisError(MigrationToolError):
    """The source could not be analyzed (unreachable, missing or corrupt export)."""


class MigrationError(MigrationToolError):
    """A write step failed partway through a migration."""

    def __init__(self, message: str, step: Optional[str] = None):
        self.step = step
        if step:
            message = f"{step}: {message}"
        super().__init__(message)


class MigrationCancelled(MigrationToolError):
    """The caller's cancellation event was set while work was in flight."""

    def __init__(self, step: Optional[str] = None):
        self.step = step
        message = "migration cancelled"
        if step:
            message = f"{message} during {step}"
        super().__init__(message)
