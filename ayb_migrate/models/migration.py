"""Migration configuration models."""

import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict

from .source import FirebaseHashConfig


class SourceCategory(str, Enum):
    """Broad classification of a source locator."""
    RELATIONAL = "relational"
    EMBEDDED_FILE = "embedded-file"
    OFFLINE_EXPORT = "offline-export"
    UNKNOWN = "unknown"


class SourceType(str, Enum):
    """Platforms a migration can start from."""
    POCKETBASE = "PocketBase"  # Local pb_data directory
    SUPABASE = "Supabase"  # Supabase Postgres connection
    FIREBASE = "Firebase"  # Firebase export files
    POSTGRES = "PostgreSQL"  # Generic Postgres connection
    UNKNOWN = "unknown"

    @property
    def category(self) -> SourceCategory:
        """Get the broad category for this source type."""
        if self in (SourceType.SUPABASE, SourceType.POSTGRES):
            return SourceCategory.RELATIONAL
        if self == SourceType.POCKETBASE:
            return SourceCategory.EMBEDDED_FILE
        if self == SourceType.FIREBASE:
            return SourceCategory.OFFLINE_EXPORT
        return SourceCategory.UNKNOWN


@dataclass(frozen=True)
class Phase:
    """A named migration phase, e.g. "Schema" as phase 1 of 5."""
    name: str
    index: int  # 1-based
    total: int


@dataclass(frozen=True)
class ScopeSkips:
    """Which artifact categories were intentionally left out of a run."""
    data: bool = False
    oauth: bool = False
    rls: bool = False
    storage: bool = False


class MigrationOptions(BaseModel):
    """Options shared by every source adapter."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    database_url: str = ""  # AYB PostgreSQL connection URL (target)
    dry_run: bool = False
    force: bool = False  # allow migration when _ayb_users is not empty
    verbose: bool = False
    storage_path: str = ""  # destination for AYB storage files (default: ./ayb_storage)
    progress: Optional[Any] = None  # ProgressReporter; NopReporter when unset
    cancel_event: Optional[threading.Event] = None

    def scope_skips(self) -> ScopeSkips:
        """Get the skip flags used when normalizing the analysis report."""
        return ScopeSkips()


class SupabaseOptions(MigrationOptions):
    """Options for migrating from a Supabase PostgreSQL database."""

    source_url: str = ""
    skip_data: bool = False
    skip_oauth: bool = False
    skip_rls: bool = False
    skip_storage: bool = False
    include_anonymous: bool = False
    storage_export_path: str = ""  # local copy of the Supabase storage buckets

    def scope_skips(self) -> ScopeSkips:
        return ScopeSkips(
            data=self.skip_data,
            oauth=self.skip_oauth,
            rls=self.skip_rls,
            storage=self.skip_storage or not self.storage_export_path,
        )


class FirebaseOptions(MigrationOptions):
    """Options for migrating from Firebase export files."""

    auth_export_path: str = ""
    firestore_export_path: str = ""
    rtdb_export_path: str = ""
    storage_export_path: str = ""
    hash_config: Optional[FirebaseHashConfig] = None  # overrides the export's hash_config

    def scope_skips(self) -> ScopeSkips:
        return ScopeSkips(storage=not self.storage_export_path)


class PocketBaseOptions(MigrationOptions):
    """Options for migrating from a PocketBase pb_data directory."""

    source_path: str = ""
    skip_files: bool = False

    def scope_skips(self) -> ScopeSkips:
        return ScopeSkips(storage=self.skip_files)
