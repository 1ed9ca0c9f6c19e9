"""Writers for the AYB target database and file storage."""

from .postgres import PostgresTarget
from .storage import LocalStorageWriter

__all__ = [
    "PostgresTarget",
    "LocalStorageWriter",
]
