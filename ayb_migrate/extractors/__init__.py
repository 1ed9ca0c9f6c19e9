"""Source readers for each supported platform."""

from .supabase import SupabaseSource
from .pocketbase import PocketBaseReader
from .firebase import parse_auth_export, parse_firestore_export, parse_rtdb_export, scan_storage_export

__all__ = [
    "SupabaseSource",
    "PocketBaseReader",
    "parse_auth_export",
    "parse_firestore_export",
    "parse_rtdb_export",
    "scan_storage_export",
]
