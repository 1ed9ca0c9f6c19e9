"""Source adapters driven by the migration orchestrator."""

from .base import SourceAdapter
from .supabase import SupabaseAdapter
from .firebase import FirebaseAdapter
from .pocketbase import PocketBaseAdapter

__all__ = [
    "SourceAdapter",
    "SupabaseAdapter",
    "FirebaseAdapter",
    "PocketBaseAdapter",
]
