"""Shared services: progress, detection, identity mapping, DDL and policy generation."""

from .detect import detect_source, redact_url
from .progress import CLIReporter, NopReporter, ProgressReporter, format_duration
from .identity import firebase_id_to_uuid, pocketbase_id_to_uuid
from .scrypt import verify_firebase_scrypt, is_foreign_hash
from .validator import build_supabase_summary, build_firebase_summary, build_pocketbase_summary

__all__ = [
    "detect_source",
    "redact_url",
    "CLIReporter",
    "NopReporter",
    "ProgressReporter",
    "format_duration",
    "firebase_id_to_uuid",
    "pocketbase_id_to_uuid",
    "verify_firebase_scrypt",
    "is_foreign_hash",
    "build_supabase_summary",
    "build_firebase_summary",
    "build_pocketbase_summary",
]
