"""Source-type detection for the single-locator entry point."""

from urllib.parse import urlsplit, urlunsplit

from ..models.migration import SourceType


def detect_source(locator: str) -> SourceType:
    """
    Determine the migration source type from a --from value.

    Detection rules, first match wins:
    - firebase:// URL or path to a .json export -> Firebase
    - postgres:// URL containing "supabase" -> Supabase
    - any other postgres:// or postgresql:// URL -> generic Postgres
    - anything without a scheme -> PocketBase pb_data path
    - everything else -> unknown

    The filesystem is not consulted; callers validate paths themselves.
    """
    if locator.startswith("firebase://"):
        return SourceType.FIREBASE

    if locator.endswith(".json"):
        return SourceType.FIREBASE

    if locator.startswith("postgres://") or locator.startswith("postgresql://"):
        if "supabase" in locator:
            return SourceType.SUPABASE
        return SourceType.POSTGRES

    if locator and "://" not in locator:
        return SourceType.POCKETBASE

    return SourceType.UNKNOWN


def redact_url(raw: str) -> str:
    """Strip credentials from a connection URL for safe display."""
    try:
        parts = urlsplit(raw)
    except ValueError:
        return raw
    if not parts.scheme or "@" not in parts.netloc:
        return raw
    host = parts.netloc.rsplit("@", 1)[1]
    return urlunsplit((parts.scheme, host, parts.path, parts.query, parts.fragment))
