"""Deterministic identifier mapping between source platforms and AYB."""

import re
import uuid

# Fixed namespace for Firebase localIds that are not already UUIDs.
FIREBASE_NAMESPACE = uuid.UUID("6ba7b810-9dad-11d1-80b4-00c04fd430c8")

UUID_PATTERN = re.compile(
    r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$"
)


def is_uuid(value: str) -> bool:
    """Check whether a string is in canonical 8-4-4-4-12 UUID form."""
    return bool(UUID_PATTERN.match(value or ""))


def firebase_id_to_uuid(local_id: str) -> str:
    """
    Map a Firebase localId to an _ayb_users id.

    UUID-shaped ids are kept byte-for-byte; anything else becomes a UUIDv5,
    so the same Firebase user always lands on the same AYB id.
    """
    if is_uuid(local_id):
        return local_id
    return str(uuid.uuid5(FIREBASE_NAMESPACE, local_id))


def pocketbase_id_to_uuid(collection: str, record_id: str) -> str:
    """Map a PocketBase auth record (15-char id) to a stable _ayb_users id."""
    if is_uuid(record_id):
        return record_id
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"pocketbase:{collection}:{record_id}"))
