"""Parsers for Firebase offline exports.

Covers `firebase auth:export` JSON, Firestore collection exports (one JSON
array per collection), Realtime Database JSON dumps and Cloud Storage
directory exports.
"""

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from ..exceptions import AnalysisError
from ..models.source import (
    FirebaseHashConfig,
    FirebaseUser,
    FirestoreCollection,
    FirestoreDocument,
    ProviderInfo,
    RTDBNode,
    StorageFileInfo,
)

logger = logging.getLogger(__name__)

PROVIDER_PREFIXES = ("google", "github", "facebook", "twitter", "apple", "microsoft")
NON_OAUTH_PROVIDERS = ("password", "phone")


def _read_json(path: str, label: str) -> Any:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except OSError as e:
        raise AnalysisError(f"reading {label}: {e}") from e
    except json.JSONDecodeError as e:
        raise AnalysisError(f"parsing {label} JSON: {e}") from e


# Auth

def parse_auth_export(path: str) -> Tuple[List[FirebaseUser], Optional[FirebaseHashConfig]]:
    """
    Parse a `firebase auth:export --format=json` file.

    Returns:
        The users and the project's hash config (None when absent)
    """
    data = _read_json(path, "auth export")
    if not isinstance(data, dict):
        raise AnalysisError("parsing auth export JSON: expected an object with a users array")

    users = [FirebaseUser.from_dict(u) for u in data.get("users") or []]
    hash_config = None
    if isinstance(data.get("hash_config"), dict):
        hash_config = FirebaseHashConfig.from_dict(data["hash_config"])

    logger.debug(f"Parsed {len(users)} users from {path}")
    return users, hash_config


def is_email_user(user: FirebaseUser) -> bool:
    return user.email != ""


def is_password_user(user: FirebaseUser) -> bool:
    return user.password_hash != ""


def is_anonymous_user(user: FirebaseUser) -> bool:
    """No email, no linked providers and no password."""
    return not user.email and not user.provider_info and not user.password_hash


def is_phone_only_user(user: FirebaseUser) -> bool:
    if user.email:
        return False
    if not user.provider_info:
        return False
    return all(p.provider_id == "phone" for p in user.provider_info)


def skip_reason(user: FirebaseUser) -> str:
    """Why a user will not be imported, or "" when it will be."""
    if user.disabled:
        return "disabled"
    if is_anonymous_user(user) or is_phone_only_user(user):
        return "anonymous/phone-only"
    if not is_email_user(user):
        return "no email"
    return ""


def oauth_providers(user: FirebaseUser) -> List[ProviderInfo]:
    """Linked providers that become OAuth accounts (password and phone excluded)."""
    return [p for p in user.provider_info if p.provider_id not in NON_OAUTH_PROVIDERS]


def normalize_provider(provider_id: str) -> str:
    """Map a Firebase provider id such as "google.com" to an AYB provider name."""
    for prefix in PROVIDER_PREFIXES:
        if provider_id.startswith(prefix):
            return prefix
    if provider_id.endswith(".com"):
        return provider_id[:-len(".com")]
    return provider_id


def parse_epoch_ms(value: str) -> datetime:
    """Convert a millisecond epoch string; falls back to now() when unparsable."""
    try:
        millis = int(value)
    except (TypeError, ValueError):
        return datetime.now(timezone.utc)
    return datetime.fromtimestamp(millis / 1000, tz=timezone.utc)


# Firestore

def flatten_firestore_value(value: Any) -> Any:
    """Unwrap a Firestore typed value ({"stringValue": ...} etc.) into plain JSON."""
    if not isinstance(value, dict):
        return value

    for key in ("stringValue", "integerValue", "doubleValue", "booleanValue"):
        if key in value:
            return value[key]
    if "nullValue" in value:
        return None
    for key in ("timestampValue", "referenceValue", "geoPointValue"):
        if key in value:
            return value[key]

    if "arrayValue" in value:
        array = value["arrayValue"]
        if isinstance(array, dict) and isinstance(array.get("values"), list):
            return [flatten_firestore_value(v) for v in array["values"]]
        return []

    if "mapValue" in value:
        mapping = value["mapValue"]
        if isinstance(mapping, dict) and isinstance(mapping.get("fields"), dict):
            return flatten_firestore_fields(mapping["fields"])
        return {}

    return value


def flatten_firestore_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    return {k: flatten_firestore_value(v) for k, v in fields.items()}


def normalize_collection_name(name: str) -> str:
    """Subcollection paths use "/"; table names use "_"."""
    return name.replace("/", "_")


def parse_firestore_export(directory: str) -> List[FirestoreCollection]:
    """
    Parse every <collection>.json file in a Firestore export directory.

    Each file holds an array of {"__name__": "<path>/<docId>", "fields": {...}};
    the document id is the last path segment.
    """
    try:
        entries = sorted(os.listdir(directory))
    except OSError as e:
        raise AnalysisError(f"reading export directory: {e}") from e

    collections = []
    for entry in entries:
        path = os.path.join(directory, entry)
        if os.path.isdir(path) or not entry.endswith(".json"):
            continue

        name = entry[:-len(".json")]
        data = _read_json(path, f"collection {name}")
        if not isinstance(data, list):
            raise AnalysisError(f"parsing collection {name}: expected a JSON array of documents")

        documents = []
        for item in data:
            if not isinstance(item, dict):
                raise AnalysisError(f"parsing collection {name}: document is not an object")
            doc_id = str(item.get("__name__") or "")
            if doc_id:
                doc_id = doc_id.split("/")[-1]
            documents.append(FirestoreDocument(id=doc_id, fields=item.get("fields") or {}))

        collections.append(FirestoreCollection(name=name, documents=documents))

    return collections


def create_collection_table_sql(table_name: str) -> str:
    return (
        f'CREATE TABLE IF NOT EXISTS "{table_name}" (\n'
        '  "id" text NOT NULL,\n'
        '  "data" jsonb NOT NULL,\n'
        '  "created_at" timestamptz NOT NULL DEFAULT now(),\n'
        '  "updated_at" timestamptz NOT NULL DEFAULT now(),\n'
        '  PRIMARY KEY ("id")\n'
        ");"
    )


def create_collection_index_sql(table_name: str) -> str:
    return f'CREATE INDEX IF NOT EXISTS "idx_{table_name}_data" ON "{table_name}" USING GIN ("data");'


# Realtime Database

def parse_rtdb_export(path: str) -> List[RTDBNode]:
    """
    Parse an RTDB JSON dump into top-level nodes, sorted by name.

    Object children become rows keyed by child key; a non-object value is
    kept as a single "_root" row.
    """
    data = _read_json(path, "RTDB export")
    if not isinstance(data, dict):
        raise AnalysisError("parsing RTDB export: expected a JSON object at the root")

    nodes = []
    for name in sorted(data):
        value = data[name]
        if isinstance(value, dict):
            children = dict(value)
        else:
            children = {"_root": value}
        nodes.append(RTDBNode(name=name, children=children))
    return nodes


def normalize_rtdb_table_name(name: str) -> str:
    """
    Convert an RTDB node name into a safe table name.

    Lowercase [a-z0-9_] only; "-", "/", " " and "." become "_"; a leading
    digit gets a "t_" prefix; capped at 63 characters.
    """
    chars = []
    for c in name.lower():
        if ("a" <= c <= "z") or ("0" <= c <= "9") or c == "_":
            chars.append(c)
        elif c in "-/ .":
            chars.append("_")
    result = "".join(chars)
    if result and result[0].isdigit():
        result = "t_" + result
    if not result:
        result = "rtdb_data"
    return result[:63]


def create_rtdb_table_sql(table_name: str) -> str:
    return f'CREATE TABLE IF NOT EXISTS "{table_name}" ("id" text PRIMARY KEY, "data" jsonb NOT NULL)'


def create_rtdb_index_sql(table_name: str) -> str:
    index_name = f"idx_{table_name}_data"[:63]
    return f'CREATE INDEX IF NOT EXISTS "{index_name}" ON "{table_name}" USING GIN ("data")'


# Cloud Storage

def scan_storage_export(export_path: str) -> Dict[str, List[StorageFileInfo]]:
    """
    Walk <export>/<bucket>/<path...> and group files by bucket.

    Top-level directories are buckets; top-level files are ignored.
    Unreadable entries are skipped.
    """
    root = Path(export_path)
    try:
        entries = sorted(root.iterdir())
    except OSError as e:
        raise AnalysisError(f"reading storage export directory: {e}") from e

    buckets: Dict[str, List[StorageFileInfo]] = {}
    for bucket_dir in entries:
        if not bucket_dir.is_dir():
            continue

        files = []
        for dirpath, dirnames, filenames in os.walk(bucket_dir):
            dirnames.sort()
            for filename in sorted(filenames):
                full_path = Path(dirpath) / filename
                try:
                    size = full_path.stat().st_size
                except OSError:
                    logger.debug(f"Skipping unreadable storage file {full_path}")
                    continue
                files.append(StorageFileInfo(
                    bucket=bucket_dir.name,
                    path=full_path.relative_to(bucket_dir).as_posix(),
                    full_path=str(full_path),
                    size=size,
                ))
        if files:
            buckets[bucket_dir.name] = files

    return buckets
