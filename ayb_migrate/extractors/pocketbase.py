"""Read-only access to a PocketBase pb_data directory."""

import json
import logging
import os
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from dateutil import parser as date_parser

from ..exceptions import AnalysisError, ConfigurationError
from ..models.source import PBCollection, PBField, PBRecord
from ..services.typemap import is_array_field, quote_ident

logger = logging.getLogger(__name__)

BATCH_SIZE = 1000

STANDARD_AUTH_FIELDS = (
    "email",
    "passwordHash",
    "password",
    "verified",
    "emailVisibility",
    "tokenKey",
    "lastResetSentAt",
    "lastVerificationSentAt",
)


def is_standard_auth_field(name: str) -> bool:
    lowered = name.lower()
    return any(lowered == f.lower() for f in STANDARD_AUTH_FIELDS)


def custom_auth_fields(schema: List[PBField]) -> List[PBField]:
    """Auth collection fields that are neither system nor built-in auth fields."""
    return [f for f in schema if not f.system and not is_standard_auth_field(f.name)]


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse a PocketBase timestamp ("2024-01-02 03:04:05.678Z"); None when blank or invalid."""
    if isinstance(value, datetime):
        return value
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = date_parser.parse(value)
    except (ValueError, OverflowError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def coerce_to_bool(value: Any) -> Any:
    """SQLite stores booleans as 0/1 integers."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    return value


def coerce_field_value(pb_field: PBField, value: Any) -> Any:
    """
    Convert a raw SQLite value into the Python value for the target column.

    JSON fields come back decoded; callers wrap them for JSONB.
    """
    if value is None:
        return None

    if pb_field.type == "bool":
        return coerce_to_bool(value)

    if pb_field.type == "date":
        return parse_timestamp(value)

    if pb_field.type == "json":
        if isinstance(value, (bytes, str)):
            if not value:
                return None
            try:
                return json.loads(value)
            except ValueError:
                return value
        return value

    if is_array_field(pb_field):
        if isinstance(value, str):
            if not value:
                return []
            try:
                decoded = json.loads(value)
            except ValueError:
                return [value]
            if isinstance(decoded, list):
                return [str(v) for v in decoded]
            return [str(decoded)]
        if isinstance(value, list):
            return value

    return value


class PocketBaseReader:
    """
    Reads collections and records from <pb_data>/data.db.

    The database is opened read-only; the source is never written.
    """

    def __init__(self, source_path: str):
        """
        Open the PocketBase data directory.

        Args:
            source_path: Path to a pb_data directory containing data.db

        Raises:
            ConfigurationError: if the directory or data.db is missing
        """
        if not os.path.exists(source_path):
            raise ConfigurationError(f"source path does not exist: {source_path}")

        self.source_path = source_path
        self.data_path = Path(source_path) / "data.db"
        if not self.data_path.is_file():
            raise ConfigurationError(f"data.db not found in source path: {source_path}")

        try:
            self._conn: Optional[sqlite3.Connection] = sqlite3.connect(
                self.data_path.resolve().as_uri() + "?mode=ro", uri=True
            )
        except sqlite3.Error as e:
            raise ConfigurationError(f"failed to open database: {e}") from e
        self._conn.row_factory = sqlite3.Row

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise AnalysisError("PocketBase reader is closed")
        return self._conn

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def database_size(self) -> int:
        return self.data_path.stat().st_size

    def _schema_column(self) -> str:
        """Older PocketBase stores fields in "schema", newer in "fields"."""
        try:
            rows = self.conn.execute("PRAGMA table_info('_collections')").fetchall()
        except sqlite3.Error as e:
            raise AnalysisError(f"failed to inspect _collections table: {e}") from e

        names = {row["name"].lower() for row in rows}
        if "schema" in names:
            return "schema"
        if "fields" in names:
            return "fields"
        raise AnalysisError("_collections is missing both schema and fields columns")

    def read_collections(self) -> List[PBCollection]:
        """Read every collection definition in creation order."""
        schema_column = self._schema_column()
        query = (
            f"SELECT id, name, type, system, {schema_column} AS schema_json, indexes, "
            "listRule, viewRule, createRule, updateRule, deleteRule, options "
            "FROM _collections ORDER BY created"
        )
        try:
            rows = self.conn.execute(query).fetchall()
        except sqlite3.Error as e:
            raise AnalysisError(f"failed to query collections: {e}") from e

        collections = []
        for row in rows:
            name = row["name"]
            collection = PBCollection(
                id=row["id"],
                name=name,
                type=row["type"],
                system=bool(row["system"]),
                schema=[PBField.from_dict(f) for f in self._load_json(row["schema_json"], name, "schema") or []],
                indexes=self._load_json(row["indexes"], name, "indexes") or [],
                list_rule=row["listRule"],
                view_rule=row["viewRule"],
                create_rule=row["createRule"],
                update_rule=row["updateRule"],
                delete_rule=row["deleteRule"],
                options=self._load_json(row["options"], name, "options") or {},
            )
            if collection.type == "view":
                query_text = collection.options.get("query")
                if isinstance(query_text, str):
                    collection.view_query = query_text
            collections.append(collection)

        logger.debug(f"Read {len(collections)} collections from {self.data_path}")
        return collections

    @staticmethod
    def _load_json(raw: Optional[str], collection: str, label: str) -> Any:
        if raw is None or raw == "" or raw == "null":
            return None
        try:
            return json.loads(raw)
        except ValueError as e:
            raise AnalysisError(f"failed to parse {label} for {collection}: {e}") from e

    def count_records(self, table_name: str) -> int:
        try:
            row = self.conn.execute(f"SELECT COUNT(*) FROM {quote_ident(table_name)}").fetchone()
        except sqlite3.Error as e:
            raise AnalysisError(f"failed to count records in {table_name}: {e}") from e
        return int(row[0])

    def iter_records(self, table_name: str, batch_size: int = BATCH_SIZE) -> Iterator[List[PBRecord]]:
        """
        Stream a collection's rows in batches.

        Yields:
            Lists of PBRecord, at most batch_size long
        """
        try:
            cursor = self.conn.execute(f"SELECT * FROM {quote_ident(table_name)}")
        except sqlite3.Error as e:
            raise AnalysisError(f"failed to query table {table_name}: {e}") from e

        try:
            while True:
                rows = cursor.fetchmany(batch_size)
                if not rows:
                    break
                yield [self._to_record(row) for row in rows]
        finally:
            cursor.close()

    @staticmethod
    def _to_record(row: sqlite3.Row) -> PBRecord:
        data: Dict[str, Any] = {}
        record_id = ""
        for key in row.keys():
            value = row[key]
            if isinstance(value, bytes):
                value = value.decode("utf-8", errors="replace")
            if key == "id":
                record_id = "" if value is None else str(value)
            else:
                data[key] = value
        return PBRecord(id=record_id, data=data)

    @property
    def storage_root(self) -> Path:
        return Path(self.source_path) / "storage"

    def storage_dir(self, collection: str) -> Path:
        return self.storage_root / collection
