"""DDL generation for migrated tables and views."""

from typing import Iterable

from ..models.source import PBCollection, PBField, TableInfo, ViewInfo

# information_schema type names -> DDL type names
PG_TYPE_NAMES = {
    "character varying": "varchar",
    "character": "char",
    "timestamp without time zone": "timestamp",
    "timestamp with time zone": "timestamptz",
    "time without time zone": "time",
    "time with time zone": "timetz",
    "double precision": "float8",
    "boolean": "bool",
    "ARRAY": "jsonb",  # arrays land as jsonb in the target
    "USER-DEFINED": "text",  # enums, PostGIS geometry, etc.
}

PB_TEXT_TYPES = ("text", "email", "url", "editor")
PB_MULTI_TYPES = ("select", "file", "relation")


def quote_ident(name: str) -> str:
    """Double-quote a PostgreSQL identifier."""
    return '"' + name.replace('"', '""') + '"'


def quote_literal(value: str) -> str:
    """Single-quote a SQL string literal."""
    return "'" + value.replace("'", "''") + "'"


def pg_type_name(info_schema_type: str) -> str:
    """Map an information_schema data type to the name used in DDL."""
    return PG_TYPE_NAMES.get(info_schema_type, info_schema_type)


def create_table_sql(table: TableInfo) -> str:
    """Generate CREATE TABLE IF NOT EXISTS for an introspected Supabase table."""
    lines = []
    for col in table.columns:
        line = f"  {quote_ident(col.name)} {pg_type_name(col.data_type)}"
        if not col.is_nullable:
            line += " NOT NULL"
        if col.default_value:
            line += f" DEFAULT {col.default_value}"
        lines.append(line)

    if table.primary_key:
        lines.append(f"  PRIMARY KEY ({quote_ident(table.primary_key)})")

    for fk in table.foreign_keys:
        lines.append(
            f"  CONSTRAINT {quote_ident(fk.constraint_name)} FOREIGN KEY ({quote_ident(fk.column_name)}) "
            f"REFERENCES {quote_ident(fk.ref_table)}({quote_ident(fk.ref_column)})"
        )

    body = ",\n".join(lines)
    return f"CREATE TABLE IF NOT EXISTS {quote_ident(table.name)} (\n{body}\n);"


def create_view_sql(view: ViewInfo) -> str:
    """Generate CREATE OR REPLACE VIEW from a pg_views definition."""
    return f"CREATE OR REPLACE VIEW {quote_ident(view.name)} AS {view.definition}"


def sequence_reset_sql(table: TableInfo) -> str:
    """
    Build the setval() statement for a serial primary key.

    Returns an empty string when the table has no nextval()-backed key.
    """
    if not table.primary_key:
        return ""
    serial = any(
        c.name == table.primary_key and "nextval" in c.default_value
        for c in table.columns
    )
    if not serial:
        return ""
    return (
        f"SELECT setval(pg_get_serial_sequence({quote_literal(table.name)}, "
        f"{quote_literal(table.primary_key)}), COALESCE(MAX({quote_ident(table.primary_key)}), 1)) "
        f"FROM {quote_ident(table.name)}"
    )


# PocketBase

def field_type_to_pg_type(pb_field: PBField) -> str:
    """Map a PocketBase field type to a PostgreSQL column type."""
    if pb_field.type in PB_TEXT_TYPES:
        return "TEXT"
    if pb_field.type == "number":
        return "DOUBLE PRECISION"
    if pb_field.type == "bool":
        return "BOOLEAN"
    if pb_field.type == "date":
        return "TIMESTAMP WITH TIME ZONE"
    if pb_field.type == "json":
        return "JSONB"
    if pb_field.type in PB_MULTI_TYPES:
        return "TEXT[]" if pb_field.max_selections > 1 else "TEXT"
    return "TEXT"


def is_array_field(pb_field: PBField) -> bool:
    return field_type_to_pg_type(pb_field) == "TEXT[]"


def custom_fields(collection: PBCollection) -> Iterable[PBField]:
    """Yield the non-system fields of a collection, in schema order."""
    return (f for f in collection.schema if not f.system)


def build_create_table_sql(collection: PBCollection) -> str:
    """Generate CREATE TABLE for a PocketBase base collection."""
    lines = [
        "  id TEXT PRIMARY KEY",
        "  created TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()",
        "  updated TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()",
    ]
    for pb_field in custom_fields(collection):
        line = f"  {quote_ident(pb_field.name)} {field_type_to_pg_type(pb_field)}"
        if pb_field.required:
            line += " NOT NULL"
        if pb_field.unique:
            line += " UNIQUE"
        lines.append(line)

    body = ",\n".join(lines)
    return f"CREATE TABLE {quote_ident(collection.name)} (\n{body}\n);"


def build_create_view_sql(collection: PBCollection) -> str:
    """Generate CREATE VIEW from a view collection's query."""
    return f"CREATE VIEW {quote_ident(collection.name)} AS {collection.view_query};"
