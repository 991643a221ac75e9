from typing import Dict, List

from dal.database import QueryConnection
from dal.schema_introspector import (
    ColumnRecord,
    ForeignKeyRecord,
    PrimaryKeyRecord,
    SchemaIntrospector,
    TableRecord,
    base_type_name,
    parse_type_arguments,
)

SQLITE_SCHEMA = "main"

_USER_OBJECTS = "m.type IN ('table', 'view') AND m.name NOT LIKE 'sqlite_%'"

# pragma_table_xinfo.hidden: 1 = hidden virtual-table column, 2/3 = generated column
_HIDDEN_VIRTUAL = 1
_GENERATED = (2, 3)


class SqliteSchemaIntrospector(SchemaIntrospector):
    """SQLite implementation using sqlite_master and the table-valued pragmas."""

    async def fetch_tables(self, conn: QueryConnection) -> List[TableRecord]:
        rows = await conn.fetch(
            f"SELECT m.name, m.type FROM sqlite_master AS m WHERE {_USER_OBJECTS} ORDER BY m.name"
        )
        return [
            TableRecord(SQLITE_SCHEMA, row["name"], is_view=row["type"] == "view") for row in rows
        ]

    async def fetch_columns(self, conn: QueryConnection) -> List[ColumnRecord]:
        rows = await conn.fetch(
            f"""
            SELECT m.name AS table_name, m.type AS table_type, m.sql AS table_sql,
                   c.cid, c.name AS column_name, c.type AS declared_type,
                   c."notnull" AS not_null, c.pk, c.hidden
            FROM sqlite_master AS m, pragma_table_xinfo(m.name) AS c
            WHERE {_USER_OBJECTS}
            ORDER BY m.name, c.cid
            """
        )
        pk_counts: Dict[str, int] = {}
        for row in rows:
            if row["pk"]:
                pk_counts[row["table_name"]] = pk_counts.get(row["table_name"], 0) + 1

        records = []
        for row in rows:
            if row["hidden"] == _HIDDEN_VIRTUAL:
                continue
            declared = row["declared_type"] or ""
            first_arg, second_arg = parse_type_arguments(declared)
            base = base_type_name(declared)
            is_numeric = base in {"decimal", "numeric"}
            records.append(
                ColumnRecord(
                    schema_name=SQLITE_SCHEMA,
                    table_name=row["table_name"],
                    name=row["column_name"],
                    ordinal_position=row["cid"] + 1,
                    data_type=declared,
                    max_length=None if is_numeric else first_arg,
                    numeric_precision=first_arg if is_numeric else None,
                    numeric_scale=second_arg if is_numeric else None,
                    is_nullable=not row["not_null"] and not row["pk"],
                    is_identity=_is_rowid_alias(row, pk_counts),
                    is_computed=row["hidden"] in _GENERATED,
                )
            )
        return records

    async def fetch_primary_keys(self, conn: QueryConnection) -> List[PrimaryKeyRecord]:
        rows = await conn.fetch(
            """
            SELECT m.name AS table_name, c.name AS column_name, c.pk
            FROM sqlite_master AS m, pragma_table_info(m.name) AS c
            WHERE m.type = 'table' AND m.name NOT LIKE 'sqlite_%' AND c.pk > 0
            ORDER BY m.name, c.pk
            """
        )
        return [
            PrimaryKeyRecord(
                schema_name=SQLITE_SCHEMA,
                table_name=row["table_name"],
                column_name=row["column_name"],
                constraint_name=f"pk_{row['table_name']}",
                ordinal_position=row["pk"],
            )
            for row in rows
        ]

    async def fetch_foreign_keys(self, conn: QueryConnection) -> List[ForeignKeyRecord]:
        rows = await conn.fetch(
            """
            SELECT m.name AS table_name, f.id, f.seq, f."table" AS referenced_table,
                   f."from" AS column_name, f."to" AS referenced_column
            FROM sqlite_master AS m, pragma_foreign_key_list(m.name) AS f
            WHERE m.type = 'table' AND m.name NOT LIKE 'sqlite_%'
            ORDER BY m.name, f.id, f.seq
            """
        )
        return [
            ForeignKeyRecord(
                constraint_name=f"fk_{row['table_name']}_{row['id']}",
                schema_name=SQLITE_SCHEMA,
                table_name=row["table_name"],
                column_name=row["column_name"],
                referenced_schema=SQLITE_SCHEMA,
                referenced_table=row["referenced_table"],
                referenced_column=row["referenced_column"],
            )
            for row in rows
        ]


def _is_rowid_alias(row, pk_counts: Dict[str, int]) -> bool:
    """Return True for a lone INTEGER PRIMARY KEY on a rowid table."""
    if row["table_type"] != "table" or not row["pk"]:
        return False
    if pk_counts.get(row["table_name"], 0) != 1:
        return False
    if (row["declared_type"] or "").strip().upper() != "INTEGER":
        return False
    return "WITHOUT ROWID" not in (row["table_sql"] or "").upper()
