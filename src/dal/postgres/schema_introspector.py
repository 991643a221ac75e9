from typing import List

from dal.database import QueryConnection
from dal.schema_introspector import (
    ColumnRecord,
    ForeignKeyRecord,
    PrimaryKeyRecord,
    SchemaIntrospector,
    TableRecord,
)

_SYSTEM_SCHEMAS = "('pg_catalog', 'information_schema')"


class PostgresSchemaIntrospector(SchemaIntrospector):
    """Postgres implementation of SchemaIntrospector using information_schema."""

    async def fetch_tables(self, conn: QueryConnection) -> List[TableRecord]:
        rows = await conn.fetch(
            f"""
            SELECT table_schema, table_name, table_type
            FROM information_schema.tables
            WHERE table_schema NOT IN {_SYSTEM_SCHEMAS}
              AND table_schema NOT LIKE 'pg_toast%'
              AND table_type IN ('BASE TABLE', 'VIEW')
            ORDER BY table_schema, table_name
            """
        )
        return [
            TableRecord(row["table_schema"], row["table_name"], is_view=row["table_type"] == "VIEW")
            for row in rows
        ]

    async def fetch_columns(self, conn: QueryConnection) -> List[ColumnRecord]:
        rows = await conn.fetch(
            f"""
            SELECT table_schema, table_name, column_name, ordinal_position,
                   data_type, udt_name, domain_name,
                   character_maximum_length, numeric_precision, numeric_scale,
                   is_nullable, is_identity, is_generated, column_default
            FROM information_schema.columns
            WHERE table_schema NOT IN {_SYSTEM_SCHEMAS}
              AND table_schema NOT LIKE 'pg_toast%'
            ORDER BY table_schema, table_name, ordinal_position
            """
        )
        records = []
        for row in rows:
            data_type = row["data_type"]
            if data_type == "USER-DEFINED":
                data_type = row["udt_name"]
            default = (row["column_default"] or "").lower()
            records.append(
                ColumnRecord(
                    schema_name=row["table_schema"],
                    table_name=row["table_name"],
                    name=row["column_name"],
                    ordinal_position=int(row["ordinal_position"]),
                    data_type=data_type,
                    max_length=row["character_maximum_length"],
                    numeric_precision=row["numeric_precision"],
                    numeric_scale=row["numeric_scale"],
                    is_nullable=row["is_nullable"] == "YES",
                    is_identity=row["is_identity"] == "YES" or default.startswith("nextval("),
                    is_computed=row["is_generated"] == "ALWAYS",
                    type_aliases=tuple(a for a in (row["udt_name"], row["domain_name"]) if a),
                )
            )
        return records

    async def fetch_primary_keys(self, conn: QueryConnection) -> List[PrimaryKeyRecord]:
        rows = await conn.fetch(
            f"""
            SELECT tc.table_schema, tc.table_name, kcu.column_name,
                   tc.constraint_name, kcu.ordinal_position
            FROM information_schema.table_constraints AS tc
            JOIN information_schema.key_column_usage AS kcu
              ON kcu.constraint_schema = tc.constraint_schema
             AND kcu.constraint_name = tc.constraint_name
             AND kcu.table_name = tc.table_name
            WHERE tc.constraint_type = 'PRIMARY KEY'
              AND tc.table_schema NOT IN {_SYSTEM_SCHEMAS}
            ORDER BY tc.table_schema, tc.table_name, kcu.ordinal_position
            """
        )
        return [
            PrimaryKeyRecord(
                schema_name=row["table_schema"],
                table_name=row["table_name"],
                column_name=row["column_name"],
                constraint_name=row["constraint_name"],
                ordinal_position=int(row["ordinal_position"]),
            )
            for row in rows
        ]

    async def fetch_foreign_keys(self, conn: QueryConnection) -> List[ForeignKeyRecord]:
        rows = await conn.fetch(
            f"""
            SELECT kcu.constraint_name, kcu.table_schema, kcu.table_name, kcu.column_name,
                   ref.table_schema AS referenced_schema,
                   ref.table_name AS referenced_table,
                   ref.column_name AS referenced_column
            FROM information_schema.referential_constraints AS rc
            JOIN information_schema.key_column_usage AS kcu
              ON kcu.constraint_schema = rc.constraint_schema
             AND kcu.constraint_name = rc.constraint_name
            JOIN information_schema.key_column_usage AS ref
              ON ref.constraint_schema = rc.unique_constraint_schema
             AND ref.constraint_name = rc.unique_constraint_name
             AND ref.ordinal_position = kcu.position_in_unique_constraint
            WHERE kcu.table_schema NOT IN {_SYSTEM_SCHEMAS}
            ORDER BY kcu.table_schema, kcu.table_name, kcu.constraint_name, kcu.ordinal_position
            """
        )
        return [
            ForeignKeyRecord(
                constraint_name=row["constraint_name"],
                schema_name=row["table_schema"],
                table_name=row["table_name"],
                column_name=row["column_name"],
                referenced_schema=row["referenced_schema"],
                referenced_table=row["referenced_table"],
                referenced_column=row["referenced_column"],
            )
            for row in rows
        ]
