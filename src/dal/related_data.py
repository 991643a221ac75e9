"""Child-row and lookup reads around a parent table.

`RelatedChildDefinition.child_filter` is trusted configuration text and is
inserted into the child query verbatim; it must never carry end-user input.
"""

import logging
from typing import Any, Mapping, Optional

from common.errors import PreconditionError
from dal.database import QueryTargetDatabase
from dal.error_classification import to_data_access_error
from schema.catalog import ColumnMetadata, SchemaCatalog, TableMetadata
from schema.cells import RowSet, unwrap
from schema.overrides import LookupDefinition, RelatedChildDefinition

module_logger = logging.getLogger(__name__)


class RelatedDataReader:
    """Read child rows and lookup lists related to one parent table."""

    def __init__(
        self,
        database: QueryTargetDatabase,
        catalog: SchemaCatalog,
        table: TableMetadata,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.database = database
        self.catalog = catalog
        self.table = table
        self.dialect = database.dialect
        self._logger = logger or module_logger

    def _resolve_table(self, qualified_name: str, operation: str) -> TableMetadata:
        table = self.catalog.find(qualified_name, self.dialect.default_schema)
        if table is None:
            raise PreconditionError(
                f"Table '{qualified_name}' is not in the catalog.",
                operation=operation,
                table=qualified_name,
            )
        return table

    def _resolve_column(self, table: TableMetadata, name: str, operation: str) -> ColumnMetadata:
        column = table.column(name.strip('[]"'))
        if column is None:
            raise PreconditionError(
                f"Column '{name}' does not exist in {table.full_name}.",
                operation=operation,
                table=table.full_name,
            )
        return column

    def _single_key_column(self, table: TableMetadata, operation: str) -> ColumnMetadata:
        key_columns = table.primary_key_columns
        if len(key_columns) != 1:
            raise PreconditionError(
                f"{table.full_name} must have a single-column primary key "
                "when no column is configured.",
                operation=operation,
                table=table.full_name,
            )
        return key_columns[0]

    async def _fetch(self, sql: str, params: Mapping[str, Any], operation: str, table: str):
        try:
            async with self.database.get_connection() as conn:
                records, columns = await conn.fetch_with_columns(sql, params)
        except Exception as exc:
            raise to_data_access_error(
                self.database.provider, exc, operation=operation, table=table
            ) from exc
        return RowSet.from_records(records, columns)

    async def fetch_related_rows(
        self, relation: RelatedChildDefinition, parent_key_values: Mapping[str, Any]
    ) -> RowSet:
        """Return child rows whose FK column equals the parent's key value."""
        operation = "fetch_related_rows"
        if not parent_key_values:
            return RowSet()
        if relation.parent_key_column:
            parent_column = self._resolve_column(self.table, relation.parent_key_column, operation)
        else:
            parent_column = self._single_key_column(self.table, operation)

        parent_value = next(
            (v for k, v in parent_key_values.items() if k.lower() == parent_column.name.lower()),
            None,
        )
        if parent_value is None:
            self._logger.error(
                "Parent key values lack '%s' for relation '%s'.",
                parent_column.name,
                relation.name,
                extra={"event": "related_rows_missing_parent_key", "relation": relation.name},
            )
            return RowSet()

        child = self._resolve_table(relation.child_table, operation)
        fk_column = self._resolve_column(child, relation.child_fk_column, operation)
        fk_sql = self.dialect.quote_identifier(fk_column.name)
        sql = (
            f"SELECT * FROM {self.dialect.qualify(child.schema_name, child.table_name)} "
            f"WHERE {fk_sql} = @ParentKeyValue"
        )
        if relation.child_filter and relation.child_filter.strip():
            sql += f" AND ({relation.child_filter.strip()})"
        sql += f" ORDER BY {fk_sql}"
        return await self._fetch(
            sql, {"ParentKeyValue": unwrap(parent_value)}, operation, child.full_name
        )

    async def fetch_lookup_rows(self, lookup: LookupDefinition) -> RowSet:
        """Return distinct (display, value) pairs ordered by the display column."""
        operation = "fetch_lookup_rows"
        referenced = self._resolve_table(lookup.referenced_table, operation)
        display = self._resolve_column(referenced, lookup.display_column, operation)
        if lookup.value_column:
            value = self._resolve_column(referenced, lookup.value_column, operation)
        else:
            value = self._single_key_column(referenced, operation)
        display_sql = self.dialect.quote_identifier(display.name)
        value_sql = self.dialect.quote_identifier(value.name)
        sql = (
            f"SELECT DISTINCT {display_sql}, {value_sql} "
            f"FROM {self.dialect.qualify(referenced.schema_name, referenced.table_name)} "
            f"ORDER BY {display_sql}"
        )
        return await self._fetch(sql, {}, operation, referenced.full_name)
