"""INSERT/UPDATE/DELETE for one table with optimistic concurrency.

Bind names follow a fixed convention: `@<Column>` for new values,
`@PK_<Column>` for original key values and `@Original_<Column>` for the
original concurrency-token value. Names that collide within one statement get
a numeric suffix (`@Unit_Price`, `@Unit_Price_2`).
"""

import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple

from common.errors import (
    ConcurrencyConflict,
    ConflictKind,
    ConstraintViolation,
    PreconditionError,
)
from dal.concurrency import ConcurrencyGuard
from dal.database import QueryTargetDatabase
from dal.error_classification import to_data_access_error
from dal.param_translation import bind_parameter
from schema.catalog import ColumnMetadata, TableMetadata
from schema.cells import unwrap

module_logger = logging.getLogger(__name__)

DELETE_REFERENCED_MESSAGE = "Cannot delete record. It is referenced by data in other tables."
SAVE_REFERENCE_MESSAGE = (
    "Cannot save record. It references data that does not exist in a related table."
)

_MISSING = object()


def _lookup(values: Mapping[str, Any], column_name: str) -> Any:
    if column_name in values:
        return values[column_name]
    wanted = column_name.lower()
    for key, value in values.items():
        if key.lower() == wanted:
            return value
    return _MISSING


class RecordMutator:
    """Generate and execute row mutations for one table."""

    def __init__(
        self,
        database: QueryTargetDatabase,
        table: TableMetadata,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.database = database
        self.table = table
        self.dialect = database.dialect
        self._logger = logger or module_logger
        self.guard = ConcurrencyGuard(table, self.dialect, logger=self._logger)

    @property
    def _qualified(self) -> str:
        return self.dialect.qualify(self.table.schema_name, self.table.table_name)

    def _quote(self, column: ColumnMetadata) -> str:
        return self.dialect.quote_identifier(column.name)

    def _require_key(self, key_values: Mapping[str, Any], operation: str) -> List[ColumnMetadata]:
        key_columns = self.table.primary_key_columns
        if not key_columns:
            raise PreconditionError(
                f"Cannot {operation} rows in {self.table.full_name}: the table has no primary key.",
                operation=operation,
                table=self.table.full_name,
            )
        missing = [c.name for c in key_columns if _lookup(key_values or {}, c.name) is _MISSING]
        if missing:
            raise PreconditionError(
                f"Cannot {operation} rows in {self.table.full_name}: "
                f"missing key values for {', '.join(missing)}.",
                operation=operation,
                table=self.table.full_name,
            )
        return key_columns

    def key_predicate(
        self, key_values: Mapping[str, Any], params: Dict[str, Any]
    ) -> str:
        """Return `"pk" = @PK_pk AND ...` and bind the key values into params."""
        clauses = []
        for column in self.table.primary_key_columns:
            name = bind_parameter(
                params, column.name, unwrap(_lookup(key_values, column.name)), prefix="PK_"
            )
            clauses.append(f"{self._quote(column)} = @{name}")
        return " AND ".join(clauses)

    def _supplied(
        self, values: Mapping[str, Any], columns: List[ColumnMetadata]
    ) -> List[Tuple[ColumnMetadata, Any]]:
        supplied = []
        for column in columns:
            value = _lookup(values or {}, column.name)
            if value is not _MISSING:
                supplied.append((column, unwrap(value)))
        return supplied

    def _translate(self, exc: Exception, operation: str, reference_message: str):
        if self.dialect.is_foreign_key_violation(exc):
            return ConstraintViolation(
                reference_message, operation=operation, table=self.table.full_name
            )
        return to_data_access_error(
            self.database.provider, exc, operation=operation, table=self.table.full_name
        )

    async def insert(self, values: Mapping[str, Any]) -> Any:
        """Insert a row; return the new identity value, else the affected count."""
        writable = [c for c in self.table.columns if c.is_writable]
        if not writable:
            self._logger.info(
                "Table %s has no insertable columns; nothing to insert.",
                self.table.full_name,
                extra={"event": "insert_degenerate_table", "table": self.table.full_name},
            )
            return 0
        supplied = self._supplied(values, writable)
        if not supplied:
            raise PreconditionError(
                f"No values supplied for any insertable column of {self.table.full_name}.",
                operation="insert",
                table=self.table.full_name,
            )

        params: Dict[str, Any] = {}
        names = []
        for column, value in supplied:
            names.append(bind_parameter(params, column.name, value))
        columns_sql = ", ".join(self._quote(c) for c, _ in supplied)
        values_sql = ", ".join(f"@{n}" for n in names)
        sql = f"INSERT INTO {self._qualified} ({columns_sql}) VALUES ({values_sql})"

        identity = self.table.identity_column
        try:
            async with self.database.get_connection() as conn:
                if identity is not None:
                    sql += self.dialect.identity_returning_clause(identity.name)
                    new_id = await conn.fetchval(sql, params)
                    self._logger.info(
                        "Inserted row into %s",
                        self.table.full_name,
                        extra={"event": "record_inserted", "table": self.table.full_name},
                    )
                    return new_id
                return await conn.execute(sql, params)
        except Exception as exc:
            raise self._translate(exc, "insert", SAVE_REFERENCE_MESSAGE) from exc

    async def update(
        self,
        values: Mapping[str, Any],
        original_key_values: Mapping[str, Any],
        original_token: Any = None,
    ) -> int:
        """Update one row by its original key, guarded by the concurrency token."""
        self._require_key(original_key_values, "update")
        updatable = [c for c in self.table.columns if c.is_writable and not c.is_primary_key]
        supplied = self._supplied(values, updatable)
        if not supplied:
            self._logger.info(
                "No updatable values supplied for %s; nothing to update.",
                self.table.full_name,
                extra={"event": "update_no_changes", "table": self.table.full_name},
            )
            return 0

        params: Dict[str, Any] = {}
        assignments = []
        for column, value in supplied:
            name = bind_parameter(params, column.name, value)
            assignments.append(f"{self._quote(column)} = @{name}")
        sql = (
            f"UPDATE {self._qualified} SET {', '.join(assignments)} "
            f"WHERE {self.key_predicate(original_key_values, params)}"
        )
        sql = self.guard.append_check(sql, params, original_token)

        try:
            async with self.database.get_connection() as conn:
                affected = await conn.execute(sql, params)
        except Exception as exc:
            raise self._translate(exc, "update", SAVE_REFERENCE_MESSAGE) from exc

        if affected == 0:
            exists = await self.check_exists(original_key_values)
            kind = self.guard.classify_zero_rows(exists)
            if kind is not None:
                raise self._conflict(kind, "update")
            self._logger.warning(
                "Update of %s affected no rows but the row exists; treating as unchanged.",
                self.table.full_name,
                extra={"event": "update_zero_rows_tolerated", "table": self.table.full_name},
            )
        return affected

    async def delete(self, key_values: Mapping[str, Any], original_token: Any = None) -> int:
        """Delete one row by key; deleting an already-deleted row returns 0."""
        self._require_key(key_values, "delete")
        params: Dict[str, Any] = {}
        sql = f"DELETE FROM {self._qualified} WHERE {self.key_predicate(key_values, params)}"
        sql = self.guard.append_check(sql, params, original_token)

        try:
            async with self.database.get_connection() as conn:
                affected = await conn.execute(sql, params)
        except Exception as exc:
            raise self._translate(exc, "delete", DELETE_REFERENCED_MESSAGE) from exc

        if affected == 0:
            exists = await self.check_exists(key_values)
            if exists and self.guard.has_token:
                raise self._conflict(ConflictKind.MODIFIED, "delete")
            self._logger.info(
                "Delete of %s affected no rows; row already gone.",
                self.table.full_name,
                extra={
                    "event": "delete_zero_rows",
                    "table": self.table.full_name,
                    "row_exists": exists,
                },
            )
        return affected

    async def check_exists(self, key_values: Mapping[str, Any]) -> bool:
        """Best-effort existence check by key; any failure counts as absent."""
        if not self.table.primary_keys:
            return False
        params: Dict[str, Any] = {}
        try:
            self._require_key(key_values, "check_exists")
            sql = (
                f"SELECT COUNT(*) FROM {self._qualified} "
                f"WHERE {self.key_predicate(key_values, params)}"
            )
            async with self.database.get_connection() as conn:
                count = await conn.fetchval(sql, params)
        except Exception as exc:
            self._logger.warning(
                "Existence check failed for %s: %s",
                self.table.full_name,
                exc,
                extra={"event": "check_exists_failed", "table": self.table.full_name},
            )
            return False
        return bool(count)

    def _conflict(self, kind: ConflictKind, operation: str) -> ConcurrencyConflict:
        if kind is ConflictKind.DELETED:
            message = f"The record in {self.table.full_name} was deleted by another user."
        else:
            message = f"The record in {self.table.full_name} was modified by another user."
        self._logger.warning(
            message,
            extra={
                "event": "concurrency_conflict",
                "table": self.table.full_name,
                "operation": operation,
                "conflict_kind": kind.value,
            },
        )
        return ConcurrencyConflict(
            message, kind=kind, operation=operation, table=self.table.full_name
        )
