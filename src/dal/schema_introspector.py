"""Catalog discovery: four metadata phases followed by one linking pass.

Backends only produce flat records per phase. `CatalogBuilder` resolves them
against each other, derives key flags and publishes the immutable catalog in a
single step; nothing is published when any phase fails.
"""

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from common.errors import SchemaIntrospectionError
from dal.config import DEFAULT_CONCURRENCY_TOKEN_TYPES
from dal.database import QueryConnection, QueryTargetDatabase
from schema.catalog import (
    ColumnMetadata,
    ForeignKeyMetadata,
    PrimaryKeyMetadata,
    SchemaCatalog,
    TableMetadata,
)

module_logger = logging.getLogger(__name__)

_TYPE_ARGS = re.compile(r"\(\s*(\d+)\s*(?:,\s*(\d+)\s*)?\)")


@dataclass(frozen=True)
class TableRecord:
    schema_name: str
    table_name: str
    is_view: bool = False


@dataclass(frozen=True)
class ColumnRecord:
    schema_name: str
    table_name: str
    name: str
    ordinal_position: int
    data_type: str
    max_length: Optional[int] = None
    numeric_precision: Optional[int] = None
    numeric_scale: Optional[int] = None
    is_nullable: bool = True
    is_identity: bool = False
    is_computed: bool = False
    type_aliases: Tuple[str, ...] = ()


@dataclass(frozen=True)
class PrimaryKeyRecord:
    schema_name: str
    table_name: str
    column_name: str
    constraint_name: Optional[str] = None
    ordinal_position: int = 1


@dataclass(frozen=True)
class ForeignKeyRecord:
    constraint_name: str
    schema_name: str
    table_name: str
    column_name: str
    referenced_schema: str
    referenced_table: str
    referenced_column: Optional[str] = None


def parse_type_arguments(declared_type: str) -> Tuple[Optional[int], Optional[int]]:
    """Return the numeric arguments of a declared type like `DECIMAL(10, 2)`."""
    match = _TYPE_ARGS.search(declared_type or "")
    if not match:
        return None, None
    first = int(match.group(1))
    second = int(match.group(2)) if match.group(2) is not None else None
    return first, second


def base_type_name(declared_type: str) -> str:
    """Return the lower-cased type name without arguments."""
    return (declared_type or "").split("(", 1)[0].strip().lower()


def _key(schema_name: str, table_name: str) -> Tuple[str, str]:
    return (schema_name.lower(), table_name.lower())


class CatalogBuilder:
    """Link phase records into a SchemaCatalog."""

    def __init__(
        self,
        concurrency_token_types: Sequence[str] = DEFAULT_CONCURRENCY_TOKEN_TYPES,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._token_types = {t.strip().lower() for t in concurrency_token_types if t.strip()}
        self._logger = logger or module_logger

    def _skip(self, phase: str, reason: str, subject: str) -> None:
        self._logger.warning(
            "Skipping %s metadata row for %s: %s",
            phase,
            subject,
            reason,
            extra={"event": "schema_metadata_row_skipped", "phase": phase, "subject": subject},
        )

    def _is_token(self, record: ColumnRecord) -> bool:
        names = {base_type_name(record.data_type)}
        names.update(alias.lower() for alias in record.type_aliases if alias)
        return bool(names & self._token_types)

    def build(
        self,
        tables: Iterable[TableRecord],
        columns: Iterable[ColumnRecord],
        primary_keys: Iterable[PrimaryKeyRecord],
        foreign_keys: Iterable[ForeignKeyRecord],
    ) -> SchemaCatalog:
        """Resolve records, derive flags and build the immutable catalog."""
        table_records: Dict[Tuple[str, str], TableRecord] = {}
        for table in tables:
            table_records.setdefault(_key(table.schema_name, table.table_name), table)

        column_records: Dict[Tuple[str, str], Dict[str, ColumnRecord]] = {
            key: {} for key in table_records
        }
        for column in columns:
            key = _key(column.schema_name, column.table_name)
            if key not in table_records:
                self._skip("columns", "unknown table", f"{column.table_name}.{column.name}")
                continue
            if column.name.lower() in column_records[key]:
                self._skip("columns", "duplicate column", f"{column.table_name}.{column.name}")
                continue
            column_records[key][column.name.lower()] = column

        pk_flags: set = set()
        resolved_pks: List[PrimaryKeyRecord] = []
        for pk in primary_keys:
            key = _key(pk.schema_name, pk.table_name)
            if pk.column_name.lower() not in column_records.get(key, {}):
                self._skip("primary_keys", "unknown column", f"{pk.table_name}.{pk.column_name}")
                continue
            pk_flags.add((key, pk.column_name.lower()))
            resolved_pks.append(pk)

        fk_flags: set = set()
        resolved_fks: List[Tuple[ForeignKeyRecord, str]] = []
        for fk in foreign_keys:
            key = _key(fk.schema_name, fk.table_name)
            ref_key = _key(fk.referenced_schema, fk.referenced_table)
            if fk.column_name.lower() not in column_records.get(key, {}):
                self._skip("foreign_keys", "unknown referencing column", fk.constraint_name)
                continue
            if ref_key not in column_records:
                self._skip("foreign_keys", "unknown referenced table", fk.constraint_name)
                continue
            ref_column = fk.referenced_column
            if not ref_column:
                ref_pks = sorted(
                    (p for p in resolved_pks if _key(p.schema_name, p.table_name) == ref_key),
                    key=lambda p: p.ordinal_position,
                )
                ref_column = ref_pks[0].column_name if ref_pks else None
            if not ref_column or ref_column.lower() not in column_records[ref_key]:
                self._skip("foreign_keys", "unknown referenced column", fk.constraint_name)
                continue
            fk_flags.add((key, fk.column_name.lower()))
            resolved_fks.append((fk, ref_column.lower()))

        built_columns: Dict[Tuple[str, str], Dict[str, ColumnMetadata]] = {}
        for key, by_name in column_records.items():
            table = table_records[key]
            built_columns[key] = {
                lower: ColumnMetadata(
                    schema_name=table.schema_name,
                    table_name=table.table_name,
                    name=record.name,
                    ordinal_position=record.ordinal_position,
                    data_type=record.data_type,
                    max_length=record.max_length,
                    numeric_precision=record.numeric_precision,
                    numeric_scale=record.numeric_scale,
                    is_nullable=record.is_nullable,
                    is_primary_key=(key, lower) in pk_flags,
                    is_foreign_key=(key, lower) in fk_flags,
                    is_identity=record.is_identity,
                    is_computed=record.is_computed,
                    is_concurrency_token=self._is_token(record),
                )
                for lower, record in sorted(
                    by_name.items(), key=lambda item: item[1].ordinal_position
                )
            }

        pks_by_table: Dict[Tuple[str, str], List[PrimaryKeyMetadata]] = {
            k: [] for k in table_records
        }
        for pk in resolved_pks:
            key = _key(pk.schema_name, pk.table_name)
            table = table_records[key]
            pks_by_table[key].append(
                PrimaryKeyMetadata(
                    schema_name=table.schema_name,
                    table_name=table.table_name,
                    column=built_columns[key][pk.column_name.lower()],
                    constraint_name=pk.constraint_name,
                    ordinal_position=pk.ordinal_position,
                )
            )

        outgoing: Dict[Tuple[str, str], List[ForeignKeyMetadata]] = {k: [] for k in table_records}
        incoming: Dict[Tuple[str, str], List[ForeignKeyMetadata]] = {k: [] for k in table_records}
        for fk, ref_column in resolved_fks:
            key = _key(fk.schema_name, fk.table_name)
            ref_key = _key(fk.referenced_schema, fk.referenced_table)
            relationship = ForeignKeyMetadata(
                constraint_name=fk.constraint_name,
                referencing_schema=table_records[key].schema_name,
                referencing_table=table_records[key].table_name,
                referencing_column=built_columns[key][fk.column_name.lower()],
                referenced_schema=table_records[ref_key].schema_name,
                referenced_table=table_records[ref_key].table_name,
                referenced_column=built_columns[ref_key][ref_column],
            )
            outgoing[key].append(relationship)
            incoming[ref_key].append(relationship)

        built_tables = [
            TableMetadata(
                schema_name=table.schema_name,
                table_name=table.table_name,
                is_view=table.is_view,
                columns=tuple(built_columns[key].values()),
                primary_keys=tuple(sorted(pks_by_table[key], key=lambda p: p.ordinal_position)),
                foreign_keys=tuple(outgoing[key]),
                referenced_by=tuple(incoming[key]),
            )
            for key, table in table_records.items()
        ]
        return SchemaCatalog(built_tables)


class SchemaIntrospector(ABC):
    """Build a SchemaCatalog from a live query target."""

    def __init__(
        self,
        database: QueryTargetDatabase,
        concurrency_token_types: Sequence[str] = DEFAULT_CONCURRENCY_TOKEN_TYPES,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._database = database
        self._token_types = tuple(concurrency_token_types)
        self._logger = logger or module_logger

    @abstractmethod
    async def fetch_tables(self, conn: QueryConnection) -> List[TableRecord]:
        """Return base tables and views."""

    @abstractmethod
    async def fetch_columns(self, conn: QueryConnection) -> List[ColumnRecord]:
        """Return every column with type, nullability and generation flags."""

    @abstractmethod
    async def fetch_primary_keys(self, conn: QueryConnection) -> List[PrimaryKeyRecord]:
        """Return primary-key memberships with their key ordinal."""

    @abstractmethod
    async def fetch_foreign_keys(self, conn: QueryConnection) -> List[ForeignKeyRecord]:
        """Return single-column foreign-key links."""

    async def discover(self) -> SchemaCatalog:
        """Run all phases on one connection and link the results."""
        phase = "connect"
        try:
            async with self._database.get_connection() as conn:
                phase = "tables"
                tables = await self.fetch_tables(conn)
                phase = "columns"
                columns = await self.fetch_columns(conn)
                phase = "primary_keys"
                primary_keys = await self.fetch_primary_keys(conn)
                phase = "foreign_keys"
                foreign_keys = await self.fetch_foreign_keys(conn)
            phase = "link"
            catalog = CatalogBuilder(self._token_types, self._logger).build(
                tables, columns, primary_keys, foreign_keys
            )
        except SchemaIntrospectionError:
            raise
        except Exception as exc:
            self._logger.error(
                "Schema introspection failed during %s: %s",
                phase,
                exc,
                extra={"event": "schema_introspection_failed", "phase": phase},
            )
            raise SchemaIntrospectionError(
                f"Schema introspection failed during {phase}: {exc}",
                phase=phase,
                operation="introspect",
            ) from exc

        self._logger.info(
            "Discovered %d tables",
            len(catalog),
            extra={"event": "schema_introspection_complete", "table_count": len(catalog)},
        )
        return catalog
