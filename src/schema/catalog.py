"""Immutable metadata snapshot of one connected database.

The catalog graph is built once per connect/refresh by the introspector and is
read-only afterwards. Columns refer back to their owning table by identity
(`schema_name`, `table_name`) rather than by object, so models stay acyclic and
comparable by value; `SchemaCatalog.table_of` resolves the owner.
"""

from __future__ import annotations

import re
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from pydantic import BaseModel, Field, model_validator


class ColumnMetadata(BaseModel):
    """Column of a table or view, including flags derived during introspection."""

    schema_name: str
    table_name: str
    name: str
    ordinal_position: int
    data_type: str
    max_length: Optional[int] = None
    numeric_precision: Optional[int] = None
    numeric_scale: Optional[int] = None
    is_nullable: bool = True
    is_primary_key: bool = False
    is_foreign_key: bool = False
    is_identity: bool = False
    is_computed: bool = False
    is_concurrency_token: bool = False

    model_config = {"frozen": True}

    @property
    def table_key(self) -> Tuple[str, str]:
        """Return the (schema, table) identity of the owning table."""
        return (self.schema_name, self.table_name)

    @property
    def is_writable(self) -> bool:
        """Return True when the server accepts caller-supplied values for the column."""
        return not (self.is_identity or self.is_computed or self.is_concurrency_token)


class PrimaryKeyMetadata(BaseModel):
    """Membership of a column in a table's primary key."""

    schema_name: str
    table_name: str
    column: ColumnMetadata
    constraint_name: Optional[str] = None
    ordinal_position: int = 1

    model_config = {"frozen": True}


class ForeignKeyMetadata(BaseModel):
    """Single-column foreign-key relationship between two tables."""

    constraint_name: str
    referencing_schema: str
    referencing_table: str
    referencing_column: ColumnMetadata
    referenced_schema: str
    referenced_table: str
    referenced_column: ColumnMetadata

    model_config = {"frozen": True}


class TableMetadata(BaseModel):
    """Table or view with its columns, key and relationships."""

    schema_name: str
    table_name: str
    is_view: bool = False
    columns: Tuple[ColumnMetadata, ...] = Field(default_factory=tuple)
    primary_keys: Tuple[PrimaryKeyMetadata, ...] = Field(default_factory=tuple)
    foreign_keys: Tuple[ForeignKeyMetadata, ...] = Field(default_factory=tuple)
    referenced_by: Tuple[ForeignKeyMetadata, ...] = Field(default_factory=tuple)

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_columns(self) -> "TableMetadata":
        seen: set[str] = set()
        last_ordinal = 0
        for column in self.columns:
            key = column.name.lower()
            if key in seen:
                raise ValueError(f"Duplicate column '{column.name}' in {self.full_name}.")
            seen.add(key)
            if column.ordinal_position <= last_ordinal:
                raise ValueError(
                    f"Column ordinals in {self.full_name} must be unique and increasing; "
                    f"'{column.name}' has {column.ordinal_position}."
                )
            last_ordinal = column.ordinal_position
            if column.table_key != self.key:
                raise ValueError(f"Column '{column.name}' does not belong to {self.full_name}.")
        return self

    @property
    def key(self) -> Tuple[str, str]:
        """Return the (schema, table) identity."""
        return (self.schema_name, self.table_name)

    @property
    def full_name(self) -> str:
        """Return `schema.table` for display and logging."""
        return f"{self.schema_name}.{self.table_name}"

    def column(self, name: str) -> Optional[ColumnMetadata]:
        """Return a column by case-insensitive name."""
        wanted = name.lower()
        for column in self.columns:
            if column.name.lower() == wanted:
                return column
        return None

    @property
    def primary_key_columns(self) -> List[ColumnMetadata]:
        """Return primary-key columns in key order."""
        return [pk.column for pk in sorted(self.primary_keys, key=lambda pk: pk.ordinal_position)]

    @property
    def identity_column(self) -> Optional[ColumnMetadata]:
        """Return the identity column, if any."""
        return next((c for c in self.columns if c.is_identity), None)

    @property
    def concurrency_token(self) -> Optional[ColumnMetadata]:
        """Return the first concurrency-token column; further ones are ignored."""
        return next((c for c in self.columns if c.is_concurrency_token), None)


def wildcard_to_regex(pattern: str) -> re.Pattern:
    """Compile a `*`/`%`/`?` wildcard pattern into a case-insensitive regex."""
    parts = []
    for ch in pattern.strip():
        if ch in ("*", "%"):
            parts.append(".*")
        elif ch == "?":
            parts.append(".")
        else:
            parts.append(re.escape(ch))
    return re.compile("".join(parts), re.IGNORECASE)


def _matches_any(value: str, patterns: Sequence[re.Pattern]) -> bool:
    return any(p.fullmatch(value) for p in patterns)


class SchemaCatalog:
    """Read-only, case-insensitively indexed collection of tables."""

    def __init__(self, tables: Iterable[TableMetadata]) -> None:
        """Index tables by lower-cased (schema, table)."""
        self._tables: Tuple[TableMetadata, ...] = tuple(
            sorted(tables, key=lambda t: (t.schema_name.lower(), t.table_name.lower()))
        )
        self._index: Dict[Tuple[str, str], TableMetadata] = {
            (t.schema_name.lower(), t.table_name.lower()): t for t in self._tables
        }

    @property
    def tables(self) -> Tuple[TableMetadata, ...]:
        """Return tables ordered by schema then name."""
        return self._tables

    def __len__(self) -> int:
        return len(self._tables)

    def __iter__(self) -> Iterator[TableMetadata]:
        return iter(self._tables)

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, tuple) or len(key) != 2:
            return False
        return (str(key[0]).lower(), str(key[1]).lower()) in self._index

    def get_table(self, schema_name: str, table_name: str) -> Optional[TableMetadata]:
        """Return a table by case-insensitive schema and name, or None."""
        return self._index.get((schema_name.lower(), table_name.lower()))

    def table(self, schema_name: str, table_name: str) -> TableMetadata:
        """Return a table or raise KeyError naming it."""
        found = self.get_table(schema_name, table_name)
        if found is None:
            raise KeyError(f"Table '{schema_name}.{table_name}' is not in the catalog.")
        return found

    def find(self, qualified_name: str, default_schema: str) -> Optional[TableMetadata]:
        """Resolve `schema.table` or a bare table name against the default schema."""
        schema_name, _, table_name = qualified_name.rpartition(".")
        return self.get_table(schema_name or default_schema, table_name)

    def table_of(self, column: ColumnMetadata) -> TableMetadata:
        """Return the table owning a column."""
        return self.table(column.schema_name, column.table_name)

    def filtered(
        self,
        include_schemas: Optional[Sequence[str]] = None,
        exclude_tables: Optional[Sequence[str]] = None,
    ) -> "SchemaCatalog":
        """Return a new catalog limited by wildcard include/exclude patterns.

        `include_schemas` matches schema names; an empty list keeps all schemas.
        `exclude_tables` matches `schema.table`. Both are case-insensitive and
        understand `*`, `%` and `?`.
        """
        includes = [wildcard_to_regex(p) for p in include_schemas or [] if p.strip()]
        excludes = [wildcard_to_regex(p) for p in exclude_tables or [] if p.strip()]
        kept = [
            t
            for t in self._tables
            if (not includes or _matches_any(t.schema_name, includes))
            and not _matches_any(t.full_name, excludes)
        ]
        return SchemaCatalog(kept)
