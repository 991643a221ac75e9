"""Dialect strategies for identifier quoting, paging syntax and error recognition."""

from __future__ import annotations

import re
import sqlite3
from typing import FrozenSet

from dal.param_translation import ParamStyle

COMPLEX_TYPE_NAMES: FrozenSet[str] = frozenset(
    {
        "xml",
        "geography",
        "geometry",
        "hierarchyid",
        "sql_variant",
        "image",
        "varbinary",
        "binary",
        "blob",
        "bytea",
    }
)

_TYPE_ARGS = re.compile(r"\(.*\)")


class SqlDialect:
    """Base dialect using ANSI double-quoted identifiers."""

    name: str = "ansi"
    param_style: ParamStyle = "dollar"
    default_schema: str = "public"
    offset_probe_sql: str = "SELECT 1 ORDER BY 1 OFFSET 0 ROWS FETCH NEXT 1 ROWS ONLY"
    complex_type_names: FrozenSet[str] = COMPLEX_TYPE_NAMES

    def quote_identifier(self, name: str) -> str:
        """Quote an identifier, doubling embedded quote characters."""
        return '"' + name.replace('"', '""') + '"'

    def qualify(self, schema_name: str, table_name: str) -> str:
        """Return the quoted `schema.table` reference."""
        return f"{self.quote_identifier(schema_name)}.{self.quote_identifier(table_name)}"

    def offset_paging_clause(self) -> str:
        """Return the skip/take clause using @Offset and @PageSize."""
        return "OFFSET @Offset ROWS FETCH NEXT @PageSize ROWS ONLY"

    def identity_returning_clause(self, column_name: str) -> str:
        """Return the INSERT suffix that yields the generated identity value."""
        return f" RETURNING {self.quote_identifier(column_name)}"

    def is_complex_type(self, data_type: str) -> bool:
        """Return True for large or structured types left out of default selects."""
        base = _TYPE_ARGS.sub("", data_type or "").strip().lower()
        return base in self.complex_type_names

    def is_foreign_key_violation(self, exc: BaseException) -> bool:
        """Return True when a driver error reports a referential-integrity violation."""
        message = str(exc).lower()
        return "reference constraint" in message or "foreign key constraint" in message


class PostgresDialect(SqlDialect):
    """PostgreSQL rules: SQL:2008 paging, `$n` parameters, sqlstate 23503."""

    name = "postgres"
    param_style: ParamStyle = "dollar"
    default_schema = "public"

    def is_foreign_key_violation(self, exc: BaseException) -> bool:
        if getattr(exc, "sqlstate", None) == "23503":
            return True
        if "violates foreign key constraint" in str(exc).lower():
            return True
        return super().is_foreign_key_violation(exc)


class SqliteDialect(SqlDialect):
    """SQLite rules: LIMIT/OFFSET paging, `?` parameters, schema `main`."""

    name = "sqlite"
    param_style: ParamStyle = "qmark"
    default_schema = "main"
    offset_probe_sql = "SELECT 1 ORDER BY 1 LIMIT 1 OFFSET 0"

    def offset_paging_clause(self) -> str:
        return "LIMIT @PageSize OFFSET @Offset"

    def is_foreign_key_violation(self, exc: BaseException) -> bool:
        if isinstance(exc, sqlite3.IntegrityError) and "foreign key" in str(exc).lower():
            return True
        return super().is_foreign_key_violation(exc)


def dialect_for_provider(provider: str) -> SqlDialect:
    """Return the dialect strategy for a canonical provider id."""
    normalized = (provider or "").strip().lower()
    if normalized == "postgres":
        return PostgresDialect()
    if normalized == "sqlite":
        return SqliteDialect()
    raise ValueError(f"No SQL dialect registered for provider '{provider}'.")
