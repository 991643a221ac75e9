"""Per-table SELECT template, WHERE and ORDER BY generation.

A base SELECT is a template carrying one `{WHERE}`, one `{ORDERBY}` and one
`{PAGING}` marker; `render_template` substitutes them. Filter predicates are
trusted configuration text and are inserted verbatim.
"""

import logging
import re
from typing import Any, Dict, List, Mapping, Optional

from common.errors import QueryBuildError
from dal.dialect import SqlDialect
from schema.catalog import ColumnMetadata, TableMetadata
from schema.cells import unwrap
from schema.overrides import (
    ORDER_BY_MARKER,
    PAGING_MARKER,
    WHERE_MARKER,
    FilterDefinition,
    SortDirection,
    TableOverrides,
)

module_logger = logging.getLogger(__name__)

TEMPLATE_MARKERS = (WHERE_MARKER, ORDER_BY_MARKER, PAGING_MARKER)
_AMBIGUOUS_CHARS = (" ", "-")
_QUOTE_OPENERS = ('"', "[", "`")


def validate_template(template: str, table_name: Optional[str] = None) -> None:
    """Raise QueryBuildError unless every marker occurs exactly once."""
    problems = []
    for marker in TEMPLATE_MARKERS:
        count = template.count(marker)
        if count != 1:
            problems.append(f"{marker} occurs {count} times")
    if problems:
        raise QueryBuildError(
            "Custom SELECT must contain each of {WHERE}, {ORDERBY} and {PAGING} exactly once: "
            + "; ".join(problems),
            operation="base_select",
            table=table_name,
        )


def render_template(
    template: str,
    where: Optional[str] = None,
    order_by: Optional[str] = None,
    paging: Optional[str] = None,
) -> str:
    """Substitute markers; an empty fragment removes its marker and leading blanks."""
    sql = template
    for marker, fragment in (
        (WHERE_MARKER, f"WHERE {where}" if where else ""),
        (ORDER_BY_MARKER, f"ORDER BY {order_by}" if order_by else ""),
        (PAGING_MARKER, paging or ""),
    ):
        if fragment:
            sql = sql.replace(marker, fragment)
        else:
            sql = re.sub(r"[ \t]*" + re.escape(marker), "", sql)
    return sql.strip().rstrip(";").rstrip()


def quote_sort_expression(expression: str, dialect: SqlDialect) -> str:
    """Quote an unknown sort expression only when unquoted and ambiguous."""
    text = expression.strip()
    if text.startswith(_QUOTE_OPENERS):
        return text
    if any(ch in text for ch in _AMBIGUOUS_CHARS):
        return dialect.quote_identifier(text)
    return text


class QueryBuilder:
    """Render the base SELECT, filter and sort fragments for one table."""

    def __init__(
        self,
        table: TableMetadata,
        dialect: SqlDialect,
        overrides: Optional[TableOverrides] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.table = table
        self.dialect = dialect
        self.overrides = overrides or TableOverrides()
        self._logger = logger or module_logger
        if self.overrides.custom_select:
            validate_template(self.overrides.custom_select, table.full_name)

    @property
    def qualified_name(self) -> str:
        return self.dialect.qualify(self.table.schema_name, self.table.table_name)

    def visible_columns(self) -> List[ColumnMetadata]:
        """Return columns selected by default; complex types are left out."""
        return [
            c
            for c in self.table.columns
            if c.is_concurrency_token or not self.dialect.is_complex_type(c.data_type)
        ]

    def sortable_columns(self) -> List[ColumnMetadata]:
        """Return columns the base SELECT actually projects.

        Ranking sorts over the projected columns, so a column the default
        select leaves out cannot be a sort key.
        """
        if self.overrides.custom_select:
            return list(self.table.columns)
        return self.visible_columns() or list(self.table.columns)

    def base_select(self) -> str:
        """Return the SELECT template with WHERE, ORDER BY and PAGING markers."""
        custom = self.overrides.custom_select
        if custom:
            validate_template(custom, self.table.full_name)
            return custom
        columns = self.visible_columns()
        select_list = (
            ", ".join(self.dialect.quote_identifier(c.name) for c in columns) if columns else "*"
        )
        return (
            f"SELECT {select_list} FROM {self.qualified_name} "
            f"{WHERE_MARKER} {ORDER_BY_MARKER} {PAGING_MARKER}"
        )

    def where_fragment(self, filter_definition: Optional[FilterDefinition]) -> str:
        """Return the filter predicate verbatim, or an empty string."""
        if filter_definition is None:
            return ""
        return filter_definition.where_clause.strip()

    def default_sort_column(self) -> Optional[ColumnMetadata]:
        """Return the first key column, else the lowest-ordinal sortable column."""
        sortable = {c.name for c in self.sortable_columns()}
        for key_column in self.table.primary_key_columns:
            if key_column.name in sortable:
                return key_column
        candidates = [c for c in self.table.columns if c.name in sortable]
        if candidates:
            return min(candidates, key=lambda c: c.ordinal_position)
        return None

    def order_by_fragment(
        self,
        column: Optional[str] = None,
        direction: SortDirection = SortDirection.ASCENDING,
    ) -> str:
        """Return `<column> ASC|DESC`, falling back to the default sort column."""
        if not column or not column.strip():
            fallback = self.default_sort_column()
            if fallback is None:
                raise QueryBuildError(
                    f"Cannot build ORDER BY for {self.table.full_name}: the table has no columns.",
                    operation="order_by",
                    table=self.table.full_name,
                )
            return f"{self.dialect.quote_identifier(fallback.name)} {SortDirection.ASCENDING.value}"

        known = self.table.column(column.strip())
        if known is not None:
            if known.name not in {c.name for c in self.sortable_columns()}:
                raise QueryBuildError(
                    f"Cannot sort {self.table.full_name} by '{known.name}': "
                    f"{known.data_type} columns are not part of the default select.",
                    operation="order_by",
                    table=self.table.full_name,
                )
            identifier = self.dialect.quote_identifier(known.name)
        else:
            identifier = quote_sort_expression(column, self.dialect)
        return f"{identifier} {SortDirection(direction).value}"

    def filter_parameters(
        self,
        filter_definition: Optional[FilterDefinition],
        inputs: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Bind the values a filter declares in `requires_input`.

        A declared input with no supplied value binds NULL and logs a warning.
        """
        if filter_definition is None:
            return {}
        supplied = {key.lstrip("@").lower(): unwrap(value) for key, value in (inputs or {}).items()}
        params: Dict[str, Any] = {}
        for filter_input in filter_definition.inputs:
            key = filter_input.name.lower()
            if key in supplied:
                params[filter_input.name] = supplied[key]
                continue
            self._logger.warning(
                "Value for filter parameter '%s' not supplied for filter '%s'; binding NULL.",
                filter_input.name,
                filter_definition.name,
                extra={
                    "event": "filter_input_missing",
                    "table": self.table.full_name,
                    "filter": filter_definition.name,
                    "parameter": filter_input.name,
                },
            )
            params[filter_input.name] = None
        return params
