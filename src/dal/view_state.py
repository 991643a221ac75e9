"""Per-table browsing session: sort, filter and page position.

A ViewState is either Idle or Loading. Every operation that fetches rows or
changes sort/filter state is rejected with ViewStateBusyError while a fetch is
in flight, so two page fetches on one view never interleave. Separate views
are independent.
"""

import logging
import math
from contextlib import asynccontextmanager
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from common.errors import ViewStateBusyError
from dal.paging import RANK_COLUMN, PageResult, PagingEngine
from dal.param_translation import bind_parameter
from dal.query_builder import QueryBuilder, render_template
from schema.catalog import TableMetadata
from schema.cells import unwrap
from schema.overrides import FilterDefinition, SortDirection, TableOverrides

module_logger = logging.getLogger(__name__)


class ViewStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"


class ViewState:
    """Sort, filter and paging state for one open table view."""

    def __init__(
        self,
        table: TableMetadata,
        paging: PagingEngine,
        overrides: Optional[TableOverrides] = None,
        *,
        page_size: int = 50,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.table = table
        self.paging = paging
        self.overrides = overrides or TableOverrides()
        self._logger = logger or module_logger
        self.builder = QueryBuilder(table, paging.dialect, self.overrides, logger=self._logger)

        self._status = ViewStatus.IDLE
        self._page_size = max(1, page_size)
        self._current_page = 1
        self._total_records = 0
        self._sort_column: Optional[str] = None
        self._sort_direction = SortDirection.ASCENDING
        self._filter: Optional[FilterDefinition] = None
        self._filter_inputs: Dict[str, Any] = {}

        self._apply_default_sort()
        self._apply_default_filter()

    @property
    def status(self) -> ViewStatus:
        return self._status

    @property
    def current_page(self) -> int:
        return self._current_page

    @property
    def page_size(self) -> int:
        return self._page_size

    @page_size.setter
    def page_size(self, value: int) -> None:
        self._ensure_idle("set_page_size")
        self._page_size = max(1, int(value))

    @property
    def total_records(self) -> int:
        return self._total_records

    @property
    def total_pages(self) -> int:
        """Number of pages; 1 when there are no records."""
        if self._total_records == 0:
            return 1
        return math.ceil(self._total_records / self._page_size)

    @property
    def sort_column(self) -> Optional[str]:
        return self._sort_column

    @property
    def sort_direction(self) -> SortDirection:
        return self._sort_direction

    @property
    def current_filter(self) -> Optional[FilterDefinition]:
        return self._filter

    @property
    def filter_inputs(self) -> Dict[str, Any]:
        return dict(self._filter_inputs)

    def _apply_default_sort(self) -> None:
        if self.overrides.default_sort_column:
            self._sort_column = self.overrides.default_sort_column
            self._sort_direction = self.overrides.default_sort_direction
            return
        self._sort_direction = SortDirection.ASCENDING
        key_columns = self.table.primary_key_columns
        if key_columns:
            self._sort_column = key_columns[0].name
            return
        first = self.builder.default_sort_column()
        if first is not None:
            self._sort_column = first.name
            self._logger.warning(
                "No primary key or default sort column for %s; sorting by first column '%s'.",
                self.table.full_name,
                first.name,
                extra={"event": "default_sort_first_column", "table": self.table.full_name},
            )
            return
        self._sort_column = None
        self._logger.error(
            "Cannot determine a default sort for %s: no key, default or columns.",
            self.table.full_name,
            extra={"event": "default_sort_unavailable", "table": self.table.full_name},
        )

    def _apply_default_filter(self) -> None:
        name = self.overrides.default_filter
        if not name:
            return
        definition = self.overrides.get_filter(name)
        if definition is None:
            self._logger.warning(
                "Default filter '%s' is not defined for %s.",
                name,
                self.table.full_name,
                extra={"event": "default_filter_missing", "table": self.table.full_name},
            )
            return
        if definition.needs_input:
            self._logger.info(
                "Default filter '%s' requires input and is not applied on load.",
                name,
                extra={"event": "default_filter_deferred", "table": self.table.full_name},
            )
            return
        self._filter = definition

    def _ensure_idle(self, operation: str) -> None:
        if self._status is ViewStatus.LOADING:
            raise ViewStateBusyError(
                f"Cannot {operation} on {self.table.full_name} while a page is loading.",
                operation=operation,
                table=self.table.full_name,
            )

    @asynccontextmanager
    async def _loading(self, operation: str):
        self._ensure_idle(operation)
        self._status = ViewStatus.LOADING
        try:
            yield
        finally:
            self._status = ViewStatus.IDLE

    def _query_parts(self):
        base = self.builder.base_select()
        where = self.builder.where_fragment(self._filter)
        order_by = self.builder.order_by_fragment(self._sort_column, self._sort_direction)
        params = self.builder.filter_parameters(self._filter, self._filter_inputs)
        return base, where, order_by, params

    async def _load(self, page: int, operation: str) -> PageResult:
        async with self._loading(operation):
            page = max(1, page)
            try:
                base, where, order_by, params = self._query_parts()
                result = await self.paging.get_page(
                    base, where, order_by, params, page, self._page_size,
                    table=self.table.full_name,
                )
                self._total_records = result.total_count
                last_page = self.total_pages
                if result.total_count == 0:
                    self._current_page = 1
                elif page > last_page:
                    self._logger.info(
                        "Requested page %d exceeds last page %d for %s; loading page %d.",
                        page,
                        last_page,
                        self.table.full_name,
                        last_page,
                        extra={"event": "page_clamped_to_last", "table": self.table.full_name},
                    )
                    result = await self.paging.get_page(
                        base, where, order_by, params, last_page, self._page_size,
                        table=self.table.full_name,
                    )
                    self._total_records = result.total_count
                    self._current_page = min(last_page, self.total_pages)
                else:
                    self._current_page = page
            except Exception:
                self._logger.error(
                    "Error loading data for %s",
                    self.table.full_name,
                    extra={"event": "view_load_failed", "table": self.table.full_name},
                )
                self._total_records = 0
                self._current_page = 1
                raise
        return PageResult(result.rows, result.total_count, self._current_page, self._page_size)

    async def go_to_page(self, page: int) -> PageResult:
        """Load a page; out-of-range requests load the last page instead."""
        return await self._load(page, "go_to_page")

    async def refresh(self) -> PageResult:
        return await self._load(self._current_page, "refresh")

    async def next_page(self) -> PageResult:
        return await self._load(self._current_page + 1, "next_page")

    async def previous_page(self) -> PageResult:
        return await self._load(self._current_page - 1, "previous_page")

    async def first_page(self) -> PageResult:
        return await self._load(1, "first_page")

    async def last_page(self) -> PageResult:
        return await self._load(self.total_pages, "last_page")

    async def apply_sort(self, column: Optional[str]) -> PageResult:
        """Sort by a column, toggling direction when it is already the sort column.

        An empty column restores the default sort. Always returns page 1. A
        column the default select leaves out raises QueryBuildError and keeps
        the current sort.
        """
        self._ensure_idle("apply_sort")
        if not column:
            self._apply_default_sort()
            return await self._load(1, "apply_sort")
        self.builder.order_by_fragment(column)
        if self._sort_column is not None and self._sort_column.lower() == column.lower():
            self._sort_direction = self._sort_direction.toggled()
        else:
            self._sort_column = column
            self._sort_direction = SortDirection.ASCENDING
        return await self._load(1, "apply_sort")

    async def apply_filter(
        self,
        filter_definition: Optional[FilterDefinition],
        inputs: Optional[Mapping[str, Any]] = None,
    ) -> PageResult:
        """Apply a filter with its input values and return page 1."""
        self._ensure_idle("apply_filter")
        self._filter = filter_definition
        self._filter_inputs = dict(inputs or {})
        return await self._load(1, "apply_filter")

    async def clear_filter(self) -> PageResult:
        """Remove the current filter and return page 1."""
        self._ensure_idle("clear_filter")
        self._filter = None
        self._filter_inputs = {}
        return await self._load(1, "clear_filter")

    async def page_number_for_row(self, key_values: Mapping[str, Any]) -> int:
        """Return the page on which a row appears under the current sort and filter.

        Returns 1 when the page cannot be determined: missing key values, a row
        outside the current filter, or a failing query.
        """
        key_columns = self.table.primary_key_columns
        if not key_columns or not key_values:
            return 1
        folded = {k.lower(): v for k, v in key_values.items()}
        if any(c.name.lower() not in folded for c in key_columns):
            self._logger.warning(
                "Not all primary key values supplied for %s.",
                self.table.full_name,
                extra={"event": "row_page_missing_key", "table": self.table.full_name},
            )
            return 1

        async with self._loading("page_number_for_row"):
            try:
                base, where, order_by, params = self._query_parts()
                dialect = self.paging.dialect
                params = dict(params)
                predicates = []
                for column in key_columns:
                    name = bind_parameter(
                        params, column.name, unwrap(folded[column.name.lower()]), prefix="TargetPK_"
                    )
                    predicates.append(f"{dialect.quote_identifier(column.name)} = @{name}")
                inner = render_template(base, where=where)
                sql = (
                    "WITH NumberedRows AS ("
                    f"SELECT InnerQuery.*, ROW_NUMBER() OVER (ORDER BY {order_by}) "
                    f"AS {RANK_COLUMN} FROM ({inner}) AS InnerQuery"
                    ") "
                    f"SELECT {RANK_COLUMN} FROM NumberedRows WHERE {' AND '.join(predicates)}"
                )
                async with self.paging.database.get_connection() as conn:
                    row_number = await conn.fetchval(sql, params)
            except Exception as exc:
                self._logger.error(
                    "Error locating row page in %s: %s",
                    self.table.full_name,
                    exc,
                    extra={"event": "row_page_failed", "table": self.table.full_name},
                )
                return 1

        if row_number is None:
            self._logger.warning(
                "Row not found in %s under the current filter.",
                self.table.full_name,
                extra={"event": "row_page_not_found", "table": self.table.full_name},
            )
            return 1
        return max(1, math.ceil(int(row_number) / self._page_size))
