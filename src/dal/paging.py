"""Paged execution of base SELECT templates.

Two strategies produce identical pages for the same inputs:

- OFFSET: the dialect's native skip/take clause in the `{PAGING}` marker.
- RANKING: the filtered inner query wrapped in a CTE that numbers rows with
  `ROW_NUMBER() OVER (ORDER BY ...)` and keeps an inclusive rank range.

Which one runs is decided once per engine by probing the server with the
dialect's minimal offset statement. Any probe failure selects RANKING.
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from common.errors import QueryBuildError
from dal.database import QueryConnection, QueryTargetDatabase
from dal.error_classification import classify_error_info, to_data_access_error
from dal.query_builder import render_template
from schema.cells import RowSet

module_logger = logging.getLogger(__name__)

RANK_COLUMN = "__row_num"

_KEYWORD_CHARS = re.compile(r"[A-Za-z0-9_]")


class PagingStrategy(str, Enum):
    """How a page window is selected on the server."""

    OFFSET = "offset"
    RANKING = "ranking"


@dataclass(frozen=True)
class PageResult:
    """Rows of one page plus the total number of matching rows."""

    rows: RowSet
    total_count: int
    page: int
    page_size: int


def find_top_level_keyword(sql: str, keyword: str) -> int:
    """Return the index of `keyword` outside quotes and parentheses, or -1."""
    upper = sql.upper()
    word = keyword.upper()
    depth = 0
    quote = None
    i = 0
    n = len(sql)
    while i < n:
        ch = sql[i]
        if quote:
            if ch == quote:
                quote = None
            i += 1
            continue
        if ch in ("'", '"', "`"):
            quote = ch
        elif ch == "[":
            quote = "]"
        elif ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
        elif depth == 0 and upper.startswith(word, i):
            before = sql[i - 1] if i > 0 else " "
            after = sql[i + len(word)] if i + len(word) < n else " "
            if not _KEYWORD_CHARS.match(before) and not _KEYWORD_CHARS.match(after):
                return i
        i += 1
    return -1


def clamp_page(page: int, page_size: int) -> tuple[int, int]:
    """Clamp page and page size to at least 1."""
    return max(1, int(page or 1)), max(1, int(page_size or 1))


class PagingEngine:
    """Count and fetch pages of a base SELECT template."""

    def __init__(
        self,
        database: QueryTargetDatabase,
        *,
        strategy: Optional[PagingStrategy] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        """Create an engine; pass `strategy` to skip capability detection."""
        self.database = database
        self.dialect = database.dialect
        self._logger = logger or module_logger
        self._supports_offset: Optional[bool] = (
            None if strategy is None else strategy is PagingStrategy.OFFSET
        )
        self._probe_lock = asyncio.Lock()

    @property
    def supports_offset(self) -> Optional[bool]:
        """Return the detected capability, or None before the first probe."""
        return self._supports_offset

    async def detect_strategy(self, conn: QueryConnection) -> PagingStrategy:
        """Probe offset support once and return the strategy to use."""
        if self._supports_offset is None:
            async with self._probe_lock:
                if self._supports_offset is None:
                    self._supports_offset = await self._probe(conn)
        return PagingStrategy.OFFSET if self._supports_offset else PagingStrategy.RANKING

    async def _probe(self, conn: QueryConnection) -> bool:
        try:
            await conn.fetchval(self.dialect.offset_probe_sql)
        except Exception as exc:
            info = classify_error_info(self.database.provider, exc)
            self._logger.info(
                "Offset paging not supported; using ranking-window paging.",
                extra={
                    "event": "paging_probe_complete",
                    "provider": self.database.provider,
                    "supports_offset": False,
                    "error_category": info.category,
                },
            )
            return False
        self._logger.info(
            "Offset paging supported.",
            extra={
                "event": "paging_probe_complete",
                "provider": self.database.provider,
                "supports_offset": True,
            },
        )
        return True

    def count_query(self, base_select: str, where: Optional[str] = None) -> str:
        """Replace the SELECT list with COUNT(*) and drop ordering and paging."""
        inner = render_template(base_select, where=where)
        from_index = find_top_level_keyword(inner, "FROM")
        if from_index < 0:
            raise QueryBuildError(
                "Base SELECT has no top-level FROM clause.", operation="count_query"
            )
        return f"SELECT COUNT(*) {inner[from_index:]}"

    def paged_query(
        self,
        base_select: str,
        where: Optional[str],
        order_by: str,
        strategy: PagingStrategy,
    ) -> str:
        """Return the paged statement for a strategy; `order_by` is mandatory."""
        if not order_by or not order_by.strip():
            raise QueryBuildError(
                "Paged queries require a non-empty ORDER BY.", operation="paged_query"
            )
        if strategy is PagingStrategy.OFFSET:
            return render_template(
                base_select,
                where=where,
                order_by=order_by,
                paging=self.dialect.offset_paging_clause(),
            )
        inner = render_template(base_select, where=where)
        return (
            "WITH PagedData AS ("
            f"SELECT InnerQuery.*, ROW_NUMBER() OVER (ORDER BY {order_by}) AS {RANK_COLUMN} "
            f"FROM ({inner}) AS InnerQuery"
            ") "
            f"SELECT * FROM PagedData WHERE {RANK_COLUMN} BETWEEN @StartRow AND @EndRow "
            f"ORDER BY {RANK_COLUMN}"
        )

    @staticmethod
    def paging_parameters(
        strategy: PagingStrategy,
        page: int,
        page_size: int,
        params: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Return a copy of `params` plus only the window values the strategy uses."""
        bound = dict(params or {})
        for name in ("PageSize", "Offset", "StartRow", "EndRow"):
            bound.pop(name, None)
        if strategy is PagingStrategy.OFFSET:
            bound["PageSize"] = page_size
            bound["Offset"] = (page - 1) * page_size
        else:
            bound["StartRow"] = (page - 1) * page_size + 1
            bound["EndRow"] = page * page_size
        return bound

    async def count(
        self,
        base_select: str,
        where: Optional[str] = None,
        params: Optional[Mapping[str, Any]] = None,
        *,
        table: Optional[str] = None,
    ) -> int:
        """Return the number of rows matching the filter."""
        sql = self.count_query(base_select, where)
        try:
            async with self.database.get_connection() as conn:
                return int(await conn.fetchval(sql, params) or 0)
        except Exception as exc:
            raise to_data_access_error(
                self.database.provider, exc, operation="count", table=table
            ) from exc

    async def get_page(
        self,
        base_select: str,
        where: Optional[str],
        order_by: str,
        params: Optional[Mapping[str, Any]] = None,
        page: int = 1,
        page_size: int = 50,
        *,
        table: Optional[str] = None,
    ) -> PageResult:
        """Count, then fetch one page; an empty result skips the page query."""
        page, page_size = clamp_page(page, page_size)
        count_sql = self.count_query(base_select, where)
        if not order_by or not order_by.strip():
            raise QueryBuildError(
                "Paged queries require a non-empty ORDER BY.", operation="get_page", table=table
            )
        try:
            async with self.database.get_connection() as conn:
                total = int(await conn.fetchval(count_sql, params) or 0)
                if total == 0:
                    return PageResult(RowSet(), 0, page, page_size)
                strategy = await self.detect_strategy(conn)
                sql = self.paged_query(base_select, where, order_by, strategy)
                bound = self.paging_parameters(strategy, page, page_size, params)
                records, columns = await conn.fetch_with_columns(sql, bound)
        except Exception as exc:
            raise to_data_access_error(
                self.database.provider, exc, operation="get_page", table=table
            ) from exc

        if strategy is PagingStrategy.RANKING:
            columns = [c for c in columns if c.lower() != RANK_COLUMN]
            records = [
                {k: v for k, v in record.items() if k.lower() != RANK_COLUMN} for record in records
            ]
        return PageResult(RowSet.from_records(records, columns), total, page, page_size)
