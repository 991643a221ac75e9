"""Query-target abstractions shared by the SQLite and Postgres backends.

SQL reaching a connection always uses `@Name` markers with a mapping of values;
each backend translates them into its driver's placeholder style right before
execution. Driver exceptions propagate unchanged so callers can classify them
with table and operation context; only connection acquisition failures are
raised as ConnectivityError here.
"""

import logging
from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple, TypeVar

from dal.dialect import SqlDialect
from dal.param_translation import translate_named_params
from dal.tracing import trace_query_operation
from dal.util.timeouts import run_with_timeout

logger = logging.getLogger(__name__)

T = TypeVar("T")
Params = Optional[Mapping[str, Any]]


class QueryConnection(ABC):
    """Connection borrowed for the duration of one engine operation."""

    provider: str = "unknown"

    def __init__(self, dialect: SqlDialect, timeout_seconds: Optional[float] = None) -> None:
        self.dialect = dialect
        self._timeout_seconds = timeout_seconds

    def _translate(self, sql: str, params: Params) -> Tuple[str, List[Any]]:
        sql, bound = translate_named_params(sql, params or {}, self.dialect.param_style)
        return sql, [self._adapt_param(value) for value in bound]

    def _adapt_param(self, value: Any) -> Any:
        return value

    async def _run(
        self, operation_name: str, sql: str, params_count: int, run: Callable[[], Awaitable[T]]
    ) -> T:
        return await trace_query_operation(
            f"dal.query.{operation_name}",
            provider=self.provider,
            sql=sql,
            param_count=params_count,
            operation=run_with_timeout(
                run,
                self._timeout_seconds,
                cancel=self.cancel,
                provider=self.provider,
                operation_name=operation_name,
            ),
        )

    @abstractmethod
    async def execute(self, sql: str, params: Params = None) -> int:
        """Execute a statement and return the number of affected rows."""

    @abstractmethod
    async def fetch_with_columns(
        self, sql: str, params: Params = None
    ) -> Tuple[List[Dict[str, Any]], List[str]]:
        """Fetch rows along with the result's ordered column names."""

    async def fetch(self, sql: str, params: Params = None) -> List[Dict[str, Any]]:
        """Fetch all rows as dicts."""
        rows, _ = await self.fetch_with_columns(sql, params)
        return rows

    async def fetchrow(self, sql: str, params: Params = None) -> Optional[Dict[str, Any]]:
        """Fetch the first row or None."""
        rows = await self.fetch(sql, params)
        return rows[0] if rows else None

    async def fetchval(self, sql: str, params: Params = None) -> Any:
        """Fetch the first column of the first row or None."""
        row = await self.fetchrow(sql, params)
        if row is None:
            return None
        return next(iter(row.values()))

    async def cancel(self) -> None:
        """Best-effort cancellation for in-flight statements."""
        return None


class QueryTargetDatabase(ABC):
    """A configured database the engine reads and writes."""

    provider: str = "unknown"
    dialect: SqlDialect

    @abstractmethod
    async def init(self) -> None:
        """Open pools or shared resources."""

    @abstractmethod
    async def close(self) -> None:
        """Release pools or shared resources."""

    @abstractmethod
    def get_connection(self) -> AbstractAsyncContextManager[QueryConnection]:
        """Borrow one connection for a single operation."""
