import datetime
import logging
import sqlite3
import uuid
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

import aiosqlite

from common.errors import ConnectivityError
from dal.database import Params, QueryConnection, QueryTargetDatabase
from dal.dialect import SqliteDialect

logger = logging.getLogger(__name__)

MEMORY_PATH = ":memory:"


class SqliteQueryTargetDatabase(QueryTargetDatabase):
    """SQLite query-target database opening one connection per operation.

    An in-memory path is backed by a named shared-cache database kept alive by a
    holder connection between `init()` and `close()`, so every borrowed
    connection sees the same data.
    """

    provider = "sqlite"

    def __init__(
        self, db_path: Optional[str] = None, statement_timeout_seconds: Optional[float] = None
    ) -> None:
        self.dialect = SqliteDialect()
        self._db_path = db_path or MEMORY_PATH
        self._timeout_seconds = statement_timeout_seconds
        self._uri = False
        self._holder: Optional[aiosqlite.Connection] = None

    @property
    def db_path(self) -> str:
        return self._db_path

    async def init(self) -> None:
        """Prepare the database path; keeps in-memory databases alive."""
        if self._db_path == MEMORY_PATH and self._holder is None:
            self._db_path = f"file:dal-{uuid.uuid4().hex}?mode=memory&cache=shared"
            self._uri = True
            self._holder = await self._connect()

    async def close(self) -> None:
        """Close the in-memory holder connection, if any."""
        if self._holder is not None:
            await self._holder.close()
            self._holder = None

    async def _connect(self) -> aiosqlite.Connection:
        try:
            conn = await aiosqlite.connect(self._db_path, uri=self._uri, isolation_level=None)
        except (sqlite3.Error, OSError) as exc:
            raise ConnectivityError(
                f"Could not open SQLite database '{self._db_path}': {exc}", operation="connect"
            ) from exc
        conn.row_factory = sqlite3.Row
        await conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @asynccontextmanager
    async def get_connection(self):
        """Yield a SQLite connection wrapper."""
        conn = await self._connect()
        try:
            yield _SqliteConnection(conn, self.dialect, self._timeout_seconds)
        finally:
            await conn.close()


class _SqliteConnection(QueryConnection):
    """Adapter providing the engine's connection helpers over aiosqlite."""

    provider = "sqlite"

    def __init__(
        self, conn: aiosqlite.Connection, dialect: SqliteDialect, timeout_seconds: Optional[float]
    ) -> None:
        super().__init__(dialect, timeout_seconds)
        self._conn = conn

    def _adapt_param(self, value: Any) -> Any:
        if isinstance(value, Decimal):
            return str(value)
        if isinstance(value, (datetime.datetime, datetime.date, datetime.time)):
            return value.isoformat()
        if isinstance(value, uuid.UUID):
            return str(value)
        return value

    async def execute(self, sql: str, params: Params = None) -> int:
        sql, bound = self._translate(sql, params)

        async def _run():
            cursor = await self._conn.execute(sql, bound)
            return cursor.rowcount

        return await self._run("execute", sql, len(bound), _run)

    async def fetch_with_columns(
        self, sql: str, params: Params = None
    ) -> Tuple[List[Dict[str, Any]], List[str]]:
        sql, bound = self._translate(sql, params)

        async def _run():
            cursor = await self._conn.execute(sql, bound)
            rows = await cursor.fetchall()
            columns = [entry[0] for entry in cursor.description or []]
            return [dict(row) for row in rows], columns

        return await self._run("fetch", sql, len(bound), _run)

    async def cancel(self) -> None:
        """Best-effort cancellation for in-flight queries."""
        interrupt = getattr(self._conn, "interrupt", None)
        if callable(interrupt):
            await interrupt()
