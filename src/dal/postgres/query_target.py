import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional, Tuple

import asyncpg

from common.errors import ConnectivityError
from dal.config import PostgresConnectionConfig
from dal.database import Params, QueryConnection, QueryTargetDatabase
from dal.dialect import PostgresDialect

logger = logging.getLogger(__name__)


class PostgresQueryTargetDatabase(QueryTargetDatabase):
    """Postgres query-target database backed by an asyncpg pool."""

    provider = "postgres"

    def __init__(
        self,
        config: PostgresConnectionConfig,
        statement_timeout_seconds: Optional[float] = None,
    ) -> None:
        self.dialect = PostgresDialect()
        self._config = config
        self._timeout_seconds = statement_timeout_seconds
        self._pool: Optional[asyncpg.Pool] = None

    async def init(self) -> None:
        """Create the connection pool."""
        missing = [
            name
            for name, value in {
                "DB_HOST": self._config.host,
                "DB_NAME": self._config.db_name,
                "DB_USER": self._config.user,
            }.items()
            if not value
        ]
        if missing:
            missing_list = ", ".join(missing)
            raise ValueError(
                f"Postgres query target missing required config: {missing_list}. "
                "Set DB_HOST, DB_NAME, DB_USER, and DB_PASS."
            )
        if self._pool is not None:
            return
        try:
            self._pool = await asyncpg.create_pool(
                host=self._config.host,
                port=self._config.port,
                database=self._config.db_name,
                user=self._config.user,
                password=self._config.password,
                min_size=self._config.pool_min_size,
                max_size=self._config.pool_max_size,
                command_timeout=self._timeout_seconds,
                server_settings={"application_name": "tablegrid_engine"},
            )
        except (OSError, asyncpg.PostgresError) as exc:
            raise ConnectivityError(
                f"Could not create Postgres pool for {self._config.host}:{self._config.port}: "
                f"{exc}",
                operation="connect",
            ) from exc
        logger.info(
            "Postgres pool ready",
            extra={
                "event": "postgres_pool_ready",
                "host": self._config.host,
                "pool_max_size": self._config.pool_max_size,
            },
        )

    async def close(self) -> None:
        """Close the connection pool."""
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    @asynccontextmanager
    async def get_connection(self):
        """Borrow one pooled connection for the duration of an operation."""
        if self._pool is None:
            raise ConnectivityError(
                "Postgres pool is not initialized; call init() first.", operation="connect"
            )
        try:
            conn = await self._pool.acquire()
        except (OSError, asyncpg.PostgresError, asyncpg.InterfaceError) as exc:
            raise ConnectivityError(
                f"Could not acquire a Postgres connection: {exc}", operation="connect"
            ) from exc
        try:
            yield _PostgresConnection(conn, self.dialect, self._timeout_seconds)
        finally:
            await self._pool.release(conn)


class _PostgresConnection(QueryConnection):
    """Engine connection helpers over an asyncpg connection."""

    provider = "postgres"

    def __init__(
        self, conn: Any, dialect: PostgresDialect, timeout_seconds: Optional[float]
    ) -> None:
        super().__init__(dialect, timeout_seconds)
        self._conn = conn

    async def execute(self, sql: str, params: Params = None) -> int:
        sql, bound = self._translate(sql, params)

        async def _run():
            status = await self._conn.execute(sql, *bound)
            return parse_command_status(status)

        return await self._run("execute", sql, len(bound), _run)

    async def fetch_with_columns(
        self, sql: str, params: Params = None
    ) -> Tuple[List[Dict[str, Any]], List[str]]:
        sql, bound = self._translate(sql, params)

        async def _run():
            statement = await self._conn.prepare(sql)
            columns = [attr.name for attr in statement.get_attributes()]
            rows = await statement.fetch(*bound)
            return [dict(row) for row in rows], columns

        return await self._run("fetch", sql, len(bound), _run)


def parse_command_status(status: str) -> int:
    """Return the affected row count from an asyncpg status such as `UPDATE 3`."""
    parts = (status or "").split()
    if parts and parts[-1].isdigit():
        return int(parts[-1])
    return 0
