"""Facade tying a query target, its catalog snapshot and the per-table helpers together."""

import logging
from typing import Optional

from common.errors import PreconditionError
from dal.config import EngineConfig
from dal.database import QueryTargetDatabase
from dal.factory import create_query_target, create_schema_introspector
from dal.paging import PagingEngine
from dal.query_builder import QueryBuilder
from dal.record_mutator import RecordMutator
from dal.related_data import RelatedDataReader
from dal.view_state import ViewState
from schema.catalog import SchemaCatalog, TableMetadata
from schema.overrides import TableOverrides

module_logger = logging.getLogger(__name__)


class DataEngine:
    """Entry point for browsing and mutating the tables of one database.

    The catalog is an immutable snapshot; `refresh()` replaces it wholesale.
    Objects created from an older snapshot keep working against the metadata
    they were built with.
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        database: Optional[QueryTargetDatabase] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.config = config or EngineConfig.from_env()
        self.database = database or create_query_target(self.config)
        self._logger = logger or module_logger
        self._catalog: Optional[SchemaCatalog] = None
        self._paging: Optional[PagingEngine] = None

    async def __aenter__(self) -> "DataEngine":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @property
    def catalog(self) -> SchemaCatalog:
        if self._catalog is None:
            raise PreconditionError(
                "The engine is not connected; call connect() first.", operation="catalog"
            )
        return self._catalog

    @property
    def paging(self) -> PagingEngine:
        if self._paging is None:
            raise PreconditionError(
                "The engine is not connected; call connect() first.", operation="paging"
            )
        return self._paging

    async def connect(self) -> SchemaCatalog:
        """Open the query target, reset paging capability and load the catalog."""
        await self.database.init()
        self._paging = PagingEngine(self.database, logger=self._logger)
        return await self.refresh()

    async def refresh(self) -> SchemaCatalog:
        """Re-run introspection and replace the catalog snapshot."""
        introspector = create_schema_introspector(
            self.database, self.config.concurrency_token_types, logger=self._logger
        )
        catalog = await introspector.discover()
        if self.config.include_schemas or self.config.exclude_tables:
            catalog = catalog.filtered(self.config.include_schemas, self.config.exclude_tables)
        self._catalog = catalog
        return catalog

    async def test_connection(self) -> bool:
        """Return True when a trivial statement succeeds on the target."""
        try:
            async with self.database.get_connection() as conn:
                await conn.fetchval("SELECT 1")
        except Exception as exc:
            self._logger.warning(
                "Connection test failed: %s",
                exc,
                extra={"event": "connection_test_failed", "provider": self.database.provider},
            )
            return False
        return True

    def table(self, qualified_name: str) -> TableMetadata:
        """Resolve `schema.table` (or a bare name in the default schema)."""
        found = self.catalog.find(qualified_name, self.database.dialect.default_schema)
        if found is None:
            raise PreconditionError(
                f"Table '{qualified_name}' is not in the catalog.",
                operation="table",
                table=qualified_name,
            )
        return found

    def query_builder(
        self, qualified_name: str, overrides: Optional[TableOverrides] = None
    ) -> QueryBuilder:
        return QueryBuilder(
            self.table(qualified_name), self.database.dialect, overrides, logger=self._logger
        )

    def open_view(
        self,
        qualified_name: str,
        overrides: Optional[TableOverrides] = None,
        page_size: Optional[int] = None,
    ) -> ViewState:
        """Create a browsing session; call `go_to_page(1)` to load data."""
        return ViewState(
            self.table(qualified_name),
            self.paging,
            overrides,
            page_size=page_size or self.config.default_page_size,
            logger=self._logger,
        )

    def mutator(self, qualified_name: str) -> RecordMutator:
        return RecordMutator(self.database, self.table(qualified_name), logger=self._logger)

    def related_reader(self, qualified_name: str) -> RelatedDataReader:
        return RelatedDataReader(
            self.database, self.catalog, self.table(qualified_name), logger=self._logger
        )

    async def close(self) -> None:
        """Release the query target's resources."""
        await self.database.close()
        self._paging = None
