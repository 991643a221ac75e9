"""Provider selection for query targets and schema introspectors.

Implementations are registered lazily on first use so importing this module
never pulls in a driver that is not installed for the configured provider.

Canonical Provider IDs:
    - "sqlite": aiosqlite-backed query target
    - "postgres": asyncpg-pool-backed query target

Example:
    >>> from dal.config import EngineConfig
    >>> database = create_query_target(EngineConfig(provider="sqlite"))
"""

import logging
from typing import Callable, Optional, Sequence

from dal.config import DEFAULT_CONCURRENCY_TOKEN_TYPES, EngineConfig
from dal.database import QueryTargetDatabase
from dal.schema_introspector import SchemaIntrospector

logger = logging.getLogger(__name__)

# =============================================================================
# Provider Registries
# =============================================================================

QUERY_TARGET_PROVIDERS: "dict[str, Callable[[EngineConfig], QueryTargetDatabase]]" = {}
SCHEMA_INTROSPECTOR_PROVIDERS: "dict[str, type[SchemaIntrospector]]" = {}


def _register_defaults() -> None:
    if "sqlite" not in QUERY_TARGET_PROVIDERS:
        from dal.sqlite import SqliteQueryTargetDatabase

        QUERY_TARGET_PROVIDERS["sqlite"] = lambda config: SqliteQueryTargetDatabase(
            config.sqlite_path,
            statement_timeout_seconds=config.statement_timeout_seconds,
        )
    if "postgres" not in QUERY_TARGET_PROVIDERS:
        from dal.postgres import PostgresQueryTargetDatabase

        QUERY_TARGET_PROVIDERS["postgres"] = lambda config: PostgresQueryTargetDatabase(
            config.postgres,
            statement_timeout_seconds=config.statement_timeout_seconds,
        )
    if "sqlite" not in SCHEMA_INTROSPECTOR_PROVIDERS:
        from dal.sqlite import SqliteSchemaIntrospector

        SCHEMA_INTROSPECTOR_PROVIDERS["sqlite"] = SqliteSchemaIntrospector
    if "postgres" not in SCHEMA_INTROSPECTOR_PROVIDERS:
        from dal.postgres import PostgresSchemaIntrospector

        SCHEMA_INTROSPECTOR_PROVIDERS["postgres"] = PostgresSchemaIntrospector


def create_query_target(config: Optional[EngineConfig] = None) -> QueryTargetDatabase:
    """Create an uninitialized query target for the configured provider.

    Args:
        config: Engine configuration; loaded from the environment when omitted.

    Returns:
        A QueryTargetDatabase; call `init()` before borrowing connections.

    Raises:
        ValueError: If the provider has no registered implementation.
    """
    config = config or EngineConfig.from_env()
    _register_defaults()
    factory = QUERY_TARGET_PROVIDERS.get(config.provider)
    if factory is None:
        allowed = ", ".join(sorted(QUERY_TARGET_PROVIDERS))
        raise ValueError(
            f"Unsupported query target provider '{config.provider}'. Allowed: {allowed}"
        )
    logger.info(
        "Creating query target",
        extra={"event": "query_target_created", "provider": config.provider},
    )
    return factory(config)


def create_schema_introspector(
    database: QueryTargetDatabase,
    concurrency_token_types: Sequence[str] = DEFAULT_CONCURRENCY_TOKEN_TYPES,
    logger: Optional[logging.Logger] = None,
) -> SchemaIntrospector:
    """Create the schema introspector matching a query target's provider."""
    _register_defaults()
    introspector_cls = SCHEMA_INTROSPECTOR_PROVIDERS.get(database.provider)
    if introspector_cls is None:
        allowed = ", ".join(sorted(SCHEMA_INTROSPECTOR_PROVIDERS))
        raise ValueError(
            f"No schema introspector for provider '{database.provider}'. Allowed: {allowed}"
        )
    return introspector_cls(database, concurrency_token_types, logger=logger)
