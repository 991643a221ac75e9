from dataclasses import dataclass, field
from typing import Optional, Tuple

from common.config.env import get_env_float, get_env_int, get_env_list, get_env_str
from dal.util.env import get_provider_env

SUPPORTED_PROVIDERS = {"sqlite", "postgres"}
DEFAULT_CONCURRENCY_TOKEN_TYPES: Tuple[str, ...] = ("rowversion",)


@dataclass(frozen=True)
class PostgresConnectionConfig:
    """Connection settings for a Postgres query target."""

    host: str = "localhost"
    port: int = 5432
    db_name: Optional[str] = None
    user: Optional[str] = None
    password: Optional[str] = None
    pool_min_size: int = 1
    pool_max_size: int = 10

    @classmethod
    def from_env(cls) -> "PostgresConnectionConfig":
        """Load Postgres settings from DB_* and DAL_POOL_* variables."""
        return cls(
            host=get_env_str("DB_HOST", "localhost"),
            port=get_env_int("DB_PORT", 5432),
            db_name=get_env_str("DB_NAME"),
            user=get_env_str("DB_USER"),
            password=get_env_str("DB_PASS"),
            pool_min_size=get_env_int("DAL_POOL_MIN_SIZE", 1),
            pool_max_size=get_env_int("DAL_POOL_MAX_SIZE", 10),
        )


@dataclass(frozen=True)
class EngineConfig:
    """Runtime configuration for the data engine."""

    provider: str = "sqlite"
    sqlite_path: str = ":memory:"
    postgres: PostgresConnectionConfig = field(default_factory=PostgresConnectionConfig)
    statement_timeout_seconds: float = 60.0
    default_page_size: int = 50
    concurrency_token_types: Tuple[str, ...] = DEFAULT_CONCURRENCY_TOKEN_TYPES
    include_schemas: Tuple[str, ...] = ()
    exclude_tables: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.provider not in SUPPORTED_PROVIDERS:
            allowed = ", ".join(sorted(SUPPORTED_PROVIDERS))
            raise ValueError(f"Unsupported provider '{self.provider}'. Allowed: {allowed}")
        if self.default_page_size < 1:
            raise ValueError("default_page_size must be at least 1.")

    @classmethod
    def from_env(cls) -> "EngineConfig":
        """Load engine config from environment variables."""
        provider = get_provider_env(
            "QUERY_TARGET_PROVIDER", default="sqlite", allowed=SUPPORTED_PROVIDERS
        )
        token_types = get_env_list(
            "DAL_CONCURRENCY_TOKEN_TYPES", list(DEFAULT_CONCURRENCY_TOKEN_TYPES)
        )
        return cls(
            provider=provider,
            sqlite_path=get_env_str("SQLITE_DB_PATH", ":memory:"),
            postgres=PostgresConnectionConfig.from_env(),
            statement_timeout_seconds=get_env_float("DAL_STATEMENT_TIMEOUT_SECONDS", 60.0),
            default_page_size=get_env_int("DAL_DEFAULT_PAGE_SIZE", 50),
            concurrency_token_types=tuple(t.lower() for t in token_types),
            include_schemas=tuple(get_env_list("DAL_INCLUDE_SCHEMAS", [])),
            exclude_tables=tuple(get_env_list("DAL_EXCLUDE_TABLES", [])),
        )
