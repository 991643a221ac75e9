"""Provider name handling for QUERY_TARGET_PROVIDER.

Users may spell a provider several ways; the engine only ever sees the
canonical lowercase id:

    postgres  <-  postgres, postgresql, pg
    sqlite    <-  sqlite, sqlite3

Example:
    >>> normalize_provider(" PostgreSQL ")
    'postgres'
"""

from typing import Collection

from common.config.env import get_env_str

PROVIDER_ALIASES: dict[str, str] = {
    alias: canonical
    for canonical, aliases in (
        ("postgres", ("postgres", "postgresql", "pg")),
        ("sqlite", ("sqlite", "sqlite3")),
    )
    for alias in aliases
}


def normalize_provider(value: str) -> str:
    """Map an alias to its canonical id; unknown names come back cleaned only."""
    key = value.strip().lower()
    return PROVIDER_ALIASES.get(key, key)


def get_provider_env(var_name: str, default: str, allowed: Collection[str]) -> str:
    """Return the canonical provider named by `var_name`, or `default` when unset.

    Raises:
        ValueError: The name does not resolve to one of `allowed`.
    """
    raw = get_env_str(var_name)
    if raw is None:
        return default

    provider = normalize_provider(raw)
    if provider in allowed:
        return provider
    raise ValueError(
        f"Invalid provider for {var_name}: '{raw}'. "
        f"Allowed values: {', '.join(sorted(allowed))}"
    )
