"""Unit tests for query target and introspector selection."""

import logging

import pytest

from dal import factory
from dal.config import EngineConfig
from dal.factory import create_query_target, create_schema_introspector
from dal.postgres import PostgresQueryTargetDatabase, PostgresSchemaIntrospector
from dal.sqlite import SqliteQueryTargetDatabase, SqliteSchemaIntrospector


def test_create_sqlite_query_target(caplog):
    """The SQLite provider opens the configured file."""
    with caplog.at_level(logging.INFO, logger="dal.factory"):
        database = create_query_target(EngineConfig(provider="sqlite", sqlite_path="/tmp/x.db"))

    assert isinstance(database, SqliteQueryTargetDatabase)
    assert database.db_path == "/tmp/x.db"
    assert any(getattr(r, "event", None) == "query_target_created" for r in caplog.records)


def test_create_postgres_query_target():
    """The Postgres provider builds an uninitialized pool-backed target."""
    database = create_query_target(EngineConfig(provider="postgres"))

    assert isinstance(database, PostgresQueryTargetDatabase)
    assert database.provider == "postgres"


def test_create_query_target_defaults_to_environment(monkeypatch):
    """Without a config the environment selects the provider."""
    monkeypatch.setenv("QUERY_TARGET_PROVIDER", "postgresql")

    assert isinstance(create_query_target(), PostgresQueryTargetDatabase)


def test_unregistered_provider_raises(monkeypatch):
    """A provider without an implementation is reported with the allowed list."""
    monkeypatch.setattr(factory, "QUERY_TARGET_PROVIDERS", {"postgres": lambda c: None})
    monkeypatch.setattr(factory, "_register_defaults", lambda: None)

    with pytest.raises(ValueError, match="Unsupported query target provider 'sqlite'"):
        create_query_target(EngineConfig(provider="sqlite"))


@pytest.mark.parametrize(
    "database,expected",
    [
        (SqliteQueryTargetDatabase(":memory:"), SqliteSchemaIntrospector),
        (PostgresQueryTargetDatabase(EngineConfig().postgres), PostgresSchemaIntrospector),
    ],
)
def test_create_schema_introspector_matches_provider(database, expected):
    """Introspectors follow the query target's provider."""
    assert isinstance(create_schema_introspector(database), expected)


def test_create_schema_introspector_unknown_provider():
    """Targets from unknown providers have no introspector."""

    class _Target(SqliteQueryTargetDatabase):
        provider = "oracle"

    with pytest.raises(ValueError, match="No schema introspector for provider 'oracle'"):
        create_schema_introspector(_Target(":memory:"))
