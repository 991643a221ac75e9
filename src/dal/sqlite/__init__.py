"""SQLite-backed DAL components."""

from .query_target import SqliteQueryTargetDatabase
from .schema_introspector import SqliteSchemaIntrospector

__all__ = [
    "SqliteQueryTargetDatabase",
    "SqliteSchemaIntrospector",
]
