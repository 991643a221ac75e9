"""Canonical error-code taxonomy for data-access flows."""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Bounded canonical error codes for callers and observability."""

    SCHEMA_INTROSPECTION_FAILED = "SCHEMA_INTROSPECTION_FAILED"
    QUERY_BUILD_ERROR = "QUERY_BUILD_ERROR"
    PRECONDITION_FAILED = "PRECONDITION_FAILED"
    CONCURRENCY_CONFLICT = "CONCURRENCY_CONFLICT"
    CONSTRAINT_VIOLATION = "CONSTRAINT_VIOLATION"
    DB_CONNECTION_ERROR = "DB_CONNECTION_ERROR"
    DB_TIMEOUT = "DB_TIMEOUT"
    VIEW_BUSY = "VIEW_BUSY"
    INTERNAL_ERROR = "INTERNAL_ERROR"


_CODE_GROUPS: dict[ErrorCode, str] = {
    ErrorCode.SCHEMA_INTROSPECTION_FAILED: "SCHEMA",
    ErrorCode.QUERY_BUILD_ERROR: "VALIDATION",
    ErrorCode.PRECONDITION_FAILED: "VALIDATION",
    ErrorCode.CONCURRENCY_CONFLICT: "CONFLICT",
    ErrorCode.CONSTRAINT_VIOLATION: "CONFLICT",
    ErrorCode.DB_CONNECTION_ERROR: "DB",
    ErrorCode.DB_TIMEOUT: "DB",
    ErrorCode.VIEW_BUSY: "STATE",
    ErrorCode.INTERNAL_ERROR: "INTERNAL",
}


def parse_error_code(value: Any) -> ErrorCode | None:
    """Parse a string/enum into a known error code."""
    if isinstance(value, ErrorCode):
        return value
    if value is None:
        return None
    normalized = str(value).strip().upper()
    if not normalized:
        return None
    try:
        return ErrorCode(normalized)
    except ValueError:
        return None


def error_code_group(code: str | ErrorCode | None) -> str:
    """Return a coarse group for dashboards and caller dispatch."""
    parsed = parse_error_code(code)
    if parsed is None:
        return "INTERNAL"
    return _CODE_GROUPS.get(parsed, "INTERNAL")
