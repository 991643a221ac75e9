"""Provider-aware classification of driver errors.

Drivers raise a wide variety of exception types. The engine only needs to
know what kind of failure happened (timeout, lost connection, constraint,
bad SQL, ...) and whether retrying could help, so classification looks at
the SQLSTATE where the driver exposes one, then at message fragments and
finally at the exception class. `to_data_access_error` turns the outcome
into the engine's typed exceptions.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Optional

from opentelemetry import trace

from common.config.env import get_env_bool
from common.errors import (
    ConnectivityError,
    DataAccessError,
    DataOperationError,
    QueryTimeoutError,
)

logger = logging.getLogger(__name__)

RETRYABLE_CATEGORIES = frozenset(
    {"timeout", "connectivity", "resource_exhausted", "serialization", "deadlock", "transient"}
)


@dataclass(frozen=True)
class ErrorClassification:
    """Structured provider-aware error classification."""

    category: str
    provider: str
    is_retryable: bool
    retry_after_seconds: Optional[float] = None


@dataclass(frozen=True)
class _Rule:
    category: str
    fragments: tuple[str, ...] = ()
    sqlstate_prefixes: tuple[str, ...] = ()
    sqlstates: frozenset[str] = frozenset()
    providers: frozenset[str] = frozenset()

    def matches(self, provider: str, sqlstate: str, message: str) -> bool:
        if self.providers and provider not in self.providers:
            return False
        if sqlstate and (sqlstate in self.sqlstates or sqlstate.startswith(self.sqlstate_prefixes)):
            return True
        return any(fragment in message for fragment in self.fragments)


# Order matters: the first matching rule wins.
_RULES: tuple[_Rule, ...] = (
    _Rule("timeout", fragments=("timeout", "timed out")),
    _Rule(
        "connectivity",
        sqlstate_prefixes=("08",),
        fragments=(
            "could not connect",
            "connection refused",
            "connection reset",
            "connection is closed",
            "connection failed",
            "network",
            "unable to open database file",
        ),
    ),
    _Rule(
        "auth",
        sqlstate_prefixes=("28",),
        fragments=(
            "permission denied",
            "password authentication failed",
            "access denied",
            "unauthorized",
            "attempt to write a readonly database",
        ),
    ),
    _Rule(
        "integrity",
        sqlstate_prefixes=("23",),
        fragments=("constraint failed", "violates foreign key", "violates unique"),
    ),
    _Rule(
        "syntax",
        sqlstates=frozenset({"42601", "42883", "42P01", "42703"}),
        fragments=("syntax error", "no such column", "no such table", "parse error"),
    ),
    _Rule("unsupported", fragments=("not supported", "unsupported")),
    _Rule(
        "deadlock",
        sqlstates=frozenset({"40P01"}),
        fragments=("deadlock detected",),
        providers=frozenset({"postgres"}),
    ),
    _Rule(
        "serialization",
        sqlstates=frozenset({"40001"}),
        fragments=("serialization failure", "could not serialize"),
        providers=frozenset({"postgres"}),
    ),
    _Rule(
        "transient",
        fragments=("database is locked", "database is busy"),
        providers=frozenset({"sqlite"}),
    ),
    _Rule("resource_exhausted", fragments=("disk full", "disk is full", "out of memory")),
)

# Fallbacks keyed on the exception class when neither SQLSTATE nor message helped.
_ASYNCPG_CLASS_HINTS = (("syntax", "syntax"), ("invalidauthorization", "auth"))
_CONNECTIVITY_CLASS_NAMES = frozenset({"connectionerror", "operationalerror", "oserror"})


def classify_error(provider: str, exc: Exception) -> str:
    """Classify an error into a provider-agnostic category."""
    return classify_error_info(provider, exc).category


def classify_error_info(provider: str, exc: Exception) -> ErrorClassification:
    """Classify an error into a provider-aware category with retryability."""
    provider = (provider or "unknown").lower()
    message = str(exc).lower()
    sqlstate = str(getattr(exc, "sqlstate", "") or "")
    retry_after = _extract_retry_after_seconds(message)

    if isinstance(exc, (TimeoutError, asyncio.TimeoutError)):
        return _classification("timeout", provider, retry_after)
    for rule in _RULES:
        if rule.matches(provider, sqlstate, message):
            return _classification(rule.category, provider, retry_after)
    return _classification(_category_from_class(exc), provider, retry_after)


def _category_from_class(exc: Exception) -> str:
    class_name = type(exc).__name__.lower()
    if type(exc).__module__.lower().startswith("asyncpg"):
        for hint, category in _ASYNCPG_CLASS_HINTS:
            if hint in class_name:
                return category
    if class_name in _CONNECTIVITY_CLASS_NAMES:
        return "connectivity"
    return "unknown"


RECOVERY_HINTS: dict[str, str] = {
    "timeout": "Narrow the filter or raise DAL_STATEMENT_TIMEOUT_SECONDS",
    "connectivity": "Check that the database is reachable and accepting connections",
    "auth": "Check the configured credentials and their grants on the table",
    "integrity": "The change conflicts with a constraint; review the related rows",
    "syntax": "A custom select, filter or child filter references invalid SQL or columns",
    "unsupported": "The target database does not support this statement",
    "deadlock": "Retry the change",
    "serialization": "Retry the change; another transaction touched the same rows",
    "resource_exhausted": "The database ran out of resources; reduce the page size",
    "transient": "Retry after a short delay",
    "unknown": "Inspect the driver error for the root cause",
}


def _record_on_span(info: ErrorClassification, operation: str, hint: str) -> None:
    span = trace.get_current_span()
    if not span.is_recording():
        return
    span.set_attributes(
        {
            "error.classification.category": info.category,
            "error.classification.provider": info.provider,
            "error.classification.operation": operation,
            "error.classification.is_retryable": info.is_retryable,
            "error.classification.recovery_hint": hint,
        }
    )


def emit_classified_error(provider: str, operation: str, exc: Exception) -> ErrorClassification:
    """Classify `exc` and report it on the active span and in the log.

    Reporting is skipped when DAL_CLASSIFIED_ERROR_TELEMETRY is false; the
    classification is returned either way.
    """
    info = classify_error_info(provider, exc)
    if not get_env_bool("DAL_CLASSIFIED_ERROR_TELEMETRY", True):
        return info

    hint = RECOVERY_HINTS.get(info.category, RECOVERY_HINTS["unknown"])
    _record_on_span(info, operation, hint)
    logger.error(
        "dal_error_classified",
        extra={
            "event": "dal_error_classified",
            "provider": info.provider,
            "operation": operation,
            "error_category": info.category,
            "error_type": type(exc).__name__,
            "is_retryable": info.is_retryable,
            "recovery_hint": hint,
        },
    )
    return info


def to_data_access_error(
    provider: str,
    exc: Exception,
    *,
    operation: str,
    table: Optional[str] = None,
) -> DataAccessError:
    """Translate a driver exception into the engine's typed error.

    Errors that are already typed pass through unchanged.
    """
    if isinstance(exc, DataAccessError):
        return exc
    info = emit_classified_error(provider, operation, exc)
    if info.category == "timeout":
        return QueryTimeoutError(provider, operation, None, table=table)
    if info.category in {"connectivity", "auth"}:
        return ConnectivityError(
            f"{provider} {operation} failed to reach the database: {exc}",
            operation=operation,
            table=table,
        )
    target = f" on {table}" if table else ""
    return DataOperationError(
        f"{operation} failed{target}: {exc}", operation=operation, table=table
    )


def _classification(
    category: str, provider: str, retry_after: Optional[float]
) -> ErrorClassification:
    return ErrorClassification(
        category=category,
        provider=provider,
        is_retryable=category in RETRYABLE_CATEGORIES,
        retry_after_seconds=retry_after,
    )


def _extract_retry_after_seconds(message: str) -> Optional[float]:
    match = re.search(r"retry after\s+(\d+(?:\.\d+)?)", message)
    return float(match.group(1)) if match else None
