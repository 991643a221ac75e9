"""Typed exceptions surfaced by the data-access engine.

Every error carries the operation it interrupted and, where known, the table
it concerned, so callers can render context without parsing messages.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from common.errors.error_codes import ErrorCode, error_code_group


class DataAccessError(Exception):
    """Base class for every error raised by the engine."""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(
        self,
        message: str,
        *,
        operation: Optional[str] = None,
        table: Optional[str] = None,
    ) -> None:
        """Attach operation and table context to the message."""
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.table = table

    def to_metadata(self) -> dict:
        """Serialize the error context for logs and response payloads."""
        return {
            "code": self.code.value,
            "error_group": error_code_group(self.code),
            "error_type": self.__class__.__name__,
            "operation": self.operation,
            "table": self.table,
            "message": self.message,
        }


class SchemaIntrospectionError(DataAccessError):
    """Metadata retrieval failed; no catalog was published."""

    code = ErrorCode.SCHEMA_INTROSPECTION_FAILED

    def __init__(self, message: str, *, phase: Optional[str] = None, **kwargs) -> None:
        """Record the introspection phase that failed."""
        super().__init__(message, **kwargs)
        self.phase = phase


class QueryBuildError(DataAccessError):
    """SQL text could not be produced from the available metadata or template."""

    code = ErrorCode.QUERY_BUILD_ERROR


class PreconditionError(DataAccessError):
    """The caller asked for an operation the table or inputs cannot support."""

    code = ErrorCode.PRECONDITION_FAILED


class ConflictKind(str, Enum):
    """Outcome of an optimistic concurrency check that lost."""

    MODIFIED = "modified"
    DELETED = "deleted"


class ConcurrencyConflict(DataAccessError):
    """The row changed or disappeared since the caller last read it."""

    code = ErrorCode.CONCURRENCY_CONFLICT

    def __init__(self, message: str, *, kind: ConflictKind, **kwargs) -> None:
        """Record whether the row was modified or deleted by someone else."""
        super().__init__(message, **kwargs)
        self.kind = kind

    def to_metadata(self) -> dict:
        """Include the conflict kind so callers can choose reload or discard."""
        metadata = super().to_metadata()
        metadata["conflict_kind"] = self.kind.value
        return metadata


class ConstraintViolation(DataAccessError):
    """Referential integrity blocked the operation."""

    code = ErrorCode.CONSTRAINT_VIOLATION


class ConnectivityError(DataAccessError):
    """Transport, authentication or connection acquisition failed."""

    code = ErrorCode.DB_CONNECTION_ERROR


class QueryTimeoutError(ConnectivityError, TimeoutError):
    """A statement exceeded the configured statement timeout."""

    code = ErrorCode.DB_TIMEOUT

    def __init__(
        self, provider: str, operation_name: str, timeout_seconds: Optional[float], **kwargs
    ) -> None:
        """Initialize timeout details with provider/operation context."""
        self.provider = provider
        self.timeout_seconds = timeout_seconds
        message = f"{provider} {operation_name} timed out."
        if isinstance(timeout_seconds, (int, float)):
            message = f"{provider} {operation_name} timed out after {float(timeout_seconds):g}s."
        kwargs.setdefault("operation", operation_name)
        super().__init__(message, **kwargs)


class DataOperationError(DataAccessError):
    """Any other failure, wrapped with the operation that raised it."""

    code = ErrorCode.INTERNAL_ERROR


class ViewStateBusyError(DataAccessError):
    """A view operation was attempted while a page fetch was in flight."""

    code = ErrorCode.VIEW_BUSY
