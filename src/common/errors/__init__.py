"""Common error taxonomy helpers."""

from common.errors.data_access import (
    ConcurrencyConflict,
    ConflictKind,
    ConnectivityError,
    ConstraintViolation,
    DataAccessError,
    DataOperationError,
    PreconditionError,
    QueryBuildError,
    QueryTimeoutError,
    SchemaIntrospectionError,
    ViewStateBusyError,
)
from common.errors.error_codes import ErrorCode, error_code_group, parse_error_code

__all__ = [
    "ConcurrencyConflict",
    "ConflictKind",
    "ConnectivityError",
    "ConstraintViolation",
    "DataAccessError",
    "DataOperationError",
    "ErrorCode",
    "PreconditionError",
    "QueryBuildError",
    "QueryTimeoutError",
    "SchemaIntrospectionError",
    "ViewStateBusyError",
    "error_code_group",
    "parse_error_code",
]
