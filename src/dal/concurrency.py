import logging
import re
from typing import Any, Dict, Optional

from common.errors import ConflictKind, QueryBuildError
from dal.dialect import SqlDialect
from dal.param_translation import bind_parameter, parameter_name
from schema.catalog import ColumnMetadata, TableMetadata
from schema.cells import unwrap

module_logger = logging.getLogger(__name__)

_WHERE = re.compile(r"\bWHERE\b", re.IGNORECASE)


class ConcurrencyGuard:
    """Optimistic concurrency check on a table's row-version column."""

    def __init__(
        self,
        table: TableMetadata,
        dialect: SqlDialect,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.table = table
        self.dialect = dialect
        self._logger = logger or module_logger
        self.token_column: Optional[ColumnMetadata] = table.concurrency_token

    @property
    def has_token(self) -> bool:
        return self.token_column is not None

    @property
    def parameter(self) -> Optional[str]:
        """Return the bind name used for the original token value."""
        if self.token_column is None:
            return None
        return f"Original_{parameter_name(self.token_column.name)}"

    def append_check(self, statement: str, params: Dict[str, Any], original_token: Any) -> str:
        """Append `AND <token> = @Original_<token>` to an UPDATE/DELETE.

        The statement must already have a WHERE clause. A missing original
        value skips the check with a warning.
        """
        if self.token_column is None:
            return statement
        if not _WHERE.search(statement):
            raise QueryBuildError(
                "Concurrency check requires a statement with a WHERE clause.",
                operation="concurrency_check",
                table=self.table.full_name,
            )
        value = unwrap(original_token)
        if value is None:
            self._logger.warning(
                "No original %s value supplied for %s; skipping concurrency check.",
                self.token_column.name,
                self.table.full_name,
                extra={
                    "event": "concurrency_check_skipped",
                    "table": self.table.full_name,
                    "column": self.token_column.name,
                },
            )
            return statement
        name = bind_parameter(params, self.token_column.name, value, prefix="Original_")
        column = self.dialect.quote_identifier(self.token_column.name)
        return f"{statement} AND {column} = @{name}"

    def classify_zero_rows(self, row_exists: bool) -> Optional[ConflictKind]:
        """Classify a statement that affected no rows.

        With a token, an existing row was changed by someone else. Without a
        token, an existing row may simply already hold the new values.
        """
        if not row_exists:
            return ConflictKind.DELETED
        if self.has_token:
            return ConflictKind.MODIFIED
        return None
