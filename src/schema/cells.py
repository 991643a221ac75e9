"""Tagged cell values and row containers returned by the data layer."""

from __future__ import annotations

import datetime
from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterator, List, Sequence, Tuple


class CellKind(str, Enum):
    """Closed set of value kinds a cell may carry."""

    NULL = "null"
    INTEGER = "integer"
    FLOAT = "float"
    DECIMAL = "decimal"
    STRING = "string"
    BOOLEAN = "boolean"
    DATETIME = "datetime"
    BYTES = "bytes"


@dataclass(frozen=True)
class Cell:
    """A single typed value."""

    kind: CellKind
    value: Any = None

    @classmethod
    def of(cls, value: Any) -> "Cell":
        """Tag a raw driver or caller value."""
        if isinstance(value, Cell):
            return value
        if value is None:
            return cls(CellKind.NULL, None)
        # bool is a subclass of int
        if isinstance(value, bool):
            return cls(CellKind.BOOLEAN, value)
        if isinstance(value, int):
            return cls(CellKind.INTEGER, value)
        if isinstance(value, float):
            return cls(CellKind.FLOAT, value)
        if isinstance(value, Decimal):
            return cls(CellKind.DECIMAL, value)
        if isinstance(value, str):
            return cls(CellKind.STRING, value)
        if isinstance(value, (datetime.datetime, datetime.date, datetime.time)):
            return cls(CellKind.DATETIME, value)
        if isinstance(value, (bytes, bytearray, memoryview)):
            return cls(CellKind.BYTES, bytes(value))
        return cls(CellKind.STRING, str(value))

    @property
    def is_null(self) -> bool:
        return self.kind is CellKind.NULL


def unwrap(value: Any) -> Any:
    """Return the raw value of a Cell, or the value itself."""
    if isinstance(value, Cell):
        return value.value
    return value


class Row(Mapping):
    """Ordered, read-only mapping of column name to Cell."""

    __slots__ = ("_cells",)

    def __init__(self, cells: Sequence[Tuple[str, Cell]]) -> None:
        self._cells: Dict[str, Cell] = dict(cells)

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "Row":
        """Build a row from driver output, tagging every value."""
        return cls([(name, Cell.of(value)) for name, value in values.items()])

    def __getitem__(self, name: str) -> Cell:
        return self._cells[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._cells)

    def __len__(self) -> int:
        return len(self._cells)

    def __repr__(self) -> str:
        return f"Row({self.to_dict()!r})"

    def value(self, name: str) -> Any:
        """Return the raw value of a column, matching the name case-insensitively."""
        if name in self._cells:
            return self._cells[name].value
        wanted = name.lower()
        for key, cell in self._cells.items():
            if key.lower() == wanted:
                return cell.value
        raise KeyError(name)

    def to_dict(self) -> Dict[str, Any]:
        """Return raw values keyed by column name."""
        return {name: cell.value for name, cell in self._cells.items()}


@dataclass(frozen=True)
class RowSet:
    """Ordered column names plus rows."""

    columns: Tuple[str, ...] = ()
    rows: Tuple[Row, ...] = ()

    @classmethod
    def from_records(
        cls, records: Sequence[Mapping[str, Any]], columns: Sequence[str] = ()
    ) -> "RowSet":
        """Build a row set from dict-like driver rows."""
        names = tuple(columns) or (tuple(records[0].keys()) if records else ())
        return cls(columns=names, rows=tuple(Row.from_mapping(r) for r in records))

    def __len__(self) -> int:
        return len(self.rows)

    def __iter__(self) -> Iterator[Row]:
        return iter(self.rows)

    def to_dicts(self) -> List[Dict[str, Any]]:
        """Return rows as plain dicts."""
        return [row.to_dict() for row in self.rows]
