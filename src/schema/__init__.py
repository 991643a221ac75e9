from .catalog import (
    ColumnMetadata,
    ForeignKeyMetadata,
    PrimaryKeyMetadata,
    SchemaCatalog,
    TableMetadata,
)
from .cells import Cell, CellKind, Row, RowSet
from .overrides import (
    ORDER_BY_MARKER,
    PAGING_MARKER,
    WHERE_MARKER,
    FilterDefinition,
    FilterInput,
    LookupDefinition,
    RelatedChildDefinition,
    SortDirection,
    TableOverrides,
)

__all__ = [
    "Cell",
    "CellKind",
    "ColumnMetadata",
    "FilterDefinition",
    "FilterInput",
    "ForeignKeyMetadata",
    "LookupDefinition",
    "ORDER_BY_MARKER",
    "PAGING_MARKER",
    "PrimaryKeyMetadata",
    "RelatedChildDefinition",
    "Row",
    "RowSet",
    "SchemaCatalog",
    "SortDirection",
    "TableMetadata",
    "TableOverrides",
    "WHERE_MARKER",
]
