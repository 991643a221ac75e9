"""Per-table configuration consumed by the query layer.

These objects come from a trusted configuration source. Predicate text in
`FilterDefinition.where_clause` and `RelatedChildDefinition.child_filter` is
inserted into generated SQL verbatim and must never carry end-user input;
user-supplied values travel only through the parameters a filter declares in
`requires_input`.
"""

from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, Field

WHERE_MARKER = "{WHERE}"
ORDER_BY_MARKER = "{ORDERBY}"
PAGING_MARKER = "{PAGING}"


class SortDirection(str, Enum):
    """Sort direction owned by the data layer."""

    ASCENDING = "ASC"
    DESCENDING = "DESC"

    def toggled(self) -> "SortDirection":
        """Return the opposite direction."""
        if self is SortDirection.ASCENDING:
            return SortDirection.DESCENDING
        return SortDirection.ASCENDING


class FilterInput(BaseModel):
    """One caller-supplied value a filter needs, e.g. `CustomerId:Customers`."""

    name: str
    lookup_type: Optional[str] = None

    model_config = {"frozen": True}


class FilterDefinition(BaseModel):
    """Named predicate that can be applied to a table view."""

    name: str
    label: Optional[str] = None
    where_clause: str
    requires_input: Optional[str] = None

    model_config = {"frozen": True}

    @property
    def inputs(self) -> List[FilterInput]:
        """Parse `requires_input` (`Name[:LookupType][, ...]`) into inputs."""
        if not self.requires_input:
            return []
        parsed = []
        for entry in self.requires_input.split(","):
            entry = entry.strip()
            if not entry:
                continue
            name, _, lookup = entry.partition(":")
            name = name.strip().lstrip("@")
            if name:
                parsed.append(FilterInput(name=name, lookup_type=lookup.strip() or None))
        return parsed

    @property
    def needs_input(self) -> bool:
        """Return True when the filter cannot run without caller values."""
        return bool(self.inputs)


class RelatedChildDefinition(BaseModel):
    """Child table shown alongside a parent row, joined by one FK column."""

    name: str
    label: Optional[str] = None
    child_table: str
    child_fk_column: str
    parent_key_column: Optional[str] = None
    child_filter: Optional[str] = None

    model_config = {"frozen": True}


class LookupDefinition(BaseModel):
    """Display/value source for a foreign-key column."""

    column: str
    referenced_table: str
    display_column: str
    value_column: Optional[str] = None

    model_config = {"frozen": True}


class TableOverrides(BaseModel):
    """Optional per-table customisations of the generated queries."""

    custom_select: Optional[str] = None
    default_sort_column: Optional[str] = None
    default_sort_direction: SortDirection = SortDirection.ASCENDING
    default_filter: Optional[str] = None
    filters: Tuple[FilterDefinition, ...] = Field(default_factory=tuple)
    related_children: Tuple[RelatedChildDefinition, ...] = Field(default_factory=tuple)
    lookups: Tuple[LookupDefinition, ...] = Field(default_factory=tuple)

    model_config = {"frozen": True}

    def get_filter(self, name: str) -> Optional[FilterDefinition]:
        """Return a filter by case-insensitive name."""
        wanted = name.lower()
        return next((f for f in self.filters if f.name.lower() == wanted), None)

    def get_lookup(self, column: str) -> Optional[LookupDefinition]:
        """Return the lookup configured for a column, if any."""
        wanted = column.lower()
        return next((lk for lk in self.lookups if lk.column.lower() == wanted), None)
