"""Data access layer: query targets, schema introspection, paging and CRUD.

The `DataEngine` facade is the usual entry point; the individual components
can also be wired together directly against any `QueryTargetDatabase`.
"""

from dal.config import EngineConfig
from dal.engine import DataEngine
from dal.paging import PageResult, PagingEngine, PagingStrategy
from dal.view_state import ViewState, ViewStatus

__all__ = [
    "DataEngine",
    "EngineConfig",
    "PageResult",
    "PagingEngine",
    "PagingStrategy",
    "ViewState",
    "ViewStatus",
]
