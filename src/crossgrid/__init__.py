"""Compile data-grid state into SQL and keep grids cross-filtered with peer widgets."""

from crossgrid.active_filters import ActiveFilterRegistry, FilterGroup
from crossgrid.columns import (
    ColumnConfig,
    ColumnType,
    FacetKind,
    FacetSortMode,
    FilterKind,
    FilterOptions,
    SqlColumnMapping,
    SqlType,
)
from crossgrid.connectors import Connector, QueryResult, SqlAlchemyConnector
from crossgrid.coordinator import Coordinator
from crossgrid.filter_control import FilterControl
from crossgrid.selection import Param, Selection, SelectionClause
from crossgrid.selection_manager import SelectionManager
from crossgrid.state import TableState
from crossgrid.table import DataTable, DataTableOptions, RowSelectionConfig

__version__ = "0.1.0"

__all__ = [
    "ActiveFilterRegistry",
    "ColumnConfig",
    "ColumnType",
    "Connector",
    "Coordinator",
    "DataTable",
    "DataTableOptions",
    "FacetKind",
    "FacetSortMode",
    "FilterControl",
    "FilterGroup",
    "FilterKind",
    "FilterOptions",
    "Param",
    "QueryResult",
    "RowSelectionConfig",
    "Selection",
    "SelectionClause",
    "SelectionManager",
    "SqlAlchemyConnector",
    "SqlColumnMapping",
    "SqlType",
    "TableState",
]
