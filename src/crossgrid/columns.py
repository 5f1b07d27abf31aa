"""Column configuration models.

A column is declared once and validated when a mapper is built. The derived
:attr:`ColumnConfig.kind` tells the mapper which of the three shapes it is
dealing with:

* ``identity`` - an accessor key that is also the SQL column name,
* ``override`` - an accessor key paired with a different ``sql_column``,
* ``computed`` - an accessor function, which needs an explicit ``sql_column``.
"""

from __future__ import annotations

from collections.abc import Callable
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ColumnKind(str, Enum):
    IDENTITY = "identity"
    OVERRIDE = "override"
    COMPUTED = "computed"
    DISPLAY = "display"


class FilterKind(str, Enum):
    EQUALS = "EQUALS"
    LIKE = "LIKE"
    ILIKE = "ILIKE"
    PARTIAL_LIKE = "PARTIAL_LIKE"
    PARTIAL_ILIKE = "PARTIAL_ILIKE"
    RANGE = "RANGE"
    DATE_RANGE = "DATE_RANGE"
    CONDITION = "CONDITION"


class FacetKind(str, Enum):
    UNIQUE = "unique"
    MINMAX = "minmax"
    TOTAL_COUNT = "total_count"


class FacetSortMode(str, Enum):
    ALPHA = "alpha"
    COUNT = "count"


class ColumnType(str, Enum):
    SCALAR = "scalar"
    ARRAY = "array"


class SqlType(str, Enum):
    VARCHAR = "VARCHAR"
    INTEGER = "INTEGER"
    FLOAT = "FLOAT"
    DATE = "DATE"
    TIMESTAMP = "TIMESTAMP"
    BOOLEAN = "BOOLEAN"


class FilterOptions(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore", alias_generator=to_camel, populate_by_name=True)

    convert_to_utc: bool = False
    data_type: SqlType | None = None


class SqlColumnMapping(BaseModel):
    """Per-column override of the SQL side of a column."""

    model_config = ConfigDict(frozen=True, extra="forbid", alias_generator=to_camel, populate_by_name=True)

    sql_column: str
    sql_type: SqlType | None = None
    filter_kind: FilterKind | None = None
    filter_options: FilterOptions | None = None


class ColumnConfig(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
        arbitrary_types_allowed=True,
    )

    id: str | None = None
    accessor_key: str | None = None
    accessor_fn: Callable[[dict[str, Any]], Any] | None = Field(default=None, exclude=True)
    sql_column: str | None = None
    sql_type: SqlType | None = None
    filter_kind: FilterKind | None = None
    filter_options: FilterOptions | None = None
    facet: FacetKind | None = None
    facet_sort_mode: FacetSortMode = FacetSortMode.COUNT
    column_type: ColumnType = ColumnType.SCALAR
    header: str | None = None

    @property
    def kind(self) -> ColumnKind:
        if self.accessor_fn is not None:
            return ColumnKind.COMPUTED
        if self.accessor_key is None:
            return ColumnKind.DISPLAY
        if self.sql_column is not None and self.sql_column != self.accessor_key:
            return ColumnKind.OVERRIDE
        return ColumnKind.IDENTITY

    @property
    def resolved_id(self) -> str | None:
        return self.id or self.accessor_key

    @property
    def label(self) -> str:
        return self.header or self.resolved_id or self.sql_column or "<unnamed>"


__all__ = [
    "ColumnConfig",
    "ColumnKind",
    "ColumnType",
    "FacetKind",
    "FacetSortMode",
    "FilterKind",
    "FilterOptions",
    "SqlColumnMapping",
    "SqlType",
]
