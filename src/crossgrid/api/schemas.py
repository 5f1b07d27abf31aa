"""Response models for the grid HTTP surface."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class BaseSchema(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TablePage(BaseSchema):
    rows: list[Any]
    page_index: int
    page_size: int
    total_rows: int | None = None
    page_count: int | None = None


class FacetOut(BaseSchema):
    key: str
    column_id: str
    kind: str
    values: list[Any] | None = None
    has_more: bool = False
    min: Any = None
    max: Any = None
    count: int | None = None


__all__ = ["BaseSchema", "FacetOut", "TablePage"]
