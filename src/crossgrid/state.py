"""Grid state models and a minimal observable store."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from crossgrid.settings import DEFAULT_PAGE_SIZE

T = TypeVar("T")

Updater = T | Callable[[T], T]


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class PaginationState(_CamelModel):
    page_index: int = Field(default=0, ge=0)
    page_size: int = Field(default=DEFAULT_PAGE_SIZE, gt=0)


class SortItem(_CamelModel):
    id: str
    desc: bool = False


class ColumnFilter(_CamelModel):
    id: str
    value: Any = None


class TableState(_CamelModel):
    """Everything the grid UI controls.

    Instances are immutable; produce a new one with :meth:`model_copy` or
    the ``with_*`` helpers.
    """

    pagination: PaginationState = Field(default_factory=PaginationState)
    sorting: tuple[SortItem, ...] = ()
    column_filters: tuple[ColumnFilter, ...] = ()
    row_selection: dict[str, bool] = Field(default_factory=dict)
    column_visibility: dict[str, bool] = Field(default_factory=dict)
    column_order: tuple[str, ...] = ()
    global_filter: Any = None

    @field_validator("column_filters", mode="before")
    @classmethod
    def _v_filters(cls, v: Any) -> Any:
        if isinstance(v, Mapping):
            return [{"id": key, "value": value} for key, value in v.items()]
        return v

    @field_validator("row_selection", mode="before")
    @classmethod
    def _v_row_selection(cls, v: Any) -> Any:
        if v is None:
            return {}
        if isinstance(v, (list, tuple, set)):
            return {str(key): True for key in v}
        if isinstance(v, Mapping):
            return {str(key): bool(flag) for key, flag in v.items() if flag}
        return v

    def filter_value(self, column_id: str) -> Any:
        for item in self.column_filters:
            if item.id == column_id:
                return item.value
        return None

    def with_page_index(self, page_index: int) -> TableState:
        pagination = self.pagination.model_copy(update={"page_index": page_index})
        return self.model_copy(update={"pagination": pagination})

    def with_column_filter(self, column_id: str, value: Any) -> TableState:
        remaining = [item for item in self.column_filters if item.id != column_id]
        if value is not None:
            remaining.append(ColumnFilter(id=column_id, value=value))
        return self.model_copy(update={"column_filters": tuple(remaining)})

    def with_row_selection(self, keys: Mapping[str, bool]) -> TableState:
        return self.model_copy(update={"row_selection": {k: True for k, v in keys.items() if v}})


def functional_update(updater: Updater[T], old: T) -> T:
    if callable(updater):
        return updater(old)
    return updater


def coerce_table_state(value: TableState | Mapping[str, Any] | None) -> TableState:
    if value is None:
        return TableState()
    if isinstance(value, TableState):
        return value
    return TableState.model_validate(value)


class Store(Generic[T]):
    """Hold one value and notify subscribers with ``(new, old)`` on change."""

    def __init__(self, initial: T) -> None:
        self._state = initial
        self._listeners: list[Callable[[T, T], None]] = []

    @property
    def state(self) -> T:
        return self._state

    def set_state(self, updater: Updater[T]) -> bool:
        old = self._state
        new = functional_update(updater, old)
        if new == old:
            return False
        self._state = new
        for listener in list(self._listeners):
            listener(new, old)
        return True

    def subscribe(self, listener: Callable[[T, T], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe


__all__ = [
    "ColumnFilter",
    "PaginationState",
    "SortItem",
    "Store",
    "TableState",
    "Updater",
    "coerce_table_state",
    "functional_update",
]
