"""A debounced input that publishes one column filter to a selection."""

from __future__ import annotations

import logging
from typing import Any

from crossgrid.columns import FilterKind, FilterOptions
from crossgrid.common.debounce import Debouncer
from crossgrid.common.logging import log_context
from crossgrid.common.registry import StrategyRegistry
from crossgrid.common.sql import struct_access
from crossgrid.domain.identifier import SqlIdentifier
from crossgrid.query.filters import FilterStrategy, build_filter_predicate, create_filter_registry
from crossgrid.selection import Selection, SelectionClause
from crossgrid.settings import get_settings

logger = logging.getLogger(__name__)


class FilterControl:
    def __init__(
        self,
        selection: Selection,
        column: str,
        kind: FilterKind | str = FilterKind.PARTIAL_ILIKE,
        *,
        options: FilterOptions | None = None,
        registry: StrategyRegistry[FilterStrategy] | None = None,
        debounce_seconds: float | None = None,
        name: str | None = None,
    ) -> None:
        self.selection = selection
        self.column = SqlIdentifier.from_raw(column)
        self.kind = kind
        self.options = options
        self.registry = registry or create_filter_registry()
        self.name = name or f"filter:{column}"
        delay = get_settings().filter_debounce_seconds if debounce_seconds is None else debounce_seconds
        self._debounced = Debouncer(self.apply, delay)
        self.value: Any = None

    def set_value(self, value: Any) -> None:
        self._debounced(value)

    def flush(self) -> None:
        self._debounced.flush()

    def apply(self, value: Any) -> None:
        predicate = build_filter_predicate(
            self.registry,
            self.kind,
            struct_access(self.column),
            value,
            self.options,
            column_id=str(self.column),
        )
        self.value = value if predicate is not None else None
        logger.debug(
            "filter_control.applied",
            extra=log_context(client=self.name, active=predicate is not None),
        )
        self.selection.update(SelectionClause.build(self, self.value, predicate))

    def clear_filter(self, sub_id: str | None = None, selection: Selection | None = None) -> None:
        self._debounced.cancel()
        self.apply(None)

    def dispose(self) -> None:
        self._debounced.cancel()
        if self.selection.clause_for(self) is not None:
            self.selection.update(SelectionClause.build(self, None, None))
        self.value = None


__all__ = ["FilterControl"]
