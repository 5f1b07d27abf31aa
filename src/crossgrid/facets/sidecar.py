"""Auxiliary clients that fetch facet metadata for one column."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import replace
from typing import Any

from sqlalchemy import Select
from sqlalchemy.sql.elements import ColumnElement

from crossgrid.client import QueryClient
from crossgrid.columns import ColumnType, FacetSortMode
from crossgrid.common.debounce import Debouncer
from crossgrid.common.logging import log_context
from crossgrid.connectors import QueryResult
from crossgrid.domain.identifier import SqlIdentifier
from crossgrid.facets.strategies import FacetContext, FacetOptions, FacetStrategy, FacetValues
from crossgrid.query.builder import Source

logger = logging.getLogger(__name__)

# Returns (primary filter, cascading filters) for the sidecar's column.
FilterProvider = Callable[[str | None], tuple[ColumnElement[bool] | None, list[ColumnElement[bool]]]]


class SidecarClient(QueryClient):
    """Fetch one facet (``key = column_id:kind``) for a host grid.

    The host supplies the source and filters on every query, so the
    sidecar always reflects the grid's current state minus its own column.
    """

    def __init__(
        self,
        *,
        key: str,
        kind: str,
        strategy: FacetStrategy,
        source: Callable[[], Source],
        filters: FilterProvider,
        column: SqlIdentifier | None = None,
        column_id: str | None = None,
        column_type: ColumnType = ColumnType.SCALAR,
        exclude_column_id: str | None = None,
        options: FacetOptions | None = None,
        on_result: Callable[[Any], None] | None = None,
        selected_values: Callable[[], Sequence[Any]] | None = None,
        debounce_seconds: float = 0.0,
    ) -> None:
        super().__init__(name=key)
        self.key = key
        self.kind = kind
        self.strategy = strategy
        self.column = column
        self.column_id = column_id
        self.column_type = column_type
        self.exclude_column_id = exclude_column_id
        self.options = options or FacetOptions()
        self._initial_limit = self.options.limit
        self._source = source
        self._filters = filters
        self._on_result = on_result
        self._selected_values = selected_values
        self._context: FacetContext | None = None
        self._search = Debouncer(self._apply_search_term, debounce_seconds)
        self.value: Any = None

    # ------------------------------------------------------------------
    # Options
    # ------------------------------------------------------------------

    def update_options(self, **changes: Any) -> None:
        self.options = replace(self.options, **changes)
        if "limit" in changes:
            self._initial_limit = self.options.limit

    def set_sort_mode(self, sort_mode: FacetSortMode) -> None:
        self.options = replace(self.options, sort_mode=FacetSortMode(sort_mode))
        self.request_query()

    def set_search_term(self, term: str | None) -> None:
        self._search(term)

    def flush_search(self) -> None:
        self._search.flush()

    def load_more(self) -> None:
        step = self._initial_limit
        if step is None or self.options.limit is None:
            return
        self.options = replace(self.options, limit=self.options.limit + step)
        self.request_query()

    def _apply_search_term(self, term: str | None) -> None:
        normalized = (term or "").strip() or None
        self.options = replace(self.options, search_term=normalized, limit=self._initial_limit)
        self.request_query()

    # ------------------------------------------------------------------
    # Query hooks
    # ------------------------------------------------------------------

    def build_context(self) -> FacetContext:
        primary, cascading = self._filters(self.exclude_column_id)
        return FacetContext(
            source=self._source(),
            column=self.column or SqlIdentifier("*"),
            column_type=self.column_type,
            primary_filter=primary,
            cascading_filters=tuple(cascading),
            options=self.options,
        )

    def query(self, filter_predicate: ColumnElement[bool] | None = None) -> Select | None:
        self._context = self.build_context()
        return self.strategy.build_query(self._context)

    def query_result(self, result: QueryResult) -> None:
        ctx = self._context or self.build_context()
        value = self.strategy.transform_result(result, ctx)
        if isinstance(value, FacetValues) and self._selected_values is not None:
            value = value.with_selected(self._selected_values())
        self.value = value
        self.last_error = None
        logger.debug("sidecar.result", extra=log_context(facet_key=self.key, rows=len(result)))
        if self._on_result is not None:
            self._on_result(value)

    def disconnected_callback(self) -> None:
        self._search.cancel()


__all__ = ["FilterProvider", "SidecarClient"]
