"""A standalone facet widget: distinct values of one column, selectable.

The menu reads ``filter_by`` (usually the selection it publishes to) and an
optional ``additional_context`` selection. It publishes through a
:class:`~crossgrid.selection_manager.SelectionManager`, so its own clause
never narrows its own option list.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any

from sqlalchemy import Select
from sqlalchemy.sql.elements import ColumnElement

from crossgrid.client import QueryClient
from crossgrid.columns import ColumnType, FacetSortMode
from crossgrid.common.debounce import Debouncer
from crossgrid.common.logging import log_context
from crossgrid.connectors import QueryResult
from crossgrid.domain.identifier import SqlIdentifier
from crossgrid.facets.strategies import FacetContext, FacetOptions, FacetValues, UniqueValuesStrategy
from crossgrid.query.builder import Source, combine_predicates
from crossgrid.selection import VALUE_EVENT, Selection
from crossgrid.selection_manager import SelectionManager
from crossgrid.settings import get_settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FacetMenuState:
    options: tuple[Any, ...] = ()
    has_more: bool = False
    loading: bool = False
    search_term: str = ""


class FacetMenu(QueryClient):
    def __init__(
        self,
        *,
        table: Source,
        column: str,
        selection: Selection,
        filter_by: Selection | None = None,
        additional_context: Selection | None = None,
        sort_mode: FacetSortMode = FacetSortMode.COUNT,
        limit: int | None = None,
        column_type: ColumnType = ColumnType.SCALAR,
        debounce_seconds: float | None = None,
        debug_name: str | None = None,
    ) -> None:
        settings = get_settings()
        super().__init__(
            filter_by=filter_by if filter_by is not None else selection,
            name=debug_name or f"facet:{column}",
        )
        self.table = table
        self.column = SqlIdentifier.from_raw(column)
        self.column_type = ColumnType(column_type)
        self.additional_context = additional_context
        self.selection = selection
        self.manager = SelectionManager(selection, self, self.column, column_type=self.column_type)
        self.strategy = UniqueValuesStrategy()
        self._page_size = limit or settings.facet_limit
        self._facet_options = FacetOptions(limit=self._page_size, sort_mode=FacetSortMode(sort_mode))
        self._search = Debouncer(
            self._apply_search_term,
            settings.facet_debounce_seconds if debounce_seconds is None else debounce_seconds,
        )
        self.state = FacetMenuState()
        self._context: FacetContext | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def connected_callback(self) -> None:
        if self.additional_context is not None:
            self.additional_context.add_event_listener(VALUE_EVENT, self._on_context_value)

    def disconnected_callback(self) -> None:
        if self.additional_context is not None:
            self.additional_context.remove_event_listener(VALUE_EVENT, self._on_context_value)
        self._search.cancel()

    def _on_context_value(self, _value: Any) -> None:
        self.request_update()

    # ------------------------------------------------------------------
    # Interaction
    # ------------------------------------------------------------------

    def toggle(self, value: Any) -> None:
        self.manager.toggle(value)
        self._merge_selected()

    def select(self, values: Any) -> None:
        self.manager.select(values)
        self._merge_selected()

    def clear_filter(self, sub_id: str | None = None, selection: Selection | None = None) -> None:
        self.manager.clear()
        self._merge_selected()

    def selected_values(self) -> list[Any]:
        return self.manager.current_values()

    def set_search_term(self, term: str) -> None:
        if term == self.state.search_term:
            return
        self.state = replace(self.state, search_term=term)
        self._search(term)

    def flush_search(self) -> None:
        self._search.flush()

    def set_sort_mode(self, sort_mode: FacetSortMode) -> None:
        self._facet_options = replace(self._facet_options, sort_mode=FacetSortMode(sort_mode))
        self.request_update()

    def load_more(self) -> None:
        limit = (self._facet_options.limit or 0) + self._page_size
        self._facet_options = replace(self._facet_options, limit=limit)
        self.request_query()

    def _apply_search_term(self, term: str) -> None:
        self._facet_options = replace(
            self._facet_options,
            search_term=term.strip() or None,
            limit=self._page_size,
        )
        self.request_query()

    # ------------------------------------------------------------------
    # Query hooks
    # ------------------------------------------------------------------

    def query(self, filter_predicate: ColumnElement[bool] | None = None) -> Select | None:
        extra = (
            self.additional_context.predicate_for(self)
            if self.additional_context is not None
            else None
        )
        self._context = FacetContext(
            source=self.table,
            column=self.column,
            column_type=self.column_type,
            primary_filter=combine_predicates([filter_predicate, extra]),
            options=self._facet_options,
        )
        return self.strategy.build_query(self._context)

    def query_pending(self) -> None:
        self.state = replace(self.state, loading=True)

    def query_result(self, result: QueryResult) -> None:
        ctx = self._context or FacetContext(source=self.table, column=self.column)
        values: FacetValues = self.strategy.transform_result(result, ctx)
        values = values.with_selected(self.manager.current_values())
        self.state = replace(
            self.state,
            options=tuple(values.values),
            has_more=values.has_more,
            loading=False,
        )
        self.last_error = None
        logger.debug("facet_menu.result", extra=log_context(client=self.name, options=len(values.values)))

    def query_error(self, error: BaseException) -> None:
        super().query_error(error)
        self.state = replace(self.state, loading=False)

    def _merge_selected(self) -> None:
        current = list(self.state.options)
        missing = [v for v in self.manager.current_values() if v not in current]
        if missing:
            self.state = replace(self.state, options=tuple([*missing, *current]))


__all__ = ["FacetMenu", "FacetMenuState"]
