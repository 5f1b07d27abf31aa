"""The grid client: owns table state, builds its query and applies results.

A :class:`DataTable` reads two selections (``filter_by`` for filtering and
``highlight_by`` for emphasis), publishes its own column filters to
``table_filter_selection`` and mirrors a row-selection broadcast into its
``rowSelection`` state by value. Facet sidecars hang off it through a
:class:`~crossgrid.facets.manager.SidecarManager`.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from typing import Any, Literal

from sqlalchemy import Select
from sqlalchemy.sql.elements import ColumnElement

from crossgrid.client import QueryClient
from crossgrid.columns import ColumnConfig, ColumnType, FacetKind, SqlColumnMapping
from crossgrid.common.exceptions import ClientNotConnectedError
from crossgrid.common.logging import log_context
from crossgrid.common.sql import render_sql
from crossgrid.connectors import FieldInfo, FieldInfoRequest, QueryResult
from crossgrid.coordinator import Coordinator
from crossgrid.facets.manager import SidecarManager, facet_key
from crossgrid.facets.sidecar import SidecarClient
from crossgrid.facets.strategies import FacetStrategy, create_facet_registry
from crossgrid.query.builder import (
    Source,
    build_count_query,
    build_table_query,
    combine_predicates,
    extract_internal_filters,
)
from crossgrid.query.column_mapper import ColumnMapper, MapperMode
from crossgrid.query.filters import FilterStrategy, create_filter_registry
from crossgrid.selection import VALUE_EVENT, EventSource, Param, Selection, SelectionClause
from crossgrid.selection_manager import SelectionManager
from crossgrid.settings import get_settings
from crossgrid.state import Store, TableState, Updater, coerce_table_state, functional_update

logger = logging.getLogger(__name__)

ROWS_EVENT = "rows"
FACETS_EVENT = "facets"
TOTAL_ROWS_EVENT = "total_rows"
STATE_EVENT = "state"

StateChangeMode = Literal["request_update", "request_query"]

# Forces the next query to publish the table filter again.
_REPUBLISH = object()


@dataclass(frozen=True)
class RowSelectionConfig:
    selection: Selection
    column: str
    column_type: ColumnType = ColumnType.SCALAR


@dataclass(frozen=True)
class DataTableOptions:
    table: Source
    columns: Sequence[ColumnConfig] = ()
    mapping: Mapping[str, SqlColumnMapping] | None = None
    filter_by: Selection | None = None
    highlight_by: Selection | None = None
    manual_highlight: bool = False
    row_selection: RowSelectionConfig | None = None
    table_filter_selection: Selection | None = None
    initial_state: TableState | Mapping[str, Any] | None = None
    on_table_state_change: StateChangeMode | None = None
    converter: Callable[[dict[str, Any]], Any] | None = None
    filter_strategies: Mapping[str, FilterStrategy] = field(default_factory=dict)
    facet_strategies: Mapping[str, FacetStrategy] = field(default_factory=dict)
    total_rows: bool = False
    debug_name: str | None = None


@dataclass(frozen=True)
class PageSnapshot:
    rows: list[Any]
    columns: list[str]
    state: TableState
    total_rows: int | None = None

    @property
    def page_count(self) -> int | None:
        if self.total_rows is None:
            return None
        return max(1, -(-self.total_rows // self.state.pagination.page_size))


class DataTable(QueryClient):
    def __init__(self, options: DataTableOptions, *, coordinator: Coordinator | None = None) -> None:
        super().__init__(filter_by=options.filter_by, name=options.debug_name or "data-table")
        self.options = options
        self.events = EventSource()
        self._store: Store[TableState] = Store(coerce_table_state(options.initial_state))
        self._mapper = ColumnMapper(options.columns, options.mapping)
        self.filter_registry = create_filter_registry(options.filter_strategies)
        self.sidecars = SidecarManager(self, create_facet_registry(dict(options.facet_strategies)))
        self.rows: list[Any] = []
        self.columns: list[str] = []
        self.total_rows: int | None = None
        self.facet_values: dict[str, Any] = {}
        self._published_filter_value: Any = None
        self._detach: list[Callable[[], None]] = []
        self._row_manager = self._build_row_manager()
        if coordinator is not None:
            coordinator.connect(self)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def state(self) -> TableState:
        return self._store.state

    @property
    def store(self) -> Store[TableState]:
        return self._store

    @property
    def mapper(self) -> ColumnMapper:
        return self._mapper

    @property
    def source(self) -> Source:
        return self.options.table

    @property
    def state_change_mode(self) -> StateChangeMode:
        return self.options.on_table_state_change or get_settings().on_table_state_change

    @property
    def page_count(self) -> int | None:
        if self.total_rows is None:
            return None
        size = self.state.pagination.page_size
        return max(1, -(-self.total_rows // size))

    def _table_name(self) -> str | None:
        source = self.options.table
        if isinstance(source, Param):
            source = source.value
        return source if isinstance(source, str) else None

    # ------------------------------------------------------------------
    # State changes
    # ------------------------------------------------------------------

    def set_table_state(self, updater: Updater[TableState]) -> asyncio.Task[Any] | None:
        """The single entry point for UI-driven state changes."""
        old = self.state
        new = coerce_table_state(functional_update(updater, old))
        if not self._store.set_state(new):
            return None
        self.events.emit(STATE_EVENT, new)
        if new.column_filters != old.column_filters:
            self.sidecars.refresh_all()
        if self.state_change_mode == "request_query":
            return self.request_query()
        return self.request_update()

    def set_row_selection(self, updater: Updater[dict[str, bool]]) -> None:
        """Apply a UI row-selection change and publish the selected values."""
        selected = functional_update(updater, dict(self.state.row_selection))
        self._store.set_state(self.state.with_row_selection(selected))
        self.events.emit(STATE_EVENT, self.state)
        if self._row_manager is None:
            return
        self._row_manager.select(self._row_values(selected))

    def clear_filter(self, sub_id: str | None = None, selection: Selection | None = None) -> None:
        """Drop one column filter, every column filter, or the row selection."""
        row_selection = self.options.row_selection
        if row_selection is not None and selection is row_selection.selection:
            self.set_row_selection({})
            return
        if sub_id is not None:
            self.set_table_state(lambda state: state.with_column_filter(sub_id, None))
            return
        self.set_table_state(lambda state: state.model_copy(update={"column_filters": ()}))

    def update_options(self, **changes: Any) -> None:
        """Swap configuration; the mapper is rebuilt wholesale when columns change."""
        previous = self.options
        self.options = replace(previous, **changes)
        if "columns" in changes or "mapping" in changes:
            self._mapper = ColumnMapper(self.options.columns, self.options.mapping)
            self.sidecars.clear()
            self._published_filter_value = _REPUBLISH
        if "filter_strategies" in changes:
            self.filter_registry = create_filter_registry(self.options.filter_strategies)
            self._published_filter_value = _REPUBLISH
        if "row_selection" in changes:
            self._row_manager = self._build_row_manager()

        coordinator = self.coordinator
        rewire = any(
            key in changes
            for key in ("filter_by", "highlight_by", "row_selection", "table", "table_filter_selection")
        )
        if coordinator is not None and rewire:
            self.filter_by = self.options.filter_by
            coordinator.disconnect(self)
            coordinator.connect(self)
            return
        if coordinator is not None:
            self.prepare()
            self.sidecars.refresh_all()
            self.request_query()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def connected_callback(self) -> None:
        highlight_by = self.options.highlight_by
        if highlight_by is not None and highlight_by is not self.options.filter_by:
            self._listen(highlight_by, self._on_highlight_value)

        row_selection = self.options.row_selection
        if row_selection is not None:
            self._listen(row_selection.selection, self._on_row_selection_value)

        if isinstance(self.options.table, Param):
            self._listen(self.options.table, self._on_source_value)

        if self.coordinator is not None:
            self.sidecars.connect_all(self.coordinator)

    def disconnected_callback(self) -> None:
        for detach in self._detach:
            detach()
        self._detach = []
        self.sidecars.disconnect_all()

    def _listen(self, target: Selection | Param, listener: Callable[[Any], None]) -> None:
        target.add_event_listener(VALUE_EVENT, listener)
        self._detach.append(lambda: target.remove_event_listener(VALUE_EVENT, listener))

    # ------------------------------------------------------------------
    # Selection listeners
    # ------------------------------------------------------------------

    def filter_changed(self, selection: Selection, clause: SelectionClause | None) -> None:
        self._external_change(clause)

    def _on_highlight_value(self, _value: Any) -> None:
        highlight_by = self.options.highlight_by
        clause = highlight_by.active if highlight_by is not None else None
        if clause is not None and clause.source is self:
            self.request_update()
            return
        self._external_change(clause)

    def _external_change(self, clause: SelectionClause | None) -> None:
        if clause is None or clause.source is not self:
            if self.state.pagination.page_index != 0:
                self._store.set_state(self.state.with_page_index(0))
                self.events.emit(STATE_EVENT, self.state)
            self.sidecars.refresh_all()
            self.request_query()
        else:
            self.request_update()

    def _on_row_selection_value(self, value: Any) -> None:
        row_selection = self.options.row_selection
        if row_selection is None:
            return
        clause = row_selection.selection.active
        if clause is not None and clause.source is self:
            return
        values = list(value or [])
        if self._row_manager is not None:
            self._row_manager.sync(values)
        self._store.set_state(self.state.with_row_selection({str(v): True for v in values}))
        self.events.emit(STATE_EVENT, self.state)

    def _on_source_value(self, _value: Any) -> None:
        self.sidecars.update_source()
        self.request_query()

    # ------------------------------------------------------------------
    # Query hooks
    # ------------------------------------------------------------------

    def fields(self) -> Sequence[FieldInfoRequest] | None:
        if self.options.columns:
            return None
        table_name = self._table_name()
        if table_name is None:
            return None
        return self._mapper.get_field_requests(table_name)

    def field_info(self, info: list[FieldInfo]) -> None:
        if self.options.columns:
            return
        self._mapper = ColumnMapper.from_schema(info)
        logger.debug(
            "table.schema.inferred",
            extra=log_context(client=self.name, columns=len(self._mapper), mode=MapperMode.INFERRED.value),
        )

    def prepare(self) -> None:
        for mapped in self._mapper.get_select_columns():
            if mapped.facet is not None:
                self.sidecars.request_facet(mapped.column_id, mapped.facet)
        if self.options.total_rows:
            self.sidecars.request_total_count()

    def primary_filter(self) -> ColumnElement[bool] | None:
        """The external filter this grid is subject to (filter and cross-filter)."""
        highlight_by = self.options.highlight_by
        cross = highlight_by.predicate_for(self) if highlight_by is not None else None
        return combine_predicates([self.current_filter(), cross])

    def get_cascading_filters(self, exclude_column_id: str | None = None) -> list[ColumnElement[bool]]:
        return extract_internal_filters(
            self.state,
            self._mapper,
            self.filter_registry,
            exclude_column_id=exclude_column_id,
        )

    def query(self, filter_predicate: ColumnElement[bool] | None = None) -> Select | None:
        statement = self._build_query(self.state, filter_predicate)
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                "table.query.built",
                extra=log_context(client=self.name, sql=render_sql(statement)),
            )
        self._publish_table_filter()
        return statement

    def query_result(self, result: QueryResult) -> None:
        self.rows = self._convert_rows(result)
        self.columns = list(result.columns)
        self.last_error = None
        self.events.emit(ROWS_EVENT, self.rows)

    async def fetch_page(self, requested: TableState) -> PageSnapshot:
        """Run the grid query for ``requested`` without touching the table's own state.

        The page sees the same external filters as the grid. Nothing is
        published and no listener fires, so concurrent callers cannot see
        each other's pages.
        """
        coordinator = self.coordinator
        if coordinator is None:
            raise ClientNotConnectedError(f"{self.name} is not connected to a coordinator")

        statements = [self._build_query(requested, self.current_filter())]
        if self.options.total_rows:
            statements.append(
                build_count_query(
                    self.source,
                    requested,
                    self._mapper,
                    self.filter_registry,
                    external_filter=self.primary_filter(),
                )
            )
        results = await asyncio.gather(*(coordinator.query(statement) for statement in statements))

        total_rows = None
        if len(results) > 1:
            count = results[1].scalar()
            total_rows = int(count) if count is not None else 0
        logger.debug(
            "table.page.fetched",
            extra=log_context(
                client=self.name,
                page_index=requested.pagination.page_index,
                rows=len(results[0]),
                total_rows=total_rows,
            ),
        )
        return PageSnapshot(
            rows=self._convert_rows(results[0]),
            columns=list(results[0].columns),
            state=requested,
            total_rows=total_rows,
        )

    def query_error(self, error: BaseException) -> None:
        # Previous rows stay in place.
        super().query_error(error)

    # ------------------------------------------------------------------
    # Facets
    # ------------------------------------------------------------------

    def request_facet(self, column_id: str, kind: str | FacetKind = FacetKind.UNIQUE) -> SidecarClient | None:
        return self.sidecars.request_facet(column_id, kind)

    def get_facet_value(self, column_id: str, kind: str | FacetKind = FacetKind.UNIQUE) -> Any:
        return self.facet_values.get(facet_key(column_id, kind))

    def update_facet_value(self, key: str, value: Any) -> None:
        self.facet_values[key] = value
        self.events.emit(FACETS_EVENT, {key: value})

    def update_total_rows(self, count: int) -> None:
        self.total_rows = count
        self.events.emit(TOTAL_ROWS_EVENT, count)

    def get_selected_values(self, column_id: str) -> list[Any]:
        value = self.state.filter_value(column_id)
        if value is None or isinstance(value, Mapping):
            return []
        if isinstance(value, (list, tuple)):
            return list(value)
        return [value]

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _build_query(self, state: TableState, filter_predicate: ColumnElement[bool] | None) -> Select:
        highlight_by = self.options.highlight_by
        include_highlight = highlight_by is not None and not self.options.manual_highlight
        cross = highlight_by.predicate_for(self) if highlight_by is not None else None
        # With a cross filter active every remaining row is highlighted.
        highlight = None
        if include_highlight and cross is None and highlight_by is not None:
            highlight = highlight_by.predicate_for(None)

        return build_table_query(
            self.source,
            state,
            self._mapper,
            self.filter_registry,
            external_filter=combine_predicates([filter_predicate, cross]),
            highlight_predicate=highlight,
            include_highlight=include_highlight,
        )

    def _convert_rows(self, result: QueryResult) -> list[Any]:
        converter = self.options.converter
        if converter is None:
            return list(result.rows)
        try:
            return [converter(row) for row in result.rows]
        except (TypeError, ValueError, KeyError) as exc:
            logger.warning(
                "table.converter.failed",
                extra=log_context(client=self.name, error=str(exc)),
            )
            return list(result.rows)

    def _build_row_manager(self) -> SelectionManager | None:
        config = self.options.row_selection
        if config is None:
            return None
        sql = self._mapper.get_sql_column(config.column) or config.column
        return SelectionManager(config.selection, self, sql, column_type=config.column_type)

    def _row_values(self, selected: Mapping[str, bool]) -> list[Any]:
        """Map row keys back to column values, keeping values from other pages."""
        config = self.options.row_selection
        if config is None:
            return []
        known: dict[str, Any] = {}
        if self._row_manager is not None:
            known.update({str(v): v for v in self._row_manager.current_values()})
        for row in self.rows:
            if isinstance(row, Mapping) and config.column in row:
                known[str(row[config.column])] = row[config.column]
        return [known[key] for key, flag in selected.items() if flag and key in known]

    def _publish_table_filter(self) -> None:
        selection = self.options.table_filter_selection
        if selection is None:
            return
        value = [
            {"id": item.id, "value": item.value}
            for item in self.state.column_filters
            if item.value is not None
        ] or None
        if value == self._published_filter_value:
            return
        self._published_filter_value = value
        predicate = combine_predicates(self.get_cascading_filters())
        selection.update(
            SelectionClause.build(self, value, predicate, clients={self})
        )


__all__ = [
    "DataTable",
    "DataTableOptions",
    "FACETS_EVENT",
    "PageSnapshot",
    "ROWS_EVENT",
    "RowSelectionConfig",
    "STATE_EVENT",
    "TOTAL_ROWS_EVENT",
]
