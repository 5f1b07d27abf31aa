"""Translate grid state into a single SELECT statement.

The statement is assembled in a fixed order: source, SELECT list (plus the
optional highlight flag), WHERE, ORDER BY, LIMIT/OFFSET. External
(cross-filter) predicates always come ahead of the grid's own filters.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from typing import Any, TypeAlias

from sqlalchemy import Select, and_, case, func, literal, select
from sqlalchemy.sql.elements import ColumnElement
from sqlalchemy.sql.expression import FromClause

from crossgrid.common.logging import log_context
from crossgrid.common.registry import StrategyRegistry
from crossgrid.common.sql import source_table
from crossgrid.query.column_mapper import ColumnMapper
from crossgrid.query.filters import FilterStrategy, build_filter_predicate
from crossgrid.selection import Param
from crossgrid.state import TableState

logger = logging.getLogger(__name__)

HIGHLIGHT_COLUMN = "__is_highlighted"
TOTAL_ROWS_KEY = "__total_rows"

Predicate: TypeAlias = ColumnElement[bool]
SourceFactory: TypeAlias = Callable[[Predicate | None], Any]
Source: TypeAlias = str | Param | SourceFactory


def combine_predicates(predicates: Sequence[Predicate | None]) -> Predicate | None:
    present = [predicate for predicate in predicates if predicate is not None]
    if not present:
        return None
    if len(present) == 1:
        return present[0]
    return and_(*present)


def resolve_source(source: Source, source_filter: Predicate | None = None) -> tuple[FromClause, bool]:
    """Return ``(from_clause, filter_applied)`` for a data source.

    ``filter_applied`` is True when a factory source consumed
    ``source_filter`` itself, so the caller must not add it again.
    """
    if isinstance(source, Param):
        source = source.value
    if isinstance(source, str):
        return source_table(source), False
    if callable(source):
        produced = source(source_filter)
        if isinstance(produced, Select):
            return produced.subquery("source"), True
        if isinstance(produced, FromClause):
            return produced, True
        if isinstance(produced, str):
            return source_table(produced), False
        raise TypeError(f"Source factory returned unsupported {type(produced).__name__}")
    raise TypeError(f"Unsupported data source {type(source).__name__}")


def extract_internal_filters(
    table_state: TableState,
    mapper: ColumnMapper,
    filter_registry: StrategyRegistry[FilterStrategy],
    *,
    exclude_column_id: str | None = None,
) -> list[Predicate]:
    """Build one predicate per active column filter, in filter order."""
    if mapper.search_all_columns:
        return []

    clauses: list[Predicate] = []
    for item in table_state.column_filters:
        if exclude_column_id is not None and item.id == exclude_column_id:
            continue
        mapped = mapper.get(item.id)
        if mapped is None:
            logger.warning(
                "query.filter.unmapped_column",
                extra=log_context(column_id=item.id),
            )
            continue
        predicate = build_filter_predicate(
            filter_registry,
            mapped.filter_kind,
            mapped.expression,
            item.value,
            mapped.filter_options,
            column_id=item.id,
        )
        if predicate is not None:
            clauses.append(predicate)
    return clauses


def _highlight_column(mapper: ColumnMapper, predicate: Predicate | None) -> ColumnElement[Any]:
    if predicate is None:
        return literal(1).label(HIGHLIGHT_COLUMN)
    flag = case((predicate, 1), else_=0)
    if mapper.search_all_columns:
        return flag.label(HIGHLIGHT_COLUMN)
    return func.max(flag).label(HIGHLIGHT_COLUMN)


def build_table_query(
    source: Source,
    table_state: TableState,
    mapper: ColumnMapper,
    filter_registry: StrategyRegistry[FilterStrategy],
    *,
    external_filter: Predicate | None = None,
    highlight_predicate: Predicate | None = None,
    include_highlight: bool = False,
    exclude_column_id: str | None = None,
    paginate: bool = True,
) -> Select:
    from_clause, source_filtered = resolve_source(source, external_filter)

    columns = mapper.select_expressions()
    highlighted = include_highlight and highlight_predicate is not None
    if include_highlight:
        columns.append(_highlight_column(mapper, highlight_predicate))
    statement = select(*columns).select_from(from_clause)

    where: list[Predicate] = []
    if external_filter is not None and not source_filtered:
        where.append(external_filter)
    where.extend(
        extract_internal_filters(
            table_state,
            mapper,
            filter_registry,
            exclude_column_id=exclude_column_id,
        )
    )
    if where:
        statement = statement.where(*where)

    if highlighted and not mapper.search_all_columns:
        statement = statement.group_by(*(m.expression for m in mapper.get_select_columns()))

    ordering = []
    for item in table_state.sorting:
        mapped = mapper.get(item.id)
        if mapped is None:
            continue
        ordering.append(mapped.expression.desc() if item.desc else mapped.expression.asc())
    if ordering:
        statement = statement.order_by(*ordering)

    if paginate:
        pagination = table_state.pagination
        statement = statement.limit(pagination.page_size).offset(
            pagination.page_index * pagination.page_size
        )

    logger.debug(
        "query.table.built",
        extra=log_context(
            filters=len(where),
            sort_fields=len(ordering),
            page_index=table_state.pagination.page_index,
            page_size=table_state.pagination.page_size,
            highlight=highlighted,
        ),
    )
    return statement


def build_count_query(
    source: Source,
    table_state: TableState,
    mapper: ColumnMapper,
    filter_registry: StrategyRegistry[FilterStrategy],
    *,
    external_filter: Predicate | None = None,
) -> Select:
    """``SELECT count(*)`` over the same rows the grid pages through."""
    from_clause, source_filtered = resolve_source(source, external_filter)
    where: list[Predicate] = []
    if external_filter is not None and not source_filtered:
        where.append(external_filter)
    where.extend(extract_internal_filters(table_state, mapper, filter_registry))
    statement = select(func.count().label(TOTAL_ROWS_KEY)).select_from(from_clause)
    if where:
        statement = statement.where(*where)
    return statement


__all__ = [
    "HIGHLIGHT_COLUMN",
    "Source",
    "TOTAL_ROWS_KEY",
    "build_count_query",
    "build_table_query",
    "combine_predicates",
    "extract_internal_filters",
    "resolve_source",
]
