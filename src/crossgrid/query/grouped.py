"""Statements for server-side grouped tables.

A grouped table loads one hierarchy level at a time. Level ``depth`` is a
``GROUP BY`` on that level's column, restricted to one parent group by the
values of every ancestor column. The deepest groups can expand into raw
leaf rows. Selecting a grouped row publishes a compound predicate: the
ancestor values plus the row's own value.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Literal

from sqlalchemy import Select, and_, literal_column, or_, select
from sqlalchemy.sql.elements import ColumnElement

from crossgrid.common.logging import log_context
from crossgrid.common.sql import struct_access
from crossgrid.connectors import QueryResult
from crossgrid.query.builder import Predicate, Source, combine_predicates, resolve_source

logger = logging.getLogger(__name__)

DEFAULT_LEVEL_LIMIT = 200
DEFAULT_LEAF_LIMIT = 100
GROUP_ID_SEPARATOR = "|"


@dataclass(frozen=True)
class GroupLevel:
    column: str
    label: str | None = None

    @property
    def display_label(self) -> str:
        return self.label or self.column


@dataclass(frozen=True)
class GroupMetric:
    """One aggregate computed for every group, e.g. ``func.count()``."""

    id: str
    expression: ColumnElement[Any]
    label: str | None = None


@dataclass(frozen=True)
class LeafColumn:
    column: str
    label: str | None = None


@dataclass(frozen=True)
class GroupedRow:
    group_id: str
    depth: int
    is_group: bool
    group_column: str
    group_value: Any
    parent_values: Mapping[str, Any] = field(default_factory=dict)
    metrics: Mapping[str, Any] = field(default_factory=dict)

    def child_constraints(self) -> dict[str, Any]:
        """Parent constraints for the level (or leaf rows) below this row."""
        return {**self.parent_values, self.group_column: self.group_value}


def _where(
    parent_constraints: Mapping[str, Any] | None,
    filter_predicate: Predicate | None,
    additional_where: Predicate | None,
    source_filtered: bool,
) -> Predicate | None:
    clauses: list[Predicate | None] = [
        struct_access(column) == value for column, value in (parent_constraints or {}).items()
    ]
    if not source_filtered:
        clauses.append(filter_predicate)
    clauses.append(additional_where)
    return combine_predicates(clauses)


def build_grouped_level_query(
    source: Source,
    group_by: Sequence[GroupLevel],
    depth: int,
    metrics: Sequence[GroupMetric],
    *,
    parent_constraints: Mapping[str, Any] | None = None,
    filter_predicate: Predicate | None = None,
    additional_where: Predicate | None = None,
    limit: int = DEFAULT_LEVEL_LIMIT,
    order_by_metric: str | None = None,
) -> Select:
    """``GROUP BY`` the column at ``depth``, largest groups first.

    Ordering uses ``order_by_metric`` or, by default, the first metric.
    A ``limit`` of zero or less returns every group.
    """
    if depth < 0 or depth >= len(group_by):
        raise ValueError(f"depth {depth} out of range [0, {len(group_by) - 1}]")

    level = group_by[depth]
    group_column = struct_access(level.column)
    labelled = {metric.id: metric.expression.label(metric.id) for metric in metrics}

    from_clause, source_filtered = resolve_source(source, filter_predicate)
    statement = (
        select(group_column.label(level.column), *labelled.values())
        .select_from(from_clause)
        .group_by(group_column)
    )
    where = _where(parent_constraints, filter_predicate, additional_where, source_filtered)
    if where is not None:
        statement = statement.where(where)

    sort_metric = order_by_metric or (metrics[0].id if metrics else None)
    if sort_metric is not None:
        if sort_metric not in labelled:
            raise ValueError(f"Unknown metric {sort_metric!r}")
        statement = statement.order_by(labelled[sort_metric].desc())
    if limit > 0:
        statement = statement.limit(limit)

    logger.debug(
        "query.grouped.level_built",
        extra=log_context(
            depth=depth,
            column=level.column,
            parents=len(parent_constraints or {}),
            metrics=len(metrics),
        ),
    )
    return statement


def build_leaf_rows_query(
    source: Source,
    leaf_columns: Sequence[LeafColumn],
    *,
    parent_constraints: Mapping[str, Any] | None = None,
    filter_predicate: Predicate | None = None,
    additional_where: Predicate | None = None,
    limit: int = DEFAULT_LEAF_LIMIT,
    order_by: str | None = None,
    order_dir: Literal["asc", "desc"] = "desc",
    select_all: bool = False,
) -> Select:
    """Raw rows under one fully constrained group, without aggregation."""
    if not select_all and not leaf_columns:
        raise ValueError("leaf_columns must not be empty unless select_all is set")

    from_clause, source_filtered = resolve_source(source, filter_predicate)
    if select_all:
        statement = select(literal_column("*")).select_from(from_clause)
    else:
        statement = select(*(struct_access(leaf.column).label(leaf.column) for leaf in leaf_columns))
        statement = statement.select_from(from_clause)

    where = _where(parent_constraints, filter_predicate, additional_where, source_filtered)
    if where is not None:
        statement = statement.where(where)

    sort_column = order_by or (leaf_columns[0].column if leaf_columns else None)
    if sort_column is not None:
        expr = struct_access(sort_column)
        statement = statement.order_by(expr.asc() if order_dir == "asc" else expr.desc())
    if limit > 0:
        statement = statement.limit(limit)
    return statement


def build_grouped_selection_predicate(row: GroupedRow) -> Predicate:
    """Ancestor values plus the row's own value, so any depth cross-filters."""
    return and_(*(struct_access(column) == value for column, value in row.child_constraints().items()))


def build_grouped_multi_selection_predicate(rows: Sequence[GroupedRow]) -> Predicate | None:
    if not rows:
        return None
    if len(rows) == 1:
        return build_grouped_selection_predicate(rows[0])
    return or_(*(build_grouped_selection_predicate(row) for row in rows))


def grouped_rows_from_result(
    result: QueryResult,
    group_by: Sequence[GroupLevel],
    depth: int,
    metrics: Sequence[GroupMetric],
    parent_constraints: Mapping[str, Any] | None = None,
) -> list[GroupedRow]:
    """Wrap a level result; ``group_id`` joins the ancestry with ``|``."""
    level = group_by[depth]
    parents = dict(parent_constraints or {})
    prefix = [str(parents[item.column]) for item in group_by[:depth] if item.column in parents]
    rows: list[GroupedRow] = []
    for record in result:
        value = record.get(level.column)
        rows.append(
            GroupedRow(
                group_id=GROUP_ID_SEPARATOR.join([*prefix, str(value)]),
                depth=depth,
                is_group=depth < len(group_by) - 1,
                group_column=level.column,
                group_value=value,
                parent_values=parents,
                metrics={metric.id: record.get(metric.id) for metric in metrics},
            )
        )
    return rows


__all__ = [
    "DEFAULT_LEAF_LIMIT",
    "DEFAULT_LEVEL_LIMIT",
    "GroupLevel",
    "GroupMetric",
    "GroupedRow",
    "LeafColumn",
    "build_grouped_level_query",
    "build_grouped_multi_selection_predicate",
    "build_grouped_selection_predicate",
    "build_leaf_rows_query",
    "grouped_rows_from_result",
]
