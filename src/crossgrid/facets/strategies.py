"""Facet query strategies.

Each strategy builds one statement from a :class:`FacetContext` and turns
the result into the value the UI needs. Filter placement depends on the
source: a factory source receives the primary filter so it applies before
any aggregation, and cascading filters go on the outer query; a table
source gets every filter on the outer query.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field, replace
from typing import Any, Protocol

from sqlalchemy import Select, String, cast, func, select
from sqlalchemy.sql.elements import ColumnElement

from crossgrid.columns import ColumnType, FacetKind, FacetSortMode
from crossgrid.common.registry import StrategyRegistry
from crossgrid.common.sql import LIKE_ESCAPE, contains_pattern, struct_access, unnest
from crossgrid.connectors import QueryResult
from crossgrid.domain.identifier import SqlIdentifier
from crossgrid.query.builder import Source, resolve_source


@dataclass(frozen=True)
class FacetOptions:
    limit: int | None = None
    sort_mode: FacetSortMode = FacetSortMode.COUNT
    search_term: str | None = None


@dataclass(frozen=True)
class FacetContext:
    source: Source
    column: SqlIdentifier
    column_type: ColumnType = ColumnType.SCALAR
    primary_filter: ColumnElement[bool] | None = None
    cascading_filters: Sequence[ColumnElement[bool]] = ()
    options: FacetOptions = field(default_factory=FacetOptions)

    def with_options(self, **changes: Any) -> FacetContext:
        return replace(self, options=replace(self.options, **changes))


@dataclass(frozen=True)
class FacetValues:
    values: list[Any]
    has_more: bool = False

    def with_selected(self, selected: Sequence[Any]) -> FacetValues:
        """Put back selected values the query did not return."""
        missing = [value for value in selected if value not in self.values]
        if not missing:
            return self
        return FacetValues(values=[*missing, *self.values], has_more=self.has_more)


class FacetStrategy(Protocol):
    def build_query(self, ctx: FacetContext) -> Select: ...

    def transform_result(self, result: QueryResult, ctx: FacetContext) -> Any: ...


def _from_and_filters(ctx: FacetContext) -> tuple[Any, list[ColumnElement[bool]]]:
    from_clause, applied = resolve_source(ctx.source, ctx.primary_filter)
    where: list[ColumnElement[bool]] = []
    if ctx.primary_filter is not None and not applied:
        where.append(ctx.primary_filter)
    where.extend(ctx.cascading_filters)
    return from_clause, where


class UniqueValuesStrategy:
    """Distinct non-null values with a ``limit + 1`` probe for more."""

    def build_query(self, ctx: FacetContext) -> Select:
        from_clause, where = _from_and_filters(ctx)
        expr = struct_access(ctx.column)

        if ctx.column_type is ColumnType.ARRAY:
            inner = select(unnest(expr).label("value")).select_from(from_clause)
            if where:
                inner = inner.where(*where)
            values = inner.subquery("facet_values")
            value_expr: ColumnElement[Any] = values.c.value
            statement = select(value_expr.label("value"), func.count().label("count")).select_from(values)
        else:
            value_expr = expr
            statement = select(value_expr.label("value"), func.count().label("count")).select_from(
                from_clause
            )
            if where:
                statement = statement.where(*where)

        statement = statement.where(value_expr.is_not(None))
        term = (ctx.options.search_term or "").strip()
        if term:
            statement = statement.where(
                cast(value_expr, String).ilike(contains_pattern(term), escape=LIKE_ESCAPE)
            )

        statement = statement.group_by(value_expr)
        if ctx.options.sort_mode is FacetSortMode.COUNT:
            statement = statement.order_by(func.count().desc(), value_expr.asc())
        else:
            statement = statement.order_by(value_expr.asc())

        if ctx.options.limit is not None:
            statement = statement.limit(ctx.options.limit + 1)
        return statement

    def transform_result(self, result: QueryResult, ctx: FacetContext) -> FacetValues:
        values = [row.get("value") for row in result]
        limit = ctx.options.limit
        if limit is not None and len(values) > limit:
            return FacetValues(values=values[:limit], has_more=True)
        return FacetValues(values=values, has_more=False)


class MinMaxStrategy:
    def build_query(self, ctx: FacetContext) -> Select:
        from_clause, where = _from_and_filters(ctx)
        expr = struct_access(ctx.column)
        statement = select(func.min(expr).label("min"), func.max(expr).label("max")).select_from(
            from_clause
        )
        if where:
            statement = statement.where(*where)
        return statement

    def transform_result(self, result: QueryResult, ctx: FacetContext) -> tuple[Any, Any] | None:
        row = result.first()
        if row is None or (row.get("min") is None and row.get("max") is None):
            return None
        return row.get("min"), row.get("max")


class TotalCountStrategy:
    def build_query(self, ctx: FacetContext) -> Select:
        from_clause, where = _from_and_filters(ctx)
        statement = select(func.count().label("count")).select_from(from_clause)
        if where:
            statement = statement.where(*where)
        return statement

    def transform_result(self, result: QueryResult, ctx: FacetContext) -> int:
        row = result.first()
        if row is None:
            return 0
        return int(row.get("count") or 0)


def create_facet_registry(
    extra: dict[str, FacetStrategy] | None = None,
) -> StrategyRegistry[FacetStrategy]:
    registry: StrategyRegistry[FacetStrategy] = StrategyRegistry(
        {
            FacetKind.UNIQUE: UniqueValuesStrategy(),
            FacetKind.MINMAX: MinMaxStrategy(),
            FacetKind.TOTAL_COUNT: TotalCountStrategy(),
        }
    )
    for name, strategy in (extra or {}).items():
        registry.register(name, strategy)
    return registry


__all__ = [
    "FacetContext",
    "FacetOptions",
    "FacetStrategy",
    "FacetValues",
    "MinMaxStrategy",
    "TotalCountStrategy",
    "UniqueValuesStrategy",
    "create_facet_registry",
]
