"""Filter strategies: turn one column's raw filter value into a predicate.

Every strategy has the signature ``(expr, value, options) -> predicate | None``
and returns ``None`` for values it cannot use, so a malformed filter drops
out of the WHERE clause instead of failing the whole query.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from datetime import UTC, date, datetime
from enum import Enum
from typing import Any

from sqlalchemy.sql.elements import ColumnElement

from crossgrid.columns import FilterKind, FilterOptions, SqlType
from crossgrid.common.logging import log_context
from crossgrid.common.registry import StrategyRegistry
from crossgrid.common.sql import (
    LIKE_ESCAPE,
    contains_pattern,
    escape_like,
    parse_temporal,
    to_range_value,
)

logger = logging.getLogger(__name__)

FilterStrategy = Callable[[ColumnElement[Any], Any, FilterOptions | None], ColumnElement[bool] | None]

# Shorthand modes a UI control may send instead of a strategy name.
MODE_ALIASES: dict[str, FilterKind] = {
    "TEXT": FilterKind.PARTIAL_ILIKE,
    "MATCH": FilterKind.EQUALS,
    "SELECT": FilterKind.EQUALS,
}


class ConditionOperator(str, Enum):
    EQ = "eq"
    NEQ = "neq"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    STARTS_WITH = "starts_with"
    NOT_STARTS_WITH = "not_starts_with"
    ENDS_WITH = "ends_with"
    NOT_ENDS_WITH = "not_ends_with"
    BETWEEN = "between"
    IN = "in"
    NOT_IN = "not_in"
    IS_NULL = "is_null"
    NOT_NULL = "not_null"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value == "")


def _as_text(value: Any) -> str | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        value = str(value)
    if not isinstance(value, str) or value == "":
        return None
    return value


def _range_predicate(expr: ColumnElement[Any], low: Any, high: Any) -> ColumnElement[bool] | None:
    if low is not None and high is not None:
        return expr.between(low, high)
    if low is not None:
        return expr >= low
    if high is not None:
        return expr <= high
    return None


def _pair(value: Any) -> tuple[Any, Any] | None:
    if isinstance(value, (list, tuple)) and len(value) == 2:
        return value[0], value[1]
    return None


def _epoch_to_datetime(value: float) -> datetime:
    seconds = value / 1000 if abs(value) > 100_000_000_000 else value
    return datetime.fromtimestamp(seconds, tz=UTC)


def _to_date_bound(value: Any, options: FilterOptions | None) -> date | datetime | None:
    if _is_blank(value) or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        bound: date | datetime | None = _epoch_to_datetime(float(value))
    elif isinstance(value, (datetime, date)):
        bound = value
    elif isinstance(value, str):
        bound = parse_temporal(value)
    else:
        return None
    if (
        options is not None
        and options.convert_to_utc
        and isinstance(bound, datetime)
        and bound.tzinfo is not None
    ):
        bound = bound.astimezone(UTC)
    return bound


def _coerce_typed(value: Any, data_type: str | None) -> Any:
    if data_type is None or _is_blank(value):
        return value
    kind = data_type.upper()
    if kind in {SqlType.INTEGER.value, SqlType.FLOAT.value, "NUMBER"}:
        return to_range_value(value) if not isinstance(value, (date, datetime)) else None
    if kind in {SqlType.DATE.value, SqlType.TIMESTAMP.value}:
        return _to_date_bound(value, None)
    if kind == SqlType.BOOLEAN.value and isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "1", "yes"}:
            return True
        if lowered in {"false", "0", "no"}:
            return False
        return None
    return value


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


def equals_strategy(
    expr: ColumnElement[Any], value: Any, options: FilterOptions | None = None
) -> ColumnElement[bool] | None:
    if _is_blank(value) or isinstance(value, (list, tuple, dict, set)):
        return None
    return expr == value


def range_strategy(
    expr: ColumnElement[Any], value: Any, options: FilterOptions | None = None
) -> ColumnElement[bool] | None:
    bounds = _pair(value)
    if bounds is None:
        return None
    return _range_predicate(expr, to_range_value(bounds[0]), to_range_value(bounds[1]))


def date_range_strategy(
    expr: ColumnElement[Any], value: Any, options: FilterOptions | None = None
) -> ColumnElement[bool] | None:
    bounds = _pair(value)
    if bounds is None:
        return None
    return _range_predicate(
        expr,
        _to_date_bound(bounds[0], options),
        _to_date_bound(bounds[1], options),
    )


def like_strategy(
    expr: ColumnElement[Any], value: Any, options: FilterOptions | None = None
) -> ColumnElement[bool] | None:
    text = _as_text(value)
    return None if text is None else expr.like(text)


def ilike_strategy(
    expr: ColumnElement[Any], value: Any, options: FilterOptions | None = None
) -> ColumnElement[bool] | None:
    text = _as_text(value)
    return None if text is None else expr.ilike(text)


def partial_like_strategy(
    expr: ColumnElement[Any], value: Any, options: FilterOptions | None = None
) -> ColumnElement[bool] | None:
    text = _as_text(value)
    if text is None:
        return None
    return expr.like(contains_pattern(text), escape=LIKE_ESCAPE)


def partial_ilike_strategy(
    expr: ColumnElement[Any], value: Any, options: FilterOptions | None = None
) -> ColumnElement[bool] | None:
    text = _as_text(value)
    if text is None:
        return None
    return expr.ilike(contains_pattern(text), escape=LIKE_ESCAPE)


def condition_strategy(
    expr: ColumnElement[Any], value: Any, options: FilterOptions | None = None
) -> ColumnElement[bool] | None:
    """Operator-driven filter, e.g. ``{"operator": "gte", "value": 10}``."""
    if not isinstance(value, Mapping):
        return None
    try:
        operator = ConditionOperator(str(value.get("operator", "")).lower())
    except ValueError:
        return None

    if operator is ConditionOperator.IS_NULL:
        return expr.is_(None)
    if operator is ConditionOperator.NOT_NULL:
        return expr.is_not(None)

    data_type = value.get("dataType") or value.get("data_type")
    if data_type is None and options is not None and options.data_type is not None:
        data_type = options.data_type.value
    operand = value.get("value")

    if operator in {ConditionOperator.IN, ConditionOperator.NOT_IN}:
        if not isinstance(operand, (list, tuple)):
            return None
        items = [_coerce_typed(item, data_type) for item in operand if not _is_blank(item)]
        items = [item for item in items if item is not None]
        if not items:
            return None
        return expr.in_(items) if operator is ConditionOperator.IN else expr.not_in(items)

    if operator is ConditionOperator.BETWEEN:
        upper = value.get("valueTo", value.get("value_to"))
        return _range_predicate(expr, _coerce_typed(operand, data_type), _coerce_typed(upper, data_type))

    if operator in {
        ConditionOperator.CONTAINS,
        ConditionOperator.NOT_CONTAINS,
        ConditionOperator.STARTS_WITH,
        ConditionOperator.NOT_STARTS_WITH,
        ConditionOperator.ENDS_WITH,
        ConditionOperator.NOT_ENDS_WITH,
    }:
        text = _as_text(operand)
        if text is None:
            return None
        escaped = escape_like(text)
        if operator in {ConditionOperator.CONTAINS, ConditionOperator.NOT_CONTAINS}:
            pattern = f"%{escaped}%"
        elif operator in {ConditionOperator.STARTS_WITH, ConditionOperator.NOT_STARTS_WITH}:
            pattern = f"{escaped}%"
        else:
            pattern = f"%{escaped}"
        if operator.value.startswith("not_"):
            return expr.not_ilike(pattern, escape=LIKE_ESCAPE)
        return expr.ilike(pattern, escape=LIKE_ESCAPE)

    coerced = _coerce_typed(operand, data_type)
    if _is_blank(coerced) or isinstance(coerced, (list, tuple, dict)):
        return None
    if operator is ConditionOperator.EQ:
        return expr == coerced
    if operator is ConditionOperator.NEQ:
        return expr != coerced
    if operator is ConditionOperator.GT:
        return expr > coerced
    if operator is ConditionOperator.GTE:
        return expr >= coerced
    if operator is ConditionOperator.LT:
        return expr < coerced
    return expr <= coerced


DEFAULT_FILTER_STRATEGIES: dict[FilterKind, FilterStrategy] = {
    FilterKind.EQUALS: equals_strategy,
    FilterKind.RANGE: range_strategy,
    FilterKind.DATE_RANGE: date_range_strategy,
    FilterKind.LIKE: like_strategy,
    FilterKind.ILIKE: ilike_strategy,
    FilterKind.PARTIAL_LIKE: partial_like_strategy,
    FilterKind.PARTIAL_ILIKE: partial_ilike_strategy,
    FilterKind.CONDITION: condition_strategy,
}


def create_filter_registry(
    extra: Mapping[str, FilterStrategy] | None = None,
) -> StrategyRegistry[FilterStrategy]:
    registry: StrategyRegistry[FilterStrategy] = StrategyRegistry(DEFAULT_FILTER_STRATEGIES)
    for name, strategy in (extra or {}).items():
        registry.register(name, strategy)
    return registry


def _resolve_dynamic(
    registry: StrategyRegistry[FilterStrategy], raw_value: Any
) -> tuple[str, FilterStrategy, Any] | None:
    if not isinstance(raw_value, Mapping) or "mode" not in raw_value:
        return None
    mode = str(raw_value["mode"]).upper()
    name = MODE_ALIASES[mode].value if mode in MODE_ALIASES else mode
    strategy = registry.get(name)
    if strategy is None:
        logger.warning("filters.dynamic_mode.unknown", extra=log_context(mode=mode))
        return None
    value = raw_value if name == FilterKind.CONDITION.value else raw_value.get("value")
    return name, strategy, value


def build_filter_predicate(
    registry: StrategyRegistry[FilterStrategy],
    kind: FilterKind | str | None,
    expr: ColumnElement[Any],
    raw_value: Any,
    options: FilterOptions | None = None,
    *,
    column_id: str | None = None,
) -> ColumnElement[bool] | None:
    """Build the predicate for one filter slot, or ``None`` to skip it."""
    dynamic = _resolve_dynamic(registry, raw_value)
    if dynamic is not None:
        name, strategy, value = dynamic
    else:
        name = kind.value if isinstance(kind, Enum) else (kind or FilterKind.EQUALS.value)
        strategy = registry.get(name)
        if strategy is None:
            logger.warning(
                "filters.strategy.unknown",
                extra=log_context(column_id=column_id, strategy=name, fallback=FilterKind.EQUALS.value),
            )
            name = FilterKind.EQUALS.value
            strategy = registry.get(name) or equals_strategy
        value = raw_value

    try:
        predicate = strategy(expr, value, options)
    except (TypeError, ValueError) as exc:
        logger.debug(
            "filters.value.rejected",
            extra=log_context(column_id=column_id, strategy=name, error=str(exc)),
        )
        return None
    if predicate is None:
        logger.debug(
            "filters.value.skipped",
            extra=log_context(column_id=column_id, strategy=name),
        )
    return predicate


__all__ = [
    "ConditionOperator",
    "DEFAULT_FILTER_STRATEGIES",
    "FilterStrategy",
    "MODE_ALIASES",
    "build_filter_predicate",
    "condition_strategy",
    "create_filter_registry",
    "date_range_strategy",
    "equals_strategy",
    "ilike_strategy",
    "like_strategy",
    "partial_ilike_strategy",
    "partial_like_strategy",
    "range_strategy",
]
