from __future__ import annotations

from sqlalchemy.sql.elements import False_

from crossgrid.common.sql import render_sql, struct_access
from crossgrid.selection import ACTIVE_EVENT, VALUE_EVENT, Param, Selection, SelectionClause


class _Client:
    def __init__(self, name: str) -> None:
        self.name = name


def _clause(source, value, column: str = "region"):
    predicate = struct_access(column) == value if value is not None else None
    return SelectionClause.build(source, value, predicate)


def test_clients_never_see_their_own_clause() -> None:
    selection = Selection.intersect()
    chart, grid = _Client("chart"), _Client("grid")

    selection.update(_clause(chart, "east"))

    assert selection.predicate_for(chart) is None
    assert render_sql(selection.predicate_for(grid)) == "\"region\" = 'east'"
    assert render_sql(selection.predicate_for(None)) == "\"region\" = 'east'"


def test_intersect_and_union_resolvers_combine_clauses() -> None:
    a, b, reader = _Client("a"), _Client("b"), _Client("reader")
    intersect = Selection.intersect()
    union = Selection.union()
    for selection in (intersect, union):
        selection.update(_clause(a, "east"))
        selection.update(_clause(b, "active", column="status"))

    assert render_sql(intersect.predicate_for(reader)) == (
        "\"region\" = 'east' AND \"status\" = 'active'"
    )
    assert render_sql(union.predicate_for(reader)) == (
        "\"region\" = 'east' OR \"status\" = 'active'"
    )


def test_single_resolver_keeps_only_the_latest_clause() -> None:
    selection = Selection.single()
    a, b = _Client("a"), _Client("b")

    selection.update(_clause(a, "east"))
    selection.update(_clause(b, "west"))

    assert [c.source for c in selection.clauses] == [b]
    assert selection.value == "west"


def test_update_replaces_the_clause_from_the_same_source() -> None:
    selection = Selection.intersect()
    chart = _Client("chart")

    selection.update(_clause(chart, "east"))
    selection.update(_clause(chart, "west"))

    assert len(selection.clauses) == 1
    assert selection.value_for(chart) == "west"


def test_empty_clause_removes_the_source() -> None:
    selection = Selection.intersect()
    chart = _Client("chart")
    selection.update(_clause(chart, "east"))

    selection.update(SelectionClause.build(chart, None, None))

    assert selection.clauses == ()
    assert selection.predicate_for(None) is None
    assert selection.active is not None
    assert selection.active.source is chart


def test_empty_selection_can_match_nothing() -> None:
    selection = Selection.intersect(empty=True)

    assert isinstance(selection.predicate_for(None), False_)


def test_crossfilter_skips_the_source_client() -> None:
    selection = Selection.crossfilter()
    chart, grid = _Client("chart"), _Client("grid")
    clause = SelectionClause(
        source=chart,
        value="east",
        predicate=struct_access("region") == "east",
        clients=frozenset(),
    )

    selection.update(clause)

    assert selection.skip(chart, clause)
    assert not selection.skip(grid, clause)
    assert selection.predicate_for(chart) is None


def test_explicit_client_exclusion_set() -> None:
    selection = Selection.intersect()
    chart, grid, other = _Client("chart"), _Client("grid"), _Client("other")
    clause = SelectionClause.build(
        chart, "east", struct_access("region") == "east", clients={chart, grid}
    )

    selection.update(clause)

    assert selection.predicate_for(grid) is None
    assert selection.predicate_for(other) is not None


def test_update_emits_active_then_value() -> None:
    selection = Selection.intersect()
    events: list[tuple[str, object]] = []
    selection.add_event_listener(ACTIVE_EVENT, lambda clause: events.append(("active", clause.value)))
    selection.add_event_listener(VALUE_EVENT, lambda value: events.append(("value", value)))

    selection.update(_clause(_Client("chart"), "east"))

    assert events == [("active", "east"), ("value", "east")]


def test_removed_listeners_stop_receiving_events() -> None:
    selection = Selection.intersect()
    seen: list[object] = []

    def _listener(value: object) -> None:
        seen.append(value)

    selection.add_event_listener(VALUE_EVENT, _listener)
    selection.add_event_listener(VALUE_EVENT, _listener)
    assert selection.listener_count(VALUE_EVENT) == 1

    selection.remove_event_listener(VALUE_EVENT, _listener)
    selection.update(_clause(_Client("chart"), "east"))

    assert seen == []


def test_reset_clears_every_clause() -> None:
    selection = Selection.intersect()
    values: list[object] = []
    selection.add_event_listener(VALUE_EVENT, values.append)
    selection.update(_clause(_Client("a"), "east"))

    selection.reset()

    assert selection.clauses == ()
    assert values == ["east", None]


def test_param_emits_only_on_change() -> None:
    param = Param("orders", name="table")
    values: list[object] = []
    param.add_event_listener(VALUE_EVENT, values.append)

    param.update("orders")
    param.update("orders_2024")

    assert values == ["orders_2024"]
    assert param.value == "orders_2024"
