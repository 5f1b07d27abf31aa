from __future__ import annotations

from datetime import date

from crossgrid.active_filters import (
    FILTERS_EVENT,
    ActiveFilterRegistry,
    FilterGroup,
    format_filter_value,
)
from crossgrid.columns import FilterKind
from crossgrid.common.sql import render_sql
from crossgrid.filter_control import FilterControl
from crossgrid.selection import Selection, SelectionClause
from crossgrid.selection_manager import SelectionManager


class _Chart:
    name = "chart"
    column = "region"


class _Grid:
    """Publishes a column-filter array, the way a grid does."""

    name = "grid"

    def __init__(self) -> None:
        self.cleared: list[str | None] = []

    def clear_filter(self, sub_id=None, selection=None) -> None:
        self.cleared.append(sub_id)


def test_format_filter_value() -> None:
    assert format_filter_value([10, 20]) == "10 - 20"
    assert format_filter_value(["a", "b", "c"]) == "a, b, c"
    assert format_filter_value(date(2024, 5, 1)) == "2024-05-01"
    assert format_filter_value("east") == "east"


def test_filters_are_collected_labelled_and_sorted_by_group_priority() -> None:
    facets = Selection.intersect(name="facets")
    grid_filters = Selection.intersect(name="grid")
    registry = ActiveFilterRegistry()
    registry.register_group(FilterGroup(id="grid", label="Grid", priority=2))
    registry.register_group(FilterGroup(id="facets", label="Facets", priority=1))
    registry.register_selection(grid_filters, "grid", label_map={"status": "Status"})
    registry.register_selection(
        facets,
        "facets",
        label_map={"region": "Region"},
        formatter_map={"region": lambda v: "/".join(v)},
    )

    grid = _Grid()
    grid_filters.update(
        SelectionClause.build(
            grid,
            [{"id": "status", "value": "active"}, {"id": "amount", "value": [1, 5]}],
            None,
        )
    )
    SelectionManager(facets, _Chart(), "region").select(["east", "west"])

    filters = registry.filters
    assert [(f.group_id, f.label, f.formatted_value) for f in filters] == [
        ("facets", "Region", "east/west"),
        ("grid", "Status", "active"),
        ("grid", "amount", "1 - 5"),
    ]
    assert [f.sub_id for f in filters] == [None, "status", "amount"]


def test_remove_filter_delegates_to_the_source() -> None:
    selection = Selection.intersect()
    registry = ActiveFilterRegistry()
    registry.register_selection(selection, "grid")
    grid = _Grid()
    selection.update(SelectionClause.build(grid, [{"id": "status", "value": "active"}], None))

    registry.remove_filter(registry.filters[0])

    assert grid.cleared == ["status"]


def test_remove_filter_clears_plain_sources() -> None:
    selection = Selection.intersect()
    registry = ActiveFilterRegistry()
    registry.register_selection(selection, "facets")
    chart = _Chart()
    SelectionManager(selection, chart, "region").toggle("east")

    registry.remove_filter(registry.filters[0])

    assert selection.clauses == ()
    assert registry.filters == []


def test_clear_group_removes_every_filter_in_it() -> None:
    selection = Selection.intersect()
    registry = ActiveFilterRegistry()
    registry.register_selection(selection, "controls")
    status = FilterControl(selection, "status", FilterKind.EQUALS, debounce_seconds=0)
    region = FilterControl(selection, "region", FilterKind.EQUALS, debounce_seconds=0)
    status.set_value("active")
    region.set_value("east")
    assert len(registry.filters) == 2

    registry.clear_group("controls")

    assert registry.filters == []
    assert selection.clauses == ()


def test_registry_emits_on_change_and_stops_after_unregister() -> None:
    selection = Selection.intersect()
    registry = ActiveFilterRegistry()
    snapshots: list[int] = []
    registry.add_event_listener(FILTERS_EVENT, lambda filters: snapshots.append(len(filters)))
    registry.register_selection(selection, "facets")
    manager = SelectionManager(selection, _Chart(), "region")

    manager.toggle("east")
    registry.unregister_selection(selection)
    manager.toggle("west")

    assert snapshots == [0, 1, 0]


def test_filter_control_publishes_its_predicate() -> None:
    selection = Selection.intersect()
    control = FilterControl(selection, "status", FilterKind.PARTIAL_ILIKE, debounce_seconds=0)

    control.set_value("act")

    clause = selection.clause_for(control)
    assert clause is not None
    assert clause.value == "act"
    assert "ILIKE" in render_sql(clause.predicate)

    control.set_value("")

    assert selection.clause_for(control) is None
    assert control.value is None


def test_filter_control_dispose_withdraws_the_clause() -> None:
    selection = Selection.intersect()
    control = FilterControl(selection, "region", FilterKind.EQUALS, debounce_seconds=0)
    control.set_value("east")

    control.dispose()

    assert selection.clauses == ()
