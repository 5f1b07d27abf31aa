from __future__ import annotations

from crossgrid.columns import ColumnType
from crossgrid.common.sql import render_sql
from crossgrid.selection import Selection
from crossgrid.selection_manager import SelectionManager


class _Widget:
    name = "country-picker"


def test_toggling_a_value_on_and_off() -> None:
    selection = Selection.intersect()
    widget = _Widget()
    manager = SelectionManager(selection, widget, "country")

    manager.toggle("US")

    clause = selection.clause_for(widget)
    assert clause is not None
    assert clause.value == ["US"]
    assert render_sql(clause.predicate) == "\"country\" = 'US'"
    assert clause.clients == frozenset({widget})

    manager.toggle("US")

    assert selection.value_for(widget) is None
    assert selection.predicate_for(None) is None
    assert selection.active is not None
    assert selection.active.value is None
    assert selection.active.predicate is None


def test_multiple_values_use_in() -> None:
    selection = Selection.intersect()
    manager = SelectionManager(selection, _Widget(), "country")

    manager.toggle("US")
    manager.toggle("CA")

    assert manager.current_values() == ["US", "CA"]
    assert render_sql(selection.predicate_for(None)) == "\"country\" IN ('US', 'CA')"


def test_select_dedupes_and_drops_nulls() -> None:
    selection = Selection.intersect()
    manager = SelectionManager(selection, _Widget(), "country")

    manager.select(["US", None, "US", "MX"])

    assert manager.current_values() == ["US", "MX"]

    manager.select(None)

    assert manager.current_values() == []
    assert selection.clauses == ()


def test_array_columns_use_list_has_any() -> None:
    selection = Selection.intersect()
    manager = SelectionManager(selection, _Widget(), "tags", column_type=ColumnType.ARRAY)

    manager.select(["red", "blue"])

    assert render_sql(selection.predicate_for(None)) == "list_has_any(\"tags\", ['red', 'blue'])"


def test_nested_columns_quote_each_segment() -> None:
    selection = Selection.intersect()
    manager = SelectionManager(selection, _Widget(), "address.country")

    manager.toggle("US")

    assert render_sql(selection.predicate_for(None)) == "\"address\".\"country\" = 'US'"


def test_sync_adopts_values_without_publishing() -> None:
    selection = Selection.intersect()
    manager = SelectionManager(selection, _Widget(), "country")

    manager.sync(["US"])

    assert manager.current_values() == ["US"]
    assert selection.clauses == ()
