from __future__ import annotations

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncEngine

from crossgrid.common.sql import render_sql, source_table, struct_access
from crossgrid.connectors import SqlAlchemyConnector
from crossgrid.query.grouped import (
    GroupedRow,
    GroupLevel,
    GroupMetric,
    LeafColumn,
    build_grouped_level_query,
    build_grouped_multi_selection_predicate,
    build_grouped_selection_predicate,
    build_leaf_rows_query,
    grouped_rows_from_result,
)

LEVELS = [GroupLevel("status", label="Status"), GroupLevel("region")]
METRICS = [
    GroupMetric("orders", func.count()),
    GroupMetric("total", func.sum(struct_access("amount"))),
]


def _west_active() -> GroupedRow:
    return GroupedRow(
        group_id="active|west",
        depth=1,
        is_group=False,
        group_column="region",
        group_value="west",
        parent_values={"status": "active"},
    )


@pytest.mark.asyncio
async def test_root_level_groups_by_the_first_column(engine: AsyncEngine) -> None:
    statement = build_grouped_level_query("orders", LEVELS, 0, METRICS, order_by_metric="total")

    result = await SqlAlchemyConnector(engine).query(statement)

    assert [(r["status"], r["orders"], r["total"]) for r in result] == [
        ("active", 3, 80.0),
        ("closed", 1, 40.0),
        ("pending", 1, 30.0),
    ]
    assert "GROUP BY" in render_sql(statement)
    assert "LIMIT 200" in render_sql(statement)


@pytest.mark.asyncio
async def test_child_level_is_constrained_to_its_parent(engine: AsyncEngine) -> None:
    statement = build_grouped_level_query(
        "orders",
        LEVELS,
        1,
        METRICS,
        parent_constraints={"status": "active"},
        order_by_metric="total",
    )

    result = await SqlAlchemyConnector(engine).query(statement)
    rows = grouped_rows_from_result(result, LEVELS, 1, METRICS, {"status": "active"})

    assert [row.group_id for row in rows] == ["active|north", "active|west", "active|east"]
    assert rows[0].metrics == {"orders": 1, "total": 50.0}
    assert rows[0].parent_values == {"status": "active"}
    assert not rows[0].is_group
    assert rows[0].child_constraints() == {"status": "active", "region": "north"}


@pytest.mark.asyncio
async def test_level_query_applies_the_cross_filter(engine: AsyncEngine) -> None:
    statement = build_grouped_level_query(
        "orders",
        LEVELS,
        0,
        METRICS,
        filter_predicate=struct_access("region") == "west",
        order_by_metric="total",
    )

    result = await SqlAlchemyConnector(engine).query(statement)
    rows = grouped_rows_from_result(result, LEVELS, 0, METRICS)

    assert [(row.group_value, row.metrics["orders"]) for row in rows] == [("closed", 1), ("active", 1)]
    assert all(row.is_group for row in rows)


def test_level_query_rejects_bad_depth_and_metric() -> None:
    with pytest.raises(ValueError, match="out of range"):
        build_grouped_level_query("orders", LEVELS, 2, METRICS)
    with pytest.raises(ValueError, match="Unknown metric"):
        build_grouped_level_query("orders", LEVELS, 0, METRICS, order_by_metric="ghost")


def test_level_limit_can_be_disabled() -> None:
    statement = build_grouped_level_query("orders", LEVELS, 0, METRICS, limit=0)

    assert "LIMIT" not in render_sql(statement)


@pytest.mark.asyncio
async def test_leaf_rows_under_a_full_ancestry(engine: AsyncEngine) -> None:
    connector = SqlAlchemyConnector(engine)
    named = build_leaf_rows_query(
        "orders",
        [LeafColumn("id"), LeafColumn("amount", label="Amount")],
        parent_constraints=_west_active().child_constraints(),
    )
    everything = build_leaf_rows_query(
        "orders",
        [],
        parent_constraints={"status": "active"},
        order_by="id",
        order_dir="asc",
        select_all=True,
    )

    assert (await connector.query(named)).rows == [{"id": 2, "amount": 20.0}]
    result = await connector.query(everything)
    assert [row["id"] for row in result] == [1, 2, 5]
    assert result.columns == ["id", "status", "region", "amount"]


def test_leaf_rows_need_columns_unless_selecting_all() -> None:
    with pytest.raises(ValueError, match="leaf_columns"):
        build_leaf_rows_query("orders", [])


def test_selection_predicate_includes_every_ancestor() -> None:
    predicate = build_grouped_selection_predicate(_west_active())

    assert render_sql(predicate) == "\"status\" = 'active' AND \"region\" = 'west'"


@pytest.mark.asyncio
async def test_multi_selection_ors_rows_from_different_depths(engine: AsyncEngine) -> None:
    pending = GroupedRow(
        group_id="pending",
        depth=0,
        is_group=True,
        group_column="status",
        group_value="pending",
    )
    predicate = build_grouped_multi_selection_predicate([_west_active(), pending])
    statement = (
        select(struct_access("id"))
        .select_from(source_table("orders"))
        .where(predicate)
        .order_by(struct_access("id"))
    )

    result = await SqlAlchemyConnector(engine).query(statement)

    assert [row["id"] for row in result] == [2, 3]
    assert build_grouped_multi_selection_predicate([]) is None
    assert render_sql(build_grouped_multi_selection_predicate([pending])) == "\"status\" = 'pending'"
