"""Shared pytest fixtures for crossgrid tests."""

from __future__ import annotations

from collections.abc import AsyncIterator, Iterator
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy import Column, Float, Integer, MetaData, String, Table, insert
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from crossgrid.connectors import SqlAlchemyConnector
from crossgrid.coordinator import Coordinator
from crossgrid.settings import reload_settings

_metadata = MetaData()

orders = Table(
    "orders",
    _metadata,
    Column("id", Integer, primary_key=True),
    Column("status", String, nullable=False),
    Column("region", String, nullable=True),
    Column("amount", Float, nullable=False),
)

ORDER_ROWS = [
    {"id": 1, "status": "active", "region": "east", "amount": 10.0},
    {"id": 2, "status": "active", "region": "west", "amount": 20.0},
    {"id": 3, "status": "pending", "region": "east", "amount": 30.0},
    {"id": 4, "status": "closed", "region": "west", "amount": 40.0},
    {"id": 5, "status": "active", "region": "north", "amount": 50.0},
]


@pytest.fixture(autouse=True)
def _settings_env(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Run every test with immediate debouncing and default limits."""

    monkeypatch.setenv("CROSSGRID_FACET_DEBOUNCE_MS", "0")
    monkeypatch.setenv("CROSSGRID_FILTER_DEBOUNCE_MS", "0")
    monkeypatch.delenv("CROSSGRID_SQL_DIALECT", raising=False)
    monkeypatch.delenv("CROSSGRID_ON_TABLE_STATE_CHANGE", raising=False)
    reload_settings()
    yield
    monkeypatch.undo()
    reload_settings()


@pytest_asyncio.fixture()
async def engine(tmp_path: Path) -> AsyncIterator[AsyncEngine]:
    """Provide a file-backed SQLite engine seeded with the orders table."""

    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'grid.sqlite'}")
    async with engine.begin() as conn:
        await conn.run_sync(_metadata.create_all)
        await conn.execute(insert(orders), ORDER_ROWS)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture()
async def coordinator(engine: AsyncEngine) -> AsyncIterator[Coordinator]:
    coordinator = Coordinator(SqlAlchemyConnector(engine))
    yield coordinator
    coordinator.clear()
    await coordinator.drain()
