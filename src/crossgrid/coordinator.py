"""Connect query clients to an engine connector and to their filter selections.

All work happens on the running event loop. Each client has a request token;
a result is delivered only if its token is still the latest one for that
client, so a slow response never overwrites a newer one.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import Select
from sqlalchemy.exc import SQLAlchemyError

from crossgrid.client import QueryClient
from crossgrid.common.exceptions import QueryExecutionError
from crossgrid.common.logging import bind_client_context, clear_client_context, log_context
from crossgrid.common.sql import render_sql
from crossgrid.connectors import Connector
from crossgrid.selection import VALUE_EVENT, Selection, SelectionClause

logger = logging.getLogger(__name__)


@dataclass
class _FilterGroup:
    selection: Selection
    clients: list[QueryClient] = field(default_factory=list)
    on_value: Any = None


class Coordinator:
    def __init__(self, connector: Connector) -> None:
        self.connector = connector
        self._clients: list[QueryClient] = []
        self._groups: dict[int, _FilterGroup] = {}
        self._tokens: dict[int, int] = {}
        self._scheduled: dict[int, asyncio.Task[Any]] = {}
        self._tasks: set[asyncio.Task[Any]] = set()

    # ------------------------------------------------------------------
    # Client lifecycle
    # ------------------------------------------------------------------

    @property
    def clients(self) -> tuple[QueryClient, ...]:
        return tuple(self._clients)

    def is_connected(self, client: QueryClient) -> bool:
        return any(existing is client for existing in self._clients)

    def connect(self, client: QueryClient) -> asyncio.Task[Any] | None:
        if self.is_connected(client):
            return None
        if client.coordinator is not None and client.coordinator is not self:
            client.coordinator.disconnect(client)
        self._clients.append(client)
        client.coordinator = self
        if client.filter_by is not None:
            self._join_group(client, client.filter_by)
        logger.debug("coordinator.client.connected", extra=log_context(client=client.name))
        client.connected_callback()
        return self._spawn(self._initialize(client), name=f"crossgrid-init-{client.name}")

    def disconnect(self, client: QueryClient) -> None:
        if not self.is_connected(client):
            return
        self._clients = [c for c in self._clients if c is not client]
        for key, group in list(self._groups.items()):
            if any(member is client for member in group.clients):
                group.clients = [c for c in group.clients if c is not client]
                if not group.clients:
                    group.selection.remove_event_listener(VALUE_EVENT, group.on_value)
                    del self._groups[key]
        # Invalidate anything still in flight for this client.
        self._bump(client)
        scheduled = self._scheduled.pop(id(client), None)
        if scheduled is not None and not scheduled.done():
            scheduled.cancel()
        client.coordinator = None
        logger.debug("coordinator.client.disconnected", extra=log_context(client=client.name))
        client.disconnected_callback()

    def clear(self) -> None:
        for client in list(self._clients):
            self.disconnect(client)

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def request_query(
        self, client: QueryClient, statement: Select | None = None
    ) -> asyncio.Task[Any] | None:
        if not self.is_connected(client):
            logger.debug("coordinator.request.disconnected", extra=log_context(client=client.name))
            return None
        if not _has_running_loop():
            logger.warning("coordinator.request.no_loop", extra=log_context(client=client.name))
            return None
        if statement is None:
            statement = client.query(client.current_filter())
            if statement is None:
                return None
        token = self._bump(client)
        client.query_pending()
        return self._spawn(self._execute(client, statement, token), name=f"crossgrid-query-{client.name}")

    def request_update(self, client: QueryClient) -> asyncio.Task[Any] | None:
        """Coalesce repeated update requests into one query on the next tick."""
        if not self.is_connected(client):
            return None
        if not _has_running_loop():
            logger.warning("coordinator.request.no_loop", extra=log_context(client=client.name))
            return None
        existing = self._scheduled.get(id(client))
        if existing is not None and not existing.done():
            return existing
        task = self._spawn(self._deferred_query(client), name=f"crossgrid-update-{client.name}")
        self._scheduled[id(client)] = task
        return task

    async def query(self, statement: Select) -> Any:
        """Run a statement directly, outside any client.

        Failures surface as :class:`QueryExecutionError` carrying the SQL.
        """
        try:
            return await self.connector.query(statement)
        except Exception as exc:  # noqa: BLE001 - re-raised with the rendered SQL
            error = _as_execution_error(exc, statement)
            logger.error(
                "coordinator.query.failed",
                extra=log_context(sql=error.sql, error=str(exc)),
            )
            raise error

    async def drain(self) -> None:
        """Wait until no coordinator task is in flight."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _join_group(self, client: QueryClient, selection: Selection) -> None:
        key = id(selection)
        group = self._groups.get(key)
        if group is None:
            group = _FilterGroup(selection=selection)

            def _on_value(_value: Any, group: _FilterGroup = group) -> None:
                self._filter_changed(group)

            group.on_value = _on_value
            selection.add_event_listener(VALUE_EVENT, _on_value)
            self._groups[key] = group
        group.clients.append(client)

    def _filter_changed(self, group: _FilterGroup) -> None:
        clause: SelectionClause | None = group.selection.active
        for client in list(group.clients):
            if clause is not None and group.selection.skip(client, clause):
                continue
            client.filter_changed(group.selection, clause)

    def _bump(self, client: QueryClient) -> int:
        token = self._tokens.get(id(client), 0) + 1
        self._tokens[id(client)] = token
        return token

    def _is_current(self, client: QueryClient, token: int) -> bool:
        return self.is_connected(client) and self._tokens.get(id(client)) == token

    def _spawn(self, coro: Coroutine[Any, Any, Any], *, name: str) -> asyncio.Task[Any] | None:
        if not _has_running_loop():
            coro.close()
            logger.warning("coordinator.spawn.no_loop", extra=log_context(task=name))
            return None
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _deferred_query(self, client: QueryClient) -> None:
        await asyncio.sleep(0)
        self._scheduled.pop(id(client), None)
        task = self.request_query(client)
        if task is not None:
            await task

    async def _initialize(self, client: QueryClient) -> None:
        requests = client.fields()
        if requests:
            try:
                info = await self.connector.describe(list(requests))
            except Exception as exc:  # noqa: BLE001 - delivered to the client hook
                if self.is_connected(client):
                    self._deliver_error(client, exc)
                return
            if not self.is_connected(client):
                return
            client.field_info(info)
        if not self.is_connected(client):
            return
        client.prepare()
        task = self.request_query(client)
        if task is not None:
            await task

    async def _execute(self, client: QueryClient, statement: Select, token: int) -> None:
        try:
            result = await self.connector.query(statement)
        except Exception as exc:  # noqa: BLE001 - delivered to the client hook
            if not self._is_current(client, token):
                return
            error = _as_execution_error(exc, statement)
            logger.error(
                "coordinator.query.failed",
                extra=log_context(client=client.name, sql=error.sql, error=str(exc)),
            )
            self._deliver_error(client, error)
            return

        if not self._is_current(client, token):
            logger.debug("coordinator.result.stale", extra=log_context(client=client.name, token=token))
            return
        bind_client_context(client.name)
        try:
            client.query_result(result)
        finally:
            clear_client_context()

    def _deliver_error(self, client: QueryClient, exc: BaseException) -> None:
        bind_client_context(client.name)
        try:
            client.query_error(exc)
        finally:
            clear_client_context()


def _as_execution_error(exc: Exception, statement: Select) -> QueryExecutionError:
    if isinstance(exc, QueryExecutionError) and exc.sql is not None:
        return exc
    try:
        sql = render_sql(statement)
    except (SQLAlchemyError, NotImplementedError, TypeError, ValueError):
        sql = str(statement)
    error = QueryExecutionError(str(exc), sql=sql)
    error.__cause__ = exc
    return error


def _has_running_loop() -> bool:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True


__all__ = ["Coordinator"]
