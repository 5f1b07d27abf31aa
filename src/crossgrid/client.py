"""Base class for anything that queries the engine through a coordinator."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from sqlalchemy import Select
from sqlalchemy.sql.elements import ColumnElement

from crossgrid.common.logging import log_context
from crossgrid.connectors import FieldInfo, FieldInfoRequest, QueryResult
from crossgrid.selection import Selection, SelectionClause

if TYPE_CHECKING:
    from crossgrid.coordinator import Coordinator

logger = logging.getLogger(__name__)


class QueryClient:
    """Lifecycle and request plumbing shared by grids, sidecars and menus.

    Subclasses override the hooks (``fields``, ``field_info``, ``prepare``,
    ``query``, ``query_result``, ``query_error``). Requests made while the
    client is not connected are no-ops that return ``None``.
    """

    def __init__(
        self,
        *,
        filter_by: Selection | None = None,
        name: str | None = None,
        enabled: bool = True,
    ) -> None:
        self.filter_by = filter_by
        self.name = name or type(self).__name__
        self.coordinator: Coordinator | None = None
        self._enabled = enabled
        self._pending_while_disabled = False
        self.last_error: BaseException | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def connected(self) -> bool:
        return self.coordinator is not None

    @property
    def enabled(self) -> bool:
        return self._enabled

    @enabled.setter
    def enabled(self, value: bool) -> None:
        self._enabled = value
        if value and self._pending_while_disabled:
            self._pending_while_disabled = False
            self.request_query()

    def connected_callback(self) -> None:
        """Called by the coordinator right after the client is attached."""

    def disconnected_callback(self) -> None:
        """Called by the coordinator right after the client is detached."""

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    def fields(self) -> Sequence[FieldInfoRequest] | None:
        return None

    def field_info(self, info: list[FieldInfo]) -> None:
        pass

    def prepare(self) -> None:
        pass

    def query(self, filter_predicate: ColumnElement[bool] | None = None) -> Select | None:
        return None

    def query_pending(self) -> None:
        pass

    def query_result(self, result: QueryResult) -> None:
        pass

    def query_error(self, error: BaseException) -> None:
        self.last_error = error
        logger.debug("client.query.error", extra=log_context(client=self.name, error=str(error)))

    def filter_changed(self, selection: Selection, clause: SelectionClause | None) -> None:
        """A clause on ``filter_by`` changed; re-query by default."""
        self.request_query()

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def current_filter(self) -> ColumnElement[bool] | None:
        if self.filter_by is None:
            return None
        return self.filter_by.predicate_for(self)

    def request_query(self, statement: Select | None = None) -> asyncio.Task[Any] | None:
        if self.coordinator is None:
            logger.debug("client.request.disconnected", extra=log_context(client=self.name))
            return None
        if not self._enabled:
            self._pending_while_disabled = True
            return None
        return self.coordinator.request_query(self, statement)

    def request_update(self) -> asyncio.Task[Any] | None:
        if self.coordinator is None:
            logger.debug("client.request.disconnected", extra=log_context(client=self.name))
            return None
        if not self._enabled:
            self._pending_while_disabled = True
            return None
        return self.coordinator.request_update(self)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, connected={self.connected})"


__all__ = ["QueryClient"]
