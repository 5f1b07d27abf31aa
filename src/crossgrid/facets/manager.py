"""Own the facet sidecars of one grid: at most one live client per key."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, Protocol

from sqlalchemy.sql.elements import ColumnElement

from crossgrid.columns import ColumnType, FacetKind, FacetSortMode
from crossgrid.common.logging import log_context
from crossgrid.common.registry import StrategyRegistry
from crossgrid.facets.sidecar import SidecarClient
from crossgrid.facets.strategies import FacetOptions, FacetStrategy
from crossgrid.query.builder import TOTAL_ROWS_KEY, Source
from crossgrid.query.column_mapper import ColumnMapper
from crossgrid.settings import get_settings

if TYPE_CHECKING:
    from crossgrid.coordinator import Coordinator

logger = logging.getLogger(__name__)


class FacetHost(Protocol):
    name: str
    coordinator: Coordinator | None

    @property
    def source(self) -> Source: ...

    @property
    def mapper(self) -> ColumnMapper: ...

    def primary_filter(self) -> ColumnElement[bool] | None: ...

    def get_cascading_filters(self, exclude_column_id: str | None = None) -> list[ColumnElement[bool]]: ...

    def get_selected_values(self, column_id: str) -> list[Any]: ...

    def update_facet_value(self, key: str, value: Any) -> None: ...

    def update_total_rows(self, count: int) -> None: ...


def facet_key(column_id: str, kind: str | FacetKind) -> str:
    kind_name = kind.value if isinstance(kind, FacetKind) else str(kind)
    return f"{column_id}:{kind_name}"


class SidecarManager:
    def __init__(
        self,
        host: FacetHost,
        registry: StrategyRegistry[FacetStrategy],
        *,
        facet_limit: int | None = None,
        debounce_seconds: float | None = None,
    ) -> None:
        settings = get_settings()
        self.host = host
        self.registry = registry
        self.facet_limit = facet_limit if facet_limit is not None else settings.facet_limit
        self.debounce_seconds = (
            debounce_seconds if debounce_seconds is not None else settings.facet_debounce_seconds
        )
        self._sidecars: dict[str, SidecarClient] = {}

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def get(self, key: str) -> SidecarClient | None:
        return self._sidecars.get(key)

    @property
    def keys(self) -> tuple[str, ...]:
        return tuple(self._sidecars)

    def __len__(self) -> int:
        return len(self._sidecars)

    def request_facet(
        self,
        column_id: str,
        kind: str | FacetKind,
        *,
        sort_mode: FacetSortMode | None = None,
        limit: int | None = None,
    ) -> SidecarClient | None:
        key = facet_key(column_id, kind)
        existing = self._sidecars.get(key)
        if existing is not None:
            return existing

        mapped = self.host.mapper.get(column_id)
        if mapped is None:
            logger.warning(
                "sidecar.facet.unmapped_column",
                extra=log_context(client=self.host.name, column_id=column_id),
            )
            return None

        kind_name = kind.value if isinstance(kind, FacetKind) else str(kind)
        options = FacetOptions(
            limit=(limit or self.facet_limit) if kind_name == FacetKind.UNIQUE.value else None,
            sort_mode=sort_mode or mapped.facet_sort_mode,
        )
        return self.request_auxiliary(
            key=key,
            kind=kind_name,
            column_id=column_id,
            exclude_column_id=column_id,
            options=options,
            on_result=lambda value: self.host.update_facet_value(key, value),
        )

    def request_total_count(self) -> SidecarClient | None:
        return self.request_auxiliary(
            key=TOTAL_ROWS_KEY,
            kind=FacetKind.TOTAL_COUNT.value,
            on_result=self.host.update_total_rows,
        )

    def request_auxiliary(
        self,
        *,
        key: str,
        kind: str,
        column_id: str | None = None,
        exclude_column_id: str | None = None,
        options: FacetOptions | None = None,
        on_result: Callable[[Any], None] | None = None,
    ) -> SidecarClient | None:
        existing = self._sidecars.get(key)
        if existing is not None:
            return existing

        strategy = self.registry.get(kind)
        if strategy is None:
            logger.warning("sidecar.strategy.unknown", extra=log_context(facet_key=key, kind=kind))
            return None

        mapped = self.host.mapper.get(column_id) if column_id else None
        sidecar = SidecarClient(
            key=key,
            kind=kind,
            strategy=strategy,
            source=lambda: self.host.source,
            filters=self._filters,
            column=mapped.sql if mapped else None,
            column_id=column_id,
            column_type=mapped.column_type if mapped else ColumnType.SCALAR,
            exclude_column_id=exclude_column_id,
            options=options,
            on_result=on_result,
            selected_values=(
                (lambda: self.host.get_selected_values(column_id)) if column_id else None
            ),
            debounce_seconds=self.debounce_seconds,
        )
        self._sidecars[key] = sidecar
        logger.debug("sidecar.registered", extra=log_context(client=self.host.name, facet_key=key))

        coordinator = self.host.coordinator
        if coordinator is not None:
            coordinator.connect(sidecar)
        return sidecar

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def connect_all(self, coordinator: Coordinator) -> None:
        for sidecar in self._sidecars.values():
            coordinator.connect(sidecar)

    def refresh_all(self) -> None:
        for sidecar in self._sidecars.values():
            sidecar.request_query()

    def update_source(self) -> None:
        """Re-query every sidecar once the host source has changed."""
        for sidecar in self._sidecars.values():
            sidecar.request_update()

    def disconnect_all(self) -> None:
        for sidecar in self._sidecars.values():
            if sidecar.coordinator is not None:
                sidecar.coordinator.disconnect(sidecar)

    def clear(self) -> None:
        self.disconnect_all()
        self._sidecars.clear()

    def _filters(
        self, exclude_column_id: str | None
    ) -> tuple[ColumnElement[bool] | None, list[ColumnElement[bool]]]:
        return self.host.primary_filter(), self.host.get_cascading_filters(exclude_column_id)


__all__ = ["FacetHost", "SidecarManager", "facet_key"]
