"""Track the chosen values for one column and publish them to a selection."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from sqlalchemy.sql.elements import ColumnElement

from crossgrid.columns import ColumnType
from crossgrid.common.sql import list_has_any, struct_access
from crossgrid.domain.identifier import SqlIdentifier
from crossgrid.selection import Selection, SelectionClause


class SelectionManager:
    """Values are always a list; an empty list clears the selection.

    Every publish names ``client`` as both the source and the only excluded
    reader, so the publishing widget is never filtered by its own click.
    """

    def __init__(
        self,
        selection: Selection,
        client: Any,
        column: SqlIdentifier | str,
        *,
        column_type: ColumnType = ColumnType.SCALAR,
    ) -> None:
        self.selection = selection
        self.client = client
        self.column = SqlIdentifier.from_raw(column)
        self.column_type = ColumnType(column_type)
        self._values: list[Any] = []

    def current_values(self) -> list[Any]:
        return list(self._values)

    def toggle(self, value: Any) -> None:
        if value is None:
            self.select(None)
            return
        if value in self._values:
            values = [v for v in self._values if v != value]
        else:
            values = [*self._values, value]
        self._publish(values)

    def select(self, values: Any | Iterable[Any] | None) -> None:
        if values is None:
            self._publish([])
        elif isinstance(values, (list, tuple, set, frozenset)):
            self._publish(list(dict.fromkeys(v for v in values if v is not None)))
        else:
            self._publish([values])

    def clear(self) -> None:
        self._publish([])

    def sync(self, values: Iterable[Any] | None) -> None:
        """Adopt values published elsewhere without re-publishing them."""
        self._values = list(values or [])

    def build_predicate(self, values: list[Any]) -> ColumnElement[bool] | None:
        if not values:
            return None
        expr = struct_access(self.column)
        if self.column_type is ColumnType.ARRAY:
            return list_has_any(expr, values)
        if len(values) == 1:
            return expr == values[0]
        return expr.in_(values)

    def _publish(self, values: list[Any]) -> None:
        self._values = values
        self.selection.update(
            SelectionClause.build(
                self.client,
                values or None,
                self.build_predicate(values),
                clients={self.client},
            )
        )


__all__ = ["SelectionManager"]
