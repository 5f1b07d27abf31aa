"""Validated value types shared by the query layer."""

from crossgrid.domain.identifier import SqlIdentifier, is_safe_identifier

__all__ = ["SqlIdentifier", "is_safe_identifier"]
