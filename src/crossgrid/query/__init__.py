"""Turn grid state and column configuration into SQLAlchemy statements."""

__all__ = [
    "builder",
    "column_mapper",
    "filters",
    "grouped",
]
