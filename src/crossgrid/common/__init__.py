"""Shared helpers: SQL rendering, logging, errors and small utilities."""

__all__ = [
    "debounce",
    "exceptions",
    "logging",
    "registry",
    "sql",
]
