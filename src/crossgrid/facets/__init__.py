"""Facet sidecars, strategies and the standalone facet menu."""

__all__ = [
    "manager",
    "menu",
    "sidecar",
    "strategies",
]
