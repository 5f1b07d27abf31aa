"""HTTP surface for serving a grid through FastAPI."""

from crossgrid.api.params import table_state_params
from crossgrid.api.router import create_table_router

__all__ = ["create_table_router", "table_state_params"]
