"""crossgrid settings (conventional Pydantic v2)."""

from __future__ import annotations

from functools import lru_cache
from typing import Any, Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# ---- Defaults ---------------------------------------------------------------

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 1000
MAX_SORT_FIELDS = 5
MAX_FILTERS = 25
DEFAULT_FACET_LIMIT = 50
DEFAULT_DEBOUNCE_MS = 300
DEFAULT_SQL_DIALECT = "postgresql"

_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG", "NOTSET"}


# ---- Settings ---------------------------------------------------------------

class Settings(BaseSettings):
    """Runtime settings loaded from CROSSGRID_* environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="CROSSGRID_",
        case_sensitive=False,
        extra="ignore",
        env_ignore_empty=True,
    )

    logging_level: str = "INFO"

    # SQL rendering for logs and debugging
    sql_dialect: str = DEFAULT_SQL_DIALECT

    # Grid paging and sorting
    default_page_size: int = DEFAULT_PAGE_SIZE
    max_page_size: int = MAX_PAGE_SIZE
    max_sort_fields: int = MAX_SORT_FIELDS
    max_filters: int = MAX_FILTERS

    # Facets and filter controls
    facet_limit: int = DEFAULT_FACET_LIMIT
    facet_debounce_ms: int = DEFAULT_DEBOUNCE_MS
    filter_debounce_ms: int = DEFAULT_DEBOUNCE_MS

    on_table_state_change: Literal["request_update", "request_query"] = "request_update"

    @field_validator("logging_level", mode="before")
    @classmethod
    def _v_log_level(cls, v: Any) -> str:
        s = ("" if v is None else str(v).strip()).upper()
        if not s:
            return "INFO"
        if s not in _LOG_LEVELS:
            raise ValueError(f"logging_level must be one of {sorted(_LOG_LEVELS)}")
        return s

    @field_validator("sql_dialect", mode="before")
    @classmethod
    def _v_dialect(cls, v: Any) -> str:
        s = ("" if v is None else str(v).strip()).lower()
        return s or DEFAULT_SQL_DIALECT

    @field_validator(
        "default_page_size",
        "max_page_size",
        "max_sort_fields",
        "max_filters",
        "facet_limit",
    )
    @classmethod
    def _v_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be > 0")
        return v

    @field_validator("facet_debounce_ms", "filter_debounce_ms")
    @classmethod
    def _v_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("must be >= 0")
        return v

    @property
    def facet_debounce_seconds(self) -> float:
        return self.facet_debounce_ms / 1000

    @property
    def filter_debounce_seconds(self) -> float:
        return self.filter_debounce_ms / 1000


@lru_cache(maxsize=1)
def _build_settings() -> Settings:
    return Settings()


def get_settings() -> Settings:
    return _build_settings()


def reload_settings() -> Settings:
    _build_settings.cache_clear()
    return _build_settings()


__all__ = [
    "DEFAULT_FACET_LIMIT",
    "DEFAULT_PAGE_SIZE",
    "MAX_PAGE_SIZE",
    "MAX_SORT_FIELDS",
    "Settings",
    "get_settings",
    "reload_settings",
]
