# fastapi_searchpager/settings.py

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class PaginationSettings(BaseSettings):
    """Pagination defaults, read from ``PAGINATION_*`` environment variables.

    Example: PAGINATION_DEFAULT_LIMIT=10, PAGINATION_MAX_LIMIT=50
    """

    default_limit: int = Field(default=20, ge=1, description="Page size when limit is not given")
    max_limit: int = Field(default=100, ge=1, description="Largest page size a client may request")
    default_page: int = Field(default=1, ge=1, description="Page used when page is not given")

    model_config = SettingsConfigDict(
        env_prefix="PAGINATION_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
    )


@lru_cache
def get_pagination_settings() -> PaginationSettings:
    return PaginationSettings()
