from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Runtime tunables, read from the environment or a .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Transaction cache
    cache_size_limit: int = Field(alias="CACHE_SIZE_LIMIT", default=1024 * 1024)
    cache_line_size: int = Field(alias="CACHE_LINE_SIZE", default=64 * 1024)
    cache_dir: Optional[Path] = Field(alias="CACHE_DIR", default=None)

    # Logging
    log_level: str = Field(alias="LOG_LEVEL", default="WARNING")

    @field_validator("cache_size_limit", "cache_line_size")
    @classmethod
    def _positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, v: str) -> str:
        return v.upper()


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
