from functools import lru_cache
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Follows 12-factor app configuration principles.
    """

    # env_file is only used as fallback, env vars take precedence
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    # Database Configuration - leaving it unset makes every store call
    # fail with StoreUnavailable instead of crashing at import time
    DATABASE_URL: Optional[str] = None

    # Logging Configuration
    LOG_LEVEL: str = "INFO"

    # Board behaviour
    ARRANGEMENT_MODE: Literal["list", "spatial"] = "list"
    TITLE_PLACEHOLDER: str = "untitled"

    # Reject reorder batches with duplicate ids or indices
    STRICT_REORDER: bool = False


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every request.
    """
    return Settings()


# Global settings instance
settings = get_settings()
