import os
from functools import lru_cache
from typing import List

from pydantic import BaseModel, Field


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


def _env_list(name: str, default: str) -> List[str]:
    return [item.strip() for item in os.getenv(name, default).split(",") if item.strip()]


class Settings(BaseModel):
    """Runtime configuration for the identity reconciliation service."""

    database_path: str = Field(default_factory=lambda: os.getenv("CONTACTS_DB_PATH", "contacts.db"))
    db_timeout: float = Field(default_factory=lambda: float(os.getenv("CONTACTS_DB_TIMEOUT", "5.0")))
    max_retries: int = Field(default_factory=lambda: int(os.getenv("IDENTIFY_MAX_RETRIES", "3")))
    retry_backoff: float = Field(default_factory=lambda: float(os.getenv("IDENTIFY_RETRY_BACKOFF", "0.05")))
    log_level: str = Field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    debug: bool = Field(default_factory=lambda: _env_flag("APP_DEBUG"))
    host: str = Field(default_factory=lambda: os.getenv("HOST", "0.0.0.0"))
    port: int = Field(default_factory=lambda: int(os.getenv("PORT", "8000")))
    cors_origins: List[str] = Field(
        default_factory=lambda: _env_list("CORS_ORIGINS", "http://localhost:3000,http://localhost:5173")
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
