import json
from functools import lru_cache
from typing import Any, List

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings - all configurable via environment variables"""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    APP_NAME: str = "CampusConnect API"
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"
    PORT: int = 8000

    # Database
    DATABASE_URL: str = "mongodb://localhost:27017"
    DATABASE_NAME: str = "campusconnect"

    # Comma separated list or a JSON array
    CORS_ORIGINS: Any = "*"

    # Sessions
    SESSION_TTL_DAYS: int = 7

    # Pagination: post feed, then comments/notifications/admin listings
    DEFAULT_PAGE_LIMIT: int = 10
    LIST_PAGE_LIMIT: int = 20
    MAX_PAGE_LIMIT: int = 100

    ENABLE_DEMO_BOOTSTRAP: bool = False

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def _cors_origins(cls, v: Any) -> List[str]:
        if isinstance(v, (list, tuple)):
            return [str(origin) for origin in v]
        if not isinstance(v, str):
            return []
        v = v.strip()
        if v.startswith("["):
            try:
                return [str(origin) for origin in json.loads(v)]
            except json.JSONDecodeError:
                v = v.strip("[]")
        return [origin.strip().strip("\"'") for origin in v.split(",") if origin.strip()]


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
