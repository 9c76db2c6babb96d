# src/hubuum_console/config.py

import logging
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal, Optional
from urllib.parse import urlparse

from dotenv import load_dotenv
from pydantic import AnyHttpUrl, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# .env is at the project root, two levels up from src/hubuum_console/
CONFIG_FILE_DIR = Path(__file__).resolve().parent
PROJECT_ROOT_DIR = CONFIG_FILE_DIR.parent.parent
ENV_FILE_PATH = PROJECT_ROOT_DIR / ".env"

if ENV_FILE_PATH.exists():
    load_dotenv(dotenv_path=ENV_FILE_PATH, override=False)

# memory:// keeps sid cookies but stores sessions in this process only.
MEMORY_STORE_SCHEME = "memory"
REDIS_STORE_SCHEMES = ("redis", "rediss", "unix")


class Settings(BaseSettings):
    # === Upstream Hubuum API ===
    BACKEND_BASE_URL: AnyHttpUrl

    # === Session Management ===
    VALKEY_URL: Optional[str] = None
    SESSION_TTL_SECONDS: int = Field(default=8 * 60 * 60, gt=0)
    SESSION_PREFIX: str = Field(default="hubuum:sess:", min_length=1)
    COOKIE_PREFIX: str = Field(default="hubuum", min_length=1)

    # === Application ===
    APP_ENV: Literal["development", "test", "production"] = "development"
    APP_NAME: str = Field(default="Hubuum Console", min_length=1)
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False
    )

    @field_validator("VALKEY_URL", mode="before")
    @classmethod
    def parse_valkey_url(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        if not isinstance(v, str):
            raise TypeError("VALKEY_URL: Expected a connection string.")
        v = v.strip()
        if not v:
            return None
        scheme = urlparse(v).scheme.lower()
        if scheme != MEMORY_STORE_SCHEME and scheme not in REDIS_STORE_SCHEMES:
            raise ValueError(
                f"VALKEY_URL: unsupported scheme '{scheme}', expected one of "
                f"{', '.join(REDIS_STORE_SCHEMES + (MEMORY_STORE_SCHEME,))}."
            )
        return v

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def parse_log_level(cls, v: Any) -> str:
        level = str(v or "INFO").strip().upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"LOG_LEVEL: unknown level '{v}'.")
        return level

    @property
    def uses_distributed_sessions(self) -> bool:
        return self.VALKEY_URL is not None

    @property
    def uses_redis(self) -> bool:
        if self.VALKEY_URL is None:
            return False
        return urlparse(self.VALKEY_URL).scheme.lower() in REDIS_STORE_SCHEMES

    @property
    def backend_base_url(self) -> str:
        return str(self.BACKEND_BASE_URL)

    @property
    def is_production(self) -> bool:
        return self.APP_ENV == "production"


@lru_cache
def get_settings() -> Settings:
    try:
        return Settings()
    except Exception as e:
        logger.error("Invalid server environment: %s", e)
        raise
