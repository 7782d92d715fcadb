# taskapi/config.py
from functools import lru_cache
from typing import List, Literal, Optional

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _split_csv(value: str) -> List[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


class Settings(BaseSettings):
    # App
    APP_ENV: Literal["dev", "prod", "staging"] = "dev"
    LOG_LEVEL: str = "info"

    # Listeners
    HOST: str = "0.0.0.0"
    PORT: int = 8080
    HEALTH_PORT: int = 8081  # 0 disables the separate health listener
    REQUEST_TIMEOUT_SECONDS: float = 15.0
    SHUTDOWN_TIMEOUT_SECONDS: float = 20.0

    # CORS (comma-separated lists)
    CORS_ALLOWED_ORIGINS: str = "*"
    CORS_ALLOWED_METHODS: str = "GET,POST,PUT,PATCH,DELETE,OPTIONS"
    CORS_ALLOWED_HEADERS: str = "Accept,Authorization,Content-Type,X-CSRF-Token,X-API-Key,X-Request-ID"

    # Auth
    AUTH_MODE: Literal["none", "api_key", "bearer"] = "none"
    API_KEY: str = ""
    BEARER_TOKEN: str = ""
    AUTH_SKIP_PATHS: str = "/health,/metrics"

    # Rate limiting
    RATE_LIMIT_RPS: float = 0.0  # <= 0 disables
    RATE_LIMIT_BURST: int = 1
    RATE_LIMIT_REDIS_URL: Optional[str] = None

    # Storage
    STORAGE_BACKEND: Literal["memory", "sqlite"] = "memory"
    DB_PATH: str = "data/tasks.db"

    # Tracing
    OTEL_SERVICE_NAME: str = "tasks-api"
    OTEL_CONSOLE_EXPORT: bool = False

    # read .env and ignore any extra keys
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("AUTH_MODE", mode="before")
    @classmethod
    def _normalize_auth_mode(cls, value):
        if isinstance(value, str):
            value = value.strip().lower()
            if value in ("", "off"):
                return "none"
            if value in ("apikey", "api-key"):
                return "api_key"
        return value

    @model_validator(mode="after")
    def _check_credentials(self):
        if self.AUTH_MODE == "api_key" and not self.API_KEY:
            raise ValueError("API_KEY must be set when AUTH_MODE=api_key")
        if self.AUTH_MODE == "bearer" and not self.BEARER_TOKEN:
            raise ValueError("BEARER_TOKEN must be set when AUTH_MODE=bearer")
        if self.RATE_LIMIT_BURST < 1:
            raise ValueError("RATE_LIMIT_BURST must be at least 1")
        return self

    @property
    def cors_origins(self) -> List[str]:
        return _split_csv(self.CORS_ALLOWED_ORIGINS)

    @property
    def cors_methods(self) -> List[str]:
        return _split_csv(self.CORS_ALLOWED_METHODS)

    @property
    def cors_headers(self) -> List[str]:
        return _split_csv(self.CORS_ALLOWED_HEADERS)

    @property
    def auth_skip_paths(self) -> frozenset:
        return frozenset(_split_csv(self.AUTH_SKIP_PATHS))


@lru_cache
def get_settings() -> Settings:
    return Settings()
