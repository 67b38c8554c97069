from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="", env_file=".env", extra="ignore")

    # `local` is the preferred name for development environment.
    # Backward-compatibility: `dev` is accepted as an alias of `local`.
    capgate_env: Literal["local", "dev", "test", "prod"] = "local"
    capgate_log_level: str = "INFO"
    capgate_request_id_header: str = "X-Request-ID"

    # Credential vault secret (any length, hashed to a 256-bit key)
    capgate_encryption_key: str | None = None

    # Storage/Redis
    database_url: str | None = None
    redis_url: str | None = None
    config_cache_ttl_seconds: int = 300

    # Upstream calls
    invoke_timeout_default_seconds: float = 120.0
    invoke_timeout_max_seconds: float = 300.0
    upstream_connect_timeout_seconds: float = 10.0
    upstream_close_timeout_seconds: float = 5.0
    upstream_error_body_limit: int = 500
    vision_reasoning_model_prefix: str = "qvq"

    @property
    def is_development(self) -> bool:
        return self.capgate_env in ("local", "dev", "test")


@lru_cache
def get_settings() -> Settings:
    return Settings()
