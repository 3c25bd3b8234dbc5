from __future__ import annotations

import os
from enum import Enum
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator

from marcai.logging import get_logger

logger = get_logger(__name__)


class TokenStoreBackend(str, Enum):
    """Where the credential pair and cached profile are persisted."""

    MEMORY = "memory"
    FILE = "file"
    REDIS = "redis"


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Client settings read from the environment and an optional .env file."""

    api_base_url: str = env_field("http://localhost:5000/api", "API_BASE_URL")
    request_timeout_ms: int = env_field(
        10000,
        "REQUEST_TIMEOUT_MS",
        gt=0,
        description="Per-request deadline; exceeding it raises a timeout error",
    )
    forced_logout_grace_seconds: float = env_field(
        30,
        "FORCED_LOGOUT_GRACE_SECONDS",
        ge=0,
        description="Delay between a terminal auth failure and clearing the session",
    )
    login_path: str = env_field("/login", "LOGIN_PATH")
    token_store_backend: TokenStoreBackend = env_field(
        TokenStoreBackend.FILE, "TOKEN_STORE_BACKEND"
    )
    token_store_path: str = env_field("~/.marcai/session.json", "TOKEN_STORE_PATH")
    token_key_prefix: str = env_field("marcai", "TOKEN_KEY_PREFIX")
    redis_url: str = env_field("redis://localhost:6379/0", "REDIS_URL")
    # Shared secret expected in the x-api-token header of inbound webhooks
    webhook_token: str | None = env_field(None, "ZAPI_WEBHOOK_TOKEN")
    notification_duration_ms: int = env_field(4000, "NOTIFICATION_DURATION_MS", ge=0)
    error_notification_duration_ms: int = env_field(
        5000, "ERROR_NOTIFICATION_DURATION_MS", ge=0
    )

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @property
    def request_timeout_seconds(self) -> float:
        return self.request_timeout_ms / 1000.0

    @field_validator("api_base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        value = value.strip()
        if not value.startswith(("http://", "https://")):
            raise ValueError("api_base_url must be an http(s) URL")
        return value.rstrip("/")

    @field_validator("token_store_backend")
    @classmethod
    def _validate_backend(cls, value: TokenStoreBackend) -> TokenStoreBackend:
        return TokenStoreBackend(value)

    @field_validator("webhook_token")
    @classmethod
    def _blank_token_is_unset(cls, value: str | None) -> str | None:
        if value is not None and not value.strip():
            logger.warning("webhook_token_blank", message="treating blank token as unset")
            return None
        return value


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
