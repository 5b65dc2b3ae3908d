"""Application settings parsed from environment variables and defaults."""

import json
from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CORS_ORIGINS = ["http://localhost:3000", "http://127.0.0.1:3000"]
DELIVERY_CHANNELS = ("email", "sms", "whatsapp")


def _split_list(value: str | list[str] | None) -> list[str]:
    """Normalize list settings from JSON, CSV, or list inputs."""
    if isinstance(value, list):
        return [item.strip() for item in value if isinstance(item, str) and item.strip()]
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return []
        try:
            parsed = json.loads(stripped)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, list):
            return [str(item).strip() for item in parsed if str(item).strip()]
        return [item.strip() for item in stripped.split(",") if item.strip()]
    return []


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    app_name: str = "Marketplace Communications API"
    environment: str = "development"
    api_prefix: str = "/api"

    database_url: str
    test_database_url: Optional[str] = None
    request_timeout_seconds: float = 12.0

    access_token_expires_minutes: int = 30
    jwt_secret_key: str
    jwt_algorithm: str = "HS256"

    log_level: str = "INFO"
    cors_origins: list[str] | str = Field(default_factory=lambda: DEFAULT_CORS_ORIGINS.copy())
    ops_admin_emails: list[str] | str = Field(default_factory=list)
    health_allowlist: list[str] | str = Field(default_factory=list)

    redis_url: str = "redis://redis:6379/0"
    worker_queue_names: list[str] | str = Field(
        default_factory=lambda: ["default", "automations", "notifications", "maintenance"]
    )

    automation_scan_interval_seconds: int = 60
    automation_scan_batch_size: int = 200
    automation_max_deferrals: int = 24
    automation_job_list_limit: int = 100
    automation_processing_timeout_minutes: int = 30

    delivery_webhook_urls: dict[str, str] = Field(default_factory=dict)
    delivery_timeout_seconds: float = 15.0

    realtime_heartbeat_seconds: float = 25.0
    realtime_idle_timeout_seconds: float = 300.0

    @field_validator("cors_origins", mode="before")
    @classmethod
    def _split_cors_origins(cls, value: str | list[str] | None) -> list[str]:
        """Normalize CORS origins, falling back to local dev hosts."""
        return _split_list(value) or DEFAULT_CORS_ORIGINS.copy()

    @field_validator("worker_queue_names", mode="before")
    @classmethod
    def _split_worker_queue_names(cls, value: str | list[str] | None) -> list[str]:
        """Normalize worker queue names from JSON, CSV, or list inputs."""
        return _split_list(value) or ["default"]

    @field_validator("health_allowlist", mode="before")
    @classmethod
    def _split_health_allowlist(cls, value: str | list[str] | None) -> list[str]:
        return _split_list(value)

    @field_validator("ops_admin_emails", mode="before")
    @classmethod
    def _split_ops_admin_emails(cls, value: str | list[str] | None) -> list[str]:
        """Normalize ops admin emails to lowercase."""
        return [email.lower() for email in _split_list(value)]

    @field_validator("delivery_webhook_urls", mode="before")
    @classmethod
    def _parse_delivery_webhooks(cls, value: str | dict | None) -> dict[str, str]:
        """Validate the per-channel delivery webhook map."""
        if value is None:
            return {}
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped:
                return {}
            value = json.loads(stripped)
        if not isinstance(value, dict):
            raise ValueError("DELIVERY_WEBHOOK_URLS must be a JSON object keyed by channel")
        unknown = set(value) - set(DELIVERY_CHANNELS)
        if unknown:
            raise ValueError(f"Unsupported delivery channels: {', '.join(sorted(unknown))}")
        return {str(key): str(url) for key, url in value.items() if url}

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    """Return cached settings to avoid re-parsing environment variables."""
    return Settings()


settings = get_settings()
