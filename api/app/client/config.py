"""Client-side settings for talking to the communications API."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class ClientSettings(BaseSettings):
    """Configuration for ``CommsClient`` loaded from ``COMMS_*`` variables."""

    api_url: str = "http://localhost:8000/api"
    api_key: str | None = None
    request_timeout_seconds: float = 12.0
    refetch_interval_seconds: float = 60.0
    reconnect_max_backoff_seconds: float = 30.0
    recent_searches_limit: int = 8

    model_config = SettingsConfigDict(env_prefix="COMMS_", env_file=".env", env_file_encoding="utf-8", extra="ignore")


@lru_cache
def get_client_settings() -> ClientSettings:
    return ClientSettings()
