"""Configuration management using pydantic-settings."""
from typing import Optional

from dotenv import load_dotenv
from pydantic_settings import BaseSettings

# Export .env into os.environ before Settings reads it
load_dotenv(".env")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Upstream source
    upstream_base_url: str = ""
    upstream_timeout_seconds: float = 30.0
    upstream_max_concurrency: int = 10

    # Cache store (in-memory unless a Redis URL is given)
    redis_url: Optional[str] = None
    cache_connect_timeout_seconds: float = 3.0

    # Cache and refresh timings (milliseconds)
    cache_ttl_ms: int = 10_000
    refresh_enabled: bool = True
    refresh_interval_ms: Optional[int] = None  # Defaults to cache_ttl_ms
    base_backoff_ms: int = 1000
    backoff_factor: float = 3
    backoff_ceiling_ms: int = 65536

    # Cache keys
    key_namespace: str = "stale-fetcher:v1"
    # Keep keys private to one fetcher instance even on a shared backend
    isolate_instances: bool = False

    # Logging
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
