"""Configuration management for the topology cache service."""
import os
from typing import Optional
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings."""

    # Redis configuration
    redis_host: str = os.getenv("REDIS_HOST", "localhost")
    redis_port: int = int(os.getenv("REDIS_PORT", "6379"))
    redis_db: int = 0
    redis_password: Optional[str] = None

    # Every cache, lock and expiry key starts with this prefix
    key_prefix: str = "cc:v3:"

    # Freshness windows per level (in seconds)
    business_cache_ttl: float = 1800  # 30 minutes
    set_cache_ttl: float = 1800
    module_cache_ttl: float = 1800
    custom_cache_ttl: float = 1800
    # Bounds how long snapshots miss a new custom level; watch reconcile
    # reloads the mainline every watch_reconcile_interval regardless.
    mainline_cache_ttl: float = 300  # 5 minutes

    # Cached values outlive their expiry key so they can be served stale
    stale_ttl_multiplier: float = 10.0
    stale_while_refresh: bool = False

    # Refresh lock settings
    lock_ttl: float = 10.0
    retry_duration: float = 0.5
    max_refresh_attempts: int = 5

    # System of record (CMDB core service)
    coreservice_base_url: str = os.getenv("CORESERVICE_URL", "http://127.0.0.1:50009")
    supplier_account: str = "0"
    request_user: str = "cc_system"
    http_timeout: int = 30

    # Change watch settings
    watch_poll_interval: float = 1.0
    watch_event_limit: int = 200
    watch_reconcile_interval: float = 60.0

    # Application settings
    log_level: str = "INFO"

    class Config:
        """Pydantic config."""
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
