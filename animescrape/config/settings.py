"""Pydantic Settings for the fetch service.

All environment variables use the ANIMESCRAPE_ prefix.
Example: ANIMESCRAPE_PORT=4000, ANIMESCRAPE_POOL_SIZE=15
"""

from __future__ import annotations

from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings

from animescrape.config.kind_policies import DEFAULT_POLICIES_PATH


class FetchSettings(BaseSettings):
    """Fetch service configuration validated from environment variables."""

    # Service
    port: int = 4000
    log_level: str = "INFO"

    # Worker pool
    worker_backend: Literal["playwright", "http"] = "playwright"
    pool_size: int = Field(default=15, ge=1)
    pool_min_size: int = Field(default=5, ge=1)
    pool_max_size: int = Field(default=30, ge=1)
    worker_task_limit: int = Field(default=100, ge=1)  # Recycle after N tasks
    worker_close_timeout_seconds: float = Field(default=10.0, gt=0)
    autoscale_interval_seconds: float = Field(default=10.0, gt=0)

    # Task queue
    max_concurrency: int = Field(default=100, ge=1)
    enqueue_timeout_seconds: float | None = Field(default=30.0, gt=0)

    # Fetch attempts
    request_timeout_seconds: float = Field(default=15.0, gt=0, le=120)
    retry_attempts: int = Field(default=3, ge=1, le=10)
    retry_base_delay_seconds: float = Field(default=1.0, ge=0)
    retry_jitter_seconds: float = Field(default=0.0, ge=0)
    rotate_after_failures: int = Field(default=10, ge=1)

    # Circuit breaker
    cb_max_failures: int = Field(default=5, ge=1)
    cb_cooldown_seconds: float = Field(default=30.0, gt=0)

    # Proxy
    proxy_sources: list[str] = []
    proxy_endpoints: list[str] = []  # Static proxies, always in the pool
    proxy_refresh_interval_seconds: float = Field(default=300.0, gt=0)
    proxy_health_check_interval_seconds: float = Field(default=60.0, gt=0)
    proxy_health_check_url: str = "https://www.google.com"
    proxy_health_check_timeout_seconds: float = Field(default=5.0, gt=0)
    user_agents_path: str | None = None

    # Metadata API
    jikan_base_url: str = "https://api.jikan.moe/v4"

    # Result cache
    cache_max_entries: int = Field(default=10_000, ge=1)
    cache_sweep_interval_seconds: float = Field(default=300.0, gt=0)
    kind_policies_path: str = DEFAULT_POLICIES_PATH

    # Rate limiting
    upstream_rate_limit_tokens: int = Field(default=3, ge=1)
    upstream_rate_limit_interval_seconds: float = Field(default=1.0, gt=0)
    client_rate_limit_requests: int = Field(default=100, ge=1)
    client_rate_limit_window_seconds: float = Field(default=60.0, gt=0)

    # Shutdown
    graceful_shutdown_seconds: float = Field(default=30.0, ge=0)

    model_config = {"env_prefix": "ANIMESCRAPE_"}

    @model_validator(mode="after")
    def _check_pool_bounds(self) -> "FetchSettings":
        if self.pool_min_size > self.pool_max_size:
            raise ValueError("pool_min_size must not exceed pool_max_size")
        return self
