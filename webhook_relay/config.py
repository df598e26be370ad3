"""Webhook relay configuration."""

from __future__ import annotations

import logging
from typing import Literal

from pydantic_settings import BaseSettings

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


class Settings(BaseSettings):
    """Environment-driven settings for the webhook relay."""

    shopify_webhook_secret: str = ""

    # Downstream decisioning service and store lookup
    core_ai_service_url: str = "http://localhost:8000"
    core_ai_service_api_key: str = ""
    backend_api_url: str = ""  # empty = same host as the Core AI Service

    # Shared state (optional)
    redis_url: str = ""
    dedup_backend: Literal["memory", "redis"] = "memory"
    dlq_redis_key: str = "webhook-dlq"

    # Admission control
    dedup_ttl_seconds: int = 1800
    dedup_max_entries: int = 1000
    rate_limit_max_events: int = 100
    rate_limit_window_seconds: int = 60
    rate_limit_storage_uri: str = "memory://"  # any `limits` storage URI, e.g. redis://host:6379

    # Queue + forwarding
    queue_max_size: int = 10000
    batch_size: int = 10
    max_retries: int = 3
    retry_base_delay_seconds: float = 1.0
    retry_max_delay_seconds: float = 300.0
    forward_timeout_seconds: float = 10.0
    breaker_failure_threshold: int = 5
    breaker_reset_timeout_seconds: float = 30.0
    idle_interval_seconds: float = 0.1
    error_backoff_seconds: float = 1.0

    # Monitoring
    monitor_interval_seconds: float = 30.0
    monitor_queue_warning_threshold: int = 1000

    admin_token: str = ""
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 8080

    model_config = {"env_file": ".env", "extra": "ignore"}

    @property
    def store_api_url(self) -> str:
        """Base URL for store lookups."""
        return self.backend_api_url or self.core_ai_service_url


def configure_logging(level: str = "INFO") -> None:
    """Install a single console handler on the root logger."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    for handler in root.handlers[:]:
        root.removeHandler(handler)
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    root.addHandler(handler)
