"""Tests for environment-driven settings and logging setup."""

from __future__ import annotations

import logging

import pytest
from pydantic import ValidationError

from webhook_relay.config import LOG_FORMAT, Settings, configure_logging


def test_defaults(monkeypatch):
    monkeypatch.delenv("SHOPIFY_WEBHOOK_SECRET", raising=False)
    settings = Settings(_env_file=None)
    assert settings.shopify_webhook_secret == ""
    assert settings.dedup_ttl_seconds == 1800
    assert settings.rate_limit_max_events == 100
    assert settings.rate_limit_window_seconds == 60
    assert settings.max_retries == 3
    assert settings.breaker_failure_threshold == 5
    assert settings.breaker_reset_timeout_seconds == 30.0
    assert settings.batch_size == 10
    assert settings.dedup_backend == "memory"


def test_reads_environment(monkeypatch):
    monkeypatch.setenv("SHOPIFY_WEBHOOK_SECRET", "env-secret")
    monkeypatch.setenv("MAX_RETRIES", "5")
    monkeypatch.setenv("QUEUE_MAX_SIZE", "50")
    settings = Settings(_env_file=None)
    assert settings.shopify_webhook_secret == "env-secret"
    assert settings.max_retries == 5
    assert settings.queue_max_size == 50


def test_invalid_dedup_backend(monkeypatch):
    monkeypatch.setenv("DEDUP_BACKEND", "memcached")
    with pytest.raises(ValidationError):
        Settings(_env_file=None)


def test_store_api_url_falls_back_to_core_ai():
    settings = Settings(_env_file=None, core_ai_service_url="http://core:8000", backend_api_url="")
    assert settings.store_api_url == "http://core:8000"
    settings = Settings(_env_file=None, backend_api_url="http://backend:9000")
    assert settings.store_api_url == "http://backend:9000"


def test_configure_logging():
    root = logging.getLogger()
    saved = (root.level, root.handlers[:])
    try:
        configure_logging("debug")
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert root.handlers[0].formatter._fmt == LOG_FORMAT
    finally:
        root.handlers[:] = saved[1]
        root.setLevel(saved[0])
