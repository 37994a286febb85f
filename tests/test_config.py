"""Unit tests for Courier configuration."""

import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from courier.config import Settings


class TestSettings:
    """Tests for Settings model."""

    def test_default_settings(self):
        """Default settings should be reasonable."""
        # Use _env_file=None to prevent reading from .env file
        settings = Settings(_env_file=None)
        assert settings.qdrant_url == "http://localhost:6333"
        assert settings.collection_prefix == "courier"
        assert settings.queue_prefix == "webhooks:deliveries"
        assert settings.retryable_status_codes == [408, 425, 429]
        assert settings.default_retry_backoff == "exponential:2,60,3600"
        assert settings.default_max_retries == 5
        assert settings.cancel_retries_on_disable is False
        assert settings.auto_disable_after_failures is None
        assert settings.log_level == "INFO"

    def test_default_event_catalog(self):
        settings = Settings(_env_file=None)
        assert settings.default_event_types == [
            "message.delivered",
            "message.bounced",
            "tlsrpt.received",
            "dmarc.processed",
            "reputation.sampled",
        ]

    def test_visibility_timeout(self):
        """Claims outlive one request plus batch linger plus overhead."""
        settings = Settings(
            delivery_timeout_seconds=10, batch_linger_seconds=0.5, visibility_overhead_seconds=15
        )
        assert settings.visibility_timeout_seconds == 25.5

    def test_log_formats(self):
        """Only valid log formats should be accepted."""
        assert Settings(log_format="json").log_format == "json"
        assert Settings(log_format="text").log_format == "text"
        with pytest.raises(ValidationError):
            Settings(log_format="xml")

    def test_env_prefix(self):
        """Settings should use COURIER_ prefix for environment variables."""
        with patch.dict(os.environ, {"COURIER_LOG_LEVEL": "DEBUG"}):
            settings = Settings()
            assert settings.log_level == "DEBUG"

    def test_env_redis_url(self):
        """COURIER_REDIS_URL should override default."""
        with patch.dict(os.environ, {"COURIER_REDIS_URL": "redis://queue:6379/2"}):
            settings = Settings()
            assert settings.redis_url == "redis://queue:6379/2"

    def test_env_list_setting(self):
        with patch.dict(os.environ, {"COURIER_RETRYABLE_STATUS_CODES": "[409, 429]"}):
            settings = Settings()
            assert settings.retryable_status_codes == [409, 429]


class TestDeliverySettingsValidation:
    """Tests for cross-field delivery validation."""

    def test_overhead_must_be_positive(self):
        with pytest.raises(ValidationError, match="visibility_overhead_seconds"):
            Settings(visibility_overhead_seconds=0)

    def test_retryable_codes_must_be_4xx(self):
        with pytest.raises(ValidationError, match="4xx"):
            Settings(retryable_status_codes=[429, 500])

    def test_auto_disable_threshold(self):
        with pytest.raises(ValidationError, match="auto_disable_after_failures"):
            Settings(auto_disable_after_failures=0)
        assert Settings(auto_disable_after_failures=3).auto_disable_after_failures == 3

    def test_default_backoff_must_parse(self):
        with pytest.raises(ValidationError, match="default_retry_backoff"):
            Settings(default_retry_backoff="linear:5")

    def test_bounds(self):
        with pytest.raises(ValidationError):
            Settings(worker_concurrency=0)
        with pytest.raises(ValidationError):
            Settings(jitter_ratio=1.5)
        with pytest.raises(ValidationError):
            Settings(default_max_retries=100)
