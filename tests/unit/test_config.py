"""Tests for gateway configuration.

Covers:
- Default values
- Loading from environment variables
- Type coercion (string env vars -> numeric fields)
- Fail-fast range validation
"""

from __future__ import annotations

import os
from unittest.mock import patch

import pytest

from async_gateway.core.config import ConfigValidationError, GatewayConfig

_BASE_ENV = {
    "AzureWebJobsStorage": "UseDevelopmentStorage=true",
    "OWNER_KEY_SALT": "salt",
}


class TestGatewayConfigDefaults:
    """Verify default configuration values."""

    def test_default_backends(self) -> None:
        cfg = GatewayConfig()
        assert cfg.store_backend == "blob"
        assert cfg.queue_backend == "storage"

    def test_default_container(self) -> None:
        assert GatewayConfig().requests_container == "async-requests"

    def test_default_protocol_values(self) -> None:
        cfg = GatewayConfig()
        assert cfg.request_retention_seconds == 3600
        assert cfg.retry_after_seconds == 5
        assert cfg.min_retry_after_seconds == 1
        assert cfg.max_server_wait_ms == 25_000

    def test_default_worker_values(self) -> None:
        cfg = GatewayConfig()
        assert cfg.processing_timeout_seconds == 120.0
        assert cfg.queue_visibility_timeout_seconds == 150
        assert cfg.max_deliveries == 5


class TestGatewayConfigFromEnv:
    """Verify loading from environment variables."""

    def test_loads_from_environment(self) -> None:
        env = {
            **_BASE_ENV,
            "STORE_BACKEND": "MEMORY",
            "QUEUE_BACKEND": "memory",
            "ASYNC_REQUESTS_CONTAINER": "jobs",
            "REQUEST_RETENTION_SECONDS": "600",
            "RETRY_AFTER_SECONDS": "10",
            "MIN_RETRY_AFTER_SECONDS": "2",
            "MAX_SERVER_WAIT_MS": "1000",
            "PROCESSING_TIMEOUT_SECONDS": "30",
            "QUEUE_VISIBILITY_TIMEOUT_SECONDS": "60",
            "MAX_DELIVERIES": "3",
            "UPSTREAM_BASE_URL": "https://api.example.test",
            "UPSTREAM_TIMEOUT_SECONDS": "12.5",
        }
        with patch.dict(os.environ, env, clear=True):
            cfg = GatewayConfig.from_env()

        assert cfg.store_backend == "memory"
        assert cfg.queue_backend == "memory"
        assert cfg.requests_container == "jobs"
        assert cfg.owner_key_salt == "salt"
        assert cfg.request_retention_seconds == 600
        assert cfg.retry_after_seconds == 10
        assert cfg.min_retry_after_seconds == 2
        assert cfg.max_server_wait_ms == 1000
        assert cfg.processing_timeout_seconds == 30.0
        assert cfg.queue_visibility_timeout_seconds == 60
        assert cfg.max_deliveries == 3
        assert cfg.upstream_base_url == "https://api.example.test"
        assert cfg.upstream_timeout_seconds == 12.5

    def test_defaults_when_optional_env_missing(self) -> None:
        with patch.dict(os.environ, _BASE_ENV, clear=True):
            cfg = GatewayConfig.from_env()

        assert cfg.storage_connection_string == "UseDevelopmentStorage=true"
        assert cfg.store_backend == "blob"
        assert cfg.max_deliveries == 5

    def test_frozen_immutability(self) -> None:
        cfg = GatewayConfig()
        with pytest.raises(AttributeError):
            cfg.max_deliveries = 9  # type: ignore[misc]

    def test_non_numeric_value_raises_value_error(self) -> None:
        with (
            patch.dict(os.environ, {**_BASE_ENV, "MAX_DELIVERIES": "abc"}, clear=True),
            pytest.raises(ValueError, match="invalid literal"),
        ):
            GatewayConfig.from_env()


class TestGatewayConfigValidation:
    """Fail-fast validation of out-of-range values."""

    @pytest.mark.parametrize(
        ("key", "value"),
        [
            ("STORE_BACKEND", "redis"),
            ("QUEUE_BACKEND", "kafka"),
            ("ASYNC_REQUESTS_CONTAINER", ""),
            ("REQUEST_RETENTION_SECONDS", "0"),
            ("MIN_RETRY_AFTER_SECONDS", "-1"),
            ("RETRY_AFTER_SECONDS", "0"),
            ("MAX_SERVER_WAIT_MS", "-5"),
            ("PROCESSING_TIMEOUT_SECONDS", "0"),
            ("QUEUE_VISIBILITY_TIMEOUT_SECONDS", "120"),
            ("MAX_DELIVERIES", "0"),
            ("UPSTREAM_TIMEOUT_SECONDS", "0"),
        ],
    )
    def test_rejects_out_of_range(self, key: str, value: str) -> None:
        with (
            patch.dict(os.environ, {**_BASE_ENV, key: value}, clear=True),
            pytest.raises(ConfigValidationError) as exc_info,
        ):
            GatewayConfig.from_env()
        assert exc_info.value.key == key

    def test_missing_salt_rejected(self) -> None:
        env = {"AzureWebJobsStorage": "UseDevelopmentStorage=true"}
        with patch.dict(os.environ, env, clear=True), pytest.raises(ConfigValidationError) as exc:
            GatewayConfig.from_env()
        assert exc.value.key == "OWNER_KEY_SALT"

    def test_storage_backends_require_connection_string(self) -> None:
        with (
            patch.dict(os.environ, {"OWNER_KEY_SALT": "salt"}, clear=True),
            pytest.raises(ConfigValidationError) as exc,
        ):
            GatewayConfig.from_env()
        assert exc.value.key == "AzureWebJobsStorage"

    def test_memory_backends_need_no_connection_string(self) -> None:
        env = {"OWNER_KEY_SALT": "salt", "STORE_BACKEND": "memory", "QUEUE_BACKEND": "memory"}
        with patch.dict(os.environ, env, clear=True):
            cfg = GatewayConfig.from_env()
        assert cfg.storage_connection_string == ""

    def test_error_is_gateway_error_with_config_stage(self) -> None:
        err = ConfigValidationError("MAX_DELIVERIES", 0, "must be >= 1")
        assert err.stage == "config"
        assert err.code == "CONFIG_VALIDATION_FAILED"
        assert "MAX_DELIVERIES=0" in str(err)
