"""Gateway configuration loaded from environment variables.

All configuration values have sensible defaults.  Azure Functions app
settings (or ``local.settings.json`` for local dev) are the source of
truth.

Fail-fast validation:
    ``from_env()`` raises ``ConfigValidationError`` if any value is out
    of its valid range.  This catches bad configuration at startup
    rather than on the first request.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from async_gateway.core.constants import (
    DEFAULT_MAX_DELIVERIES,
    DEFAULT_MAX_SERVER_WAIT_MS,
    DEFAULT_MIN_RETRY_AFTER_SECONDS,
    DEFAULT_PROCESSING_TIMEOUT_SECONDS,
    DEFAULT_REQUESTS_CONTAINER,
    DEFAULT_RETENTION_SECONDS,
    DEFAULT_RETRY_AFTER_SECONDS,
    DEFAULT_VISIBILITY_TIMEOUT_SECONDS,
    QUEUE_BACKEND_STORAGE,
    QUEUE_BACKENDS,
    STORE_BACKEND_BLOB,
    STORE_BACKENDS,
)
from async_gateway.core.exceptions import GatewayError


class ConfigValidationError(GatewayError):
    """Raised when configuration values are out of valid range.

    Attributes:
        key: The configuration key that failed validation.
        value: The invalid value.
        message: Human-readable description of the valid range.
    """

    default_stage = "config"
    default_code = "CONFIG_VALIDATION_FAILED"

    def __init__(self, key: str, value: object, message: str) -> None:
        self.key = key
        self.value = value
        super().__init__(f"Invalid configuration {key}={value!r}: {message}")


@dataclass(frozen=True, slots=True)
class GatewayConfig:
    """Immutable gateway configuration.

    Loaded once per process and handed to ``GatewayRuntime``.

    Attributes:
        storage_connection_string: Azure Storage connection string
            (``AzureWebJobsStorage``) used by the blob store and queues.
        store_backend: ``blob``, ``memory`` or ``disabled``.
        queue_backend: ``storage`` or ``memory``.
        requests_container: Blob container holding request records.
        owner_key_salt: HMAC salt for owner key derivation.
        request_retention_seconds: Record lifetime after its last write.
        retry_after_seconds: Initial ``Retry-After`` hint on 202 responses.
        min_retry_after_seconds: Floor the hint narrows to as a job ages.
        max_server_wait_ms: Cap on the client-requested server-side wait.
        processing_timeout_seconds: Worker's internal per-job timeout.
        queue_visibility_timeout_seconds: Queue lease per delivery; must
            exceed the processing timeout.
        max_deliveries: Deliveries before a message is dead-lettered.
        upstream_base_url: Base URL of the upstream API.
        upstream_timeout_seconds: HTTP timeout for upstream calls.
    """

    storage_connection_string: str = ""
    store_backend: str = STORE_BACKEND_BLOB
    queue_backend: str = QUEUE_BACKEND_STORAGE
    requests_container: str = DEFAULT_REQUESTS_CONTAINER
    owner_key_salt: str = ""
    request_retention_seconds: int = DEFAULT_RETENTION_SECONDS
    retry_after_seconds: int = DEFAULT_RETRY_AFTER_SECONDS
    min_retry_after_seconds: int = DEFAULT_MIN_RETRY_AFTER_SECONDS
    max_server_wait_ms: int = DEFAULT_MAX_SERVER_WAIT_MS
    processing_timeout_seconds: float = DEFAULT_PROCESSING_TIMEOUT_SECONDS
    queue_visibility_timeout_seconds: int = DEFAULT_VISIBILITY_TIMEOUT_SECONDS
    max_deliveries: int = DEFAULT_MAX_DELIVERIES
    upstream_base_url: str = ""
    upstream_timeout_seconds: float = 30.0

    @classmethod
    def from_env(cls) -> GatewayConfig:
        """Load and validate configuration from environment variables.

        Raises:
            ConfigValidationError: If a value is out of range or a
                required string value is empty.
            ValueError: If a numeric environment variable cannot be
                parsed (e.g. ``MAX_DELIVERIES=abc``).
        """
        config = cls(
            storage_connection_string=os.getenv("AzureWebJobsStorage", ""),  # noqa: SIM112
            store_backend=os.getenv("STORE_BACKEND", STORE_BACKEND_BLOB).lower(),
            queue_backend=os.getenv("QUEUE_BACKEND", QUEUE_BACKEND_STORAGE).lower(),
            requests_container=os.getenv("ASYNC_REQUESTS_CONTAINER", DEFAULT_REQUESTS_CONTAINER),
            owner_key_salt=os.getenv("OWNER_KEY_SALT", ""),
            request_retention_seconds=int(
                os.getenv("REQUEST_RETENTION_SECONDS", str(DEFAULT_RETENTION_SECONDS))
            ),
            retry_after_seconds=int(
                os.getenv("RETRY_AFTER_SECONDS", str(DEFAULT_RETRY_AFTER_SECONDS))
            ),
            min_retry_after_seconds=int(
                os.getenv("MIN_RETRY_AFTER_SECONDS", str(DEFAULT_MIN_RETRY_AFTER_SECONDS))
            ),
            max_server_wait_ms=int(
                os.getenv("MAX_SERVER_WAIT_MS", str(DEFAULT_MAX_SERVER_WAIT_MS))
            ),
            processing_timeout_seconds=float(
                os.getenv("PROCESSING_TIMEOUT_SECONDS", str(DEFAULT_PROCESSING_TIMEOUT_SECONDS))
            ),
            queue_visibility_timeout_seconds=int(
                os.getenv(
                    "QUEUE_VISIBILITY_TIMEOUT_SECONDS", str(DEFAULT_VISIBILITY_TIMEOUT_SECONDS)
                )
            ),
            max_deliveries=int(os.getenv("MAX_DELIVERIES", str(DEFAULT_MAX_DELIVERIES))),
            upstream_base_url=os.getenv("UPSTREAM_BASE_URL", ""),
            upstream_timeout_seconds=float(os.getenv("UPSTREAM_TIMEOUT_SECONDS", "30")),
        )
        _validate(config)
        return config


def _validate(config: GatewayConfig) -> None:
    """Validate configuration ranges.  Raises ``ConfigValidationError``."""
    if config.store_backend not in STORE_BACKENDS:
        raise ConfigValidationError(
            "STORE_BACKEND",
            config.store_backend,
            f"must be one of {', '.join(sorted(STORE_BACKENDS))}",
        )

    if config.queue_backend not in QUEUE_BACKENDS:
        raise ConfigValidationError(
            "QUEUE_BACKEND",
            config.queue_backend,
            f"must be one of {', '.join(sorted(QUEUE_BACKENDS))}",
        )

    needs_storage = (
        config.store_backend == STORE_BACKEND_BLOB
        or config.queue_backend == QUEUE_BACKEND_STORAGE
    )
    if needs_storage and not config.storage_connection_string:
        raise ConfigValidationError(
            "AzureWebJobsStorage",
            config.storage_connection_string,
            "must be set when a blob store or storage queue backend is selected",
        )

    if not config.requests_container:
        raise ConfigValidationError(
            "ASYNC_REQUESTS_CONTAINER",
            config.requests_container,
            "must not be empty",
        )

    if not config.owner_key_salt:
        raise ConfigValidationError("OWNER_KEY_SALT", "", "must not be empty")

    if config.request_retention_seconds <= 0:
        raise ConfigValidationError(
            "REQUEST_RETENTION_SECONDS",
            config.request_retention_seconds,
            "must be > 0 (seconds)",
        )

    if config.min_retry_after_seconds < 0:
        raise ConfigValidationError(
            "MIN_RETRY_AFTER_SECONDS",
            config.min_retry_after_seconds,
            "must be >= 0 (seconds)",
        )

    if config.retry_after_seconds < config.min_retry_after_seconds:
        raise ConfigValidationError(
            "RETRY_AFTER_SECONDS",
            config.retry_after_seconds,
            f"must be >= MIN_RETRY_AFTER_SECONDS ({config.min_retry_after_seconds})",
        )

    if config.max_server_wait_ms < 0:
        raise ConfigValidationError(
            "MAX_SERVER_WAIT_MS",
            config.max_server_wait_ms,
            "must be >= 0 (milliseconds)",
        )

    if config.processing_timeout_seconds <= 0:
        raise ConfigValidationError(
            "PROCESSING_TIMEOUT_SECONDS",
            config.processing_timeout_seconds,
            "must be > 0 (seconds)",
        )

    if config.queue_visibility_timeout_seconds <= config.processing_timeout_seconds:
        raise ConfigValidationError(
            "QUEUE_VISIBILITY_TIMEOUT_SECONDS",
            config.queue_visibility_timeout_seconds,
            "must exceed PROCESSING_TIMEOUT_SECONDS "
            f"({config.processing_timeout_seconds}) or two workers may run one job",
        )

    if config.max_deliveries < 1:
        raise ConfigValidationError(
            "MAX_DELIVERIES",
            config.max_deliveries,
            "must be >= 1",
        )

    if config.upstream_timeout_seconds <= 0:
        raise ConfigValidationError(
            "UPSTREAM_TIMEOUT_SECONDS",
            config.upstream_timeout_seconds,
            "must be > 0 (seconds)",
        )
