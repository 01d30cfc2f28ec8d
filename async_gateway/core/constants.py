"""Shared gateway constants.

Centralises header names, backend identifiers, and protocol defaults
that would otherwise be duplicated across the ingest endpoint, the
worker, and the client poller.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Protocol headers
# ---------------------------------------------------------------------------

HEADER_REQUEST_ID: str = "x-request-id"
"""Request identifier; echoed on every response and carried by every poll."""

HEADER_CORRELATION_ID: str = "x-correlationid"
"""Correlation identifier for tracing a call across components."""

HEADER_INITIAL_REQUEST: str = "x-initial-request"
"""Marker present (``"true"``) only on the first contact for a request."""

HEADER_WAIT_TIME_MS: str = "x-wait-time-ms"
"""Client-requested server-side wait in milliseconds (``0`` = answer immediately)."""

HEADER_RETRY_AFTER: str = "Retry-After"
"""Retry hint in seconds sent with every 202 response."""

HEADER_CLIENT_PRINCIPAL_ID: str = "x-ms-client-principal-id"
"""Authenticated principal injected by App Service authentication."""

# ---------------------------------------------------------------------------
# Store / queue backends
# ---------------------------------------------------------------------------

STORE_BACKEND_BLOB: str = "blob"
STORE_BACKEND_MEMORY: str = "memory"
STORE_BACKEND_DISABLED: str = "disabled"
STORE_BACKENDS: frozenset[str] = frozenset(
    {STORE_BACKEND_BLOB, STORE_BACKEND_MEMORY, STORE_BACKEND_DISABLED}
)

QUEUE_BACKEND_STORAGE: str = "storage"
QUEUE_BACKEND_MEMORY: str = "memory"
QUEUE_BACKENDS: frozenset[str] = frozenset({QUEUE_BACKEND_STORAGE, QUEUE_BACKEND_MEMORY})

DEFAULT_REQUESTS_CONTAINER: str = "async-requests"
"""Default blob container holding one JSON blob per request record."""

POISON_QUEUE_SUFFIX: str = "-poison"
"""Dead-letter queue suffix (matches the Functions queue trigger convention)."""

# ---------------------------------------------------------------------------
# Protocol defaults
# ---------------------------------------------------------------------------

DEFAULT_RETENTION_SECONDS: int = 3600
"""Ephemeral job records expire one hour after their last write."""

DEFAULT_RETRY_AFTER_SECONDS: int = 5
DEFAULT_MIN_RETRY_AFTER_SECONDS: int = 1
DEFAULT_MAX_SERVER_WAIT_MS: int = 25_000

DEFAULT_PROCESSING_TIMEOUT_SECONDS: float = 120.0
DEFAULT_VISIBILITY_TIMEOUT_SECONDS: int = 150
DEFAULT_MAX_DELIVERIES: int = 5

DISPATCH_FAILED_REASON: str = "dispatch failed"
RETRIES_EXHAUSTED_REASON: str = "retries exhausted"

REQUEST_ID_PATTERN: str = r"^[A-Za-z0-9._:-]{1,128}$"
"""Caller-supplied request ids must be safe as blob path segments."""
