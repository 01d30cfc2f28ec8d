"""Unified gateway exception taxonomy.

Provides a shared base exception hierarchy for the ingest endpoint, the
request store, the job queue, the worker and the job processors. Every
domain exception inherits from ``GatewayError`` and carries structured
context fields that enable consistent retry decisions, HTTP mapping and
operator diagnostics.

Taxonomy categories
-------------------
- ``ValidationError``  : bad caller input, rejected before any record exists.
- ``TransientError``   : temporary failures (network, throttle, storage), retryable.
- ``PermanentError``   : unrecoverable domain failures, not retryable.
- ``ContractError``    : payload/schema drift between components, never retryable.

Every exception exposes ``to_error_dict()`` for a stable structured
error payload suitable for FAILED records, HTTP bodies and logging.
"""

from __future__ import annotations

import enum


class GatewayError(Exception):
    """Base exception for all gateway-domain errors.

    Attributes:
        message: Human-readable error description.
        stage: Component where the error occurred
            (e.g. ``"ingest"``, ``"store"``, ``"worker"``).
        code: Machine-readable error code (e.g. ``"STORE_UNAVAILABLE"``).
        retryable: Whether the operation may succeed if attempted again.
        correlation_id: Request/correlation identifier.
    """

    #: Default stage for subclasses (override via class attribute or kwarg).
    default_stage: str = ""
    #: Default code for subclasses (override via class attribute or kwarg).
    default_code: str = ""

    def __init__(
        self,
        message: str = "",
        *,
        stage: str = "",
        code: str = "",
        retryable: bool = False,
        correlation_id: str = "",
    ) -> None:
        self.message = message
        self.stage = stage or self.default_stage
        self.code = code or self.default_code
        self.retryable = retryable
        self.correlation_id = correlation_id
        super().__init__(message)

    @property
    def category(self) -> str:
        """Return the error category based on concrete class."""
        if isinstance(self, ContractError):
            return "contract"
        if isinstance(self, ValidationError):
            return "validation"
        if isinstance(self, TransientError):
            return "transient"
        if isinstance(self, PermanentError):
            return "permanent"
        return "transient" if self.retryable else "permanent"

    def to_error_dict(self) -> dict[str, object]:
        """Return a structured error payload with stable keys."""
        return {
            "category": self.category,
            "code": self.code,
            "stage": self.stage,
            "message": self.message,
            "retryable": self.retryable,
            "correlation_id": self.correlation_id,
        }


# ---------------------------------------------------------------------------
# Category base classes
# ---------------------------------------------------------------------------


class ValidationError(GatewayError):
    """Input or domain-model validation failure. Never retryable."""

    default_code = "VALIDATION_FAILED"

    def __init__(self, message: str = "", **kwargs: object) -> None:
        kwargs.setdefault("retryable", False)
        super().__init__(message, **kwargs)  # type: ignore[arg-type]


class TransientError(GatewayError):
    """Temporary failure that may succeed on retry."""

    def __init__(self, message: str = "", **kwargs: object) -> None:
        kwargs.setdefault("retryable", True)
        super().__init__(message, **kwargs)  # type: ignore[arg-type]


class PermanentError(GatewayError):
    """Unrecoverable domain failure. Not retryable."""

    def __init__(self, message: str = "", **kwargs: object) -> None:
        kwargs.setdefault("retryable", False)
        super().__init__(message, **kwargs)  # type: ignore[arg-type]


class ContractError(GatewayError):
    """Payload or schema drift between components. Never retryable."""

    def __init__(self, message: str = "", **kwargs: object) -> None:
        kwargs.setdefault("retryable", False)
        super().__init__(message, **kwargs)  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# Infrastructure failures
# ---------------------------------------------------------------------------


class StoreUnavailable(TransientError):
    """The request store could not be reached or refused the operation.

    Must be surfaced to the caller: Ingest only enqueues work after it
    knows the PENDING record was written.
    """

    default_stage = "store"
    default_code = "STORE_UNAVAILABLE"


class DispatchFailure(TransientError):
    """The job could not be placed on the queue after its record was written."""

    default_stage = "dispatch"
    default_code = "DISPATCH_FAILED"


# ---------------------------------------------------------------------------
# Upstream (worker) failures
# ---------------------------------------------------------------------------


class UpstreamError(GatewayError):
    """Failure inside the worker's real operation.

    Attributes:
        status_code: HTTP status returned by the upstream, when known.
    """

    default_stage = "upstream"
    default_code = "UPSTREAM_FAILED"

    def __init__(
        self,
        message: str = "",
        *,
        status_code: int | None = None,
        retryable: bool = False,
        **kwargs: object,
    ) -> None:
        self.status_code = status_code
        super().__init__(message, retryable=retryable, **kwargs)  # type: ignore[arg-type]

    def to_error_dict(self) -> dict[str, object]:
        payload = super().to_error_dict()
        if self.status_code is not None:
            payload["status_code"] = self.status_code
        return payload


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------


class ErrorKind(enum.Enum):
    """How the worker should react to a failed job attempt.

    Values:
        RETRYABLE: Leave the message unacknowledged for queue redelivery.
        TERMINAL:  Acknowledge and record FAILED.
    """

    RETRYABLE = "retryable"
    TERMINAL = "terminal"


def classify_error(exc: BaseException) -> ErrorKind:
    """Classify *exc* as retryable or terminal.

    ``GatewayError`` subclasses carry their own ``retryable`` flag.
    Timeouts and ``httpx`` transport failures are retryable; anything
    else is terminal so a bug never loops through redelivery forever.
    """
    if isinstance(exc, GatewayError):
        return ErrorKind.RETRYABLE if exc.retryable else ErrorKind.TERMINAL

    if isinstance(exc, TimeoutError):
        return ErrorKind.RETRYABLE

    import httpx

    if isinstance(exc, httpx.TimeoutException | httpx.TransportError):
        return ErrorKind.RETRYABLE

    return ErrorKind.TERMINAL
