"""Ingest endpoint: stateless HTTP entry point of the submit/poll protocol.

One ``IngestEndpoint`` exists per job type.  Every call is either a
*first contact* (``x-initial-request: true``) or a *poll*:

First contact
    1. Accept the caller's ``x-request-id`` or generate a UUID4.
    2. If a live record already exists, answer from it (never re-enqueue).
    3. Validate the payload with the job type's processor.
    4. ``store.put(PENDING)``, then enqueue the ``JobMessage``.
    5. If the enqueue fails, immediately ``store.put(FAILED)`` with
       ``{"reason": "dispatch failed", "status_code": 503}``.

    The job runs inline instead of being enqueued when the caller is
    willing to wait at least ``MAX_SERVER_WAIT_MS`` (``x-wait-time-ms``),
    or when the store is disabled and nothing could be polled later.  The
    outcome is written through the store and returned directly.

Poll
    Read the record; unknown or expired ids are ``404``.  Polls never
    create work.

Response mapping:
    PENDING / PROCESSING  -> 202 + ``Retry-After`` (narrows as the job ages)
    COMPLETED             -> 200 + ``result``
    FAILED                -> ``error.status_code`` (400-599) or 500 + ``error``

When ``x-wait-time-ms`` is positive the endpoint re-reads the store with
its own short backoff (100 ms doubling to 400 ms) for up to
``min(x-wait-time-ms, MAX_SERVER_WAIT_MS)`` before answering, which
saves the caller a round trip for fast jobs.

An optional ``after_enqueue`` callback runs once a job is queued; the
runtime uses it to drain in-process queues, where no queue trigger runs.
"""

from __future__ import annotations

import json
import logging
import re
import time
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from async_gateway.core.constants import (
    DISPATCH_FAILED_REASON,
    HEADER_CLIENT_PRINCIPAL_ID,
    HEADER_CORRELATION_ID,
    HEADER_INITIAL_REQUEST,
    HEADER_REQUEST_ID,
    HEADER_RETRY_AFTER,
    HEADER_WAIT_TIME_MS,
    REQUEST_ID_PATTERN,
)
from async_gateway.core.exceptions import (
    DispatchFailure,
    StoreUnavailable,
    ValidationError,
)
from async_gateway.core.owner_key import derive_owner_key
from async_gateway.models.messages import JobMessage
from async_gateway.models.record import RequestStatus
from async_gateway.services.worker import error_payload, run_processor

if TYPE_CHECKING:
    from collections.abc import Callable

    from async_gateway.core.config import GatewayConfig
    from async_gateway.jobqueue.base import JobQueue
    from async_gateway.models.job_type import JobType
    from async_gateway.models.record import RequestRecord
    from async_gateway.processors.base import JobProcessor
    from async_gateway.store.base import RequestStore

logger = logging.getLogger("async_gateway.services.ingest")

_REQUEST_ID_RE = re.compile(REQUEST_ID_PATTERN)

SERVER_WAIT_INITIAL_DELAY_SECONDS = 0.1
SERVER_WAIT_MAX_DELAY_SECONDS = 0.4


# ---------------------------------------------------------------------------
# Transport-neutral request / response
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class IngestRequest:
    """An HTTP call as seen by the ingest endpoint.

    Header names are matched case-insensitively.
    """

    method: str
    headers: dict[str, str] = field(default_factory=dict)
    params: dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    def __post_init__(self) -> None:
        object.__setattr__(self, "headers", {k.lower(): v for k, v in self.headers.items()})

    def header(self, name: str) -> str:
        return self.headers.get(name.lower(), "").strip()


@dataclass(frozen=True, slots=True)
class IngestResponse:
    """Outcome of one ingest call, rendered to HTTP by the Functions wiring."""

    status_code: int
    body: Any = None
    headers: dict[str, str] = field(default_factory=dict)

    def body_json(self) -> str:
        return json.dumps(self.body, separators=(",", ":"), default=str)


# ---------------------------------------------------------------------------
# Endpoint
# ---------------------------------------------------------------------------


class IngestEndpoint:
    """Submit/poll endpoint for one job type."""

    def __init__(
        self,
        job_type: JobType,
        *,
        store: RequestStore,
        queue: JobQueue,
        processor: JobProcessor,
        config: GatewayConfig,
        sleep: Callable[[float], None] = time.sleep,
        monotonic: Callable[[], float] = time.monotonic,
        after_enqueue: Callable[[], object] | None = None,
    ) -> None:
        self._job_type = job_type
        self._store = store
        self._queue = queue
        self._processor = processor
        self._config = config
        self._sleep = sleep
        self._monotonic = monotonic
        self._after_enqueue = after_enqueue

    @property
    def job_type(self) -> JobType:
        return self._job_type

    def handle(self, request: IngestRequest) -> IngestResponse:
        """Answer one submit or poll call.  Never raises for protocol errors."""
        request_id = request.header(HEADER_REQUEST_ID)
        correlation_id = request.header(HEADER_CORRELATION_ID) or request_id
        echo = self._echo_headers(request_id, correlation_id)

        principal = request.header(HEADER_CLIENT_PRINCIPAL_ID)
        if not principal:
            err = ValidationError(
                "Authenticated principal is required",
                stage="ingest",
                code="UNAUTHENTICATED",
                correlation_id=correlation_id,
            )
            return IngestResponse(401, err.to_error_dict(), echo)
        owner_key = derive_owner_key(principal, self._config.owner_key_salt)

        initial = request.header(HEADER_INITIAL_REQUEST).lower() == "true"

        if request_id and not _REQUEST_ID_RE.match(request_id):
            return self._bad_request(
                f"{HEADER_REQUEST_ID} must match {REQUEST_ID_PATTERN}",
                "INVALID_REQUEST_ID",
                correlation_id,
                echo,
            )
        if not request_id:
            if not initial:
                return self._bad_request(
                    f"A poll must carry {HEADER_REQUEST_ID}",
                    "MISSING_REQUEST_ID",
                    correlation_id,
                    echo,
                )
            request_id = str(uuid.uuid4())
            correlation_id = correlation_id or request_id
            echo = self._echo_headers(request_id, correlation_id)

        try:
            wait_ms = _parse_wait_ms(request.header(HEADER_WAIT_TIME_MS))
        except ValidationError as exc:
            exc.correlation_id = correlation_id
            return IngestResponse(400, exc.to_error_dict(), echo)

        try:
            record = self._store.get(owner_key, request_id)
            if record is None:
                if not initial:
                    logger.info(
                        "Poll for unknown request | job_type=%s | request_id=%s",
                        self._job_type.name,
                        request_id,
                    )
                    err = ValidationError(
                        f"No live request {request_id!r}",
                        stage="ingest",
                        code="REQUEST_NOT_FOUND",
                        correlation_id=correlation_id,
                    )
                    return IngestResponse(404, err.to_error_dict(), echo)

                answered = self._submit(
                    request, owner_key, request_id, correlation_id, echo, wait_ms=wait_ms
                )
                if answered is not None:
                    return answered
                record = self._store.get(owner_key, request_id)
            elif initial:
                logger.warning(
                    "Duplicate initial request not re-enqueued | "
                    "job_type=%s | request_id=%s | status=%s",
                    self._job_type.name,
                    request_id,
                    record.status.value,
                )

            if wait_ms > 0 and (record is None or not record.status.is_terminal):
                record = self._wait_for_terminal(owner_key, request_id, record, wait_ms)
        except StoreUnavailable as exc:
            exc.correlation_id = exc.correlation_id or correlation_id
            logger.exception(
                "Request store unavailable | job_type=%s | request_id=%s",
                self._job_type.name,
                request_id,
            )
            return IngestResponse(503, exc.to_error_dict(), echo)

        if record is None:
            # Expired mid-wait.
            if initial:
                return self._pending_response(request_id, age_seconds=0.0, echo=echo)
            err = ValidationError(
                f"No live request {request_id!r}",
                stage="ingest",
                code="REQUEST_NOT_FOUND",
                correlation_id=correlation_id,
            )
            return IngestResponse(404, err.to_error_dict(), echo)

        return self._render(record, echo)

    # ------------------------------------------------------------------
    # First contact
    # ------------------------------------------------------------------

    def _submit(
        self,
        request: IngestRequest,
        owner_key: str,
        request_id: str,
        correlation_id: str,
        echo: dict[str, str],
        *,
        wait_ms: int = 0,
    ) -> IngestResponse | None:
        """Create the PENDING record and enqueue the job, or run it inline.

        Returns a response when the submission was rejected before a record
        was written, or when the job ran inline.  ``None`` means the job was
        queued (or its dispatch failure recorded) and the caller re-reads
        the store.  Raises ``StoreUnavailable`` if the first write fails,
        in which case nothing is enqueued.
        """
        try:
            payload = _parse_payload(request)
        except ValidationError as exc:
            exc.correlation_id = correlation_id
            return IngestResponse(400, exc.to_error_dict(), echo)

        problems = self._processor.validate(payload)
        if problems:
            err = ValidationError(
                "; ".join(problems),
                stage="ingest",
                correlation_id=correlation_id,
            )
            body = err.to_error_dict()
            body["details"] = problems
            logger.info(
                "Ingest rejected payload | job_type=%s | request_id=%s | problems=%d",
                self._job_type.name,
                request_id,
                len(problems),
            )
            return IngestResponse(400, body, echo)

        if self._runs_inline(wait_ms):
            return self._process_inline(payload, owner_key, request_id, correlation_id, echo)

        retention = self._job_type.retention_seconds
        self._store.put(owner_key, request_id, RequestStatus.PENDING, retention_seconds=retention)

        message = JobMessage(
            owner_key=owner_key,
            request_id=request_id,
            job_type=self._job_type.name,
            payload=payload,
            correlation_id=correlation_id,
        )
        try:
            self._queue.enqueue(message.to_json())
        except DispatchFailure as exc:
            logger.error(
                "Dispatch failed | job_type=%s | request_id=%s | queue=%s | error=%s",
                self._job_type.name,
                request_id,
                self._queue.name,
                exc,
            )
            error = {
                "reason": DISPATCH_FAILED_REASON,
                "status_code": 503,
                "code": exc.code,
                "message": exc.message,
            }
            self._store.put(
                owner_key,
                request_id,
                RequestStatus.FAILED,
                error,
                retention_seconds=retention,
            )
            return None

        logger.info(
            "Ingest accepted | job_type=%s | request_id=%s | correlation_id=%s",
            self._job_type.name,
            request_id,
            correlation_id,
        )
        if self._after_enqueue is not None:
            self._after_enqueue()
        return None

    def _runs_inline(self, wait_ms: int) -> bool:
        if not self._store.enabled:
            return True
        return wait_ms > 0 and wait_ms >= self._config.max_server_wait_ms

    def _process_inline(
        self,
        payload: dict[str, Any],
        owner_key: str,
        request_id: str,
        correlation_id: str,
        echo: dict[str, str],
    ) -> IngestResponse:
        """Run the job in this call and record its terminal outcome.

        There is no redelivery here, so retryable failures are recorded
        as FAILED like any other.
        """
        retention = self._job_type.retention_seconds
        self._store.put(
            owner_key, request_id, RequestStatus.PROCESSING, retention_seconds=retention
        )
        logger.info(
            "Processing inline | job_type=%s | request_id=%s | store_enabled=%s",
            self._job_type.name,
            request_id,
            self._store.enabled,
        )

        try:
            result = run_processor(
                self._processor, payload, self._config.processing_timeout_seconds
            )
        except Exception as exc:
            error = error_payload(exc)
            error["correlation_id"] = error.get("correlation_id") or correlation_id
            self._store.put(
                owner_key, request_id, RequestStatus.FAILED, error, retention_seconds=retention
            )
            logger.error(
                "Inline processing failed | job_type=%s | request_id=%s | code=%s | error=%s",
                self._job_type.name,
                request_id,
                error.get("code"),
                exc,
            )
            return IngestResponse(failed_status_code(error), error, echo)

        self._store.put(
            owner_key, request_id, RequestStatus.COMPLETED, result, retention_seconds=retention
        )
        logger.info(
            "Inline processing completed | job_type=%s | request_id=%s",
            self._job_type.name,
            request_id,
        )
        return IngestResponse(200, result, echo)

    # ------------------------------------------------------------------
    # Server-side short wait
    # ------------------------------------------------------------------

    def _wait_for_terminal(
        self,
        owner_key: str,
        request_id: str,
        record: RequestRecord | None,
        wait_ms: int,
    ) -> RequestRecord | None:
        budget_s = min(wait_ms, self._config.max_server_wait_ms) / 1000.0
        deadline = self._monotonic() + budget_s
        delay = SERVER_WAIT_INITIAL_DELAY_SECONDS

        while record is None or not record.status.is_terminal:
            remaining = deadline - self._monotonic()
            if remaining <= 0:
                break
            self._sleep(min(delay, remaining))
            record = self._store.get(owner_key, request_id)
            delay = min(delay * 2, SERVER_WAIT_MAX_DELAY_SECONDS)

        return record

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def _render(self, record: RequestRecord, echo: dict[str, str]) -> IngestResponse:
        if record.status is RequestStatus.COMPLETED:
            return IngestResponse(200, record.result or {}, echo)

        if record.status is RequestStatus.FAILED:
            error = record.error or {}
            return IngestResponse(failed_status_code(error), error, echo)

        return self._pending_response(
            record.request_id,
            age_seconds=record.age_seconds(self._store.now()),
            echo=echo,
            status=record.status,
        )

    def _pending_response(
        self,
        request_id: str,
        *,
        age_seconds: float,
        echo: dict[str, str],
        status: RequestStatus = RequestStatus.PENDING,
    ) -> IngestResponse:
        headers = dict(echo)
        headers[HEADER_RETRY_AFTER] = str(self.retry_after(age_seconds))
        return IngestResponse(202, {"requestId": request_id, "status": status.value}, headers)

    def retry_after(self, age_seconds: float) -> int:
        """Retry hint in whole seconds, narrowing from the configured start to the floor."""
        start = self._job_type.retry_after_seconds
        if start is None:
            start = self._config.retry_after_seconds
        return max(self._config.min_retry_after_seconds, start - int(age_seconds))

    @staticmethod
    def _echo_headers(request_id: str, correlation_id: str) -> dict[str, str]:
        headers: dict[str, str] = {}
        if request_id:
            headers[HEADER_REQUEST_ID] = request_id
        if correlation_id:
            headers[HEADER_CORRELATION_ID] = correlation_id
        return headers

    @staticmethod
    def _bad_request(
        message: str, code: str, correlation_id: str, echo: dict[str, str]
    ) -> IngestResponse:
        err = ValidationError(message, stage="ingest", code=code, correlation_id=correlation_id)
        return IngestResponse(400, err.to_error_dict(), echo)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def failed_status_code(error: dict[str, Any]) -> int:
    """HTTP status for a FAILED record: ``error.status_code`` when 400-599, else 500."""
    status = error.get("status_code")
    if isinstance(status, int) and not isinstance(status, bool) and 400 <= status <= 599:
        return status
    return 500


def _parse_wait_ms(raw: str) -> int:
    if not raw:
        return 0
    try:
        value = int(raw)
    except ValueError as exc:
        msg = f"{HEADER_WAIT_TIME_MS} must be an integer, got {raw!r}"
        raise ValidationError(msg, stage="ingest", code="INVALID_WAIT_TIME") from exc
    if value < 0:
        msg = f"{HEADER_WAIT_TIME_MS} must be >= 0, got {value}"
        raise ValidationError(msg, stage="ingest", code="INVALID_WAIT_TIME")
    return value


def _parse_payload(request: IngestRequest) -> dict[str, Any]:
    """Job payload: query parameters for GET, a JSON object body otherwise."""
    if request.method.upper() == "GET":
        return dict(request.params)

    if not request.body.strip():
        return {}
    try:
        payload = json.loads(request.body)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        msg = f"Request body is not valid JSON: {exc}"
        raise ValidationError(msg, stage="ingest", code="INVALID_JSON") from exc
    if not isinstance(payload, dict):
        msg = f"Request body must be a JSON object, got {type(payload).__name__}"
        raise ValidationError(msg, stage="ingest", code="INVALID_INPUT_TYPE")
    return payload
