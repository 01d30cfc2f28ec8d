"""Worker: consumes queued jobs and writes their terminal outcome.

For each delivered ``JobMessage``:

1. Skip (ACK) if the record is already terminal (duplicate delivery) or
   gone (expired before the job ran).
2. Mark the record PROCESSING.
3. Run the processor under ``PROCESSING_TIMEOUT_SECONDS``, independent
   of the queue visibility timeout.
4. Success -> ``COMPLETED`` + result, ACK.
5. Failure -> ``classify_error``:
   - TERMINAL:  ``FAILED`` + error payload, ACK.
   - RETRYABLE: RETRY (leave for redelivery).  On the final permitted
     delivery the record is set ``FAILED`` with reason
     ``"retries exhausted"`` first, so the caller gets a deterministic
     answer while the message itself dead-letters.

The outcome is returned as a ``JobOutcome`` value.  The Functions wiring
turns ``RETRY`` into a raised ``JobRetryRequested`` because that is how
the queue trigger signals "do not delete this message".
"""

from __future__ import annotations

import enum
import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from async_gateway.core.constants import RETRIES_EXHAUSTED_REASON
from async_gateway.core.exceptions import (
    ContractError,
    ErrorKind,
    GatewayError,
    StoreUnavailable,
    TransientError,
    classify_error,
)
from async_gateway.models.messages import JobMessage
from async_gateway.models.record import RequestStatus

if TYPE_CHECKING:
    from async_gateway.core.config import GatewayConfig
    from async_gateway.jobqueue.base import JobQueue
    from async_gateway.models.job_type import JobType
    from async_gateway.processors.base import JobProcessor
    from async_gateway.store.base import RequestStore

logger = logging.getLogger("async_gateway.services.worker")


class WorkerAction(enum.Enum):
    """What the queue should do with the delivered message."""

    ACK = "ack"
    RETRY = "retry"


@dataclass(frozen=True, slots=True)
class JobOutcome:
    """Result of handling one delivery.

    Attributes:
        action: ACK (delete the message) or RETRY (redeliver).
        status: Record status after handling, ``None`` if unknown.
        error: Structured error payload, when the attempt failed.
    """

    action: WorkerAction
    status: RequestStatus | None = None
    error: dict[str, Any] | None = None


class JobRetryRequested(TransientError):
    """Raised by the queue trigger so the Functions runtime redelivers the message."""

    default_stage = "worker"
    default_code = "JOB_RETRY_REQUESTED"


def error_payload(exc: BaseException) -> dict[str, Any]:
    """Structured FAILED payload for *exc*; timeouts are reported as retryable."""
    if isinstance(exc, GatewayError):
        payload = exc.to_error_dict()
    else:
        payload = {
            "category": "permanent",
            "code": "PROCESSING_FAILED",
            "stage": "worker",
            "message": str(exc) or type(exc).__name__,
            "retryable": False,
            "correlation_id": "",
        }
    if isinstance(exc, TimeoutError):
        payload.update(category="transient", code="PROCESSING_TIMEOUT", retryable=True)
    payload.setdefault("reason", payload["message"])
    return payload


def run_processor(
    processor: JobProcessor, payload: dict[str, Any], timeout_seconds: float
) -> dict[str, Any]:
    """Run ``processor.process``, raising ``TimeoutError`` past *timeout_seconds*."""
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="job")
    try:
        future = executor.submit(processor.process, payload)
        try:
            return future.result(timeout=timeout_seconds)
        except FutureTimeoutError as exc:
            msg = f"Processing exceeded {timeout_seconds}s"
            raise TimeoutError(msg) from exc
    finally:
        executor.shutdown(wait=False, cancel_futures=True)


class Worker:
    """Queue consumer for one job type."""

    def __init__(
        self,
        job_type: JobType,
        *,
        store: RequestStore,
        processor: JobProcessor,
        config: GatewayConfig,
    ) -> None:
        self._job_type = job_type
        self._store = store
        self._processor = processor
        self._config = config

    @property
    def job_type(self) -> JobType:
        return self._job_type

    def handle(self, body: str | bytes, delivery_count: int = 1) -> JobOutcome:
        """Process one delivered message body and return what to do with it."""
        try:
            message = JobMessage.from_json(body)
        except ContractError as exc:
            logger.error(
                "Malformed job message acknowledged | job_type=%s | error=%s",
                self._job_type.name,
                exc,
            )
            return JobOutcome(WorkerAction.ACK, error=exc.to_error_dict())

        if message.job_type != self._job_type.name:
            err = ContractError(
                f"Message for job type {message.job_type!r} on {self._job_type.name!r} queue",
                stage="worker",
                code="JOB_TYPE_MISMATCH",
                correlation_id=message.correlation_id,
            )
            logger.error(
                "Misrouted job message acknowledged | request_id=%s | error=%s",
                message.request_id,
                err,
            )
            return JobOutcome(WorkerAction.ACK, error=err.to_error_dict())

        try:
            return self._handle_message(message, delivery_count)
        except StoreUnavailable as exc:
            logger.warning(
                "Request store unavailable, leaving message for redelivery | "
                "job_type=%s | request_id=%s | delivery=%d",
                self._job_type.name,
                message.request_id,
                delivery_count,
            )
            return JobOutcome(WorkerAction.RETRY, error=exc.to_error_dict())

    def _handle_message(self, message: JobMessage, delivery_count: int) -> JobOutcome:
        owner_key = message.owner_key
        request_id = message.request_id
        retention = self._job_type.retention_seconds

        record = self._store.get(owner_key, request_id)
        if record is None:
            logger.warning(
                "Job record missing or expired, message acknowledged | "
                "job_type=%s | request_id=%s | delivery=%d",
                self._job_type.name,
                request_id,
                delivery_count,
            )
            return JobOutcome(WorkerAction.ACK)
        if record.status.is_terminal:
            logger.warning(
                "Duplicate delivery of finished job skipped | "
                "job_type=%s | request_id=%s | status=%s",
                self._job_type.name,
                request_id,
                record.status.value,
            )
            return JobOutcome(WorkerAction.ACK, status=record.status)

        self._store.put(
            owner_key, request_id, RequestStatus.PROCESSING, retention_seconds=retention
        )
        logger.info(
            "Job started | job_type=%s | request_id=%s | delivery=%d | correlation_id=%s",
            self._job_type.name,
            request_id,
            delivery_count,
            message.correlation_id,
        )

        try:
            result = self._run(message.payload)
        except Exception as exc:
            return self._handle_failure(message, delivery_count, exc)

        self._store.put(
            owner_key, request_id, RequestStatus.COMPLETED, result, retention_seconds=retention
        )
        logger.info("Job completed | job_type=%s | request_id=%s", self._job_type.name, request_id)
        return JobOutcome(WorkerAction.ACK, status=RequestStatus.COMPLETED)

    def _run(self, payload: dict[str, Any]) -> dict[str, Any]:
        return run_processor(self._processor, payload, self._config.processing_timeout_seconds)

    def _handle_failure(
        self, message: JobMessage, delivery_count: int, exc: Exception
    ) -> JobOutcome:
        owner_key = message.owner_key
        request_id = message.request_id
        retention = self._job_type.retention_seconds
        error = error_payload(exc)
        error["correlation_id"] = error.get("correlation_id") or message.correlation_id

        if classify_error(exc) is ErrorKind.TERMINAL:
            self._store.put(
                owner_key, request_id, RequestStatus.FAILED, error, retention_seconds=retention
            )
            logger.error(
                "Job failed | job_type=%s | request_id=%s | code=%s | error=%s",
                self._job_type.name,
                request_id,
                error.get("code"),
                exc,
            )
            return JobOutcome(WorkerAction.ACK, status=RequestStatus.FAILED, error=error)

        if delivery_count >= self._config.max_deliveries:
            exhausted = {
                "reason": RETRIES_EXHAUSTED_REASON,
                "status_code": 503,
                "code": "RETRIES_EXHAUSTED",
                "deliveries": delivery_count,
                "last_error": error,
            }
            self._store.put(
                owner_key, request_id, RequestStatus.FAILED, exhausted, retention_seconds=retention
            )
            logger.error(
                "Job retries exhausted | job_type=%s | request_id=%s | deliveries=%d | error=%s",
                self._job_type.name,
                request_id,
                delivery_count,
                exc,
            )
            return JobOutcome(WorkerAction.RETRY, status=RequestStatus.FAILED, error=exhausted)

        logger.warning(
            "Job attempt failed, will retry | "
            "job_type=%s | request_id=%s | delivery=%d/%d | error=%s",
            self._job_type.name,
            request_id,
            delivery_count,
            self._config.max_deliveries,
            exc,
        )
        return JobOutcome(WorkerAction.RETRY, status=RequestStatus.PROCESSING, error=error)

    def drain(self, queue: JobQueue, *, batch_size: int = 16) -> list[JobOutcome]:
        """Consume *queue* until it has no visible messages.

        Used for embedded and local processing where no queue trigger runs.
        Retried messages are released immediately and picked up again in
        the same drain until they succeed or dead-letter.
        """
        outcomes: list[JobOutcome] = []
        while True:
            deliveries = queue.dequeue(batch_size)
            if not deliveries:
                return outcomes
            for delivery in deliveries:
                outcome = self.handle(delivery.body, delivery.delivery_count)
                if outcome.action is WorkerAction.ACK:
                    queue.ack(delivery)
                else:
                    queue.nack(delivery)
                outcomes.append(outcome)
