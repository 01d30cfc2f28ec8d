"""Job queue factory: one queue per job type, backend from ``QUEUE_BACKEND``."""

from __future__ import annotations

from typing import TYPE_CHECKING

from async_gateway.core.config import ConfigValidationError
from async_gateway.core.constants import QUEUE_BACKEND_MEMORY, QUEUE_BACKEND_STORAGE

if TYPE_CHECKING:
    from async_gateway.core.config import GatewayConfig
    from async_gateway.jobqueue.base import JobQueue


def create_job_queue(config: GatewayConfig, queue_name: str) -> JobQueue:
    """Build the queue named *queue_name* on the configured backend.

    Raises:
        ConfigValidationError: If the backend is unknown.
    """
    kwargs = {
        "visibility_timeout_seconds": config.queue_visibility_timeout_seconds,
        "max_deliveries": config.max_deliveries,
    }
    if config.queue_backend == QUEUE_BACKEND_STORAGE:
        from async_gateway.jobqueue.storage_queue import StorageQueueJobQueue

        return StorageQueueJobQueue.from_connection_string(
            config.storage_connection_string, queue_name, **kwargs
        )
    if config.queue_backend == QUEUE_BACKEND_MEMORY:
        from async_gateway.jobqueue.memory import InMemoryJobQueue

        return InMemoryJobQueue(queue_name, **kwargs)
    raise ConfigValidationError("QUEUE_BACKEND", config.queue_backend, "unknown queue backend")
