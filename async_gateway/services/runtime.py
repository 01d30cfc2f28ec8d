"""Gateway composition root.

``GatewayRuntime`` wires configuration, the request store, one queue and
one processor per job type, and hands out the ingest endpoints and
workers built on them.  It is constructed once per process in
``function_app.py``; nothing else in the package holds global state.

With ``QUEUE_BACKEND=memory`` no queue trigger ever sees the jobs, so
``from_config`` turns on local processing: each accepted job drains its
queue in the submitting call.
"""

from __future__ import annotations

import functools
import logging
from typing import TYPE_CHECKING

from async_gateway.core.constants import QUEUE_BACKEND_MEMORY
from async_gateway.core.exceptions import ValidationError
from async_gateway.jobqueue.factory import create_job_queue
from async_gateway.models.job_type import list_job_types
from async_gateway.processors.factory import get_processor
from async_gateway.services.ingest import IngestEndpoint
from async_gateway.services.worker import Worker
from async_gateway.store.factory import create_request_store

if TYPE_CHECKING:
    from collections.abc import Iterable

    from async_gateway.core.config import GatewayConfig
    from async_gateway.jobqueue.base import JobQueue
    from async_gateway.models.job_type import JobType
    from async_gateway.processors.base import JobProcessor
    from async_gateway.store.base import RequestStore

logger = logging.getLogger("async_gateway.services.runtime")


class GatewayRuntime:
    """Explicitly constructed set of gateway collaborators."""

    def __init__(
        self,
        config: GatewayConfig,
        *,
        store: RequestStore,
        job_types: Iterable[JobType],
        queues: dict[str, JobQueue],
        processors: dict[str, JobProcessor],
        process_locally: bool = False,
    ) -> None:
        self.config = config
        self.process_locally = process_locally
        self.store = store
        self.job_types = {job_type.name: job_type for job_type in job_types}
        self.queues = queues
        self.processors = processors
        self._endpoints: dict[str, IngestEndpoint] = {}
        self._workers: dict[str, Worker] = {}

    @classmethod
    def from_config(
        cls,
        config: GatewayConfig,
        *,
        job_types: Iterable[JobType] | None = None,
        allow_disabled_store: bool = False,
    ) -> GatewayRuntime:
        """Build every collaborator named by *config* for *job_types*.

        Args:
            config: Validated gateway configuration.
            job_types: Job types to serve (default: every registered one).
            allow_disabled_store: Permit ``STORE_BACKEND=disabled``.
        """
        selected = list(job_types) if job_types is not None else list_job_types()
        store = create_request_store(config, allow_disabled=allow_disabled_store)
        queues = {jt.name: create_job_queue(config, jt.queue_name) for jt in selected}
        processors = {jt.name: get_processor(jt.processor, jt, config) for jt in selected}

        process_locally = config.queue_backend == QUEUE_BACKEND_MEMORY

        logger.info(
            "Gateway runtime ready | store=%s | queue_backend=%s | local_processing=%s | "
            "job_types=%s",
            config.store_backend,
            config.queue_backend,
            process_locally,
            ",".join(jt.name for jt in selected),
        )
        return cls(
            config,
            store=store,
            job_types=selected,
            queues=queues,
            processors=processors,
            process_locally=process_locally,
        )

    def job_type(self, name: str) -> JobType:
        try:
            return self.job_types[name]
        except KeyError:
            msg = f"Job type {name!r} is not served by this runtime"
            raise ValidationError(msg, stage="runtime", code="JOB_TYPE_UNKNOWN") from None

    def ingest_endpoint(self, name: str) -> IngestEndpoint:
        """Return the (cached) ingest endpoint for job type *name*."""
        endpoint = self._endpoints.get(name)
        if endpoint is None:
            endpoint = IngestEndpoint(
                self.job_type(name),
                store=self.store,
                queue=self.queues[name],
                processor=self.processors[name],
                config=self.config,
                after_enqueue=functools.partial(self.drain, name) if self.process_locally else None,
            )
            self._endpoints[name] = endpoint
        return endpoint

    def worker(self, name: str) -> Worker:
        """Return the (cached) worker for job type *name*."""
        worker = self._workers.get(name)
        if worker is None:
            worker = Worker(
                self.job_type(name),
                store=self.store,
                processor=self.processors[name],
                config=self.config,
            )
            self._workers[name] = worker
        return worker

    def drain(self, name: str) -> int:
        """Process every visible message of job type *name*; return the count handled."""
        return len(self.worker(name).drain(self.queues[name]))

    def close(self) -> None:
        for processor in self.processors.values():
            processor.close()
