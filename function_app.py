"""Azure Functions entry point for the Async Request Gateway.

This module registers, for every job type, one HTTP trigger (the ingest
endpoint) and one Storage Queue trigger (the worker) using the Python v2
programming model.

All business logic lives in the async_gateway package. This file is purely
the wiring layer between Azure Functions bindings and application code.
"""

from __future__ import annotations

import functools
import logging

import azure.functions as func

from async_gateway.core.config import GatewayConfig
from async_gateway.core.exceptions import ContractError
from async_gateway.core.ingress import (
    build_http_response,
    build_ingest_request,
    read_queue_delivery,
)
from async_gateway.models.job_type import JobType, list_job_types
from async_gateway.services.runtime import GatewayRuntime
from async_gateway.services.worker import JobRetryRequested, WorkerAction

app = func.FunctionApp(http_auth_level=func.AuthLevel.ANONYMOUS)

logger = logging.getLogger("async_gateway.function_app")

STORAGE_CONNECTION_SETTING = "AzureWebJobsStorage"


@functools.cache
def get_runtime() -> GatewayRuntime:
    """Build the gateway runtime once per worker process."""
    return GatewayRuntime.from_config(GatewayConfig.from_env())


# ---------------------------------------------------------------------------
# Per-job-type triggers
# ---------------------------------------------------------------------------


def _register_job_type(job_type: JobType) -> None:
    """Register the ingest HTTP trigger and the worker queue trigger for *job_type*."""
    prefix = job_type.function_prefix

    @app.function_name(f"{prefix}_ingest")
    @app.route(route=job_type.route, methods=list(job_type.methods))
    def ingest(req: func.HttpRequest) -> func.HttpResponse:
        """Submit or poll an asynchronous request."""
        endpoint = get_runtime().ingest_endpoint(job_type.name)
        response = endpoint.handle(build_ingest_request(req))
        return build_http_response(response)

    @app.function_name(f"{prefix}_worker")
    @app.queue_trigger(
        arg_name="msg",
        queue_name=job_type.queue_name,
        connection=STORAGE_CONNECTION_SETTING,
    )
    def worker(msg: func.QueueMessage) -> None:
        """Run one queued job and record its outcome.

        Raising makes the Functions runtime leave the message on the queue
        for redelivery; after ``maxDequeueCount`` deliveries it moves the
        message to ``<queue>-poison``.
        """
        try:
            body, dequeue_count = read_queue_delivery(msg)
        except ContractError:
            logger.exception(
                "Unreadable queue message acknowledged | job_type=%s | message_id=%s",
                job_type.name,
                msg.id,
            )
            return

        outcome = get_runtime().worker(job_type.name).handle(body, dequeue_count)
        if outcome.action is WorkerAction.RETRY:
            msg_text = f"Job on {job_type.queue_name!r} requested redelivery"
            raise JobRetryRequested(msg_text, correlation_id=str(msg.id or ""))


for _job_type in list_job_types():
    _register_job_type(_job_type)
