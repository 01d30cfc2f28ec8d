"""Thin ingress boundary helpers for Azure Functions entrypoints.

Centralises the transport conversions so that ``function_app.py``
contains only trigger bindings and handoff:

- **build_ingest_request** turns a ``func.HttpRequest`` into the
  transport-neutral ``IngestRequest``.
- **build_http_response** renders an ``IngestResponse`` as a
  ``func.HttpResponse`` with a JSON body.
- **read_queue_delivery** extracts the message body and dequeue count
  from a ``func.QueueMessage``.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from async_gateway.core.exceptions import ContractError
from async_gateway.services.ingest import IngestRequest

if TYPE_CHECKING:
    import azure.functions as func

    from async_gateway.services.ingest import IngestResponse

logger = logging.getLogger("async_gateway.core.ingress")

JSON_MIMETYPE = "application/json"


def build_ingest_request(req: func.HttpRequest) -> IngestRequest:
    """Build an ``IngestRequest`` from a Functions HTTP request."""
    return IngestRequest(
        method=req.method or "GET",
        headers={str(k): str(v) for k, v in req.headers.items()},
        params={str(k): str(v) for k, v in req.params.items()},
        body=req.get_body() or b"",
    )


def build_http_response(response: IngestResponse) -> func.HttpResponse:
    """Render *response* as a Functions HTTP response."""
    import azure.functions as func

    body = response.body_json() if response.body is not None else None
    return func.HttpResponse(
        body=body,
        status_code=response.status_code,
        headers=dict(response.headers),
        mimetype=JSON_MIMETYPE,
    )


def read_queue_delivery(msg: func.QueueMessage | Any) -> tuple[str, int]:
    """Return ``(body, dequeue_count)`` for a queue trigger message.

    Raises:
        ContractError: If the body is not UTF-8 text.
    """
    raw = msg.get_body()
    try:
        body = raw.decode("utf-8") if isinstance(raw, bytes | bytearray) else str(raw)
    except UnicodeDecodeError as exc:
        msg_text = f"Queue message body is not UTF-8: {exc}"
        raise ContractError(msg_text, stage="ingress", code="INVALID_MESSAGE_ENCODING") from exc

    dequeue_count = getattr(msg, "dequeue_count", None) or 1
    logger.debug(
        "Queue delivery read | message_id=%s | dequeue_count=%d",
        getattr(msg, "id", ""),
        dequeue_count,
    )
    return body, int(dequeue_count)
