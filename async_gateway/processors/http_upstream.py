"""HTTP upstream processor.

Forwards the job payload to ``UPSTREAM_BASE_URL + job_type.upstream_path``
over ``httpx``: query parameters for GET job types, a JSON body otherwise.
Construction fails with ``ConfigValidationError`` when ``UPSTREAM_BASE_URL``
is not an absolute URL, so a misconfigured app fails at startup.

Outcome mapping:
    2xx                          -> result ``{"status_code", "body"}``
    408/429/500/502/503/504      -> retryable ``UpstreamError``
    transport errors / timeouts  -> retryable ``UpstreamError``
    any other status             -> terminal ``UpstreamError`` with the status
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import httpx

from async_gateway.core.config import ConfigValidationError
from async_gateway.core.exceptions import UpstreamError
from async_gateway.processors.base import JobProcessor

if TYPE_CHECKING:
    from async_gateway.core.config import GatewayConfig
    from async_gateway.models.job_type import JobType

logger = logging.getLogger("async_gateway.processors.http_upstream")

RETRYABLE_STATUS_CODES: frozenset[int] = frozenset({408, 429, 500, 502, 503, 504})


class HttpUpstreamProcessor(JobProcessor):
    """Calls the configured upstream API for one job type."""

    def __init__(
        self,
        job_type: JobType,
        config: GatewayConfig,
        *,
        client: httpx.Client | None = None,
    ) -> None:
        super().__init__(job_type, config)
        self._method = job_type.methods[0].upper()
        if client is None and not httpx.URL(config.upstream_base_url).host:
            raise ConfigValidationError(
                "UPSTREAM_BASE_URL",
                config.upstream_base_url,
                f"must be an absolute URL; job type {job_type.name!r} calls the upstream",
            )
        self._client = client or httpx.Client(
            base_url=config.upstream_base_url,
            timeout=config.upstream_timeout_seconds,
        )

    def validate(self, payload: dict[str, Any]) -> list[str]:
        problems: list[str] = []
        if self._method == "GET":
            for key, value in payload.items():
                if isinstance(value, dict | list):
                    problems.append(f"query parameter {key!r} must be a scalar")
        return problems

    def process(self, payload: dict[str, Any]) -> dict[str, Any]:
        path = self._job_type.upstream_path
        try:
            if self._method == "GET":
                response = self._client.request(self._method, path, params=payload)
            else:
                response = self._client.request(self._method, path, json=payload)
        except httpx.TimeoutException as exc:
            msg = f"Upstream timeout on {self._method} {path}: {exc}"
            raise UpstreamError(msg, retryable=True, code="UPSTREAM_TIMEOUT") from exc
        except httpx.TransportError as exc:
            msg = f"Upstream transport error on {self._method} {path}: {exc}"
            raise UpstreamError(msg, retryable=True, code="UPSTREAM_UNREACHABLE") from exc

        status = response.status_code
        if response.is_success:
            logger.info(
                "Upstream call succeeded | job_type=%s | method=%s | status=%d",
                self._job_type.name,
                self._method,
                status,
            )
            return {"status_code": status, "body": _response_body(response)}

        retryable = status in RETRYABLE_STATUS_CODES
        logger.warning(
            "Upstream call failed | job_type=%s | method=%s | status=%d | retryable=%s",
            self._job_type.name,
            self._method,
            status,
            retryable,
        )
        msg = f"Upstream returned {status} for {self._method} {path}"
        raise UpstreamError(msg, status_code=status, retryable=retryable)

    def close(self) -> None:
        self._client.close()


def _response_body(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text
