"""JobProcessor abstract base class.

A processor is the real, slow operation behind one job type.  The worker
interacts exclusively with this interface.

Lifecycle:
    1. ``validate(payload)``  called by ingest before any record exists;
       returns human-readable problems (empty list = valid).
    2. ``process(payload)``   called by the worker; returns the opaque
       ``result`` dict or raises.

Failures raised from ``process`` are classified by the worker:
``UpstreamError(retryable=True)``, timeouts and transport errors are
redelivered; everything else is recorded as FAILED.
"""

from __future__ import annotations

import abc
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from async_gateway.core.config import GatewayConfig
    from async_gateway.models.job_type import JobType


class JobProcessor(abc.ABC):
    """Abstract base class for job processors.

    Example usage::

        processor = get_processor("http_upstream", job_type, config)
        problems = processor.validate(payload)
        result = processor.process(payload)
    """

    def __init__(self, job_type: JobType, config: GatewayConfig) -> None:
        self._job_type = job_type
        self._config = config

    @property
    def job_type(self) -> JobType:
        return self._job_type

    def validate(self, payload: dict[str, Any]) -> list[str]:
        """Return validation problems for *payload* (default: none)."""
        return []

    @abc.abstractmethod
    def process(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Run the operation for *payload* and return its result.

        Raises:
            UpstreamError: On upstream rejection or transient failure.
        """

    def close(self) -> None:
        """Release held resources (HTTP connections etc.)."""
