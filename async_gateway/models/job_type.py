"""Job type definitions.

A job type binds one HTTP route to one queue and one processor.  Each
job type gets its own ingest endpoint and worker; the protocol is shared.

Built-ins:
    ``upstream_query``   GET  ``/api/upstream/query``  -> ``upstream-query-jobs``
    ``upstream_submit``  POST ``/api/upstream/submit`` -> ``upstream-submit-jobs``
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from async_gateway.core.exceptions import ValidationError

logger = logging.getLogger("async_gateway.models.job_type")

_QUEUE_NAME_RE = re.compile(r"^[a-z0-9](?:[a-z0-9]|-(?=[a-z0-9])){2,62}$")

UPSTREAM_QUERY = "upstream_query"
UPSTREAM_SUBMIT = "upstream_submit"
HTTP_UPSTREAM_PROCESSOR = "http_upstream"


@dataclass(frozen=True, slots=True)
class JobType:
    """Static description of one asynchronous job route.

    Attributes:
        name: Registry key and function-name prefix.
        route: HTTP route (without the ``/api`` prefix).
        methods: HTTP methods accepted on the route.
        queue_name: Azure Storage queue name (3-63 chars, lowercase).
        processor: Processor registry name.
        upstream_path: Path on the upstream API called by the processor.
        retry_after_seconds: Override for the 202 retry hint, ``None`` to
            use the configured default.
        retention_seconds: Override for record retention, ``None`` to use
            the configured default.
    """

    name: str
    route: str
    methods: tuple[str, ...]
    queue_name: str
    processor: str = HTTP_UPSTREAM_PROCESSOR
    upstream_path: str = ""
    retry_after_seconds: int | None = None
    retention_seconds: int | None = None

    def __post_init__(self) -> None:
        if not self.name:
            msg = "JobType.name must be non-empty"
            raise ValidationError(msg, stage="job_type", code="JOB_TYPE_INVALID")
        if not _QUEUE_NAME_RE.match(self.queue_name):
            msg = f"JobType.queue_name={self.queue_name!r} is not a valid storage queue name"
            raise ValidationError(msg, stage="job_type", code="JOB_TYPE_INVALID")
        if not self.methods:
            msg = f"JobType {self.name!r} must accept at least one HTTP method"
            raise ValidationError(msg, stage="job_type", code="JOB_TYPE_INVALID")

    @property
    def function_prefix(self) -> str:
        return self.name.replace("-", "_")


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

_JOB_TYPES: dict[str, JobType] = {}


def _register_builtin_job_types() -> None:
    _JOB_TYPES[UPSTREAM_QUERY] = JobType(
        name=UPSTREAM_QUERY,
        route="upstream/query",
        methods=("GET",),
        queue_name="upstream-query-jobs",
        upstream_path="/query",
    )
    _JOB_TYPES[UPSTREAM_SUBMIT] = JobType(
        name=UPSTREAM_SUBMIT,
        route="upstream/submit",
        methods=("POST",),
        queue_name="upstream-submit-jobs",
        upstream_path="/submit",
    )


def _ensure_registry() -> None:
    if not _JOB_TYPES:
        _register_builtin_job_types()


def register_job_type(job_type: JobType) -> None:
    """Register (or replace) a job type."""
    _ensure_registry()
    _JOB_TYPES[job_type.name] = job_type
    logger.debug("Registered job type: %s", job_type.name)


def get_job_type(name: str) -> JobType:
    """Return the job type registered as *name*.

    Raises:
        ValidationError: If no job type has that name.
    """
    _ensure_registry()
    job_type = _JOB_TYPES.get(name)
    if job_type is None:
        available = ", ".join(sorted(_JOB_TYPES))
        msg = f"Unknown job type: {name!r}. Available: {available}"
        raise ValidationError(msg, stage="job_type", code="JOB_TYPE_UNKNOWN")
    return job_type


def list_job_types() -> list[JobType]:
    """Return registered job types sorted by name."""
    _ensure_registry()
    return [_JOB_TYPES[name] for name in sorted(_JOB_TYPES)]
