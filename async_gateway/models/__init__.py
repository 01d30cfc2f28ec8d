"""Domain models: request records, job messages and job types."""

from async_gateway.models.job_type import JobType, get_job_type, list_job_types, register_job_type
from async_gateway.models.messages import JobMessage
from async_gateway.models.record import RequestRecord, RequestStatus

__all__ = [
    "JobMessage",
    "JobType",
    "RequestRecord",
    "RequestStatus",
    "get_job_type",
    "list_job_types",
    "register_job_type",
]
