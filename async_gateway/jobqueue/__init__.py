"""Job queue backends: Azure Storage queues and an in-process queue."""

from async_gateway.jobqueue.base import Delivery, JobQueue
from async_gateway.jobqueue.factory import create_job_queue
from async_gateway.jobqueue.memory import InMemoryJobQueue

__all__ = ["Delivery", "InMemoryJobQueue", "JobQueue", "create_job_queue"]
