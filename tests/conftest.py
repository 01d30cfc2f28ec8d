"""Shared pytest fixtures for the Async Request Gateway test suite."""

from __future__ import annotations

import pytest

from async_gateway.core.config import GatewayConfig
from async_gateway.jobqueue.memory import InMemoryJobQueue
from async_gateway.models.job_type import JobType
from async_gateway.store.memory import InMemoryRequestStore
from tests.fakes import OWNER_SALT, FakeClock, StubProcessor

# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


@pytest.fixture()
def clock() -> FakeClock:
    """A UTC clock frozen at 2026-01-01T12:00:00Z until advanced."""
    return FakeClock()


# ---------------------------------------------------------------------------
# Configuration and collaborators
# ---------------------------------------------------------------------------


@pytest.fixture()
def config() -> GatewayConfig:
    """In-memory backends, short processing timeout."""
    return GatewayConfig(
        store_backend="memory",
        queue_backend="memory",
        owner_key_salt=OWNER_SALT,
        upstream_base_url="https://upstream.test",
        processing_timeout_seconds=5.0,
        queue_visibility_timeout_seconds=30,
    )


@pytest.fixture()
def job_type() -> JobType:
    return JobType(
        name="test_job",
        route="test/job",
        methods=("POST",),
        queue_name="test-job-jobs",
        processor="stub",
        upstream_path="/job",
    )


@pytest.fixture()
def store(clock: FakeClock) -> InMemoryRequestStore:
    return InMemoryRequestStore(retention_seconds=3600, clock=clock)


@pytest.fixture()
def queue(clock: FakeClock) -> InMemoryJobQueue:
    return InMemoryJobQueue("test-job-jobs", clock=clock.monotonic, max_deliveries=5)


@pytest.fixture()
def processor(job_type: JobType, config: GatewayConfig) -> StubProcessor:
    return StubProcessor(job_type, config)
