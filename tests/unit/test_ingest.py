"""Tests for the ingest endpoint.

Covers:
- First contact: PENDING record, one enqueue, 202 with request id
- Polls: 202 / 200 / mapped error status, never re-enqueue
- Dispatch failure converts the record to FAILED immediately
- Store failures surface as 503 without enqueueing
- Header validation, authentication, payload validation
- Retry-After narrowing and the server-side short wait
- Inline processing for long waits and disabled stores
- The after-enqueue hook used for in-process queues
"""

from __future__ import annotations

import json
from dataclasses import replace
from unittest.mock import MagicMock

import pytest

from async_gateway.core.config import GatewayConfig
from async_gateway.core.exceptions import StoreUnavailable, UpstreamError
from async_gateway.core.owner_key import derive_owner_key
from async_gateway.jobqueue.memory import InMemoryJobQueue
from async_gateway.models.job_type import JobType
from async_gateway.models.messages import JobMessage
from async_gateway.models.record import RequestStatus
from async_gateway.services.ingest import (
    IngestEndpoint,
    IngestRequest,
    IngestResponse,
    failed_status_code,
)
from async_gateway.store.base import DisabledRequestStore
from async_gateway.store.memory import InMemoryRequestStore
from tests.fakes import OWNER_SALT, PRINCIPAL, FakeClock, StubProcessor

OWNER = derive_owner_key(PRINCIPAL, OWNER_SALT)


def _request(
    *,
    initial: bool = False,
    request_id: str = "",
    body: object = None,
    method: str = "POST",
    principal: str = PRINCIPAL,
    extra: dict[str, str] | None = None,
    params: dict[str, str] | None = None,
) -> IngestRequest:
    headers: dict[str, str] = {}
    if principal:
        headers["X-MS-CLIENT-PRINCIPAL-ID"] = principal
    if initial:
        headers["x-initial-request"] = "true"
    if request_id:
        headers["x-request-id"] = request_id
    headers.update(extra or {})
    raw = json.dumps(body).encode() if body is not None else b""
    return IngestRequest(method=method, headers=headers, params=params or {}, body=raw)


@pytest.fixture()
def endpoint(
    job_type: JobType,
    store: InMemoryRequestStore,
    queue: InMemoryJobQueue,
    processor: StubProcessor,
    config: GatewayConfig,
    clock: FakeClock,
) -> IngestEndpoint:
    return IngestEndpoint(
        job_type,
        store=store,
        queue=queue,
        processor=processor,
        config=config,
        sleep=clock.sleep,
        monotonic=clock.monotonic,
    )


class TestFirstContact:
    def test_creates_pending_record_and_enqueues(
        self,
        endpoint: IngestEndpoint,
        store: InMemoryRequestStore,
        queue: InMemoryJobQueue,
    ) -> None:
        response = endpoint.handle(_request(initial=True, request_id="r1", body={"vrn": "1"}))

        assert response.status_code == 202
        assert response.body == {"requestId": "r1", "status": "pending"}
        assert response.headers["x-request-id"] == "r1"
        assert response.headers["Retry-After"] == "5"

        record = store.get(OWNER, "r1")
        assert record is not None
        assert record.status is RequestStatus.PENDING

        (delivery,) = queue.dequeue()
        message = JobMessage.from_json(delivery.body)
        assert message.owner_key == OWNER
        assert message.request_id == "r1"
        assert message.job_type == "test_job"
        assert message.payload == {"vrn": "1"}

    def test_generates_request_id_when_absent(
        self, endpoint: IngestEndpoint, store: InMemoryRequestStore
    ) -> None:
        response = endpoint.handle(_request(initial=True, body={}))
        request_id = response.headers["x-request-id"]
        assert response.status_code == 202
        assert response.body["requestId"] == request_id
        assert store.get(OWNER, request_id) is not None

    def test_correlation_id_echoed_and_forwarded(
        self, endpoint: IngestEndpoint, queue: InMemoryJobQueue
    ) -> None:
        response = endpoint.handle(
            _request(initial=True, request_id="r1", extra={"x-correlationid": "corr-9"})
        )
        assert response.headers["x-correlationid"] == "corr-9"
        (delivery,) = queue.dequeue()
        assert JobMessage.from_json(delivery.body).correlation_id == "corr-9"

    def test_repeated_initial_contact_is_not_re_enqueued(
        self, endpoint: IngestEndpoint, queue: InMemoryJobQueue
    ) -> None:
        endpoint.handle(_request(initial=True, request_id="r1"))
        response = endpoint.handle(_request(initial=True, request_id="r1"))
        assert response.status_code == 202
        assert len(queue) == 1

    def test_get_payload_comes_from_query(
        self, endpoint: IngestEndpoint, queue: InMemoryJobQueue
    ) -> None:
        endpoint.handle(
            _request(initial=True, request_id="r1", method="GET", params={"period": "Q1"})
        )
        (delivery,) = queue.dequeue()
        assert JobMessage.from_json(delivery.body).payload == {"period": "Q1"}


class TestRejections:
    def test_missing_principal_is_401(self, endpoint: IngestEndpoint) -> None:
        response = endpoint.handle(_request(initial=True, principal=""))
        assert response.status_code == 401
        assert response.body["code"] == "UNAUTHENTICATED"

    def test_poll_without_request_id_is_400(self, endpoint: IngestEndpoint) -> None:
        response = endpoint.handle(_request())
        assert response.status_code == 400
        assert response.body["code"] == "MISSING_REQUEST_ID"

    def test_invalid_request_id_is_400(self, endpoint: IngestEndpoint) -> None:
        response = endpoint.handle(_request(initial=True, request_id="../etc/passwd"))
        assert response.status_code == 400
        assert response.body["code"] == "INVALID_REQUEST_ID"

    def test_invalid_json_is_400_and_creates_nothing(
        self, endpoint: IngestEndpoint, store: InMemoryRequestStore, queue: InMemoryJobQueue
    ) -> None:
        request = IngestRequest(
            method="POST",
            headers={
                "x-ms-client-principal-id": PRINCIPAL,
                "x-initial-request": "true",
                "x-request-id": "r1",
            },
            body=b"{not json",
        )
        response = endpoint.handle(request)
        assert response.status_code == 400
        assert response.body["code"] == "INVALID_JSON"
        assert store.get(OWNER, "r1") is None
        assert len(queue) == 0

    def test_non_object_body_is_400(self, endpoint: IngestEndpoint) -> None:
        response = endpoint.handle(_request(initial=True, request_id="r1", body=[1, 2]))
        assert response.status_code == 400
        assert response.body["code"] == "INVALID_INPUT_TYPE"

    def test_processor_validation_problems_are_400(
        self,
        endpoint: IngestEndpoint,
        processor: StubProcessor,
        store: InMemoryRequestStore,
        queue: InMemoryJobQueue,
    ) -> None:
        processor.problems = ["vrn is required"]
        response = endpoint.handle(_request(initial=True, request_id="r1", body={}))
        assert response.status_code == 400
        assert response.body["details"] == ["vrn is required"]
        assert store.get(OWNER, "r1") is None
        assert len(queue) == 0

    def test_invalid_wait_time_is_400(self, endpoint: IngestEndpoint) -> None:
        response = endpoint.handle(
            _request(initial=True, request_id="r1", extra={"x-wait-time-ms": "soon"})
        )
        assert response.status_code == 400
        assert response.body["code"] == "INVALID_WAIT_TIME"


class TestPolling:
    def test_unknown_request_is_404_and_creates_no_work(
        self, endpoint: IngestEndpoint, store: InMemoryRequestStore, queue: InMemoryJobQueue
    ) -> None:
        response = endpoint.handle(_request(request_id="nope"))
        assert response.status_code == 404
        assert response.body["code"] == "REQUEST_NOT_FOUND"
        assert store.get(OWNER, "nope") is None
        assert len(queue) == 0

    def test_pending_poll_is_202_without_enqueue(
        self, endpoint: IngestEndpoint, queue: InMemoryJobQueue
    ) -> None:
        endpoint.handle(_request(initial=True, request_id="r1"))
        response = endpoint.handle(_request(request_id="r1"))
        assert response.status_code == 202
        assert len(queue) == 1

    def test_processing_poll_reports_status(
        self, endpoint: IngestEndpoint, store: InMemoryRequestStore
    ) -> None:
        store.put(OWNER, "r1", RequestStatus.PROCESSING)
        response = endpoint.handle(_request(request_id="r1"))
        assert response.status_code == 202
        assert response.body["status"] == "processing"

    def test_completed_poll_is_200_with_result(
        self, endpoint: IngestEndpoint, store: InMemoryRequestStore
    ) -> None:
        store.put(OWNER, "r1", RequestStatus.COMPLETED, {"x": 1})
        response = endpoint.handle(_request(request_id="r1"))
        assert response.status_code == 200
        assert response.body == {"x": 1}
        assert response.headers["x-request-id"] == "r1"

    def test_failed_poll_maps_status_code(
        self, endpoint: IngestEndpoint, store: InMemoryRequestStore
    ) -> None:
        store.put(OWNER, "r1", RequestStatus.FAILED, {"reason": "bad vrn", "status_code": 422})
        response = endpoint.handle(_request(request_id="r1"))
        assert response.status_code == 422
        assert response.body["reason"] == "bad vrn"

    def test_failed_poll_without_status_is_500(
        self, endpoint: IngestEndpoint, store: InMemoryRequestStore
    ) -> None:
        store.put(OWNER, "r1", RequestStatus.FAILED, {"reason": "upstream timeout"})
        response = endpoint.handle(_request(request_id="r1"))
        assert response.status_code == 500
        assert response.body == {"reason": "upstream timeout"}

    def test_expired_record_is_404(
        self, endpoint: IngestEndpoint, store: InMemoryRequestStore, clock: FakeClock
    ) -> None:
        store.put(OWNER, "r1", RequestStatus.PENDING)
        clock.advance(3600)
        assert endpoint.handle(_request(request_id="r1")).status_code == 404

    def test_other_owner_cannot_see_record(
        self, endpoint: IngestEndpoint, store: InMemoryRequestStore
    ) -> None:
        store.put(OWNER, "r1", RequestStatus.COMPLETED, {"x": 1})
        response = endpoint.handle(_request(request_id="r1", principal="someone-else"))
        assert response.status_code == 404


class TestRetryAfter:
    def test_narrows_with_age(
        self, endpoint: IngestEndpoint, store: InMemoryRequestStore, clock: FakeClock
    ) -> None:
        endpoint.handle(_request(initial=True, request_id="r1"))
        clock.advance(2)
        assert endpoint.handle(_request(request_id="r1")).headers["Retry-After"] == "3"
        clock.advance(10)
        assert endpoint.handle(_request(request_id="r1")).headers["Retry-After"] == "1"

    def test_job_type_override(self, endpoint: IngestEndpoint, job_type: JobType) -> None:
        endpoint._job_type = replace(job_type, retry_after_seconds=9)
        assert endpoint.retry_after(0) == 9


class TestDispatchFailure:
    def test_enqueue_failure_marks_record_failed(
        self, endpoint: IngestEndpoint, store: InMemoryRequestStore, queue: InMemoryJobQueue
    ) -> None:
        queue.fail_enqueue = True
        response = endpoint.handle(_request(initial=True, request_id="r1"))

        record = store.get(OWNER, "r1")
        assert record is not None
        assert record.status is RequestStatus.FAILED
        assert record.error is not None
        assert record.error["reason"] == "dispatch failed"
        assert response.status_code == 503
        assert response.body["reason"] == "dispatch failed"

    def test_poll_after_dispatch_failure_stays_failed(
        self, endpoint: IngestEndpoint, queue: InMemoryJobQueue
    ) -> None:
        queue.fail_enqueue = True
        endpoint.handle(_request(initial=True, request_id="r1"))
        assert endpoint.handle(_request(request_id="r1")).status_code == 503


class TestStoreUnavailable:
    def test_pending_write_failure_is_503_and_not_enqueued(
        self,
        job_type: JobType,
        queue: InMemoryJobQueue,
        processor: StubProcessor,
        config: GatewayConfig,
    ) -> None:
        store = MagicMock()
        store.get.return_value = None
        store.put.side_effect = StoreUnavailable("blob down")
        endpoint = IngestEndpoint(
            job_type, store=store, queue=queue, processor=processor, config=config
        )

        response = endpoint.handle(_request(initial=True, request_id="r1"))

        assert response.status_code == 503
        assert response.body["code"] == "STORE_UNAVAILABLE"
        assert response.body["correlation_id"] == "r1"
        assert len(queue) == 0

    def test_read_failure_on_poll_is_503(
        self,
        job_type: JobType,
        queue: InMemoryJobQueue,
        processor: StubProcessor,
        config: GatewayConfig,
    ) -> None:
        store = MagicMock()
        store.get.side_effect = StoreUnavailable("blob down")
        endpoint = IngestEndpoint(
            job_type, store=store, queue=queue, processor=processor, config=config
        )
        assert endpoint.handle(_request(request_id="r1")).status_code == 503


class TestServerSideWait:
    def test_returns_terminal_result_within_wait(
        self, endpoint: IngestEndpoint, store: InMemoryRequestStore, clock: FakeClock
    ) -> None:
        store.put(OWNER, "r1", RequestStatus.PENDING)
        sleeps: list[float] = []

        def sleep(seconds: float) -> None:
            sleeps.append(seconds)
            clock.advance(seconds)
            if len(sleeps) == 3:
                store.put(OWNER, "r1", RequestStatus.COMPLETED, {"x": 1})

        endpoint._sleep = sleep
        response = endpoint.handle(_request(request_id="r1", extra={"x-wait-time-ms": "5000"}))

        assert response.status_code == 200
        assert sleeps == pytest.approx([0.1, 0.2, 0.4])

    def test_gives_up_after_wait_budget(
        self, endpoint: IngestEndpoint, store: InMemoryRequestStore, clock: FakeClock
    ) -> None:
        store.put(OWNER, "r1", RequestStatus.PENDING)
        response = endpoint.handle(_request(request_id="r1", extra={"x-wait-time-ms": "1000"}))
        assert response.status_code == 202
        assert clock.monotonic() == pytest.approx(1.0)

    def test_wait_is_capped_by_config(
        self,
        job_type: JobType,
        store: InMemoryRequestStore,
        queue: InMemoryJobQueue,
        processor: StubProcessor,
        config: GatewayConfig,
        clock: FakeClock,
    ) -> None:
        endpoint = IngestEndpoint(
            job_type,
            store=store,
            queue=queue,
            processor=processor,
            config=replace(config, max_server_wait_ms=500),
            sleep=clock.sleep,
            monotonic=clock.monotonic,
        )
        store.put(OWNER, "r1", RequestStatus.PENDING)
        endpoint.handle(_request(request_id="r1", extra={"x-wait-time-ms": "60000"}))
        assert clock.monotonic() == pytest.approx(0.5)

    def test_zero_wait_answers_immediately(
        self, endpoint: IngestEndpoint, store: InMemoryRequestStore, clock: FakeClock
    ) -> None:
        store.put(OWNER, "r1", RequestStatus.PENDING)
        response = endpoint.handle(_request(request_id="r1", extra={"x-wait-time-ms": "0"}))
        assert response.status_code == 202
        assert clock.monotonic() == 0.0


class TestInlineProcessing:
    def test_long_wait_runs_job_inline(
        self,
        endpoint: IngestEndpoint,
        store: InMemoryRequestStore,
        queue: InMemoryJobQueue,
        processor: StubProcessor,
        config: GatewayConfig,
    ) -> None:
        processor.outcomes = [{"x": 1}]
        wait = str(config.max_server_wait_ms)

        response = endpoint.handle(
            _request(
                initial=True, request_id="r1", body={"vrn": "1"}, extra={"x-wait-time-ms": wait}
            )
        )

        assert response.status_code == 200
        assert response.body == {"x": 1}
        assert response.headers["x-request-id"] == "r1"
        assert processor.calls == [{"vrn": "1"}]
        assert len(queue) == 0
        record = store.get(OWNER, "r1")
        assert record is not None
        assert record.status is RequestStatus.COMPLETED
        assert record.result == {"x": 1}

    def test_inline_failure_is_recorded_and_mapped(
        self,
        endpoint: IngestEndpoint,
        store: InMemoryRequestStore,
        queue: InMemoryJobQueue,
        processor: StubProcessor,
    ) -> None:
        processor.outcomes = [UpstreamError("not found", status_code=404)]

        response = endpoint.handle(
            _request(initial=True, request_id="r1", extra={"x-wait-time-ms": "60000"})
        )

        assert response.status_code == 404
        assert response.body["reason"] == "not found"
        assert response.body["correlation_id"] == "r1"
        assert len(queue) == 0
        record = store.get(OWNER, "r1")
        assert record is not None
        assert record.status is RequestStatus.FAILED
        assert record.error == response.body

    def test_inline_retryable_failure_is_final(
        self, endpoint: IngestEndpoint, processor: StubProcessor, queue: InMemoryJobQueue
    ) -> None:
        processor.outcomes = [UpstreamError("busy", status_code=503, retryable=True)]
        response = endpoint.handle(
            _request(initial=True, request_id="r1", extra={"x-wait-time-ms": "30000"})
        )
        assert response.status_code == 503
        assert processor.calls == [{}]
        assert len(queue) == 0

    def test_shorter_wait_still_enqueues(
        self,
        endpoint: IngestEndpoint,
        queue: InMemoryJobQueue,
        processor: StubProcessor,
        clock: FakeClock,
    ) -> None:
        response = endpoint.handle(
            _request(initial=True, request_id="r1", extra={"x-wait-time-ms": "1000"})
        )
        assert response.status_code == 202
        assert processor.calls == []
        assert len(queue) == 1
        assert clock.monotonic() == pytest.approx(1.0)

    def test_polls_never_run_inline(
        self, endpoint: IngestEndpoint, store: InMemoryRequestStore, processor: StubProcessor
    ) -> None:
        store.put(OWNER, "r1", RequestStatus.PENDING)
        response = endpoint.handle(_request(request_id="r1", extra={"x-wait-time-ms": "60000"}))
        assert response.status_code == 202
        assert processor.calls == []

    def test_disabled_store_always_runs_inline(
        self,
        job_type: JobType,
        queue: InMemoryJobQueue,
        processor: StubProcessor,
        config: GatewayConfig,
    ) -> None:
        endpoint = IngestEndpoint(
            job_type,
            store=DisabledRequestStore(),
            queue=queue,
            processor=processor,
            config=config,
        )
        processor.outcomes = [{"x": 2}]

        response = endpoint.handle(_request(initial=True, request_id="r1"))

        assert response.status_code == 200
        assert response.body == {"x": 2}
        assert len(queue) == 0


class TestAfterEnqueue:
    def _endpoint(
        self,
        job_type: JobType,
        store: InMemoryRequestStore,
        queue: InMemoryJobQueue,
        processor: StubProcessor,
        config: GatewayConfig,
        hook: MagicMock,
    ) -> IngestEndpoint:
        return IngestEndpoint(
            job_type,
            store=store,
            queue=queue,
            processor=processor,
            config=config,
            after_enqueue=hook,
        )

    def test_called_once_per_accepted_job(
        self,
        job_type: JobType,
        store: InMemoryRequestStore,
        queue: InMemoryJobQueue,
        processor: StubProcessor,
        config: GatewayConfig,
    ) -> None:
        hook = MagicMock()
        endpoint = self._endpoint(job_type, store, queue, processor, config, hook)

        endpoint.handle(_request(initial=True, request_id="r1"))
        endpoint.handle(_request(initial=True, request_id="r1"))
        endpoint.handle(_request(request_id="r1"))

        hook.assert_called_once_with()

    def test_not_called_when_dispatch_fails(
        self,
        job_type: JobType,
        store: InMemoryRequestStore,
        queue: InMemoryJobQueue,
        processor: StubProcessor,
        config: GatewayConfig,
    ) -> None:
        hook = MagicMock()
        queue.fail_enqueue = True
        endpoint = self._endpoint(job_type, store, queue, processor, config, hook)

        endpoint.handle(_request(initial=True, request_id="r1"))

        hook.assert_not_called()


class TestFailedStatusCode:
    @pytest.mark.parametrize(
        ("error", "expected"),
        [
            ({"status_code": 404}, 404),
            ({"status_code": 599}, 599),
            ({"status_code": 302}, 500),
            ({"status_code": "429"}, 500),
            ({"status_code": True}, 500),
            ({}, 500),
        ],
    )
    def test_mapping(self, error: dict[str, object], expected: int) -> None:
        assert failed_status_code(error) == expected


class TestIngestResponse:
    def test_body_json_is_compact(self) -> None:
        assert IngestResponse(200, {"a": 1}).body_json() == '{"a":1}'
