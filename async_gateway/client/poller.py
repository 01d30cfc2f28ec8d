"""Client-side poller for the submit/poll protocol.

Drives one logical request to an outcome:

1. Send the initial call with ``x-initial-request: true``.
2. Fire-and-forget: return that single response unmodified.
3. While the response is ``202``: stop on cancellation or once the
   policy timeout (measured from the first call) has elapsed, otherwise
   wait the scheduled delay and poll again with the ``x-request-id``
   from the last response and without the initial marker.
4. ``2xx`` -> COMPLETED, anything else -> FAILED.

Timeouts and cancellation are outcomes, not exceptions; transport errors
from the ``send`` callable propagate.  A server retry hint of zero never
switches to fire-and-forget on its own; only the caller's flag does.

The wait is a ``threading.Event`` wait by default, so setting the cancel
event interrupts a pending wait immediately.
"""

from __future__ import annotations

import enum
import logging
import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

from async_gateway.client.backoff import PollPolicy
from async_gateway.core.constants import HEADER_INITIAL_REQUEST, HEADER_REQUEST_ID

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    import httpx

logger = logging.getLogger("async_gateway.client.poller")


class PollOutcomeKind(enum.Enum):
    """How a polled request ended.

    Values:
        COMPLETED:       Terminal 2xx response.
        FAILED:          Terminal non-2xx response.
        TIMED_OUT:       Still 202 when the policy timeout elapsed.
        ABORTED:         Cancelled by the caller during a wait.
        FIRE_AND_FORGET: Single call made on request; no polling.
    """

    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    ABORTED = "aborted"
    FIRE_AND_FORGET = "fire_and_forget"


@dataclass(frozen=True, slots=True)
class PollOutcome:
    """Final state of a polled request.

    Attributes:
        kind: How the polling ended.
        response: The most recent response received.
        poll_count: Number of HTTP calls made, including the initial one.
        elapsed_ms: Time from the first call to the outcome.
    """

    kind: PollOutcomeKind
    response: httpx.Response
    poll_count: int
    elapsed_ms: float

    @property
    def status_code(self) -> int:
        return self.response.status_code

    @property
    def request_id(self) -> str:
        return self.response.headers.get(HEADER_REQUEST_ID, "")


def event_wait(seconds: float, cancel: threading.Event) -> bool:
    return cancel.wait(seconds)


class AsyncRequestPoller:
    """Polls one request according to a ``PollPolicy``.

    Args:
        policy: Schedule and overall timeout.
        clock: Monotonic clock in seconds.
        wait: ``wait(seconds, cancel_event) -> cancelled``.  Must return
            ``True`` as soon as the event is set.
    """

    def __init__(
        self,
        policy: PollPolicy | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        wait: Callable[[float, threading.Event], bool] = event_wait,
    ) -> None:
        self._policy = policy or PollPolicy()
        self._clock = clock
        self._wait = wait

    @property
    def policy(self) -> PollPolicy:
        return self._policy

    def run(
        self,
        send: Callable[[dict[str, str]], httpx.Response],
        headers: Mapping[str, str] | None = None,
        *,
        fire_and_forget: bool = False,
        cancel: threading.Event | None = None,
        description: str = "",
    ) -> PollOutcome:
        """Drive *send* until the request reaches an outcome.

        Args:
            send: Issues one HTTP call with the given headers.
            headers: Caller headers for every call.
            fire_and_forget: Make exactly one call and return it.
            cancel: Event that aborts polling when set.
            description: Label for log lines (e.g. ``"GET /api/upstream/query"``).
        """
        cancel = cancel or threading.Event()
        call_headers = {k.lower(): v for k, v in (headers or {}).items()}
        call_headers[HEADER_INITIAL_REQUEST] = "true"

        start = self._clock()
        response = send(dict(call_headers))
        calls = 1

        if fire_and_forget:
            return PollOutcome(
                PollOutcomeKind.FIRE_AND_FORGET, response, calls, self._elapsed_ms(start)
            )

        call_headers.pop(HEADER_INITIAL_REQUEST, None)
        polls = 0
        timeout_ms = self._policy.timeout_ms

        while response.status_code == 202:
            self._carry_request_id(response, call_headers)
            elapsed_ms = self._elapsed_ms(start)

            if cancel.is_set():
                logger.info("Polling aborted | request=%s | polls=%d", description, polls)
                return PollOutcome(PollOutcomeKind.ABORTED, response, calls, elapsed_ms)

            if elapsed_ms >= timeout_ms:
                logger.warning(
                    "Polling timed out | request=%s | polls=%d | elapsed_ms=%.0f | timeout_ms=%d",
                    description,
                    polls,
                    elapsed_ms,
                    timeout_ms,
                )
                return PollOutcome(PollOutcomeKind.TIMED_OUT, response, calls, elapsed_ms)

            polls += 1
            delay_ms = self._policy.schedule.delay_ms(polls)
            if self._wait(delay_ms / 1000.0, cancel):
                logger.info("Polling aborted | request=%s | polls=%d", description, polls)
                return PollOutcome(
                    PollOutcomeKind.ABORTED, response, calls, self._elapsed_ms(start)
                )

            logger.debug(
                "Re-polling | request=%s | poll=%d | delay_ms=%d | request_id=%s",
                description,
                polls,
                delay_ms,
                call_headers.get(HEADER_REQUEST_ID, ""),
            )
            response = send(dict(call_headers))
            calls += 1

        kind = PollOutcomeKind.COMPLETED if response.is_success else PollOutcomeKind.FAILED
        elapsed_ms = self._elapsed_ms(start)
        logger.info(
            "Polling finished | request=%s | status=%d | polls=%d | elapsed_ms=%.0f",
            description,
            response.status_code,
            polls,
            elapsed_ms,
        )
        return PollOutcome(kind, response, calls, elapsed_ms)

    def _elapsed_ms(self, start: float) -> float:
        return (self._clock() - start) * 1000.0

    @staticmethod
    def _carry_request_id(response: httpx.Response, call_headers: dict[str, str]) -> None:
        request_id = response.headers.get(HEADER_REQUEST_ID)
        if request_id:
            call_headers[HEADER_REQUEST_ID] = request_id
