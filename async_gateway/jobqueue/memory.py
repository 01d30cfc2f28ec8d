"""In-process job queue with visibility timeouts and a dead-letter list.

Mirrors the Storage Queue semantics the worker relies on (lease,
delivery count, poison after ``max_deliveries``) without any I/O, so
ingest, worker and poller can be wired end-to-end in tests.
"""

from __future__ import annotations

import itertools
import logging
import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from async_gateway.core.exceptions import DispatchFailure
from async_gateway.jobqueue.base import Delivery, JobQueue

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger("async_gateway.jobqueue.memory")


@dataclass
class _Entry:
    message_id: str
    body: str
    delivery_count: int = 0
    visible_at: float = 0.0
    receipt: str = ""


class InMemoryJobQueue(JobQueue):
    """Thread-safe FIFO ``JobQueue``.

    Args:
        name: Queue name.
        clock: Monotonic clock in seconds (injectable for tests).
        fail_enqueue: When ``True`` every ``enqueue`` raises
            ``DispatchFailure`` (dispatch failure drills).
    """

    def __init__(
        self,
        name: str,
        *,
        clock: Callable[[], float] = time.monotonic,
        fail_enqueue: bool = False,
        **kwargs: Any,
    ) -> None:
        super().__init__(name, **kwargs)
        self._clock = clock
        self.fail_enqueue = fail_enqueue
        self._entries: list[_Entry] = []
        self._dead_letters: list[str] = []
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    @property
    def dead_letters(self) -> list[str]:
        """Bodies moved to the dead-letter list, oldest first."""
        with self._lock:
            return list(self._dead_letters)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def enqueue(self, body: str) -> None:
        if self.fail_enqueue:
            msg = f"Queue {self.name!r} rejected the message"
            raise DispatchFailure(msg)
        with self._lock:
            self._entries.append(_Entry(message_id=str(next(self._ids)), body=body))

    def dequeue(self, max_messages: int = 1) -> list[Delivery]:
        deliveries: list[Delivery] = []
        with self._lock:
            now = self._clock()
            for entry in list(self._entries):
                if len(deliveries) >= max_messages:
                    break
                if entry.visible_at > now:
                    continue
                if entry.delivery_count >= self.max_deliveries:
                    self._entries.remove(entry)
                    self._dead_letters.append(entry.body)
                    logger.warning(
                        "Message dead-lettered | queue=%s | message_id=%s | deliveries=%d",
                        self.name,
                        entry.message_id,
                        entry.delivery_count,
                    )
                    continue
                entry.delivery_count += 1
                entry.visible_at = now + self._visibility_timeout_seconds
                entry.receipt = f"{entry.message_id}:{entry.delivery_count}"
                deliveries.append(
                    Delivery(
                        message_id=entry.message_id,
                        receipt=entry.receipt,
                        body=entry.body,
                        delivery_count=entry.delivery_count,
                    )
                )
        return deliveries

    def ack(self, delivery: Delivery) -> None:
        with self._lock:
            entry = self._find(delivery)
            if entry is not None:
                self._entries.remove(entry)

    def nack(self, delivery: Delivery) -> None:
        with self._lock:
            entry = self._find(delivery)
            if entry is not None:
                entry.visible_at = self._clock()

    def _find(self, delivery: Delivery) -> _Entry | None:
        for entry in self._entries:
            if entry.message_id == delivery.message_id and entry.receipt == delivery.receipt:
                return entry
        logger.warning(
            "Stale receipt ignored | queue=%s | message_id=%s",
            self.name,
            delivery.message_id,
        )
        return None
