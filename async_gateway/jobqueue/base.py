"""JobQueue abstract base class.

At-least-once delivery channel from the ingest endpoint to a worker.

Lifecycle of a message:
    1. ``enqueue(body)``  producer side; failures raise ``DispatchFailure``.
    2. ``dequeue()``      lease messages for the visibility timeout.
    3. ``ack(delivery)``  delete after a terminal outcome.
       ``nack(delivery)`` make visible again for redelivery.

A message whose delivery count exceeds ``max_deliveries`` is moved to the
dead-letter queue on its next dequeue instead of being handed out again.
"""

from __future__ import annotations

import abc
from dataclasses import dataclass

from async_gateway.core.constants import (
    DEFAULT_MAX_DELIVERIES,
    DEFAULT_VISIBILITY_TIMEOUT_SECONDS,
)


@dataclass(frozen=True, slots=True)
class Delivery:
    """One leased queue message.

    Attributes:
        message_id: Backend message identifier.
        receipt: Lease token required to ack or nack.
        body: Message text (a serialised ``JobMessage``).
        delivery_count: 1 on first delivery, incremented on each redelivery.
    """

    message_id: str
    receipt: str
    body: str
    delivery_count: int = 1


class JobQueue(abc.ABC):
    """Abstract base class for job queue backends."""

    def __init__(
        self,
        name: str,
        *,
        visibility_timeout_seconds: int = DEFAULT_VISIBILITY_TIMEOUT_SECONDS,
        max_deliveries: int = DEFAULT_MAX_DELIVERIES,
    ) -> None:
        self._name = name
        self._visibility_timeout_seconds = visibility_timeout_seconds
        self._max_deliveries = max_deliveries

    @property
    def name(self) -> str:
        return self._name

    @property
    def max_deliveries(self) -> int:
        return self._max_deliveries

    @abc.abstractmethod
    def enqueue(self, body: str) -> None:
        """Publish *body*.

        Raises:
            DispatchFailure: If the message could not be published.
        """

    @abc.abstractmethod
    def dequeue(self, max_messages: int = 1) -> list[Delivery]:
        """Lease up to *max_messages* visible messages (possibly none)."""

    @abc.abstractmethod
    def ack(self, delivery: Delivery) -> None:
        """Remove a leased message permanently."""

    @abc.abstractmethod
    def nack(self, delivery: Delivery) -> None:
        """Release a leased message for redelivery."""
