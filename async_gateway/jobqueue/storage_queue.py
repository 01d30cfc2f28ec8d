"""Azure Storage Queue job queue.

Messages are Base64-encoded text, which is what the Functions queue
trigger expects.  Poison messages go to ``<queue>-poison``, the same
queue the Functions runtime uses once ``maxDequeueCount`` is reached, so
messages dead-lettered by ``drain`` and by the trigger end up together.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from azure.core.exceptions import AzureError, ResourceExistsError, ResourceNotFoundError

from async_gateway.core.constants import POISON_QUEUE_SUFFIX
from async_gateway.core.exceptions import DispatchFailure
from async_gateway.jobqueue.base import Delivery, JobQueue

if TYPE_CHECKING:
    from azure.storage.queue import QueueClient

logger = logging.getLogger("async_gateway.jobqueue.storage_queue")


def _queue_client(connection_string: str, queue_name: str) -> QueueClient:
    from azure.storage.queue import (
        QueueClient,
        TextBase64DecodePolicy,
        TextBase64EncodePolicy,
    )

    return QueueClient.from_connection_string(
        connection_string,
        queue_name,
        message_encode_policy=TextBase64EncodePolicy(),
        message_decode_policy=TextBase64DecodePolicy(),
    )


class StorageQueueJobQueue(JobQueue):
    """``JobQueue`` backed by an Azure Storage queue and its poison queue."""

    def __init__(
        self,
        queue_client: QueueClient,
        poison_client: QueueClient,
        **kwargs: Any,
    ) -> None:
        super().__init__(queue_client.queue_name, **kwargs)
        self._client = queue_client
        self._poison = poison_client
        self._ready = False

    @classmethod
    def from_connection_string(
        cls, connection_string: str, queue_name: str, **kwargs: Any
    ) -> StorageQueueJobQueue:
        return cls(
            _queue_client(connection_string, queue_name),
            _queue_client(connection_string, f"{queue_name}{POISON_QUEUE_SUFFIX}"),
            **kwargs,
        )

    def enqueue(self, body: str) -> None:
        try:
            self._ensure_queues()
            self._client.send_message(body)
        except AzureError as exc:
            msg = f"Failed to enqueue on {self.name!r}: {exc}"
            raise DispatchFailure(msg) from exc

    def dequeue(self, max_messages: int = 1) -> list[Delivery]:
        self._ensure_queues()
        deliveries: list[Delivery] = []
        messages = self._client.receive_messages(
            messages_per_page=max_messages,
            max_messages=max_messages,
            visibility_timeout=self._visibility_timeout_seconds,
        )
        for message in messages:
            body = str(message.content)
            if message.dequeue_count > self.max_deliveries:
                self._poison.send_message(body)
                self._client.delete_message(message.id, message.pop_receipt)
                logger.warning(
                    "Message dead-lettered | queue=%s | message_id=%s | deliveries=%d",
                    self.name,
                    message.id,
                    message.dequeue_count,
                )
                continue
            deliveries.append(
                Delivery(
                    message_id=message.id,
                    receipt=message.pop_receipt,
                    body=body,
                    delivery_count=message.dequeue_count,
                )
            )
        return deliveries

    def ack(self, delivery: Delivery) -> None:
        try:
            self._client.delete_message(delivery.message_id, delivery.receipt)
        except ResourceNotFoundError:
            logger.warning(
                "Ack on expired lease ignored | queue=%s | message_id=%s",
                self.name,
                delivery.message_id,
            )

    def nack(self, delivery: Delivery) -> None:
        try:
            self._client.update_message(
                delivery.message_id, delivery.receipt, visibility_timeout=0
            )
        except ResourceNotFoundError:
            logger.warning(
                "Nack on expired lease ignored | queue=%s | message_id=%s",
                self.name,
                delivery.message_id,
            )

    def _ensure_queues(self) -> None:
        if self._ready:
            return
        for client in (self._client, self._poison):
            try:
                client.create_queue()
            except ResourceExistsError:
                pass
        self._ready = True
