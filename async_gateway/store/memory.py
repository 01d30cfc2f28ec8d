"""In-process request store.

Thread-safe and clock-injectable.  Used by the test suite and by local
runs with ``STORE_BACKEND=memory``.  Expired records are filtered on read
and reclaimed lazily on the next write to the same key.
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Any

from async_gateway.models.record import RequestRecord
from async_gateway.store.base import RequestStore

if TYPE_CHECKING:
    from async_gateway.models.record import RequestStatus


class InMemoryRequestStore(RequestStore):
    """Dict-backed ``RequestStore`` guarded by a single lock."""

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._records: dict[tuple[str, str], RequestRecord] = {}
        self._lock = threading.Lock()

    def put(
        self,
        owner_key: str,
        request_id: str,
        status: RequestStatus,
        data: dict[str, Any] | None = None,
        *,
        retention_seconds: int | None = None,
    ) -> None:
        retention = self._retention(retention_seconds)
        key = (owner_key, request_id)
        with self._lock:
            now = self.now()
            existing = self._records.get(key)
            if existing is None or existing.is_expired(now):
                record = RequestRecord.create(
                    owner_key, request_id, status, data, now=now, retention_seconds=retention
                )
            else:
                record = existing.apply_write(status, data, now=now, retention_seconds=retention)
            self._records[key] = record

    def get(self, owner_key: str, request_id: str) -> RequestRecord | None:
        with self._lock:
            record = self._records.get((owner_key, request_id))
            if record is None or record.is_expired(self.now()):
                return None
            return record

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
