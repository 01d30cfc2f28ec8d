"""RequestStore abstract base class.

Defines the two-operation contract every request store backend honours:

    ``put(owner_key, request_id, status, data=None)``  upsert
    ``get(owner_key, request_id)``                     strongly consistent read

Contract:
    - ``put`` creates the record on first write (``created_at = now``) and
      otherwise preserves ``created_at``, refreshing ``updated_at`` and
      ``expires_at``.
    - ``get`` returns ``None`` for records never written and for records
      whose ``expires_at`` has passed, even if not yet reclaimed.
    - Backend failures raise ``StoreUnavailable``; they are never swallowed.
    - The store does not police transitions; the worker writes a terminal
      outcome at most once.
"""

from __future__ import annotations

import abc
import logging
from typing import TYPE_CHECKING, Any

from async_gateway.core.constants import DEFAULT_RETENTION_SECONDS
from async_gateway.models.record import utc_now

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    from async_gateway.models.record import RequestRecord, RequestStatus

logger = logging.getLogger("async_gateway.store")


class RequestStore(abc.ABC):
    """Abstract base class for request store backends."""

    def __init__(
        self,
        *,
        retention_seconds: int = DEFAULT_RETENTION_SECONDS,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._retention_seconds = retention_seconds
        self._clock = clock

    @property
    def retention_seconds(self) -> int:
        return self._retention_seconds

    def now(self) -> datetime:
        """Return the store's notion of the current UTC time."""
        return self._clock()

    @property
    def enabled(self) -> bool:
        return True

    @abc.abstractmethod
    def put(
        self,
        owner_key: str,
        request_id: str,
        status: RequestStatus,
        data: dict[str, Any] | None = None,
        *,
        retention_seconds: int | None = None,
    ) -> None:
        """Upsert the record for ``(owner_key, request_id)``.

        Args:
            owner_key: Derived owner token.
            request_id: Request identifier.
            status: New status.
            data: ``result`` for COMPLETED, ``error`` for FAILED; ignored
                for non-terminal statuses.
            retention_seconds: Per-write retention override.

        Raises:
            StoreUnavailable: If the backend cannot be reached.
        """

    @abc.abstractmethod
    def get(self, owner_key: str, request_id: str) -> RequestRecord | None:
        """Return the live record, or ``None`` if absent or expired.

        Raises:
            StoreUnavailable: If the backend cannot be reached.
        """

    def _retention(self, override: int | None) -> int:
        return override if override is not None else self._retention_seconds


class DisabledRequestStore(RequestStore):
    """No-op store used when persistence is deliberately switched off.

    ``put`` succeeds without storing anything and ``get`` always returns
    ``None``.  Job tracking cannot work on top of it, so the factory only
    hands it out when the caller opts in explicitly.
    """

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        logger.warning("Request store is disabled | puts are discarded | gets return None")

    @property
    def enabled(self) -> bool:
        return False

    def put(
        self,
        owner_key: str,
        request_id: str,
        status: RequestStatus,
        data: dict[str, Any] | None = None,
        *,
        retention_seconds: int | None = None,
    ) -> None:
        logger.debug(
            "Disabled store discarded put | request_id=%s | status=%s",
            request_id,
            status.value,
        )

    def get(self, owner_key: str, request_id: str) -> RequestRecord | None:
        return None
