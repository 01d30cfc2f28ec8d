"""Request record: the sole persisted entity of the submit/poll protocol.

One record exists per ``(owner_key, request_id)``.  It is created by the
ingest endpoint on first contact, mutated by the worker and removed only
by expiry.

Design notes:
- Frozen dataclass; every write produces a new record via ``apply_write``.
- ``created_at`` is set on the first write and never changes afterwards.
- ``expires_at`` is recomputed on every write, so abandoned records
  disappear after the retention window whatever their state.
- ``result`` is only populated when COMPLETED; ``error`` only when FAILED.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, replace
from datetime import UTC, datetime, timedelta
from typing import Any

from async_gateway.core.exceptions import ContractError

# ---------------------------------------------------------------------------
# Status
# ---------------------------------------------------------------------------


class RequestStatus(enum.Enum):
    """Lifecycle state of an asynchronous request.

    Values:
        PENDING:    Accepted by ingest, queued, not yet picked up.
        PROCESSING: A worker has started the operation.
        COMPLETED:  Terminal; ``result`` holds the outcome.
        FAILED:     Terminal; ``error`` holds the failure payload.
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RequestStatus.COMPLETED, RequestStatus.FAILED)


# ---------------------------------------------------------------------------
# Record
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class RequestRecord:
    """State of one asynchronous request.

    Attributes:
        owner_key: Derived, non-reversible token for the requesting principal.
        request_id: Unique within ``owner_key``.
        status: Current lifecycle state.
        created_at: First write time (UTC), immutable.
        updated_at: Last write time (UTC).
        expires_at: ``updated_at + retention``.
        result: Opaque outcome, only when COMPLETED.
        error: Opaque failure payload, only when FAILED.
    """

    owner_key: str
    request_id: str
    status: RequestStatus
    created_at: datetime
    updated_at: datetime
    expires_at: datetime
    result: dict[str, Any] | None = None
    error: dict[str, Any] | None = None

    @classmethod
    def create(
        cls,
        owner_key: str,
        request_id: str,
        status: RequestStatus,
        data: dict[str, Any] | None,
        *,
        now: datetime,
        retention_seconds: int,
    ) -> RequestRecord:
        """Build the first version of a record."""
        record = cls(
            owner_key=owner_key,
            request_id=request_id,
            status=status,
            created_at=now,
            updated_at=now,
            expires_at=now,
        )
        return record.apply_write(status, data, now=now, retention_seconds=retention_seconds)

    def apply_write(
        self,
        status: RequestStatus,
        data: dict[str, Any] | None,
        *,
        now: datetime,
        retention_seconds: int,
    ) -> RequestRecord:
        """Return the record as it looks after an upsert of *status* and *data*.

        ``created_at`` is carried over unchanged.  Terminal writes set the
        matching payload field from *data* and clear the other; non-terminal
        writes clear both.
        """
        result: dict[str, Any] | None = None
        error: dict[str, Any] | None = None
        if status is RequestStatus.COMPLETED:
            result = dict(data) if data is not None else {}
        elif status is RequestStatus.FAILED:
            error = dict(data) if data is not None else {}

        return replace(
            self,
            status=status,
            updated_at=now,
            expires_at=now + timedelta(seconds=retention_seconds),
            result=result,
            error=error,
        )

    def is_expired(self, now: datetime) -> bool:
        """Return ``True`` once ``expires_at`` has passed."""
        return now >= self.expires_at

    def age_seconds(self, now: datetime) -> float:
        """Seconds since the record was first written (never negative)."""
        return max(0.0, (now - self.created_at).total_seconds())

    def to_dict(self) -> dict[str, Any]:
        """Serialise to a JSON-compatible dict."""
        return {
            "owner_key": self.owner_key,
            "request_id": self.request_id,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "result": self.result,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RequestRecord:
        """Deserialise from a dict produced by ``to_dict``.

        Raises:
            ContractError: If a required key is missing or malformed.
        """
        try:
            return cls(
                owner_key=str(data["owner_key"]),
                request_id=str(data["request_id"]),
                status=RequestStatus(data["status"]),
                created_at=_parse_timestamp(data["created_at"]),
                updated_at=_parse_timestamp(data["updated_at"]),
                expires_at=_parse_timestamp(data["expires_at"]),
                result=data.get("result"),
                error=data.get("error"),
            )
        except (KeyError, TypeError, ValueError) as exc:
            msg = f"Malformed request record: {exc}"
            raise ContractError(msg, stage="store", code="RECORD_MALFORMED") from exc


def utc_now() -> datetime:
    """Default clock for stores and services."""
    return datetime.now(UTC)


def _parse_timestamp(value: object) -> datetime:
    parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed
