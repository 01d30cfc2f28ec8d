"""Queue message envelope exchanged between ingest and worker.

Validated with pydantic at both ends so that schema drift between the
producer and the consumer surfaces as a ``ContractError`` instead of a
``KeyError`` deep inside the worker.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from async_gateway.core.exceptions import ContractError


class JobMessage(BaseModel):
    """Work item placed on a job type's queue by the ingest endpoint."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    owner_key: str = Field(min_length=1)
    request_id: str = Field(min_length=1)
    job_type: str = Field(min_length=1)
    payload: dict[str, Any] = Field(default_factory=dict)
    correlation_id: str = ""
    enqueued_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, raw: str | bytes) -> JobMessage:
        """Parse a queue message body.

        Raises:
            ContractError: If the body is not JSON or violates the schema.
        """
        try:
            return cls.model_validate_json(raw)
        except PydanticValidationError as exc:
            msg = f"Invalid job message: {exc.error_count()} validation error(s)"
            raise ContractError(msg, stage="worker", code="JOB_MESSAGE_INVALID") from exc
