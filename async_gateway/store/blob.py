"""Azure Blob Storage request store.

Each record is one JSON blob at ``{owner_key}/{request_id}.json`` in the
configured container.  Upserts are read-modify-write cycles guarded by
ETag compare-and-set:

- no blob yet: upload with ``overwrite=False`` (create-only);
- blob exists: upload with ``etag`` + ``MatchConditions.IfNotModified``.

A lost race (``ResourceExistsError`` / ``ResourceModifiedError``) re-reads
and re-applies the write, up to ``max_conflict_retries`` times, so
``created_at`` survives concurrent writers.

Blob storage has no per-item TTL; ``get`` applies the expiry check
itself and expired blobs are overwritten as fresh records on the next
write.  Reclaiming abandoned blobs is left to a storage lifecycle policy.

A blob that does not parse as a record raises ``StoreUnavailable`` with
code ``RECORD_MALFORMED`` from both ``get`` and ``put``; it is left in
place for an operator to inspect.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from azure.core import MatchConditions
from azure.core.exceptions import (
    AzureError,
    ResourceExistsError,
    ResourceModifiedError,
    ResourceNotFoundError,
)

from async_gateway.core.constants import DEFAULT_REQUESTS_CONTAINER
from async_gateway.core.exceptions import ContractError, StoreUnavailable
from async_gateway.models.record import RequestRecord
from async_gateway.store.base import RequestStore

if TYPE_CHECKING:
    from azure.storage.blob import BlobServiceClient

    from async_gateway.models.record import RequestStatus

logger = logging.getLogger("async_gateway.store.blob")

DEFAULT_MAX_CONFLICT_RETRIES = 5


def record_blob_path(owner_key: str, request_id: str) -> str:
    """Return the blob path holding the record for ``(owner_key, request_id)``."""
    return f"{owner_key}/{request_id}.json"


class BlobRequestStore(RequestStore):
    """``RequestStore`` backed by one JSON blob per record."""

    def __init__(
        self,
        blob_service_client: BlobServiceClient,
        *,
        container: str = DEFAULT_REQUESTS_CONTAINER,
        max_conflict_retries: int = DEFAULT_MAX_CONFLICT_RETRIES,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self._service = blob_service_client
        self._container = container
        self._max_conflict_retries = max_conflict_retries
        self._container_ready = False

    @classmethod
    def from_connection_string(cls, connection_string: str, **kwargs: Any) -> BlobRequestStore:
        from azure.storage.blob import BlobServiceClient

        return cls(BlobServiceClient.from_connection_string(connection_string), **kwargs)

    @property
    def container(self) -> str:
        return self._container

    # ------------------------------------------------------------------
    # RequestStore
    # ------------------------------------------------------------------

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
        blob_path = record_blob_path(owner_key, request_id)

        try:
            self._ensure_container()
            blob_client = self._service.get_blob_client(container=self._container, blob=blob_path)

            for attempt in range(1, self._max_conflict_retries + 1):
                existing, etag = self._read(blob_client, blob_path, request_id)
                now = self.now()
                if existing is None or existing.is_expired(now):
                    record = RequestRecord.create(
                        owner_key, request_id, status, data, now=now, retention_seconds=retention
                    )
                else:
                    record = existing.apply_write(
                        status, data, now=now, retention_seconds=retention
                    )

                body = json.dumps(record.to_dict(), separators=(",", ":")).encode("utf-8")
                try:
                    if etag is None:
                        blob_client.upload_blob(body, overwrite=False)
                    else:
                        blob_client.upload_blob(
                            body,
                            overwrite=True,
                            etag=etag,
                            match_condition=MatchConditions.IfNotModified,
                        )
                except (ResourceExistsError, ResourceModifiedError):
                    logger.warning(
                        "Record write conflict | path=%s | attempt=%d/%d",
                        blob_path,
                        attempt,
                        self._max_conflict_retries,
                    )
                    continue

                logger.debug("Record written | path=%s | status=%s", blob_path, status.value)
                return
        except AzureError as exc:
            msg = f"Failed to write request record {blob_path}: {exc}"
            raise StoreUnavailable(msg, correlation_id=request_id) from exc

        msg = (
            f"Failed to write request record {blob_path}: "
            f"{self._max_conflict_retries} concurrent write conflicts"
        )
        raise StoreUnavailable(msg, code="STORE_WRITE_CONFLICT", correlation_id=request_id)

    def get(self, owner_key: str, request_id: str) -> RequestRecord | None:
        blob_path = record_blob_path(owner_key, request_id)
        try:
            blob_client = self._service.get_blob_client(container=self._container, blob=blob_path)
            record, _ = self._read(blob_client, blob_path, request_id)
        except AzureError as exc:
            msg = f"Failed to read request record {blob_path}: {exc}"
            raise StoreUnavailable(msg, correlation_id=request_id) from exc

        if record is None or record.is_expired(self.now()):
            return None
        return record

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _read(
        self, blob_client: Any, blob_path: str, request_id: str
    ) -> tuple[RequestRecord | None, str | None]:
        """Return ``(record, etag)``; ``(None, None)`` when the blob does not exist.

        Raises:
            StoreUnavailable: With code ``RECORD_MALFORMED`` if the blob is
                not a readable record.
        """
        try:
            downloader = blob_client.download_blob()
        except ResourceNotFoundError:
            return None, None

        raw = downloader.readall()
        etag = downloader.properties.etag
        try:
            record = RequestRecord.from_dict(json.loads(raw))
        except (ValueError, ContractError) as exc:
            logger.error("Malformed request record | path=%s | error=%s", blob_path, exc)
            msg = f"Malformed request record {blob_path}: {exc}"
            raise StoreUnavailable(msg, code="RECORD_MALFORMED", correlation_id=request_id) from exc
        return record, etag

    def _ensure_container(self) -> None:
        if self._container_ready:
            return
        container_client = self._service.get_container_client(self._container)
        try:
            container_client.create_container()
            logger.info("Created request container | container=%s", self._container)
        except ResourceExistsError:
            pass
        self._container_ready = True
