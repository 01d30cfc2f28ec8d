"""Request store backends.

- ``RequestStore``          abstract contract (``put`` / ``get``)
- ``BlobRequestStore``      Azure Blob Storage, ETag compare-and-set upserts
- ``InMemoryRequestStore``  thread-safe in-process store
- ``DisabledRequestStore``  explicit no-op
"""

from async_gateway.store.base import DisabledRequestStore, RequestStore
from async_gateway.store.factory import create_request_store
from async_gateway.store.memory import InMemoryRequestStore

__all__ = [
    "DisabledRequestStore",
    "InMemoryRequestStore",
    "RequestStore",
    "create_request_store",
]
