"""Request store factory: selects the backend named by ``STORE_BACKEND``."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from async_gateway.core.config import ConfigValidationError
from async_gateway.core.constants import (
    STORE_BACKEND_BLOB,
    STORE_BACKEND_DISABLED,
    STORE_BACKEND_MEMORY,
)

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    from async_gateway.core.config import GatewayConfig
    from async_gateway.store.base import RequestStore

logger = logging.getLogger("async_gateway.store.factory")


def create_request_store(
    config: GatewayConfig,
    *,
    allow_disabled: bool = False,
    clock: Callable[[], datetime] | None = None,
) -> RequestStore:
    """Build the request store selected by *config*.

    Args:
        config: Loaded gateway configuration.
        allow_disabled: Permit the no-op store.  Job tracking never works
            on a disabled store, so callers must opt in explicitly.
        clock: Optional clock override (tests).

    Raises:
        ConfigValidationError: If the backend is unknown, or ``disabled``
            without ``allow_disabled``.
    """
    kwargs: dict[str, object] = {"retention_seconds": config.request_retention_seconds}
    if clock is not None:
        kwargs["clock"] = clock

    backend = config.store_backend
    if backend == STORE_BACKEND_BLOB:
        from async_gateway.store.blob import BlobRequestStore

        store: RequestStore = BlobRequestStore.from_connection_string(
            config.storage_connection_string,
            container=config.requests_container,
            **kwargs,
        )
    elif backend == STORE_BACKEND_MEMORY:
        from async_gateway.store.memory import InMemoryRequestStore

        store = InMemoryRequestStore(**kwargs)
    elif backend == STORE_BACKEND_DISABLED:
        if not allow_disabled:
            raise ConfigValidationError(
                "STORE_BACKEND",
                backend,
                "the disabled store cannot track jobs; pass allow_disabled=True to opt in",
            )
        from async_gateway.store.base import DisabledRequestStore

        store = DisabledRequestStore(**kwargs)
    else:
        raise ConfigValidationError("STORE_BACKEND", backend, "unknown store backend")

    logger.info("Request store ready | backend=%s", backend)
    return store
