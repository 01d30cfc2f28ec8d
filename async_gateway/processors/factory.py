"""Processor factory: resolves a job type's processor by name.

The factory maintains a registry of known processors.  Each entry is a
lazy import thunk returning the processor *class*, so a processor's
dependencies are only loaded when a job type uses it.

Usage::

    from async_gateway.processors.factory import get_processor

    processor = get_processor(job_type.processor, job_type, config)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from async_gateway.core.exceptions import ValidationError
from async_gateway.models.job_type import HTTP_UPSTREAM_PROCESSOR

if TYPE_CHECKING:
    from collections.abc import Callable

    from async_gateway.core.config import GatewayConfig
    from async_gateway.models.job_type import JobType
    from async_gateway.processors.base import JobProcessor

logger = logging.getLogger("async_gateway.processors.factory")

_PROCESSOR_REGISTRY: dict[str, Callable[[], type[JobProcessor]]] = {}


def _register_builtin_processors() -> None:
    def _http_upstream() -> type[JobProcessor]:
        from async_gateway.processors.http_upstream import HttpUpstreamProcessor

        return HttpUpstreamProcessor

    _PROCESSOR_REGISTRY[HTTP_UPSTREAM_PROCESSOR] = _http_upstream


def _ensure_registry() -> None:
    """Initialise the processor registry once (idempotent)."""
    if not _PROCESSOR_REGISTRY:
        _register_builtin_processors()


def register_processor(name: str, loader: Callable[[], type[JobProcessor]]) -> None:
    """Register a custom processor.

    Args:
        name: Processor name referenced by ``JobType.processor``.
        loader: Zero-argument callable returning the processor class.

    Raises:
        ValueError: If the name is empty.
    """
    if not name:
        msg = "Processor name must be non-empty"
        raise ValueError(msg)
    _ensure_registry()
    _PROCESSOR_REGISTRY[name] = loader
    logger.debug("Registered processor: %s", name)


def get_processor(name: str, job_type: JobType, config: GatewayConfig) -> JobProcessor:
    """Create the processor registered as *name* for *job_type*.

    Raises:
        ValidationError: If *name* is not registered.
    """
    _ensure_registry()

    loader = _PROCESSOR_REGISTRY.get(name)
    if loader is None:
        available = ", ".join(sorted(_PROCESSOR_REGISTRY))
        msg = f"Unknown processor: {name!r}. Available: {available}"
        raise ValidationError(msg, stage="processor", code="PROCESSOR_UNKNOWN")

    processor_cls = loader()
    logger.info("Processor created | name=%s | job_type=%s", name, job_type.name)
    return processor_cls(job_type, config)


def list_processors() -> list[str]:
    """Return the names of all registered processors (sorted)."""
    _ensure_registry()
    return sorted(_PROCESSOR_REGISTRY)
