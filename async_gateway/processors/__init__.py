"""Job processors: the real operations behind each job type."""

from async_gateway.processors.base import JobProcessor
from async_gateway.processors.factory import get_processor, list_processors, register_processor

__all__ = ["JobProcessor", "get_processor", "list_processors", "register_processor"]
