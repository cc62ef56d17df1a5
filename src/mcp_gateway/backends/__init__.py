"""Generation backends and the adapter the gateway drives them through."""

from .adapter import BackendAdapter, map_backend_exception
from .base import (
    AsyncBackend,
    Completion,
    CompletionRequest,
    GenerationOptions,
    StreamEvent,
    StreamingNotSupported,
)
from .gemini import GeminiBackend

__all__ = [
    "AsyncBackend",
    "BackendAdapter",
    "Completion",
    "CompletionRequest",
    "GeminiBackend",
    "GenerationOptions",
    "StreamEvent",
    "StreamingNotSupported",
    "map_backend_exception",
]
