"""Core backend interfaces and request/response models.

This module defines the contracts a generation backend must implement in
order to sit behind the :class:`~mcp_gateway.backends.adapter.BackendAdapter`.
Backends are asynchronous: a single-shot call suspends until the model
returns, a stream suspends at every chunk boundary.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable


@dataclass(frozen=True)
class GenerationOptions:
    """Optional sampling controls forwarded to the backend."""

    temperature: float | None = None
    max_tokens: int | None = None
    stop_sequences: tuple[str, ...] | None = None

    def as_metadata(self) -> dict[str, Any]:
        """Return the options that were supplied, keyed by their wire names."""

        metadata: dict[str, Any] = {}
        if self.temperature is not None:
            metadata["temperature"] = self.temperature
        if self.max_tokens is not None:
            metadata["maxTokens"] = self.max_tokens
        if self.stop_sequences is not None:
            metadata["stopSequences"] = list(self.stop_sequences)
        return metadata


@dataclass(frozen=True)
class CompletionRequest:
    """Normalized request payload supplied to completion backends."""

    prompt: str
    options: GenerationOptions = field(default_factory=GenerationOptions)


@dataclass(frozen=True)
class Completion:
    """A full completion produced by a single-shot backend call."""

    text: str
    model: str
    finish_reason: str | None = None
    raw_response: Any | None = None


@dataclass(frozen=True)
class StreamEvent:
    """Represents a chunk emitted by a streaming backend."""

    delta: str
    done: bool = False
    metadata: Mapping[str, Any] | None = None


@runtime_checkable
class AsyncBackend(Protocol):
    """Protocol that all backend implementations must satisfy."""

    name: str
    model: str

    async def acomplete(self, request: CompletionRequest) -> Completion:
        """Return a full completion for ``request``."""

    def astream(self, request: CompletionRequest) -> AsyncIterator[StreamEvent]:
        """Yield completion deltas for ``request`` in streaming mode."""

    async def aclose(self) -> None:
        """Release any pooled resources."""


class StreamingNotSupported(RuntimeError):
    """Raised when streaming is requested but not supported by a backend."""


__all__ = [
    "AsyncBackend",
    "Completion",
    "CompletionRequest",
    "GenerationOptions",
    "StreamEvent",
    "StreamingNotSupported",
]
