"""Uniform, cancellable facade over a generation backend.

The adapter is the only component that talks to a backend.  It turns every
failure into a :class:`~mcp_gateway.protocol.errors.GatewayError` and checks
the caller's cancellation token before each call and before every pull from a
stream, so nothing more is consumed from the backend once a request is
cancelled.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator

from mcp_gateway.protocol.errors import (
    BackendError,
    GatewayError,
    InvalidCredential,
    RateLimited,
)
from mcp_gateway.runtime.handles import CancellationToken

from .base import AsyncBackend, Completion, CompletionRequest, StreamingNotSupported
from .gemini import ERROR_PREFIX


logger = logging.getLogger(__name__)


def _prefixed(message: str) -> str:
    if message.startswith(ERROR_PREFIX):
        return message
    return f"{ERROR_PREFIX}: {message}"


def map_backend_exception(exc: BaseException) -> GatewayError:
    """Translate an exception raised by a backend into a gateway error.

    The backend's message text is kept; failures that start inside the
    gateway never pass through here.
    """

    if isinstance(exc, GatewayError):
        return exc
    if isinstance(exc, StreamingNotSupported):
        return BackendError(str(exc) or "Streaming is not supported by this backend")
    message = str(exc) or type(exc).__name__
    lowered = message.lower()
    if "api key not valid" in lowered:
        return InvalidCredential(_prefixed(message))
    if "quota" in lowered:
        return RateLimited(_prefixed(message))
    return BackendError(_prefixed(message))


class BackendAdapter:
    """Wrap an :class:`AsyncBackend` with cancellation and error mapping."""

    def __init__(self, backend: AsyncBackend) -> None:
        self._backend = backend

    @property
    def backend(self) -> AsyncBackend:
        return self._backend

    @property
    def name(self) -> str:
        return self._backend.name

    @property
    def model(self) -> str:
        return self._backend.model

    async def complete_once(self, request: CompletionRequest, token: CancellationToken) -> Completion:
        token.raise_if_cancelled()
        try:
            completion = await self._backend.acomplete(request)
        except GatewayError:
            raise
        except Exception as exc:
            logger.warning(
                "Backend completion failed",
                extra={"backend": self.name, "error": type(exc).__name__},
            )
            raise map_backend_exception(exc) from exc
        token.raise_if_cancelled()
        return completion

    async def complete_stream(self, request: CompletionRequest, token: CancellationToken) -> AsyncIterator[str]:
        """Yield text chunks in backend order until exhaustion or cancellation."""

        token.raise_if_cancelled()
        stream = self._backend.astream(request)
        try:
            try:
                while True:
                    token.raise_if_cancelled()
                    try:
                        event = await stream.__anext__()
                    except StopAsyncIteration:
                        break
                    token.raise_if_cancelled()
                    yield event.delta
                    if event.done:
                        break
            except GatewayError:
                raise
            except Exception as exc:
                logger.warning(
                    "Backend stream failed",
                    extra={"backend": self.name, "error": type(exc).__name__},
                )
                raise map_backend_exception(exc) from exc
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

    async def aclose(self) -> None:
        await self._backend.aclose()


__all__ = ["BackendAdapter", "map_backend_exception"]
