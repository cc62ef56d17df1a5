"""Cancellation tokens and the per-request bookkeeping record."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable

from mcp_gateway.protocol.errors import RequestCancelled, RequestId

if TYPE_CHECKING:
    from .connections import Connection


logger = logging.getLogger(__name__)


class CancellationToken:
    """Cooperative cancellation flag observed by backend calls.

    Cancelling is idempotent: only the first call records the reason and runs
    the registered callbacks.
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._reason: str | None = None
        self._callbacks: list[Callable[[str], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> str | None:
        return self._reason

    def add_callback(self, callback: Callable[[str], None]) -> None:
        if self._cancelled:
            callback(self._reason or "")
            return
        self._callbacks.append(callback)

    def cancel(self, reason: str = "Request cancelled") -> bool:
        if self._cancelled:
            return False
        self._cancelled = True
        self._reason = reason
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback(reason)
            except Exception:
                logger.exception("Cancellation callback failed")
        return True

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise RequestCancelled(data={"reason": self._reason})


@dataclass(eq=False)
class RequestHandle:
    """Everything the gateway tracks about one admitted request."""

    request_id: RequestId
    method: str
    connection: Connection
    token: CancellationToken = field(default_factory=CancellationToken)
    admitted_at: float = field(default_factory=time.perf_counter)
    task: asyncio.Task | None = None
    resolved: bool = False

    def trigger(self, reason: str) -> bool:
        """Signal cancellation to the token and interrupt the running task."""

        fired = self.token.cancel(reason)
        task = self.task
        if task is not None and not task.done():
            try:
                current = asyncio.current_task()
            except RuntimeError:
                current = None
            if task is not current:
                task.cancel()
        return fired

    def elapsed(self) -> float:
        return time.perf_counter() - self.admitted_at


__all__ = ["CancellationToken", "RequestHandle"]
