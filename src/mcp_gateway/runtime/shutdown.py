"""Ordered, bounded graceful shutdown.

``RUNNING -> DRAINING -> TERMINATED``; the phase only ever moves forward.
"""

from __future__ import annotations

import asyncio
import logging
import time
from enum import Enum
from typing import Awaitable, Callable

from mcp_gateway.protocol.messages import notification

from .connections import CLOSE_GOING_AWAY, Connection, ConnectionRegistry, HealthMonitor
from .lifecycle import RequestLifecycleManager


logger = logging.getLogger(__name__)


SHUTDOWN_METHOD = "server/shutdown"
SHUTDOWN_MESSAGE = "Server is shutting down"
SHUTDOWN_REASON = "Server shutting down"


class ShutdownPhase(str, Enum):
    RUNNING = "running"
    DRAINING = "draining"
    TERMINATED = "terminated"


class ShutdownCoordinator:
    def __init__(
        self,
        registry: ConnectionRegistry,
        lifecycle: RequestLifecycleManager,
        *,
        monitor: HealthMonitor | None = None,
        grace_period: float = 2.0,
        timeout: float = 10.0,
    ) -> None:
        self._registry = registry
        self._lifecycle = lifecycle
        self._monitor = monitor
        self.grace_period = grace_period
        self.timeout = timeout
        self._phase = ShutdownPhase.RUNNING
        self._done = asyncio.Event()
        self._stop_callbacks: list[Callable[[], Awaitable[None]]] = []
        self._pending: set[asyncio.Task] = set()

    @property
    def phase(self) -> ShutdownPhase:
        return self._phase

    @property
    def running(self) -> bool:
        return self._phase is ShutdownPhase.RUNNING

    def add_stop_callback(self, callback: Callable[[], Awaitable[None]]) -> None:
        """Register a coroutine function run after every connection is closed."""

        self._stop_callbacks.append(callback)

    def request_shutdown(self, reason: str = "signal") -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(self.shutdown(reason))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def shutdown(self, reason: str = "requested") -> None:
        """Drain the gateway; concurrent callers wait for the first drain."""

        if self._phase is not ShutdownPhase.RUNNING:
            await self._done.wait()
            return

        self._phase = ShutdownPhase.DRAINING
        started = time.perf_counter()
        logger.info("Shutdown initiated", extra={"reason": reason, "connections": len(self._registry)})
        self._lifecycle.stop_accepting()

        try:
            if self._monitor is not None:
                await self._monitor.stop()

            connections = self._registry.snapshot()
            for connection in connections:
                connection.send(notification(SHUTDOWN_METHOD, {"message": SHUTDOWN_MESSAGE}))

            for connection in connections:
                cancelled = self._lifecycle.cancel_connection(connection, reason=SHUTDOWN_REASON)
                if cancelled:
                    logger.info(
                        "Cancelled in-flight requests",
                        extra={"connection_id": connection.id, "count": cancelled},
                    )

            if connections:
                try:
                    await asyncio.wait_for(
                        asyncio.gather(*(self._close_connection(connection) for connection in connections)),
                        self.timeout,
                    )
                except asyncio.TimeoutError:
                    logger.warning("Shutdown timeout reached; terminating remaining connections")
                    for connection in connections:
                        if connection in self._registry:
                            connection.terminate(code=CLOSE_GOING_AWAY, reason=SHUTDOWN_REASON)
                            self._registry.release(connection, reason=SHUTDOWN_REASON)

            remaining = max(self.timeout - (time.perf_counter() - started), 0.0)
            if not await self._lifecycle.wait_idle(remaining):
                logger.warning("Request tasks still running after shutdown timeout")

            for callback in self._stop_callbacks:
                try:
                    await callback()
                except Exception:
                    logger.exception("Shutdown callback failed")
        finally:
            self._phase = ShutdownPhase.TERMINATED
            self._done.set()
            logger.info(
                "Shutdown complete",
                extra={"duration_seconds": round(time.perf_counter() - started, 3)},
            )

    async def _close_connection(self, connection: Connection) -> None:
        graceful = await connection.close(
            code=CLOSE_GOING_AWAY,
            reason=SHUTDOWN_REASON,
            timeout=self.grace_period,
        )
        if not graceful:
            logger.warning("Connection did not close gracefully", extra={"connection_id": connection.id})
        self._registry.release(connection, reason=SHUTDOWN_REASON)


__all__ = ["SHUTDOWN_METHOD", "SHUTDOWN_MESSAGE", "ShutdownCoordinator", "ShutdownPhase"]
