"""Per-connection records, the connection registry and the health monitor.

A :class:`Connection` owns a FIFO outbox drained by a single writer task, so
messages queued by :meth:`Connection.send` reach the transport in the order
they were queued.  The outbox is bounded; a peer that stops reading is
terminated rather than buffered without limit.  All mutation happens on the
event loop; nothing here is shared with other threads.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Mapping, Protocol

import anyio

from mcp_gateway.protocol.codec import encode_message
from mcp_gateway.protocol.errors import RequestId
from mcp_gateway.protocol.messages import notification

if TYPE_CHECKING:
    from mcp_gateway.metrics import GatewayMetrics

    from .handles import RequestHandle


logger = logging.getLogger(__name__)


CLOSE_NORMAL = 1000
CLOSE_GOING_AWAY = 1001
CLOSE_TRY_AGAIN_LATER = 1013
CLOSE_STALE = 4408

PING_METHOD = "notifications/ping"

DEFAULT_MAX_PENDING = 1024
OVERFLOW_REASON = "Outbound queue overflow"


class ConnectionState(str, Enum):
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


_STATE_ORDER = {ConnectionState.OPEN: 0, ConnectionState.CLOSING: 1, ConnectionState.CLOSED: 2}


class Transport(Protocol):
    """Minimal duplex transport the gateway writes to."""

    async def send_text(self, data: str) -> None:
        ...

    async def close(self, code: int = CLOSE_NORMAL, reason: str = "") -> None:
        ...


class Connection:
    """State owned by the gateway for one accepted transport session."""

    def __init__(
        self,
        transport: Transport,
        *,
        peer: str | None = None,
        clock: Callable[[], float] = time.monotonic,
        max_pending: int = DEFAULT_MAX_PENDING,
    ) -> None:
        if max_pending <= 0:
            raise ValueError("max_pending must be positive")
        self.id = uuid.uuid4().hex
        self.peer = peer
        self._clock = clock
        self.created_at = clock()
        self.last_activity = self.created_at
        self.connected_at = datetime.now(timezone.utc)
        self.initialized = False
        self.client_info: Mapping[str, Any] | None = None
        self.state = ConnectionState.OPEN
        self.in_flight: dict[RequestId, RequestHandle] = {}
        self._transport = transport
        self._outbox: asyncio.Queue[str] = asyncio.Queue(maxsize=max_pending)
        self._writer: asyncio.Task | None = None
        self._pending_closes: set[asyncio.Task] = set()

    def __repr__(self) -> str:
        return f"Connection(id={self.id!r}, state={self.state.value}, in_flight={len(self.in_flight)})"

    @property
    def is_open(self) -> bool:
        return self.state is ConnectionState.OPEN

    def start(self) -> None:
        if self._writer is None:
            self._writer = asyncio.get_running_loop().create_task(self._drain_outbox())

    def touch(self) -> None:
        self.last_activity = self._clock()

    def idle_for(self) -> float:
        return self._clock() - self.last_activity

    def _advance(self, state: ConnectionState) -> bool:
        if _STATE_ORDER[state] <= _STATE_ORDER[self.state]:
            return False
        self.state = state
        return True

    def begin_closing(self) -> bool:
        return self._advance(ConnectionState.CLOSING)

    def send(self, message: Mapping[str, Any]) -> bool:
        """Queue ``message`` for delivery; returns ``False`` once the connection is closed.

        A peer that lets ``max_pending`` messages pile up is terminated with
        ``CLOSE_TRY_AGAIN_LATER`` instead of being buffered without limit.
        """

        if self.state is ConnectionState.CLOSED:
            logger.debug("Dropping message for closed connection", extra={"connection_id": self.id})
            return False
        try:
            self._outbox.put_nowait(encode_message(message))
        except asyncio.QueueFull:
            logger.warning(
                "Outbound queue full; terminating slow connection",
                extra={"connection_id": self.id, "pending": self._outbox.qsize()},
            )
            self.terminate(code=CLOSE_TRY_AGAIN_LATER, reason=OVERFLOW_REASON)
            return False
        return True

    async def _drain_outbox(self) -> None:
        while True:
            data = await self._outbox.get()
            try:
                if self.state is not ConnectionState.CLOSED:
                    await self._transport.send_text(data)
            except Exception as exc:
                logger.warning(
                    "Failed to deliver message; marking connection closed",
                    extra={"connection_id": self.id, "error": str(exc)},
                )
                self._advance(ConnectionState.CLOSED)
            finally:
                self._outbox.task_done()

    def _writer_running(self) -> bool:
        return self._writer is not None and not self._writer.done()

    async def flush(self) -> None:
        """Wait until every queued message has been handed to the transport."""

        if self._writer_running():
            await self._outbox.join()

    async def _stop_writer(self) -> None:
        writer, self._writer = self._writer, None
        if writer is None or writer is asyncio.current_task():
            return
        writer.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await writer

    async def close(self, *, code: int = CLOSE_NORMAL, reason: str = "", timeout: float = 2.0) -> bool:
        """Flush pending messages then close the transport.

        Returns ``False`` when either step overran ``timeout`` or failed, in
        which case the connection is still marked closed.
        """

        self.begin_closing()
        graceful = True
        if self._writer_running():
            try:
                await asyncio.wait_for(self._outbox.join(), timeout)
            except asyncio.TimeoutError:
                graceful = False
        self._advance(ConnectionState.CLOSED)
        await self._stop_writer()
        try:
            await asyncio.wait_for(self._transport.close(code, reason), timeout)
        except asyncio.TimeoutError:
            graceful = False
        except Exception as exc:
            logger.debug("Transport close failed", extra={"connection_id": self.id, "error": str(exc)})
            graceful = False
        return graceful

    def terminate(self, *, code: int, reason: str = "") -> None:
        """Forcibly close without waiting for queued messages."""

        self._advance(ConnectionState.CLOSED)
        if self._writer is not None:
            self._writer.cancel()
            self._writer = None
        task = asyncio.get_running_loop().create_task(self._close_transport(code, reason))
        self._pending_closes.add(task)
        task.add_done_callback(self._pending_closes.discard)

    async def _close_transport(self, code: int, reason: str) -> None:
        try:
            await self._transport.close(code, reason)
        except Exception as exc:
            logger.debug("Transport close failed", extra={"connection_id": self.id, "error": str(exc)})

    def discard(self) -> None:
        """Mark closed and stop the writer without touching the transport."""

        self._advance(ConnectionState.CLOSED)
        if self._writer is not None:
            self._writer.cancel()
            self._writer = None

    def describe(self, debug: bool = False) -> dict[str, Any]:
        info: dict[str, Any] = {"connection_id": self.id}
        if debug:
            info.update(
                peer=self.peer,
                state=self.state.value,
                connected_at=self.connected_at.isoformat(),
                initialized=self.initialized,
                in_flight=len(self.in_flight),
            )
        return info


class ConnectionRegistry:
    """Single source of truth for the live connections."""

    def __init__(
        self,
        *,
        on_release: Callable[[Connection, str], None] | None = None,
        metrics: GatewayMetrics | None = None,
        clock: Callable[[], float] = time.monotonic,
        max_pending: int = DEFAULT_MAX_PENDING,
    ) -> None:
        self._connections: dict[str, Connection] = {}
        self._max_pending = max_pending
        self._on_release = on_release
        self._metrics = metrics
        self._clock = clock

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, connection: object) -> bool:
        return isinstance(connection, Connection) and self._connections.get(connection.id) is connection

    def _update_gauge(self) -> None:
        if self._metrics is not None:
            self._metrics.active_connections.set(len(self._connections))

    def register(self, transport: Transport, *, peer: str | None = None) -> Connection:
        connection = Connection(transport, peer=peer, clock=self._clock, max_pending=self._max_pending)
        connection.start()
        self._connections[connection.id] = connection
        self._update_gauge()
        logger.info("Client connected", extra={"connection_id": connection.id, "peer": peer})
        return connection

    def get(self, connection_id: str) -> Connection | None:
        return self._connections.get(connection_id)

    def snapshot(self) -> list[Connection]:
        return list(self._connections.values())

    def release(self, connection: Connection, *, reason: str = "Connection closed") -> bool:
        """Cancel the connection's in-flight work and forget it.

        Safe to call more than once; only the first call has an effect.
        """

        if self._connections.pop(connection.id, None) is None:
            return False
        connection.begin_closing()
        if self._on_release is not None:
            try:
                self._on_release(connection, reason)
            except Exception:
                logger.exception("Release hook failed", extra={"connection_id": connection.id})
        connection.discard()
        self._update_gauge()
        logger.info("Client disconnected", extra={"connection_id": connection.id, "reason": reason})
        return True


class HealthMonitor:
    """Periodically probe open connections and reap idle ones."""

    def __init__(
        self,
        registry: ConnectionRegistry,
        *,
        interval: float = 60.0,
        idle_timeout: float = 300.0,
        clock: Callable[[], float] = time.time,
        metrics: GatewayMetrics | None = None,
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        if idle_timeout <= 0:
            raise ValueError("idle_timeout must be positive")
        self._registry = registry
        self.interval = interval
        self.idle_timeout = idle_timeout
        self._clock = clock
        self._metrics = metrics
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def sweep(self) -> list[Connection]:
        """Run one pass over the registry; returns the connections reaped."""

        reaped: list[Connection] = []
        for connection in self._registry.snapshot():
            if connection.state is ConnectionState.CLOSED:
                self._registry.release(connection, reason="Connection closed")
                continue

            idle = connection.idle_for()
            if idle > self.idle_timeout:
                logger.warning(
                    "Terminating stale connection",
                    extra={"connection_id": connection.id, "idle_seconds": round(idle, 3)},
                )
                connection.terminate(code=CLOSE_STALE, reason="Connection idle timeout")
                self._registry.release(connection, reason="Connection idle timeout")
                if self._metrics is not None:
                    self._metrics.stale_connections.inc()
                reaped.append(connection)
                continue

            if connection.is_open:
                connection.send(notification(PING_METHOD, {"timestamp": int(self._clock() * 1000)}))
        return reaped

    async def run(self) -> None:
        while True:
            await anyio.sleep(self.interval)
            try:
                self.sweep()
            except Exception:
                logger.exception("Health sweep failed")

    def start(self) -> None:
        if not self.running:
            self._task = asyncio.get_running_loop().create_task(self.run())

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task


__all__ = [
    "CLOSE_GOING_AWAY",
    "CLOSE_NORMAL",
    "CLOSE_STALE",
    "CLOSE_TRY_AGAIN_LATER",
    "DEFAULT_MAX_PENDING",
    "Connection",
    "ConnectionRegistry",
    "ConnectionState",
    "HealthMonitor",
    "OVERFLOW_REASON",
    "PING_METHOD",
    "Transport",
]
