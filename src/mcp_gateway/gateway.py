"""Composition root wiring the gateway components together."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable

from mcp_gateway import __version__
from mcp_gateway.backends.adapter import BackendAdapter
from mcp_gateway.backends.base import AsyncBackend
from mcp_gateway.backends.gemini import GeminiBackend
from mcp_gateway.config import GatewaySettings
from mcp_gateway.metrics import GatewayMetrics
from mcp_gateway.runtime.connections import ConnectionRegistry, HealthMonitor
from mcp_gateway.runtime.lifecycle import RequestLifecycleManager
from mcp_gateway.runtime.shutdown import ShutdownCoordinator, ShutdownPhase


logger = logging.getLogger(__name__)


def build_backend(settings: GatewaySettings) -> GeminiBackend:
    return GeminiBackend(
        api_key=settings.require_api_key(),
        model=settings.model,
        base_url=settings.api_base_url,
        timeout=settings.request_timeout,
        max_retries=settings.max_retries,
    )


class Gateway:
    """Owns one instance of every component for the lifetime of a server."""

    def __init__(
        self,
        settings: GatewaySettings,
        *,
        backend: AsyncBackend | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings
        self.metrics = GatewayMetrics(settings.metrics_namespace)
        self.adapter = BackendAdapter(backend if backend is not None else build_backend(settings))
        self.lifecycle = RequestLifecycleManager(self.adapter, metrics=self.metrics, debug=settings.debug)
        self.registry = ConnectionRegistry(
            on_release=self.lifecycle.cancel_connection,
            metrics=self.metrics,
            clock=clock,
            max_pending=settings.max_pending_messages,
        )
        self.monitor = HealthMonitor(
            self.registry,
            interval=settings.monitor_interval,
            idle_timeout=settings.idle_timeout,
            metrics=self.metrics,
        )
        self.coordinator = ShutdownCoordinator(
            self.registry,
            self.lifecycle,
            monitor=self.monitor,
            grace_period=settings.close_grace_period,
            timeout=settings.shutdown_timeout,
        )
        self.coordinator.add_stop_callback(self.adapter.aclose)
        self._clock = clock
        self._started_at = clock()

    @property
    def debug(self) -> bool:
        return self.settings.debug

    def uptime(self) -> float:
        return self._clock() - self._started_at

    def health(self) -> dict[str, Any]:
        status = "healthy" if self.coordinator.phase is ShutdownPhase.RUNNING else "shutting_down"
        return {
            "status": status,
            "uptime": round(self.uptime(), 3),
            "activeConnections": len(self.registry),
            "version": __version__,
        }

    async def start(self) -> None:
        self._started_at = self._clock()
        self.monitor.start()
        logger.info(
            "Gateway started",
            extra={"backend": self.adapter.name, "model": self.adapter.model},
        )

    async def aclose(self, reason: str = "server stopping") -> None:
        await self.coordinator.shutdown(reason)


__all__ = ["Gateway", "build_backend"]
