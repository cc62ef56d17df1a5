"""Prometheus instrumentation for the gateway.

Every :class:`GatewayMetrics` instance owns its own ``CollectorRegistry`` so
several gateways (for example one per test) can coexist in a process.
"""

from __future__ import annotations

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

DEFAULT_NAMESPACE = "mcp_gateway"

OUTCOME_SUCCESS = "success"
OUTCOME_ERROR = "error"
OUTCOME_CANCELLED = "cancelled"
OUTCOME_REJECTED = "rejected"


class GatewayMetrics:
    def __init__(self, namespace: str = DEFAULT_NAMESPACE, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry or CollectorRegistry()
        self.active_connections = Gauge(
            "active_connections",
            "Number of WebSocket connections currently registered.",
            namespace=namespace,
            registry=self.registry,
        )
        self.requests = Counter(
            "rpc_requests_total",
            "JSON-RPC requests by method and terminal outcome.",
            labelnames=("method", "outcome"),
            namespace=namespace,
            registry=self.registry,
        )
        self.request_duration = Histogram(
            "rpc_request_duration_seconds",
            "Time from admission to terminal response.",
            labelnames=("method",),
            namespace=namespace,
            registry=self.registry,
        )
        self.stream_chunks = Counter(
            "stream_chunks_total",
            "Intermediate stream messages delivered to clients.",
            namespace=namespace,
            registry=self.registry,
        )
        self.stale_connections = Counter(
            "stale_connections_total",
            "Connections closed by the health monitor for inactivity.",
            namespace=namespace,
            registry=self.registry,
        )

    def observe_request(self, method: str, outcome: str, duration: float | None = None) -> None:
        self.requests.labels(method=method, outcome=outcome).inc()
        if duration is not None:
            self.request_duration.labels(method=method).observe(duration)

    def render(self) -> bytes:
        return generate_latest(self.registry)


__all__ = [
    "CONTENT_TYPE_LATEST",
    "DEFAULT_NAMESPACE",
    "GatewayMetrics",
    "OUTCOME_CANCELLED",
    "OUTCOME_ERROR",
    "OUTCOME_REJECTED",
    "OUTCOME_SUCCESS",
]
