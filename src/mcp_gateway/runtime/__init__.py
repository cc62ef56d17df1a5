"""Connection state, request lifecycle and shutdown orchestration."""

from .connections import Connection, ConnectionRegistry, ConnectionState, HealthMonitor
from .handles import CancellationToken, RequestHandle

__all__ = [
    "CancellationToken",
    "Connection",
    "ConnectionRegistry",
    "ConnectionState",
    "HealthMonitor",
    "RequestHandle",
]
