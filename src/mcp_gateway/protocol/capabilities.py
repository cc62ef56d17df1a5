"""Protocol version and the capability descriptor returned by ``initialize``."""

from __future__ import annotations

from typing import Any, Final

from mcp_gateway import __version__

PROTOCOL_VERSION: Final[str] = "2024-11-05"
SERVER_NAME: Final[str] = "gemini-mcp"


def server_info() -> dict[str, str]:
    return {"name": SERVER_NAME, "version": __version__}


def server_capabilities() -> dict[str, Any]:
    return {
        "experimental": {"streaming": True, "cancellation": True},
        "logging": {},
    }


def initialize_result() -> dict[str, Any]:
    return {
        "protocolVersion": PROTOCOL_VERSION,
        "serverInfo": server_info(),
        "capabilities": server_capabilities(),
    }


__all__ = ["PROTOCOL_VERSION", "SERVER_NAME", "initialize_result", "server_capabilities", "server_info"]
