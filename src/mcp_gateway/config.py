"""Environment driven settings for the gateway process."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

from dotenv import load_dotenv

from mcp_gateway.backends.gemini import DEFAULT_GEMINI_API_URL, DEFAULT_GEMINI_MODEL
from mcp_gateway.metrics import DEFAULT_NAMESPACE
from mcp_gateway.runtime.connections import DEFAULT_MAX_PENDING


logger = logging.getLogger(__name__)

_TRUTHY = {"1", "true", "yes", "on"}


class ConfigurationError(ValueError):
    """Raised when a setting required for serving is missing or unusable."""


def _read_float(environ: Mapping[str, str], name: str, default: float, *, minimum: float = 0.0) -> float:
    raw = environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Ignoring malformed setting", extra={"setting": name, "value": raw})
        return default
    if value <= minimum:
        logger.warning("Ignoring out of range setting", extra={"setting": name, "value": raw})
        return default
    return value


def _read_int(environ: Mapping[str, str], name: str, default: int, *, minimum: int = 0) -> int:
    raw = environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Ignoring malformed setting", extra={"setting": name, "value": raw})
        return default
    if value < minimum:
        logger.warning("Ignoring out of range setting", extra={"setting": name, "value": raw})
        return default
    return value


@dataclass(frozen=True)
class GatewaySettings:
    api_key: str | None = None
    model: str = DEFAULT_GEMINI_MODEL
    api_base_url: str = DEFAULT_GEMINI_API_URL
    host: str = "0.0.0.0"
    port: int = 3005
    debug: bool = False
    log_level: str = "INFO"
    monitor_interval: float = 60.0
    idle_timeout: float = 300.0
    close_grace_period: float = 2.0
    shutdown_timeout: float = 10.0
    request_timeout: float = 120.0
    max_retries: int = 3
    max_pending_messages: int = DEFAULT_MAX_PENDING
    metrics_namespace: str = DEFAULT_NAMESPACE

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        *,
        dotenv_path: str | Path | None = None,
    ) -> "GatewaySettings":
        """Build settings from ``environ`` (defaults to ``os.environ``).

        A ``.env`` file is loaded into the process environment first, without
        overriding variables that are already set.
        """

        if environ is None:
            load_dotenv(dotenv_path=dotenv_path, override=False)
            environ = os.environ

        debug = environ.get("DEBUG", "").strip().lower() in _TRUTHY
        log_level = environ.get("LOG_LEVEL", "").strip().upper() or ("DEBUG" if debug else "INFO")

        return cls(
            api_key=environ.get("GEMINI_API_KEY") or None,
            model=environ.get("GEMINI_MODEL") or DEFAULT_GEMINI_MODEL,
            api_base_url=environ.get("GEMINI_API_URL") or DEFAULT_GEMINI_API_URL,
            host=environ.get("HOST") or "0.0.0.0",
            port=_read_int(environ, "PORT", 3005, minimum=1),
            debug=debug,
            log_level=log_level,
            monitor_interval=_read_float(environ, "MCP_MONITOR_INTERVAL", 60.0),
            idle_timeout=_read_float(environ, "MCP_IDLE_TIMEOUT", 300.0),
            close_grace_period=_read_float(environ, "MCP_CLOSE_GRACE_PERIOD", 2.0),
            shutdown_timeout=_read_float(environ, "MCP_SHUTDOWN_TIMEOUT", 10.0),
            request_timeout=_read_float(environ, "GEMINI_REQUEST_TIMEOUT", 120.0),
            max_retries=_read_int(environ, "GEMINI_MAX_RETRIES", 3, minimum=1),
            max_pending_messages=_read_int(
                environ, "MCP_MAX_PENDING_MESSAGES", DEFAULT_MAX_PENDING, minimum=1
            ),
            metrics_namespace=environ.get("METRICS_NAMESPACE") or DEFAULT_NAMESPACE,
        )

    def require_api_key(self) -> str:
        if not self.api_key:
            raise ConfigurationError("GEMINI_API_KEY environment variable is required")
        return self.api_key


__all__ = ["ConfigurationError", "GatewaySettings"]
