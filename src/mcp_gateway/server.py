from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import uvicorn
from fastapi import FastAPI, Response, WebSocket, status
from fastapi.responses import JSONResponse
from starlette.websockets import WebSocketState

from mcp_gateway import __version__
from mcp_gateway.backends.base import AsyncBackend
from mcp_gateway.config import GatewaySettings
from mcp_gateway.gateway import Gateway
from mcp_gateway.logging_config import configure_logging, log_failure
from mcp_gateway.metrics import CONTENT_TYPE_LATEST
from mcp_gateway.runtime.connections import CLOSE_NORMAL, CLOSE_TRY_AGAIN_LATER, ConnectionState
from mcp_gateway.runtime.shutdown import ShutdownPhase


logger = logging.getLogger(__name__)


class WebSocketTransport:
    """Adapt a Starlette ``WebSocket`` to the gateway transport protocol."""

    def __init__(self, websocket: WebSocket) -> None:
        self._websocket = websocket

    async def send_text(self, data: str) -> None:
        await self._websocket.send_text(data)

    async def close(self, code: int = CLOSE_NORMAL, reason: str = "") -> None:
        if (
            self._websocket.application_state is WebSocketState.DISCONNECTED
            or self._websocket.client_state is WebSocketState.DISCONNECTED
        ):
            return
        await self._websocket.close(code=code, reason=reason)


def _client_address(websocket: WebSocket) -> str:
    forwarded = websocket.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if websocket.client is None:
        return "unknown"
    return f"{websocket.client.host}:{websocket.client.port}"


def create_app(settings: GatewaySettings | None = None, *, backend: AsyncBackend | None = None) -> FastAPI:
    """Build the ASGI application and the gateway behind it.

    Raises :class:`~mcp_gateway.config.ConfigurationError` when no backend is
    supplied and the settings carry no API key.
    """

    settings = settings or GatewaySettings.from_env()
    gateway = Gateway(settings, backend=backend)

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        await gateway.start()
        try:
            yield
        finally:
            await gateway.aclose("application shutdown")

    app = FastAPI(title="mcp-gateway", version=__version__, lifespan=lifespan)
    app.state.gateway = gateway

    @app.get("/health")
    async def health_check() -> JSONResponse:
        payload = gateway.health()
        status_code = status.HTTP_200_OK if payload["status"] == "healthy" else status.HTTP_503_SERVICE_UNAVAILABLE
        return JSONResponse(payload, status_code=status_code)

    @app.get("/metrics")
    async def metrics() -> Response:
        return Response(content=gateway.metrics.render(), media_type=CONTENT_TYPE_LATEST)

    @app.websocket("/")
    async def gateway_socket(websocket: WebSocket) -> None:
        if not gateway.coordinator.running:
            await websocket.close(code=CLOSE_TRY_AGAIN_LATER)
            return

        await websocket.accept()
        connection = gateway.registry.register(WebSocketTransport(websocket), peer=_client_address(websocket))
        reason = "Client disconnected"
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break

                connection.touch()
                text = message.get("text")
                if text is not None:
                    gateway.lifecycle.handle_text(connection, text)
                elif message.get("bytes") is not None:
                    logger.info("Ignoring binary frame", extra={"connection_id": connection.id})

                if connection.state is ConnectionState.CLOSED:
                    reason = "Connection closed by server"
                    break
        except Exception as exc:
            reason = "Transport error"
            log_failure(logger, "connection", exc, connection, debug=gateway.debug, level=logging.ERROR)
        finally:
            gateway.registry.release(connection, reason=reason)

    return app


class GatewayServer(uvicorn.Server):
    """Uvicorn server that drains the gateway before uvicorn closes sockets.

    Uvicorn closes open WebSockets before running the lifespan shutdown, so the
    first exit signal is routed to the shutdown coordinator and uvicorn is only
    told to exit once the drain finished.  A second signal falls through to
    uvicorn's forced exit.
    """

    def __init__(self, config: uvicorn.Config, gateway: Gateway) -> None:
        super().__init__(config)
        self._gateway = gateway
        self._loop: asyncio.AbstractEventLoop | None = None

    async def serve(self, sockets: Any = None) -> None:
        self._loop = asyncio.get_running_loop()
        await super().serve(sockets=sockets)

    def handle_exit(self, sig: int, frame: Any) -> None:
        loop = self._loop
        if loop is None or self.should_exit or self._gateway.coordinator.phase is not ShutdownPhase.RUNNING:
            super().handle_exit(sig, frame)
            return

        logger.info("Received shutdown signal", extra={"signal": sig})

        def _drain() -> None:
            task = self._gateway.coordinator.request_shutdown(f"signal {sig}")
            task.add_done_callback(lambda _task: setattr(self, "should_exit", True))

        loop.call_soon_threadsafe(_drain)


def run(settings: GatewaySettings | None = None) -> None:
    settings = settings or GatewaySettings.from_env()
    configure_logging(settings.log_level, debug=settings.debug)
    app = create_app(settings)
    config = uvicorn.Config(
        app,
        host=settings.host,
        port=settings.port,
        log_config=None,
        lifespan="on",
    )
    server = GatewayServer(config, app.state.gateway)
    logger.info("Starting gateway", extra={"host": settings.host, "port": settings.port})
    server.run()


__all__ = ["GatewayServer", "WebSocketTransport", "create_app", "run"]
