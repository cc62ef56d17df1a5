"""Request admission, dispatch, cancellation and terminal resolution.

Every admitted request is registered in its connection's ``in_flight``
mapping and removed again by :meth:`RequestLifecycleManager._resolve`, the
only place a terminal response is produced.  ``_resolve`` refuses a second
resolution, so a request can never answer twice, and the ``finally`` clause
of :meth:`RequestLifecycleManager._execute` guarantees it answers at least
once.

``initialize``, ``cancel``, ``configure`` and ``shutdown`` complete without
suspending and are answered before the next inbound frame is read.
``generate`` and ``stream`` run as event loop tasks.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any, Callable, Mapping

from mcp_gateway.backends.adapter import BackendAdapter
from mcp_gateway.logging_config import log_failure
from mcp_gateway.metrics import (
    OUTCOME_CANCELLED,
    OUTCOME_ERROR,
    OUTCOME_REJECTED,
    OUTCOME_SUCCESS,
    GatewayMetrics,
)
from mcp_gateway.protocol.capabilities import initialize_result
from mcp_gateway.protocol.codec import Notification, Request, decode_message, is_valid_request_id
from mcp_gateway.protocol.errors import (
    AlreadyClosing,
    AlreadyInitialized,
    DuplicateRequestId,
    GatewayError,
    InternalError,
    MethodNotFound,
    NotInitialized,
    RequestCancelled,
    RequestId,
)
from mcp_gateway.protocol.messages import (
    completion_result,
    error_response,
    stream_result,
    success_response,
)
from mcp_gateway.protocol.params import (
    parse_cancel_params,
    parse_configure_params,
    parse_generation_params,
    parse_initialize_params,
)

from .connections import CLOSE_NORMAL, Connection, ConnectionState
from .handles import RequestHandle


logger = logging.getLogger(__name__)


DEFAULT_CANCEL_REASON = "Request cancelled"
CLIENT_CANCEL_REASON = "Cancelled by client"
DISCONNECT_REASON = "Connection closed"


class RequestLifecycleManager:
    """Owns every request from admission to its single terminal response."""

    def __init__(
        self,
        adapter: BackendAdapter,
        *,
        metrics: GatewayMetrics | None = None,
        debug: bool = False,
    ) -> None:
        self._adapter = adapter
        self._metrics = metrics
        self._debug = debug
        self._accepting = True
        self._tasks: set[asyncio.Task] = set()
        self._inline: dict[str, Callable[[RequestHandle, Any], Mapping[str, Any]]] = {
            "initialize": self._initialize,
            "cancel": self._cancel,
            "configure": self._configure,
            "shutdown": self._shutdown,
        }
        self._suspending = {
            "generate": self._generate,
            "stream": self._stream,
        }

    @property
    def accepting(self) -> bool:
        return self._accepting

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)

    def stop_accepting(self) -> None:
        """Make every later :meth:`admit` fail with ``AlreadyClosing``."""

        self._accepting = False

    # Inbound

    def handle_text(self, connection: Connection, raw: str | bytes) -> None:
        """Decode one inbound frame and dispatch it."""

        try:
            message = decode_message(raw)
        except GatewayError as exc:
            log_failure(logger, "request", exc, connection, debug=self._debug)
            connection.send(error_response(exc.request_id, exc))
            return

        if isinstance(message, Notification):
            self._handle_notification(connection, message)
        else:
            self.submit(connection, message)

    def _handle_notification(self, connection: Connection, message: Notification) -> None:
        logger.debug("Received notification", extra={"method": message.method, "connection_id": connection.id})

        if message.method == "exit":
            connection.begin_closing()
            self._spawn(connection.close(code=CLOSE_NORMAL, reason="Client exit"))
        elif message.method == "shutdown":
            connection.begin_closing()
        elif message.method == "notifications/cancelled":
            params = message.params if isinstance(message.params, Mapping) else {}
            target = params.get("requestId")
            if is_valid_request_id(target):
                reason = params.get("reason")
                self.cancel(
                    connection,
                    target,
                    reason=reason if isinstance(reason, str) and reason else CLIENT_CANCEL_REASON,
                )
        else:
            logger.debug("Ignoring notification", extra={"method": message.method})

    def submit(self, connection: Connection, request: Request) -> RequestHandle | None:
        """Admit ``request`` and start it; rejections are answered immediately."""

        if self._debug:
            logger.debug(
                "Received request",
                extra={"method": request.method, "id": request.id, "params": request.params},
            )
        else:
            logger.debug("Received request", extra={"method": request.method, "id": request.id})

        try:
            handle = self.admit(connection, request)
        except GatewayError as exc:
            log_failure(logger, "request", exc, connection, debug=self._debug, level=logging.INFO)
            connection.send(error_response(request.id, exc))
            self._observe(request.method, OUTCOME_REJECTED)
            return None

        if request.method in self._suspending:
            handle.task = self._spawn(self._execute(handle, request))
        else:
            self._run_inline(handle, request)
        return handle

    def admit(self, connection: Connection, request: Request) -> RequestHandle:
        """Check the session preconditions and register a fresh handle.

        Raises ``NotInitialized``, ``AlreadyClosing``, ``AlreadyInitialized``
        or ``DuplicateRequestId`` without side effects.
        """

        if request.method != "initialize" and not connection.initialized:
            raise NotInitialized()
        if not self._accepting or connection.state is not ConnectionState.OPEN:
            raise AlreadyClosing()
        if request.method == "initialize" and connection.initialized:
            raise AlreadyInitialized()
        if request.id in connection.in_flight:
            raise DuplicateRequestId(data={"requestId": request.id})

        handle = RequestHandle(request_id=request.id, method=request.method, connection=connection)
        connection.in_flight[request.id] = handle
        return handle

    # Dispatch

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _run_inline(self, handle: RequestHandle, request: Request) -> None:
        try:
            handler = self._inline.get(request.method)
            if handler is None:
                raise MethodNotFound(data={"method": request.method})
            result = handler(handle, request.params)
        except GatewayError as exc:
            self._resolve_error(handle, exc)
        except Exception as exc:
            log_failure(logger, "request", exc, handle.connection, debug=self._debug, level=logging.ERROR)
            self._resolve_error(handle, InternalError())
        else:
            self._resolve(handle, success_response(handle.request_id, result), OUTCOME_SUCCESS)

    async def _execute(self, handle: RequestHandle, request: Request) -> None:
        try:
            await self._suspending[request.method](handle, request.params)
        except GatewayError as exc:
            self._resolve_error(handle, exc)
        except asyncio.CancelledError:
            reason = handle.token.reason or DEFAULT_CANCEL_REASON
            self._resolve_error(handle, RequestCancelled(data={"reason": reason}))
            raise
        except Exception as exc:
            log_failure(logger, "request", exc, handle.connection, debug=self._debug, level=logging.ERROR)
            self._resolve_error(handle, InternalError())
        finally:
            if not handle.resolved:
                logger.error(
                    "Request finished without a terminal response",
                    extra={"method": handle.method, "id": handle.request_id},
                )
                self._resolve_error(handle, InternalError())

    # Resolution

    def _observe(self, method: str, outcome: str, duration: float | None = None) -> None:
        if self._metrics is not None:
            self._metrics.observe_request(method, outcome, duration)

    def _resolve(self, handle: RequestHandle, message: Mapping[str, Any], outcome: str) -> bool:
        if handle.resolved:
            logger.debug(
                "Dropping late terminal response",
                extra={"id": handle.request_id, "outcome": outcome},
            )
            return False
        handle.resolved = True
        connection = handle.connection
        if connection.in_flight.get(handle.request_id) is handle:
            del connection.in_flight[handle.request_id]
        connection.send(message)
        self._observe(handle.method, outcome, handle.elapsed())
        return True

    def _resolve_error(self, handle: RequestHandle, error: GatewayError) -> bool:
        if isinstance(error, RequestCancelled):
            outcome = OUTCOME_CANCELLED
        else:
            outcome = OUTCOME_ERROR
            if not handle.resolved and not isinstance(error, InternalError):
                log_failure(logger, "request", error, handle.connection, debug=self._debug)
        return self._resolve(handle, error_response(handle.request_id, error), outcome)

    # Cancellation

    def cancel(self, connection: Connection, request_id: RequestId, *, reason: str = DEFAULT_CANCEL_REASON) -> bool:
        """Resolve ``request_id`` as cancelled and stop its work.

        Returns ``False`` when nothing on ``connection`` is in flight under
        that identifier; that case is not an error.
        """

        handle = connection.in_flight.get(request_id)
        if handle is None:
            return False
        self._resolve_error(handle, RequestCancelled(data={"reason": reason}))
        handle.trigger(reason)
        logger.info(
            "Cancelled request",
            extra={"connection_id": connection.id, "id": request_id, "reason": reason},
        )
        return True

    def cancel_connection(self, connection: Connection, reason: str = DISCONNECT_REASON) -> int:
        cancelled = 0
        for request_id in list(connection.in_flight):
            if self.cancel(connection, request_id, reason=reason):
                cancelled += 1
        return cancelled

    async def wait_idle(self, timeout: float | None = None) -> bool:
        """Wait for spawned request tasks to finish; ``False`` on timeout."""

        tasks = [task for task in self._tasks if task is not asyncio.current_task()]
        if not tasks:
            return True
        done, pending = await asyncio.wait(tasks, timeout=timeout)
        return not pending

    # Method handlers

    def _initialize(self, handle: RequestHandle, params: Any) -> Mapping[str, Any]:
        client_info = parse_initialize_params(params)
        connection = handle.connection
        connection.initialized = True
        connection.client_info = client_info
        logger.info(
            "Client initialized",
            extra={"connection_id": connection.id, "client": dict(client_info) if client_info else None},
        )
        return initialize_result()

    def _cancel(self, handle: RequestHandle, params: Any) -> Mapping[str, Any]:
        target = parse_cancel_params(params)
        if target != handle.request_id:
            self.cancel(handle.connection, target, reason=CLIENT_CANCEL_REASON)
        return {"cancelled": True}

    def _configure(self, handle: RequestHandle, params: Any) -> Mapping[str, Any]:
        configuration = parse_configure_params(params)
        logger.info(
            "Configuration acknowledged",
            extra={"connection_id": handle.connection.id, "keys": sorted(configuration)},
        )
        return {"configured": True}

    def _shutdown(self, handle: RequestHandle, params: Any) -> Mapping[str, Any]:
        handle.connection.begin_closing()
        logger.info("Client requested shutdown", extra={"connection_id": handle.connection.id})
        return {}

    async def _generate(self, handle: RequestHandle, params: Any) -> None:
        request = parse_generation_params(params, method="generate")
        completion = await self._adapter.complete_once(request, handle.token)
        result = completion_result(
            completion.text,
            model=completion.model or self._adapter.model,
            options=request.options.as_metadata(),
        )
        self._resolve(handle, success_response(handle.request_id, result), OUTCOME_SUCCESS)

    async def _stream(self, handle: RequestHandle, params: Any) -> None:
        request = parse_generation_params(params, method="stream")
        model = self._adapter.model
        connection = handle.connection
        chunks = 0
        async with contextlib.aclosing(self._adapter.complete_stream(request, handle.token)) as stream:
            async for chunk in stream:
                if handle.resolved:
                    return
                message = success_response(handle.request_id, stream_result(chunk, done=False, model=model))
                if not connection.send(message):
                    self.cancel(connection, handle.request_id, reason=DISCONNECT_REASON)
                    return
                chunks += 1
                if self._metrics is not None:
                    self._metrics.stream_chunks.inc()
        logger.debug("Stream exhausted", extra={"id": handle.request_id, "chunks": chunks})
        self._resolve(
            handle,
            success_response(handle.request_id, stream_result("", done=True, model=model)),
            OUTCOME_SUCCESS,
        )


__all__ = ["RequestLifecycleManager"]
