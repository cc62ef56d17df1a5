"""Error taxonomy shared by every gateway component.

Each error carries a stable negative integer ``code`` that is written to the
wire inside the JSON-RPC ``error`` member.  The standard JSON-RPC range is
reserved for parse and structure errors, ``-32000``..``-32099`` for session
protocol errors and ``-32100``..``-32199`` for backend failures.

The currently defined errors are:

``ParseError`` (-32700)
    The inbound frame is not valid JSON.

``InvalidRequest`` (-32600)
    The envelope is not a JSON-RPC 2.0 request or notification.

``MethodNotFound`` (-32601)
    The method is not one of the recognised operations.

``InvalidParams`` (-32602)
    A required parameter is missing or has the wrong type.

``NotInitialized`` (-32002)
    An operation other than ``initialize`` arrived before initialisation.

``AlreadyClosing`` (-32003)
    The connection or the whole server has started shutting down.

``RequestCancelled`` (-32800)
    Terminal outcome of a request whose cancellation handle was triggered.

``BackendError`` (-32100) and its refinements ``RateLimited`` (-32101),
``InvalidCredential`` (-32102) and ``ContentFiltered`` (-32103)
    Failures reported by the generation backend.

``InternalError`` (-32603)
    Anything unexpected.  The message is fixed so no diagnostic detail leaks.
"""

from __future__ import annotations

from enum import IntEnum
from typing import Any, ClassVar, Union

RequestId = Union[str, int, float]


class ErrorCode(IntEnum):
    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603
    SERVER_NOT_INITIALIZED = -32002
    UNKNOWN_ERROR = -32001
    SERVER_SHUTTING_DOWN = -32003
    REQUEST_CANCELLED = -32800

    BACKEND_ERROR = -32100
    BACKEND_RATE_LIMIT = -32101
    BACKEND_INVALID_CREDENTIAL = -32102
    BACKEND_CONTENT_FILTERED = -32103


class GatewayError(Exception):
    """Base class for every error that can be reported to a peer.

    Parameters
    ----------
    message:
        Human readable summary written to the wire.  Defaults to the
        class-level ``default_message``.
    data:
        Optional auxiliary value copied into the ``error.data`` member.
    request_id:
        Identifier salvaged from a malformed envelope, used by the codec so
        the error response can still be correlated.
    """

    code: ClassVar[ErrorCode] = ErrorCode.INTERNAL_ERROR
    default_message: ClassVar[str] = "Internal error"

    def __init__(
        self,
        message: str | None = None,
        *,
        data: Any = None,
        request_id: RequestId | None = None,
    ) -> None:
        self.message = message or self.default_message
        self.data = data
        self.request_id = request_id
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        error: dict[str, Any] = {"code": int(self.code), "message": self.message}
        if self.data is not None:
            error["data"] = self.data
        return error


class ProtocolError(GatewayError):
    """Errors resolved locally at admission time; they never reach the backend."""

    code = ErrorCode.INVALID_REQUEST
    default_message = "Invalid request"


class ParseError(ProtocolError):
    code = ErrorCode.PARSE_ERROR
    default_message = "Parse error"


class InvalidRequest(ProtocolError):
    code = ErrorCode.INVALID_REQUEST
    default_message = "Invalid JSON-RPC structure"


class MethodNotFound(ProtocolError):
    code = ErrorCode.METHOD_NOT_FOUND
    default_message = "Method not found"


class InvalidParams(ProtocolError):
    code = ErrorCode.INVALID_PARAMS
    default_message = "Invalid params"


class NotInitialized(ProtocolError):
    code = ErrorCode.SERVER_NOT_INITIALIZED
    default_message = "Server not initialized"


class AlreadyInitialized(ProtocolError):
    code = ErrorCode.INVALID_REQUEST
    default_message = "Server already initialized for this connection"


class DuplicateRequestId(ProtocolError):
    code = ErrorCode.INVALID_REQUEST
    default_message = "Request id is already in flight on this connection"


class AlreadyClosing(ProtocolError):
    code = ErrorCode.SERVER_SHUTTING_DOWN
    default_message = "Server is shutting down"


class RequestCancelled(GatewayError):
    code = ErrorCode.REQUEST_CANCELLED
    default_message = "Request cancelled"


class BackendError(GatewayError):
    code = ErrorCode.BACKEND_ERROR
    default_message = "Backend request failed"


class RateLimited(BackendError):
    code = ErrorCode.BACKEND_RATE_LIMIT
    default_message = "Backend rate limit exceeded"


class InvalidCredential(BackendError):
    code = ErrorCode.BACKEND_INVALID_CREDENTIAL
    default_message = "Backend rejected the configured credential"


class ContentFiltered(BackendError):
    code = ErrorCode.BACKEND_CONTENT_FILTERED
    default_message = "Backend filtered the generated content"


class InternalError(GatewayError):
    code = ErrorCode.INTERNAL_ERROR
    default_message = "An unexpected internal error occurred"


__all__ = [
    "AlreadyClosing",
    "AlreadyInitialized",
    "BackendError",
    "ContentFiltered",
    "DuplicateRequestId",
    "ErrorCode",
    "GatewayError",
    "InternalError",
    "InvalidCredential",
    "InvalidParams",
    "InvalidRequest",
    "MethodNotFound",
    "NotInitialized",
    "ParseError",
    "ProtocolError",
    "RateLimited",
    "RequestCancelled",
    "RequestId",
]
