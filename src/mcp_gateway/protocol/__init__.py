"""JSON-RPC envelope handling, error taxonomy and method parameters."""

from .codec import Notification, Request, decode_message, encode_message
from .errors import ErrorCode, GatewayError, RequestId

__all__ = [
    "ErrorCode",
    "GatewayError",
    "Notification",
    "Request",
    "RequestId",
    "decode_message",
    "encode_message",
]
