"""JSON-RPC 2.0 envelope decoding and encoding."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Final, Mapping, Union

from .errors import InvalidRequest, ParseError, RequestId

JSONRPC_VERSION: Final[str] = "2.0"


@dataclass(frozen=True)
class Request:
    """A client-issued operation that expects exactly one terminal response."""

    id: RequestId
    method: str
    params: Any = None


@dataclass(frozen=True)
class Notification:
    """A fire-and-forget message without an identifier."""

    method: str
    params: Any = None


InboundMessage = Union[Request, Notification]


def is_valid_request_id(value: Any) -> bool:
    # bool is an int subclass but never a valid identifier
    if isinstance(value, bool):
        return False
    return isinstance(value, (str, int, float))


def _salvage_id(payload: Any) -> RequestId | None:
    if isinstance(payload, Mapping):
        candidate = payload.get("id")
        if is_valid_request_id(candidate):
            return candidate
    return None


def decode_message(raw: str | bytes) -> InboundMessage:
    """Parse one inbound frame into a :class:`Request` or :class:`Notification`.

    Raises
    ------
    ParseError
        If ``raw`` is not valid JSON text.
    InvalidRequest
        If the JSON value is not a JSON-RPC 2.0 request or notification.  The
        error carries the salvaged ``request_id`` when the envelope had one.
    """

    try:
        payload = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ParseError(data=str(exc)) from exc

    if not isinstance(payload, dict) or payload.get("jsonrpc") != JSONRPC_VERSION:
        raise InvalidRequest(request_id=_salvage_id(payload))

    request_id = _salvage_id(payload)
    method = payload.get("method")
    if not isinstance(method, str) or not method:
        raise InvalidRequest("Invalid method (must be string)", request_id=request_id)

    params = payload.get("params")
    if params is not None and not isinstance(params, (dict, list)):
        raise InvalidRequest("Invalid params (must be object or array)", request_id=request_id)

    if "id" not in payload:
        return Notification(method=method, params=params)
    if request_id is None:
        raise InvalidRequest("Invalid request ID (must be string or number)")
    return Request(id=request_id, method=method, params=params)


def encode_message(message: Mapping[str, Any]) -> str:
    return json.dumps(message, separators=(",", ":"), ensure_ascii=False, default=str)


__all__ = [
    "InboundMessage",
    "JSONRPC_VERSION",
    "Notification",
    "Request",
    "decode_message",
    "encode_message",
    "is_valid_request_id",
]
