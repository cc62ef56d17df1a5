"""Builders for outbound responses, notifications and operation results."""

from __future__ import annotations

import time
from typing import Any, Mapping

from .codec import JSONRPC_VERSION
from .errors import GatewayError, RequestId

PROVIDER_NAME = "google"


def success_response(request_id: RequestId, result: Any) -> dict[str, Any]:
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "result": result}


def error_response(request_id: RequestId | None, error: GatewayError) -> dict[str, Any]:
    # id is null when the request could not be correlated
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "error": error.to_dict()}


def notification(method: str, params: Mapping[str, Any] | None = None) -> dict[str, Any]:
    message: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "method": method}
    if params is not None:
        message["params"] = dict(params)
    return message


def completion_result(
    content: str,
    *,
    model: str,
    options: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    metadata: dict[str, Any] = {"model": model, "provider": PROVIDER_NAME}
    if options:
        metadata.update(options)
    return {"type": "completion", "content": content, "metadata": metadata}


def stream_result(content: str, *, done: bool, model: str) -> dict[str, Any]:
    return {
        "type": "stream",
        "content": content,
        "done": done,
        "metadata": {"timestamp": int(time.time() * 1000), "model": model},
    }


__all__ = [
    "PROVIDER_NAME",
    "completion_result",
    "error_response",
    "notification",
    "stream_result",
    "success_response",
]
