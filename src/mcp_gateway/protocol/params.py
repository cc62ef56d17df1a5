"""Per-method parameter validation.

Each parser takes the raw ``params`` member of a request and returns a typed
value or raises :class:`~mcp_gateway.protocol.errors.InvalidParams`.
"""

from __future__ import annotations

from numbers import Real
from typing import Any, Mapping

from mcp_gateway.backends.base import CompletionRequest, GenerationOptions

from .codec import is_valid_request_id
from .errors import InvalidParams, RequestId


def _as_mapping(params: Any, *, method: str, required: bool) -> Mapping[str, Any]:
    if params is None:
        if required:
            raise InvalidParams(f"Missing params for {method}")
        return {}
    if not isinstance(params, Mapping):
        raise InvalidParams(f"Params for {method} must be an object")
    return params


def _is_number(value: Any) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool)


def parse_initialize_params(params: Any) -> Mapping[str, Any] | None:
    """Return the optional ``clientInfo`` mapping supplied by the client."""

    data = _as_mapping(params, method="initialize", required=False)
    client_info = data.get("clientInfo")
    if client_info is not None and not isinstance(client_info, Mapping):
        raise InvalidParams("clientInfo must be an object")
    return client_info


def parse_generation_params(params: Any, *, method: str = "generate") -> CompletionRequest:
    """Validate ``generate``/``stream`` params into a :class:`CompletionRequest`."""

    data = _as_mapping(params, method=method, required=True)

    prompt = data.get("prompt")
    if not isinstance(prompt, str) or not prompt.strip():
        raise InvalidParams("Invalid or missing parameters: prompt is required")

    temperature = data.get("temperature")
    if temperature is not None and not _is_number(temperature):
        raise InvalidParams("temperature must be a number")

    max_tokens = data.get("maxTokens")
    if max_tokens is not None:
        if not _is_number(max_tokens) or int(max_tokens) != max_tokens or max_tokens <= 0:
            raise InvalidParams("maxTokens must be a positive integer")
        max_tokens = int(max_tokens)

    stop_sequences = data.get("stopSequences")
    if stop_sequences is not None:
        if not isinstance(stop_sequences, list) or not all(isinstance(item, str) for item in stop_sequences):
            raise InvalidParams("stopSequences must be an array of strings")
        stop_sequences = tuple(stop_sequences)

    options = GenerationOptions(
        temperature=float(temperature) if temperature is not None else None,
        max_tokens=max_tokens,
        stop_sequences=stop_sequences,
    )
    return CompletionRequest(prompt=prompt, options=options)


def parse_cancel_params(params: Any) -> RequestId:
    data = _as_mapping(params, method="cancel", required=True)
    target = data.get("requestId")
    if not is_valid_request_id(target):
        raise InvalidParams("Missing requestId parameter")
    return target


def parse_configure_params(params: Any) -> Mapping[str, Any]:
    data = _as_mapping(params, method="configure", required=True)
    configuration = data.get("configuration")
    if not isinstance(configuration, Mapping):
        raise InvalidParams("Missing configuration parameter")
    return configuration


__all__ = [
    "parse_cancel_params",
    "parse_configure_params",
    "parse_generation_params",
    "parse_initialize_params",
]
