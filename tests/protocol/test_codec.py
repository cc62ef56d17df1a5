from __future__ import annotations

import json

import pytest

from mcp_gateway.protocol.codec import Notification, Request, decode_message, encode_message
from mcp_gateway.protocol.errors import ErrorCode, InvalidRequest, ParseError
from mcp_gateway.protocol.messages import (
    completion_result,
    error_response,
    notification,
    stream_result,
    success_response,
)


def test_decode_request_with_params() -> None:
    message = decode_message('{"jsonrpc":"2.0","id":7,"method":"generate","params":{"prompt":"hi"}}')

    assert message == Request(id=7, method="generate", params={"prompt": "hi"})


def test_decode_string_id_and_missing_params() -> None:
    message = decode_message(b'{"jsonrpc":"2.0","id":"abc","method":"initialize"}')

    assert isinstance(message, Request)
    assert message.id == "abc"
    assert message.params is None


def test_decode_notification_without_id() -> None:
    message = decode_message('{"jsonrpc":"2.0","method":"exit"}')

    assert message == Notification(method="exit")


@pytest.mark.failure_mode
def test_invalid_json_is_parse_error() -> None:
    with pytest.raises(ParseError) as excinfo:
        decode_message("{not json")

    assert excinfo.value.code == ErrorCode.PARSE_ERROR
    assert excinfo.value.request_id is None


@pytest.mark.failure_mode
@pytest.mark.parametrize(
    "payload",
    [
        [1, 2, 3],
        {"jsonrpc": "1.0", "id": 1, "method": "initialize"},
        {"id": 1, "method": "initialize"},
    ],
)
def test_wrong_envelope_is_invalid_request(payload: object) -> None:
    with pytest.raises(InvalidRequest) as excinfo:
        decode_message(json.dumps(payload))

    assert excinfo.value.code == ErrorCode.INVALID_REQUEST


@pytest.mark.failure_mode
def test_invalid_request_salvages_identifier() -> None:
    with pytest.raises(InvalidRequest) as excinfo:
        decode_message('{"jsonrpc":"2.0","id":12,"method":42}')

    assert excinfo.value.request_id == 12
    assert excinfo.value.message == "Invalid method (must be string)"


@pytest.mark.failure_mode
def test_scalar_params_rejected() -> None:
    with pytest.raises(InvalidRequest) as excinfo:
        decode_message('{"jsonrpc":"2.0","id":1,"method":"generate","params":"hi"}')

    assert excinfo.value.request_id == 1


@pytest.mark.failure_mode
@pytest.mark.parametrize("raw_id", ["true", "null", "{}", "[1]"])
def test_unusable_identifier_rejected(raw_id: str) -> None:
    with pytest.raises(InvalidRequest) as excinfo:
        decode_message(f'{{"jsonrpc":"2.0","id":{raw_id},"method":"initialize"}}')

    assert excinfo.value.request_id is None


def test_encode_is_compact_and_keeps_unicode() -> None:
    encoded = encode_message(success_response(1, {"content": "héllo"}))

    assert encoded == '{"jsonrpc":"2.0","id":1,"result":{"content":"héllo"}}'


def test_error_response_uses_null_id_when_uncorrelated() -> None:
    message = error_response(None, ParseError(data="Expecting value"))

    assert message == {
        "jsonrpc": "2.0",
        "id": None,
        "error": {"code": -32700, "message": "Parse error", "data": "Expecting value"},
    }


def test_notification_builder_omits_missing_params() -> None:
    assert notification("server/shutdown") == {"jsonrpc": "2.0", "method": "server/shutdown"}


def test_completion_result_echoes_options() -> None:
    result = completion_result("hello", model="gemini-pro", options={"temperature": 0.2})

    assert result == {
        "type": "completion",
        "content": "hello",
        "metadata": {"model": "gemini-pro", "provider": "google", "temperature": 0.2},
    }


def test_stream_result_carries_timestamp() -> None:
    result = stream_result("a", done=False, model="gemini-pro")

    assert result["type"] == "stream"
    assert result["done"] is False
    assert result["metadata"]["model"] == "gemini-pro"
    assert isinstance(result["metadata"]["timestamp"], int)
