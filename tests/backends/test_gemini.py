from __future__ import annotations

import json
from typing import Any, Callable

import httpx
import pytest

from mcp_gateway.backends.base import CompletionRequest, GenerationOptions
from mcp_gateway.backends.gemini import GeminiBackend
from mcp_gateway.protocol.errors import (
    BackendError,
    ContentFiltered,
    InvalidCredential,
    RateLimited,
)


pytestmark = pytest.mark.anyio

BASE_URL = "https://gemini.test/v1beta"


@pytest.fixture(autouse=True)
def _no_sleep(monkeypatch: pytest.MonkeyPatch) -> None:
    async def _fast_sleep(attempt: int) -> None:
        return None

    monkeypatch.setattr("mcp_gateway.backends.gemini._sleep", _fast_sleep)


def _backend(handler: Callable[[httpx.Request], httpx.Response], **kwargs: Any) -> GeminiBackend:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GeminiBackend(api_key="secret", base_url=BASE_URL, client=client, **kwargs)


def _candidate(text: str, finish_reason: str = "STOP") -> dict[str, Any]:
    return {"candidates": [{"content": {"parts": [{"text": text}]}, "finishReason": finish_reason}]}


async def test_acomplete_posts_generate_content() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=_candidate("hello"))

    backend = _backend(handler)
    options = GenerationOptions(temperature=0.3, max_tokens=32, stop_sequences=("END",))
    completion = await backend.acomplete(CompletionRequest(prompt="hi", options=options))

    assert completion.text == "hello"
    assert completion.model == "gemini-pro"
    assert completion.finish_reason == "STOP"

    request = seen[0]
    assert str(request.url) == f"{BASE_URL}/models/gemini-pro:generateContent"
    assert request.headers["x-goog-api-key"] == "secret"
    body = json.loads(request.content)
    assert body["contents"] == [{"role": "user", "parts": [{"text": "hi"}]}]
    assert body["generationConfig"] == {"temperature": 0.3, "maxOutputTokens": 32, "stopSequences": ["END"]}


async def test_acomplete_omits_empty_generation_config() -> None:
    bodies: list[dict[str, Any]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json=_candidate("ok"))

    await _backend(handler).acomplete(CompletionRequest(prompt="hi"))

    assert "generationConfig" not in bodies[0]


async def test_acomplete_retries_server_errors() -> None:
    responses = [httpx.Response(503, text="unavailable"), httpx.Response(200, json=_candidate("recovered"))]
    calls: list[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(1)
        return responses.pop(0)

    completion = await _backend(handler).acomplete(CompletionRequest(prompt="hi"))

    assert completion.text == "recovered"
    assert len(calls) == 2


@pytest.mark.failure_mode
async def test_acomplete_rate_limit_after_retries() -> None:
    calls: list[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(1)
        return httpx.Response(429, text="Resource has been exhausted (e.g. check quota).")

    with pytest.raises(RateLimited) as excinfo:
        await _backend(handler, max_retries=2).acomplete(CompletionRequest(prompt="hi"))

    assert len(calls) == 2
    assert excinfo.value.message.startswith("Gemini API Error")


@pytest.mark.failure_mode
async def test_acomplete_invalid_key_is_not_retried() -> None:
    calls: list[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(1)
        return httpx.Response(400, text="API key not valid. Please pass a valid API key.")

    with pytest.raises(InvalidCredential):
        await _backend(handler).acomplete(CompletionRequest(prompt="hi"))

    assert len(calls) == 1


@pytest.mark.failure_mode
async def test_acomplete_blocked_prompt() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"promptFeedback": {"blockReason": "SAFETY"}})

    with pytest.raises(ContentFiltered):
        await _backend(handler).acomplete(CompletionRequest(prompt="hi"))


@pytest.mark.failure_mode
async def test_acomplete_safety_stop_without_text_is_filtered() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"candidates": [{"finishReason": "SAFETY"}]})

    with pytest.raises(ContentFiltered):
        await _backend(handler).acomplete(CompletionRequest(prompt="hi"))


async def test_acomplete_safety_stop_keeps_generated_text() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=_candidate("partial answer", finish_reason="SAFETY"))

    completion = await _backend(handler).acomplete(CompletionRequest(prompt="hi"))

    assert completion.text == "partial answer"
    assert completion.finish_reason == "SAFETY"


@pytest.mark.failure_mode
@pytest.mark.parametrize(
    "body",
    [
        {"candidates": ["not a candidate"]},
        {"candidates": {"content": {}}},
    ],
)
async def test_acomplete_malformed_candidates(body: dict[str, Any]) -> None:
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json=body)

    with pytest.raises(BackendError) as excinfo:
        await _backend(handler).acomplete(CompletionRequest(prompt="hi"))

    assert excinfo.value.message.startswith("Gemini API Error: unexpected candidate")
    assert len(calls) == 1


@pytest.mark.failure_mode
async def test_acomplete_connection_failure() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(BackendError) as excinfo:
        await _backend(handler, max_retries=2).acomplete(CompletionRequest(prompt="hi"))

    assert "connection refused" in excinfo.value.message


async def test_astream_parses_server_sent_events() -> None:
    seen: list[httpx.Request] = []
    stream_body = "".join(
        f"data: {json.dumps(_candidate(text))}\r\n\r\n" for text in ("Hel", "lo")
    )

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, content=stream_body.encode(), headers={"content-type": "text/event-stream"})

    backend = _backend(handler)
    deltas = [event.delta async for event in backend.astream(CompletionRequest(prompt="hi"))]

    assert deltas == ["Hel", "lo"]
    assert seen[0].url.path.endswith("/models/gemini-pro:streamGenerateContent")
    assert seen[0].url.params["alt"] == "sse"


@pytest.mark.failure_mode
async def test_astream_maps_http_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(403, text="permission denied")

    backend = _backend(handler)
    with pytest.raises(InvalidCredential):
        async for _event in backend.astream(CompletionRequest(prompt="hi")):
            pass


async def test_aclose_leaves_injected_client_open() -> None:
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200)))
    backend = GeminiBackend(api_key="secret", client=client)

    await backend.aclose()

    assert not client.is_closed
    await client.aclose()
