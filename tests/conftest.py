from __future__ import annotations

import asyncio
import json
import sys
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any, List
from unittest import mock

import pytest

PROJECT_ROOT = Path(__file__).resolve().parent.parent
SRC_PATH = PROJECT_ROOT / "src"
if SRC_PATH.exists() and str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from mcp_gateway.backends.base import Completion, CompletionRequest, StreamEvent  # noqa: E402


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "failure_mode: exercises an error or degraded path")


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def mocker():
    patchers: List[mock._patch] = []

    class _Mocker:
        def patch(self, target, *args, **kwargs):
            patcher = mock.patch(target, *args, **kwargs)
            patched = patcher.start()
            patchers.append(patcher)
            return patched

    try:
        yield _Mocker()
    finally:
        while patchers:
            patchers.pop().stop()


class FakeTransport:
    """In-memory transport recording everything the gateway writes."""

    def __init__(self, *, fail_sends: bool = False) -> None:
        self.sent: list[str] = []
        self.closed: tuple[int, str] | None = None
        self.fail_sends = fail_sends

    async def send_text(self, data: str) -> None:
        if self.fail_sends:
            raise ConnectionResetError("peer went away")
        self.sent.append(data)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if self.closed is None:
            self.closed = (code, reason)

    @property
    def messages(self) -> list[dict[str, Any]]:
        return [json.loads(item) for item in self.sent]


class ScriptedBackend:
    """Backend double returning canned completions and gated stream chunks.

    When ``gated`` is true every chunk after the first waits for
    :meth:`release` so tests can interleave requests deterministically.
    """

    name = "scripted"

    def __init__(
        self,
        *,
        text: str = "hello",
        chunks: list[str] | None = None,
        error: BaseException | None = None,
        gated: bool = False,
        model: str = "gemini-test",
    ) -> None:
        self.model = model
        self.text = text
        self.chunks = list(chunks if chunks is not None else ["a", "b"])
        self.error = error
        self.gated = gated
        self.requests: list[CompletionRequest] = []
        self.consumed: list[str] = []
        self.closed = False
        self.completion_gate: asyncio.Event | None = None
        self._gate: asyncio.Event | None = None

    def release(self) -> None:
        if self._gate is not None:
            self._gate.set()

    async def acomplete(self, request: CompletionRequest) -> Completion:
        self.requests.append(request)
        if self.completion_gate is not None:
            await self.completion_gate.wait()
        if self.error is not None:
            raise self.error
        return Completion(text=self.text, model=self.model)

    async def astream(self, request: CompletionRequest) -> AsyncIterator[StreamEvent]:
        self.requests.append(request)
        self._gate = asyncio.Event()
        for index, chunk in enumerate(self.chunks):
            if index and self.gated:
                await self._gate.wait()
            if self.error is not None and index == len(self.chunks) - 1:
                raise self.error
            self.consumed.append(chunk)
            yield StreamEvent(delta=chunk)

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def scripted_backend() -> ScriptedBackend:
    return ScriptedBackend()


@pytest.fixture
def backend_factory():
    return ScriptedBackend


@pytest.fixture
def transport_factory():
    return FakeTransport
