"""Google Gemini backend speaking the public ``generativelanguage`` REST API."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from typing import Any, Final

import anyio
import httpx

from mcp_gateway.protocol.errors import (
    BackendError,
    ContentFiltered,
    InvalidCredential,
    RateLimited,
)

from .base import Completion, CompletionRequest, GenerationOptions, StreamEvent


logger = logging.getLogger(__name__)


DEFAULT_GEMINI_API_URL: Final[str] = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_GEMINI_MODEL: Final[str] = "gemini-pro"
MAX_RETRIES: Final[int] = 3
_BACKOFF_SECONDS: Final[tuple[float, ...]] = (0.1, 0.25, 0.5)
ERROR_PREFIX: Final[str] = "Gemini API Error"


def _generation_config(options: GenerationOptions) -> dict[str, Any]:
    config: dict[str, Any] = {}
    if options.temperature is not None:
        config["temperature"] = options.temperature
    if options.max_tokens is not None:
        config["maxOutputTokens"] = options.max_tokens
    if options.stop_sequences is not None:
        config["stopSequences"] = list(options.stop_sequences)
    return config


def _build_payload(request: CompletionRequest) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "contents": [{"role": "user", "parts": [{"text": request.prompt}]}],
    }
    config = _generation_config(request.options)
    if config:
        payload["generationConfig"] = config
    return payload


def _extract_text(data: Any) -> tuple[str, str | None]:
    """Return the concatenated candidate text and its finish reason.

    Raises :class:`ContentFiltered` when the prompt or the candidate was
    blocked by a safety filter.
    """

    if not isinstance(data, dict):
        raise BackendError(f"{ERROR_PREFIX}: unexpected payload type {type(data).__name__}")

    feedback = data.get("promptFeedback")
    if isinstance(feedback, dict) and feedback.get("blockReason"):
        raise ContentFiltered(f"{ERROR_PREFIX}: prompt blocked ({feedback['blockReason']})")

    candidates = data.get("candidates") or []
    if not isinstance(candidates, list):
        raise BackendError(f"{ERROR_PREFIX}: unexpected candidates type {type(candidates).__name__}")
    if not candidates:
        return "", None

    candidate = candidates[0]
    if not isinstance(candidate, dict):
        raise BackendError(f"{ERROR_PREFIX}: unexpected candidate type {type(candidate).__name__}")
    finish_reason = candidate.get("finishReason")

    content = candidate.get("content")
    parts = content.get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list):
        parts = []
    text = "".join(str(part.get("text", "")) for part in parts if isinstance(part, dict))

    # A safety stop that still produced text returns what was generated.
    if finish_reason == "SAFETY" and not text:
        raise ContentFiltered(f"{ERROR_PREFIX}: response blocked by safety filters")
    return text, finish_reason


def _error_from_response(status_code: int, body: str) -> BackendError:
    snippet = body[:200]
    detail = f"{ERROR_PREFIX}: HTTP {status_code}"
    if snippet:
        detail = f"{detail}: {snippet}"

    lowered = body.lower()
    if status_code in {401, 403} or "api key not valid" in lowered:
        return InvalidCredential(detail)
    if status_code == 429 or "quota" in lowered:
        return RateLimited(detail)
    if "safety" in lowered or "blockreason" in lowered:
        return ContentFiltered(detail)
    return BackendError(detail)


def _is_retryable(status_code: int) -> bool:
    return status_code == 429 or 500 <= status_code < 600


async def _sleep(attempt: int) -> None:
    backoff_index = min(attempt - 1, len(_BACKOFF_SECONDS) - 1)
    await anyio.sleep(_BACKOFF_SECONDS[backoff_index])


class GeminiBackend:
    """Async backend targeting the Gemini ``generateContent`` endpoints."""

    name = "gemini"

    def __init__(
        self,
        *,
        api_key: str,
        model: str = DEFAULT_GEMINI_MODEL,
        base_url: str = DEFAULT_GEMINI_API_URL,
        timeout: float = 120.0,
        max_retries: int = MAX_RETRIES,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.model = model
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._max_retries = max(1, max_retries)
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    def _url(self, action: str) -> str:
        return f"{self._base_url}/models/{self.model}:{action}"

    @property
    def _headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json", "x-goog-api-key": self._api_key}

    async def acomplete(self, request: CompletionRequest) -> Completion:
        url = self._url("generateContent")
        payload = _build_payload(request)
        last_error: BackendError | None = None

        for attempt in range(1, self._max_retries + 1):
            logger.info(
                "Calling Gemini generateContent",
                extra={"model": self.model, "attempt": attempt},
            )
            try:
                response = await self._client.post(url, headers=self._headers, json=payload)
            except (httpx.ConnectError, httpx.ReadTimeout) as exc:
                logger.warning(
                    "Connection issue contacting Gemini",
                    extra={"attempt": attempt, "error": str(exc)},
                )
                last_error = BackendError(f"{ERROR_PREFIX}: {exc}")
                if attempt < self._max_retries:
                    await _sleep(attempt)
                    continue
                break
            except httpx.HTTPError as exc:
                raise BackendError(f"{ERROR_PREFIX}: {exc}") from exc

            if response.status_code >= 400:
                error = _error_from_response(response.status_code, response.text)
                logger.warning(
                    "HTTP error from Gemini",
                    extra={"status_code": response.status_code, "attempt": attempt},
                )
                if _is_retryable(response.status_code) and attempt < self._max_retries:
                    last_error = error
                    await _sleep(attempt)
                    continue
                raise error

            try:
                data = response.json()
            except json.JSONDecodeError as exc:
                raise BackendError(f"{ERROR_PREFIX}: invalid JSON response: {exc}") from exc

            text, finish_reason = _extract_text(data)
            logger.info(
                "Received completion from Gemini",
                extra={"model": self.model, "length": len(text)},
            )
            return Completion(text=text, model=self.model, finish_reason=finish_reason, raw_response=data)

        raise last_error or BackendError(f"{ERROR_PREFIX}: all attempts failed")

    async def astream(self, request: CompletionRequest) -> AsyncIterator[StreamEvent]:
        url = self._url("streamGenerateContent")
        payload = _build_payload(request)

        try:
            async with self._client.stream(
                "POST",
                url,
                params={"alt": "sse"},
                headers=self._headers,
                json=payload,
            ) as response:
                if response.status_code >= 400:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    raise _error_from_response(response.status_code, body)

                async for line in response.aiter_lines():
                    if not line.startswith("data:"):
                        continue
                    chunk = line[len("data:"):].strip()
                    if not chunk:
                        continue
                    try:
                        data = json.loads(chunk)
                    except json.JSONDecodeError as exc:
                        raise BackendError(f"{ERROR_PREFIX}: invalid stream chunk: {exc}") from exc
                    text, finish_reason = _extract_text(data)
                    yield StreamEvent(
                        delta=text,
                        metadata={"finishReason": finish_reason} if finish_reason else None,
                    )
        except httpx.HTTPError as exc:
            raise BackendError(f"{ERROR_PREFIX}: {exc}") from exc

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


__all__ = ["DEFAULT_GEMINI_API_URL", "DEFAULT_GEMINI_MODEL", "ERROR_PREFIX", "GeminiBackend"]
