"""OpenRouter LLM client factory with blocking, streaming and function-call modes."""
from __future__ import annotations

import asyncio
import json
import time
from typing import Any, AsyncIterator

import httpx
import openai

from taskpilot.config import settings
from taskpilot.errors import LLMError
from taskpilot.services import logger as log_service

PROVIDER_ERRORS = (openai.APIError, httpx.HTTPError, asyncio.TimeoutError)


def _elapsed_ms(t0: float) -> int:
    return int((time.monotonic() - t0) * 1000)


class OpenRouterStream:
    """Async context manager over a streaming chat completion.

    Iterate `text_stream` for content deltas. Leaving the context closes the
    upstream response, which abandons generation when the caller stops early.
    """

    def __init__(self, stream_coro: Any, *, model: str, caller: str):
        self._stream_coro = stream_coro
        self._stream: Any | None = None
        self._model = model
        self._caller = caller
        self._t0 = time.monotonic()
        self._finished = False

    async def __aenter__(self) -> "OpenRouterStream":
        try:
            self._stream = await self._stream_coro
        except PROVIDER_ERRORS as e:
            log_service.log_llm_call(
                model=self._model,
                caller=self._caller,
                duration_ms=_elapsed_ms(self._t0),
                streamed=True,
                status="error",
                error=str(e),
            )
            raise LLMError(f"LLM stream could not be opened: {e}") from e
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._stream is not None:
            await self._stream.close()
        if exc_type is None and self._finished:
            log_service.log_llm_call(
                model=self._model,
                caller=self._caller,
                duration_ms=_elapsed_ms(self._t0),
                streamed=True,
            )

    async def _iter_text(self) -> AsyncIterator[str]:
        if self._stream is None:
            return
        try:
            async for chunk in self._stream:
                choices = getattr(chunk, "choices", None) or []
                if not choices:
                    continue
                delta = getattr(choices[0], "delta", None)
                if not delta:
                    continue
                text = getattr(delta, "content", None)
                if text:
                    yield text
        except PROVIDER_ERRORS as e:
            log_service.log_llm_call(
                model=self._model,
                caller=self._caller,
                duration_ms=_elapsed_ms(self._t0),
                streamed=True,
                status="error",
                error=str(e),
            )
            raise LLMError(f"LLM stream failed: {e}") from e
        self._finished = True

    @property
    def text_stream(self) -> AsyncIterator[str]:
        return self._iter_text()


class OpenRouterMessagesAdapter:
    def __init__(self, openai_client: Any):
        self._client = openai_client

    @staticmethod
    def _temperature_for_model(model: str) -> float:
        # Some OpenAI GPT-5-compatible gateways reject anything but the default.
        lowered = (model or "").lower()
        if "gpt-5" in lowered:
            return 1
        return 0.7

    async def _call(self, caller: str, model: str, **kwargs: Any) -> Any:
        t0 = time.monotonic()
        try:
            response = await asyncio.wait_for(
                self._client.chat.completions.create(model=model, **kwargs),
                timeout=settings.llm_timeout_seconds,
            )
        except PROVIDER_ERRORS as e:
            log_service.log_llm_call(
                model=model,
                caller=caller,
                duration_ms=_elapsed_ms(t0),
                status="error",
                error=str(e) or type(e).__name__,
            )
            raise LLMError(f"LLM call failed: {str(e) or type(e).__name__}") from e
        log_service.log_llm_call(model=model, caller=caller, duration_ms=_elapsed_ms(t0))
        return response

    async def create(
        self,
        *,
        model: str,
        messages: list[dict[str, Any]],
        max_tokens: int | None = None,
        caller: str = "llm",
    ) -> str:
        """Blocking completion; returns the assistant text."""
        response = await self._call(
            caller,
            model,
            messages=messages,
            max_tokens=max_tokens or settings.max_output_tokens,
            temperature=self._temperature_for_model(model),
        )
        try:
            content = response.choices[0].message.content
        except (AttributeError, IndexError) as e:
            raise LLMError("LLM response contained no choices") from e
        return content or ""

    async def call_function(
        self,
        *,
        model: str,
        messages: list[dict[str, Any]],
        function: dict[str, Any],
        caller: str = "llm",
    ) -> dict[str, Any]:
        """Force a single tool call and return its parsed JSON arguments."""
        response = await self._call(
            caller,
            model,
            messages=messages,
            max_tokens=settings.max_output_tokens,
            temperature=0,
            tools=[{"type": "function", "function": function}],
            tool_choice={"type": "function", "function": {"name": function["name"]}},
        )
        try:
            tool_calls = response.choices[0].message.tool_calls or []
        except (AttributeError, IndexError) as e:
            raise LLMError("LLM response contained no choices") from e
        if not tool_calls:
            raise LLMError(f"LLM did not call function {function['name']}")

        arguments = getattr(tool_calls[0].function, "arguments", "") or ""
        try:
            parsed = json.loads(arguments)
        except json.JSONDecodeError as e:
            raise LLMError(f"Function arguments are not valid JSON: {e}") from e
        if not isinstance(parsed, dict):
            raise LLMError("Function arguments must be a JSON object")
        return parsed

    def stream(
        self,
        *,
        model: str,
        messages: list[dict[str, Any]],
        max_tokens: int | None = None,
        caller: str = "llm",
    ) -> OpenRouterStream:
        stream = self._client.chat.completions.create(
            model=model,
            messages=messages,
            max_tokens=max_tokens or settings.max_output_tokens,
            temperature=self._temperature_for_model(model),
            stream=True,
        )
        return OpenRouterStream(stream, model=model, caller=caller)


class OpenRouterClientAdapter:
    def __init__(self, openai_client: Any):
        self.messages = OpenRouterMessagesAdapter(openai_client)


def get_client() -> OpenRouterClientAdapter:
    """Get OpenRouter client via OpenAI-compatible SDK."""
    from openai import AsyncOpenAI

    base_url = settings.openrouter_base_url.strip() or "https://openrouter.ai/api/v1"
    openai_client = AsyncOpenAI(
        api_key=settings.openrouter_api_key,
        base_url=base_url,
        timeout=settings.llm_timeout_seconds,
    )
    return OpenRouterClientAdapter(openai_client)


def get_model() -> str:
    """Get the active generation model id."""
    if settings.openrouter_model:
        return settings.openrouter_model
    return settings.default_model


def get_classifier_model() -> str:
    """Model for the lightweight classification calls."""
    return settings.classifier_model or get_model()


_client: OpenRouterClientAdapter | None = None


def client() -> OpenRouterClientAdapter:
    """Get or create the LLM client."""
    global _client
    if _client is None:
        _client = get_client()
    return _client
