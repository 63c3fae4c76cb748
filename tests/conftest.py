"""Shared fakes for the LLM client surface used by the agents."""
from __future__ import annotations

from typing import Any

import pytest


class FakeStream:
    def __init__(self, chunks: list[str], error: Exception | None = None):
        self.chunks = chunks
        self.error = error
        self.closed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.closed = True
        return None

    @property
    def text_stream(self):
        async def gen():
            for chunk in self.chunks:
                yield chunk
            if self.error is not None:
                raise self.error

        return gen()


class FakeMessages:
    def __init__(
        self,
        *,
        replies: list[str] | None = None,
        chunks: list[str] | None = None,
        function_result: dict[str, Any] | None = None,
        create_error: Exception | None = None,
        stream_error: Exception | None = None,
        function_error: Exception | None = None,
    ):
        self.replies = list(replies or [])
        self.chunks = list(chunks or [])
        self.function_result = function_result or {}
        self.create_error = create_error
        self.stream_error = stream_error
        self.function_error = function_error
        self.create_calls: list[dict[str, Any]] = []
        self.stream_calls: list[dict[str, Any]] = []
        self.function_calls: list[dict[str, Any]] = []
        self.streams: list[FakeStream] = []

    async def create(self, **kwargs):
        self.create_calls.append(kwargs)
        if self.create_error is not None:
            raise self.create_error
        return self.replies.pop(0) if self.replies else ""

    def stream(self, **kwargs):
        self.stream_calls.append(kwargs)
        stream = FakeStream(self.chunks, self.stream_error)
        self.streams.append(stream)
        return stream

    async def call_function(self, **kwargs):
        self.function_calls.append(kwargs)
        if self.function_error is not None:
            raise self.function_error
        return dict(self.function_result)


class FakeLLMClient:
    def __init__(self, **kwargs):
        self.messages = FakeMessages(**kwargs)


@pytest.fixture
def make_llm():
    """Factory for fake LLM clients exposing create/stream/call_function."""
    return FakeLLMClient
