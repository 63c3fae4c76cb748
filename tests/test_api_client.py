from __future__ import annotations

import json

import httpx
import pytest

from taskpilot.client.api_client import STREAM_CLOSED, TaskPilotClient
from taskpilot.client.stream_consumer import ERROR_BUBBLE
from taskpilot.errors import TaskAnalysisError
from taskpilot.models.events import (
    CompletionEvent,
    ContentChunkEvent,
    ErrorEvent,
    SearchResultsEvent,
)
from taskpilot.models.task import SearchResult


def _client(handler) -> TaskPilotClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://test")
    return TaskPilotClient(user_id="u1", user_email="u1@example.com", http_client=http)


def _sse_body(*events) -> bytes:
    return "".join(f"data: {json.dumps(e.payload())}\n\n" for e in events).encode()


@pytest.mark.asyncio
async def test_execute_task_streams_events_into_draft_store():
    results = [SearchResult(title="A", url="https://a.com")]
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            headers={"content-type": "text/event-stream"},
            content=b": ping\n\n"
            + _sse_body(
                SearchResultsEvent(search_results=results),
                ContentChunkEvent(content="Here"),
                ContentChunkEvent(content=" is a summary"),
                CompletionEvent(
                    task_id="t1",
                    original_task="Summarize news",
                    response="Here is a summary",
                    search_results=results,
                    execution_id="e1",
                    persisted=True,
                ),
            ),
        )

    async with _client(handler) as client:
        events = [e async for e in client.execute_task("t1", "Summarize news")]

    assert [type(e) for e in events] == [
        SearchResultsEvent,
        ContentChunkEvent,
        ContentChunkEvent,
        CompletionEvent,
    ]
    request = seen[0]
    assert request.url.path == "/api/execute-task"
    assert request.headers["X-User-Id"] == "u1"
    assert json.loads(request.content) == {"text": "Summarize news", "taskId": "t1"}

    draft = client.drafts.current_draft("t1")
    assert draft.response == "Here is a summary"
    assert draft.execution_id == "e1"
    assert draft.saved is True


@pytest.mark.asyncio
async def test_execute_task_follow_up_sends_context():
    bodies = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(
            200,
            content=_sse_body(CompletionEvent(task_id="t1", original_task="x", response="ok")),
        )

    context = [{"role": "user", "content": "Task"}, {"role": "assistant", "content": "Draft"}]
    async with _client(handler) as client:
        [e async for e in client.execute_task("t1", "Shorter", context=context, follow_up=True)]

    assert bodies[0] == {"text": "Shorter", "taskId": "t1", "context": context, "isFollowUp": True}


@pytest.mark.asyncio
async def test_execute_task_http_500_becomes_error_event():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            500, json={"error": "Failed to execute task with AI", "details": "classifier down"}
        )

    async with _client(handler) as client:
        events = [e async for e in client.execute_task("t1", "Summarize news")]

    assert events == [ErrorEvent(error="Failed to execute task with AI", details="classifier down")]
    assert client.drafts.transcript("t1")[-1].content == ERROR_BUBBLE


@pytest.mark.asyncio
async def test_execute_task_truncated_stream_ends_with_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=_sse_body(ContentChunkEvent(content="partial")))

    async with _client(handler) as client:
        events = [e async for e in client.execute_task("t1", "Summarize news")]

    assert events[0] == ContentChunkEvent(content="partial")
    assert events[-1] == ErrorEvent(error=STREAM_CLOSED)
    draft = client.drafts.current_draft("t1")
    assert draft.response == "partial"
    assert draft.saved is False


@pytest.mark.asyncio
async def test_execute_task_malformed_event_ends_with_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b'data: {"type": "mystery"}\n\n')

    async with _client(handler) as client:
        events = [e async for e in client.execute_task("t1", "x")]

    assert len(events) == 1
    assert events[0].error == "Malformed event"


@pytest.mark.asyncio
async def test_analyze_task_returns_payload_and_raises_on_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        if body["text"] == "bad":
            return httpx.Response(500, json={"error": "Failed to analyze task", "details": "timeout"})
        return httpx.Response(200, json={"taskName": "Buy milk", "section": "Personal"})

    async with _client(handler) as client:
        assert (await client.analyze_task("buy milk"))["taskName"] == "Buy milk"
        with pytest.raises(TaskAnalysisError, match="timeout"):
            await client.analyze_task("bad")


@pytest.mark.asyncio
async def test_follow_up_records_reply_in_transcript():
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        assert body["previousResponse"] == "Long draft"
        return httpx.Response(200, json={"response": "Short draft", "executionId": "e2", "warning": None})

    async with _client(handler) as client:
        data = await client.follow_up(
            "t1", "Shorter", original_text="Write it", previous_response="Long draft"
        )

    assert data["response"] == "Short draft"
    assert client.drafts.current_draft("t1").execution_id == "e2"
    assert [(e.role, e.content) for e in client.drafts.transcript("t1")] == [
        ("user", "Shorter"),
        ("assistant", "Short draft"),
    ]


@pytest.mark.asyncio
async def test_follow_up_error_shows_bubble():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, json={"error": "rate limited"})

    async with _client(handler) as client:
        data = await client.follow_up("t1", "Shorter", original_text="", previous_response="")

    assert data == {"error": "rate limited"}
    assert client.drafts.state("t1").error == "rate limited"
    assert client.drafts.transcript("t1")[-1].content == ERROR_BUBBLE


@pytest.mark.asyncio
async def test_load_task_reconstructs_from_history_endpoints():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/executions"):
            return httpx.Response(
                200, json=[{"executionId": "e1", "response": "Draft", "searchResults": []}]
            )
        return httpx.Response(
            200,
            json=[
                {"role": "user", "content": "Task"},
                {"role": "assistant", "content": "Draft"},
            ],
        )

    async with _client(handler) as client:
        await client.load_task("t1")

    assert client.drafts.current_draft("t1").response == "Draft"
    assert len(client.drafts.transcript("t1")) == 2
