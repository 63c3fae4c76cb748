from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from taskpilot.agents.executor import TaskExecutor
from taskpilot.errors import StoreError
from taskpilot.models.events import CompletionEvent, ContentChunkEvent, ErrorEvent
from taskpilot.models.task import Role, SearchResult
from taskpilot.services.recorder import (
    UNSAVED_WARNING,
    persist_on_completion,
    record_completion,
)
from taskpilot.services.store import MemoryTaskStore


def _completion(task_id: str | None) -> CompletionEvent:
    return CompletionEvent(
        task_id=task_id,
        original_task="Summarize news",
        response="Here is a summary",
        search_results=[SearchResult(title="A", url="https://a.com")],
    )


async def _events(*items):
    for item in items:
        yield item


@pytest.mark.asyncio
async def test_record_completion_saves_turns_and_execution():
    store = MemoryTaskStore()
    task = await store.create_task("u1", "Summarize news")

    event = await record_completion(
        store, _completion(task.id), user_id="u1", user_text="Summarize news"
    )

    assert event.persisted is True
    executions = await store.list_executions(task.id)
    assert [e.execution_id for e in executions] == [event.execution_id]
    assert executions[0].response == "Here is a summary"
    assert executions[0].task_text == "Summarize news"
    turns = await store.list_conversation(task.id)
    assert [(t.role, t.content) for t in turns] == [
        (Role.USER, "Summarize news"),
        (Role.ASSISTANT, "Here is a summary"),
    ]


@pytest.mark.asyncio
async def test_record_completion_failure_keeps_completion_with_warning():
    store = MagicMock()
    store.append_conversation_turn = AsyncMock(side_effect=StoreError("db down"))

    event = await record_completion(store, _completion("t1"), user_id="u1", user_text="x")

    assert event.persisted is False
    assert event.warning == UNSAVED_WARNING
    assert event.response == "Here is a summary"
    assert event.payload()["persisted"] is False


@pytest.mark.asyncio
async def test_record_completion_without_task_is_untouched():
    store = MagicMock()
    original = _completion(None)

    event = await record_completion(store, original, user_id="u1", user_text="x")

    assert event is original
    store.append_execution.assert_not_called()


@pytest.mark.asyncio
async def test_persist_on_completion_forwards_other_events():
    store = MemoryTaskStore()
    task = await store.create_task("u1", "Summarize news")
    chunk = ContentChunkEvent(content="Here is a summary")

    forwarded = [
        e
        async for e in persist_on_completion(
            _events(chunk, _completion(task.id)), store, user_id="u1", user_text="Summarize news"
        )
    ]

    assert forwarded[0] is chunk
    assert forwarded[1].persisted is True


@pytest.mark.asyncio
async def test_error_run_is_not_persisted():
    store = MemoryTaskStore()
    task = await store.create_task("u1", "Summarize news")

    forwarded = [
        e
        async for e in persist_on_completion(
            _events(ContentChunkEvent(content="partial"), ErrorEvent(error="failed")),
            store,
            user_id="u1",
            user_text="Summarize news",
        )
    ]

    assert isinstance(forwarded[-1], ErrorEvent)
    assert await store.list_executions(task.id) == []
    assert await store.list_conversation(task.id) == []


@pytest.mark.asyncio
async def test_closing_early_closes_model_stream_and_saves_nothing(make_llm):
    store = MemoryTaskStore()
    task = await store.create_task("u1", "Summarize news")
    llm = make_llm(replies=["no"], chunks=["Here", " is", " a summary"])
    executor = TaskExecutor(model="m", client=llm, search=AsyncMock(return_value=[]))
    events = persist_on_completion(
        executor.execute_initial("Summarize news", task_id=task.id),
        store,
        user_id="u1",
        user_text="Summarize news",
    )

    assert await anext(events) == ContentChunkEvent(content="Here")
    await events.aclose()

    assert llm.messages.streams[0].closed is True
    assert await store.list_executions(task.id) == []
    assert await store.list_conversation(task.id) == []
