from __future__ import annotations

from datetime import datetime, timezone

import pytest

from taskpilot.errors import NotFoundError
from taskpilot.models.task import Priority, Role, SearchResult, Section
from taskpilot.services.store import (
    MemoryTaskStore,
    StrictClock,
    create_store,
    execution_from_row,
    task_updates_to_columns,
)


@pytest.fixture
def store():
    return MemoryTaskStore()


@pytest.mark.asyncio
async def test_list_executions_newest_first(store):
    task = await store.create_task("u1", "Write report")

    e1 = await store.append_execution(task.id, "u1", "first draft", [])
    e2 = await store.append_execution(task.id, "u1", "second draft", [])

    executions = await store.list_executions(task.id)
    assert [e.execution_id for e in executions] == [e2.execution_id, e1.execution_id]
    assert [e.response for e in executions] == ["second draft", "first draft"]
    assert (await store.get_latest_execution(task.id)).execution_id == e2.execution_id


@pytest.mark.asyncio
async def test_n_appends_return_n_records(store):
    task = await store.create_task("u1", "Write report")
    for i in range(25):
        await store.append_execution(task.id, "u1", f"draft {i}", [])

    executions = await store.list_executions(task.id)
    assert len(executions) == 25
    assert executions[0].response == "draft 24"
    assert executions[-1].response == "draft 0"


@pytest.mark.asyncio
async def test_conversation_is_oldest_first(store):
    task = await store.create_task("u1", "Plan trip")
    await store.append_conversation_turn(task.id, "u1", Role.USER, "Plan trip")
    await store.append_conversation_turn(task.id, "u1", "assistant", "Here is a plan")
    await store.append_conversation_turn(task.id, "u1", Role.USER, "Add hotels")

    turns = await store.list_conversation(task.id)
    assert [t.content for t in turns] == ["Plan trip", "Here is a plan", "Add hotels"]
    assert turns[1].role is Role.ASSISTANT
    assert turns[0].as_message() == {"role": "user", "content": "Plan trip"}


@pytest.mark.asyncio
async def test_delete_task_cascades(store):
    task = await store.create_task("u1", "Plan trip")
    other = await store.create_task("u1", "Other task")
    await store.append_execution(task.id, "u1", "plan", [SearchResult(title="t")])
    await store.append_conversation_turn(task.id, "u1", Role.USER, "Plan trip")
    await store.append_execution(other.id, "u1", "kept", [])

    await store.delete_task(task.id)

    assert await store.get_task(task.id) is None
    assert await store.list_executions(task.id) == []
    assert await store.list_conversation(task.id) == []
    assert len(await store.list_executions(other.id)) == 1


@pytest.mark.asyncio
async def test_search_results_round_trip_through_execution(store):
    task = await store.create_task("u1", "News")
    results = [SearchResult(title="A", description="B", url="https://a.com")]

    execution = await store.append_execution(task.id, "u1", "summary", results, task_text="News")

    assert execution.search_results == results
    assert execution.to_dict()["searchResults"] == [
        {"title": "A", "description": "B", "url": "https://a.com"}
    ]
    assert execution.task_text == "News"


@pytest.mark.asyncio
async def test_update_execution_response(store):
    task = await store.create_task("u1", "Write report")
    execution = await store.append_execution(task.id, "u1", "draft", [])

    updated = await store.update_execution_response(execution.execution_id, "edited draft")

    assert updated.response == "edited draft"
    assert (await store.get_execution(execution.execution_id)).response == "edited draft"
    with pytest.raises(NotFoundError):
        await store.update_execution_response("missing", "x")


@pytest.mark.asyncio
async def test_tasks_are_scoped_by_user_and_updatable(store):
    mine = await store.create_task("u1", "Mine", section=Section.WORK, priority=Priority.HIGH)
    await store.create_task("u2", "Theirs")

    assert [t.text for t in await store.list_tasks("u1")] == ["Mine"]

    updated = await store.update_task(mine.id, completed=True, priority="Medium", analysis="ignored")
    assert updated.completed is True
    assert updated.priority is Priority.MEDIUM
    assert updated.section is Section.WORK

    with pytest.raises(NotFoundError):
        await store.update_task("missing", completed=True)


def test_task_updates_drop_unknown_and_session_fields():
    columns = task_updates_to_columns(
        {"text": "New", "analysis": "session only", "section": Section.WORK, "bogus": 1}
    )

    assert columns == {"text": "New", "section": "Work"}


def test_execution_from_row_accepts_json_string_results():
    execution = execution_from_row(
        {
            "id": 7,
            "task_id": 3,
            "user_id": "u1",
            "response": "r",
            "search_results": '[{"title": "T", "url": "https://t.com"}]',
            "timestamp": "2024-01-01T00:00:00Z",
        }
    )

    assert execution.execution_id == "7"
    assert execution.task_id == "3"
    assert execution.search_results[0].description == ""
    assert execution.timestamp == datetime(2024, 1, 1, tzinfo=timezone.utc)


def test_strict_clock_is_strictly_increasing():
    clock = StrictClock()
    stamps = [clock.now() for _ in range(100)]

    assert all(a < b for a, b in zip(stamps, stamps[1:]))


def test_create_store_rejects_unknown_backend():
    assert isinstance(create_store("memory"), MemoryTaskStore)
    with pytest.raises(ValueError):
        create_store("redis")
