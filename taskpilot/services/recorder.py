"""Persist a finished generation as an Execution plus conversation turns.

Persistence only happens once a `completion` event has been observed. A
failure here does not turn the run into an error: the answer has already been
streamed, so the completion is forwarded with `persisted=False` and a warning
the client can show.
"""
from __future__ import annotations

from contextlib import aclosing
from dataclasses import replace
from typing import AsyncIterator

from taskpilot.models.events import CompletionEvent, ExecutionEvent
from taskpilot.models.task import Role, SearchResult
from taskpilot.services import logger as log_service
from taskpilot.services.store import TaskStore

UNSAVED_WARNING = "The response was generated but could not be saved. It may be missing after a reload."


async def record_exchange(
    store: TaskStore,
    *,
    task_id: str,
    user_id: str,
    user_text: str,
    response: str,
    search_results: list[SearchResult],
    task_text: str = "",
) -> str:
    """Append the user turn, the assistant turn and the Execution row.

    Returns the new execution id.
    """
    await store.append_conversation_turn(task_id, user_id, Role.USER, user_text)
    await store.append_conversation_turn(task_id, user_id, Role.ASSISTANT, response)
    execution = await store.append_execution(
        task_id,
        user_id,
        response,
        search_results,
        task_text=task_text or user_text,
    )
    return execution.execution_id


async def record_completion(
    store: TaskStore,
    event: CompletionEvent,
    *,
    user_id: str,
    user_text: str,
    task_text: str = "",
) -> CompletionEvent:
    if not event.task_id:
        return event
    try:
        execution_id = await record_exchange(
            store,
            task_id=event.task_id,
            user_id=user_id,
            user_text=user_text,
            response=event.response,
            search_results=event.search_results,
            task_text=task_text,
        )
    except Exception as e:
        log_service.log_event(
            event_type="db_error",
            message="Failed to persist execution",
            error=str(e),
            task_id=event.task_id,
        )
        return replace(event, persisted=False, warning=UNSAVED_WARNING)
    return replace(event, execution_id=execution_id, persisted=True)


async def persist_on_completion(
    events: AsyncIterator[ExecutionEvent],
    store: TaskStore,
    *,
    user_id: str,
    user_text: str,
    task_text: str = "",
) -> AsyncIterator[ExecutionEvent]:
    """Forward `events`, saving the exchange before the completion goes out.

    Closing this generator closes `events` too, which abandons the model call.
    """
    async with aclosing(events):
        async for event in events:
            if isinstance(event, CompletionEvent):
                event = await record_completion(
                    store, event, user_id=user_id, user_text=user_text, task_text=task_text
                )
            yield event
