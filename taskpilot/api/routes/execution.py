from __future__ import annotations

import json
from typing import Any, AsyncIterator

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sse_starlette.sse import EventSourceResponse

from taskpilot.agents.executor import TaskExecutor
from taskpilot.agents.followup import FollowUpHandler
from taskpilot.agents.task_analyzer import TaskAnalyzer
from taskpilot.api.deps import (
    CurrentUser,
    get_analyzer,
    get_current_user,
    get_executor,
    get_followup_handler,
    get_search,
    get_store,
)
from taskpilot.config import settings
from taskpilot.models.events import ErrorEvent, ExecutionEvent
from taskpilot.models.schemas import (
    AnalyzeTaskRequest,
    ExecuteTaskRequest,
    FollowUpRequest,
    FollowUpResponse,
    TaskAnalysisResponse,
    WebSearchRequest,
    WebSearchResponse,
)
from taskpilot.models.task import results_to_dicts
from taskpilot.services import logger as log_service
from taskpilot.services.recorder import UNSAVED_WARNING, persist_on_completion, record_exchange
from taskpilot.services.store import TaskStore

router = APIRouter(prefix="/api", tags=["execution"])


def _sse(event: ExecutionEvent) -> dict[str, str]:
    return {"data": json.dumps(event.payload())}


async def open_execution_stream(
    request: ExecuteTaskRequest,
    user: CurrentUser,
    store: TaskStore,
    executor: TaskExecutor,
) -> AsyncIterator[ExecutionEvent]:
    """Pick the entry point for a request and attach persistence."""
    conversation: list[Any] | None = None
    if isinstance(request.context, list) and request.context:
        conversation = [m.model_dump() for m in request.context]
    elif request.is_follow_up and request.task_id:
        stored = await store.list_conversation(request.task_id)
        conversation = [turn.as_message() for turn in stored if turn.user_id == user.id] or None

    if conversation:
        events = executor.execute_follow_up(request.text, conversation, task_id=request.task_id)
    else:
        notes = request.context if isinstance(request.context, str) else None
        events = executor.execute_initial(request.text, task_id=request.task_id, notes=notes)

    if request.task_id:
        task_text = request.text
        if conversation and conversation[0].get("role") == "user":
            task_text = conversation[0].get("content") or request.text
        events = persist_on_completion(
            events, store, user_id=user.id, user_text=request.text, task_text=task_text
        )
    return events


async def stream_events(
    first: ExecutionEvent, events: AsyncIterator[ExecutionEvent]
) -> AsyncIterator[dict[str, str]]:
    """SSE payloads for an already-started run; closes the run on disconnect."""
    try:
        yield _sse(first)
        async for event in events:
            yield _sse(event)
    finally:
        await events.aclose()


@router.post("/analyze-task", response_model=TaskAnalysisResponse)
async def analyze_task(
    request: AnalyzeTaskRequest,
    analyzer: TaskAnalyzer = Depends(get_analyzer),
):
    """Classify free-text task input into task metadata."""
    analysis = await analyzer.analyze(request.text)
    return TaskAnalysisResponse(**analysis.to_dict())


@router.post("/execute-task")
async def execute_task(
    request: ExecuteTaskRequest,
    user: CurrentUser = Depends(get_current_user),
    store: TaskStore = Depends(get_store),
    executor: TaskExecutor = Depends(get_executor),
):
    """Stream a task execution as server-sent events."""
    log_service.log_event(
        event_type="execution_started",
        message="Task execution started",
        task_id=request.task_id,
        user_id=user.id,
        follow_up=request.is_follow_up or isinstance(request.context, list),
        text=request.text[:100],
    )
    events = await open_execution_stream(request, user, store, executor)

    # Failures before anything was produced are plain request failures.
    first = await anext(events)
    if isinstance(first, ErrorEvent):
        await events.aclose()
        return JSONResponse(status_code=500, content={"error": first.error, "details": first.details})

    return EventSourceResponse(
        stream_events(first, events),
        sep="\n",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


@router.post("/followup", response_model=FollowUpResponse)
async def followup(
    request: FollowUpRequest,
    user: CurrentUser = Depends(get_current_user),
    store: TaskStore = Depends(get_store),
    handler: FollowUpHandler = Depends(get_followup_handler),
):
    """Non-streaming chat follow-up against the latest response."""
    result = await handler.respond(
        request.text,
        original_text=request.original_text,
        previous_response=request.previous_response,
        task_id=request.task_id,
    )
    if not result.ok:
        return JSONResponse(status_code=502, content=result.to_dict())

    response = result.response or ""
    if not request.task_id:
        return FollowUpResponse(response=response)

    try:
        execution_id = await record_exchange(
            store,
            task_id=request.task_id,
            user_id=user.id,
            user_text=request.text,
            response=response,
            search_results=[],
            task_text=request.original_text,
        )
    except Exception as e:
        log_service.log_event(
            event_type="db_error",
            message="Failed to persist follow-up",
            error=str(e),
            task_id=request.task_id,
        )
        return FollowUpResponse(response=response, warning=UNSAVED_WARNING)
    return FollowUpResponse(response=response, execution_id=execution_id)


@router.post("/tools/web-search", response_model=WebSearchResponse)
async def web_search(request: WebSearchRequest, search=Depends(get_search)):
    """Raw search tool; fail-open like the execution path."""
    results = await search(request.query, max_results=settings.tool_search_result_count)
    return WebSearchResponse(results=results_to_dicts(results))
