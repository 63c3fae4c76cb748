from __future__ import annotations

from fastapi import APIRouter, Depends

from taskpilot.api.deps import CurrentUser, get_current_user, get_store
from taskpilot.errors import NotFoundError
from taskpilot.models.schemas import (
    ConversationTurnResponse,
    CreateTaskRequest,
    ExecutionResponse,
    TaskResponse,
    UpdateExecutionRequest,
    UpdateTaskRequest,
)
from taskpilot.models.task import Task
from taskpilot.services.store import TaskStore

router = APIRouter(prefix="/api", tags=["tasks"])


async def _owned_task(store: TaskStore, task_id: str, user: CurrentUser) -> Task:
    task = await store.get_task(task_id)
    if task is None or task.user_id != user.id:
        raise NotFoundError(f"Task {task_id} not found")
    return task


@router.post("/tasks", response_model=TaskResponse, status_code=201)
async def create_task(
    request: CreateTaskRequest,
    user: CurrentUser = Depends(get_current_user),
    store: TaskStore = Depends(get_store),
):
    task = await store.create_task(
        user.id,
        request.text,
        section=request.section,
        priority=request.priority,
        ai_executable=request.ai_executable,
        due_date=request.due_date,
    )
    # analysis is session-only: echoed back, never stored.
    task.analysis = request.analysis
    return TaskResponse(**task.to_dict())


@router.get("/tasks", response_model=list[TaskResponse])
async def list_tasks(
    user: CurrentUser = Depends(get_current_user),
    store: TaskStore = Depends(get_store),
):
    """List the current user's tasks, newest first."""
    return [TaskResponse(**t.to_dict()) for t in await store.list_tasks(user.id)]


@router.get("/tasks/{task_id}", response_model=TaskResponse)
async def get_task(
    task_id: str,
    user: CurrentUser = Depends(get_current_user),
    store: TaskStore = Depends(get_store),
):
    task = await _owned_task(store, task_id, user)
    return TaskResponse(**task.to_dict())


@router.patch("/tasks/{task_id}", response_model=TaskResponse)
async def update_task(
    task_id: str,
    request: UpdateTaskRequest,
    user: CurrentUser = Depends(get_current_user),
    store: TaskStore = Depends(get_store),
):
    await _owned_task(store, task_id, user)
    task = await store.update_task(task_id, **request.model_dump(exclude_unset=True))
    return TaskResponse(**task.to_dict())


@router.delete("/tasks/{task_id}")
async def delete_task(
    task_id: str,
    user: CurrentUser = Depends(get_current_user),
    store: TaskStore = Depends(get_store),
):
    """Delete a task together with its executions and conversation."""
    await _owned_task(store, task_id, user)
    await store.delete_task(task_id)
    return {"status": "deleted"}


@router.get("/tasks/{task_id}/executions", response_model=list[ExecutionResponse])
async def list_executions(
    task_id: str,
    user: CurrentUser = Depends(get_current_user),
    store: TaskStore = Depends(get_store),
):
    """Execution history, newest first; the first entry is the current draft."""
    executions = await store.list_executions(task_id)
    return [ExecutionResponse(**e.to_dict()) for e in executions if e.user_id == user.id]


@router.get("/tasks/{task_id}/conversation", response_model=list[ConversationTurnResponse])
async def list_conversation(
    task_id: str,
    user: CurrentUser = Depends(get_current_user),
    store: TaskStore = Depends(get_store),
):
    turns = await store.list_conversation(task_id)
    return [ConversationTurnResponse(**t.to_dict()) for t in turns if t.user_id == user.id]


@router.patch("/executions/{execution_id}", response_model=ExecutionResponse)
async def update_execution(
    execution_id: str,
    request: UpdateExecutionRequest,
    user: CurrentUser = Depends(get_current_user),
    store: TaskStore = Depends(get_store),
):
    """User edit of one execution's response."""
    existing = await store.get_execution(execution_id)
    if existing is None or existing.user_id != user.id:
        raise NotFoundError(f"Execution {execution_id} not found")
    execution = await store.update_execution_response(execution_id, request.response)
    return ExecutionResponse(**execution.to_dict())
