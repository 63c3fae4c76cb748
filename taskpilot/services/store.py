"""Task, execution and conversation persistence.

Three logical tables: `tasks`, `task_executions` (one row per generation) and
`task_conversations` (one row per chat message), all keyed by an opaque id and
foreign-keyed on `task_id`. Deleting a task removes its executions and
conversation turns in every backend.
"""
from __future__ import annotations

import json
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol

from taskpilot.config import settings
from taskpilot.errors import NotFoundError
from taskpilot.models.task import (
    ConversationTurn,
    Execution,
    Priority,
    Role,
    SearchResult,
    Section,
    Task,
    results_from_dicts,
)
from taskpilot.services import logger as log_service

TASK_FIELDS = {
    "text": "text",
    "completed": "completed",
    "section": "section",
    "priority": "priority",
    "ai_executable": "ai_executable",
    "due_date": "due_date",
}


class TaskStore(Protocol):
    async def create_task(
        self,
        user_id: str,
        text: str,
        *,
        section: Section = Section.PERSONAL,
        priority: Priority = Priority.LOW,
        ai_executable: bool = False,
        due_date: str | None = None,
    ) -> Task: ...

    async def get_task(self, task_id: str) -> Task | None: ...

    async def list_tasks(self, user_id: str) -> list[Task]: ...

    async def update_task(self, task_id: str, **updates: Any) -> Task: ...

    async def delete_task(self, task_id: str) -> None: ...

    async def append_execution(
        self,
        task_id: str,
        user_id: str,
        response: str,
        search_results: list[SearchResult],
        task_text: str = "",
    ) -> Execution: ...

    async def list_executions(self, task_id: str) -> list[Execution]: ...

    async def get_latest_execution(self, task_id: str) -> Execution | None: ...

    async def get_execution(self, execution_id: str) -> Execution | None: ...

    async def update_execution_response(self, execution_id: str, response: str) -> Execution: ...

    async def append_conversation_turn(
        self, task_id: str, user_id: str, role: Role | str, content: str
    ) -> ConversationTurn: ...

    async def list_conversation(self, task_id: str) -> list[ConversationTurn]: ...

    async def close(self) -> None: ...


class StrictClock:
    """UTC clock that never returns the same instant twice.

    Appends made within one clock tick still sort in insertion order.
    """

    def __init__(self) -> None:
        self._last: datetime | None = None

    def now(self) -> datetime:
        current = datetime.now(timezone.utc)
        if self._last is not None and current <= self._last:
            current = self._last + timedelta(microseconds=1)
        self._last = current
        return current


def new_id() -> str:
    return str(uuid.uuid4())


# --- Row mapping shared by the SQL-ish backends ---


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str) and value:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return datetime.now(timezone.utc)


def _coerce_json_list(value: Any) -> list[Any]:
    """Normalize JSON-string columns into lists."""
    if isinstance(value, list):
        return value
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            return []
        return parsed if isinstance(parsed, list) else []
    return []


def task_from_row(row: dict[str, Any]) -> Task:
    due = row.get("due_date")
    if isinstance(due, datetime):
        due = due.isoformat()
    created = row.get("created_at")
    return Task(
        id=str(row["id"]),
        user_id=str(row.get("user_id") or ""),
        text=row.get("text") or "",
        completed=bool(row.get("completed")),
        section=Section(row.get("section") or Section.PERSONAL.value),
        priority=Priority(row.get("priority") or Priority.LOW.value),
        ai_executable=bool(row.get("ai_executable")),
        due_date=due,
        created_at=_parse_timestamp(created) if created else None,
    )


def execution_from_row(row: dict[str, Any]) -> Execution:
    return Execution(
        execution_id=str(row["id"]),
        task_id=str(row["task_id"]),
        user_id=str(row.get("user_id") or ""),
        timestamp=_parse_timestamp(row.get("timestamp")),
        response=row.get("response") or "",
        search_results=results_from_dicts(_coerce_json_list(row.get("search_results"))),
        task_text=row.get("task_text") or "",
    )


def turn_from_row(row: dict[str, Any]) -> ConversationTurn:
    return ConversationTurn(
        id=str(row.get("id") or ""),
        task_id=str(row["task_id"]),
        user_id=str(row.get("user_id") or ""),
        role=Role(row["role"]),
        content=row.get("content") or "",
        timestamp=_parse_timestamp(row.get("timestamp")),
    )


def task_updates_to_columns(updates: dict[str, Any]) -> dict[str, Any]:
    """Keep known task columns, unwrap enums, drop session-only fields."""
    columns: dict[str, Any] = {}
    for key, value in updates.items():
        column = TASK_FIELDS.get(key)
        if column is None:
            continue
        if isinstance(value, (Section, Priority)):
            value = value.value
        if column == "section" and value is not None:
            value = Section(value).value
        if column == "priority" and value is not None:
            value = Priority(value).value
        columns[column] = value
    return columns


# --- In-memory backend ---


class MemoryTaskStore:
    """Process-local store for development and tests.

    Each append is a single list insertion, so readers never observe a
    partially written row.
    """

    def __init__(self) -> None:
        self._clock = StrictClock()
        self._tasks: dict[str, dict[str, Any]] = {}
        self._executions: list[dict[str, Any]] = []
        self._turns: list[dict[str, Any]] = []

    async def create_task(
        self,
        user_id: str,
        text: str,
        *,
        section: Section = Section.PERSONAL,
        priority: Priority = Priority.LOW,
        ai_executable: bool = False,
        due_date: str | None = None,
    ) -> Task:
        row = {
            "id": new_id(),
            "user_id": user_id,
            "text": text,
            "completed": False,
            "section": Section(section).value,
            "priority": Priority(priority).value,
            "ai_executable": ai_executable,
            "due_date": due_date,
            "created_at": self._clock.now(),
        }
        self._tasks[row["id"]] = row
        log_service.log_db_operation("insert", "tasks", "success", details=row["id"])
        return task_from_row(row)

    async def get_task(self, task_id: str) -> Task | None:
        row = self._tasks.get(str(task_id))
        return task_from_row(row) if row else None

    async def list_tasks(self, user_id: str) -> list[Task]:
        rows = [r for r in self._tasks.values() if r["user_id"] == user_id]
        rows.sort(key=lambda r: r["created_at"], reverse=True)
        return [task_from_row(r) for r in rows]

    async def update_task(self, task_id: str, **updates: Any) -> Task:
        row = self._tasks.get(str(task_id))
        if row is None:
            raise NotFoundError(f"Task {task_id} not found")
        row.update(task_updates_to_columns(updates))
        log_service.log_db_operation("update", "tasks", "success", details=str(task_id))
        return task_from_row(row)

    async def delete_task(self, task_id: str) -> None:
        task_id = str(task_id)
        self._tasks.pop(task_id, None)
        self._executions = [r for r in self._executions if r["task_id"] != task_id]
        self._turns = [r for r in self._turns if r["task_id"] != task_id]
        log_service.log_db_operation("delete", "tasks", "success", details=task_id)

    async def append_execution(
        self,
        task_id: str,
        user_id: str,
        response: str,
        search_results: list[SearchResult],
        task_text: str = "",
    ) -> Execution:
        row = {
            "id": new_id(),
            "task_id": str(task_id),
            "user_id": user_id,
            "task_text": task_text,
            "response": response,
            "search_results": [r.to_dict() for r in search_results],
            "timestamp": self._clock.now(),
        }
        self._executions.append(row)
        log_service.log_db_operation("insert", "task_executions", "success", details=row["id"])
        return execution_from_row(row)

    async def list_executions(self, task_id: str) -> list[Execution]:
        rows = [r for r in self._executions if r["task_id"] == str(task_id)]
        rows.sort(key=lambda r: r["timestamp"], reverse=True)
        return [execution_from_row(r) for r in rows]

    async def get_latest_execution(self, task_id: str) -> Execution | None:
        executions = await self.list_executions(task_id)
        return executions[0] if executions else None

    async def get_execution(self, execution_id: str) -> Execution | None:
        for row in self._executions:
            if row["id"] == str(execution_id):
                return execution_from_row(row)
        return None

    async def update_execution_response(self, execution_id: str, response: str) -> Execution:
        for row in self._executions:
            if row["id"] == str(execution_id):
                row["response"] = response
                log_service.log_db_operation(
                    "update", "task_executions", "success", details=str(execution_id)
                )
                return execution_from_row(row)
        raise NotFoundError(f"Execution {execution_id} not found")

    async def append_conversation_turn(
        self, task_id: str, user_id: str, role: Role | str, content: str
    ) -> ConversationTurn:
        row = {
            "id": new_id(),
            "task_id": str(task_id),
            "user_id": user_id,
            "role": Role(role).value,
            "content": content,
            "timestamp": self._clock.now(),
        }
        self._turns.append(row)
        log_service.log_db_operation("insert", "task_conversations", "success", details=row["id"])
        return turn_from_row(row)

    async def list_conversation(self, task_id: str) -> list[ConversationTurn]:
        rows = [r for r in self._turns if r["task_id"] == str(task_id)]
        rows.sort(key=lambda r: r["timestamp"])
        return [turn_from_row(r) for r in rows]

    async def close(self) -> None:
        return None


def create_store(backend: str | None = None) -> TaskStore:
    """Build the store configured by STORE_BACKEND."""
    name = (backend or settings.store_backend).lower().strip()
    if name == "memory":
        return MemoryTaskStore()
    if name == "supabase":
        from taskpilot.services.supabase import SupabaseTaskStore

        return SupabaseTaskStore()
    if name == "postgres":
        from taskpilot.services.database import PostgresTaskStore

        return PostgresTaskStore()
    raise ValueError(f"Unsupported STORE_BACKEND: {backend or settings.store_backend}")
