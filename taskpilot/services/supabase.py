from __future__ import annotations

import asyncio
from typing import Any

from supabase import Client, create_client

from taskpilot.config import settings
from taskpilot.errors import NotFoundError, StoreError
from taskpilot.models.task import (
    ConversationTurn,
    Execution,
    Priority,
    Role,
    SearchResult,
    Section,
    Task,
)
from taskpilot.services import logger as log_service
from taskpilot.services.store import (
    StrictClock,
    execution_from_row,
    task_from_row,
    task_updates_to_columns,
    turn_from_row,
)


def get_client() -> Client:
    if not settings.supabase_url or not settings.supabase_anon_key:
        raise StoreError("Supabase not configured. Set SUPABASE_URL and SUPABASE_ANON_KEY in .env")
    return create_client(settings.supabase_url, settings.supabase_anon_key)


class SupabaseTaskStore:
    """Store backed by Supabase tables via supabase-py.

    supabase-py is synchronous, so every query runs in a worker thread.
    """

    def __init__(self, client: Client | None = None):
        self._client = client
        self._clock = StrictClock()

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = get_client()
        return self._client

    async def _execute(self, query: Any, *, operation: str, table: str) -> list[dict[str, Any]]:
        try:
            result = await asyncio.to_thread(query.execute)
        except Exception as e:
            log_service.log_db_operation(operation, table, "error", error=str(e))
            raise StoreError(f"Supabase {operation} on {table} failed: {e}") from e
        log_service.log_db_operation(operation, table, "success")
        return result.data or []

    # --- Tasks ---

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
            "user_id": user_id,
            "text": text,
            "completed": False,
            "section": Section(section).value,
            "priority": Priority(priority).value,
            "ai_executable": ai_executable,
            "due_date": due_date,
        }
        rows = await self._execute(
            self.client.table("tasks").insert(row), operation="insert", table="tasks"
        )
        return task_from_row(rows[0])

    async def get_task(self, task_id: str) -> Task | None:
        rows = await self._execute(
            self.client.table("tasks").select("*").eq("id", str(task_id)),
            operation="select",
            table="tasks",
        )
        return task_from_row(rows[0]) if rows else None

    async def list_tasks(self, user_id: str) -> list[Task]:
        rows = await self._execute(
            self.client.table("tasks")
            .select("*")
            .eq("user_id", user_id)
            .order("created_at", desc=True),
            operation="select",
            table="tasks",
        )
        return [task_from_row(r) for r in rows]

    async def update_task(self, task_id: str, **updates: Any) -> Task:
        columns = task_updates_to_columns(updates)
        if not columns:
            task = await self.get_task(task_id)
            if task is None:
                raise NotFoundError(f"Task {task_id} not found")
            return task
        rows = await self._execute(
            self.client.table("tasks").update(columns).eq("id", str(task_id)),
            operation="update",
            table="tasks",
        )
        if not rows:
            raise NotFoundError(f"Task {task_id} not found")
        return task_from_row(rows[0])

    async def delete_task(self, task_id: str) -> None:
        # Children first, so the cascade holds even without FK constraints.
        for table in ("task_executions", "task_conversations"):
            await self._execute(
                self.client.table(table).delete().eq("task_id", str(task_id)),
                operation="delete",
                table=table,
            )
        await self._execute(
            self.client.table("tasks").delete().eq("id", str(task_id)),
            operation="delete",
            table="tasks",
        )

    # --- Executions ---

    async def append_execution(
        self,
        task_id: str,
        user_id: str,
        response: str,
        search_results: list[SearchResult],
        task_text: str = "",
    ) -> Execution:
        row = {
            "task_id": str(task_id),
            "user_id": user_id,
            "task_text": task_text,
            "response": response,
            "timestamp": self._clock.now().isoformat(),
            "search_results": [r.to_dict() for r in search_results],
        }
        rows = await self._execute(
            self.client.table("task_executions").insert(row),
            operation="insert",
            table="task_executions",
        )
        return execution_from_row(rows[0])

    async def list_executions(self, task_id: str) -> list[Execution]:
        rows = await self._execute(
            self.client.table("task_executions")
            .select("*")
            .eq("task_id", str(task_id))
            .order("timestamp", desc=True),
            operation="select",
            table="task_executions",
        )
        return [execution_from_row(r) for r in rows]

    async def get_latest_execution(self, task_id: str) -> Execution | None:
        rows = await self._execute(
            self.client.table("task_executions")
            .select("*")
            .eq("task_id", str(task_id))
            .order("timestamp", desc=True)
            .limit(1),
            operation="select",
            table="task_executions",
        )
        return execution_from_row(rows[0]) if rows else None

    async def get_execution(self, execution_id: str) -> Execution | None:
        rows = await self._execute(
            self.client.table("task_executions").select("*").eq("id", str(execution_id)),
            operation="select",
            table="task_executions",
        )
        return execution_from_row(rows[0]) if rows else None

    async def update_execution_response(self, execution_id: str, response: str) -> Execution:
        rows = await self._execute(
            self.client.table("task_executions")
            .update({"response": response})
            .eq("id", str(execution_id)),
            operation="update",
            table="task_executions",
        )
        if not rows:
            raise NotFoundError(f"Execution {execution_id} not found")
        return execution_from_row(rows[0])

    # --- Conversations ---

    async def append_conversation_turn(
        self, task_id: str, user_id: str, role: Role | str, content: str
    ) -> ConversationTurn:
        row = {
            "task_id": str(task_id),
            "user_id": user_id,
            "role": Role(role).value,
            "content": content,
            "timestamp": self._clock.now().isoformat(),
        }
        rows = await self._execute(
            self.client.table("task_conversations").insert(row),
            operation="insert",
            table="task_conversations",
        )
        return turn_from_row(rows[0])

    async def list_conversation(self, task_id: str) -> list[ConversationTurn]:
        rows = await self._execute(
            self.client.table("task_conversations")
            .select("*")
            .eq("task_id", str(task_id))
            .order("timestamp"),
            operation="select",
            table="task_conversations",
        )
        return [turn_from_row(r) for r in rows]

    async def close(self) -> None:
        return None
