"""PostgreSQL store using asyncpg."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import asyncpg

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

SCHEMA_PATH = Path(__file__).resolve().parents[1] / "sql" / "schema.sql"

TASK_COLUMNS = "id, user_id, text, completed, section, priority, ai_executable, due_date, created_at"
EXECUTION_COLUMNS = "id, task_id, user_id, task_text, response, search_results, timestamp"
TURN_COLUMNS = "id, task_id, user_id, role, content, timestamp"


class PostgresTaskStore:
    """Store backed by PostgreSQL; cascade delete comes from the FK constraints."""

    def __init__(self, database_url: str | None = None):
        self.database_url = database_url or settings.database_url
        self._pool: asyncpg.Pool | None = None
        self._clock = StrictClock()

    async def _get_pool(self) -> asyncpg.Pool:
        """Get or create the connection pool."""
        if not self.database_url:
            raise StoreError("Database not configured. Set DATABASE_URL in .env")
        if self._pool is None:
            self._pool = await asyncpg.create_pool(self.database_url, min_size=1, max_size=10)
        return self._pool

    async def _fetch(self, operation: str, table: str, query: str, *args: Any) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                rows = await conn.fetch(query, *args)
        except (asyncpg.PostgresError, OSError) as e:
            log_service.log_db_operation(operation, table, "error", error=str(e))
            raise StoreError(f"Postgres {operation} on {table} failed: {e}") from e
        log_service.log_db_operation(operation, table, "success")
        return [dict(r) for r in rows]

    async def init_schema(self) -> None:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            await conn.execute(SCHEMA_PATH.read_text(encoding="utf-8"))

    async def close(self) -> None:
        """Close the connection pool."""
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

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
        rows = await self._fetch(
            "insert",
            "tasks",
            f"""
            INSERT INTO tasks (user_id, text, section, priority, ai_executable, due_date)
            VALUES ($1, $2, $3, $4, $5, $6)
            RETURNING {TASK_COLUMNS}
            """,
            user_id,
            text,
            Section(section).value,
            Priority(priority).value,
            ai_executable,
            due_date,
        )
        return task_from_row(rows[0])

    async def get_task(self, task_id: str) -> Task | None:
        rows = await self._fetch(
            "select",
            "tasks",
            f"SELECT {TASK_COLUMNS} FROM tasks WHERE id::text = $1",
            str(task_id),
        )
        return task_from_row(rows[0]) if rows else None

    async def list_tasks(self, user_id: str) -> list[Task]:
        rows = await self._fetch(
            "select",
            "tasks",
            f"SELECT {TASK_COLUMNS} FROM tasks WHERE user_id = $1 ORDER BY created_at DESC",
            user_id,
        )
        return [task_from_row(r) for r in rows]

    async def update_task(self, task_id: str, **updates: Any) -> Task:
        columns = task_updates_to_columns(updates)
        if not columns:
            task = await self.get_task(task_id)
            if task is None:
                raise NotFoundError(f"Task {task_id} not found")
            return task

        set_clause = ", ".join(f"{k} = ${i + 2}" for i, k in enumerate(columns.keys()))
        rows = await self._fetch(
            "update",
            "tasks",
            f"""
            UPDATE tasks
            SET {set_clause}
            WHERE id::text = $1
            RETURNING {TASK_COLUMNS}
            """,
            str(task_id),
            *columns.values(),
        )
        if not rows:
            raise NotFoundError(f"Task {task_id} not found")
        return task_from_row(rows[0])

    async def delete_task(self, task_id: str) -> None:
        await self._fetch("delete", "tasks", "DELETE FROM tasks WHERE id::text = $1", str(task_id))

    # --- Executions ---

    async def append_execution(
        self,
        task_id: str,
        user_id: str,
        response: str,
        search_results: list[SearchResult],
        task_text: str = "",
    ) -> Execution:
        rows = await self._fetch(
            "insert",
            "task_executions",
            f"""
            INSERT INTO task_executions (task_id, user_id, task_text, response, search_results, timestamp)
            VALUES ($1::uuid, $2, $3, $4, $5::jsonb, $6)
            RETURNING {EXECUTION_COLUMNS}
            """,
            str(task_id),
            user_id,
            task_text,
            response,
            json.dumps([r.to_dict() for r in search_results]),
            self._clock.now(),
        )
        return execution_from_row(rows[0])

    async def list_executions(self, task_id: str) -> list[Execution]:
        rows = await self._fetch(
            "select",
            "task_executions",
            f"""
            SELECT {EXECUTION_COLUMNS}
            FROM task_executions
            WHERE task_id::text = $1
            ORDER BY timestamp DESC
            """,
            str(task_id),
        )
        return [execution_from_row(r) for r in rows]

    async def get_latest_execution(self, task_id: str) -> Execution | None:
        rows = await self._fetch(
            "select",
            "task_executions",
            f"""
            SELECT {EXECUTION_COLUMNS}
            FROM task_executions
            WHERE task_id::text = $1
            ORDER BY timestamp DESC
            LIMIT 1
            """,
            str(task_id),
        )
        return execution_from_row(rows[0]) if rows else None

    async def get_execution(self, execution_id: str) -> Execution | None:
        rows = await self._fetch(
            "select",
            "task_executions",
            f"SELECT {EXECUTION_COLUMNS} FROM task_executions WHERE id::text = $1",
            str(execution_id),
        )
        return execution_from_row(rows[0]) if rows else None

    async def update_execution_response(self, execution_id: str, response: str) -> Execution:
        rows = await self._fetch(
            "update",
            "task_executions",
            f"""
            UPDATE task_executions
            SET response = $2
            WHERE id::text = $1
            RETURNING {EXECUTION_COLUMNS}
            """,
            str(execution_id),
            response,
        )
        if not rows:
            raise NotFoundError(f"Execution {execution_id} not found")
        return execution_from_row(rows[0])

    # --- Conversations ---

    async def append_conversation_turn(
        self, task_id: str, user_id: str, role: Role | str, content: str
    ) -> ConversationTurn:
        rows = await self._fetch(
            "insert",
            "task_conversations",
            f"""
            INSERT INTO task_conversations (task_id, user_id, role, content, timestamp)
            VALUES ($1::uuid, $2, $3, $4, $5)
            RETURNING {TURN_COLUMNS}
            """,
            str(task_id),
            user_id,
            Role(role).value,
            content,
            self._clock.now(),
        )
        return turn_from_row(rows[0])

    async def list_conversation(self, task_id: str) -> list[ConversationTurn]:
        rows = await self._fetch(
            "select",
            "task_conversations",
            f"""
            SELECT {TURN_COLUMNS}
            FROM task_conversations
            WHERE task_id::text = $1
            ORDER BY timestamp
            """,
            str(task_id),
        )
        return [turn_from_row(r) for r in rows]
