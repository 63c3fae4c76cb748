from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class Section(str, Enum):
    WORK = "Work"
    PERSONAL = "Personal"


class Priority(str, Enum):
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(slots=True)
class SearchResult:
    title: str = ""
    description: str = ""
    url: str = ""

    def to_dict(self) -> dict[str, str]:
        return {"title": self.title, "description": self.description, "url": self.url}

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "SearchResult":
        return cls(
            title=str(raw.get("title") or ""),
            description=str(raw.get("description") or ""),
            url=str(raw.get("url") or ""),
        )


def results_to_dicts(results: list[SearchResult]) -> list[dict[str, str]]:
    """Convert SearchResult list to JSON-serializable dicts."""
    return [r.to_dict() for r in results]


def results_from_dicts(raw: Any) -> list[SearchResult]:
    if not isinstance(raw, list):
        return []
    return [SearchResult.from_dict(item) for item in raw if isinstance(item, dict)]


@dataclass(slots=True)
class Task:
    id: str
    user_id: str
    text: str
    completed: bool = False
    section: Section = Section.PERSONAL
    priority: Priority = Priority.LOW
    ai_executable: bool = False
    due_date: str | None = None
    created_at: datetime | None = None
    # Session-only; never written to the store.
    analysis: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "text": self.text,
            "completed": self.completed,
            "section": self.section.value,
            "priority": self.priority.value,
            "aiExecutable": self.ai_executable,
            "dueDate": self.due_date,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "analysis": self.analysis,
        }


@dataclass(slots=True)
class Execution:
    execution_id: str
    task_id: str
    user_id: str
    timestamp: datetime
    response: str
    search_results: list[SearchResult] = field(default_factory=list)
    task_text: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "executionId": self.execution_id,
            "taskId": self.task_id,
            "userId": self.user_id,
            "timestamp": self.timestamp.isoformat(),
            "response": self.response,
            "searchResults": results_to_dicts(self.search_results),
            "taskText": self.task_text,
        }


@dataclass(slots=True)
class ConversationTurn:
    task_id: str
    user_id: str
    role: Role
    content: str
    timestamp: datetime
    id: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "taskId": self.task_id,
            "userId": self.user_id,
            "role": self.role.value,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
        }

    def as_message(self) -> dict[str, str]:
        """Chat-completion message shape."""
        return {"role": self.role.value, "content": self.content}
