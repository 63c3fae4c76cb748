from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

from taskpilot.errors import MalformedEventError
from taskpilot.models.task import SearchResult, results_from_dicts, results_to_dicts


class EventType(str, Enum):
    SEARCH_RESULTS = "search_results"
    CONTENT_CHUNK = "content_chunk"
    COMPLETION = "completion"
    ERROR = "error"


@dataclass
class SearchResultsEvent:
    search_results: list[SearchResult] = field(default_factory=list)
    type = EventType.SEARCH_RESULTS

    def payload(self) -> dict[str, Any]:
        return {"type": self.type.value, "searchResults": results_to_dicts(self.search_results)}


@dataclass
class ContentChunkEvent:
    content: str
    type = EventType.CONTENT_CHUNK

    def payload(self) -> dict[str, Any]:
        return {"type": self.type.value, "content": self.content}


@dataclass
class CompletionEvent:
    task_id: str | None
    original_task: str
    response: str
    search_results: list[SearchResult] = field(default_factory=list)
    execution_id: str | None = None
    persisted: bool | None = None
    warning: str | None = None
    type = EventType.COMPLETION

    def payload(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "type": self.type.value,
            "taskId": self.task_id,
            "originalTask": self.original_task,
            "response": self.response,
            "searchResults": results_to_dicts(self.search_results),
        }
        if self.execution_id is not None:
            data["executionId"] = self.execution_id
        if self.persisted is not None:
            data["persisted"] = self.persisted
        if self.warning:
            data["warning"] = self.warning
        return data


@dataclass
class ErrorEvent:
    error: str
    details: str = ""
    type = EventType.ERROR

    def payload(self) -> dict[str, Any]:
        return {"type": self.type.value, "error": self.error, "details": self.details}


ExecutionEvent = Union[SearchResultsEvent, ContentChunkEvent, CompletionEvent, ErrorEvent]

TERMINAL_EVENTS = (CompletionEvent, ErrorEvent)


def is_terminal(event: ExecutionEvent) -> bool:
    return isinstance(event, TERMINAL_EVENTS)


def parse_event(data: Any) -> ExecutionEvent:
    """Build a typed event from a decoded JSON payload."""
    if isinstance(data, str):
        try:
            data = json.loads(data)
        except json.JSONDecodeError as exc:
            raise MalformedEventError(f"Event payload is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise MalformedEventError("Event payload must be a JSON object")

    kind = data.get("type")
    if kind == EventType.SEARCH_RESULTS.value:
        return SearchResultsEvent(search_results=results_from_dicts(data.get("searchResults")))
    if kind == EventType.CONTENT_CHUNK.value:
        content = data.get("content")
        if not isinstance(content, str):
            raise MalformedEventError("content_chunk event without string content")
        return ContentChunkEvent(content=content)
    if kind == EventType.COMPLETION.value:
        response = data.get("response")
        if not isinstance(response, str):
            raise MalformedEventError("completion event without string response")
        task_id = data.get("taskId")
        return CompletionEvent(
            task_id=str(task_id) if task_id is not None else None,
            original_task=str(data.get("originalTask") or ""),
            response=response,
            search_results=results_from_dicts(data.get("searchResults")),
            execution_id=data.get("executionId"),
            persisted=data.get("persisted"),
            warning=data.get("warning"),
        )
    if kind == EventType.ERROR.value:
        return ErrorEvent(error=str(data.get("error") or "Unknown error"), details=str(data.get("details") or ""))
    raise MalformedEventError(f"Unknown event type: {kind!r}")
