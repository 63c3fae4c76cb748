"""Client-side decoding of the execution stream and per-task draft state.

`SSEDecoder` turns raw transport chunks into typed events. `DraftStore` keeps
one normalized record per task (saved drafts, chat messages and at most one
in-flight generation) and derives the visible draft and transcript on read.
"""
from __future__ import annotations

import codecs
from dataclasses import dataclass, field
from typing import Any, assert_never

from taskpilot.models.events import (
    CompletionEvent,
    ContentChunkEvent,
    ErrorEvent,
    ExecutionEvent,
    SearchResultsEvent,
    parse_event,
)
from taskpilot.models.task import SearchResult, results_from_dicts

ERROR_BUBBLE = "Sorry, I encountered an error processing your request."
UNSAVED_AFTER_ERROR = "Generation failed before completion; this partial answer was not saved."


def _normalize(text: str) -> str:
    return text.replace("\r\n", "\n").replace("\r", "\n")


class SSEDecoder:
    """Incremental `text/event-stream` decoder.

    Events may be split across transport chunks (even inside a multi-byte
    character); incomplete data stays buffered until its blank line arrives.
    Comment lines such as keep-alive pings are ignored.
    """

    def __init__(self) -> None:
        self._text = codecs.getincrementaldecoder("utf-8")()
        self._buffer = ""

    def feed(self, chunk: bytes | str) -> list[ExecutionEvent]:
        if isinstance(chunk, bytes):
            chunk = self._text.decode(chunk)
        text = self._buffer + chunk
        # A trailing \r may be the first half of a \r\n split across chunks.
        held = "\r" if text.endswith("\r") else ""
        if held:
            text = text[:-1]
        *blocks, rest = _normalize(text).split("\n\n")
        self._buffer = rest + held
        return [event for event in map(self._parse_block, blocks) if event is not None]

    def flush(self) -> list[ExecutionEvent]:
        remaining = _normalize(self._buffer + self._text.decode(b"", final=True))
        self._buffer = ""
        event = self._parse_block(remaining)
        return [event] if event is not None else []

    @staticmethod
    def _parse_block(block: str) -> ExecutionEvent | None:
        data_lines = []
        for line in block.split("\n"):
            if line.startswith("data:"):
                value = line[5:]
                data_lines.append(value[1:] if value.startswith(" ") else value)
        if not data_lines:
            return None
        return parse_event("\n".join(data_lines))


@dataclass
class Draft:
    response: str
    search_results: list[SearchResult] = field(default_factory=list)
    execution_id: str | None = None
    saved: bool = True
    streaming: bool = False
    warning: str | None = None


@dataclass
class ChatEntry:
    role: str
    content: str
    saved: bool = True


@dataclass
class InFlight:
    user_text: str
    response: str = ""
    search_results: list[SearchResult] = field(default_factory=list)


@dataclass
class TaskState:
    task_id: str
    drafts: list[Draft] = field(default_factory=list)  # newest first
    messages: list[ChatEntry] = field(default_factory=list)
    in_flight: InFlight | None = None
    error: str | None = None
    warning: str | None = None


class DraftStore:
    """Single source of truth for drafts and transcripts, keyed by task id."""

    def __init__(self) -> None:
        self._tasks: dict[str, TaskState] = {}

    def state(self, task_id: str) -> TaskState:
        task_id = str(task_id)
        if task_id not in self._tasks:
            self._tasks[task_id] = TaskState(task_id=task_id)
        return self._tasks[task_id]

    def remove(self, task_id: str) -> None:
        self._tasks.pop(str(task_id), None)

    # --- Reconstruction ---

    def load(
        self,
        task_id: str,
        executions: list[dict[str, Any]],
        conversation: list[dict[str, Any]],
    ) -> TaskState:
        """Rebuild a task's state from the history endpoints.

        `executions` are newest first and `conversation` oldest first, as the
        server returns them. An in-flight generation is kept.
        """
        state = self.state(task_id)
        state.drafts = [
            Draft(
                response=str(e.get("response") or ""),
                search_results=results_from_dicts(e.get("searchResults")),
                execution_id=e.get("executionId"),
            )
            for e in executions
        ]
        state.messages = [
            ChatEntry(role=str(t.get("role")), content=str(t.get("content") or ""))
            for t in conversation
        ]
        state.error = None
        state.warning = None
        return state

    # --- Streaming ---

    def begin(self, task_id: str, user_text: str) -> InFlight:
        state = self.state(task_id)
        state.in_flight = InFlight(user_text=user_text)
        state.error = None
        state.warning = None
        return state.in_flight

    def apply(self, task_id: str, event: ExecutionEvent) -> TaskState:
        state = self.state(task_id)
        if state.in_flight is None:
            raise RuntimeError(f"No execution in flight for task {task_id}")
        in_flight = state.in_flight

        if isinstance(event, SearchResultsEvent):
            in_flight.search_results = list(event.search_results)
        elif isinstance(event, ContentChunkEvent):
            in_flight.response += event.content
        elif isinstance(event, CompletionEvent):
            self._complete(state, event)
        elif isinstance(event, ErrorEvent):
            self.abort(task_id, event.details or event.error)
        else:
            assert_never(event)
        return state

    def _complete(self, state: TaskState, event: CompletionEvent) -> None:
        in_flight = state.in_flight
        assert in_flight is not None
        # The completion record wins over the streamed text.
        response = event.response
        saved = event.persisted is True
        state.drafts.insert(
            0,
            Draft(
                response=response,
                search_results=list(event.search_results or in_flight.search_results),
                execution_id=event.execution_id,
                saved=saved,
                warning=event.warning,
            ),
        )
        state.messages.append(ChatEntry(role="user", content=in_flight.user_text, saved=saved))
        state.messages.append(ChatEntry(role="assistant", content=response, saved=saved))
        state.warning = event.warning
        state.in_flight = None

    def abort(self, task_id: str, reason: str) -> TaskState:
        """End the in-flight generation without a completion.

        Whatever was streamed stays visible, marked unsaved, followed by the
        error bubble.
        """
        state = self.state(task_id)
        in_flight = state.in_flight
        if in_flight is None:
            return state
        state.messages.append(ChatEntry(role="user", content=in_flight.user_text, saved=False))
        if in_flight.response:
            state.drafts.insert(
                0,
                Draft(
                    response=in_flight.response,
                    search_results=list(in_flight.search_results),
                    saved=False,
                    warning=UNSAVED_AFTER_ERROR,
                ),
            )
            state.messages.append(ChatEntry(role="assistant", content=in_flight.response, saved=False))
        state.messages.append(ChatEntry(role="assistant", content=ERROR_BUBBLE, saved=False))
        state.error = reason
        state.in_flight = None
        return state

    # --- Derived views ---

    def current_draft(self, task_id: str) -> Draft | None:
        state = self.state(task_id)
        if state.in_flight is not None:
            return Draft(
                response=state.in_flight.response,
                search_results=list(state.in_flight.search_results),
                saved=False,
                streaming=True,
            )
        return state.drafts[0] if state.drafts else None

    def transcript(self, task_id: str) -> list[ChatEntry]:
        state = self.state(task_id)
        entries = list(state.messages)
        if state.in_flight is not None:
            entries.append(ChatEntry(role="user", content=state.in_flight.user_text, saved=False))
            if state.in_flight.response:
                entries.append(
                    ChatEntry(role="assistant", content=state.in_flight.response, saved=False)
                )
        return entries

    def history(self, task_id: str) -> list[Draft]:
        return list(self.state(task_id).drafts)

    def needs_execution(self, task_id: str) -> bool:
        """True when a task has never produced a draft and nothing is running."""
        state = self.state(task_id)
        return not state.drafts and state.in_flight is None

    def conversation_context(self, task_id: str) -> list[dict[str, str]]:
        """Saved chat turns in the shape the execute endpoint accepts."""
        return [
            {"role": m.role, "content": m.content}
            for m in self.state(task_id).messages
            if m.content != ERROR_BUBBLE
        ]
