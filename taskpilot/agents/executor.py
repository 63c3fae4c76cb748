"""Task execution state machine.

A run moves INIT -> CLASSIFYING -> [SEARCHING] -> GENERATING -> COMPLETED, or
to ERRORED from any non-terminal state. Every event of a run is yielded from
one async generator, so `search_results` always precedes the first
`content_chunk` and exactly one terminal event (`completion` or `error`) is
yielded last.
"""
from __future__ import annotations

import json
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Sequence

from taskpilot.agents.search_classifier import SearchClassifier
from taskpilot.config import settings
from taskpilot.errors import TaskPilotError
from taskpilot.llm_client import client as llm_client, get_model
from taskpilot.models.events import (
    CompletionEvent,
    ContentChunkEvent,
    ErrorEvent,
    ExecutionEvent,
    SearchResultsEvent,
)
from taskpilot.models.task import ConversationTurn, SearchResult, results_to_dicts
from taskpilot.services import logger as log_service
from taskpilot.services.prompt_store import render_prompt
from taskpilot.tools import brave_search

EXECUTION_FAILED = "Failed to execute task with AI"

SearchFn = Callable[..., Awaitable[list[SearchResult]]]


class ExecutionState(str, Enum):
    INIT = "init"
    CLASSIFYING = "classifying"
    SEARCHING = "searching"
    GENERATING = "generating"
    COMPLETED = "completed"
    ERRORED = "errored"


TERMINAL_STATES = (ExecutionState.COMPLETED, ExecutionState.ERRORED)


def _as_message(turn: ConversationTurn | dict[str, Any]) -> dict[str, str]:
    if isinstance(turn, ConversationTurn):
        return turn.as_message()
    return {"role": str(turn["role"]), "content": str(turn["content"])}


def build_messages(
    text: str,
    *,
    conversation: Sequence[ConversationTurn | dict[str, Any]] | None = None,
    search_results: Sequence[SearchResult] = (),
    notes: str | None = None,
) -> list[dict[str, str]]:
    """Build the chat messages for a generation call.

    With prior conversation the history is passed through verbatim and `text`
    is appended as-is. Without it, the executor framing, any search results
    and the "Execute this task:" wrapper are added.
    """
    if conversation:
        messages = [_as_message(turn) for turn in conversation]
        last = messages[-1]
        # Clients may already include the new message as the last turn.
        if not (last["role"] == "user" and last["content"] == text):
            messages.append({"role": "user", "content": text})
        return messages

    system = render_prompt("executor.system_prompt")
    if notes and notes.strip():
        system = f"{system}\n\n{render_prompt('executor.task_notes', notes=notes.strip())}"
    messages = [{"role": "system", "content": system}]
    if search_results:
        messages.append(
            {
                "role": "assistant",
                "content": render_prompt(
                    "executor.search_context",
                    results=json.dumps(results_to_dicts(list(search_results)), indent=2),
                ),
            }
        )
    messages.append({"role": "user", "content": render_prompt("executor.user_prompt", text=text)})
    return messages


class TaskExecutor:
    """Runs one task execution and yields its event stream.

    Create one instance per request; `state` and `transitions` describe the
    most recent run.
    """

    name = "executor"

    def __init__(
        self,
        model: str | None = None,
        *,
        client=None,
        classifier: SearchClassifier | None = None,
        search: SearchFn | None = None,
    ):
        self.model = model or get_model()
        self.client = client
        self.classifier = classifier or SearchClassifier(client=client)
        self.search = search or brave_search.search
        self.state = ExecutionState.INIT
        self.transitions: list[ExecutionState] = [ExecutionState.INIT]
        self._task_id: str | None = None

    def _transition(self, state: ExecutionState, **data: Any) -> None:
        if self.state in TERMINAL_STATES:
            raise RuntimeError(f"Execution already finished in state {self.state.value}")
        self.state = state
        self.transitions.append(state)
        log_service.log_execution_step(self._task_id, state.value, data or None)

    def execute_initial(
        self,
        text: str,
        *,
        task_id: str | None = None,
        notes: str | None = None,
    ) -> AsyncIterator[ExecutionEvent]:
        """First execution of a task: may search, uses the executor framing."""
        return self._run(text, task_id=task_id, conversation=None, notes=notes)

    def execute_follow_up(
        self,
        text: str,
        conversation: Sequence[ConversationTurn | dict[str, Any]],
        *,
        task_id: str | None = None,
    ) -> AsyncIterator[ExecutionEvent]:
        """Streamed continuation of an existing conversation. Never searches."""
        return self._run(text, task_id=task_id, conversation=list(conversation), notes=None)

    async def _run(
        self,
        text: str,
        *,
        task_id: str | None,
        conversation: list[ConversationTurn | dict[str, Any]] | None,
        notes: str | None,
    ) -> AsyncIterator[ExecutionEvent]:
        self._task_id = task_id
        search_results: list[SearchResult] = []
        searched = False

        try:
            self._transition(ExecutionState.CLASSIFYING, follow_up=bool(conversation))
            # Continuations keep the original search context, so the
            # classifier is only consulted for first-turn executions.
            if not conversation and await self.classifier.needs_search(text):
                self._transition(ExecutionState.SEARCHING)
                search_results = await self.search(text, max_results=settings.search_result_count)
                searched = True

            self._transition(ExecutionState.GENERATING, search_results=len(search_results))
            if searched:
                yield SearchResultsEvent(search_results=search_results)

            messages = build_messages(
                text,
                conversation=conversation,
                search_results=search_results,
                notes=notes,
            )
            active_client = self.client or llm_client()
            parts: list[str] = []
            async with active_client.messages.stream(
                model=self.model,
                messages=messages,
                caller=self.name,
            ) as stream:
                async for chunk in stream.text_stream:
                    parts.append(chunk)
                    yield ContentChunkEvent(content=chunk)

            response = "".join(parts)
            self._transition(ExecutionState.COMPLETED, response_chars=len(response))
            yield CompletionEvent(
                task_id=task_id,
                original_task=text,
                response=response,
                search_results=search_results,
            )
        except TaskPilotError as e:
            self._transition(ExecutionState.ERRORED, error=str(e))
            yield ErrorEvent(error=EXECUTION_FAILED, details=str(e))
        except Exception as e:
            # Anything unexpected still ends the stream with a normalized error.
            log_service.logger.exception(f"Unexpected failure executing task {task_id}")
            self._transition(ExecutionState.ERRORED, error=type(e).__name__)
            yield ErrorEvent(error=EXECUTION_FAILED, details=str(e) or type(e).__name__)
