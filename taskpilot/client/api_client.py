from __future__ import annotations

from typing import Any, AsyncIterator

import httpx
from loguru import logger

from taskpilot.client.stream_consumer import DraftStore, SSEDecoder
from taskpilot.errors import MalformedEventError, TaskAnalysisError, TaskPilotError
from taskpilot.models.events import CompletionEvent, ErrorEvent, ExecutionEvent, is_terminal

STREAM_CLOSED = "Connection closed before the execution finished"


class TaskPilotClient:
    """Async client for the TaskPilot HTTP API.

    Every execution event is applied to `self.drafts` before it is yielded,
    so the draft store always reflects what the caller has seen.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        *,
        user_id: str | None = None,
        user_email: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        drafts: DraftStore | None = None,
        timeout: float = 60.0,
    ):
        headers = {}
        if user_id:
            headers["X-User-Id"] = user_id
        if user_email:
            headers["X-User-Email"] = user_email
        self._http = http_client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._headers = headers
        self.drafts = drafts or DraftStore()

    async def __aenter__(self) -> "TaskPilotClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        await self._http.aclose()

    async def analyze_task(self, text: str) -> dict[str, Any]:
        response = await self._http.post("/api/analyze-task", json={"text": text}, headers=self._headers)
        if response.status_code != 200:
            raise TaskAnalysisError(_error_details(response))
        return response.json()

    async def execute_task(
        self,
        task_id: str,
        text: str,
        *,
        context: list[dict[str, str]] | None = None,
        follow_up: bool = False,
    ) -> AsyncIterator[ExecutionEvent]:
        """Stream one execution, yielding exactly one terminal event last."""
        body: dict[str, Any] = {"text": text, "taskId": task_id}
        if context:
            body["context"] = context
        if follow_up:
            body["isFollowUp"] = True

        self.drafts.begin(task_id, text)
        decoder = SSEDecoder()
        try:
            async with self._http.stream(
                "POST", "/api/execute-task", json=body, headers=self._headers
            ) as response:
                if response.status_code != 200:
                    await response.aread()
                    data = _json_or_empty(response)
                    event = ErrorEvent(
                        error=str(data.get("error") or f"HTTP {response.status_code}"),
                        details=str(data.get("details") or ""),
                    )
                    self.drafts.apply(task_id, event)
                    yield event
                    return

                async for chunk in response.aiter_bytes():
                    for event in decoder.feed(chunk):
                        self.drafts.apply(task_id, event)
                        yield event
                        if is_terminal(event):
                            return
                for event in decoder.flush():
                    self.drafts.apply(task_id, event)
                    yield event
                    if is_terminal(event):
                        return
        except MalformedEventError as e:
            logger.warning(f"Malformed execution event for task {task_id}: {e}")
            event = ErrorEvent(error="Malformed event", details=str(e))
        except httpx.HTTPError as e:
            logger.warning(f"Execution stream for task {task_id} failed: {e}")
            event = ErrorEvent(error=STREAM_CLOSED, details=str(e))
        else:
            event = ErrorEvent(error=STREAM_CLOSED)
        self.drafts.apply(task_id, event)
        yield event

    async def follow_up(
        self,
        task_id: str,
        text: str,
        *,
        original_text: str,
        previous_response: str,
    ) -> dict[str, Any]:
        """Non-streaming follow-up; the reply lands in the task transcript."""
        self.drafts.begin(task_id, text)
        try:
            response = await self._http.post(
                "/api/followup",
                json={
                    "text": text,
                    "originalText": original_text,
                    "previousResponse": previous_response,
                    "taskId": task_id,
                },
                headers=self._headers,
            )
        except httpx.HTTPError as e:
            self.drafts.abort(task_id, str(e))
            raise TaskPilotError(f"Follow-up request failed: {e}") from e

        data = _json_or_empty(response)
        if response.status_code != 200:
            self.drafts.abort(task_id, str(data.get("error") or response.status_code))
            return data

        self.drafts.apply(
            task_id,
            _follow_up_completion(task_id, original_text, data),
        )
        return data

    async def load_task(self, task_id: str):
        """Fetch history and conversation and rebuild the task's draft state."""
        executions = await self._get_json(f"/api/tasks/{task_id}/executions")
        conversation = await self._get_json(f"/api/tasks/{task_id}/conversation")
        return self.drafts.load(task_id, executions, conversation)

    async def _get_json(self, path: str) -> Any:
        response = await self._http.get(path, headers=self._headers)
        if response.status_code != 200:
            raise TaskPilotError(f"GET {path} failed: {_error_details(response)}")
        return response.json()


def _follow_up_completion(task_id: str, original_text: str, data: dict[str, Any]) -> CompletionEvent:
    return CompletionEvent(
        task_id=task_id,
        original_task=original_text,
        response=str(data.get("response") or ""),
        execution_id=data.get("executionId"),
        persisted=data.get("executionId") is not None,
        warning=data.get("warning"),
    )


def _json_or_empty(response: httpx.Response) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _error_details(response: httpx.Response) -> str:
    data = _json_or_empty(response)
    return str(data.get("details") or data.get("error") or f"HTTP {response.status_code}")
