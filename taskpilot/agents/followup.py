from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from loguru import logger

from taskpilot.errors import TaskPilotError
from taskpilot.llm_client import client as llm_client, get_model
from taskpilot.services.prompt_store import render_prompt


@dataclass(slots=True)
class FollowUpResult:
    response: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        if self.error is not None:
            return {"error": self.error}
        return {"response": self.response or ""}


def build_follow_up_messages(
    text: str, original_text: str, previous_response: str
) -> list[dict[str, str]]:
    return [
        {"role": "system", "content": render_prompt("followup.system_prompt")},
        {
            "role": "user",
            "content": render_prompt(
                "followup.user_prompt",
                original_text=original_text or "(not provided)",
                previous_response=previous_response or "(none)",
                text=text,
            ),
        },
    ]


class FollowUpHandler:
    """Single-shot chat follow-up against a task's latest response.

    Never classifies or searches. Failures come back as a FollowUpResult with
    `error` set instead of raising, so a chat view can show them inline.
    """

    name = "followup"

    def __init__(self, model: str | None = None, client=None):
        self.model = model or get_model()
        self.client = client

    async def respond(
        self,
        text: str,
        *,
        original_text: str = "",
        previous_response: str = "",
        task_id: str | None = None,
    ) -> FollowUpResult:
        active_client = self.client or llm_client()
        try:
            response = await active_client.messages.create(
                model=self.model,
                messages=build_follow_up_messages(text, original_text, previous_response),
                caller=self.name,
            )
        except TaskPilotError as e:
            logger.error(f"Follow-up failed for task {task_id}: {e}")
            return FollowUpResult(error=str(e))
        return FollowUpResult(response=response)
