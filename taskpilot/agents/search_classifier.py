from __future__ import annotations

from taskpilot.llm_client import client as llm_client, get_classifier_model
from taskpilot.services.prompt_store import render_prompt


def parse_decision(raw: str | None) -> bool:
    """Only an unambiguous "yes" enables search."""
    return (raw or "").strip().lower() == "yes"


class SearchClassifier:
    """Decides whether a task needs current information from the web."""

    name = "search_classifier"

    def __init__(self, model: str | None = None, client=None):
        self.model = model or get_classifier_model()
        self.client = client

    async def needs_search(self, text: str) -> bool:
        active_client = self.client or llm_client()
        answer = await active_client.messages.create(
            model=self.model,
            messages=[
                {"role": "system", "content": render_prompt("search_classifier.system_prompt")},
                {"role": "user", "content": text},
            ],
            max_tokens=5,
            caller=self.name,
        )
        return parse_decision(answer)
