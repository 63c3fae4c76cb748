"""Structured task analysis: category, priority, automatability and due date."""
from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable

from loguru import logger

from taskpilot.errors import LLMError, TaskAnalysisError
from taskpilot.llm_client import client as llm_client, get_classifier_model
from taskpilot.models.task import Priority, Section
from taskpilot.services.prompt_store import render_prompt

ANALYZE_TASK_FUNCTION: dict[str, Any] = {
    "name": "analyze_task",
    "description": "Analyze a task and return metadata about it",
    "parameters": {
        "type": "object",
        "properties": {
            "taskName": {
                "type": "string",
                "description": "A clean, concise version of the task",
            },
            "section": {"type": "string", "enum": [s.value for s in Section]},
            "priority": {"type": "string", "enum": [p.value for p in Priority]},
            "aiExecutable": {
                "type": "boolean",
                "description": "Whether this task can be automated or assisted by AI",
            },
            "dueDate": {
                "type": "string",
                "description": "Suggested due date for the task",
            },
            "analysis": {
                "type": "string",
                "description": "Brief analysis of why these choices were made",
            },
        },
        "required": ["taskName", "section", "priority", "aiExecutable", "dueDate", "analysis"],
    },
}

REQUIRED_FIELDS = tuple(ANALYZE_TASK_FUNCTION["parameters"]["required"])

_RELATIVE_DAYS = re.compile(r"^\+\s*(\d+)")


@dataclass(slots=True)
class TaskAnalysis:
    task_name: str
    section: Section
    priority: Priority
    ai_executable: bool
    due_date: str | None
    analysis: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "taskName": self.task_name,
            "section": self.section.value,
            "priority": self.priority.value,
            "aiExecutable": self.ai_executable,
            "dueDate": self.due_date,
            "analysis": self.analysis,
        }


def _isoformat(moment: datetime) -> str:
    return moment.isoformat().replace("+00:00", "Z")


def resolve_due_date(token: str | None, now: datetime) -> str | None:
    """Turn the analyzer's due-date token into an ISO-8601 timestamp.

    "today" is `now`, "tomorrow" is now + 1 day, "+N days" is now + N days and
    an explicit ISO date is normalized. Anything else is returned unchanged.
    """
    if token is None:
        return None
    cleaned = token.strip()
    if not cleaned:
        return None

    lowered = cleaned.lower()
    if lowered == "today":
        return _isoformat(now)
    if lowered == "tomorrow":
        return _isoformat(now + timedelta(days=1))

    match = _RELATIVE_DAYS.match(cleaned)
    if match:
        try:
            return _isoformat(now + timedelta(days=int(match.group(1))))
        except (OverflowError, ValueError):
            logger.warning(f"Due date offset out of range, passed through: {cleaned!r}")
            return cleaned

    try:
        explicit = datetime.fromisoformat(cleaned.replace("Z", "+00:00"))
    except ValueError:
        logger.warning(f"Unrecognized due date token passed through: {cleaned!r}")
        return cleaned
    if explicit.tzinfo is None:
        explicit = explicit.replace(tzinfo=timezone.utc)
    return _isoformat(explicit)


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    raise TaskAnalysisError(f"aiExecutable must be a boolean, got {value!r}")


def parse_analysis(raw: dict[str, Any], now: datetime) -> TaskAnalysis:
    missing = [name for name in REQUIRED_FIELDS if name not in raw]
    if missing:
        raise TaskAnalysisError(f"Analyzer output missing fields: {', '.join(missing)}")

    task_name = str(raw["taskName"]).strip()
    if not task_name:
        raise TaskAnalysisError("Analyzer returned an empty taskName")
    try:
        section = Section(raw["section"])
        priority = Priority(raw["priority"])
    except ValueError as e:
        raise TaskAnalysisError(f"Analyzer returned an invalid enum value: {e}") from e

    due = raw["dueDate"]
    return TaskAnalysis(
        task_name=task_name,
        section=section,
        priority=priority,
        ai_executable=_coerce_bool(raw["aiExecutable"]),
        due_date=resolve_due_date(str(due) if due is not None else None, now),
        analysis=str(raw["analysis"]),
    )


class TaskAnalyzer:
    name = "task_analyzer"

    def __init__(
        self,
        model: str | None = None,
        client=None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.model = model or get_classifier_model()
        self.client = client
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    @staticmethod
    def _today_label(today: date) -> str:
        return today.strftime("%A, %B %d, %Y")

    async def analyze(self, text: str) -> TaskAnalysis:
        now = self.clock()
        active_client = self.client or llm_client()
        try:
            raw = await active_client.messages.call_function(
                model=self.model,
                messages=[
                    {
                        "role": "system",
                        "content": render_prompt(
                            "task_analyzer.system_prompt", today=self._today_label(now.date())
                        ),
                    },
                    {"role": "user", "content": text},
                ],
                function=ANALYZE_TASK_FUNCTION,
                caller=self.name,
            )
        except LLMError as e:
            raise TaskAnalysisError(str(e)) from e
        return parse_analysis(raw, now)
