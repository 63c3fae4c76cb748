from __future__ import annotations

from dataclasses import dataclass

from fastapi import Header, Request

from taskpilot.agents.executor import TaskExecutor
from taskpilot.agents.followup import FollowUpHandler
from taskpilot.agents.task_analyzer import TaskAnalyzer
from taskpilot.config import settings
from taskpilot.services.store import TaskStore
from taskpilot.tools import brave_search


@dataclass(frozen=True, slots=True)
class CurrentUser:
    """Identity supplied by the auth layer; treated as an opaque key."""

    id: str
    email: str


def get_current_user(
    x_user_id: str | None = Header(default=None),
    x_user_email: str | None = Header(default=None),
) -> CurrentUser:
    return CurrentUser(
        id=x_user_id or settings.default_user_id,
        email=x_user_email or settings.default_user_email,
    )


def get_store(request: Request) -> TaskStore:
    return request.app.state.store


def get_executor() -> TaskExecutor:
    return TaskExecutor()


def get_analyzer() -> TaskAnalyzer:
    return TaskAnalyzer()


def get_followup_handler() -> FollowUpHandler:
    return FollowUpHandler()


def get_search():
    return brave_search.search
