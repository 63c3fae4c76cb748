from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _coerce_id(value: Any) -> Any:
    # Clients built on millisecond timestamps send numeric ids.
    if isinstance(value, int):
        return str(value)
    return value


# --- Requests ---


class ChatMessage(CamelModel):
    role: Literal["user", "assistant"]
    content: str


class AnalyzeTaskRequest(CamelModel):
    text: str = Field(min_length=1)


class ExecuteTaskRequest(CamelModel):
    text: str = Field(min_length=1)
    context: list[ChatMessage] | str | None = None
    task_id: str | None = None
    is_follow_up: bool = False

    @field_validator("task_id", mode="before")
    @classmethod
    def coerce_task_id(cls, value: Any) -> Any:
        return _coerce_id(value)


class FollowUpRequest(CamelModel):
    text: str = Field(min_length=1)
    original_text: str = ""
    previous_response: str = ""
    task_id: str | None = None

    @field_validator("task_id", mode="before")
    @classmethod
    def coerce_task_id(cls, value: Any) -> Any:
        return _coerce_id(value)


class WebSearchRequest(CamelModel):
    query: str = Field(min_length=1)


class CreateTaskRequest(CamelModel):
    text: str = Field(min_length=1)
    section: Literal["Work", "Personal"] = "Personal"
    priority: Literal["High", "Medium", "Low"] = "Low"
    ai_executable: bool = False
    due_date: str | None = None
    analysis: str = ""


class UpdateTaskRequest(CamelModel):
    text: str | None = None
    completed: bool | None = None
    section: Literal["Work", "Personal"] | None = None
    priority: Literal["High", "Medium", "Low"] | None = None
    ai_executable: bool | None = None
    due_date: str | None = None


class UpdateExecutionRequest(CamelModel):
    response: str


# --- Responses ---


class TaskAnalysisResponse(CamelModel):
    task_name: str
    section: Literal["Work", "Personal"]
    priority: Literal["High", "Medium", "Low"]
    ai_executable: bool
    due_date: str | None
    analysis: str


class SearchResultResponse(CamelModel):
    title: str
    description: str
    url: str


class WebSearchResponse(CamelModel):
    results: list[SearchResultResponse]


class FollowUpResponse(CamelModel):
    response: str
    execution_id: str | None = None
    warning: str | None = None


class TaskResponse(CamelModel):
    id: str
    user_id: str
    text: str
    completed: bool
    section: str
    priority: str
    ai_executable: bool
    due_date: str | None
    created_at: str | None = None
    analysis: str = ""


class ExecutionResponse(CamelModel):
    execution_id: str
    task_id: str
    user_id: str
    timestamp: str
    response: str
    search_results: list[SearchResultResponse]
    task_text: str = ""


class ConversationTurnResponse(CamelModel):
    id: str
    task_id: str
    user_id: str
    role: str
    content: str
    timestamp: str
