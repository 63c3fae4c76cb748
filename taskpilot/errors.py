"""Domain errors raised across the execution pipeline.

Provider-specific exceptions (openai, httpx, asyncpg, supabase) are caught at
the adapter that talks to the provider and re-raised as one of these, so the
orchestrator and the routes only ever see this hierarchy.
"""
from __future__ import annotations


class TaskPilotError(Exception):
    """Base class for pipeline errors."""


class LLMError(TaskPilotError):
    """LLM call failed, timed out, or returned unusable output."""


class TaskAnalysisError(TaskPilotError):
    """The analyzer could not produce valid task metadata."""


class StoreError(TaskPilotError):
    """A store read or write failed."""


class NotFoundError(StoreError):
    """The requested row does not exist."""


class MalformedEventError(TaskPilotError):
    """An execution stream payload could not be decoded."""
