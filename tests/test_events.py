import json

import pytest

from taskpilot.errors import MalformedEventError
from taskpilot.models.events import (
    CompletionEvent,
    ContentChunkEvent,
    ErrorEvent,
    SearchResultsEvent,
    is_terminal,
    parse_event,
)
from taskpilot.models.task import SearchResult


def test_completion_payload_uses_camel_case_and_omits_unset_extras():
    payload = CompletionEvent(
        task_id="t1",
        original_task="Summarize",
        response="Done",
        search_results=[SearchResult(title="A")],
    ).payload()

    assert payload == {
        "type": "completion",
        "taskId": "t1",
        "originalTask": "Summarize",
        "response": "Done",
        "searchResults": [{"title": "A", "description": "", "url": ""}],
    }


def test_completion_payload_includes_persistence_outcome():
    payload = CompletionEvent(
        task_id="t1",
        original_task="x",
        response="y",
        execution_id="e1",
        persisted=True,
    ).payload()

    assert payload["executionId"] == "e1"
    assert payload["persisted"] is True
    assert "warning" not in payload


def test_parse_event_builds_each_variant():
    assert parse_event('{"type": "search_results", "searchResults": [{"url": "u"}]}') == SearchResultsEvent(
        search_results=[SearchResult(url="u")]
    )
    assert parse_event({"type": "content_chunk", "content": "x"}) == ContentChunkEvent(content="x")
    assert parse_event({"type": "error", "error": "Failed"}) == ErrorEvent(error="Failed", details="")

    completion = parse_event(
        json.dumps({"type": "completion", "taskId": 42, "response": "r", "persisted": False, "warning": "w"})
    )
    assert completion.task_id == "42"
    assert completion.persisted is False
    assert completion.warning == "w"


@pytest.mark.parametrize(
    "data",
    [
        "not json",
        "[1, 2]",
        {"type": "mystery"},
        {"type": "content_chunk"},
        {"type": "completion", "response": None},
    ],
)
def test_parse_event_rejects_malformed_payloads(data):
    with pytest.raises(MalformedEventError):
        parse_event(data)


def test_terminal_events():
    assert is_terminal(ErrorEvent(error="x"))
    assert is_terminal(CompletionEvent(task_id=None, original_task="", response=""))
    assert not is_terminal(ContentChunkEvent(content=""))
    assert not is_terminal(SearchResultsEvent())
