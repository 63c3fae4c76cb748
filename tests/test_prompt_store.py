import pytest

from taskpilot.services.prompt_store import clear_prompt_cache, get_template, render_prompt


def test_render_prompt_substitutes_values():
    clear_prompt_cache()
    rendered = render_prompt("executor.user_prompt", text="Book flights")

    assert rendered == "Execute this task: Book flights"


def test_every_template_placeholder_is_known():
    expected = {
        "search_classifier.system_prompt": {},
        "task_analyzer.system_prompt": {"today": "Monday, January 01, 2024"},
        "executor.system_prompt": {},
        "executor.task_notes": {"notes": "n"},
        "executor.search_context": {"results": "[]"},
        "executor.user_prompt": {"text": "t"},
        "followup.system_prompt": {},
        "followup.user_prompt": {"original_text": "o", "previous_response": "p", "text": "t"},
    }

    for key, values in expected.items():
        assert "$" not in render_prompt(key, **values), key


def test_render_prompt_missing_value_raises():
    with pytest.raises(KeyError, match="Missing template value 'text'"):
        render_prompt("executor.user_prompt")


def test_unknown_prompt_key_raises():
    with pytest.raises(KeyError, match="Prompt key not found"):
        get_template("executor.nope")
