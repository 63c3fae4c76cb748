import pytest

from taskpilot.agents.followup import FollowUpHandler, FollowUpResult, build_follow_up_messages
from taskpilot.errors import LLMError


def test_follow_up_prompt_references_previous_response():
    messages = build_follow_up_messages(
        "Make it friendlier",
        original_text="Draft an email to the landlord",
        previous_response="Dear landlord, the sink is broken.",
    )

    assert messages[0]["role"] == "system"
    user_prompt = messages[1]["content"]
    assert "Draft an email to the landlord" in user_prompt
    assert "Dear landlord, the sink is broken." in user_prompt
    assert user_prompt.endswith("New instruction: Make it friendlier")


def test_follow_up_prompt_fills_missing_context():
    user_prompt = build_follow_up_messages("Continue", "", "")[1]["content"]

    assert "(not provided)" in user_prompt
    assert "(none)" in user_prompt


@pytest.mark.asyncio
async def test_respond_returns_single_response_without_searching(make_llm):
    llm = make_llm(replies=["Hi! The sink is broken, could you take a look?"])
    handler = FollowUpHandler(model="m", client=llm)

    result = await handler.respond(
        "Make it friendlier",
        original_text="Draft an email",
        previous_response="Dear landlord...",
        task_id="t1",
    )

    assert result.ok
    assert result.to_dict() == {"response": "Hi! The sink is broken, could you take a look?"}
    assert len(llm.messages.create_calls) == 1
    assert llm.messages.create_calls[0]["caller"] == "followup"
    assert llm.messages.stream_calls == []


@pytest.mark.asyncio
async def test_respond_returns_error_object_on_failure(make_llm):
    handler = FollowUpHandler(model="m", client=make_llm(create_error=LLMError("rate limited")))

    result = await handler.respond("Shorter please")

    assert not result.ok
    assert result.to_dict() == {"error": "rate limited"}


def test_result_to_dict_defaults_to_empty_response():
    assert FollowUpResult().to_dict() == {"response": ""}
