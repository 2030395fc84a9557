"""
Tests for CoachTurnService (one full coach turn).

Covers:
- Clarification question persisted as the assistant turn
- Workout decision returns parameters with slots pre-filled from the message
- Tool decision runs the tool against the loaded context
- Advice decision threads the reply through the provider conversation
- No provider: fallback decision and a canned reply, never an error
"""

import pytest

from models import CoachConversation, CoachMessage
from schemas import CollectedSlots
from services.coach_agent import (
    AgentDecisionPayload,
    ClarificationOption,
    ClarificationPayload,
    ToolCallPayload,
    WorkoutParams,
)
from services.coach_turn import ADVICE_UNAVAILABLE_REPLY, CoachTurnService
from services.member_context import SOURCE_LIVE
from services.snapshot_builder import SnapshotBuilder

pytestmark = pytest.mark.db


def _messages(db_session, conversation_id):
    return (
        db_session.query(CoachMessage)
        .filter(CoachMessage.conversation_id == conversation_id)
        .order_by(CoachMessage.created_at)
        .all()
    )


def _service(db_session, session_factory, provider, scheduled=None):
    return CoachTurnService(
        db_session,
        session_factory,
        provider=provider,
        schedule_rebuild=(scheduled.append if scheduled is not None else None),
    )


def test_clarification_is_saved_as_assistant_turn(db_session, session_factory, make_member, fake_provider_cls):
    member = make_member()
    provider = fake_provider_cls(
        structured=AgentDecisionPayload(
            action="ask_clarification",
            reasoning="duration unknown",
            confidence=0.9,
            clarification=ClarificationPayload(
                question="How much time do you have?",
                context="duration",
                options=[
                    ClarificationOption(label="20 min", value="20"),
                    ClarificationOption(label="45 min", value="45"),
                ],
                allow_custom=True,
                priority="critical",
            ),
        )
    )
    scheduled = []

    result = _service(db_session, session_factory, provider, scheduled).handle(member.id, "I want a workout")

    assert result.reply == "How much time do you have?"
    assert result.context_source == SOURCE_LIVE
    assert scheduled == [member.id]
    messages = _messages(db_session, result.conversation_id)
    assert [(m.role, m.content) for m in messages] == [
        ("user", "I want a workout"),
        ("assistant", "How much time do you have?"),
    ]


def test_workout_decision_keeps_extracted_slots(db_session, session_factory, make_member, fake_provider_cls):
    member = make_member()
    provider = fake_provider_cls(
        structured=AgentDecisionPayload(
            action="generate_workout",
            reasoning="enough info",
            confidence=0.85,
            workout_params=WorkoutParams(
                duration=20, intensity="light", focus="legs", location=None, avoid_muscles=[]
            ),
        )
    )

    result = _service(db_session, session_factory, provider).handle(
        member.id,
        "give me a 20 minute leg workout, I'm exhausted",
        collected_slots=CollectedSlots(location="home"),
    )

    assert result.decision.action == "generate_workout"
    assert result.decision.params.duration == 20
    assert result.collected_slots.duration == 20
    assert result.collected_slots.focus == "legs"
    assert result.collected_slots.energy == "low"
    assert result.collected_slots.location == "home"
    assert "COLLECTED FROM USER" in provider.structured_calls[0]["system"]
    response = result.to_response()
    assert response.decision["params"]["duration"] == 20


def test_tool_decision_runs_tool(db_session, session_factory, make_member, fake_provider_cls):
    member = make_member()
    SnapshotBuilder(session_factory).rebuild(member.id)
    provider = fake_provider_cls(
        structured=AgentDecisionPayload(
            action="use_tool",
            reasoning="check recovery first",
            confidence=0.7,
            tool_call=ToolCallPayload(tool="check_recovery", reason="recovery"),
        )
    )

    result = _service(db_session, session_factory, provider).handle(member.id, "Am I recovered?")

    assert result.tool_result["ok"] is True
    assert result.tool_result["tool"] == "check_recovery"
    assert result.tool_result["evidence"][0]["snapshot_version"] == 1
    assert result.context_source == "snapshot"


def test_advice_is_threaded_across_turns(db_session, session_factory, make_member, fake_provider_cls):
    member = make_member()
    provider = fake_provider_cls(
        structured=AgentDecisionPayload(action="provide_advice", reasoning="question", confidence=0.9),
        text="Aim for 0.8g of protein per pound.",
        conversation_id="conv_42",
    )
    service = _service(db_session, session_factory, provider)

    first = service.handle(member.id, "How much protein do I need?")
    second = service.handle(member.id, "And on rest days?", conversation_id=first.conversation_id)

    assert first.reply == "Aim for 0.8g of protein per pound."
    assert first.threaded is True
    assert provider.conversations_created == 1
    assert provider.text_calls[0]["conversation_id"] == "conv_42"
    assert provider.text_calls[1]["conversation_id"] == "conv_42"
    assert provider.text_calls[1]["previous_response_id"] == "resp_1"
    assert second.conversation_id == first.conversation_id

    assistant = [m for m in _messages(db_session, first.conversation_id) if m.role == "assistant"]
    assert [m.external_response_id for m in assistant] == ["resp_1", "resp_2"]


def test_history_from_earlier_turns_reaches_agent(db_session, session_factory, make_member, fake_provider_cls):
    member = make_member()
    provider = fake_provider_cls(
        structured=AgentDecisionPayload(action="provide_advice", reasoning="q", confidence=0.5)
    )
    service = _service(db_session, session_factory, provider)

    first = service.handle(member.id, "My shoulder feels tight")
    service.handle(member.id, "What should I do?", conversation_id=first.conversation_id)

    assert "user: My shoulder feels tight" in provider.structured_calls[1]["system"]


def test_without_provider_turn_still_completes(db_session, session_factory, make_member):
    member = make_member()

    result = _service(db_session, session_factory, None).handle(member.id, "hello")

    assert result.decision.action == "provide_advice"
    assert result.decision.confidence == 0
    assert result.reply == ADVICE_UNAVAILABLE_REPLY
    assert result.threaded is False


def test_new_conversation_mode_follows_request_kind(db_session, session_factory, make_member):
    member = make_member()
    service = _service(db_session, session_factory, None)

    workout = service.handle(member.id, "Can you make me a workout?")
    question = service.handle(member.id, "Is creatine safe?")

    assert db_session.get(CoachConversation, workout.conversation_id).mode == "workout"
    assert db_session.get(CoachConversation, question.conversation_id).mode == "general"
