"""
Coach turn orchestration.

One user message in, one decision (and usually a reply) out:

1. Resolve the local conversation (new ones are tagged workout or general),
   persist the user turn
2. Load member context (snapshot, stale snapshot, or live aggregation)
3. Pre-fill slots from the message, merge with slots from earlier turns
4. Agent decision
5. Act on the decision:
   - ask_clarification: the question becomes the assistant turn
   - generate_workout: parameters are returned to the caller
   - use_tool: the tool result is returned to the caller
   - provide_advice: free-text reply, threaded through the provider
     conversation so history is not resent
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from core.logging import log_fields
from models import Member
from schemas import CoachAgentResponse, CollectedSlots
from services.coach_agent import (
    HISTORY_TURNS,
    AdviceDecision,
    AgentContext,
    AgentDecision,
    ClarificationDecision,
    ToolDecision,
    WorkoutDecision,
    extract_implicit_context,
    is_workout_request,
    merge_slots,
    run_coach_agent,
)
from services.coach_tools import run_tool
from services.coaching_memory import load_active_memories, memories_to_prompt
from services.conversation_state import ConversationThreadManager, ThreadState
from services.member_context import LoadedContext, MemberContextLoader
from services.snapshot_builder import SnapshotBuilder
from services.snapshot_store import SnapshotStore, context_to_prompt

logger = logging.getLogger(__name__)

ADVICE_UNAVAILABLE_REPLY = (
    "I can't put together a full answer right now. "
    "Try again in a moment, or ask me for a workout and I'll build one."
)

COACH_SYSTEM_PROMPT = """You are a supportive, knowledgeable fitness coach.
Be conversational and warm, not clinical. Keep answers short and specific to this member.
Respect every limitation listed below.

MEMBER CONTEXT:
{member_context}
{memories}"""


@dataclass
class CoachTurnResult:
    conversation_id: UUID
    decision: AgentDecision
    collected_slots: CollectedSlots
    context_source: str
    reply: Optional[str] = None
    tool_result: Optional[Dict[str, Any]] = None
    threaded: bool = False

    def to_response(self) -> CoachAgentResponse:
        return CoachAgentResponse(
            conversation_id=self.conversation_id,
            decision=self.decision.model_dump(mode="json"),
            reply=self.reply,
            tool_result=self.tool_result,
            collected_slots=self.collected_slots,
            context_source=self.context_source,
            threaded=self.threaded,
        )


def _workout_summary(decision: WorkoutDecision) -> str:
    p = decision.params
    focus = f" {p.focus.replace('_', ' ')}" if p.focus else ""
    where = f" ({p.location})" if p.location else ""
    return f"Building a {p.duration}-minute {p.intensity}{focus} workout{where}."


class CoachTurnService:
    def __init__(
        self,
        db: Session,
        session_factory: Callable[[], Session],
        provider=None,
        schedule_rebuild: Optional[Callable[[UUID], object]] = None,
    ):
        self.db = db
        self.provider = provider
        self.threads = ConversationThreadManager(db, provider)
        self.context_loader = MemberContextLoader(
            SnapshotStore(db),
            SnapshotBuilder(session_factory),
            schedule_rebuild=schedule_rebuild,
        )

    def handle(
        self,
        member_id: UUID,
        message: str,
        conversation_id: Optional[UUID] = None,
        collected_slots: Optional[CollectedSlots] = None,
    ) -> CoachTurnResult:
        mode = "workout" if is_workout_request(message) else "general"
        conversation = self.threads.get_or_create_local_conversation(member_id, conversation_id, mode=mode)
        history = self.threads.recent_history(conversation.id, limit=HISTORY_TURNS)
        self.threads.save_message(conversation.id, "user", message)

        loaded = self.context_loader.load(member_id)
        slots = merge_slots(collected_slots, extract_implicit_context(message))
        memories_prompt = memories_to_prompt(load_active_memories(self.db, member_id))
        member = self.db.get(Member, member_id)

        decision = run_coach_agent(
            AgentContext(
                user_message=message,
                history=history,
                snapshot=loaded.snapshot,
                collected=slots,
                member_name=member.name if member else None,
                memories_prompt=memories_prompt or None,
            ),
            self.provider,
        )

        result = CoachTurnResult(
            conversation_id=conversation.id,
            decision=decision,
            collected_slots=slots,
            context_source=loaded.source,
        )
        logger.info(
            f"Coach decision {decision.action} for conversation {conversation.id}",
            extra=log_fields(
                member_id=str(member_id),
                conversation_id=str(conversation.id),
                action=decision.action,
                confidence=decision.confidence,
                context_source=loaded.source,
            ),
        )

        if isinstance(decision, ClarificationDecision):
            result.reply = decision.question
            self.threads.save_message(conversation.id, "assistant", decision.question)
        elif isinstance(decision, WorkoutDecision):
            result.reply = _workout_summary(decision)
            self.threads.save_message(conversation.id, "assistant", result.reply)
        elif isinstance(decision, ToolDecision):
            result.tool_result = run_tool(decision.tool, loaded.snapshot)
        elif isinstance(decision, AdviceDecision):
            self._advise(conversation.id, message, loaded, memories_prompt, result)
        else:
            raise TypeError(f"Unhandled decision type: {type(decision).__name__}")

        return result

    def _advise(
        self,
        local_id: UUID,
        message: str,
        loaded: LoadedContext,
        memories_prompt: str,
        result: CoachTurnResult,
    ) -> None:
        if self.provider is None:
            result.reply = ADVICE_UNAVAILABLE_REPLY
            self.threads.save_message(local_id, "assistant", result.reply)
            return

        thread: ThreadState = self.threads.prepare_turn(local_id)
        system = COACH_SYSTEM_PROMPT.format(
            member_context=context_to_prompt(loaded.snapshot) or "No training data yet.",
            memories=f"\nWHAT YOU REMEMBER:\n{memories_prompt}" if memories_prompt else "",
        )

        try:
            generation = self.provider.generate_text(
                system,
                message,
                conversation_id=thread.external_conversation_id,
                previous_response_id=thread.last_response_id,
            )
        except Exception as e:
            logger.error(f"Coach reply generation failed for conversation {local_id}: {e}", exc_info=True)
            result.reply = ADVICE_UNAVAILABLE_REPLY
            self.threads.save_message(local_id, "assistant", result.reply)
            return

        result.reply = generation.text
        result.threaded = thread.is_threaded
        self.threads.record_response(local_id, generation.response_id)
        self.threads.save_message(local_id, "assistant", generation.text, external_response_id=generation.response_id)
