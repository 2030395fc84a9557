"""
Coach Decision Agent

Decides the next move in a coach conversation: ask a clarifying question,
hand workout parameters to the workout generator, answer free-form, or query
more data first.

Flow per turn:
1. extract_implicit_context(): regex pre-pass that pre-fills slots from the
   raw message (no model call, never raises)
2. build_context_summary(): profile, limitations, recovery, collected slots,
   last few turns
3. One structured-generation call against AgentDecisionPayload
4. to_decision(): flat payload -> one typed variant of AgentDecision

A payload whose variant data is missing or out of bounds is a defect in
generation, not a user error: the turn degrades to a generic advice decision
with confidence 0.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field, ValidationError

from core.exceptions import MalformedDecisionError
from schemas import CollectedSlots, ConversationTurn, MemberSnapshot
from services.recovery_model import as_utc, ready_muscles, recovering_muscles, recovery_from_json

logger = logging.getLogger(__name__)

HISTORY_TURNS = 4
HISTORY_CLIP_CHARS = 100

ClarificationContext = Literal["duration", "energy", "location", "limitations", "focus", "intensity", "custom"]
ClarificationPriority = Literal["critical", "important", "nice_to_have"]
Intensity = Literal["light", "moderate", "hard", "max"]
Location = Literal["gym", "home", "outdoor", "bodyweight"]
ToolName = Literal["check_recovery", "check_schedule", "check_history", "check_goals"]


# ============================================================================
# Structured-generation schema (flat; what the model fills in)
# ============================================================================

class ClarificationOption(BaseModel):
    label: str
    value: str
    description: Optional[str] = None


class ClarificationPayload(BaseModel):
    question: str = Field(description="The question to ask the user")
    context: ClarificationContext
    options: List[ClarificationOption] = Field(description="2-4 selectable options")
    allow_custom: bool = Field(description="Whether to allow free-form input")
    priority: ClarificationPriority


class WorkoutParams(BaseModel):
    duration: int = Field(description="Duration in minutes")
    intensity: Intensity
    focus: Optional[str] = Field(description="Muscle group or workout type focus")
    location: Optional[Location]
    avoid_muscles: List[str] = Field(description="Muscles to avoid due to limitations")


class ToolCallPayload(BaseModel):
    tool: ToolName
    reason: str


class AgentDecisionPayload(BaseModel):
    action: Literal["ask_clarification", "generate_workout", "provide_advice", "use_tool"]
    reasoning: str = Field(description="Brief explanation of why this action was chosen")
    confidence: float = Field(description="Confidence in this decision, 0 to 1")
    clarification: Optional[ClarificationPayload] = None
    workout_params: Optional[WorkoutParams] = None
    tool_call: Optional[ToolCallPayload] = None


# ============================================================================
# Decision variants
# ============================================================================

class _DecisionBase(BaseModel):
    reasoning: str
    confidence: float = Field(ge=0, le=1)


class ClarificationDecision(_DecisionBase):
    action: Literal["ask_clarification"] = "ask_clarification"
    question: str = Field(min_length=1)
    context: ClarificationContext
    options: List[ClarificationOption] = Field(min_length=2, max_length=4)
    allow_custom: bool
    priority: ClarificationPriority


class WorkoutDecision(_DecisionBase):
    action: Literal["generate_workout"] = "generate_workout"
    params: WorkoutParams


class AdviceDecision(_DecisionBase):
    action: Literal["provide_advice"] = "provide_advice"


class ToolDecision(_DecisionBase):
    action: Literal["use_tool"] = "use_tool"
    tool: ToolName
    reason: str


AgentDecision = Annotated[
    Union[ClarificationDecision, WorkoutDecision, AdviceDecision, ToolDecision],
    Field(discriminator="action"),
]


def fallback_decision(reason: str) -> AdviceDecision:
    return AdviceDecision(reasoning=f"Fallback: {reason}", confidence=0.0)


def to_decision(payload: AgentDecisionPayload) -> AgentDecision:
    """Convert the flat payload into its variant. Raises MalformedDecisionError on inconsistency."""
    base = {"reasoning": payload.reasoning, "confidence": payload.confidence}
    try:
        if payload.action == "ask_clarification":
            if payload.clarification is None:
                raise MalformedDecisionError("ask_clarification without clarification")
            return ClarificationDecision(**base, **payload.clarification.model_dump())
        if payload.action == "generate_workout":
            if payload.workout_params is None:
                raise MalformedDecisionError("generate_workout without workout_params")
            if payload.workout_params.duration <= 0:
                raise MalformedDecisionError("generate_workout with non-positive duration")
            return WorkoutDecision(**base, params=payload.workout_params)
        if payload.action == "use_tool":
            if payload.tool_call is None:
                raise MalformedDecisionError("use_tool without tool_call")
            return ToolDecision(**base, **payload.tool_call.model_dump())
        if payload.action == "provide_advice":
            return AdviceDecision(**base)
    except ValidationError as e:
        raise MalformedDecisionError(f"{payload.action} failed validation: {e.error_count()} errors") from e
    raise MalformedDecisionError(f"Unknown action {payload.action}")


# ============================================================================
# Implicit context extraction
# ============================================================================

# Runs longer than four digits are not durations.
DURATION_PATTERN = re.compile(r"(?<!\d)(\d{1,4})\s*(min|minute)")
ENERGY_LOW_PATTERN = re.compile(r"\b(tired|exhausted|low energy|didn'?t sleep)")
ENERGY_HIGH_PATTERN = re.compile(r"\b(energized|pumped|ready\b|let'?s go|crush it)")
LOCATION_PATTERNS = [
    ("gym", re.compile(r"\b(at (the )?gym|going to (the )?gym)")),
    ("home", re.compile(r"\b(at home|home workout)")),
    ("bodyweight", re.compile(r"\b(no equipment|bodyweight)")),
]
# Checked in order; first match wins.
FOCUS_PATTERNS = [
    ("legs", re.compile(r"\b(leg|lower body|squat|deadlift)")),
    ("upper", re.compile(r"\b(upper body|chest and back)")),
    ("chest", re.compile(r"\b(chest|bench|pec)")),
    ("back", re.compile(r"\b(back|rows?\b|lats?\b|pull)")),
    ("shoulders", re.compile(r"\b(shoulder|delt|overhead)")),
    ("arms", re.compile(r"\b(arms?\b|bicep|tricep)")),
    ("core", re.compile(r"\b(core|abs?\b)")),
    ("full_body", re.compile(r"\b(full body|total body|whole body)")),
    ("cardio", re.compile(r"\b(cardio|conditioning|hiit)")),
]
INTENSITY_PATTERNS = [
    ("light", re.compile(r"\b(light|easy|recovery|deload)")),
    ("hard", re.compile(r"\b(hard|intense|challenging|push)")),
    ("max", re.compile(r"\b(max|all out|prs?\b)")),
]

WORKOUT_REQUEST_PATTERNS = [
    re.compile(r"\b(create|make|generate|give me|design|build|plan)\b.*\b(workout|session|routine|exercise)\b", re.IGNORECASE),
    re.compile(r"\b(want|need|looking for)\s+(a|some)?\s*(workout|training|exercise)", re.IGNORECASE),
    re.compile(r"\bworkout\b.*\b(for today|for me|right now|quick)\b", re.IGNORECASE),
    re.compile(r"\b(let's|lets)\s+(do|train|workout|exercise)\b", re.IGNORECASE),
    re.compile(r"\b(leg|arm|chest|back|shoulder|core|upper|lower|full body|push|pull)\s*(day|workout)\b", re.IGNORECASE),
    re.compile(r"\b(\d+)\s*(min|minute)s?\s*(workout|session|hiit)\b", re.IGNORECASE),
]


def _first_match(patterns, text: str) -> Optional[str]:
    for value, pattern in patterns:
        if pattern.search(text):
            return value
    return None


def extract_implicit_context(message: Optional[str]) -> CollectedSlots:
    """Pre-fill slots from the raw message. Partial or no matches leave slots empty."""
    slots = CollectedSlots()
    if not message:
        return slots
    lower = message.lower()

    duration = DURATION_PATTERN.search(lower)
    if duration:
        slots.duration = int(duration.group(1))

    if ENERGY_LOW_PATTERN.search(lower):
        slots.energy = "low"
    elif ENERGY_HIGH_PATTERN.search(lower):
        slots.energy = "high"

    slots.location = _first_match(LOCATION_PATTERNS, lower)
    slots.focus = _first_match(FOCUS_PATTERNS, lower)
    slots.intensity = _first_match(INTENSITY_PATTERNS, lower)
    return slots


def is_workout_request(message: Optional[str]) -> bool:
    if not message:
        return False
    return any(p.search(message) for p in WORKOUT_REQUEST_PATTERNS)


def merge_slots(previous: Optional[CollectedSlots], extracted: CollectedSlots) -> CollectedSlots:
    """Slots accumulate across turns; newly extracted non-empty values win."""
    merged = (previous or CollectedSlots()).model_copy()
    for name, value in extracted.model_dump().items():
        if value not in (None, [], ""):
            setattr(merged, name, value)
    return merged


# ============================================================================
# Agent
# ============================================================================

@dataclass
class AgentContext:
    user_message: str
    history: List[ConversationTurn] = field(default_factory=list)
    snapshot: Optional[MemberSnapshot] = None
    collected: CollectedSlots = field(default_factory=CollectedSlots)
    member_name: Optional[str] = None
    memories_prompt: Optional[str] = None


SYSTEM_PROMPT = """You are an AI fitness coach agent. Your job is to analyze the user's request and decide the best action.

CURRENT CONTEXT:
{context_summary}

AVAILABLE ACTIONS:
1. ask_clarification - Ask the user a question to gather missing information. Only ask questions that are CRITICAL for a good response. Offer 2-4 selectable options.
2. generate_workout - You have enough info to generate a personalized workout. Fill workout_params.
3. provide_advice - The user is asking a question, not requesting a workout.
4. use_tool - You need to query data (recovery status, schedule, history, goals) before responding. Fill tool_call.

DECISION RULES:
- If the user clearly wants a workout and you know duration + energy level, you can generate.
- If you're missing CRITICAL info (like duration for a workout request), ask ONE focused question.
- Don't ask about limitations unless they mention pain/injury or have known limitations.
- Prefer fewer clarifications - 2 at most before generating, not a long survey.
- Never ask about anything already in CURRENT CONTEXT or COLLECTED FROM USER.
- If unsure about intent, ask_clarification with a simple "What would you like help with?"
- Avoid muscles that are still recovering or affected by a limitation."""


def _days_since(value: Optional[datetime], now: datetime) -> Optional[int]:
    value = as_utc(value)
    if value is None:
        return None
    return max(0, (now - value).days)


def _clip(text: str) -> str:
    if len(text) > HISTORY_CLIP_CHARS:
        return text[:HISTORY_CLIP_CHARS] + "..."
    return text


def build_context_summary(context: AgentContext, now: Optional[datetime] = None) -> str:
    now = as_utc(now) or datetime.now(timezone.utc)
    parts: List[str] = []
    s = context.snapshot

    if s is not None:
        goals = ", ".join(g.title for g in s.active_goals) or "None specified"
        parts.append(
            "USER PROFILE:\n"
            f"- Name: {context.member_name or 'Unknown'}\n"
            f"- Fitness level: {s.fitness_level or 'Unknown'}\n"
            f"- Active goals: {goals}"
        )

        if s.active_limitations:
            summary = "; ".join(
                f"{l.type} ({', '.join(l.affected_areas) or 'general'} - {l.severity or 'moderate'})"
                for l in s.active_limitations
            )
            parts.append(f"- Active limitations: {summary}")

        recovery = recovery_from_json({m: e.model_dump() for m, e in s.muscle_recovery_status.items()})
        ready = ready_muscles(recovery)
        recovering = recovering_muscles(recovery)
        if ready:
            parts.append(f"- Muscles ready to train: {', '.join(ready)}")
        if recovering:
            parts.append(f"- Muscles still recovering: {', '.join(recovering)}")

        days = _days_since(s.last_workout_date, now)
        parts.append(f"- Days since last workout: {days if days is not None else 'Unknown'}")
        if s.needs_deload:
            parts.append("- Deload recommended")

    if context.memories_prompt:
        parts.append(f"\nWHAT YOU REMEMBER ABOUT THIS MEMBER:\n{context.memories_prompt}")

    c = context.collected
    collected_lines = []
    if c.duration:
        collected_lines.append(f"- Duration: {c.duration} minutes")
    if c.energy:
        collected_lines.append(f"- Energy today: {c.energy}")
    if c.location:
        collected_lines.append(f"- Location: {c.location}")
    if c.focus:
        collected_lines.append(f"- Focus: {c.focus}")
    if c.intensity:
        collected_lines.append(f"- Intensity: {c.intensity}")
    if c.limitations_today:
        collected_lines.append(f"- Today's limitations: {', '.join(c.limitations_today)}")
    if collected_lines:
        parts.append("\nCOLLECTED FROM USER:")
        parts.extend(collected_lines)

    if context.history:
        parts.append("\nRECENT CONVERSATION:")
        for turn in context.history[-HISTORY_TURNS:]:
            parts.append(f"{turn.role}: {_clip(turn.content)}")

    return "\n".join(parts)


def run_coach_agent(context: AgentContext, provider) -> AgentDecision:
    """
    One structured-generation call -> one typed decision.

    Never raises: missing provider, provider errors and malformed payloads
    all come back as a zero-confidence AdviceDecision.
    """
    if provider is None:
        logger.warning("Coach agent called without a model provider")
        return fallback_decision("no model provider")

    system = SYSTEM_PROMPT.format(context_summary=build_context_summary(context))
    prompt = (
        f'User message: "{context.user_message}"\n\n'
        "Based on the context and rules above, decide what action to take."
    )

    try:
        payload = provider.generate_structured(system, prompt, AgentDecisionPayload)
    except Exception as e:
        logger.error(f"Coach agent generation failed: {e}", exc_info=True)
        return fallback_decision("generation failed")

    try:
        decision = to_decision(payload)
    except MalformedDecisionError as e:
        logger.error(f"Coach agent returned a malformed decision: {e}")
        return fallback_decision("malformed decision")

    logger.info(f"Coach agent decision: {decision.action} (confidence={decision.confidence:.2f})")
    return decision
