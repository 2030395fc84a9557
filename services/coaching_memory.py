"""
Coaching Memory

Durable notes about a member (pain reports, preferences, motivation
patterns) that are replayed into future coach prompts.

Every note passes validate_memory_note() before it is written. Rejected
notes are dropped; the log line carries the rejection category only.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Literal, Optional, Tuple
from uuid import UUID

from pydantic import BaseModel, Field
from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from core.config import settings
from models import CoachConversation, CoachingMemory, CoachMessage
from services.memory_guardrails import MemoryValidationResult, validate_memory_note

logger = logging.getLogger(__name__)

MIN_MESSAGES_FOR_EXTRACTION = 2
DEFAULT_PROMPT_MEMORIES = 20

MemoryCategory = Literal[
    "insight",
    "preference",
    "pain_report",
    "motivation",
    "pr_mention",
    "goal_update",
    "behavioral_pattern",
]


class ExtractedMemory(BaseModel):
    category: MemoryCategory
    content: str = Field(description="The key insight or observation")
    importance: int = Field(description="How important for future coaching (1-10)")
    tags: List[str] = Field(description="Relevant tags")


class MemoryExtraction(BaseModel):
    memories: List[ExtractedMemory]
    conversation_summary: str = Field(description="Brief summary of the conversation")


EXTRACTION_SYSTEM = "You extract durable coaching insights from fitness coaching conversations."

EXTRACTION_PROMPT = """Extract coaching insights from this conversation with a fitness coaching client.

Conversation mode: {mode}

Messages:
{transcript}

Extract the most important insights that should be remembered for future coaching sessions. Focus on:
- Pain/injury mentions and their severity
- Motivation patterns (what motivates or demotivates them)
- Personal records or fitness achievements mentioned
- Goal changes or progress updates
- Behavioral patterns (consistency, time preferences, workout preferences)
- Preferences expressed (exercise types, workout styles, coaching tone)

Only extract genuinely useful insights. Skip generic conversation filler.
Never include contact details, account numbers or passwords."""


def _clamp_importance(value: int) -> int:
    return max(1, min(10, int(value)))


def store_memory_note(
    db: Session,
    member_id: UUID,
    content: str,
    category: str = "insight",
    importance: int = 5,
    tags: Optional[List[str]] = None,
    conversation_id: Optional[UUID] = None,
    commit: bool = True,
) -> Tuple[Optional[CoachingMemory], MemoryValidationResult]:
    """Validate and store one note. Returns (row or None, validation result)."""
    validation = validate_memory_note(content)
    if not validation.safe:
        logger.info(f"Memory note rejected for member {member_id}: {validation.reason}")
        return None, validation

    memory = CoachingMemory(
        member_id=member_id,
        conversation_id=conversation_id,
        category=category,
        content=validation.sanitized,
        importance=_clamp_importance(importance),
        tags=list(tags or []),
        created_at=datetime.now(timezone.utc),
    )
    db.add(memory)
    if commit:
        db.commit()
    return memory, validation


def store_memory_notes(
    db: Session,
    member_id: UUID,
    conversation_id: Optional[UUID],
    notes: Iterable[ExtractedMemory],
) -> int:
    """Store every note that passes the guardrail. Returns how many were stored."""
    stored = 0
    rejected = 0
    for note in notes:
        memory, _ = store_memory_note(
            db,
            member_id,
            note.content,
            category=note.category,
            importance=note.importance,
            tags=note.tags,
            conversation_id=conversation_id,
            commit=False,
        )
        if memory is None:
            rejected += 1
        else:
            stored += 1
    db.commit()
    if rejected:
        logger.info(f"Coaching memory: {stored} stored, {rejected} rejected for member {member_id}")
    return stored


def extract_memories(provider, messages: List[CoachMessage], mode: str = "general") -> MemoryExtraction:
    transcript = "\n\n".join(f"{m.role}: {m.content}" for m in messages)
    return provider.generate_structured(
        EXTRACTION_SYSTEM,
        EXTRACTION_PROMPT.format(mode=mode, transcript=transcript),
        MemoryExtraction,
        model=settings.COACH_MEMORY_MODEL,
    )


def extract_and_store(db: Session, provider, conversation_id: UUID) -> Dict:
    """Run extraction for one conversation and store the accepted notes."""
    conversation = db.get(CoachConversation, conversation_id)
    if conversation is None:
        return {"status": "skipped", "reason": "conversation_not_found"}

    messages = db.execute(
        select(CoachMessage)
        .where(CoachMessage.conversation_id == conversation_id)
        .order_by(CoachMessage.created_at, CoachMessage.id)
    ).scalars().all()
    if len(messages) < MIN_MESSAGES_FOR_EXTRACTION:
        return {"status": "skipped", "reason": "too_few_messages"}

    extraction = extract_memories(provider, messages, mode=conversation.mode)
    stored = store_memory_notes(db, conversation.member_id, conversation_id, extraction.memories)

    conversation.insights = extraction.conversation_summary
    conversation.updated_at = datetime.now(timezone.utc)
    db.commit()

    return {
        "status": "ok",
        "conversation_id": str(conversation_id),
        "memories_extracted": len(extraction.memories),
        "memories_stored": stored,
    }


def load_active_memories(
    db: Session,
    member_id: UUID,
    limit: int = DEFAULT_PROMPT_MEMORIES,
    now: Optional[datetime] = None,
) -> List[CoachingMemory]:
    """Non-expired memories, most important first, then newest."""
    now = now or datetime.now(timezone.utc)
    return list(
        db.execute(
            select(CoachingMemory)
            .where(
                CoachingMemory.member_id == member_id,
                or_(CoachingMemory.expires_at.is_(None), CoachingMemory.expires_at >= now),
            )
            .order_by(CoachingMemory.importance.desc(), CoachingMemory.created_at.desc())
            .limit(limit)
        ).scalars().all()
    )


def memories_to_prompt(memories: List[CoachingMemory]) -> str:
    return "\n".join(f"- [{m.category}] {m.content}" for m in memories)
