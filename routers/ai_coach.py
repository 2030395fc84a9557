"""
AI Coach API Router

Coach turns, context preview and coaching memory notes for the current member.
"""

import logging
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from core.auth import get_current_member_id
from core.database import get_db, get_session_factory
from core.exceptions import NotFoundError, ValidationError
from models import CoachConversation, CoachingMemory
from schemas import (
    CoachAgentRequest,
    CoachAgentResponse,
    ContextPreviewResponse,
    MemoryNoteCreate,
    MemoryNoteResponse,
)
from services.coach_turn import CoachTurnService
from services.coaching_memory import store_memory_note
from services.llm_provider import OpenAIProvider, get_provider
from services.member_context import MemberContextLoader
from services.snapshot_builder import SnapshotBuilder
from services.snapshot_store import SnapshotStore, context_to_prompt
from tasks.memory_tasks import extract_coaching_memories
from tasks.snapshot_tasks import enqueue_snapshot_rebuild

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/coach", tags=["AI Coach"])


@router.post("/agent", response_model=CoachAgentResponse)
def coach_agent_turn(
    request: CoachAgentRequest,
    member_id: UUID = Depends(get_current_member_id),
    db: Session = Depends(get_db),
    session_factory: sessionmaker = Depends(get_session_factory),
    provider: Optional[OpenAIProvider] = Depends(get_provider),
):
    """
    Send one message to the coach.

    The response carries the typed decision (clarification, workout
    parameters, tool call or advice), the reply text where there is one,
    and the slots collected so far. Send collected_slots back on the next
    turn to keep them.
    """
    service = CoachTurnService(
        db,
        session_factory,
        provider=provider,
        schedule_rebuild=enqueue_snapshot_rebuild,
    )
    result = service.handle(
        member_id,
        request.message,
        conversation_id=request.conversation_id,
        collected_slots=request.collected_slots,
    )
    return result.to_response()


@router.get("/context", response_model=ContextPreviewResponse)
def get_coach_context(
    member_id: UUID = Depends(get_current_member_id),
    db: Session = Depends(get_db),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    """
    Preview the member context the coach would see right now.

    source is "snapshot", "stale" or "live" (no snapshot yet).
    """
    loader = MemberContextLoader(
        SnapshotStore(db),
        SnapshotBuilder(session_factory),
        schedule_rebuild=enqueue_snapshot_rebuild,
    )
    loaded = loader.load(member_id)
    return ContextPreviewResponse(
        source=loaded.source,
        snapshot=loaded.snapshot,
        prompt=context_to_prompt(loaded.snapshot),
    )


@router.post("/memories", response_model=MemoryNoteResponse, status_code=201)
def create_memory_note(
    note: MemoryNoteCreate,
    member_id: UUID = Depends(get_current_member_id),
    db: Session = Depends(get_db),
):
    """
    Store a coaching memory note.

    Notes containing personal identifiers or instruction-like text are
    rejected with 422; long notes are truncated.
    """
    if note.conversation_id is not None:
        _owned_conversation(db, member_id, note.conversation_id)

    memory, validation = store_memory_note(
        db,
        member_id,
        note.content,
        category=note.category,
        importance=note.importance,
        tags=note.tags,
        conversation_id=note.conversation_id,
    )
    if memory is None:
        raise ValidationError(f"Memory note rejected: {validation.reason}", field="content")
    db.refresh(memory)
    return memory


@router.get("/memories", response_model=List[MemoryNoteResponse])
def list_memory_notes(
    limit: int = 50,
    member_id: UUID = Depends(get_current_member_id),
    db: Session = Depends(get_db),
):
    limit = max(1, min(limit, 200))
    return db.execute(
        select(CoachingMemory)
        .where(CoachingMemory.member_id == member_id)
        .order_by(CoachingMemory.created_at.desc())
        .limit(limit)
    ).scalars().all()


@router.post("/conversations/{conversation_id}/extract-memories", status_code=202)
def request_memory_extraction(
    conversation_id: UUID,
    member_id: UUID = Depends(get_current_member_id),
    db: Session = Depends(get_db),
):
    """Queue memory extraction for a finished conversation."""
    _owned_conversation(db, member_id, conversation_id)
    extract_coaching_memories.delay(str(conversation_id))
    logger.info(f"Memory extraction queued for conversation {conversation_id}")
    return {"queued": True, "conversation_id": str(conversation_id)}


def _owned_conversation(db: Session, member_id: UUID, conversation_id: UUID) -> CoachConversation:
    conversation = db.get(CoachConversation, conversation_id)
    if conversation is None or conversation.member_id != member_id:
        raise NotFoundError("Conversation", str(conversation_id))
    return conversation
