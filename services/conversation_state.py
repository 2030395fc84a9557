"""
Conversation Thread Manager

Maps a local coach conversation to the provider-side conversation and the
last provider response id, so follow-up turns chain server-side context
instead of resending the whole history.

Per turn:
1. prepare_turn(): read state, create the provider conversation if missing
2. generate with thread.conversation_id or thread.previous_response_id
3. update_last_response_id() with the new response id

Threading is a soft dependency. prepare_turn() never raises: on failure
it logs and hands back whatever state it has (possibly empty) and the turn
runs unthreaded.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from core.exceptions import NotFoundError, ProviderUnavailableError
from models import CoachConversation, CoachMessage
from schemas import ConversationTurn

logger = logging.getLogger(__name__)


@dataclass
class ThreadState:
    external_conversation_id: Optional[str] = None
    last_response_id: Optional[str] = None

    @property
    def is_threaded(self) -> bool:
        return bool(self.external_conversation_id or self.last_response_id)

    def provider_options(self) -> Dict:
        """Conversation id wins; previous_response_id only chains when there is no conversation."""
        options: Dict = {"store": True}
        if self.external_conversation_id:
            options["conversation"] = self.external_conversation_id
        elif self.last_response_id:
            options["previous_response_id"] = self.last_response_id
        return options


class ConversationThreadManager:
    def __init__(self, db: Session, provider=None):
        self.db = db
        self.provider = provider

    def _conversation(self, local_id: UUID) -> Optional[CoachConversation]:
        return self.db.get(CoachConversation, local_id)

    # ------------------------------------------------------------------
    # Local conversation and messages
    # ------------------------------------------------------------------

    def get_or_create_local_conversation(
        self,
        member_id: UUID,
        conversation_id: Optional[UUID] = None,
        mode: str = "general",
    ) -> CoachConversation:
        if conversation_id is not None:
            conversation = self.db.execute(
                select(CoachConversation).where(
                    CoachConversation.id == conversation_id,
                    CoachConversation.member_id == member_id,
                )
            ).scalar_one_or_none()
            if conversation is None:
                raise NotFoundError("Conversation", str(conversation_id))
            return conversation

        now = datetime.now(timezone.utc)
        conversation = CoachConversation(
            member_id=member_id,
            mode=mode,
            status="active",
            created_at=now,
            updated_at=now,
            last_message_at=now,
        )
        self.db.add(conversation)
        self.db.commit()
        logger.info(f"Created coach conversation {conversation.id} for member {member_id}")
        return conversation

    def save_message(
        self,
        local_id: UUID,
        role: str,
        content: str,
        external_response_id: Optional[str] = None,
    ) -> CoachMessage:
        now = datetime.now(timezone.utc)
        message = CoachMessage(
            conversation_id=local_id,
            role=role,
            content=content,
            external_response_id=external_response_id,
            created_at=now,
        )
        self.db.add(message)
        conversation = self._conversation(local_id)
        if conversation is not None:
            conversation.last_message_at = now
            conversation.updated_at = now
        self.db.commit()
        return message

    def recent_history(self, local_id: UUID, limit: int = 4) -> List[ConversationTurn]:
        """Last `limit` turns, oldest first."""
        rows = self.db.execute(
            select(CoachMessage)
            .where(CoachMessage.conversation_id == local_id)
            .order_by(CoachMessage.created_at.desc(), CoachMessage.id.desc())
            .limit(limit)
        ).scalars().all()
        return [ConversationTurn(role=m.role, content=m.content) for m in reversed(rows)]

    # ------------------------------------------------------------------
    # Provider threading
    # ------------------------------------------------------------------

    def get_state(self, local_id: UUID) -> ThreadState:
        conversation = self._conversation(local_id)
        if conversation is None:
            return ThreadState()
        return ThreadState(
            external_conversation_id=conversation.external_conversation_id,
            last_response_id=conversation.last_response_id,
        )

    def get_or_create_external_conversation(self, local_id: UUID) -> str:
        conversation = self._conversation(local_id)
        if conversation is None:
            raise NotFoundError("Conversation", str(local_id))
        if conversation.external_conversation_id:
            return conversation.external_conversation_id

        if self.provider is None:
            raise ProviderUnavailableError("No model provider configured")

        external_id = self.provider.create_conversation(
            metadata={"local_conversation_id": str(local_id)}
        )
        conversation.external_conversation_id = external_id
        conversation.updated_at = datetime.now(timezone.utc)
        self.db.commit()
        logger.info(f"Linked conversation {local_id} to provider conversation")
        return external_id

    def update_last_response_id(self, local_id: UUID, response_id: str) -> None:
        conversation = self._conversation(local_id)
        if conversation is None:
            raise NotFoundError("Conversation", str(local_id))
        conversation.last_response_id = response_id
        conversation.updated_at = datetime.now(timezone.utc)
        self.db.commit()

    def prepare_turn(self, local_id: UUID) -> ThreadState:
        """Threading state for this turn. Never raises."""
        try:
            state = self.get_state(local_id)
        except Exception as e:
            self.db.rollback()
            logger.warning(f"Failed to read thread state for {local_id}: {e}. Continuing unthreaded.")
            return ThreadState()

        if state.external_conversation_id:
            return state

        try:
            state.external_conversation_id = self.get_or_create_external_conversation(local_id)
        except Exception as e:
            self.db.rollback()
            logger.warning(
                f"Failed to get/create provider conversation for {local_id}: {e}. "
                f"Continuing without persistent conversation state."
            )
        return state

    def record_response(self, local_id: UUID, response_id: Optional[str]) -> None:
        """Persist the chain head after a generation. Failures are logged, not raised."""
        if not response_id:
            return
        try:
            self.update_last_response_id(local_id, response_id)
        except Exception as e:
            self.db.rollback()
            logger.warning(f"Failed to persist last response id for {local_id}: {e}")
