"""
Coaching Memory Tasks

extract_coaching_memories runs after a coach conversation goes quiet:
structured extraction over the transcript, then guarded storage of the
accepted notes.
"""

import logging
from typing import Dict
from uuid import UUID

from celery import Task

from core.database import get_db_sync
from services.coaching_memory import extract_and_store
from services.llm_provider import get_provider
from tasks import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(
    name="tasks.extract_coaching_memories",
    bind=True,
    max_retries=2,
    soft_time_limit=60,
    time_limit=90,
)
def extract_coaching_memories(self: Task, conversation_id: str) -> Dict:
    provider = get_provider()
    if provider is None:
        return {"status": "skipped", "reason": "no_provider"}

    db = get_db_sync()
    try:
        return extract_and_store(db, provider, UUID(conversation_id))
    except Exception as e:
        db.rollback()
        logger.error(f"Memory extraction failed for conversation {conversation_id}: {e}", exc_info=True)
        raise self.retry(exc=e, countdown=30 * (self.request.retries + 1))
    finally:
        db.close()
