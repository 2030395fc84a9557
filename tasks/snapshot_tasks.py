"""
Member Context Snapshot Tasks

- refresh_member_snapshots: beat sweep every 15 minutes
- rebuild_member_snapshot: one member, enqueued by write-side triggers
  (workout completed, goal updated) and by the coach read path when a
  snapshot is missing or stale

Enqueue through enqueue_snapshot_rebuild(): a per-member cooldown keeps a
burst of requests for the same member down to one task.
"""

import logging
from typing import Dict, Optional
from uuid import UUID

from celery import Task

from core.config import settings
from core.cooldown import CooldownStore, get_cooldown_store
from core.database import get_db_sync, get_session_factory
from services.snapshot_builder import SnapshotBuilder
from services.snapshot_refresher import run_snapshot_refresh
from tasks import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(
    name="tasks.refresh_member_snapshots",
    bind=True,
    max_retries=0,       # Don't retry the batch - members are isolated
    soft_time_limit=300,  # 5 minutes soft limit
    time_limit=360,       # 6 minutes hard limit
)
def refresh_member_snapshots(self: Task) -> Dict:
    """
    Rebuild snapshots for members that have none or a stale one.

    Returns the sweep summary (updated / errors / skipped / elapsed_ms).
    """
    db = get_db_sync()
    try:
        result = run_snapshot_refresh(db, get_session_factory())
        return {"status": "ok", **result.to_dict()}
    except Exception as e:
        logger.error(f"Snapshot refresh sweep failed: {e}", exc_info=True)
        return {"status": "error", "message": str(e)}
    finally:
        db.close()


@celery_app.task(
    name="tasks.rebuild_member_snapshot",
    bind=True,
    max_retries=1,
    soft_time_limit=60,
    time_limit=90,
)
def rebuild_member_snapshot(self: Task, member_id: str) -> Dict:
    try:
        version = SnapshotBuilder(get_session_factory()).rebuild(UUID(member_id))
        return {"status": "ok", "member_id": member_id, "snapshot_version": version}
    except Exception as e:
        logger.error(f"Snapshot rebuild failed for {member_id}: {e}", exc_info=True)
        raise self.retry(exc=e, countdown=15 * (self.request.retries + 1))


def enqueue_snapshot_rebuild(member_id, cooldown_store: Optional[CooldownStore] = None) -> bool:
    """
    Fire-and-forget rebuild for one member.

    Returns False when a rebuild was enqueued for this member within
    SNAPSHOT_REBUILD_COOLDOWN_S.
    """
    store = cooldown_store or get_cooldown_store()
    retry_after = store.acquire(
        f"snapshot_rebuild:{member_id}", settings.SNAPSHOT_REBUILD_COOLDOWN_S
    )
    if retry_after is not None:
        logger.debug(f"Snapshot rebuild for {member_id} skipped (cooldown {retry_after}s)")
        return False

    rebuild_member_snapshot.delay(str(member_id))
    logger.info(f"Snapshot rebuild enqueued for {member_id}")
    return True
