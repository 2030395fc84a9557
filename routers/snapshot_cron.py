"""
Snapshot Refresh Trigger

Internal endpoint hit by the external scheduler. Runs one refresher sweep
synchronously and reports the counts.

Guards, in order:
- Bearer CRON_SECRET (401 on mismatch)
- Optional X-Cron-Time freshness check (401 when outside the allowed skew)
- Cooldown: at most one sweep per CRON_COOLDOWN_S (429 with Retry-After)
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session, sessionmaker

from core.auth import verify_cron_secret, verify_trigger_freshness
from core.config import settings
from core.cooldown import CooldownStore, get_cooldown_store
from core.database import get_db, get_session_factory
from core.exceptions import RateLimitedError
from schemas import SnapshotRefreshResponse
from services.snapshot_refresher import run_snapshot_refresh

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/v1/internal/cron",
    tags=["internal"],
    dependencies=[Depends(verify_cron_secret), Depends(verify_trigger_freshness)],
)

COOLDOWN_KEY = "cron:snapshots"


def _refresh(
    db: Session,
    session_factory: sessionmaker,
    cooldown: CooldownStore,
) -> SnapshotRefreshResponse:
    retry_after = cooldown.acquire(COOLDOWN_KEY, settings.CRON_COOLDOWN_S)
    if retry_after is not None:
        logger.info(f"Snapshot refresh trigger rate limited, retry in {retry_after}s")
        raise RateLimitedError(retry_after)

    result = run_snapshot_refresh(db, session_factory)
    return SnapshotRefreshResponse(
        success=True,
        updated=result.updated,
        errors=result.errors,
        skipped=result.skipped,
        timed_out=result.timed_out,
        elapsed_ms=result.elapsed_ms,
        timestamp=datetime.now(timezone.utc),
    )


@router.post("/snapshots", response_model=SnapshotRefreshResponse)
def trigger_snapshot_refresh(
    db: Session = Depends(get_db),
    session_factory: sessionmaker = Depends(get_session_factory),
    cooldown: CooldownStore = Depends(get_cooldown_store),
):
    """Rebuild missing or stale member snapshots within the sweep budget."""
    return _refresh(db, session_factory, cooldown)


@router.get("/snapshots", response_model=SnapshotRefreshResponse)
def trigger_snapshot_refresh_get(
    db: Session = Depends(get_db),
    session_factory: sessionmaker = Depends(get_session_factory),
    cooldown: CooldownStore = Depends(get_cooldown_store),
):
    # Some schedulers can only issue GET.
    return _refresh(db, session_factory, cooldown)
