"""
Member context loading for request paths.

- Fresh snapshot: used as-is
- Stale snapshot: used, background rebuild scheduled
- No snapshot: live aggregation from the source tables (slower, correct),
  background rebuild scheduled. Nothing is written on the request path.

Scheduling is best-effort: a failure to enqueue is logged and the request
continues with whatever context it already has.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional
from uuid import UUID

from schemas import MemberSnapshot
from services.snapshot_builder import SnapshotBuilder
from services.snapshot_store import SnapshotStore

logger = logging.getLogger(__name__)

SOURCE_SNAPSHOT = "snapshot"
SOURCE_STALE = "stale"
SOURCE_LIVE = "live"


@dataclass
class LoadedContext:
    snapshot: MemberSnapshot
    source: str

    @property
    def is_live(self) -> bool:
        return self.source == SOURCE_LIVE


class MemberContextLoader:
    def __init__(
        self,
        store: SnapshotStore,
        builder: SnapshotBuilder,
        schedule_rebuild: Optional[Callable[[UUID], object]] = None,
    ):
        self.store = store
        self.builder = builder
        self.schedule_rebuild = schedule_rebuild

    def _schedule(self, member_id: UUID) -> None:
        if self.schedule_rebuild is None:
            return
        try:
            self.schedule_rebuild(member_id)
        except Exception as e:
            logger.warning(f"Could not schedule snapshot rebuild for {member_id}: {e}")

    def load(self, member_id: UUID, now: Optional[datetime] = None) -> LoadedContext:
        now = now or datetime.now(timezone.utc)

        snapshot = self.store.read(member_id, now=now)
        if snapshot is not None:
            if self.store.is_stale(snapshot, now=now):
                self._schedule(member_id)
                return LoadedContext(snapshot=snapshot, source=SOURCE_STALE)
            return LoadedContext(snapshot=snapshot, source=SOURCE_SNAPSHOT)

        logger.info(f"No snapshot for member {member_id}, falling back to live aggregation")
        fields = self.builder.compute(member_id, now=now)
        live = MemberSnapshot(
            **fields.model_dump(),
            member_id=member_id,
            snapshot_version=0,
            last_updated=now,
            snapshot_age_s=0.0,
        )
        self._schedule(member_id)
        return LoadedContext(snapshot=live, source=SOURCE_LIVE)
