"""
Member Context Snapshot Store

Read/write access to the materialized per-member context row.

Read path:
- Redis read cache (short TTL) absorbs bursts for the same member
- Miss: a single primary-key lookup, no joins
- Absent row -> None. "Never computed" is not an error and is never cached.

Write path:
- Dialect-native INSERT .. ON CONFLICT (member_id) DO UPDATE
- snapshot_version = 1 on insert, incremented in the statement on conflict
- last_updated always set to write time
- The member's read-cache key is dropped after commit

The table is a cache over the source tables. Callers that need to see
their own write use read_fresh().
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from core.cache import get_cache, invalidate_member_context, member_context_key, set_cache
from core.config import settings
from models import Member, MemberContextSnapshot
from schemas import MemberSnapshot, SnapshotFields
from services.recovery_model import as_utc, recovery_from_json, recovering_muscles

logger = logging.getLogger(__name__)

_UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}

# Lifts surfaced as "maxes" in prompts (matched as substrings of the exercise name).
KEY_LIFTS = ("bench press", "squat", "deadlift", "overhead press")


class SnapshotStore:
    def __init__(
        self,
        db: Session,
        cache_ttl_s: Optional[int] = None,
        stale_after_s: Optional[int] = None,
    ):
        self.db = db
        self.cache_ttl_s = cache_ttl_s if cache_ttl_s is not None else settings.SNAPSHOT_READ_CACHE_TTL_S
        self.stale_after_s = stale_after_s if stale_after_s is not None else settings.SNAPSHOT_STALE_AFTER_S

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def read(self, member_id: UUID, now: Optional[datetime] = None) -> Optional[MemberSnapshot]:
        """Cached read. Returns None when no snapshot has been computed yet."""
        key = member_context_key(member_id)
        cached = get_cache(key)
        if cached is not None:
            try:
                snapshot = MemberSnapshot.model_validate(cached)
                return self._with_age(snapshot, now)
            except ValueError as e:
                logger.warning(f"Discarding unreadable cached snapshot for {member_id}: {e}")

        snapshot = self.read_fresh(member_id, now=now)
        if snapshot is not None:
            set_cache(key, snapshot.model_dump(mode="json", exclude={"snapshot_age_s"}), ttl=self.cache_ttl_s)
        return snapshot

    def read_fresh(self, member_id: UUID, now: Optional[datetime] = None) -> Optional[MemberSnapshot]:
        """Uncached read straight from the table."""
        row = self.db.get(MemberContextSnapshot, member_id, populate_existing=True)
        if row is None:
            return None
        return self._with_age(row_to_snapshot(row), now)

    def is_stale(self, snapshot: MemberSnapshot, now: Optional[datetime] = None) -> bool:
        now = as_utc(now) or datetime.now(timezone.utc)
        return now - as_utc(snapshot.last_updated) > timedelta(seconds=self.stale_after_s)

    def find_members_needing_refresh(self, limit: int, now: Optional[datetime] = None) -> List[UUID]:
        """Members with no snapshot or a stale one, oldest first, bounded by limit."""
        now = as_utc(now) or datetime.now(timezone.utc)
        cutoff = now - timedelta(seconds=self.stale_after_s)

        stmt = (
            select(Member.id)
            .outerjoin(MemberContextSnapshot, MemberContextSnapshot.member_id == Member.id)
            .where(
                or_(
                    MemberContextSnapshot.member_id.is_(None),
                    MemberContextSnapshot.last_updated < cutoff,
                )
            )
            .order_by(MemberContextSnapshot.last_updated.asc().nulls_first(), Member.created_at, Member.id)
            .limit(limit)
        )
        return list(self.db.execute(stmt).scalars().all())

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def write(self, member_id: UUID, fields: SnapshotFields, now: Optional[datetime] = None) -> int:
        """Upsert the member's snapshot and return the new version."""
        now = as_utc(now) or datetime.now(timezone.utc)
        values = snapshot_column_values(fields)
        values["last_updated"] = now

        dialect = self.db.get_bind().dialect.name
        insert = _UPSERT_DIALECTS.get(dialect)
        if insert is None:
            raise NotImplementedError(f"Snapshot upsert not supported on dialect {dialect}")

        stmt = insert(MemberContextSnapshot).values(member_id=member_id, snapshot_version=1, **values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[MemberContextSnapshot.member_id],
            set_={
                **{name: getattr(stmt.excluded, name) for name in values},
                "snapshot_version": MemberContextSnapshot.snapshot_version + 1,
            },
        )

        try:
            self.db.execute(stmt)
            version = self.db.execute(
                select(MemberContextSnapshot.snapshot_version).where(
                    MemberContextSnapshot.member_id == member_id
                )
            ).scalar_one()
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        invalidate_member_context(member_id)
        logger.info(f"Snapshot written for member {member_id} (version={version})")
        return version

    def _with_age(self, snapshot: MemberSnapshot, now: Optional[datetime]) -> MemberSnapshot:
        now = as_utc(now) or datetime.now(timezone.utc)
        snapshot.snapshot_age_s = max(0.0, (now - as_utc(snapshot.last_updated)).total_seconds())
        return snapshot


def snapshot_column_values(fields: SnapshotFields) -> Dict:
    """Column values for an upsert. JSON columns get JSON-safe payloads."""
    json_payload = fields.model_dump(
        mode="json",
        include={"active_limitations", "active_goals", "personal_records", "skills", "muscle_recovery_status"},
    )
    return {
        "current_weight": fields.current_weight,
        "current_body_fat": fields.current_body_fat,
        "fitness_level": fields.fitness_level,
        "training_age": fields.training_age,
        "weekly_workout_avg": fields.weekly_workout_avg,
        "avg_workout_duration": fields.avg_workout_duration,
        "consecutive_training_weeks": fields.consecutive_training_weeks,
        "needs_deload": fields.needs_deload,
        "last_workout_date": as_utc(fields.last_workout_date),
        **json_payload,
    }


def row_to_snapshot(row: MemberContextSnapshot) -> MemberSnapshot:
    return MemberSnapshot(
        member_id=row.member_id,
        current_weight=row.current_weight,
        current_body_fat=row.current_body_fat,
        fitness_level=row.fitness_level,
        training_age=row.training_age,
        active_limitations=row.active_limitations or [],
        active_goals=row.active_goals or [],
        personal_records=row.personal_records or [],
        skills=row.skills or [],
        muscle_recovery_status=row.muscle_recovery_status or {},
        weekly_workout_avg=row.weekly_workout_avg,
        avg_workout_duration=row.avg_workout_duration,
        consecutive_training_weeks=row.consecutive_training_weeks,
        needs_deload=bool(row.needs_deload),
        last_workout_date=as_utc(row.last_workout_date),
        snapshot_version=row.snapshot_version,
        last_updated=as_utc(row.last_updated),
    )


def context_to_prompt(snapshot: SnapshotFields) -> str:
    """Compact, token-light rendering of a snapshot for model prompts."""
    lines: List[str] = []

    if snapshot.fitness_level:
        lines.append(f"Fitness Level: {snapshot.fitness_level}")

    # Limitations first: they constrain everything else.
    if snapshot.active_limitations:
        lines.append("\nLIMITATIONS:")
        for limitation in snapshot.active_limitations:
            areas = ", ".join(limitation.affected_areas)
            lines.append(f"- {limitation.type}: {limitation.description} [{areas}]")

    if snapshot.active_goals:
        lines.append("\nGoals:")
        for goal in snapshot.active_goals[:3]:
            lines.append(f"- {goal.title}: {goal.progress_percent:.0f}% complete")

    lift_prs = [
        pr for pr in snapshot.personal_records
        if any(lift in pr.exercise.lower() for lift in KEY_LIFTS)
    ]
    if lift_prs:
        lines.append("\nLifting Maxes:")
        for pr in lift_prs:
            lines.append(f"- {pr.exercise}: {pr.value:g}{pr.unit}")

    recovering = recovering_muscles(
        recovery_from_json({m: e.model_dump() for m, e in snapshot.muscle_recovery_status.items()})
    )
    if recovering:
        lines.append(f"\nRecovering muscles: {', '.join(recovering)}")

    if snapshot.needs_deload:
        lines.append("\nDELOAD RECOMMENDED")

    return "\n".join(lines)
