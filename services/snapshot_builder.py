"""
Snapshot Builder

Recomputes a member's context snapshot from the source tables.

Two-level fan-out per member:
1. Parallel, independent reads (goals, limitations, PRs, recent sessions,
   skills, latest metrics, member profile), each on its own session
2. Exercises of the recent completed sessions, which is where muscle-group
   data lives

Level 2 starts only after level 1 has joined. The upsert happens only after
every read for the member has completed. Row limits bound each read.
"""

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Set
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from core.config import settings
from models import (
    Exercise,
    Goal,
    Member,
    MemberLimitation,
    MemberMetric,
    MemberSkill,
    PersonalRecord,
    WorkoutSession,
    WorkoutSessionExercise,
)
from schemas import GoalEntry, LimitationEntry, PersonalRecordEntry, SkillEntry, SnapshotFields
from services.recovery_model import (
    as_utc,
    build_activity,
    classify_recovery,
    recovery_to_json,
    select_recovery_sessions,
)
from services.snapshot_store import SnapshotStore

logger = logging.getLogger(__name__)

MAX_GOALS = 10
MAX_PERSONAL_RECORDS = 20
MAX_RECENT_SESSIONS = 14
WEEKLY_AVG_WINDOW_DAYS = 14
DELOAD_MIN_TRAINING_WEEKS = 4
LIGHT_SESSION_MAX_EXERCISES = 4
LOW_RATINGS = (2, 3)


@dataclass
class SessionRow:
    """Detached copy of a workout session; safe to pass between threads."""
    id: UUID
    date: datetime
    start_time: Optional[datetime]
    end_time: Optional[datetime]
    status: str
    rating: Optional[int]


@dataclass
class SourceData:
    training_age: Optional[str]
    goals: List[GoalEntry]
    limitations: List[LimitationEntry]
    personal_records: List[PersonalRecordEntry]
    sessions: List[SessionRow]
    skills: List[SkillEntry]
    metric: Optional[Dict]


def _iso(value: Optional[datetime]) -> Optional[str]:
    value = as_utc(value)
    return value.isoformat() if value else None


def goal_progress(current_value: Optional[float], target_value: Optional[float]) -> float:
    if not target_value:
        return 0.0
    return ((current_value or 0) / target_value) * 100


def weekly_workout_average(sessions: List[SessionRow], now: datetime) -> float:
    """Completed sessions in the trailing 14 days, halved. A rough estimate, kept as-is."""
    since = now - timedelta(days=WEEKLY_AVG_WINDOW_DAYS)
    completed = [s for s in sessions if s.status == "completed" and as_utc(s.date) >= since]
    return len(completed) / 2


def average_duration_minutes(sessions: List[SessionRow]) -> Optional[int]:
    durations = [
        (as_utc(s.end_time) - as_utc(s.start_time)).total_seconds() / 60
        for s in sessions
        if s.status == "completed" and s.start_time is not None and s.end_time is not None
    ]
    if not durations:
        return None
    return round(sum(durations) / len(durations))


def training_weeks(sessions: List[SessionRow], now: datetime) -> int:
    """Distinct 7-day buckets (counted back from now) that contain a completed session."""
    weeks = {
        math.floor((now - as_utc(s.date)).total_seconds() / (7 * 24 * 3600))
        for s in sessions
        if s.status == "completed"
    }
    return len(weeks)


def needs_deload(weeks: int, sessions: List[SessionRow], exercise_counts: Dict[UUID, int]) -> bool:
    """
    Four or more training weeks with no sign the member is already backing off.

    A low-rated (2-3) session with fewer than 4 exercises counts as backing off.
    """
    if weeks < DELOAD_MIN_TRAINING_WEEKS:
        return False
    backing_off = any(
        s.rating in LOW_RATINGS and exercise_counts.get(s.id, 0) < LIGHT_SESSION_MAX_EXERCISES
        for s in sessions
    )
    return not backing_off


class SnapshotBuilder:
    """
    Computes SnapshotFields for one member.

    session_factory must return a new Session per call; every parallel read
    opens and closes its own.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        max_workers: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.max_workers = max_workers or settings.SNAPSHOT_FANOUT_WORKERS

    # ------------------------------------------------------------------
    # Level 1 reads
    # ------------------------------------------------------------------

    def _read(self, fn, member_id: UUID):
        with self.session_factory() as db:
            return fn(db, member_id)

    @staticmethod
    def _load_training_age(db: Session, member_id: UUID) -> Optional[str]:
        return db.execute(select(Member.training_age).where(Member.id == member_id)).scalar_one_or_none()

    @staticmethod
    def _load_goals(db: Session, member_id: UUID) -> List[GoalEntry]:
        rows = db.execute(
            select(Goal)
            .where(Goal.member_id == member_id, Goal.status == "active")
            .order_by(Goal.created_at, Goal.id)
            .limit(MAX_GOALS)
        ).scalars().all()
        return [
            GoalEntry(
                id=str(g.id),
                title=g.title,
                category=g.category,
                target_value=g.target_value or 0,
                current_value=g.current_value or 0,
                progress_percent=goal_progress(g.current_value, g.target_value),
                target_date=_iso(g.target_date),
            )
            for g in rows
        ]

    @staticmethod
    def _load_limitations(db: Session, member_id: UUID) -> List[LimitationEntry]:
        rows = db.execute(
            select(MemberLimitation)
            .where(MemberLimitation.member_id == member_id, MemberLimitation.active.is_(True))
            .order_by(MemberLimitation.created_at, MemberLimitation.id)
        ).scalars().all()
        return [
            LimitationEntry(
                type=l.type,
                description=l.description,
                severity=l.severity or "moderate",
                affected_areas=list(l.affected_areas or []),
            )
            for l in rows
        ]

    @staticmethod
    def _load_personal_records(db: Session, member_id: UUID) -> List[PersonalRecordEntry]:
        rows = db.execute(
            select(PersonalRecord, Exercise.name)
            .outerjoin(Exercise, Exercise.id == PersonalRecord.exercise_id)
            .where(PersonalRecord.member_id == member_id)
            .order_by(PersonalRecord.date.desc())
            .limit(MAX_PERSONAL_RECORDS)
        ).all()
        return [
            PersonalRecordEntry(
                exercise=exercise_name or "Unknown",
                value=pr.value,
                unit=pr.unit,
                rep_max=pr.rep_max,
                date=_iso(pr.date),
            )
            for pr, exercise_name in rows
        ]

    @staticmethod
    def _load_sessions(db: Session, member_id: UUID) -> List[SessionRow]:
        rows = db.execute(
            select(WorkoutSession)
            .where(WorkoutSession.member_id == member_id)
            .order_by(WorkoutSession.date.desc())
            .limit(MAX_RECENT_SESSIONS)
        ).scalars().all()
        return [
            SessionRow(
                id=s.id,
                date=as_utc(s.date),
                start_time=as_utc(s.start_time),
                end_time=as_utc(s.end_time),
                status=s.status,
                rating=s.rating,
            )
            for s in rows
        ]

    @staticmethod
    def _load_skills(db: Session, member_id: UUID) -> List[SkillEntry]:
        rows = db.execute(
            select(MemberSkill)
            .where(MemberSkill.member_id == member_id)
            .order_by(MemberSkill.created_at, MemberSkill.id)
        ).scalars().all()
        return [SkillEntry(name=s.name, status=s.current_status, category=s.category) for s in rows]

    @staticmethod
    def _load_latest_metric(db: Session, member_id: UUID) -> Optional[Dict]:
        m = db.execute(
            select(MemberMetric)
            .where(MemberMetric.member_id == member_id)
            .order_by(MemberMetric.date.desc())
            .limit(1)
        ).scalar_one_or_none()
        if m is None:
            return None
        return {
            "weight": m.weight,
            "body_fat_percentage": m.body_fat_percentage,
            "fitness_level": m.fitness_level,
        }

    def _load_sources(self, member_id: UUID) -> SourceData:
        readers = {
            "training_age": self._load_training_age,
            "goals": self._load_goals,
            "limitations": self._load_limitations,
            "personal_records": self._load_personal_records,
            "sessions": self._load_sessions,
            "skills": self._load_skills,
            "metric": self._load_latest_metric,
        }
        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="snapshot-read") as pool:
            futures = {name: pool.submit(self._read, fn, member_id) for name, fn in readers.items()}
            # .result() re-raises the first read failure; the member's rebuild fails as a unit
            results = {name: future.result() for name, future in futures.items()}
        return SourceData(**results)

    # ------------------------------------------------------------------
    # Level 2 read
    # ------------------------------------------------------------------

    def _load_session_exercises(self, session_ids: List[UUID]):
        """(muscle groups per session, exercise count per session)."""
        muscles: Dict[UUID, Set[str]] = {sid: set() for sid in session_ids}
        counts: Dict[UUID, int] = {sid: 0 for sid in session_ids}
        if not session_ids:
            return muscles, counts

        with self.session_factory() as db:
            rows = db.execute(
                select(WorkoutSessionExercise.session_id, Exercise.muscle_groups)
                .outerjoin(Exercise, Exercise.id == WorkoutSessionExercise.exercise_id)
                .where(WorkoutSessionExercise.session_id.in_(session_ids))
            ).all()

        for session_id, muscle_groups in rows:
            counts[session_id] += 1
            muscles[session_id].update(muscle_groups or [])
        return muscles, counts

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def compute(self, member_id: UUID, now: Optional[datetime] = None) -> SnapshotFields:
        now = as_utc(now) or datetime.now(timezone.utc)

        sources = self._load_sources(member_id)

        recovery_sessions = select_recovery_sessions(sources.sessions)
        muscles_by_session, exercise_counts = self._load_session_exercises(
            [s.id for s in recovery_sessions]
        )
        recovery = classify_recovery(build_activity(recovery_sessions, muscles_by_session), now=now)

        weeks = training_weeks(sources.sessions, now)
        metric = sources.metric or {}
        newest = sources.sessions[0] if sources.sessions else None

        return SnapshotFields(
            current_weight=metric.get("weight"),
            current_body_fat=metric.get("body_fat_percentage"),
            fitness_level=metric.get("fitness_level"),
            training_age=sources.training_age,
            active_limitations=sources.limitations,
            active_goals=sources.goals,
            personal_records=sources.personal_records,
            skills=sources.skills,
            muscle_recovery_status=recovery_to_json(recovery),
            weekly_workout_avg=weekly_workout_average(sources.sessions, now),
            avg_workout_duration=average_duration_minutes(sources.sessions),
            consecutive_training_weeks=weeks,
            needs_deload=needs_deload(weeks, recovery_sessions, exercise_counts),
            last_workout_date=newest.end_time if newest else None,
        )

    def rebuild(self, member_id: UUID, now: Optional[datetime] = None) -> int:
        """Compute and upsert in one go. Returns the new snapshot version."""
        fields = self.compute(member_id, now=now)
        with self.session_factory() as db:
            return SnapshotStore(db).write(member_id, fields, now=now)
