"""
Muscle Recovery Model

Classifies each muscle group in a fixed catalog by time since it was last
worked against a required recovery window:
- ready: elapsed >= required
- recovering: elapsed >= 75% of required
- fatigued: otherwise

Pure function of the input activity and `now`. Only the most recent
completed sessions feed it (see select_recovery_sessions), so a snapshot
rebuild never scans full history.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set

# Required recovery hours per muscle group.
RECOVERY_HOURS: Dict[str, int] = {
    "chest": 48,
    "back": 48,
    "shoulders": 48,
    "biceps": 36,
    "triceps": 36,
    "quadriceps": 72,
    "hamstrings": 72,
    "glutes": 48,
    "calves": 36,
    "core": 24,
}

RECOVERING_FRACTION = 0.75
MAX_RECOVERY_SESSIONS = 7

STATUS_READY = "ready"
STATUS_RECOVERING = "recovering"
STATUS_FATIGUED = "fatigued"


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes (SQLite round-trips) as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass
class WorkoutActivity:
    date: datetime
    muscles_worked: Set[str] = field(default_factory=set)


@dataclass
class MuscleRecovery:
    status: str
    hours_since_worked: float  # math.inf when never worked
    ready_to_train: bool

    def to_dict(self) -> Dict:
        hours = None if math.isinf(self.hours_since_worked) else self.hours_since_worked
        return {
            "status": self.status,
            "hours_since_worked": hours,
            "ready_to_train": self.ready_to_train,
        }

    @classmethod
    def from_dict(cls, data: Mapping) -> "MuscleRecovery":
        hours = data.get("hours_since_worked")
        return cls(
            status=data.get("status", STATUS_READY),
            hours_since_worked=math.inf if hours is None else hours,
            ready_to_train=bool(data.get("ready_to_train", True)),
        )


def _classify(hours_since: int, required_hours: int) -> str:
    if hours_since >= required_hours:
        return STATUS_READY
    if hours_since >= required_hours * RECOVERING_FRACTION:
        return STATUS_RECOVERING
    return STATUS_FATIGUED


def classify_recovery(
    activity: Iterable[WorkoutActivity],
    now: Optional[datetime] = None,
) -> Dict[str, MuscleRecovery]:
    """
    Map every catalog muscle to its recovery state.

    Muscle names are matched case-insensitively; names outside the catalog
    are ignored. Elapsed time is floored to whole hours.
    """
    now = as_utc(now) or datetime.now(timezone.utc)

    last_worked: Dict[str, datetime] = {}
    for entry in activity:
        worked_at = as_utc(entry.date)
        if worked_at is None:
            continue
        for muscle in entry.muscles_worked or ():
            key = muscle.lower()
            if key not in RECOVERY_HOURS:
                continue
            if key not in last_worked or worked_at > last_worked[key]:
                last_worked[key] = worked_at

    result: Dict[str, MuscleRecovery] = {}
    for muscle, required_hours in RECOVERY_HOURS.items():
        worked_at = last_worked.get(muscle)
        if worked_at is None:
            result[muscle] = MuscleRecovery(
                status=STATUS_READY, hours_since_worked=math.inf, ready_to_train=True
            )
            continue

        hours_since = math.floor((now - worked_at).total_seconds() / 3600)
        status = _classify(hours_since, required_hours)
        result[muscle] = MuscleRecovery(
            status=status,
            hours_since_worked=hours_since,
            ready_to_train=status == STATUS_READY,
        )

    return result


def select_recovery_sessions(sessions: Sequence) -> List:
    """
    Most recent completed sessions with a recorded end time.

    `sessions` must already be ordered newest first.
    """
    eligible = [s for s in sessions if s.status == "completed" and s.end_time is not None]
    return eligible[:MAX_RECOVERY_SESSIONS]


def build_activity(
    sessions: Sequence,
    muscles_by_session: Mapping,
) -> List[WorkoutActivity]:
    """Pair each selected session's end time with the muscle groups its exercises hit."""
    return [
        WorkoutActivity(date=s.end_time, muscles_worked=set(muscles_by_session.get(s.id, ())))
        for s in sessions
    ]


def recovery_to_json(recovery: Mapping[str, MuscleRecovery]) -> Dict[str, Dict]:
    return {muscle: state.to_dict() for muscle, state in recovery.items()}


def recovery_from_json(data: Optional[Mapping]) -> Dict[str, MuscleRecovery]:
    if not data:
        return {}
    return {muscle: MuscleRecovery.from_dict(state) for muscle, state in data.items()}


def ready_muscles(recovery: Mapping[str, MuscleRecovery]) -> List[str]:
    return [m for m, s in recovery.items() if s.ready_to_train]


def recovering_muscles(recovery: Mapping[str, MuscleRecovery]) -> List[str]:
    return [m for m, s in recovery.items() if not s.ready_to_train]
