"""
Tests for the snapshot builder.

Covers:
- Derived training metrics (weekly average, average duration, training weeks)
- Deload rule
- Source reads (goals, limitations, PRs, skills, latest metric)
- Recovery from the newest completed sessions only
- Member with no data
- rebuild() writes a versioned snapshot
"""

from datetime import timedelta
from uuid import uuid4

import pytest

from models import Goal, MemberLimitation, MemberMetric, MemberSkill, PersonalRecord
from services.recovery_model import STATUS_FATIGUED, STATUS_READY
from services.snapshot_builder import (
    SessionRow,
    SnapshotBuilder,
    average_duration_minutes,
    goal_progress,
    needs_deload,
    training_weeks,
    weekly_workout_average,
)
from services.snapshot_store import SnapshotStore


def _row(now, days_ago, status="completed", rating=None, minutes=60):
    end = now - timedelta(days=days_ago)
    return SessionRow(
        id=uuid4(),
        date=end - timedelta(minutes=minutes),
        start_time=end - timedelta(minutes=minutes),
        end_time=end if status == "completed" else None,
        status=status,
        rating=rating,
    )


class TestDerivedMetrics:
    def test_weekly_average_is_half_of_two_week_count(self, now):
        sessions = [_row(now, d) for d in (1, 3, 5, 9, 20)] + [_row(now, 2, status="planned")]
        assert weekly_workout_average(sessions, now) == 2.0

    def test_average_duration_in_minutes(self, now):
        sessions = [_row(now, 1, minutes=45), _row(now, 2, minutes=75), _row(now, 3, status="planned")]
        assert average_duration_minutes(sessions) == 60

    def test_average_duration_none_without_timed_sessions(self, now):
        assert average_duration_minutes([_row(now, 1, status="planned")]) is None

    def test_training_weeks_counts_distinct_buckets(self, now):
        sessions = [_row(now, d) for d in (1, 2, 8, 16, 23)]
        assert training_weeks(sessions, now) == 4

    def test_goal_progress(self):
        assert goal_progress(180, 225) == pytest.approx(80.0)
        assert goal_progress(50, None) == 0.0
        assert goal_progress(None, 100) == 0.0


class TestDeload:
    def test_four_weeks_without_backing_off(self, now):
        sessions = [_row(now, d, rating=4) for d in (1, 8)]
        counts = {s.id: 6 for s in sessions}
        assert needs_deload(4, sessions, counts) is True

    def test_fewer_than_four_weeks(self, now):
        assert needs_deload(3, [_row(now, 1)], {}) is False

    def test_light_low_rated_session_counts_as_backing_off(self, now):
        light = _row(now, 1, rating=2)
        sessions = [light, _row(now, 8, rating=5)]
        counts = {light.id: 3, sessions[1].id: 6}
        assert needs_deload(5, sessions, counts) is False

    def test_low_rated_but_full_session_does_not_count(self, now):
        heavy = _row(now, 1, rating=3)
        assert needs_deload(4, [heavy], {heavy.id: 5}) is True


@pytest.mark.db
class TestCompute:
    def test_member_without_data(self, session_factory, make_member, now):
        member = make_member(training_age=None)

        fields = SnapshotBuilder(session_factory, max_workers=2).compute(member.id, now=now)

        assert fields.active_goals == []
        assert fields.active_limitations == []
        assert fields.personal_records == []
        assert fields.skills == []
        assert fields.weekly_workout_avg == 0
        assert fields.avg_workout_duration is None
        assert fields.consecutive_training_weeks == 0
        assert fields.needs_deload is False
        assert fields.last_workout_date is None
        assert all(e.status == STATUS_READY for e in fields.muscle_recovery_status.values())
        assert all(e.hours_since_worked is None for e in fields.muscle_recovery_status.values())

    def test_sources_are_mapped(self, db_session, session_factory, make_member, make_exercise, now):
        member = make_member()
        bench = make_exercise("Barbell Bench Press", ["chest", "triceps"])
        db_session.add_all(
            [
                Goal(id=uuid4(), member_id=member.id, title="Bench 225", category="strength",
                     target_value=225, current_value=180, status="active"),
                Goal(id=uuid4(), member_id=member.id, title="Old goal", category="strength",
                     target_value=100, current_value=100, status="completed"),
                MemberLimitation(id=uuid4(), member_id=member.id, type="injury", description="Left knee",
                                 severity=None, affected_areas=["knee"], active=True),
                MemberLimitation(id=uuid4(), member_id=member.id, type="injury", description="Healed wrist",
                                 affected_areas=["wrist"], active=False),
                MemberSkill(id=uuid4(), member_id=member.id, name="Handstand", category="gymnastics",
                            current_status="learning"),
                PersonalRecord(id=uuid4(), member_id=member.id, exercise_id=bench.id, value=185, unit="lbs",
                               rep_max=1, date=now - timedelta(days=3)),
                MemberMetric(id=uuid4(), member_id=member.id, date=now - timedelta(days=30), weight=190,
                             fitness_level="beginner"),
                MemberMetric(id=uuid4(), member_id=member.id, date=now - timedelta(days=1), weight=185,
                             body_fat_percentage=18.5, fitness_level="intermediate"),
            ]
        )
        db_session.commit()

        fields = SnapshotBuilder(session_factory).compute(member.id, now=now)

        assert [g.title for g in fields.active_goals] == ["Bench 225"]
        assert fields.active_goals[0].progress_percent == pytest.approx(80.0)
        assert [l.description for l in fields.active_limitations] == ["Left knee"]
        assert fields.active_limitations[0].severity == "moderate"
        assert fields.skills[0].name == "Handstand"
        assert fields.personal_records[0].exercise == "Barbell Bench Press"
        assert fields.current_weight == 185
        assert fields.current_body_fat == 18.5
        assert fields.fitness_level == "intermediate"
        assert fields.training_age == "intermediate"

    def test_recovery_and_training_metrics(self, session_factory, make_member, make_exercise, make_session, now):
        member = make_member()
        bench = make_exercise("Bench Press", ["chest", "triceps"])
        squat = make_exercise("Back Squat", ["quadriceps", "glutes"])

        make_session(member, now - timedelta(hours=10), [squat], minutes=50)
        make_session(member, now - timedelta(hours=40), [bench], minutes=70)
        make_session(member, now - timedelta(days=9), [bench, squat], minutes=60)
        make_session(member, now + timedelta(days=1), status="planned")

        fields = SnapshotBuilder(session_factory).compute(member.id, now=now)

        recovery = fields.muscle_recovery_status
        assert recovery["quadriceps"].status == STATUS_FATIGUED
        assert recovery["quadriceps"].hours_since_worked == 10
        assert recovery["chest"].status == "recovering"
        assert recovery["chest"].hours_since_worked == 40
        assert recovery["core"].status == STATUS_READY
        assert recovery["core"].hours_since_worked is None

        assert fields.weekly_workout_avg == 1.5
        assert fields.avg_workout_duration == 60
        assert fields.consecutive_training_weeks == 2
        assert fields.needs_deload is False
        # The planned session is newest by date but has no end time.
        assert fields.last_workout_date is None

    def test_last_workout_date_is_newest_session_end(self, session_factory, make_member, make_exercise,
                                                     make_session, now):
        member = make_member()
        press = make_exercise("Overhead Press", ["shoulders"])
        make_session(member, now - timedelta(days=3), [press])
        latest = make_session(member, now - timedelta(hours=6), [press])

        fields = SnapshotBuilder(session_factory).compute(member.id, now=now)

        assert fields.last_workout_date.replace(tzinfo=None) == latest.end_time.replace(tzinfo=None)

    def test_only_seven_newest_sessions_feed_recovery(self, session_factory, make_member, make_exercise,
                                                      make_session, now):
        member = make_member()
        plank = make_exercise("Plank", ["core"])
        curl = make_exercise("Curl", ["biceps"])
        # Eighth-newest session is the only one that hit biceps.
        make_session(member, now - timedelta(hours=30), [curl])
        for i in range(7):
            make_session(member, now - timedelta(hours=1 + i), [plank], minutes=20)

        fields = SnapshotBuilder(session_factory).compute(member.id, now=now)

        assert fields.muscle_recovery_status["biceps"].hours_since_worked is None
        assert fields.muscle_recovery_status["core"].hours_since_worked == 1


@pytest.mark.db
class TestRebuild:
    def test_rebuild_writes_and_increments(self, db_session, session_factory, make_member, now):
        member = make_member()
        builder = SnapshotBuilder(session_factory)

        assert builder.rebuild(member.id, now=now) == 1
        assert builder.rebuild(member.id, now=now) == 2

        snapshot = SnapshotStore(db_session).read_fresh(member.id)
        assert snapshot.snapshot_version == 2
        assert snapshot.last_updated == now
