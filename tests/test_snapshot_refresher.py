"""
Tests for the snapshot refresher sweep.

Covers:
- Per-member failure isolation
- Batch size bound
- Time budget: partial results, remaining members counted as skipped
- A hung rebuild is cut off at the budget
- Fresh snapshots are left alone
"""

import threading
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from schemas import SnapshotFields
from services.snapshot_builder import SnapshotBuilder
from services.snapshot_refresher import SnapshotRefresher, run_snapshot_refresh
from services.snapshot_store import SnapshotStore

pytestmark = pytest.mark.db


class FailingBuilder(SnapshotBuilder):
    """Real builder that raises for selected members."""

    def __init__(self, session_factory, fail_for):
        super().__init__(session_factory)
        self.fail_for = set(fail_for)
        self.calls = []

    def rebuild(self, member_id, now=None):
        self.calls.append(member_id)
        if member_id in self.fail_for:
            raise RuntimeError("source read failed")
        return super().rebuild(member_id, now=now)


class StepClock:
    """Advances by `step` seconds on every call."""

    def __init__(self, step: float):
        self.t = 0.0
        self.step = step

    def __call__(self) -> float:
        current = self.t
        self.t += self.step
        return current


def _backdate(db_session, member_ids, when):
    store = SnapshotStore(db_session)
    for member_id in member_ids:
        store.write(member_id, SnapshotFields(), now=when)


def test_one_failure_does_not_abort_batch(db_session, session_factory, make_member):
    m1, m2, m3 = make_member("one"), make_member("two"), make_member("three")
    stale = datetime.now(timezone.utc) - timedelta(hours=2)
    _backdate(db_session, [m1.id, m2.id, m3.id], stale)

    builder = FailingBuilder(session_factory, fail_for=[m2.id])
    refresher = SnapshotRefresher(SnapshotStore(db_session), builder, batch_size=10, budget_s=60)

    result = refresher.run()

    assert result.updated == 2
    assert result.errors == 1
    assert result.skipped == 0
    assert result.timed_out is False
    assert result.failed_member_ids == [str(m2.id)]
    assert set(builder.calls) == {m1.id, m2.id, m3.id}

    store = SnapshotStore(db_session)
    assert store.read_fresh(m1.id).last_updated > stale
    assert store.read_fresh(m3.id).last_updated > stale
    assert store.read_fresh(m2.id).last_updated == stale
    assert store.read_fresh(m1.id).snapshot_version == 2
    assert store.read_fresh(m2.id).snapshot_version == 1


def test_batch_size_bounds_work(db_session, session_factory, make_member):
    for i in range(5):
        make_member(f"m{i}")

    builder = FailingBuilder(session_factory, fail_for=[])
    result = SnapshotRefresher(SnapshotStore(db_session), builder, batch_size=2, budget_s=60).run()

    assert result.updated == 2
    assert len(builder.calls) == 2


def test_budget_exhaustion_reports_partial_results(db_session, session_factory, make_member):
    for i in range(4):
        make_member(f"m{i}")

    # Each clock read advances 10s; budget allows the first member only.
    builder = FailingBuilder(session_factory, fail_for=[])
    refresher = SnapshotRefresher(
        SnapshotStore(db_session), builder, batch_size=10, budget_s=15, clock=StepClock(10)
    )

    result = refresher.run()

    assert result.timed_out is True
    assert result.updated == 1
    assert result.skipped == 3
    assert result.updated + result.errors + result.skipped == 4


class HangingBuilder(SnapshotBuilder):
    """Blocks in rebuild until released."""

    def __init__(self, session_factory):
        super().__init__(session_factory)
        self.release = threading.Event()

    def rebuild(self, member_id, now=None):
        self.release.wait(timeout=5)
        return 1


def test_hung_rebuild_is_bounded_by_budget(db_session, session_factory, make_member):
    for i in range(3):
        make_member(f"m{i}")

    builder = HangingBuilder(session_factory)
    refresher = SnapshotRefresher(SnapshotStore(db_session), builder, batch_size=10, budget_s=0.3)

    try:
        result = refresher.run()
    finally:
        builder.release.set()

    assert result.timed_out is True
    assert result.errors == 1
    assert result.skipped == 2
    assert len(result.failed_member_ids) == 1
    assert result.elapsed_ms < 2000


def test_fresh_snapshots_are_not_rebuilt(db_session, session_factory, make_member):
    member = make_member()
    SnapshotBuilder(session_factory).rebuild(member.id)

    result = run_snapshot_refresh(db_session, session_factory)

    assert result.updated == 0
    assert result.errors == 0
    assert SnapshotStore(db_session).read_fresh(member.id).snapshot_version == 1


def test_beat_task_reports_sweep(db_session, session_factory, make_member):
    from tasks.snapshot_tasks import refresh_member_snapshots

    make_member()
    with patch("tasks.snapshot_tasks.get_db_sync", side_effect=session_factory), patch(
        "tasks.snapshot_tasks.get_session_factory", return_value=session_factory
    ):
        result = refresh_member_snapshots.run()

    assert result["status"] == "ok"
    assert result["updated"] == 1
    assert result["errors"] == 0


def test_memory_task_skips_without_provider():
    from tasks.memory_tasks import extract_coaching_memories

    with patch("tasks.memory_tasks.get_provider", return_value=None):
        result = extract_coaching_memories.run("00000000-0000-0000-0000-000000000000")

    assert result == {"status": "skipped", "reason": "no_provider"}


def test_rebuild_task_returns_new_version(session_factory, make_member):
    from tasks.snapshot_tasks import rebuild_member_snapshot

    member = make_member()
    with patch("tasks.snapshot_tasks.get_session_factory", return_value=session_factory):
        result = rebuild_member_snapshot.run(str(member.id))

    assert result == {"status": "ok", "member_id": str(member.id), "snapshot_version": 1}


def test_rebuild_task_failure_goes_to_retry(session_factory):
    from tasks.snapshot_tasks import rebuild_member_snapshot

    with patch("tasks.snapshot_tasks.SnapshotBuilder") as builder_cls:
        builder_cls.return_value.rebuild.side_effect = RuntimeError("source read failed")
        # Called directly, Celery's retry re-raises the original error.
        with pytest.raises(RuntimeError, match="source read failed"):
            rebuild_member_snapshot.run("00000000-0000-0000-0000-000000000001")
