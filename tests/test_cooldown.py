"""
Tests for cooldown stores and the per-member rebuild enqueue guard.
"""

from unittest.mock import MagicMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

import core.cache
from core.cooldown import CooldownStore, InMemoryCooldownStore, RedisCooldownStore, get_cooldown_store


class FakeClock:
    def __init__(self):
        self.t = 1000.0

    def __call__(self):
        return self.t


class TestInMemoryCooldownStore:
    def test_first_call_proceeds_second_is_limited(self):
        clock = FakeClock()
        store = InMemoryCooldownStore(clock=clock)

        assert store.acquire("cron:snapshots", 120) is None
        clock.t += 30
        assert store.acquire("cron:snapshots", 120) == 90

    def test_window_expiry_allows_again(self):
        clock = FakeClock()
        store = InMemoryCooldownStore(clock=clock)
        store.acquire("k", 60)

        clock.t += 60

        assert store.acquire("k", 60) is None

    def test_keys_are_independent(self):
        store = InMemoryCooldownStore(clock=FakeClock())
        assert store.acquire("a", 60) is None
        assert store.acquire("b", 60) is None

    def test_retry_after_is_at_least_one_second(self):
        clock = FakeClock()
        store = InMemoryCooldownStore(clock=clock)
        store.acquire("k", 60)
        clock.t += 59.9

        assert store.acquire("k", 60) == 1

    def test_reset(self):
        store = InMemoryCooldownStore(clock=FakeClock())
        store.acquire("k", 60)
        store.reset("k")
        assert store.acquire("k", 60) is None


class TestRedisCooldownStore:
    def test_set_nx_then_ttl(self, fake_redis):
        store = RedisCooldownStore(fake_redis)

        assert store.acquire("cron:snapshots", 120) is None
        assert fake_redis.ttl("cooldown:cron:snapshots") == 120
        assert store.acquire("cron:snapshots", 120) == 120

    def test_redis_error_fails_open(self):
        client = MagicMock()
        client.set.side_effect = RedisConnectionError("down")

        assert RedisCooldownStore(client).acquire("k", 60) is None


class TestGetCooldownStore:
    def test_redis_backed_when_available(self, fake_redis):
        assert isinstance(get_cooldown_store(), RedisCooldownStore)

    def test_falls_back_to_shared_in_memory_store(self, monkeypatch):
        monkeypatch.setattr(core.cache, "_redis_client", None)
        with patch("core.cooldown.get_redis_client", return_value=None):
            first = get_cooldown_store()
            second = get_cooldown_store()

        assert isinstance(first, InMemoryCooldownStore)
        assert first is second


class TestEnqueueSnapshotRebuild:
    def test_second_enqueue_within_cooldown_is_skipped(self):
        from tasks.snapshot_tasks import enqueue_snapshot_rebuild

        store = InMemoryCooldownStore(clock=FakeClock())
        with patch("tasks.snapshot_tasks.rebuild_member_snapshot") as task:
            assert enqueue_snapshot_rebuild("m-1", cooldown_store=store) is True
            assert enqueue_snapshot_rebuild("m-1", cooldown_store=store) is False
            assert enqueue_snapshot_rebuild("m-2", cooldown_store=store) is True

        assert task.delay.call_count == 2
        task.delay.assert_any_call("m-1")


class TestCooldownStoreInterface:
    def test_base_store_cannot_be_instantiated(self):
        with pytest.raises(TypeError):
            CooldownStore()

    def test_concrete_stores_implement_acquire(self, fake_redis):
        assert isinstance(InMemoryCooldownStore(), CooldownStore)
        assert isinstance(RedisCooldownStore(fake_redis), CooldownStore)
