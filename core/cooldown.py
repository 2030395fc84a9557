"""
Cooldown store

Minimum-interval guard keyed by a logical name (a trigger endpoint, a
member's background rebuild). Callers receive the store explicitly so the
cooldown is shared by every process that talks to the same backend.

- RedisCooldownStore: SET NX EX, shared across API instances and workers
- InMemoryCooldownStore: single-process only (tests, local development);
  each process keeps its own map, so it does not hold under horizontal scaling
"""

import logging
import math
import threading
import time
from abc import ABC, abstractmethod
from typing import Dict, Optional

from redis.exceptions import RedisError

from core.cache import get_redis_client

logger = logging.getLogger(__name__)


class CooldownStore(ABC):
    """Minimum-interval guard shared by the trigger endpoint and rebuild enqueues."""

    @abstractmethod
    def acquire(self, key: str, window_s: int) -> Optional[int]:
        """None when the caller may proceed, otherwise the retry-after seconds."""
        pass


class RedisCooldownStore(CooldownStore):
    def __init__(self, client, prefix: str = "cooldown"):
        self._client = client
        self._prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self._prefix}:{key}"

    def acquire(self, key: str, window_s: int) -> Optional[int]:
        redis_key = self._key(key)
        try:
            acquired = self._client.set(redis_key, str(int(time.time())), nx=True, ex=window_s)
            if acquired:
                return None
            remaining = self._client.ttl(redis_key)
            # -1 (no expiry) / -2 (expired between calls) fall back to the full window
            if remaining is None or remaining < 0:
                return max(1, int(window_s))
            return max(1, int(remaining))
        except RedisError as e:
            logger.warning(f"Cooldown check failed for {key}: {e}. Proceeding.")
            return None  # fail open


class InMemoryCooldownStore(CooldownStore):
    """
    Process-local cooldown map.

    Not shared between processes: two API instances each allow one call per
    window. Use RedisCooldownStore anywhere more than one process serves traffic.
    """

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._until: Dict[str, float] = {}
        self._lock = threading.Lock()

    def acquire(self, key: str, window_s: int) -> Optional[int]:
        with self._lock:
            now = self._clock()
            until = self._until.get(key)
            if until is not None and now < until:
                return max(1, math.ceil(until - now))
            self._until[key] = now + window_s
            return None

    def reset(self, key: Optional[str] = None) -> None:
        with self._lock:
            if key is None:
                self._until.clear()
            else:
                self._until.pop(key, None)


_fallback_store: Optional[InMemoryCooldownStore] = None


def get_cooldown_store() -> CooldownStore:
    """FastAPI dependency: Redis-backed store, or the in-process fallback when Redis is down."""
    global _fallback_store

    client = get_redis_client()
    if client is not None:
        return RedisCooldownStore(client)

    if _fallback_store is None:
        _fallback_store = InMemoryCooldownStore()
    logger.warning("Redis unavailable: cooldowns are enforced per process only")
    return _fallback_store
