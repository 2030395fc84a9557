"""
Pytest configuration and fixtures

Every test gets its own SQLite database file, created from the models and
discarded afterwards. Redis is replaced by an in-memory FakeRedis for the
whole run, so no test needs a running Postgres or Redis.
"""
import os
import sys
import tempfile
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

# Add the parent directory to the path so we can import from services
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Must be set before core.config is imported anywhere.
os.environ.setdefault(
    "DATABASE_URL", f"sqlite:///{os.path.join(tempfile.gettempdir(), 'coach_engine_test.db')}"
)
os.environ.setdefault("ENVIRONMENT", "test")

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import core.cache
import core.cooldown
from core.database import Base
from models import (
    Exercise,
    Member,
    WorkoutSession,
    WorkoutSessionExercise,
)
from services.llm_provider import TextGeneration


class FakeRedis:
    """Minimal in-memory Redis mock for unit tests."""

    def __init__(self):
        self._store: dict = {}
        self._ttls: dict = {}

    def get(self, key):
        return self._store.get(key)

    def set(self, key, value, nx=False, ex=None):
        if nx and key in self._store:
            return None
        self._store[key] = value
        if ex:
            self._ttls[key] = ex
        return True

    def setex(self, key, ttl, value):
        self._store[key] = value
        self._ttls[key] = ttl

    def ttl(self, key):
        if key not in self._store:
            return -2
        return self._ttls.get(key, -1)

    def delete(self, *keys):
        for k in keys:
            self._store.pop(k, None)
            self._ttls.pop(k, None)

    def exists(self, key):
        return key in self._store

    def ping(self):
        return True


@pytest.fixture(autouse=True)
def fake_redis(monkeypatch):
    """Every test talks to a fresh FakeRedis through core.cache.get_redis_client()."""
    r = FakeRedis()
    monkeypatch.setattr(core.cache, "_redis_client", r)
    monkeypatch.setattr(core.cooldown, "_fallback_store", None)
    return r


@pytest.fixture
def engine(tmp_path):
    eng = create_engine(
        f"sqlite:///{tmp_path / 'test.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def now():
    return datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def make_member(db_session):
    def _make(name: str = "Test Member", training_age: str = "intermediate", created_at=None) -> Member:
        member = Member(id=uuid4(), name=name, training_age=training_age)
        if created_at is not None:
            member.created_at = created_at
        db_session.add(member)
        db_session.commit()
        return member

    return _make


@pytest.fixture
def make_exercise(db_session):
    def _make(name: str, muscle_groups) -> Exercise:
        exercise = Exercise(id=uuid4(), name=name, category="strength", muscle_groups=list(muscle_groups))
        db_session.add(exercise)
        db_session.commit()
        return exercise

    return _make


@pytest.fixture
def make_session(db_session):
    """Completed workout session ending at `end`, lasting `minutes`, with the given exercises."""

    def _make(member: Member, end: datetime, exercises=(), minutes: int = 60, status: str = "completed", rating=None):
        session = WorkoutSession(
            id=uuid4(),
            member_id=member.id,
            date=end - timedelta(minutes=minutes),
            start_time=end - timedelta(minutes=minutes),
            end_time=end if status == "completed" else None,
            status=status,
            rating=rating,
        )
        db_session.add(session)
        for order, exercise in enumerate(exercises):
            db_session.add(
                WorkoutSessionExercise(id=uuid4(), session_id=session.id, exercise_id=exercise.id, order=order)
            )
        db_session.commit()
        return session

    return _make


class FakeProvider:
    """
    Stand-in for OpenAIProvider.

    structured: what generate_structured returns (or raises, if an exception).
    """

    def __init__(self, structured=None, text="Sounds good.", conversation_id="conv_123", fail_conversation=False):
        self.structured = structured
        self.text = text
        self.conversation_id = conversation_id
        self.fail_conversation = fail_conversation
        self.structured_calls = []
        self.text_calls = []
        self.conversations_created = 0
        self._responses = 0

    def generate_structured(self, system, prompt, schema, model=None):
        self.structured_calls.append({"system": system, "prompt": prompt, "schema": schema})
        if isinstance(self.structured, Exception):
            raise self.structured
        return self.structured

    def generate_text(self, system, prompt, conversation_id=None, previous_response_id=None, model=None):
        self._responses += 1
        self.text_calls.append(
            {
                "system": system,
                "prompt": prompt,
                "conversation_id": conversation_id,
                "previous_response_id": previous_response_id,
            }
        )
        return TextGeneration(text=self.text, response_id=f"resp_{self._responses}")

    def create_conversation(self, metadata=None):
        if self.fail_conversation:
            raise RuntimeError("conversations API unavailable")
        self.conversations_created += 1
        return self.conversation_id


@pytest.fixture
def fake_provider_cls():
    return FakeProvider
