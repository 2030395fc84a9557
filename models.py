from sqlalchemy import Column, Integer, Boolean, Float, DateTime, ForeignKey, Text, Index, JSON, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func
from core.database import Base
import uuid

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests).
JSONType = JSON().with_variant(JSONB(), "postgresql")
UUIDType = Uuid(as_uuid=True)


class Member(Base):
    __tablename__ = "member"

    id = Column(UUIDType, primary_key=True, default=uuid.uuid4)
    name = Column(Text, nullable=False)
    training_age = Column(Text, nullable=True)  # beginner, intermediate, advanced
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


# ============================================================================
# SOURCE TABLES
# Authoritative member data. Only the columns the context pipeline reads
# are modelled here; CRUD for these tables lives elsewhere.
# ============================================================================

class MemberMetric(Base):
    __tablename__ = "member_metrics"

    id = Column(UUIDType, primary_key=True, default=uuid.uuid4)
    member_id = Column(UUIDType, ForeignKey("member.id", ondelete="CASCADE"), nullable=False, index=True)
    date = Column(DateTime(timezone=True), nullable=False)
    weight = Column(Float, nullable=True)  # lbs
    body_fat_percentage = Column(Float, nullable=True)
    fitness_level = Column(Text, nullable=True)  # beginner, intermediate, advanced, elite


class MemberLimitation(Base):
    __tablename__ = "member_limitations"

    id = Column(UUIDType, primary_key=True, default=uuid.uuid4)
    member_id = Column(UUIDType, ForeignKey("member.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(Text, nullable=False)  # injury, condition, preference
    description = Column(Text, nullable=False)
    severity = Column(Text, nullable=True)  # mild, moderate, severe
    affected_areas = Column(JSONType, nullable=True)
    active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class Goal(Base):
    __tablename__ = "goals"

    id = Column(UUIDType, primary_key=True, default=uuid.uuid4)
    member_id = Column(UUIDType, ForeignKey("member.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(Text, nullable=False)
    category = Column(Text, nullable=False)  # strength, cardio, skill, weight, flexibility, endurance
    target_value = Column(Float, nullable=True)
    target_unit = Column(Text, nullable=True)
    current_value = Column(Float, nullable=True)
    target_date = Column(DateTime(timezone=True), nullable=True)
    status = Column(Text, default="active", nullable=False)  # active, completed, abandoned
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("ix_goals_member_status", "member_id", "status"),
    )


class MemberSkill(Base):
    __tablename__ = "member_skills"

    id = Column(UUIDType, primary_key=True, default=uuid.uuid4)
    member_id = Column(UUIDType, ForeignKey("member.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(Text, nullable=False)
    category = Column(Text, nullable=False)  # gymnastics, calisthenics, sport, other
    current_status = Column(Text, default="learning", nullable=False)  # learning, achieved, mastered
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class Exercise(Base):
    __tablename__ = "exercises"

    id = Column(UUIDType, primary_key=True, default=uuid.uuid4)
    name = Column(Text, nullable=False)
    category = Column(Text, nullable=False, default="strength")
    muscle_groups = Column(JSONType, nullable=True)  # primary muscles targeted


class PersonalRecord(Base):
    __tablename__ = "personal_records"

    id = Column(UUIDType, primary_key=True, default=uuid.uuid4)
    member_id = Column(UUIDType, ForeignKey("member.id", ondelete="CASCADE"), nullable=False)
    exercise_id = Column(UUIDType, ForeignKey("exercises.id", ondelete="CASCADE"), nullable=False)
    value = Column(Float, nullable=False)
    unit = Column(Text, nullable=False)  # lbs, kg, reps, seconds
    rep_max = Column(Integer, nullable=True)  # 1RM, 3RM, 5RM
    date = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_personal_records_member_date", "member_id", "date"),
    )


class WorkoutSession(Base):
    __tablename__ = "workout_sessions"

    id = Column(UUIDType, primary_key=True, default=uuid.uuid4)
    member_id = Column(UUIDType, ForeignKey("member.id", ondelete="CASCADE"), nullable=False)
    name = Column(Text, nullable=False, default="Workout")
    date = Column(DateTime(timezone=True), nullable=False)
    start_time = Column(DateTime(timezone=True), nullable=True)
    end_time = Column(DateTime(timezone=True), nullable=True)
    status = Column(Text, default="planned", nullable=False)  # planned, in_progress, completed
    rating = Column(Integer, nullable=True)  # 1-5 self rating

    __table_args__ = (
        Index("ix_workout_sessions_member_date", "member_id", "date"),
    )


class WorkoutSessionExercise(Base):
    __tablename__ = "workout_session_exercises"

    id = Column(UUIDType, primary_key=True, default=uuid.uuid4)
    session_id = Column(UUIDType, ForeignKey("workout_sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    exercise_id = Column(UUIDType, ForeignKey("exercises.id", ondelete="CASCADE"), nullable=False)
    order = Column(Integer, nullable=False, default=0)


# ============================================================================
# CONTEXT SNAPSHOT
# Materialized per-member training state. A cache over the tables above:
# written only by the snapshot pipeline, never treated as source of truth.
# ============================================================================

class MemberContextSnapshot(Base):
    """
    One row per member.

    snapshot_version starts at 1 on insert and is incremented by the
    upsert itself on every later write. A missing row means "never computed".
    muscle_recovery_status stores hours_since_worked=null for never-worked
    muscles (JSON has no Infinity).
    """
    __tablename__ = "member_context_snapshot"

    member_id = Column(UUIDType, ForeignKey("member.id", ondelete="CASCADE"), primary_key=True)

    current_weight = Column(Float, nullable=True)
    current_body_fat = Column(Float, nullable=True)
    fitness_level = Column(Text, nullable=True)
    training_age = Column(Text, nullable=True)

    active_limitations = Column(JSONType, nullable=False, default=list)
    active_goals = Column(JSONType, nullable=False, default=list)
    personal_records = Column(JSONType, nullable=False, default=list)
    skills = Column(JSONType, nullable=False, default=list)
    muscle_recovery_status = Column(JSONType, nullable=False, default=dict)

    weekly_workout_avg = Column(Float, nullable=True)
    avg_workout_duration = Column(Integer, nullable=True)  # minutes
    consecutive_training_weeks = Column(Integer, nullable=True)
    needs_deload = Column(Boolean, default=False, nullable=False)
    last_workout_date = Column(DateTime(timezone=True), nullable=True)

    snapshot_version = Column(Integer, nullable=False, default=1)
    last_updated = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_member_context_snapshot_last_updated", "last_updated"),
    )


# ============================================================================
# COACH CONVERSATIONS
# ============================================================================

class CoachConversation(Base):
    """
    Local conversation record plus the provider-side threading state.

    external_conversation_id is null until the provider conversation is
    first created; last_response_id chains follow-up generations.
    """
    __tablename__ = "coach_conversations"

    id = Column(UUIDType, primary_key=True, default=uuid.uuid4)
    member_id = Column(UUIDType, ForeignKey("member.id", ondelete="CASCADE"), nullable=False, index=True)
    external_conversation_id = Column(Text, nullable=True)
    last_response_id = Column(Text, nullable=True)
    mode = Column(Text, default="general", nullable=False)  # general, workout
    title = Column(Text, nullable=True)
    status = Column(Text, default="active", nullable=False)  # active, resolved, archived
    insights = Column(Text, nullable=True)  # summary written by memory extraction
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    last_message_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class CoachMessage(Base):
    __tablename__ = "coach_messages"

    id = Column(UUIDType, primary_key=True, default=uuid.uuid4)
    conversation_id = Column(
        UUIDType, ForeignKey("coach_conversations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    role = Column(Text, nullable=False)  # user, assistant
    content = Column(Text, nullable=False)
    external_response_id = Column(Text, nullable=True)  # assistant turns only
    created_at = Column(DateTime(timezone=True), nullable=False)


class CoachingMemory(Base):
    """
    Durable note about a member, replayed into future coach prompts.

    Content is always the guardrail-sanitized text; rejected notes are
    never written.
    """
    __tablename__ = "coaching_memories"

    id = Column(UUIDType, primary_key=True, default=uuid.uuid4)
    member_id = Column(UUIDType, ForeignKey("member.id", ondelete="CASCADE"), nullable=False, index=True)
    conversation_id = Column(
        UUIDType, ForeignKey("coach_conversations.id", ondelete="SET NULL"), nullable=True
    )
    category = Column(Text, nullable=False)
    content = Column(Text, nullable=False)
    importance = Column(Integer, nullable=False, default=5)  # 1-10
    tags = Column(JSONType, nullable=False, default=list)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
