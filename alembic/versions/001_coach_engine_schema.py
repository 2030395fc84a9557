"""coach_engine_schema

Revision ID: 001_coach_engine
Revises:
Create Date: 2026-10-18

Source tables read by the context pipeline, the per-member context
snapshot, and the coach conversation / memory tables.
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID

# revision identifiers, used by Alembic.
revision = "001_coach_engine"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "member",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("training_age", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )

    op.create_table(
        "member_metrics",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("member_id", UUID(as_uuid=True), sa.ForeignKey("member.id", ondelete="CASCADE"), nullable=False),
        sa.Column("date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("weight", sa.Float(), nullable=True),
        sa.Column("body_fat_percentage", sa.Float(), nullable=True),
        sa.Column("fitness_level", sa.Text(), nullable=True),
    )
    op.create_index("ix_member_metrics_member_id", "member_metrics", ["member_id"])

    op.create_table(
        "member_limitations",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("member_id", UUID(as_uuid=True), sa.ForeignKey("member.id", ondelete="CASCADE"), nullable=False),
        sa.Column("type", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("severity", sa.Text(), nullable=True),
        sa.Column("affected_areas", JSONB(), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_member_limitations_member_id", "member_limitations", ["member_id"])

    op.create_table(
        "goals",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("member_id", UUID(as_uuid=True), sa.ForeignKey("member.id", ondelete="CASCADE"), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("category", sa.Text(), nullable=False),
        sa.Column("target_value", sa.Float(), nullable=True),
        sa.Column("target_unit", sa.Text(), nullable=True),
        sa.Column("current_value", sa.Float(), nullable=True),
        sa.Column("target_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.Text(), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_goals_member_id", "goals", ["member_id"])
    op.create_index("ix_goals_member_status", "goals", ["member_id", "status"])

    op.create_table(
        "member_skills",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("member_id", UUID(as_uuid=True), sa.ForeignKey("member.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("category", sa.Text(), nullable=False),
        sa.Column("current_status", sa.Text(), nullable=False, server_default="learning"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_member_skills_member_id", "member_skills", ["member_id"])

    op.create_table(
        "exercises",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("category", sa.Text(), nullable=False, server_default="strength"),
        sa.Column("muscle_groups", JSONB(), nullable=True),
    )

    op.create_table(
        "personal_records",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("member_id", UUID(as_uuid=True), sa.ForeignKey("member.id", ondelete="CASCADE"), nullable=False),
        sa.Column("exercise_id", UUID(as_uuid=True), sa.ForeignKey("exercises.id", ondelete="CASCADE"), nullable=False),
        sa.Column("value", sa.Float(), nullable=False),
        sa.Column("unit", sa.Text(), nullable=False),
        sa.Column("rep_max", sa.Integer(), nullable=True),
        sa.Column("date", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_personal_records_member_date", "personal_records", ["member_id", "date"])

    op.create_table(
        "workout_sessions",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("member_id", UUID(as_uuid=True), sa.ForeignKey("member.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.Text(), nullable=False, server_default="Workout"),
        sa.Column("date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.Text(), nullable=False, server_default="planned"),
        sa.Column("rating", sa.Integer(), nullable=True),
    )
    op.create_index("ix_workout_sessions_member_date", "workout_sessions", ["member_id", "date"])

    op.create_table(
        "workout_session_exercises",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("session_id", UUID(as_uuid=True), sa.ForeignKey("workout_sessions.id", ondelete="CASCADE"), nullable=False),
        sa.Column("exercise_id", UUID(as_uuid=True), sa.ForeignKey("exercises.id", ondelete="CASCADE"), nullable=False),
        sa.Column("order", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_index("ix_workout_session_exercises_session_id", "workout_session_exercises", ["session_id"])

    op.create_table(
        "member_context_snapshot",
        sa.Column("member_id", UUID(as_uuid=True), sa.ForeignKey("member.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("current_weight", sa.Float(), nullable=True),
        sa.Column("current_body_fat", sa.Float(), nullable=True),
        sa.Column("fitness_level", sa.Text(), nullable=True),
        sa.Column("training_age", sa.Text(), nullable=True),
        sa.Column("active_limitations", JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("active_goals", JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("personal_records", JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("skills", JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("muscle_recovery_status", JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("weekly_workout_avg", sa.Float(), nullable=True),
        sa.Column("avg_workout_duration", sa.Integer(), nullable=True),
        sa.Column("consecutive_training_weeks", sa.Integer(), nullable=True),
        sa.Column("needs_deload", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("last_workout_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("snapshot_version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("last_updated", sa.DateTime(timezone=True), nullable=False),
    )
    # The refresher sweep selects by staleness.
    op.create_index("ix_member_context_snapshot_last_updated", "member_context_snapshot", ["last_updated"])

    op.create_table(
        "coach_conversations",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("member_id", UUID(as_uuid=True), sa.ForeignKey("member.id", ondelete="CASCADE"), nullable=False),
        sa.Column("external_conversation_id", sa.Text(), nullable=True),
        sa.Column("last_response_id", sa.Text(), nullable=True),
        sa.Column("mode", sa.Text(), nullable=False, server_default="general"),
        sa.Column("title", sa.Text(), nullable=True),
        sa.Column("status", sa.Text(), nullable=False, server_default="active"),
        sa.Column("insights", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("last_message_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_coach_conversations_member_id", "coach_conversations", ["member_id"])

    op.create_table(
        "coach_messages",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "conversation_id",
            UUID(as_uuid=True),
            sa.ForeignKey("coach_conversations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("role", sa.Text(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("external_response_id", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_coach_messages_conversation_id", "coach_messages", ["conversation_id"])

    op.create_table(
        "coaching_memories",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("member_id", UUID(as_uuid=True), sa.ForeignKey("member.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "conversation_id",
            UUID(as_uuid=True),
            sa.ForeignKey("coach_conversations.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("category", sa.Text(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("importance", sa.Integer(), nullable=False, server_default="5"),
        sa.Column("tags", JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_coaching_memories_member_id", "coaching_memories", ["member_id"])


def downgrade() -> None:
    op.drop_table("coaching_memories")
    op.drop_table("coach_messages")
    op.drop_table("coach_conversations")
    op.drop_table("member_context_snapshot")
    op.drop_table("workout_session_exercises")
    op.drop_table("workout_sessions")
    op.drop_table("personal_records")
    op.drop_table("exercises")
    op.drop_table("member_skills")
    op.drop_table("goals")
    op.drop_table("member_limitations")
    op.drop_table("member_metrics")
    op.drop_table("member")
