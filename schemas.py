from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from uuid import UUID
from typing import Optional, List, Dict, Any


# ============================================================================
# MEMBER CONTEXT SNAPSHOT
# ============================================================================

class LimitationEntry(BaseModel):
    type: str
    description: str
    severity: str = "moderate"
    affected_areas: List[str] = Field(default_factory=list)


class GoalEntry(BaseModel):
    id: str
    title: str
    category: str
    target_value: float = 0
    current_value: float = 0
    progress_percent: float = 0
    target_date: Optional[str] = None


class PersonalRecordEntry(BaseModel):
    exercise: str
    value: float
    unit: str
    rep_max: Optional[int] = None
    date: Optional[str] = None


class SkillEntry(BaseModel):
    name: str
    status: str
    category: str


class RecoveryEntry(BaseModel):
    """Stored form of a muscle's recovery state. hours_since_worked is null when never worked."""
    status: str
    hours_since_worked: Optional[float] = None
    ready_to_train: bool = True


class SnapshotFields(BaseModel):
    """Everything a rebuild computes; the store adds version and timestamp."""
    current_weight: Optional[float] = None
    current_body_fat: Optional[float] = None
    fitness_level: Optional[str] = None
    training_age: Optional[str] = None
    active_limitations: List[LimitationEntry] = Field(default_factory=list)
    active_goals: List[GoalEntry] = Field(default_factory=list)
    personal_records: List[PersonalRecordEntry] = Field(default_factory=list)
    skills: List[SkillEntry] = Field(default_factory=list)
    muscle_recovery_status: Dict[str, RecoveryEntry] = Field(default_factory=dict)
    weekly_workout_avg: Optional[float] = None
    avg_workout_duration: Optional[int] = None  # minutes
    consecutive_training_weeks: Optional[int] = None
    needs_deload: bool = False
    last_workout_date: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class MemberSnapshot(SnapshotFields):
    member_id: UUID
    snapshot_version: int
    last_updated: datetime
    snapshot_age_s: Optional[float] = None


# ============================================================================
# COACH CONVERSATION
# ============================================================================

class ConversationTurn(BaseModel):
    role: str  # user, assistant
    content: str


class CollectedSlots(BaseModel):
    """Workout parameters gathered across turns."""
    duration: Optional[int] = None  # minutes
    energy: Optional[str] = None  # low, medium, high
    location: Optional[str] = None  # gym, home, bodyweight
    limitations_today: Optional[List[str]] = None
    focus: Optional[str] = None
    intensity: Optional[str] = None  # light, moderate, hard, max


class CoachAgentRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=4000)
    conversation_id: Optional[UUID] = None
    collected_slots: Optional[CollectedSlots] = None


class CoachAgentResponse(BaseModel):
    conversation_id: UUID
    decision: Dict[str, Any]
    reply: Optional[str] = None
    tool_result: Optional[Dict[str, Any]] = None
    collected_slots: CollectedSlots
    context_source: str
    threaded: bool = False


class ContextPreviewResponse(BaseModel):
    source: str  # snapshot, stale, live
    snapshot: MemberSnapshot
    prompt: str


# ============================================================================
# COACHING MEMORY
# ============================================================================

class MemoryNoteCreate(BaseModel):
    content: str = Field(..., max_length=5000)
    category: str = "insight"
    importance: int = Field(default=5, ge=1, le=10)
    tags: List[str] = Field(default_factory=list)
    conversation_id: Optional[UUID] = None


class MemoryNoteResponse(BaseModel):
    id: UUID
    category: str
    content: str
    importance: int
    tags: List[str]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# SCHEDULED TRIGGERS
# ============================================================================

class SnapshotRefreshResponse(BaseModel):
    success: bool
    updated: int
    errors: int
    skipped: int
    timed_out: bool
    elapsed_ms: int
    timestamp: datetime
