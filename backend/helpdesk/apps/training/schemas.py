# backend/helpdesk/apps/training/schemas.py

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .models import MAX_TIME_SPENT_SECONDS, TrainingAssignmentStatus, TrainingCompletionRule


# ---------------------------------------------------------------------------
# DEFINITIONS
# ---------------------------------------------------------------------------


class TrainingDefinitionCreate(BaseModel):
    training_id: str = Field(..., description="Content item (kind TRAINING) being made trainable.")
    completion_rule: TrainingCompletionRule = TrainingCompletionRule.MANUAL_ACK
    estimated_minutes: Optional[int] = Field(None, ge=0)
    allow_downloads: bool = True
    require_acknowledgement: bool = True


class TrainingDefinitionUpdate(BaseModel):
    completion_rule: Optional[TrainingCompletionRule] = None
    estimated_minutes: Optional[int] = Field(None, ge=0)
    allow_downloads: Optional[bool] = None
    require_acknowledgement: Optional[bool] = None


class TrainingDefinitionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    training_id: str
    completion_rule: TrainingCompletionRule
    estimated_minutes: Optional[int] = None
    version: int
    allow_downloads: bool
    require_acknowledgement: bool


# ---------------------------------------------------------------------------
# STEPS
# ---------------------------------------------------------------------------


class TrainingStepCreate(BaseModel):
    step_index: int = Field(..., ge=0)
    content_item_id: str
    is_required: bool = True
    min_view_seconds: Optional[int] = Field(None, ge=0)
    requires_ack: bool = False


class TrainingStepUpdate(BaseModel):
    step_index: Optional[int] = Field(None, ge=0)
    content_item_id: Optional[str] = None
    is_required: Optional[bool] = None
    min_view_seconds: Optional[int] = Field(None, ge=0)
    requires_ack: Optional[bool] = None


class TrainingStepRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    training_id: str
    step_index: int
    content_item_id: str
    is_required: bool
    min_view_seconds: Optional[int] = None
    requires_ack: bool
    created_at: datetime


# ---------------------------------------------------------------------------
# ASSIGNMENTS + PROGRESS
# ---------------------------------------------------------------------------


class AssignmentCreate(BaseModel):
    training_id: str
    user_id: str
    is_required: bool = True
    due_at: Optional[datetime] = None


class AssignmentWaive(BaseModel):
    reason: Optional[str] = Field(None, max_length=2000)


class AssignmentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    training_id: str
    user_id: str
    assigned_by_user_id: Optional[str] = None
    is_required: bool
    due_at: Optional[datetime] = None
    assigned_at: datetime
    revoked_at: Optional[datetime] = None
    waived_at: Optional[datetime] = None
    waived_by_user_id: Optional[str] = None
    waive_reason: Optional[str] = None


class AssignmentProgressRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    assignment_id: str
    status: TrainingAssignmentStatus
    started_at: Optional[datetime] = None
    last_activity_at: Optional[datetime] = None
    first_viewed_at: Optional[datetime] = None
    acknowledged_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    progress_percent: int


class StepProgressRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    assignment_id: str
    step_id: str
    first_viewed_at: Optional[datetime] = None
    last_viewed_at: Optional[datetime] = None
    acknowledged_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    time_spent_seconds: int


class TrainingSummary(BaseModel):
    """Content-side view of the training, as shown in the assignment list."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str


class AssignmentListItem(BaseModel):
    assignment: AssignmentRead
    progress: AssignmentProgressRead
    definition: TrainingDefinitionRead
    training: TrainingSummary


class AssignmentDetail(AssignmentListItem):
    steps: List[TrainingStepRead] = Field(default_factory=list)
    step_progress: List[StepProgressRead] = Field(default_factory=list)
    outstanding_step_ids: List[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# STEP INTERACTIONS
# ---------------------------------------------------------------------------


class StepAction(BaseModel):
    step_id: str


class StepView(StepAction):
    time_spent_seconds: int = Field(0, ge=0, le=MAX_TIME_SPENT_SECONDS)


class StepTimeSpent(StepAction):
    delta_seconds: int = Field(..., ge=0, le=MAX_TIME_SPENT_SECONDS)


# ---------------------------------------------------------------------------
# EVENTS + STATS
# ---------------------------------------------------------------------------


class TrainingEventRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    assignment_id: str
    event_type: str
    event_at: datetime
    actor_user_id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = Field(default=None, validation_alias="metadata_json")


class TrainingStats(BaseModel):
    total_assigned: int = 0
    assigned: int = 0
    in_progress: int = 0
    completed: int = 0
    overdue: int = 0
    waived: int = 0
