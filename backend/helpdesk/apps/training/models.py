# backend/helpdesk/apps/training/models.py

from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    JSON,
    PrimaryKeyConstraint,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import relationship

from ...database import Base
from ...utils.identifiers import generate_uuid7


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# ENUMS
# ---------------------------------------------------------------------------


class TrainingCompletionRule(str, enum.Enum):
    """
    What a user has to do before an assignment completes on its own.

    - MANUAL_ACK: the user acknowledges the training as a whole
    - ALL_STEPS_VIEWED: every required step viewed (and watched long enough)
    - ALL_STEPS_COMPLETED: every required step completed, acks given where asked
    - MANUAL_COMPLETE: never automatic; finalised by complete_training only
    """

    MANUAL_ACK = "MANUAL_ACK"
    ALL_STEPS_VIEWED = "ALL_STEPS_VIEWED"
    ALL_STEPS_COMPLETED = "ALL_STEPS_COMPLETED"
    MANUAL_COMPLETE = "MANUAL_COMPLETE"


class TrainingAssignmentStatus(str, enum.Enum):
    ASSIGNED = "ASSIGNED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    OVERDUE = "OVERDUE"
    WAIVED = "WAIVED"
    REVOKED = "REVOKED"


TERMINAL_STATUSES = frozenset(
    {TrainingAssignmentStatus.WAIVED, TrainingAssignmentStatus.REVOKED}
)

# Upper bound of the 32-bit time_spent_seconds column.
MAX_TIME_SPENT_SECONDS = 2_147_483_647


class TrainingEventType(str, enum.Enum):
    """
    Tags written to the training audit trail.

    The column itself is free-form text so collaborators can add their own
    tags; these are the ones the engine writes.
    """

    ASSIGNED = "ASSIGNED"
    VIEWED = "VIEWED"
    STEP_COMPLETED = "STEP_COMPLETED"
    ACKNOWLEDGED = "ACKNOWLEDGED"
    TIME_RECORDED = "TIME_RECORDED"
    COMPLETED = "COMPLETED"
    OVERDUE = "OVERDUE"
    WAIVED = "WAIVED"
    REVOKED = "REVOKED"


# ---------------------------------------------------------------------------
# TRAINING DEFINITIONS
# ---------------------------------------------------------------------------


class TrainingDefinition(Base):
    """
    Configuration of a trainable content item (1:1 with the content item).

    Deleting the content item cascades to the definition and its steps.
    """

    __tablename__ = "training_definitions"
    __table_args__ = (
        CheckConstraint(
            "estimated_minutes IS NULL OR estimated_minutes >= 0",
            name="ck_training_definitions_estimated_minutes",
        ),
    )

    training_id = Column(
        String(36),
        ForeignKey("content_items.id", ondelete="CASCADE"),
        primary_key=True,
    )
    completion_rule = Column(
        Enum(TrainingCompletionRule, name="training_completion_rule"),
        nullable=False,
        default=TrainingCompletionRule.MANUAL_ACK,
    )
    estimated_minutes = Column(Integer, nullable=True)
    version = Column(Integer, nullable=False, default=1)
    allow_downloads = Column(Boolean, nullable=False, default=True)
    require_acknowledgement = Column(Boolean, nullable=False, default=True)

    content_item = relationship("ContentItem", lazy="joined")
    steps = relationship(
        "TrainingStep",
        back_populates="definition",
        order_by="TrainingStep.step_index",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<TrainingDefinition training_id={self.training_id} rule={self.completion_rule}>"


class TrainingStep(Base):
    """
    One ordered unit of a training.

    step_index is unique within a training; indices may have gaps after
    deletions, ordering always follows the index value.
    """

    __tablename__ = "training_steps"
    __table_args__ = (
        UniqueConstraint("training_id", "step_index", name="training_steps_training_step_unique_idx"),
        CheckConstraint("step_index >= 0", name="ck_training_steps_step_index"),
        CheckConstraint(
            "min_view_seconds IS NULL OR min_view_seconds >= 0",
            name="ck_training_steps_min_view_seconds",
        ),
        Index("training_steps_content_item_id_idx", "content_item_id"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    training_id = Column(
        String(36),
        ForeignKey("training_definitions.training_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    step_index = Column(Integer, nullable=False)
    content_item_id = Column(String(36), ForeignKey("content_items.id"), nullable=False)
    is_required = Column(Boolean, nullable=False, default=True)
    min_view_seconds = Column(Integer, nullable=True)
    requires_ack = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    definition = relationship("TrainingDefinition", back_populates="steps")

    def __repr__(self) -> str:
        return f"<TrainingStep id={self.id} training={self.training_id} index={self.step_index}>"


# ---------------------------------------------------------------------------
# ASSIGNMENTS + PROGRESS
# ---------------------------------------------------------------------------


class TrainingAssignment(Base):
    """
    Binding of one training to one user.

    revoked_at / waived_at are the terminal markers; at most one of them is
    set at any time. Rows are never deleted except by a cascading training
    deletion.
    """

    __tablename__ = "training_assignments"
    __table_args__ = (
        Index("training_assignments_user_id_revoked_idx", "user_id", "revoked_at"),
        Index("training_assignments_training_id_revoked_idx", "training_id", "revoked_at"),
        Index("training_assignments_due_at_idx", "due_at"),
        CheckConstraint(
            "revoked_at IS NULL OR waived_at IS NULL",
            name="ck_training_assignments_single_terminal",
        ),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    training_id = Column(
        String(36),
        ForeignKey("training_definitions.training_id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    assigned_by_user_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    is_required = Column(Boolean, nullable=False, default=True)
    due_at = Column(DateTime(timezone=True), nullable=True)
    assigned_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    revoked_at = Column(DateTime(timezone=True), nullable=True)
    waived_at = Column(DateTime(timezone=True), nullable=True)
    waived_by_user_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    waive_reason = Column(Text, nullable=True)

    definition = relationship("TrainingDefinition")
    progress = relationship(
        "TrainingAssignmentProgress",
        uselist=False,
        back_populates="assignment",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def is_terminal(self) -> bool:
        return self.revoked_at is not None or self.waived_at is not None

    def __repr__(self) -> str:
        return f"<TrainingAssignment id={self.id} training={self.training_id} user={self.user_id}>"


class TrainingAssignmentProgress(Base):
    """
    Summary state of one assignment (1:1, same key).

    Only the transition functions in progress.py / services.py write here.
    completed_at is set exactly when status is COMPLETED.
    """

    __tablename__ = "training_assignment_progress"
    __table_args__ = (
        CheckConstraint(
            "progress_percent >= 0 AND progress_percent <= 100",
            name="ck_training_assignment_progress_percent",
        ),
        CheckConstraint(
            "(status = 'COMPLETED' AND completed_at IS NOT NULL) "
            "OR (status <> 'COMPLETED' AND completed_at IS NULL)",
            name="ck_training_assignment_progress_completed",
        ),
        Index("training_assignment_progress_status_idx", "status"),
    )

    assignment_id = Column(
        String(36),
        ForeignKey("training_assignments.id", ondelete="CASCADE"),
        primary_key=True,
    )
    status = Column(
        Enum(TrainingAssignmentStatus, name="training_assignment_status"),
        nullable=False,
        default=TrainingAssignmentStatus.ASSIGNED,
    )
    started_at = Column(DateTime(timezone=True), nullable=True)
    last_activity_at = Column(DateTime(timezone=True), nullable=True)
    first_viewed_at = Column(DateTime(timezone=True), nullable=True)
    acknowledged_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    progress_percent = Column(Integer, nullable=False, default=0)

    assignment = relationship("TrainingAssignment", back_populates="progress")

    def __repr__(self) -> str:
        return f"<TrainingAssignmentProgress assignment={self.assignment_id} status={self.status}>"


class TrainingStepProgress(Base):
    """
    Per-step progress for one assignment, created lazily on first touch.

    Written only through the ON CONFLICT upserts in progress.py so that
    concurrent requests never lose time_spent_seconds increments.
    """

    __tablename__ = "training_step_progress"
    __table_args__ = (
        PrimaryKeyConstraint("assignment_id", "step_id", name="training_step_progress_pk"),
        CheckConstraint("time_spent_seconds >= 0", name="ck_training_step_progress_time_spent"),
        Index("training_step_progress_assignment_id_idx", "assignment_id"),
        Index("training_step_progress_step_id_idx", "step_id"),
    )

    assignment_id = Column(
        String(36),
        ForeignKey("training_assignments.id", ondelete="CASCADE"),
        nullable=False,
    )
    step_id = Column(
        String(36),
        ForeignKey("training_steps.id", ondelete="CASCADE"),
        nullable=False,
    )
    first_viewed_at = Column(DateTime(timezone=True), nullable=True)
    last_viewed_at = Column(DateTime(timezone=True), nullable=True)
    acknowledged_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    time_spent_seconds = Column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        return (
            f"<TrainingStepProgress assignment={self.assignment_id} step={self.step_id} "
            f"time_spent={self.time_spent_seconds}>"
        )


# ---------------------------------------------------------------------------
# AUDIT TRAIL
# ---------------------------------------------------------------------------


class TrainingEvent(Base):
    """
    Append-only lifecycle record for an assignment.
    """

    __tablename__ = "training_events"
    __table_args__ = (
        Index("training_events_assignment_id_idx", "assignment_id"),
        Index("training_events_event_at_idx", "event_at"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    assignment_id = Column(
        String(36),
        ForeignKey("training_assignments.id", ondelete="CASCADE"),
        nullable=False,
    )
    event_type = Column(String(64), nullable=False)
    event_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    actor_user_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    metadata_json = Column("metadata", JSON, nullable=True)

    def __repr__(self) -> str:
        return f"<TrainingEvent id={self.id} assignment={self.assignment_id} type={self.event_type}>"


class ImmutableEventError(RuntimeError):
    """Raised when something tries to rewrite or remove a training event."""


@event.listens_for(TrainingEvent, "before_update")
def _reject_event_update(mapper, connection, target) -> None:
    raise ImmutableEventError(f"Training event {target.id} is append-only")


@event.listens_for(TrainingEvent, "before_delete")
def _reject_event_delete(mapper, connection, target) -> None:
    raise ImmutableEventError(f"Training event {target.id} is append-only")
