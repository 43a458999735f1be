from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from helpdesk.apps.accounts import models as account_models
from helpdesk.apps.content import models as content_models
from helpdesk.apps.workflow import TransitionError, allowed_targets, apply_transition

from . import events, models, rules
from .errors import ConflictError, NotFoundError, TerminalStateError, ValidationError

logger = logging.getLogger(__name__)

WORKFLOW = "training_assignment"

_DEFINITION_FIELDS = {
    "completion_rule",
    "estimated_minutes",
    "allow_downloads",
    "require_acknowledgement",
}
_STEP_FIELDS = {
    "step_index",
    "content_item_id",
    "is_required",
    "min_view_seconds",
    "requires_ack",
}
_PROGRESS_FIELDS = (
    "status",
    "started_at",
    "last_activity_at",
    "first_viewed_at",
    "acknowledged_at",
    "completed_at",
    "progress_percent",
)
_ASSIGNMENT_FIELDS = (
    "due_at",
    "revoked_at",
    "waived_at",
    "waived_by_user_id",
    "waive_reason",
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# LOOKUPS
# ---------------------------------------------------------------------------


def get_user(db: Session, user_id: str) -> account_models.User:
    user = db.get(account_models.User, user_id)
    if user is None:
        raise NotFoundError(f"User {user_id} not found")
    return user


def get_content_item(db: Session, content_item_id: str) -> content_models.ContentItem:
    item = db.get(content_models.ContentItem, content_item_id)
    if item is None:
        raise NotFoundError(f"Content item {content_item_id} not found")
    return item


def get_training_definition(db: Session, training_id: str) -> models.TrainingDefinition:
    definition = db.get(models.TrainingDefinition, training_id)
    if definition is None:
        raise NotFoundError(f"Training {training_id} not found")
    return definition


def get_training_step(db: Session, step_id: str) -> models.TrainingStep:
    step = db.get(models.TrainingStep, step_id)
    if step is None:
        raise NotFoundError(f"Training step {step_id} not found")
    return step


def load_assignment(
    db: Session,
    assignment_id: str,
    *,
    for_update: bool = False,
) -> models.TrainingAssignment:
    """
    Load an assignment together with its progress row.

    Mutating operations pass for_update=True so concurrent requests for the
    same assignment serialise on the row lock (PostgreSQL; SQLite ignores it
    and serialises writers anyway).
    """
    query = db.query(models.TrainingAssignment).filter(
        models.TrainingAssignment.id == assignment_id
    )
    if for_update:
        query = query.with_for_update(of=models.TrainingAssignment).populate_existing()
    assignment = query.first()
    if assignment is None:
        raise NotFoundError(f"Assignment {assignment_id} not found")
    if assignment.progress is None:
        raise NotFoundError(f"Progress for assignment {assignment_id} not found")
    return assignment


def ensure_not_terminal(assignment: models.TrainingAssignment) -> None:
    if assignment.is_terminal:
        state = "revoked" if assignment.revoked_at is not None else "waived"
        logger.warning(
            "Rejected mutation on terminal training assignment",
            extra={"assignment_id": assignment.id, "state": state},
        )
        raise TerminalStateError(f"Assignment {assignment.id} is {state}")


# ---------------------------------------------------------------------------
# STATUS TRANSITIONS
# ---------------------------------------------------------------------------


def transition_assignment(
    assignment: models.TrainingAssignment,
    to_status: models.TrainingAssignmentStatus,
    *,
    now: datetime,
    assignment_changes: Optional[Dict[str, Any]] = None,
    progress_changes: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Move an assignment to `to_status`, writing the accompanying fields.

    The change is validated against the workflow registry first, so a status
    and its timestamps are always written together or not at all.
    """
    progress = assignment.progress
    assignment_changes = assignment_changes or {}
    progress_changes = progress_changes or {}

    before = {field: getattr(progress, field) for field in _PROGRESS_FIELDS}
    before.update({field: getattr(assignment, field) for field in _ASSIGNMENT_FIELDS})
    after = {**before, **assignment_changes, **progress_changes, "status": to_status, "now": now}

    try:
        apply_transition(
            entity_type=WORKFLOW,
            from_state=progress.status,
            to_state=to_status,
            before_obj=before,
            after_obj=after,
        )
    except TransitionError as exc:
        raise ConflictError(f"Assignment {assignment.id}: {exc}") from exc

    for field, value in assignment_changes.items():
        setattr(assignment, field, value)
    for field, value in progress_changes.items():
        setattr(progress, field, value)
    progress.status = to_status


# ---------------------------------------------------------------------------
# TRAINING DEFINITIONS
# ---------------------------------------------------------------------------


def _validate_definition_values(values: Dict[str, Any]) -> None:
    minutes = values.get("estimated_minutes")
    if minutes is not None and minutes < 0:
        raise ValidationError("estimated_minutes must be zero or positive")
    if "completion_rule" in values and values["completion_rule"] is not None:
        try:
            models.TrainingCompletionRule(values["completion_rule"])
        except ValueError as exc:
            raise ValidationError(f"Unknown completion rule {values['completion_rule']!r}") from exc


def create_training_definition(
    db: Session,
    *,
    training_id: str,
    completion_rule: models.TrainingCompletionRule = models.TrainingCompletionRule.MANUAL_ACK,
    estimated_minutes: Optional[int] = None,
    allow_downloads: bool = True,
    require_acknowledgement: bool = True,
) -> models.TrainingDefinition:
    _validate_definition_values(
        {"completion_rule": completion_rule, "estimated_minutes": estimated_minutes}
    )
    get_content_item(db, training_id)
    if db.get(models.TrainingDefinition, training_id) is not None:
        raise ConflictError(f"Training {training_id} is already defined")

    definition = models.TrainingDefinition(
        training_id=training_id,
        completion_rule=models.TrainingCompletionRule(completion_rule),
        estimated_minutes=estimated_minutes,
        allow_downloads=allow_downloads,
        require_acknowledgement=require_acknowledgement,
    )
    db.add(definition)
    try:
        db.flush()
    except IntegrityError as exc:
        raise ConflictError(f"Training {training_id} is already defined") from exc
    logger.info(
        "Training definition created",
        extra={"training_id": training_id, "completion_rule": definition.completion_rule.value},
    )
    return definition


def update_training_definition(
    db: Session,
    *,
    training_id: str,
    changes: Dict[str, Any],
) -> models.TrainingDefinition:
    unknown = set(changes) - _DEFINITION_FIELDS
    if unknown:
        raise ValidationError(f"Unknown training definition fields: {', '.join(sorted(unknown))}")
    _validate_definition_values(changes)

    definition = get_training_definition(db, training_id)
    if "completion_rule" in changes and changes["completion_rule"] is not None:
        new_rule = models.TrainingCompletionRule(changes["completion_rule"])
        if new_rule != definition.completion_rule:
            definition.version = (definition.version or 1) + 1
        changes = {**changes, "completion_rule": new_rule}
    for field, value in changes.items():
        setattr(definition, field, value)
    db.add(definition)
    db.flush()
    return definition


# ---------------------------------------------------------------------------
# TRAINING STEPS
# ---------------------------------------------------------------------------


def list_training_steps(db: Session, training_id: str) -> List[models.TrainingStep]:
    return (
        db.query(models.TrainingStep)
        .filter(models.TrainingStep.training_id == training_id)
        .order_by(models.TrainingStep.step_index.asc())
        .all()
    )


def _validate_step_values(values: Dict[str, Any]) -> None:
    step_index = values.get("step_index")
    if step_index is not None and step_index < 0:
        raise ValidationError("step_index must be zero or positive")
    min_view = values.get("min_view_seconds")
    if min_view is not None and min_view < 0:
        raise ValidationError("min_view_seconds must be zero or positive")


def _ensure_step_index_free(
    db: Session,
    *,
    training_id: str,
    step_index: int,
    exclude_step_id: Optional[str] = None,
) -> None:
    query = db.query(models.TrainingStep.id).filter(
        models.TrainingStep.training_id == training_id,
        models.TrainingStep.step_index == step_index,
    )
    if exclude_step_id:
        query = query.filter(models.TrainingStep.id != exclude_step_id)
    if query.first() is not None:
        raise ConflictError(f"Training {training_id} already has a step at index {step_index}")


def add_training_step(
    db: Session,
    *,
    training_id: str,
    step_index: int,
    content_item_id: str,
    is_required: bool = True,
    min_view_seconds: Optional[int] = None,
    requires_ack: bool = False,
) -> models.TrainingStep:
    _validate_step_values({"step_index": step_index, "min_view_seconds": min_view_seconds})
    get_training_definition(db, training_id)
    get_content_item(db, content_item_id)
    _ensure_step_index_free(db, training_id=training_id, step_index=step_index)

    step = models.TrainingStep(
        training_id=training_id,
        step_index=step_index,
        content_item_id=content_item_id,
        is_required=is_required,
        min_view_seconds=min_view_seconds,
        requires_ack=requires_ack,
    )
    db.add(step)
    try:
        db.flush()
    except IntegrityError as exc:
        raise ConflictError(
            f"Training {training_id} already has a step at index {step_index}"
        ) from exc
    return step


def update_training_step(
    db: Session,
    *,
    step_id: str,
    changes: Dict[str, Any],
) -> models.TrainingStep:
    unknown = set(changes) - _STEP_FIELDS
    if unknown:
        raise ValidationError(f"Unknown training step fields: {', '.join(sorted(unknown))}")
    _validate_step_values(changes)

    step = get_training_step(db, step_id)
    if changes.get("step_index") is not None and changes["step_index"] != step.step_index:
        _ensure_step_index_free(
            db,
            training_id=step.training_id,
            step_index=changes["step_index"],
            exclude_step_id=step.id,
        )
    if changes.get("content_item_id"):
        get_content_item(db, changes["content_item_id"])

    for field, value in changes.items():
        setattr(step, field, value)
    db.add(step)
    try:
        db.flush()
    except IntegrityError as exc:
        raise ConflictError(f"Step index {step.step_index} is already taken") from exc
    return step


def delete_training_step(db: Session, *, step_id: str) -> None:
    step = get_training_step(db, step_id)
    db.delete(step)
    db.flush()


# ---------------------------------------------------------------------------
# ASSIGNMENT LIFECYCLE
# ---------------------------------------------------------------------------


def _has_open_assignment(db: Session, *, training_id: str, user_id: str) -> bool:
    return (
        db.query(models.TrainingAssignment.id)
        .join(
            models.TrainingAssignmentProgress,
            models.TrainingAssignmentProgress.assignment_id == models.TrainingAssignment.id,
        )
        .filter(
            models.TrainingAssignment.training_id == training_id,
            models.TrainingAssignment.user_id == user_id,
            models.TrainingAssignment.revoked_at.is_(None),
            models.TrainingAssignment.waived_at.is_(None),
            models.TrainingAssignmentProgress.status != models.TrainingAssignmentStatus.COMPLETED,
        )
        .first()
        is not None
    )


def create_assignment(
    db: Session,
    *,
    training_id: str,
    user_id: str,
    assigned_by_user_id: Optional[str] = None,
    is_required: bool = True,
    due_at: Optional[datetime] = None,
    enforce_single_active: bool = False,
    now: Optional[datetime] = None,
) -> models.TrainingAssignment:
    """
    Assign a training to a user.

    Writes the assignment, its ASSIGNED progress row and the ASSIGNED event
    in the caller's transaction. Repeated calls create independent
    assignments unless `enforce_single_active` is set, in which case an
    open (not revoked, waived or completed) assignment raises ConflictError.
    """
    now = now or _utcnow()
    get_training_definition(db, training_id)
    user = get_user(db, user_id)
    if not user.is_active:
        raise ValidationError(f"User {user_id} is inactive")
    if assigned_by_user_id:
        get_user(db, assigned_by_user_id)
    if enforce_single_active and _has_open_assignment(db, training_id=training_id, user_id=user_id):
        raise ConflictError(f"User {user_id} already has an open assignment for training {training_id}")

    assignment = models.TrainingAssignment(
        training_id=training_id,
        user_id=user_id,
        assigned_by_user_id=assigned_by_user_id,
        is_required=is_required,
        due_at=due_at,
        assigned_at=now,
    )
    assignment.progress = models.TrainingAssignmentProgress(
        status=models.TrainingAssignmentStatus.ASSIGNED,
        progress_percent=0,
    )
    db.add(assignment)
    db.flush()

    events.append_event(
        db,
        assignment=assignment,
        event_type=models.TrainingEventType.ASSIGNED,
        actor_user_id=assigned_by_user_id,
        event_at=now,
    )
    logger.info(
        "Training assigned",
        extra={"assignment_id": assignment.id, "training_id": training_id, "user_id": user_id},
    )
    return assignment


def revoke_assignment(
    db: Session,
    *,
    assignment_id: str,
    actor_user_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> models.TrainingAssignment:
    """
    Revoke an assignment. Re-revoking re-stamps revoked_at; revoking a
    waived assignment replaces the waiver. Completed assignments stay
    completed (ConflictError).
    """
    now = now or _utcnow()
    assignment = load_assignment(db, assignment_id, for_update=True)
    transition_assignment(
        assignment,
        models.TrainingAssignmentStatus.REVOKED,
        now=now,
        assignment_changes={
            "revoked_at": now,
            "waived_at": None,
            "waived_by_user_id": None,
            "waive_reason": None,
        },
    )
    db.add(assignment)
    events.append_event(
        db,
        assignment=assignment,
        event_type=models.TrainingEventType.REVOKED,
        actor_user_id=actor_user_id,
        event_at=now,
    )
    logger.info("Training assignment revoked", extra={"assignment_id": assignment.id})
    return assignment


def waive_assignment(
    db: Session,
    *,
    assignment_id: str,
    waived_by_user_id: str,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> models.TrainingAssignment:
    """Waive an assignment. Revoked and completed assignments cannot be waived (ConflictError)."""
    now = now or _utcnow()
    if not waived_by_user_id:
        raise ValidationError("waived_by_user_id is required")
    assignment = load_assignment(db, assignment_id, for_update=True)
    transition_assignment(
        assignment,
        models.TrainingAssignmentStatus.WAIVED,
        now=now,
        assignment_changes={
            "waived_at": now,
            "waived_by_user_id": waived_by_user_id,
            "waive_reason": reason,
        },
    )
    db.add(assignment)
    events.append_event(
        db,
        assignment=assignment,
        event_type=models.TrainingEventType.WAIVED,
        actor_user_id=waived_by_user_id,
        metadata={"reason": reason} if reason else None,
        event_at=now,
    )
    logger.info("Training assignment waived", extra={"assignment_id": assignment.id})
    return assignment


_SWEEPABLE_STATUSES = {
    models.TrainingAssignmentStatus.IN_PROGRESS,
    models.TrainingAssignmentStatus.OVERDUE,
}


def update_assignment_status(
    db: Session,
    *,
    assignment_id: str,
    status: models.TrainingAssignmentStatus,
    actor_user_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> models.TrainingAssignment:
    """
    Generic status update used by scheduled collaborators (the overdue sweep).

    Completion, waiver and revocation carry extra fields and have their own
    operations; only IN_PROGRESS and OVERDUE are accepted here.
    """
    now = now or _utcnow()
    status = models.TrainingAssignmentStatus(status)
    if status not in _SWEEPABLE_STATUSES:
        raise ValidationError(f"Status {status.value} has a dedicated operation")

    assignment = load_assignment(db, assignment_id, for_update=True)
    ensure_not_terminal(assignment)
    if assignment.progress.status == status:
        return assignment

    transition_assignment(assignment, status, now=now)
    db.add(assignment)
    events.append_event(
        db,
        assignment=assignment,
        event_type=status.value,
        actor_user_id=actor_user_id,
        event_at=now,
    )
    return assignment


def mark_overdue_assignments(db: Session, *, now: Optional[datetime] = None) -> int:
    """
    Flag every open assignment whose due date has passed as OVERDUE.

    Safe to re-run: already overdue, completed, waived and revoked
    assignments are skipped.
    """
    now = now or _utcnow()
    candidates = [
        models.TrainingAssignmentStatus(status)
        for status in models.TrainingAssignmentStatus
        if models.TrainingAssignmentStatus.OVERDUE.value in allowed_targets(WORKFLOW, status)
    ]
    overdue_ids = [
        row.id
        for row in (
            db.query(models.TrainingAssignment.id)
            .join(
                models.TrainingAssignmentProgress,
                models.TrainingAssignmentProgress.assignment_id == models.TrainingAssignment.id,
            )
            .filter(
                models.TrainingAssignment.due_at.is_not(None),
                models.TrainingAssignment.due_at < now,
                models.TrainingAssignment.revoked_at.is_(None),
                models.TrainingAssignment.waived_at.is_(None),
                models.TrainingAssignmentProgress.status.in_(candidates),
            )
            .all()
        )
    ]
    for assignment_id in overdue_ids:
        update_assignment_status(
            db,
            assignment_id=assignment_id,
            status=models.TrainingAssignmentStatus.OVERDUE,
            now=now,
        )
    if overdue_ids:
        logger.info("Training assignments marked overdue", extra={"count": len(overdue_ids)})
    return len(overdue_ids)


# ---------------------------------------------------------------------------
# QUERIES
# ---------------------------------------------------------------------------

AssignmentRow = Tuple[
    models.TrainingAssignment,
    models.TrainingAssignmentProgress,
    models.TrainingDefinition,
    content_models.ContentItem,
]


def get_active_assignments_for_user(db: Session, *, user_id: str) -> List[AssignmentRow]:
    """
    Non-revoked assignments of a user, soonest due first (undated last),
    newest assignment first within the same due date.
    """
    rows = (
        db.query(
            models.TrainingAssignment,
            models.TrainingAssignmentProgress,
            models.TrainingDefinition,
            content_models.ContentItem,
        )
        .join(
            models.TrainingAssignmentProgress,
            models.TrainingAssignmentProgress.assignment_id == models.TrainingAssignment.id,
        )
        .join(
            models.TrainingDefinition,
            models.TrainingDefinition.training_id == models.TrainingAssignment.training_id,
        )
        .join(
            content_models.ContentItem,
            content_models.ContentItem.id == models.TrainingAssignment.training_id,
        )
        .filter(
            models.TrainingAssignment.user_id == user_id,
            models.TrainingAssignment.revoked_at.is_(None),
        )
        .order_by(
            models.TrainingAssignment.due_at.asc().nullslast(),
            models.TrainingAssignment.assigned_at.desc(),
        )
        .all()
    )
    return [tuple(row) for row in rows]


def get_step_progress(db: Session, assignment_id: str) -> Sequence[models.TrainingStepProgress]:
    # populate_existing: rows are written with Core upserts, which bypass the
    # identity map; always read what the database holds now.
    return (
        db.query(models.TrainingStepProgress)
        .filter(models.TrainingStepProgress.assignment_id == assignment_id)
        .populate_existing()
        .all()
    )


def get_assignment_detail(db: Session, *, assignment_id: str) -> Dict[str, Any]:
    assignment = load_assignment(db, assignment_id)
    definition = get_training_definition(db, assignment.training_id)
    steps = list_training_steps(db, assignment.training_id)
    step_progress = get_step_progress(db, assignment.id)
    outstanding = rules.outstanding_steps(
        definition.completion_rule, steps, rules.index_progress(step_progress)
    )
    return {
        "assignment": assignment,
        "progress": assignment.progress,
        "definition": definition,
        "training": definition.content_item,
        "steps": steps,
        "step_progress": list(step_progress),
        "outstanding_step_ids": [step.id for step in outstanding],
    }
