"""
Step interactions for training assignments.

Every entry point here:
1. rejects bad input before touching the database,
2. locks the assignment row and refuses waived / revoked assignments,
3. writes step progress with a single INSERT ... ON CONFLICT DO UPDATE,
4. updates the progress aggregate and appends its audit event,
5. re-runs the completion rule against what the database now holds.

All of it happens in the caller's session; the router commits once.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from sqlalchemy import BigInteger, case, cast, func
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from . import events, models, rules, services
from .errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

_DIALECT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _validate_seconds(value: Any, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer number of seconds")
    if value < 0:
        raise ValidationError(f"{field} must be zero or positive")
    if value > models.MAX_TIME_SPENT_SECONDS:
        raise ValidationError(f"{field} must be at most {models.MAX_TIME_SPENT_SECONDS} seconds")
    return value


# ---------------------------------------------------------------------------
# STEP PROGRESS UPSERT
# ---------------------------------------------------------------------------


def _upsert_step_progress(
    db: Session,
    *,
    assignment_id: str,
    step_id: str,
    viewed_at: Optional[datetime] = None,
    completed_at: Optional[datetime] = None,
    acknowledged_at: Optional[datetime] = None,
    time_delta: int = 0,
) -> None:
    """
    Create or update one step progress row in a single statement.

    first_viewed_at, completed_at and acknowledged_at keep their first value;
    last_viewed_at always moves forward; time_spent_seconds is incremented
    in SQL so concurrent sessions cannot overwrite each other's time, and
    stops at MAX_TIME_SPENT_SECONDS.
    """
    dialect = db.get_bind().dialect.name
    insert = _DIALECT_INSERTS.get(dialect)
    if insert is None:
        raise RuntimeError(f"Step progress upsert is not supported on {dialect}")

    table = models.TrainingStepProgress.__table__
    stmt = insert(table).values(
        assignment_id=assignment_id,
        step_id=step_id,
        first_viewed_at=viewed_at,
        last_viewed_at=viewed_at,
        completed_at=completed_at,
        acknowledged_at=acknowledged_at,
        time_spent_seconds=time_delta,
    )
    excluded = stmt.excluded

    updates: Dict[str, Any] = {}
    if viewed_at is not None:
        updates["first_viewed_at"] = func.coalesce(table.c.first_viewed_at, excluded.first_viewed_at)
        updates["last_viewed_at"] = excluded.last_viewed_at
    if completed_at is not None:
        updates["completed_at"] = func.coalesce(table.c.completed_at, excluded.completed_at)
    if acknowledged_at is not None:
        updates["acknowledged_at"] = func.coalesce(table.c.acknowledged_at, excluded.acknowledged_at)
    if time_delta:
        # Widen before adding; the running total saturates at the column bound.
        total = cast(table.c.time_spent_seconds, BigInteger) + excluded.time_spent_seconds
        updates["time_spent_seconds"] = case(
            (total > models.MAX_TIME_SPENT_SECONDS, models.MAX_TIME_SPENT_SECONDS),
            else_=total,
        )
    if not updates:
        updates["time_spent_seconds"] = table.c.time_spent_seconds

    db.execute(
        stmt.on_conflict_do_update(
            index_elements=[table.c.assignment_id, table.c.step_id],
            set_=updates,
        )
    )


# ---------------------------------------------------------------------------
# AGGREGATE HELPERS
# ---------------------------------------------------------------------------


def _load_for_step(
    db: Session,
    assignment_id: str,
    step_id: str,
) -> Tuple[models.TrainingAssignment, models.TrainingStep]:
    assignment = services.load_assignment(db, assignment_id, for_update=True)
    services.ensure_not_terminal(assignment)
    step = services.get_training_step(db, step_id)
    if step.training_id != assignment.training_id:
        raise NotFoundError(f"Step {step_id} does not belong to assignment {assignment_id}")
    return assignment, step


def _finalize(
    db: Session,
    assignment: models.TrainingAssignment,
    *,
    now: datetime,
    actor_user_id: Optional[str],
    metadata: dict,
) -> None:
    services.transition_assignment(
        assignment,
        models.TrainingAssignmentStatus.COMPLETED,
        now=now,
        progress_changes={"completed_at": now, "progress_percent": 100},
    )
    db.add(assignment)
    events.append_event(
        db,
        assignment=assignment,
        event_type=models.TrainingEventType.COMPLETED,
        actor_user_id=actor_user_id,
        metadata=metadata,
        event_at=now,
    )
    logger.info(
        "Training assignment completed",
        extra={"assignment_id": assignment.id, "trigger": metadata.get("trigger")},
    )


def evaluate_assignment(
    db: Session,
    assignment: models.TrainingAssignment,
    *,
    now: Optional[datetime] = None,
) -> bool:
    """
    Re-run the completion rule for an assignment inside the current session.

    Completes the assignment (system actor) when the rule is satisfied,
    otherwise refreshes the advisory progress percentage. Returns True when
    this call completed the assignment.
    """
    now = now or _utcnow()
    progress = assignment.progress
    if progress.status == models.TrainingAssignmentStatus.COMPLETED or assignment.is_terminal:
        return False

    definition = services.get_training_definition(db, assignment.training_id)
    steps = services.list_training_steps(db, assignment.training_id)
    step_progress = rules.index_progress(services.get_step_progress(db, assignment.id))

    if rules.evaluate(definition.completion_rule, steps, step_progress, progress.acknowledged_at):
        _finalize(
            db,
            assignment,
            now=now,
            actor_user_id=None,
            metadata={"trigger": "rule", "rule": definition.completion_rule.value},
        )
        return True

    progress.progress_percent = rules.compute_progress_percent(
        definition.completion_rule, steps, step_progress
    )
    db.add(progress)
    return False


# ---------------------------------------------------------------------------
# STEP OPERATIONS
# ---------------------------------------------------------------------------


def mark_step_viewed(
    db: Session,
    *,
    assignment_id: str,
    step_id: str,
    time_spent_seconds: int = 0,
    now: Optional[datetime] = None,
) -> models.TrainingAssignmentProgress:
    """
    Record that a step was opened, optionally with time spent in this view.

    Safe to repeat: first_viewed_at keeps the first view, last_viewed_at
    tracks the latest one. Moves ASSIGNED assignments to IN_PROGRESS.
    """
    _validate_seconds(time_spent_seconds, "time_spent_seconds")
    now = now or _utcnow()
    assignment, step = _load_for_step(db, assignment_id, step_id)

    _upsert_step_progress(
        db,
        assignment_id=assignment.id,
        step_id=step.id,
        viewed_at=now,
        time_delta=time_spent_seconds,
    )

    progress = assignment.progress
    progress_changes = {
        "last_activity_at": now,
        "first_viewed_at": progress.first_viewed_at or now,
        "started_at": progress.started_at or now,
    }
    if progress.status == models.TrainingAssignmentStatus.ASSIGNED:
        services.transition_assignment(
            assignment,
            models.TrainingAssignmentStatus.IN_PROGRESS,
            now=now,
            progress_changes=progress_changes,
        )
    else:
        for field, value in progress_changes.items():
            setattr(progress, field, value)
    db.add(progress)

    metadata: Dict[str, Any] = {"stepId": step.id}
    if time_spent_seconds:
        metadata["timeSpentSeconds"] = time_spent_seconds
    events.append_event(
        db,
        assignment=assignment,
        event_type=models.TrainingEventType.VIEWED,
        metadata=metadata,
        event_at=now,
    )
    evaluate_assignment(db, assignment, now=now)
    return assignment.progress


def mark_step_completed(
    db: Session,
    *,
    assignment_id: str,
    step_id: str,
    now: Optional[datetime] = None,
) -> models.TrainingAssignmentProgress:
    now = now or _utcnow()
    assignment, step = _load_for_step(db, assignment_id, step_id)

    _upsert_step_progress(db, assignment_id=assignment.id, step_id=step.id, completed_at=now)
    assignment.progress.last_activity_at = now
    db.add(assignment.progress)

    events.append_event(
        db,
        assignment=assignment,
        event_type=models.TrainingEventType.STEP_COMPLETED,
        metadata={"stepId": step.id},
        event_at=now,
    )
    evaluate_assignment(db, assignment, now=now)
    return assignment.progress


def acknowledge_step(
    db: Session,
    *,
    assignment_id: str,
    step_id: str,
    user_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> models.TrainingAssignmentProgress:
    now = now or _utcnow()
    assignment, step = _load_for_step(db, assignment_id, step_id)

    _upsert_step_progress(db, assignment_id=assignment.id, step_id=step.id, acknowledged_at=now)
    assignment.progress.last_activity_at = now
    db.add(assignment.progress)

    events.append_event(
        db,
        assignment=assignment,
        event_type=models.TrainingEventType.ACKNOWLEDGED,
        actor_user_id=user_id,
        metadata={"stepId": step.id},
        event_at=now,
    )
    evaluate_assignment(db, assignment, now=now)
    return assignment.progress


def record_time_spent(
    db: Session,
    *,
    assignment_id: str,
    step_id: str,
    delta_seconds: int,
    now: Optional[datetime] = None,
) -> models.TrainingAssignmentProgress:
    """
    Add `delta_seconds` to the step's running total (never overwrites it).
    """
    _validate_seconds(delta_seconds, "delta_seconds")
    now = now or _utcnow()
    assignment, step = _load_for_step(db, assignment_id, step_id)

    _upsert_step_progress(db, assignment_id=assignment.id, step_id=step.id, time_delta=delta_seconds)
    assignment.progress.last_activity_at = now
    db.add(assignment.progress)

    events.append_event(
        db,
        assignment=assignment,
        event_type=models.TrainingEventType.TIME_RECORDED,
        metadata={"stepId": step.id, "deltaSeconds": delta_seconds},
        event_at=now,
    )
    evaluate_assignment(db, assignment, now=now)
    return assignment.progress


# ---------------------------------------------------------------------------
# ASSIGNMENT-LEVEL OPERATIONS
# ---------------------------------------------------------------------------


def acknowledge_training(
    db: Session,
    *,
    assignment_id: str,
    user_id: str,
    now: Optional[datetime] = None,
) -> models.TrainingAssignmentProgress:
    """
    Acknowledge the training as a whole; completes MANUAL_ACK trainings.
    """
    now = now or _utcnow()
    assignment = services.load_assignment(db, assignment_id, for_update=True)
    services.ensure_not_terminal(assignment)

    progress = assignment.progress
    progress.acknowledged_at = progress.acknowledged_at or now
    progress.last_activity_at = now
    db.add(progress)

    events.append_event(
        db,
        assignment=assignment,
        event_type=models.TrainingEventType.ACKNOWLEDGED,
        actor_user_id=user_id,
        event_at=now,
    )
    evaluate_assignment(db, assignment, now=now)
    return progress


def complete_training(
    db: Session,
    *,
    assignment_id: str,
    user_id: str,
    now: Optional[datetime] = None,
) -> models.TrainingAssignmentProgress:
    """
    Manual finalisation (MANUAL_COMPLETE trainings and admin override).

    Completing an already completed assignment changes nothing.
    """
    now = now or _utcnow()
    assignment = services.load_assignment(db, assignment_id, for_update=True)
    services.ensure_not_terminal(assignment)

    if assignment.progress.status == models.TrainingAssignmentStatus.COMPLETED:
        return assignment.progress

    assignment.progress.last_activity_at = now
    _finalize(
        db,
        assignment,
        now=now,
        actor_user_id=user_id,
        metadata={"trigger": "manual"},
    )
    return assignment.progress
