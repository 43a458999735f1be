from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional, Sequence, Union

from sqlalchemy.orm import Session

from helpdesk.apps.events.broker import EventEnvelope, publish_event

from . import models

logger = logging.getLogger(__name__)


def _event_type(value: Union[models.TrainingEventType, str]) -> str:
    return str(getattr(value, "value", value))


def append_event(
    db: Session,
    *,
    assignment: models.TrainingAssignment,
    event_type: Union[models.TrainingEventType, str],
    actor_user_id: Optional[str] = None,
    metadata: Optional[dict] = None,
    event_at: Optional[datetime] = None,
) -> models.TrainingEvent:
    """
    Insert one audit record for an assignment. Never updates.

    The row joins the caller's transaction, so it commits or rolls back
    together with the state change it describes. Projection to the event
    sink happens after the flush and cannot fail the write.
    """
    event = models.TrainingEvent(
        assignment_id=assignment.id,
        event_type=_event_type(event_type),
        actor_user_id=actor_user_id,
        metadata_json=metadata,
    )
    if event_at is not None:
        event.event_at = event_at
    db.add(event)
    db.flush()

    _project(event, user_id=assignment.user_id, training_id=assignment.training_id)
    return event


def _project(event: models.TrainingEvent, *, user_id: str, training_id: str) -> None:
    try:
        publish_event(
            EventEnvelope(
                id=str(event.id),
                type=f"training_assignment.{event.event_type}".lower(),
                assignmentId=str(event.assignment_id),
                eventType=event.event_type,
                timestamp=event.event_at.isoformat(),
                actor={"userId": event.actor_user_id} if event.actor_user_id else None,
                metadata={
                    "userId": user_id,
                    "trainingId": training_id,
                    **(event.metadata_json or {}),
                },
            )
        )
    except Exception:
        logger.warning(
            "Failed to project training event",
            extra={
                "event_id": event.id,
                "assignment_id": event.assignment_id,
                "event_type": event.event_type,
            },
        )


def list_assignment_events(
    db: Session,
    *,
    assignment_id: str,
    event_type: Optional[str] = None,
) -> Sequence[models.TrainingEvent]:
    """The audit trail of one assignment, oldest first."""
    query = db.query(models.TrainingEvent).filter(
        models.TrainingEvent.assignment_id == assignment_id
    )
    if event_type:
        query = query.filter(models.TrainingEvent.event_type == event_type)
    # UUIDv7 ids break ties between events stamped in the same instant.
    return query.order_by(
        models.TrainingEvent.event_at.asc(),
        models.TrainingEvent.id.asc(),
    ).all()
