from __future__ import annotations

from typing import Dict

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from . import models

_Status = models.TrainingAssignmentStatus

# Output key -> status counted in it. Revoked assignments are excluded from
# every bucket (and from the total); waived ones only count as waived.
_BUCKETS = {
    "assigned": _Status.ASSIGNED,
    "in_progress": _Status.IN_PROGRESS,
    "completed": _Status.COMPLETED,
    "overdue": _Status.OVERDUE,
    "waived": _Status.WAIVED,
}


def _status_counts(db: Session, *filters) -> Dict[str, int]:
    status_col = models.TrainingAssignmentProgress.status
    columns = [func.count(models.TrainingAssignment.id).label("total_assigned")]
    columns.extend(
        func.coalesce(func.sum(case((status_col == status, 1), else_=0)), 0).label(key)
        for key, status in _BUCKETS.items()
    )
    row = (
        db.query(*columns)
        .select_from(models.TrainingAssignment)
        .join(
            models.TrainingAssignmentProgress,
            models.TrainingAssignmentProgress.assignment_id == models.TrainingAssignment.id,
        )
        .filter(models.TrainingAssignment.revoked_at.is_(None), *filters)
        .one()
    )
    return {key: int(value or 0) for key, value in row._mapping.items()}


def get_training_stats(db: Session, *, training_id: str) -> Dict[str, int]:
    return _status_counts(db, models.TrainingAssignment.training_id == training_id)


def get_user_training_stats(db: Session, *, user_id: str) -> Dict[str, int]:
    return _status_counts(db, models.TrainingAssignment.user_id == user_id)
