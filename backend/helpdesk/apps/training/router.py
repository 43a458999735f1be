from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from helpdesk.database import get_db, get_read_db
from helpdesk.security import get_current_active_user
from helpdesk.apps.accounts import models as account_models
from helpdesk.utils.identifiers import normalise_id

from . import models, progress, schemas, services, stats
from .errors import NotFoundError


router = APIRouter(prefix="/training", tags=["training"])


def _get_own_assignment(
    db: Session,
    assignment_id: str,
    current_user: account_models.User,
) -> models.TrainingAssignment:
    # Foreign and malformed ids look the same as missing ones.
    canonical_id = normalise_id(assignment_id)
    if canonical_id is None:
        raise NotFoundError(f"Assignment {assignment_id} not found")
    assignment = db.get(models.TrainingAssignment, canonical_id)
    if assignment is None or assignment.user_id != current_user.id:
        raise NotFoundError(f"Assignment {assignment_id} not found")
    return assignment


def _list_item(row) -> schemas.AssignmentListItem:
    assignment, assignment_progress, definition, content_item = row
    return schemas.AssignmentListItem(
        assignment=schemas.AssignmentRead.model_validate(assignment),
        progress=schemas.AssignmentProgressRead.model_validate(assignment_progress),
        definition=schemas.TrainingDefinitionRead.model_validate(definition),
        training=schemas.TrainingSummary.model_validate(content_item),
    )


@router.get("/assignments", response_model=List[schemas.AssignmentListItem])
def list_my_assignments(
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    rows = services.get_active_assignments_for_user(db, user_id=current_user.id)
    return [_list_item(row) for row in rows]


@router.get("/assignments/{assignment_id}", response_model=schemas.AssignmentDetail)
def get_my_assignment(
    assignment_id: str,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    assignment = _get_own_assignment(db, assignment_id, current_user)
    detail = services.get_assignment_detail(db, assignment_id=assignment.id)
    return schemas.AssignmentDetail.model_validate(detail, from_attributes=True)


@router.post(
    "/assignments/{assignment_id}/view-step",
    response_model=schemas.AssignmentProgressRead,
)
def view_step(
    assignment_id: str,
    payload: schemas.StepView,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    assignment = _get_own_assignment(db, assignment_id, current_user)
    result = progress.mark_step_viewed(
        db,
        assignment_id=assignment.id,
        step_id=payload.step_id,
        time_spent_seconds=payload.time_spent_seconds,
    )
    db.commit()
    db.refresh(result)
    return result


@router.post(
    "/assignments/{assignment_id}/complete-step",
    response_model=schemas.AssignmentProgressRead,
)
def complete_step(
    assignment_id: str,
    payload: schemas.StepAction,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    assignment = _get_own_assignment(db, assignment_id, current_user)
    result = progress.mark_step_completed(db, assignment_id=assignment.id, step_id=payload.step_id)
    db.commit()
    db.refresh(result)
    return result


@router.post(
    "/assignments/{assignment_id}/acknowledge-step",
    response_model=schemas.AssignmentProgressRead,
)
def acknowledge_step(
    assignment_id: str,
    payload: schemas.StepAction,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    assignment = _get_own_assignment(db, assignment_id, current_user)
    result = progress.acknowledge_step(
        db,
        assignment_id=assignment.id,
        step_id=payload.step_id,
        user_id=current_user.id,
    )
    db.commit()
    db.refresh(result)
    return result


@router.post(
    "/assignments/{assignment_id}/time-spent",
    response_model=schemas.AssignmentProgressRead,
)
def record_time_spent(
    assignment_id: str,
    payload: schemas.StepTimeSpent,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    assignment = _get_own_assignment(db, assignment_id, current_user)
    result = progress.record_time_spent(
        db,
        assignment_id=assignment.id,
        step_id=payload.step_id,
        delta_seconds=payload.delta_seconds,
    )
    db.commit()
    db.refresh(result)
    return result


@router.post(
    "/assignments/{assignment_id}/acknowledge",
    response_model=schemas.AssignmentProgressRead,
)
def acknowledge_training(
    assignment_id: str,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    assignment = _get_own_assignment(db, assignment_id, current_user)
    result = progress.acknowledge_training(db, assignment_id=assignment.id, user_id=current_user.id)
    db.commit()
    db.refresh(result)
    return result


@router.post(
    "/assignments/{assignment_id}/complete",
    response_model=schemas.AssignmentProgressRead,
)
def complete_training(
    assignment_id: str,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    assignment = _get_own_assignment(db, assignment_id, current_user)
    result = progress.complete_training(db, assignment_id=assignment.id, user_id=current_user.id)
    db.commit()
    db.refresh(result)
    return result


@router.get("/stats", response_model=schemas.TrainingStats)
def my_training_stats(
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    return stats.get_user_training_stats(db, user_id=current_user.id)
