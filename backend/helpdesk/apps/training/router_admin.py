"""
Administrator endpoints for training definitions, steps and assignments.

All routes require ADMIN (SUPER_ADMIN always passes). Each request commits
once; any TrainingError rolls the whole request back.
"""

from __future__ import annotations

import os
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from helpdesk.database import get_db, get_read_db
from helpdesk.security import require_roles
from helpdesk.apps.accounts import models as account_models
from helpdesk.utils.identifiers import normalise_id

from . import events, models, progress, schemas, services, stats
from .errors import NotFoundError

SINGLE_ACTIVE_ASSIGNMENT = os.getenv("TRAINING_SINGLE_ACTIVE_ASSIGNMENT", "false").lower() in {
    "1",
    "true",
    "yes",
}

router = APIRouter(prefix="/admin/training", tags=["training-admin"])

_admin_dependency = require_roles(account_models.UserRole.ADMIN)


def _path_id(value: str, label: str) -> str:
    canonical = normalise_id(value)
    if canonical is None:
        raise NotFoundError(f"{label} {value} not found")
    return canonical


# ---------------------------------------------------------------------------
# DEFINITIONS
# ---------------------------------------------------------------------------


@router.post(
    "/definitions",
    response_model=schemas.TrainingDefinitionRead,
    status_code=status.HTTP_201_CREATED,
)
def create_definition(
    payload: schemas.TrainingDefinitionCreate,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(_admin_dependency),
):
    definition = services.create_training_definition(
        db,
        training_id=_path_id(payload.training_id, "Training"),
        completion_rule=payload.completion_rule,
        estimated_minutes=payload.estimated_minutes,
        allow_downloads=payload.allow_downloads,
        require_acknowledgement=payload.require_acknowledgement,
    )
    db.commit()
    db.refresh(definition)
    return definition


@router.get("/definitions/{training_id}", response_model=schemas.TrainingDefinitionRead)
def get_definition(
    training_id: str,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(_admin_dependency),
):
    return services.get_training_definition(db, _path_id(training_id, "Training"))


@router.patch("/definitions/{training_id}", response_model=schemas.TrainingDefinitionRead)
def update_definition(
    training_id: str,
    payload: schemas.TrainingDefinitionUpdate,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(_admin_dependency),
):
    definition = services.update_training_definition(
        db,
        training_id=_path_id(training_id, "Training"),
        changes=payload.model_dump(exclude_unset=True),
    )
    db.commit()
    db.refresh(definition)
    return definition


# ---------------------------------------------------------------------------
# STEPS
# ---------------------------------------------------------------------------


@router.get("/definitions/{training_id}/steps", response_model=List[schemas.TrainingStepRead])
def list_steps(
    training_id: str,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(_admin_dependency),
):
    definition = services.get_training_definition(db, _path_id(training_id, "Training"))
    return services.list_training_steps(db, definition.training_id)


@router.post(
    "/definitions/{training_id}/steps",
    response_model=schemas.TrainingStepRead,
    status_code=status.HTTP_201_CREATED,
)
def add_step(
    training_id: str,
    payload: schemas.TrainingStepCreate,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(_admin_dependency),
):
    step = services.add_training_step(
        db,
        training_id=_path_id(training_id, "Training"),
        step_index=payload.step_index,
        content_item_id=_path_id(payload.content_item_id, "Content item"),
        is_required=payload.is_required,
        min_view_seconds=payload.min_view_seconds,
        requires_ack=payload.requires_ack,
    )
    db.commit()
    db.refresh(step)
    return step


@router.patch("/steps/{step_id}", response_model=schemas.TrainingStepRead)
def update_step(
    step_id: str,
    payload: schemas.TrainingStepUpdate,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(_admin_dependency),
):
    step = services.update_training_step(
        db,
        step_id=_path_id(step_id, "Training step"),
        changes=payload.model_dump(exclude_unset=True),
    )
    db.commit()
    db.refresh(step)
    return step


@router.delete("/steps/{step_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_step(
    step_id: str,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(_admin_dependency),
):
    services.delete_training_step(db, step_id=_path_id(step_id, "Training step"))
    db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------------------------------------------------------------------------
# ASSIGNMENTS
# ---------------------------------------------------------------------------


@router.post(
    "/assignments",
    response_model=schemas.AssignmentRead,
    status_code=status.HTTP_201_CREATED,
)
def create_assignment(
    payload: schemas.AssignmentCreate,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(_admin_dependency),
):
    assignment = services.create_assignment(
        db,
        training_id=_path_id(payload.training_id, "Training"),
        user_id=_path_id(payload.user_id, "User"),
        assigned_by_user_id=current_user.id,
        is_required=payload.is_required,
        due_at=payload.due_at,
        enforce_single_active=SINGLE_ACTIVE_ASSIGNMENT,
    )
    db.commit()
    db.refresh(assignment)
    return assignment


@router.delete("/assignments/{assignment_id}", response_model=schemas.AssignmentRead)
def revoke_assignment(
    assignment_id: str,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(_admin_dependency),
):
    assignment = services.revoke_assignment(
        db,
        assignment_id=_path_id(assignment_id, "Assignment"),
        actor_user_id=current_user.id,
    )
    db.commit()
    db.refresh(assignment)
    return assignment


@router.post("/assignments/{assignment_id}/waive", response_model=schemas.AssignmentRead)
def waive_assignment(
    assignment_id: str,
    payload: Optional[schemas.AssignmentWaive] = None,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(_admin_dependency),
):
    assignment = services.waive_assignment(
        db,
        assignment_id=_path_id(assignment_id, "Assignment"),
        waived_by_user_id=current_user.id,
        reason=payload.reason if payload else None,
    )
    db.commit()
    db.refresh(assignment)
    return assignment


@router.post(
    "/assignments/{assignment_id}/complete",
    response_model=schemas.AssignmentProgressRead,
)
def complete_assignment(
    assignment_id: str,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(_admin_dependency),
):
    result = progress.complete_training(
        db,
        assignment_id=_path_id(assignment_id, "Assignment"),
        user_id=current_user.id,
    )
    db.commit()
    db.refresh(result)
    return result


@router.get(
    "/assignments/{assignment_id}/events",
    response_model=List[schemas.TrainingEventRead],
)
def list_assignment_events(
    assignment_id: str,
    event_type: Optional[models.TrainingEventType] = Query(None),
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(_admin_dependency),
):
    assignment = services.load_assignment(db, _path_id(assignment_id, "Assignment"))
    return events.list_assignment_events(
        db,
        assignment_id=assignment.id,
        event_type=event_type.value if event_type else None,
    )


# ---------------------------------------------------------------------------
# STATS
# ---------------------------------------------------------------------------


@router.get("/users/{user_id}/stats", response_model=schemas.TrainingStats)
def user_stats(
    user_id: str,
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(_admin_dependency),
):
    user = services.get_user(db, _path_id(user_id, "User"))
    return stats.get_user_training_stats(db, user_id=user.id)


@router.get("/{training_id}/stats", response_model=schemas.TrainingStats)
def training_stats(
    training_id: str,
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(_admin_dependency),
):
    definition = services.get_training_definition(db, _path_id(training_id, "Training"))
    return stats.get_training_stats(db, training_id=definition.training_id)
