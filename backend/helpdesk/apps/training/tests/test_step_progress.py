from __future__ import annotations

from datetime import timedelta

import pytest

from helpdesk.apps.training import events, models, progress, services
from helpdesk.apps.training.errors import NotFoundError, ValidationError

from .factories import NOW, assign, create_training, create_user, event_types

Rule = models.TrainingCompletionRule
Status = models.TrainingAssignmentStatus


def _step_row(db, assignment_id, step_id):
    rows = {row.step_id: row for row in services.get_step_progress(db, assignment_id)}
    return rows.get(step_id)


def test_view_moves_assigned_to_in_progress(db_session):
    user = create_user(db_session)
    definition, steps = create_training(db_session, rule=Rule.ALL_STEPS_VIEWED, steps=[{}, {}])
    assignment = assign(db_session, definition, user)

    result = progress.mark_step_viewed(
        db_session, assignment_id=assignment.id, step_id=steps[0].id, now=NOW
    )
    db_session.commit()

    assert result.status == Status.IN_PROGRESS
    assert result.started_at == NOW
    assert result.first_viewed_at == NOW
    assert result.last_activity_at == NOW
    assert result.progress_percent == 50
    assert event_types(db_session, assignment.id) == ["ASSIGNED", "VIEWED"]


def test_repeated_view_keeps_first_view_and_moves_last_view(db_session):
    user = create_user(db_session)
    definition, steps = create_training(db_session, rule=Rule.MANUAL_ACK, steps=[{}])
    assignment = assign(db_session, definition, user)
    later = NOW + timedelta(minutes=30)

    progress.mark_step_viewed(db_session, assignment_id=assignment.id, step_id=steps[0].id, now=NOW)
    progress.mark_step_viewed(db_session, assignment_id=assignment.id, step_id=steps[0].id, now=later)
    db_session.commit()

    row = _step_row(db_session, assignment.id, steps[0].id)
    assert row.first_viewed_at == NOW
    assert row.last_viewed_at == later
    assert row.time_spent_seconds == 0
    assert assignment.progress.first_viewed_at == NOW
    assert assignment.progress.last_activity_at == later
    assert len(services.get_step_progress(db_session, assignment.id)) == 1


def test_time_spent_accumulates(db_session):
    user = create_user(db_session)
    definition, steps = create_training(db_session, rule=Rule.MANUAL_ACK, steps=[{}])
    assignment = assign(db_session, definition, user)

    progress.mark_step_viewed(
        db_session, assignment_id=assignment.id, step_id=steps[0].id, time_spent_seconds=45, now=NOW
    )
    progress.record_time_spent(db_session, assignment_id=assignment.id, step_id=steps[0].id, delta_seconds=30)
    progress.record_time_spent(db_session, assignment_id=assignment.id, step_id=steps[0].id, delta_seconds=0)
    db_session.commit()

    assert _step_row(db_session, assignment.id, steps[0].id).time_spent_seconds == 75
    recorded = events.list_assignment_events(
        db_session, assignment_id=assignment.id, event_type="TIME_RECORDED"
    )
    assert [event.metadata_json["deltaSeconds"] for event in recorded] == [30, 0]


def test_time_spent_before_any_view_creates_row_without_view(db_session):
    user = create_user(db_session)
    definition, steps = create_training(db_session, rule=Rule.ALL_STEPS_VIEWED, steps=[{}])
    assignment = assign(db_session, definition, user)

    result = progress.record_time_spent(
        db_session, assignment_id=assignment.id, step_id=steps[0].id, delta_seconds=20, now=NOW
    )

    row = _step_row(db_session, assignment.id, steps[0].id)
    assert row.time_spent_seconds == 20
    assert row.first_viewed_at is None
    assert result.status == Status.ASSIGNED


@pytest.mark.parametrize("bad_value", [-1, 1.5, "10", True, models.MAX_TIME_SPENT_SECONDS + 1])
def test_invalid_time_is_rejected_without_writes(db_session, bad_value):
    user = create_user(db_session)
    definition, steps = create_training(db_session, rule=Rule.MANUAL_ACK, steps=[{}])
    assignment = assign(db_session, definition, user)

    with pytest.raises(ValidationError):
        progress.record_time_spent(
            db_session, assignment_id=assignment.id, step_id=steps[0].id, delta_seconds=bad_value
        )
    with pytest.raises(ValidationError):
        progress.mark_step_viewed(
            db_session, assignment_id=assignment.id, step_id=steps[0].id, time_spent_seconds=bad_value
        )

    assert services.get_step_progress(db_session, assignment.id) == []
    assert event_types(db_session, assignment.id) == ["ASSIGNED"]


def test_time_spent_total_stops_at_column_bound(db_session):
    user = create_user(db_session)
    definition, steps = create_training(db_session, rule=Rule.MANUAL_ACK, steps=[{}])
    assignment = assign(db_session, definition, user)

    for delta in (models.MAX_TIME_SPENT_SECONDS - 5, 10, 10):
        progress.record_time_spent(
            db_session, assignment_id=assignment.id, step_id=steps[0].id, delta_seconds=delta, now=NOW
        )
    db_session.commit()

    assert _step_row(db_session, assignment.id, steps[0].id).time_spent_seconds == models.MAX_TIME_SPENT_SECONDS


def test_step_from_another_training_is_not_found(db_session):
    user = create_user(db_session)
    definition, _ = create_training(db_session, rule=Rule.MANUAL_ACK, steps=[{}])
    _, other_steps = create_training(db_session, rule=Rule.MANUAL_ACK, steps=[{}], title="Other")
    assignment = assign(db_session, definition, user)

    with pytest.raises(NotFoundError):
        progress.mark_step_viewed(db_session, assignment_id=assignment.id, step_id=other_steps[0].id)


def test_all_steps_viewed_completes_once_min_view_reached(db_session):
    user = create_user(db_session)
    definition, steps = create_training(
        db_session, rule=Rule.ALL_STEPS_VIEWED, steps=[{"min_view_seconds": 300}]
    )
    assignment = assign(db_session, definition, user)

    first = progress.mark_step_viewed(
        db_session, assignment_id=assignment.id, step_id=steps[0].id, time_spent_seconds=100, now=NOW
    )
    assert first.status == Status.IN_PROGRESS
    assert first.completed_at is None

    done_at = NOW + timedelta(minutes=4)
    second = progress.record_time_spent(
        db_session, assignment_id=assignment.id, step_id=steps[0].id, delta_seconds=200, now=done_at
    )
    db_session.commit()

    assert second.status == Status.COMPLETED
    assert second.completed_at == done_at
    assert second.progress_percent == 100
    completed = events.list_assignment_events(
        db_session, assignment_id=assignment.id, event_type="COMPLETED"
    )
    assert len(completed) == 1
    assert completed[0].actor_user_id is None
    assert completed[0].metadata_json == {"trigger": "rule", "rule": "ALL_STEPS_VIEWED"}


def test_all_steps_completed_waits_for_required_ack(db_session):
    user = create_user(db_session)
    definition, steps = create_training(
        db_session, rule=Rule.ALL_STEPS_COMPLETED, steps=[{}, {"requires_ack": True}]
    )
    assignment = assign(db_session, definition, user)

    for step in steps:
        progress.mark_step_viewed(db_session, assignment_id=assignment.id, step_id=step.id, now=NOW)
        progress.mark_step_completed(db_session, assignment_id=assignment.id, step_id=step.id, now=NOW)

    assert assignment.progress.status == Status.IN_PROGRESS
    detail = services.get_assignment_detail(db_session, assignment_id=assignment.id)
    assert detail["outstanding_step_ids"] == [steps[1].id]

    result = progress.acknowledge_step(
        db_session, assignment_id=assignment.id, step_id=steps[1].id, user_id=user.id, now=NOW
    )
    db_session.commit()

    assert result.status == Status.COMPLETED
    assert event_types(db_session, assignment.id)[-2:] == ["ACKNOWLEDGED", "COMPLETED"]


def test_manual_ack_completes_on_acknowledgement(db_session):
    user = create_user(db_session)
    definition, _ = create_training(db_session, rule=Rule.MANUAL_ACK, steps=[{}, {}])
    assignment = assign(db_session, definition, user)

    result = progress.acknowledge_training(
        db_session, assignment_id=assignment.id, user_id=user.id, now=NOW
    )
    db_session.commit()

    assert result.status == Status.COMPLETED
    assert result.acknowledged_at == NOW
    assert result.completed_at == NOW
    assert event_types(db_session, assignment.id) == ["ASSIGNED", "ACKNOWLEDGED", "COMPLETED"]


def test_manual_complete_needs_explicit_completion_and_is_idempotent(db_session):
    user = create_user(db_session)
    definition, steps = create_training(db_session, rule=Rule.MANUAL_COMPLETE, steps=[{}])
    assignment = assign(db_session, definition, user)

    progress.mark_step_viewed(db_session, assignment_id=assignment.id, step_id=steps[0].id, now=NOW)
    progress.acknowledge_training(db_session, assignment_id=assignment.id, user_id=user.id, now=NOW)
    assert assignment.progress.status == Status.IN_PROGRESS

    finished_at = NOW + timedelta(hours=1)
    progress.complete_training(db_session, assignment_id=assignment.id, user_id=user.id, now=finished_at)
    progress.complete_training(
        db_session, assignment_id=assignment.id, user_id=user.id, now=finished_at + timedelta(hours=1)
    )
    db_session.commit()

    assert assignment.progress.status == Status.COMPLETED
    assert assignment.progress.completed_at == finished_at
    completed = events.list_assignment_events(
        db_session, assignment_id=assignment.id, event_type="COMPLETED"
    )
    assert len(completed) == 1
    assert completed[0].actor_user_id == user.id
    assert completed[0].metadata_json == {"trigger": "manual"}


def test_completed_assignment_still_records_activity(db_session):
    user = create_user(db_session)
    definition, steps = create_training(db_session, rule=Rule.MANUAL_ACK, steps=[{}])
    assignment = assign(db_session, definition, user)
    progress.acknowledge_training(db_session, assignment_id=assignment.id, user_id=user.id, now=NOW)

    later = NOW + timedelta(days=1)
    result = progress.mark_step_viewed(
        db_session, assignment_id=assignment.id, step_id=steps[0].id, time_spent_seconds=5, now=later
    )
    db_session.commit()

    assert result.status == Status.COMPLETED
    assert result.completed_at == NOW
    assert result.last_activity_at == later
    assert event_types(db_session, assignment.id).count("COMPLETED") == 1
