from __future__ import annotations

from datetime import timedelta

import pytest

from helpdesk.apps.events.broker import broker
from helpdesk.apps.training import events, models, progress, services
from helpdesk.apps.training.models import ImmutableEventError

from .factories import NOW, assign, create_training, create_user


def test_events_cannot_be_updated_or_deleted(db_session):
    user = create_user(db_session)
    definition, _ = create_training(db_session, rule=models.TrainingCompletionRule.MANUAL_ACK)
    assignment = assign(db_session, definition, user)
    event = events.list_assignment_events(db_session, assignment_id=assignment.id)[0]

    event.event_type = "EDITED"
    with pytest.raises(ImmutableEventError):
        db_session.flush()
    db_session.rollback()

    event = events.list_assignment_events(db_session, assignment_id=assignment.id)[0]
    db_session.delete(event)
    with pytest.raises(ImmutableEventError):
        db_session.flush()
    db_session.rollback()

    assert [e.event_type for e in events.list_assignment_events(db_session, assignment_id=assignment.id)] == [
        "ASSIGNED"
    ]


def test_events_are_listed_in_call_order_and_filterable(db_session):
    user = create_user(db_session)
    definition, steps = create_training(
        db_session, rule=models.TrainingCompletionRule.MANUAL_COMPLETE, steps=[{}]
    )
    assignment = assign(db_session, definition, user)
    for _ in range(3):
        progress.mark_step_viewed(db_session, assignment_id=assignment.id, step_id=steps[0].id, now=NOW)
    progress.complete_training(
        db_session, assignment_id=assignment.id, user_id=user.id, now=NOW + timedelta(seconds=1)
    )
    db_session.commit()

    listed = events.list_assignment_events(db_session, assignment_id=assignment.id)
    assert [e.event_type for e in listed] == ["ASSIGNED", "VIEWED", "VIEWED", "VIEWED", "COMPLETED"]
    assert all(e.metadata_json == {"stepId": steps[0].id} for e in listed[1:4])

    viewed = events.list_assignment_events(db_session, assignment_id=assignment.id, event_type="VIEWED")
    assert len(viewed) == 3


def test_events_are_projected_to_the_broker(db_session):
    user = create_user(db_session)
    definition, _ = create_training(db_session, rule=models.TrainingCompletionRule.MANUAL_ACK)
    subscriber = broker.subscribe()
    try:
        assignment = assign(db_session, definition, user)
        envelope = subscriber.get_nowait()
    finally:
        broker.unsubscribe(subscriber)

    assert envelope.assignmentId == assignment.id
    assert envelope.eventType == "ASSIGNED"
    assert envelope.type == "training_assignment.assigned"
    assert envelope.metadata["userId"] == user.id
    assert envelope.metadata["trainingId"] == definition.training_id


def test_sink_failure_does_not_fail_the_write(db_session, monkeypatch):
    user = create_user(db_session)
    definition, _ = create_training(db_session, rule=models.TrainingCompletionRule.MANUAL_ACK)

    def _broken_publish(envelope):
        raise RuntimeError("sink unavailable")

    monkeypatch.setattr(events, "publish_event", _broken_publish)
    assignment = services.create_assignment(
        db_session, training_id=definition.training_id, user_id=user.id, now=NOW
    )
    db_session.commit()

    assert [e.event_type for e in events.list_assignment_events(db_session, assignment_id=assignment.id)] == [
        "ASSIGNED"
    ]
