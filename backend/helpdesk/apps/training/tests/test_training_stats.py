from __future__ import annotations

from datetime import timedelta

from helpdesk.apps.accounts import models as account_models
from helpdesk.apps.training import models, progress, services, stats

from .factories import NOW, assign, create_training, create_user, event_types

Rule = models.TrainingCompletionRule
Status = models.TrainingAssignmentStatus


def _seed_mixed_assignments(db):
    admin = create_user(db, email="lead@example.com", role=account_models.UserRole.ADMIN)
    users = [create_user(db, email=f"agent{i}@example.com") for i in range(6)]
    definition, steps = create_training(db, rule=Rule.MANUAL_ACK, steps=[{}])

    untouched = assign(db, definition, users[0])
    viewing = assign(db, definition, users[1])
    progress.mark_step_viewed(db, assignment_id=viewing.id, step_id=steps[0].id, now=NOW)
    done = assign(db, definition, users[2])
    progress.acknowledge_training(db, assignment_id=done.id, user_id=users[2].id, now=NOW)
    late = assign(db, definition, users[3], due_at=NOW - timedelta(days=1))
    services.mark_overdue_assignments(db, now=NOW)
    waived = assign(db, definition, users[4])
    services.waive_assignment(db, assignment_id=waived.id, waived_by_user_id=admin.id, now=NOW)
    revoked = assign(db, definition, users[5])
    services.revoke_assignment(db, assignment_id=revoked.id, now=NOW)
    db.commit()
    return definition, users, {
        "untouched": untouched,
        "viewing": viewing,
        "done": done,
        "late": late,
        "waived": waived,
        "revoked": revoked,
    }


def test_training_stats_bucket_by_status_and_skip_revoked(db_session):
    definition, _, _ = _seed_mixed_assignments(db_session)

    result = stats.get_training_stats(db_session, training_id=definition.training_id)

    assert result == {
        "total_assigned": 5,
        "assigned": 1,
        "in_progress": 1,
        "completed": 1,
        "overdue": 1,
        "waived": 1,
    }


def test_user_stats_only_count_that_user(db_session):
    _, users, _ = _seed_mixed_assignments(db_session)

    assert stats.get_user_training_stats(db_session, user_id=users[2].id) == {
        "total_assigned": 1,
        "assigned": 0,
        "in_progress": 0,
        "completed": 1,
        "overdue": 0,
        "waived": 0,
    }
    assert stats.get_user_training_stats(db_session, user_id=users[5].id)["total_assigned"] == 0


def test_stats_for_training_without_assignments_are_zero(db_session):
    definition, _ = create_training(db_session, rule=Rule.MANUAL_ACK)

    assert set(stats.get_training_stats(db_session, training_id=definition.training_id).values()) == {0}


def test_overdue_sweep_flags_only_open_late_assignments(db_session):
    user = create_user(db_session)
    definition, steps = create_training(db_session, rule=Rule.MANUAL_ACK, steps=[{}])
    late_assigned = assign(db_session, definition, user, due_at=NOW - timedelta(hours=1))
    late_started = assign(
        db_session, definition, user, due_at=NOW - timedelta(days=2), now=NOW - timedelta(days=4)
    )
    progress.mark_step_viewed(
        db_session, assignment_id=late_started.id, step_id=steps[0].id, now=NOW - timedelta(days=3)
    )
    on_time = assign(db_session, definition, user, due_at=NOW + timedelta(days=1))
    undated = assign(db_session, definition, user)
    late_done = assign(db_session, definition, user, due_at=NOW - timedelta(days=1))
    progress.acknowledge_training(db_session, assignment_id=late_done.id, user_id=user.id, now=NOW)
    late_revoked = assign(db_session, definition, user, due_at=NOW - timedelta(days=1))
    services.revoke_assignment(db_session, assignment_id=late_revoked.id, now=NOW)
    db_session.commit()

    assert services.mark_overdue_assignments(db_session, now=NOW) == 2
    db_session.commit()
    assert services.mark_overdue_assignments(db_session, now=NOW) == 0

    assert late_assigned.progress.status == Status.OVERDUE
    assert late_started.progress.status == Status.OVERDUE
    assert on_time.progress.status == Status.ASSIGNED
    assert undated.progress.status == Status.ASSIGNED
    assert late_done.progress.status == Status.COMPLETED
    assert late_revoked.progress.status == Status.REVOKED
    assert event_types(db_session, late_started.id) == ["ASSIGNED", "VIEWED", "OVERDUE"]


def test_overdue_assignment_can_still_complete(db_session):
    user = create_user(db_session)
    definition, steps = create_training(db_session, rule=Rule.ALL_STEPS_VIEWED, steps=[{}, {}])
    assignment = assign(db_session, definition, user, due_at=NOW - timedelta(days=1))
    services.mark_overdue_assignments(db_session, now=NOW)

    progress.mark_step_viewed(db_session, assignment_id=assignment.id, step_id=steps[0].id, now=NOW)
    assert assignment.progress.status == Status.OVERDUE

    progress.mark_step_viewed(db_session, assignment_id=assignment.id, step_id=steps[1].id, now=NOW)
    db_session.commit()

    assert assignment.progress.status == Status.COMPLETED
    assert assignment.progress.completed_at == NOW
