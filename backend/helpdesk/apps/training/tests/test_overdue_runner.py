from __future__ import annotations

from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import sessionmaker

from helpdesk.apps.training import models
from helpdesk.jobs import training_overdue_runner

from .factories import assign, create_training, create_user


def test_runner_marks_late_assignments_and_commits(db_session, monkeypatch):
    user = create_user(db_session)
    definition, _ = create_training(db_session, rule=models.TrainingCompletionRule.MANUAL_ACK)
    yesterday = datetime.now(timezone.utc).replace(tzinfo=None) - timedelta(days=1)
    late = assign(db_session, definition, user, due_at=yesterday, now=yesterday - timedelta(days=7))
    assign(db_session, definition, user, due_at=yesterday + timedelta(days=30), now=yesterday)

    monkeypatch.setattr(
        training_overdue_runner,
        "WriteSessionLocal",
        sessionmaker(bind=db_session.get_bind(), autoflush=False, expire_on_commit=False),
    )

    assert training_overdue_runner.run() == {"marked_overdue": 1}
    assert training_overdue_runner.run() == {"marked_overdue": 0}

    db_session.expire_all()
    refreshed = db_session.get(models.TrainingAssignmentProgress, late.id)
    assert refreshed.status == models.TrainingAssignmentStatus.OVERDUE
