from __future__ import annotations

import random
from datetime import datetime

import pytest

from helpdesk.apps.training import rules
from helpdesk.apps.training.models import TrainingCompletionRule

SEEN = datetime(2026, 3, 2, 9, 0, 0)


def _expected(rule, steps, progress, acknowledged_at):
    """Plain restatement of the completion rules, step by step."""
    if rule == TrainingCompletionRule.MANUAL_ACK:
        return acknowledged_at is not None
    if rule == TrainingCompletionRule.MANUAL_COMPLETE:
        return False
    for step in steps:
        row = progress.get(step["id"])
        if rule == TrainingCompletionRule.ALL_STEPS_VIEWED:
            if not step["is_required"]:
                continue
            if row is None or row["first_viewed_at"] is None:
                return False
            if step["min_view_seconds"] and row["time_spent_seconds"] < step["min_view_seconds"]:
                return False
        else:
            if step["is_required"] and (row is None or row["completed_at"] is None):
                return False
            if step["requires_ack"] and (row is None or row["acknowledged_at"] is None):
                return False
    return True


def _random_case(rng: random.Random):
    steps = []
    progress = {}
    for index in range(rng.randint(0, 5)):
        step_id = f"step-{index}"
        steps.append(
            {
                "id": step_id,
                "step_index": index,
                "is_required": rng.random() < 0.7,
                "min_view_seconds": rng.choice([None, 0, 30, 300]),
                "requires_ack": rng.random() < 0.3,
            }
        )
        if rng.random() < 0.75:
            progress[step_id] = {
                "step_id": step_id,
                "first_viewed_at": SEEN if rng.random() < 0.8 else None,
                "completed_at": SEEN if rng.random() < 0.6 else None,
                "acknowledged_at": SEEN if rng.random() < 0.5 else None,
                "time_spent_seconds": rng.choice([0, 29, 30, 299, 300, 900]),
            }
    acknowledged_at = SEEN if rng.random() < 0.5 else None
    return steps, progress, acknowledged_at


@pytest.mark.parametrize("seed", range(40))
@pytest.mark.parametrize("rule", list(TrainingCompletionRule))
def test_evaluate_matches_rule_definition(seed, rule):
    rng = random.Random(seed)
    steps, progress, acknowledged_at = _random_case(rng)

    assert rules.evaluate(rule, steps, progress, acknowledged_at) == _expected(
        rule, steps, progress, acknowledged_at
    )


def test_manual_ack_ignores_steps():
    steps = [{"id": "s1", "step_index": 0, "is_required": True, "min_view_seconds": None, "requires_ack": False}]

    assert rules.evaluate(TrainingCompletionRule.MANUAL_ACK, steps, {}, SEEN) is True
    assert rules.evaluate(TrainingCompletionRule.MANUAL_ACK, steps, {}, None) is False


def test_manual_complete_never_completes_automatically():
    assert rules.evaluate(TrainingCompletionRule.MANUAL_COMPLETE, [], {}, SEEN) is False


def test_all_steps_viewed_respects_min_view_seconds():
    steps = [{"id": "s1", "step_index": 0, "is_required": True, "min_view_seconds": 300, "requires_ack": False}]
    progress = {"s1": {"step_id": "s1", "first_viewed_at": SEEN, "time_spent_seconds": 299}}

    assert rules.evaluate(TrainingCompletionRule.ALL_STEPS_VIEWED, steps, progress) is False

    progress["s1"]["time_spent_seconds"] = 300
    assert rules.evaluate(TrainingCompletionRule.ALL_STEPS_VIEWED, steps, progress) is True


def test_all_steps_completed_blocks_on_optional_step_needing_ack():
    steps = [
        {"id": "s1", "step_index": 0, "is_required": True, "min_view_seconds": None, "requires_ack": False},
        {"id": "s2", "step_index": 1, "is_required": False, "min_view_seconds": None, "requires_ack": True},
    ]
    progress = {"s1": {"step_id": "s1", "completed_at": SEEN}}

    outstanding = rules.outstanding_steps(TrainingCompletionRule.ALL_STEPS_COMPLETED, steps, progress)
    assert [step["id"] for step in outstanding] == ["s2"]
    assert rules.evaluate(TrainingCompletionRule.ALL_STEPS_COMPLETED, steps, progress) is False


def test_step_rules_hold_without_required_steps():
    optional = [{"id": "s1", "step_index": 0, "is_required": False, "min_view_seconds": None, "requires_ack": False}]

    assert rules.evaluate(TrainingCompletionRule.ALL_STEPS_VIEWED, optional, {}) is True
    assert rules.evaluate(TrainingCompletionRule.ALL_STEPS_COMPLETED, [], {}) is True


def test_progress_percent_floors_and_counts_required_steps_only():
    steps = [
        {"id": f"s{i}", "step_index": i, "is_required": i < 3, "min_view_seconds": None, "requires_ack": False}
        for i in range(4)
    ]
    progress = {"s0": {"step_id": "s0", "first_viewed_at": SEEN}, "s3": {"step_id": "s3", "first_viewed_at": SEEN}}

    assert rules.compute_progress_percent(TrainingCompletionRule.ALL_STEPS_VIEWED, steps, progress) == 33
    assert rules.compute_progress_percent(TrainingCompletionRule.ALL_STEPS_VIEWED, [], {}) == 0
