"""
Completion rule evaluation.

Everything here is pure: callers hand in the definition's rule, the
training's steps and the assignment's step progress, and get a decision
back. Inputs may be ORM rows or plain dicts, which keeps the evaluator
usable from tests and from collaborators that only hold snapshots.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, List, Mapping, Optional

from .models import TrainingCompletionRule


def _get_value(obj: Any, key: str) -> Any:
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(key)
    return getattr(obj, key, None)


def index_progress(step_progress: Iterable[Any]) -> dict:
    """Key step progress rows by step id."""
    return {str(_get_value(row, "step_id")): row for row in step_progress}


def _viewed_enough(step: Any, progress: Any) -> bool:
    if progress is None or _get_value(progress, "first_viewed_at") is None:
        return False
    min_view = _get_value(step, "min_view_seconds")
    if min_view:
        return (_get_value(progress, "time_spent_seconds") or 0) >= min_view
    return True


def _acknowledged_if_needed(step: Any, progress: Any) -> bool:
    if not _get_value(step, "requires_ack"):
        return True
    return progress is not None and _get_value(progress, "acknowledged_at") is not None


def _completed(step: Any, progress: Any) -> bool:
    return progress is not None and _get_value(progress, "completed_at") is not None


def step_satisfied(rule: TrainingCompletionRule, step: Any, progress: Any) -> bool:
    """
    Per-step condition used for the advisory progress percentage.

    MANUAL_ACK and MANUAL_COMPLETE count a step once it has been viewed.
    """
    rule = TrainingCompletionRule(rule)
    if rule == TrainingCompletionRule.ALL_STEPS_COMPLETED:
        return _completed(step, progress) and _acknowledged_if_needed(step, progress)
    if rule == TrainingCompletionRule.ALL_STEPS_VIEWED:
        return _viewed_enough(step, progress)
    return progress is not None and _get_value(progress, "first_viewed_at") is not None


def outstanding_steps(
    rule: TrainingCompletionRule,
    steps: Iterable[Any],
    step_progress: Mapping[str, Any],
) -> List[Any]:
    """
    Steps still blocking automatic completion, in step order.

    Empty for the manual rules: their completion does not depend on steps.
    """
    rule = TrainingCompletionRule(rule)
    ordered = sorted(steps, key=lambda s: _get_value(s, "step_index") or 0)
    if rule == TrainingCompletionRule.ALL_STEPS_VIEWED:
        return [
            step
            for step in ordered
            if _get_value(step, "is_required")
            and not _viewed_enough(step, step_progress.get(str(_get_value(step, "id"))))
        ]
    if rule == TrainingCompletionRule.ALL_STEPS_COMPLETED:
        blocking = []
        for step in ordered:
            progress = step_progress.get(str(_get_value(step, "id")))
            if _get_value(step, "is_required") and not _completed(step, progress):
                blocking.append(step)
            elif not _acknowledged_if_needed(step, progress):
                blocking.append(step)
        return blocking
    return []


def evaluate(
    rule: TrainingCompletionRule,
    steps: Iterable[Any],
    step_progress: Mapping[str, Any],
    acknowledged_at: Optional[datetime] = None,
) -> bool:
    """
    Return True when the assignment satisfies its completion rule.

    - MANUAL_ACK: the training was acknowledged; steps are irrelevant.
    - ALL_STEPS_VIEWED: every required step viewed, and watched for at least
      min_view_seconds where the step sets one.
    - ALL_STEPS_COMPLETED: every required step completed, and every step
      that requires acknowledgement acknowledged.
    - MANUAL_COMPLETE: never.

    A training without required steps satisfies both step rules.
    """
    rule = TrainingCompletionRule(rule)
    if rule == TrainingCompletionRule.MANUAL_ACK:
        return acknowledged_at is not None
    if rule == TrainingCompletionRule.MANUAL_COMPLETE:
        return False
    return not outstanding_steps(rule, steps, step_progress)


def compute_progress_percent(
    rule: TrainingCompletionRule,
    steps: Iterable[Any],
    step_progress: Mapping[str, Any],
) -> int:
    """floor(satisfied required steps / required steps * 100); 0 without required steps."""
    required = [step for step in steps if _get_value(step, "is_required")]
    if not required:
        return 0
    satisfied = sum(
        1
        for step in required
        if step_satisfied(rule, step, step_progress.get(str(_get_value(step, "id"))))
    )
    return (satisfied * 100) // len(required)
