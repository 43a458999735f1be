from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List

from .registry import WORKFLOWS


@dataclass
class TransitionError(Exception):
    code: str
    detail: List[Dict[str, str]]

    def __str__(self) -> str:
        reasons = "; ".join(item.get("reason", "") for item in self.detail)
        return f"{self.code}: {reasons}" if reasons else self.code


def _state(value: Any) -> str:
    return str(getattr(value, "value", value))


def allowed_targets(entity_type: str, from_state: Any) -> List[str]:
    workflow = WORKFLOWS.get(entity_type) or {}
    return sorted(workflow.get("transitions", {}).get(_state(from_state), {}).keys())


def apply_transition(
    *,
    entity_type: str,
    from_state: Any,
    to_state: Any,
    before_obj: Any,
    after_obj: Any,
) -> None:
    """
    Validate a status change against the registered workflow.

    `after_obj` describes the row as it will look once the change is
    written; guards inspect it for the fields the target state needs.
    Raises TransitionError when the edge does not exist or a guard fails.
    """
    workflow = WORKFLOWS.get(entity_type)
    if not workflow:
        raise TransitionError(
            code="invalid_transition",
            detail=[{"field": "entity_type", "reason": f"No workflow registered for {entity_type}"}],
        )

    from_key = _state(from_state)
    to_key = _state(to_state)
    guards = workflow.get("transitions", {}).get(from_key, {}).get(to_key)

    if guards is None:
        raise TransitionError(
            code="invalid_transition",
            detail=[{"field": "status", "reason": f"Cannot transition from {from_key} to {to_key}"}],
        )

    failures: List[Dict[str, str]] = []
    for guard in guards:
        failures.extend(
            guard(
                before_obj=before_obj,
                after_obj=after_obj,
                from_state=from_key,
                to_state=to_key,
            )
        )

    if failures:
        raise TransitionError(code="missing_requirements", detail=failures)
