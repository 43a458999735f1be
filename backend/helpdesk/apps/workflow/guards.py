from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List

GuardResult = List[Dict[str, str]]


def _get_value(obj: Any, key: str) -> Any:
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(key)
    return getattr(obj, key, None)


def _as_aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything stored is UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def guard_assignment_completion(
    *,
    before_obj: Any,
    after_obj: Any,
    from_state: str,
    to_state: str,
) -> GuardResult:
    missing = []
    if not _get_value(after_obj, "completed_at"):
        missing.append({"field": "completed_at", "reason": "completion timestamp required"})
    if _get_value(after_obj, "progress_percent") != 100:
        missing.append({"field": "progress_percent", "reason": "completed assignments are at 100%"})
    return missing


def guard_assignment_waiver(
    *,
    before_obj: Any,
    after_obj: Any,
    from_state: str,
    to_state: str,
) -> GuardResult:
    missing = []
    if not _get_value(after_obj, "waived_at"):
        missing.append({"field": "waived_at", "reason": "waiver timestamp required"})
    if not _get_value(after_obj, "waived_by_user_id"):
        missing.append({"field": "waived_by_user_id", "reason": "waiving administrator required"})
    return missing


def guard_assignment_revocation(
    *,
    before_obj: Any,
    after_obj: Any,
    from_state: str,
    to_state: str,
) -> GuardResult:
    if not _get_value(after_obj, "revoked_at"):
        return [{"field": "revoked_at", "reason": "revocation timestamp required"}]
    return []


def guard_assignment_overdue(
    *,
    before_obj: Any,
    after_obj: Any,
    from_state: str,
    to_state: str,
) -> GuardResult:
    due_at = _get_value(after_obj, "due_at")
    now = _get_value(after_obj, "now")
    if not due_at:
        return [{"field": "due_at", "reason": "only assignments with a due date can be overdue"}]
    if now is not None and _as_aware(due_at) >= _as_aware(now):
        return [{"field": "due_at", "reason": "due date has not passed"}]
    return []
