from __future__ import annotations

from .guards import (
    guard_assignment_completion,
    guard_assignment_overdue,
    guard_assignment_revocation,
    guard_assignment_waiver,
)

# A waiver can still be overridden by a revocation. REVOKED is final apart
# from re-stamping it, and neither leads back into the active states.
WORKFLOWS = {
    "training_assignment": {
        "transitions": {
            "ASSIGNED": {
                "IN_PROGRESS": [],
                "OVERDUE": [guard_assignment_overdue],
                "COMPLETED": [guard_assignment_completion],
                "WAIVED": [guard_assignment_waiver],
                "REVOKED": [guard_assignment_revocation],
            },
            "IN_PROGRESS": {
                "OVERDUE": [guard_assignment_overdue],
                "COMPLETED": [guard_assignment_completion],
                "WAIVED": [guard_assignment_waiver],
                "REVOKED": [guard_assignment_revocation],
            },
            "OVERDUE": {
                "COMPLETED": [guard_assignment_completion],
                "WAIVED": [guard_assignment_waiver],
                "REVOKED": [guard_assignment_revocation],
            },
            "COMPLETED": {},
            "WAIVED": {
                "WAIVED": [guard_assignment_waiver],
                "REVOKED": [guard_assignment_revocation],
            },
            "REVOKED": {
                "REVOKED": [guard_assignment_revocation],
            },
        }
    },
}
