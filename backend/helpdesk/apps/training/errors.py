from __future__ import annotations


class TrainingError(Exception):
    """Base class for errors surfaced by the training engine.

    `kind` is the stable machine-readable tag returned to API clients.
    """

    kind = "training_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message}


class NotFoundError(TrainingError):
    """Referenced assignment, definition, step, content item or user does not exist."""

    kind = "not_found"


class TerminalStateError(TrainingError):
    """Mutation attempted on a waived or revoked assignment."""

    kind = "terminal_state"


class ValidationError(TrainingError):
    """Malformed input, rejected before anything is written."""

    kind = "validation_error"


class ConflictError(TrainingError):
    """Request clashes with existing state (duplicates, illegal transitions)."""

    kind = "conflict"
