"""Exception classes for the scoring, fining and billing engine.

Rejections carry a specific reason so the calling layer can tell "not found"
from "wrong state" from "unauthorized" without parsing messages.
"""

from enum import Enum


class RejectionReason(str, Enum):
    """Why an operation was rejected without mutating state."""

    NOT_FOUND = "not_found"
    WRONG_STATE = "wrong_state"
    UNAUTHORIZED = "unauthorized"


class CovenantError(Exception):
    """Base exception for engine errors."""

    pass


class RejectedOperation(CovenantError):
    """Caller-visible rejection. No state was mutated."""

    reason: RejectionReason = RejectionReason.WRONG_STATE

    def __init__(self, message: str, reason: RejectionReason | None = None):
        super().__init__(message)
        if reason is not None:
            self.reason = reason


class NotFoundError(RejectedOperation):
    """Entity does not exist."""

    reason = RejectionReason.NOT_FOUND


class InvalidTransitionError(RejectedOperation):
    """Entity exists but its current status does not allow the transition."""

    reason = RejectionReason.WRONG_STATE


class UnauthorizedError(RejectedOperation):
    """Entity exists but belongs to a different property than the caller's."""

    reason = RejectionReason.UNAUTHORIZED


class TransientStoreError(CovenantError):
    """Store timeout or connection failure. Safe to retry the operation."""

    retryable = True

    def __init__(self, message: str, original: BaseException | None = None):
        super().__init__(message)
        self.original = original


class InvariantViolationError(CovenantError):
    """Programming-logic fault, e.g. a frozen bill's amounts changed."""

    pass


__all__ = [
    "RejectionReason",
    "CovenantError",
    "RejectedOperation",
    "NotFoundError",
    "InvalidTransitionError",
    "UnauthorizedError",
    "TransientStoreError",
    "InvariantViolationError",
]
