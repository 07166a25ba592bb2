"""Typed error hierarchy for the loan engine."""

from enum import Enum
from typing import Optional


class ErrorKind(Enum):
    """Machine-readable failure categories surfaced to callers"""
    INVALID_TRANSITION = "invalid_transition"
    INVALID_AMOUNT = "invalid_amount"
    CURRENCY_MISMATCH = "currency_mismatch"
    FUNDING_EXCEEDS_REMAINING = "funding_exceeds_remaining"
    ALREADY_PAID = "already_paid"
    SCHEDULE_ALREADY_EXISTS = "schedule_already_exists"
    CONCURRENCY_CONFLICT = "concurrency_conflict"
    NOT_FOUND = "not_found"
    VALIDATION_FAILED = "validation_failed"
    CANCELLED = "cancelled"


class LoanEngineError(Exception):
    """Base exception for all loan engine errors."""
    kind = ErrorKind.VALIDATION_FAILED


class InvalidTransition(LoanEngineError):
    """Raised when a lifecycle move is not legal from the current status."""
    kind = ErrorKind.INVALID_TRANSITION

    def __init__(self, current, attempted: str, target=None):
        self.current = current
        self.attempted = attempted
        self.target = target
        message = f"Cannot {attempted} a loan in status '{getattr(current, 'value', current)}'"
        if target is not None:
            message += f" (requested status '{getattr(target, 'value', target)}')"
        super().__init__(message)


class InvalidAmount(LoanEngineError):
    """Raised for non-positive or otherwise unusable money amounts."""
    kind = ErrorKind.INVALID_AMOUNT


class CurrencyMismatch(InvalidAmount):
    """Raised when money values in different currencies are combined."""
    kind = ErrorKind.CURRENCY_MISMATCH


class FundingExceedsRemaining(LoanEngineError):
    """Raised when a contribution would push total funding past the principal."""
    kind = ErrorKind.FUNDING_EXCEEDS_REMAINING

    def __init__(self, requested, remaining):
        self.requested = requested
        self.remaining = remaining
        super().__init__(
            f"Funding of {requested.to_string()} exceeds remaining {remaining.to_string()}"
        )


class AlreadyPaid(LoanEngineError):
    """Raised when a repayment is marked paid twice."""
    kind = ErrorKind.ALREADY_PAID


class ScheduleAlreadyExists(LoanEngineError):
    """Raised when a repayment schedule is generated for a loan that has one."""
    kind = ErrorKind.SCHEDULE_ALREADY_EXISTS


class ConcurrencyConflict(LoanEngineError):
    """Raised when the stored version no longer matches the version read."""
    kind = ErrorKind.CONCURRENCY_CONFLICT

    def __init__(self, entity_id: str, expected_version: Optional[int] = None):
        self.entity_id = entity_id
        self.expected_version = expected_version
        super().__init__(
            f"Loan {entity_id} was modified concurrently (expected version {expected_version})"
        )


class NotFound(LoanEngineError):
    """Raised when a loan, repayment or snapshot does not exist."""
    kind = ErrorKind.NOT_FOUND


class ValidationFailed(LoanEngineError):
    """Raised when command input fails business validation."""
    kind = ErrorKind.VALIDATION_FAILED


class OperationCancelled(LoanEngineError):
    """Raised when the caller cancels an operation before it commits."""
    kind = ErrorKind.CANCELLED
