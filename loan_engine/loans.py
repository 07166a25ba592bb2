"""
Loan Module

The loan aggregate: lifecycle state machine, owned funding and repayment
collections, and the domain events each transition raises. Funding,
Repayment and LenderRepayment reference their loan by id only.
"""

from decimal import Decimal
from datetime import datetime, date
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Optional
from enum import Enum

from .currency import Money
from .errors import (
    InvalidTransition, InvalidAmount, AlreadyPaid, NotFound, ValidationFailed
)
from .events import DomainEvent, EventPayload, create_loan_event, create_repayment_event
from .storage import StorageRecord
from . import funding as funding_ledger


MAX_REJECTION_REASON_LENGTH = 500
MAX_DURATION_MONTHS = 120


class LoanStatus(Enum):
    """Loan lifecycle states"""
    PENDING = "pending"          # Requested by borrower, awaiting review
    APPROVED = "approved"        # Open for funding
    REJECTED = "rejected"        # Terminal
    FUNDED = "funded"            # Contributions reached the principal
    DISBURSED = "disbursed"      # Paid out, repayment schedule running
    COMPLETED = "completed"      # Every installment paid
    CANCELLED = "cancelled"      # Terminal, withdrawn before funding


class LoanPurpose(Enum):
    """Intended use of a loan"""
    EDUCATION = "education"
    HOME_IMPROVEMENT = "home_improvement"
    MEDICAL = "medical"
    BUSINESS = "business"
    DEBT_CONSOLIDATION = "debt_consolidation"
    OTHER = "other"


class RiskLevel(Enum):
    """Risk level assigned at approval"""
    UNKNOWN = "unknown"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


ALLOWED_TRANSITIONS: Dict[LoanStatus, FrozenSet[LoanStatus]] = {
    LoanStatus.PENDING: frozenset({LoanStatus.APPROVED, LoanStatus.REJECTED, LoanStatus.CANCELLED}),
    LoanStatus.APPROVED: frozenset({LoanStatus.FUNDED, LoanStatus.CANCELLED}),
    LoanStatus.FUNDED: frozenset({LoanStatus.DISBURSED}),
    LoanStatus.DISBURSED: frozenset({LoanStatus.COMPLETED}),
    LoanStatus.REJECTED: frozenset(),
    LoanStatus.COMPLETED: frozenset(),
    LoanStatus.CANCELLED: frozenset(),
}


@dataclass(frozen=True)
class Funding:
    """One lender's contribution toward a loan's principal"""
    id: str
    loan_id: str
    lender_id: str
    amount: Money
    funded_at: datetime


@dataclass
class Repayment:
    """One scheduled installment owed by the borrower"""
    id: str
    loan_id: str
    installment_number: int
    due_date: date
    amount: Money
    is_paid: bool = False
    paid_at: Optional[datetime] = None
    overdue_notified_at: Optional[datetime] = None

    def __post_init__(self):
        if not self.amount.is_positive():
            raise InvalidAmount("Repayment amount must be greater than zero")

    def is_overdue(self, as_of: datetime) -> bool:
        """Unpaid and past its due date"""
        return not self.is_paid and self.due_date < as_of.date()

    def mark_paid(self, paid_at: datetime) -> None:
        if self.is_paid:
            raise AlreadyPaid(f"Repayment {self.id} is already marked as paid")
        self.is_paid = True
        self.paid_at = paid_at


@dataclass
class LenderRepayment(StorageRecord):
    """A lender's proportional slice of a paid installment"""
    loan_id: str
    repayment_id: str
    lender_id: str
    amount: Decimal
    currency: str


@dataclass
class OverdueTally:
    """Counters from one overdue pass over a loan's repayments"""
    scanned: int = 0
    newly_overdue: int = 0
    already_notified: int = 0
    paid_ignored: int = 0


@dataclass
class Loan(StorageRecord):
    """Borrower's funding request and its lifecycle state"""
    borrower_id: str
    principal: Money
    duration_months: int
    purpose: LoanPurpose = LoanPurpose.OTHER
    status: LoanStatus = LoanStatus.PENDING
    risk_level: RiskLevel = RiskLevel.UNKNOWN

    approved_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    disbursed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    fundings: List[Funding] = field(default_factory=list)
    repayments: List[Repayment] = field(default_factory=list)

    # Optimistic concurrency token, 0 until first persisted
    version: int = 0

    _pending_events: List[EventPayload] = field(default_factory=list, repr=False, compare=False)

    def __post_init__(self):
        if not self.principal.is_positive():
            raise InvalidAmount("Loan amount must be greater than zero")
        if not 1 <= self.duration_months <= MAX_DURATION_MONTHS:
            raise ValidationFailed(
                f"Duration must be between 1 and {MAX_DURATION_MONTHS} months, got {self.duration_months}"
            )
        # Every installment needs at least one minor unit or the loan can never disburse
        if self.principal.amount < self.currency.minor_unit * self.duration_months:
            raise InvalidAmount(
                f"{self.principal.to_string()} cannot be split into {self.duration_months} installments"
            )

    # Derived views

    @property
    def currency(self):
        return self.principal.currency

    @property
    def total_funded(self) -> Money:
        return funding_ledger.total_funded(self)

    @property
    def remaining(self) -> Money:
        return funding_ledger.remaining(self)

    def is_fully_funded(self) -> bool:
        return funding_ledger.is_fully_funded(self)

    @property
    def open_repayments(self) -> List[Repayment]:
        return [r for r in self.repayments if not r.is_paid]

    def get_repayment(self, repayment_id: str) -> Repayment:
        for repayment in self.repayments:
            if repayment.id == repayment_id:
                return repayment
        raise NotFound(f"Repayment {repayment_id} not found on loan {self.id}")

    # Events

    def pull_events(self) -> List[EventPayload]:
        """Drain the events queued since the last pull"""
        events = list(self._pending_events)
        self._pending_events.clear()
        return events

    def _raise(self, event: EventPayload) -> None:
        self._pending_events.append(event)

    def _transition(self, target: LoanStatus, attempted: str, now: datetime) -> None:
        if target not in ALLOWED_TRANSITIONS[self.status]:
            raise InvalidTransition(self.status, attempted, target)
        self.status = target
        self.updated_at = now

    # Lifecycle

    def approve(self, risk_level: RiskLevel, now: datetime) -> None:
        """Open a pending loan for funding"""
        self._transition(LoanStatus.APPROVED, "approve", now)
        self.risk_level = risk_level
        self.approved_at = now
        self._raise(create_loan_event(
            DomainEvent.LOAN_APPROVED, self, now, risk_level=risk_level.value
        ))

    def reject(self, reason: Optional[str], now: datetime) -> None:
        if reason is not None and len(reason) > MAX_REJECTION_REASON_LENGTH:
            raise ValidationFailed(
                f"Rejection reason must be at most {MAX_REJECTION_REASON_LENGTH} characters"
            )
        self._transition(LoanStatus.REJECTED, "reject", now)
        self.rejected_at = now
        self.rejection_reason = reason
        self._raise(create_loan_event(DomainEvent.LOAN_REJECTED, self, now, reason=reason))

    def cancel(self, now: datetime, reason: Optional[str] = None) -> None:
        """
        Withdraw a loan before any money is committed

        Approved loans that already hold contributions cannot be cancelled:
        there is no refund path for placed fundings.
        """
        if self.status == LoanStatus.APPROVED and self.fundings:
            raise InvalidTransition(self.status, "cancel", LoanStatus.CANCELLED)
        self._transition(LoanStatus.CANCELLED, "cancel", now)
        self.cancelled_at = now
        self._raise(create_loan_event(DomainEvent.LOAN_CANCELLED, self, now, reason=reason))

    def add_funding(self, funding: 'Funding') -> Money:
        """
        Append a contribution, flipping to FUNDED when the principal is reached

        Args:
            funding: Contribution to append

        Returns:
            Remaining balance before the contribution

        Raises:
            InvalidTransition: If the loan is not open for funding
            InvalidAmount: If the amount is zero or in the wrong currency
            FundingExceedsRemaining: If the amount is larger than what is open
        """
        if self.status not in (LoanStatus.APPROVED, LoanStatus.FUNDED):
            raise InvalidTransition(self.status, "fund")
        if funding.loan_id != self.id:
            raise ValidationFailed(f"Funding {funding.id} belongs to loan {funding.loan_id}")

        remaining_before = funding_ledger.validate_contribution(self, funding.amount)

        self.fundings.append(funding)
        self.updated_at = funding.funded_at
        self._raise(EventPayload(
            event_type=DomainEvent.FUNDING_ADDED,
            entity_type="funding",
            entity_id=funding.id,
            data={
                "loan_id": self.id,
                "lender_id": funding.lender_id,
                "amount": str(funding.amount.amount),
                "currency": funding.amount.currency.code,
            },
            timestamp=funding.funded_at
        ))

        if self.status == LoanStatus.APPROVED and self.is_fully_funded():
            self._transition(LoanStatus.FUNDED, "fund", funding.funded_at)
            self._raise(create_loan_event(
                DomainEvent.LOAN_FUNDED, self, funding.funded_at,
                lender_count=len(funding_ledger.lender_totals(self))
            ))

        return remaining_before

    def disburse(self, now: datetime, schedule_generator) -> List[Repayment]:
        """
        Pay out a funded loan and populate its repayment schedule

        The schedule is built before any state changes, so a failure leaves
        the loan untouched.
        """
        if LoanStatus.DISBURSED not in ALLOWED_TRANSITIONS[self.status]:
            raise InvalidTransition(self.status, "disburse", LoanStatus.DISBURSED)

        schedule = schedule_generator.populate(self, now.date())

        self._transition(LoanStatus.DISBURSED, "disburse", now)
        self.disbursed_at = now
        self.repayments.extend(schedule)
        self._raise(create_loan_event(
            DomainEvent.LOAN_DISBURSED, self, now, installments=len(schedule)
        ))
        return schedule

    def mark_repayment_paid(self, repayment_id: str, paid_at: datetime) -> Repayment:
        """
        Mark an installment paid, completing the loan after the last one

        Raises:
            InvalidTransition: If the loan is not disbursed
            NotFound: If the repayment is not part of this loan
            AlreadyPaid: If the repayment was already paid
        """
        if self.status != LoanStatus.DISBURSED:
            raise InvalidTransition(self.status, "repay")

        repayment = self.get_repayment(repayment_id)
        repayment.mark_paid(paid_at)
        self.updated_at = paid_at
        self._raise(create_repayment_event(
            DomainEvent.REPAYMENT_PAID, self, repayment, paid_at, paid_at=paid_at.isoformat()
        ))

        if not self.open_repayments:
            self._transition(LoanStatus.COMPLETED, "complete", paid_at)
            self.completed_at = paid_at
            self._raise(create_loan_event(DomainEvent.LOAN_COMPLETED, self, paid_at))

        return repayment

    def mark_overdue(self, as_of: datetime) -> OverdueTally:
        """
        Latch past-due unpaid installments as overdue, once each

        Never changes the loan status and never touches is_paid.
        """
        tally = OverdueTally()
        for repayment in self.repayments:
            if repayment.due_date >= as_of.date():
                continue
            if not repayment.is_overdue(as_of):
                tally.paid_ignored += 1
                continue

            tally.scanned += 1
            if repayment.overdue_notified_at is not None:
                tally.already_notified += 1
                continue

            repayment.overdue_notified_at = as_of
            tally.newly_overdue += 1
            self._raise(create_repayment_event(
                DomainEvent.REPAYMENT_OVERDUE, self, repayment, as_of,
                days_overdue=(as_of.date() - repayment.due_date).days
            ))

        if tally.newly_overdue:
            self.updated_at = as_of
        return tally
