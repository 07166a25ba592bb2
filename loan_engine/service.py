"""
Loan Service Module

Application boundary of the engine. Each operation loads the aggregate,
applies one command to it in memory, commits with a versioned
compare-and-swap, and only then publishes the events the aggregate queued.
Business failures come back as ``OperationResult`` failures carrying an
``ErrorKind``; unexpected exceptions propagate.
"""

from dataclasses import dataclass, field
from datetime import datetime, date
from decimal import Decimal
from typing import Any, Callable, Iterable, List, Optional, Union
import logging
import threading
import uuid

from pydantic import ValidationError

from .allocation import LenderAllocationLedger
from .clock import Clock, SystemClock
from .commands import (
    ApplyLoanCommand, ApproveLoanCommand, RejectLoanCommand, FundLoanCommand,
    DisburseLoanCommand, MakeRepaymentCommand, CancelLoanCommand, CheckOverdueCommand
)
from .config import LoanEngineConfig, get_config
from .currency import Money, sum_money
from .errors import (
    ErrorKind, LoanEngineError, OperationCancelled, ValidationFailed
)
from .events import EventDispatcher, EventSink
from .funding import FundingResult, funded_percentage
from .loans import Loan, LoanPurpose, LoanStatus, RiskLevel, Funding, Repayment, LenderRepayment
from .logging_config import log_action
from .overdue import OverdueSweep, SweepResult
from .repository import LoanRepository, StorageLoanRepository
from .risk import BorrowerRiskSnapshot
from .schedule import ScheduleGenerator
from .storage import create_storage


logger = logging.getLogger("loan_engine.service")


@dataclass(frozen=True)
class OperationResult:
    """Outcome of a service operation: a value or a typed failure"""
    succeeded: bool
    value: Any = None
    error_kind: Optional[ErrorKind] = None
    error_message: Optional[str] = None

    @classmethod
    def success(cls, value: Any = None) -> 'OperationResult':
        return cls(succeeded=True, value=value)

    @classmethod
    def failure(cls, kind: ErrorKind, message: str) -> 'OperationResult':
        return cls(succeeded=False, error_kind=kind, error_message=message)

    @property
    def failed(self) -> bool:
        return not self.succeeded


@dataclass(frozen=True)
class RepaymentReceipt:
    """A paid installment and the lender slices written with it"""
    loan_id: str
    repayment_id: str
    installment_number: int
    amount: Money
    paid_at: datetime
    allocations: List[LenderRepayment]
    loan_completed: bool


@dataclass(frozen=True)
class RepaymentSummary:
    loan_id: str
    principal: Money
    duration_months: int
    installments_generated: int
    installments_paid: int
    installment_amount: Optional[Money]
    total_paid: Money
    remaining: Money
    next_due_date: Optional[date]
    repayments: List[Repayment] = field(default_factory=list)


@dataclass(frozen=True)
class OpenLoan:
    """Approved loan still accepting contributions"""
    loan_id: str
    borrower_id: str
    purpose: LoanPurpose
    duration_months: int
    risk_level: RiskLevel
    principal: Money
    remaining: Money
    funded_percentage: Decimal


def retry_on_conflict(operation: Callable[[], OperationResult],
                      attempts: Optional[int] = None) -> OperationResult:
    """
    Re-run an operation while it fails with a concurrency conflict

    Each attempt must re-read the aggregate, which every LoanService
    operation does. Defaults to max_concurrency_retries attempts.
    """
    if attempts is None:
        attempts = get_config().max_concurrency_retries
    result = operation()
    for attempt in range(1, max(1, attempts)):
        if result.succeeded or result.error_kind != ErrorKind.CONCURRENCY_CONFLICT:
            break
        logger.debug(f"Concurrency conflict, retrying (attempt {attempt + 1} of {attempts})")
        result = operation()
    return result


def _validation_message(error: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in err['loc']) or 'value'}: {err['msg']}"
        for err in error.errors()
    )


def _validation_kind(error: ValidationError) -> ErrorKind:
    """Non-positive amounts are amount errors, everything else is malformed input"""
    if all(err['loc'] == ('amount',) and err['type'] == 'greater_than' for err in error.errors()):
        return ErrorKind.INVALID_AMOUNT
    return ErrorKind.VALIDATION_FAILED


class LoanService:
    """Peer-to-peer loan lifecycle operations"""

    def __init__(
        self,
        repository: LoanRepository,
        event_sink: Optional[EventSink] = None,
        clock: Optional[Clock] = None,
        schedule_generator: Optional[ScheduleGenerator] = None,
        allocation_ledger: Optional[LenderAllocationLedger] = None,
        config: Optional[LoanEngineConfig] = None
    ):
        self.repository = repository
        self.event_sink = event_sink or EventDispatcher()
        self.clock = clock or SystemClock()
        self.schedule_generator = schedule_generator or ScheduleGenerator()
        self.allocation_ledger = allocation_ledger or LenderAllocationLedger()
        self.config = config or get_config()

    # Plumbing

    def _execute(self, action: str, resource: str, operation: Callable[[], Any]) -> OperationResult:
        try:
            value = operation()
        except ValidationError as e:
            kind = _validation_kind(e)
            message = _validation_message(e)
            log_action(logger, "warning", f"{action} rejected: {message}",
                       action=action, resource=resource,
                       extra={"error_kind": kind.value})
            return OperationResult.failure(kind, message)
        except LoanEngineError as e:
            log_action(logger, "warning", f"{action} rejected: {e}",
                       action=action, resource=resource,
                       extra={"error_kind": e.kind.value})
            return OperationResult.failure(e.kind, str(e))
        return OperationResult.success(value)

    @staticmethod
    def _check_cancel(cancel: Optional[threading.Event]) -> None:
        if cancel is not None and cancel.is_set():
            raise OperationCancelled("Operation cancelled before commit")

    def _commit(self, loan: Loan, cancel: Optional[threading.Event],
                lender_repayments: Iterable[LenderRepayment] = (), new: bool = False) -> None:
        """Persist the aggregate, then publish what it queued"""
        self._check_cancel(cancel)
        if new:
            self.repository.add(loan)
        else:
            self.repository.save(loan, lender_repayments)
        for event in loan.pull_events():
            self.event_sink.publish(event)

    # Commands

    def apply_loan(
        self,
        borrower_id: str,
        amount: Union[Decimal, str, int],
        duration_months: int,
        purpose: Union[LoanPurpose, str] = LoanPurpose.OTHER,
        currency: Optional[str] = None,
        cancel: Optional[threading.Event] = None
    ) -> OperationResult:
        """Create a pending loan request for a borrower"""
        def operation() -> Loan:
            command = ApplyLoanCommand(
                borrower_id=borrower_id,
                amount=amount,
                currency=currency or self.config.default_currency,
                duration_months=duration_months,
                purpose=purpose
            )
            now = self.clock.now()
            loan = Loan(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                borrower_id=command.borrower_id,
                principal=command.to_money(),
                duration_months=command.duration_months,
                purpose=command.purpose
            )
            self._commit(loan, cancel, new=True)
            log_action(logger, "info", f"Loan {loan.id} requested for {loan.principal}",
                       action="apply", resource=f"loan:{loan.id}",
                       extra={"borrower_id": loan.borrower_id,
                              "duration_months": loan.duration_months})
            return loan

        return self._execute("apply", f"borrower:{borrower_id}", operation)

    def approve(self, loan_id: str, risk_level: Union[RiskLevel, str] = RiskLevel.UNKNOWN,
                cancel: Optional[threading.Event] = None) -> OperationResult:
        def operation() -> Loan:
            command = ApproveLoanCommand(loan_id=loan_id, risk_level=risk_level)
            loan = self.repository.get(command.loan_id)
            loan.approve(command.risk_level, self.clock.now())
            self._commit(loan, cancel)
            log_action(logger, "info", f"Loan {loan.id} approved",
                       action="approve", resource=f"loan:{loan.id}",
                       extra={"risk_level": loan.risk_level.value})
            return loan

        return self._execute("approve", f"loan:{loan_id}", operation)

    def reject(self, loan_id: str, reason: Optional[str] = None,
               cancel: Optional[threading.Event] = None) -> OperationResult:
        def operation() -> Loan:
            command = RejectLoanCommand(loan_id=loan_id, reason=reason)
            loan = self.repository.get(command.loan_id)
            loan.reject(command.reason, self.clock.now())
            self._commit(loan, cancel)
            log_action(logger, "info", f"Loan {loan.id} rejected",
                       action="reject", resource=f"loan:{loan.id}")
            return loan

        return self._execute("reject", f"loan:{loan_id}", operation)

    def cancel_loan(self, loan_id: str, reason: Optional[str] = None,
                    cancel: Optional[threading.Event] = None) -> OperationResult:
        """Withdraw a pending, or an approved and still unfunded, loan"""
        def operation() -> Loan:
            command = CancelLoanCommand(loan_id=loan_id, reason=reason)
            loan = self.repository.get(command.loan_id)
            loan.cancel(self.clock.now(), command.reason)
            self._commit(loan, cancel)
            log_action(logger, "info", f"Loan {loan.id} cancelled",
                       action="cancel", resource=f"loan:{loan.id}")
            return loan

        return self._execute("cancel", f"loan:{loan_id}", operation)

    def fund(self, loan_id: str, lender_id: str, amount: Union[Money, Decimal, str],
             cancel: Optional[threading.Event] = None) -> OperationResult:
        """
        Contribute toward an approved loan's principal

        A plain decimal amount is taken in the loan's currency. The crossing to
        fully funded is committed in the same compare-and-swap as the
        contribution, so two racing lenders cannot both complete the loan.

        Returns:
            OperationResult wrapping a FundingResult
        """
        def operation() -> FundingResult:
            raw = amount.amount if isinstance(amount, Money) else amount
            command = FundLoanCommand(loan_id=loan_id, lender_id=lender_id, amount=raw)
            loan = self.repository.get(command.loan_id)

            if command.lender_id == loan.borrower_id:
                raise ValidationFailed("Lenders cannot fund their own loans")

            money = amount if isinstance(amount, Money) else Money(command.amount, loan.currency)
            funding = Funding(
                id=str(uuid.uuid4()),
                loan_id=loan.id,
                lender_id=command.lender_id,
                amount=money,
                funded_at=self.clock.now()
            )
            remaining_before = loan.add_funding(funding)
            self._commit(loan, cancel)

            result = FundingResult(
                loan_id=loan.id,
                funding_id=funding.id,
                lender_id=funding.lender_id,
                amount=money,
                remaining_before=remaining_before,
                remaining_after=loan.remaining,
                fully_funded=loan.status == LoanStatus.FUNDED
            )
            log_action(logger, "info",
                       f"Lender {funding.lender_id} funded {money} of loan {loan.id}",
                       action="fund", resource=f"loan:{loan.id}",
                       extra={"remaining": str(result.remaining_after.amount),
                              "fully_funded": result.fully_funded})
            return result

        return self._execute("fund", f"loan:{loan_id}", operation)

    def disburse(self, loan_id: str, cancel: Optional[threading.Event] = None) -> OperationResult:
        """Pay out a funded loan; the whole schedule is written in the same commit"""
        def operation() -> Loan:
            command = DisburseLoanCommand(loan_id=loan_id)
            loan = self.repository.get(command.loan_id)
            schedule = loan.disburse(self.clock.now(), self.schedule_generator)
            self._commit(loan, cancel)
            log_action(logger, "info", f"Loan {loan.id} disbursed",
                       action="disburse", resource=f"loan:{loan.id}",
                       extra={"installments": len(schedule)})
            return loan

        return self._execute("disburse", f"loan:{loan_id}", operation)

    def make_repayment(self, repayment_id: str,
                       cancel: Optional[threading.Event] = None) -> OperationResult:
        """
        Mark an installment paid and split it across the loan's lenders

        The paid flag and every lender slice are persisted together or not at
        all.

        Returns:
            OperationResult wrapping a RepaymentReceipt
        """
        def operation() -> RepaymentReceipt:
            command = MakeRepaymentCommand(repayment_id=repayment_id)
            loan = self.repository.find_by_repayment_id(command.repayment_id)
            now = self.clock.now()

            repayment = loan.mark_repayment_paid(command.repayment_id, now)
            rows = self.allocation_ledger.allocate_repayment(loan, repayment, now)
            self._commit(loan, cancel, lender_repayments=rows)

            receipt = RepaymentReceipt(
                loan_id=loan.id,
                repayment_id=repayment.id,
                installment_number=repayment.installment_number,
                amount=repayment.amount,
                paid_at=now,
                allocations=rows,
                loan_completed=loan.status == LoanStatus.COMPLETED
            )
            log_action(logger, "info",
                       f"Installment {repayment.installment_number} of loan {loan.id} paid",
                       action="repay", resource=f"repayment:{repayment.id}",
                       extra={"lenders": len(rows), "loan_completed": receipt.loan_completed})
            return receipt

        return self._execute("repay", f"repayment:{repayment_id}", operation)

    def run_overdue_sweep(self, as_of: Optional[datetime] = None,
                          cancel: Optional[threading.Event] = None) -> OperationResult:
        """
        Latch past-due installments as overdue across every open loan

        Safe to run repeatedly. Returns an OperationResult wrapping a
        SweepResult; per-loan failures are listed in its failed_loans.
        """
        def operation() -> SweepResult:
            command = CheckOverdueCommand(as_of=as_of)
            sweep = OverdueSweep(
                self.repository,
                self.event_sink,
                self.clock,
                max_attempts=self.config.sweep_max_attempts_per_loan
            )
            return sweep.run(command.as_of, cancel)

        return self._execute("overdue_sweep", "loans", operation)

    def send_due_reminders(self, as_of: Optional[datetime] = None,
                           within_days: Optional[int] = None) -> OperationResult:
        def operation() -> int:
            sweep = OverdueSweep(self.repository, self.event_sink, self.clock)
            window = self.config.due_soon_window_days if within_days is None else within_days
            return sweep.due_soon_reminders(as_of, window)

        return self._execute("due_reminders", "loans", operation)

    # Queries

    def get_loan(self, loan_id: str) -> OperationResult:
        return self._execute("get_loan", f"loan:{loan_id}", lambda: self.repository.get(loan_id))

    def get_repayment_summary(self, loan_id: str) -> OperationResult:
        def operation() -> RepaymentSummary:
            loan = self.repository.get(loan_id)
            paid = [r for r in loan.repayments if r.is_paid]
            unpaid = loan.open_repayments
            return RepaymentSummary(
                loan_id=loan.id,
                principal=loan.principal,
                duration_months=loan.duration_months,
                installments_generated=len(loan.repayments),
                installments_paid=len(paid),
                installment_amount=loan.repayments[0].amount if loan.repayments else None,
                total_paid=sum_money((r.amount for r in paid), loan.currency),
                remaining=sum_money((r.amount for r in unpaid), loan.currency),
                next_due_date=min((r.due_date for r in unpaid), default=None),
                repayments=list(loan.repayments)
            )

        return self._execute("repayment_summary", f"loan:{loan_id}", operation)

    def get_lender_transactions(self, lender_id: str) -> OperationResult:
        """Lender's allocation rows, newest first"""
        def operation() -> List[LenderRepayment]:
            rows = self.repository.list_lender_repayments(lender_id=lender_id)
            return sorted(rows, key=lambda row: row.created_at, reverse=True)

        return self._execute("lender_transactions", f"lender:{lender_id}", operation)

    def get_open_loans(self) -> OperationResult:
        def operation() -> List[OpenLoan]:
            loans = self.repository.list_by_status(LoanStatus.APPROVED)
            return [
                OpenLoan(
                    loan_id=loan.id,
                    borrower_id=loan.borrower_id,
                    purpose=loan.purpose,
                    duration_months=loan.duration_months,
                    risk_level=loan.risk_level,
                    principal=loan.principal,
                    remaining=loan.remaining,
                    funded_percentage=funded_percentage(loan)
                )
                for loan in sorted(loans, key=lambda item: item.created_at)
                if loan.remaining.is_positive()
            ]

        return self._execute("open_loans", "loans", operation)

    def get_borrower_loans(self, borrower_id: str) -> OperationResult:
        return self._execute(
            "borrower_loans", f"borrower:{borrower_id}",
            lambda: self.repository.list_by_borrower(borrower_id)
        )

    def get_borrower_risk(self, borrower_id: str) -> OperationResult:
        return self._execute(
            "borrower_risk", f"borrower:{borrower_id}",
            lambda: self.repository.get_risk_snapshot(borrower_id)
        )

    def upsert_borrower_risk(self, snapshot: BorrowerRiskSnapshot) -> OperationResult:
        def operation() -> BorrowerRiskSnapshot:
            if not snapshot.borrower_id:
                raise ValidationFailed("borrower_id must not be empty")
            self.repository.upsert_risk_snapshot(snapshot)
            return snapshot

        return self._execute("upsert_risk", f"borrower:{snapshot.borrower_id}", operation)


def build_service(config: Optional[LoanEngineConfig] = None,
                  event_sink: Optional[EventSink] = None,
                  clock: Optional[Clock] = None) -> LoanService:
    """Wire a LoanService from configuration"""
    config = config or get_config()
    storage = create_storage(config.database_url)
    return LoanService(
        repository=StorageLoanRepository(storage),
        event_sink=event_sink or EventDispatcher(),
        clock=clock or SystemClock(),
        config=config
    )
