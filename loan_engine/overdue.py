"""
Overdue Sweep Module

Batch pass over disbursed loans that latches past-due installments as
overdue and raises one notification per installment, ever. Each loan is
loaded, marked and saved on its own, so a conflict or failure on one loan
never holds back the others, and a re-run picks up whatever was missed.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional
import logging
import threading

from .clock import Clock, SystemClock
from .errors import ConcurrencyConflict, OperationCancelled
from .events import DomainEvent, EventSink, create_repayment_event
from .loans import OverdueTally
from .repository import LoanRepository


logger = logging.getLogger("loan_engine.overdue")


@dataclass
class SweepResult:
    """Counters for one sweep run"""
    as_of: datetime
    scanned: int = 0
    newly_overdue: int = 0
    already_notified: int = 0
    paid_ignored: int = 0
    loans_processed: int = 0
    failed_loans: List[str] = field(default_factory=list)

    def add(self, tally: OverdueTally) -> None:
        self.scanned += tally.scanned
        self.newly_overdue += tally.newly_overdue
        self.already_notified += tally.already_notified
        self.paid_ignored += tally.paid_ignored
        self.loans_processed += 1


class OverdueSweep:
    """Idempotent overdue detection across all loans with open installments"""

    def __init__(
        self,
        repository: LoanRepository,
        event_sink: EventSink,
        clock: Optional[Clock] = None,
        max_attempts: int = 3
    ):
        self.repository = repository
        self.event_sink = event_sink
        self.clock = clock or SystemClock()
        self.max_attempts = max(1, max_attempts)

    def run(self, as_of: Optional[datetime] = None,
            cancel: Optional[threading.Event] = None) -> SweepResult:
        """
        Mark every newly past-due installment as overdue

        Args:
            as_of: Reference instant, defaults to the clock
            cancel: Stops the sweep before the next loan is committed

        Returns:
            SweepResult with aggregated counters

        Raises:
            OperationCancelled: If cancel is set; loans already committed stay committed
        """
        as_of = as_of or self.clock.now()
        result = SweepResult(as_of=as_of)

        loan_ids = [loan.id for loan in self.repository.list_with_open_repayments()]
        logger.info(f"Overdue sweep as of {as_of.isoformat()} over {len(loan_ids)} loans")

        for loan_id in loan_ids:
            if cancel is not None and cancel.is_set():
                logger.warning(
                    f"Overdue sweep cancelled after {result.loans_processed} loans"
                )
                raise OperationCancelled("Overdue sweep cancelled")
            try:
                tally = self._sweep_loan(loan_id, as_of)
                result.add(tally)
            except Exception:
                # Log error but continue with other loans
                logger.error(f"Overdue sweep failed for loan {loan_id}", exc_info=True)
                result.failed_loans.append(loan_id)

        logger.info(
            f"Overdue sweep done: {result.newly_overdue} newly overdue, "
            f"{result.already_notified} already notified, {len(result.failed_loans)} failed"
        )
        return result

    def _sweep_loan(self, loan_id: str, as_of: datetime) -> OverdueTally:
        """Mark one loan, reloading and retrying on a version conflict"""
        for attempt in range(1, self.max_attempts + 1):
            loan = self.repository.get(loan_id)
            tally = loan.mark_overdue(as_of)
            if not tally.newly_overdue:
                return tally
            try:
                self.repository.save(loan)
            except ConcurrencyConflict:
                if attempt == self.max_attempts:
                    raise
                logger.debug(f"Retrying overdue sweep for loan {loan_id}, attempt {attempt + 1}")
                continue
            for event in loan.pull_events():
                self.event_sink.publish(event)
            return tally
        # max_attempts is at least 1, the loop always returns or raises
        raise ConcurrencyConflict(loan_id)

    def due_soon_reminders(self, as_of: Optional[datetime] = None, within_days: int = 3) -> int:
        """
        Publish a reminder for each unpaid installment due within the window

        Informational only: nothing is persisted and nothing is latched, so
        running it twice sends the reminders twice.
        """
        as_of = as_of or self.clock.now()
        start = as_of.date()
        end = start + timedelta(days=within_days)

        sent = 0
        for loan in self.repository.list_with_open_repayments():
            for repayment in loan.open_repayments:
                if start <= repayment.due_date <= end:
                    self.event_sink.publish(create_repayment_event(
                        DomainEvent.REPAYMENT_DUE, loan, repayment, as_of,
                        days_until_due=(repayment.due_date - start).days
                    ))
                    sent += 1

        logger.info(f"Sent {sent} repayment due reminders for the next {within_days} days")
        return sent
