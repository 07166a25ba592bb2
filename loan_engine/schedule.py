"""
Repayment Schedule Module

Turns a principal and a duration into equal monthly installments. There is
no interest: every installment is principal / N rounded to the currency's
minor unit, and the final installment absorbs the rounding residual so the
schedule always sums to the principal exactly.
"""

from datetime import date
from decimal import Decimal, ROUND_HALF_UP, ROUND_DOWN
from typing import List
import calendar
import uuid

from .currency import Money, quantize
from .errors import InvalidAmount, ScheduleAlreadyExists, ValidationFailed
from .loans import Repayment


def add_months(start_date: date, months: int) -> date:
    """Add months to a date, handling month-end edge cases"""
    month = start_date.month - 1 + months
    year = start_date.year + month // 12
    month = month % 12 + 1
    day = min(start_date.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def installment_amounts(principal: Money, duration_months: int) -> List[Money]:
    """
    Split a principal into equal installments with a remainder-to-last policy

    Args:
        principal: Amount to repay
        duration_months: Number of monthly installments

    Returns:
        List of installment amounts summing exactly to the principal

    Raises:
        ValidationFailed: If duration_months is below 1
        InvalidAmount: If the principal cannot cover one minor unit per installment
    """
    if duration_months < 1:
        raise ValidationFailed("Duration must be at least one month")

    currency = principal.currency
    count = Decimal(duration_months)
    if principal.amount < currency.minor_unit * count:
        raise InvalidAmount(
            f"{principal.to_string()} cannot be split into {duration_months} installments"
        )

    share = quantize(principal.amount / count, currency, rounding=ROUND_HALF_UP)
    last = principal.amount - share * (count - 1)
    if last <= Decimal('0'):
        # Rounding the share up over many months would overshoot the principal
        share = quantize(principal.amount / count, currency, rounding=ROUND_DOWN)
        last = principal.amount - share * (count - 1)

    amounts = [Money(share, currency) for _ in range(duration_months - 1)]
    amounts.append(Money(last, currency))
    return amounts


def due_dates(start_date: date, duration_months: int) -> List[date]:
    """Same day-of-month, 1..N calendar months after start_date"""
    return [add_months(start_date, offset) for offset in range(1, duration_months + 1)]


def generate_schedule(
    loan_id: str,
    principal: Money,
    duration_months: int,
    disbursed_on: date
) -> List[Repayment]:
    """Build the full, ordered list of unpaid installments for a loan"""
    amounts = installment_amounts(principal, duration_months)
    dates = due_dates(disbursed_on, duration_months)
    return [
        Repayment(
            id=str(uuid.uuid4()),
            loan_id=loan_id,
            installment_number=number,
            due_date=due_date,
            amount=amount
        )
        for number, (due_date, amount) in enumerate(zip(dates, amounts), start=1)
    ]


class ScheduleGenerator:
    """One-time, all-or-nothing schedule generation for a loan"""

    def populate(self, loan, disbursed_on: date) -> List[Repayment]:
        """
        Generate the schedule for a loan that has none yet

        Raises:
            ScheduleAlreadyExists: If the loan already carries repayments
        """
        if loan.repayments:
            raise ScheduleAlreadyExists(
                f"Loan {loan.id} already has {len(loan.repayments)} scheduled repayments"
            )
        return generate_schedule(loan.id, loan.principal, loan.duration_months, disbursed_on)
