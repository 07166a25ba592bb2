"""
Funding Ledger Module

Answers "how much remains to be funded" and "has funding crossed 100%"
for a loan, independent of the order contributions arrived in. The
aggregate consults these before appending, so the no-over-funding
invariant is enforced at append time rather than repaired afterwards.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Tuple

from .currency import Money, sum_money
from .errors import InvalidAmount, CurrencyMismatch, FundingExceedsRemaining


@dataclass(frozen=True)
class FundingResult:
    """Outcome of a successful contribution"""
    loan_id: str
    funding_id: str
    lender_id: str
    amount: Money
    remaining_before: Money
    remaining_after: Money
    fully_funded: bool


def total_funded(loan) -> Money:
    """Sum of every funding entry on the loan"""
    return sum_money((f.amount for f in loan.fundings), loan.principal.currency)


def remaining(loan) -> Money:
    """Principal still open for funding, clamped at zero for display"""
    funded = total_funded(loan)
    if funded >= loan.principal:
        return Money.zero(loan.principal.currency)
    return loan.principal - funded


def is_fully_funded(loan) -> bool:
    return total_funded(loan) >= loan.principal


def funded_percentage(loan) -> Decimal:
    """Funding progress as a percentage with two decimals"""
    if loan.principal.is_zero():
        return Decimal('0.00')
    ratio = total_funded(loan).amount / loan.principal.amount * Decimal('100')
    return ratio.quantize(Decimal('0.01'))


def lender_totals(loan) -> List[Tuple[str, Decimal]]:
    """
    Total contributed per lender, sorted by lender id

    A lender who funded the same loan several times appears once.
    """
    totals: Dict[str, Decimal] = {}
    for funding in loan.fundings:
        totals[funding.lender_id] = totals.get(funding.lender_id, Decimal('0')) + funding.amount.amount
    return sorted(totals.items(), key=lambda item: item[0])


def validate_contribution(loan, amount: Money) -> Money:
    """
    Check a prospective contribution against the loan's open balance

    Args:
        loan: Loan being funded
        amount: Contribution the lender intends to make

    Returns:
        Remaining balance before the contribution

    Raises:
        InvalidAmount: If the amount is zero
        CurrencyMismatch: If the amount is not in the loan's currency
        FundingExceedsRemaining: If the amount is larger than what is open
    """
    if amount.currency != loan.principal.currency:
        raise CurrencyMismatch(
            f"Funding currency {amount.currency.code} does not match loan currency "
            f"{loan.principal.currency.code}"
        )
    if not amount.is_positive():
        raise InvalidAmount("Funding amount must be greater than zero")

    open_balance = remaining(loan)
    if amount > open_balance:
        raise FundingExceedsRemaining(amount, open_balance)
    return open_balance
