"""
Lender Allocation Module

Splits each paid installment across the loan's lenders in proportion to
their total contribution. Shares are truncated to the minor unit, then the
leftover minor units go one at a time to the lenders with the largest
fractional remainders (ties broken by lender id), so the slices always sum
to the installment exactly.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Sequence, Tuple
import logging
import uuid

from .currency import Money, quantize
from .errors import InvalidAmount
from .funding import lender_totals
from .loans import LenderRepayment, Loan, Repayment


logger = logging.getLogger("loan_engine.allocation")


def allocate(amount: Money, totals: Sequence[Tuple[str, Decimal]]) -> List[Tuple[str, Decimal]]:
    """
    Split an amount across lenders with the largest-remainder method

    Args:
        amount: Installment amount to distribute
        totals: (lender_id, total contributed) pairs

    Returns:
        (lender_id, slice) pairs ordered by lender id, zero slices omitted

    Raises:
        InvalidAmount: If there is nothing to allocate against
    """
    currency = amount.currency
    pool = sum((total for _, total in totals), Decimal('0'))
    if pool <= 0:
        raise InvalidAmount("Cannot allocate a repayment on a loan without fundings")

    unit = currency.minor_unit
    units = amount.amount / unit
    ordered = sorted(totals, key=lambda item: item[0])

    # Work in whole minor units so floors and remainders are exact
    floors = {}
    remainders = []
    for lender_id, total in ordered:
        weighted = units * total
        floors[lender_id] = weighted // pool
        remainders.append((weighted % pool, lender_id))

    leftover = int(units - sum(floors.values(), Decimal('0')))

    # Largest remainder first, lowest lender id on ties
    remainders.sort(key=lambda item: (-item[0], item[1]))
    for _, lender_id in remainders[:leftover]:
        floors[lender_id] += 1

    return [
        (lender_id, quantize(floors[lender_id] * unit, currency))
        for lender_id, _ in ordered
        if floors[lender_id] > 0
    ]


class LenderAllocationLedger:
    """Builds the per-lender rows for a paid installment"""

    def allocate_repayment(self, loan: Loan, repayment: Repayment, now: datetime) -> List[LenderRepayment]:
        slices = allocate(repayment.amount, lender_totals(loan))
        rows = [
            LenderRepayment(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                loan_id=loan.id,
                repayment_id=repayment.id,
                lender_id=lender_id,
                amount=share,
                currency=repayment.amount.currency.code
            )
            for lender_id, share in slices
        ]
        logger.debug(
            f"Allocated installment {repayment.installment_number} of loan {loan.id} "
            f"across {len(rows)} lenders"
        )
        return rows
