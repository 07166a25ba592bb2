"""
Tests for lender allocation of paid installments

Slices must always sum exactly to the installment.
"""

import pytest
from decimal import Decimal
from datetime import datetime, timezone

from loan_engine.allocation import allocate, LenderAllocationLedger
from loan_engine.currency import Money, Currency
from loan_engine.errors import InvalidAmount
from loan_engine.loans import Loan, Funding, RiskLevel
from loan_engine.schedule import ScheduleGenerator


NOW = datetime(2025, 1, 10, tzinfo=timezone.utc)


class TestAllocate:
    """Test the largest-remainder split"""

    def test_sixty_forty_split(self):
        slices = allocate(
            Money(Decimal('2250.00')),
            [('lender-a', Decimal('5400.00')), ('lender-b', Decimal('3600.00'))]
        )
        assert slices == [('lender-a', Decimal('1350.00')), ('lender-b', Decimal('900.00'))]

    def test_three_way_residual(self):
        """100.00 / 3 leaves one penny, which goes to the lowest lender id on a tie"""
        slices = allocate(
            Money(Decimal('100.00')),
            [('c', Decimal('1')), ('a', Decimal('1')), ('b', Decimal('1'))]
        )
        assert slices == [('a', Decimal('33.34')), ('b', Decimal('33.33')), ('c', Decimal('33.33'))]

    def test_largest_remainder_wins(self):
        # Exact shares 6.666.. and 3.333..: floors 6.66 and 3.33, x has the larger remainder
        slices = allocate(
            Money(Decimal('10.00')),
            [('x', Decimal('2')), ('y', Decimal('1'))]
        )
        assert slices == [('x', Decimal('6.67')), ('y', Decimal('3.33'))]

    def test_sum_is_exact(self):
        totals = [('l1', Decimal('333.33')), ('l2', Decimal('333.33')), ('l3', Decimal('333.34')),
                  ('l4', Decimal('0.01')), ('l5', Decimal('17.77'))]
        for amount in ['0.01', '0.07', '1.00', '99.99', '1017.78']:
            slices = allocate(Money(Decimal(amount)), totals)
            assert sum(share for _, share in slices) == Decimal(amount)

    def test_zero_slices_skipped(self):
        slices = allocate(
            Money(Decimal('0.01')),
            [('big', Decimal('999')), ('small', Decimal('1'))]
        )
        assert slices == [('big', Decimal('0.01'))]

    def test_single_lender_gets_everything(self):
        assert allocate(Money(Decimal('333.34')), [('solo', Decimal('1000'))]) == [
            ('solo', Decimal('333.34'))
        ]

    def test_zero_decimal_currency(self):
        slices = allocate(
            Money(Decimal('100'), Currency.JPY),
            [('a', Decimal('1')), ('b', Decimal('1')), ('c', Decimal('1'))]
        )
        assert slices == [('a', Decimal('34')), ('b', Decimal('33')), ('c', Decimal('33'))]

    def test_no_fundings(self):
        with pytest.raises(InvalidAmount):
            allocate(Money(Decimal('10')), [])


class TestLenderAllocationLedger:
    """Test row construction for a paid installment"""

    def test_rows_for_installment(self):
        loan = Loan(
            id='loan-1', created_at=NOW, updated_at=NOW, borrower_id='borrower-1',
            principal=Money(Decimal('9000.00')), duration_months=4
        )
        loan.approve(RiskLevel.LOW, NOW)
        loan.add_funding(Funding('f1', loan.id, 'lender-a', Money(Decimal('5400.00')), NOW))
        loan.add_funding(Funding('f2', loan.id, 'lender-b', Money(Decimal('3600.00')), NOW))
        loan.disburse(NOW, ScheduleGenerator())

        repayment = loan.mark_repayment_paid(loan.repayments[0].id, NOW)
        rows = LenderAllocationLedger().allocate_repayment(loan, repayment, NOW)

        assert [(r.lender_id, r.amount) for r in rows] == [
            ('lender-a', Decimal('1350.00')), ('lender-b', Decimal('900.00'))
        ]
        assert all(r.loan_id == 'loan-1' and r.repayment_id == repayment.id for r in rows)
        assert all(r.currency == 'GBP' and r.created_at == NOW for r in rows)
        assert rows[0].id != rows[1].id
