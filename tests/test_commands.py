"""
Tests for boundary command validation
"""

import pytest
from decimal import Decimal
from pydantic import ValidationError

from loan_engine.commands import (
    ApplyLoanCommand, ApproveLoanCommand, RejectLoanCommand, FundLoanCommand,
    CancelLoanCommand, CheckOverdueCommand
)
from loan_engine.currency import Money, Currency
from loan_engine.loans import LoanPurpose, RiskLevel


class TestApplyLoanCommand:
    """Test loan application validation"""

    def test_valid(self):
        command = ApplyLoanCommand(
            borrower_id='b-1', amount='2500.50', duration_months=24, purpose='home_improvement'
        )
        assert command.amount == Decimal('2500.50')
        assert command.purpose == LoanPurpose.HOME_IMPROVEMENT
        assert command.to_money() == Money(Decimal('2500.50'), Currency.GBP)

    def test_currency_normalised(self):
        command = ApplyLoanCommand(borrower_id='b', amount=1, duration_months=1, currency=' eur ')
        assert command.currency == 'EUR'

    def test_duration_bounds(self):
        with pytest.raises(ValidationError):
            ApplyLoanCommand(borrower_id='b', amount=1, duration_months=0)
        with pytest.raises(ValidationError):
            ApplyLoanCommand(borrower_id='b', amount=1, duration_months=121)

    def test_blank_borrower(self):
        with pytest.raises(ValidationError, match="must not be blank"):
            ApplyLoanCommand(borrower_id='  ', amount=1, duration_months=1)

    def test_unknown_purpose(self):
        with pytest.raises(ValidationError):
            ApplyLoanCommand(borrower_id='b', amount=1, duration_months=1, purpose='holiday')

    def test_unsupported_currency(self):
        with pytest.raises(ValidationError, match="Unsupported currency"):
            ApplyLoanCommand(borrower_id='b', amount=1, duration_months=1, currency='XXX')

    def test_amount_must_be_numeric(self):
        with pytest.raises(ValidationError):
            ApplyLoanCommand(borrower_id='b', amount='lots', duration_months=1)

    def test_amount_must_be_positive(self):
        with pytest.raises(ValidationError, match="greater than 0"):
            ApplyLoanCommand(borrower_id='b', amount='0', duration_months=1)
        with pytest.raises(ValidationError, match="greater than 0"):
            ApplyLoanCommand(borrower_id='b', amount='-250', duration_months=1)


class TestOtherCommands:
    """Test the remaining command models"""

    def test_approve_parses_risk_level(self):
        assert ApproveLoanCommand(loan_id='l', risk_level='high').risk_level == RiskLevel.HIGH

    def test_reject_reason_length(self):
        assert RejectLoanCommand(loan_id='l', reason='x' * 500).reason == 'x' * 500
        with pytest.raises(ValidationError):
            RejectLoanCommand(loan_id='l', reason='x' * 501)

    def test_reject_reason_optional(self):
        assert RejectLoanCommand(loan_id='l').reason is None

    def test_fund_requires_ids(self):
        with pytest.raises(ValidationError):
            FundLoanCommand(loan_id='', lender_id='lender', amount=Decimal('1'))
        with pytest.raises(ValidationError):
            FundLoanCommand(loan_id='l', lender_id='', amount=Decimal('1'))

    def test_fund_amount_must_be_positive(self):
        with pytest.raises(ValidationError, match="greater than 0"):
            FundLoanCommand(loan_id='l', lender_id='lender', amount=Decimal('0'))
        assert FundLoanCommand(loan_id='l', lender_id='lender', amount='0.01').amount == Decimal('0.01')

    def test_cancel_reason_optional(self):
        assert CancelLoanCommand(loan_id='l').reason is None

    def test_check_overdue_defaults(self):
        assert CheckOverdueCommand().as_of is None
