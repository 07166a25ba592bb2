"""
Pydantic command models for the loan service boundary
"""

from decimal import Decimal
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field, field_validator

from .currency import Currency, Money
from .loans import LoanPurpose, RiskLevel, MAX_DURATION_MONTHS, MAX_REJECTION_REASON_LENGTH


class ApplyLoanCommand(BaseModel):
    borrower_id: str = Field(..., min_length=1, description="Borrower identifier")
    amount: Decimal = Field(..., gt=0, description="Requested principal")
    currency: str = Field("GBP", description="Currency code (GBP, USD, etc.)")
    duration_months: int = Field(..., ge=1, le=MAX_DURATION_MONTHS)
    purpose: LoanPurpose = LoanPurpose.OTHER

    @field_validator('borrower_id')
    @classmethod
    def borrower_id_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("borrower_id must not be blank")
        return value

    @field_validator('currency')
    @classmethod
    def currency_supported(cls, value: str) -> str:
        code = value.strip().upper()
        if code not in Currency.__members__:
            raise ValueError(f"Unsupported currency: {value}")
        return code

    def to_money(self) -> Money:
        return Money(self.amount, Currency[self.currency])


class ApproveLoanCommand(BaseModel):
    loan_id: str = Field(..., min_length=1)
    risk_level: RiskLevel = RiskLevel.UNKNOWN


class RejectLoanCommand(BaseModel):
    loan_id: str = Field(..., min_length=1)
    reason: Optional[str] = Field(None, max_length=MAX_REJECTION_REASON_LENGTH)


class FundLoanCommand(BaseModel):
    loan_id: str = Field(..., min_length=1)
    lender_id: str = Field(..., min_length=1)
    amount: Decimal = Field(..., gt=0, description="Contribution in the loan's currency")


class DisburseLoanCommand(BaseModel):
    loan_id: str = Field(..., min_length=1)


class MakeRepaymentCommand(BaseModel):
    repayment_id: str = Field(..., min_length=1)


class CancelLoanCommand(BaseModel):
    loan_id: str = Field(..., min_length=1)
    reason: Optional[str] = Field(None, max_length=MAX_REJECTION_REASON_LENGTH)


class CheckOverdueCommand(BaseModel):
    as_of: Optional[datetime] = Field(None, description="Reference instant, defaults to now")
