"""
P2P Loan Engine

Loan lifecycle and ledger engine for a peer-to-peer lending marketplace:
funding ledger, equal-installment repayment schedules, proportional lender
allocations and an idempotent overdue sweep. All money math uses Decimal.
"""

__version__ = "1.0.0"
