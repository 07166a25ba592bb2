"""
Loan Repository Module

Persistence contract for the loan aggregate and its storage-backed
implementation. A loan is stored as one record with its fundings and
repayments embedded, so a single versioned compare-and-swap guards every
change to the aggregate. Lender repayment rows and borrower risk snapshots
live in their own tables.
"""

from abc import ABC, abstractmethod
from datetime import datetime, date
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional
import logging

from .currency import Money, Currency
from .errors import ConcurrencyConflict, NotFound
from .loans import (
    Loan, LoanStatus, LoanPurpose, RiskLevel, Funding, Repayment, LenderRepayment
)
from .risk import BorrowerRiskSnapshot
from .storage import StorageInterface, VERSION_FIELD


logger = logging.getLogger("loan_engine.repository")


class LoanRepository(ABC):
    """Abstract persistence for loans and their derived rows"""

    @abstractmethod
    def get(self, loan_id: str) -> Loan:
        """Load a loan; raises NotFound if missing"""
        pass

    @abstractmethod
    def add(self, loan: Loan) -> None:
        """Persist a new loan at version 1"""
        pass

    @abstractmethod
    def save(self, loan: Loan, lender_repayments: Iterable[LenderRepayment] = ()) -> None:
        """Persist a loaded loan if nobody else changed it since it was read"""
        pass

    @abstractmethod
    def list_by_status(self, status: LoanStatus) -> List[Loan]:
        pass

    @abstractmethod
    def list_with_open_repayments(self) -> List[Loan]:
        pass

    @abstractmethod
    def find_by_repayment_id(self, repayment_id: str) -> Loan:
        pass

    @abstractmethod
    def list_by_borrower(self, borrower_id: str) -> List[Loan]:
        pass

    @abstractmethod
    def list_lender_repayments(self, lender_id: Optional[str] = None,
                               loan_id: Optional[str] = None) -> List[LenderRepayment]:
        pass

    @abstractmethod
    def get_risk_snapshot(self, borrower_id: str) -> BorrowerRiskSnapshot:
        pass

    @abstractmethod
    def upsert_risk_snapshot(self, snapshot: BorrowerRiskSnapshot) -> None:
        pass


class StorageLoanRepository(LoanRepository):
    """Loan repository on top of a StorageInterface backend"""

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.loans_table = "loans"
        self.lender_repayments_table = "lender_repayments"
        self.risk_table = "borrower_risk_snapshots"

    def get(self, loan_id: str) -> Loan:
        data = self.storage.load(self.loans_table, loan_id)
        if data is None:
            raise NotFound(f"Loan {loan_id} not found")
        return self._loan_from_dict(data)

    def add(self, loan: Loan) -> None:
        data = self._loan_to_dict(loan)
        data[VERSION_FIELD] = 1
        if not self.storage.insert(self.loans_table, loan.id, data):
            raise ConcurrencyConflict(loan.id)
        loan.version = 1
        logger.debug(f"Inserted loan {loan.id}")

    def save(self, loan: Loan, lender_repayments: Iterable[LenderRepayment] = ()) -> None:
        """
        Compare-and-swap the loan and write its lender rows in one transaction

        Raises:
            ConcurrencyConflict: If the stored version moved since the loan was loaded
        """
        expected = loan.version
        data = self._loan_to_dict(loan)
        data[VERSION_FIELD] = expected + 1

        with self.storage.atomic():
            if not self.storage.compare_and_swap(self.loans_table, loan.id, data, expected):
                raise ConcurrencyConflict(loan.id, expected)
            for row in lender_repayments:
                self.storage.save(self.lender_repayments_table, row.id, row.to_dict())

        loan.version = expected + 1
        logger.debug(f"Saved loan {loan.id} at version {loan.version}")

    def list_by_status(self, status: LoanStatus) -> List[Loan]:
        records = self.storage.find(self.loans_table, {"status": status.value})
        return [self._loan_from_dict(data) for data in records]

    def list_with_open_repayments(self) -> List[Loan]:
        return [
            loan for loan in self.list_by_status(LoanStatus.DISBURSED)
            if loan.open_repayments
        ]

    def find_by_repayment_id(self, repayment_id: str) -> Loan:
        for data in self.storage.load_all(self.loans_table):
            if any(r['id'] == repayment_id for r in data.get('repayments', [])):
                return self._loan_from_dict(data)
        raise NotFound(f"Repayment {repayment_id} not found")

    def list_by_borrower(self, borrower_id: str) -> List[Loan]:
        records = self.storage.find(self.loans_table, {"borrower_id": borrower_id})
        return [self._loan_from_dict(data) for data in records]

    def list_lender_repayments(self, lender_id: Optional[str] = None,
                               loan_id: Optional[str] = None) -> List[LenderRepayment]:
        filters = {}
        if lender_id is not None:
            filters["lender_id"] = lender_id
        if loan_id is not None:
            filters["loan_id"] = loan_id
        records = self.storage.find(self.lender_repayments_table, filters)
        return [self._lender_repayment_from_dict(data) for data in records]

    def get_risk_snapshot(self, borrower_id: str) -> BorrowerRiskSnapshot:
        data = self.storage.load(self.risk_table, borrower_id)
        if data is None:
            raise NotFound(f"No risk snapshot for borrower {borrower_id}")
        return BorrowerRiskSnapshot.from_dict(data)

    def upsert_risk_snapshot(self, snapshot: BorrowerRiskSnapshot) -> None:
        self.storage.save(self.risk_table, snapshot.borrower_id, snapshot.to_dict())

    # Converters

    def _loan_to_dict(self, loan: Loan) -> Dict[str, Any]:
        """Convert loan to dictionary"""
        def iso(value: Optional[datetime]) -> Optional[str]:
            return value.isoformat() if value else None

        return {
            'id': loan.id,
            'borrower_id': loan.borrower_id,
            'principal_amount': str(loan.principal.amount),
            'currency': loan.principal.currency.code,
            'duration_months': loan.duration_months,
            'purpose': loan.purpose.value,
            'status': loan.status.value,
            'risk_level': loan.risk_level.value,
            'created_at': loan.created_at.isoformat(),
            'updated_at': loan.updated_at.isoformat(),
            'approved_at': iso(loan.approved_at),
            'rejected_at': iso(loan.rejected_at),
            'rejection_reason': loan.rejection_reason,
            'disbursed_at': iso(loan.disbursed_at),
            'cancelled_at': iso(loan.cancelled_at),
            'completed_at': iso(loan.completed_at),
            'fundings': [
                {
                    'id': f.id,
                    'lender_id': f.lender_id,
                    'amount': str(f.amount.amount),
                    'funded_at': f.funded_at.isoformat(),
                }
                for f in loan.fundings
            ],
            'repayments': [
                {
                    'id': r.id,
                    'installment_number': r.installment_number,
                    'due_date': r.due_date.isoformat(),
                    'amount': str(r.amount.amount),
                    'is_paid': r.is_paid,
                    'paid_at': iso(r.paid_at),
                    'overdue_notified_at': iso(r.overdue_notified_at),
                }
                for r in loan.repayments
            ],
            VERSION_FIELD: loan.version,
        }

    def _loan_from_dict(self, data: Dict[str, Any]) -> Loan:
        """Convert dictionary to loan"""
        currency = Currency.from_code(data['currency'])

        def get_datetime(value: Optional[str]) -> Optional[datetime]:
            return datetime.fromisoformat(value) if value else None

        def get_money(value: str) -> Money:
            return Money(Decimal(value), currency)

        loan = Loan(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            borrower_id=data['borrower_id'],
            principal=get_money(data['principal_amount']),
            duration_months=data['duration_months'],
            purpose=LoanPurpose(data['purpose']),
            status=LoanStatus(data['status']),
            risk_level=RiskLevel(data['risk_level']),
            approved_at=get_datetime(data.get('approved_at')),
            rejected_at=get_datetime(data.get('rejected_at')),
            rejection_reason=data.get('rejection_reason'),
            disbursed_at=get_datetime(data.get('disbursed_at')),
            cancelled_at=get_datetime(data.get('cancelled_at')),
            completed_at=get_datetime(data.get('completed_at')),
            version=data[VERSION_FIELD],
        )
        loan.fundings = [
            Funding(
                id=f['id'],
                loan_id=loan.id,
                lender_id=f['lender_id'],
                amount=get_money(f['amount']),
                funded_at=datetime.fromisoformat(f['funded_at'])
            )
            for f in data.get('fundings', [])
        ]
        loan.repayments = [
            Repayment(
                id=r['id'],
                loan_id=loan.id,
                installment_number=r['installment_number'],
                due_date=date.fromisoformat(r['due_date']),
                amount=get_money(r['amount']),
                is_paid=r['is_paid'],
                paid_at=get_datetime(r.get('paid_at')),
                overdue_notified_at=get_datetime(r.get('overdue_notified_at'))
            )
            for r in sorted(data.get('repayments', []), key=lambda r: r['installment_number'])
        ]
        return loan

    def _lender_repayment_from_dict(self, data: Dict[str, Any]) -> LenderRepayment:
        return LenderRepayment(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            loan_id=data['loan_id'],
            repayment_id=data['repayment_id'],
            lender_id=data['lender_id'],
            amount=Decimal(data['amount']),
            currency=data['currency']
        )
