"""
Borrower Risk Module

Snapshot of a borrower's credit profile as supplied by an external scoring
or KYC provider. The engine only stores and serves it; scoring itself
happens elsewhere.
"""

from datetime import datetime
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from .loans import RiskLevel


class KycStatus(Enum):
    """Identity verification state"""
    UNKNOWN = "unknown"
    PENDING = "pending"
    VERIFIED = "verified"
    FAILED = "failed"


def tier_for_score(credit_score: int) -> RiskLevel:
    """Map a credit score onto a risk tier"""
    if credit_score < 620:
        return RiskLevel.HIGH
    if credit_score < 700:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


@dataclass
class BorrowerRiskSnapshot:
    """Latest known credit profile for a borrower"""
    borrower_id: str
    credit_score: int
    last_score_at: datetime
    updated_at: datetime
    risk_tier: RiskLevel = RiskLevel.UNKNOWN
    kyc_status: KycStatus = KycStatus.UNKNOWN
    flags: List[str] = field(default_factory=list)
    last_verified_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.borrower_id,
            'borrower_id': self.borrower_id,
            'credit_score': self.credit_score,
            'risk_tier': self.risk_tier.value,
            'kyc_status': self.kyc_status.value,
            'flags': list(self.flags),
            'last_score_at': self.last_score_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
            'last_verified_at': self.last_verified_at.isoformat() if self.last_verified_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BorrowerRiskSnapshot':
        return cls(
            borrower_id=data['borrower_id'],
            credit_score=int(data['credit_score']),
            risk_tier=RiskLevel(data['risk_tier']),
            kyc_status=KycStatus(data['kyc_status']),
            flags=list(data.get('flags', [])),
            last_score_at=datetime.fromisoformat(data['last_score_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            last_verified_at=(
                datetime.fromisoformat(data['last_verified_at'])
                if data.get('last_verified_at') else None
            ),
        )
