"""
Tests for borrower risk snapshots
"""

from datetime import datetime, timezone

from loan_engine.loans import RiskLevel
from loan_engine.risk import BorrowerRiskSnapshot, KycStatus, tier_for_score


NOW = datetime(2025, 2, 1, tzinfo=timezone.utc)


class TestRiskTier:
    """Test score to tier mapping"""

    def test_boundaries(self):
        assert tier_for_score(550) == RiskLevel.HIGH
        assert tier_for_score(619) == RiskLevel.HIGH
        assert tier_for_score(620) == RiskLevel.MEDIUM
        assert tier_for_score(699) == RiskLevel.MEDIUM
        assert tier_for_score(700) == RiskLevel.LOW
        assert tier_for_score(850) == RiskLevel.LOW


class TestBorrowerRiskSnapshot:
    """Test snapshot serialization"""

    def test_defaults(self):
        snapshot = BorrowerRiskSnapshot(
            borrower_id='b', credit_score=600, last_score_at=NOW, updated_at=NOW
        )
        assert snapshot.risk_tier == RiskLevel.UNKNOWN
        assert snapshot.kyc_status == KycStatus.UNKNOWN
        assert snapshot.flags == []

    def test_dict_round_trip(self):
        snapshot = BorrowerRiskSnapshot(
            borrower_id='b', credit_score=720, last_score_at=NOW, updated_at=NOW,
            risk_tier=RiskLevel.LOW, kyc_status=KycStatus.VERIFIED,
            flags=['recent_address_change'], last_verified_at=NOW
        )
        data = snapshot.to_dict()
        assert data['id'] == 'b'
        assert data['kyc_status'] == 'verified'
        assert BorrowerRiskSnapshot.from_dict(data) == snapshot
