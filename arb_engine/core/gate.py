"""Admission gate: decides which scored candidates may execute."""

from dataclasses import dataclass
from typing import List, Optional

from ..config import RiskConfiguration
from .types import (
    EmergencyCheck, Opportunity, OpportunityStatus, PositionSizing, Recommendation, RiskAssessment,
)


REASON_EXPIRED = "expired"
REASON_EXECUTION_DISABLED = "execution_disabled"
REASON_EMERGENCY_STOP = "emergency_stop"
REASON_RISK_REJECTED = "risk_rejected"
REASON_BELOW_MIN_PROFIT = "below_min_profit"
REASON_BELOW_MIN_SIZE = "below_min_size"


@dataclass
class Admission:
    """Outcome of the admission check."""
    admitted: bool
    size: float
    reason: Optional[str] = None

    @property
    def status(self) -> OpportunityStatus:
        if self.admitted:
            return OpportunityStatus.ADMITTED
        if self.reason == REASON_EXPIRED:
            return OpportunityStatus.EXPIRED
        return OpportunityStatus.REJECTED


def admit(candidate: Opportunity, assessment: RiskAssessment, sizing: PositionSizing,
          emergency: EmergencyCheck, execution_enabled: bool, config: RiskConfiguration,
          min_position_size: float, now: int) -> Admission:
    """Pure admission decision; never mutates the candidate."""
    if candidate.is_expired(now):
        return Admission(False, 0.0, REASON_EXPIRED)

    if not execution_enabled:
        return Admission(False, 0.0, REASON_EXECUTION_DISABLED)

    if emergency.should_stop:
        return Admission(False, 0.0, REASON_EMERGENCY_STOP)

    if assessment.recommendation == Recommendation.REJECT:
        return Admission(False, 0.0, REASON_RISK_REJECTED)

    if candidate.profit_percentage < config.min_profit_for(candidate.strategy.value):
        return Admission(False, 0.0, REASON_BELOW_MIN_PROFIT)

    size = min(assessment.adjusted_size, sizing.recommended_size)
    if size < min_position_size or size <= 0:
        return Admission(False, size, REASON_BELOW_MIN_SIZE)

    return Admission(True, size)


def rank(candidates: List[Opportunity]) -> List[Opportunity]:
    """Order by profit percentage times confidence, best first."""
    return sorted(candidates, key=lambda c: c.composite_score, reverse=True)
