"""Core scan, score and gate logic.

Execution, pipeline and scheduler modules depend on the adapter and storage
packages and are imported from their own modules.
"""

from .types import (
    Ticker, Opportunity, OpportunityStatus, StrategyType, StrategyProfile, STRATEGY_PROFILES,
    RiskAssessment, RiskFactor, Recommendation, PositionSizing, EmergencyCheck, Severity,
    ExecutedTrade, TradeStatus,
)
from .quotes import TickerBook
from .triangle import Triangle, find_triangles
from .portfolio import PortfolioState, PortfolioTracker
from .risk import RiskEngine
from .gate import Admission, admit, rank
from .detector import OpportunityDetector

__all__ = [
    'Ticker',
    'Opportunity',
    'OpportunityStatus',
    'StrategyType',
    'StrategyProfile',
    'STRATEGY_PROFILES',
    'RiskAssessment',
    'RiskFactor',
    'Recommendation',
    'PositionSizing',
    'EmergencyCheck',
    'Severity',
    'ExecutedTrade',
    'TradeStatus',
    'TickerBook',
    'Triangle',
    'find_triangles',
    'PortfolioState',
    'PortfolioTracker',
    'RiskEngine',
    'Admission',
    'admit',
    'rank',
    'OpportunityDetector',
]
