"""
Shared types and data structures for the arbitrage engine.
This file breaks circular imports between modules.
"""

import math
import time
from typing import Dict, List, Optional, Any
from dataclasses import dataclass, field
from enum import Enum


MAX_SANE_PRICE = 1e9
MAX_SANE_AMOUNT = 1e12


def now_ms() -> int:
    """Current wall clock time in epoch milliseconds."""
    return int(time.time() * 1000)


@dataclass
class Ticker:
    """Latest top-of-book observation for one instrument on one venue."""
    venue: str
    symbol: str
    bid: float
    ask: float
    last: float
    volume_24h: float  # quote-asset volume
    ts: int
    change_pct: Optional[float] = None  # short-horizon price change, percent

    @property
    def mid_price(self) -> float:
        """Calculate mid price."""
        return (self.bid + self.ask) / 2

    @property
    def spread_bps(self) -> float:
        """Calculate spread in basis points."""
        if self.bid <= 0 or self.ask <= 0:
            return float('inf')
        return ((self.ask - self.bid) / self.bid) * 10000

    @property
    def base_asset(self) -> str:
        return self.symbol.split('/')[0]

    @property
    def quote_asset(self) -> str:
        return self.symbol.split('/')[1] if '/' in self.symbol else ''

    def problem(self) -> Optional[str]:
        """Return why this ticker cannot be used, or None when it is well formed."""
        if not self.venue or not self.symbol or '/' not in self.symbol:
            return "bad symbol or venue"
        for name in ('bid', 'ask', 'last', 'volume_24h'):
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or not math.isfinite(value):
                return f"non-finite {name}"
        if self.bid <= 0 or self.ask <= 0:
            return "non-positive price"
        if self.bid > self.ask:
            return "crossed book"
        if self.ask > MAX_SANE_PRICE:
            return "price out of range"
        if self.volume_24h < 0:
            return "negative volume"
        if self.change_pct is not None and (not isinstance(self.change_pct, (int, float))
                                            or not math.isfinite(self.change_pct)):
            return "non-finite change_pct"
        return None


class StrategyType(Enum):
    """Closed set of detection strategies."""
    DIRECT_ARBITRAGE = "direct_arbitrage"
    CROSS_CHAIN_ARBITRAGE = "cross_chain_arbitrage"
    TRIANGULAR_ARBITRAGE = "triangular_arbitrage"
    FLASH_LOAN_ARBITRAGE = "flash_loan_arbitrage"
    MOMENTUM = "momentum"
    MEAN_REVERSION = "mean_reversion"


@dataclass(frozen=True)
class StrategyProfile:
    """Static risk characteristics of a strategy."""
    cross_venue: bool
    cross_chain: bool
    leveraged: bool
    base_risk_level: int
    est_execution_time_s: float
    secondary: bool = False


STRATEGY_PROFILES: Dict[StrategyType, StrategyProfile] = {
    StrategyType.DIRECT_ARBITRAGE: StrategyProfile(
        cross_venue=True, cross_chain=False, leveraged=False,
        base_risk_level=2, est_execution_time_s=5.0),
    StrategyType.CROSS_CHAIN_ARBITRAGE: StrategyProfile(
        cross_venue=True, cross_chain=True, leveraged=False,
        base_risk_level=4, est_execution_time_s=300.0),
    StrategyType.TRIANGULAR_ARBITRAGE: StrategyProfile(
        cross_venue=False, cross_chain=False, leveraged=False,
        base_risk_level=2, est_execution_time_s=3.0),
    StrategyType.FLASH_LOAN_ARBITRAGE: StrategyProfile(
        cross_venue=True, cross_chain=False, leveraged=True,
        base_risk_level=3, est_execution_time_s=15.0),
    StrategyType.MOMENTUM: StrategyProfile(
        cross_venue=False, cross_chain=False, leveraged=False,
        base_risk_level=4, est_execution_time_s=2.0, secondary=True),
    StrategyType.MEAN_REVERSION: StrategyProfile(
        cross_venue=False, cross_chain=False, leveraged=False,
        base_risk_level=3, est_execution_time_s=2.0, secondary=True),
}


class OpportunityStatus(Enum):
    """Candidate lifecycle status."""
    DISCOVERED = "discovered"
    ADMITTED = "admitted"
    REJECTED = "rejected"
    EXECUTING = "executing"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    EXPIRED = "expired"


_TRANSITIONS = {
    OpportunityStatus.DISCOVERED: {OpportunityStatus.ADMITTED, OpportunityStatus.REJECTED,
                                   OpportunityStatus.EXPIRED},
    OpportunityStatus.ADMITTED: {OpportunityStatus.EXECUTING, OpportunityStatus.EXPIRED},
    OpportunityStatus.EXECUTING: {OpportunityStatus.CONFIRMED, OpportunityStatus.FAILED},
}


@dataclass
class Opportunity:
    """Detected, not yet executed, potential trade."""
    id: str
    strategy: StrategyType
    symbol: str
    buy_venue: str
    buy_price: float
    sell_venue: str
    sell_price: float
    amount: float  # quote notional
    available_volume: float
    fee_cost: float
    network_cost: float
    risk_level: int
    confidence: float
    liquidity_score: float
    created_at: int
    expires_at: int
    status: OpportunityStatus = OpportunityStatus.DISCOVERED
    expected_slippage: Optional[float] = None  # percent, estimated by the risk engine when absent
    path: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def profile(self) -> StrategyProfile:
        return STRATEGY_PROFILES[self.strategy]

    @property
    def profit_percentage(self) -> float:
        """Gross profit in percent, derived from buy and sell prices."""
        if self.buy_price <= 0:
            return 0.0
        return (self.sell_price - self.buy_price) / self.buy_price * 100

    @property
    def edge_bps(self) -> float:
        return self.profit_percentage * 100

    @property
    def estimated_profit(self) -> float:
        """Gross profit in quote currency."""
        return self.amount * self.profit_percentage / 100

    @property
    def composite_score(self) -> float:
        return self.profit_percentage * self.confidence

    def is_expired(self, now: int) -> bool:
        return now >= self.expires_at

    def can_transition(self, new_status: OpportunityStatus) -> bool:
        return new_status in _TRANSITIONS.get(self.status, set())

    def transition(self, new_status: OpportunityStatus) -> bool:
        """Move to a new status if the lifecycle allows it."""
        if not self.can_transition(new_status):
            return False
        self.status = new_status
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'strategy': self.strategy.value,
            'symbol': self.symbol,
            'buy_venue': self.buy_venue,
            'buy_price': self.buy_price,
            'sell_venue': self.sell_venue,
            'sell_price': self.sell_price,
            'amount': self.amount,
            'profit_percentage': self.profit_percentage,
            'estimated_profit': self.estimated_profit,
            'fee_cost': self.fee_cost,
            'network_cost': self.network_cost,
            'risk_level': self.risk_level,
            'confidence': self.confidence,
            'liquidity_score': self.liquidity_score,
            'created_at': self.created_at,
            'expires_at': self.expires_at,
            'status': self.status.value,
            'path': list(self.path),
        }


class Recommendation(Enum):
    """Risk engine recommendation."""
    EXECUTE = "execute"
    REDUCE_SIZE = "reduce_size"
    REJECT = "reject"


@dataclass
class RiskFactor:
    """One triggered component of a risk score."""
    name: str
    score: float
    detail: str = ""


@dataclass
class RiskAssessment:
    """Per-candidate risk view, computed fresh each cycle."""
    candidate_id: str
    risk_score: float
    factors: List[RiskFactor]
    recommendation: Recommendation
    adjusted_size: float
    raw_score: float = 0.0
    volatility_multiplier: float = 1.0
    estimated_slippage: float = 0.0

    @property
    def factor_names(self) -> List[str]:
        return [f.name for f in self.factors]


@dataclass
class PositionSizing:
    """Kelly-based sizing recommendation."""
    recommended_size: float
    kelly_fraction: float
    liquidity_adjustment: float
    volatility_adjustment: float
    cap: float


class Severity(Enum):
    """Emergency severity."""
    NONE = "none"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass
class EmergencyCheck:
    """Result of an emergency-stop evaluation."""
    should_stop: bool
    reasons: List[str]
    severity: Severity


class TradeStatus(Enum):
    """Terminal status of an execution attempt."""
    CONFIRMED = "confirmed"
    FAILED = "failed"


@dataclass(frozen=True)
class ExecutedTrade:
    """Immutable record of one execution attempt that reached the adapter."""
    id: str
    opportunity_id: str
    strategy: StrategyType
    symbol: str
    amount_traded: float
    profit_realized: float
    fees: float
    duration_ms: int
    status: TradeStatus
    executed_at: int
    external_ref: Optional[str] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status == TradeStatus.CONFIRMED
