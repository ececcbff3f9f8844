"""Risk scoring, position sizing and emergency-stop evaluation."""

from dataclasses import dataclass
from typing import Dict, List, Optional
from loguru import logger

from ..config import RiskConfiguration, RiskScoring
from .portfolio import PortfolioState
from .types import (
    STRATEGY_PROFILES, EmergencyCheck, Opportunity, PositionSizing, Recommendation,
    RiskAssessment, RiskFactor, Severity, StrategyProfile,
)
from .utils import clamp, finite_or, safe_divide


STABLECOINS = {"USDT", "USDC", "DAI", "BUSD", "TUSD", "FDUSD"}
DEFI_ASSETS = {"UNI", "AAVE", "COMP", "MKR", "CRV", "SUSHI", "LDO", "SNX"}


@dataclass
class VenueRisk:
    """Per-venue (or per-chain) risk view."""
    venue: str
    chain: str
    score: float
    safe_amount: float
    factors: List[str]


@dataclass
class RebalanceAction:
    """Advisory allocation correction."""
    asset_class: str
    action: str  # buy | sell
    amount: float
    deviation: float
    priority: str  # high | medium | low


# Individual factors. Each returns a non-negative contribution to the raw score.

def liquidity_risk(liquidity: float, scoring: RiskScoring) -> float:
    """Inversely proportional to liquidity, with a penalty below the cutoff."""
    score = (1 - liquidity) * scoring.liquidity_weight
    if liquidity < scoring.low_liquidity_cutoff:
        score += scoring.low_liquidity_penalty
    return score


def market_depth_risk(available_volume: float, min_volume: float, scoring: RiskScoring) -> float:
    """Penalty when the instrument trades less than the configured minimum volume."""
    return scoring.thin_market_penalty if available_volume < min_volume else 0.0


def estimate_slippage(liquidity: float, amount: float, scoring: RiskScoring) -> float:
    """Estimated slippage in percent from liquidity and trade size."""
    return (scoring.base_slippage_pct
            + (1 - liquidity) * scoring.liquidity_slippage_pct
            + safe_divide(amount, scoring.size_slippage_unit) * scoring.size_slippage_pct)


def slippage_risk(slippage: float, max_slippage: float, scoring: RiskScoring) -> float:
    """Penalty plus a term proportional to the overage above max_slippage."""
    if slippage <= max_slippage:
        return 0.0
    return scoring.slippage_penalty + (slippage - max_slippage) * scoring.slippage_overage_weight


def cost_risk(network_cost: float, max_network_cost: float, scoring: RiskScoring) -> float:
    return scoring.network_cost_penalty if network_cost > max_network_cost else 0.0


def timing_risk(execution_time_s: float, scoring: RiskScoring) -> float:
    if execution_time_s > scoring.execution_time_threshold_s:
        return scoring.execution_time_penalty
    return 0.0


def strategy_risk(profile: StrategyProfile, scoring: RiskScoring) -> float:
    score = 0.0
    if profile.cross_chain:
        score += scoring.cross_chain_penalty
    if profile.leveraged:
        score += scoring.leverage_penalty
    return score


def concentration_risk(exposure: float, balance: float, scoring: RiskScoring) -> float:
    """Penalty when existing exposure to the instrument exceeds the configured fraction."""
    if balance <= 0:
        return scoring.concentration_penalty
    if exposure / balance > scoring.concentration_fraction:
        return scoring.concentration_penalty
    return 0.0


def volatility_multiplier(volatility: float, scoring: RiskScoring) -> float:
    return 1 + volatility * scoring.volatility_k


class RiskEngine:
    """Scores candidates and evaluates portfolio-wide stop conditions.

    Stateless apart from the venue-to-chain map; every call takes the
    portfolio snapshot and configuration it should use.
    """

    def __init__(self, venue_chains: Optional[Dict[str, str]] = None):
        self.venue_chains = venue_chains or {}

    def assess(self, candidate: Opportunity, portfolio: PortfolioState,
               config: RiskConfiguration) -> RiskAssessment:
        """Weighted-sum risk score and size recommendation for one candidate."""
        try:
            return self._assess(candidate, portfolio, config)
        except Exception as e:
            logger.error(f"Risk assessment failed for {getattr(candidate, 'id', '?')}: {e}")
            return RiskAssessment(
                candidate_id=getattr(candidate, 'id', ''),
                risk_score=100.0,
                factors=[RiskFactor("assessment_error", 100.0, str(e))],
                recommendation=Recommendation.REJECT,
                adjusted_size=0.0,
                raw_score=100.0,
            )

    def _assess(self, candidate: Opportunity, portfolio: PortfolioState,
                config: RiskConfiguration) -> RiskAssessment:
        scoring = config.scoring
        profile = STRATEGY_PROFILES.get(candidate.strategy)

        # Missing or non-finite inputs fall back to the riskiest value
        liquidity = clamp(finite_or(candidate.liquidity_score, 0.0), 0.0, 1.0)
        amount = max(0.0, finite_or(candidate.amount, config.max_position_size))
        available_volume = max(0.0, finite_or(candidate.available_volume, 0.0))
        network_cost = finite_or(candidate.network_cost, float('inf'))
        volatility = clamp(finite_or(portfolio.volatility_index, 1.0), 0.0, 1.0)
        balance = finite_or(portfolio.balance, 0.0)
        exposure = finite_or(portfolio.instrument_exposure.get(candidate.symbol, 0.0), balance)

        if candidate.expected_slippage is not None:
            slippage = finite_or(candidate.expected_slippage, float('inf'))
        else:
            slippage = estimate_slippage(liquidity, amount, scoring)

        factors = [
            RiskFactor("liquidity", liquidity_risk(liquidity, scoring), f"liquidity={liquidity:.2f}"),
            RiskFactor("market_depth",
                       market_depth_risk(available_volume, config.min_liquidity_threshold, scoring),
                       f"volume={available_volume:.0f}"),
            RiskFactor("slippage", slippage_risk(slippage, config.max_slippage, scoring),
                       f"slippage={slippage:.3f}%"),
            RiskFactor("network_cost", cost_risk(network_cost, config.max_network_cost, scoring),
                       f"cost={network_cost:.2f}"),
        ]
        if profile is None:
            factors.append(RiskFactor("unknown_strategy", scoring.cross_chain_penalty
                                      + scoring.leverage_penalty + scoring.execution_time_penalty))
        else:
            exec_time = finite_or(candidate.metadata.get('est_execution_time_s'),
                                  profile.est_execution_time_s)
            factors.append(RiskFactor("timing", timing_risk(exec_time, scoring), f"eta={exec_time:.0f}s"))
            factors.append(RiskFactor("strategy", strategy_risk(profile, scoring), candidate.strategy.value))
        factors.append(RiskFactor("concentration", concentration_risk(exposure, balance, scoring),
                                  f"exposure={exposure:.2f}"))

        raw_score = sum(f.score for f in factors)
        multiplier = volatility_multiplier(volatility, scoring)
        risk_score = raw_score * multiplier

        if risk_score <= scoring.execute_threshold:
            recommendation = Recommendation.EXECUTE
            size = amount
        elif risk_score <= scoring.reduce_threshold:
            recommendation = Recommendation.REDUCE_SIZE
            size = amount * scoring.reduce_size_factor
        else:
            recommendation = Recommendation.REJECT
            size = 0.0

        size = max(0.0, min(size, config.max_position_size, balance * config.max_fraction_per_trade))

        return RiskAssessment(
            candidate_id=candidate.id,
            risk_score=risk_score,
            factors=[f for f in factors if f.score > 0],
            recommendation=recommendation,
            adjusted_size=size,
            raw_score=raw_score,
            volatility_multiplier=multiplier,
            estimated_slippage=slippage,
        )

    def calculate_position_size(self, candidate: Opportunity, portfolio: PortfolioState,
                                config: RiskConfiguration) -> PositionSizing:
        """Fractional Kelly sizing capped by position, portfolio and venue limits."""
        p = clamp(finite_or(candidate.confidence, 0.0) / 100, 0.0, 1.0)
        b = finite_or(candidate.profit_percentage, 0.0)
        balance = max(0.0, finite_or(portfolio.balance, 0.0))

        if b <= 0:
            kelly = 0.0
        else:
            kelly = (b * p - (1 - p)) / b
        fraction = clamp(kelly * config.kelly_multiplier, 0.0, config.kelly_cap)

        liquidity_adj = min(1.0, clamp(finite_or(candidate.liquidity_score, 0.0), 0.0, 1.0) * 2)
        volatility_adj = max(config.min_volatility_adjustment,
                             1 - clamp(finite_or(portfolio.volatility_index, 1.0), 0.0, 1.0))
        optimal = balance * fraction * liquidity_adj * volatility_adj

        cap = min(config.max_position_size, balance * config.max_fraction_per_trade)
        if optimal > 0:
            for venue in sorted({candidate.buy_venue, candidate.sell_venue}):
                cap = min(cap, self.assess_venue_risk(venue, optimal, portfolio, config).safe_amount)

        return PositionSizing(
            recommended_size=max(0.0, min(optimal, cap)),
            kelly_fraction=fraction,
            liquidity_adjustment=liquidity_adj,
            volatility_adjustment=volatility_adj,
            cap=cap,
        )

    def check_emergency(self, portfolio: PortfolioState, config: RiskConfiguration) -> EmergencyCheck:
        """Evaluate portfolio-wide stop conditions."""
        reasons = []
        severity = Severity.NONE
        should_stop = False

        if portfolio.daily_loss >= config.max_daily_loss:
            reasons.append(f"Daily loss {portfolio.daily_loss:.2f} reached limit {config.max_daily_loss:.2f}")
            severity = Severity.CRITICAL
            should_stop = True

        if portfolio.drawdown >= config.emergency_stop_threshold:
            reasons.append(f"Drawdown {portfolio.drawdown:.2%} reached threshold "
                           f"{config.emergency_stop_threshold:.2%}")
            severity = Severity.CRITICAL
            should_stop = True

        if portfolio.active_positions > config.max_concurrent_trades:
            reasons.append(f"Active positions {portfolio.active_positions} exceed "
                           f"{config.max_concurrent_trades}")
            should_stop = True
            if severity != Severity.CRITICAL:
                severity = Severity.WARNING

        if portfolio.volatility_index > config.high_volatility_threshold:
            reasons.append(f"High volatility index {portfolio.volatility_index:.2f}")
            if severity == Severity.NONE:
                severity = Severity.WARNING

        return EmergencyCheck(should_stop=should_stop, reasons=reasons, severity=severity)

    def assess_venue_risk(self, venue: str, amount: float, portfolio: PortfolioState,
                          config: RiskConfiguration, chain: Optional[str] = None) -> VenueRisk:
        """Risk of placing amount on one venue given its weight and current exposure."""
        chain = chain or self.venue_chains.get(venue, "cex")
        weight = config.venue_weight(venue, chain)
        exposure = portfolio.venue_exposure.get(venue, 0.0)
        max_exposure = portfolio.balance * config.max_fraction_per_venue

        factors = []
        score = max(0.0, (weight - 1) * config.scoring.venue_weight_scale)
        if weight > 1:
            factors.append(f"{chain} weight {weight:.2f}")
        if exposure + amount > max_exposure:
            score += config.scoring.concentration_penalty
            factors.append("venue concentration")

        safe_amount = min(amount, max(0.0, max_exposure - exposure), safe_divide(amount, weight, amount))
        return VenueRisk(venue=venue, chain=chain, score=min(100.0, score),
                         safe_amount=max(0.0, safe_amount), factors=factors)

    def calculate_rebalancing(self, current_allocations: Dict[str, float], portfolio: PortfolioState,
                              config: RiskConfiguration) -> List[RebalanceAction]:
        """Compare allocations with the target and propose corrections outside the band."""
        actions = []
        for asset_class in sorted(set(config.target_allocation) | set(current_allocations)):
            target = config.target_allocation.get(asset_class, 0.0)
            current = current_allocations.get(asset_class, 0.0)
            deviation = current - target
            if abs(deviation) <= config.rebalance_band:
                continue

            if abs(deviation) > 0.15:
                priority = "high"
            elif abs(deviation) > 0.10:
                priority = "medium"
            else:
                priority = "low"

            actions.append(RebalanceAction(
                asset_class=asset_class,
                action="sell" if deviation > 0 else "buy",
                amount=abs(deviation) * portfolio.balance,
                deviation=deviation,
                priority=priority,
            ))
        return actions

    def current_allocations(self, portfolio: PortfolioState) -> Dict[str, float]:
        """Allocation by asset class; uncommitted balance counts as stablecoins."""
        if portfolio.balance <= 0:
            return {}
        allocations: Dict[str, float] = {}
        committed = 0.0
        for symbol, exposure in portfolio.instrument_exposure.items():
            if exposure <= 0:
                continue
            asset_class = classify_asset(symbol.split('/')[0].split('-')[0])
            allocations[asset_class] = allocations.get(asset_class, 0.0) + exposure / portfolio.balance
            committed += exposure
        free = max(0.0, portfolio.balance - committed)
        allocations["stablecoins"] = allocations.get("stablecoins", 0.0) + free / portfolio.balance
        return allocations

    def update_risk_metrics(self, portfolio: PortfolioState, config: RiskConfiguration) -> float:
        """Aggregate 0..100 portfolio risk score."""
        score = (safe_divide(portfolio.daily_loss, config.max_daily_loss, 1.0) * 40
                 + safe_divide(portfolio.active_positions, config.max_concurrent_trades) * 20
                 + portfolio.volatility_index * 30
                 + (1 - portfolio.liquidity_index) * 10)
        return clamp(score, 0.0, 100.0)


def classify_asset(asset: str) -> str:
    asset = asset.upper()
    if asset in ("BTC", "WBTC"):
        return "btc"
    if asset in ("ETH", "WETH", "STETH"):
        return "eth"
    if asset in STABLECOINS:
        return "stablecoins"
    if asset in DEFI_ASSETS:
        return "defi"
    return "altcoins"


def risk_level_label(score: float) -> str:
    """Map an aggregate 0..100 score onto a coarse label."""
    if score < 25:
        return "low"
    elif score < 50:
        return "medium"
    elif score < 75:
        return "high"
    return "critical"
