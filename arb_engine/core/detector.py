"""Opportunity detection over a ticker snapshot."""

import math
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple
from loguru import logger

from ..config import Config
from .triangle import Triangle, calculate_cycle_return, find_triangles
from .types import (
    MAX_SANE_AMOUNT, STRATEGY_PROFILES, Opportunity, StrategyType, Ticker, now_ms,
)
from .utils import clamp, safe_divide


PRIMARY_STRATEGIES = [
    StrategyType.DIRECT_ARBITRAGE,
    StrategyType.CROSS_CHAIN_ARBITRAGE,
    StrategyType.FLASH_LOAN_ARBITRAGE,
    StrategyType.TRIANGULAR_ARBITRAGE,
]
SECONDARY_STRATEGIES = [StrategyType.MOMENTUM, StrategyType.MEAN_REVERSION]


def split_usable(tickers: List[Ticker]) -> Tuple[List[Ticker], int]:
    """Separate well-formed tickers from malformed ones.

    Returns the usable tickers in input order and how many were skipped.
    """
    usable = []
    skipped = 0
    for ticker in tickers:
        try:
            problem = ticker.problem()
        except Exception as e:
            problem = str(e)
        if problem:
            skipped += 1
            logger.debug(f"Skipping ticker {getattr(ticker, 'venue', '?')} "
                         f"{getattr(ticker, 'symbol', '?')}: {problem}")
            continue
        usable.append(ticker)
    return usable, skipped


@dataclass
class _Snapshot:
    """Validated tickers for one detection pass."""
    by_symbol: Dict[str, List[Ticker]]
    by_venue: Dict[str, Dict[str, Ticker]]
    now: int
    found: Dict[StrategyType, List[Opportunity]] = field(default_factory=dict)


class OpportunityDetector:
    """Turns a ticker snapshot into candidate opportunities.

    Detection is a pure function of the snapshot: the same tickers always
    yield the same candidates apart from their ids. Secondary strategies run
    only when no direct arbitrage was found in the pass.
    """

    def __init__(self, config: Config,
                 clock: Callable[[], int] = now_ms,
                 id_factory: Optional[Callable[[], str]] = None):
        self.config = config
        self.clock = clock
        self.id_factory = id_factory or (lambda: uuid.uuid4().hex)
        self.handlers: Dict[StrategyType, Callable[[_Snapshot], List[Opportunity]]] = {
            StrategyType.DIRECT_ARBITRAGE: self._detect_direct,
            StrategyType.CROSS_CHAIN_ARBITRAGE: self._detect_cross_chain,
            StrategyType.FLASH_LOAN_ARBITRAGE: self._detect_flash_loan,
            StrategyType.TRIANGULAR_ARBITRAGE: self._detect_triangular,
            StrategyType.MOMENTUM: self._detect_momentum,
            StrategyType.MEAN_REVERSION: self._detect_mean_reversion,
        }
        self.last_skipped = 0
        self.last_glitches = 0

    def detect(self, tickers: List[Ticker], now: Optional[int] = None) -> List[Opportunity]:
        """Detect candidates from a ticker snapshot."""
        snapshot = self._build_snapshot(tickers, now if now is not None else self.clock())
        self.last_glitches = 0
        if not snapshot.by_symbol:
            return []

        candidates: List[Opportunity] = []
        for strategy in PRIMARY_STRATEGIES:
            candidates.extend(self._run(strategy, snapshot))

        direct_found = (snapshot.found.get(StrategyType.DIRECT_ARBITRAGE) or
                        snapshot.found.get(StrategyType.CROSS_CHAIN_ARBITRAGE))
        if not direct_found:
            for strategy in SECONDARY_STRATEGIES:
                candidates.extend(self._run(strategy, snapshot))

        if self.last_glitches:
            logger.warning(f"Dropped {self.last_glitches} candidates above "
                           f"{self.config.detector.max_profit_pct}% profit as data glitches")
        if candidates:
            logger.info(f"Detected {len(candidates)} candidates from {len(tickers)} tickers")
        return candidates

    def _run(self, strategy: StrategyType, snapshot: _Snapshot) -> List[Opportunity]:
        try:
            found = self.handlers[strategy](snapshot)
        except Exception as e:
            logger.error(f"{strategy.value} detection failed: {e}")
            found = []
        snapshot.found[strategy] = found
        return found

    def _build_snapshot(self, tickers: List[Ticker], now: int) -> _Snapshot:
        excluded = set(self.config.symbols.exclude_assets)
        by_symbol: Dict[str, List[Ticker]] = defaultdict(list)
        by_venue: Dict[str, Dict[str, Ticker]] = defaultdict(dict)
        usable, skipped = split_usable(tickers)

        for ticker in usable:
            if ticker.base_asset in excluded or ticker.quote_asset in excluded:
                continue
            by_symbol[ticker.symbol].append(ticker)
            by_venue[ticker.venue][ticker.symbol] = ticker

        for symbol in by_symbol:
            by_symbol[symbol].sort(key=lambda t: t.venue)

        self.last_skipped = skipped
        if skipped:
            logger.warning(f"Skipped {skipped} malformed tickers")
        return _Snapshot(by_symbol=dict(by_symbol), by_venue=dict(by_venue), now=now)

    # Direct and cross-chain arbitrage

    def _detect_direct(self, snapshot: _Snapshot) -> List[Opportunity]:
        return self._detect_crossings(snapshot, cross_chain=False)

    def _detect_cross_chain(self, snapshot: _Snapshot) -> List[Opportunity]:
        return self._detect_crossings(snapshot, cross_chain=True)

    def _detect_crossings(self, snapshot: _Snapshot, cross_chain: bool) -> List[Opportunity]:
        strategy = StrategyType.CROSS_CHAIN_ARBITRAGE if cross_chain else StrategyType.DIRECT_ARBITRAGE
        results = []

        for symbol in sorted(snapshot.by_symbol):
            venue_tickers = snapshot.by_symbol[symbol]
            for i in range(len(venue_tickers)):
                for j in range(i + 1, len(venue_tickers)):
                    a, b = venue_tickers[i], venue_tickers[j]
                    if a.venue == b.venue:
                        continue
                    different_chain = self._chain(a.venue) != self._chain(b.venue)
                    if different_chain != cross_chain:
                        continue

                    if a.bid > b.ask:
                        buy, sell = b, a
                    elif b.bid > a.ask:
                        buy, sell = a, b
                    else:
                        continue

                    candidate = self._crossing_candidate(strategy, buy, sell, snapshot.now)
                    if candidate:
                        results.append(candidate)

        return results

    def _crossing_candidate(self, strategy: StrategyType, buy: Ticker, sell: Ticker,
                            now: int) -> Optional[Opportunity]:
        detector = self.config.detector
        volume = min(buy.volume_24h, sell.volume_24h)
        amount = min(detector.max_notional, volume * detector.volume_participation)
        fee_cost = amount * (self.config.get_taker_fee_bps(buy.venue) +
                             self.config.get_taker_fee_bps(sell.venue)) / 10000
        network_cost = (self.config.venue(buy.venue).network_cost +
                        self.config.venue(sell.venue).network_cost)

        return self._make(
            strategy=strategy,
            symbol=buy.symbol,
            buy_venue=buy.venue,
            buy_price=buy.ask,
            sell_venue=sell.venue,
            sell_price=sell.bid,
            amount=amount,
            available_volume=volume,
            fee_cost=fee_cost,
            network_cost=network_cost,
            liquidity=self._liquidity(volume),
            now=now,
        )

    def _detect_flash_loan(self, snapshot: _Snapshot) -> List[Opportunity]:
        flash = self.config.detector.flash_loan
        if not flash.enabled:
            return []

        results = []
        for base in snapshot.found.get(StrategyType.DIRECT_ARBITRAGE, []):
            amount = base.amount * flash.leverage
            candidate = self._make(
                strategy=StrategyType.FLASH_LOAN_ARBITRAGE,
                symbol=base.symbol,
                buy_venue=base.buy_venue,
                buy_price=base.buy_price,
                sell_venue=base.sell_venue,
                sell_price=base.sell_price,
                amount=amount,
                available_volume=base.available_volume,
                fee_cost=base.fee_cost * flash.leverage + amount * flash.fee_pct / 100,
                network_cost=base.network_cost + flash.extra_network_cost,
                liquidity=base.liquidity_score,
                now=snapshot.now,
                metadata={'leverage': flash.leverage, 'source_id': base.id},
            )
            if candidate:
                results.append(candidate)
        return results

    # Triangular arbitrage

    def _detect_triangular(self, snapshot: _Snapshot) -> List[Opportunity]:
        detector = self.config.detector
        results = []

        for venue in sorted(snapshot.by_venue):
            pairs = snapshot.by_venue[venue]
            triangles = find_triangles(list(pairs), self.config.symbols.quote_assets,
                                       self.config.symbols.exclude_assets)
            fee_bps = self.config.get_taker_fee_bps(venue)

            for triangle in triangles:
                cycle_return = calculate_cycle_return(triangle, pairs)
                if cycle_return is None or cycle_return <= 1.0:
                    continue

                volume = min(pairs[p].volume_24h for p in triangle.get_pairs())
                amount = detector.triangular_start_notional
                candidate = self._make(
                    strategy=StrategyType.TRIANGULAR_ARBITRAGE,
                    symbol=triangle.label,
                    buy_venue=venue,
                    buy_price=1.0,
                    sell_venue=venue,
                    sell_price=cycle_return,
                    amount=amount,
                    available_volume=volume,
                    fee_cost=amount * 3 * fee_bps / 10000,
                    network_cost=self.config.venue(venue).network_cost * 3,
                    liquidity=self._liquidity(volume),
                    now=snapshot.now,
                    path=triangle.get_pairs(),
                )
                if candidate:
                    results.append(candidate)

        return results

    # Secondary strategies

    def _detect_momentum(self, snapshot: _Snapshot) -> List[Opportunity]:
        detector = self.config.detector
        return self._detect_single_venue(
            snapshot,
            StrategyType.MOMENTUM,
            lambda t: t.change_pct >= detector.momentum_min_change_pct,
            detector.momentum_target_pct,
        )

    def _detect_mean_reversion(self, snapshot: _Snapshot) -> List[Opportunity]:
        detector = self.config.detector
        return self._detect_single_venue(
            snapshot,
            StrategyType.MEAN_REVERSION,
            lambda t: t.change_pct <= -detector.reversion_min_drop_pct,
            detector.reversion_target_pct,
        )

    def _detect_single_venue(self, snapshot: _Snapshot, strategy: StrategyType,
                             signal: Callable[[Ticker], bool], target_pct: float) -> List[Opportunity]:
        detector = self.config.detector
        results = []

        for symbol in sorted(snapshot.by_symbol):
            for ticker in snapshot.by_symbol[symbol]:
                if ticker.change_pct is None:
                    continue
                if ticker.volume_24h < detector.secondary_min_volume:
                    continue
                if ticker.spread_bps > detector.secondary_max_spread_bps:
                    continue
                if not signal(ticker):
                    continue

                amount = min(detector.max_notional, ticker.volume_24h * detector.volume_participation)
                candidate = self._make(
                    strategy=strategy,
                    symbol=symbol,
                    buy_venue=ticker.venue,
                    buy_price=ticker.ask,
                    sell_venue=ticker.venue,
                    sell_price=ticker.ask * (1 + target_pct / 100),
                    amount=amount,
                    available_volume=ticker.volume_24h,
                    fee_cost=amount * 2 * self.config.get_taker_fee_bps(ticker.venue) / 10000,
                    network_cost=self.config.venue(ticker.venue).network_cost * 2,
                    liquidity=self._liquidity(ticker.volume_24h),
                    now=snapshot.now,
                    metadata={'change_pct': ticker.change_pct},
                )
                if candidate:
                    results.append(candidate)

        return results

    # Helpers

    def _make(self, strategy: StrategyType, symbol: str, buy_venue: str, buy_price: float,
              sell_venue: str, sell_price: float, amount: float, available_volume: float,
              fee_cost: float, network_cost: float, liquidity: float, now: int,
              path: Optional[List[str]] = None, metadata: Optional[Dict] = None) -> Optional[Opportunity]:
        """Build a candidate, or None when it fails the profit window or numeric checks."""
        values = (buy_price, sell_price, amount, available_volume, fee_cost, network_cost, liquidity)
        if not all(math.isfinite(v) for v in values):
            return None
        if buy_price <= 0 or sell_price <= buy_price:
            return None

        profit_pct = (sell_price - buy_price) / buy_price * 100
        if profit_pct > self.config.detector.max_profit_pct:
            self.last_glitches += 1
            return None
        if profit_pct < self.config.risk.min_profit_for(strategy.value):
            return None

        profile = STRATEGY_PROFILES[strategy]
        risk_level = profile.base_risk_level + (1 if liquidity < 0.3 else 0)
        confidence = clamp(40 + min(profit_pct * 10, 30) + liquidity * 30 - profile.base_risk_level * 5,
                           0, 100)

        return Opportunity(
            id=self.id_factory(),
            strategy=strategy,
            symbol=symbol,
            buy_venue=buy_venue,
            buy_price=buy_price,
            sell_venue=sell_venue,
            sell_price=sell_price,
            amount=clamp(amount, 0.0, MAX_SANE_AMOUNT),
            available_volume=clamp(available_volume, 0.0, MAX_SANE_AMOUNT),
            fee_cost=clamp(fee_cost, 0.0, MAX_SANE_AMOUNT),
            network_cost=clamp(network_cost, 0.0, MAX_SANE_AMOUNT),
            risk_level=int(clamp(risk_level, 1, 5)),
            confidence=round(confidence, 2),
            liquidity_score=liquidity,
            created_at=now,
            expires_at=now + self.config.detector.opportunity_ttl_ms,
            path=path or [],
            metadata=metadata or {},
        )

    def _liquidity(self, volume: float) -> float:
        return clamp(safe_divide(volume, self.config.detector.liquidity_reference_volume), 0.0, 1.0)

    def _chain(self, venue: str) -> str:
        return self.config.venue(venue).chain
