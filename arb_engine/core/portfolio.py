"""Rolling portfolio state shared across scan cycles."""

import asyncio
from dataclasses import dataclass, field, replace
from typing import Awaitable, Callable, Dict, Iterable, List, Optional
from loguru import logger

from .types import ExecutedTrade, Opportunity, Ticker
from .utils import clamp, finite_or, is_finite, safe_divide


@dataclass
class PortfolioState:
    """Rolling portfolio metrics read by the risk engine."""
    balance: float
    daily_pnl: float = 0.0
    active_positions: int = 0
    volatility_index: float = 0.0
    liquidity_index: float = 1.0
    venue_exposure: Dict[str, float] = field(default_factory=dict)
    instrument_exposure: Dict[str, float] = field(default_factory=dict)
    risk_score: float = 0.0
    window_trades: int = 0
    window_wins: int = 0
    updated_at: int = 0

    @property
    def daily_loss(self) -> float:
        """Realized loss over the rolling window, as a positive number."""
        return max(0.0, -self.daily_pnl)

    @property
    def drawdown(self) -> float:
        """Daily loss as a fraction of the balance at the start of the window."""
        start_balance = self.balance - self.daily_pnl
        if start_balance <= 0:
            return 1.0 if self.daily_loss > 0 else 0.0
        return self.daily_loss / start_balance

    def copy(self) -> "PortfolioState":
        return replace(self,
                       venue_exposure=dict(self.venue_exposure),
                       instrument_exposure=dict(self.instrument_exposure))


class PortfolioTracker:
    """Single writer for PortfolioState.

    Every mutation runs under one asyncio lock so concurrent scan cycles cannot
    lose each other's updates. Readers take copies through snapshot().
    """

    def __init__(self, initial_balance: float, state: Optional[PortfolioState] = None):
        self._state = state or PortfolioState(balance=initial_balance)
        self._lock = asyncio.Lock()

    def snapshot(self) -> PortfolioState:
        return self._state.copy()

    async def open_position(self, candidate: Opportunity, amount: float):
        """Reserve exposure for a candidate that is about to execute."""
        async with self._lock:
            self._add_exposure(candidate, amount)
            self._state.active_positions += 1

    async def record_outcome(self, candidate: Opportunity, amount: float, trade: ExecutedTrade,
                             persist: Optional[Callable[[], Awaitable[None]]] = None):
        """Persist a trade and fold it into the portfolio as one atomic step.

        If persist raises, the position is still released and the error
        propagates. A failed trade that reports a traded amount left a leg
        open, and that amount stays as exposure.
        """
        async with self._lock:
            try:
                if persist is not None:
                    await persist()
            finally:
                self._add_exposure(candidate, -amount)
                self._state.active_positions = max(0, self._state.active_positions - 1)
            if not trade.success and trade.amount_traded > 0:
                self._add_exposure(candidate, trade.amount_traded)
                logger.warning(f"Open exposure {trade.amount_traded:.2f} on {candidate.symbol} "
                               f"from failed trade {trade.id}")
            self._state.daily_pnl += trade.profit_realized
            self._state.balance += trade.profit_realized
            self._state.window_trades += 1
            if trade.success and trade.profit_realized > 0:
                self._state.window_wins += 1
            self._state.updated_at = trade.executed_at

    async def apply_rollup(self, load_trades: Callable[[], Awaitable[List[ExecutedTrade]]],
                           now: int) -> PortfolioState:
        """Recompute windowed P/L from the store.

        The load runs under the writer lock so it cannot interleave with
        record_outcome.
        """
        async with self._lock:
            trades = await load_trades()
            window_pnl = sum(t.profit_realized for t in trades)
            self._state.daily_pnl = window_pnl
            self._state.window_trades = len(trades)
            self._state.window_wins = sum(1 for t in trades if t.success and t.profit_realized > 0)
            self._state.updated_at = now
            logger.debug(f"Portfolio rollup: {len(trades)} trades, window P/L {window_pnl:.4f}")
            return self._state.copy()

    async def update_market_indices(self, tickers: Iterable[Ticker], reference_volume: float):
        """Refresh volatility and liquidity indices from the latest tickers.

        Non-finite price changes are ignored; a non-finite volume counts as
        no liquidity.
        """
        tickers = list(tickers)
        if not tickers:
            return
        changes = [abs(t.change_pct) for t in tickers if is_finite(t.change_pct)]
        volatility = clamp(safe_divide(sum(changes), len(changes)) / 10, 0.0, 1.0) if changes else None
        depth = [min(1.0, safe_divide(max(0.0, finite_or(t.volume_24h, 0.0)), reference_volume))
                 for t in tickers]
        liquidity = clamp(safe_divide(sum(depth), len(depth)), 0.0, 1.0)
        async with self._lock:
            if volatility is not None:
                self._state.volatility_index = volatility
            self._state.liquidity_index = liquidity

    async def set_risk_score(self, score: float):
        async with self._lock:
            self._state.risk_score = score

    def _add_exposure(self, candidate: Opportunity, amount: float):
        exposure = self._state.instrument_exposure
        exposure[candidate.symbol] = max(0.0, exposure.get(candidate.symbol, 0.0) + amount)
        for venue in {candidate.buy_venue, candidate.sell_venue}:
            venues = self._state.venue_exposure
            venues[venue] = max(0.0, venues.get(venue, 0.0) + amount)
