"""Synthetic ticker generation for paper testing.

All randomness comes from the injected random.Random, so a seed reproduces a
run exactly. Nothing in the detection path imports this module.
"""

import random
from typing import Callable, Dict, List, Optional

from ..core.types import Ticker, now_ms
from ..exchanges.static import StaticMarketData


DEFAULT_PRICES = {
    "BTC/USDT": 65000.0,
    "ETH/USDT": 3200.0,
    "SOL/USDT": 150.0,
    "ETH/BTC": 3200.0 / 65000.0,
    "SOL/BTC": 150.0 / 65000.0,
    "SOL/ETH": 150.0 / 3200.0,
}


class SyntheticTickerGenerator:
    """Random-walk tickers with occasional injected cross-venue dislocations."""

    def __init__(self, rng: random.Random, venues: List[str], symbols: List[str],
                 base_prices: Optional[Dict[str, float]] = None,
                 dislocation_probability: float = 0.2, max_dislocation_pct: float = 1.5,
                 spread_bps: float = 2.0, step_vol_pct: float = 0.05):
        self.rng = rng
        self.venues = list(venues)
        self.symbols = list(symbols)
        prices = base_prices or DEFAULT_PRICES
        self.prices = {s: prices.get(s, 100.0) for s in self.symbols}
        self.dislocation_probability = dislocation_probability
        self.max_dislocation_pct = max_dislocation_pct
        self.spread_bps = spread_bps
        self.step_vol_pct = step_vol_pct

    def next_snapshot(self, ts: int) -> List[Ticker]:
        """Advance every price one step and emit a ticker per (venue, symbol)."""
        tickers = []
        for symbol in self.symbols:
            self.prices[symbol] *= 1 + self.rng.gauss(0, self.step_vol_pct / 100)
            mid = self.prices[symbol]

            dislocated = None
            if len(self.venues) > 1 and self.rng.random() < self.dislocation_probability:
                dislocated = self.rng.choice(self.venues)
            shift = self.rng.uniform(0.2, self.max_dislocation_pct) / 100

            for venue in self.venues:
                venue_mid = mid * (1 + self.rng.gauss(0, 0.01 / 100))
                if venue == dislocated:
                    venue_mid *= 1 + shift
                half_spread = venue_mid * self.spread_bps / 20000
                tickers.append(Ticker(
                    venue=venue,
                    symbol=symbol,
                    bid=venue_mid - half_spread,
                    ask=venue_mid + half_spread,
                    last=venue_mid,
                    volume_24h=self.rng.uniform(2e6, 5e7),
                    ts=ts,
                ))
        return tickers


class SyntheticMarketData(StaticMarketData):
    """Static feed that publishes a fresh synthetic snapshot on every poll."""

    def __init__(self, generator: SyntheticTickerGenerator, clock: Callable[[], int] = now_ms):
        super().__init__()
        self.generator = generator
        self.clock = clock

    async def get_latest_tickers(self, symbols: Optional[List[str]] = None,
                                 venues: Optional[List[str]] = None) -> List[Ticker]:
        self.publish(self.generator.next_snapshot(self.clock()))
        return await super().get_latest_tickers(symbols, venues)
