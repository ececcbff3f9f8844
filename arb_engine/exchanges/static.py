"""In-memory market data feed."""

from typing import List, Optional

from ..core.quotes import TickerBook
from ..core.types import Ticker
from .base import FeedStatus, MarketDataAdapter


class StaticMarketData(MarketDataAdapter):
    """Push feed: tickers are published by the caller and served from a TickerBook."""

    def __init__(self, tickers: Optional[List[Ticker]] = None):
        self.book = TickerBook()
        self._connected = False
        if tickers:
            self.publish(tickers)

    async def connect(self) -> bool:
        self._connected = True
        return True

    async def disconnect(self) -> None:
        self._connected = False

    def publish(self, tickers: List[Ticker]) -> int:
        """Publish new observations; returns how many were accepted."""
        return self.book.update_many(tickers)

    async def get_latest_tickers(self, symbols: Optional[List[str]] = None,
                                 venues: Optional[List[str]] = None) -> List[Ticker]:
        return self.book.snapshot(symbols, venues)

    def status(self) -> FeedStatus:
        venues = {venue: True for venue in self.book.get_summary()['venues']}
        return FeedStatus(connected=self._connected, last_update_ms=self.book.get_last_update(),
                          venues=venues)
