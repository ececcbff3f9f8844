"""Latest-known ticker book across venues."""

from typing import Dict, Iterable, List, Optional, Tuple, Any
from dataclasses import replace
from loguru import logger

from .types import Ticker, now_ms
from .utils import is_finite, safe_divide


class TickerBook:
    """Keeps the latest ticker per (venue, symbol).

    Observations are superseded, never mutated in place. An observation older
    than the stored one for the same key is dropped so timestamps stay
    monotonically non-decreasing per key.
    """

    def __init__(self):
        self.tickers: Dict[Tuple[str, str], Ticker] = {}
        self._last_update = 0
        self.out_of_order = 0

    def update(self, ticker: Ticker) -> bool:
        """Store a ticker; returns False if it was older than the current one."""
        key = (ticker.venue, ticker.symbol)
        previous = self.tickers.get(key)

        if previous is not None:
            if ticker.ts < previous.ts:
                self.out_of_order += 1
                logger.debug(f"Dropping out-of-order ticker {ticker.venue} {ticker.symbol}: "
                             f"{ticker.ts} < {previous.ts}")
                return False
            if (ticker.change_pct is None and ticker.ts > previous.ts
                    and is_finite(ticker.last) and is_finite(previous.last) and previous.last > 0):
                change = safe_divide(ticker.last - previous.last, previous.last) * 100
                ticker = replace(ticker, change_pct=change)

        self.tickers[key] = ticker
        self._last_update = max(self._last_update, ticker.ts)
        return True

    def update_many(self, tickers: Iterable[Ticker]) -> int:
        """Store several tickers; returns how many were accepted."""
        return sum(1 for t in tickers if self.update(t))

    def get(self, venue: str, symbol: str) -> Optional[Ticker]:
        return self.tickers.get((venue, symbol))

    def snapshot(self, symbols: Optional[List[str]] = None,
                 venues: Optional[List[str]] = None) -> List[Ticker]:
        """Get latest tickers, optionally filtered, in a stable order."""
        result = []
        for (venue, symbol), ticker in sorted(self.tickers.items()):
            if symbols and symbol not in symbols:
                continue
            if venues and venue not in venues:
                continue
            result.append(ticker)
        return result

    def get_fresh(self, max_age_ms: int, now: Optional[int] = None,
                  symbols: Optional[List[str]] = None,
                  venues: Optional[List[str]] = None) -> List[Ticker]:
        """Get tickers observed within max_age_ms."""
        current = now if now is not None else now_ms()
        return [t for t in self.snapshot(symbols, venues) if current - t.ts <= max_age_ms]

    def cleanup_stale(self, max_age_ms: int, now: Optional[int] = None) -> int:
        """Remove tickers older than max_age_ms."""
        current = now if now is not None else now_ms()
        stale = [key for key, t in self.tickers.items() if current - t.ts > max_age_ms]
        for key in stale:
            del self.tickers[key]
        if stale:
            logger.info(f"Cleaned up {len(stale)} stale tickers")
        return len(stale)

    def get_last_update(self) -> int:
        return self._last_update

    def get_summary(self) -> Dict[str, Any]:
        venues = sorted({venue for venue, _ in self.tickers})
        return {
            'tickers': len(self.tickers),
            'venues': venues,
            'last_update': self._last_update,
            'out_of_order': self.out_of_order,
        }
