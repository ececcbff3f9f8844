"""Polled market data through ccxt."""

import asyncio
from typing import Callable, Dict, List, Optional, Any

import ccxt.pro as ccxt
from loguru import logger

from ..config import Config
from ..core.quotes import TickerBook
from ..core.types import Ticker, now_ms
from .base import FeedStatus, MarketDataAdapter


def _num(value: Any, default: float = 0.0) -> float:
    try:
        return float(value) if value is not None else default
    except (TypeError, ValueError):
        return default


def normalize_ticker(venue: str, symbol: str, raw: Dict[str, Any], ts_local: int) -> Ticker:
    """Convert a ccxt ticker structure into a Ticker."""
    quote_volume = raw.get('quoteVolume')
    if quote_volume is None:
        quote_volume = _num(raw.get('baseVolume')) * _num(raw.get('last'))
    return Ticker(
        venue=venue,
        symbol=symbol,
        bid=_num(raw.get('bid'), float('nan')),
        ask=_num(raw.get('ask'), float('nan')),
        last=_num(raw.get('last'), float('nan')),
        volume_24h=_num(quote_volume),
        ts=int(raw.get('timestamp') or ts_local),
    )


class CcxtMarketData(MarketDataAdapter):
    """Polls fetch_tickers on every configured venue.

    Tickers older than market_data.max_ticker_age_ms are not served, so a venue
    whose polls keep failing drops out instead of repeating its last quotes.
    """

    def __init__(self, config: Config, clock: Callable[[], int] = now_ms):
        self.config = config
        self.clock = clock
        self.clients: Dict[str, Any] = {}
        self.book = TickerBook()
        self.venue_ok: Dict[str, bool] = {}
        self._connected = False

    def _create_client(self, venue: str):
        """Initialize public REST client (no keys)."""
        exchange_id = self.config.venue(venue).ccxt_id or venue
        exchange_class = getattr(ccxt, exchange_id)
        return exchange_class({
            "enableRateLimit": True,
            "timeout": int(self.config.market_data.poll_timeout_s * 1000),
            "options": {"defaultType": "spot"},
        })

    async def connect(self) -> bool:
        """Create clients and load markets; a venue that fails is left out."""
        for venue in self.config.venues:
            try:
                client = self._create_client(venue)
                await client.load_markets()
                self.clients[venue] = client
                self.venue_ok[venue] = True
                logger.info(f"Market data connected: {venue}")
            except Exception as e:
                self.venue_ok[venue] = False
                logger.warning(f"Failed to connect market data for {venue}: {e}")

        self._connected = bool(self.clients)
        return self._connected

    async def disconnect(self) -> None:
        for venue, client in self.clients.items():
            try:
                await client.close()
            except Exception as e:
                logger.error(f"Error closing {venue} client: {e}")
        self.clients = {}
        self._connected = False
        logger.info("Market data disconnected")

    async def get_latest_tickers(self, symbols: Optional[List[str]] = None,
                                 venues: Optional[List[str]] = None) -> List[Ticker]:
        symbols = symbols or self.config.symbols.watchlist
        targets = [v for v in self.clients if not venues or v in venues]

        results = await asyncio.gather(*(self._poll(v, symbols) for v in targets),
                                       return_exceptions=True)
        for venue, result in zip(targets, results):
            if isinstance(result, BaseException):
                self.venue_ok[venue] = False
                logger.warning(f"Ticker poll failed on {venue}: {result}")
                continue
            self.venue_ok[venue] = True
            self.book.update_many(result)

        if targets:
            self._connected = any(self.venue_ok.get(v, False) for v in targets)
        return self.book.get_fresh(self.config.market_data.max_ticker_age_ms, self.clock(),
                                   symbols, targets)

    async def _poll(self, venue: str, symbols: List[str]) -> List[Ticker]:
        client = self.clients[venue]
        available = [s for s in symbols if s in (client.markets or {})]
        if not available:
            return []
        raw = await asyncio.wait_for(client.fetch_tickers(available),
                                     timeout=self.config.market_data.poll_timeout_s)
        ts_local = self.clock()
        return [normalize_ticker(venue, symbol, data, ts_local) for symbol, data in raw.items()
                if symbol in available]

    def status(self) -> FeedStatus:
        return FeedStatus(connected=self._connected, last_update_ms=self.book.get_last_update(),
                          venues=dict(self.venue_ok))
