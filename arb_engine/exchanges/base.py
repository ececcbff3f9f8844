"""Adapter interfaces for market data and execution."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any

from ..core.types import StrategyType, Ticker


@dataclass
class FeedStatus:
    """Connectivity and staleness of a market data feed."""
    connected: bool
    last_update_ms: int
    venues: Dict[str, bool] = field(default_factory=dict)


class MarketDataAdapter(ABC):
    """Source of canonical tickers."""

    @abstractmethod
    async def connect(self) -> bool:
        """Connect to the data source."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Disconnect from the data source."""
        pass

    @abstractmethod
    async def get_latest_tickers(self, symbols: Optional[List[str]] = None,
                                 venues: Optional[List[str]] = None) -> List[Ticker]:
        """Latest known ticker per (venue, symbol)."""
        pass

    @abstractmethod
    def status(self) -> FeedStatus:
        """Current connectivity status."""
        pass


@dataclass
class ExecutionRequest:
    """One call to place a trade for an admitted candidate."""
    instrument: str
    side: str  # buy | sell
    amount: float  # quote notional
    max_slippage: float  # percent
    candidate_id: str
    strategy: StrategyType
    buy_venue: str
    sell_venue: str
    buy_price: float
    sell_price: float
    path: List[str] = field(default_factory=list)


@dataclass
class ExecutionReport:
    """Adapter outcome."""
    success: bool
    order_id: Optional[str] = None
    realized_amount: float = 0.0
    realized_profit: float = 0.0
    fees: float = 0.0
    error: Optional[str] = None
    latency_ms: Optional[int] = None
    metadata: Optional[Dict[str, Any]] = None


class ExecutionAdapter(ABC):
    """Places trades. Internal retries are the adapter's concern."""

    @abstractmethod
    async def execute(self, request: ExecutionRequest) -> ExecutionReport:
        """Execute a request once."""
        pass

    async def close(self) -> None:
        """Release any held resources."""
        pass
