"""Market data and execution adapters."""

from .base import MarketDataAdapter, ExecutionAdapter, ExecutionRequest, ExecutionReport, FeedStatus
from .static import StaticMarketData
from .paper import PaperExecutionAdapter
from .ccxt_feed import CcxtMarketData
from .ccxt_executor import CcxtExecutionAdapter

__all__ = [
    'MarketDataAdapter',
    'ExecutionAdapter',
    'ExecutionRequest',
    'ExecutionReport',
    'FeedStatus',
    'StaticMarketData',
    'PaperExecutionAdapter',
    'CcxtMarketData',
    'CcxtExecutionAdapter',
]
