"""Synthetic market data for paper testing."""

from .synthetic import SyntheticTickerGenerator, SyntheticMarketData

__all__ = [
    'SyntheticTickerGenerator',
    'SyntheticMarketData',
]
