"""Arbitrage opportunity scanning and risk-gated execution engine."""

__version__ = "0.1.0"
