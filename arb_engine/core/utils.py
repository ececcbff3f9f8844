"""Utility functions for the arbitrage engine."""

import math
import time
from typing import List, Optional

from .types import ExecutedTrade


def format_bps(bps: float) -> str:
    """Format basis points with appropriate precision."""
    if abs(bps) >= 100:
        return f"{bps:.0f} bps"
    elif abs(bps) >= 10:
        return f"{bps:.1f} bps"
    else:
        return f"{bps:.2f} bps"


def format_quote(amount: float) -> str:
    """Format a quote-currency amount with appropriate precision."""
    if abs(amount) >= 1000:
        return f"${amount:.0f}"
    elif abs(amount) >= 100:
        return f"${amount:.1f}"
    elif abs(amount) >= 10:
        return f"${amount:.2f}"
    else:
        return f"${amount:.4f}"


def format_timestamp_ms(timestamp_ms: Optional[int]) -> str:
    """Format an epoch-ms timestamp for display."""
    if not timestamp_ms:
        return "never"
    return time.strftime('%Y-%m-%d %H:%M:%S', time.localtime(timestamp_ms / 1000))


def calculate_max_drawdown(values: List[float]) -> float:
    """Calculate maximum drawdown."""
    if not values:
        return 0.0

    peak = values[0]
    max_dd = 0.0

    for value in values:
        if value > peak:
            peak = value
        elif peak > 0:
            dd = (peak - value) / peak
            max_dd = max(max_dd, dd)

    return max_dd


def calculate_win_rate(trades: List[ExecutedTrade]) -> float:
    """Calculate win rate from executed trades."""
    if not trades:
        return 0.0

    winning_trades = sum(1 for trade in trades if trade.success and trade.profit_realized > 0)
    return winning_trades / len(trades)


def safe_divide(numerator: float, denominator: float, default: float = 0.0) -> float:
    """Safely divide two numbers, returning default if denominator is zero."""
    if denominator == 0:
        return default
    return numerator / denominator


def clamp(value: float, min_val: float, max_val: float) -> float:
    """Clamp a value between min and max."""
    return max(min_val, min(value, max_val))


def is_finite(value) -> bool:
    """True for a real int or float that is neither NaN nor infinite."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def finite_or(value, default: float) -> float:
    """Return value as float when it is a finite number, otherwise default."""
    if not is_finite(value):
        return default
    return float(value)
