"""Trade journaling and reporting."""

import time
from typing import Dict, List, Any, Optional
from loguru import logger

from ..core.types import ExecutedTrade
from ..core.utils import (
    calculate_max_drawdown, calculate_win_rate, format_bps, format_quote, format_timestamp_ms,
    safe_divide,
)
from .db import Database


DAY_MS = 24 * 60 * 60 * 1000


def summarize_trades(trades: List[ExecutedTrade], initial_balance: float = 0.0) -> Dict[str, Any]:
    """Performance summary over a list of trades."""
    confirmed = [t for t in trades if t.success]
    total_pnl = sum(t.profit_realized for t in trades)
    edges = [safe_divide(t.profit_realized, t.amount_traded) * 10000 for t in confirmed
             if t.amount_traded > 0]

    equity = [initial_balance]
    for trade in trades:
        equity.append(equity[-1] + trade.profit_realized)

    return {
        'total_trades': len(trades),
        'successful_trades': len(confirmed),
        'failed_trades': len(trades) - len(confirmed),
        'win_rate': calculate_win_rate(trades),
        'total_pnl': total_pnl,
        'avg_edge_bps': safe_divide(sum(edges), len(edges)),
        'avg_latency_ms': safe_divide(sum(t.duration_ms for t in trades), len(trades)),
        'max_drawdown': calculate_max_drawdown(equity) if initial_balance > 0 else 0.0,
    }


class TradeJournal:
    """Handles trade reporting over the store."""

    def __init__(self, database: Database, initial_balance: float = 0.0):
        self.database = database
        self.initial_balance = initial_balance

    async def get_performance_summary(self, days: float, now: Optional[int] = None) -> Dict[str, Any]:
        """Get performance summary for last N days."""
        trades = await self.database.load_recent_trades(int(days * DAY_MS), now)
        return summarize_trades(trades, self.initial_balance)

    async def generate_report(self, days: float, now: Optional[int] = None) -> str:
        """Generate trading report for last N days."""
        summary = await self.get_performance_summary(days, now)
        opportunities = await self.database.get_recent_opportunities(50)

        report = f"""
=== TRADING REPORT (Last {days:g} days) ===
Generated: {format_timestamp_ms(now or int(time.time() * 1000))}
Performance Summary:
- Total Trades: {summary['total_trades']} ({summary['successful_trades']} confirmed, {summary['failed_trades']} failed)
- Win Rate: {summary['win_rate']:.2%}
- Total PnL: {format_quote(summary['total_pnl'])}
- Average Edge: {format_bps(summary['avg_edge_bps'])}
- Average Latency: {summary['avg_latency_ms']:.1f} ms
- Max Drawdown: {summary['max_drawdown']:.2%}

Recent Opportunities:
"""

        for opp in opportunities[:10]:
            reason = f" ({opp['reason']})" if opp['reason'] else ""
            report += (f"- {opp['symbol']} [{opp['strategy']}] {opp['buy_venue']}->{opp['sell_venue']} "
                       f"@ {format_bps(opp['edge_bps'])}: {opp['status']}{reason}\n")

        logger.debug(f"Generated report over {summary['total_trades']} trades")
        return report
