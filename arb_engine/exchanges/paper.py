"""Simulated execution for paper trading."""

import asyncio
import random
import time
from typing import Optional
from loguru import logger

from ..config import Config
from ..core.types import STRATEGY_PROFILES, StrategyType
from .base import ExecutionAdapter, ExecutionReport, ExecutionRequest


LEGS = {
    StrategyType.TRIANGULAR_ARBITRAGE: 3,
}


class PaperExecutionAdapter(ExecutionAdapter):
    """Fills requests against their reference prices with seeded noise.

    Given the same seed and the same sequence of requests the reports are
    identical.
    """

    def __init__(self, config: Config, rng: Optional[random.Random] = None, failure_rate: float = 0.0):
        self.config = config
        self.rng = rng or random.Random(config.synthetic.seed)
        self.failure_rate = failure_rate
        self.orders = 0

    async def execute(self, request: ExecutionRequest) -> ExecutionReport:
        start = time.time()
        latency_ms = self.config.execution.paper_latency_ms
        if latency_ms > 0:
            await asyncio.sleep(latency_ms / 1000)

        self.orders += 1
        order_id = f"paper-{self.orders}-{request.candidate_id[:8]}"

        if self.rng.random() < self.failure_rate:
            return ExecutionReport(False, order_id=order_id, error="Simulated venue rejection",
                                   latency_ms=int((time.time() - start) * 1000))

        fill_ratio = self.rng.uniform(self.config.execution.paper_min_fill_ratio, 1.0)
        slippage_pct = self.rng.uniform(0.0, request.max_slippage * 0.1)
        buy = request.buy_price * (1 + slippage_pct / 100)

        if STRATEGY_PROFILES[request.strategy].secondary:
            # Directional trades exit wherever the market went
            target_move = (request.sell_price - request.buy_price) / request.buy_price
            sell = request.buy_price * (1 + self.rng.uniform(-1.0, 1.0) * target_move)
        else:
            sell = request.sell_price * (1 - slippage_pct / 100)

        realized_amount = round(request.amount * fill_ratio, 8)
        legs = LEGS.get(request.strategy, 2)
        fee_bps = max(self.config.get_taker_fee_bps(request.buy_venue),
                      self.config.get_taker_fee_bps(request.sell_venue))
        fees = realized_amount * legs * fee_bps / 10000
        profit = round(realized_amount * (sell - buy) / buy - fees, 8)

        logger.info(f"Paper fill {order_id}: {request.instrument} {realized_amount:.2f} "
                    f"@ slip {slippage_pct:.3f}% -> P/L {profit:.4f}")

        return ExecutionReport(
            success=True,
            order_id=order_id,
            realized_amount=realized_amount,
            realized_profit=profit,
            fees=fees,
            latency_ms=int((time.time() - start) * 1000),
            metadata={'fill_ratio': fill_ratio, 'slippage_pct': slippage_pct},
        )
