"""Execution orchestration for admitted candidates."""

import asyncio
import time
import uuid
from typing import Callable, Dict, Optional
from loguru import logger

from ..config import Config
from ..exchanges.base import ExecutionAdapter, ExecutionReport, ExecutionRequest
from ..storage.base import TradeStore
from .portfolio import PortfolioTracker
from .types import ExecutedTrade, Opportunity, OpportunityStatus, TradeStatus, now_ms


class ExecutionOrchestrator:
    """Drives at most one execution attempt per candidate id.

    The claim (check ADMITTED, record the id, move to EXECUTING) happens
    without an await in between, so overlapping cycles on the same event loop
    cannot both pass it.
    """

    def __init__(self, config: Config, adapter: ExecutionAdapter, store: TradeStore,
                 portfolio: PortfolioTracker, clock: Callable[[], int] = now_ms):
        self.config = config
        self.adapter = adapter
        self.store = store
        self.portfolio = portfolio
        self.clock = clock
        self._attempted: Dict[str, int] = {}  # candidate id -> expires_at
        self.in_flight = 0

    def claim(self, candidate: Opportunity) -> bool:
        """Atomically move an admitted candidate to EXECUTING."""
        if candidate.id in self._attempted:
            logger.debug(f"Candidate {candidate.id} already attempted, skipping")
            return False
        if candidate.status != OpportunityStatus.ADMITTED:
            return False
        if candidate.is_expired(self.clock()):
            candidate.transition(OpportunityStatus.EXPIRED)
            return False
        self._attempted[candidate.id] = candidate.expires_at
        candidate.transition(OpportunityStatus.EXECUTING)
        return True

    async def execute(self, candidate: Opportunity, amount: float) -> Optional[ExecutedTrade]:
        """Execute a claimed-or-claimable candidate once; returns None when not eligible."""
        if not self.claim(candidate):
            if candidate.status == OpportunityStatus.EXPIRED:
                await self.store.update_candidate_status(candidate.id, candidate.status, "expired")
            return None

        self.in_flight += 1
        try:
            return await self._run(candidate, amount)
        finally:
            self.in_flight -= 1
            if candidate.status == OpportunityStatus.EXECUTING:
                candidate.transition(OpportunityStatus.FAILED)

    async def _run(self, candidate: Opportunity, amount: float) -> ExecutedTrade:
        request = ExecutionRequest(
            instrument=candidate.symbol,
            side="buy",
            amount=amount,
            max_slippage=self.config.risk.max_slippage,
            candidate_id=candidate.id,
            strategy=candidate.strategy,
            buy_venue=candidate.buy_venue,
            sell_venue=candidate.sell_venue,
            buy_price=candidate.buy_price,
            sell_price=candidate.sell_price,
            path=list(candidate.path),
        )

        await self.store.update_candidate_status(candidate.id, OpportunityStatus.EXECUTING)
        await self.portfolio.open_position(candidate, amount)

        logger.info(f"Executing {candidate.strategy.value} {candidate.symbol} "
                    f"{candidate.buy_venue}->{candidate.sell_venue} size {amount:.2f} "
                    f"edge {candidate.edge_bps:.2f} bps")
        start = time.time()
        report = await self._call_adapter(request)
        duration_ms = int((time.time() - start) * 1000)

        status = TradeStatus.CONFIRMED if report.success else TradeStatus.FAILED
        trade = ExecutedTrade(
            id=uuid.uuid4().hex,
            opportunity_id=candidate.id,
            strategy=candidate.strategy,
            symbol=candidate.symbol,
            amount_traded=report.realized_amount,
            profit_realized=report.realized_profit,
            fees=report.fees,
            duration_ms=report.latency_ms if report.latency_ms is not None else duration_ms,
            status=status,
            executed_at=self.clock(),
            external_ref=report.order_id,
            error=report.error,
        )

        await self.portfolio.record_outcome(candidate, amount, trade,
                                            persist=lambda: self.store.save_executed_trade(trade))

        candidate.transition(OpportunityStatus.CONFIRMED if report.success else OpportunityStatus.FAILED)
        await self.store.update_candidate_status(candidate.id, candidate.status, report.error)

        if report.success:
            logger.info(f"✅ Trade confirmed {candidate.id[:8]}: P/L {trade.profit_realized:.4f} "
                        f"in {trade.duration_ms}ms")
        else:
            logger.warning(f"❌ Trade failed {candidate.id[:8]}: {report.error}")
        return trade

    async def _call_adapter(self, request: ExecutionRequest) -> ExecutionReport:
        """Call the adapter once; timeouts and exceptions become failed reports."""
        timeout = self.config.execution.timeout_s
        try:
            return await asyncio.wait_for(self.adapter.execute(request), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Execution of {request.candidate_id} timed out after {timeout}s")
            return ExecutionReport(False, error=f"timeout after {timeout}s")
        except Exception as e:
            logger.warning(f"Execution adapter raised for {request.candidate_id}: {e}")
            return ExecutionReport(False, error=f"adapter error: {e}")

    def prune(self, now: Optional[int] = None):
        """Forget attempted ids whose candidates can no longer be admitted."""
        current = now if now is not None else self.clock()
        expired = [cid for cid, expires_at in self._attempted.items() if expires_at < current]
        for cid in expired:
            del self._attempted[cid]

    def was_attempted(self, candidate_id: str) -> bool:
        return candidate_id in self._attempted
