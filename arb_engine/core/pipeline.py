"""One scan cycle: scan, score, gate, execute, record."""

from collections import Counter
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional
from loguru import logger

from ..config import Config
from ..exchanges.base import MarketDataAdapter
from ..storage.base import TradeStore
from .detector import OpportunityDetector, split_usable
from .executor import ExecutionOrchestrator
from .gate import admit, rank
from .portfolio import PortfolioTracker
from .risk import RiskEngine
from .types import ExecutedTrade, Opportunity, OpportunityStatus, now_ms


@dataclass
class CycleReport:
    """What happened in one cycle."""
    cycle: int
    started_at: int
    candidates: List[Opportunity] = field(default_factory=list)
    admitted: int = 0
    rejections: Dict[str, int] = field(default_factory=dict)
    trades: List[ExecutedTrade] = field(default_factory=list)
    market_data_error: Optional[str] = None
    skipped_tickers: int = 0
    duration_ms: int = 0

    @property
    def successful(self) -> int:
        return sum(1 for t in self.trades if t.success)

    @property
    def failed(self) -> int:
        return sum(1 for t in self.trades if not t.success)

    @property
    def profit(self) -> float:
        return sum(t.profit_realized for t in self.trades)


class ScanPipeline:
    """Runs scan cycles against injected collaborators."""

    def __init__(self, config: Config, market_data: MarketDataAdapter, detector: OpportunityDetector,
                 risk_engine: RiskEngine, orchestrator: ExecutionOrchestrator,
                 portfolio: PortfolioTracker, store: TradeStore, clock: Callable[[], int] = now_ms):
        self.config = config
        self.market_data = market_data
        self.detector = detector
        self.risk_engine = risk_engine
        self.orchestrator = orchestrator
        self.portfolio = portfolio
        self.store = store
        self.clock = clock

    def set_config(self, config: Config):
        """Swap configuration; cycles already running keep the one they started with."""
        self.config = config
        self.detector.config = config
        self.orchestrator.config = config

    async def run_cycle(self, cycle: int, execution_enabled: bool = True) -> CycleReport:
        """Run one cycle. Only PersistenceError escapes."""
        config = self.config
        report = CycleReport(cycle=cycle, started_at=self.clock())

        try:
            tickers = await self.market_data.get_latest_tickers(config.symbols.watchlist,
                                                                list(config.venues))
        except Exception as e:
            logger.warning(f"Market data unavailable in cycle {cycle}: {e}")
            report.market_data_error = str(e)
            tickers = []

        usable, skipped = split_usable(tickers)
        if skipped:
            logger.warning(f"Skipped {skipped} malformed tickers in cycle {cycle}")
        report.skipped_tickers = skipped

        await self.portfolio.update_market_indices(usable, config.detector.liquidity_reference_volume)

        candidates = self.detector.detect(usable, self.clock())
        report.candidates = candidates

        stored = set()
        for candidate in candidates[:config.scheduler.max_stored_candidates]:
            await self.store.save_candidate(candidate)
            stored.add(candidate.id)

        # One portfolio snapshot and one emergency evaluation per cycle
        snapshot = self.portfolio.snapshot()
        emergency = self.risk_engine.check_emergency(snapshot, config.risk)
        if emergency.should_stop and candidates:
            logger.warning(f"Emergency stop active, {len(candidates)} candidates will not execute: "
                           f"{'; '.join(emergency.reasons)}")

        admitted: List[Opportunity] = []
        sizes: Dict[str, float] = {}
        rejections: Counter = Counter()
        now = self.clock()

        for candidate in candidates:
            assessment = self.risk_engine.assess(candidate, snapshot, config.risk)
            sizing = self.risk_engine.calculate_position_size(candidate, snapshot, config.risk)
            decision = admit(candidate, assessment, sizing, emergency, execution_enabled,
                             config.risk, config.execution.min_position_size, now)

            candidate.transition(decision.status)
            if decision.admitted:
                admitted.append(candidate)
                sizes[candidate.id] = decision.size
                logger.info(f"Admitted {candidate.strategy.value} {candidate.symbol} "
                            f"edge {candidate.edge_bps:.2f} bps, risk {assessment.risk_score:.1f}, "
                            f"size {decision.size:.2f}")
            else:
                rejections[decision.reason] += 1
                if config.logging.log_candidates:
                    logger.info(f"Rejected {candidate.symbol} ({candidate.strategy.value}): "
                                f"{decision.reason}, risk {assessment.risk_score:.1f} "
                                f"{assessment.factor_names}")
            if candidate.id in stored:
                await self.store.update_candidate_status(candidate.id, candidate.status, decision.reason)
            elif decision.admitted:
                await self.store.save_candidate(candidate)

        report.admitted = len(admitted)
        report.rejections = dict(rejections)

        batch = rank(admitted)[:config.execution.max_executions_per_cycle]
        if len(admitted) > len(batch):
            logger.debug(f"Throttled {len(admitted) - len(batch)} admitted candidates this cycle")

        for candidate in batch:
            trade = await self.orchestrator.execute(candidate, sizes[candidate.id])
            if trade is not None:
                report.trades.append(trade)

        self.orchestrator.prune(self.clock())
        report.duration_ms = self.clock() - report.started_at
        return report
