"""Periodic scan scheduler and outward control surface."""

import asyncio
from collections import Counter
from typing import Any, Callable, Coroutine, Dict, List, Optional, Set
from loguru import logger

from ..config import Config
from ..exchanges.base import MarketDataAdapter
from ..storage.base import PersistenceError, TradeStore
from .pipeline import CycleReport, ScanPipeline
from .portfolio import PortfolioTracker
from .risk import RiskEngine, risk_level_label
from .types import EmergencyCheck, Opportunity, Severity, now_ms
from .utils import format_timestamp_ms


class ScanScheduler:
    """Owns the scan loop, maintenance jobs, counters and the execution-enabled flag.

    One driver task fires scan ticks and maintenance jobs from due times.
    Scan cycles run as separate tasks bounded by max_concurrent_scans; a tick
    that finds the bound saturated is dropped, not queued. The scheduler is
    the only writer of execution_enabled, and cycles read it once when they
    start.
    """

    def __init__(self, config: Config, pipeline: ScanPipeline, risk_engine: RiskEngine,
                 portfolio: PortfolioTracker, store: TradeStore,
                 market_data: Optional[MarketDataAdapter] = None,
                 clock: Callable[[], int] = now_ms):
        self.config = config
        self.pipeline = pipeline
        self.risk_engine = risk_engine
        self.portfolio = portfolio
        self.store = store
        self.market_data = market_data
        self.clock = clock

        self.running = False
        self.halted = False
        self.halt_reason: Optional[str] = None
        self.execution_enabled = True
        self._operator_paused = False
        self._emergency_active = False
        self.last_emergency: Optional[EmergencyCheck] = None
        self.last_report: Optional[CycleReport] = None

        # Counters
        self.cycle_count = 0
        self.total_opportunities = 0
        self.successful_trades = 0
        self.failed_trades = 0
        self.total_profit = 0.0
        self.no_candidate_cycles = 0
        self.gate_rejections: Counter = Counter()
        self.adapter_errors = 0
        self.cycle_errors = 0
        self.skipped_ticks = 0
        self.skipped_tickers = 0
        self.last_success_ms: Optional[int] = None

        self._cycle_seq = 0
        self._active_scans = 0
        self._in_flight: Set[asyncio.Task] = set()
        self._driver: Optional[asyncio.Task] = None
        self._wake: Optional[asyncio.Event] = None

    # Lifecycle

    async def start(self):
        """Start the periodic driver; a second call is a no-op."""
        if self.running:
            logger.info("Scan scheduler already running")
            return
        if self.halted:
            logger.error(f"Scan scheduler is halted ({self.halt_reason}); not starting")
            return

        self.running = True
        self._wake = asyncio.Event()
        self._driver = asyncio.create_task(self._drive())
        logger.info(f"Scan scheduler started: interval {self.config.scheduler.scan_interval_s}s, "
                    f"max {self.config.scheduler.max_concurrent_scans} concurrent scans, "
                    f"mode {self.config.mode}")

    async def stop(self):
        """Stop the driver and wait, bounded, for in-flight cycles to finish."""
        was_running = self.running
        self.running = False
        if self._wake:
            self._wake.set()
        if self._driver:
            await self._driver
            self._driver = None

        pending = {t for t in self._in_flight if not t.done()}
        if pending:
            timeout = self.config.scheduler.drain_timeout_s
            logger.info(f"Waiting up to {timeout}s for {len(pending)} in-flight tasks")
            _, pending = await asyncio.wait(pending, timeout=timeout)
            if pending:
                logger.warning(f"{len(pending)} tasks still running after drain timeout")

        if was_running:
            logger.info("Scan scheduler stopped")

    async def _drive(self):
        loop = asyncio.get_running_loop()
        settings = self.config.scheduler
        next_scan = loop.time()
        next_perf = loop.time() + settings.performance_interval_s
        next_risk = loop.time() + settings.risk_check_interval_s

        while self.running:
            settings = self.config.scheduler
            now = loop.time()

            if now >= next_scan:
                self._tick()
                next_scan += settings.scan_interval_s
                if next_scan <= now:
                    next_scan = now + settings.scan_interval_s
            if now >= next_perf:
                self._spawn(self.run_performance_rollup())
                next_perf = now + settings.performance_interval_s
            if now >= next_risk:
                self._spawn(self.run_risk_check())
                next_risk = now + settings.risk_check_interval_s

            delay = max(0.0, min(next_scan, next_perf, next_risk) - loop.time())
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass
            self._wake.clear()

    def _tick(self):
        """Launch a periodic cycle unless the concurrency bound is saturated."""
        if self._active_scans >= self.config.scheduler.max_concurrent_scans:
            self.skipped_ticks += 1
            logger.debug(f"Skipping scan tick: {self._active_scans} scans already running")
            return
        self._active_scans += 1
        self._spawn(self._periodic_cycle())

    async def _periodic_cycle(self):
        try:
            await self._run_cycle()
        finally:
            self._active_scans -= 1

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        return task

    # Cycles

    async def trigger_scan(self) -> List[Opportunity]:
        """Run one cycle now, outside the periodic schedule."""
        if self.halted:
            logger.warning(f"Manual scan refused, scheduler halted: {self.halt_reason}")
            return []
        report = await self._spawn(self._run_cycle())
        return report.candidates if report else []

    async def _run_cycle(self) -> Optional[CycleReport]:
        self._cycle_seq += 1
        cycle = self._cycle_seq
        try:
            report = await self.pipeline.run_cycle(cycle, self.execution_enabled)
        except PersistenceError as e:
            self._halt(cycle, e)
            return None
        except Exception as e:
            self.cycle_errors += 1
            logger.exception(f"Scan cycle {cycle} failed: {e}")
            return None

        self._record(report)
        return report

    def _record(self, report: CycleReport):
        self.cycle_count += 1
        self.total_opportunities += len(report.candidates)
        if not report.candidates:
            self.no_candidate_cycles += 1
        self.gate_rejections.update(report.rejections)
        self.skipped_tickers += report.skipped_tickers
        self.successful_trades += report.successful
        self.failed_trades += report.failed
        self.total_profit += report.profit
        self.adapter_errors += report.failed + (1 if report.market_data_error else 0)
        self.last_success_ms = self.clock()
        self.last_report = report

        if report.candidates or report.trades:
            logger.info(f"Cycle {report.cycle}: {len(report.candidates)} candidates, "
                        f"{report.admitted} admitted, {report.successful} confirmed, "
                        f"{report.failed} failed, P/L {report.profit:.4f}")

    def _halt(self, cycle: int, error: Exception):
        self.halted = True
        self.halt_reason = str(error)
        self.running = False
        self._refresh_execution_enabled()
        logger.critical(f"Scan scheduler halted in cycle {cycle}: {error}. "
                        f"Last successful cycle: {format_timestamp_ms(self.last_success_ms)}")
        if self._wake:
            self._wake.set()

    # Maintenance

    async def run_performance_rollup(self):
        """Fold the recent trade window from the store into the portfolio."""
        now = self.clock()
        window_ms = int(self.config.scheduler.trade_window_hours * 3600 * 1000)
        try:
            state = await self.portfolio.apply_rollup(
                lambda: self.store.load_recent_trades(window_ms, now), now)
        except PersistenceError as e:
            self._halt(self._cycle_seq, e)
            return None
        logger.info(f"Performance: {state.window_trades} trades in window, "
                    f"P/L {state.daily_pnl:.4f}, balance {state.balance:.2f}")
        return state

    async def run_risk_check(self) -> EmergencyCheck:
        """Evaluate emergency conditions and toggle execution for later cycles."""
        config = self.config
        snapshot = self.portfolio.snapshot()
        check = self.risk_engine.check_emergency(snapshot, config.risk)
        score = self.risk_engine.update_risk_metrics(snapshot, config.risk)
        await self.portfolio.set_risk_score(score)
        self.last_emergency = check

        if check.should_stop and not self._emergency_active:
            log = logger.critical if check.severity == Severity.CRITICAL else logger.warning
            log(f"🚨 Emergency stop: {'; '.join(check.reasons)}")
        elif not check.should_stop and self._emergency_active:
            logger.info("Emergency conditions cleared, execution resumes next cycle")
        elif check.severity == Severity.WARNING and not check.should_stop:
            logger.warning(f"Risk warning: {'; '.join(check.reasons)}")

        self._emergency_active = check.should_stop
        self._refresh_execution_enabled()

        allocations = self.risk_engine.current_allocations(snapshot)
        for action in self.risk_engine.calculate_rebalancing(allocations, snapshot, config.risk):
            if action.priority != "low":
                logger.info(f"Rebalance advice ({action.priority}): {action.action} "
                            f"{action.asset_class} {action.amount:.2f} "
                            f"(deviation {action.deviation:+.1%})")
        return check

    # Control surface

    def pause(self):
        """Operator pause: stop admitting from the next cycle on."""
        self._operator_paused = True
        self._refresh_execution_enabled()
        logger.warning("Execution paused by operator")

    def resume(self):
        self._operator_paused = False
        self._refresh_execution_enabled()
        if self._emergency_active:
            logger.warning("Operator resumed but emergency stop is still active")
        else:
            logger.info("Execution resumed by operator")

    def _refresh_execution_enabled(self):
        self.execution_enabled = not (self._operator_paused or self._emergency_active or self.halted)

    def update_config(self, updates: Dict[str, Any]) -> Config:
        """Apply a partial risk configuration update.

        Raises ConfigurationError and keeps the current configuration when
        the merged result does not validate.
        """
        try:
            new_config = self.config.with_risk_update(updates)
        except Exception as e:
            logger.error(f"Rejected risk configuration update {updates}: {e}")
            raise
        self.config = new_config
        self.pipeline.set_config(new_config)
        logger.info(f"Risk configuration updated: {sorted(updates)}")
        return new_config

    def get_status(self) -> Dict[str, Any]:
        snapshot = self.portfolio.snapshot()
        feed = self.market_data.status() if self.market_data else None
        return {
            'running': self.running,
            'halted': self.halted,
            'halt_reason': self.halt_reason,
            'execution_enabled': self.execution_enabled,
            'paused': self._operator_paused,
            'emergency_active': self._emergency_active,
            'cycle_count': self.cycle_count,
            'total_opportunities': self.total_opportunities,
            'successful_trades': self.successful_trades,
            'failed_trades': self.failed_trades,
            'total_profit': self.total_profit,
            'risk_level': risk_level_label(snapshot.risk_score),
            'risk_score': snapshot.risk_score,
            'no_candidate_cycles': self.no_candidate_cycles,
            'gate_rejections': dict(self.gate_rejections),
            'adapter_errors': self.adapter_errors,
            'cycle_errors': self.cycle_errors,
            'skipped_ticks': self.skipped_ticks,
            'skipped_tickers': self.skipped_tickers,
            'active_scans': self._active_scans,
            'executions_in_flight': self.pipeline.orchestrator.in_flight,
            'last_success_ms': self.last_success_ms,
            'balance': snapshot.balance,
            'feed_connected': feed.connected if feed else None,
            'feed_last_update_ms': feed.last_update_ms if feed else None,
        }
