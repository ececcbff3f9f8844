"""Tests for the scan pipeline and scheduler."""

import asyncio
import random
from typing import List, Optional
from unittest.mock import AsyncMock

import pytest

from arb_engine.config import ConfigurationError, ExecutionConfig, SchedulerConfig
from arb_engine.core.types import OpportunityStatus, Ticker, TradeStatus
from arb_engine.exchanges.base import ExecutionReport
from arb_engine.exchanges.paper import PaperExecutionAdapter
from arb_engine.exchanges.static import StaticMarketData
from arb_engine.main import ArbitrageEngine
from arb_engine.storage.base import PersistenceError
from arb_engine.storage.db import Database

from sample_data import crossing_tickers, make_config, make_ticker


class BlockingMarketData(StaticMarketData):
    """Feed whose polls wait until released."""

    def __init__(self, tickers: Optional[List[Ticker]] = None):
        super().__init__(tickers)
        self.release = asyncio.Event()
        self.polls = 0

    async def get_latest_tickers(self, symbols=None, venues=None):
        self.polls += 1
        await self.release.wait()
        return await super().get_latest_tickers(symbols, venues)


async def _engine(config=None, tickers=None, execution=None, market_data=None, store=None,
                  connect=True):
    config = config or make_config()
    engine = ArbitrageEngine(
        config,
        market_data=market_data or StaticMarketData(crossing_tickers() if tickers is None else tickers),
        execution=execution or PaperExecutionAdapter(config, random.Random(1)),
        store=store or Database(":memory:"),
    )
    if connect:
        await engine.connect()
    return engine


async def _wait_for(predicate, timeout=2.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.005)


class TestCycle:
    """Test one scan cycle end to end."""

    @pytest.mark.asyncio
    async def test_manual_scan_executes_admitted_candidate(self):
        engine = await _engine()

        candidates = await engine.scheduler.trigger_scan()

        assert len(candidates) == 1
        assert candidates[0].status == OpportunityStatus.CONFIRMED
        status = engine.scheduler.get_status()
        assert status['cycle_count'] == 1
        assert status['total_opportunities'] == 1
        assert status['successful_trades'] == 1
        assert status['failed_trades'] == 0
        assert status['feed_connected'] is True

        stored = await engine.store.get_candidate(candidates[0].id)
        assert stored['status'] == "confirmed"
        trades = await engine.store.load_recent_trades(60_000)
        assert len(trades) == 1
        assert trades[0].profit_realized == pytest.approx(status['total_profit'])

    @pytest.mark.asyncio
    async def test_malformed_ticker_is_skipped_not_fatal(self):
        """One bad ticker is counted and the valid crossing still trades."""
        bad = make_ticker("kraken", "BTC/USDT", 100.2, 100.3)
        bad.volume_24h = None
        engine = await _engine(tickers=crossing_tickers() + [bad])

        candidates = await engine.scheduler.trigger_scan()

        assert len(candidates) == 1
        assert candidates[0].status == OpportunityStatus.CONFIRMED
        status = engine.scheduler.get_status()
        assert status['cycle_errors'] == 0
        assert status['cycle_count'] == 1
        assert status['skipped_tickers'] == 1
        assert status['executions_in_flight'] == 0
        assert engine.scheduler.last_report.skipped_tickers == 1

    @pytest.mark.asyncio
    async def test_no_candidates(self):
        engine = await _engine(tickers=[])

        assert await engine.scheduler.trigger_scan() == []
        status = engine.scheduler.get_status()
        assert status['cycle_count'] == 1
        assert status['no_candidate_cycles'] == 1

    @pytest.mark.asyncio
    async def test_market_data_failure_is_not_fatal(self):
        feed = StaticMarketData()
        feed.get_latest_tickers = AsyncMock(side_effect=ConnectionError("feed down"))
        engine = await _engine(market_data=feed)

        assert await engine.scheduler.trigger_scan() == []
        assert engine.scheduler.last_report.market_data_error == "feed down"
        assert engine.scheduler.get_status()['adapter_errors'] == 1
        assert not engine.scheduler.halted

    @pytest.mark.asyncio
    async def test_emergency_stop_blocks_execution(self):
        """With the daily loss limit breached nothing reaches the adapter."""
        adapter = AsyncMock()
        engine = await _engine(execution=adapter)
        engine.portfolio._state.daily_pnl = -600.0

        candidates = await engine.scheduler.trigger_scan()

        assert len(candidates) == 1
        assert candidates[0].status == OpportunityStatus.REJECTED
        adapter.execute.assert_not_called()
        assert engine.scheduler.get_status()['gate_rejections'] == {"emergency_stop": 1}
        stored = await engine.store.get_candidate(candidates[0].id)
        assert stored['reason'] == "emergency_stop"

    @pytest.mark.asyncio
    async def test_throttle_leaves_extra_candidates_admitted(self):
        config = make_config(execution=ExecutionConfig(paper_latency_ms=0, max_executions_per_cycle=1))
        tickers = crossing_tickers() + [
            make_ticker("binance", "ETH/USDT", 1999.0, 2000.0),
            make_ticker("okx", "ETH/USDT", 2030.0, 2031.0),
        ]
        engine = await _engine(config=config, tickers=tickers)

        candidates = await engine.scheduler.trigger_scan()

        statuses = sorted(c.status.value for c in candidates)
        assert statuses == ["admitted", "confirmed"]
        # ETH crossing (1.5%) outranks BTC (1%)
        confirmed = next(c for c in candidates if c.status == OpportunityStatus.CONFIRMED)
        assert confirmed.symbol == "ETH/USDT"

    @pytest.mark.asyncio
    async def test_failed_execution_counts(self):
        adapter = AsyncMock()
        adapter.execute.return_value = ExecutionReport(False, error="rejected")
        engine = await _engine(execution=adapter)

        await engine.scheduler.trigger_scan()

        status = engine.scheduler.get_status()
        assert status['failed_trades'] == 1
        assert status['successful_trades'] == 0
        assert status['adapter_errors'] == 1


class TestControl:
    """Test operator controls."""

    @pytest.mark.asyncio
    async def test_pause_and_resume(self):
        engine = await _engine()
        scheduler = engine.scheduler

        scheduler.pause()
        candidates = await scheduler.trigger_scan()
        assert candidates[0].status == OpportunityStatus.REJECTED
        assert scheduler.get_status()['gate_rejections'] == {"execution_disabled": 1}

        scheduler.resume()
        assert scheduler.execution_enabled
        engine.market_data.publish(crossing_tickers(sell_bid=101.2))
        candidates = await scheduler.trigger_scan()
        assert candidates[0].status == OpportunityStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_risk_check_toggles_execution(self):
        engine = await _engine()
        scheduler = engine.scheduler
        engine.portfolio._state.daily_pnl = -600.0

        check = await scheduler.run_risk_check()
        assert check.should_stop
        assert not scheduler.execution_enabled
        assert scheduler.get_status()['emergency_active']
        assert scheduler.get_status()['risk_score'] > 0

        engine.portfolio._state.daily_pnl = 0.0
        await scheduler.run_risk_check()
        assert scheduler.execution_enabled

    @pytest.mark.asyncio
    async def test_resume_does_not_override_emergency(self):
        engine = await _engine()
        scheduler = engine.scheduler
        engine.portfolio._state.daily_pnl = -600.0
        await scheduler.run_risk_check()

        scheduler.pause()
        scheduler.resume()
        assert not scheduler.execution_enabled

    @pytest.mark.asyncio
    async def test_update_config(self):
        engine = await _engine()
        scheduler = engine.scheduler

        with pytest.raises(ConfigurationError):
            scheduler.update_config({'max_daily_loss': -1})
        assert scheduler.config.risk.max_daily_loss == 500.0
        assert engine.pipeline.config.risk.max_daily_loss == 500.0

        scheduler.update_config({'max_daily_loss': 100.0})
        assert scheduler.config.risk.max_daily_loss == 100.0
        assert engine.pipeline.config.risk.max_daily_loss == 100.0
        assert engine.detector.config.risk.max_daily_loss == 100.0

    @pytest.mark.asyncio
    async def test_performance_rollup(self):
        engine = await _engine()
        await engine.scheduler.trigger_scan()

        state = await engine.scheduler.run_performance_rollup()

        assert state.window_trades == 1
        assert state.daily_pnl == pytest.approx(engine.scheduler.total_profit)


class TestHalt:
    """Test persistence failures halting the scheduler."""

    @pytest.mark.asyncio
    async def test_persistence_error_halts(self):
        engine = await _engine(connect=False)
        await engine.market_data.connect()

        assert await engine.scheduler.trigger_scan() == []

        status = engine.scheduler.get_status()
        assert status['halted']
        assert "not connected" in status['halt_reason']
        assert not status['execution_enabled']
        assert status['cycle_count'] == 0

        await engine.scheduler.start()
        assert not engine.scheduler.running
        assert await engine.scheduler.trigger_scan() == []

    @pytest.mark.asyncio
    async def test_rollup_failure_halts(self):
        engine = await _engine()
        engine.store.load_recent_trades = AsyncMock(side_effect=PersistenceError("read failed"))

        assert await engine.scheduler.run_performance_rollup() is None
        assert engine.scheduler.halted


class TestLifecycle:
    """Test start, stop and concurrency bounds."""

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self):
        engine = await _engine(tickers=[])
        scheduler = engine.scheduler

        await scheduler.start()
        driver = scheduler._driver
        await scheduler.start()

        assert scheduler._driver is driver
        assert scheduler.running
        await _wait_for(lambda: scheduler.cycle_count >= 2)
        await scheduler.stop()
        assert not scheduler.running

    @pytest.mark.asyncio
    async def test_saturated_ticks_are_skipped(self):
        config = make_config(scheduler=SchedulerConfig(scan_interval_s=0.01, max_concurrent_scans=1,
                                                       drain_timeout_s=2.0))
        feed = BlockingMarketData()
        engine = await _engine(config=config, market_data=feed)
        scheduler = engine.scheduler

        await scheduler.start()
        await _wait_for(lambda: scheduler.skipped_ticks >= 3)

        assert feed.polls == 1
        assert scheduler.get_status()['active_scans'] == 1

        feed.release.set()
        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_stop_drains_in_flight_cycle(self):
        config = make_config(scheduler=SchedulerConfig(scan_interval_s=10.0, drain_timeout_s=2.0))
        feed = BlockingMarketData(crossing_tickers())
        engine = await _engine(config=config, market_data=feed)
        scheduler = engine.scheduler

        await scheduler.start()
        await _wait_for(lambda: feed.polls == 1)

        stopping = asyncio.create_task(scheduler.stop())
        await asyncio.sleep(0.05)
        assert not stopping.done()

        feed.release.set()
        await stopping

        assert scheduler.cycle_count == 1
        assert scheduler.successful_trades == 1

    @pytest.mark.asyncio
    async def test_stop_gives_up_after_drain_timeout(self):
        config = make_config(scheduler=SchedulerConfig(scan_interval_s=10.0, drain_timeout_s=0.05))
        feed = BlockingMarketData()
        engine = await _engine(config=config, market_data=feed)
        scheduler = engine.scheduler

        await scheduler.start()
        await _wait_for(lambda: feed.polls == 1)
        await scheduler.stop()

        assert scheduler.cycle_count == 0
        feed.release.set()
        await _wait_for(lambda: scheduler.cycle_count == 1)

    @pytest.mark.asyncio
    async def test_overlapping_cycles_keep_portfolio_consistent(self):
        """Concurrent cycles each trade their own candidate without losing portfolio updates."""
        config = make_config(execution=ExecutionConfig(paper_latency_ms=20))
        engine = await _engine(config=config)

        first, second = await asyncio.gather(engine.scheduler.trigger_scan(),
                                             engine.scheduler.trigger_scan())

        trades = await engine.store.load_recent_trades(60_000)
        assert len(trades) == 2
        assert {t.opportunity_id for t in trades} == {first[0].id, second[0].id}
        assert all(t.status == TradeStatus.CONFIRMED for t in trades)

        state = engine.portfolio.snapshot()
        assert state.active_positions == 0
        assert state.balance == pytest.approx(10_000 + sum(t.profit_realized for t in trades))
