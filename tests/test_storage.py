"""Tests for the SQLite store and trade journal."""

import pytest

from arb_engine.core.types import ExecutedTrade, OpportunityStatus, StrategyType, TradeStatus
from arb_engine.storage.base import PersistenceError
from arb_engine.storage.db import Database
from arb_engine.storage.journal import DAY_MS, TradeJournal, summarize_trades

from sample_data import TS, make_candidate


def _trade(id, profit, executed_at=TS, status=TradeStatus.CONFIRMED, amount=1000.0):
    return ExecutedTrade(id=id, opportunity_id=f"opp-{id}", strategy=StrategyType.DIRECT_ARBITRAGE,
                         symbol="BTC/USDT", amount_traded=amount, profit_realized=profit, fees=0.5,
                         duration_ms=100, status=status, executed_at=executed_at,
                         external_ref=f"order-{id}", error=None if status == TradeStatus.CONFIRMED else "rejected")


async def _db():
    db = Database(":memory:")
    await db.connect()
    return db


class TestDatabase:
    """Test candidate and trade persistence."""

    @pytest.mark.asyncio
    async def test_candidate_status_updates(self):
        db = await _db()
        candidate = make_candidate()
        await db.save_candidate(candidate)

        row = await db.get_candidate(candidate.id)
        assert row['status'] == "discovered"
        assert row['edge_bps'] == pytest.approx(100.0)

        await db.update_candidate_status(candidate.id, OpportunityStatus.REJECTED, "risk_rejected")
        row = await db.get_candidate(candidate.id)
        assert row['status'] == "rejected"
        assert row['reason'] == "risk_rejected"

        assert await db.get_candidate("missing") is None

    @pytest.mark.asyncio
    async def test_trade_window(self):
        db = await _db()
        await db.save_executed_trade(_trade("old", 1.0, executed_at=TS - DAY_MS - 1))
        await db.save_executed_trade(_trade("b", -2.5, executed_at=TS - 10))
        await db.save_executed_trade(_trade("a", 3.25, executed_at=TS - 100))

        trades = await db.load_recent_trades(DAY_MS, now=TS)

        assert [t.id for t in trades] == ["a", "b"]
        assert trades[0] == _trade("a", 3.25, executed_at=TS - 100)

    @pytest.mark.asyncio
    async def test_failed_trade_round_trip(self):
        db = await _db()
        trade = _trade("f", 0.0, status=TradeStatus.FAILED, amount=0.0)
        await db.save_executed_trade(trade)

        (stored,) = await db.load_recent_trades(DAY_MS, now=TS)
        assert stored == trade
        assert not stored.success

    @pytest.mark.asyncio
    async def test_recent_opportunities(self):
        db = await _db()
        await db.save_candidate(make_candidate(id="one", created_at=TS))
        await db.save_candidate(make_candidate(id="two", created_at=TS + 1, buy_venue="okx",
                                               sell_venue="kraken"))

        rows = await db.get_recent_opportunities(10)
        assert [r['buy_venue'] for r in rows] == ["okx", "binance"]

    @pytest.mark.asyncio
    async def test_not_connected_raises(self):
        db = Database(":memory:")
        with pytest.raises(PersistenceError):
            await db.save_candidate(make_candidate())
        with pytest.raises(PersistenceError):
            await db.load_recent_trades(DAY_MS, now=TS)

    @pytest.mark.asyncio
    async def test_duplicate_trade_id_raises(self):
        db = await _db()
        await db.save_executed_trade(_trade("dup", 1.0))
        with pytest.raises(PersistenceError):
            await db.save_executed_trade(_trade("dup", 2.0))

    @pytest.mark.asyncio
    async def test_disconnect(self):
        db = await _db()
        await db.disconnect()
        assert db.connection is None
        with pytest.raises(PersistenceError):
            await db.save_executed_trade(_trade("x", 1.0))


class TestJournal:
    """Test performance reporting."""

    def test_summarize_trades(self):
        trades = [
            _trade("a", 10.0),
            _trade("b", -4.0),
            _trade("c", 0.0, status=TradeStatus.FAILED, amount=0.0),
        ]

        summary = summarize_trades(trades, initial_balance=1000.0)

        assert summary['total_trades'] == 3
        assert summary['successful_trades'] == 2
        assert summary['failed_trades'] == 1
        assert summary['win_rate'] == pytest.approx(1 / 3)
        assert summary['total_pnl'] == pytest.approx(6.0)
        assert summary['avg_edge_bps'] == pytest.approx(30.0)
        assert summary['max_drawdown'] == pytest.approx(4.0 / 1010.0)

    def test_summarize_empty(self):
        summary = summarize_trades([])
        assert summary['total_trades'] == 0
        assert summary['win_rate'] == 0.0
        assert summary['max_drawdown'] == 0.0

    @pytest.mark.asyncio
    async def test_generate_report(self):
        db = await _db()
        await db.save_candidate(make_candidate())
        await db.update_candidate_status("cand-1", OpportunityStatus.REJECTED, "emergency_stop")
        await db.save_executed_trade(_trade("a", 10.0, executed_at=TS - 1000))
        journal = TradeJournal(db, initial_balance=10_000.0)

        report = await journal.generate_report(1, now=TS)

        assert "TRADING REPORT" in report
        assert "Total Trades: 1" in report
        assert "emergency_stop" in report
