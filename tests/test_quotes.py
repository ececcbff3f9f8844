"""Test the ticker book and in-memory feeds."""

import random

import pytest

from arb_engine.backtest.synthetic import SyntheticMarketData, SyntheticTickerGenerator
from arb_engine.core.quotes import TickerBook
from arb_engine.exchanges.static import StaticMarketData

from sample_data import TS, make_ticker


class TestTickerBook:
    """Test latest-ticker bookkeeping."""

    def test_update_and_get(self):
        book = TickerBook()
        assert book.update(make_ticker("binance", "BTC/USDT", 100.0, 100.1))
        ticker = book.get("binance", "BTC/USDT")
        assert ticker.bid == 100.0
        assert book.get("okx", "BTC/USDT") is None
        assert book.get_last_update() == TS

    def test_older_observation_is_dropped(self):
        """Timestamps never go backwards for a key."""
        book = TickerBook()
        book.update(make_ticker("binance", "BTC/USDT", 100.0, 100.1, ts=TS + 10))
        accepted = book.update(make_ticker("binance", "BTC/USDT", 90.0, 90.1, ts=TS))

        assert not accepted
        assert book.get("binance", "BTC/USDT").bid == 100.0
        assert book.out_of_order == 1

    def test_equal_timestamp_supersedes(self):
        book = TickerBook()
        book.update(make_ticker("binance", "BTC/USDT", 100.0, 100.1))
        assert book.update(make_ticker("binance", "BTC/USDT", 101.0, 101.1))
        assert book.get("binance", "BTC/USDT").bid == 101.0

    def test_change_pct_filled_from_previous_last(self):
        book = TickerBook()
        book.update(make_ticker("binance", "BTC/USDT", 99.9, 100.1, last=100.0))
        book.update(make_ticker("binance", "BTC/USDT", 103.9, 104.1, last=104.0, ts=TS + 1000))

        assert book.get("binance", "BTC/USDT").change_pct == pytest.approx(4.0)

    def test_change_pct_not_filled_from_non_finite_last(self):
        book = TickerBook()
        book.update(make_ticker("binance", "BTC/USDT", 99.9, 100.1, last=100.0))
        book.update(make_ticker("binance", "BTC/USDT", 103.9, 104.1, last=float('nan'), ts=TS + 1000))

        assert book.get("binance", "BTC/USDT").change_pct is None

    def test_get_fresh_filters_by_age_symbol_and_venue(self):
        book = TickerBook()
        book.update_many([
            make_ticker("binance", "BTC/USDT", 100.0, 100.1, ts=TS),
            make_ticker("okx", "BTC/USDT", 100.0, 100.1, ts=TS - 20_000),
            make_ticker("binance", "ETH/USDT", 2000.0, 2001.0, ts=TS),
        ])

        fresh = book.get_fresh(15_000, now=TS + 1000, symbols=["BTC/USDT"])

        assert [(t.venue, t.symbol) for t in fresh] == [("binance", "BTC/USDT")]

    def test_change_pct_from_source_is_kept(self):
        book = TickerBook()
        book.update(make_ticker("binance", "BTC/USDT", 99.9, 100.1, last=100.0))
        book.update(make_ticker("binance", "BTC/USDT", 103.9, 104.1, ts=TS + 1000, change_pct=-1.0))

        assert book.get("binance", "BTC/USDT").change_pct == -1.0

    def test_snapshot_filters_and_order(self):
        book = TickerBook()
        book.update_many([
            make_ticker("okx", "ETH/USDT", 2000.0, 2001.0),
            make_ticker("binance", "ETH/USDT", 2000.0, 2001.0),
            make_ticker("binance", "BTC/USDT", 100.0, 100.1),
        ])

        keys = [(t.venue, t.symbol) for t in book.snapshot()]
        assert keys == [("binance", "BTC/USDT"), ("binance", "ETH/USDT"), ("okx", "ETH/USDT")]
        assert len(book.snapshot(symbols=["ETH/USDT"])) == 2
        assert len(book.snapshot(venues=["okx"])) == 1

    def test_fresh_and_stale(self):
        book = TickerBook()
        book.update(make_ticker("binance", "BTC/USDT", 100.0, 100.1, ts=TS))
        book.update(make_ticker("okx", "BTC/USDT", 100.0, 100.1, ts=TS + 10_000))

        assert len(book.get_fresh(5000, now=TS + 12_000)) == 1
        assert book.cleanup_stale(5000, now=TS + 12_000) == 1
        assert book.get_summary()['venues'] == ["okx"]


class TestStaticMarketData:
    """Test the push feed."""

    @pytest.mark.asyncio
    async def test_publish_and_poll(self):
        feed = StaticMarketData([make_ticker("binance", "BTC/USDT", 100.0, 100.1)])
        assert not feed.status().connected

        await feed.connect()
        feed.publish([make_ticker("okx", "BTC/USDT", 101.0, 101.1)])
        tickers = await feed.get_latest_tickers(["BTC/USDT"], ["binance", "okx"])

        assert [t.venue for t in tickers] == ["binance", "okx"]
        status = feed.status()
        assert status.connected
        assert status.venues == {"binance": True, "okx": True}

        await feed.disconnect()
        assert not feed.status().connected


class TestSyntheticMarketData:
    """Test seeded synthetic tickers."""

    def _generator(self, seed):
        return SyntheticTickerGenerator(random.Random(seed), ["binance", "okx"], ["BTC/USDT", "ETH/USDT"],
                                        dislocation_probability=1.0)

    def test_same_seed_same_tickers(self):
        first = self._generator(3).next_snapshot(TS)
        second = self._generator(3).next_snapshot(TS)
        assert first == second
        assert len(first) == 4

    def test_tickers_are_well_formed(self):
        generator = self._generator(5)
        for step in range(20):
            for ticker in generator.next_snapshot(TS + step):
                assert ticker.problem() is None

    @pytest.mark.asyncio
    async def test_feed_advances_on_poll(self):
        clock = iter(range(TS, TS + 100))
        feed = SyntheticMarketData(self._generator(1), clock=lambda: next(clock))
        first = await feed.get_latest_tickers()
        second = await feed.get_latest_tickers()

        assert len(first) == len(second) == 4
        assert all(b.ts > a.ts for a, b in zip(first, second))
