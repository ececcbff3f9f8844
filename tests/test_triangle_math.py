"""Test triangle discovery and cycle return calculation."""

import pytest

from arb_engine.core.triangle import (
    Triangle, build_asset_graph, calculate_cycle_return, convert, find_triangles,
)

from sample_data import make_ticker


SYMBOLS = ["ETH/USDT", "ETH/BTC", "BTC/USDT"]


def _quotes():
    return {
        "ETH/USDT": make_ticker("binance", "ETH/USDT", 2000.0, 2001.0),
        "ETH/BTC": make_ticker("binance", "ETH/BTC", 0.05, 0.0501),
        "BTC/USDT": make_ticker("binance", "BTC/USDT", 40000.0, 40001.0),
    }


class TestTriangle:
    """Test Triangle class."""

    def test_triangle_creation(self):
        """Test triangle creation and properties."""
        triangle = Triangle("USDT", "ETH", "BTC", "ETH/USDT", "ETH/BTC", "BTC/USDT")

        assert triangle.asset_a == "USDT"
        assert triangle.asset_b == "ETH"
        assert triangle.asset_c == "BTC"
        assert triangle.label == "USDT-ETH-BTC"
        assert triangle.get_pairs() == ["ETH/USDT", "ETH/BTC", "BTC/USDT"]
        assert triangle.get_assets() == ["USDT", "ETH", "BTC"]

    def test_legs(self):
        triangle = Triangle("USDT", "ETH", "BTC", "ETH/USDT", "ETH/BTC", "BTC/USDT")
        assert triangle.get_legs() == [
            ("USDT", "ETH", "ETH/USDT"),
            ("ETH", "BTC", "ETH/BTC"),
            ("BTC", "USDT", "BTC/USDT"),
        ]

    def test_equality(self):
        a = Triangle("USDT", "ETH", "BTC", "ETH/USDT", "ETH/BTC", "BTC/USDT")
        b = Triangle("USDT", "ETH", "BTC", "ETH/USDT", "ETH/BTC", "BTC/USDT")
        c = Triangle("USDT", "BTC", "ETH", "BTC/USDT", "ETH/BTC", "ETH/USDT")
        assert a == b
        assert len({a, b, c}) == 2


class TestTriangleDiscovery:
    """Test triangle discovery logic."""

    def test_graph_is_traversable_both_ways(self):
        graph = build_asset_graph(SYMBOLS)
        assert graph["USDT"]["ETH"]["side"] == "buy"
        assert graph["ETH"]["USDT"]["side"] == "sell"
        assert graph["BTC"]["ETH"]["pair"] == "ETH/BTC"

    def test_find_triangles_simple(self):
        """Both directions around the cycle start from USDT."""
        triangles = find_triangles(SYMBOLS, ["USDT"])

        assert len(triangles) == 2
        assert {t.label for t in triangles} == {"USDT-BTC-ETH", "USDT-ETH-BTC"}
        for triangle in triangles:
            assert triangle.asset_a == "USDT"

    def test_find_triangles_multiple_quote_assets(self):
        triangles = find_triangles(SYMBOLS, ["USDT", "BTC"])
        assert {t.asset_a for t in triangles} == {"USDT", "BTC"}
        assert len(triangles) == 4

    def test_find_triangles_with_exclusions(self):
        """Test finding triangles with asset exclusions."""
        symbols = SYMBOLS + ["BUSD/USDT", "BUSD/BTC"]

        triangles = find_triangles(symbols, ["USDT"], exclude_assets=["BUSD"])

        assert len(triangles) == 2
        for triangle in triangles:
            assert "BUSD" not in triangle.get_assets()

    def test_incomplete_cycle(self):
        assert find_triangles(["ETH/USDT", "BTC/USDT"], ["USDT"]) == []

    def test_malformed_symbols_ignored(self):
        assert find_triangles(["ETHUSDT", "ETH/BTC"], ["USDT"]) == []


class TestCycleReturn:
    """Test cycle return calculation."""

    def test_convert(self):
        ticker = make_ticker("binance", "ETH/USDT", 2000.0, 2001.0)
        assert convert(2001.0, "USDT", ticker) == pytest.approx(1.0)
        assert convert(1.0, "ETH", ticker) == pytest.approx(2000.0)
        with pytest.raises(ValueError):
            convert(1.0, "BTC", ticker)

    def test_calculate_cycle_return(self):
        """USDT -> ETH at the ask, ETH -> BTC at the bid, BTC -> USDT at the bid."""
        triangle = Triangle("USDT", "ETH", "BTC", "ETH/USDT", "ETH/BTC", "BTC/USDT")

        result = calculate_cycle_return(triangle, _quotes())

        assert result == pytest.approx(0.05 * 40000.0 / 2001.0)
        assert result < 1.0

    def test_reverse_direction(self):
        triangle = Triangle("USDT", "BTC", "ETH", "BTC/USDT", "ETH/BTC", "ETH/USDT")

        result = calculate_cycle_return(triangle, _quotes())

        assert result == pytest.approx(2000.0 / (40001.0 * 0.0501))

    def test_missing_leg(self):
        triangle = Triangle("USDT", "ETH", "BTC", "ETH/USDT", "ETH/BTC", "BTC/USDT")
        quotes = _quotes()
        del quotes["ETH/BTC"]
        assert calculate_cycle_return(triangle, quotes) is None


if __name__ == "__main__":
    pytest.main([__file__])
