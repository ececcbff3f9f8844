"""Tests for engine wiring and the CLI."""

import pytest
from click.testing import CliRunner

from arb_engine.backtest.synthetic import SyntheticMarketData
from arb_engine.exchanges.ccxt_executor import CcxtExecutionAdapter
from arb_engine.exchanges.ccxt_feed import CcxtMarketData
from arb_engine.exchanges.paper import PaperExecutionAdapter
from arb_engine.main import ArbitrageEngine, cli

from sample_data import make_config


def _write_config(tmp_path, extra=""):
    path = tmp_path / "config.yaml"
    path.write_text(f"""
mode: paper
market_data:
  source: synthetic
synthetic:
  seed: 11
  venues: [binance, okx]
  dislocation_probability: 1.0
execution:
  paper_latency_ms: 0
storage:
  db_path: {tmp_path / "arb.sqlite"}
logging:
  file: null
{extra}
""")
    return str(path)


class TestEngineWiring:
    """Test adapter selection."""

    def test_paper_synthetic(self):
        config = make_config()
        config = config.model_copy(update={
            'market_data': config.market_data.model_copy(update={'source': "synthetic"})})
        engine = ArbitrageEngine(config)

        assert isinstance(engine.market_data, SyntheticMarketData)
        assert isinstance(engine.execution, PaperExecutionAdapter)

    def test_live_ccxt(self):
        engine = ArbitrageEngine(make_config(mode="live"))

        assert isinstance(engine.market_data, CcxtMarketData)
        assert isinstance(engine.execution, CcxtExecutionAdapter)
        assert engine.risk_engine.venue_chains == {"binance": "cex", "okx": "cex", "kraken": "cex"}


class TestCli:
    """Test CLI commands against a synthetic feed."""

    def test_scan_without_execution(self, tmp_path):
        runner = CliRunner()
        result = runner.invoke(cli, ["scan", "--config", _write_config(tmp_path)])

        assert result.exit_code == 0, result.output
        assert "confirmed" not in result.output

    def test_report_on_empty_store(self, tmp_path):
        runner = CliRunner()
        result = runner.invoke(cli, ["report", "--days", "1", "--config", _write_config(tmp_path)])

        assert result.exit_code == 0, result.output
        assert "TRADING REPORT" in result.output
        assert "Total Trades: 0" in result.output

    def test_status(self, tmp_path):
        runner = CliRunner()
        result = runner.invoke(cli, ["status", "--config", _write_config(tmp_path)])

        assert result.exit_code == 0, result.output
        assert "ENGINE STATUS" in result.output

    def test_invalid_config_exits(self, tmp_path):
        runner = CliRunner()
        path = _write_config(tmp_path, extra="risk:\n  max_daily_loss: -1\n")
        result = runner.invoke(cli, ["status", "--config", path])

        assert result.exit_code == 2


if __name__ == "__main__":
    pytest.main([__file__])
