"""Main entry point for the arbitrage scanning engine."""

import asyncio
import random
import signal
import sys
from typing import Optional

import click
from loguru import logger

from .backtest.synthetic import SyntheticMarketData, SyntheticTickerGenerator
from .config import Config, ConfigurationError, LoggingConfig, get_config
from .core.detector import OpportunityDetector
from .core.executor import ExecutionOrchestrator
from .core.pipeline import ScanPipeline
from .core.portfolio import PortfolioTracker
from .core.risk import RiskEngine
from .core.scheduler import ScanScheduler
from .core.utils import format_bps, format_quote
from .exchanges.base import ExecutionAdapter, MarketDataAdapter
from .exchanges.ccxt_executor import CcxtExecutionAdapter
from .exchanges.ccxt_feed import CcxtMarketData
from .exchanges.paper import PaperExecutionAdapter
from .storage.base import TradeStore
from .storage.db import Database
from .storage.journal import TradeJournal


class ArbitrageEngine:
    """Wires market data, detection, risk, execution and storage around one scheduler."""

    def __init__(self, config: Config,
                 market_data: Optional[MarketDataAdapter] = None,
                 execution: Optional[ExecutionAdapter] = None,
                 store: Optional[TradeStore] = None):
        self.config = config
        self.market_data = market_data or self._build_market_data()
        self.execution = execution or self._build_execution()
        self.store = store or Database(config.storage.db_path)
        self.portfolio = PortfolioTracker(config.risk.initial_balance)
        self.risk_engine = RiskEngine({name: venue.chain for name, venue in config.venues.items()})
        self.detector = OpportunityDetector(config)
        self.orchestrator = ExecutionOrchestrator(config, self.execution, self.store, self.portfolio)
        self.pipeline = ScanPipeline(config, self.market_data, self.detector, self.risk_engine,
                                     self.orchestrator, self.portfolio, self.store)
        self.scheduler = ScanScheduler(config, self.pipeline, self.risk_engine, self.portfolio,
                                       self.store, self.market_data)

        logger.info(f"Arbitrage engine initialized: mode {config.mode.upper()}, "
                    f"venues {list(config.venues)}, market data {config.market_data.source}")

    def _build_market_data(self) -> MarketDataAdapter:
        if self.config.market_data.source == "synthetic":
            synthetic = self.config.synthetic
            generator = SyntheticTickerGenerator(
                random.Random(synthetic.seed),
                synthetic.venues,
                self.config.symbols.watchlist,
                dislocation_probability=synthetic.dislocation_probability,
                max_dislocation_pct=synthetic.max_dislocation_pct,
            )
            return SyntheticMarketData(generator)
        return CcxtMarketData(self.config)

    def _build_execution(self) -> ExecutionAdapter:
        if self.config.mode == "live":
            return CcxtExecutionAdapter(self.config)
        return PaperExecutionAdapter(self.config, random.Random(self.config.synthetic.seed))

    async def connect(self):
        await self.store.connect()
        if not await self.market_data.connect():
            logger.warning("Market data feed did not connect; cycles will find no candidates")

    async def disconnect(self):
        try:
            await self.market_data.disconnect()
            await self.execution.close()
        finally:
            await self.store.disconnect()

    async def run(self):
        """Run until interrupted or halted."""
        await self.connect()
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop_event.set)
            except NotImplementedError:
                pass  # Windows

        try:
            await self.scheduler.start()
            while not stop_event.is_set() and self.scheduler.running:
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=1.0)
                except asyncio.TimeoutError:
                    pass
        finally:
            await self.scheduler.stop()
            await self.disconnect()
            status = self.scheduler.get_status()
            logger.info(f"Final status: {status['cycle_count']} cycles, "
                        f"{status['successful_trades']} confirmed, {status['failed_trades']} failed, "
                        f"P/L {format_quote(status['total_profit'])}")


def setup_logging(settings: LoggingConfig, level: Optional[str] = None):
    """Configure loguru sinks once per process."""
    logger.remove()
    logger.add(sys.stderr, level=level or settings.level,
               format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>")
    if settings.file:
        logger.add(settings.file, level="DEBUG", rotation=settings.rotation,
                   format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}")


def _load(config_path: str, mode: Optional[str] = None) -> Config:
    try:
        config = get_config(config_path)
    except (ConfigurationError, FileNotFoundError) as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(2)
    if mode:
        config = config.model_copy(update={'mode': mode})
    return config


@click.group()
def cli():
    """Arbitrage scanning engine CLI."""
    pass


@cli.command()
@click.option('--mode', default=None, type=click.Choice(['paper', 'live']),
              help='Execution mode (default: from config)')
@click.option('--config', type=click.Path(exists=True), default='config.yaml',
              help='Path to config file')
def run(mode, config):
    """Run the scan scheduler until interrupted."""
    settings = _load(config, mode)
    setup_logging(settings.logging)

    engine = ArbitrageEngine(settings)
    try:
        asyncio.run(engine.run())
    except KeyboardInterrupt:
        logger.info("Engine stopped by user")
    except Exception as e:
        logger.error(f"Engine failed: {e}")
        sys.exit(1)

    if engine.scheduler.halted:
        sys.exit(1)


@cli.command()
@click.option('--config', type=click.Path(exists=True), default='config.yaml',
              help='Path to config file')
@click.option('--execute/--no-execute', default=False, help='Allow admitted candidates to execute')
def scan(config, execute):
    """Run one scan cycle and print the candidates."""
    settings = _load(config)
    setup_logging(settings.logging, level="WARNING")

    async def run_scan():
        engine = ArbitrageEngine(settings)
        await engine.connect()
        try:
            if not execute:
                engine.scheduler.pause()
            return await engine.scheduler.trigger_scan()
        finally:
            await engine.disconnect()

    candidates = asyncio.run(run_scan())
    if not candidates:
        click.echo("No candidates found")
        return
    for c in candidates:
        click.echo(f"{c.strategy.value:<22} {c.symbol:<14} {c.buy_venue}->{c.sell_venue} "
                   f"{format_bps(c.edge_bps):>10}  conf {c.confidence:5.1f}  {c.status.value}")


@cli.command()
@click.option('--days', default=7, type=int, help='Number of days to report (default: 7)')
@click.option('--config', type=click.Path(exists=True), default='config.yaml',
              help='Path to config file')
def report(days, config):
    """Generate trading report."""
    settings = _load(config)

    async def generate_report():
        logger.remove()
        logger.add(sys.stderr, level="WARNING")

        db = Database(settings.storage.db_path)
        journal = TradeJournal(db, settings.risk.initial_balance)
        try:
            await db.connect()
            return await journal.generate_report(days)
        finally:
            await db.disconnect()

    click.echo(asyncio.run(generate_report()))


@cli.command()
@click.option('--config', type=click.Path(exists=True), default='config.yaml',
              help='Path to config file')
def status(config):
    """Show last 24h performance from the store."""
    settings = _load(config)

    async def show_status():
        logger.remove()
        logger.add(sys.stderr, level="WARNING")

        db = Database(settings.storage.db_path)
        journal = TradeJournal(db, settings.risk.initial_balance)
        try:
            await db.connect()
            return await journal.get_performance_summary(1)
        finally:
            await db.disconnect()

    summary = asyncio.run(show_status())
    click.echo(f"""
=== ENGINE STATUS ===
Last 24h Performance:
- Trades: {summary['total_trades']} ({summary['failed_trades']} failed)
- Win Rate: {summary['win_rate']:.2%}
- PnL: {format_quote(summary['total_pnl'])}
- Avg Edge: {format_bps(summary['avg_edge_bps'])}
- Avg Latency: {summary['avg_latency_ms']:.1f} ms
""")


def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
