"""Configuration management for the arbitrage scanning engine."""

import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator


class ConfigurationError(Exception):
    """Raised when a configuration load or update is rejected."""
    pass


class VenueConfig(BaseModel):
    """Trading venue configuration."""
    ccxt_id: Optional[str] = None  # defaults to the venue key
    chain: str = "cex"
    taker_fee_bps: float = 10.0
    network_cost: float = 0.0  # flat gas/withdrawal cost per leg, quote currency
    api_key: Optional[str] = None
    secret: Optional[str] = None
    password: Optional[str] = None
    sandbox: bool = True  # Default to sandbox for safety

    @field_validator("taker_fee_bps", "network_cost")
    @classmethod
    def _non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("must be non-negative")
        return v


class SymbolConfig(BaseModel):
    """Symbol universe configuration."""
    watchlist: List[str] = ["BTC/USDT", "ETH/USDT", "SOL/USDT", "ETH/BTC", "SOL/BTC", "SOL/ETH"]
    quote_assets: List[str] = ["USDT", "USDC"]  # starting assets for triangular cycles
    exclude_assets: List[str] = []


class MarketDataConfig(BaseModel):
    """Market data source configuration."""
    source: str = "ccxt"  # ccxt | synthetic
    poll_timeout_s: float = 10.0
    max_ticker_age_ms: int = 15000

    @field_validator("source")
    @classmethod
    def _known_source(cls, v: str) -> str:
        if v not in ("ccxt", "synthetic"):
            raise ValueError(f"unknown market data source: {v}")
        return v


class FlashLoanConfig(BaseModel):
    """Leveraged (flash-loan style) variant of direct arbitrage."""
    enabled: bool = False
    leverage: float = 5.0
    fee_pct: float = 0.05
    extra_network_cost: float = 20.0


class DetectorConfig(BaseModel):
    """Opportunity detection configuration."""
    max_profit_pct: float = 50.0  # anything above is treated as a data glitch
    max_notional: float = 1000.0
    volume_participation: float = 0.001  # fraction of 24h quote volume we are willing to take
    liquidity_reference_volume: float = 5_000_000.0  # quote volume that scores liquidity 1.0
    opportunity_ttl_ms: int = 5000
    triangular_start_notional: float = 100.0
    # Secondary strategies
    momentum_min_change_pct: float = 3.0
    momentum_target_pct: float = 3.5
    reversion_min_drop_pct: float = 5.0
    reversion_target_pct: float = 2.5
    secondary_min_volume: float = 1_000_000.0
    secondary_max_spread_bps: float = 20.0
    flash_loan: FlashLoanConfig = Field(default_factory=FlashLoanConfig)


class RiskScoring(BaseModel):
    """Weights, penalties and cutoffs of the weighted-sum risk score."""
    liquidity_weight: float = 10.0
    low_liquidity_cutoff: float = 0.3
    low_liquidity_penalty: float = 25.0
    thin_market_penalty: float = 100.0  # available volume below min_liquidity_threshold
    base_slippage_pct: float = 0.1
    liquidity_slippage_pct: float = 2.0
    size_slippage_unit: float = 1000.0
    size_slippage_pct: float = 0.5
    slippage_penalty: float = 30.0
    slippage_overage_weight: float = 10.0  # per percent over max_slippage
    network_cost_penalty: float = 15.0
    execution_time_threshold_s: float = 60.0
    execution_time_penalty: float = 20.0
    cross_chain_penalty: float = 35.0
    leverage_penalty: float = 15.0
    concentration_fraction: float = 0.4
    concentration_penalty: float = 25.0
    venue_weight_scale: float = 20.0
    volatility_k: float = 0.5
    execute_threshold: float = 30.0
    reduce_threshold: float = 60.0
    reduce_size_factor: float = 0.5

    @model_validator(mode="after")
    def _ordered_thresholds(self) -> "RiskScoring":
        for name, value in self.model_dump().items():
            if value < 0:
                raise ValueError(f"{name} must be non-negative")
        if self.execute_threshold > self.reduce_threshold:
            raise ValueError("execute_threshold must not exceed reduce_threshold")
        if not 0 < self.reduce_size_factor <= 1:
            raise ValueError("reduce_size_factor must be in (0, 1]")
        return self


class RiskConfiguration(BaseModel):
    """Process-wide capital preservation policy."""
    max_daily_loss: float = 500.0
    max_position_size: float = 1000.0
    max_concurrent_trades: int = 10
    max_slippage: float = 3.0  # percent
    min_liquidity_threshold: float = 10_000.0  # quote volume
    max_network_cost: float = 50.0
    emergency_stop_threshold: float = 0.15  # drawdown fraction of portfolio
    high_volatility_threshold: float = 0.8
    max_fraction_per_trade: float = 0.1
    max_fraction_per_venue: float = 0.4
    kelly_multiplier: float = 0.5
    kelly_cap: float = 0.25
    min_volatility_adjustment: float = 0.3
    rebalance_band: float = 0.05
    initial_balance: float = 10_000.0
    min_profit_pct: Dict[str, float] = Field(default_factory=lambda: {
        "default": 0.3,
        "triangular_arbitrage": 0.5,
        "flash_loan_arbitrage": 0.8,
        "cross_chain_arbitrage": 1.0,
        "momentum": 1.2,
        "mean_reversion": 0.8,
    })
    target_allocation: Dict[str, float] = Field(default_factory=lambda: {
        "btc": 0.30,
        "eth": 0.25,
        "stablecoins": 0.25,
        "altcoins": 0.15,
        "defi": 0.05,
    })
    venue_risk_weights: Dict[str, float] = Field(default_factory=dict)
    chain_risk_weights: Dict[str, float] = Field(default_factory=lambda: {
        "cex": 1.0,
        "ethereum": 1.0,
        "arbitrum": 1.1,
        "optimism": 1.1,
        "base": 1.2,
        "polygon": 1.3,
        "bsc": 1.4,
        "avalanche": 1.5,
    })
    scoring: RiskScoring = Field(default_factory=RiskScoring)

    @field_validator("max_daily_loss", "max_position_size", "max_slippage",
                     "min_liquidity_threshold", "max_network_cost", "initial_balance")
    @classmethod
    def _non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("must be non-negative")
        return v

    @field_validator("max_concurrent_trades")
    @classmethod
    def _positive_int(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    @field_validator("emergency_stop_threshold", "max_fraction_per_trade", "max_fraction_per_venue",
                     "kelly_multiplier", "kelly_cap", "min_volatility_adjustment")
    @classmethod
    def _fraction(cls, v: float) -> float:
        if not 0 < v <= 1:
            raise ValueError("must be in (0, 1]")
        return v

    @field_validator("min_profit_pct", "venue_risk_weights", "chain_risk_weights", "target_allocation")
    @classmethod
    def _non_negative_values(cls, v: Dict[str, float]) -> Dict[str, float]:
        for key, value in v.items():
            if value < 0:
                raise ValueError(f"{key} must be non-negative")
        return v

    def min_profit_for(self, strategy: str) -> float:
        """Minimum profit percentage for a strategy tag."""
        return self.min_profit_pct.get(strategy, self.min_profit_pct.get("default", 0.3))

    def venue_weight(self, venue: str, chain: str) -> float:
        """Risk weight of a venue; explicit venue weights win over chain weights."""
        if venue in self.venue_risk_weights:
            return self.venue_risk_weights[venue]
        return self.chain_risk_weights.get(chain, 2.0)


class ExecutionConfig(BaseModel):
    """Execution configuration."""
    timeout_s: float = 15.0
    max_executions_per_cycle: int = 3
    min_position_size: float = 10.0
    paper_latency_ms: int = 100
    paper_min_fill_ratio: float = 0.9
    unwind_on_partial: bool = True  # reverse a filled leg when the other leg fails


class SchedulerConfig(BaseModel):
    """Scan scheduler configuration."""
    scan_interval_s: float = 2.0
    max_concurrent_scans: int = 5
    performance_interval_s: float = 60.0
    risk_check_interval_s: float = 30.0
    drain_timeout_s: float = 30.0
    trade_window_hours: float = 24.0
    max_stored_candidates: int = 15

    @field_validator("scan_interval_s", "drain_timeout_s", "performance_interval_s",
                     "risk_check_interval_s")
    @classmethod
    def _positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("must be positive")
        return v


class SyntheticConfig(BaseModel):
    """Synthetic market data (paper testing only)."""
    seed: int = 7
    venues: List[str] = ["binance", "okx", "kraken"]
    dislocation_probability: float = 0.2
    max_dislocation_pct: float = 1.5


class StorageConfig(BaseModel):
    """Storage configuration."""
    db_path: str = "arb.sqlite"


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = "INFO"
    file: Optional[str] = "arb_engine.log"
    rotation: str = "50 MB"
    log_candidates: bool = False


class Config(BaseModel):
    """Main configuration model."""
    mode: str = "paper"
    venues: Dict[str, VenueConfig] = Field(default_factory=lambda: {
        "binance": VenueConfig(taker_fee_bps=10.0),
        "okx": VenueConfig(taker_fee_bps=10.0),
    })
    symbols: SymbolConfig = Field(default_factory=SymbolConfig)
    market_data: MarketDataConfig = Field(default_factory=MarketDataConfig)
    detector: DetectorConfig = Field(default_factory=DetectorConfig)
    risk: RiskConfiguration = Field(default_factory=RiskConfiguration)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    synthetic: SyntheticConfig = Field(default_factory=SyntheticConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("mode")
    @classmethod
    def _known_mode(cls, v: str) -> str:
        if v not in ("paper", "live"):
            raise ValueError(f"unknown mode: {v}")
        return v

    def venue(self, name: str) -> VenueConfig:
        """Get venue configuration, falling back to defaults for unknown venues."""
        return self.venues.get(name) or VenueConfig()

    def get_taker_fee_bps(self, venue: str) -> float:
        """Get taker fee in basis points for a venue."""
        return self.venue(venue).taker_fee_bps

    def with_risk_update(self, updates: Dict[str, Any]) -> "Config":
        """Return a copy with a validated partial risk update applied."""
        merged = _deep_merge(self.risk.model_dump(), updates)
        try:
            risk = RiskConfiguration.model_validate(merged)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid risk configuration update: {e}") from e
        return self.model_copy(update={"risk": risk})

    @classmethod
    def load_from_file(cls, config_path: str = "config.yaml") -> "Config":
        """Load configuration from YAML file with environment variable substitution."""
        config_path = Path(config_path)
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        load_dotenv()
        with open(config_path, "r") as f:
            config_str = f.read()

        # Substitute environment variables
        for key, value in os.environ.items():
            config_str = config_str.replace(f"${{{key}}}", value)

        config_data = yaml.safe_load(config_str) or {}
        try:
            return cls(**config_data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration in {config_path}: {e}") from e


def _deep_merge(base: Dict[str, Any], updates: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in updates.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def get_config(config_path: str = "config.yaml") -> Config:
    """Get configuration instance."""
    return Config.load_from_file(config_path)
