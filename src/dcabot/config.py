"""Configuration system using pydantic-settings with environment variable loading."""

from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from dcabot.models import MarketType, Pair, TimeFrame


class ExchangeSettings(BaseSettings):
    """Exchange connection settings (one worker per exchange)."""

    model_config = SettingsConfigDict(env_prefix="EXCHANGE_")

    name: str = "bybit"  # ccxt exchange id
    api_key: SecretStr = SecretStr("")
    api_secret: SecretStr = SecretStr("")
    api_password: SecretStr = SecretStr("")  # KuCoin passphrase
    testnet: bool = False
    default_type: Literal["spot", "swap"] = "swap"


class TraderSettings(BaseSettings):
    """Live trading loop parameters."""

    model_config = SettingsConfigDict(env_prefix="TRADER_")

    loop_interval: int = 60  # seconds between polling passes
    price_cache_ttl: float = 10.0  # seconds a current price stays fresh
    candle_limit: int = 200  # candles fetched per market refresh


class BacktestSettings(BaseSettings):
    """Backtest engine configuration.

    Controls the simulated exchange (balance, fees, instrument steps) and the
    intra-candle tick synthesis. All fields configurable via BACKTEST_
    environment variable prefix.
    """

    model_config = SettingsConfigDict(env_prefix="BACKTEST_")

    default_initial_balance: Decimal = Decimal("10000")
    ticks_per_candle: int = 4
    fee_rate: Decimal = Decimal("0")  # charged on every simulated fill, e.g. 0.00055
    tick_size: Decimal = Decimal("0.01")
    qty_step: Decimal = Decimal("0.0001")
    event_log_path: str | None = None  # JSONL event stream, disabled when None


class OptimizerSettings(BaseSettings):
    """Optimizer daemon configuration.

    The optimizer only mutates parameters listed in optimizable_params that
    also have a registered mutation rule for the pair's strategy.
    """

    model_config = SettingsConfigDict(env_prefix="OPTIMIZER_")

    interval_hours: float = 1.0
    min_backtest_days: int = 30
    baseline_freshness_days: int = 7
    ticks_per_candle: int = 4
    optimizable_params: list[str] = Field(default_factory=list)
    seed: int | None = None


class DatabaseSettings(BaseSettings):
    """SQLite storage location."""

    model_config = SettingsConfigDict(env_prefix="DATABASE_")

    path: str = "data/dcabot.db"


class PairSettings(BaseModel):
    """One traded or monitored pair as declared in configuration."""

    ticker: str  # "BTC/USDT"
    timeframe: TimeFrame = TimeFrame.TF_1HOUR
    market_type: MarketType = MarketType.FUTURES
    trading_enabled: bool = False
    monitoring_enabled: bool = True
    strategy: str | None = None
    params: dict[str, str] = Field(default_factory=dict)
    backtest_days: int | None = None
    backtest_initial_balance: Decimal | None = None

    def to_pair(self, exchange_name: str) -> Pair:
        """Build the engine-level Pair for the given exchange."""
        return Pair.from_ticker(
            self.ticker,
            timeframe=self.timeframe,
            exchange_name=exchange_name,
            market_type=self.market_type,
            trading_enabled=self.trading_enabled,
            monitoring_enabled=self.monitoring_enabled,
            strategy_name=self.strategy,
            strategy_params=dict(self.params),
            backtest_days=self.backtest_days,
            backtest_initial_balance=self.backtest_initial_balance,
        )


class AppSettings(BaseSettings):
    """Root application settings, composing all sub-settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )

    log_level: str = "INFO"
    exchange: ExchangeSettings = ExchangeSettings()
    trader: TraderSettings = TraderSettings()
    backtest: BacktestSettings = BacktestSettings()
    optimizer: OptimizerSettings = OptimizerSettings()
    database: DatabaseSettings = DatabaseSettings()
    pairs: list[PairSettings] = Field(default_factory=list)

    def build_pairs(self) -> list[Pair]:
        """Return engine Pairs for every configured pair on this exchange."""
        return [p.to_pair(self.exchange.name) for p in self.pairs]
