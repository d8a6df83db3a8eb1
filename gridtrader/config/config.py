"""
Environment-driven configuration with validation.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field
from typing import Optional

from dotenv import load_dotenv

from gridtrader.errors import ConfigError

load_dotenv()

DISTRIBUTIONS = ("uniform", "gaussian", "pyramid")
EXCHANGES = ("binance", "alpaca", "hyperliquid")


def env_bool(key: str, default: bool) -> bool:
    val = os.getenv(key)
    if val is None:
        return default
    return val.lower() in {"1", "true", "yes", "y"}


def _int_env(key: str, default: int) -> int:
    raw = os.getenv(key)
    if raw is None or raw == "":
        return default
    return int(raw)


def _float_env(key: str, default: float) -> float:
    raw = os.getenv(key)
    if raw is None or raw == "":
        return default
    return float(raw)


@dataclass(frozen=True)
class GridConfig:
    """Immutable configuration of one grid instance (one symbol, one run)."""
    symbol: str = "BTCUSDT"
    grid_count: int = 10
    total_investment: float = 1000.0
    leverage: int = 5
    upper_price: float = 0.0
    lower_price: float = 0.0
    use_atr_bounds: bool = True
    atr_multiplier: float = 2.0
    distribution: str = "gaussian"
    max_drawdown_pct: float = 15.0
    stop_loss_pct: float = 5.0
    daily_loss_limit_pct: float = 10.0
    use_maker_only: bool = True

    @classmethod
    def from_env(cls) -> "GridConfig":
        return cls(
            symbol=os.getenv("GRID_SYMBOL", "BTCUSDT").strip().upper(),
            grid_count=_int_env("GRID_COUNT", 10),
            total_investment=_float_env("GRID_TOTAL_INVESTMENT", 1000.0),
            leverage=_int_env("GRID_LEVERAGE", 5),
            upper_price=_float_env("GRID_UPPER_PRICE", 0.0),
            lower_price=_float_env("GRID_LOWER_PRICE", 0.0),
            use_atr_bounds=env_bool("GRID_USE_ATR_BOUNDS", True),
            atr_multiplier=_float_env("GRID_ATR_MULTIPLIER", 2.0),
            distribution=os.getenv("GRID_DISTRIBUTION", "gaussian").strip().lower(),
            max_drawdown_pct=_float_env("GRID_MAX_DRAWDOWN_PCT", 15.0),
            stop_loss_pct=_float_env("GRID_STOP_LOSS_PCT", 5.0),
            daily_loss_limit_pct=_float_env("GRID_DAILY_LOSS_LIMIT_PCT", 10.0),
            use_maker_only=env_bool("GRID_USE_MAKER_ONLY", True),
        )

    def validate(self) -> None:
        if not self.symbol:
            raise ConfigError("GRID_SYMBOL must be set")
        if self.grid_count < 2:
            raise ConfigError(f"GRID_COUNT must be >= 2 (got {self.grid_count})")
        if self.total_investment <= 0:
            raise ConfigError("GRID_TOTAL_INVESTMENT must be > 0")
        if self.leverage < 1:
            raise ConfigError("GRID_LEVERAGE must be >= 1")
        if not self.use_atr_bounds:
            if self.upper_price <= 0 or self.lower_price <= 0:
                raise ConfigError("Manual bounds require GRID_UPPER_PRICE and GRID_LOWER_PRICE > 0")
            if self.upper_price <= self.lower_price:
                raise ConfigError("GRID_UPPER_PRICE must be > GRID_LOWER_PRICE")
        if self.stop_loss_pct < 0 or self.max_drawdown_pct < 0 or self.daily_loss_limit_pct < 0:
            raise ConfigError("Percent limits must be >= 0")

        log = logging.getLogger("gridbot")
        if self.distribution not in DISTRIBUTIONS:
            log.warning(
                f"WARNING: GRID_DISTRIBUTION={self.distribution!r} is unknown, uniform weights will be used."
            )
        if self.stop_loss_pct == 0:
            log.warning("WARNING: GRID_STOP_LOSS_PCT is 0. Filled levels will never be stopped out.")
        if self.leverage > 5:
            log.warning(
                f"WARNING: GRID_LEVERAGE is {self.leverage}x which is high for grid trading. "
                "Total exposure is capped at investment x leverage."
            )


@dataclass(frozen=True)
class Settings:
    grid: GridConfig = field(default_factory=GridConfig)
    strategy_type: str = "grid_trading"
    trader_id: str = "grid-1"
    exchange: str = "binance"
    api_key: Optional[str] = None
    api_secret: Optional[str] = None
    paper: bool = True
    base_url: Optional[str] = None
    private_key: Optional[str] = None
    user_address: Optional[str] = None
    decision_url: Optional[str] = None
    decision_token: Optional[str] = None
    decision_timeout: float = 60.0
    language: str = "en"
    market_data_url: str = "https://fapi.binance.com"
    short_interval: str = "5m"
    long_interval: str = "4h"
    kline_limit: int = 50
    loop_interval: float = 60.0
    exchange_timeout: float = 30.0
    http_timeout: float = 30.0
    state_dir: str = "state"
    log_file: Optional[str] = "gridbot.log"
    metrics_port: int = 9095

    def dump(self) -> dict:
        """Return a dict of settings for sanity checks/logging (secrets redacted)."""
        data = asdict(self)
        for key in ("api_key", "api_secret", "private_key", "decision_token"):
            if data.get(key):
                data[key] = "***"
        return data

    @property
    def is_grid_strategy(self) -> bool:
        return self.strategy_type == "grid_trading" and self.grid is not None

    @classmethod
    def load(cls) -> "Settings":
        cfg = cls(
            grid=GridConfig.from_env(),
            strategy_type=os.getenv("GRID_STRATEGY_TYPE", "grid_trading"),
            trader_id=os.getenv("GRID_TRADER_ID", "grid-1"),
            exchange=os.getenv("GRID_EXCHANGE", "binance").strip().lower(),
            api_key=os.getenv("GRID_API_KEY"),
            api_secret=os.getenv("GRID_API_SECRET"),
            paper=env_bool("GRID_PAPER", True),
            base_url=os.getenv("GRID_BASE_URL") or None,
            private_key=os.getenv("GRID_PRIVATE_KEY"),
            user_address=os.getenv("GRID_USER_ADDRESS"),
            decision_url=os.getenv("GRID_DECISION_URL") or None,
            decision_token=os.getenv("GRID_DECISION_TOKEN"),
            decision_timeout=_float_env("GRID_DECISION_TIMEOUT_SEC", 60.0),
            language=os.getenv("GRID_LANGUAGE", "en") or "en",
            market_data_url=os.getenv("GRID_MARKET_DATA_URL", "https://fapi.binance.com"),
            short_interval=os.getenv("GRID_SHORT_INTERVAL", "5m"),
            long_interval=os.getenv("GRID_LONG_INTERVAL", "4h"),
            kline_limit=_int_env("GRID_KLINE_LIMIT", 50),
            loop_interval=_float_env("GRID_LOOP_INTERVAL_SEC", 60.0),
            exchange_timeout=_float_env("GRID_EXCHANGE_TIMEOUT_SEC", 30.0),
            http_timeout=_float_env("GRID_HTTP_TIMEOUT_SEC", 30.0),
            state_dir=os.getenv("GRID_STATE_DIR", "state"),
            log_file=os.getenv("GRID_LOG_FILE", "gridbot.log") or None,
            metrics_port=_int_env("GRID_METRICS_PORT", 9095),
        )
        _sanity_check(cfg)
        cfg._validate()
        return cfg

    def resolve_account(self) -> str:
        if self.user_address:
            return self.user_address
        if self.private_key:
            return self.resolve_signer().address
        raise ConfigError("Missing GRID_USER_ADDRESS or GRID_PRIVATE_KEY")

    def resolve_signer(self):
        from eth_account import Account

        if not self.private_key:
            raise ConfigError("Missing credentials: set GRID_PRIVATE_KEY")
        return Account.from_key(self.private_key)

    def _validate(self) -> None:
        self.grid.validate()
        if self.exchange not in EXCHANGES:
            raise ConfigError(f"GRID_EXCHANGE must be one of {', '.join(EXCHANGES)} (got {self.exchange!r})")
        if self.loop_interval <= 0:
            raise ConfigError("GRID_LOOP_INTERVAL_SEC must be > 0")
        if self.exchange_timeout <= 0 or self.http_timeout <= 0:
            raise ConfigError("Timeouts must be > 0")
        if self.exchange in ("binance", "alpaca") and not (self.api_key and self.api_secret):
            raise ConfigError(f"{self.exchange} requires GRID_API_KEY and GRID_API_SECRET")
        if self.exchange == "hyperliquid" and not self.private_key:
            raise ConfigError("hyperliquid requires GRID_PRIVATE_KEY")
        if not self.decision_url:
            logging.getLogger("gridbot").warning(
                "WARNING: GRID_DECISION_URL not set. The grid will only hold and reconcile."
            )


def _sanity_check(cfg: Settings) -> None:
    """
    Log critical settings once at startup so overrides are obvious.
    """
    logger = logging.getLogger("gridbot")
    payload = {
        "event": "config_loaded",
        "trader_id": cfg.trader_id,
        "exchange": cfg.exchange,
        "symbol": cfg.grid.symbol,
        "grid_count": cfg.grid.grid_count,
        "total_investment": cfg.grid.total_investment,
        "leverage": cfg.grid.leverage,
        "distribution": cfg.grid.distribution,
        "loop_interval": cfg.loop_interval,
    }
    logger.info(json.dumps(payload))
