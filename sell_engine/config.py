"""
Sell Engine - Configuration.

============================================================
PURPOSE
============================================================
All configuration for the sell bot.

CRITICAL CONSTRAINTS:
- No per-call retries; the polling cycle is the retry
- Credentials are passed explicitly, never read from shared state
- Sell budget is a hard cap on cumulative proceeds

============================================================
"""

import os
from dataclasses import dataclass, field
from typing import Any, Callable, List, Mapping, Optional

from core.exceptions import ConfigurationError

from .amount import Amount


# ============================================================
# EXCHANGE CONFIGURATION
# ============================================================

@dataclass
class ExchangeConfig:
    """Exchange endpoints and credential sources."""

    base_url: str = "https://bittrex.com/api/v1.1"
    """REST API root."""

    market_display_url: str = "https://bittrex.com/Market/Index?MarketName={}"
    """Page URL template for a market."""

    quote_currency: str = "BTC"
    """Currency the bot sells into; markets are '<quote>-<coin>'."""

    api_key_env: str = "BITTREX_API_KEY"
    """Environment variable holding the API key."""

    api_secret_env: str = "BITTREX_API_SECRET"
    """Environment variable holding the API secret."""

    @property
    def market_prefix(self) -> str:
        return f"{self.quote_currency}-"


@dataclass(frozen=True)
class ApiCredentials:
    """API key and secret used to sign private requests."""

    api_key: str = ""
    api_secret: str = field(default="", repr=False)

    @property
    def is_complete(self) -> bool:
        return bool(self.api_key) and bool(self.api_secret)

    @classmethod
    def from_env(
        cls,
        config: ExchangeConfig,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "ApiCredentials":
        env = os.environ if environ is None else environ
        return cls(
            api_key=env.get(config.api_key_env, ""),
            api_secret=env.get(config.api_secret_env, ""),
        )


# ============================================================
# TIMEOUT CONFIGURATION
# ============================================================

@dataclass
class TimeoutConfig:
    """HTTP timeouts; owned by the transport."""

    connection_timeout_seconds: float = 5.0
    """Connection timeout."""

    read_timeout_seconds: float = 30.0
    """Total timeout for one request."""


# ============================================================
# SCHEDULER CONFIGURATION
# ============================================================

@dataclass
class SchedulerConfig:
    """Polling loop configuration."""

    refresh_delay_seconds: float = 3.0
    """Idle gap between the end of one cycle and the start of the next."""


# ============================================================
# TRADING CONFIGURATION
# ============================================================

@dataclass
class TradingConfig:
    """Order sizing and the cumulative sell budget."""

    order_limit: Amount = field(default_factory=lambda: Amount.parse("0.0005"))
    """Order size in quote currency before deviation."""

    deviation_pct: int = 10
    """Order size is inflated by a random 0..deviation_pct-1 percent."""

    total_sell_limit: Amount = field(default_factory=lambda: Amount.parse("0.0005"))
    """Cumulative proceeds cap; trading stops once fills exhaust it."""

    log_capacity: int = 3000
    """Number of activity log lines kept for display."""


# ============================================================
# MAIN CONFIGURATION
# ============================================================

def _env_value(env: Mapping[str, str], key: str, convert: Callable[[str], Any]) -> Any:
    raw = env[key]
    try:
        return convert(raw)
    except ValueError as e:
        raise ConfigurationError(
            f"Invalid value for {key}",
            config_key=key,
            actual_value=raw,
            cause=e,
        )


@dataclass
class SellBotConfig:
    """Complete sell bot configuration."""

    exchange: ExchangeConfig = field(default_factory=ExchangeConfig)
    timeout: TimeoutConfig = field(default_factory=TimeoutConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    trading: TradingConfig = field(default_factory=TradingConfig)

    enabled: bool = True
    """Bot enabled flag; disabling tears the bot down."""

    def validate(self) -> List[str]:
        """
        Validate configuration.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []

        if self.scheduler.refresh_delay_seconds <= 0:
            errors.append("refresh_delay_seconds must be positive")

        if self.trading.order_limit <= 0:
            errors.append("order_limit must be positive")

        if self.trading.total_sell_limit < 0:
            errors.append("total_sell_limit must not be negative")

        if not 0 <= self.trading.deviation_pct <= 100:
            errors.append("deviation_pct must be between 0 and 100")

        if self.trading.log_capacity < 1:
            errors.append("log_capacity must be at least 1")

        if self.timeout.read_timeout_seconds <= 0:
            errors.append("read_timeout_seconds must be positive")

        return errors

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "SellBotConfig":
        """
        Build configuration from SELLBOT_* environment variables.

        Unset variables keep their defaults.

        Raises:
            ConfigurationError: If a variable holds a malformed value
        """
        env = os.environ if environ is None else environ
        config = cls()

        if "SELLBOT_BASE_URL" in env:
            config.exchange.base_url = env["SELLBOT_BASE_URL"].rstrip("/")
        if "SELLBOT_REFRESH_DELAY" in env:
            config.scheduler.refresh_delay_seconds = _env_value(env, "SELLBOT_REFRESH_DELAY", float)
        if "SELLBOT_ORDER_LIMIT" in env:
            config.trading.order_limit = _env_value(env, "SELLBOT_ORDER_LIMIT", Amount.parse)
        if "SELLBOT_DEVIATION_PCT" in env:
            config.trading.deviation_pct = _env_value(env, "SELLBOT_DEVIATION_PCT", int)
        if "SELLBOT_TOTAL_SELL_LIMIT" in env:
            config.trading.total_sell_limit = _env_value(env, "SELLBOT_TOTAL_SELL_LIMIT", Amount.parse)
        if "SELLBOT_ENABLED" in env:
            config.enabled = env["SELLBOT_ENABLED"].strip().lower() in ("1", "true", "yes", "on")

        return config


__all__ = [
    "ExchangeConfig",
    "ApiCredentials",
    "TimeoutConfig",
    "SchedulerConfig",
    "TradingConfig",
    "SellBotConfig",
]
