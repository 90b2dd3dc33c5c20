"""
Configuration schema using Pydantic for validation.
"""

import os
import re
from datetime import time, timedelta
from typing import Dict, List, Literal, Mapping, Optional

from pydantic import BaseModel, Field, field_validator

_DURATION_RE = re.compile(r'^\s*(\d+(?:\.\d+)?)\s*([smh])\s*$')
_DURATION_UNITS = {'s': 1, 'm': 60, 'h': 3600}


def parse_duration(value: str) -> timedelta:
    """
    Parse a short duration string such as "15m", "1h" or "90s".

    Args:
        value: Duration with an s/m/h suffix

    Returns:
        timedelta for the duration

    Raises:
        ValueError: If the string is not a positive duration
    """
    match = _DURATION_RE.match(value or "")
    if not match:
        raise ValueError(f"Invalid duration: {value!r} (expected e.g. '15m', '1h', '90s')")

    seconds = float(match.group(1)) * _DURATION_UNITS[match.group(2)]
    if seconds <= 0:
        raise ValueError(f"Duration must be positive: {value!r}")
    return timedelta(seconds=seconds)


def parse_clock(value: str) -> time:
    """Parse a HH:MM string into a time"""
    hour, minute = map(int, value.split(":"))
    return time(hour=hour, minute=minute)


class BrokerConfig(BaseModel):
    """
    Brokerage connection settings.

    Credentials are read from the environment variables named here,
    never stored in the config file itself.
    """
    api_key_env: str = "ALPACA_API_KEY"
    secret_key_env: str = "ALPACA_SECRET_KEY"
    sandbox: bool = Field(default=True, description="Paper/sandbox account (no real capital)")
    base_url: Optional[str] = None
    instrument_cache_size: int = Field(default=512, gt=0)
    instrument_cache_ttl_seconds: int = Field(default=6 * 3600, gt=0)
    protective_orders_in_sandbox: bool = Field(
        default=False,
        description="Place stop-loss/take-profit orders when running in sandbox mode"
    )
    fill_timeout_seconds: float = Field(default=10.0, ge=0)


class LLMConfig(BaseModel):
    provider: Literal["deepseek", "openai"] = "deepseek"
    model: str = "deepseek-reasoner"
    api_key_env: str = "DEEPSEEK_API_KEY"
    timeout_seconds: float = Field(default=120.0, gt=0)
    temperature: float = 0.3
    max_tokens: Optional[int] = None


class TradingConfig(BaseModel):
    """
    Trading cycle and position sizing parameters.
    """
    interval: str = "15m"
    max_position_value: float = Field(default=10000.0, gt=0, description="Max capital per position")
    min_confidence: int = Field(default=70, ge=0, le=100)
    default_stop_loss_pct: float = Field(default=3.0, gt=0, lt=100)
    default_take_profit_pct: float = Field(default=5.0, gt=0)
    candle_concurrency: int = 10
    universe_size: int = Field(default=50, gt=0)

    @field_validator('interval')
    @classmethod
    def validate_interval(cls, v: str) -> str:
        parse_duration(v)
        return v

    def interval_timedelta(self) -> timedelta:
        return parse_duration(self.interval)


class SessionConfig(BaseModel):
    """
    Exchange main trading session, expressed in the exchange's local time.
    """
    timezone: str = "Europe/Moscow"
    open: str = "10:00"
    close: str = "18:50"

    @field_validator('open', 'close')
    @classmethod
    def validate_clock(cls, v: str) -> str:
        try:
            parse_clock(v)
        except ValueError:
            raise ValueError(f"Invalid session time {v!r} (expected HH:MM)")
        return v

    @field_validator('close')
    @classmethod
    def validate_close_after_open(cls, v: str, info) -> str:
        if 'open' in info.data and parse_clock(v) <= parse_clock(info.data['open']):
            raise ValueError(f"Session close ({v}) must be after open ({info.data['open']})")
        return v


class TelegramConfig(BaseModel):
    enabled: bool = False
    bot_token: str = ""
    chat_id: str = ""

    @field_validator('chat_id', mode='before')
    @classmethod
    def coerce_chat_id(cls, v):
        return str(v) if v is not None else ""


class NewsConfig(BaseModel):
    window_hours: int = Field(default=24, gt=0)
    aliases: Dict[str, List[str]] = Field(default_factory=dict, description="Ticker -> company names")


class Config(BaseModel):
    """Main configuration for AutoTrader-LLM"""

    broker: BrokerConfig = Field(default_factory=BrokerConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    trading: TradingConfig = Field(default_factory=TradingConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    telegram: TelegramConfig = Field(default_factory=TelegramConfig)
    news: NewsConfig = Field(default_factory=NewsConfig)

    # Storage
    database_path: str = "data/trading.db"
    log_path: str = "logs/trade_log.jsonl"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    @field_validator('log_level', mode='before')
    @classmethod
    def upper_log_level(cls, v):
        return v.upper() if isinstance(v, str) else v

    def validate_credentials(self, environ: Optional[Mapping[str, str]] = None) -> None:
        """
        Check that every secret the bot needs at runtime is present.

        Args:
            environ: Environment mapping (defaults to os.environ)

        Raises:
            EnvironmentError: Listing every missing variable or setting
        """
        environ = os.environ if environ is None else environ
        missing = [
            name for name in (self.broker.api_key_env, self.broker.secret_key_env, self.llm.api_key_env)
            if not environ.get(name)
        ]
        if self.telegram.enabled:
            if not self.telegram.bot_token:
                missing.append("telegram.bot_token")
            if not self.telegram.chat_id:
                missing.append("telegram.chat_id")

        if missing:
            raise EnvironmentError(f"Missing required settings: {', '.join(missing)}")
