"""BotConfig, BotStats and lifecycle result Pydantic models."""

from __future__ import annotations

import enum
from datetime import date, datetime, timezone

from pydantic import BaseModel, Field, ValidationError

from autotrader.errors import ConfigurationError
from autotrader.models.indicator_set import IndicatorFlags


class BotState(enum.Enum):
    NOT_RUNNING = "not_running"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


class RiskManagement(BaseModel):
    max_daily_loss: float = Field(default=10.0, ge=0)  # % of initial capital
    max_open_trades: int = Field(default=3, ge=1)
    stop_loss_percentage: float = Field(default=5.0, gt=0)


class BotConfig(BaseModel):
    initial_capital: float = Field(default=20.0, gt=0)
    trade_percentage: float = Field(default=10.0, gt=0, le=100)
    buy_threshold: float = -2.0
    sell_threshold: float = Field(default=3.0, gt=0)
    telegram_enabled: bool = False
    risk_management: RiskManagement = RiskManagement()
    trading_pairs: list[str] = []
    technical_indicators: IndicatorFlags = IndicatorFlags()

    @classmethod
    def from_payload(cls, payload: dict) -> BotConfig:
        """Validate a raw control-surface payload, raising ConfigurationError."""
        try:
            return cls.model_validate(payload)
        except ValidationError as e:
            fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
            raise ConfigurationError(f"Invalid bot configuration: {fields}") from e

    @property
    def daily_loss_limit(self) -> float:
        return self.initial_capital * self.risk_management.max_daily_loss / 100


class BotStats(BaseModel):
    total_capital: float = 20.0
    total_profit: float = 0.0
    is_running: bool = False
    trades_count: int = 0
    win_rate: float = 0.0
    max_drawdown: float = 0.0
    daily_loss: float = 0.0
    last_reset_date: date | None = None


class StartResult(BaseModel):
    success: bool = True
    message: str = ""
    usdt_balance: float = 0.0
    pairs: list[str] = []


class StopResult(BaseModel):
    success: bool = True
    message: str = ""
    was_running: bool = False
    forced: bool = False


class LogEntry(BaseModel):
    level: str  # INFO, WARNING, ERROR, DEBUG
    message: str
    details: dict | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class Suggestion(BaseModel):
    symbol: str
    signal: str
    confidence: int
    price: float
    change: float
    reason: str


class BotStatus(BaseModel):
    state: str
    is_running: bool
    stats: BotStats
    pairs: list[str] = []
    open_trades: int = 0
    last_analysis_at: datetime | None = None
