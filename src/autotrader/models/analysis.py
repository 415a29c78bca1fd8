"""Signal, SignalSet, AnalysisResult Pydantic models."""

import enum
from datetime import datetime, timezone

from pydantic import BaseModel, Field

from autotrader.models.indicator_set import IndicatorSet
from autotrader.models.ticker import TickerSnapshot


class Signal(str, enum.Enum):
    BUY = "BUY"
    SELL = "SELL"
    NEUTRAL = "NEUTRAL"


class SignalSet(BaseModel):
    rsi: Signal = Signal.NEUTRAL
    macd: Signal = Signal.NEUTRAL
    sma: Signal = Signal.NEUTRAL
    overall: Signal = Signal.NEUTRAL

    def count(self, signal: Signal) -> int:
        """Number of per-indicator signals (overall excluded) equal to signal."""
        return sum(1 for s in (self.rsi, self.macd, self.sma) if s == signal)


class AnalysisResult(BaseModel):
    symbol: str
    ticker: TickerSnapshot
    indicators: IndicatorSet
    signals: SignalSet
    confidence: int = 0
    reasons: list[str] = []
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def price(self) -> float:
        return self.ticker.price

    def top_reasons(self, n: int = 3) -> list[str]:
        return self.reasons[:n]
