"""IndicatorSet (RSI, SMA, EMA, MACD) Pydantic models."""

from pydantic import BaseModel


class MACDValues(BaseModel):
    line: float = 0.0
    signal: float = 0.0
    histogram: float = 0.0


class IndicatorFlags(BaseModel):
    """Indicator families enabled by the bot configuration."""

    use_rsi: bool = True
    use_macd: bool = True
    use_sma: bool = True


class IndicatorSet(BaseModel):
    """
    Latest indicator readings for one instrument.

    Values default to neutral placeholders (RSI 50, averages equal to the
    price, MACD zeros). The has_* flags mark which families hold a real
    computed value; consumers must not score a placeholder.
    """

    rsi: float = 50.0
    sma20: float = 0.0
    sma50: float = 0.0
    ema12: float = 0.0
    ema26: float = 0.0
    macd: MACDValues = MACDValues()
    has_rsi: bool = False
    has_sma: bool = False
    has_ema: bool = False
    has_macd: bool = False

    @classmethod
    def placeholder(cls, price: float) -> "IndicatorSet":
        return cls(sma20=price, sma50=price, ema12=price, ema26=price)
