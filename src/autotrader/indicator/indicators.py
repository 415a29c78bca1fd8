"""Technical indicator calculations (pure numpy/pandas functions)."""

from __future__ import annotations

from typing import NamedTuple, Sequence

import numpy as np
import pandas as pd

from autotrader.errors import InsufficientDataError

RSI_PERIOD = 14
SMA_FAST = 20
SMA_SLOW = 50
EMA_FAST = 12
EMA_SLOW = 26
MACD_SIGNAL = 9
VOLATILITY_PERIOD = 20


class MACDSeries(NamedTuple):
    line: np.ndarray
    signal: np.ndarray
    histogram: np.ndarray


def _as_array(prices: Sequence[float] | np.ndarray | pd.Series) -> np.ndarray:
    return np.asarray(prices, dtype=float)


def _check_period(period: int) -> None:
    if period < 1:
        raise ValueError(f"period must be >= 1, got {period}")


def sma(prices: Sequence[float], period: int) -> np.ndarray:
    """Sliding-window mean; len(prices) - period + 1 values."""
    _check_period(period)
    values = _as_array(prices)
    if len(values) < period:
        raise InsufficientDataError(f"SMA({period})", period, len(values))
    return pd.Series(values).rolling(window=period).mean().to_numpy()[period - 1 :]


def ema(prices: Sequence[float], period: int) -> np.ndarray:
    """EMA seeded with the SMA of the first `period` values."""
    _check_period(period)
    values = _as_array(prices)
    if len(values) < period:
        raise InsufficientDataError(f"EMA({period})", period, len(values))

    multiplier = 2 / (period + 1)
    out = np.empty(len(values) - period + 1)
    out[0] = values[:period].mean()
    for i, price in enumerate(values[period:], start=1):
        out[i] = (price - out[i - 1]) * multiplier + out[i - 1]
    return out


def rsi(prices: Sequence[float], period: int = RSI_PERIOD) -> np.ndarray:
    """
    RSI from simple trailing means of gains and losses.

    Returns len(prices) - period values, each in [0, 100]. A window with no
    losses reads 100.
    """
    _check_period(period)
    values = _as_array(prices)
    if len(values) < period + 1:
        raise InsufficientDataError(f"RSI({period})", period + 1, len(values))

    deltas = np.diff(values)
    gains = pd.Series(np.clip(deltas, 0, None)).rolling(window=period).mean().to_numpy()
    losses = pd.Series(np.clip(-deltas, 0, None)).rolling(window=period).mean().to_numpy()
    avg_gain = gains[period - 1 :]
    avg_loss = losses[period - 1 :]

    out = np.full(len(avg_gain), 100.0)
    has_loss = avg_loss > 0
    rs = avg_gain[has_loss] / avg_loss[has_loss]
    out[has_loss] = 100 - 100 / (1 + rs)
    return out


def macd(
    prices: Sequence[float],
    fast: int = EMA_FAST,
    slow: int = EMA_SLOW,
    signal: int = MACD_SIGNAL,
) -> MACDSeries:
    """
    MACD line, signal line and histogram.

    The line is the fast EMA minus the slow EMA over their common tail, so
    line[-1] pairs the last fast and slow readings. histogram[i] is
    line[i + len(line) - len(signal)] - signal[i].
    """
    if fast >= slow:
        raise ValueError(f"fast period ({fast}) must be below slow period ({slow})")
    values = _as_array(prices)
    required = slow + signal - 1
    if len(values) < required:
        raise InsufficientDataError(f"MACD({fast},{slow},{signal})", required, len(values))

    slow_ema = ema(values, slow)
    fast_ema = ema(values, fast)[-len(slow_ema) :]
    line = fast_ema - slow_ema
    signal_line = ema(line, signal)
    offset = len(line) - len(signal_line)
    histogram = line[offset:] - signal_line
    return MACDSeries(line=line, signal=signal_line, histogram=histogram)


def volatility(prices: Sequence[float], period: int = VOLATILITY_PERIOD) -> float:
    """Population standard deviation of the trailing `period` values."""
    _check_period(period)
    values = _as_array(prices)
    if len(values) < period:
        raise InsufficientDataError(f"Volatility({period})", period, len(values))
    return float(np.std(values[-period:], ddof=0))
