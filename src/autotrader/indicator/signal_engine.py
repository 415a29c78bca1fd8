"""Indicator -> signal -> confidence pipeline."""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

import structlog

from autotrader.errors import InsufficientDataError
from autotrader.indicator import indicators
from autotrader.models.analysis import AnalysisResult, Signal, SignalSet
from autotrader.models.indicator_set import IndicatorFlags, IndicatorSet, MACDValues

if TYPE_CHECKING:
    from autotrader.models.candle import Candle
    from autotrader.models.ticker import TickerSnapshot

logger = structlog.get_logger()

RSI_OVERSOLD = 30.0
RSI_OVERBOUGHT = 70.0
RSI_EXTREME_OVERSOLD = 25.0
RSI_EXTREME_OVERBOUGHT = 75.0
MIN_OVERALL_SCORE = 3
VOLUME_LOOKBACK = 10


class SignalEngine:
    """
    Turns a ticker and candle history into an AnalysisResult.

    | Component      | Signal rule                              | Confidence        |
    |----------------|------------------------------------------|-------------------|
    | RSI(14)        | BUY < 30, SELL > 70                      | 35 extreme / 25   |
    | MACD(12,26,9)  | line vs signal, histogram sign agrees    | 25                |
    | SMA(20, 50)    | price > SMA20 > SMA50 (or reversed)      | 25 if slope > 2%  |
    | Volume         | last vs 10-period average                | 15 (>1.5x) / 10   |
    | Momentum       | 24h change                               | 10 (>3%) / 5      |
    | EMA(12, 26)    | ordering confirms overall direction      | 10                |
    """

    def analyze(
        self,
        ticker: TickerSnapshot,
        candles: Sequence[Candle],
        flags: IndicatorFlags,
    ) -> AnalysisResult:
        closes = [c.close for c in candles]
        volumes = [c.volume for c in candles]
        ind = self.build_indicators(ticker.price, closes, flags)
        signals = self.generate_signals(ticker, ind, flags)
        confidence, reasons = self.score_confidence(ticker, ind, signals, flags, volumes)
        return AnalysisResult(
            symbol=ticker.symbol,
            ticker=ticker,
            indicators=ind,
            signals=signals,
            confidence=confidence,
            reasons=reasons,
        )

    def build_indicators(
        self, price: float, closes: Sequence[float], flags: IndicatorFlags
    ) -> IndicatorSet:
        """Compute enabled families; anything short of data keeps its placeholder."""
        ind = IndicatorSet.placeholder(price)

        if flags.use_rsi:
            try:
                ind.rsi = float(indicators.rsi(closes)[-1])
                ind.has_rsi = True
            except InsufficientDataError as e:
                logger.debug("indicator_skipped", indicator="rsi", reason=str(e))

        if flags.use_sma:
            try:
                ind.sma20 = float(indicators.sma(closes, indicators.SMA_FAST)[-1])
                ind.sma50 = float(indicators.sma(closes, indicators.SMA_SLOW)[-1])
                ind.has_sma = True
            except InsufficientDataError as e:
                ind.sma20 = ind.sma50 = price
                logger.debug("indicator_skipped", indicator="sma", reason=str(e))

        if flags.use_macd:
            try:
                ind.ema12 = float(indicators.ema(closes, indicators.EMA_FAST)[-1])
                ind.ema26 = float(indicators.ema(closes, indicators.EMA_SLOW)[-1])
                ind.has_ema = True
            except InsufficientDataError as e:
                ind.ema12 = ind.ema26 = price
                logger.debug("indicator_skipped", indicator="ema", reason=str(e))
            try:
                series = indicators.macd(closes)
                ind.macd = MACDValues(
                    line=float(series.line[-1]),
                    signal=float(series.signal[-1]),
                    histogram=float(series.histogram[-1]),
                )
                ind.has_macd = True
            except InsufficientDataError as e:
                logger.debug("indicator_skipped", indicator="macd", reason=str(e))

        return ind

    def generate_signals(
        self, ticker: TickerSnapshot, ind: IndicatorSet, flags: IndicatorFlags
    ) -> SignalSet:
        signals = SignalSet()

        if flags.use_rsi and ind.has_rsi:
            if ind.rsi < RSI_OVERSOLD:
                signals.rsi = Signal.BUY
            elif ind.rsi > RSI_OVERBOUGHT:
                signals.rsi = Signal.SELL

        if flags.use_macd and ind.has_macd:
            m = ind.macd
            if m.line > m.signal and m.histogram > 0:
                signals.macd = Signal.BUY
            elif m.line < m.signal and m.histogram < 0:
                signals.macd = Signal.SELL

        if flags.use_sma and ind.has_sma:
            if ticker.price > ind.sma20 > ind.sma50:
                signals.sma = Signal.BUY
            elif ticker.price < ind.sma20 < ind.sma50:
                signals.sma = Signal.SELL

        # Weighted vote: extreme RSI counts for more than a bare threshold cross
        buy_score = 0
        sell_score = 0
        if signals.rsi == Signal.BUY:
            buy_score += 3 if ind.rsi < RSI_EXTREME_OVERSOLD else 2
        elif signals.rsi == Signal.SELL:
            sell_score += 3 if ind.rsi > RSI_EXTREME_OVERBOUGHT else 2
        if signals.macd == Signal.BUY:
            buy_score += 2
        elif signals.macd == Signal.SELL:
            sell_score += 2
        if signals.sma == Signal.BUY:
            buy_score += 2
        elif signals.sma == Signal.SELL:
            sell_score += 2

        if buy_score > sell_score and buy_score >= MIN_OVERALL_SCORE:
            signals.overall = Signal.BUY
        elif sell_score > buy_score and sell_score >= MIN_OVERALL_SCORE:
            signals.overall = Signal.SELL

        return signals

    def score_confidence(
        self,
        ticker: TickerSnapshot,
        ind: IndicatorSet,
        signals: SignalSet,
        flags: IndicatorFlags,
        volumes: Sequence[float],
    ) -> tuple[int, list[str]]:
        confidence = 0.0
        reasons: list[str] = []

        # RSI
        if signals.rsi == Signal.BUY:
            if ind.rsi < RSI_EXTREME_OVERSOLD:
                confidence += 35
                reasons.append(f"RSI extremely oversold ({ind.rsi:.1f})")
            else:
                confidence += 25
                reasons.append(f"RSI oversold ({ind.rsi:.1f})")
        elif signals.rsi == Signal.SELL:
            if ind.rsi > RSI_EXTREME_OVERBOUGHT:
                confidence += 35
                reasons.append(f"RSI extremely overbought ({ind.rsi:.1f})")
            else:
                confidence += 25
                reasons.append(f"RSI overbought ({ind.rsi:.1f})")

        # MACD
        if signals.macd == Signal.BUY:
            confidence += 25
            reasons.append("MACD bullish crossover")
        elif signals.macd == Signal.SELL:
            confidence += 25
            reasons.append("MACD bearish crossover")

        # SMA trend
        if signals.sma == Signal.BUY:
            slope = (ind.sma20 - ind.sma50) / ind.sma50 * 100 if ind.sma50 else 0.0
            if slope > 2:
                confidence += 25
                reasons.append(f"Strong uptrend, SMA20 {slope:.1f}% above SMA50")
            else:
                confidence += 15
                reasons.append("Uptrend, price above SMA20")
        elif signals.sma == Signal.SELL:
            slope = (ind.sma50 - ind.sma20) / ind.sma20 * 100 if ind.sma20 else 0.0
            if slope > 2:
                confidence += 25
                reasons.append(f"Strong downtrend, SMA20 {slope:.1f}% below SMA50")
            else:
                confidence += 15
                reasons.append("Downtrend, price below SMA20")

        # Volume spike
        if volumes:
            avg_volume = sum(volumes[-VOLUME_LOOKBACK:]) / VOLUME_LOOKBACK
            current = volumes[-1]
            if avg_volume > 0 and current > avg_volume * 1.5:
                confidence += 15
                reasons.append(f"Volume spike ({(current / avg_volume - 1) * 100:.0f}% above average)")
            elif avg_volume > 0 and current > avg_volume * 1.2:
                confidence += 10
                reasons.append("Rising volume")

        # Momentum
        change = ticker.price_change_percent
        if abs(change) > 3:
            confidence += 10
            reasons.append(f"Strong momentum ({change:+.2f}%)")
        elif abs(change) > 1.5:
            confidence += 5
            reasons.append(f"Moderate momentum ({change:+.2f}%)")

        # EMA confirmation
        if flags.use_macd and ind.has_ema:
            if ind.ema12 > ind.ema26 and signals.overall == Signal.BUY:
                confidence += 10
                reasons.append("EMA12 above EMA26 confirms uptrend")
            elif ind.ema12 < ind.ema26 and signals.overall == Signal.SELL:
                confidence += 10
                reasons.append("EMA12 below EMA26 confirms downtrend")

        return int(min(confidence, 100)), reasons
