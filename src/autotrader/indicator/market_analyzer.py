"""Fetch ticker + candles per instrument and run the signal engine."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Iterable

import structlog

from autotrader.indicator.signal_engine import SignalEngine

if TYPE_CHECKING:
    from autotrader.interfaces import ExchangeClient
    from autotrader.models.analysis import AnalysisResult
    from autotrader.models.indicator_set import IndicatorFlags

logger = structlog.get_logger()


class MarketAnalyzer:
    def __init__(
        self,
        exchange: ExchangeClient,
        engine: SignalEngine | None = None,
        candle_interval: str = "5m",
        candle_limit: int = 100,
        timeout: float | None = 20.0,
    ) -> None:
        self.exchange = exchange
        self.engine = engine or SignalEngine()
        self.candle_interval = candle_interval
        self.candle_limit = candle_limit
        self.timeout = timeout

    async def analyze_symbol(self, symbol: str, flags: IndicatorFlags) -> AnalysisResult:
        """Single-instrument analysis. Fetch errors propagate to the caller."""
        ticker = await self.exchange.get_ticker(symbol)
        candles = await self.exchange.get_candles(symbol, self.candle_interval, self.candle_limit)
        return self.engine.analyze(ticker, candles, flags)

    async def analyze_many(
        self, symbols: Iterable[str], flags: IndicatorFlags
    ) -> dict[str, AnalysisResult]:
        """Analyze each symbol once; failures skip that symbol for this pass."""
        results: dict[str, AnalysisResult] = {}
        for symbol in symbols:
            try:
                result = await asyncio.wait_for(self.analyze_symbol(symbol, flags), self.timeout)
            except Exception as e:
                logger.warning("analysis_failed", symbol=symbol, error=str(e))
                continue
            results[symbol] = result
            logger.debug(
                "analysis_complete",
                symbol=symbol,
                signal=result.signals.overall.value,
                confidence=result.confidence,
                reasons=result.top_reasons(),
            )
        return results
