"""Dynamic instrument selection: filter, score and rank the ticker universe."""

from __future__ import annotations

import asyncio
import time
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable

import structlog
from tenacity import AsyncRetrying, stop_after_attempt, wait_fixed

from autotrader.errors import ExchangeError, InsufficientDataError
from autotrader.indicator import indicators
from autotrader.models.selection import PairAnalysis, SelectionCriteria, SelectionStats

if TYPE_CHECKING:
    from tenacity import RetryCallState

    from autotrader.interfaces import ExchangeClient
    from autotrader.models.ticker import TickerSnapshot

logger = structlog.get_logger()

QUOTE_ASSET = "USDT"
LEVERAGED_PATTERNS = ("UP", "DOWN", "BULL", "BEAR", "3L", "3S", "5L", "5S")
FIAT_PREFIXES = ("AUD", "EUR", "GBP")
POPULAR_ASSETS = {"BTC", "ETH", "BNB", "ADA", "SOL", "DOT", "LINK", "AVAX", "MATIC", "ATOM"}
MAX_SYMBOL_LENGTH = 12
MIN_BASE_VOLUME = 1000.0
REFERENCE_VOLUME = 10_000_000.0
TIGHT_SPREAD_PCT = 0.1
TECH_CANDLE_LIMIT = 50
TECH_MIN_CANDLES = 20
TICKER_ATTEMPTS = 3


class PairSelector:
    """
    Ranks USDT pairs and caches the top-N list for `refresh_seconds`.

    | Component     | Points                                      |
    |---------------|---------------------------------------------|
    | Volume        | min(30, quote_volume / 10M * 30)            |
    | Volatility    | 25 - |chg - 4| * 3 within 2..8%, 10 above 8% |
    | Momentum      | min(20, |chg| * 2) when |chg| > 1%           |
    | Technical     | RSI 15/10, above SMA20 10, trend 8           |
    | Liquidity     | 15 when spread < 0.1%                        |
    | Popularity    | 10 for a popular base asset                  |

    Volume, liquidity and volatility limits are applied again after scoring
    as a hard gate.
    """

    def __init__(
        self,
        exchange: ExchangeClient,
        criteria: SelectionCriteria | None = None,
        refresh_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
        retry_delay: float = 5.0,
        candle_interval: str = "5m",
    ) -> None:
        self.exchange = exchange
        self.criteria = criteria or SelectionCriteria()
        self.refresh_seconds = refresh_seconds
        self.clock = clock
        self.retry_delay = retry_delay
        self.candle_interval = candle_interval
        self._selection: list[str] = []
        self._last_update: float | None = None
        self._last_update_at: datetime | None = None
        self._active = True
        self._lock = asyncio.Lock()

    @property
    def current_selection(self) -> list[str]:
        return self._selection

    def start(self) -> None:
        self._active = True
        logger.info("pair_selector_started")

    def stop(self) -> None:
        """Abort any in-flight pass; the cached selection is kept."""
        self._active = False
        logger.info("pair_selector_stopped")

    def is_stale(self) -> bool:
        if self._last_update is None:
            return True
        return self.clock() - self._last_update >= self.refresh_seconds

    async def select(self) -> list[str]:
        """Return the cached ranking while fresh, otherwise recompute it."""
        if not self.is_stale():
            return self._selection
        async with self._lock:
            if not self.is_stale():
                return self._selection
            return await self._run_pass()

    async def force_refresh(self) -> list[str]:
        self._last_update = None
        return await self.select()

    def get_selection_stats(self) -> SelectionStats:
        if self._last_update is None:
            return SelectionStats(pair_count=len(self._selection))
        remaining = self.refresh_seconds - (self.clock() - self._last_update)
        return SelectionStats(
            last_update=self._last_update_at,
            pair_count=len(self._selection),
            next_update_seconds=max(0.0, remaining),
        )

    async def _run_pass(self) -> list[str]:
        started = self.clock()
        try:
            tickers = await self._fetch_tickers()
        except Exception as e:
            logger.error("pair_selection_fetch_failed", attempts=TICKER_ATTEMPTS, error=str(e))
            return []

        candidates = self.prefilter(tickers)
        logger.info("pair_prefilter_done", universe=len(tickers), candidates=len(candidates))

        analyses: list[PairAnalysis] = []
        for ticker in candidates:
            if not self._active:
                logger.info("pair_selection_aborted", scored=len(analyses))
                return self._selection
            try:
                analysis = await self.score_pair(ticker)
            except Exception as e:
                logger.warning("pair_scoring_failed", symbol=ticker.symbol, error=str(e))
                continue
            if self.passes_gate(analysis):
                analyses.append(analysis)
            else:
                logger.debug(
                    "pair_rejected",
                    symbol=analysis.symbol,
                    volume=analysis.volume,
                    liquidity=analysis.liquidity,
                    volatility=analysis.volatility,
                )

        analyses.sort(key=lambda a: a.score, reverse=True)
        top = analyses[: self.criteria.top_pairs_count]
        self._selection = [a.symbol for a in top]
        self._last_update = started
        self._last_update_at = datetime.now(timezone.utc)

        if not self._selection:
            logger.warning("no_pairs_selected", criteria=self.criteria.model_dump())
        else:
            logger.info(
                "pairs_selected",
                pairs=[{"symbol": a.symbol, "score": a.score, "reasons": a.reasons[:2]} for a in top],
            )
        return self._selection

    async def _fetch_tickers(self) -> list[TickerSnapshot]:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(TICKER_ATTEMPTS),
            wait=wait_fixed(self.retry_delay),
            before_sleep=_log_retry,
            reraise=True,
        ):
            with attempt:
                tickers = await self.exchange.get_all_tickers()
                if not tickers:
                    raise ExchangeError("Exchange returned an empty ticker universe")
        return tickers

    def prefilter(self, tickers: list[TickerSnapshot]) -> list[TickerSnapshot]:
        excluded = set(self.criteria.exclude_symbols)
        return [
            t
            for t in tickers
            if t.symbol.endswith(QUOTE_ASSET)
            and t.symbol not in excluded
            and not any(p in t.symbol for p in LEVERAGED_PATTERNS)
            and not t.symbol.startswith(FIAT_PREFIXES)
            and len(t.symbol) <= MAX_SYMBOL_LENGTH
            and t.price > 0
            and t.volume > MIN_BASE_VOLUME
        ]

    def passes_gate(self, analysis: PairAnalysis) -> bool:
        return (
            analysis.volume >= self.criteria.min_volume
            and analysis.liquidity >= self.criteria.min_liquidity
            and analysis.volatility <= self.criteria.max_volatility
        )

    async def score_pair(self, ticker: TickerSnapshot) -> PairAnalysis:
        price = ticker.price
        change = ticker.price_change_percent
        abs_change = abs(change)
        volume = ticker.quote_volume
        score = 0.0
        technical_score = 0.0
        reasons: list[str] = []

        volume_score = min(30.0, volume / REFERENCE_VOLUME * 30)
        score += volume_score
        if volume_score > 20:
            reasons.append(f"High volume ({volume / 1_000_000:.1f}M {QUOTE_ASSET})")

        if 2 <= abs_change <= 8:
            volatility_score = 25 - abs(abs_change - 4) * 3
            score += volatility_score
            technical_score += volatility_score
            reasons.append(f"Optimal volatility ({abs_change:.2f}%)")
        elif abs_change > 8:
            score += 10
            reasons.append(f"High volatility ({abs_change:.2f}%)")

        if abs_change > 1:
            momentum_score = min(20.0, abs_change * 2)
            score += momentum_score
            technical_score += momentum_score
            reasons.append(f"Momentum ({change:+.2f}%)")

        try:
            candles = await self.exchange.get_candles(
                ticker.symbol, self.candle_interval, TECH_CANDLE_LIMIT
            )
        except Exception as e:
            logger.debug("pair_technical_skipped", symbol=ticker.symbol, error=str(e))
        else:
            if len(candles) >= TECH_MIN_CANDLES:
                tech, tech_reasons = self.quick_technical_score([c.close for c in candles], price)
                score += tech
                technical_score += tech
                reasons.extend(tech_reasons)

        spread_pct = ticker.spread_percent
        liquidity = volume / (spread_pct + 0.0001)
        if spread_pct < TIGHT_SPREAD_PCT:
            score += 15
            reasons.append(f"Tight spread ({spread_pct:.3f}%)")

        if ticker.base_asset in POPULAR_ASSETS:
            score += 10
            reasons.append(f"Popular asset ({ticker.base_asset})")

        return PairAnalysis(
            symbol=ticker.symbol,
            score=round(score),
            volume=volume,
            price_change=change,
            volatility=abs_change,
            liquidity=liquidity,
            technical_score=technical_score,
            reasons=reasons,
        )

    @staticmethod
    def quick_technical_score(closes: list[float], price: float) -> tuple[float, list[str]]:
        score = 0.0
        reasons: list[str] = []

        try:
            last_rsi = float(indicators.rsi(closes)[-1])
        except InsufficientDataError:
            last_rsi = None
        if last_rsi is not None:
            if last_rsi < 35:
                score += 15
                reasons.append(f"RSI oversold ({last_rsi:.1f})")
            elif last_rsi > 65:
                score += 10
                reasons.append(f"RSI overbought ({last_rsi:.1f})")

        if len(closes) >= 20 and price > sum(closes[-20:]) / 20:
            score += 10
            reasons.append("Price above SMA20")

        if len(closes) >= 10:
            trend = closes[-1] - closes[-10]
            if abs(trend) > price * 0.02:
                score += 8
                reasons.append(f"Strong trend ({'bullish' if trend > 0 else 'bearish'})")

        return score, reasons


def _log_retry(retry_state: RetryCallState) -> None:
    logger.warning(
        "ticker_fetch_retry",
        attempt=retry_state.attempt_number,
        error=str(retry_state.outcome.exception()) if retry_state.outcome else None,
    )
