"""Buy eligibility gate and prioritized sell rules."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING

import structlog
from pydantic import BaseModel

from autotrader.models.analysis import Signal

if TYPE_CHECKING:
    from autotrader.models.analysis import AnalysisResult
    from autotrader.models.bot import BotConfig
    from autotrader.models.trade import TradeRecord

logger = structlog.get_logger()

STRONG_CONFIDENCE = 75
MEDIUM_CONFIDENCE = 60
MEDIUM_RSI_CEILING = 35.0
MIN_VOLUME = 1_000_000.0
MIN_AGREEING_SIGNALS = 2
MIN_CAPITAL = 50.0
MAX_PRICE_CHANGE = 10.0
STAGNANT_HOURS = 24.0


class PolicyCheck(BaseModel):
    passed: bool
    rule: str
    reason: str


class BuyDecision(BaseModel):
    approved: bool
    checks: list[PolicyCheck] = []

    @property
    def failures(self) -> list[PolicyCheck]:
        return [c for c in self.checks if not c.passed]


class SellDecision(BaseModel):
    should_sell: bool
    rule: str = ""
    reason: str = ""
    profit_percent: float = 0.0


class BuyGate:
    """
    Every check must pass before a position is opened:
    | Rule              | Threshold                                           |
    |-------------------|-----------------------------------------------------|
    | signal_strength   | BUY at >= 75, or BUY at >= 60 with RSI < 35         |
    | volume            | quote volume >= 1M                                  |
    | signal_agreement  | >= 2 of RSI/MACD/SMA say BUY                        |
    | capital           | total capital > 50                                  |
    | price_stability   | |24h change| < 10%                                  |
    | open_positions    | open trades < max_open_trades                       |
    | symbol_position   | no open trade on the instrument                     |
    """

    def evaluate(
        self,
        analysis: AnalysisResult,
        capital: float,
        open_count: int,
        symbol_open_count: int,
        max_open_trades: int,
    ) -> BuyDecision:
        checks = [
            self._check_signal_strength(analysis),
            self._check_volume(analysis),
            self._check_signal_agreement(analysis),
            self._check_capital(capital),
            self._check_price_stability(analysis),
            self._check_open_positions(open_count, max_open_trades),
            self._check_symbol_position(symbol_open_count),
        ]
        return BuyDecision(approved=all(c.passed for c in checks), checks=checks)

    def _check_signal_strength(self, analysis: AnalysisResult) -> PolicyCheck:
        if analysis.signals.overall != Signal.BUY:
            return PolicyCheck(
                passed=False,
                rule="signal_strength",
                reason=f"Overall signal {analysis.signals.overall.value}",
            )
        if analysis.confidence >= STRONG_CONFIDENCE:
            return PolicyCheck(passed=True, rule="signal_strength", reason="Strong BUY")
        ind = analysis.indicators
        if (
            analysis.confidence >= MEDIUM_CONFIDENCE
            and ind.has_rsi
            and ind.rsi < MEDIUM_RSI_CEILING
        ):
            return PolicyCheck(passed=True, rule="signal_strength", reason="Medium BUY, RSI oversold")
        return PolicyCheck(
            passed=False,
            rule="signal_strength",
            reason=f"Confidence {analysis.confidence} too low",
        )

    def _check_volume(self, analysis: AnalysisResult) -> PolicyCheck:
        volume = analysis.ticker.quote_volume
        if volume < MIN_VOLUME:
            return PolicyCheck(
                passed=False, rule="volume", reason=f"Volume {volume:,.0f} < {MIN_VOLUME:,.0f}"
            )
        return PolicyCheck(passed=True, rule="volume", reason="OK")

    def _check_signal_agreement(self, analysis: AnalysisResult) -> PolicyCheck:
        agreeing = analysis.signals.count(Signal.BUY)
        if agreeing < MIN_AGREEING_SIGNALS:
            return PolicyCheck(
                passed=False,
                rule="signal_agreement",
                reason=f"{agreeing} indicator(s) agree on BUY",
            )
        return PolicyCheck(passed=True, rule="signal_agreement", reason=f"{agreeing} agree")

    def _check_capital(self, capital: float) -> PolicyCheck:
        if capital <= MIN_CAPITAL:
            return PolicyCheck(
                passed=False, rule="capital", reason=f"Capital {capital:.2f} <= {MIN_CAPITAL:.2f}"
            )
        return PolicyCheck(passed=True, rule="capital", reason="OK")

    def _check_price_stability(self, analysis: AnalysisResult) -> PolicyCheck:
        change = abs(analysis.ticker.price_change_percent)
        if change >= MAX_PRICE_CHANGE:
            return PolicyCheck(
                passed=False, rule="price_stability", reason=f"24h change {change:.2f}% too volatile"
            )
        return PolicyCheck(passed=True, rule="price_stability", reason="OK")

    def _check_open_positions(self, open_count: int, max_open_trades: int) -> PolicyCheck:
        if open_count >= max_open_trades:
            return PolicyCheck(
                passed=False,
                rule="open_positions",
                reason=f"{open_count} open >= max {max_open_trades}",
            )
        return PolicyCheck(passed=True, rule="open_positions", reason="OK")

    def _check_symbol_position(self, symbol_open_count: int) -> PolicyCheck:
        if symbol_open_count > 0:
            return PolicyCheck(
                passed=False, rule="symbol_position", reason="Position already open on instrument"
            )
        return PolicyCheck(passed=True, rule="symbol_position", reason="OK")


class SellPolicy:
    """
    First matching rule closes the position:
    1. stop_loss                   profit <= -stop_loss_percentage
    2. take_profit                 profit >= sell_threshold
    3. medium_profit_signal        profit >= 2%, SELL, confidence > 70
    4. small_profit_strong_signal  profit >= 0.5%, SELL, confidence > 85
    5. rsi_overbought              profit > 1%, RSI > 80
    6. stagnant                    held > 24h, -2% < profit < 1%
    """

    def __init__(self, config: BotConfig) -> None:
        self.config = config

    def evaluate(
        self,
        trade: TradeRecord,
        analysis: AnalysisResult,
        now: datetime | None = None,
    ) -> SellDecision:
        now = now or datetime.now(timezone.utc)
        profit = trade.profit_percent(analysis.price)
        hours_open = (now - trade.opened_at).total_seconds() / 3600
        selling = analysis.signals.overall == Signal.SELL
        confidence = analysis.confidence
        ind = analysis.indicators

        stop_loss = self.config.risk_management.stop_loss_percentage
        if profit <= -stop_loss:
            return self._sell("stop_loss", f"Stop loss limit hit ({profit:.2f}%)", profit)

        if profit >= self.config.sell_threshold:
            return self._sell("take_profit", f"Profit threshold reached ({profit:.2f}%)", profit)

        if profit >= 2 and selling and confidence > 70:
            return self._sell(
                "medium_profit_signal",
                f"Medium profit with strong SELL signal ({profit:.2f}%, {confidence}% confidence)",
                profit,
            )

        if profit >= 0.5 and selling and confidence > 85:
            return self._sell(
                "small_profit_strong_signal",
                f"Very strong SELL signal, early exit ({confidence}% confidence)",
                profit,
            )

        if profit > 1 and ind.has_rsi and ind.rsi > 80:
            return self._sell(
                "rsi_overbought", f"RSI overbought ({ind.rsi:.1f}) with profit", profit
            )

        if hours_open > STAGNANT_HOURS and -2 < profit < 1:
            return self._sell(
                "stagnant", f"Stagnant for {hours_open:.0f}h, exiting ({profit:.2f}%)", profit
            )

        return SellDecision(should_sell=False, profit_percent=profit)

    @staticmethod
    def _sell(rule: str, reason: str, profit: float) -> SellDecision:
        return SellDecision(should_sell=True, rule=rule, reason=reason, profit_percent=profit)
