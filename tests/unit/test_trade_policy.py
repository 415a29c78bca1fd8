"""Unit tests for trade/trade_policy.py — buy gate and sell rule precedence."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from autotrader.models.analysis import Signal
from autotrader.models.bot import BotConfig, RiskManagement
from autotrader.trade.trade_policy import BuyGate, SellPolicy

from conftest import make_analysis, make_trade


@pytest.fixture
def gate():
    return BuyGate()


def _evaluate(gate, analysis, capital=100.0, open_count=0, symbol_open=0, max_open=3):
    return gate.evaluate(
        analysis,
        capital=capital,
        open_count=open_count,
        symbol_open_count=symbol_open,
        max_open_trades=max_open,
    )


class TestBuyGate:
    def test_strong_buy_approved(self, gate):
        decision = _evaluate(gate, make_analysis(confidence=80, rsi=45))
        assert decision.approved is True
        assert decision.failures == []
        assert len(decision.checks) == 7

    def test_medium_buy_needs_oversold_rsi(self, gate):
        assert _evaluate(gate, make_analysis(confidence=65, rsi=30)).approved is True
        decision = _evaluate(gate, make_analysis(confidence=65, rsi=40))
        assert [f.rule for f in decision.failures] == ["signal_strength"]

    def test_medium_buy_ignores_placeholder_rsi(self, gate):
        decision = _evaluate(gate, make_analysis(confidence=65, rsi=20, has_rsi=False))
        assert decision.approved is False

    def test_non_buy_signal_rejected(self, gate):
        decision = _evaluate(gate, make_analysis(overall=Signal.NEUTRAL, confidence=90))
        assert "signal_strength" in [f.rule for f in decision.failures]

    def test_low_volume_rejected(self, gate):
        decision = _evaluate(gate, make_analysis(quote_volume=900_000))
        assert [f.rule for f in decision.failures] == ["volume"]

    def test_single_agreeing_indicator_rejected(self, gate):
        analysis = make_analysis(macd_signal=Signal.NEUTRAL, sma_signal=Signal.SELL)
        decision = _evaluate(gate, analysis)
        assert [f.rule for f in decision.failures] == ["signal_agreement"]

    def test_capital_floor(self, gate):
        decision = _evaluate(gate, make_analysis(), capital=50.0)
        assert [f.rule for f in decision.failures] == ["capital"]

    def test_volatile_price_rejected(self, gate):
        decision = _evaluate(gate, make_analysis(change=-10.0))
        assert [f.rule for f in decision.failures] == ["price_stability"]

    def test_open_position_cap(self, gate):
        decision = _evaluate(gate, make_analysis(), open_count=3, max_open=3)
        assert [f.rule for f in decision.failures] == ["open_positions"]

    def test_one_position_per_instrument(self, gate):
        decision = _evaluate(gate, make_analysis(), open_count=1, symbol_open=1)
        assert [f.rule for f in decision.failures] == ["symbol_position"]


@pytest.fixture
def policy():
    return SellPolicy(
        BotConfig(sell_threshold=3.0, risk_management=RiskManagement(stop_loss_percentage=5.0))
    )


def _sell_analysis(price, overall=Signal.NEUTRAL, confidence=0, rsi=50.0, has_rsi=True):
    return make_analysis(
        price=price,
        overall=overall,
        confidence=confidence,
        rsi=rsi,
        rsi_signal=Signal.NEUTRAL,
        has_rsi=has_rsi,
    )


class TestSellPolicy:
    def test_hold(self, policy):
        decision = policy.evaluate(make_trade(entry_price=100), _sell_analysis(100.5))
        assert decision.should_sell is False
        assert decision.profit_percent == pytest.approx(0.5)

    def test_stop_loss_precedes_everything(self, policy):
        trade = make_trade(entry_price=100, opened_at=datetime.now(timezone.utc) - timedelta(hours=48))
        analysis = _sell_analysis(94.0, overall=Signal.SELL, confidence=95, rsi=90)
        decision = policy.evaluate(trade, analysis)
        assert decision.rule == "stop_loss"
        assert decision.reason.startswith("Stop loss limit hit")

    def test_stop_loss_at_exact_threshold(self, policy):
        decision = policy.evaluate(make_trade(entry_price=100), _sell_analysis(95.0))
        assert decision.rule == "stop_loss"

    def test_take_profit(self, policy):
        decision = policy.evaluate(make_trade(entry_price=100), _sell_analysis(103.5, rsi=90))
        assert decision.rule == "take_profit"
        assert decision.reason == "Profit threshold reached (3.50%)"

    def test_medium_profit_with_sell_signal(self, policy):
        analysis = _sell_analysis(102.5, overall=Signal.SELL, confidence=75)
        assert policy.evaluate(make_trade(entry_price=100), analysis).rule == "medium_profit_signal"

    def test_small_profit_needs_very_strong_signal(self, policy):
        weak = _sell_analysis(100.6, overall=Signal.SELL, confidence=80)
        strong = _sell_analysis(100.6, overall=Signal.SELL, confidence=90)
        assert policy.evaluate(make_trade(entry_price=100), weak).should_sell is False
        assert policy.evaluate(make_trade(entry_price=100), strong).rule == "small_profit_strong_signal"

    def test_rsi_overbought_with_profit(self, policy):
        analysis = _sell_analysis(101.5, rsi=85)
        assert policy.evaluate(make_trade(entry_price=100), analysis).rule == "rsi_overbought"

    def test_rsi_overbought_requires_profit(self, policy):
        analysis = _sell_analysis(100.5, rsi=85)
        assert policy.evaluate(make_trade(entry_price=100), analysis).should_sell is False

    def test_placeholder_rsi_ignored(self, policy):
        analysis = _sell_analysis(101.5, rsi=85, has_rsi=False)
        assert policy.evaluate(make_trade(entry_price=100), analysis).should_sell is False

    def test_stagnant_position(self, policy):
        now = datetime.now(timezone.utc)
        trade = make_trade(entry_price=100, opened_at=now - timedelta(hours=25))
        decision = policy.evaluate(trade, _sell_analysis(99.0), now=now)
        assert decision.rule == "stagnant"

    def test_stagnant_window_excludes_larger_loss(self, policy):
        now = datetime.now(timezone.utc)
        trade = make_trade(entry_price=100, opened_at=now - timedelta(hours=25))
        assert policy.evaluate(trade, _sell_analysis(97.5), now=now).should_sell is False

    def test_stop_loss_follows_config(self):
        policy = SellPolicy(BotConfig(risk_management=RiskManagement(stop_loss_percentage=2.0)))
        decision = policy.evaluate(make_trade(entry_price=100), _sell_analysis(97.9))
        assert decision.rule == "stop_loss"
