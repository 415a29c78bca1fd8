"""Unit tests for trade/executor.py."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest
from structlog.testing import capture_logs

from autotrader.errors import OrderExecutionError, PersistenceError
from autotrader.models.bot import BotStats
from autotrader.models.trade import TradeSide, TradeStatus
from autotrader.trade.executor import TradeExecutor

from conftest import FakeStorage, make_analysis, make_ticker


@pytest.fixture
def storage():
    return FakeStorage(BotStats(total_capital=100.0))


@pytest.fixture
def notifier():
    n = AsyncMock()
    n.send_alert = AsyncMock()
    return n


@pytest.fixture
def executor(exchange, storage, notifier):
    exchange.set_ticker(make_ticker("SOLUSDT", price=100.0))
    return TradeExecutor(exchange, storage, notifier, order_timeout=1)


class TestBuy:
    @pytest.mark.asyncio
    async def test_buy_records_open_trade_and_debits_capital(self, executor, exchange, storage):
        trade = await executor.buy("SOLUSDT", 10.0, make_analysis(price=100.0, confidence=82))

        assert exchange.orders == [("SOLUSDT", "BUY", "0.1000")]
        assert trade.status == TradeStatus.OPEN
        assert trade.side == TradeSide.BUY
        assert trade.entry_price == 100.0
        assert trade.quantity == "0.1000"
        assert trade.order_id == "1"
        assert trade.fees == pytest.approx(0.01)
        assert trade.confidence_at_entry == 82
        assert trade.trade_id.startswith("trade_")
        assert storage.trades[trade.trade_id] == trade
        assert storage.stats.total_capital == pytest.approx(90.0)

    @pytest.mark.asyncio
    async def test_failed_buy_creates_no_record(self, executor, exchange, storage):
        exchange.fail_orders = True
        with pytest.raises(OrderExecutionError) as exc:
            await executor.buy("SOLUSDT", 10.0, make_analysis(price=100.0))

        assert exc.value.symbol == "SOLUSDT"
        assert exc.value.side == "BUY"
        assert storage.trades == {}
        assert storage.stats.total_capital == pytest.approx(100.0)

    @pytest.mark.asyncio
    async def test_notification_only_when_enabled(self, executor, notifier):
        await executor.buy("SOLUSDT", 10.0, make_analysis(price=100.0))
        notifier.send_alert.assert_not_awaited()

        executor.notify_enabled = True
        await executor.buy("SOLUSDT", 10.0, make_analysis(price=100.0))
        notifier.send_alert.assert_awaited_once()
        title, body, severity = notifier.send_alert.call_args.args
        assert title == "BUY executed"
        assert "SOLUSDT" in body
        assert severity == "success"

    @pytest.mark.asyncio
    async def test_notifier_failure_does_not_fail_buy(self, executor, notifier, storage):
        executor.notify_enabled = True
        notifier.send_alert.side_effect = RuntimeError("telegram down")
        trade = await executor.buy("SOLUSDT", 10.0, make_analysis(price=100.0))
        assert trade.trade_id in storage.trades


class TestSell:
    @pytest.mark.asyncio
    async def test_sell_closes_trade_and_credits_capital(self, executor, exchange, storage):
        trade = await executor.buy("SOLUSDT", 10.0, make_analysis(price=100.0))
        closed = await executor.sell(trade, make_analysis(price=110.0), "Profit threshold reached (10.00%)")

        assert exchange.orders[-1] == ("SOLUSDT", "SELL", "0.1000")
        assert closed.status == TradeStatus.CLOSED
        assert closed.exit_price == 110.0
        assert closed.profit == pytest.approx(1.0)
        assert closed.exit_reason == "Profit threshold reached (10.00%)"
        assert closed.closed_at is not None
        assert closed.close_order_id == "2"
        assert storage.trades[trade.trade_id].status == TradeStatus.CLOSED
        assert storage.stats.total_capital == pytest.approx(101.0)
        assert storage.stats.total_profit == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_losing_sell_books_daily_loss(self, executor, storage):
        trade = await executor.buy("SOLUSDT", 10.0, make_analysis(price=100.0))
        closed = await executor.sell(trade, make_analysis(price=90.0), "Stop loss limit hit (-10.00%)")
        assert closed.profit == pytest.approx(-1.0)
        assert storage.stats.daily_loss == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_failed_sell_leaves_trade_open(self, executor, exchange, storage):
        trade = await executor.buy("SOLUSDT", 10.0, make_analysis(price=100.0))
        exchange.fail_orders = True

        with pytest.raises(OrderExecutionError):
            await executor.sell(trade, make_analysis(price=110.0), "take profit")

        assert storage.trades[trade.trade_id].status == TradeStatus.OPEN
        assert storage.stats.total_capital == pytest.approx(90.0)
        assert storage.stats.total_profit == 0.0


class TestBookkeeping:
    @pytest.mark.asyncio
    async def test_buy_persist_failure_leaves_no_partial_state(self, executor, exchange, storage):
        storage.fail_position_writes = True
        with capture_logs() as logs:
            with pytest.raises(PersistenceError):
                await executor.buy("SOLUSDT", 10.0, make_analysis(price=100.0))

        assert exchange.orders == [("SOLUSDT", "BUY", "0.1000")]
        assert storage.trades == {}
        assert storage.stats.total_capital == pytest.approx(100.0)
        unrecorded = [e for e in logs if e["event"] == "buy_fill_unrecorded"]
        assert unrecorded[0]["order_id"] == "1"
        assert unrecorded[0]["quantity"] == "0.1000"

    @pytest.mark.asyncio
    async def test_sell_persist_failure_keeps_trade_open_and_capital_unchanged(self, executor, storage):
        trade = await executor.buy("SOLUSDT", 10.0, make_analysis(price=100.0))
        storage.fail_position_writes = True

        with capture_logs() as logs:
            with pytest.raises(PersistenceError):
                await executor.sell(trade, make_analysis(price=110.0), "take profit")

        assert storage.trades[trade.trade_id].status == TradeStatus.OPEN
        assert storage.stats.total_capital == pytest.approx(90.0)
        assert any(e["event"] == "sell_fill_unrecorded" for e in logs)

    @pytest.mark.asyncio
    async def test_cancelled_buy_still_records_filled_order(self, exchange, storage):
        exchange.set_ticker(make_ticker("SOLUSDT", price=100.0))
        recorded = asyncio.Event()
        original_open = storage.open_trade

        async def slow_open(trade, cost):
            await asyncio.sleep(0.05)
            await original_open(trade, cost)
            recorded.set()

        storage.open_trade = slow_open
        executor = TradeExecutor(exchange, storage, order_timeout=1)

        task = asyncio.create_task(executor.buy("SOLUSDT", 10.0, make_analysis(price=100.0)))
        while not exchange.orders:
            await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        await asyncio.wait_for(recorded.wait(), 1)
        assert len(storage.trades) == 1
        assert storage.stats.total_capital == pytest.approx(90.0)
