"""Market-order execution for opening and closing positions."""

from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING

import structlog

from autotrader.errors import OrderExecutionError
from autotrader.models.trade import TradeRecord, TradeSide, TradeStatus

if TYPE_CHECKING:
    from autotrader.interfaces import ExchangeClient, Notifier, Storage
    from autotrader.models.analysis import AnalysisResult

logger = structlog.get_logger()


class TradeExecutor:
    """Places orders and records the resulting trades. Capital updates are serialized."""

    def __init__(
        self,
        exchange: ExchangeClient,
        storage: Storage,
        notifier: Notifier | None = None,
        order_timeout: float = 15.0,
    ) -> None:
        self.exchange = exchange
        self.storage = storage
        self.notifier = notifier
        self.order_timeout = order_timeout
        self.notify_enabled = False
        self._capital_lock = asyncio.Lock()

    async def buy(self, symbol: str, amount: float, analysis: AnalysisResult) -> TradeRecord:
        """Open a position worth `amount` quote units at market."""
        price = analysis.price
        logger.info(
            "buy_started",
            symbol=symbol,
            amount=round(amount, 2),
            price=price,
            confidence=analysis.confidence,
            reasons=analysis.top_reasons(),
        )
        async with self._capital_lock:
            try:
                quantity = await asyncio.wait_for(
                    self.exchange.calculate_quantity(symbol, amount), self.order_timeout
                )
                fill = await asyncio.wait_for(
                    self.exchange.place_market_order(symbol, TradeSide.BUY.value, quantity),
                    self.order_timeout,
                )
            except Exception as e:
                logger.exception("buy_failed", symbol=symbol, amount=amount)
                raise OrderExecutionError(symbol, TradeSide.BUY.value, str(e) or type(e).__name__) from e

            trade = TradeRecord(
                trade_id=f"trade_{uuid.uuid4().hex[:16]}",
                symbol=symbol,
                side=TradeSide.BUY,
                amount=amount,
                entry_price=price,
                quantity=quantity,
                fees=fill.commission,
                status=TradeStatus.OPEN,
                opened_at=datetime.now(timezone.utc),
                order_id=fill.order_id,
                confidence_at_entry=analysis.confidence,
            )
            await asyncio.shield(self._record_open(trade, amount))

        logger.info(
            "buy_completed",
            symbol=symbol,
            trade_id=trade.trade_id,
            order_id=fill.order_id,
            quantity=quantity,
            filled_price=fill.filled_price,
            fees=fill.commission,
        )
        await self._notify(
            "BUY executed",
            f"{symbol}\n"
            f"Amount: ${amount:.2f}\n"
            f"Price: ${price:.4f}\n"
            f"Quantity: {quantity}\n"
            f"Order ID: {fill.order_id}\n"
            f"RSI: {analysis.indicators.rsi:.1f}\n"
            f"Confidence: {analysis.confidence}%\n"
            + "\n".join(f"- {r}" for r in analysis.top_reasons(2)),
            "success",
        )
        return trade

    async def sell(self, trade: TradeRecord, analysis: AnalysisResult, reason: str) -> TradeRecord:
        """Close `trade` at market; profit is measured against the analysis price."""
        price = analysis.price
        logger.info(
            "sell_started",
            symbol=trade.symbol,
            trade_id=trade.trade_id,
            reason=reason,
            price=price,
            entry_price=trade.entry_price,
        )
        async with self._capital_lock:
            try:
                fill = await asyncio.wait_for(
                    self.exchange.place_market_order(
                        trade.symbol, TradeSide.SELL.value, trade.quantity
                    ),
                    self.order_timeout,
                )
            except Exception as e:
                logger.exception("sell_failed", symbol=trade.symbol, trade_id=trade.trade_id)
                raise OrderExecutionError(trade.symbol, TradeSide.SELL.value, str(e) or type(e).__name__) from e

            profit = (price - trade.entry_price) * float(trade.quantity)
            closed = trade.model_copy(
                update={
                    "status": TradeStatus.CLOSED,
                    "exit_price": price,
                    "closed_at": datetime.now(timezone.utc),
                    "profit": profit,
                    "fees": trade.fees + fill.commission,
                    "close_order_id": fill.order_id,
                    "exit_reason": reason,
                }
            )
            await asyncio.shield(self._record_close(closed, trade.amount + profit, profit))

        profit_pct = profit / trade.amount * 100 if trade.amount else 0.0
        logger.info(
            "sell_completed",
            symbol=trade.symbol,
            trade_id=trade.trade_id,
            order_id=fill.order_id,
            profit=round(profit, 4),
            profit_pct=round(profit_pct, 2),
            reason=reason,
        )
        await self._notify(
            "SELL executed",
            f"{trade.symbol}\n"
            f"Amount: ${trade.amount:.2f}\n"
            f"Exit price: ${price:.4f}\n"
            f"Profit: ${profit:.2f} ({profit_pct:.2f}%)\n"
            f"Order ID: {fill.order_id}\n"
            f"Reason: {reason}",
            "success" if profit > 0 else "error",
        )
        return closed

    async def _record_open(self, trade: TradeRecord, cost: float) -> None:
        try:
            await self.storage.open_trade(trade, cost)
        except Exception:
            logger.exception(
                "buy_fill_unrecorded",
                symbol=trade.symbol,
                trade_id=trade.trade_id,
                order_id=trade.order_id,
                quantity=trade.quantity,
                entry_price=trade.entry_price,
                cost=cost,
            )
            raise

    async def _record_close(self, trade: TradeRecord, proceeds: float, profit: float) -> None:
        try:
            await self.storage.close_trade(trade, proceeds, profit)
        except Exception:
            logger.exception(
                "sell_fill_unrecorded",
                symbol=trade.symbol,
                trade_id=trade.trade_id,
                order_id=trade.close_order_id,
                quantity=trade.quantity,
                exit_price=trade.exit_price,
                proceeds=proceeds,
                profit=profit,
            )
            raise

    async def _notify(self, title: str, body: str, severity: str) -> None:
        if not self.notify_enabled or self.notifier is None:
            return
        try:
            await self.notifier.send_alert(title, body, severity)
        except Exception:
            logger.exception("trade_notification_error", title=title)
