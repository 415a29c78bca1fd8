"""SqlStorage: the Storage protocol on top of the repositories."""

from __future__ import annotations

import functools
from datetime import datetime, timezone
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from autotrader.db.repository import (
    AccountBalanceRepository,
    ConfigRepository,
    LogRepository,
    MarketDataRepository,
    PerformanceRepository,
    StatsRepository,
    TradeRepository,
)
from autotrader.errors import PersistenceError

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from autotrader.models.analysis import AnalysisResult
    from autotrader.models.bot import BotConfig, BotStats, LogEntry
    from autotrader.models.order import AssetBalance
    from autotrader.models.trade import TradeRecord

logger = structlog.get_logger()


def _wrap_db_errors(func):
    """Re-raise SQLAlchemyError as PersistenceError."""

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except SQLAlchemyError as e:
            logger.error("storage_error", operation=func.__name__, error=str(e))
            raise PersistenceError(f"{func.__name__} failed: {e}") from e

    return wrapper


class SqlStorage:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory
        self.trades = TradeRepository(session_factory)
        self.configs = ConfigRepository(session_factory)
        self.stats = StatsRepository(session_factory)
        self.logs = LogRepository(session_factory)
        self.market_data = MarketDataRepository(session_factory)
        self.performance = PerformanceRepository(session_factory)
        self.balances = AccountBalanceRepository(session_factory)

    # --- Trades ---

    @_wrap_db_errors
    async def create_trade(self, trade: TradeRecord) -> None:
        await self.trades.create(trade)

    @_wrap_db_errors
    async def update_trade(self, trade: TradeRecord) -> None:
        await self.trades.update(trade)

    @_wrap_db_errors
    async def open_trade(self, trade: TradeRecord, cost: float) -> None:
        await self.trades.open_position(trade, cost)

    @_wrap_db_errors
    async def close_trade(self, trade: TradeRecord, proceeds: float, profit: float) -> None:
        await self.trades.close_position(trade, proceeds, profit)

    @_wrap_db_errors
    async def get_open_trades(self, symbol: str | None = None) -> list[TradeRecord]:
        return await self.trades.get_open(symbol)

    @_wrap_db_errors
    async def get_trade_history(self, limit: int = 50) -> list[TradeRecord]:
        return await self.trades.get_history(limit)

    @_wrap_db_errors
    async def get_closed_trades(self, limit: int = 1000) -> list[TradeRecord]:
        return await self.trades.get_recent_closed(limit)

    # --- Logs ---

    @_wrap_db_errors
    async def add_log(self, level: str, message: str, details: dict | None = None) -> None:
        await self.logs.add(level, message, details)

    @_wrap_db_errors
    async def get_logs(self, limit: int = 100) -> list[LogEntry]:
        return await self.logs.get_recent(limit)

    # --- Config / stats ---

    @_wrap_db_errors
    async def save_config(self, config: BotConfig) -> None:
        await self.configs.save(config)

    @_wrap_db_errors
    async def get_config(self) -> BotConfig | None:
        return await self.configs.get_active()

    @_wrap_db_errors
    async def set_running(self, running: bool) -> None:
        await self.stats.set_running(running)

    @_wrap_db_errors
    async def get_stats(self) -> BotStats:
        return await self.stats.get()

    @_wrap_db_errors
    async def update_capital(self, delta: float) -> None:
        await self.stats.update_capital(delta)

    @_wrap_db_errors
    async def add_profit(self, profit: float) -> None:
        await self.stats.add_profit(profit)

    @_wrap_db_errors
    async def reset_daily_loss(self) -> None:
        await self.stats.reset_daily_loss(datetime.now(timezone.utc).date())

    # --- Market / account ---

    @_wrap_db_errors
    async def save_analysis(self, result: AnalysisResult) -> None:
        ind = result.indicators
        await self.market_data.save(
            {
                "symbol": result.symbol,
                "price": result.price,
                "price_change_percent": result.ticker.price_change_percent,
                "volume": result.ticker.volume,
                "quote_volume": result.ticker.quote_volume,
                "rsi": ind.rsi if ind.has_rsi else None,
                "rsi_signal": result.signals.rsi.value,
                "macd_signal": result.signals.macd.value,
                "sma_signal": result.signals.sma.value,
                "overall_signal": result.signals.overall.value,
                "confidence": result.confidence,
                "indicators": ind.model_dump(),
                "timestamp": result.timestamp,
            }
        )

    @_wrap_db_errors
    async def save_account_balances(self, balances: list[AssetBalance]) -> None:
        await self.balances.replace(balances)

    @_wrap_db_errors
    async def get_account_balances(self) -> list[AssetBalance]:
        return await self.balances.get_all()

    @_wrap_db_errors
    async def record_daily_performance(self) -> None:
        stats = await self.stats.get()
        await self.performance.upsert_day(datetime.now(timezone.utc).date(), stats)

    async def health_check(self) -> bool:
        try:
            async with self.session_factory() as session:
                await session.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.warning("storage_health_check_failed", error=str(e))
            return False
