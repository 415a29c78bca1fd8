"""DB repositories: trades, config, stats, logs, market data, performance, balances."""

from __future__ import annotations

from datetime import date, datetime, timezone

import structlog
from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from autotrader.db.models import (
    AccountBalanceORM,
    BotConfigORM,
    BotStatsORM,
    DailyPerformanceORM,
    MarketDataORM,
    SystemLogORM,
    TradeORM,
)
from autotrader.models.bot import BotConfig, BotStats, LogEntry, RiskManagement
from autotrader.models.indicator_set import IndicatorFlags
from autotrader.models.order import AssetBalance
from autotrader.models.trade import TradeRecord, TradeStatus

logger = structlog.get_logger()

DEFAULT_CAPITAL = 20.0


def _orm_to_trade_record(orm: TradeORM) -> TradeRecord:
    """Convert TradeORM to TradeRecord Pydantic model."""
    return TradeRecord(
        trade_id=orm.trade_id,
        symbol=orm.symbol,
        side=orm.side,
        amount=float(orm.amount),
        entry_price=float(orm.entry_price),
        exit_price=float(orm.exit_price) if orm.exit_price is not None else None,
        quantity=orm.quantity,
        fees=float(orm.fees or 0),
        status=orm.status,
        opened_at=orm.opened_at,
        closed_at=orm.closed_at,
        profit=float(orm.profit) if orm.profit is not None else None,
        order_id=orm.order_id,
        close_order_id=orm.close_order_id,
        exit_reason=orm.exit_reason,
        confidence_at_entry=orm.confidence_at_entry or 0,
    )


def _trade_columns(trade: TradeRecord) -> dict:
    data = trade.model_dump()
    data["side"] = trade.side.value
    data["status"] = trade.status.value
    return data


class TradeRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def create(self, trade: TradeRecord) -> str:
        """Insert a new trade record. Returns trade_id."""
        async with self.session_factory() as session:
            session.add(TradeORM(**_trade_columns(trade)))
            await session.commit()
            logger.info("trade_created", trade_id=trade.trade_id, symbol=trade.symbol)
            return trade.trade_id

    async def update(self, trade: TradeRecord) -> None:
        """Overwrite a trade's mutable fields by trade_id."""
        async with self.session_factory() as session:
            stmt = select(TradeORM).where(TradeORM.trade_id == trade.trade_id)
            result = await session.execute(stmt)
            orm = result.scalar_one_or_none()
            if orm is None:
                raise ValueError(f"Trade not found: {trade.trade_id}")
            for key, value in _trade_columns(trade).items():
                setattr(orm, key, value)
            await session.commit()
            logger.info("trade_updated", trade_id=trade.trade_id, status=trade.status.value)

    async def open_position(self, trade: TradeRecord, cost: float) -> None:
        """Insert an OPEN trade and debit `cost` from capital in one transaction."""
        async with self.session_factory() as session:
            session.add(TradeORM(**_trade_columns(trade)))
            stats = await StatsRepository._row(session)
            stats.total_capital = float(stats.total_capital) - cost
            await session.commit()
            logger.info("position_opened", trade_id=trade.trade_id, symbol=trade.symbol, cost=cost)

    async def close_position(self, trade: TradeRecord, proceeds: float, profit: float) -> None:
        """Persist the closed trade, credit `proceeds` and record `profit` in one transaction."""
        async with self.session_factory() as session:
            result = await session.execute(select(TradeORM).where(TradeORM.trade_id == trade.trade_id))
            orm = result.scalar_one_or_none()
            if orm is None:
                raise ValueError(f"Trade not found: {trade.trade_id}")
            for key, value in _trade_columns(trade).items():
                setattr(orm, key, value)
            stats = await StatsRepository._row(session)
            stats.total_capital = float(stats.total_capital) + proceeds
            StatsRepository._apply_profit(stats, profit)
            await session.commit()
            logger.info("position_closed", trade_id=trade.trade_id, symbol=trade.symbol, profit=profit)

    async def get_open(self, symbol: str | None = None) -> list[TradeRecord]:
        async with self.session_factory() as session:
            stmt = select(TradeORM).where(TradeORM.status == TradeStatus.OPEN.value)
            if symbol is not None:
                stmt = stmt.where(TradeORM.symbol == symbol)
            result = await session.execute(stmt.order_by(TradeORM.opened_at))
            return [_orm_to_trade_record(t) for t in result.scalars().all()]

    async def get_history(self, limit: int = 50) -> list[TradeRecord]:
        """Most recently opened trades first."""
        async with self.session_factory() as session:
            stmt = select(TradeORM).order_by(TradeORM.opened_at.desc()).limit(limit)
            result = await session.execute(stmt)
            return [_orm_to_trade_record(t) for t in result.scalars().all()]

    async def get_recent_closed(self, limit: int = 1000) -> list[TradeRecord]:
        """Closed trades, ordered by closed_at desc."""
        async with self.session_factory() as session:
            stmt = (
                select(TradeORM)
                .where(TradeORM.status == TradeStatus.CLOSED.value)
                .order_by(TradeORM.closed_at.desc())
                .limit(limit)
            )
            result = await session.execute(stmt)
            return [_orm_to_trade_record(t) for t in result.scalars().all()]


class ConfigRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def save(self, config: BotConfig) -> None:
        """Append a new active config row and reset total capital to the initial capital.

        Earlier rows are deactivated.
        """
        async with self.session_factory() as session:
            previous = await session.execute(select(BotConfigORM).where(BotConfigORM.is_active))
            for row in previous.scalars().all():
                row.is_active = False
            risk = config.risk_management
            flags = config.technical_indicators
            session.add(
                BotConfigORM(
                    initial_capital=config.initial_capital,
                    trade_percentage=config.trade_percentage,
                    buy_threshold=config.buy_threshold,
                    sell_threshold=config.sell_threshold,
                    telegram_enabled=config.telegram_enabled,
                    max_daily_loss=risk.max_daily_loss,
                    max_open_trades=risk.max_open_trades,
                    stop_loss_percentage=risk.stop_loss_percentage,
                    trading_pairs=list(config.trading_pairs),
                    use_rsi=flags.use_rsi,
                    use_macd=flags.use_macd,
                    use_sma=flags.use_sma,
                    is_active=True,
                )
            )
            stats = await StatsRepository._row(session)
            stats.total_capital = config.initial_capital
            await session.commit()
            logger.info("config_saved", initial_capital=config.initial_capital)

    async def get_active(self) -> BotConfig | None:
        async with self.session_factory() as session:
            stmt = (
                select(BotConfigORM)
                .where(BotConfigORM.is_active)
                .order_by(BotConfigORM.created_at.desc())
                .limit(1)
            )
            result = await session.execute(stmt)
            row = result.scalar_one_or_none()
            if row is None:
                return None
            return BotConfig(
                initial_capital=float(row.initial_capital),
                trade_percentage=float(row.trade_percentage),
                buy_threshold=float(row.buy_threshold),
                sell_threshold=float(row.sell_threshold),
                telegram_enabled=row.telegram_enabled,
                risk_management=RiskManagement(
                    max_daily_loss=float(row.max_daily_loss),
                    max_open_trades=row.max_open_trades,
                    stop_loss_percentage=float(row.stop_loss_percentage),
                ),
                trading_pairs=list(row.trading_pairs or []),
                technical_indicators=IndicatorFlags(
                    use_rsi=row.use_rsi, use_macd=row.use_macd, use_sma=row.use_sma
                ),
            )


class StatsRepository:
    """Single-row bot_stats table. The row is created on first access."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    @staticmethod
    async def _row(session: AsyncSession) -> BotStatsORM:
        stmt = select(BotStatsORM).order_by(BotStatsORM.id).limit(1).with_for_update()
        result = await session.execute(stmt)
        row = result.scalar_one_or_none()
        if row is None:
            row = BotStatsORM(
                total_capital=DEFAULT_CAPITAL,
                total_profit=0,
                is_running=False,
                trades_count=0,
                winning_trades=0,
                win_rate=0,
                max_drawdown=0,
                peak_profit=0,
                daily_loss=0,
            )
            session.add(row)
            await session.flush()
        return row

    @staticmethod
    def _apply_profit(row: BotStatsORM, profit: float) -> None:
        total = float(row.total_profit or 0) + profit
        row.total_profit = total
        row.trades_count = (row.trades_count or 0) + 1
        if profit > 0:
            row.winning_trades = (row.winning_trades or 0) + 1
        row.win_rate = row.winning_trades / row.trades_count * 100
        peak = max(float(row.peak_profit or 0), total)
        row.peak_profit = peak
        row.max_drawdown = max(float(row.max_drawdown or 0), peak - total)
        if profit < 0:
            row.daily_loss = float(row.daily_loss or 0) + abs(profit)

    @staticmethod
    def _to_stats(row: BotStatsORM) -> BotStats:
        return BotStats(
            total_capital=float(row.total_capital),
            total_profit=float(row.total_profit or 0),
            is_running=bool(row.is_running),
            trades_count=row.trades_count or 0,
            win_rate=float(row.win_rate or 0),
            max_drawdown=float(row.max_drawdown or 0),
            daily_loss=float(row.daily_loss or 0),
            last_reset_date=row.last_reset_date,
        )

    async def get(self) -> BotStats:
        async with self.session_factory() as session:
            row = await self._row(session)
            stats = self._to_stats(row)
            await session.commit()
            return stats

    async def set_running(self, running: bool) -> None:
        async with self.session_factory() as session:
            row = await self._row(session)
            row.is_running = running
            await session.commit()

    async def update_capital(self, delta: float) -> None:
        async with self.session_factory() as session:
            row = await self._row(session)
            row.total_capital = float(row.total_capital) + delta
            await session.commit()

    async def add_profit(self, profit: float) -> None:
        """Record one closed trade's profit; losses accumulate into daily_loss."""
        async with self.session_factory() as session:
            row = await self._row(session)
            self._apply_profit(row, profit)
            await session.commit()

    async def reset_daily_loss(self, today: date) -> None:
        async with self.session_factory() as session:
            row = await self._row(session)
            row.daily_loss = 0
            row.last_reset_date = today
            await session.commit()
            logger.info("daily_loss_reset", date=today.isoformat())


class LogRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def add(self, level: str, message: str, details: dict | None = None) -> None:
        async with self.session_factory() as session:
            session.add(SystemLogORM(level=level, message=message, details=details))
            await session.commit()

    async def get_recent(self, limit: int = 100) -> list[LogEntry]:
        async with self.session_factory() as session:
            stmt = select(SystemLogORM).order_by(SystemLogORM.timestamp.desc()).limit(limit)
            result = await session.execute(stmt)
            return [
                LogEntry(level=r.level, message=r.message, details=r.details, timestamp=r.timestamp)
                for r in result.scalars().all()
            ]


class MarketDataRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def save(self, data: dict) -> None:
        async with self.session_factory() as session:
            session.add(MarketDataORM(**data))
            await session.commit()


class PerformanceRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def upsert_day(self, day: date, stats: BotStats) -> None:
        """Insert today's snapshot or overwrite it if already present."""
        values = {
            "date": day,
            "profit": stats.total_profit,
            "total_capital": stats.total_capital,
            "trades_count": stats.trades_count,
            "win_rate": stats.win_rate,
            "max_drawdown": stats.max_drawdown,
        }
        stmt = insert(DailyPerformanceORM).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[DailyPerformanceORM.date],
            set_={k: v for k, v in values.items() if k != "date"},
        )
        async with self.session_factory() as session:
            await session.execute(stmt)
            await session.commit()
            logger.info("daily_performance_recorded", date=day.isoformat())


class AccountBalanceRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def replace(self, balances: list[AssetBalance]) -> None:
        """Replace the stored snapshot; zero balances are not kept."""
        now = datetime.now(timezone.utc)
        async with self.session_factory() as session:
            await session.execute(delete(AccountBalanceORM))
            for b in balances:
                if b.free > 0 or b.locked > 0:
                    session.add(
                        AccountBalanceORM(asset=b.asset, free=b.free, locked=b.locked, timestamp=now)
                    )
            await session.commit()

    async def get_all(self) -> list[AssetBalance]:
        async with self.session_factory() as session:
            result = await session.execute(select(AccountBalanceORM).order_by(AccountBalanceORM.asset))
            return [
                AssetBalance(asset=r.asset, free=float(r.free), locked=float(r.locked))
                for r in result.scalars().all()
            ]
