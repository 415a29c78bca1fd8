"""SQLAlchemy ORM models for the bot's tables."""

from datetime import date, datetime, timezone

from sqlalchemy import (
    ARRAY,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class TradeORM(Base):
    __tablename__ = "trades"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    trade_id: Mapped[str] = mapped_column(String(40), unique=True, nullable=False)
    symbol: Mapped[str] = mapped_column(String(20), nullable=False)
    side: Mapped[str] = mapped_column(
        String(4),
        CheckConstraint("side IN ('BUY', 'SELL')"),
        nullable=False,
    )
    amount: Mapped[float] = mapped_column(Numeric(18, 8), nullable=False)
    entry_price: Mapped[float] = mapped_column(Numeric(18, 8), nullable=False)
    exit_price: Mapped[float | None] = mapped_column(Numeric(18, 8))
    quantity: Mapped[str] = mapped_column(String(40), nullable=False)
    fees: Mapped[float] = mapped_column(Numeric(18, 8), default=0)
    profit: Mapped[float | None] = mapped_column(Numeric(18, 8))
    status: Mapped[str] = mapped_column(
        String(10),
        CheckConstraint("status IN ('OPEN', 'CLOSED')"),
        default="OPEN",
    )
    order_id: Mapped[str | None] = mapped_column(String(40))
    close_order_id: Mapped[str | None] = mapped_column(String(40))
    exit_reason: Mapped[str | None] = mapped_column(Text)
    confidence_at_entry: Mapped[int] = mapped_column(Integer, default=0)
    opened_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        Index("idx_trades_symbol", "symbol"),
        Index("idx_trades_status", "status"),
        Index("idx_trades_opened_at", opened_at.desc()),
    )


class BotConfigORM(Base):
    __tablename__ = "bot_config"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    initial_capital: Mapped[float] = mapped_column(Numeric(18, 2), nullable=False)
    trade_percentage: Mapped[float] = mapped_column(Numeric(5, 2), nullable=False)
    buy_threshold: Mapped[float] = mapped_column(Numeric(5, 2), nullable=False)
    sell_threshold: Mapped[float] = mapped_column(Numeric(5, 2), nullable=False)
    telegram_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    max_daily_loss: Mapped[float] = mapped_column(Numeric(5, 2), default=10)
    max_open_trades: Mapped[int] = mapped_column(Integer, default=3)
    stop_loss_percentage: Mapped[float] = mapped_column(Numeric(5, 2), default=5)
    trading_pairs: Mapped[list[str]] = mapped_column(ARRAY(String(20)), default=list)
    use_rsi: Mapped[bool] = mapped_column(Boolean, default=True)
    use_macd: Mapped[bool] = mapped_column(Boolean, default=True)
    use_sma: Mapped[bool] = mapped_column(Boolean, default=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (Index("idx_bot_config_created", created_at.desc()),)


class BotStatsORM(Base):
    __tablename__ = "bot_stats"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    total_capital: Mapped[float] = mapped_column(Numeric(18, 2), nullable=False, default=20)
    total_profit: Mapped[float] = mapped_column(Numeric(18, 2), default=0)
    is_running: Mapped[bool] = mapped_column(Boolean, default=False)
    trades_count: Mapped[int] = mapped_column(Integer, default=0)
    winning_trades: Mapped[int] = mapped_column(Integer, default=0)
    win_rate: Mapped[float] = mapped_column(Numeric(5, 2), default=0)
    max_drawdown: Mapped[float] = mapped_column(Numeric(18, 2), default=0)
    peak_profit: Mapped[float] = mapped_column(Numeric(18, 2), default=0)
    daily_loss: Mapped[float] = mapped_column(Numeric(18, 2), default=0)
    last_reset_date: Mapped[date | None] = mapped_column(Date)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )


class SystemLogORM(Base):
    __tablename__ = "system_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    level: Mapped[str] = mapped_column(
        String(10),
        CheckConstraint("level IN ('INFO', 'ERROR', 'WARNING', 'DEBUG')"),
        nullable=False,
    )
    message: Mapped[str] = mapped_column(Text, nullable=False)
    details: Mapped[dict | None] = mapped_column(JSONB)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (Index("idx_system_logs_timestamp", timestamp.desc()),)


class MarketDataORM(Base):
    __tablename__ = "market_data"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    symbol: Mapped[str] = mapped_column(String(20), nullable=False)
    price: Mapped[float] = mapped_column(Numeric(18, 8), nullable=False)
    price_change_percent: Mapped[float] = mapped_column(Numeric(10, 4), nullable=False)
    volume: Mapped[float] = mapped_column(Numeric(24, 8), nullable=False)
    quote_volume: Mapped[float] = mapped_column(Numeric(24, 8), nullable=False)
    rsi: Mapped[float | None] = mapped_column(Numeric(8, 4))
    rsi_signal: Mapped[str] = mapped_column(String(10))
    macd_signal: Mapped[str] = mapped_column(String(10))
    sma_signal: Mapped[str] = mapped_column(String(10))
    overall_signal: Mapped[str] = mapped_column(String(10))
    confidence: Mapped[int] = mapped_column(Integer, default=0)
    indicators: Mapped[dict | None] = mapped_column(JSONB)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        Index("idx_market_data_symbol", "symbol"),
        Index("idx_market_data_timestamp", timestamp.desc()),
    )


class DailyPerformanceORM(Base):
    __tablename__ = "daily_performance"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    date: Mapped[date] = mapped_column(Date, unique=True, nullable=False)
    profit: Mapped[float] = mapped_column(Numeric(18, 2), nullable=False)
    total_capital: Mapped[float] = mapped_column(Numeric(18, 2), nullable=False)
    trades_count: Mapped[int] = mapped_column(Integer, nullable=False)
    win_rate: Mapped[float] = mapped_column(Numeric(5, 2), default=0)
    max_drawdown: Mapped[float] = mapped_column(Numeric(18, 2), default=0)


class AccountBalanceORM(Base):
    __tablename__ = "account_balances"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    asset: Mapped[str] = mapped_column(String(20), nullable=False)
    free: Mapped[float] = mapped_column(Numeric(24, 8), nullable=False)
    locked: Mapped[float] = mapped_column(Numeric(24, 8), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
