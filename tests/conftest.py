"""Shared fixtures and in-memory collaborators for unit tests."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest

from autotrader.config import Settings
from autotrader.errors import ExchangeError, PersistenceError
from autotrader.models.analysis import AnalysisResult, Signal, SignalSet
from autotrader.models.bot import BotConfig, BotStats, LogEntry
from autotrader.models.candle import Candle
from autotrader.models.indicator_set import IndicatorSet, MACDValues
from autotrader.models.order import AssetBalance, OrderFill
from autotrader.models.ticker import TickerSnapshot
from autotrader.models.trade import TradeRecord, TradeStatus


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def make_ticker(
    symbol: str = "SOLUSDT",
    price: float = 100.0,
    change: float = 2.0,
    quote_volume: float = 5_000_000.0,
    volume: float = 50_000.0,
    spread: float = 0.01,
) -> TickerSnapshot:
    return TickerSnapshot(
        symbol=symbol,
        price=price,
        price_change_percent=change,
        volume=volume,
        quote_volume=quote_volume,
        high=price * 1.05,
        low=price * 0.95,
        open_price=price / (1 + change / 100),
        bid=price - spread / 2,
        ask=price + spread / 2,
    )


def make_candles(closes: list[float], volumes: list[float] | None = None) -> list[Candle]:
    start = datetime(2026, 1, 1, tzinfo=timezone.utc)
    volumes = volumes or [1000.0] * len(closes)
    return [
        Candle(
            open_time=start + timedelta(minutes=5 * i),
            open=c,
            high=c * 1.001,
            low=c * 0.999,
            close=c,
            volume=v,
        )
        for i, (c, v) in enumerate(zip(closes, volumes))
    ]


def rising_closes(n: int = 100, start: float = 100.0, step_pct: float = 1.0) -> list[float]:
    return [start * (1 + step_pct / 100) ** i for i in range(n)]


def make_analysis(
    symbol: str = "SOLUSDT",
    price: float = 100.0,
    overall: Signal = Signal.BUY,
    confidence: int = 80,
    rsi: float = 28.0,
    rsi_signal: Signal = Signal.BUY,
    macd_signal: Signal = Signal.BUY,
    sma_signal: Signal = Signal.BUY,
    change: float = 2.0,
    quote_volume: float = 5_000_000.0,
    has_rsi: bool = True,
) -> AnalysisResult:
    return AnalysisResult(
        symbol=symbol,
        ticker=make_ticker(symbol, price, change, quote_volume),
        indicators=IndicatorSet(
            rsi=rsi,
            sma20=price,
            sma50=price,
            ema12=price,
            ema26=price,
            macd=MACDValues(),
            has_rsi=has_rsi,
            has_sma=True,
            has_ema=True,
            has_macd=True,
        ),
        signals=SignalSet(rsi=rsi_signal, macd=macd_signal, sma=sma_signal, overall=overall),
        confidence=confidence,
        reasons=["RSI oversold (28.0)", "MACD bullish crossover"],
    )


def make_trade(
    symbol: str = "SOLUSDT",
    entry_price: float = 100.0,
    amount: float = 10.0,
    quantity: str = "0.1000",
    opened_at: datetime | None = None,
    trade_id: str = "trade_test",
) -> TradeRecord:
    return TradeRecord(
        trade_id=trade_id,
        symbol=symbol,
        amount=amount,
        entry_price=entry_price,
        quantity=quantity,
        opened_at=opened_at or datetime.now(timezone.utc),
    )


# ---------------------------------------------------------------------------
# In-memory collaborators
# ---------------------------------------------------------------------------


class FakeExchange:
    """ExchangeClient double backed by dicts; counts calls and records orders."""

    def __init__(self) -> None:
        self.tickers: dict[str, TickerSnapshot] = {}
        self.candles: dict[str, list[Candle]] = {}
        self.balances = [AssetBalance(asset="USDT", free=1000.0, locked=0.0)]
        self.ping_ok = True
        self.fail_orders = False
        self.fail_tickers = False
        self.orders: list[tuple[str, str, str]] = []
        self.calls: dict[str, int] = {}

    def _count(self, name: str) -> None:
        self.calls[name] = self.calls.get(name, 0) + 1

    def set_ticker(self, ticker: TickerSnapshot) -> None:
        self.tickers[ticker.symbol] = ticker

    async def test_connection(self) -> bool:
        self._count("test_connection")
        return self.ping_ok

    async def get_ticker(self, symbol: str) -> TickerSnapshot:
        self._count("get_ticker")
        if symbol not in self.tickers:
            raise ExchangeError(f"Unknown symbol {symbol}", status_code=400)
        return self.tickers[symbol]

    async def get_all_tickers(self) -> list[TickerSnapshot]:
        self._count("get_all_tickers")
        if self.fail_tickers:
            raise ExchangeError("ticker endpoint down", status_code=503)
        return list(self.tickers.values())

    async def get_candles(self, symbol: str, interval: str = "5m", limit: int = 100) -> list[Candle]:
        self._count("get_candles")
        return self.candles.get(symbol, [])[-limit:]

    async def get_account_balances(self) -> list[AssetBalance]:
        self._count("get_account_balances")
        return list(self.balances)

    async def calculate_quantity(self, symbol: str, notional: float) -> str:
        ticker = await self.get_ticker(symbol)
        return f"{notional / ticker.price:.4f}"

    async def place_market_order(self, symbol: str, side: str, quantity: str) -> OrderFill:
        self._count("place_market_order")
        if self.fail_orders:
            raise ExchangeError("order rejected", status_code=400)
        self.orders.append((symbol, side, quantity))
        price = self.tickers[symbol].price if symbol in self.tickers else 0.0
        return OrderFill(
            order_id=str(len(self.orders)),
            filled_price=price,
            commission=0.01,
            commission_asset="USDT",
            executed_qty=float(quantity),
        )

    async def close(self) -> None:
        self._count("close")


class FakeStorage:
    """Storage double keeping everything in memory."""

    def __init__(self, stats: BotStats | None = None) -> None:
        self.stats = stats or BotStats()
        self.trades: dict[str, TradeRecord] = {}
        self.logs: list[LogEntry] = []
        self.config: BotConfig | None = None
        self.analyses = []
        self.balances: list[AssetBalance] = []
        self.performance_snapshots = 0
        self.running_writes: list[bool] = []
        self.fail_set_running = False
        self.fail_save_config = False
        self.fail_position_writes = False

    async def create_trade(self, trade: TradeRecord) -> None:
        self.trades[trade.trade_id] = trade

    async def update_trade(self, trade: TradeRecord) -> None:
        self.trades[trade.trade_id] = trade

    async def open_trade(self, trade: TradeRecord, cost: float) -> None:
        if self.fail_position_writes:
            raise PersistenceError("open_trade failed")
        self.trades[trade.trade_id] = trade
        self.stats.total_capital -= cost

    async def close_trade(self, trade: TradeRecord, proceeds: float, profit: float) -> None:
        if self.fail_position_writes:
            raise PersistenceError("close_trade failed")
        self.trades[trade.trade_id] = trade
        self.stats.total_capital += proceeds
        await self.add_profit(profit)

    async def get_open_trades(self, symbol: str | None = None) -> list[TradeRecord]:
        return [
            t
            for t in self.trades.values()
            if t.status == TradeStatus.OPEN and (symbol is None or t.symbol == symbol)
        ]

    async def get_trade_history(self, limit: int = 50) -> list[TradeRecord]:
        return sorted(self.trades.values(), key=lambda t: t.opened_at, reverse=True)[:limit]

    async def get_closed_trades(self, limit: int = 1000) -> list[TradeRecord]:
        closed = [t for t in self.trades.values() if t.status == TradeStatus.CLOSED]
        return sorted(closed, key=lambda t: t.closed_at, reverse=True)[:limit]

    async def add_log(self, level: str, message: str, details: dict | None = None) -> None:
        self.logs.append(LogEntry(level=level, message=message, details=details))

    async def get_logs(self, limit: int = 100) -> list[LogEntry]:
        return list(reversed(self.logs))[:limit]

    async def save_config(self, config: BotConfig) -> None:
        if self.fail_save_config:
            raise PersistenceError("save_config failed")
        self.config = config
        self.stats.total_capital = config.initial_capital

    async def get_config(self) -> BotConfig | None:
        return self.config

    async def set_running(self, running: bool) -> None:
        if self.fail_set_running:
            raise PersistenceError("set_running failed")
        self.running_writes.append(running)
        self.stats.is_running = running

    async def get_stats(self) -> BotStats:
        return self.stats.model_copy()

    async def update_capital(self, delta: float) -> None:
        self.stats.total_capital += delta

    async def add_profit(self, profit: float) -> None:
        self.stats.total_profit += profit
        self.stats.trades_count += 1
        if profit < 0:
            self.stats.daily_loss += abs(profit)

    async def reset_daily_loss(self) -> None:
        self.stats.daily_loss = 0.0
        self.stats.last_reset_date = datetime.now(timezone.utc).date()

    async def save_analysis(self, result: AnalysisResult) -> None:
        self.analyses.append(result)

    async def save_account_balances(self, balances: list[AssetBalance]) -> None:
        self.balances = list(balances)

    async def get_account_balances(self) -> list[AssetBalance]:
        return list(self.balances)

    async def record_daily_performance(self) -> None:
        self.performance_snapshots += 1

    async def health_check(self) -> bool:
        return True


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings():
    return Settings(
        ANALYSIS_INTERVAL_SECONDS=3600,
        TRADING_INTERVAL_SECONDS=3600,
        MONITOR_INTERVAL_SECONDS=3600,
        PAIR_REFRESH_SECONDS=300,
        PING_TIMEOUT_SECONDS=1,
        EXCHANGE_TIMEOUT_SECONDS=2,
        ORDER_TIMEOUT_SECONDS=2,
        STOP_GRACE_SECONDS=1,
    )


@pytest.fixture
def exchange():
    return FakeExchange()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def today() -> date:
    return datetime.now(timezone.utc).date()
