"""Collaborator contracts consumed by the engine."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from autotrader.models.analysis import AnalysisResult
    from autotrader.models.bot import BotConfig, BotStats, LogEntry
    from autotrader.models.candle import Candle
    from autotrader.models.order import AssetBalance, OrderFill
    from autotrader.models.ticker import TickerSnapshot
    from autotrader.models.trade import TradeRecord


class ExchangeClient(Protocol):
    async def test_connection(self) -> bool: ...

    async def get_ticker(self, symbol: str) -> TickerSnapshot: ...

    async def get_all_tickers(self) -> list[TickerSnapshot]: ...

    async def get_candles(self, symbol: str, interval: str = "5m", limit: int = 100) -> list[Candle]: ...

    async def get_account_balances(self) -> list[AssetBalance]: ...

    async def calculate_quantity(self, symbol: str, notional: float) -> str: ...

    async def place_market_order(self, symbol: str, side: str, quantity: str) -> OrderFill: ...

    async def close(self) -> None: ...


class Storage(Protocol):
    # --- Trades ---
    async def create_trade(self, trade: TradeRecord) -> None: ...

    async def update_trade(self, trade: TradeRecord) -> None: ...

    async def open_trade(self, trade: TradeRecord, cost: float) -> None: ...

    async def close_trade(self, trade: TradeRecord, proceeds: float, profit: float) -> None: ...

    async def get_open_trades(self, symbol: str | None = None) -> list[TradeRecord]: ...

    async def get_trade_history(self, limit: int = 50) -> list[TradeRecord]: ...

    async def get_closed_trades(self, limit: int = 1000) -> list[TradeRecord]: ...

    # --- Logs ---
    async def add_log(self, level: str, message: str, details: dict | None = None) -> None: ...

    async def get_logs(self, limit: int = 100) -> list[LogEntry]: ...

    # --- Config / stats ---
    async def save_config(self, config: BotConfig) -> None: ...

    async def get_config(self) -> BotConfig | None: ...

    async def set_running(self, running: bool) -> None: ...

    async def get_stats(self) -> BotStats: ...

    async def update_capital(self, delta: float) -> None: ...

    async def add_profit(self, profit: float) -> None: ...

    async def reset_daily_loss(self) -> None: ...

    # --- Market / account ---
    async def save_analysis(self, result: AnalysisResult) -> None: ...

    async def save_account_balances(self, balances: list[AssetBalance]) -> None: ...

    async def get_account_balances(self) -> list[AssetBalance]: ...

    async def record_daily_performance(self) -> None: ...

    async def health_check(self) -> bool: ...


class Notifier(Protocol):
    async def send_alert(self, title: str, body: str, severity: str = "info") -> None: ...
