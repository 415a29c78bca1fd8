"""Exception hierarchy shared by the engine and its adapters."""

from __future__ import annotations


class TradingBotError(Exception):
    """Base class for every error raised by autotrader."""


class ConnectivityError(TradingBotError):
    """Exchange unreachable or ping failed."""


class InsufficientFundsError(TradingBotError):
    def __init__(self, asset: str, available: float, required: float) -> None:
        self.asset = asset
        self.available = available
        self.required = required
        super().__init__(
            f"Insufficient {asset} balance: {available:.2f} available, {required:.2f} required"
        )


class ConfigurationError(TradingBotError):
    """Bot configuration rejected before start."""


class InsufficientDataError(TradingBotError):
    def __init__(self, indicator: str, required: int, available: int) -> None:
        self.indicator = indicator
        self.required = required
        self.available = available
        super().__init__(f"{indicator} needs {required} values, got {available}")


class ExchangeError(TradingBotError):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class OrderExecutionError(TradingBotError):
    def __init__(self, symbol: str, side: str, message: str) -> None:
        self.symbol = symbol
        self.side = side
        super().__init__(f"{side} {symbol} failed: {message}")


class PersistenceError(TradingBotError):
    """Storage collaborator failed to read or write."""
