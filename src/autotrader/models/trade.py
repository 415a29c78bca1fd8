"""TradeRecord Pydantic model."""

import enum
from datetime import datetime

from pydantic import BaseModel


class TradeSide(str, enum.Enum):
    BUY = "BUY"
    SELL = "SELL"


class TradeStatus(str, enum.Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class TradeRecord(BaseModel):
    trade_id: str
    symbol: str
    side: TradeSide = TradeSide.BUY
    amount: float  # notional, quote asset
    entry_price: float
    exit_price: float | None = None
    quantity: str  # exchange-formatted
    fees: float = 0.0
    status: TradeStatus = TradeStatus.OPEN
    opened_at: datetime
    closed_at: datetime | None = None
    profit: float | None = None
    order_id: str | None = None
    close_order_id: str | None = None
    exit_reason: str | None = None
    confidence_at_entry: int = 0

    @property
    def is_open(self) -> bool:
        return self.status == TradeStatus.OPEN

    def profit_percent(self, price: float) -> float:
        if self.entry_price <= 0:
            return 0.0
        return (price - self.entry_price) / self.entry_price * 100
