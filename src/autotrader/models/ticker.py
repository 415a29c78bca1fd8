"""TickerSnapshot (24h stats, bid, ask) Pydantic model."""

from pydantic import BaseModel


class TickerSnapshot(BaseModel):
    symbol: str
    price: float
    price_change_percent: float = 0.0
    volume: float = 0.0  # base asset, 24h
    quote_volume: float = 0.0  # quote asset, 24h
    high: float = 0.0
    low: float = 0.0
    open_price: float = 0.0
    bid: float = 0.0
    ask: float = 0.0

    @property
    def spread_percent(self) -> float:
        if self.price <= 0:
            return 0.0
        return (self.ask - self.bid) / self.price * 100

    @property
    def base_asset(self) -> str:
        return self.symbol.removesuffix("USDT")
