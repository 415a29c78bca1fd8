"""OrderFill, AssetBalance Pydantic models."""

from pydantic import BaseModel


class OrderFill(BaseModel):
    order_id: str
    filled_price: float = 0.0
    commission: float = 0.0
    commission_asset: str = ""
    executed_qty: float = 0.0


class AssetBalance(BaseModel):
    asset: str
    free: float = 0.0
    locked: float = 0.0
