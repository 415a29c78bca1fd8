"""SelectionCriteria, PairAnalysis Pydantic models."""

from datetime import datetime

from pydantic import BaseModel

DEFAULT_EXCLUDED_SYMBOLS = [
    "BTCDOMUSDT",
    "DEFIUSDT",
    "USDCUSDT",
    "BUSDUSDT",
    "DAIUSDT",
    "TUSDUSDT",
    "USTCUSDT",
    "USDPUSDT",
    "FDUSDUSDT",
]


class SelectionCriteria(BaseModel):
    min_volume: float = 500_000.0
    min_liquidity: float = 5_000.0
    max_volatility: float = 25.0
    top_pairs_count: int = 8
    exclude_symbols: list[str] = DEFAULT_EXCLUDED_SYMBOLS


class PairAnalysis(BaseModel):
    symbol: str
    score: float = 0.0
    volume: float = 0.0
    price_change: float = 0.0
    volatility: float = 0.0
    liquidity: float = 0.0
    technical_score: float = 0.0
    reasons: list[str] = []


class SelectionStats(BaseModel):
    last_update: datetime | None = None
    pair_count: int = 0
    next_update_seconds: float = 0.0
