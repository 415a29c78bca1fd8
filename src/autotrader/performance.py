"""Closed-trade performance metrics."""

from __future__ import annotations

import math
from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from autotrader.models.trade import TradeRecord


def compute_metrics(trades: Iterable[TradeRecord]) -> dict:
    """Win rate, profit factor, Sharpe, drawdown over trades in close order."""
    pnls = [t.profit or 0.0 for t in trades if t.profit is not None]

    if not pnls:
        return {
            "total_trades": 0,
            "winning_trades": 0,
            "losing_trades": 0,
            "win_rate": 0.0,
            "profit_factor": 0.0,
            "sharpe_ratio": 0.0,
            "total_profit": 0.0,
            "avg_profit": 0.0,
            "avg_win": 0.0,
            "avg_loss": 0.0,
            "max_profit": 0.0,
            "min_profit": 0.0,
            "max_drawdown": 0.0,
        }

    total = len(pnls)
    wins = [p for p in pnls if p > 0]
    losses = [p for p in pnls if p < 0]
    total_profit = sum(pnls)

    sum_wins = sum(wins)
    sum_losses = abs(sum(losses))
    if sum_losses > 0:
        profit_factor = sum_wins / sum_losses
    elif sum_wins > 0:
        profit_factor = float("inf")
    else:
        profit_factor = 0.0

    # Sharpe ratio (simplified: mean/std of PnL)
    mean_pnl = total_profit / total
    if total > 1:
        variance = sum((p - mean_pnl) ** 2 for p in pnls) / (total - 1)
        std_pnl = math.sqrt(variance) if variance > 0 else 0.0
        sharpe = mean_pnl / std_pnl if std_pnl > 0 else 0.0
    else:
        sharpe = 0.0

    cumulative = 0.0
    peak = 0.0
    max_dd = 0.0
    for p in pnls:
        cumulative += p
        peak = max(peak, cumulative)
        max_dd = max(max_dd, peak - cumulative)

    return {
        "total_trades": total,
        "winning_trades": len(wins),
        "losing_trades": len(losses),
        "win_rate": round(len(wins) / total * 100, 2),
        "profit_factor": round(profit_factor, 4) if profit_factor != float("inf") else profit_factor,
        "sharpe_ratio": round(sharpe, 4),
        "total_profit": round(total_profit, 4),
        "avg_profit": round(mean_pnl, 4),
        "avg_win": round(sum_wins / len(wins), 4) if wins else 0.0,
        "avg_loss": round(-sum_losses / len(losses), 4) if losses else 0.0,
        "max_profit": round(max(pnls), 4),
        "min_profit": round(min(pnls), 4),
        "max_drawdown": round(max_dd, 4),
    }
