"""回测绩效指标：胜率、总盈亏、最大回撤（按逐笔平仓后的余额曲线计算）。"""

from __future__ import annotations

from typing import Any, Iterable

from shared.models.models import Position


def compute_trade_metrics(positions: Iterable[Position], initial_balance: float) -> dict[str, Any]:
    """汇总已平仓交易。

    Returns
    -------
    dict
        initial_balance / final_balance / total_pnl / trades / wins / losses /
        win_rate_pct / max_drawdown_pct / best_trade / worst_trade。
    """
    closed = [p for p in positions if not p.is_open]
    pnls = [float(p.realized_pnl or 0.0) for p in closed]
    wins = sum(1 for x in pnls if x > 0)
    losses = sum(1 for x in pnls if x <= 0)

    peak = run = float(initial_balance)
    max_dd = 0.0
    for pnl in pnls:
        run += pnl
        peak = max(peak, run)
        if peak > 0:
            max_dd = max(max_dd, (peak - run) / peak)

    total = sum(pnls)
    return {
        "initial_balance": float(initial_balance),
        "final_balance": float(initial_balance) + total,
        "total_pnl": total,
        "trades": len(pnls),
        "wins": wins,
        "losses": losses,
        "win_rate_pct": (wins / len(pnls) * 100.0) if pnls else 0.0,
        "max_drawdown_pct": max_dd * 100.0,
        "best_trade": max(pnls) if pnls else 0.0,
        "worst_trade": min(pnls) if pnls else 0.0,
    }
