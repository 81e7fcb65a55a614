"""oracle 提示词构造（交易决策 + 回测复盘）。"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Sequence

from shared.models.models import Candle, ClosedTrade, Position


def _iso(ts: int | None) -> str | None:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat().replace("+00:00", "Z")


def build_decision_payload(
    window: Sequence[Candle],
    recent_trades: Sequence[ClosedTrade],
    indicators: dict[str, list[float]] | None = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "ohlc": [c.to_dict() for c in window],
        "recent_closed_trades": [t.to_dict() for t in recent_trades],
    }
    if indicators:
        payload["indicators"] = indicators
    return payload


def build_decision_prompt(
    window: Sequence[Candle],
    recent_trades: Sequence[ClosedTrade],
    indicators: dict[str, list[float]] | None = None,
    symbol: str = "PF_XBTUSD",
    timeframe: str = "1h",
) -> str:
    payload = json.dumps(build_decision_payload(window, recent_trades, indicators), separators=(",", ":"))
    return f"""
You are an expert quantitative strategist and risk manager for the {symbol} market.
Your ONLY job is to produce a single JSON object that defines a complete trade plan.

Provided market data: the last {len(window)} {timeframe} OHLC candles (timestamp in Unix seconds),
the indicator series computed over them, and the most recent closed trades with realized PnL.
{payload}

Produce the final JSON:
1. "signal": one of "LONG", "SHORT", "HOLD".
2. "confidence": your confidence in this signal, from 0 to 100.
3. "stop_loss_distance_in_usd": stop-loss distance from the current price in USD. 0 if HOLD.
4. "take_profit_distance_in_usd": take-profit distance from the current price in USD. 0 if HOLD.
5. "reason": a step-by-step explanation of the trade plan.

Return ONLY a JSON object with the five keys "signal", "confidence", "stop_loss_distance_in_usd",
"take_profit_distance_in_usd" and "reason".
""".strip()


def build_review_prompt(
    positions: Sequence[Position],
    stats: dict[str, Any],
    config_snapshot: dict[str, Any] | None = None,
) -> str:
    """回测复盘提示词：完整交易日志 + 汇总统计。"""
    enriched = [
        {
            "index": idx + 1,
            "signal": p.signal.value,
            "entryTime": _iso(p.entry_time),
            "exitTime": _iso(p.exit_time),
            "entryPrice": p.entry_price,
            "exitPrice": p.exit_price,
            "size": p.size,
            "stopLoss": p.stop_loss_price,
            "takeProfit": p.take_profit_price,
            "exitReason": p.exit_reason,
            "pnl": p.realized_pnl,
            "reason": p.reason or "N/A",
        }
        for idx, p in enumerate(positions)
    ]
    snapshot = json.dumps(config_snapshot or {}, indent=2, default=str)
    return f"""
You are a senior quantitative strategist.
Given the back-test trades below, return **only** a JSON object with these keys:
{{
  "summary": "One-sentence overview",
  "totalReturn": <number>,
  "winRate": <number>,
  "maxDrawdownPct": <number>,
  "bestTrade": {{ "index": <int>, "profit": <number>, "reason": "<string>" }},
  "worstTrade": {{ "index": <int>, "loss": <number>, "reason": "<string>" }},
  "commonLossPatterns": [ "<string>", ... ],
  "improvements": [ "<string>", ... ]
}}

Trade log:
{json.dumps(enriched, indent=2)}

Aggregate stats:
- Initial balance: ${stats.get("initial_balance", 0.0):.2f}
- Final balance:   ${stats.get("final_balance", 0.0):.2f}
- Total return:    ${stats.get("total_pnl", 0.0):.2f}
- Total trades:    {stats.get("trades", 0)}
- Win rate:        {stats.get("win_rate_pct", 0.0):.2f}%
- Max drawdown:    {stats.get("max_drawdown_pct", 0.0):.2f}%

Config snapshot:
{snapshot}
""".strip()
