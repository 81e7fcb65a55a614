"""回测产物导出与控制台汇总表。"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Iterable

import pandas as pd
from rich import box
from rich.console import Console
from rich.table import Table

from shared.models.models import Position


def export_trades(positions: Iterable[Position], output_dir: str | Path) -> dict[str, Path]:
    """写出 trades.json 与 trades.csv。"""
    out = Path(output_dir)
    out.mkdir(parents=True, exist_ok=True)
    rows = [p.to_dict() for p in positions]

    json_path = out / "trades.json"
    json_path.write_text(json.dumps(rows, indent=2, ensure_ascii=False), encoding="utf-8")

    csv_path = out / "trades.csv"
    pd.DataFrame(rows, columns=list(Position.__dataclass_fields__)).to_csv(csv_path, index=False)
    return {"trades_json": json_path, "trades_csv": csv_path}


def write_summary(summary: dict[str, Any], output_dir: str | Path) -> Path:
    out = Path(output_dir)
    out.mkdir(parents=True, exist_ok=True)
    path = out / "summary.json"
    path.write_text(json.dumps(summary, indent=2, ensure_ascii=False, default=str), encoding="utf-8")
    return path


def render_summary(summary: dict[str, Any], console: Console | None = None) -> Table:
    """rich 表格打印回测汇总。"""
    table = Table(title="Backtest Summary", box=box.ROUNDED)
    table.add_column("Metric", style="cyan", no_wrap=True)
    table.add_column("Value", justify="right")

    def money(v: Any) -> str:
        return f"${float(v):,.2f}"

    rows = [
        ("Initial balance", money(summary.get("initial_balance", 0.0))),
        ("Final balance", money(summary.get("final_balance", 0.0))),
        ("Total PnL", money(summary.get("total_pnl", 0.0))),
        ("Trades", str(summary.get("trades", 0))),
        ("Wins / Losses", f"{summary.get('wins', 0)} / {summary.get('losses', 0)}"),
        ("Win rate", f"{float(summary.get('win_rate_pct', 0.0)):.2f}%"),
        ("Max drawdown", f"{float(summary.get('max_drawdown_pct', 0.0)):.2f}%"),
        ("Oracle calls", str(summary.get("oracle_calls", 0))),
    ]
    if summary.get("stopped_early"):
        rows.append(("Stopped early", "oracle budget exhausted"))
    for name, val in rows:
        table.add_row(name, val)

    (console or Console()).print(table)
    return table


def render_closed_trades(trades: Iterable[Any], title: str = "Closed Trades", console: Console | None = None) -> Table:
    """通用交易表（ClosedTrade / OpenLeg 等带 to_dict 或 dataclass 字段的对象）。"""
    items = list(trades)
    table = Table(title=title, box=box.ROUNDED)
    if not items:
        table.add_column("(none)")
        (console or Console()).print(table)
        return table
    first = items[0].to_dict() if hasattr(items[0], "to_dict") else dict(vars(items[0]))
    for col in first:
        table.add_column(col, justify="right" if col != "side" else "left")
    for item in items:
        row = item.to_dict() if hasattr(item, "to_dict") else dict(vars(item))
        table.add_row(*[f"{v:.4f}" if isinstance(v, float) else str(getattr(v, "value", v)) for v in row.values()])
    (console or Console()).print(table)
    return table
