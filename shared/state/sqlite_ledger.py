"""SQLite 本地交易历史。

目标
----
- 已平仓记录跨进程保留，重启后仍能给 oracle 提供最近 N 笔交易；
- append-only：只追加，不修改、不删除。
"""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path

from shared.models.models import Position, PositionStatus, Signal


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class TradeHistoryStore:
    def __init__(self, path: str | Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self.path, isolation_level=None)
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._ensure_schema()

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> "TradeHistoryStore":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def _ensure_schema(self) -> None:
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS closed_positions (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              symbol TEXT NOT NULL,
              signal TEXT NOT NULL,
              entry_time INTEGER NOT NULL,
              entry_price REAL NOT NULL,
              size REAL NOT NULL,
              stop_loss_price REAL NOT NULL,
              take_profit_price REAL NOT NULL,
              exit_time INTEGER NOT NULL,
              exit_price REAL NOT NULL,
              exit_reason TEXT,
              realized_pnl REAL NOT NULL,
              reason TEXT,
              recorded_at TEXT NOT NULL,
              raw_json TEXT NOT NULL
            );
            """
        )
        self._conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_closed_symbol_exit ON closed_positions(symbol, exit_time);"
        )

    def append(self, symbol: str, pos: Position) -> None:
        if pos.is_open or pos.exit_time is None or pos.exit_price is None:
            raise ValueError("Only closed positions can be persisted")
        self._conn.execute(
            """
            INSERT INTO closed_positions(
              symbol, signal, entry_time, entry_price, size, stop_loss_price, take_profit_price,
              exit_time, exit_price, exit_reason, realized_pnl, reason, recorded_at, raw_json
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (
                symbol,
                pos.signal.value,
                pos.entry_time,
                pos.entry_price,
                pos.size,
                pos.stop_loss_price,
                pos.take_profit_price,
                pos.exit_time,
                pos.exit_price,
                pos.exit_reason,
                float(pos.realized_pnl or 0.0),
                pos.reason,
                _utc_now_iso(),
                json.dumps(pos.to_dict(), ensure_ascii=False, default=str),
            ),
        )

    def recent(self, symbol: str, limit: int = 10) -> list[Position]:
        """最近 limit 笔（按平仓时间升序返回，最新在最后）。"""
        if limit <= 0:
            return []
        rows = self._conn.execute(
            """
            SELECT signal, entry_time, entry_price, size, stop_loss_price, take_profit_price,
                   exit_time, exit_price, exit_reason, realized_pnl, reason
            FROM closed_positions WHERE symbol = ?
            ORDER BY exit_time DESC, id DESC LIMIT ?;
            """,
            (symbol, int(limit)),
        ).fetchall()
        out = [
            Position(
                signal=Signal(r[0]),
                entry_time=int(r[1]),
                entry_price=float(r[2]),
                size=float(r[3]),
                stop_loss_price=float(r[4]),
                take_profit_price=float(r[5]),
                exit_time=int(r[6]),
                exit_price=float(r[7]),
                exit_reason=r[8],
                realized_pnl=float(r[9]),
                reason=r[10] or "",
                status=PositionStatus.CLOSED,
            )
            for r in rows
        ]
        out.reverse()
        return out

    def count(self, symbol: str | None = None) -> int:
        if symbol is None:
            row = self._conn.execute("SELECT COUNT(*) FROM closed_positions;").fetchone()
        else:
            row = self._conn.execute("SELECT COUNT(*) FROM closed_positions WHERE symbol = ?;", (symbol,)).fetchone()
        return int(row[0])
