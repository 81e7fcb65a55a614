"""PositionLedger：单仓位状态机（FLAT <-> OPEN）。

Position 与运行余额只在 `open_position` / `check_exit` / `close_position` / `sync_balance` 内被修改，
其他组件只读。同一时刻最多一个 OPEN 仓位。
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable

from shared.models.models import (
    Candle,
    ClosedTrade,
    OrderParameters,
    Position,
    PositionStatus,
    Signal,
)
from shared.utils.logging import setup_logger

STOP_LOSS = "Stop-Loss"
TAKE_PROFIT = "Take-Profit"


def realized_pnl(signal: Signal, entry_price: float, exit_price: float, size: float) -> float:
    """(exit - entry) × size × (+1 LONG / -1 SHORT)。"""
    return (exit_price - entry_price) * size * signal.direction


def _fmt_ts(ts: int) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


class PositionLedger:
    def __init__(self, initial_balance: float = 0.0, logger=None):
        self.initial_balance = float(initial_balance)
        self._balance = float(initial_balance)
        self.position: Position | None = None
        self.closed_positions: list[Position] = []
        self.logger = logger or setup_logger("ledger")

    @property
    def balance(self) -> float:
        return self._balance

    def sync_balance(self, balance: float) -> None:
        """实盘：用交易所可用保证金覆盖本地余额。"""
        balance = float(balance)
        if balance != self._balance:
            self.logger.debug("[LEDGER] Balance synced from exchange: %.2f -> %.2f", self._balance, balance)
        self._balance = balance

    @property
    def state(self) -> str:
        return "OPEN" if self.position is not None else "FLAT"

    @property
    def is_flat(self) -> bool:
        return self.position is None

    def open_position(
        self,
        signal: Signal,
        params: OrderParameters,
        entry_price: float,
        entry_time: int,
        reason: str = "",
    ) -> Position | None:
        """FLAT -> OPEN。已有持仓或 HOLD 信号时不做任何事，返回 None。"""
        if self.position is not None:
            self.logger.warning("[LEDGER] Position already open; ignoring new %s entry.", signal.value)
            return None
        if signal is Signal.HOLD:
            self.logger.warning("[LEDGER] HOLD is not an entry signal.")
            return None
        pos = Position(
            signal=signal,
            entry_time=int(entry_time),
            entry_price=float(entry_price),
            size=params.size,
            stop_loss_price=params.stop_loss_price,
            take_profit_price=params.take_profit_price,
            reason=reason,
        )
        self.position = pos
        self.logger.info(
            "[ENTRY] [%s] %s %s @ %s (SL=%s TP=%s)",
            _fmt_ts(pos.entry_time),
            pos.signal.value,
            pos.size,
            pos.entry_price,
            pos.stop_loss_price,
            pos.take_profit_price,
        )
        return pos

    def exit_trigger(self, candle: Candle) -> tuple[float, str] | None:
        """当前 K 线是否触发止损/止盈；两者同时满足时按止损处理。"""
        pos = self.position
        if pos is None:
            return None
        if pos.signal is Signal.LONG:
            if candle.low <= pos.stop_loss_price:
                return pos.stop_loss_price, STOP_LOSS
            if candle.high >= pos.take_profit_price:
                return pos.take_profit_price, TAKE_PROFIT
        else:
            if candle.high >= pos.stop_loss_price:
                return pos.stop_loss_price, STOP_LOSS
            if candle.low <= pos.take_profit_price:
                return pos.take_profit_price, TAKE_PROFIT
        return None

    def check_exit(self, candle: Candle) -> Position | None:
        """OPEN 时用新 K 线评估退出条件；触发则平仓并返回已平仓的 Position。"""
        trigger = self.exit_trigger(candle)
        if trigger is None:
            return None
        exit_price, reason = trigger
        return self.close_position(exit_price, candle.timestamp, reason)

    def close_position(self, exit_price: float, exit_time: int, reason: str) -> Position | None:
        """OPEN -> FLAT：结算盈亏并计入余额。"""
        pos = self.position
        if pos is None:
            return None
        pnl = realized_pnl(pos.signal, pos.entry_price, exit_price, pos.size)
        pos.exit_price = float(exit_price)
        pos.exit_time = int(exit_time)
        pos.exit_reason = reason
        pos.realized_pnl = pnl
        pos.status = PositionStatus.CLOSED
        self._balance += pnl
        self.closed_positions.append(pos)
        self.position = None
        self.logger.info(
            "[EXIT] [%s] %s triggered for %s @ %s, pnl=%.2f, balance=%.2f",
            _fmt_ts(pos.exit_time),
            reason,
            pos.signal.value,
            exit_price,
            pnl,
            self.balance,
        )
        return pos

    def seed_history(self, positions: Iterable[Position]) -> None:
        """用持久化的已平仓记录预填历史（不影响余额）。"""
        seeded = [p for p in positions if p.status is PositionStatus.CLOSED]
        self.closed_positions = seeded + self.closed_positions

    def recent_closed_trades(self, limit: int = 10) -> list[ClosedTrade]:
        if limit <= 0:
            return []
        return [ClosedTrade.from_position(p) for p in self.closed_positions[-limit:]]
