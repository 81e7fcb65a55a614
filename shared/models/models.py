"""核心数据结构：Candle / Recommendation / OrderParameters / Position / Fill / ClosedTrade。

所有跨组件传递的记录都是固定形状的 dataclass；除 Position（由 PositionLedger 独占并在平仓时
改写）外，其余均为 frozen，构造后不可变。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Signal(str, Enum):
    """oracle 给出的方向。"""

    LONG = "LONG"
    SHORT = "SHORT"
    HOLD = "HOLD"

    @property
    def direction(self) -> int:
        """LONG=+1，SHORT=-1，HOLD=0。"""
        if self is Signal.LONG:
            return 1
        if self is Signal.SHORT:
            return -1
        return 0


class PositionStatus(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"


@dataclass(frozen=True)
class Candle:
    """单根 K 线（timestamp 为 Unix 秒）。"""

    timestamp: int
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "volume": self.volume,
        }


@dataclass(frozen=True)
class Recommendation:
    """oracle 建议（已通过 schema 校验）。"""

    signal: Signal
    confidence: int
    stop_loss_distance_usd: float
    take_profit_distance_usd: float
    reason: str

    @classmethod
    def hold(cls, reason: str) -> "Recommendation":
        """失败哨兵：HOLD + 0 置信度 + 0 距离，reason 写失败原因。"""
        return cls(
            signal=Signal.HOLD,
            confidence=0,
            stop_loss_distance_usd=0.0,
            take_profit_distance_usd=0.0,
            reason=reason,
        )

    @property
    def is_hold(self) -> bool:
        return self.signal is Signal.HOLD

    def to_dict(self) -> dict[str, Any]:
        return {
            "signal": self.signal.value,
            "confidence": self.confidence,
            "stop_loss_distance_in_usd": self.stop_loss_distance_usd,
            "take_profit_distance_in_usd": self.take_profit_distance_usd,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class OrderParameters:
    size: float
    stop_loss_price: float
    take_profit_price: float


@dataclass
class Position:
    """单笔持仓记录。OPEN -> CLOSED 之后不再变化。"""

    signal: Signal
    entry_time: int
    entry_price: float
    size: float
    stop_loss_price: float
    take_profit_price: float
    reason: str = ""
    status: PositionStatus = PositionStatus.OPEN
    exit_time: int | None = None
    exit_price: float | None = None
    exit_reason: str | None = None
    realized_pnl: float | None = None

    @property
    def is_open(self) -> bool:
        return self.status is PositionStatus.OPEN

    def to_dict(self) -> dict[str, Any]:
        return {
            "signal": self.signal.value,
            "entry_time": self.entry_time,
            "entry_price": self.entry_price,
            "size": self.size,
            "stop_loss_price": self.stop_loss_price,
            "take_profit_price": self.take_profit_price,
            "reason": self.reason,
            "status": self.status.value,
            "exit_time": self.exit_time,
            "exit_price": self.exit_price,
            "exit_reason": self.exit_reason,
            "realized_pnl": self.realized_pnl,
        }


@dataclass(frozen=True)
class Fill:
    """交易所原始成交记录（append-only）。"""

    side: str  # "buy" / "sell"
    price: float
    size: float
    fill_time: int

    def __post_init__(self) -> None:
        side = str(self.side).lower()
        if side not in {"buy", "sell"}:
            raise ValueError(f"Invalid fill side: {self.side}")
        if self.size <= 0:
            raise ValueError(f"Fill size must be positive: {self.size}")
        object.__setattr__(self, "side", side)

    @property
    def signal(self) -> Signal:
        return Signal.LONG if self.side == "buy" else Signal.SHORT


@dataclass(frozen=True)
class ClosedTrade:
    """FIFO 配对后的一笔完整往返交易。"""

    side: Signal
    entry_time: int
    entry_price: float
    exit_time: int
    exit_price: float
    size: float
    pnl: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "side": self.side.value,
            "entry_time": self.entry_time,
            "entry_price": self.entry_price,
            "exit_time": self.exit_time,
            "exit_price": self.exit_price,
            "size": self.size,
            "pnl": self.pnl,
        }

    @classmethod
    def from_position(cls, pos: Position) -> "ClosedTrade":
        if pos.is_open or pos.exit_time is None or pos.exit_price is None:
            raise ValueError("Position is not closed")
        return cls(
            side=pos.signal,
            entry_time=pos.entry_time,
            entry_price=pos.entry_price,
            exit_time=pos.exit_time,
            exit_price=pos.exit_price,
            size=pos.size,
            pnl=float(pos.realized_pnl or 0.0),
        )


@dataclass
class OpenLeg:
    """FIFO 队列里尚未配对的持仓腿。"""

    side: Signal
    entry_time: int
    entry_price: float
    remaining_size: float


@dataclass(frozen=True)
class ExecutionReport:
    """执行结果：只有 status == "success" 才视为开仓成功。"""

    status: str  # "success" / "failed" / "unknown"
    detail: str = ""
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == "success"
