"""Broker 抽象接口与运行模式定义。

回测与实盘共用同一个 CycleOrchestrator，差异全部收敛在 Broker 实现里：
- BacktestBroker：内存 PositionLedger，按 K 线高低价判定止损/止盈；
- LiveBroker：交易所下括号单（入场 + 止损 + 止盈），持仓状态以交易所为准。
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum

from shared.models.models import Candle, ClosedTrade, ExecutionReport, OrderParameters, Position, Signal


class BrokerMode(Enum):
    BACKTEST = "backtest"
    LIVE = "live"


class Broker(ABC):
    """交易执行抽象层（所有方法都是协程，周期内顺序 await）。"""

    mode: BrokerMode

    @abstractmethod
    async def balance(self) -> float:
        """可用于定仓的余额（USD）。"""

    @abstractmethod
    async def has_open_position(self) -> bool:
        """当前是否持仓（持仓期间不开新仓）。"""

    @abstractmethod
    async def check_exit(self, candle: Candle) -> Position | None:
        """用最新收盘 K 线评估退出；发生平仓时返回已平仓的 Position。"""

    @abstractmethod
    async def open_position(
        self,
        signal: Signal,
        params: OrderParameters,
        last_price: float,
        entry_time: int,
        reason: str = "",
    ) -> tuple[ExecutionReport, Position | None]:
        """下单开仓。只有执行明确成功才返回 Position。"""

    @abstractmethod
    async def recent_closed_trades(self, limit: int = 10) -> list[ClosedTrade]:
        """最近 limit 笔已平仓交易（最新在最后），喂给下一次 oracle 请求。"""

    async def flatten(self, candle: Candle, reason: str = "End-Of-Data") -> Position | None:
        """按 K 线收盘价强制平仓（默认不支持，返回 None）。"""
        return None

    def close(self) -> None:
        """释放资源（可选）。"""
