"""回测 Broker：以当前 K 线收盘价成交，止损/止盈由 PositionLedger 按高低价判定。"""

from __future__ import annotations

from broker.abstract_broker import Broker, BrokerMode
from shared.models.models import Candle, ClosedTrade, ExecutionReport, OrderParameters, Position, Signal
from shared.state.position_ledger import PositionLedger
from shared.state.sqlite_ledger import TradeHistoryStore


class BacktestBroker(Broker):
    mode = BrokerMode.BACKTEST

    def __init__(
        self,
        initial_balance: float,
        ledger: PositionLedger | None = None,
        history: TradeHistoryStore | None = None,
        symbol: str = "PF_XBTUSD",
    ):
        self.ledger = ledger or PositionLedger(initial_balance)
        self.history = history
        self.symbol = symbol

    async def balance(self) -> float:
        return self.ledger.balance

    async def has_open_position(self) -> bool:
        return not self.ledger.is_flat

    def _record(self, closed: Position | None) -> Position | None:
        if closed is not None and self.history is not None:
            self.history.append(self.symbol, closed)
        return closed

    async def check_exit(self, candle: Candle) -> Position | None:
        return self._record(self.ledger.check_exit(candle))

    async def open_position(
        self,
        signal: Signal,
        params: OrderParameters,
        last_price: float,
        entry_time: int,
        reason: str = "",
    ) -> tuple[ExecutionReport, Position | None]:
        pos = self.ledger.open_position(signal, params, last_price, entry_time, reason)
        if pos is None:
            return ExecutionReport(status="failed", detail="ledger rejected entry"), None
        return ExecutionReport(status="success", detail="simulated fill"), pos

    async def recent_closed_trades(self, limit: int = 10) -> list[ClosedTrade]:
        return self.ledger.recent_closed_trades(limit)

    async def flatten(self, candle: Candle, reason: str = "End-Of-Data") -> Position | None:
        return self._record(self.ledger.close_position(candle.close, candle.timestamp, reason))

    def close(self) -> None:
        if self.history is not None:
            self.history.close()
