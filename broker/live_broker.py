"""实盘 Broker（Kraken Futures）。

- 开仓：一次 batchorder 提交入场限价 + 止损限价（reduceOnly）+ 止盈限价（reduceOnly）；
  只有交易所明确返回 `result == "success"` 才在本地账本记一笔 OPEN；
  网络异常、超时等结果未知的情况一律不记仓（宁可漏单，不留幽灵仓位）。
- 退出：由交易所上的括号单完成；本地账本 OPEN 而交易所已无持仓时，
  用成交记录 FIFO 配对出的最新平仓价关闭本地记录。
- 最近交易：优先从交易所成交重建，失败时退回本地持久化历史。
"""

from __future__ import annotations

import asyncio
from typing import Any

from analysis.reconcile import FillReconciler
from broker.abstract_broker import Broker, BrokerMode
from broker.kraken_client import KrakenFuturesClient
from shared.config.schema import ExchangeConfig
from shared.errors import ExecutionError
from shared.models.models import Candle, ClosedTrade, ExecutionReport, OrderParameters, Position, Signal
from shared.state.position_ledger import PositionLedger
from shared.state.sqlite_ledger import TradeHistoryStore
from shared.utils.logging import setup_logger
from shared.utils.precision import snap_to_decimals

EXCHANGE_EXIT = "Exchange-Exit"


def build_bracket_payload(
    symbol: str,
    signal: Signal,
    params: OrderParameters,
    last_price: float,
    entry_slippage_pct: float = 0.001,
    stop_slippage_pct: float = 0.01,
) -> dict[str, Any]:
    """构造括号单：激进限价入场 + 止损限价 + 止盈限价。"""
    if signal is Signal.HOLD:
        raise ValueError("Cannot build orders for HOLD")
    entry_side = "buy" if signal is Signal.LONG else "sell"
    close_side = "sell" if signal is Signal.LONG else "buy"
    d = signal.direction
    entry_limit = int(snap_to_decimals(last_price * (1 + d * entry_slippage_pct), 0))
    stop_limit = int(snap_to_decimals(params.stop_loss_price * (1 - d * stop_slippage_pct), 0))
    return {
        "batchOrder": [
            {
                "order": "send",
                "order_tag": "1",
                "orderType": "lmt",
                "symbol": symbol,
                "side": entry_side,
                "size": params.size,
                "limitPrice": entry_limit,
            },
            {
                "order": "send",
                "order_tag": "2",
                "orderType": "stp",
                "symbol": symbol,
                "side": close_side,
                "size": params.size,
                "limitPrice": stop_limit,
                "stopPrice": params.stop_loss_price,
                "reduceOnly": True,
            },
            {
                "order": "send",
                "order_tag": "3",
                "orderType": "lmt",
                "symbol": symbol,
                "side": close_side,
                "size": params.size,
                "limitPrice": params.take_profit_price,
                "reduceOnly": True,
            },
        ]
    }


class LiveBroker(Broker):
    mode = BrokerMode.LIVE

    def __init__(
        self,
        client: KrakenFuturesClient,
        symbol: str = "PF_XBTUSD",
        exchange_cfg: ExchangeConfig | None = None,
        ledger: PositionLedger | None = None,
        history: TradeHistoryStore | None = None,
        reconciler: FillReconciler | None = None,
        logger=None,
    ):
        self.client = client
        self.symbol = symbol
        self.cfg = exchange_cfg or ExchangeConfig()
        self.ledger = ledger or PositionLedger(0.0)
        self.history = history
        self.reconciler = reconciler or FillReconciler()
        self.logger = logger or setup_logger("broker-live")

    @classmethod
    def from_config(
        cls,
        exchange_cfg: ExchangeConfig,
        symbol: str,
        history: TradeHistoryStore | None = None,
    ) -> "LiveBroker":
        client = KrakenFuturesClient(
            exchange_cfg.api_key,
            exchange_cfg.api_secret,
            base_url=exchange_cfg.base_url,
            timeout=exchange_cfg.timeout_secs,
        )
        return cls(client, symbol=symbol, exchange_cfg=exchange_cfg, history=history)

    def seed_from_history(self, limit: int = 10) -> int:
        """启动时用持久化历史预填本地账本；返回加载条数。"""
        if self.history is None:
            return 0
        seeded = self.history.recent(self.symbol, limit)
        self.ledger.seed_history(seeded)
        return len(seeded)

    async def balance(self) -> float:
        try:
            margin = await asyncio.to_thread(self.client.available_margin)
        except ExecutionError as exc:
            self.logger.error("Failed to fetch account balance: %s", exc)
            return 0.0
        self.ledger.sync_balance(margin)
        return margin

    async def has_open_position(self) -> bool:
        try:
            pos = await asyncio.to_thread(self.client.open_position_for, self.symbol)
        except ExecutionError as exc:
            # 无法确认交易所状态时按“有持仓”处理，跳过本周期
            self.logger.error("Failed to fetch open positions: %s", exc)
            return True
        if pos is not None:
            self.logger.info("Exchange position open for %s (size=%s); skipping entry.", self.symbol, pos.get("size"))
        return pos is not None

    async def _reconciled_trades(self) -> list[ClosedTrade] | None:
        try:
            fills = await asyncio.to_thread(self.client.fills_for, self.symbol)
        except ExecutionError as exc:
            self.logger.warning("Failed to fetch fills: %s", exc)
            return None
        return self.reconciler.reconcile(fills).closed_trades

    async def check_exit(self, candle: Candle) -> Position | None:
        pos = self.ledger.position
        if pos is None:
            return None
        if await self.has_open_position():
            return None

        exit_price, exit_time = candle.close, candle.timestamp
        trades = await self._reconciled_trades()
        if trades:
            latest = next((t for t in reversed(trades) if t.exit_time >= pos.entry_time), None)
            if latest is not None:
                exit_price, exit_time = latest.exit_price, latest.exit_time
        closed = self.ledger.close_position(exit_price, exit_time, EXCHANGE_EXIT)
        if closed is not None and self.history is not None:
            self.history.append(self.symbol, closed)
        return closed

    async def open_position(
        self,
        signal: Signal,
        params: OrderParameters,
        last_price: float,
        entry_time: int,
        reason: str = "",
    ) -> tuple[ExecutionReport, Position | None]:
        payload = build_bracket_payload(
            self.symbol,
            signal,
            params,
            last_price,
            entry_slippage_pct=self.cfg.entry_slippage_pct,
            stop_slippage_pct=self.cfg.stop_slippage_pct,
        )
        self.logger.info("Placing %s batch order for %s %s: %s", signal.value, params.size, self.symbol, payload)
        try:
            resp = await asyncio.to_thread(self.client.batch_order, payload)
        except ExecutionError as exc:
            self.logger.error("Batch order outcome unknown: %s", exc)
            return ExecutionReport(status="unknown", detail=str(exc)), None

        if resp.get("result") != "success":
            self.logger.error("Batch order rejected: %s", resp)
            return ExecutionReport(status="failed", detail=str(resp.get("error", "")), raw=resp), None

        self.logger.info("Batch order placed: %s", resp)
        pos = self.ledger.open_position(signal, params, last_price, entry_time, reason)
        return ExecutionReport(status="success", raw=resp), pos

    async def recent_closed_trades(self, limit: int = 10) -> list[ClosedTrade]:
        trades = await self._reconciled_trades()
        if trades:
            return trades[-limit:] if limit > 0 else []
        return self.ledger.recent_closed_trades(limit)

    def close(self) -> None:
        if self.history is not None:
            self.history.close()
