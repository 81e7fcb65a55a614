"""CycleOrchestrator：单个交易周期的编排，以及回测/实盘两种驱动方式。

一个周期（当前 K 线 = 窗口最后一根，只用它的收盘价做决策）：
1. 持仓时先做退出检查；仍持仓则本周期结束；
2. SignalFilter 判断是否值得调用 oracle；
3. 检查 oracle 调用预算，超出则停止整个回测；
4. 调用 oracle；HOLD 或置信度低于阈值则跳过；
5. RiskSizer 定仓；被拒则跳过；
6. Broker 下单；只有执行明确成功才有持仓。

周期之间严格串行，oracle 调用次数、上次调用时间等状态都是实例字段，
同一进程里可以并存多个互不干扰的回测。
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Sequence

from broker.abstract_broker import Broker
from market_data.store import CandleStore, Window
from oracle.client import DecisionOracleClient
from risk.sizer import RiskSizer
from shared.errors import ExecutionError, InsufficientDataError
from shared.models.models import ExecutionReport, OrderParameters, Position, Recommendation
from shared.utils.logging import MetricsLogger, setup_logger
from strategy.signal_filter import SignalFilter

Sleep = Callable[[float], Awaitable[Any]]

# 周期结果状态
HOLDING = "holding"
FILTERED = "filtered"
BUDGET_EXHAUSTED = "budget_exhausted"
HOLD = "hold"
LOW_CONFIDENCE = "low_confidence"
RISK_REJECTED = "risk_rejected"
EXECUTION_FAILED = "execution_failed"
OPENED = "opened"
NO_DATA = "no_data"
ERROR = "error"


@dataclass
class CycleOutcome:
    status: str
    timestamp: int | None = None
    closed: Position | None = None
    recommendation: Recommendation | None = None
    order: OrderParameters | None = None
    execution: ExecutionReport | None = None
    position: Position | None = None


@dataclass
class RunStats:
    cycles: int = 0
    oracle_calls: int = 0
    opened: int = 0
    closed: int = 0
    skipped: dict[str, int] = field(default_factory=dict)
    stopped_early: bool = False
    closed_positions: list[Position] = field(default_factory=list)

    def record(self, outcome: CycleOutcome) -> None:
        self.cycles += 1
        if outcome.closed is not None:
            self.closed += 1
            self.closed_positions.append(outcome.closed)
        if outcome.status == OPENED:
            self.opened += 1
        elif outcome.status != HOLDING:
            self.skipped[outcome.status] = self.skipped.get(outcome.status, 0) + 1


class CycleOrchestrator:
    def __init__(
        self,
        broker: Broker,
        oracle: DecisionOracleClient,
        sizer: RiskSizer,
        signal_filter: SignalFilter,
        confidence_threshold: int = 0,
        max_oracle_calls: int | None = None,
        recent_trades: int = 10,
        min_seconds_between_calls: float = 0.0,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        metrics: MetricsLogger | None = None,
        logger=None,
    ):
        self.broker = broker
        self.oracle = oracle
        self.sizer = sizer
        self.signal_filter = signal_filter
        self.confidence_threshold = int(confidence_threshold)
        self.max_oracle_calls = max_oracle_calls
        self.recent_trades = int(recent_trades)
        self.min_seconds_between_calls = float(min_seconds_between_calls)
        self.sleep = sleep
        self.clock = clock
        self.metrics = metrics or MetricsLogger(None)
        self.logger = logger or setup_logger("cycle")

        self.oracle_calls = 0
        self._last_call_at: float | None = None

    @property
    def budget_exhausted(self) -> bool:
        return self.max_oracle_calls is not None and self.oracle_calls >= self.max_oracle_calls

    async def _pace(self) -> None:
        if self._last_call_at is None or self.min_seconds_between_calls <= 0:
            return
        wait = self.min_seconds_between_calls - (self.clock() - self._last_call_at)
        if wait > 0:
            await self.sleep(wait)

    async def run_cycle(self, window: Window) -> CycleOutcome:
        """对一个窗口快照执行一个完整周期。"""
        if not window:
            return CycleOutcome(status=NO_DATA)
        window = tuple(window)
        candle = window[-1]
        ts = candle.timestamp

        closed = await self.broker.check_exit(candle)
        if await self.broker.has_open_position():
            return CycleOutcome(status=HOLDING, timestamp=ts, closed=closed)

        if not self.signal_filter(window):
            return CycleOutcome(status=FILTERED, timestamp=ts, closed=closed)

        if self.budget_exhausted:
            self.logger.warning("[BUDGET] Oracle call budget exhausted (%s calls).", self.oracle_calls)
            return CycleOutcome(status=BUDGET_EXHAUSTED, timestamp=ts, closed=closed)

        await self._pace()
        self.oracle_calls += 1
        budget = self.max_oracle_calls if self.max_oracle_calls is not None else "inf"
        self.logger.info("[ORACLE] Call #%s/%s at candle %s", self.oracle_calls, budget, ts)
        recent = await self.broker.recent_closed_trades(self.recent_trades)
        rec = await self.oracle.recommend(window, recent)
        self._last_call_at = self.clock()
        self.metrics.emit("oracle_attempts", self.oracle.last_attempts, "count", signal=rec.signal.value)

        if rec.is_hold:
            return CycleOutcome(status=HOLD, timestamp=ts, closed=closed, recommendation=rec)
        if rec.confidence < self.confidence_threshold:
            self.logger.info(
                "[ORACLE] %s confidence %s below threshold %s; skipping.",
                rec.signal.value,
                rec.confidence,
                self.confidence_threshold,
            )
            return CycleOutcome(status=LOW_CONFIDENCE, timestamp=ts, closed=closed, recommendation=rec)

        balance = await self.broker.balance()
        params = self.sizer.size(balance, candle.close, rec)
        if params is None:
            return CycleOutcome(status=RISK_REJECTED, timestamp=ts, closed=closed, recommendation=rec)

        report, pos = await self.broker.open_position(rec.signal, params, candle.close, ts, rec.reason)
        if not report.ok or pos is None:
            self.logger.error("[ENTRY] Execution not confirmed (%s): %s", report.status, report.detail)
            return CycleOutcome(
                status=EXECUTION_FAILED,
                timestamp=ts,
                closed=closed,
                recommendation=rec,
                order=params,
                execution=report,
            )
        return CycleOutcome(
            status=OPENED,
            timestamp=ts,
            closed=closed,
            recommendation=rec,
            order=params,
            execution=report,
            position=pos,
        )

    async def run_backtest(
        self,
        store: CandleStore,
        warmup: int,
        window_size: int,
        flatten_on_end: bool = False,
    ) -> RunStats:
        """从第 warmup 根开始逐根回放；oracle 预算用尽时提前结束。"""
        if len(store) <= warmup:
            raise InsufficientDataError(
                f"Not enough data for the warm-up period: have {len(store)} candles, need more than {warmup}"
            )
        stats = RunStats()
        for i in range(warmup, len(store)):
            outcome = await self.run_cycle(store.window(i, window_size))
            stats.record(outcome)
            if outcome.status == BUDGET_EXHAUSTED:
                stats.stopped_early = True
                break
        if flatten_on_end and store.last is not None:
            flat = await self.broker.flatten(store.last)
            if flat is not None:
                stats.closed += 1
                stats.closed_positions.append(flat)
        stats.oracle_calls = self.oracle_calls
        return stats

    async def run_live(
        self,
        fetch_window: Callable[[], Awaitable[Sequence]],
        interval_secs: float,
        max_cycles: int | None = None,
    ) -> RunStats:
        """固定间隔重复执行周期（max_cycles=None 时一直运行直到被外部终止）。

        单个周期出错只记为 error 结果，照常等待下一个周期。
        """
        stats = RunStats()
        while max_cycles is None or stats.cycles < max_cycles:
            started = self.clock()
            try:
                window = tuple(await fetch_window())
                outcome = await self.run_cycle(window)
            except ExecutionError as exc:
                self.logger.error("Cycle %s failed: %s", stats.cycles + 1, exc)
                outcome = CycleOutcome(status=ERROR)
            except Exception:
                # 实盘不自行退出：记录后等下一个周期
                self.logger.exception("Cycle %s crashed", stats.cycles + 1)
                outcome = CycleOutcome(status=ERROR)
            stats.record(outcome)
            self.logger.info("Cycle %s finished: %s", stats.cycles, outcome.status)
            self.metrics.emit("cycle", stats.cycles, "count", status=outcome.status)
            if max_cycles is not None and stats.cycles >= max_cycles:
                break
            await self.sleep(max(0.0, interval_secs - (self.clock() - started)))
        stats.oracle_calls = self.oracle_calls
        return stats
