"""FillReconciler：把交易所原始成交按 FIFO 配对成往返交易。

- 成交先按 fill_time 升序排序（稳定排序，同一时间保持输入顺序）；
- 与队尾同向的成交作为新的持仓腿入队（同向累加，不做净额）；
- 反向成交从队首开始逐腿配对，每次配对产生一笔 ClosedTrade；
- 把所有反向腿吃完后仍有剩余的部分，按成交方向作为新腿入队。

每个配对单位同时消耗一条开仓成交和一条平仓成交的数量，因此守恒关系为
`2 × Σ ClosedTrade.size + Σ 剩余腿 size == Σ Fill.size`。
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Iterable

from shared.models.models import ClosedTrade, Fill, OpenLeg
from shared.utils.logging import setup_logger

# 数量比较容差，避免 0.1 + 0.2 这类浮点残差留下“幽灵腿”
_EPS = 1e-12


@dataclass
class ReconcileResult:
    closed_trades: list[ClosedTrade] = field(default_factory=list)
    open_legs: list[OpenLeg] = field(default_factory=list)

    @property
    def residual_size(self) -> float:
        return sum(leg.remaining_size for leg in self.open_legs)

    def recent(self, limit: int = 10) -> list[ClosedTrade]:
        if limit <= 0:
            return []
        return self.closed_trades[-limit:]


class FillReconciler:
    def __init__(self, logger=None):
        self.logger = logger or setup_logger("reconcile")

    def reconcile(self, fills: Iterable[Fill]) -> ReconcileResult:
        ordered = sorted(fills, key=lambda f: f.fill_time)
        queue: deque[OpenLeg] = deque()
        result = ReconcileResult()

        for fill in ordered:
            side = fill.signal
            if not queue or queue[-1].side is side:
                queue.append(OpenLeg(side=side, entry_time=fill.fill_time, entry_price=fill.price, remaining_size=fill.size))
                continue

            remaining = fill.size
            while remaining > _EPS and queue and queue[0].side is not side:
                head = queue[0]
                matched = min(remaining, head.remaining_size)
                pnl = (fill.price - head.entry_price) * matched * head.side.direction
                result.closed_trades.append(
                    ClosedTrade(
                        side=head.side,
                        entry_time=head.entry_time,
                        entry_price=head.entry_price,
                        exit_time=fill.fill_time,
                        exit_price=fill.price,
                        size=matched,
                        pnl=pnl,
                    )
                )
                head.remaining_size -= matched
                remaining -= matched
                if head.remaining_size <= _EPS:
                    queue.popleft()

            if remaining > _EPS:
                # 平仓量超过全部反向持仓：剩余部分按成交方向开新腿
                self.logger.warning(
                    "[RECONCILE] Fill at %s over-closes open legs by %s; treating remainder as new %s leg.",
                    fill.fill_time,
                    remaining,
                    side.value,
                )
                queue.append(OpenLeg(side=side, entry_time=fill.fill_time, entry_price=fill.price, remaining_size=remaining))

        result.open_legs = list(queue)
        return result

    def recent_closed_trades(self, fills: Iterable[Fill], limit: int = 10) -> list[ClosedTrade]:
        return self.reconcile(fills).recent(limit)
