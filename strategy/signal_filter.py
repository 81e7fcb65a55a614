"""突破 + 波动扩张过滤器（决定是否值得调用一次 oracle）。

判定（以窗口最后一根为当前 K 线）：
- 前 lookback 根（不含当前）的最高价/最低价；
- 最近 atr_period 个真实波幅的均值 vs 紧邻其前、等长区段的均值，
  当前 ATR 需大于之前 ATR × atr_multiplier（波动扩张）；
- 最近 adr_bars 根中最大的单根振幅 / 当前收盘价 >= min_adr_pct（排除死水行情）；
- 当前最高价 > 前高 × (1 + buffer) 为多头候选，当前最低价 < 前低 × (1 - buffer) 为空头候选。

窗口长度不足时返回 False，不抛异常。`enabled=False` 时总是放行（穷举回测用）。
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Sequence

from algo.factors.atr import true_range
from algo.factors.indicators import candles_to_frame
from shared.config.schema import SignalFilterConfig
from shared.models.models import Candle
from shared.utils.logging import setup_logger

logger = setup_logger("filter")


def _mean_true_range(candles: Sequence[Candle]) -> float:
    """区段内真实波幅均值（首根只提供前收盘）。"""
    tr = true_range(candles_to_frame(candles)).dropna()
    return float(tr.mean()) if len(tr) else 0.0


@dataclass(frozen=True)
class FilterDecision:
    candidate: bool
    direction: str | None = None  # "bullish" / "bearish"
    atr_now: float = 0.0
    atr_prev: float = 0.0
    adr_pct: float = 0.0


class SignalFilter:
    def __init__(
        self,
        lookback: int = 200,
        atr_period: int = 14,
        atr_multiplier: float = 1.2,
        adr_bars: int = 24,
        min_adr_pct: float = 0.005,
        breakout_buffer_pct: float = 0.003,
        enabled: bool = True,
    ):
        self.lookback = int(lookback)
        self.atr_period = int(atr_period)
        self.atr_multiplier = float(atr_multiplier)
        self.adr_bars = int(adr_bars)
        self.min_adr_pct = float(min_adr_pct)
        self.breakout_buffer_pct = float(breakout_buffer_pct)
        self.enabled = bool(enabled)

    @classmethod
    def from_config(cls, cfg: SignalFilterConfig) -> "SignalFilter":
        return cls(
            lookback=cfg.lookback,
            atr_period=cfg.atr_period,
            atr_multiplier=cfg.atr_multiplier,
            adr_bars=cfg.adr_bars,
            min_adr_pct=cfg.min_adr_pct,
            breakout_buffer_pct=cfg.breakout_buffer_pct,
            enabled=cfg.enabled,
        )

    @property
    def required_candles(self) -> int:
        # 两段 ATR 各需 atr_period 个真实波幅，即各 atr_period + 1 根
        return max(self.lookback + 1, 2 * (self.atr_period + 1), self.adr_bars)

    def evaluate(self, window: Sequence[Candle]) -> FilterDecision:
        if not self.enabled:
            return FilterDecision(candidate=True)
        if len(window) < self.required_candles:
            return FilterDecision(candidate=False)

        current = window[-1]
        prior = window[-self.lookback - 1 : -1]
        highest_high = max(c.high for c in prior)
        lowest_low = min(c.low for c in prior)

        seg = self.atr_period + 1
        atr_now = _mean_true_range(window[-seg:])
        atr_prev = _mean_true_range(window[-2 * seg : -seg])
        adr_pct = max(c.high - c.low for c in window[-self.adr_bars :]) / current.close if current.close > 0 else 0.0

        vol_expansion = atr_now > atr_prev * self.atr_multiplier
        not_dead = adr_pct >= self.min_adr_pct
        bullish = current.high > highest_high * (1 + self.breakout_buffer_pct)
        bearish = current.low < lowest_low * (1 - self.breakout_buffer_pct)

        direction = None
        if vol_expansion and not_dead:
            if bullish:
                direction = "bullish"
            elif bearish:
                direction = "bearish"
        if direction is not None:
            ts = datetime.fromtimestamp(current.timestamp, tz=timezone.utc).isoformat()
            logger.info("[FILTER] [%s] %s breakout + vol-expansion -> candidate", ts, direction)
        return FilterDecision(
            candidate=direction is not None,
            direction=direction,
            atr_now=atr_now,
            atr_prev=atr_prev,
            adr_pct=adr_pct,
        )

    def __call__(self, window: Sequence[Candle]) -> bool:
        return self.evaluate(window).candidate
