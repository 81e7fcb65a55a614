"""oracle 重试退避策略。

`delay(attempt)` 返回第 attempt 次失败（从 1 开始）之后、下一次尝试之前应等待的秒数。
默认 constant 61s：oracle 的配额按全局 60s 窗口限流。
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Protocol

from shared.config.schema import BackoffConfig


class BackoffPolicy(Protocol):
    def delay(self, attempt: int) -> float: ...


@dataclass(frozen=True)
class ConstantBackoff:
    delay_secs: float = 61.0

    def delay(self, attempt: int) -> float:
        return max(0.0, self.delay_secs)


@dataclass(frozen=True)
class ExponentialBackoff:
    initial_secs: float = 1.0
    factor: float = 2.0
    max_secs: float = 600.0

    def delay(self, attempt: int) -> float:
        n = max(1, int(attempt))
        return min(self.max_secs, max(0.0, self.initial_secs * self.factor ** (n - 1)))


@dataclass
class JitteredBackoff:
    """在基础策略上叠加 [0, jitter_secs) 的随机抖动。"""

    base: BackoffPolicy
    jitter_secs: float = 5.0
    rng: random.Random = field(default_factory=random.Random)

    def delay(self, attempt: int) -> float:
        extra = self.rng.uniform(0.0, self.jitter_secs) if self.jitter_secs > 0 else 0.0
        return self.base.delay(attempt) + extra


def build_backoff(cfg: BackoffConfig | None) -> BackoffPolicy:
    cfg = cfg or BackoffConfig()
    if cfg.type == "constant":
        return ConstantBackoff(cfg.delay_secs)
    exp = ExponentialBackoff(initial_secs=cfg.delay_secs, factor=cfg.factor, max_secs=cfg.max_delay_secs)
    if cfg.type == "exponential":
        return exp
    return JitteredBackoff(base=exp, jitter_secs=cfg.jitter_secs)
