"""执行引擎基类（模板模式）。

目标：
- 回测与实盘共用同一个 CycleOrchestrator，引擎只负责“装配组件 + 驱动方式 + 产物”；
- 对外统一 `run() -> EngineResult`，内部是协程，由 `run()` 用 asyncio.run 驱动。
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class EngineResult:
    """引擎运行结果（统一出口）。"""

    summary: dict[str, Any]
    artifacts: dict[str, Any] | None = None


class BaseEngine(ABC):
    @abstractmethod
    async def run_async(self) -> EngineResult:
        raise NotImplementedError

    def run(self) -> EngineResult:
        return asyncio.run(self.run_async())
