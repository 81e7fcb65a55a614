"""DecisionOracleClient：带有界重试的 oracle 调用。

- 每次调用都是一次真实外部请求（不缓存）；
- 网络错误、空响应、JSON 缺失或校验失败都算一次失败，等待退避时间后重试；
- 全部失败时返回 HOLD 哨兵（reason 为最后一次失败原因），不向上抛异常。
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Sequence

from algo.factors.indicators import compute_indicator_series
from oracle.backoff import BackoffPolicy, ConstantBackoff, build_backoff
from oracle.parsing import extract_json_block, parse_recommendation
from oracle.prompt import build_decision_prompt
from oracle.transport import OracleTransport, build_transport
from shared.config.schema import OracleConfig
from shared.models.models import Candle, ClosedTrade, Recommendation
from shared.utils.logging import setup_logger

Sleep = Callable[[float], Awaitable[Any]]


class DecisionOracleClient:
    def __init__(
        self,
        transport: OracleTransport,
        max_attempts: int = 4,
        backoff: BackoffPolicy | None = None,
        sleep: Sleep = asyncio.sleep,
        include_indicators: bool = True,
        symbol: str = "PF_XBTUSD",
        timeframe: str = "1h",
        logger=None,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.transport = transport
        self.max_attempts = int(max_attempts)
        self.backoff = backoff or ConstantBackoff(61.0)
        self.sleep = sleep
        self.include_indicators = include_indicators
        self.symbol = symbol
        self.timeframe = timeframe
        self.logger = logger or setup_logger("oracle")
        # 最近一次 recommend() 实际发起的请求次数
        self.last_attempts = 0

    @classmethod
    def from_config(
        cls,
        cfg: OracleConfig,
        symbol: str,
        timeframe: str,
        transport: OracleTransport | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> "DecisionOracleClient":
        return cls(
            transport=transport or build_transport(cfg),
            max_attempts=cfg.max_attempts,
            backoff=build_backoff(cfg.backoff),
            sleep=sleep,
            include_indicators=cfg.indicators,
            symbol=symbol,
            timeframe=timeframe,
        )

    async def _with_retry(self, prompt: str, handle: Callable[[str], tuple[Any, str | None]]) -> tuple[Any, str]:
        """按重试策略调用 transport；handle 返回 (结果, None) 表示成功，(None, 原因) 表示失败。"""
        cause = "no attempt made"
        self.last_attempts = 0
        for attempt in range(1, self.max_attempts + 1):
            self.last_attempts = attempt
            try:
                text = await self.transport.generate(prompt)
            except Exception as exc:
                cause = f"transport error: {exc}"
            else:
                result, err = handle(text)
                if err is None:
                    return result, ""
                cause = err
            if attempt < self.max_attempts:
                delay = self.backoff.delay(attempt)
                self.logger.warning(
                    "[ORACLE] Attempt %s/%s failed: %s. Retrying in %.1fs",
                    attempt,
                    self.max_attempts,
                    cause,
                    delay,
                )
                await self.sleep(delay)
            else:
                self.logger.error("[ORACLE] Attempt %s/%s failed: %s", attempt, self.max_attempts, cause)
        return None, cause

    async def recommend(self, window: Sequence[Candle], recent_trades: Sequence[ClosedTrade] = ()) -> Recommendation:
        """请求交易建议；永不抛异常，失败时返回 HOLD 哨兵。"""
        if not window:
            self.last_attempts = 0
            return Recommendation.hold("Insufficient market data.")

        indicators = compute_indicator_series(window) if self.include_indicators else None
        prompt = build_decision_prompt(
            window, recent_trades, indicators=indicators, symbol=self.symbol, timeframe=self.timeframe
        )

        def handle(text: str) -> tuple[Recommendation | None, str | None]:
            self.logger.debug("[ORACLE] Raw response: %s", text)
            parsed = parse_recommendation(text)
            if isinstance(parsed, Recommendation):
                return parsed, None
            return None, parsed.message

        rec, cause = await self._with_retry(prompt, handle)
        if rec is None:
            return Recommendation.hold(f"Oracle failed after {self.last_attempts} attempts: {cause}")
        self.logger.info(
            "[ORACLE] %s (confidence=%s, sl=%.2f, tp=%.2f): %s",
            rec.signal.value,
            rec.confidence,
            rec.stop_loss_distance_usd,
            rec.take_profit_distance_usd,
            rec.reason,
        )
        return rec

    async def complete_json(self, prompt: str) -> dict[str, Any] | None:
        """任意提示词 -> 第一个 JSON 对象（复盘报告用）；全部失败返回 None。"""

        def handle(text: str) -> tuple[dict[str, Any] | None, str | None]:
            data = extract_json_block(text)
            if data is None:
                return None, "no JSON object found in response"
            return data, None

        data, cause = await self._with_retry(prompt, handle)
        if data is None:
            self.logger.error("[ORACLE] JSON completion failed: %s", cause)
        return data
