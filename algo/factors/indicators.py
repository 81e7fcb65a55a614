"""oracle 请求里附带的指标序列。"""

from __future__ import annotations

from typing import Sequence

import pandas as pd

from algo.factors.atr import ATRFactor
from algo.factors.base import Factor
from algo.factors.ema import EMAFactor
from algo.factors.macd import MACDFactor
from algo.factors.rsi import RSIFactor
from shared.models.models import Candle
from shared.utils.logging import setup_logger

logger = setup_logger("indicators")

MIN_CANDLES = 200

DEFAULT_FACTORS: tuple[Factor, ...] = (
    EMAFactor(period=50),
    EMAFactor(period=200),
    RSIFactor(period=14),
    MACDFactor(),
    ATRFactor(period=20),
)

SERIES_COLUMNS = {
    "ema_50_series": "ema_50",
    "ema_200_series": "ema_200",
    "rsi_14_series": "rsi_14",
    "macd_histogram_series": "macd_hist",
    "atr_20_series": "atr_20",
}


def candles_to_frame(candles: Sequence[Candle]) -> pd.DataFrame:
    return pd.DataFrame([c.to_dict() for c in candles])


def compute_indicator_series(candles: Sequence[Candle], decimals: int = 2) -> dict[str, list[float]] | None:
    """计算 EMA50/EMA200/RSI14/MACD 柱/ATR20 序列（去掉预热期 NaN）。

    少于 200 根 K 线时返回 None，调用方直接省略指标字段。
    """
    if len(candles) < MIN_CANDLES:
        logger.warning("[INDICATORS] Insufficient data: need %s candles, have %s", MIN_CANDLES, len(candles))
        return None
    df = candles_to_frame(candles)
    for factor in DEFAULT_FACTORS:
        df = factor.compute(df)
    return {key: [round(float(v), decimals) for v in df[col].dropna()] for key, col in SERIES_COLUMNS.items()}
