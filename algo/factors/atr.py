"""ATR 因子。"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import pandas as pd


def true_range(df: pd.DataFrame, high_col: str = "high", low_col: str = "low", close_col: str = "close") -> pd.Series:
    """真实波幅序列（首行没有前收盘，结果为 NaN）。"""
    prev_close = df[close_col].astype(float).shift(1)
    tr1 = df[high_col] - df[low_col]
    tr2 = (df[high_col] - prev_close).abs()
    tr3 = (df[low_col] - prev_close).abs()
    tr = pd.concat([tr1, tr2, tr3], axis=1).max(axis=1)
    return tr.where(prev_close.notna())


@dataclass(frozen=True)
class ATRFactor:
    """平均真实波幅（Wilder 平滑）。"""

    period: int = 14
    high_col: str = "high"
    low_col: str = "low"
    close_col: str = "close"
    out_col: str | None = None
    name: str = "atr"
    params: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.period <= 0:
            raise ValueError("ATR period must be > 0")
        object.__setattr__(self, "params", {"period": self.period})

    def compute(self, df: pd.DataFrame) -> pd.DataFrame:
        for col in (self.high_col, self.low_col, self.close_col):
            if col not in df.columns:
                raise ValueError(f"ATRFactor requires column: {col}")
        out = self.out_col or f"atr_{self.period}"
        tr = true_range(df, self.high_col, self.low_col, self.close_col)
        df[out] = tr.ewm(alpha=1.0 / self.period, adjust=False, min_periods=self.period).mean()
        return df
