"""EMA 因子。"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import pandas as pd


@dataclass(frozen=True)
class EMAFactor:
    """指数移动平均（EMA，首个值需满 period 根）。"""

    period: int = 14
    price_col: str = "close"
    out_col: str | None = None
    name: str = "ema"
    params: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.period <= 0:
            raise ValueError("EMA period must be > 0")
        object.__setattr__(self, "params", {"period": self.period, "price_col": self.price_col})

    def compute(self, df: pd.DataFrame) -> pd.DataFrame:
        if self.price_col not in df.columns:
            raise ValueError(f"EMAFactor requires column: {self.price_col}")
        out = self.out_col or f"ema_{self.period}"
        df[out] = (
            df[self.price_col]
            .astype(float)
            .ewm(span=self.period, adjust=False, min_periods=self.period)
            .mean()
        )
        return df
