"""MACD 因子（输出 macd / signal / histogram 三列）。"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import pandas as pd


@dataclass(frozen=True)
class MACDFactor:
    fast: int = 12
    slow: int = 26
    signal: int = 9
    price_col: str = "close"
    name: str = "macd"
    params: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not (0 < self.fast < self.slow) or self.signal <= 0:
            raise ValueError("MACD requires 0 < fast < slow and signal > 0")
        object.__setattr__(self, "params", {"fast": self.fast, "slow": self.slow, "signal": self.signal})

    def compute(self, df: pd.DataFrame) -> pd.DataFrame:
        if self.price_col not in df.columns:
            raise ValueError(f"MACDFactor requires column: {self.price_col}")
        price = df[self.price_col].astype(float)
        fast = price.ewm(span=self.fast, adjust=False, min_periods=self.fast).mean()
        slow = price.ewm(span=self.slow, adjust=False, min_periods=self.slow).mean()
        macd = fast - slow
        signal = macd.ewm(span=self.signal, adjust=False, min_periods=self.signal).mean()
        df["macd"] = macd
        df["macd_signal"] = signal
        df["macd_hist"] = macd - signal
        return df
