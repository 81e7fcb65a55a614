"""指标因子协议：按 K 线 DataFrame 追加指标列。"""

from __future__ import annotations

from typing import Any, Mapping, Protocol

import pandas as pd


class Factor(Protocol):
    name: str
    params: Mapping[str, Any]

    def compute(self, df: pd.DataFrame) -> pd.DataFrame:
        """在 df 上追加指标列并返回同一个 df。"""
        ...
