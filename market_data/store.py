"""CandleStore：单品种、按时间严格递增的不可变 K 线序列。

- 内部用 tuple 保存，`window()` 返回的切片本身也是 tuple，
  周期内拿到的窗口是快照，之后 `append()` 新 K 线不会影响已发出的窗口；
- `append()` 只接受时间戳更大的 K 线（实盘增量更新），返回新的 store 而非原地修改。
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Iterable, Iterator, Sequence

from shared.models.models import Candle

Window = tuple[Candle, ...]


def to_unix_seconds(value: str | date | datetime | int | float) -> int:
    """ISO 日期/时间 -> Unix 秒（无时区信息时按 UTC 解释）。"""
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return int(value.timestamp())
    return int(datetime(value.year, value.month, value.day, tzinfo=timezone.utc).timestamp())


class CandleStore:
    def __init__(self, candles: Iterable[Candle] = ()):
        data = tuple(candles)
        for prev, cur in zip(data, data[1:]):
            if cur.timestamp <= prev.timestamp:
                raise ValueError(
                    f"Candles must be strictly increasing by timestamp: {prev.timestamp} -> {cur.timestamp}"
                )
        self._candles: Window = data

    def __len__(self) -> int:
        return len(self._candles)

    def __iter__(self) -> Iterator[Candle]:
        return iter(self._candles)

    def __getitem__(self, idx: int) -> Candle:
        return self._candles[idx]

    @property
    def candles(self) -> Window:
        return self._candles

    @property
    def last(self) -> Candle | None:
        return self._candles[-1] if self._candles else None

    def window(self, end_index: int, size: int) -> Window:
        """以 `end_index`（含）结尾、长度最多为 `size` 的连续窗口。"""
        if size <= 0:
            return ()
        if end_index < 0 or end_index >= len(self._candles):
            raise IndexError(f"end_index out of range: {end_index}")
        start = max(0, end_index - size + 1)
        return self._candles[start : end_index + 1]

    def latest_window(self, size: int) -> Window:
        if not self._candles:
            return ()
        return self.window(len(self._candles) - 1, size)

    def tail(self, size: int) -> "CandleStore":
        """只保留最近 size 根（实盘滚动更新时限制内存）。"""
        return CandleStore(self.latest_window(size))

    def append(self, candles: Sequence[Candle]) -> "CandleStore":
        """追加比当前最后一根更新的 K 线；已存在的时间戳被忽略。"""
        last_ts = self._candles[-1].timestamp if self._candles else None
        fresh = [c for c in candles if last_ts is None or c.timestamp > last_ts]
        return CandleStore(self._candles + tuple(sorted(fresh, key=lambda c: c.timestamp)))

    def filter_by_date(
        self,
        start: str | date | datetime | int | None = None,
        end: str | date | datetime | int | None = None,
    ) -> "CandleStore":
        """半开区间过滤：start <= ts < end。"""
        start_ts = to_unix_seconds(start) if start is not None else None
        end_ts = to_unix_seconds(end) if end is not None else None
        return CandleStore(
            c
            for c in self._candles
            if (start_ts is None or c.timestamp >= start_ts) and (end_ts is None or c.timestamp < end_ts)
        )
