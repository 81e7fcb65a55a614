"""行情数据模块（market_data）。

该包聚合：
- K 线序列容器（`CandleStore`，窗口快照）
- 历史数据加载与下载（CSV + Binance REST 补齐）
- 实盘 K 线客户端（Kraken 公共 OHLC）
"""

from market_data.client import KrakenOhlcClient
from market_data.loader import HistoricalDataLoader, load_candles_csv
from market_data.store import CandleStore

__all__ = [
    "CandleStore",
    "HistoricalDataLoader",
    "KrakenOhlcClient",
    "load_candles_csv",
]
