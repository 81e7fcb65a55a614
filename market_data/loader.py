"""历史数据加载与下载。

CSV 格式：`timestamp,open,high,low,close,volume`，timestamp 为 Unix 秒
（毫秒时间戳会自动换算）。本地文件缺失时可通过 Binance 公共 REST 拉取 1h K 线补齐。
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

import pandas as pd
import requests

from market_data.store import CandleStore, to_unix_seconds
from shared.errors import DataFormatError, InsufficientDataError
from shared.models.models import Candle
from shared.utils.logging import setup_logger

logger = setup_logger("data")

CSV_COLUMNS = ["timestamp", "open", "high", "low", "close", "volume"]
BINANCE_KLINES_URL = "https://api.binance.com/api/v3/klines"


def frame_to_candles(df: pd.DataFrame) -> list[Candle]:
    """DataFrame -> Candle 列表（按时间升序、时间戳去重）。"""
    missing = [c for c in CSV_COLUMNS[:5] if c not in df.columns]
    if missing:
        raise ValueError(f"Candle data missing columns: {', '.join(missing)}")
    df = df.copy()
    if "volume" not in df.columns:
        df["volume"] = 0.0
    ts = pd.to_numeric(df["timestamp"], errors="raise").astype("int64")
    # 毫秒时间戳换算成秒
    df["timestamp"] = ts.where(ts < 10**12, ts // 1000)
    df = df.drop_duplicates(subset="timestamp", keep="last").sort_values("timestamp")
    return [
        Candle(
            timestamp=int(row.timestamp),
            open=float(row.open),
            high=float(row.high),
            low=float(row.low),
            close=float(row.close),
            volume=float(row.volume),
        )
        for row in df.itertuples(index=False)
    ]


def load_candles_csv(path: str | Path) -> CandleStore:
    """从 CSV 读取完整的 K 线序列。"""
    csv_path = Path(path)
    if not csv_path.exists():
        raise FileNotFoundError(f"Candle file not found: {csv_path}")
    try:
        df = pd.read_csv(csv_path)
        return CandleStore(frame_to_candles(df))
    except (pd.errors.ParserError, pd.errors.EmptyDataError, ValueError, TypeError) as exc:
        raise DataFormatError(f"Malformed candle file {csv_path}: {exc}") from exc


def save_candles_csv(candles: list[Candle], path: str | Path) -> Path:
    dest = Path(path)
    dest.parent.mkdir(parents=True, exist_ok=True)
    df = pd.DataFrame([c.to_dict() for c in candles], columns=CSV_COLUMNS)
    df.to_csv(dest, index=False)
    return dest


class HistoricalDataLoader:
    """历史 K 线数据管理器（本地 CSV + Binance 补齐）。"""

    def __init__(
        self,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
        batch_size: int = 1000,
        polite_delay_secs: float = 0.5,
    ):
        self.session = session or requests.Session()
        self.sleep = sleep
        self.batch_size = batch_size
        self.polite_delay_secs = polite_delay_secs

    def download_binance_klines(
        self,
        symbol: str = "BTCUSDT",
        interval: str = "1h",
        start: str | datetime = "2022-01-01",
        end: str | datetime | None = None,
    ) -> list[Candle]:
        """分页拉取 Binance K 线（每批 batch_size 根，批间 polite_delay_secs 秒）。

        中途出错时停止翻页并保留已拉到的数据；一根都没拉到则抛 InsufficientDataError。
        """
        cur_ms = to_unix_seconds(start) * 1000
        end_ms = to_unix_seconds(end) * 1000 if end is not None else int(time.time() * 1000)
        collected: dict[int, Candle] = {}

        logger.info("[DATA] Downloading %s %s klines from Binance since %s", symbol, interval, start)
        while cur_ms < end_ms:
            params = {"symbol": symbol, "interval": interval, "startTime": cur_ms, "limit": self.batch_size}
            try:
                resp = self.session.get(BINANCE_KLINES_URL, params=params, timeout=10)
                resp.raise_for_status()
                data = resp.json()
            except (requests.RequestException, ValueError) as exc:
                logger.error("[DATA] Stopping fetch loop due to an error: %s", exc)
                break
            if not data:
                break
            for item in data:
                ts = int(item[0]) // 1000
                collected[ts] = Candle(
                    timestamp=ts,
                    open=float(item[1]),
                    high=float(item[2]),
                    low=float(item[3]),
                    close=float(item[4]),
                    volume=float(item[5]),
                )
            cur_ms = int(data[-1][0]) + 1
            self.sleep(self.polite_delay_secs)

        if not collected:
            raise InsufficientDataError("Failed to download any historical data")
        logger.info("[DATA] Download complete. Total candles fetched: %s", len(collected))
        return [collected[ts] for ts in sorted(collected)]

    def ensure_data_file(
        self,
        path: str | Path,
        symbol: str = "BTCUSDT",
        interval: str = "1h",
        start: str = "2022-01-01",
    ) -> Path:
        """文件已存在则直接返回；否则下载并写入 CSV。"""
        dest = Path(path)
        if dest.exists():
            logger.info("[DATA] Data file already exists at %s. Skipping download.", dest)
            return dest
        candles = self.download_binance_klines(symbol=symbol, interval=interval, start=start)
        return save_candles_csv(candles, dest)

    def load_for_backtest(
        self,
        path: str | Path,
        start: str | None = None,
        end: str | None = None,
        auto_download: bool = False,
        download_symbol: str = "BTCUSDT",
        download_start: str = "2022-01-01",
        interval: str = "1h",
    ) -> CandleStore:
        """加载回测区间所需 K 线（可自动下载），并按 [start, end) 过滤。"""
        csv_path = Path(path)
        if auto_download and not csv_path.exists():
            self.ensure_data_file(csv_path, symbol=download_symbol, interval=interval, start=download_start)
        if not csv_path.exists():
            raise InsufficientDataError(f"Candle file not found: {csv_path}")
        store = load_candles_csv(csv_path)
        if start is not None or end is not None:
            store = store.filter_by_date(start, end)
        first = datetime.fromtimestamp(store[0].timestamp, tz=timezone.utc) if len(store) else None
        logger.info("[DATA] Loaded %s candles from %s (first=%s)", len(store), csv_path, first)
        return store
