"""实盘行情：Kraken 现货公共 OHLC 接口。"""

from __future__ import annotations

import requests

from shared.errors import ExecutionError
from shared.models.models import Candle
from shared.utils.logging import setup_logger

_INTERVALS_MIN = {"1m": 1, "5m": 5, "15m": 15, "30m": 30, "1h": 60, "4h": 240, "1d": 1440}


def interval_minutes(timeframe: str) -> int:
    try:
        return _INTERVALS_MIN[timeframe]
    except KeyError:
        raise ValueError(f"Unsupported timeframe: {timeframe}") from None


class KrakenOhlcClient:
    """拉取最近的 K 线；Kraken 返回的最后一根尚未收盘，默认丢弃。"""

    url = "https://api.kraken.com/0/public/OHLC"

    def __init__(self, session: requests.Session | None = None, timeout: float = 10.0, logger=None):
        self.session = session or requests.Session()
        self.timeout = timeout
        self.logger = logger or setup_logger("market-kraken")

    def fetch_candles(self, pair: str = "XBTUSD", timeframe: str = "1h", closed_only: bool = True) -> list[Candle]:
        params = {"pair": pair, "interval": interval_minutes(timeframe)}
        try:
            resp = self.session.get(self.url, params=params, timeout=self.timeout)
            resp.raise_for_status()
            data = resp.json()
        except (requests.RequestException, ValueError) as exc:
            raise ExecutionError(f"OHLC request failed: {exc}") from exc

        if data.get("error"):
            raise ExecutionError(f"OHLC error: {', '.join(data['error'])}")
        result = data.get("result") or {}
        key = next((k for k in result if k != "last"), None)
        if key is None:
            return []
        candles = [
            Candle(
                timestamp=int(item[0]),
                open=float(item[1]),
                high=float(item[2]),
                low=float(item[3]),
                close=float(item[4]),
                volume=float(item[6]),
            )
            for item in result[key]
        ]
        candles.sort(key=lambda c: c.timestamp)
        if closed_only and candles:
            candles = candles[:-1]
        self.logger.info("Fetched %s OHLC candles for %s", len(candles), pair)
        return candles
