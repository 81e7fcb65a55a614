"""Kraken Futures 私有 REST 客户端（签名 + 下单 + 账户查询）。

签名：Authent = base64(HMAC-SHA512(base64decode(secret), SHA256(postData + nonce + path)))，
其中 path 为去掉 `/derivatives` 前缀的 endpoint。
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
from datetime import datetime
from typing import Any
from urllib.parse import urlencode

import requests

from shared.errors import ExecutionError, MissingCredentialsError
from shared.models.models import Fill
from shared.utils.logging import setup_logger

API_PREFIX = "/derivatives/api/v3"


def parse_fill_time(value: Any) -> int:
    """ISO 字符串 / 毫秒 / 秒 -> Unix 秒。"""
    if isinstance(value, (int, float)):
        return int(value / 1000) if value > 1e12 else int(value)
    return int(datetime.fromisoformat(str(value).replace("Z", "+00:00")).timestamp())


class KrakenFuturesClient:
    def __init__(
        self,
        api_key: str | None,
        api_secret: str | None,
        base_url: str = "https://futures.kraken.com",
        timeout: float = 10.0,
        session: requests.Session | None = None,
        clock=time.time,
    ):
        if not api_key or not api_secret:
            raise MissingCredentialsError("Kraken Futures api_key and api_secret are required")
        self.api_key = api_key
        self.api_secret = api_secret
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.clock = clock
        self._nonce_counter = 0
        self.logger = setup_logger("broker-kraken")

    def _create_nonce(self) -> str:
        # 毫秒时间戳 + 5 位计数器，同一毫秒内的连续请求也保持递增
        if self._nonce_counter > 9999:
            self._nonce_counter = 0
        nonce = f"{int(self.clock() * 1000)}{self._nonce_counter:05d}"
        self._nonce_counter += 1
        return nonce

    def sign(self, endpoint: str, nonce: str, post_data: str) -> str:
        path = endpoint.replace("/derivatives", "", 1)
        digest = hashlib.sha256((post_data + nonce + path).encode()).digest()
        secret = base64.b64decode(self.api_secret)
        return base64.b64encode(hmac.new(secret, digest, hashlib.sha512).digest()).decode()

    def _request(self, method: str, endpoint: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        params = params or {}
        nonce = self._create_nonce()
        post_data = urlencode(params) if method == "POST" else ""
        headers = {
            "APIKey": self.api_key,
            "Nonce": nonce,
            "Authent": self.sign(endpoint, nonce, post_data),
            "User-Agent": "oraclecycle/0.1",
        }
        url = f"{self.base_url}{endpoint}"
        try:
            if method == "POST":
                headers["Content-Type"] = "application/x-www-form-urlencoded"
                resp = self.session.request(method, url, data=post_data, headers=headers, timeout=self.timeout)
            else:
                resp = self.session.request(method, url, params=params or None, headers=headers, timeout=self.timeout)
            resp.raise_for_status()
            return resp.json()
        except (requests.RequestException, ValueError) as exc:
            raise ExecutionError(f"[{method} {endpoint}] failed: {exc}") from exc

    # --- 账户 ---

    def get_accounts(self) -> dict[str, Any]:
        return self._request("GET", f"{API_PREFIX}/accounts")

    def get_open_positions(self) -> dict[str, Any]:
        return self._request("GET", f"{API_PREFIX}/openpositions")

    def get_fills(self) -> dict[str, Any]:
        return self._request("GET", f"{API_PREFIX}/fills")

    def batch_order(self, payload: dict[str, Any]) -> dict[str, Any]:
        return self._request("POST", f"{API_PREFIX}/batchorder", {"json": json.dumps(payload)})

    # --- 解析 ---

    def available_margin(self) -> float:
        data = self.get_accounts()
        flex = (data.get("accounts") or {}).get("flex") or {}
        try:
            return float(flex.get("availableMargin") or 0.0)
        except (TypeError, ValueError):
            return 0.0

    def open_position_for(self, symbol: str) -> dict[str, Any] | None:
        data = self.get_open_positions()
        for pos in data.get("openPositions") or []:
            if str(pos.get("symbol", "")).upper() != symbol.upper():
                continue
            try:
                size = float(pos.get("size") or 0)
            except (TypeError, ValueError) as exc:
                raise ExecutionError(f"Malformed open position {pos}: {exc}") from exc
            if size > 0:
                return pos
        return None

    def fills_for(self, symbol: str) -> list[Fill]:
        data = self.get_fills()
        out: list[Fill] = []
        for raw in data.get("fills") or []:
            if str(raw.get("symbol", "")).upper() != symbol.upper():
                continue
            try:
                out.append(
                    Fill(
                        side=str(raw["side"]),
                        price=float(raw["price"]),
                        size=float(raw["size"]),
                        fill_time=parse_fill_time(raw["fillTime"]),
                    )
                )
            except (KeyError, TypeError, ValueError) as exc:
                self.logger.warning("Skipping malformed fill %s: %s", raw, exc)
        return out
