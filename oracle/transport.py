"""oracle 传输层：把提示词发给外部 LLM 服务并取回原始文本。

阻塞的 HTTP 调用放进 `asyncio.to_thread`，对上层暴露 `async generate(prompt)`；
测试里直接注入实现了同名协程的假对象即可。
"""

from __future__ import annotations

import asyncio
from typing import Any, Protocol

import requests

from shared.config.schema import OracleConfig
from shared.errors import MissingCredentialsError


class OracleTransportError(RuntimeError):
    """网络/HTTP/返回体结构错误。"""


class OracleTransport(Protocol):
    async def generate(self, prompt: str) -> str: ...


class GeminiTransport:
    """Google Generative Language REST（generateContent）。"""

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-2.5-flash-lite",
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        timeout: float = 60.0,
        session: requests.Session | None = None,
    ):
        if not api_key:
            raise MissingCredentialsError("Oracle api_key is required")
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    @classmethod
    def from_config(cls, cfg: OracleConfig) -> "GeminiTransport":
        return cls(api_key=cfg.api_key or "", model=cfg.model, base_url=cfg.base_url, timeout=cfg.timeout_secs)

    def _post(self, prompt: str) -> dict[str, Any]:
        url = f"{self.base_url}/models/{self.model}:generateContent"
        body = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "safetySettings": [
                {"category": "HARM_CATEGORY_DANGEROUS_CONTENT", "threshold": "BLOCK_NONE"},
            ],
        }
        try:
            resp = self.session.post(url, params={"key": self.api_key}, json=body, timeout=self.timeout)
            resp.raise_for_status()
            return resp.json()
        except (requests.RequestException, ValueError) as exc:
            raise OracleTransportError(f"oracle request failed: {exc}") from exc

    @staticmethod
    def extract_text(data: dict[str, Any]) -> str:
        candidates = data.get("candidates") or []
        if not candidates:
            raise OracleTransportError("oracle response has no candidates")
        parts = (candidates[0].get("content") or {}).get("parts") or []
        return "".join(str(p.get("text", "")) for p in parts if isinstance(p, dict))

    def generate_sync(self, prompt: str) -> str:
        return self.extract_text(self._post(prompt))

    async def generate(self, prompt: str) -> str:
        return await asyncio.to_thread(self.generate_sync, prompt)


def build_transport(cfg: OracleConfig) -> OracleTransport:
    if cfg.provider == "gemini":
        return GeminiTransport.from_config(cfg)
    raise ValueError(f"Unknown oracle provider: {cfg.provider}")
