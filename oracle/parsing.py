"""从 oracle 返回文本中提取并校验建议 JSON。

返回值是带标签的结果：成功为 `Recommendation`，失败为 `ParseError`（带原因），
调用方据此决定是否重试，不依赖异常。
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from typing import Any

from shared.models.models import Recommendation, Signal

REQUIRED_KEYS = (
    "signal",
    "confidence",
    "stop_loss_distance_in_usd",
    "take_profit_distance_in_usd",
    "reason",
)


@dataclass(frozen=True)
class ParseError:
    message: str


def extract_json_block(text: str) -> dict[str, Any] | None:
    """找到文本中第一个括号平衡的 `{...}` 并解析为 dict。

    整段就是 JSON 时直接解析；否则从第一个 `{` 开始按深度匹配（字符串内的括号不计）。
    """
    if not text:
        return None
    try:
        parsed = json.loads(text)
        if isinstance(parsed, dict):
            return parsed
    except json.JSONDecodeError:
        pass

    start = text.find("{")
    if start < 0:
        return None

    depth = 0
    in_string = False
    escape_next = False
    for i in range(start, len(text)):
        c = text[i]
        if escape_next:
            escape_next = False
            continue
        if in_string:
            if c == "\\":
                escape_next = True
            elif c == '"':
                in_string = False
            continue
        if c == '"':
            in_string = True
        elif c == "{":
            depth += 1
        elif c == "}":
            depth -= 1
            if depth == 0:
                try:
                    parsed = json.loads(text[start : i + 1])
                except json.JSONDecodeError:
                    return None
                return parsed if isinstance(parsed, dict) else None
    return None


def _is_number(val: Any) -> bool:
    return isinstance(val, (int, float)) and not isinstance(val, bool) and math.isfinite(val)


def validate_payload(data: dict[str, Any]) -> Recommendation | ParseError:
    missing = [k for k in REQUIRED_KEYS if k not in data]
    if missing:
        return ParseError(f"missing keys: {', '.join(missing)}")

    raw_signal = data["signal"]
    if not isinstance(raw_signal, str) or raw_signal not in Signal.__members__:
        return ParseError(f"invalid signal: {raw_signal!r}")
    for key in ("confidence", "stop_loss_distance_in_usd", "take_profit_distance_in_usd"):
        if not _is_number(data[key]):
            return ParseError(f"{key} must be a number, got {data[key]!r}")
    if data["stop_loss_distance_in_usd"] < 0 or data["take_profit_distance_in_usd"] < 0:
        return ParseError("distances must be >= 0")
    if not isinstance(data["reason"], str):
        return ParseError("reason must be a string")

    confidence = int(round(min(100.0, max(0.0, float(data["confidence"])))))
    return Recommendation(
        signal=Signal(raw_signal),
        confidence=confidence,
        stop_loss_distance_usd=float(data["stop_loss_distance_in_usd"]),
        take_profit_distance_usd=float(data["take_profit_distance_in_usd"]),
        reason=data["reason"],
    )


def parse_recommendation(text: str | None) -> Recommendation | ParseError:
    """文本 -> Recommendation | ParseError。"""
    if not text or not text.strip():
        return ParseError("empty response")
    data = extract_json_block(text)
    if data is None:
        return ParseError("no JSON object found in response")
    return validate_payload(data)
