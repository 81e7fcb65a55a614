"""日志工具：控制台 + 文件日志，以及 NDJSON 指标输出。"""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any

_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
_ROOT = "oraclecycle"


def setup_logger(name: str = "trading", level: int | None = None) -> logging.Logger:
    """获取组件 logger（挂在 `oraclecycle.` 命名空间下，由 configure_logging 统一配置 handler）。"""
    logger = logging.getLogger(f"{_ROOT}.{name}")
    if level is not None:
        logger.setLevel(level)
    root = logging.getLogger(_ROOT)
    if not root.handlers:
        ch = logging.StreamHandler()
        ch.setFormatter(logging.Formatter(_FORMAT))
        root.addHandler(ch)
        root.setLevel(logging.INFO)
    return logger


def configure_logging(level: str | int = "INFO", log_dir: str | Path | None = None) -> logging.Logger:
    """设置全局日志级别；给出 log_dir 时额外写入 `<log_dir>/trading-bot.log`。"""
    root = logging.getLogger(_ROOT)
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    root.setLevel(level)
    if not any(isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler) for h in root.handlers):
        ch = logging.StreamHandler()
        ch.setFormatter(logging.Formatter(_FORMAT))
        root.addHandler(ch)
    if log_dir is not None:
        path = Path(log_dir)
        path.mkdir(parents=True, exist_ok=True)
        target = (path / "trading-bot.log").resolve()
        exists = any(
            isinstance(h, logging.FileHandler) and Path(h.baseFilename) == target for h in root.handlers
        )
        if not exists:
            fh = logging.FileHandler(target, encoding="utf-8")
            fh.setFormatter(logging.Formatter(_FORMAT))
            root.addHandler(fh)
    return root


class MetricsLogger:
    """追加写 NDJSON 指标：`{ts, metric, value, unit, **tags}`。

    path 为 None 时只丢弃（方便测试与纯回测场景）。
    """

    def __init__(self, path: str | Path | None = None):
        self.path = Path(path) if path is not None else None
        if self.path is not None:
            self.path.parent.mkdir(parents=True, exist_ok=True)

    def emit(self, name: str, value: float, unit: str = "", **tags: Any) -> dict[str, Any]:
        record: dict[str, Any] = {
            "ts": int(time.time() * 1000),
            "metric": name,
            "value": value,
            "unit": unit,
            **tags,
        }
        if self.path is not None:
            with self.path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(record, ensure_ascii=False, default=str) + "\n")
        return record
