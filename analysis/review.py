"""回测结束后的 AI 复盘（全量报告 + 每 block_size 笔的分块报告）。"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Sequence

from analysis.metrics import compute_trade_metrics
from oracle.client import DecisionOracleClient
from oracle.prompt import build_review_prompt
from shared.models.models import Position
from shared.utils.logging import setup_logger

logger = setup_logger("review")


def _write_json(path: Path, data: Any) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
    return path


async def review_positions(
    oracle: DecisionOracleClient,
    positions: Sequence[Position],
    initial_balance: float,
    config_snapshot: dict[str, Any] | None = None,
) -> dict[str, Any] | None:
    stats = compute_trade_metrics(positions, initial_balance)
    prompt = build_review_prompt(positions, stats, config_snapshot)
    return await oracle.complete_json(prompt)


async def run_post_test_review(
    oracle: DecisionOracleClient,
    positions: Sequence[Position],
    initial_balance: float,
    output_dir: str | Path,
    block_size: int = 10,
    config_snapshot: dict[str, Any] | None = None,
) -> dict[str, Path]:
    """写 review.json；已平仓笔数是 block_size 的正整数倍时，另写 block-reports/<n>.json。

    oracle 失败只记日志：复盘是附加产物，不影响回测结果。
    """
    out = Path(output_dir)
    artifacts: dict[str, Path] = {}

    report = await review_positions(oracle, positions, initial_balance, config_snapshot)
    if report is not None:
        artifacts["review"] = _write_json(out / "review.json", report)
        logger.info("[REVIEW] Post-test analysis saved -> %s", artifacts["review"])
    else:
        logger.warning("[REVIEW] AI analysis call failed.")

    closed = [p for p in positions if not p.is_open]
    if closed and block_size > 0 and len(closed) % block_size == 0:
        block = closed[-block_size:]
        block_report = await review_positions(oracle, block, initial_balance, config_snapshot) or {}
        path = _write_json(out / "block-reports" / f"{len(closed)}.json", block_report)
        artifacts["block_report"] = path
        logger.info("[BLOCK REPORT] saved -> %s", path)
    return artifacts
