import asyncio
import json

import pytest
from rich.console import Console

from analysis.metrics import compute_trade_metrics
from analysis.reporting import export_trades, render_closed_trades, render_summary
from analysis.review import run_post_test_review
from fakes import FakeTransport, RecordingSleep
from oracle.client import DecisionOracleClient
from oracle.prompt import build_review_prompt
from shared.models.models import ClosedTrade, Position, PositionStatus, Signal
from shared.utils.logging import MetricsLogger


def _pos(pnl: float, i: int = 0) -> Position:
    return Position(
        signal=Signal.LONG,
        entry_time=i * 100,
        entry_price=100.0,
        size=1.0,
        stop_loss_price=90.0,
        take_profit_price=110.0,
        status=PositionStatus.CLOSED,
        exit_time=i * 100 + 50,
        exit_price=100.0 + pnl,
        exit_reason="Take-Profit" if pnl > 0 else "Stop-Loss",
        realized_pnl=pnl,
    )


def test_trade_metrics():
    stats = compute_trade_metrics([_pos(100.0), _pos(-200.0), _pos(50.0)], 1_000.0)
    assert stats["trades"] == 3
    assert stats["wins"] == 2
    assert stats["losses"] == 1
    assert stats["total_pnl"] == pytest.approx(-50.0)
    assert stats["final_balance"] == pytest.approx(950.0)
    assert stats["win_rate_pct"] == pytest.approx(200 / 3)
    # 峰值 1100 -> 900
    assert stats["max_drawdown_pct"] == pytest.approx(200 / 1100 * 100)
    assert stats["best_trade"] == 100.0
    assert stats["worst_trade"] == -200.0


def test_trade_metrics_without_trades():
    stats = compute_trade_metrics([], 500.0)
    assert stats["trades"] == 0
    assert stats["win_rate_pct"] == 0.0
    assert stats["final_balance"] == 500.0


def test_export_and_render(tmp_path):
    paths = export_trades([_pos(10.0)], tmp_path)
    rows = json.loads(paths["trades_json"].read_text(encoding="utf-8"))
    assert rows[0]["signal"] == "LONG"
    assert paths["trades_csv"].exists()

    console = Console(record=True, width=120)
    render_summary(compute_trade_metrics([_pos(10.0)], 1_000.0) | {"oracle_calls": 3, "stopped_early": True}, console)
    text = console.export_text()
    assert "Backtest Summary" in text
    assert "$1,010.00" in text
    assert "oracle budget exhausted" in text

    render_closed_trades([ClosedTrade(Signal.SHORT, 1, 10.0, 2, 9.0, 1.0, 1.0)], console=console)
    assert "SHORT" in console.export_text()


def test_review_prompt_includes_trades_and_stats():
    positions = [_pos(10.0), _pos(-5.0, 1)]
    prompt = build_review_prompt(positions, compute_trade_metrics(positions, 1_000.0), {"risk_fraction": 0.02})
    assert '"exitReason": "Stop-Loss"' in prompt
    assert "Total trades:    2" in prompt
    assert '"risk_fraction": 0.02' in prompt


def test_post_test_review_block_report(tmp_path):
    transport = FakeTransport(['{"summary": "fine", "winRate": 50}'])
    oracle = DecisionOracleClient(transport, sleep=RecordingSleep())
    positions = [_pos(10.0, i) for i in range(4)]

    paths = asyncio.run(run_post_test_review(oracle, positions, 1_000.0, tmp_path, block_size=2))

    assert json.loads(paths["review"].read_text(encoding="utf-8"))["summary"] == "fine"
    assert paths["block_report"] == tmp_path / "block-reports" / "4.json"
    assert len(transport.prompts) == 2


def test_post_test_review_skips_block_when_not_multiple(tmp_path):
    oracle = DecisionOracleClient(FakeTransport(['{"summary": "x"}']), sleep=RecordingSleep())
    paths = asyncio.run(run_post_test_review(oracle, [_pos(1.0, i) for i in range(3)], 1_000.0, tmp_path, block_size=2))
    assert "block_report" not in paths


def test_post_test_review_failure_writes_nothing(tmp_path):
    oracle = DecisionOracleClient(FakeTransport(["no json"]), max_attempts=1, sleep=RecordingSleep())
    paths = asyncio.run(run_post_test_review(oracle, [_pos(1.0)], 1_000.0, tmp_path, block_size=5))
    assert paths == {}
    assert not (tmp_path / "review.json").exists()


def test_metrics_logger_appends_ndjson(tmp_path):
    path = tmp_path / "m" / "metrics.ndjson"
    metrics = MetricsLogger(path)
    metrics.emit("oracle_attempts", 2, "count", signal="LONG")
    metrics.emit("balance", 10_000.0, "usd")
    lines = [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]
    assert [r["metric"] for r in lines] == ["oracle_attempts", "balance"]
    assert lines[0]["signal"] == "LONG"
    assert MetricsLogger(None).emit("x", 1)["value"] == 1
