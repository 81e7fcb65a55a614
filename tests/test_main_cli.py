from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

import main as app_main
from shared.config.schema import MainConfig
from shared.errors import ExecutionError, InsufficientDataError, MissingCredentialsError


@dataclass
class _Res:
    summary: dict[str, Any]


def test_backtest_accepts_config_before_and_after_subcommand(monkeypatch):
    calls: list[str] = []

    def _fake_run_backtest(cfg_path: str):
        calls.append(cfg_path)
        return {"ok": True}

    monkeypatch.setattr(app_main, "run_backtest", _fake_run_backtest)
    assert app_main.main(["--config", "config/backtest.yml", "backtest"]) == 0
    assert app_main.main(["backtest", "--config", "config/other.yml"]) == 0
    assert calls == ["config/backtest.yml", "config/other.yml"]


def test_live_passes_max_cycles_to_trading_engine(monkeypatch):
    created: list[dict[str, Any]] = []

    class _FakeEngine:
        def __init__(self, *, cfg_path: str, max_cycles: int | None = None, **_kwargs):
            created.append({"cfg_path": cfg_path, "max_cycles": max_cycles})

        def run(self):
            return _Res(summary={"cycles": 2})

    monkeypatch.setattr(app_main, "TradingEngine", _FakeEngine)
    assert app_main.main(["--config", "config/config.yml", "live", "--max-cycles", "2"]) == 0
    assert created == [{"cfg_path": "config/config.yml", "max_cycles": 2}]


def test_run_dispatches_on_configured_mode(monkeypatch):
    seen: list[str] = []
    monkeypatch.setattr(app_main, "load_config", lambda path: MainConfig(mode="live"))
    monkeypatch.setattr(app_main, "run_live", lambda cfg, max_cycles=None: seen.append(f"live:{max_cycles}"))
    monkeypatch.setattr(app_main, "run_backtest", lambda cfg: seen.append("backtest"))

    assert app_main.main(["run", "--max-cycles", "1"]) == 0
    monkeypatch.setattr(app_main, "load_config", lambda path: MainConfig(mode="backtest"))
    assert app_main.main(["run"]) == 0
    assert seen == ["live:1", "backtest"]


def test_setup_errors_exit_with_code_2(monkeypatch):
    def _raise_missing(cfg_path):
        raise MissingCredentialsError("oracle.api_key is required")

    monkeypatch.setattr(app_main, "run_backtest", _raise_missing)
    assert app_main.main(["backtest"]) == app_main.EXIT_SETUP_ERROR

    def _raise_data(cfg_path):
        raise InsufficientDataError("empty")

    monkeypatch.setattr(app_main, "run_backtest", _raise_data)
    assert app_main.main(["backtest"]) == 2


def test_missing_config_file_exits_with_code_2(tmp_path):
    assert app_main.main(["--config", str(tmp_path / "missing.yml"), "run"]) == 2


def test_exchange_errors_exit_with_code_1(monkeypatch):
    def _raise(cfg_path, max_cycles=None):
        raise ExecutionError("HTTP 500")

    monkeypatch.setattr(app_main, "run_live", _raise)
    assert app_main.main(["live"]) == app_main.EXIT_EXCHANGE_ERROR


def test_reconcile_from_fills_file(tmp_path, monkeypatch):
    fills = {
        "fills": [
            {"side": "buy", "price": 100, "size": 1, "fillTime": "2024-01-01T00:00:00Z"},
            {"side": "buy", "price": 110, "size": 1, "fillTime": "2024-01-01T01:00:00Z"},
            {"side": "sell", "price": 120, "size": 1.5, "fillTime": "2024-01-01T02:00:00Z"},
        ]
    }
    path = tmp_path / "fills.json"
    path.write_text(json.dumps(fills), encoding="utf-8")
    monkeypatch.setattr(app_main, "render_closed_trades", lambda *a, **k: None)

    summary = app_main.run_reconcile("unused.yml", str(path), limit=10)
    assert summary == {"fills": 3, "closed_trades": 2, "realized_pnl": 25.0, "residual_size": 0.5}
    assert app_main.main(["reconcile", "--fills", str(path)]) == 0


def test_parse_args_defaults():
    args = app_main.parse_args([])
    assert args.task == "run"
    assert args.config == "config/config.yml"
    assert args.limit == 10
