import json

import pytest

from engine.backtest_engine import BacktestEngine
from fakes import FakeTransport, RecordingSleep, make_candle, make_candles, rec_json
from market_data.store import CandleStore
from shared.config.schema import (
    BacktestConfig,
    HistoryConfig,
    LoggingConfig,
    MainConfig,
    OracleConfig,
    ReviewConfig,
    SignalFilterConfig,
    TradingConfig,
)
from shared.errors import ConfigError, InsufficientDataError, MissingCredentialsError
from shared.state.sqlite_ledger import TradeHistoryStore

REVIEW = {"summary": "two trades", "totalReturn": 192.0, "winRate": 50.0}


class _RoutingTransport(FakeTransport):
    """决策提示返回交易建议，复盘提示返回复盘 JSON。"""

    async def generate(self, prompt: str) -> str:
        if "senior quantitative strategist" in prompt:
            self.prompts.append(prompt)
            return json.dumps(REVIEW)
        return await super().generate(prompt)


def _candles() -> CandleStore:
    return CandleStore(
        [
            make_candle(0, 100.0),
            make_candle(1, 100.0),
            make_candle(2, 105.0, high=111.0, low=99.0),
            make_candle(3, 90.0, high=106.0, low=89.0),
        ]
    )


def _cfg(tmp_path, **overrides) -> MainConfig:
    values = dict(
        trading=TradingConfig(window_size=1, warmup=1, max_oracle_calls=10, min_seconds_between_calls=0, confidence_threshold=0),
        signal_filter=SignalFilterConfig(enabled=False),
        oracle=OracleConfig(indicators=False),
        backtest=BacktestConfig(output_dir=str(tmp_path / "out")),
        history=HistoryConfig(enabled=False),
        logging=LoggingConfig(dir=None, metrics=False),
    )
    values.update(overrides)
    return MainConfig(**values)


def test_backtest_end_to_end_writes_artifacts(tmp_path):
    engine = BacktestEngine(
        cfg_obj=_cfg(tmp_path),
        transport=FakeTransport([rec_json("LONG", 80, 5.0, 10.0)]),
        candles=_candles(),
        sleep=RecordingSleep(),
    )
    result = engine.run()
    summary = result.summary

    assert summary["trades"] == 2
    assert summary["wins"] == 1
    assert summary["total_pnl"] == pytest.approx(192.0)
    assert summary["final_balance"] == pytest.approx(10_192.0)
    assert summary["oracle_calls"] == 3
    assert summary["candles"] == 4
    assert summary["stopped_early"] is False
    assert summary["open_position"]["entry_price"] == 90.0

    out = tmp_path / "out"
    trades = json.loads((out / "trades.json").read_text(encoding="utf-8"))
    assert [t["exit_reason"] for t in trades] == ["Take-Profit", "Stop-Loss"]
    assert (out / "trades.csv").read_text(encoding="utf-8").splitlines()[0].startswith("signal,entry_time")
    assert json.loads((out / "summary.json").read_text(encoding="utf-8"))["trades"] == 2
    assert set(result.artifacts) == {"trades_json", "trades_csv", "summary"}


def test_backtest_budget_stops_early(tmp_path):
    cfg = _cfg(tmp_path, trading=TradingConfig(window_size=1, warmup=1, max_oracle_calls=1, min_seconds_between_calls=0))
    transport = FakeTransport([rec_json("HOLD", 0, 0, 0)])
    result = BacktestEngine(cfg_obj=cfg, transport=transport, candles=CandleStore(make_candles([100] * 5)), sleep=RecordingSleep()).run()
    assert result.summary["stopped_early"] is True
    assert result.summary["oracle_calls"] == 1
    assert len(transport.prompts) == 1


def test_backtest_review_writes_block_report(tmp_path):
    cfg = _cfg(tmp_path, backtest=BacktestConfig(output_dir=str(tmp_path / "out"), review=ReviewConfig(enabled=True, block_size=2)))
    transport = _RoutingTransport([rec_json("LONG", 80, 5.0, 10.0)])
    result = BacktestEngine(cfg_obj=cfg, transport=transport, candles=_candles(), sleep=RecordingSleep()).run()

    out = tmp_path / "out"
    assert json.loads((out / "review.json").read_text(encoding="utf-8")) == REVIEW
    assert (out / "block-reports" / "2.json").exists()
    assert result.artifacts["review"].endswith("review.json")


def test_backtest_persists_closed_positions(tmp_path):
    db = tmp_path / "history.sqlite3"
    cfg = _cfg(tmp_path, history=HistoryConfig(enabled=True, path=str(db)))
    BacktestEngine(cfg_obj=cfg, transport=FakeTransport([rec_json()]), candles=_candles(), sleep=RecordingSleep()).run()
    with TradeHistoryStore(db) as store:
        assert store.count("PF_XBTUSD") == 2


def test_backtest_date_range_is_applied(tmp_path):
    cfg = _cfg(tmp_path, backtest=BacktestConfig(output_dir=str(tmp_path / "out"), start="2022-01-01T02:00:00"))
    transport = FakeTransport([rec_json("HOLD", 0, 0, 0)])
    result = BacktestEngine(cfg_obj=cfg, transport=transport, candles=_candles(), sleep=RecordingSleep()).run()
    assert result.summary["candles"] == 2
    assert result.summary["cycles"] == 1


def test_backtest_without_enough_candles_raises(tmp_path):
    engine = BacktestEngine(cfg_obj=_cfg(tmp_path), transport=FakeTransport([rec_json()]), candles=CandleStore(make_candles([100])))
    with pytest.raises(InsufficientDataError):
        engine.run()


def test_backtest_without_oracle_key_raises(tmp_path):
    engine = BacktestEngine(cfg_obj=_cfg(tmp_path), candles=_candles())
    with pytest.raises(MissingCredentialsError):
        engine.run()


def test_window_shorter_than_filter_needs_is_config_error(tmp_path):
    cfg = _cfg(tmp_path, signal_filter=SignalFilterConfig(enabled=True))
    engine = BacktestEngine(cfg_obj=cfg, transport=FakeTransport([rec_json()]), candles=_candles())
    with pytest.raises(ConfigError):
        engine.run()
