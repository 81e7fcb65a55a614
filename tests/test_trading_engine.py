import pytest

from broker.live_broker import EXCHANGE_EXIT, LiveBroker
from engine.trading_engine import TradingEngine
from fakes import FakeKrakenClient, FakeTransport, RecordingSleep, make_candles, rec_json
from shared.config.schema import (
    HistoryConfig,
    LoggingConfig,
    MainConfig,
    OracleConfig,
    SignalFilterConfig,
    TradingConfig,
)
from shared.errors import InsufficientDataError, MissingCredentialsError


class _FakeMarket:
    """每次拉取多返回一根新收盘的 K 线。"""

    def __init__(self, base: int = 3):
        self.base = base
        self.calls = 0

    def fetch_candles(self, pair, timeframe):
        self.calls += 1
        return make_candles([100.0] * (self.base + self.calls))


def _cfg(**overrides) -> MainConfig:
    values = dict(
        mode="live",
        trading=TradingConfig(window_size=3, warmup=3, max_oracle_calls=None, interval_secs=60, confidence_threshold=40),
        signal_filter=SignalFilterConfig(enabled=False),
        oracle=OracleConfig(indicators=False),
        history=HistoryConfig(enabled=False),
        logging=LoggingConfig(dir=None, metrics=False),
    )
    values.update(overrides)
    return MainConfig(**values)


def test_live_engine_runs_bounded_cycles():
    client = FakeKrakenClient(margin=10_000.0)
    broker = LiveBroker(client)
    sleep = RecordingSleep()
    market = _FakeMarket()
    engine = TradingEngine(
        cfg_obj=_cfg(),
        max_cycles=2,
        broker=broker,
        transport=FakeTransport([rec_json("LONG", 80, 5.0, 10.0)]),
        market_client=market,
        sleep=sleep,
        clock=lambda: 0.0,
    )
    summary = engine.run().summary

    assert summary["cycles"] == 2
    assert summary["oracle_calls"] == 2
    assert summary["opened"] == 2
    # 交易所上已无持仓，第二个周期先把本地记录按 Exchange-Exit 关闭
    assert summary["closed"] == 1
    assert broker.ledger.closed_positions[0].exit_reason == EXCHANGE_EXIT
    assert len(client.orders) == 2
    assert sleep.calls == [60.0]
    assert market.calls == 3


def test_live_engine_skips_while_exchange_holds_position():
    client = FakeKrakenClient(position={"symbol": "PF_XBTUSD", "size": 1.0})
    engine = TradingEngine(
        cfg_obj=_cfg(),
        max_cycles=1,
        broker=LiveBroker(client),
        transport=FakeTransport([rec_json()]),
        market_client=_FakeMarket(),
        sleep=RecordingSleep(),
    )
    summary = engine.run().summary
    assert summary["oracle_calls"] == 0
    assert client.orders == []


def test_live_engine_requires_credentials():
    engine = TradingEngine(cfg_obj=_cfg(), max_cycles=1, market_client=_FakeMarket())
    with pytest.raises(MissingCredentialsError) as exc:
        engine.run()
    assert "exchange.api_key" in str(exc.value)
    assert "oracle.api_key" in str(exc.value)


def test_live_engine_needs_enough_candles_for_filter():
    engine = TradingEngine(
        cfg_obj=_cfg(signal_filter=SignalFilterConfig(enabled=True)),
        max_cycles=1,
        broker=LiveBroker(FakeKrakenClient()),
        transport=FakeTransport([rec_json()]),
        market_client=_FakeMarket(),
        sleep=RecordingSleep(),
    )
    with pytest.raises(InsufficientDataError):
        engine.run()


def test_live_store_keeps_a_bounded_tail():
    market = _FakeMarket(base=20)
    engine = TradingEngine(
        cfg_obj=_cfg(),
        max_cycles=3,
        broker=LiveBroker(FakeKrakenClient()),
        transport=FakeTransport([rec_json()]),
        market_client=market,
        sleep=RecordingSleep(),
        clock=lambda: 0.0,
    )
    engine.run()
    assert market.calls == 4
    # window_size=3：只保留最近 6 根
    assert len(engine.store) == 6
    assert engine.store.last.timestamp == make_candles([100.0] * 24)[-1].timestamp
