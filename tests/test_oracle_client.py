import asyncio
import random

import pytest

from fakes import FakeTransport, RecordingSleep, make_candles, rec_json
from oracle.backoff import ConstantBackoff, ExponentialBackoff, JitteredBackoff, build_backoff
from oracle.client import DecisionOracleClient
from shared.config.schema import BackoffConfig, OracleConfig
from shared.models.models import ClosedTrade, Signal


def _client(responses, **kwargs):
    sleep = RecordingSleep()
    transport = FakeTransport(responses)
    client = DecisionOracleClient(transport, sleep=sleep, include_indicators=False, **kwargs)
    return client, transport, sleep


def test_valid_first_response_makes_single_call():
    client, transport, sleep = _client([rec_json("LONG", 65)])
    rec = asyncio.run(client.recommend(make_candles([100, 101, 102])))
    assert rec.signal is Signal.LONG
    assert rec.confidence == 65
    assert len(transport.prompts) == 1
    assert client.last_attempts == 1
    assert sleep.calls == []


def test_retries_with_fixed_delay_then_succeeds():
    client, transport, sleep = _client(["garbage", RuntimeError("503"), rec_json("SHORT")])
    rec = asyncio.run(client.recommend(make_candles([100, 101])))
    assert rec.signal is Signal.SHORT
    assert len(transport.prompts) == 3
    assert sleep.calls == [61.0, 61.0]


def test_exhausted_retries_return_hold_sentinel():
    client, transport, sleep = _client(["not json"], max_attempts=4)
    rec = asyncio.run(client.recommend(make_candles([100])))
    assert rec.is_hold
    assert rec.confidence == 0
    assert rec.stop_loss_distance_usd == 0.0
    assert rec.take_profit_distance_usd == 0.0
    assert "4 attempts" in rec.reason
    assert "no JSON object" in rec.reason
    assert len(transport.prompts) == 4
    # 只在两次尝试之间等待
    assert sleep.calls == [61.0, 61.0, 61.0]


def test_transport_error_reason_is_carried_into_hold():
    client, _, _ = _client([ConnectionError("dns failure")], max_attempts=2)
    rec = asyncio.run(client.recommend(make_candles([100])))
    assert rec.is_hold
    assert "dns failure" in rec.reason


def test_empty_window_returns_hold_without_calling():
    client, transport, _ = _client([rec_json()])
    rec = asyncio.run(client.recommend([]))
    assert rec.is_hold
    assert transport.prompts == []
    assert client.last_attempts == 0


def test_prompt_carries_window_and_recent_trades():
    client, transport, _ = _client([rec_json()])
    trade = ClosedTrade(Signal.LONG, 1, 100.0, 2, 110.0, 1.0, 10.0)
    asyncio.run(client.recommend(make_candles([100, 101, 102]), [trade]))
    prompt = transport.prompts[0]
    assert '"recent_closed_trades":[{"side":"LONG"' in prompt
    assert "last 3 1h OHLC candles" in prompt
    assert "stop_loss_distance_in_usd" in prompt


def test_complete_json_returns_first_object():
    client, _, _ = _client(['Review: {"summary": "ok", "winRate": 50}'])
    assert asyncio.run(client.complete_json("review please")) == {"summary": "ok", "winRate": 50}


def test_complete_json_returns_none_after_failures():
    client, _, sleep = _client(["nothing"], max_attempts=2)
    assert asyncio.run(client.complete_json("review please")) is None
    assert sleep.calls == [61.0]


def test_from_config_uses_configured_backoff():
    cfg = OracleConfig(max_attempts=3, backoff=BackoffConfig(type="exponential", delay_secs=2.0, factor=3.0))
    sleep = RecordingSleep()
    client = DecisionOracleClient.from_config(cfg, "PF_XBTUSD", "1h", transport=FakeTransport(["x"]), sleep=sleep)
    client.include_indicators = False
    asyncio.run(client.recommend(make_candles([100])))
    assert sleep.calls == [2.0, 6.0]


def test_max_attempts_must_be_positive():
    with pytest.raises(ValueError):
        DecisionOracleClient(FakeTransport(["x"]), max_attempts=0)


def test_backoff_policies():
    assert ConstantBackoff().delay(1) == 61.0
    assert ConstantBackoff(5).delay(9) == 5
    exp = ExponentialBackoff(initial_secs=1.0, factor=2.0, max_secs=5.0)
    assert [exp.delay(n) for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 5.0]
    jit = JitteredBackoff(base=ConstantBackoff(10.0), jitter_secs=2.0, rng=random.Random(7))
    for n in range(1, 5):
        assert 10.0 <= jit.delay(n) < 12.0


def test_build_backoff_defaults_to_constant():
    policy = build_backoff(None)
    assert isinstance(policy, ConstantBackoff)
    assert policy.delay(1) == 61.0
    assert isinstance(build_backoff(BackoffConfig(type="jittered")), JitteredBackoff)
