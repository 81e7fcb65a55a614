import pytest

from fakes import HOUR, T0, make_candle, make_candles
from market_data.store import CandleStore, to_unix_seconds


def test_store_rejects_non_increasing_timestamps():
    c0, c1 = make_candle(0), make_candle(1)
    with pytest.raises(ValueError):
        CandleStore([c1, c0])
    with pytest.raises(ValueError):
        CandleStore([c0, c0])


def test_window_ends_at_and_includes_current_candle():
    store = CandleStore(make_candles(range(100, 110)))
    w = store.window(5, 3)
    assert [c.close for c in w] == [103, 104, 105]
    assert w[-1] is store[5]


def test_window_is_truncated_at_series_start():
    store = CandleStore(make_candles(range(100, 110)))
    assert len(store.window(1, 5)) == 2


def test_window_out_of_range_raises():
    store = CandleStore(make_candles([100, 101]))
    with pytest.raises(IndexError):
        store.window(2, 1)


def test_window_is_snapshot_unaffected_by_append():
    store = CandleStore(make_candles([100, 101, 102]))
    w = store.latest_window(3)
    grown = store.append([make_candle(3, 103)])
    assert isinstance(w, tuple)
    assert [c.close for c in w] == [100, 101, 102]
    assert len(store) == 3
    assert len(grown) == 4
    assert grown.last.close == 103


def test_append_ignores_known_timestamps():
    store = CandleStore(make_candles([100, 101, 102]))
    grown = store.append(make_candles([101, 102, 103], start=1))
    assert [c.close for c in grown] == [100, 101, 102, 103]


def test_filter_by_date_is_half_open():
    store = CandleStore(make_candles(range(100, 148)))  # 两天的 1h K 线
    day = store.filter_by_date("2022-01-01", "2022-01-02")
    assert len(day) == 24
    assert day[0].timestamp == T0
    assert day.last.timestamp == T0 + 23 * HOUR


def test_to_unix_seconds_treats_naive_as_utc():
    assert to_unix_seconds("2022-01-01") == T0
    assert to_unix_seconds("2022-01-01T00:00:00Z") == T0
    assert to_unix_seconds(T0) == T0


def test_tail_keeps_latest_candles():
    store = CandleStore(make_candles([1, 2, 3, 4, 5]))
    tail = store.tail(2)
    assert [c.close for c in tail] == [4, 5]
    assert len(store) == 5
    assert len(CandleStore().tail(3)) == 0
