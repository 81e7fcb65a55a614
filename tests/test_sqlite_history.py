import pytest

from shared.models.models import Position, PositionStatus, Signal
from shared.state.sqlite_ledger import TradeHistoryStore


def _closed(i: int, pnl: float = 1.0, signal: Signal = Signal.LONG) -> Position:
    return Position(
        signal=signal,
        entry_time=i * 10,
        entry_price=100.0,
        size=1.0,
        stop_loss_price=95.0,
        take_profit_price=105.0,
        reason=f"trade {i}",
        status=PositionStatus.CLOSED,
        exit_time=i * 10 + 5,
        exit_price=100.0 + pnl,
        exit_reason="Take-Profit",
        realized_pnl=pnl,
    )


def test_append_and_recent_oldest_first(tmp_path):
    with TradeHistoryStore(tmp_path / "state" / "h.sqlite3") as store:
        for i in range(5):
            store.append("PF_XBTUSD", _closed(i, pnl=float(i)))
        store.append("PF_ETHUSD", _closed(9))

        recent = store.recent("PF_XBTUSD", 3)
        assert [p.realized_pnl for p in recent] == [2.0, 3.0, 4.0]
        assert all(p.status is PositionStatus.CLOSED for p in recent)
        assert recent[-1].reason == "trade 4"
        assert store.count("PF_XBTUSD") == 5
        assert store.count() == 6
        assert store.recent("PF_XBTUSD", 0) == []


def test_history_survives_reopen(tmp_path):
    path = tmp_path / "h.sqlite3"
    with TradeHistoryStore(path) as store:
        store.append("PF_XBTUSD", _closed(1, signal=Signal.SHORT))
    with TradeHistoryStore(path) as store:
        (pos,) = store.recent("PF_XBTUSD", 10)
        assert pos.signal is Signal.SHORT
        assert pos.exit_reason == "Take-Profit"


def test_open_position_is_not_persisted(tmp_path):
    open_pos = Position(Signal.LONG, 0, 100.0, 1.0, 95.0, 105.0)
    with TradeHistoryStore(tmp_path / "h.sqlite3") as store:
        with pytest.raises(ValueError):
            store.append("PF_XBTUSD", open_pos)
