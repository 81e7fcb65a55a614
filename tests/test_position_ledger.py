import pytest

from fakes import make_candle
from shared.models.models import OrderParameters, PositionStatus, Signal
from shared.state.position_ledger import STOP_LOSS, TAKE_PROFIT, PositionLedger, realized_pnl


@pytest.fixture
def ledger() -> PositionLedger:
    return PositionLedger(initial_balance=10_000.0)


def test_realized_pnl_sign_follows_direction():
    assert realized_pnl(Signal.LONG, 30_000.0, 31_000.0, 0.01) == pytest.approx(10.0)
    assert realized_pnl(Signal.SHORT, 30_000.0, 31_000.0, 0.01) == pytest.approx(-10.0)


def test_long_take_profit(ledger):
    ledger.open_position(Signal.LONG, OrderParameters(0.01, 29_500.0, 31_000.0), 30_000.0, 100)
    assert ledger.state == "OPEN"

    assert ledger.check_exit(make_candle(1, 30_500.0, high=30_900.0, low=29_600.0)) is None
    closed = ledger.check_exit(make_candle(2, 31_000.0, high=31_200.0, low=30_400.0))

    assert closed.exit_reason == TAKE_PROFIT
    assert closed.exit_price == 31_000.0
    assert closed.realized_pnl == pytest.approx(10.0)
    assert closed.status is PositionStatus.CLOSED
    assert ledger.state == "FLAT"
    assert ledger.balance == pytest.approx(10_010.0)


def test_short_stop_loss(ledger):
    ledger.open_position(Signal.SHORT, OrderParameters(0.01, 30_500.0, 29_000.0), 30_000.0, 100)
    closed = ledger.check_exit(make_candle(1, 30_400.0, high=30_600.0, low=30_100.0))
    assert closed.exit_reason == STOP_LOSS
    assert closed.realized_pnl == pytest.approx(-5.0)
    assert ledger.balance == pytest.approx(9_995.0)


@pytest.mark.parametrize("signal,params", [
    (Signal.LONG, OrderParameters(1.0, 95.0, 105.0)),
    (Signal.SHORT, OrderParameters(1.0, 105.0, 95.0)),
])
def test_stop_loss_wins_when_both_levels_hit(ledger, signal, params):
    ledger.open_position(signal, params, 100.0, 0)
    closed = ledger.check_exit(make_candle(1, 100.0, high=110.0, low=90.0))
    assert closed.exit_reason == STOP_LOSS
    assert closed.realized_pnl == pytest.approx(-5.0)


def test_single_open_position(ledger):
    first = ledger.open_position(Signal.LONG, OrderParameters(1.0, 95.0, 105.0), 100.0, 0)
    second = ledger.open_position(Signal.SHORT, OrderParameters(1.0, 105.0, 95.0), 100.0, 1)
    assert first is not None
    assert second is None
    assert ledger.position is first


def test_hold_never_opens(ledger):
    assert ledger.open_position(Signal.HOLD, OrderParameters(1.0, 95.0, 105.0), 100.0, 0) is None
    assert ledger.is_flat


def test_check_exit_when_flat_is_noop(ledger):
    assert ledger.check_exit(make_candle(0)) is None
    assert ledger.balance == 10_000.0


def test_balance_equals_initial_plus_closed_pnl(ledger):
    for i, exit_high in enumerate([106.0, 100.0, 106.0]):
        ledger.open_position(Signal.LONG, OrderParameters(2.0, 97.0, 105.0), 100.0, i * 10)
        ledger.check_exit(make_candle(i * 10 + 1, 100.0, high=exit_high, low=96.0 if exit_high == 100.0 else 99.0))
    pnls = [p.realized_pnl for p in ledger.closed_positions]
    assert pnls == pytest.approx([10.0, -6.0, 10.0])
    assert ledger.balance == pytest.approx(10_000.0 + sum(pnls))


def test_recent_closed_trades_and_seeded_history(ledger):
    ledger.open_position(Signal.LONG, OrderParameters(1.0, 95.0, 105.0), 100.0, 0)
    ledger.check_exit(make_candle(1, 100.0, high=106.0, low=99.0))

    other = PositionLedger(0.0)
    other.seed_history(ledger.closed_positions)
    assert other.balance == 0.0
    trades = other.recent_closed_trades(5)
    assert len(trades) == 1
    assert trades[0].pnl == pytest.approx(5.0)
    assert other.recent_closed_trades(0) == []
