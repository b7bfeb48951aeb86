"""Tests for the trailing-hour trade frequency window."""

from datetime import datetime, timedelta, timezone

from core.trade_limits import TradeFrequencyWindow

NOW = datetime(2026, 1, 5, 14, 0, tzinfo=timezone.utc)


def test_entries_older_than_an_hour_are_pruned():
    window = TradeFrequencyWindow()
    window.record(10.0, at=NOW - timedelta(minutes=61))
    window.record(20.0, at=NOW - timedelta(minutes=59))

    assert window.count(NOW) == 1
    assert window.volume(NOW) == 20.0
    assert len(window.entries()) == 1


def test_entry_exactly_one_hour_old_is_dropped():
    window = TradeFrequencyWindow()
    window.record(10.0, at=NOW - timedelta(hours=1))
    assert window.count(NOW) == 0


def test_check_rejects_at_cap():
    window = TradeFrequencyWindow()
    for minutes in (5, 10, 15):
        window.record(10.0, at=NOW - timedelta(minutes=minutes))

    result = window.check(3, now=NOW)

    assert not result.approved
    assert result.trades_in_window == 3
    assert result.limit == 3
    assert "3/3" in result.reason
    assert window.check(4, now=NOW).approved


def test_naive_timestamps_are_treated_as_utc():
    window = TradeFrequencyWindow()
    window.record(10.0, at=datetime(2026, 1, 5, 13, 30))
    assert window.count(NOW) == 1


def test_reset_clears_everything():
    window = TradeFrequencyWindow()
    window.record(10.0, at=NOW)
    window.reset()

    assert len(window) == 0
    assert window.check(1, now=NOW).approved
