"""Tests for indicator maths and the in-memory history series."""

import pytest

from core.history import InMemoryHistory
from core.indicators import clamp, coefficient_of_variation, deviation_from, sma


def test_sma_basic():
    assert sma([1.0, 2.0, 3.0]) == 2.0
    assert sma([]) is None


@pytest.mark.parametrize("price", [0.1, 0.7, 1.1, 3.3, 2543.17])
@pytest.mark.parametrize("n", [3, 10, 20])
def test_sma_of_flat_series_is_exact(price, n):
    average = sma([price] * n)

    assert average == price
    assert deviation_from(price, average) == 0


def test_deviation_from_reference():
    assert deviation_from(95.0, 100.0) == pytest.approx(-0.05)
    assert deviation_from(100.0, 0.0) is None


def test_coefficient_of_variation():
    assert coefficient_of_variation([100.0] * 10) == 0.0
    assert coefficient_of_variation([100.0, 101.0] * 10) == pytest.approx(0.5 / 100.5)
    assert coefficient_of_variation([]) is None
    assert coefficient_of_variation([1.0, -1.0]) is None


def test_clamp():
    assert clamp(1.2, 0.7, 0.9) == 0.9
    assert clamp(0.1, 0.7, 0.9) == 0.7
    assert clamp(0.8, 0.7, 0.9) == 0.8


class TestInMemoryHistory:
    def test_history_is_oldest_first_and_bounded(self):
        history = InMemoryHistory()
        history.extend("A", [1.0, 2.0, 3.0, 4.0])

        points = history.get_history("A", 2)
        assert [p.price for p in points] == [3.0, 4.0]
        assert history.latest_price("A") == 4.0

    def test_same_timestamp_replaces_point(self):
        history = InMemoryHistory()
        history.append("2026-01-01T00:00:00", "A", 1.0, 100.0)
        history.append("2026-01-01T00:00:00", "A", 2.0, 100.0)

        points = history.get_history("A", 10)
        assert len(points) == 1
        assert points[0].price == 2.0

    def test_max_points_drops_oldest(self):
        history = InMemoryHistory(max_points=3)
        history.extend("A", [1.0, 2.0, 3.0, 4.0, 5.0])

        assert [p.price for p in history.get_history("A", 10)] == [3.0, 4.0, 5.0]

    def test_unknown_instrument_and_zero_count(self):
        history = InMemoryHistory()
        history.extend("A", [1.0])

        assert history.get_history("B", 5) == []
        assert history.get_history("A", 0) == []
        assert history.latest_price("B") is None
