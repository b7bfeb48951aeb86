"""Test helpers for cascade-trader test suite"""

from tests.helpers.fakes import (
    DEFAULT_PRICES,
    FakeDiscoverer,
    FakeVenue,
    FixedClock,
    candidate,
    make_snapshot,
)

__all__ = [
    "DEFAULT_PRICES",
    "FakeDiscoverer",
    "FakeVenue",
    "FixedClock",
    "candidate",
    "make_snapshot",
]
