"""
Tests for CoinGecko-backed token discovery.

Coverage:
- Selection methods
- Filtering (platform address, market cap, volume, losers only, exclusions)
- Market page cache
- Failures degrade to "no candidate"
"""

from unittest.mock import Mock

import pytest
from requests.exceptions import HTTPError

from core.models import DiscoveryFilters
from infra.token_discovery import CoinGeckoDiscovery, select_candidate
from tests.helpers import FixedClock, candidate


def _coin(symbol, address, mcap=5e8, volume=2e7, change_24h=-3.0, change_1h=0.5):
    return {
        "id": symbol.lower(),
        "symbol": symbol.lower(),
        "name": symbol.title(),
        "current_price": 1.0,
        "market_cap": mcap,
        "total_volume": volume,
        "price_change_percentage_24h": change_24h,
        "price_change_percentage_1h_in_currency": change_1h,
        "platforms": {"ethereum": address} if address else {},
    }


MARKETS = [
    _coin("AAA", "0xaaa", volume=3e7, change_24h=-2.0),
    _coin("BBB", "0xbbb", volume=9e7, change_24h=4.0),
    _coin("CCC", "0xccc", mcap=2e6, change_24h=-30.0),
    _coin("DDD", None, volume=5e8, change_24h=-40.0),
    _coin("EEE", "0xeee", volume=1e7, change_24h=-11.0, change_1h=-6.0),
]


def _response(payload, status=200):
    response = Mock()
    response.json.return_value = payload
    if status >= 400:
        response.raise_for_status.side_effect = HTTPError(f"{status}", response=response)
    return response


@pytest.fixture
def session():
    s = Mock()
    s.headers = {}
    s.get.return_value = _response(MARKETS)
    return s


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def discovery(session, clock):
    return CoinGeckoDiscovery(api_key="demo", min_request_interval=0, session=session, clock=clock)


class TestSelection:
    def test_methods(self):
        pool = [
            candidate("0x1", change_24h=-5.0, volume=100.0),
            candidate("0x2", change_24h=-15.0, volume=50.0),
            candidate("0x3", change_24h=20.0, volume=10.0),
        ]
        assert select_candidate(pool, "most_negative_change").instrument == "0x2"
        assert select_candidate(pool, "highest_volatility").instrument == "0x3"
        assert select_candidate(pool, "top_volume").instrument == "0x1"

    def test_empty_pool(self):
        assert select_candidate([], "top_volume") is None

    def test_unknown_method(self):
        with pytest.raises(ValueError):
            select_candidate([candidate()], "vibes")


def test_api_key_header(discovery, session):
    assert session.headers["x-cg-demo-api-key"] == "demo"


def test_top_volume_with_filters(discovery, session):
    filters = DiscoveryFilters(min_market_cap_usd=5e6, min_volume_usd=1e6, selection_method="top_volume")

    best = discovery.discover_candidate(filters)

    # DDD has no Ethereum address, CCC is below the market cap floor
    assert best.instrument == "0xbbb"
    assert best.symbol == "BBB"
    assert session.get.call_args.kwargs["params"]["order"] == "volume_desc"


def test_losers_only(discovery, session):
    filters = DiscoveryFilters(min_market_cap_usd=1e8, losers_only=True,
                               selection_method="most_negative_change")

    found = discovery.candidates(filters)

    assert [c.instrument for c in found] == ["0xaaa", "0xeee"]
    assert discovery.discover_candidate(filters).instrument == "0xeee"
    assert session.get.call_args.kwargs["params"]["order"] == "price_change_percentage_24h_asc"


def test_excluded_addresses_are_case_insensitive(session, clock):
    discovery = CoinGeckoDiscovery(excluded=["0xBBB"], min_request_interval=0, session=session, clock=clock)

    best = discovery.discover_candidate(DiscoveryFilters(selection_method="top_volume"))

    assert best.instrument == "0xaaa"


def test_markets_cached_until_ttl(discovery, session, clock):
    filters = DiscoveryFilters()

    discovery.discover_candidate(filters)
    clock.advance(299)
    discovery.discover_candidate(filters)
    assert session.get.call_count == 1

    clock.advance(2)
    discovery.discover_candidate(filters)
    assert session.get.call_count == 2

    discovery.clear_cache()
    discovery.discover_candidate(filters)
    assert session.get.call_count == 3


def test_http_failure_gives_no_candidate(discovery, session):
    session.get.return_value = _response(None, status=429)
    assert discovery.discover_candidate(DiscoveryFilters()) is None


def test_unexpected_payload_gives_no_candidate(discovery, session):
    session.get.return_value = _response({"status": {"error_code": 10005}})
    assert discovery.discover_candidate(DiscoveryFilters()) is None


def test_nothing_passes_filters(discovery):
    assert discovery.discover_candidate(DiscoveryFilters(min_market_cap_usd=1e12)) is None
