"""
cascade-trader Infrastructure: Token Discovery

Market-data lookup used by the discovery and loss-seeking fallbacks to pick a
tradable instrument outside the configured watchlist.

Backed by the CoinGecko /coins/markets endpoint. Results are filtered to
instruments with an Ethereum contract address, then to the caller's market
cap, volume and (optionally) negative-24h-change filters. Raw market pages
are cached for cache_ttl seconds.
"""

import os
import time
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple
import logging

import requests

from core.models import DiscoveryFilters, TokenCandidate

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.coingecko.com/api/v3"

SELECTION_METHODS = ("most_negative_change", "highest_volatility", "top_volume")


def _volatility(candidate: TokenCandidate) -> float:
    return abs(candidate.price_change_1h) + abs(candidate.price_change_24h)


def select_candidate(candidates: List[TokenCandidate], method: str) -> Optional[TokenCandidate]:
    """Pick one candidate according to the selection method."""
    if not candidates:
        return None
    if method == "most_negative_change":
        return min(candidates, key=lambda c: c.price_change_24h)
    if method == "highest_volatility":
        return max(candidates, key=_volatility)
    if method == "top_volume":
        return max(candidates, key=lambda c: c.volume)
    raise ValueError(f"Unknown selection method: {method}")


class CoinGeckoDiscovery:
    """
    Token discovery backed by CoinGecko market listings.

    A lookup failure returns None (the fallbacks then emit nothing); it never
    raises into the decision cascade.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 30.0,
        cache_ttl: float = 300.0,
        page_size: int = 100,
        min_request_interval: float = 1.1,
        excluded: Iterable[str] = (),
        session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.api_key = api_key or os.getenv("COINGECKO_API_KEY")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.cache_ttl = cache_ttl
        self.page_size = int(page_size)
        self.excluded = {addr.lower() for addr in excluded}
        self._clock = clock

        self.session = session or requests.Session()
        self.session.headers.update({"Accept": "application/json"})
        if self.api_key:
            self.session.headers["x-cg-demo-api-key"] = self.api_key

        self._cache: Dict[str, Tuple[float, List[Dict[str, Any]]]] = {}
        self._last_call = 0.0
        self._min_interval = min_request_interval
        logger.info("CoinGecko discovery initialized")

    def _rate_limit(self):
        elapsed = time.time() - self._last_call
        if elapsed < self._min_interval:
            time.sleep(self._min_interval - elapsed)
        self._last_call = time.time()

    def _fetch_markets(self, order: str) -> List[Dict[str, Any]]:
        cached = self._cache.get(order)
        if cached and self._clock() - cached[0] < self.cache_ttl:
            logger.debug(f"Using cached CoinGecko markets (order={order})")
            return cached[1]

        self._rate_limit()
        response = self.session.get(
            f"{self.base_url}/coins/markets",
            params={
                "vs_currency": "usd",
                "order": order,
                "per_page": self.page_size,
                "page": 1,
                "sparkline": "false",
                "price_change_percentage": "1h,24h",
                "include_platform": "true",
            },
            timeout=self.timeout,
        )
        response.raise_for_status()
        data = response.json()
        if not isinstance(data, list):
            raise ValueError("Unexpected /coins/markets payload")

        self._cache[order] = (self._clock(), data)
        return data

    def _to_candidate(self, coin: Dict[str, Any]) -> Optional[TokenCandidate]:
        address = (coin.get("platforms") or {}).get("ethereum")
        if not address or address.lower() in self.excluded:
            return None
        return TokenCandidate(
            instrument=address,
            symbol=str(coin.get("symbol") or "").upper(),
            name=coin.get("name") or "",
            price=float(coin.get("current_price") or 0.0),
            market_cap=float(coin.get("market_cap") or 0.0),
            price_change_24h=float(coin.get("price_change_percentage_24h") or 0.0),
            price_change_1h=float(coin.get("price_change_percentage_1h_in_currency")
                                  or coin.get("price_change_percentage_1h") or 0.0),
            volume=float(coin.get("total_volume") or 0.0),
        )

    def candidates(self, filters: DiscoveryFilters) -> List[TokenCandidate]:
        """All listings passing the filters."""
        order = "price_change_percentage_24h_asc" if filters.losers_only else "volume_desc"
        result = []
        for coin in self._fetch_markets(order):
            candidate = self._to_candidate(coin)
            if candidate is None:
                continue
            if candidate.market_cap < filters.min_market_cap_usd:
                continue
            if candidate.volume < filters.min_volume_usd:
                continue
            if filters.losers_only and candidate.price_change_24h >= 0:
                continue
            result.append(candidate)
        return result

    def discover_candidate(self, filters: DiscoveryFilters) -> Optional[TokenCandidate]:
        try:
            found = self.candidates(filters)
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.error(f"Token discovery failed: {e}")
            return None

        if not found:
            logger.warning(
                f"No tokens found matching filters (min_mcap={filters.min_market_cap_usd:,.0f}, "
                f"min_volume={filters.min_volume_usd:,.0f}, losers_only={filters.losers_only})"
            )
            return None

        try:
            best = select_candidate(found, filters.selection_method)
        except ValueError as e:
            logger.error(f"Token discovery failed: {e}")
            return None

        logger.info(
            f"Discovered {best.symbol} ({best.instrument[:10]}...) "
            f"change24h={best.price_change_24h:.2f}% volume=${best.volume:,.0f} "
            f"via {filters.selection_method}"
        )
        return best

    def clear_cache(self) -> None:
        self._cache.clear()
        logger.info("CoinGecko cache cleared")
