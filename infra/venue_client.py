"""
cascade-trader Infrastructure: Venue Client

REST connector for the trading venue (portfolio, prices, trade execution).
Bearer-token authentication, 1 s minimum spacing between requests, and
retries with backoff on 429/5xx and network errors.
"""

import os
import random
import time
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional
import logging

import requests

from core.exceptions import CriticalDataUnavailable
from core.models import ExecutionResult, MarketSnapshot, TradingInstruction, build_snapshot

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.sandbox.competitions.recall.network"


class VenueClient:
    """
    Trading venue API connector.

    Supports:
    - Account data (portfolio, trade history)
    - Market data (per-instrument price)
    - Trade execution (single swap per call)
    """

    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None,
                 timeout: float = 30.0, min_request_interval: float = 1.0,
                 max_retries: int = 3, chain: str = "evm", specific_chain: str = "eth",
                 session: Optional[requests.Session] = None):
        self.api_key = api_key or os.getenv("VENUE_API_KEY", "")
        self.base_url = (base_url or os.getenv("VENUE_BASE_URL", DEFAULT_BASE_URL)).rstrip("/")
        self.timeout = timeout
        self.max_retries = max(1, int(max_retries))
        self.chain = chain
        self.specific_chain = specific_chain

        self.session = session or requests.Session()
        self.session.headers.update({
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        })

        # Rate limiting
        self._last_call = 0.0
        self._min_interval = min_request_interval

        logger.info(f"Initialized VenueClient (base_url={self.base_url})")

    def _rate_limit(self):
        """Simple rate limiting"""
        elapsed = time.time() - self._last_call
        if elapsed < self._min_interval:
            time.sleep(self._min_interval - elapsed)
        self._last_call = time.time()

    def _req(self, method: str, endpoint: str, body: Optional[dict] = None,
             params: Optional[Dict[str, Any]] = None,
             max_retries: Optional[int] = None) -> dict:
        """
        Make HTTP request to the venue with exponential backoff.

        Retries on:
        - 429 (rate limit)
        - 5xx (server errors)
        - Network errors (timeout, connection)

        Does NOT retry on other 4xx client errors.
        max_retries overrides the client default (1 disables retries).
        """
        url = self.base_url + endpoint
        attempts = self.max_retries if max_retries is None else max(1, int(max_retries))
        last_exception: Optional[Exception] = None

        for attempt in range(attempts):
            try:
                self._rate_limit()
                response = self.session.request(
                    method,
                    url,
                    json=body,
                    params=params,
                    timeout=self.timeout,
                )
                response.raise_for_status()
                return response.json()

            except requests.exceptions.HTTPError as e:
                status_code = e.response.status_code if e.response is not None else 0

                if 400 <= status_code < 500 and status_code != 429:
                    logger.error(f"Venue API client error: {status_code} on {endpoint} - {e.response.text}")
                    raise

                logger.warning(f"Venue API error ({status_code}) on {endpoint}, attempt {attempt + 1}/{attempts}")
                last_exception = e

            except (requests.exceptions.Timeout, requests.exceptions.ConnectionError) as e:
                logger.warning(f"Network error on {endpoint}: {e}, attempt {attempt + 1}/{attempts}")
                last_exception = e

            if attempt < attempts - 1:
                backoff = (2 ** attempt) + random.uniform(0, 1)
                logger.info(f"Retrying in {backoff:.1f}s...")
                time.sleep(backoff)

        logger.error(f"All {attempts} retries exhausted for {endpoint}")
        if last_exception:
            raise last_exception
        raise requests.exceptions.RequestException(f"Request to {endpoint} failed after {attempts} attempts")

    # ------------------------------------------------------------------ #
    # Account and market data
    # ------------------------------------------------------------------ #

    def health_check(self) -> bool:
        try:
            self._req("GET", "/api/health")
            return True
        except requests.exceptions.RequestException as e:
            logger.error(f"Venue health check failed: {e}")
            return False

    def get_portfolio(self) -> Dict[str, Any]:
        data = self._req("GET", "/api/agent/portfolio")
        logger.info(
            f"Portfolio fetched: total=${float(data.get('totalValue') or 0):.2f}, "
            f"tokens={len(data.get('tokens') or [])}"
        )
        return data

    def get_price(self, instrument: str) -> Optional[float]:
        data = self._req("GET", "/api/price", params={
            "token": instrument,
            "chain": self.chain,
            "specificChain": self.specific_chain,
        })
        price = data.get("price")
        return float(price) if price is not None else None

    def get_trade_history(self) -> List[Dict[str, Any]]:
        data = self._req("GET", "/api/agent/trades")
        return list(data.get("trades") or [])

    def fetch_snapshot(self, extra_instruments: Iterable[str] = ()) -> MarketSnapshot:
        """
        Build this cycle's MarketSnapshot.

        Prices come from the portfolio holdings; instruments in
        extra_instruments that are not held are priced individually
        (failures there only leave the price out).

        Raises:
            CriticalDataUnavailable: portfolio could not be fetched
        """
        try:
            portfolio = self.get_portfolio()
        except (requests.exceptions.RequestException, ValueError) as e:
            raise CriticalDataUnavailable("portfolio", e) from e

        holdings = []
        prices: Dict[str, float] = {}
        for token in portfolio.get("tokens") or []:
            instrument = token.get("token")
            if not instrument:
                continue
            price = float(token.get("price") or 0.0)
            holdings.append({
                "instrument": instrument,
                "symbol": token.get("symbol") or instrument,
                "amount": float(token.get("amount") or 0.0),
                "price": price,
                "value": float(token.get("value") or 0.0),
            })
            if price > 0:
                prices[instrument] = price

        for instrument in extra_instruments:
            if instrument in prices:
                continue
            try:
                price = self.get_price(instrument)
            except (requests.exceptions.RequestException, ValueError) as e:
                logger.warning(f"Price unavailable for {instrument}: {e}")
                continue
            if price:
                prices[instrument] = price

        total = portfolio.get("totalValue")
        return build_snapshot(
            holdings,
            prices=prices,
            timestamp=datetime.now(timezone.utc),
            total_value=float(total) if total is not None else None,
        )

    # ------------------------------------------------------------------ #
    # Execution
    # ------------------------------------------------------------------ #

    def execute(self, instruction: TradingInstruction) -> ExecutionResult:
        """
        Submit one swap. HTTP failures come back as a failed result.
        """
        request = {
            "fromToken": instruction.source,
            "toToken": instruction.destination,
            "amount": str(instruction.amount),
            "reason": instruction.reason[:200],
        }
        logger.info(
            f"Executing trade: {instruction.action} {instruction.amount} "
            f"{instruction.source} -> {instruction.destination}"
        )

        try:
            # A replayed swap may fill twice; never retry execution
            data = self._req("POST", "/api/trade/execute", body=request, max_retries=1)
        except requests.exceptions.RequestException as e:
            status = getattr(getattr(e, "response", None), "status_code", None)
            logger.error(f"Failed to execute trade: {e}")
            return ExecutionResult(
                success=False,
                error=f"{e}" if status is None else f"HTTP {status}: {e}",
            )

        if not data.get("success"):
            error = data.get("error")
            if isinstance(error, dict):
                error = error.get("message")
            logger.warning(f"Trade execution failed: {error}")
            return ExecutionResult(success=False, error=str(error or "unknown error"), raw=data)

        tx = data.get("transaction") or {}
        result = ExecutionResult(
            success=True,
            trade_id=tx.get("id"),
            from_amount=float(tx.get("fromAmount") or 0.0),
            to_amount=float(tx.get("toAmount") or 0.0),
            price=float(tx.get("price") or 0.0),
            raw=data,
        )
        logger.info(
            f"Trade executed: id={result.trade_id} from={result.from_amount} "
            f"to={result.to_amount} price={result.price}"
        )
        return result
