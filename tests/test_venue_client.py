"""
Tests for the venue REST client.

Verifies retry/backoff behaviour, snapshot assembly and the execution
result contract using a mocked requests session.
"""

from unittest.mock import Mock, patch

import pytest
from requests.exceptions import ConnectionError, HTTPError, Timeout

from core.exceptions import CriticalDataUnavailable
from core.models import TradingInstruction
from core.params import USDC, WBTC, WETH
from infra.venue_client import VenueClient

PORTFOLIO = {
    "success": True,
    "totalValue": 6000.0,
    "tokens": [
        {"token": USDC, "symbol": "USDC", "amount": 4000.0, "price": 1.0, "value": 4000.0},
        {"token": WETH, "symbol": "WETH", "amount": 1.0, "price": 2000.0, "value": 2000.0},
    ],
}


def _response(payload=None, status=200):
    response = Mock()
    response.status_code = status
    response.text = str(payload)
    response.json.return_value = payload
    if status >= 400:
        response.raise_for_status.side_effect = HTTPError(f"{status} error", response=response)
    else:
        response.raise_for_status.return_value = None
    return response


@pytest.fixture
def session():
    s = Mock()
    s.headers = {}
    return s


@pytest.fixture
def client(session):
    return VenueClient(api_key="test-key", base_url="https://venue.test/", min_request_interval=0,
                       session=session)


def test_auth_header_and_base_url(client, session):
    assert session.headers["Authorization"] == "Bearer test-key"
    assert client.base_url == "https://venue.test"


class TestRetries:
    def test_server_error_retried_then_succeeds(self, client, session):
        session.request.side_effect = [_response(status=503), _response({"status": "ok"})]

        with patch("time.sleep") as mock_sleep:
            assert client.health_check() is True

        assert session.request.call_count == 2
        assert len(mock_sleep.call_args_list) == 1

    def test_rate_limit_exhausts_retries(self, client, session):
        session.request.return_value = _response(status=429)

        with patch("time.sleep") as mock_sleep:
            with pytest.raises(HTTPError):
                client.get_portfolio()

        assert session.request.call_count == 3
        delays = [call.args[0] for call in mock_sleep.call_args_list]
        assert len(delays) == 2
        assert 1.0 <= delays[0] <= 2.0
        assert 2.0 <= delays[1] <= 3.0

    def test_client_error_not_retried(self, client, session):
        session.request.return_value = _response({"error": "bad token"}, status=400)

        with pytest.raises(HTTPError):
            client.get_portfolio()

        assert session.request.call_count == 1

    def test_network_error_retried(self, client, session):
        session.request.side_effect = [ConnectionError("reset"), _response(PORTFOLIO)]

        with patch("time.sleep"):
            assert client.get_portfolio()["totalValue"] == 6000.0


class TestSnapshot:
    def test_snapshot_from_portfolio(self, client, session):
        session.request.side_effect = [_response(PORTFOLIO), _response({"price": 50000.0})]

        snapshot = client.fetch_snapshot(extra_instruments=[WETH, WBTC])

        assert snapshot.total_value == 6000.0
        assert [h.instrument for h in snapshot.holdings] == [USDC, WETH]
        assert snapshot.balance_of(WETH) == 1.0
        assert snapshot.price_of(WBTC) == 50000.0
        # Held instruments are not priced a second time
        assert session.request.call_count == 2
        _, kwargs = session.request.call_args
        assert kwargs["params"] == {"token": WBTC, "chain": "evm", "specificChain": "eth"}

    def test_extra_price_failure_leaves_price_out(self, client, session):
        session.request.side_effect = [_response(PORTFOLIO), _response({"error": "nope"}, status=404)]

        snapshot = client.fetch_snapshot(extra_instruments=[WBTC])

        assert snapshot.price_of(WBTC) is None
        assert snapshot.price_of(WETH) == 2000.0

    def test_portfolio_failure_is_critical(self, client, session):
        session.request.return_value = _response(status=401)

        with pytest.raises(CriticalDataUnavailable) as exc_info:
            client.fetch_snapshot()

        assert exc_info.value.source == "portfolio"


class TestExecute:
    instruction = TradingInstruction(action="buy", source=USDC, destination=WETH, amount=100.0,
                                     reason="r" * 300, confidence=0.8)

    def test_successful_trade(self, client, session):
        session.request.return_value = _response({
            "success": True,
            "transaction": {"id": "tx-42", "fromAmount": 100, "toAmount": 0.05, "price": 2000},
        })

        result = client.execute(self.instruction)

        assert result.success
        assert result.trade_id == "tx-42"
        assert result.to_amount == 0.05
        body = session.request.call_args.kwargs["json"]
        assert body["fromToken"] == USDC
        assert body["toToken"] == WETH
        assert body["amount"] == "100.0"
        assert len(body["reason"]) == 200

    def test_venue_refusal_is_failed_result(self, client, session):
        session.request.return_value = _response({"success": False, "error": {"message": "slippage"}})

        result = client.execute(self.instruction)

        assert not result.success
        assert result.error == "slippage"

    def test_http_error_is_failed_result(self, client, session):
        session.request.return_value = _response({"error": "bad"}, status=400)

        result = client.execute(self.instruction)

        assert not result.success
        assert result.error.startswith("HTTP 400")

    @patch("time.sleep")
    def test_timeout_is_not_resubmitted(self, mock_sleep, client, session):
        session.request.side_effect = [
            Timeout("read timed out"),
            _response({"success": True, "transaction": {"id": "tx-dup"}}),
        ]

        result = client.execute(self.instruction)

        assert not result.success
        assert "timed out" in result.error
        assert session.request.call_count == 1
        mock_sleep.assert_not_called()

    @patch("time.sleep")
    def test_server_error_is_not_resubmitted(self, mock_sleep, client, session):
        session.request.side_effect = [_response(status=502), _response({"success": True})]

        result = client.execute(self.instruction)

        assert not result.success
        assert result.error.startswith("HTTP 502")
        assert session.request.call_count == 1
