"""Tests for the Mercury and Circle clients."""

from __future__ import annotations

from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest

from balancebook.banking import CircleClient, MercuryClient
from balancebook.errors import ProviderError, ProviderErrorKind


def _session(body, status=200):
    response = MagicMock()
    response.status_code = status
    response.json.return_value = body
    response.text = str(body)
    response.url = "https://api.example"
    session = MagicMock()
    session.request.return_value = response
    return session


class TestMercuryClient:
    """Mercury bank accounts."""

    def test_current_balance_in_usd(self):
        session = _session({"id": "acc-1", "currentBalance": Decimal("1234.56"), "availableBalance": Decimal("1000")})
        client = MercuryClient(api_key="secret", session=session)

        (balance,) = client.fetch_balances("acc-1")

        assert balance.asset_symbol == "USD"
        assert balance.quantity == Decimal("1234.56")
        args, kwargs = session.request.call_args
        assert args[1].endswith("/account/acc-1")
        assert kwargs["headers"]["Authorization"] == "Bearer secret-token:secret"

    def test_missing_key_is_unauthorized(self):
        client = MercuryClient(session=_session({}))
        with patch.dict("os.environ", {}, clear=True), pytest.raises(ProviderError) as exc_info:
            client.fetch_balances("acc-1")
        assert exc_info.value.kind == ProviderErrorKind.UNAUTHORIZED

    def test_key_from_environment(self):
        session = _session({"currentBalance": 0})
        with patch.dict("os.environ", {"MERCURY_API_KEY": "env-key"}, clear=True):
            assert MercuryClient(session=session).fetch_balances("acc-1") == []
        assert session.request.call_args.kwargs["headers"]["Authorization"] == "Bearer secret-token:env-key"

    def test_rejected_key(self):
        client = MercuryClient(api_key="bad", session=_session({"errors": "nope"}, status=401))
        with pytest.raises(ProviderError) as exc_info:
            client.fetch_balances("acc-1")
        assert exc_info.value.kind == ProviderErrorKind.UNAUTHORIZED

    def test_list_accounts(self):
        session = _session(
            {
                "accounts": [
                    {
                        "id": "acc-1",
                        "name": "Checking",
                        "status": "active",
                        "type": "mercury",
                        "kind": "checking",
                        "currentBalance": Decimal("10.5"),
                        "availableBalance": Decimal("10"),
                        "legalBusinessName": "Acme Inc",
                    }
                ]
            }
        )
        (account,) = MercuryClient(api_key="k", session=session).list_accounts()
        assert account.id == "acc-1"
        assert account.current_balance == Decimal("10.5")
        assert account.account_type == "mercury"


class TestCircleClient:
    """Circle business balances."""

    def test_currency_mapping(self):
        session = _session(
            {
                "data": {
                    "available": [
                        {"amount": "1500.25", "currency": "USD"},
                        {"amount": "200.00", "currency": "EUR"},
                        {"amount": "0.00", "currency": "BTC"},
                    ],
                    "unsettled": [{"amount": "99.00", "currency": "USD"}],
                }
            }
        )
        balances = CircleClient(api_key="key", session=session).fetch_balances("circle-main")

        assert {b.asset_symbol: b.quantity for b in balances} == {
            "EURC": Decimal("200.00"),
            "USDC": Decimal("1500.25"),
        }
        assert session.request.call_args.kwargs["headers"]["Authorization"] == "Bearer key"

    def test_unparsable_amount(self):
        session = _session({"data": {"available": [{"amount": "lots", "currency": "USD"}]}})
        with pytest.raises(ProviderError) as exc_info:
            CircleClient(api_key="key", session=session).fetch_balances("circle-main")
        assert exc_info.value.kind == ProviderErrorKind.MALFORMED_RESPONSE
