"""Tests for the EVM client with a mocked Web3 instance."""

from __future__ import annotations

from decimal import Decimal
from unittest.mock import MagicMock

import pytest
import requests
from web3 import Web3
from web3.exceptions import ContractLogicError

from balancebook.blockchain import DEFAULT_RPC_URLS, KNOWN_TOKENS, EVMClient
from balancebook.errors import ProviderError, ProviderErrorKind
from balancebook.models import ProviderKind

WALLET = "0x742d35cc6634c0532925a3b844bc9e7595f0beb3"
USDC = "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"


def _w3(native=0, token=0):
    w3 = MagicMock()
    w3.eth.get_balance.return_value = native
    w3.eth.contract.return_value.functions.balanceOf.return_value.call.return_value = token
    return w3


class TestEVMClient:
    """Native and ERC-20 balances."""

    def test_native_and_token_balances(self):
        w3 = _w3(native=1_500_000_000_000_000_000, token=2_500_000)
        client = EVMClient(ProviderKind.ETHEREUM, w3=w3, tokens={"USDC": (USDC, 6)})

        balances = client.fetch_balances(WALLET)

        assert {b.asset_symbol: b.quantity for b in balances} == {
            "ETH": Decimal("1.5"),
            "USDC": Decimal("2.5"),
        }
        w3.eth.get_balance.assert_called_once_with(Web3.to_checksum_address(WALLET))

    def test_native_symbol_follows_network(self):
        client = EVMClient(ProviderKind.POLYGON, w3=_w3(native=10**18), tokens={})
        (balance,) = client.fetch_balances(WALLET)
        assert balance.asset_symbol == "MATIC"
        assert balance.provider_kind == ProviderKind.POLYGON

    def test_zero_balances_skipped(self):
        client = EVMClient(ProviderKind.BASE, w3=_w3(), tokens={"USDC": (USDC, 6)})
        assert client.fetch_balances(WALLET) == []

    def test_failing_token_is_skipped(self):
        w3 = _w3(native=10**18)
        w3.eth.contract.return_value.functions.balanceOf.return_value.call.side_effect = ContractLogicError(
            "execution reverted"
        )
        client = EVMClient(ProviderKind.ETHEREUM, w3=w3, tokens={"USDC": (USDC, 6)})
        assert [b.asset_symbol for b in client.fetch_balances(WALLET)] == ["ETH"]

    def test_invalid_address(self):
        w3 = _w3()
        with pytest.raises(ProviderError) as exc_info:
            EVMClient(ProviderKind.ETHEREUM, w3=w3).fetch_balances("7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU")
        assert exc_info.value.kind == ProviderErrorKind.INVALID_IDENTIFIER
        w3.eth.get_balance.assert_not_called()

    @pytest.mark.parametrize(
        "error,kind",
        [
            (requests.exceptions.ReadTimeout("slow"), ProviderErrorKind.TIMEOUT),
            (requests.exceptions.ConnectionError("refused"), ProviderErrorKind.UNREACHABLE),
            (ValueError({"code": -32005, "message": "rate limit exceeded"}), ProviderErrorKind.RATE_LIMITED),
            (ValueError("garbage"), ProviderErrorKind.MALFORMED_RESPONSE),
        ],
    )
    def test_native_failure_mapping(self, error, kind):
        w3 = _w3()
        w3.eth.get_balance.side_effect = error
        with pytest.raises(ProviderError) as exc_info:
            EVMClient(ProviderKind.ARBITRUM, w3=w3).fetch_balances(WALLET)
        assert exc_info.value.kind == kind
        assert exc_info.value.provider_kind == "arbitrum"

    def test_http_429_from_provider(self):
        response = MagicMock()
        response.status_code = 429
        w3 = _w3()
        w3.eth.get_balance.side_effect = requests.exceptions.HTTPError("429", response=response)
        with pytest.raises(ProviderError) as exc_info:
            EVMClient(ProviderKind.BSC, w3=w3).fetch_balances(WALLET)
        assert exc_info.value.kind == ProviderErrorKind.RATE_LIMITED


class TestEVMDefaults:
    """Per-network defaults."""

    def test_every_evm_kind_has_rpc_and_tokens(self):
        for kind in ProviderKind:
            if kind.is_evm:
                assert DEFAULT_RPC_URLS[kind].startswith("https://")
                assert KNOWN_TOKENS[kind]

    def test_rpc_override(self):
        client = EVMClient(ProviderKind.CORE, rpc_url="https://my.rpc")
        assert client.rpc_url == "https://my.rpc"

    def test_non_evm_kind_rejected(self):
        with pytest.raises(ValueError):
            EVMClient(ProviderKind.SOLANA)
