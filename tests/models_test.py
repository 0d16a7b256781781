"""Tests for the core data model."""

from __future__ import annotations

from decimal import Decimal

import pytest

from balancebook.models import (
    EnrichedBalance,
    PriceQuote,
    ProviderKind,
    RawBalance,
    TrackedAccount,
    coerce_decimal,
    from_base_units,
)


class TestProviderKind:
    """Parsing and per-kind metadata."""

    @pytest.mark.parametrize(
        "alias,expected",
        [
            ("sol", ProviderKind.SOLANA),
            ("ETH", ProviderKind.ETHEREUM),
            ("matic", ProviderKind.POLYGON),
            ("bnb", ProviderKind.BSC),
            ("binance", ProviderKind.BINANCE),
            ("arb", ProviderKind.ARBITRUM),
            ("op", ProviderKind.OPTIMISM),
            ("avax", ProviderKind.AVALANCHE),
            ("apt", ProviderKind.APTOS),
            ("stark", ProviderKind.STARKNET),
            (" near ", ProviderKind.NEAR),
        ],
    )
    def test_parse_aliases(self, alias, expected):
        assert ProviderKind.parse(alias) == expected

    def test_parse_unknown(self):
        with pytest.raises(ValueError, match="Unknown provider kind"):
            ProviderKind.parse("dogecoin")

    def test_native_symbols(self):
        assert ProviderKind.POLYGON.native_symbol == "MATIC"
        assert ProviderKind.STARKNET.native_symbol == "ETH"
        assert ProviderKind.MERCURY.native_symbol == "USD"
        assert ProviderKind.BINANCE.native_symbol is None

    def test_categories(self):
        assert ProviderKind.BASE.is_evm
        assert not ProviderKind.SOLANA.is_evm
        assert ProviderKind.CIRCLE.is_bank
        assert ProviderKind.OKX.is_exchange


class TestDecimalConversion:
    """Exact base-unit conversion."""

    def test_wei(self):
        assert from_base_units(1_234_567_890_123_456_789, 18) == Decimal("1.234567890123456789")

    def test_yocto_near_is_exact(self):
        raw = "123456789012345678901234567890"
        assert from_base_units(raw, 24) == Decimal("123456.789012345678901234567890")

    def test_zero_decimals(self):
        assert from_base_units(42, 0) == Decimal(42)

    def test_coerce_float_goes_through_str(self):
        assert coerce_decimal(0.1) == Decimal("0.1")

    @pytest.mark.parametrize("value", ["abc", None, True, "NaN", "Infinity"])
    def test_coerce_rejects(self, value):
        with pytest.raises(ValueError):
            coerce_decimal(value)


class TestRecords:
    """Record invariants."""

    def test_negative_quantity_rejected(self):
        with pytest.raises(ValueError):
            RawBalance("SOL", Decimal("-0.1"), ProviderKind.SOLANA, "a")

    def test_float_quantity_rejected(self):
        with pytest.raises(TypeError):
            RawBalance("SOL", 1.5, ProviderKind.SOLANA, "a")

    def test_blank_company_defaults(self):
        assert TrackedAccount("a", "b", ProviderKind.SOLANA, "").company == "uncategorized"
        assert TrackedAccount("a", "b", ProviderKind.SOLANA, None).company == "uncategorized"

    def test_usd_value_present_iff_priced(self):
        raw = RawBalance("SOL", Decimal("2.5"), ProviderKind.SOLANA, "a")
        unpriced = EnrichedBalance(raw)
        priced = EnrichedBalance(raw, price=PriceQuote("SOL", Decimal("150"), 0.0, "test"))

        assert unpriced.usd_value is None and not unpriced.priced
        assert priced.usd_value == Decimal("375") and priced.priced
