"""Tests for portfolio aggregation."""

from __future__ import annotations

import random
from decimal import Context, Decimal, localcontext

import pytest

from balancebook.errors import PricingErrorKind, ProviderError, ProviderErrorKind
from balancebook.models import (
    AccountResult,
    EnrichedBalance,
    PriceQuote,
    ProviderKind,
    RawBalance,
    TrackedAccount,
)
from balancebook.portfolio import build_portfolio

PRICES = {
    "SOL": Decimal("150"),
    "USDC": Decimal("1"),
    "ETH": Decimal("3123.456789"),
    "NEAR": Decimal("5.1"),
}


def _ok(name, company, holdings, kind=ProviderKind.SOLANA, unpriced=()):
    account = TrackedAccount(name, f"id-{name}", kind, company)
    balances = []
    for symbol, quantity in holdings:
        raw = RawBalance(symbol, Decimal(quantity), kind, name)
        if symbol in unpriced or symbol not in PRICES:
            balances.append(EnrichedBalance(raw, pricing_error=PricingErrorKind.ALL_PROVIDERS_FAILED))
        else:
            balances.append(EnrichedBalance(raw, price=PriceQuote(symbol, PRICES[symbol], 0.0, "test")))
    return AccountResult(account, tuple(balances))


def _failed(name, company="", kind=ProviderKind.ETHEREUM):
    account = TrackedAccount(name, f"id-{name}", kind, company)
    return AccountResult(account, error=ProviderError(ProviderErrorKind.UNREACHABLE, "down"))


class TestBuildPortfolio:
    """Grouping and totals."""

    def test_hot_and_cold_wallets(self):
        results = [
            _ok("Hot", "A", [("SOL", "2.5")]),
            _ok("Cold", "B", [("USDC", "1000")]),
        ]

        view = build_portfolio(results)

        assert view.group("A").subtotal == Decimal("375")
        assert view.group("B").subtotal == Decimal("1000")
        assert view.grand_total == Decimal("1375")
        assert view.failures == ()
        assert view.summary_line() == "2 of 2 accounts succeeded"

    def test_blank_company_is_uncategorized(self):
        view = build_portfolio([_ok("Solo", "  ", [("SOL", "1")])])
        assert [g.company for g in view.groups] == ["uncategorized"]

    def test_same_symbol_is_summed_exactly_within_group(self):
        view = build_portfolio(
            [
                _ok("a", "X", [("ETH", "0.100000000000000001")], kind=ProviderKind.ETHEREUM),
                _ok("b", "X", [("ETH", "0.2")], kind=ProviderKind.BASE),
            ]
        )
        (eth,) = view.group("X").assets
        assert eth.quantity == Decimal("0.300000000000000001")
        assert eth.usd_value == Decimal("0.300000000000000001") * Decimal("3123.456789")
        assert eth.priced

    def test_symbol_case_does_not_split_asset_totals(self):
        quote = PriceQuote("USDC", Decimal("1"), 0.0, "test")
        lower = AccountResult(
            TrackedAccount("b", "id-b", ProviderKind.SOLANA, "X"),
            (EnrichedBalance(RawBalance("usdc", Decimal("2"), ProviderKind.SOLANA, "b"), price=quote),),
        )
        view = build_portfolio([_ok("a", "X", [("USDC", "1")]), lower])

        assert [(a.symbol, a.quantity) for a in view.group("X").assets] == [("USDC", Decimal("3"))]
        assert view.group("X").assets[0].usd_value == Decimal("3")

    def test_unpriced_balances_are_reported_but_not_totalled(self):
        view = build_portfolio([_ok("a", "X", [("SOL", "1"), ("RAT", "1000000")])])
        group = view.group("X")

        rat = next(a for a in group.assets if a.symbol == "RAT")
        assert rat.quantity == Decimal("1000000")
        assert rat.usd_value is None
        assert not rat.priced
        assert group.subtotal == Decimal("150")

    def test_partially_priced_asset(self):
        view = build_portfolio(
            [
                _ok("a", "X", [("NEAR", "10")], kind=ProviderKind.NEAR),
                _ok("b", "X", [("NEAR", "5")], kind=ProviderKind.NEAR, unpriced=("NEAR",)),
            ]
        )
        (near,) = view.group("X").assets
        assert near.quantity == Decimal("15")
        assert near.usd_value == Decimal("51.0")
        assert not near.priced

    def test_failures_are_listed_and_excluded(self):
        view = build_portfolio([_ok("Hot", "A", [("SOL", "1")]), _failed("Down", "A")])

        assert view.grand_total == Decimal("150")
        assert [(f.account_name, f.error_kind) for f in view.failures] == [("Down", "unreachable")]
        assert view.failures[0].company == "A"
        assert view.succeeded == 1
        assert view.total == 2

    def test_empty_account_still_listed(self):
        view = build_portfolio([_ok("Empty", "A", [])])
        (summary,) = view.group("A").accounts
        assert summary.name == "Empty"
        assert summary.balances == ()
        assert summary.usd_total == Decimal("0")

    def test_unknown_group_raises(self):
        with pytest.raises(KeyError):
            build_portfolio([]).group("nope")


class TestPortfolioInvariants:
    """Totals and determinism."""

    def _results(self):
        return [
            _ok("w1", "Acme", [("SOL", "12.345678912"), ("USDC", "100.5")]),
            _ok("w2", "Acme", [("ETH", "1.000000000000000001")], kind=ProviderKind.ETHEREUM),
            _ok("w3", "Beta", [("NEAR", "0.000000000000000000000001")], kind=ProviderKind.NEAR),
            _ok("w4", "", [("SOL", "3"), ("MYSTERY", "7")]),
            _failed("w5", "Beta"),
            _failed("w0", ""),
        ]

    def test_grand_total_equals_sum_of_subtotals_and_priced_values(self):
        results = self._results()
        view = build_portfolio(results)

        with localcontext(Context(prec=200)):
            priced_sum = sum(
                (b.usd_value for r in results if r.ok for b in r.balances if b.priced), Decimal(0)
            )
            subtotal_sum = sum((g.subtotal for g in view.groups), Decimal(0))
        assert view.grand_total == subtotal_sum
        assert view.grand_total == priced_sum
        assert view.grand_total.as_tuple().exponent <= -24

    def test_shuffled_inputs_give_identical_json(self):
        results = self._results()
        expected = build_portfolio(results).to_json()

        rng = random.Random(42)
        for _ in range(10):
            shuffled = list(results)
            rng.shuffle(shuffled)
            assert build_portfolio(shuffled).to_json() == expected

    def test_ordering(self):
        view = build_portfolio(self._results())
        assert [g.company for g in view.groups] == ["Acme", "Beta", "uncategorized"]
        assert [a.name for a in view.group("Acme").accounts] == ["w1", "w2"]
        assert [a.symbol for a in view.group("Acme").assets] == ["ETH", "SOL", "USDC"]
        assert [f.account_name for f in view.failures] == ["w0", "w5"]

    def test_serialized_decimals_are_strings(self):
        data = build_portfolio(self._results()).to_dict()
        assert isinstance(data["grand_total"], str)
        assert data["groups"][0]["assets"][0]["quantity"] == "1.000000000000000001"
        assert data["pricing_skipped"] is False
