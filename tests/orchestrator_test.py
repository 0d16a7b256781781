"""Tests for the concurrent query orchestrator."""

from __future__ import annotations

import random
import threading
import time
from decimal import Decimal

import pytest
from fakes import FakeClient, unreachable

from balancebook.errors import ConfigurationError, ProviderErrorKind
from balancebook.models import ProviderKind, RawBalance, TrackedAccount
from balancebook.orchestrator import QueryOrchestrator
from balancebook.registry import ProviderClient, ProviderRegistry


def _accounts(n, kind=ProviderKind.SOLANA):
    return [TrackedAccount(f"acct-{i}", f"addr-{i}", kind) for i in range(n)]


class TestOrchestratorIsolation:
    """One failing provider must not affect the others."""

    def test_single_failure_is_isolated(self):
        accounts = _accounts(5)
        client = FakeClient(
            ProviderKind.SOLANA,
            balances={a.identifier: [("SOL", "1.5")] for a in accounts},
            errors={"addr-2": unreachable(ProviderKind.SOLANA)},
        )
        registry = ProviderRegistry({ProviderKind.SOLANA: client})

        results = QueryOrchestrator(registry, account_timeout=5).run(accounts)

        assert len(results) == 5
        failed = [r for r in results if not r.ok]
        assert [r.account.name for r in failed] == ["acct-2"]
        assert failed[0].error.kind == ProviderErrorKind.UNREACHABLE
        for result in results:
            if result.ok:
                assert [b.quantity for b in result.balances] == [Decimal("1.5")]

    def test_balances_are_stamped_with_account(self):
        account = TrackedAccount("Hot", "addr-hot", ProviderKind.SOLANA)
        client = FakeClient(ProviderKind.SOLANA, balances={"addr-hot": [("SOL", "2.5")]})
        results = QueryOrchestrator(ProviderRegistry({ProviderKind.SOLANA: client})).run([account])

        balance = results[0].balances[0]
        assert balance.account_name == "Hot"
        assert balance.balance.provider_kind == ProviderKind.SOLANA
        assert not balance.priced

    def test_empty_balances_is_success(self):
        account = TrackedAccount("Empty", "addr-empty", ProviderKind.SOLANA)
        client = FakeClient(ProviderKind.SOLANA)
        results = QueryOrchestrator(ProviderRegistry({ProviderKind.SOLANA: client})).run([account])

        assert results[0].ok
        assert results[0].balances == ()

    def test_identifier_is_trimmed_before_dispatch(self):
        account = TrackedAccount("Hot", "  addr-hot  ", ProviderKind.SOLANA)
        client = FakeClient(ProviderKind.SOLANA)
        QueryOrchestrator(ProviderRegistry({ProviderKind.SOLANA: client})).run([account])
        assert client.calls == ["addr-hot"]


class TestOrchestratorContract:
    """Clients that break the contract are reported as malformed responses."""

    def test_unexpected_exception_becomes_malformed(self):
        client = FakeClient(ProviderKind.SUI, errors={"x": KeyError("result")})
        account = TrackedAccount("Sui", "x", ProviderKind.SUI)
        results = QueryOrchestrator(ProviderRegistry({ProviderKind.SUI: client})).run([account])

        assert results[0].error.kind == ProviderErrorKind.MALFORMED_RESPONSE
        assert "KeyError" in results[0].error.message

    def test_negative_quantity_becomes_malformed(self):
        class NegativeClient(ProviderClient):
            def fetch_balances(self, identifier):
                balance = RawBalance("SOL", Decimal("1"), ProviderKind.SOLANA, "")
                object.__setattr__(balance, "quantity", Decimal("-1"))
                return [balance]

        account = TrackedAccount("Neg", "x", ProviderKind.SOLANA)
        registry = ProviderRegistry({ProviderKind.SOLANA: NegativeClient(ProviderKind.SOLANA)})
        results = QueryOrchestrator(registry).run([account])

        assert results[0].error.kind == ProviderErrorKind.MALFORMED_RESPONSE

    def test_non_list_return_becomes_malformed(self):
        class DictClient(ProviderClient):
            def fetch_balances(self, identifier):
                return {"SOL": 1}

        account = TrackedAccount("Bad", "x", ProviderKind.SOLANA)
        registry = ProviderRegistry({ProviderKind.SOLANA: DictClient(ProviderKind.SOLANA)})
        results = QueryOrchestrator(registry).run([account])

        assert results[0].error.kind == ProviderErrorKind.MALFORMED_RESPONSE


class TestOrchestratorTimeout:
    """Per-account timeouts."""

    def test_slow_account_times_out_without_delaying_others(self):
        accounts = _accounts(3)
        client = FakeClient(
            ProviderKind.SOLANA,
            balances={a.identifier: [("SOL", "1")] for a in accounts},
            delays={"addr-1": 2.0},
        )
        orchestrator = QueryOrchestrator(
            ProviderRegistry({ProviderKind.SOLANA: client}), account_timeout=0.2, max_concurrency=3
        )

        started = time.monotonic()
        results = orchestrator.run(accounts)
        elapsed = time.monotonic() - started

        assert elapsed < 1.5
        assert results[1].error.kind == ProviderErrorKind.TIMEOUT
        assert results[0].ok and results[2].ok


class TestOrchestratorConcurrency:
    """Concurrency bound and deterministic ordering."""

    def test_concurrency_is_bounded(self):
        active = 0
        peak = 0
        lock = threading.Lock()

        class CountingClient(ProviderClient):
            def fetch_balances(self, identifier):
                nonlocal active, peak
                with lock:
                    active += 1
                    peak = max(peak, active)
                time.sleep(0.05)
                with lock:
                    active -= 1
                return []

        registry = ProviderRegistry({ProviderKind.SOLANA: CountingClient(ProviderKind.SOLANA)})
        QueryOrchestrator(registry, max_concurrency=2).run(_accounts(8))

        assert 1 <= peak <= 2

    def test_timed_out_calls_still_count_against_concurrency(self):
        active = 0
        peak = 0
        lock = threading.Lock()

        class HangingClient(ProviderClient):
            def fetch_balances(self, identifier):
                nonlocal active, peak
                with lock:
                    active += 1
                    peak = max(peak, active)
                time.sleep(0.2)
                with lock:
                    active -= 1
                return []

        registry = ProviderRegistry({ProviderKind.SOLANA: HangingClient(ProviderKind.SOLANA)})
        results = QueryOrchestrator(registry, account_timeout=0.05, max_concurrency=1).run(_accounts(4))

        assert peak == 1
        assert [r.error.kind for r in results] == [ProviderErrorKind.TIMEOUT] * 4

    def test_output_order_matches_input_order(self):
        accounts = _accounts(10)
        rng = random.Random(7)
        delays = {a.identifier: rng.uniform(0, 0.05) for a in accounts}
        client = FakeClient(ProviderKind.SOLANA, delays=delays)
        results = QueryOrchestrator(
            ProviderRegistry({ProviderKind.SOLANA: client}), max_concurrency=10
        ).run(accounts)

        assert [r.account.name for r in results] == [a.name for a in accounts]

    def test_on_result_called_per_account(self):
        accounts = _accounts(4)
        seen = []
        client = FakeClient(ProviderKind.SOLANA)
        QueryOrchestrator(ProviderRegistry({ProviderKind.SOLANA: client})).run(
            accounts, on_result=lambda r: seen.append(r.account.name)
        )
        assert sorted(seen) == sorted(a.name for a in accounts)

    def test_no_accounts(self):
        assert QueryOrchestrator(ProviderRegistry()).run([]) == []


class TestOrchestratorConfiguration:
    """Fatal configuration problems abort before any dispatch."""

    def test_unknown_kind_raises_before_dispatch(self):
        client = FakeClient(ProviderKind.SOLANA)
        registry = ProviderRegistry({ProviderKind.SOLANA: client})
        accounts = [
            TrackedAccount("Sol", "addr-sol", ProviderKind.SOLANA),
            TrackedAccount("Eth", "0xabc", ProviderKind.ETHEREUM),
        ]

        with pytest.raises(ConfigurationError, match="ethereum"):
            QueryOrchestrator(registry).run(accounts)
        assert client.calls == []

    def test_duplicate_names_raise(self):
        client = FakeClient(ProviderKind.SOLANA)
        registry = ProviderRegistry({ProviderKind.SOLANA: client})
        accounts = [
            TrackedAccount("Same", "a", ProviderKind.SOLANA),
            TrackedAccount("Same", "b", ProviderKind.SOLANA),
        ]
        with pytest.raises(ConfigurationError, match="Duplicate"):
            QueryOrchestrator(registry).run(accounts)

    def test_invalid_settings_raise(self):
        with pytest.raises(ConfigurationError):
            QueryOrchestrator(ProviderRegistry(), max_concurrency=0)
        with pytest.raises(ConfigurationError):
            QueryOrchestrator(ProviderRegistry(), account_timeout=0)
