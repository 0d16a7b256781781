"""
Query Orchestrator

Fans out balance queries for every tracked account across a bounded thread
pool. Each account gets its own timeout; a failing, slow or misbehaving
provider only ever fails its own account. Results come back in input order
regardless of completion order.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import replace
from typing import Callable, List, Optional, Sequence

from .errors import ConfigurationError, ProviderError, ProviderErrorKind
from .models import AccountResult, EnrichedBalance, RawBalance, TrackedAccount
from .registry import ProviderClient, ProviderRegistry

logger = logging.getLogger(__name__)


class QueryOrchestrator:
    """Runs one query cycle over a set of tracked accounts."""

    def __init__(
        self,
        registry: ProviderRegistry,
        account_timeout: float = 30.0,
        max_concurrency: int = 8,
        clock: Callable[[], float] = time.monotonic,
    ):
        if account_timeout <= 0:
            raise ConfigurationError("account_timeout must be positive")
        if max_concurrency < 1:
            raise ConfigurationError("max_concurrency must be at least 1")
        self.registry = registry
        self.account_timeout = account_timeout
        self.max_concurrency = max_concurrency
        self.clock = clock

    def resolve_clients(self, accounts: Sequence[TrackedAccount]) -> List[ProviderClient]:
        """
        Check every account against the registry before anything is dispatched.

        Raises:
            ConfigurationError: On a duplicate or blank name, a blank identifier,
                or a provider kind with no registered client
        """
        seen = set()
        clients = []
        for account in accounts:
            if not account.name or not account.name.strip():
                raise ConfigurationError(f"Account with identifier {account.identifier!r} has no name")
            if account.name in seen:
                raise ConfigurationError(f"Duplicate account name: {account.name}")
            seen.add(account.name)
            if not account.identifier or not account.identifier.strip():
                raise ConfigurationError(f"Account {account.name} has no identifier")
            clients.append(self.registry.get(account.provider_kind))
        return clients

    def run(
        self,
        accounts: Sequence[TrackedAccount],
        on_result: Optional[Callable[[AccountResult], None]] = None,
    ) -> List[AccountResult]:
        """
        Query every account concurrently.

        At most max_concurrency provider calls are in flight at once, counting
        calls that were abandoned after their account timed out. An account's
        timeout starts once its call is dispatched.

        Args:
            accounts: Accounts to query
            on_result: Called from a worker thread as each account completes

        Returns:
            One AccountResult per account, in input order. Balances are unpriced.

        Raises:
            ConfigurationError: If an account cannot be dispatched (see resolve_clients)
        """
        accounts = list(accounts)
        clients = self.resolve_clients(accounts)
        if not accounts:
            return []

        logger.info(
            f"Querying {len(accounts)} accounts "
            f"(concurrency {self.max_concurrency}, timeout {self.account_timeout:g}s)"
        )

        workers = min(self.max_concurrency, len(accounts))
        # A slot is held until the provider call returns, even after its account timed out
        slots = threading.BoundedSemaphore(workers)
        calls = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="provider-call")
        try:
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="account") as pool:
                futures = [
                    pool.submit(self._query_one, calls, slots, account, client, on_result)
                    for account, client in zip(accounts, clients)
                ]
                results = [future.result() for future in futures]
        finally:
            calls.shutdown(wait=False, cancel_futures=True)

        succeeded = sum(1 for r in results if r.ok)
        logger.info(f"Query complete: {succeeded}/{len(results)} accounts succeeded")
        return results

    def _query_one(
        self,
        calls: ThreadPoolExecutor,
        slots: threading.BoundedSemaphore,
        account: TrackedAccount,
        client: ProviderClient,
        on_result: Optional[Callable[[AccountResult], None]],
    ) -> AccountResult:
        slots.acquire()
        started = self.clock()
        try:
            future = calls.submit(client.fetch_balances, account.identifier.strip())
        except BaseException:
            slots.release()
            raise
        future.add_done_callback(lambda _: slots.release())
        try:
            raw = future.result(timeout=self.account_timeout)
            balances = self._checked_balances(account, raw)
        except FutureTimeoutError:
            future.cancel()
            error = ProviderError(
                ProviderErrorKind.TIMEOUT,
                f"No response within {self.account_timeout:g}s",
                provider_kind=account.provider_kind.value,
            )
        except ProviderError as e:
            error = e
        except Exception as e:
            error = ProviderError(
                ProviderErrorKind.MALFORMED_RESPONSE,
                f"{type(e).__name__}: {e}",
                provider_kind=account.provider_kind.value,
            )
        else:
            elapsed = self.clock() - started
            result = AccountResult(account, tuple(EnrichedBalance(b) for b in balances), elapsed=elapsed)
            logger.info(f"  ✓ {account.name} ({account.provider_kind.display_name}): "
                        f"{len(balances)} balances in {elapsed:.2f}s")
            return self._report(result, on_result)

        elapsed = self.clock() - started
        logger.error(f"  ✗ {account.name} ({account.provider_kind.display_name}): {error}")
        return self._report(AccountResult(account, error=error, elapsed=elapsed), on_result)

    @staticmethod
    def _report(result: AccountResult, on_result) -> AccountResult:
        if on_result is not None:
            try:
                on_result(result)
            except Exception as e:
                logger.warning(f"Progress callback failed for {result.account.name}: {e}")
        return result

    @staticmethod
    def _checked_balances(account: TrackedAccount, raw) -> List[RawBalance]:
        """Enforce the client contract and stamp each balance with its account."""
        if not isinstance(raw, (list, tuple)):
            raise TypeError(f"fetch_balances returned {type(raw).__name__}, expected list")
        balances = []
        for item in raw:
            if not isinstance(item, RawBalance):
                raise TypeError(f"fetch_balances returned {type(item).__name__} entry")
            # replace() re-runs the quantity checks
            balances.append(replace(item, account_name=account.name, provider_kind=account.provider_kind))
        return balances
