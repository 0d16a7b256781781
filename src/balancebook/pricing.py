"""
Price Enrichment

Resolves asset symbols to USD prices and attaches them to raw balances.

Resolution order per symbol:
    1. Pegged prices (USD = 1) answered locally
    2. Fresh entry in the TTL cache
    3. Each configured price provider in order, each behind its own token bucket

A symbol that no provider can price is reported as a PricingError and its
balances stay unpriced; one bad symbol never fails the batch.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from .config import QueryConfig
from .errors import PriceProviderError, PricingError, PricingErrorKind
from .models import AccountResult, EnrichedBalance, PriceQuote, RawBalance, normalize_symbol

logger = logging.getLogger(__name__)


class TokenBucket:
    """
    Token-bucket rate limiter shared by every caller of one price provider.

    Holds at most `capacity` tokens and refills continuously at
    capacity / interval tokens per second.
    """

    def __init__(self, capacity: int, interval: float, clock: Callable[[], float] = time.monotonic):
        if capacity < 1 or interval <= 0:
            raise ValueError("capacity must be >= 1 and interval > 0")
        self.capacity = float(capacity)
        self.rate = capacity / interval
        self.clock = clock
        self._tokens = float(capacity)
        self._updated = clock()
        self._cond = threading.Condition()

    def _refill(self) -> None:
        now = self.clock()
        elapsed = now - self._updated
        if elapsed > 0:
            self._tokens = min(self.capacity, self._tokens + elapsed * self.rate)
            self._updated = now

    @property
    def available(self) -> float:
        with self._cond:
            self._refill()
            return self._tokens

    def acquire(self, timeout: float = 0.0) -> bool:
        """
        Take one token, waiting up to `timeout` seconds for a refill.

        The deadline and refills are both measured on the bucket's clock; each
        wait between checks is real time, capped by the remaining clock time.

        Returns:
            True if a token was taken, False if the wait bound was reached
        """
        deadline = self.clock() + max(timeout, 0.0)
        with self._cond:
            while True:
                self._refill()
                if self._tokens >= 1:
                    self._tokens -= 1
                    return True
                remaining = deadline - self.clock()
                if remaining <= 0:
                    return False
                self._cond.wait(min(remaining, (1 - self._tokens) / self.rate))


class PriceCache:
    """
    Symbol -> PriceQuote map with a freshness TTL.

    Writes go through one of a fixed set of striped locks chosen by symbol, so
    refreshes of unrelated symbols never contend. An older quote never replaces
    a newer one.
    """

    def __init__(self, ttl: float, clock: Callable[[], float] = time.time, stripes: int = 16):
        self.ttl = ttl
        self.clock = clock
        self._entries: Dict[str, PriceQuote] = {}
        self._locks = [threading.Lock() for _ in range(stripes)]

    def _lock_for(self, symbol: str) -> threading.Lock:
        return self._locks[hash(symbol) % len(self._locks)]

    def get(self, symbol: str) -> Optional[PriceQuote]:
        return self._entries.get(normalize_symbol(symbol))

    def get_fresh(self, symbol: str) -> Optional[PriceQuote]:
        quote = self.get(symbol)
        if quote is not None and quote.age(self.clock()) < self.ttl:
            return quote
        return None

    def put(self, quote: PriceQuote) -> PriceQuote:
        """Store a quote unless a newer one is already cached; returns the cached quote."""
        symbol = normalize_symbol(quote.asset_symbol)
        with self._lock_for(symbol):
            current = self._entries.get(symbol)
            if current is None or quote.fetched_at >= current.fetched_at:
                self._entries[symbol] = quote
                return quote
            return current

    def __len__(self) -> int:
        return len(self._entries)


class PriceEnrichmentService:
    """Resolves USD prices through pegged values, the cache and an ordered provider chain."""

    def __init__(
        self,
        providers: Sequence[Tuple[object, Optional[TokenBucket]]],
        cache: PriceCache,
        max_wait: float = 5.0,
        pegged_prices: Optional[Dict[str, Decimal]] = None,
        max_concurrency: int = 8,
    ):
        """
        Args:
            providers: (provider, limiter) pairs in fallback order. A provider has a
                `name` and `quote(symbol) -> Decimal` raising PriceProviderError
            cache: Shared price cache
            max_wait: Longest time to block on an empty token bucket
            pegged_prices: Symbols with a fixed USD price
            max_concurrency: Symbols priced in parallel
        """
        self.providers = list(providers)
        self.cache = cache
        self.max_wait = max_wait
        self.pegged_prices = {normalize_symbol(k): v for k, v in (pegged_prices or {}).items()}
        self.max_concurrency = max_concurrency

    def quote(self, symbol: str) -> PriceQuote:
        """
        Resolve one symbol to a USD quote.

        Raises:
            PricingError: If every provider failed or was rate limited
        """
        symbol = normalize_symbol(symbol)

        if symbol in self.pegged_prices:
            return PriceQuote(symbol, self.pegged_prices[symbol], self.cache.clock(), "pegged")

        cached = self.cache.get_fresh(symbol)
        if cached is not None:
            return cached

        failures = []
        all_rate_limited = True
        for provider, limiter in self.providers:
            if limiter is not None and not limiter.acquire(self.max_wait):
                failures.append(f"{provider.name}: local rate limit")
                continue
            try:
                price = provider.quote(symbol)
            except PriceProviderError as e:
                if not e.rate_limited:
                    all_rate_limited = False
                failures.append(f"{provider.name}: {e}")
                logger.debug(f"  {provider.name} failed for {symbol}: {e}")
                continue
            except Exception as e:
                all_rate_limited = False
                failures.append(f"{provider.name}: {type(e).__name__}: {e}")
                logger.warning(f"  {provider.name} raised unexpectedly for {symbol}: {e}")
                continue

            quote = PriceQuote(symbol, price, self.cache.clock(), provider.name)
            self.cache.put(quote)
            return quote

        if self.providers and all_rate_limited:
            kind = PricingErrorKind.RATE_LIMIT_EXHAUSTED
        else:
            kind = PricingErrorKind.ALL_PROVIDERS_FAILED
        raise PricingError(kind, symbol, "; ".join(failures))

    def _quote_or_error(self, symbol: str) -> Union[PriceQuote, PricingError]:
        try:
            return self.quote(symbol)
        except PricingError as e:
            return e

    def resolve(self, symbols: Iterable[str]) -> Dict[str, Union[PriceQuote, PricingError]]:
        """
        Price each distinct symbol concurrently.

        Returns:
            Dict of normalized symbol -> PriceQuote or PricingError
        """
        distinct = sorted({normalize_symbol(s) for s in symbols})
        if not distinct:
            return {}

        workers = max(1, min(self.max_concurrency, len(distinct)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="price") as pool:
            futures = {symbol: pool.submit(self._quote_or_error, symbol) for symbol in distinct}
        resolved = {symbol: future.result() for symbol, future in futures.items()}

        failed = [s for s, outcome in resolved.items() if isinstance(outcome, PricingError)]
        logger.info(f"Priced {len(distinct) - len(failed)}/{len(distinct)} symbols")
        for symbol in failed:
            logger.warning(f"  ✗ {symbol}: {resolved[symbol]}")
        return resolved

    @staticmethod
    def _attach(balance: RawBalance, outcome: Union[PriceQuote, PricingError]) -> EnrichedBalance:
        if isinstance(outcome, PriceQuote):
            return EnrichedBalance(balance, price=outcome)
        return EnrichedBalance(balance, pricing_error=outcome.kind)

    def enrich(self, balances: Iterable[RawBalance]) -> List[EnrichedBalance]:
        balances = list(balances)
        resolved = self.resolve(b.asset_symbol for b in balances)
        return [self._attach(b, resolved[normalize_symbol(b.asset_symbol)]) for b in balances]

    def enrich_results(self, results: Sequence[AccountResult]) -> List[AccountResult]:
        """Price every balance of the successful results, resolving each symbol once."""
        resolved = self.resolve(b.asset_symbol for r in results if r.ok for b in r.raw_balances)
        enriched = []
        for result in results:
            if not result.ok:
                enriched.append(result)
                continue
            balances = tuple(
                self._attach(b, resolved[normalize_symbol(b.asset_symbol)]) for b in result.raw_balances
            )
            enriched.append(replace(result, balances=balances))
        return enriched


def build_price_provider(name: str, config: QueryConfig):
    """Instantiate a price provider by its configured name."""
    if name == "tradingview":
        from .tradingview import TradingViewPriceProvider

        return TradingViewPriceProvider()
    if name == "coingecko":
        from .coingecko import CoinGeckoPriceProvider

        return CoinGeckoPriceProvider(
            api_key=config.coingecko_api_key,
            pro_api_key=config.coingecko_pro_api_key,
            timeout=config.http_timeout,
        )
    raise ValueError(f"Unknown price provider: {name}")


def build_enrichment(config: QueryConfig, cache: Optional[PriceCache] = None) -> PriceEnrichmentService:
    """
    Wire the price provider chain, one token bucket per provider, and the cache.

    Args:
        config: Query configuration
        cache: Existing cache to share across cycles; a new one is created if omitted
    """
    providers = []
    for name in config.price_providers:
        limiter = TokenBucket(config.rate_limit_tokens, config.rate_limit_interval)
        providers.append((build_price_provider(name, config), limiter))
    return PriceEnrichmentService(
        providers,
        cache or PriceCache(config.price_cache_ttl),
        max_wait=config.rate_limit_max_wait,
        pegged_prices=config.pegged_prices,
        max_concurrency=config.max_concurrency,
    )
