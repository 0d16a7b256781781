"""
Query Cycle

Chains the three stages of a balance refresh: orchestrate, enrich, aggregate.
"""

import logging
from typing import Callable, Optional, Sequence

from .address_book import AddressBook
from .config import QueryConfig
from .errors import AccountNotFoundError
from .models import AccountResult, TrackedAccount
from .orchestrator import QueryOrchestrator
from .portfolio import PortfolioView, build_portfolio
from .pricing import PriceEnrichmentService, build_enrichment
from .registry import ProviderRegistry

logger = logging.getLogger(__name__)


def run_query_cycle(
    accounts: Sequence[TrackedAccount],
    registry: ProviderRegistry,
    config: QueryConfig,
    enrichment: Optional[PriceEnrichmentService] = None,
    on_result: Optional[Callable[[AccountResult], None]] = None,
) -> PortfolioView:
    """
    Query, price and aggregate a set of accounts.

    Args:
        accounts: Accounts to query
        registry: Provider clients
        config: Timeouts, concurrency and pricing settings
        enrichment: Price service; built from config when omitted
        on_result: Progress callback per completed account

    Returns:
        PortfolioView (partial failures are listed in its failures)

    Raises:
        ConfigurationError: If an account cannot be dispatched
    """
    orchestrator = QueryOrchestrator(
        registry,
        account_timeout=config.account_timeout,
        max_concurrency=config.max_concurrency,
    )
    results = orchestrator.run(accounts, on_result=on_result)

    if config.skip_pricing:
        logger.info("Pricing skipped")
    else:
        if enrichment is None:
            enrichment = build_enrichment(config)
        results = enrichment.enrich_results(results)

    view = build_portfolio(results, pricing_skipped=config.skip_pricing)
    logger.info(f"{view.summary_line()}, total ${view.grand_total:,.2f}")
    return view


def query_account(
    name: str,
    book: AddressBook,
    registry: ProviderRegistry,
    config: QueryConfig,
    enrichment: Optional[PriceEnrichmentService] = None,
) -> PortfolioView:
    """
    Run a query cycle for a single named account.

    Raises:
        AccountNotFoundError: If no account has that name
    """
    account = book.find(name)
    if account is None:
        raise AccountNotFoundError(f"No account named {name.strip()!r}")
    return run_query_cycle([account], registry, config, enrichment)
