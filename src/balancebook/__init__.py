"""
Balancebook - Multi-Custodian Balance Tracker

Queries balances across blockchains (Solana, EVM networks, Aptos, Sui, NEAR,
Starknet), banks (Mercury, Circle) and exchanges, prices them in USD and
aggregates them into a portfolio grouped by company.
"""

__version__ = "0.1.0"

from .address_book import AddressBook
from .config import QueryConfig
from .errors import (
    AccountNotFoundError,
    ConfigurationError,
    PricingError,
    ProviderError,
    ProviderErrorKind,
)
from .models import ProviderKind, RawBalance, TrackedAccount
from .orchestrator import QueryOrchestrator
from .portfolio import PortfolioView, build_portfolio
from .pricing import PriceCache, PriceEnrichmentService, TokenBucket, build_enrichment
from .query import query_account, run_query_cycle
from .registry import ProviderRegistry, build_registry

__all__ = [
    "AddressBook",
    "QueryConfig",
    "AccountNotFoundError",
    "ConfigurationError",
    "PricingError",
    "ProviderError",
    "ProviderErrorKind",
    "ProviderKind",
    "RawBalance",
    "TrackedAccount",
    "QueryOrchestrator",
    "PortfolioView",
    "build_portfolio",
    "PriceCache",
    "PriceEnrichmentService",
    "TokenBucket",
    "build_enrichment",
    "query_account",
    "run_query_cycle",
    "ProviderRegistry",
    "build_registry",
]
