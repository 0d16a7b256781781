"""
Error Types

Structured failures raised by provider clients, price providers and the
configuration layer. Per-account and per-symbol failures are captured as data
by the orchestrator and the enrichment service; only ConfigurationError is
allowed to abort a query cycle.
"""

from enum import Enum
from typing import Optional


class ProviderErrorKind(str, Enum):
    """Why a single account query failed."""

    INVALID_IDENTIFIER = "invalid_identifier"
    UNREACHABLE = "unreachable"
    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"
    MALFORMED_RESPONSE = "malformed_response"
    UNAUTHORIZED = "unauthorized"


class PricingErrorKind(str, Enum):
    """Why a symbol could not be priced."""

    ALL_PROVIDERS_FAILED = "all_providers_failed"
    RATE_LIMIT_EXHAUSTED = "rate_limit_exhausted"


class BalancebookError(Exception):
    """Base class for all balancebook errors."""


class ConfigurationError(BalancebookError):
    """Invalid configuration or address book contents. Fatal for a query cycle."""


class AccountNotFoundError(BalancebookError, LookupError):
    """No tracked account matches the given name or identifier."""


class ProviderError(BalancebookError):
    """A provider client could not return balances for an identifier."""

    def __init__(
        self,
        kind: ProviderErrorKind,
        message: str,
        provider_kind: Optional[str] = None,
    ):
        self.kind = ProviderErrorKind(kind)
        self.message = message
        self.provider_kind = provider_kind
        super().__init__(message)

    def __str__(self) -> str:
        prefix = f"{self.provider_kind}: " if self.provider_kind else ""
        return f"{prefix}{self.kind.value} - {self.message}"

    def __repr__(self) -> str:
        return f"ProviderError({self.kind.value!r}, {self.message!r})"


class PriceProviderError(BalancebookError):
    """A single price provider failed to quote a symbol."""

    def __init__(self, message: str, rate_limited: bool = False):
        self.rate_limited = rate_limited
        super().__init__(message)


class PricingError(BalancebookError):
    """Every configured price provider failed for a symbol."""

    def __init__(self, kind: PricingErrorKind, symbol: str, message: str = ""):
        self.kind = PricingErrorKind(kind)
        self.symbol = symbol
        self.message = message
        super().__init__(f"{symbol}: {self.kind.value}" + (f" - {message}" if message else ""))

    def __eq__(self, other):
        if not isinstance(other, PricingError):
            return NotImplemented
        return (self.kind, self.symbol) == (other.kind, other.symbol)

    def __hash__(self):
        return hash((self.kind, self.symbol))


def is_rate_limit_message(message: str) -> bool:
    """True if an upstream error message reads like a rate-limit rejection."""
    lowered = message.lower()
    return "rate limit" in lowered or "too many requests" in lowered
