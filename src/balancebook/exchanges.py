"""
Crypto Exchange Integration

Reads custodial balances from centralized exchanges through CCXT. The account
identifier names a credentials profile: identifier 'BINANCE_MAIN' reads
BINANCE_MAIN_API_KEY, BINANCE_MAIN_API_SECRET and (OKX/Bitget) BINANCE_MAIN_API_PASSWORD.
"""

import logging
import os
import re
from decimal import Decimal
from typing import Callable, Dict, List, Optional

import ccxt

from .errors import ProviderError, ProviderErrorKind
from .models import ProviderKind, RawBalance, coerce_decimal, exact_sum
from .registry import ProviderClient

logger = logging.getLogger(__name__)

_PROFILE_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_]*$")

# Account types queried per exchange; None means the default (unified) wallet
ACCOUNT_TYPES = {
    ProviderKind.BINANCE: ["spot", "funding"],
    ProviderKind.OKX: [None],
    ProviderKind.BITGET: ["spot"],
}

EXCHANGE_CLASSES = {
    ProviderKind.BINANCE: "binance",
    ProviderKind.OKX: "okx",
    ProviderKind.BITGET: "bitget",
}


def map_ccxt_error(kind: ProviderKind, error: Exception) -> ProviderError:
    """Translate a CCXT exception into a ProviderError."""
    if isinstance(error, ccxt.AuthenticationError) or isinstance(error, ccxt.PermissionDenied):
        error_kind = ProviderErrorKind.UNAUTHORIZED
    elif isinstance(error, (ccxt.RateLimitExceeded, ccxt.DDoSProtection)):
        error_kind = ProviderErrorKind.RATE_LIMITED
    elif isinstance(error, ccxt.RequestTimeout):
        error_kind = ProviderErrorKind.TIMEOUT
    elif isinstance(error, ccxt.NetworkError):
        error_kind = ProviderErrorKind.UNREACHABLE
    else:
        error_kind = ProviderErrorKind.MALFORMED_RESPONSE
    return ProviderError(error_kind, str(error) or type(error).__name__, provider_kind=kind.value)


class ExchangeClient(ProviderClient):
    """Balance client for one exchange; builds a CCXT instance per credentials profile."""

    def __init__(
        self,
        kind: ProviderKind,
        timeout: float = 20.0,
        exchange_factory: Optional[Callable[[Dict], "ccxt.Exchange"]] = None,
    ):
        """
        Initialize exchange client.

        Args:
            kind: Exchange provider kind (binance, okx, bitget)
            timeout: Request timeout in seconds
            exchange_factory: Builds the CCXT exchange from its config dict (tests)
        """
        if not kind.is_exchange:
            raise ValueError(f"{kind.value} is not an exchange")
        super().__init__(kind)
        self.timeout = timeout
        self.exchange_factory = exchange_factory or getattr(ccxt, EXCHANGE_CLASSES[kind])
        self._exchanges: Dict[str, "ccxt.Exchange"] = {}

    def credentials(self, profile: str) -> Dict[str, str]:
        """
        Read API credentials for a profile from the environment.

        Raises:
            ProviderError: 'invalid_identifier' for a malformed profile name,
                'unauthorized' if the key or secret is missing
        """
        if not _PROFILE_RE.match(profile):
            raise ProviderError(
                ProviderErrorKind.INVALID_IDENTIFIER,
                f"Invalid credentials profile {profile!r}",
                provider_kind=self.kind.value,
            )
        prefix = profile.upper()
        api_key = os.getenv(f"{prefix}_API_KEY")
        api_secret = os.getenv(f"{prefix}_API_SECRET")
        if not api_key or not api_secret:
            raise ProviderError(
                ProviderErrorKind.UNAUTHORIZED,
                f"{prefix}_API_KEY / {prefix}_API_SECRET not set",
                provider_kind=self.kind.value,
            )
        config = {
            "apiKey": api_key,
            "secret": api_secret,
            "enableRateLimit": True,
            "timeout": int(self.timeout * 1000),
        }
        password = os.getenv(f"{prefix}_API_PASSWORD")
        if password:
            config["password"] = password
        return config

    def exchange_for(self, profile: str):
        if profile not in self._exchanges:
            self._exchanges[profile] = self.exchange_factory(self.credentials(profile))
        return self._exchanges[profile]

    def fetch_balances(self, identifier: str) -> List[RawBalance]:
        profile = identifier.strip()
        exchange = self.exchange_for(profile)

        aggregated: Dict[str, List[Decimal]] = {}
        errors = []
        for account_type in ACCOUNT_TYPES[self.kind]:
            label = account_type or "unified"
            try:
                params = {"type": account_type} if account_type else {}
                balance_data = exchange.fetch_balance(params)
            except ccxt.BaseError as e:
                logger.debug(f"  {self.kind.display_name} {label}: not accessible ({e})")
                errors.append(e)
                continue

            fetched_count = 0
            for currency, amount in (balance_data.get("total") or {}).items():
                if not amount:
                    continue
                try:
                    quantity = coerce_decimal(amount)
                except ValueError:
                    raise ProviderError(
                        ProviderErrorKind.MALFORMED_RESPONSE,
                        f"Unparsable {currency} total: {amount!r}",
                        provider_kind=self.kind.value,
                    ) from None
                if quantity > 0:
                    aggregated.setdefault(currency, []).append(quantity)
                    fetched_count += 1

            if fetched_count > 0:
                logger.debug(f"  {self.kind.display_name} {label}: {fetched_count} currencies")

        # Only fail the account if no wallet could be read at all
        if len(errors) == len(ACCOUNT_TYPES[self.kind]):
            raise map_ccxt_error(self.kind, errors[0]) from errors[0]

        return [self.balance(currency, exact_sum(amounts)) for currency, amounts in sorted(aggregated.items())]
