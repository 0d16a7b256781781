"""
Query Configuration

Runtime knobs for a query cycle, read from environment variables. Scripts call
load_dotenv() first so values can live in a local .env file.
"""

import os
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Dict, Optional, Tuple

from .errors import ConfigurationError
from .models import ProviderKind, coerce_decimal

KNOWN_PRICE_PROVIDERS = ("tradingview", "coingecko")

DEFAULT_DB_PATH = Path("data") / "addresses.db"

# Fixed USD prices answered without a network call
DEFAULT_PEGGED_PRICES = {"USD": Decimal("1")}


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from None
    if value <= 0:
        raise ConfigurationError(f"{name} must be positive, got {raw!r}")
    return value


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from None
    if value <= 0:
        raise ConfigurationError(f"{name} must be positive, got {raw!r}")
    return value


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def parse_provider_order(raw: str) -> Tuple[str, ...]:
    """
    Parse a comma separated price provider list such as 'tradingview,coingecko'.

    Raises:
        ConfigurationError: If the list is empty or names an unknown provider
    """
    names = tuple(part.strip().lower() for part in raw.split(",") if part.strip())
    if not names:
        raise ConfigurationError("At least one price provider must be configured")
    for name in names:
        if name not in KNOWN_PRICE_PROVIDERS:
            raise ConfigurationError(
                f"Unknown price provider {name!r} (expected one of {', '.join(KNOWN_PRICE_PROVIDERS)})"
            )
    if len(set(names)) != len(names):
        raise ConfigurationError(f"Duplicate price provider in {raw!r}")
    return names


@dataclass(frozen=True)
class QueryConfig:
    """Settings consumed by the orchestrator, enrichment service and clients."""

    account_timeout: float = 30.0
    max_concurrency: int = 8
    price_cache_ttl: float = 60.0
    rate_limit_tokens: int = 10
    rate_limit_interval: float = 1.0
    rate_limit_max_wait: float = 5.0
    price_providers: Tuple[str, ...] = ("tradingview", "coingecko")
    skip_pricing: bool = False
    http_timeout: float = 20.0
    rpc_urls: Dict[ProviderKind, str] = field(default_factory=dict)
    pegged_prices: Dict[str, Decimal] = field(default_factory=lambda: dict(DEFAULT_PEGGED_PRICES))
    coingecko_api_key: Optional[str] = None
    coingecko_pro_api_key: Optional[str] = None

    def __post_init__(self):
        for name in ("account_timeout", "price_cache_ttl", "rate_limit_interval",
                     "rate_limit_max_wait", "http_timeout"):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive")
        for name in ("max_concurrency", "rate_limit_tokens"):
            if getattr(self, name) < 1:
                raise ConfigurationError(f"{name} must be at least 1")
        object.__setattr__(self, "price_providers", parse_provider_order(",".join(self.price_providers)))

    def rpc_url(self, kind: ProviderKind, default: str) -> str:
        return self.rpc_urls.get(kind) or default

    @classmethod
    def from_env(cls) -> "QueryConfig":
        """
        Build configuration from BALANCEBOOK_* and <KIND>_RPC_URL variables.

        Returns:
            QueryConfig

        Raises:
            ConfigurationError: If any value is malformed
        """
        rpc_urls = {}
        for kind in ProviderKind:
            url = os.getenv(f"{kind.name}_RPC_URL")
            if url and url.strip():
                rpc_urls[kind] = url.strip()

        pegged = dict(DEFAULT_PEGGED_PRICES)
        raw_pegged = os.getenv("BALANCEBOOK_PEGGED_PRICES", "")
        for item in raw_pegged.split(","):
            if not item.strip():
                continue
            symbol, sep, price = item.partition("=")
            if not sep:
                raise ConfigurationError(f"BALANCEBOOK_PEGGED_PRICES entry must be SYMBOL=PRICE, got {item!r}")
            try:
                pegged[symbol.strip().upper()] = coerce_decimal(price)
            except ValueError as e:
                raise ConfigurationError(f"BALANCEBOOK_PEGGED_PRICES: {e}") from None

        return cls(
            account_timeout=_env_float("BALANCEBOOK_ACCOUNT_TIMEOUT", 30.0),
            max_concurrency=_env_int("BALANCEBOOK_MAX_CONCURRENCY", 8),
            price_cache_ttl=_env_float("BALANCEBOOK_PRICE_TTL", 60.0),
            rate_limit_tokens=_env_int("BALANCEBOOK_RATE_LIMIT_TOKENS", 10),
            rate_limit_interval=_env_float("BALANCEBOOK_RATE_LIMIT_INTERVAL", 1.0),
            rate_limit_max_wait=_env_float("BALANCEBOOK_RATE_LIMIT_MAX_WAIT", 5.0),
            price_providers=parse_provider_order(
                os.getenv("BALANCEBOOK_PRICE_PROVIDERS", "tradingview,coingecko")
            ),
            skip_pricing=_env_bool("BALANCEBOOK_SKIP_PRICING"),
            http_timeout=_env_float("BALANCEBOOK_HTTP_TIMEOUT", 20.0),
            rpc_urls=rpc_urls,
            pegged_prices=pegged,
            coingecko_api_key=os.getenv("COINGECKO_API_KEY") or None,
            coingecko_pro_api_key=os.getenv("COINGECKO_PRO_API_KEY") or None,
        )


def default_db_path() -> Path:
    return Path(os.getenv("BALANCEBOOK_DB") or DEFAULT_DB_PATH)
