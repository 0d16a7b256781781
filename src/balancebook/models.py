"""
Core Data Model

Provider kinds, tracked accounts and the balance/price records that flow
through a query cycle. Quantities and prices are always Decimal; base-unit
integers (wei, lamports, yocto) are converted through their exact string form.
"""

from dataclasses import dataclass
from decimal import Context, Decimal, InvalidOperation, localcontext
from enum import Enum
from typing import Iterable, Optional, Tuple, Union

from .errors import PricingErrorKind, ProviderError

DEFAULT_COMPANY = "uncategorized"

# Wide enough that sums of 24-decimal quantities never round
DECIMAL_CONTEXT = Context(prec=96)


class ProviderKind(str, Enum):
    """Custodians a tracked account can live on."""

    SOLANA = "solana"
    ETHEREUM = "ethereum"
    POLYGON = "polygon"
    BSC = "bsc"
    ARBITRUM = "arbitrum"
    OPTIMISM = "optimism"
    AVALANCHE = "avalanche"
    BASE = "base"
    CORE = "core"
    NEAR = "near"
    APTOS = "aptos"
    SUI = "sui"
    STARKNET = "starknet"
    MERCURY = "mercury"
    CIRCLE = "circle"
    BINANCE = "binance"
    OKX = "okx"
    BITGET = "bitget"

    @classmethod
    def parse(cls, value: str) -> "ProviderKind":
        """
        Parse a provider kind name or one of its short aliases.

        Args:
            value: Kind name such as 'ethereum', 'eth' or 'SOL'

        Returns:
            Matching ProviderKind

        Raises:
            ValueError: If the name is not a known kind or alias
        """
        key = value.strip().lower()
        if key in _ALIASES:
            return _ALIASES[key]
        try:
            return cls(key)
        except ValueError:
            msg = f"Unknown provider kind: {value!r}"
            raise ValueError(msg) from None

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]

    @property
    def native_symbol(self) -> Optional[str]:
        """Native asset symbol, or None for exchanges which hold many assets."""
        return _NATIVE_SYMBOLS.get(self)

    @property
    def is_evm(self) -> bool:
        return self in EVM_KINDS

    @property
    def is_bank(self) -> bool:
        return self in BANK_KINDS

    @property
    def is_exchange(self) -> bool:
        return self in EXCHANGE_KINDS


EVM_KINDS = frozenset(
    {
        ProviderKind.ETHEREUM,
        ProviderKind.POLYGON,
        ProviderKind.BSC,
        ProviderKind.ARBITRUM,
        ProviderKind.OPTIMISM,
        ProviderKind.AVALANCHE,
        ProviderKind.BASE,
        ProviderKind.CORE,
    }
)
BANK_KINDS = frozenset({ProviderKind.MERCURY, ProviderKind.CIRCLE})
EXCHANGE_KINDS = frozenset({ProviderKind.BINANCE, ProviderKind.OKX, ProviderKind.BITGET})

_ALIASES = {
    "sol": ProviderKind.SOLANA,
    "eth": ProviderKind.ETHEREUM,
    "matic": ProviderKind.POLYGON,
    "bnb": ProviderKind.BSC,
    "arb": ProviderKind.ARBITRUM,
    "op": ProviderKind.OPTIMISM,
    "avax": ProviderKind.AVALANCHE,
    "apt": ProviderKind.APTOS,
    "stark": ProviderKind.STARKNET,
}

_DISPLAY_NAMES = {
    ProviderKind.SOLANA: "Solana",
    ProviderKind.ETHEREUM: "Ethereum",
    ProviderKind.POLYGON: "Polygon",
    ProviderKind.BSC: "BSC",
    ProviderKind.ARBITRUM: "Arbitrum",
    ProviderKind.OPTIMISM: "Optimism",
    ProviderKind.AVALANCHE: "Avalanche",
    ProviderKind.BASE: "Base",
    ProviderKind.CORE: "Core",
    ProviderKind.NEAR: "NEAR",
    ProviderKind.APTOS: "Aptos",
    ProviderKind.SUI: "Sui",
    ProviderKind.STARKNET: "Starknet",
    ProviderKind.MERCURY: "Mercury",
    ProviderKind.CIRCLE: "Circle",
    ProviderKind.BINANCE: "Binance",
    ProviderKind.OKX: "OKX",
    ProviderKind.BITGET: "Bitget",
}

_NATIVE_SYMBOLS = {
    ProviderKind.SOLANA: "SOL",
    ProviderKind.ETHEREUM: "ETH",
    ProviderKind.POLYGON: "MATIC",
    ProviderKind.BSC: "BNB",
    ProviderKind.ARBITRUM: "ETH",
    ProviderKind.OPTIMISM: "ETH",
    ProviderKind.AVALANCHE: "AVAX",
    ProviderKind.BASE: "ETH",
    ProviderKind.CORE: "CORE",
    ProviderKind.NEAR: "NEAR",
    ProviderKind.APTOS: "APT",
    ProviderKind.SUI: "SUI",
    # Starknet accounts are read through the ETH token contract
    ProviderKind.STARKNET: "ETH",
    ProviderKind.MERCURY: "USD",
    ProviderKind.CIRCLE: "USDC",
}


def from_base_units(raw: Union[int, str], decimals: int) -> Decimal:
    """
    Convert an integer amount of base units into a Decimal without rounding.

    Args:
        raw: Amount in smallest units (wei, lamports, ...) as int or digit string
        decimals: Number of decimals of the asset

    Returns:
        Exact Decimal amount
    """
    amount = int(raw)
    if decimals == 0:
        return Decimal(amount)
    return Decimal(f"{amount}E-{decimals}")


def normalize_symbol(symbol: str) -> str:
    return symbol.strip().upper()


def coerce_decimal(value) -> Decimal:
    """
    Coerce a JSON/number value into Decimal, going through str for floats.

    Raises:
        ValueError: If the value is not a finite number
    """
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool) or value is None:
        raise ValueError(f"Not a number: {value!r}")
    elif isinstance(value, float):
        result = Decimal(str(value))
    else:
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation:
            raise ValueError(f"Not a number: {value!r}") from None
    if not result.is_finite():
        raise ValueError(f"Not a finite number: {value!r}")
    return result


def exact_sum(values: Iterable[Decimal]) -> Decimal:
    """Sum Decimals in the wide context so that no digits are rounded away."""
    with localcontext(DECIMAL_CONTEXT):
        total = Decimal(0)
        for value in values:
            total += value
        return total


@dataclass(frozen=True)
class TrackedAccount:
    """An address or bank/exchange account from the address book."""

    name: str
    identifier: str
    provider_kind: ProviderKind
    company: str = DEFAULT_COMPANY

    def __post_init__(self):
        company = (self.company or "").strip()
        object.__setattr__(self, "company", company or DEFAULT_COMPANY)


@dataclass(frozen=True)
class RawBalance:
    """A quantity of one asset held by one account, as reported by its provider."""

    asset_symbol: str
    quantity: Decimal
    provider_kind: ProviderKind
    account_name: str

    def __post_init__(self):
        if not isinstance(self.quantity, Decimal):
            raise TypeError(f"quantity must be Decimal, got {type(self.quantity).__name__}")
        if self.quantity.is_nan() or self.quantity < 0:
            raise ValueError(f"{self.asset_symbol}: quantity must be >= 0, got {self.quantity}")


@dataclass(frozen=True)
class PriceQuote:
    """USD unit price for a symbol; superseded on refresh, never mutated."""

    asset_symbol: str
    usd_price: Decimal
    fetched_at: float
    source: str

    def age(self, now: float) -> float:
        return now - self.fetched_at


@dataclass(frozen=True)
class EnrichedBalance:
    """
    A RawBalance with its USD valuation.

    usd_value is present exactly when a price was attached. pricing_error is set
    when pricing was attempted and failed; both are None when pricing was skipped.
    """

    balance: RawBalance
    price: Optional[PriceQuote] = None
    pricing_error: Optional[PricingErrorKind] = None

    @property
    def asset_symbol(self) -> str:
        return self.balance.asset_symbol

    @property
    def quantity(self) -> Decimal:
        return self.balance.quantity

    @property
    def account_name(self) -> str:
        return self.balance.account_name

    @property
    def priced(self) -> bool:
        return self.price is not None

    @property
    def usd_value(self) -> Optional[Decimal]:
        if self.price is None:
            return None
        with localcontext(DECIMAL_CONTEXT):
            return self.balance.quantity * self.price.usd_price


@dataclass(frozen=True)
class AccountResult:
    """Outcome of querying one tracked account: balances or a tagged error."""

    account: TrackedAccount
    balances: Tuple[EnrichedBalance, ...] = ()
    error: Optional[ProviderError] = None
    elapsed: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def raw_balances(self) -> Tuple[RawBalance, ...]:
        return tuple(b.balance for b in self.balances)
