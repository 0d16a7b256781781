"""
Provider Registry

Maps each ProviderKind to the client that knows how to read balances from it.
build_registry() is the single place where custodians are wired up; nothing
else in the package branches on chain identity.
"""

import logging
from typing import Dict, Iterable, List, Optional

from .config import QueryConfig
from .errors import ConfigurationError
from .models import ProviderKind, RawBalance

logger = logging.getLogger(__name__)


class ProviderClient:
    """Base class for balance clients. One instance serves every account of its kind."""

    kind: ProviderKind

    def __init__(self, kind: ProviderKind):
        self.kind = kind

    def fetch_balances(self, identifier: str) -> List[RawBalance]:
        """
        Fetch all non-zero balances held by an address or account id.

        Args:
            identifier: Address or account id, already trimmed

        Returns:
            List of RawBalance (empty if the account holds nothing). The
            account_name field is filled in by the orchestrator.

        Raises:
            ProviderError: If the balances could not be read
        """
        raise NotImplementedError

    def balance(self, symbol: str, quantity) -> RawBalance:
        return RawBalance(asset_symbol=symbol, quantity=quantity, provider_kind=self.kind, account_name="")

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.kind.value})"


class ProviderRegistry:
    """Lookup table of ProviderKind -> ProviderClient."""

    def __init__(self, clients: Optional[Dict[ProviderKind, ProviderClient]] = None):
        self._clients: Dict[ProviderKind, ProviderClient] = dict(clients or {})

    def register(self, kind: ProviderKind, client: ProviderClient) -> None:
        self._clients[kind] = client

    def get(self, kind: ProviderKind) -> ProviderClient:
        """
        Resolve the client for a kind.

        Raises:
            ConfigurationError: If no client is registered for the kind
        """
        client = self._clients.get(kind)
        if client is None:
            name = kind.value if isinstance(kind, ProviderKind) else repr(kind)
            raise ConfigurationError(f"No provider client registered for kind {name}")
        return client

    def __contains__(self, kind) -> bool:
        return kind in self._clients

    def kinds(self) -> List[ProviderKind]:
        return list(self._clients)


def build_registry(config: QueryConfig, kinds: Optional[Iterable[ProviderKind]] = None) -> ProviderRegistry:
    """
    Create clients for every provider kind (or the given subset).

    Clients connect lazily, so building the registry makes no network calls.

    Args:
        config: Query configuration (RPC overrides, HTTP timeout)
        kinds: Restrict to these kinds; defaults to all kinds

    Returns:
        ProviderRegistry
    """
    from .banking import CircleClient, MercuryClient
    from .blockchain import EVMClient
    from .chains import AptosClient, NearClient, SolanaClient, StarknetClient, SuiClient
    from .exchanges import ExchangeClient

    wanted = set(kinds) if kinds is not None else set(ProviderKind)
    registry = ProviderRegistry()
    timeout = config.http_timeout

    for kind in ProviderKind:
        if kind not in wanted:
            continue
        if kind.is_evm:
            client = EVMClient(kind, rpc_url=config.rpc_urls.get(kind), timeout=timeout)
        elif kind.is_exchange:
            client = ExchangeClient(kind, timeout=timeout)
        elif kind == ProviderKind.SOLANA:
            client = SolanaClient(rpc_url=config.rpc_urls.get(kind), timeout=timeout)
        elif kind == ProviderKind.APTOS:
            client = AptosClient(rpc_url=config.rpc_urls.get(kind), timeout=timeout)
        elif kind == ProviderKind.SUI:
            client = SuiClient(rpc_url=config.rpc_urls.get(kind), timeout=timeout)
        elif kind == ProviderKind.NEAR:
            client = NearClient(rpc_url=config.rpc_urls.get(kind), timeout=timeout)
        elif kind == ProviderKind.STARKNET:
            client = StarknetClient(rpc_url=config.rpc_urls.get(kind), timeout=timeout)
        elif kind == ProviderKind.MERCURY:
            client = MercuryClient(timeout=timeout)
        elif kind == ProviderKind.CIRCLE:
            client = CircleClient(timeout=timeout)
        else:
            raise ConfigurationError(f"No client implementation for {kind.value}")
        registry.register(kind, client)

    logger.debug(f"Registered {len(registry.kinds())} provider clients")
    return registry
