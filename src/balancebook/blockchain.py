"""
EVM Blockchain Integration

Reads native and ERC-20 balances from EVM-compatible networks through Web3.py:
Ethereum, Polygon, BSC, Arbitrum, Optimism, Avalanche C-Chain, Base and Core.
"""

import logging
from typing import Dict, List, Optional, Tuple

import requests
from web3 import Web3
from web3.exceptions import Web3Exception

from .errors import ProviderError, ProviderErrorKind, is_rate_limit_message
from .models import ProviderKind, RawBalance, from_base_units
from .registry import ProviderClient
from .rpc import kind_for_status

logger = logging.getLogger(__name__)

NATIVE_DECIMALS = 18

# Minimal ERC-20 ABI for balance queries
ERC20_ABI = [
    {
        "constant": True,
        "inputs": [{"name": "_owner", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "balance", "type": "uint256"}],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [],
        "name": "decimals",
        "outputs": [{"name": "", "type": "uint8"}],
        "type": "function",
    },
]

DEFAULT_RPC_URLS = {
    ProviderKind.ETHEREUM: "https://eth.llamarpc.com",
    ProviderKind.POLYGON: "https://polygon-rpc.com",
    ProviderKind.BSC: "https://bsc-dataseed.binance.org",
    ProviderKind.ARBITRUM: "https://arb1.arbitrum.io/rpc",
    ProviderKind.OPTIMISM: "https://mainnet.optimism.io",
    ProviderKind.AVALANCHE: "https://api.avax.network/ext/bc/C/rpc",
    ProviderKind.BASE: "https://mainnet.base.org",
    ProviderKind.CORE: "https://rpc.coredao.org",
}

# symbol -> (contract address, decimals)
KNOWN_TOKENS: Dict[ProviderKind, Dict[str, Tuple[str, int]]] = {
    ProviderKind.ETHEREUM: {
        "USDC": ("0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48", 6),
        "USDT": ("0xdAC17F958D2ee523a2206206994597C13D831ec7", 6),
        "DAI": ("0x6B175474E89094C44Da98b954EedeAC495271d0F", 18),
    },
    ProviderKind.POLYGON: {
        "USDC": ("0x3c499c542cEF5E3811e1192ce70d8cC03d5c3359", 6),
        "USDT": ("0xc2132D05D31c914a87C6611C10748AEb04B58e8F", 6),
        "DAI": ("0x8f3Cf7ad23Cd3CaDbD9735AFf958023239c6A063", 18),
    },
    ProviderKind.BSC: {
        "USDC": ("0x8AC76a51cc950d9822D68b83fE1Ad97B32Cd580d", 18),
        "USDT": ("0x55d398326f99059fF775485246999027B3197955", 18),
        "DAI": ("0x1AF3F329e8BE154074D8769D1FFa4eE058B1DBc3", 18),
    },
    ProviderKind.ARBITRUM: {
        "USDC": ("0xaf88d065e77c8cC2239327C5EDb3A432268e5831", 6),
        "USDT": ("0xFd086bC7CD5C481DCC9C85ebE478A1C0b69FCbb9", 6),
        "DAI": ("0xDA10009cBd5D07dd0CeCc66161FC93D7c9000da1", 18),
    },
    ProviderKind.OPTIMISM: {
        "USDC": ("0x0b2C639c533813f4Aa9D7837CAf62653d097Ff85", 6),
        "USDT": ("0x94b008aA00579c1307B0EF2c499aD98a8ce58e58", 6),
        "DAI": ("0xDA10009cBd5D07dd0CeCc66161FC93D7c9000da1", 18),
    },
    ProviderKind.AVALANCHE: {
        "USDC": ("0xB97EF9Ef8734C71904D8002F8b6Bc66Dd9c48a6E", 6),
        "USDT": ("0x9702230A8Ea53601f5cD2dc00fDBc13d4dF4A8c7", 6),
        "DAI": ("0xd586E7F844cEa2F87f50152665BCbc2C279D8d70", 18),
    },
    ProviderKind.BASE: {
        "USDC": ("0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913", 6),
        "DAI": ("0x50c5725949A6F0c72E6C4a641F24049A917DB0Cb", 18),
    },
    ProviderKind.CORE: {
        "USDT": ("0xa4151B2B3e269645181dCcF2D426cE75fcbDeca9", 6),
        "USDC": ("0x900101d06A7426441Ae63e9AB3B9b0F63Be145F1", 6),
    },
}


def map_web3_error(kind: ProviderKind, error: Exception) -> ProviderError:
    """Translate an exception raised during a Web3 call into a ProviderError."""
    message = str(error) or type(error).__name__
    if isinstance(error, requests.exceptions.Timeout):
        error_kind = ProviderErrorKind.TIMEOUT
    elif isinstance(error, requests.exceptions.HTTPError) and error.response is not None:
        error_kind = kind_for_status(error.response.status_code)
    elif isinstance(error, requests.exceptions.RequestException):
        error_kind = ProviderErrorKind.UNREACHABLE
    elif is_rate_limit_message(message):
        error_kind = ProviderErrorKind.RATE_LIMITED
    else:
        error_kind = ProviderErrorKind.MALFORMED_RESPONSE
    return ProviderError(error_kind, message, provider_kind=kind.value)


class EVMClient(ProviderClient):
    """Balance client for one EVM-compatible network."""

    def __init__(
        self,
        kind: ProviderKind,
        rpc_url: Optional[str] = None,
        timeout: float = 20.0,
        w3: Optional[Web3] = None,
        tokens: Optional[Dict[str, Tuple[str, int]]] = None,
    ):
        """
        Initialize EVM client.

        Args:
            kind: EVM provider kind
            rpc_url: RPC endpoint URL; defaults to a public endpoint for the network
            timeout: HTTP timeout for RPC requests in seconds
            w3: Pre-built Web3 instance (tests)
            tokens: Override of the known ERC-20 table (symbol -> (address, decimals))
        """
        if not kind.is_evm:
            raise ValueError(f"{kind.value} is not an EVM network")
        super().__init__(kind)
        self.rpc_url = rpc_url or DEFAULT_RPC_URLS[kind]
        self.timeout = timeout
        self.tokens = KNOWN_TOKENS.get(kind, {}) if tokens is None else tokens
        self._w3 = w3

    @property
    def w3(self) -> Web3:
        # No connectivity check here; the first call surfaces connection errors
        if self._w3 is None:
            self._w3 = Web3(Web3.HTTPProvider(self.rpc_url, request_kwargs={"timeout": self.timeout}))
        return self._w3

    def get_native_balance(self, address: str) -> int:
        """
        Get native token balance (ETH, BNB, POL, etc.) in wei.

        Args:
            address: Checksummed wallet address

        Returns:
            Balance in wei
        """
        return self.w3.eth.get_balance(address)

    def get_erc20_balance(self, token_address: str, wallet_address: str) -> int:
        """
        Get ERC-20 token balance.

        Args:
            token_address: Token contract address
            wallet_address: Checksummed wallet address

        Returns:
            Balance in the token's smallest unit
        """
        contract = self.w3.eth.contract(address=Web3.to_checksum_address(token_address), abi=ERC20_ABI)
        return contract.functions.balanceOf(wallet_address).call()

    def fetch_balances(self, identifier: str) -> List[RawBalance]:
        address = identifier.strip()
        if not Web3.is_address(address):
            raise ProviderError(
                ProviderErrorKind.INVALID_IDENTIFIER,
                f"Not an EVM address: {address!r}",
                provider_kind=self.kind.value,
            )
        checksum_address = Web3.to_checksum_address(address)

        try:
            native_raw = self.get_native_balance(checksum_address)
        except (Web3Exception, ValueError, requests.exceptions.RequestException) as e:
            raise map_web3_error(self.kind, e) from e

        balances = []
        if native_raw > 0:
            native = from_base_units(native_raw, NATIVE_DECIMALS)
            balances.append(self.balance(self.kind.native_symbol, native))
            logger.debug(f"    {self.kind.display_name} native: {native}")

        for symbol, (contract_address, decimals) in self.tokens.items():
            try:
                raw = self.get_erc20_balance(contract_address, checksum_address)
            except (Web3Exception, ValueError, requests.exceptions.RequestException) as e:
                logger.debug(f"    {self.kind.display_name} {symbol}: skipped ({e})")
                continue
            if raw > 0:
                amount = from_base_units(raw, decimals)
                balances.append(self.balance(symbol, amount))
                logger.debug(f"    {self.kind.display_name} {symbol}: {amount}")

        return balances
