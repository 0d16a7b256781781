"""
Non-EVM Chain Clients

Balance clients for Solana, Aptos, Sui, NEAR and Starknet. All of them speak
JSON over HTTP through HttpTransport; amounts arrive as base-unit integers and
are converted to Decimal exactly.
"""

import logging
import re
from decimal import Decimal
from typing import Dict, List, Optional

import requests

from .errors import ProviderError, ProviderErrorKind
from .models import ProviderKind, RawBalance, exact_sum, from_base_units
from .registry import ProviderClient
from .rpc import HttpTransport, dig

logger = logging.getLogger(__name__)

_HEX_RE = re.compile(r"^[0-9a-fA-F]+$")
_BASE58_RE = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{32,44}$")


def _is_hex(value: str) -> bool:
    return bool(_HEX_RE.match(value))


def _parse_int(transport: HttpTransport, value, what: str, base: int = 10) -> int:
    try:
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        return int(str(value), base)
    except (TypeError, ValueError):
        raise transport.error(ProviderErrorKind.MALFORMED_RESPONSE, f"Unparsable {what}: {value!r}") from None


class _HttpChainClient(ProviderClient):
    """Shared wiring for clients backed by a single HTTP endpoint."""

    default_url = ""

    def __init__(
        self,
        kind: ProviderKind,
        rpc_url: Optional[str] = None,
        timeout: float = 20.0,
        session: Optional[requests.Session] = None,
    ):
        super().__init__(kind)
        self.rpc_url = rpc_url or self.default_url
        self.transport = HttpTransport(kind, timeout=timeout, session=session)

    def invalid(self, message: str) -> ProviderError:
        return self.transport.error(ProviderErrorKind.INVALID_IDENTIFIER, message)


# =============================================================================
# SOLANA
# =============================================================================

SPL_TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
LAMPORTS_DECIMALS = 9

KNOWN_SPL_MINTS = {
    "So11111111111111111111111111111111111111112": "SOL",
    "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v": "USDC",
    "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB": "USDT",
    "mSoLzYCxHdYgdzU16g5QSh3i5K3z3KZK7ytfqcJm7So": "MSOL",
    "7dHbWXmci3dT8UFYWYZweBLXgycu7Y3iL6trKn1Y7ARj": "stSOL",
    "SW1TCHLmRGTfW5xZknqQdpdarB8PD95sJYWpNp9TbFx": "SWTCH",
    "jtojtomepa8beP8AuQc6eXt5FriJwfFMwQx2v2f9mCL": "JTO",
    "GP2vH92rxSHWm2VzttZBZdeFnv9LyfFJYvPrAet6pump": "RAT",
}


class SolanaClient(_HttpChainClient):
    """SOL plus SPL token balances via the Solana JSON-RPC API."""

    default_url = "https://api.mainnet-beta.solana.com"

    def __init__(self, rpc_url: Optional[str] = None, timeout: float = 20.0, session=None):
        super().__init__(ProviderKind.SOLANA, rpc_url, timeout, session)

    def fetch_balances(self, identifier: str) -> List[RawBalance]:
        address = identifier.strip()
        if not _BASE58_RE.match(address):
            raise self.invalid(f"Not a Solana address: {address!r}")

        result = self.transport.rpc(self.rpc_url, "getBalance", [address, {"commitment": "confirmed"}])
        lamports = _parse_int(self.transport, dig(result, ["value"], self.transport, "lamports"), "lamports")

        balances = []
        if lamports > 0:
            balances.append(self.balance("SOL", from_base_units(lamports, LAMPORTS_DECIMALS)))

        token_result = self.transport.rpc(
            self.rpc_url,
            "getTokenAccountsByOwner",
            [address, {"programId": SPL_TOKEN_PROGRAM_ID}, {"encoding": "jsonParsed"}],
        )
        accounts = dig(token_result, ["value"], self.transport, "token accounts")
        if not isinstance(accounts, list):
            raise self.transport.error(ProviderErrorKind.MALFORMED_RESPONSE, "token accounts is not a list")

        # The same mint can sit in several token accounts
        by_mint: Dict[str, List[Decimal]] = {}
        for entry in accounts:
            info = dig(entry, ["account", "data", "parsed", "info"], self.transport, "token account info")
            mint = dig(info, ["mint"], self.transport, "mint")
            amount_raw = _parse_int(self.transport, dig(info, ["tokenAmount", "amount"], self.transport, "amount"), "amount")
            decimals = _parse_int(
                self.transport, dig(info, ["tokenAmount", "decimals"], self.transport, "decimals"), "decimals"
            )
            if amount_raw == 0:
                continue
            by_mint.setdefault(mint, []).append(from_base_units(amount_raw, decimals))

        for mint in sorted(by_mint):
            symbol = KNOWN_SPL_MINTS.get(mint, mint)
            balances.append(self.balance(symbol, exact_sum(by_mint[mint])))
            logger.debug(f"    Solana {symbol}: {balances[-1].quantity}")

        return balances


# =============================================================================
# APTOS
# =============================================================================

APT_DECIMALS = 8


class AptosClient(_HttpChainClient):
    """APT balance via the fullnode view-function REST endpoint."""

    default_url = "https://fullnode.mainnet.aptoslabs.com/v1"

    def __init__(self, rpc_url: Optional[str] = None, timeout: float = 20.0, session=None):
        super().__init__(ProviderKind.APTOS, rpc_url, timeout, session)

    def normalize_address(self, identifier: str) -> str:
        address = identifier.strip()
        body = address[2:] if address.lower().startswith("0x") else address
        if not body or len(body) > 64 or not _is_hex(body):
            raise self.invalid(f"Not an Aptos address: {identifier!r}")
        return "0x" + body

    def fetch_balances(self, identifier: str) -> List[RawBalance]:
        address = self.normalize_address(identifier)
        payload = {
            "function": "0x1::coin::balance",
            "type_arguments": ["0x1::aptos_coin::AptosCoin"],
            "arguments": [address],
        }
        try:
            result = self.transport.post_json(f"{self.rpc_url.rstrip('/')}/view", payload)
        except ProviderError as e:
            # Accounts that never registered the coin store come back as a client error
            if e.kind == ProviderErrorKind.INVALID_IDENTIFIER:
                logger.debug(f"    Aptos {address}: no coin store, treating as zero ({e.message})")
                return []
            raise

        if not isinstance(result, list) or not result:
            raise self.transport.error(ProviderErrorKind.MALFORMED_RESPONSE, "Empty view result")
        octas = _parse_int(self.transport, result[0], "APT balance")
        if octas == 0:
            return []
        return [self.balance("APT", from_base_units(octas, APT_DECIMALS))]


# =============================================================================
# SUI
# =============================================================================

SUI_DECIMALS = 9


class SuiClient(_HttpChainClient):
    """SUI balance via suix_getBalance."""

    default_url = "https://fullnode.mainnet.sui.io:443"

    def __init__(self, rpc_url: Optional[str] = None, timeout: float = 20.0, session=None):
        super().__init__(ProviderKind.SUI, rpc_url, timeout, session)

    def fetch_balances(self, identifier: str) -> List[RawBalance]:
        address = identifier.strip()
        if not address.startswith("0x") or not _is_hex(address[2:]):
            raise self.invalid(f"Sui address must be 0x-prefixed hex: {address!r}")

        result = self.transport.rpc(self.rpc_url, "suix_getBalance", [address, "0x2::sui::SUI"])
        mist = _parse_int(self.transport, dig(result, ["totalBalance"], self.transport, "totalBalance"), "totalBalance")
        if mist == 0:
            return []
        return [self.balance("SUI", from_base_units(mist, SUI_DECIMALS))]


# =============================================================================
# NEAR
# =============================================================================

YOCTO_DECIMALS = 24


class NearClient(_HttpChainClient):
    """NEAR balance via the view_account query."""

    default_url = "https://rpc.mainnet.near.org"

    def __init__(self, rpc_url: Optional[str] = None, timeout: float = 20.0, session=None):
        super().__init__(ProviderKind.NEAR, rpc_url, timeout, session)

    def fetch_balances(self, identifier: str) -> List[RawBalance]:
        account_id = identifier.strip()
        if not account_id:
            raise self.invalid("Empty NEAR account id")

        try:
            result = self.transport.rpc(
                self.rpc_url,
                "query",
                {"request_type": "view_account", "finality": "final", "account_id": account_id},
            )
        except ProviderError as e:
            if "unknown_account" in e.message.lower() or "unknown account" in e.message.lower():
                raise self.invalid(f"Unknown NEAR account {account_id!r}") from None
            raise

        yocto = _parse_int(self.transport, dig(result, ["amount"], self.transport, "amount"), "amount")
        if yocto == 0:
            return []
        return [self.balance("NEAR", from_base_units(yocto, YOCTO_DECIMALS))]


# =============================================================================
# STARKNET
# =============================================================================

STARKNET_ETH_CONTRACT = "0x049d36570d4e46f48e99674bd3fcc84644ddd6b96f7c741b1562b82f9e004dc7"
BALANCE_OF_SELECTOR = "0x2e4263afad30923c891518314c3c95dbe830a16874e8abc5777a9a20b54c76e"
STARKNET_ETH_DECIMALS = 18


class StarknetClient(_HttpChainClient):
    """ETH balance of a Starknet account, read from the ETH ERC-20 contract."""

    default_url = "https://free-rpc.nethermind.io/mainnet-juno"

    def __init__(self, rpc_url: Optional[str] = None, timeout: float = 20.0, session=None):
        super().__init__(ProviderKind.STARKNET, rpc_url, timeout, session)

    def fetch_balances(self, identifier: str) -> List[RawBalance]:
        address = identifier.strip()
        if not address.startswith("0x") or not _is_hex(address[2:]):
            raise self.invalid(f"Starknet address must be 0x-prefixed hex: {address!r}")

        result = self.transport.rpc(
            self.rpc_url,
            "starknet_call",
            {
                "request": {
                    "contract_address": STARKNET_ETH_CONTRACT,
                    "entry_point_selector": BALANCE_OF_SELECTOR,
                    "calldata": [address],
                },
                "block_id": "latest",
            },
        )
        if not isinstance(result, list) or len(result) < 2:
            raise self.transport.error(ProviderErrorKind.MALFORMED_RESPONSE, f"Expected u256 [low, high], got {result!r}")

        # u256 is returned as two felts
        low = _parse_int(self.transport, result[0], "u256 low", base=16)
        high = _parse_int(self.transport, result[1], "u256 high", base=16)
        wei = low + (high << 128)
        if wei == 0:
            return []
        return [self.balance("ETH", from_base_units(wei, STARKNET_ETH_DECIMALS))]
