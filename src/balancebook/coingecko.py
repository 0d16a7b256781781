"""
CoinGecko Price Provider

USD prices from the CoinGecko /simple/price endpoint. Uses the pro API when a
pro key is configured, otherwise the public API with an optional demo key.
"""

import logging
from decimal import Decimal
from typing import Dict, Optional

import requests

from .errors import PriceProviderError
from .models import coerce_decimal

logger = logging.getLogger(__name__)

PUBLIC_BASE = "https://api.coingecko.com/api/v3"
PRO_BASE = "https://pro-api.coingecko.com/api/v3"

COINGECKO_IDS = {
    "SOL": "solana",
    "ETH": "ethereum",
    "BTC": "bitcoin",
    "USDC": "usd-coin",
    "USDT": "tether",
    "DAI": "dai",
    "NEAR": "near",
    "APT": "aptos",
    "SUI": "sui",
    "AVAX": "avalanche-2",
    "MATIC": "matic-network",
    "BNB": "binancecoin",
    "MSOL": "msol",
    "STSOL": "lido-staked-sol",
    "JTO": "jito-governance-token",
    "CORE": "coredaoorg",
    "STRK": "starknet",
    "EURC": "euro-coin",
}


class CoinGeckoPriceProvider:
    """Price provider backed by the CoinGecko REST API."""

    name = "coingecko"

    def __init__(
        self,
        api_key: Optional[str] = None,
        pro_api_key: Optional[str] = None,
        timeout: float = 20.0,
        session: Optional[requests.Session] = None,
        coin_ids: Optional[Dict[str, str]] = None,
    ):
        self.api_key = api_key
        self.pro_api_key = pro_api_key
        self.timeout = timeout
        self.session = session or requests.Session()
        self.coin_ids = dict(COINGECKO_IDS)
        if coin_ids:
            self.coin_ids.update({k.upper(): v for k, v in coin_ids.items()})
        self.base_url = PRO_BASE if pro_api_key else PUBLIC_BASE

    def headers(self) -> Dict[str, str]:
        if self.pro_api_key:
            return {"x-cg-pro-api-key": self.pro_api_key}
        if self.api_key:
            return {"x-cg-demo-api-key": self.api_key}
        return {}

    def quote(self, symbol: str) -> Decimal:
        """
        Quote a symbol in USD.

        Raises:
            PriceProviderError: If the symbol is unmapped, the request fails or
                CoinGecko rate limited the call (rate_limited=True)
        """
        symbol = symbol.upper()
        coin_id = self.coin_ids.get(symbol)
        if coin_id is None:
            raise PriceProviderError(f"No CoinGecko id for {symbol}")

        try:
            response = self.session.get(
                f"{self.base_url}/simple/price",
                params={"ids": coin_id, "vs_currencies": "usd"},
                headers=self.headers(),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise PriceProviderError(f"CoinGecko request failed for {symbol}: {e}") from e

        if response.status_code == 429:
            raise PriceProviderError(f"CoinGecko rate limited ({symbol})", rate_limited=True)
        if response.status_code >= 400:
            raise PriceProviderError(f"CoinGecko HTTP {response.status_code} for {symbol}")

        try:
            payload = response.json(parse_float=Decimal)
            price = coerce_decimal(payload[coin_id]["usd"])
        except (ValueError, KeyError, TypeError) as e:
            raise PriceProviderError(f"Unexpected CoinGecko response for {symbol}: {e}") from e

        if price <= 0:
            raise PriceProviderError(f"CoinGecko returned non-positive price for {symbol}: {price}")
        logger.debug(f"CoinGecko {symbol} ({coin_id}): {price}")
        return price
