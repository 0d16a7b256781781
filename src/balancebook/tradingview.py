"""
TradingView Price Provider

Fetches USD prices from TradingView symbol overviews.

Requirements:
    pip install --upgrade --no-cache tradingview-scraper

Usage:
    from balancebook.tradingview import TradingViewPriceProvider

    price = TradingViewPriceProvider().quote("SOL")
"""

import logging
from decimal import Decimal
from typing import Callable, Dict, List, Optional

from .errors import PriceProviderError, is_rate_limit_message
from .models import coerce_decimal

logger = logging.getLogger(__name__)

# Symbols whose TradingView ticker does not follow the CRYPTO:<SYM>USD pattern
DEFAULT_SYMBOL_MAP = {
    "MATIC": "CRYPTO:POLUSD",
    "STSOL": "CRYPTO:STSOLUSD",
    "EURC": "FX_IDC:EURUSD",
}


def _default_overview():
    from tradingview_scraper.symbols.overview import Overview

    return Overview()


class TradingViewPriceProvider:
    """Price provider backed by tradingview-scraper."""

    name = "tradingview"

    def __init__(
        self,
        symbol_map: Optional[Dict[str, str]] = None,
        overview_factory: Optional[Callable] = None,
    ):
        """
        Args:
            symbol_map: Extra symbol -> 'VENUE:TICKER' overrides
            overview_factory: Builds the Overview client (tests)
        """
        self.symbol_map = dict(DEFAULT_SYMBOL_MAP)
        if symbol_map:
            self.symbol_map.update({k.upper(): v for k, v in symbol_map.items()})
        self.overview_factory = overview_factory or _default_overview

    def candidates(self, symbol: str) -> List[str]:
        """TradingView tickers to try for a symbol, most specific first."""
        symbol = symbol.upper()
        tickers = []
        if symbol in self.symbol_map:
            tickers.append(self.symbol_map[symbol])
        for ticker in (f"CRYPTO:{symbol}USD", f"BINANCE:{symbol}USDT"):
            if ticker not in tickers:
                tickers.append(ticker)
        return tickers

    def fetch_close(self, ticker: str) -> Optional[Decimal]:
        """
        Fetch the last close for a TradingView ticker.

        Args:
            ticker: TradingView symbol in format 'VENUE:TICKER' (e.g., 'CRYPTO:SOLUSD')

        Returns:
            Close price, or None if TradingView has no data for the ticker

        Raises:
            PriceProviderError: If TradingView rejected the request as rate limited
        """
        ov = self.overview_factory()
        data = ov.get_symbol_overview(ticker)

        if data and data.get("status") == "failed":
            error = str(data.get("error", ""))
            if is_rate_limit_message(error) or "429" in error:
                raise PriceProviderError(f"TradingView rate limited: {error}", rate_limited=True)
            logger.debug(f"No price data for {ticker}: {error}")
            return None

        if data and "data" in data and data["data"] and data["data"].get("close") is not None:
            try:
                price = coerce_decimal(data["data"]["close"])
            except ValueError:
                return None
            return price if price > 0 else None

        logger.debug(f"No price data for {ticker}")
        return None

    def quote(self, symbol: str) -> Decimal:
        """
        Quote a symbol in USD.

        Raises:
            PriceProviderError: If no candidate ticker produced a price
        """
        for ticker in self.candidates(symbol):
            try:
                price = self.fetch_close(ticker)
            except PriceProviderError:
                raise
            except Exception as e:
                message = str(e)
                if is_rate_limit_message(message):
                    raise PriceProviderError(f"TradingView rate limited: {message}", rate_limited=True) from e
                logger.debug(f"Error fetching {ticker}: {e}")
                continue
            if price is not None:
                logger.debug(f"Fetched {ticker}: {price}")
                return price
        raise PriceProviderError(f"No TradingView price for {symbol}")
