"""
Banking Integration

Balance clients for Mercury (USD bank accounts) and Circle (USDC/EURC business
accounts). API keys come from MERCURY_API_KEY and CIRCLE_API_KEY; a missing key
fails the account query with an 'unauthorized' error rather than at startup.
"""

import logging
import os
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional

import requests

from .errors import ProviderErrorKind
from .models import ProviderKind, RawBalance, coerce_decimal, exact_sum
from .registry import ProviderClient
from .rpc import HttpTransport, dig

logger = logging.getLogger(__name__)

MERCURY_API_BASE = "https://api.mercury.com/api/v1"
CIRCLE_API_BASE = "https://api.circle.com"

# Circle reports fiat currency codes for its stablecoin balances
CIRCLE_CURRENCY_SYMBOLS = {"USD": "USDC", "EUR": "EURC"}


@dataclass
class MercuryAccount:
    """Account listing entry from the Mercury API."""

    id: str
    name: str
    status: str
    account_type: str
    kind: str
    current_balance: Decimal
    available_balance: Decimal
    legal_business_name: str = ""


class _ApiKeyClient(ProviderClient):
    env_var = ""

    def __init__(
        self,
        kind: ProviderKind,
        api_key: Optional[str] = None,
        timeout: float = 20.0,
        session: Optional[requests.Session] = None,
    ):
        super().__init__(kind)
        self._api_key = api_key
        self.transport = HttpTransport(kind, timeout=timeout, session=session)

    @property
    def api_key(self) -> str:
        key = self._api_key or os.getenv(self.env_var)
        if not key:
            raise self.transport.error(ProviderErrorKind.UNAUTHORIZED, f"{self.env_var} environment variable not set")
        return key

    def _decimal(self, value, what: str) -> Decimal:
        try:
            return coerce_decimal(value)
        except ValueError:
            raise self.transport.error(ProviderErrorKind.MALFORMED_RESPONSE, f"Unparsable {what}: {value!r}") from None


class MercuryClient(_ApiKeyClient):
    """Mercury bank accounts; the identifier is the Mercury account id."""

    env_var = "MERCURY_API_KEY"

    def __init__(self, api_key: Optional[str] = None, timeout: float = 20.0, session=None):
        super().__init__(ProviderKind.MERCURY, api_key, timeout, session)

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer secret-token:{self.api_key}"}

    def fetch_balances(self, identifier: str) -> List[RawBalance]:
        account_id = identifier.strip()
        if not account_id or "/" in account_id:
            raise self.transport.error(ProviderErrorKind.INVALID_IDENTIFIER, f"Invalid Mercury account id: {identifier!r}")

        headers = self._headers()
        account = self.transport.get_json(f"{MERCURY_API_BASE}/account/{account_id}", headers=headers)
        current = self._decimal(dig(account, ["currentBalance"], self.transport, "currentBalance"), "currentBalance")
        if current < 0:
            raise self.transport.error(ProviderErrorKind.MALFORMED_RESPONSE, f"Negative balance {current} (overdrawn?)")
        if current == 0:
            return []
        return [self.balance("USD", current)]

    def list_accounts(self) -> List[MercuryAccount]:
        """
        List every account visible to the API key.

        Returns:
            List of MercuryAccount

        Raises:
            ProviderError: If the API call fails
        """
        body = self.transport.get_json(f"{MERCURY_API_BASE}/accounts", headers=self._headers())
        accounts = []
        for item in dig(body, ["accounts"], self.transport, "accounts"):
            accounts.append(
                MercuryAccount(
                    id=dig(item, ["id"], self.transport, "account id"),
                    name=item.get("name", ""),
                    status=item.get("status", ""),
                    account_type=item.get("type", ""),
                    kind=item.get("kind", ""),
                    current_balance=self._decimal(item.get("currentBalance", 0), "currentBalance"),
                    available_balance=self._decimal(item.get("availableBalance", 0), "availableBalance"),
                    legal_business_name=item.get("legalBusinessName", ""),
                )
            )
        logger.info(f"Mercury: found {len(accounts)} accounts")
        return accounts


class CircleClient(_ApiKeyClient):
    """Circle business account; the identifier is a label since the key scopes the account."""

    env_var = "CIRCLE_API_KEY"

    def __init__(self, api_key: Optional[str] = None, timeout: float = 20.0, session=None):
        super().__init__(ProviderKind.CIRCLE, api_key, timeout, session)

    def fetch_balances(self, identifier: str) -> List[RawBalance]:
        headers = {"Authorization": f"Bearer {self.api_key}"}
        body = self.transport.get_json(f"{CIRCLE_API_BASE}/v1/businessAccount/balances", headers=headers)
        available = dig(body, ["data", "available"], self.transport, "available balances")

        amounts: Dict[str, List[Decimal]] = {}
        for entry in available:
            currency = str(dig(entry, ["currency"], self.transport, "currency")).upper()
            amount = self._decimal(dig(entry, ["amount"], self.transport, "amount"), "amount")
            if amount == 0:
                continue
            symbol = CIRCLE_CURRENCY_SYMBOLS.get(currency, currency)
            amounts.setdefault(symbol, []).append(amount)

        return [self.balance(symbol, exact_sum(values)) for symbol, values in sorted(amounts.items())]
