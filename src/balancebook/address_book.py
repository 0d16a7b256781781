"""
Address Book

SQLite store of tracked accounts (wallet addresses, bank accounts and exchange
credential profiles). The schema is created on first use.
"""

import logging
import re
import sqlite3
from pathlib import Path
from typing import List, Optional, Union

from .errors import AccountNotFoundError, ConfigurationError
from .models import BANK_KINDS, DEFAULT_COMPANY, ProviderKind, TrackedAccount

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS accounts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL UNIQUE,
    identifier TEXT NOT NULL,
    provider_kind TEXT NOT NULL,
    company TEXT NOT NULL DEFAULT '',
    created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
)
"""

_EVM_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


def detect_provider_kind(identifier: str) -> ProviderKind:
    """Guess the chain of a bare address: 0x + 40 hex is Ethereum, anything else Solana."""
    if _EVM_ADDRESS_RE.match(identifier.strip()):
        return ProviderKind.ETHEREUM
    return ProviderKind.SOLANA


class AddressBook:
    """Tracked accounts persisted in a SQLite database."""

    def __init__(self, db_path: Union[str, Path]):
        self.db_path = Path(db_path)

    def _connect(self) -> sqlite3.Connection:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        conn.execute(SCHEMA)
        return conn

    @staticmethod
    def _row_to_account(row: sqlite3.Row) -> TrackedAccount:
        try:
            kind = ProviderKind.parse(row["provider_kind"])
        except ValueError:
            raise ConfigurationError(
                f"Account {row['name']!r} has unknown provider kind {row['provider_kind']!r}"
            ) from None
        return TrackedAccount(
            name=row["name"].strip(),
            identifier=row["identifier"].strip(),
            provider_kind=kind,
            company=row["company"] or DEFAULT_COMPANY,
        )

    def load_all(self) -> List[TrackedAccount]:
        """
        Load every tracked account in insertion order.

        Raises:
            ConfigurationError: If a stored provider kind is not recognised
        """
        conn = self._connect()
        try:
            cursor = conn.execute("SELECT name, identifier, provider_kind, company FROM accounts ORDER BY id")
            return [self._row_to_account(row) for row in cursor.fetchall()]
        finally:
            conn.close()

    def find(self, name: str) -> Optional[TrackedAccount]:
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT name, identifier, provider_kind, company FROM accounts WHERE name = ?",
                (name.strip(),),
            ).fetchone()
            return self._row_to_account(row) if row else None
        finally:
            conn.close()

    def list_accounts(self, company_filter: Optional[str] = None) -> List[TrackedAccount]:
        """All accounts, optionally only those whose company contains company_filter (case-insensitive)."""
        accounts = self.load_all()
        if company_filter:
            needle = company_filter.strip().lower()
            accounts = [a for a in accounts if needle in a.company.lower()]
        return accounts

    def add_account(
        self,
        name: str,
        identifier: str,
        provider_kind: Optional[Union[ProviderKind, str]] = None,
        company: str = "",
    ) -> TrackedAccount:
        """
        Add a tracked account.

        Args:
            name: Unique display name
            identifier: Address, bank account id or exchange credentials profile
            provider_kind: Kind or alias; detected from the address when omitted
            company: Optional group tag

        Returns:
            The stored TrackedAccount

        Raises:
            ValueError: If the name is taken or an input is blank or unknown
        """
        name = name.strip()
        identifier = identifier.strip()
        company = (company or "").strip()
        if not name:
            raise ValueError("Account name must not be empty")
        if not identifier:
            raise ValueError("Identifier must not be empty")

        if provider_kind is None:
            kind = detect_provider_kind(identifier)
        elif isinstance(provider_kind, ProviderKind):
            kind = provider_kind
        else:
            kind = ProviderKind.parse(provider_kind)

        conn = self._connect()
        try:
            conn.execute(
                "INSERT INTO accounts (name, identifier, provider_kind, company) VALUES (?, ?, ?, ?)",
                (name, identifier, kind.value, company),
            )
            conn.commit()
        except sqlite3.IntegrityError:
            raise ValueError(f"An account named {name!r} already exists") from None
        finally:
            conn.close()

        logger.info(f"✓ Added {name} ({kind.display_name}): {identifier}")
        return TrackedAccount(name=name, identifier=identifier, provider_kind=kind, company=company)

    def add_bank_account(self, name: str, account_id: str, service: str, company: str = "") -> TrackedAccount:
        """
        Add a Mercury or Circle account.

        Raises:
            ValueError: If the service is not a banking provider
        """
        kind = ProviderKind.parse(service)
        if kind not in BANK_KINDS:
            raise ValueError(f"Unsupported banking service {service!r} (expected mercury or circle)")
        return self.add_account(name, account_id, kind, company)

    def remove(self, name_or_identifier: str) -> int:
        """
        Remove accounts matching a name or an identifier.

        Returns:
            Number of accounts removed

        Raises:
            AccountNotFoundError: If nothing matched
        """
        key = name_or_identifier.strip()
        conn = self._connect()
        try:
            cursor = conn.execute("DELETE FROM accounts WHERE name = ? OR identifier = ?", (key, key))
            conn.commit()
            removed = cursor.rowcount
        finally:
            conn.close()

        if removed == 0:
            raise AccountNotFoundError(f"No account with name or identifier {key!r}")
        logger.info(f"✓ Removed {removed} account(s) matching {key}")
        return removed
