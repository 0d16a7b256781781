#!/usr/bin/env python3
"""
Manage Accounts

Add, list and remove tracked accounts in the address book.

Usage:
    # Wallet address (chain detected: 0x... is Ethereum, otherwise Solana)
    python scripts/manage_accounts.py add "Hot Wallet" 7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU --company "Acme"

    # Explicit chain (aliases like eth, arb, op, avax, apt, stark work too)
    python scripts/manage_accounts.py add "Treasury Base" 0x742d35Cc6634C0532925a3b844Bc9e7595f0bEb3 --chain base

    # Exchange credentials profile (reads BINANCE_MAIN_API_KEY / _API_SECRET)
    python scripts/manage_accounts.py add "Binance" BINANCE_MAIN --chain binance

    # Bank accounts
    python scripts/manage_accounts.py add-bank "Ops Checking" <mercury-account-id> --service mercury
    python scripts/manage_accounts.py setup-mercury --company "Acme"

    python scripts/manage_accounts.py list --company acme
    python scripts/manage_accounts.py remove "Hot Wallet"
"""

import argparse
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from balancebook.address_book import AddressBook
from balancebook.banking import MercuryClient
from balancebook.config import default_db_path
from balancebook.errors import AccountNotFoundError, ProviderError

# Load environment
load_dotenv()

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)


def cmd_add(book: AddressBook, args) -> int:
    try:
        account = book.add_account(args.name, args.identifier, args.chain, args.company or "")
    except ValueError as e:
        print(f"✗ {e}")
        return 1
    print(f"✓ Added {account.name} [{account.provider_kind.value}] {account.identifier} ({account.company})")
    return 0


def cmd_add_bank(book: AddressBook, args) -> int:
    try:
        account = book.add_bank_account(args.name, args.account_id, args.service, args.company or "")
    except ValueError as e:
        print(f"✗ {e}")
        return 1
    print(f"✓ Added {account.name} [{account.provider_kind.value}] {account.identifier}")
    return 0


def cmd_list(book: AddressBook, args) -> int:
    accounts = book.list_accounts(args.company)
    if not accounts:
        print("No accounts found.")
        return 0

    print(f"\n{'Name':24} {'Kind':10} {'Company':18} Identifier")
    print("-" * 90)
    for account in accounts:
        print(f"{account.name:24} {account.provider_kind.value:10} {account.company:18} {account.identifier}")
    print(f"\n{len(accounts)} account(s)")
    return 0


def cmd_remove(book: AddressBook, args) -> int:
    try:
        removed = book.remove(args.target)
    except AccountNotFoundError as e:
        print(f"✗ {e}")
        return 1
    print(f"✓ Removed {removed} account(s)")
    return 0


def cmd_setup_mercury(book: AddressBook, args) -> int:
    """Import every Mercury account visible to MERCURY_API_KEY."""
    try:
        mercury_accounts = MercuryClient().list_accounts()
    except ProviderError as e:
        print(f"✗ Could not list Mercury accounts: {e}")
        return 1

    existing = {a.identifier for a in book.load_all()}
    added = 0
    for mercury_account in mercury_accounts:
        if mercury_account.id in existing:
            print(f"  - {mercury_account.name}: already tracked")
            continue
        name = f"Mercury {mercury_account.name}".strip()
        try:
            book.add_bank_account(name, mercury_account.id, "mercury", args.company or "")
        except ValueError as e:
            print(f"  ✗ {name}: {e}")
            continue
        print(f"  ✓ {name} ({mercury_account.account_type}, ${mercury_account.current_balance:,.2f})")
        added += 1

    print(f"\nAdded {added} of {len(mercury_accounts)} Mercury accounts")
    return 0


def main():
    parser = argparse.ArgumentParser(description="Manage tracked accounts")
    parser.add_argument("--db", type=Path, default=None, help="Address book database (default: $BALANCEBOOK_DB)")
    sub = parser.add_subparsers(dest="command", required=True)

    add = sub.add_parser("add", help="Track a wallet address or exchange profile")
    add.add_argument("name")
    add.add_argument("identifier")
    add.add_argument("--chain", help="Provider kind or alias (detected when omitted)")
    add.add_argument("--company")

    add_bank = sub.add_parser("add-bank", help="Track a Mercury or Circle account")
    add_bank.add_argument("name")
    add_bank.add_argument("account_id")
    add_bank.add_argument("--service", required=True, choices=["mercury", "circle"])
    add_bank.add_argument("--company")

    list_cmd = sub.add_parser("list", help="List tracked accounts")
    list_cmd.add_argument("--company", help="Case-insensitive company filter")

    remove = sub.add_parser("remove", help="Remove by name or identifier")
    remove.add_argument("target")

    setup = sub.add_parser("setup-mercury", help="Import all Mercury accounts")
    setup.add_argument("--company")

    args = parser.parse_args()
    book = AddressBook(args.db or default_db_path())

    commands = {
        "add": cmd_add,
        "add-bank": cmd_add_bank,
        "list": cmd_list,
        "remove": cmd_remove,
        "setup-mercury": cmd_setup_mercury,
    }
    return commands[args.command](book, args)


if __name__ == "__main__":
    sys.exit(main())
