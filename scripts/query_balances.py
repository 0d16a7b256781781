#!/usr/bin/env python3
"""
Query Balances

Queries every tracked account concurrently, prices the balances in USD and
prints a portfolio summary grouped by company.

Usage:
    # All accounts
    python scripts/query_balances.py

    # One account, raw quantities only
    python scripts/query_balances.py --name "Hot Wallet" --no-prices

    # Machine-readable output
    python scripts/query_balances.py --json > portfolio.json

Exit codes:
    0 - success (including partial failure)
    1 - configuration error
    2 - every account failed

Example cron (hourly):
    0 * * * * cd /path && python scripts/query_balances.py --json > data/latest.json
"""

import argparse
import logging
import sys
from dataclasses import replace
from datetime import datetime
from pathlib import Path

from dotenv import load_dotenv

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from balancebook.address_book import AddressBook
from balancebook.config import QueryConfig, default_db_path
from balancebook.errors import AccountNotFoundError, ConfigurationError
from balancebook.models import ProviderKind
from balancebook.portfolio import PortfolioView
from balancebook.query import query_account, run_query_cycle
from balancebook.registry import build_registry

# Load environment
load_dotenv()


def setup_logging(log_dir: Path, quiet: bool = False):
    """Setup logging to both file and console."""
    log_dir.mkdir(parents=True, exist_ok=True)

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    log_file = log_dir / f"query_{datetime.now().strftime('%Y%m')}.log"
    file_handler = logging.FileHandler(log_file)
    file_handler.setLevel(logging.INFO)
    file_handler.setFormatter(formatter)

    # Console goes to stderr so --json output stays clean
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging.WARNING if quiet else logging.INFO)
    console_handler.setFormatter(formatter)

    logger = logging.getLogger()
    logger.setLevel(logging.INFO)
    logger.addHandler(file_handler)
    logger.addHandler(console_handler)

    return logger


def format_usd(value) -> str:
    return "-" if value is None else f"${value:,.2f}"


def print_portfolio(view: PortfolioView):
    """Print the portfolio as a plain-text report."""
    print("\n" + "=" * 70)
    print("PORTFOLIO")
    print("=" * 70)

    for group in view.groups:
        print(f"\n{group.company}  ({format_usd(group.subtotal)})")
        print("-" * 70)
        for account in group.accounts:
            print(f"  {account.name} [{account.provider_kind}]")
            if not account.balances:
                print("    (no balances)")
            for balance in account.balances:
                price_note = ""
                if balance.pricing_error:
                    price_note = f"  ! {balance.pricing_error.value}"
                print(
                    f"    {balance.asset_symbol:10} {balance.quantity:>24}  "
                    f"{format_usd(balance.usd_value):>16}{price_note}"
                )
        print("  Totals by asset:")
        for asset in group.assets:
            marker = "" if asset.priced else "  (partially priced)" if asset.usd_value is not None else "  (unpriced)"
            print(f"    {asset.symbol:10} {asset.quantity:>24}  {format_usd(asset.usd_value):>16}{marker}")

    if view.failures:
        print("\nFAILED ACCOUNTS")
        print("-" * 70)
        for failure in view.failures:
            print(f"  ✗ {failure.account_name} [{failure.provider_kind}] {failure.error_kind}: {failure.message}")

    print("\n" + "=" * 70)
    if view.pricing_skipped:
        print("Prices skipped (--no-prices)")
    else:
        print(f"GRAND TOTAL: {format_usd(view.grand_total)}")
    print(view.summary_line())
    print("=" * 70)


def main():
    parser = argparse.ArgumentParser(description="Query balances for all tracked accounts")
    parser.add_argument("--db", type=Path, default=None, help="Address book database (default: $BALANCEBOOK_DB)")
    parser.add_argument("--name", help="Query a single account by name")
    parser.add_argument("--no-prices", action="store_true", help="Skip USD price lookups")
    parser.add_argument("--json", action="store_true", help="Print the portfolio as JSON")
    parser.add_argument("--rpc-url", help="Override the RPC URL for every chain in this run")
    parser.add_argument("--log-dir", type=Path, default=Path(__file__).parent.parent / "logs")
    args = parser.parse_args()

    logger = setup_logging(args.log_dir, quiet=args.json)

    try:
        config = QueryConfig.from_env()
        if args.no_prices:
            config = replace(config, skip_pricing=True)
        if args.rpc_url:
            overrides = {kind: args.rpc_url for kind in ProviderKind if not (kind.is_bank or kind.is_exchange)}
            config = replace(config, rpc_urls=overrides)

        book = AddressBook(args.db or default_db_path())
        if args.name:
            view = query_account(args.name, book, build_registry(config), config)
        else:
            accounts = book.load_all()
            if not accounts:
                logger.warning("No accounts in the address book. Add some with scripts/manage_accounts.py")
                return 0

            kinds = {account.provider_kind for account in accounts}
            registry = build_registry(config, kinds=kinds)
            view = run_query_cycle(accounts, registry, config)

    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 1
    except AccountNotFoundError as e:
        logger.error(str(e))
        return 1

    if args.json:
        print(view.to_json())
    else:
        print_portfolio(view)

    if view.total and view.succeeded == 0:
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
