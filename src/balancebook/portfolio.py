"""
Portfolio Aggregation

Folds per-account results into a PortfolioView grouped by company. All sums
are exact Decimal sums and every collection is sorted, so the same results
always serialize to the same JSON.
"""

import json
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

from .models import DEFAULT_COMPANY, AccountResult, EnrichedBalance, exact_sum, normalize_symbol


def _sort_key(text: str) -> Tuple[str, str]:
    return (text.lower(), text)


def _str_or_none(value: Optional[Decimal]) -> Optional[str]:
    return None if value is None else str(value)


@dataclass(frozen=True)
class AssetTotal:
    """Quantity of one symbol summed over a group. priced means every entry was priced."""

    symbol: str
    quantity: Decimal
    usd_value: Optional[Decimal]
    priced: bool

    def to_dict(self) -> Dict:
        return {
            "symbol": self.symbol,
            "quantity": str(self.quantity),
            "usd_value": _str_or_none(self.usd_value),
            "priced": self.priced,
        }


@dataclass(frozen=True)
class AccountSummary:
    name: str
    identifier: str
    provider_kind: str
    balances: Tuple[EnrichedBalance, ...]
    usd_total: Decimal

    def to_dict(self) -> Dict:
        return {
            "name": self.name,
            "identifier": self.identifier,
            "provider_kind": self.provider_kind,
            "usd_total": str(self.usd_total),
            "balances": [
                {
                    "symbol": b.asset_symbol,
                    "quantity": str(b.quantity),
                    "priced": b.priced,
                    "usd_price": _str_or_none(b.price.usd_price) if b.price else None,
                    "usd_value": _str_or_none(b.usd_value),
                    "price_source": b.price.source if b.price else None,
                    "pricing_error": b.pricing_error.value if b.pricing_error else None,
                }
                for b in self.balances
            ],
        }


@dataclass(frozen=True)
class CompanyGroup:
    company: str
    accounts: Tuple[AccountSummary, ...]
    assets: Tuple[AssetTotal, ...]
    subtotal: Decimal

    def to_dict(self) -> Dict:
        return {
            "company": self.company,
            "subtotal": str(self.subtotal),
            "assets": [a.to_dict() for a in self.assets],
            "accounts": [a.to_dict() for a in self.accounts],
        }


@dataclass(frozen=True)
class AccountFailure:
    account_name: str
    company: str
    provider_kind: str
    error_kind: str
    message: str

    def to_dict(self) -> Dict:
        return {
            "account": self.account_name,
            "company": self.company,
            "provider_kind": self.provider_kind,
            "error": self.error_kind,
            "message": self.message,
        }


@dataclass(frozen=True)
class PortfolioView:
    """Read-only portfolio snapshot handed to presentation layers."""

    groups: Tuple[CompanyGroup, ...]
    grand_total: Decimal
    failures: Tuple[AccountFailure, ...]
    pricing_skipped: bool = False

    @property
    def succeeded(self) -> int:
        return sum(len(g.accounts) for g in self.groups)

    @property
    def total(self) -> int:
        return self.succeeded + len(self.failures)

    def group(self, company: str) -> CompanyGroup:
        for group in self.groups:
            if group.company == company:
                return group
        raise KeyError(company)

    def summary_line(self) -> str:
        return f"{self.succeeded} of {self.total} accounts succeeded"

    def to_dict(self) -> Dict:
        return {
            "grand_total": str(self.grand_total),
            "pricing_skipped": self.pricing_skipped,
            "succeeded": self.succeeded,
            "total": self.total,
            "groups": [g.to_dict() for g in self.groups],
            "failures": [f.to_dict() for f in self.failures],
        }

    def to_json(self, indent: Optional[int] = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent, sort_keys=True, ensure_ascii=False)


def _asset_totals(balances: List[EnrichedBalance]) -> Tuple[AssetTotal, ...]:
    by_symbol: Dict[str, List[EnrichedBalance]] = {}
    for balance in balances:
        by_symbol.setdefault(normalize_symbol(balance.asset_symbol), []).append(balance)

    totals = []
    for symbol in sorted(by_symbol, key=_sort_key):
        entries = by_symbol[symbol]
        priced = [b.usd_value for b in entries if b.priced]
        totals.append(
            AssetTotal(
                symbol=symbol,
                quantity=exact_sum(b.quantity for b in entries),
                usd_value=exact_sum(priced) if priced else None,
                priced=len(priced) == len(entries),
            )
        )
    return tuple(totals)


def build_portfolio(results: Sequence[AccountResult], pricing_skipped: bool = False) -> PortfolioView:
    """
    Aggregate account results into a PortfolioView.

    Successful accounts are grouped by company (blank -> 'uncategorized') and
    kept even when they hold nothing. Failed accounts are listed in failures
    and contribute nothing to totals. Only priced balances count toward USD sums.

    Args:
        results: Output of the orchestrator, enriched or not
        pricing_skipped: Mark the view as built without prices

    Returns:
        PortfolioView
    """
    grouped: Dict[str, List[AccountResult]] = {}
    failures = []

    for result in results:
        account = result.account
        company = (account.company or "").strip() or DEFAULT_COMPANY
        if not result.ok:
            failures.append(
                AccountFailure(
                    account_name=account.name,
                    company=company,
                    provider_kind=account.provider_kind.value,
                    error_kind=result.error.kind.value,
                    message=result.error.message,
                )
            )
            continue
        grouped.setdefault(company, []).append(result)

    groups = []
    for company in sorted(grouped, key=_sort_key):
        summaries = []
        all_balances: List[EnrichedBalance] = []
        for result in sorted(grouped[company], key=lambda r: _sort_key(r.account.name)):
            balances = tuple(
                sorted(result.balances, key=lambda b: (_sort_key(b.asset_symbol), b.quantity))
            )
            all_balances.extend(balances)
            summaries.append(
                AccountSummary(
                    name=result.account.name,
                    identifier=result.account.identifier,
                    provider_kind=result.account.provider_kind.value,
                    balances=balances,
                    usd_total=exact_sum(b.usd_value for b in balances if b.priced),
                )
            )
        groups.append(
            CompanyGroup(
                company=company,
                accounts=tuple(summaries),
                assets=_asset_totals(all_balances),
                subtotal=exact_sum(s.usd_total for s in summaries),
            )
        )

    failures.sort(key=lambda f: (_sort_key(f.account_name), f.provider_kind))
    return PortfolioView(
        groups=tuple(groups),
        grand_total=exact_sum(g.subtotal for g in groups),
        failures=tuple(failures),
        pricing_skipped=pricing_skipped,
    )
