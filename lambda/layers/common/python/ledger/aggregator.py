"""
Monthly Aggregator
==================

Folds classified ledger amounts into MonthlySummary totals.

Aggregation is a plain sum per category, so it does not depend on the
order of the input and partial aggregates (one per API page, say) can be
combined with MonthlySummary.combine into the same result a single pass
would give.
"""

from decimal import Decimal, InvalidOperation
from typing import Iterable, Optional

from models import Category, LedgerTransaction, MonthlySummary

from .classifier import classify_account, is_financial_account


def signed_amount(category: Category, amount: Decimal) -> Decimal:
    """
    Normalize a ledger amount for its category.

    Revenue accounts carry credit-negative balances, so they are negated
    to give positive revenue. Cost categories are debit-positive as-is.
    """
    if category is Category.REVENUE:
        return -amount
    return amount


def add_amount(summary: MonthlySummary, account: int, amount: Decimal) -> Optional[Category]:
    """
    Classify one ledger amount and add it to a summary.

    Returns the category used, or None if the account is unclassified.
    Financial items (8000-8999) land in financial_costs with the sign
    flipped, so net expense is negative the way budget documents store
    it. Other unclassified amounts are dropped.
    """
    category = classify_account(account)
    if category is None:
        if is_financial_account(account):
            summary.financial_costs -= amount
        return None
    summary.add(category, signed_amount(category, amount))
    return category


def aggregate_transactions(
    company: str,
    transactions: Iterable[LedgerTransaction],
) -> dict[tuple[int, int], MonthlySummary]:
    """
    Group transactions by calendar month and aggregate each month.

    Returns summaries keyed by (year, month), in chronological order.
    """
    summaries: dict[tuple[int, int], MonthlySummary] = {}

    for transaction in transactions:
        period = transaction.period
        summary = summaries.get(period)
        if summary is None:
            summary = MonthlySummary(company=company, year=period[0], month=period[1])
            summaries[period] = summary
        add_amount(summary, transaction.account, transaction.amount)

    return dict(sorted(summaries.items()))


def combine_summaries(
    first: dict[tuple[int, int], MonthlySummary],
    second: dict[tuple[int, int], MonthlySummary],
) -> dict[tuple[int, int], MonthlySummary]:
    """Merge two aggregation results, summing months present in both."""
    merged = dict(first)
    for period, summary in second.items():
        merged[period] = merged[period].combine(summary) if period in merged else summary
    return dict(sorted(merged.items()))


def parse_amount(value) -> Decimal:
    """
    Parse an API amount that may be a number or a localized string
    ("1 234,50"). Unparseable values count as zero.
    """
    if value is None or isinstance(value, bool):
        return Decimal("0")
    if isinstance(value, (int, Decimal)):
        return Decimal(value)
    if isinstance(value, float):
        return Decimal(str(value))
    cleaned = "".join(str(value).split()).replace(",", ".")
    try:
        amount = Decimal(cleaned)
    except InvalidOperation:
        return Decimal("0")
    return amount if amount.is_finite() else Decimal("0")
