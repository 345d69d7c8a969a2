"""
Budget Merge
============

Copies imported monthly actuals into a company's budget document
(budget_data.data). The budget document keys months by Swedish
abbreviations and uses camelCase field names.
"""

import copy
from decimal import Decimal
from typing import Iterable

from models import MonthlySummary

MONTH_KEYS = ("jan", "feb", "mar", "apr", "maj", "jun", "jul", "aug", "sep", "okt", "nov", "dec")

EMPTY_MONTH = {
    "revenue": 0,
    "cogs": 0,
    "grossProfit": 0,
    "personnel": 0,
    "marketing": 0,
    "office": 0,
    "otherOpex": 0,
    "depreciation": 0,
    "financialCosts": 0,
    "ebit": 0,
    "ebitPercent": 0,
    "resultAfterFinancial": 0,
}


def merge_into_budget(
    budget: dict,
    summaries: Iterable[MonthlySummary],
    overwrite_revenue: bool = True,
    overwrite_costs: bool = True,
) -> dict:
    """
    Return a copy of `budget` with imported months applied.

    Only the months present in `summaries` are touched. Derived fields
    (ebit, ebitPercent, resultAfterFinancial) are recomputed for them.
    """
    merged = copy.deepcopy(budget) if budget else {}
    monthly = merged.setdefault("monthly", {})

    for key in MONTH_KEYS:
        if key not in monthly:
            monthly[key] = dict(EMPTY_MONTH)

    for summary in summaries:
        month = monthly[MONTH_KEYS[summary.month - 1]]

        if overwrite_revenue:
            month["revenue"] = _number(summary.revenue)
            month["cogs"] = _number(summary.cogs)
            month["grossProfit"] = _number(summary.gross_profit)

        if overwrite_costs:
            month["personnel"] = _number(summary.personnel)
            month["marketing"] = _number(summary.marketing)
            month["office"] = _number(summary.office)
            month["otherOpex"] = _number(summary.other_opex)
            month["financialCosts"] = _number(summary.financial_costs)

        _recalculate(month)

    return merged


def _recalculate(month: dict) -> None:
    total_opex = sum(
        month.get(name) or 0
        for name in ("personnel", "marketing", "office", "otherOpex", "depreciation")
    )
    month["ebit"] = (month.get("grossProfit") or 0) - total_opex
    revenue = month.get("revenue") or 0
    month["ebitPercent"] = (month["ebit"] / revenue) * 100 if revenue > 0 else 0
    # financialCosts is negative for a net expense
    month["resultAfterFinancial"] = month["ebit"] + (month.get("financialCosts") or 0)


def _number(value: Decimal) -> float:
    return float(value)
