"""
Ledger Classifier
=================

Maps BAS account numbers to P&L categories. Shared by the SIE import
and the Fortnox voucher sync so both paths bucket accounts the same way.
"""

import string
from typing import Optional

from models import Category

# Checked in order, first match wins. Do not reorder: 7000-7699 must be
# tested before the broader cost ranges.
ACCOUNT_RANGES: tuple[tuple[int, int, Category], ...] = (
    (3000, 3999, Category.REVENUE),
    (4000, 4999, Category.COGS),
    (7000, 7699, Category.PERSONNEL),
    (6000, 6099, Category.MARKETING),
    (5000, 5999, Category.OFFICE),
    (6100, 6999, Category.OFFICE),
    (7700, 7999, Category.OTHER_OPEX),
)

# Financial income and expenses. Tracked beside the P&L categories, not as one.
FINANCIAL_RANGE = (8000, 8999)


def classify_account(account: int) -> Optional[Category]:
    """
    Classify an account number.

    Returns None for accounts outside every P&L range (balance sheet
    accounts, financial items). Financial items are picked up separately
    through is_financial_account; everything else is dropped.
    """
    for low, high, category in ACCOUNT_RANGES:
        if low <= account <= high:
            return category
    return None


def parse_account_number(value) -> Optional[int]:
    """
    Normalize an account reference from an API row or SIE token.

    Accepts ints and strings, ignoring anything but ASCII digits
    ("3010", " 3010 ", 3010). Returns None when no digits are present.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if value is None:
        return None
    digits = "".join(ch for ch in str(value) if ch in string.digits)
    return int(digits) if digits else None


def is_financial_account(account: int) -> bool:
    """True for financial income and expense accounts (8000-8999)."""
    return FINANCIAL_RANGE[0] <= account <= FINANCIAL_RANGE[1]
