"""
Ledger Transaction Data Model
=============================

Account-level ledger rows and the fixed set of P&L categories
they are classified into.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum


class Category(str, Enum):
    """P&L bucket. Values double as the summary column names."""
    REVENUE = "revenue"
    COGS = "cogs"
    PERSONNEL = "personnel"
    MARKETING = "marketing"
    OFFICE = "office"
    OTHER_OPEX = "other_opex"


@dataclass(frozen=True)
class LedgerTransaction:
    """
    A single dated ledger line.

    Amounts keep the ledger sign: debit positive, credit negative.
    """

    account: int
    amount: Decimal
    date: date

    @property
    def period(self) -> tuple[int, int]:
        """(year, month) the transaction belongs to."""
        return self.date.year, self.date.month
