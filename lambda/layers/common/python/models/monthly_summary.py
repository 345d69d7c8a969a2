"""
Monthly Summary Data Model
==========================

Per-month category totals for one company.
Maps to the fortnox_historical_data database table.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from .ledger_transaction import Category

ZERO = Decimal("0")

AMOUNT_FIELDS = tuple(c.value for c in Category)

# Everything persisted per month: the P&L categories plus net financial items
STORED_AMOUNT_FIELDS = AMOUNT_FIELDS + ("financial_costs",)


@dataclass
class MonthlySummary:
    """
    Category totals for (company, year, month).

    gross_profit is derived from revenue and cogs and is never stored
    independently on the object. financial_costs holds accounts
    8000-8999 and stays out of gross profit.
    """

    company: str
    year: int
    month: int

    revenue: Decimal = ZERO
    cogs: Decimal = ZERO
    personnel: Decimal = ZERO
    marketing: Decimal = ZERO
    office: Decimal = ZERO
    other_opex: Decimal = ZERO
    financial_costs: Decimal = ZERO

    updated_at: Optional[datetime] = field(default=None, compare=False)

    def __post_init__(self):
        if not 1 <= self.month <= 12:
            raise ValueError(f"month must be 1..12, got {self.month}")

    @property
    def key(self) -> tuple[str, int, int]:
        return self.company, self.year, self.month

    @property
    def gross_profit(self) -> Decimal:
        return self.revenue - self.cogs

    @property
    def is_zero(self) -> bool:
        """True when every stored total is zero."""
        return all(getattr(self, name) == 0 for name in STORED_AMOUNT_FIELDS)

    def amount_for(self, category: Category) -> Decimal:
        return getattr(self, category.value)

    def add(self, category: Category, amount: Decimal) -> None:
        """Add an already sign-normalized amount to a category."""
        setattr(self, category.value, getattr(self, category.value) + amount)

    def combine(self, other: "MonthlySummary") -> "MonthlySummary":
        """Field-by-field sum of two summaries for the same key."""
        if other.key != self.key:
            raise ValueError(f"Cannot combine summaries for {self.key} and {other.key}")
        totals = {name: getattr(self, name) + getattr(other, name) for name in STORED_AMOUNT_FIELDS}
        return replace(self, updated_at=None, **totals)

    @classmethod
    def from_dict(cls, data: dict) -> "MonthlySummary":
        """Create MonthlySummary from database row dictionary."""
        return cls(
            company=data.get("company", ""),
            year=int(data["year"]),
            month=int(data["month"]),
            updated_at=cls._parse_datetime(data.get("updated_at")),
            **{name: cls._parse_amount(data.get(name)) for name in STORED_AMOUNT_FIELDS},
        )

    def to_row(self) -> dict:
        """Convert to a row for the upsert keyed by (company, year, month)."""
        row: dict[str, Any] = {
            "company": self.company,
            "year": self.year,
            "month": self.month,
        }
        for name in STORED_AMOUNT_FIELDS:
            row[name] = float(getattr(self, name))
        row["gross_profit"] = float(self.gross_profit)
        if self.updated_at:
            row["updated_at"] = self.updated_at.isoformat()
        return row

    @staticmethod
    def _parse_amount(value: Any) -> Decimal:
        if value is None:
            return ZERO
        try:
            return Decimal(str(value))
        except InvalidOperation:
            return ZERO

    @staticmethod
    def _parse_datetime(value: Any) -> Optional[datetime]:
        """Parse datetime from various formats."""
        if value is None:
            return None
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                return datetime.fromisoformat(value.replace("Z", "+00:00"))
            except ValueError:
                return None
        return None
