"""
Ledger Tests
============

Account classification, SIE parsing, monthly aggregation and budget merge.
"""

from datetime import date
from decimal import Decimal

import pytest

from ledger import (
    ACCOUNT_RANGES,
    aggregate_transactions,
    classify_account,
    combine_summaries,
    decode_sie,
    is_financial_account,
    merge_into_budget,
    parse_account_number,
    parse_amount,
    parse_sie,
)
from models import Category, LedgerTransaction, MonthlySummary


class TestClassifier:
    """Tests for BAS account classification."""

    @pytest.mark.parametrize("account,expected", [
        (3000, Category.REVENUE),
        (3999, Category.REVENUE),
        (4010, Category.COGS),
        (5010, Category.OFFICE),
        (6050, Category.MARKETING),
        (6100, Category.OFFICE),
        (6999, Category.OFFICE),
        (7010, Category.PERSONNEL),
        (7699, Category.PERSONNEL),
        (7700, Category.OTHER_OPEX),
        (7999, Category.OTHER_OPEX),
    ])
    def test_known_ranges(self, account, expected):
        assert classify_account(account) is expected

    @pytest.mark.parametrize("account", [1930, 2440, 2999, 8000, 8410, 9999, 0])
    def test_non_pnl_accounts_are_dropped(self, account):
        assert classify_account(account) is None

    @pytest.mark.parametrize("account,expected", [(7999, False), (8000, True), (8999, True), (9000, False)])
    def test_financial_accounts(self, account, expected):
        assert is_financial_account(account) is expected

    def test_every_account_in_range_has_at_most_one_category(self):
        for account in range(1000, 10000):
            matches = [c for low, high, c in ACCOUNT_RANGES if low <= account <= high]
            assert len(matches) <= 1, account
            assert classify_account(account) == (matches[0] if matches else None)

    @pytest.mark.parametrize("value,expected", [
        (3010, 3010),
        ("3010", 3010),
        (" 3010 ", 3010),
        ("abc", None),
        (None, None),
        (True, None),
        ("3\u00b2010", 3010),
        ("\u00b3", None),
    ])
    def test_parse_account_number(self, value, expected):
        assert parse_account_number(value) == expected


class TestSieParser:
    """Tests for SIE #VER / #TRANS extraction."""

    def test_voucher_date_applies_to_transactions(self):
        content = "\n".join([
            '#FLAGGA 0',
            '#VER A 1 20250315 "Sale"',
            '{',
            '   #TRANS 3010 {} -1000',
            '   #TRANS 4010 {} 400',
            '}',
        ])

        result = parse_sie(content)

        assert result.transactions == [
            LedgerTransaction(account=3010, amount=Decimal("-1000"), date=date(2025, 3, 15)),
            LedgerTransaction(account=4010, amount=Decimal("400"), date=date(2025, 3, 15)),
        ]
        assert result.vouchers == 1

        summary = aggregate_transactions("Acme AB", result.transactions)[(2025, 3)]
        assert summary.revenue == Decimal("1000")
        assert summary.cogs == Decimal("400")
        assert summary.gross_profit == Decimal("600")

    def test_transaction_date_overrides_voucher_date(self):
        content = '#VER A 1 20250131\n{\n#TRANS 5010 {} 250.50 20250205 "Rent"\n}'

        result = parse_sie(content)

        assert result.transactions[0].date == date(2025, 2, 5)
        assert result.transactions[0].amount == Decimal("250.50")

    def test_comma_decimal_and_object_list(self):
        content = '#VER B 7 20240610\n{\n#TRANS 6071 {1 "100" 6 "P1"} 1234,75\n}'

        result = parse_sie(content)

        assert result.transactions[0].account == 6071
        assert result.transactions[0].amount == Decimal("1234.75")

    def test_malformed_lines_are_skipped(self):
        content = "\n".join([
            "#VER A 1 20250301",
            "{",
            "#TRANS",
            "#TRANS abc {} 100",
            "#TRANS 3010 {} notanumber",
            "#TRANS 3010 {} -500",
            "}",
        ])

        result = parse_sie(content)

        assert len(result.transactions) == 1
        assert result.skipped_lines == 3

    def test_non_ascii_digits_in_account_are_skipped(self):
        # CP437 byte 0xFD decodes to a superscript two
        content = "#VER A 1 20250315\n#TRANS \u00b3010 {} -100\n#TRANS 3\u00b210 {} -5\n#TRANS 4010 {} 40"

        result = parse_sie(content)

        assert [t.account for t in result.transactions] == [4010]
        assert result.skipped_lines == 2

    def test_transactions_without_any_date_are_skipped(self):
        result = parse_sie("#TRANS 3010 {} -500\n")

        assert result.is_empty
        assert result.skipped_lines == 1

    def test_other_tags_are_ignored(self):
        content = "#RTRANS 3010 {} -500\n#BTRANS 3010 {} -500\n#KONTO 3010 Sales\n"

        result = parse_sie(content)

        assert result.is_empty
        assert result.skipped_lines == 0

    def test_empty_document(self):
        assert parse_sie("").is_empty

    def test_decode_falls_back_to_cp437(self):
        raw = '#VER A 1 20250101 "Försäljning"\n'.encode("cp437")

        assert "Försäljning" in decode_sie(raw)

    def test_decode_utf8(self):
        assert decode_sie("Lön".encode("utf-8")) == "Lön"


class TestAggregator:
    """Tests for monthly aggregation."""

    def _transactions(self):
        return [
            LedgerTransaction(3010, Decimal("-1000"), date(2025, 1, 10)),
            LedgerTransaction(4010, Decimal("300"), date(2025, 1, 11)),
            LedgerTransaction(7010, Decimal("200"), date(2025, 1, 12)),
            LedgerTransaction(1930, Decimal("999"), date(2025, 1, 12)),
            LedgerTransaction(3010, Decimal("-50"), date(2025, 2, 1)),
            LedgerTransaction(6050, Decimal("20"), date(2025, 2, 2)),
        ]

    def test_groups_by_month_and_normalizes_revenue_sign(self):
        summaries = aggregate_transactions("Acme AB", self._transactions())

        assert list(summaries) == [(2025, 1), (2025, 2)]
        jan = summaries[(2025, 1)]
        assert jan.revenue == Decimal("1000")
        assert jan.cogs == Decimal("300")
        assert jan.personnel == Decimal("200")
        assert jan.gross_profit == Decimal("700")
        assert summaries[(2025, 2)].marketing == Decimal("20")

    def test_order_independent(self):
        transactions = self._transactions()

        forward = aggregate_transactions("Acme AB", transactions)
        backward = aggregate_transactions("Acme AB", list(reversed(transactions)))

        assert forward == backward

    def test_chunked_aggregation_matches_single_pass(self):
        transactions = self._transactions()

        whole = aggregate_transactions("Acme AB", transactions)
        combined = combine_summaries(
            aggregate_transactions("Acme AB", transactions[:3]),
            aggregate_transactions("Acme AB", transactions[3:]),
        )

        assert combined == whole

    def test_financial_accounts_are_tracked_outside_the_pnl(self):
        summaries = aggregate_transactions("Acme AB", [
            LedgerTransaction(3010, Decimal("-1000"), date(2025, 3, 1)),
            LedgerTransaction(8410, Decimal("500"), date(2025, 3, 2)),
            LedgerTransaction(8310, Decimal("-120"), date(2025, 3, 3)),
        ])

        mar = summaries[(2025, 3)]
        assert mar.financial_costs == Decimal("-380")
        assert mar.gross_profit == Decimal("1000")
        assert mar.to_row()["financial_costs"] == -380.0

    def test_financial_only_month_is_not_zero(self):
        summaries = aggregate_transactions("Acme AB", [LedgerTransaction(8410, Decimal("40"), date(2025, 5, 1))])

        assert not summaries[(2025, 5)].is_zero

    def test_unclassified_only_month_is_zero(self):
        summaries = aggregate_transactions("Acme AB", [LedgerTransaction(1930, Decimal("5"), date(2025, 4, 1))])

        assert summaries[(2025, 4)].is_zero

    @pytest.mark.parametrize("value,expected", [
        (None, Decimal("0")),
        (100, Decimal("100")),
        (12.5, Decimal("12.5")),
        ("1 234,50", Decimal("1234.50")),
        ("garbage", Decimal("0")),
        ("NaN", Decimal("0")),
        (True, Decimal("0")),
    ])
    def test_parse_amount(self, value, expected):
        assert parse_amount(value) == expected


class TestBudgetMerge:
    """Tests for copying imported months into a budget document."""

    def test_overwrites_selected_fields_and_recalculates(self):
        budget = {"monthly": {"mar": {
            "revenue": 1, "cogs": 1, "grossProfit": 0, "personnel": 5, "marketing": 5,
            "office": 5, "otherOpex": 5, "depreciation": 10, "financialCosts": -7,
            "ebit": 0, "ebitPercent": 0, "resultAfterFinancial": 0,
        }}}
        summary = MonthlySummary("Acme AB", 2024, 3, revenue=Decimal("1000"), cogs=Decimal("400"),
                                 personnel=Decimal("100"), office=Decimal("50"), financial_costs=Decimal("-25"))

        merged = merge_into_budget(budget, [summary])

        mar = merged["monthly"]["mar"]
        assert mar["revenue"] == 1000
        assert mar["grossProfit"] == 600
        assert mar["personnel"] == 100
        assert mar["marketing"] == 0
        assert mar["financialCosts"] == -25
        assert mar["ebit"] == 600 - (100 + 0 + 50 + 0 + 10)
        assert mar["ebitPercent"] == pytest.approx(44.0)
        assert mar["resultAfterFinancial"] == mar["ebit"] - 25
        # Input untouched
        assert budget["monthly"]["mar"]["revenue"] == 1

    def test_keeps_costs_when_only_revenue_is_overwritten(self):
        budget = {"monthly": {"jan": {"personnel": 99, "revenue": 0}}}
        summary = MonthlySummary("Acme AB", 2024, 1, revenue=Decimal("10"), personnel=Decimal("1"))

        merged = merge_into_budget(budget, [summary], overwrite_revenue=True, overwrite_costs=False)

        assert merged["monthly"]["jan"]["personnel"] == 99
        assert merged["monthly"]["jan"]["resultAfterFinancial"] == merged["monthly"]["jan"]["ebit"]
        assert merged["monthly"]["jan"]["revenue"] == 10

    def test_empty_budget_gets_all_months(self):
        merged = merge_into_budget({}, [])

        assert list(merged["monthly"]) == ["jan", "feb", "mar", "apr", "maj", "jun",
                                           "jul", "aug", "sep", "okt", "nov", "dec"]
