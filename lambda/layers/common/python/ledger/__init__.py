"""
Ledger ingestion: account classification, SIE parsing and monthly aggregation.
"""

from .classifier import classify_account, is_financial_account, parse_account_number, ACCOUNT_RANGES, FINANCIAL_RANGE
from .sie_parser import parse_sie, decode_sie, SieParseResult
from .aggregator import aggregate_transactions, add_amount, combine_summaries, parse_amount
from .budget import merge_into_budget
from .store import store_monthly_summary, evict_zero_rows

__all__ = [
    "classify_account",
    "is_financial_account",
    "parse_account_number",
    "ACCOUNT_RANGES",
    "FINANCIAL_RANGE",
    "parse_sie",
    "decode_sie",
    "SieParseResult",
    "aggregate_transactions",
    "add_amount",
    "combine_summaries",
    "parse_amount",
    "merge_into_budget",
    "store_monthly_summary",
    "evict_zero_rows",
]
