"""
SIE Parser
==========

Extracts dated ledger transactions from SIE (Swedish Standard Import
Export) text. Only what the monthly aggregation needs is read:
#VER headers for the voucher date and #TRANS lines for account/amount.

A #TRANS line looks like:

    #TRANS 3010 {1 "100"} -1000.00 20250315 "Sales" 1

The object list in braces, the optional transaction date, text and
quantity may all be absent. Malformed lines are skipped, never fatal.
"""

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Optional

from aws_lambda_powertools import Logger

from models import LedgerTransaction

logger = Logger()

VOUCHER_TAG = "#VER"
TRANSACTION_TAG = "#TRANS"

AMOUNT_PATTERN = re.compile(r"^-?\d+([.,]\d+)?$", re.ASCII)
DATE_PATTERN = re.compile(r"^\d{8}$", re.ASCII)
OBJECT_LIST_PATTERN = re.compile(r"\{[^}]*\}")

# SIE 4 files are PC8 (IBM CP437); newer exports are often UTF-8
SIE_ENCODINGS = ("utf-8", "cp437")


@dataclass
class SieParseResult:
    """Transactions parsed from one document plus skip counters."""
    transactions: list[LedgerTransaction] = field(default_factory=list)
    vouchers: int = 0
    skipped_lines: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.transactions


def decode_sie(raw: bytes) -> str:
    """Decode raw SIE bytes, trying UTF-8 before the PC8 code page."""
    for encoding in SIE_ENCODINGS:
        try:
            return raw.decode(encoding)
        except UnicodeDecodeError:
            logger.debug(f"SIE content is not {encoding}")
    # cp437 maps every byte, so this is only reached for an empty tuple
    raise ValueError("Could not decode SIE content")


def parse_sie(content: str) -> SieParseResult:
    """
    Parse SIE text into LedgerTransactions.

    Each transaction takes its own date when one follows the amount,
    otherwise the date of the enclosing #VER. Transactions with no
    resolvable date are skipped.
    """
    result = SieParseResult()
    voucher_date: Optional[date] = None

    for line_number, raw_line in enumerate(content.splitlines(), start=1):
        line = raw_line.strip()
        if not line.startswith("#"):
            continue

        tag = line.split(maxsplit=1)[0]

        if tag == VOUCHER_TAG:
            result.vouchers += 1
            voucher_date = _voucher_date(line)
            if voucher_date is None:
                logger.debug(f"Line {line_number}: #VER without a valid date")
            continue

        if tag != TRANSACTION_TAG:
            continue

        transaction = _parse_transaction(line, voucher_date)
        if transaction is None:
            result.skipped_lines += 1
            logger.debug(f"Line {line_number}: skipped #TRANS line: {line[:80]}")
            continue

        result.transactions.append(transaction)

    logger.info(
        f"Parsed {len(result.transactions)} transactions from {result.vouchers} vouchers "
        f"({result.skipped_lines} lines skipped)"
    )
    return result


def _voucher_date(line: str) -> Optional[date]:
    """First 8-digit token on a #VER line that is a real date."""
    for token in _tokens(line)[1:]:
        if DATE_PATTERN.match(token):
            parsed = _parse_date(token)
            if parsed:
                return parsed
    return None


def _parse_transaction(line: str, voucher_date: Optional[date]) -> Optional[LedgerTransaction]:
    tokens = _tokens(OBJECT_LIST_PATTERN.sub(" ", line))
    if len(tokens) < 3:
        return None

    if not (tokens[1].isascii() and tokens[1].isdigit()):
        return None
    account = int(tokens[1])

    for index in range(2, len(tokens)):
        token = tokens[index]
        if not AMOUNT_PATTERN.match(token):
            continue

        try:
            amount = Decimal(token.replace(",", "."))
        except InvalidOperation:
            return None

        transaction_date = voucher_date
        if index + 1 < len(tokens) and DATE_PATTERN.match(tokens[index + 1]):
            transaction_date = _parse_date(tokens[index + 1]) or voucher_date

        if transaction_date is None:
            return None
        return LedgerTransaction(account=account, amount=amount, date=transaction_date)

    return None


def _tokens(line: str) -> list[str]:
    return line.replace('"', "").split()


def _parse_date(token: str) -> Optional[date]:
    try:
        return datetime.strptime(token, "%Y%m%d").date()
    except ValueError:
        return None
