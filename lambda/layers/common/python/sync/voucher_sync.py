"""
Voucher Sync Engine
===================

Imports Fortnox vouchers into monthly summaries, one month at a time.

For each target month the engine finds the financial year covering the
15th, pages through the month's vouchers, fetches voucher rows where the
listing does not include them, classifies every row's debit - credit and
stores the month unless it is all zero.

Work is strictly serial: one request at a time, paced by the fetch
client. Months already stored stay stored if a later month fails.
"""

import calendar
import time
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Optional

import httpx
from aws_lambda_powertools import Logger

from ledger import add_amount, evict_zero_rows, parse_account_number, parse_amount, store_monthly_summary
from models import MonthlySummary, SyncStats
from utils.fortnox_client import (
    FortnoxAPIError,
    FortnoxClient,
    FortnoxNetworkError,
    RateLimitExceededError,
    SessionExpiredError,
)

logger = Logger()

# Day of month used to pick the financial year, away from month boundaries
FISCAL_SAMPLE_DAY = 15


@dataclass
class SyncResult:
    """Outcome of one engine run (or one slice of a resumable run)."""
    company: str
    stats: SyncStats
    summaries: list[MonthlySummary] = field(default_factory=list)
    completed: bool = True
    next_cursor: Optional[tuple[int, int]] = None

    @property
    def used_detail_fetch(self) -> bool:
        return self.stats.detail_fetches > 0


def month_window(year: int, month: int) -> tuple[str, str]:
    """First and last day of a month as ISO dates."""
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1).isoformat(), date(year, month, last_day).isoformat()


def find_financial_year(financial_years: list[dict], year: int, month: int) -> Optional[dict]:
    """Financial year whose date range contains the 15th of the month."""
    sample = date(year, month, FISCAL_SAMPLE_DAY).isoformat()
    for fy in financial_years:
        if (fy.get("FromDate") or "") <= sample <= (fy.get("ToDate") or ""):
            return fy
    return None


class VoucherSyncEngine:
    """
    Drives the Fortnox client across a year range for one company.

    Args:
        supabase: Storage for summaries and tokens
        token_manager: Supplies and renews the Fortnox access token
        checkpoint: Called before every Fortnox request; raises to cancel
        on_month_processed: Called with (year, month) after each month,
            whether it was stored, empty or skipped
        should_yield: Checked before each month; returning True stops the
            run at that month boundary with completed=False
    """

    def __init__(
        self,
        supabase,
        token_manager,
        company: str,
        user_id: str,
        stats: Optional[SyncStats] = None,
        http_client: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep,
        checkpoint: Optional[Callable[[], None]] = None,
        on_month_processed: Optional[Callable[[int, int], None]] = None,
        should_yield: Optional[Callable[[], bool]] = None,
        throttle_ms: Optional[int] = None,
    ):
        self.supabase = supabase
        self.token_manager = token_manager
        self.company = company
        self.user_id = user_id
        self.stats = stats if stats is not None else SyncStats()
        self._http = http_client
        self._sleep = sleep
        self._checkpoint = checkpoint
        self._on_month_processed = on_month_processed
        self._should_yield = should_yield
        self._throttle_ms = throttle_ms

    def sync(self, start_year: int, end_year: int, start_at: Optional[tuple[int, int]] = None) -> SyncResult:
        """
        Import every month from start_at (default January of start_year)
        through December of end_year.

        Raises:
            NotConnectedError / TokenRefreshError: No usable Fortnox token
            SessionExpiredError, RateLimitExceededError, FortnoxNetworkError,
            FortnoxAPIError: Unrecoverable API failure; aborts the run
            SyncCancelledError: The checkpoint requested cancellation
        """
        start_year_at, start_month_at = start_at or (start_year, 1)
        result = SyncResult(company=self.company, stats=self.stats)

        if self._checkpoint is not None:
            self._checkpoint()
        token = self.token_manager.ensure_access_token(self.company, self.user_id)
        client = self._build_client(token.headers)

        try:
            financial_years = client.get_financial_years()
            logger.info(f"Starting Fortnox import for {self.company}, {start_year_at}-{start_month_at:02d} to {end_year}-12")

            for year in range(start_year_at, end_year + 1):
                first_month = start_month_at if year == start_year_at else 1
                self.stats.year(year)
                evict_zero_rows(self.supabase, self.company, year)

                for month in range(first_month, 13):
                    if self._should_yield is not None and self._should_yield():
                        logger.info(f"Yielding at {year}-{month:02d}")
                        result.completed = False
                        result.next_cursor = (year, month)
                        return result

                    summary = self._sync_month(client, financial_years, year, month)
                    if summary is not None:
                        result.summaries.append(summary)

                    if self._on_month_processed is not None:
                        self._on_month_processed(year, month)
        finally:
            if self._http is None:
                client.close()

        logger.info(
            f"Import complete: {self.stats.vouchers_total} vouchers, "
            f"{self.stats.months_imported} months imported, {self.stats.api_calls} API calls"
        )
        return result

    def _build_client(self, headers: dict) -> FortnoxClient:
        kwargs = {}
        if self._throttle_ms is not None:
            kwargs["throttle_ms"] = self._throttle_ms
        return FortnoxClient(
            headers=headers,
            on_unauthorized=self._renew_headers,
            stats=self.stats,
            http_client=self._http,
            sleep=self._sleep,
            checkpoint=self._checkpoint,
            **kwargs,
        )

    def _renew_headers(self) -> dict:
        logger.info("Refreshing token on 401")
        return self.token_manager.ensure_access_token(self.company, self.user_id, force_refresh=True).headers

    def _sync_month(self, client: FortnoxClient, financial_years: list[dict], year: int, month: int) -> Optional[MonthlySummary]:
        """Aggregate and store one month. Returns the stored summary, if any."""
        fy = find_financial_year(financial_years, year, month)
        if fy is None:
            logger.warning(f"No financial year for {year}-{month:02d}")
            self.stats.months_skipped += 1
            return None

        from_date, to_date = month_window(year, month)
        summary = MonthlySummary(company=self.company, year=year, month=month)

        page, total_pages = 1, 1
        while page <= total_pages:
            vouchers, total_pages = client.get_vouchers_page(fy["Id"], from_date, to_date, page)
            self.stats.vouchers_total += len(vouchers)
            self.stats.year(year)["vouchers"] += len(vouchers)

            # Aggregate per page and fold in; sums are order independent
            summary = summary.combine(self._aggregate_page(client, vouchers, fy["Id"], year, month))
            page += 1

        logger.info(
            f"Totals {year}-{month:02d}: revenue={summary.revenue} cogs={summary.cogs} "
            f"personnel={summary.personnel} marketing={summary.marketing} "
            f"office={summary.office} other_opex={summary.other_opex}"
        )

        if not store_monthly_summary(self.supabase, summary):
            return None

        self.stats.months_imported += 1
        self.stats.year(year)["months"] += 1
        return summary

    def _aggregate_page(self, client: FortnoxClient, vouchers: list[dict], fy_id: int, year: int, month: int) -> MonthlySummary:
        page_summary = MonthlySummary(company=self.company, year=year, month=month)
        for voucher in vouchers:
            for row in self._voucher_rows(client, voucher, fy_id):
                account = parse_account_number(row.get("Account"))
                if account is None:
                    continue
                net = parse_amount(row.get("Debit")) - parse_amount(row.get("Credit"))
                add_amount(page_summary, account, net)
        return page_summary

    def _voucher_rows(self, client: FortnoxClient, voucher: dict, fy_id: int) -> list[dict]:
        """Inline rows when the listing has them, otherwise the voucher detail."""
        rows = voucher.get("VoucherRows")
        if rows:
            return rows

        series = voucher.get("VoucherSeries")
        number = voucher.get("VoucherNumber")
        if not series or not number:
            return []

        try:
            detail = client.get_voucher(series, number, fy_id)
        except (SessionExpiredError, RateLimitExceededError, FortnoxNetworkError):
            raise
        except FortnoxAPIError as e:
            logger.error(f"Failed to fetch voucher {series}/{number}: {e}")
            self.stats.voucher_detail_failures += 1
            return []

        return detail.get("VoucherRows") or []


class SyncCancelledError(Exception):
    """Raised from a cancellation checkpoint to stop a running import."""
    pass
