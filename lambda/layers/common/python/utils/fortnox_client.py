"""
Fortnox API Client
==================

Read-only access to the Fortnox bookkeeping API with bounded retries.

Every request goes through fetch_with_retry:
- 429: exponential backoff with jitter, up to max_retries
- network errors: same backoff, sharing the attempt budget
- 401 on the first attempt: refresh credentials once via callback
- any other non-2xx: fail immediately

The retry budget is per call, not per run.
"""

import os
import random
import time
from typing import Any, Callable, Optional

import httpx
from aws_lambda_powertools import Logger

from models import SyncStats

logger = Logger()

# Fortnox API configuration
FORTNOX_BASE_URL = os.environ.get("FORTNOX_BASE_URL", "https://api.fortnox.se/3")

MAX_RETRIES = int(os.environ.get("FORTNOX_MAX_RETRIES", "6"))
BACKOFF_BASE_MS = int(os.environ.get("FORTNOX_BACKOFF_BASE_MS", "1000"))
MAX_JITTER_MS = 500
REFRESH_COOLDOWN_MS = int(os.environ.get("FORTNOX_REFRESH_COOLDOWN_MS", "1000"))

# Self-imposed pacing between calls, independent of 429 backoff
THROTTLE_MS = int(os.environ.get("FORTNOX_THROTTLE_MS", "800"))


def backoff_seconds(attempt: int, base_ms: int = BACKOFF_BASE_MS, rand: Callable[[], float] = random.random) -> float:
    """2^attempt * base plus up to 500 ms of jitter, in seconds."""
    return ((2 ** attempt) * base_ms + rand() * MAX_JITTER_MS) / 1000


class FortnoxClient:
    """
    Fortnox REST client for one sync run.

    Handles:
    - Financial year listing
    - Voucher listing by date window (paginated)
    - Voucher detail lookup
    """

    def __init__(
        self,
        headers: dict,
        on_unauthorized: Optional[Callable[[], dict]] = None,
        stats: Optional[SyncStats] = None,
        http_client: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep,
        checkpoint: Optional[Callable[[], None]] = None,
        base_url: Optional[str] = None,
        max_retries: int = MAX_RETRIES,
        throttle_ms: int = THROTTLE_MS,
    ):
        self.headers = headers
        self.stats = stats if stats is not None else SyncStats()
        self.base_url = (base_url or FORTNOX_BASE_URL).rstrip("/")
        self.max_retries = max_retries
        self.throttle_ms = throttle_ms
        self._on_unauthorized = on_unauthorized
        self._http = http_client or httpx.Client(timeout=60.0)
        self._sleep = sleep
        self._checkpoint = checkpoint
        self._calls_made = 0

    def close(self) -> None:
        self._http.close()

    def fetch_with_retry(
        self,
        url: str,
        headers: dict,
        max_retries: Optional[int] = None,
        on_unauthorized: Optional[Callable[[], dict]] = None,
        params: Optional[dict] = None,
    ) -> Any:
        """
        GET a Fortnox URL and return the decoded JSON body.

        Args:
            url: Absolute URL
            headers: Request headers including the bearer token
            max_retries: Retry budget for this call (default: client setting)
            on_unauthorized: Returns fresh headers after a 401

        Raises:
            RateLimitExceededError: Still rate limited after max_retries
            SessionExpiredError: 401 and the credential refresh failed
            FortnoxNetworkError: Network failures exhausted the retry budget
            FortnoxAPIError: Any other non-2xx response
        """
        max_retries = self.max_retries if max_retries is None else max_retries
        self.stats.api_calls += 1

        attempt = 0
        refreshed = False
        while True:
            try:
                response = self._http.get(url, headers=headers, params=params)
            except httpx.TransportError as e:
                if attempt < max_retries:
                    delay = backoff_seconds(attempt)
                    logger.warning(f"Network error, retrying after {delay:.2f}s: {e}")
                    self.stats.retries += 1
                    self._sleep(delay)
                    attempt += 1
                    continue
                raise FortnoxNetworkError(f"Network error after {max_retries} retries: {e}") from e

            # First-attempt 401: one refresh, not counted against max_retries
            if response.status_code == 401 and on_unauthorized is not None and attempt == 0 and not refreshed:
                logger.info("Got 401, attempting token refresh")
                try:
                    headers = on_unauthorized()
                except Exception as e:
                    logger.error(f"Token refresh failed: {e}")
                    raise SessionExpiredError(
                        "Session expired - reconnection required", status_code=401
                    ) from e
                refreshed = True
                self.stats.retries += 1
                self._sleep(REFRESH_COOLDOWN_MS / 1000)
                continue

            if response.status_code == 429:
                self.stats.rate_limit_hits += 1
                if attempt < max_retries:
                    delay = backoff_seconds(attempt)
                    logger.warning(f"Rate limit hit, retrying after {delay:.2f}s")
                    self.stats.retries += 1
                    self._sleep(delay)
                    attempt += 1
                    continue
                raise RateLimitExceededError(
                    f"Rate limit exceeded after {max_retries} retries",
                    status_code=429,
                    response_body=response.text,
                )

            if not response.is_success:
                logger.error(f"Fortnox API error: {response.status_code} - {response.text}")
                raise FortnoxAPIError(
                    f"Fortnox API returned {response.status_code}",
                    status_code=response.status_code,
                    response_body=response.text,
                )

            return response.json()

    def _get(self, endpoint: str, params: Optional[dict] = None) -> Any:
        """Paced, cancellable GET against the Fortnox API."""
        if self._checkpoint is not None:
            self._checkpoint()

        if self._calls_made and self.throttle_ms:
            self._sleep(self.throttle_ms / 1000)
        self._calls_made += 1

        return self.fetch_with_retry(
            f"{self.base_url}/{endpoint}",
            self.headers,
            on_unauthorized=self._refresh_headers if self._on_unauthorized else None,
            params=params,
        )

    def _refresh_headers(self) -> dict:
        self.headers = self._on_unauthorized()
        return self.headers

    # =========================================================================
    # BOOKKEEPING ENDPOINTS
    # =========================================================================

    def get_financial_years(self) -> list[dict]:
        """List the company's financial years (Id, FromDate, ToDate)."""
        result = self._get("financialyears")
        return result.get("FinancialYears") or []

    def get_vouchers_page(self, financial_year_id: int, from_date: str, to_date: str, page: int = 1) -> tuple[list[dict], int]:
        """
        One page of vouchers in a date window.

        Returns:
            (vouchers, total_pages)
        """
        result = self._get("vouchers", params={
            "financialyear": financial_year_id,
            "fromdate": from_date,
            "todate": to_date,
            "page": page,
        })
        meta = result.get("MetaInformation") or {}
        try:
            total_pages = int(meta.get("@TotalPages") or 1)
        except (TypeError, ValueError):
            total_pages = 1
        return result.get("Vouchers") or [], max(total_pages, 1)

    def get_voucher(self, series: str, number: Any, financial_year_id: int) -> dict:
        """Fetch a single voucher including its rows."""
        self.stats.detail_fetches += 1
        result = self._get(f"vouchers/{series}/{number}", params={"financialyear": financial_year_id})
        return result.get("Voucher") or {}


class FortnoxAPIError(Exception):
    """Raised when the Fortnox API returns an error."""

    def __init__(self, message: str, status_code: int = 0, response_body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


class RateLimitExceededError(FortnoxAPIError):
    """Raised when 429 responses outlast the retry budget."""
    pass


class SessionExpiredError(FortnoxAPIError):
    """Raised when credentials cannot be renewed. The user must reconnect."""
    pass


class FortnoxNetworkError(FortnoxAPIError):
    """Raised when network failures outlast the retry budget."""
    pass
