"""
Fortnox Sync Lambda Handler
===========================

Synchronous import of a single year from Fortnox.
Runs inline and returns the stored months; use fortnox_import_range
for multi-year imports that need progress tracking.

Expected payload:
{
    "company": "string",
    "year": 2025
}
"""

from datetime import date

from aws_lambda_powertools import Logger, Metrics, Tracer
from aws_lambda_powertools.metrics import MetricUnit
from aws_lambda_powertools.utilities.typing import LambdaContext

from sync import ImportJobTracker, JobConflictError, VoucherSyncEngine
from utils.api_gateway import (
    RequestError,
    error_response,
    exception_response,
    is_preflight,
    parse_request_body,
    preflight_response,
    require_user,
    success_response,
)
from utils.supabase_client import SupabaseClient
from utils.token_manager import TokenManager

logger = Logger()
metrics = Metrics()
tracer = Tracer()


@logger.inject_lambda_context
@metrics.log_metrics
@tracer.capture_lambda_handler
def lambda_handler(event: dict, context: LambdaContext) -> dict:
    """Import one year of Fortnox vouchers for a company."""
    if is_preflight(event):
        return preflight_response()

    try:
        supabase = SupabaseClient()
        user_id = require_user(event, supabase)

        body = parse_request_body(event)
        company = body.get("company")
        if not company:
            raise RequestError("Missing company in request body")
        year = _parse_year(body.get("year"))

        conflict = ImportJobTracker(supabase).find_conflicting_job(company, year, year)
        if conflict is not None:
            raise JobConflictError(f"An import for {company} is already running", job_id=str(conflict["id"]))

        result = sync_year(supabase, user_id, company, year)
        return success_response(result)

    except JobConflictError as e:
        return error_response(409, str(e), jobId=e.job_id)
    except Exception as e:
        if not isinstance(e, RequestError):
            logger.exception(f"Error in Fortnox sync: {e}")
        return exception_response(e)


@tracer.capture_method
def sync_year(supabase, user_id: str, company: str, year: int) -> dict:
    """Run the voucher sync engine for one year."""
    engine = VoucherSyncEngine(supabase, TokenManager(supabase), company, user_id)
    result = engine.sync(year, year)
    stats = result.stats

    metrics.add_metric(name="FortnoxApiCalls", unit=MetricUnit.Count, value=stats.api_calls)
    metrics.add_metric(name="FortnoxRetries", unit=MetricUnit.Count, value=stats.retries)
    metrics.add_metric(name="RateLimitHits", unit=MetricUnit.Count, value=stats.rate_limit_hits)
    metrics.add_metric(name="MonthsImported", unit=MetricUnit.Count, value=stats.months_imported)

    logger.info(
        f"Sync complete: {stats.vouchers_total} vouchers scanned, {stats.months_imported} months imported, "
        f"detail fetch: {result.used_detail_fetch}"
    )

    return {
        "success": True,
        "message": "Fortnox data synced successfully",
        "data": [summary.to_row() for summary in result.summaries],
        "meta": {
            "vouchersScanned": stats.vouchers_total,
            "monthsImported": stats.months_imported,
            "monthsSkipped": stats.months_skipped,
            "usedDetailFetch": result.used_detail_fetch,
        },
    }


def _parse_year(value) -> int:
    if value is None:
        return date.today().year
    try:
        year = int(value)
    except (TypeError, ValueError):
        raise RequestError(f"Invalid year: {value}")
    if not 1900 <= year <= 2100:
        raise RequestError(f"Invalid year: {value}")
    return year
