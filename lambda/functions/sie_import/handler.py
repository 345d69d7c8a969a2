"""
SIE Import Lambda Handler
=========================

Imports an uploaded SIE file as monthly historical data and,
optionally, copies the months into a budget year.

Expected payload:
{
    "company": "string",
    "sieContent": "string",            # or "sieContentBase64" for raw file bytes
    "saveAsHistorical": true,
    "copyToBudget": false,
    "targetBudgetYear": 2026,
    "overwriteRevenue": true,
    "overwriteCosts": true
}
"""

import base64
import binascii
from typing import Optional

from aws_lambda_powertools import Logger, Metrics, Tracer
from aws_lambda_powertools.metrics import MetricUnit
from aws_lambda_powertools.utilities.typing import LambdaContext

from ledger import aggregate_transactions, decode_sie, evict_zero_rows, merge_into_budget, parse_sie, store_monthly_summary
from utils.api_gateway import (
    RequestError,
    exception_response,
    is_preflight,
    parse_request_body,
    preflight_response,
    require_user,
    success_response,
)
from utils.supabase_client import SupabaseClient

logger = Logger()
metrics = Metrics()
tracer = Tracer()


@logger.inject_lambda_context
@metrics.log_metrics
@tracer.capture_lambda_handler
def lambda_handler(event: dict, context: LambdaContext) -> dict:
    """Parse SIE content and store the resulting monthly summaries."""
    if is_preflight(event):
        return preflight_response()

    try:
        supabase = SupabaseClient()
        require_user(event, supabase)

        body = parse_request_body(event)
        company = body.get("company")
        if not company:
            raise RequestError("Missing company in request body")

        content = _read_content(body)

        logger.info(f"Starting SIE import for company: {company}")
        result = import_sie(
            supabase,
            company,
            content,
            save_as_historical=body.get("saveAsHistorical", True),
            copy_to_budget=body.get("copyToBudget", False),
            target_budget_year=_parse_budget_year(body.get("targetBudgetYear")),
            overwrite_revenue=body.get("overwriteRevenue", True),
            overwrite_costs=body.get("overwriteCosts", True),
        )

        metrics.add_metric(name="SieTransactionsParsed", unit=MetricUnit.Count, value=result["transactionsParsed"])
        metrics.add_metric(name="MonthsImported", unit=MetricUnit.Count, value=result["monthsImported"])

        return success_response(result)

    except Exception as e:
        if not isinstance(e, RequestError):
            logger.exception(f"Error in SIE import: {e}")
        return exception_response(e)


@tracer.capture_method
def import_sie(
    supabase,
    company: str,
    content: str,
    save_as_historical: bool = True,
    copy_to_budget: bool = False,
    target_budget_year: Optional[int] = None,
    overwrite_revenue: bool = True,
    overwrite_costs: bool = True,
) -> dict:
    """
    Parse, aggregate and persist one SIE document.

    A document without any usable transactions is a successful
    import of zero months.
    """
    parsed = parse_sie(content)
    summaries = aggregate_transactions(company, parsed.transactions)
    logger.info(f"Aggregated data for {len(summaries)} months")

    months_imported = 0
    if save_as_historical and summaries:
        for year in sorted({year for year, _ in summaries}):
            evict_zero_rows(supabase, company, year)
        for summary in summaries.values():
            if store_monthly_summary(supabase, summary):
                months_imported += 1
        logger.info(f"Saved {months_imported} months as historical data")

    budget_updated = False
    if copy_to_budget and target_budget_year and summaries:
        year = target_budget_year
        existing = supabase.get_budget(company, year)
        budget = merge_into_budget(
            (existing or {}).get("data") or {},
            summaries.values(),
            overwrite_revenue=overwrite_revenue,
            overwrite_costs=overwrite_costs,
        )
        supabase.upsert_budget(company, year, budget)
        budget_updated = True
        logger.info(f"Budget updated for year {year}")

    return {
        "success": True,
        "monthsImported": months_imported,
        "transactionsParsed": len(parsed.transactions),
        "skippedLines": parsed.skipped_lines,
        "budgetUpdated": budget_updated,
    }


def _read_content(body: dict) -> str:
    if body.get("sieContentBase64"):
        try:
            raw = base64.b64decode(body["sieContentBase64"], validate=True)
        except (binascii.Error, ValueError):
            raise RequestError("sieContentBase64 is not valid base64")
        return decode_sie(raw)

    content = body.get("sieContent")
    if not isinstance(content, str):
        raise RequestError("Missing sieContent in request body")
    return content


def _parse_budget_year(value) -> Optional[int]:
    if value in (None, ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise RequestError("targetBudgetYear must be an integer")
