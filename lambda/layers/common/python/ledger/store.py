"""
Summary Persistence
===================

Storage policy shared by both ingestion paths: all-zero months never
overwrite stored data, and stale all-zero rows are evicted before a
year is re-imported.
"""

from datetime import datetime, timezone

from aws_lambda_powertools import Logger

from models import MonthlySummary

logger = Logger()


def evict_zero_rows(supabase, company: str, year: int) -> None:
    """Delete all-zero summary rows for (company, year)."""
    supabase.delete_zero_monthly_summaries(company, year)
    logger.debug(f"Evicted zero rows for {company} {year}")


def store_monthly_summary(supabase, summary: MonthlySummary) -> bool:
    """
    Upsert a summary unless it is all zero.

    Returns True when a row was written.
    """
    if summary.is_zero:
        logger.info(f"No data for {summary.company} {summary.year}-{summary.month:02d}, skipping upsert")
        return False

    summary.updated_at = datetime.now(timezone.utc)
    supabase.upsert_monthly_summary(summary)
    return True
