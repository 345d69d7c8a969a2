"""
Fortnox Range Import Lambda Handler
===================================

Starts and runs multi-year Fortnox imports as tracked jobs.

API invocation creates the job and hands it to an asynchronous
worker invocation of this same function:
{
    "company": "string",
    "startYear": 2023,
    "endYear": 2025
}

Worker invocation carries only the job id:
{
    "job_id": "uuid"
}

A worker close to the Lambda time limit stores its cursor and
re-invokes itself to continue from the next month.
"""

import json
import os
import time
from datetime import date
from typing import Callable, Optional

import boto3
import httpx
from aws_lambda_powertools import Logger, Metrics, Tracer
from aws_lambda_powertools.metrics import MetricUnit
from aws_lambda_powertools.utilities.typing import LambdaContext

from models import ImportJob
from sync import ImportJobTracker, JobConflictError, SyncCancelledError, VoucherSyncEngine
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

# Remaining time at which a worker stops and hands over to a fresh invocation
WORKER_RESERVE_MS = int(os.environ.get("WORKER_RESERVE_MS", "60000"))

_lambda_client = None


def _get_lambda_client():
    global _lambda_client
    if _lambda_client is None:
        _lambda_client = boto3.client("lambda")
    return _lambda_client


@logger.inject_lambda_context
@metrics.log_metrics
@tracer.capture_lambda_handler
def lambda_handler(event: dict, context: LambdaContext) -> dict:
    """Start an import job, or run one when invoked as the worker."""
    if is_preflight(event):
        return preflight_response()

    if event.get("job_id"):
        return run_import_job(str(event["job_id"]), context)

    try:
        supabase = SupabaseClient()
        user_id = require_user(event, supabase)

        body = parse_request_body(event)
        company = body.get("company")
        if not company:
            raise RequestError("Missing company in request body")
        start_year, end_year = _parse_range(body)

        tracker = ImportJobTracker(supabase)
        job = tracker.create_job(user_id, company, start_year, end_year)
        metrics.add_metric(name="ImportJobsStarted", unit=MetricUnit.Count, value=1)

        try:
            _start_worker(context, job.id)
        except Exception as e:
            logger.exception(f"Failed to start worker for job {job.id}: {e}")
            tracker.fail(job, f"Failed to start import: {e}")
            metrics.add_metric(name="ImportJobsFailed", unit=MetricUnit.Count, value=1)
            return error_response(500, "Failed to start import", jobId=job.id)

        return success_response({"success": True, "jobId": job.id}, status_code=202)

    except JobConflictError as e:
        return error_response(409, str(e), jobId=e.job_id)
    except Exception as e:
        if not isinstance(e, RequestError):
            logger.exception(f"Error starting import: {e}")
        return exception_response(e)


@tracer.capture_method
def run_import_job(
    job_id: str,
    context: LambdaContext,
    supabase=None,
    http_client: Optional[httpx.Client] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> dict:
    """
    Process a job from its cursor until it finishes, fails, is
    cancelled, or the invocation runs low on time.
    """
    supabase = supabase or SupabaseClient()
    tracker = ImportJobTracker(supabase)

    job = tracker.get_job(job_id)
    if job is None:
        logger.error(f"Import job {job_id} not found")
        return {"jobId": job_id, "status": "missing"}
    if job.is_terminal:
        logger.info(f"Import job {job_id} is already {job.status.value}")
        return {"jobId": job_id, "status": job.status.value}

    logger.append_keys(job_id=job.id, company=job.company)

    def on_month_processed(year: int, month: int) -> None:
        job.advance_cursor(year, month)
        tracker.record_progress(job)

    def should_yield() -> bool:
        return context.get_remaining_time_in_millis() < WORKER_RESERVE_MS

    engine = VoucherSyncEngine(
        supabase,
        TokenManager(supabase, http_client=http_client),
        job.company,
        job.user_id,
        stats=job.stats,
        http_client=http_client,
        sleep=sleep,
        checkpoint=tracker.cancellation_checkpoint(job),
        on_month_processed=on_month_processed,
        should_yield=should_yield,
    )

    calls_before = job.stats.api_calls
    try:
        result = engine.sync(job.start_year, job.end_year, start_at=(job.cursor_year, job.cursor_month))
    except SyncCancelledError as e:
        _fail_job(tracker, job, str(e))
        return job.to_dict()
    except Exception as e:
        logger.exception(f"Import job {job.id} failed: {e}")
        _fail_job(tracker, job, str(e))
        return job.to_dict()
    finally:
        metrics.add_metric(name="FortnoxApiCalls", unit=MetricUnit.Count, value=job.stats.api_calls - calls_before)

    if not result.completed:
        logger.info(f"Import job {job.id} continuing from {job.cursor_year}-{job.cursor_month:02d}")
        try:
            _start_worker(context, job.id)
        except Exception as e:
            logger.exception(f"Failed to continue job {job.id}: {e}")
            _fail_job(tracker, job, f"Failed to continue import: {e}")
        return job.to_dict()

    tracker.complete(job)
    metrics.add_metric(name="ImportJobsSucceeded", unit=MetricUnit.Count, value=1)
    metrics.add_metric(name="MonthsImported", unit=MetricUnit.Count, value=job.stats.months_imported)
    return job.to_dict()


def _fail_job(tracker: ImportJobTracker, job: ImportJob, error: str) -> None:
    metrics.add_metric(name="ImportJobsFailed", unit=MetricUnit.Count, value=1)
    try:
        tracker.fail(job, error)
    except Exception as e:
        logger.exception(f"Could not record failure of job {job.id}: {e}")


def _start_worker(context: LambdaContext, job_id: str) -> None:
    """Invoke this function asynchronously for the given job."""
    _get_lambda_client().invoke(
        FunctionName=context.invoked_function_arn,
        InvocationType="Event",
        Payload=json.dumps({"job_id": job_id}).encode(),
    )


def _parse_range(body: dict) -> tuple[int, int]:
    current = date.today().year
    try:
        start_year = int(body.get("startYear", current - 1))
        end_year = int(body.get("endYear", current))
    except (TypeError, ValueError):
        raise RequestError("startYear and endYear must be integers")

    if start_year > end_year:
        raise RequestError("startYear must not be after endYear")
    if start_year < 1900 or end_year > 2100:
        raise RequestError("Year out of range")
    return start_year, end_year
