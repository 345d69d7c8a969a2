"""
Import Job Status Lambda Handler
================================

Returns the state of an import job, or requests its cancellation.

Expected payload (or query string):
{
    "jobId": "uuid",
    "action": "cancel"      # optional
}
"""

from aws_lambda_powertools import Logger, Metrics, Tracer
from aws_lambda_powertools.utilities.typing import LambdaContext

from sync import ImportJobTracker
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

logger = Logger()
metrics = Metrics()
tracer = Tracer()


@logger.inject_lambda_context
@metrics.log_metrics
@tracer.capture_lambda_handler
def lambda_handler(event: dict, context: LambdaContext) -> dict:
    if is_preflight(event):
        return preflight_response()

    try:
        supabase = SupabaseClient()
        user_id = require_user(event, supabase)

        params = {**(event.get("queryStringParameters") or {}), **parse_request_body(event)}
        job_id = params.get("jobId")
        if not job_id:
            raise RequestError("Missing jobId")

        tracker = ImportJobTracker(supabase)
        job = tracker.get_job(str(job_id))
        # Other users' jobs are reported as missing
        if job is None or job.user_id != user_id:
            return error_response(404, "Import job not found")

        if params.get("action") == "cancel":
            job = tracker.request_cancel(job.id)

        return success_response({"success": True, "job": job.to_dict()})

    except Exception as e:
        if not isinstance(e, RequestError):
            logger.exception(f"Error reading import job: {e}")
        return exception_response(e)
