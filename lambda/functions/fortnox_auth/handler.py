"""
Fortnox Auth Lambda Handler
===========================

Builds the Fortnox OAuth consent URL for the calling user.

Expected payload:
{
    "company": "string",
    "appOrigin": "https://app.example.com"   # optional, used when the popup has no opener
}
"""

from aws_lambda_powertools import Logger, Metrics, Tracer
from aws_lambda_powertools.utilities.typing import LambdaContext

from utils.api_gateway import (
    RequestError,
    exception_response,
    is_preflight,
    parse_request_body,
    preflight_response,
    require_user,
    success_response,
)
from utils.secrets import require_secrets
from utils.supabase_client import SupabaseClient
from utils.token_manager import build_authorization_url

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

        body = parse_request_body(event)
        company = body.get("company")
        if not company:
            raise RequestError("Company name is required")

        secrets = require_secrets("FORTNOX_CLIENT_ID", "FORTNOX_REDIRECT_URI")
        redirect_uri = secrets["FORTNOX_REDIRECT_URI"]

        auth_url = build_authorization_url(secrets["FORTNOX_CLIENT_ID"], redirect_uri, user_id, company, body.get("appOrigin", ""))
        logger.info(f"Generated auth URL for company: {company}")

        return success_response({"authUrl": auth_url, "redirectUri": redirect_uri})

    except Exception as e:
        if not isinstance(e, RequestError):
            logger.exception(f"Error in Fortnox auth: {e}")
        return exception_response(e)
