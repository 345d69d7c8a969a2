"""
Fortnox Status Lambda Handler
=============================

Reports whether the caller's Fortnox connection for a company is usable.
A token close to expiry is refreshed on the spot.

Expected payload:
{
    "company": "string"
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
from utils.supabase_client import SupabaseClient
from utils.token_manager import TOKEN_BUFFER_SECONDS, TokenManager, TokenRefreshError

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
            raise RequestError("Company required")

        return success_response(connection_status(supabase, TokenManager(supabase), company, user_id))

    except Exception as e:
        if not isinstance(e, RequestError):
            logger.exception(f"Error reading Fortnox status: {e}")
        return exception_response(e)


def connection_status(supabase, token_manager: TokenManager, company: str, user_id: str, now=None) -> dict:
    """Connection state for the dashboard, refreshing an expiring token."""
    token = supabase.get_fortnox_token(company, user_id)
    if token is None:
        return {"connected": False, "canRefresh": False, "lastSync": None, "expiresAt": None}

    if not token.expires_within(TOKEN_BUFFER_SECONDS, now):
        return {
            "connected": True,
            "canRefresh": True,
            "lastSync": _iso(token.updated_at),
            "expiresAt": _iso(token.expires_at),
        }

    logger.info("Token expiring soon or expired, attempting refresh")
    try:
        token_manager.ensure_access_token(company, user_id)
    except TokenRefreshError as e:
        logger.warning(f"Token refresh failed: {e}")
        return {
            "connected": False,
            "canRefresh": False,
            "lastSync": _iso(token.updated_at),
            "expiresAt": _iso(token.expires_at),
            "error": "Token refresh failed - reconnection required",
        }

    refreshed = supabase.get_fortnox_token(company, user_id) or token
    return {
        "connected": True,
        "canRefresh": True,
        "lastSync": _iso(refreshed.updated_at),
        "expiresAt": _iso(refreshed.expires_at),
        "refreshed": True,
    }


def _iso(value):
    return value.isoformat() if value else None
