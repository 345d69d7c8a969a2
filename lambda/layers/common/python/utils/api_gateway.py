"""
API Gateway Helpers
===================

Request parsing and JSON responses shared by the Lambda handlers.
"""

import base64
import json
from typing import Optional

from .fortnox_client import FortnoxAPIError, RateLimitExceededError, SessionExpiredError
from .token_manager import NotConnectedError, TokenRefreshError


CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
}


class RequestError(Exception):
    """Raised for a request the handler cannot serve; carries the HTTP status."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


def is_preflight(event: dict) -> bool:
    method = event.get("httpMethod") or event.get("requestContext", {}).get("http", {}).get("method", "")
    return method == "OPTIONS"


def preflight_response() -> dict:
    """Handle CORS preflight OPTIONS request."""
    return {
        "statusCode": 200,
        "headers": CORS_HEADERS,
        "body": "",
    }


def parse_request_body(event: dict) -> dict:
    """Parse request body from API Gateway event."""
    body = event.get("body") or "{}"
    if isinstance(body, str):
        if event.get("isBase64Encoded"):
            body = base64.b64decode(body).decode("utf-8")
        try:
            body = json.loads(body)
        except json.JSONDecodeError:
            raise RequestError("Request body is not valid JSON")
    if not isinstance(body, dict):
        raise RequestError("Request body must be a JSON object")
    return body


def get_bearer_token(event: dict) -> Optional[str]:
    """Bearer token from the Authorization header, if any."""
    headers = {k.lower(): v for k, v in (event.get("headers") or {}).items()}
    auth = headers.get("authorization", "")
    if not auth.lower().startswith("bearer "):
        return None
    return auth[7:].strip() or None


def require_user(event: dict, supabase) -> str:
    """Resolve the calling user from their Supabase JWT."""
    token = get_bearer_token(event)
    if not token:
        raise RequestError("Missing authorization header", status_code=401)
    user_id = supabase.get_user_id(token)
    if not user_id:
        raise RequestError("Unauthorized", status_code=401)
    return user_id


def success_response(data: dict, status_code: int = 200) -> dict:
    """Create success API Gateway response."""
    return {
        "statusCode": status_code,
        "headers": {
            **CORS_HEADERS,
            "Content-Type": "application/json",
        },
        "body": json.dumps(data, default=str)
    }


def error_response(status_code: int, message: str, **extra) -> dict:
    """Create error API Gateway response."""
    return {
        "statusCode": status_code,
        "headers": {
            **CORS_HEADERS,
            "Content-Type": "application/json",
        },
        "body": json.dumps({"error": message, **extra}, default=str)
    }


def html_response(html: str, status_code: int = 200) -> dict:
    return {
        "statusCode": status_code,
        "headers": {
            **CORS_HEADERS,
            "Content-Type": "text/html; charset=utf-8",
        },
        "body": html,
    }


def exception_response(error: Exception) -> dict:
    """Map an ingestion error to an API Gateway error response."""
    if isinstance(error, RequestError):
        return error_response(error.status_code, str(error))
    if isinstance(error, NotConnectedError):
        return error_response(404, str(error), reconnectRequired=True)
    if isinstance(error, (TokenRefreshError, SessionExpiredError)):
        return error_response(401, str(error), reconnectRequired=True)
    if isinstance(error, RateLimitExceededError):
        return error_response(429, str(error))
    if isinstance(error, FortnoxAPIError):
        return error_response(502, str(error), upstreamStatus=error.status_code)
    return error_response(500, str(error))
