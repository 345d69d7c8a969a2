"""
Fortnox OAuth Callback Lambda Handler
=====================================

Target of the Fortnox consent redirect. Exchanges the authorization
code for tokens and answers with a small page that notifies the
opening window and closes the popup.
"""

import html
import json

from aws_lambda_powertools import Logger, Metrics, Tracer
from aws_lambda_powertools.metrics import MetricUnit
from aws_lambda_powertools.utilities.typing import LambdaContext

from utils.api_gateway import html_response
from utils.secrets import require_secrets
from utils.supabase_client import SupabaseClient
from utils.token_manager import TokenManager, decode_state

logger = Logger()
metrics = Metrics()
tracer = Tracer()

CONNECTED_TEXT = "Fortnox anslutet! Du kan stänga detta fönster."
FAILED_TEXT = "Fel vid anslutning. Försök igen."

PAGE_TEMPLATE = """<!DOCTYPE html>
<html>
<head><meta charset="UTF-8"><title>{title}</title></head>
<body>
<script>
(function() {{
  var message = {message};
  var origin = {origin};
  var fallback = {fallback};
  try {{
    if (window.opener) {{
      window.opener.postMessage(message, '*');
      setTimeout(function() {{ window.close(); }}, 100);
    }} else if (origin && message.type === 'fortnox_connected') {{
      window.location.href = origin + '?fortnox_connected=true&company=' + encodeURIComponent(message.company);
    }} else {{
      document.body.innerHTML = fallback;
    }}
  }} catch (e) {{
    document.body.innerHTML = fallback;
  }}
}})();
</script>
</body>
</html>"""


@logger.inject_lambda_context
@metrics.log_metrics
@tracer.capture_lambda_handler
def lambda_handler(event: dict, context: LambdaContext) -> dict:
    params = event.get("queryStringParameters") or {}
    code = params.get("code")
    state = params.get("state")
    error = params.get("error")

    logger.info("Callback received", extra={"has_code": bool(code), "has_state": bool(state), "error": error})

    if error:
        logger.error(f"OAuth error: {error}")
        return _error_page()

    try:
        if not code or not state:
            raise ValueError("Missing code or state parameter")
        decoded = decode_state(state)

        redirect_uri = require_secrets("FORTNOX_REDIRECT_URI")["FORTNOX_REDIRECT_URI"]
        supabase = SupabaseClient()
        TokenManager(supabase).exchange_authorization_code(code, redirect_uri, decoded["c"], decoded["u"])
        metrics.add_metric(name="FortnoxConnections", unit=MetricUnit.Count, value=1)

        return _connected_page(decoded["c"], decoded.get("o") or "")

    except Exception as e:
        logger.exception(f"Error in Fortnox callback: {e}")
        return _error_page()


def _connected_page(company: str, app_origin: str) -> dict:
    return html_response(PAGE_TEMPLATE.format(
        title="Fortnox Connected",
        message=_js({"type": "fortnox_connected", "company": company}),
        origin=_js(app_origin),
        fallback=_js(_paragraph(CONNECTED_TEXT)),
    ))


def _error_page() -> dict:
    # Errors are reported to the opener, so the page itself is still a 200
    return html_response(PAGE_TEMPLATE.format(
        title="Error",
        message=_js({"type": "fortnox_error", "message": "callback_failed"}),
        origin=_js(""),
        fallback=_js(_paragraph(FAILED_TEXT, color="red")),
    ))


def _paragraph(text: str, color: str = "inherit") -> str:
    return (
        f'<p style="font-family:sans-serif;text-align:center;margin-top:50px;color:{color};">'
        f"{html.escape(text)}</p>"
    )


def _js(value) -> str:
    """JSON literal safe to embed inside a <script> block."""
    return json.dumps(value).replace("<", "\\u003c").replace(">", "\\u003e").replace("&", "\\u0026")
