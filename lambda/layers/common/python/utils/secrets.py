"""
Configuration and Secrets
=========================

All credentials live in one JSON secret in AWS Secrets Manager, fetched
once per Lambda execution context. An environment variable with the
same name as a secret key takes precedence, which is how local runs
and tests supply configuration without AWS.
"""

import json
import os
from functools import lru_cache
from typing import Any, Iterable

import boto3
from botocore.exceptions import ClientError
from aws_lambda_powertools import Logger

logger = Logger()

SECRET_NAME = os.environ.get("SECRETS_NAME", "budget-dashboard-secrets")

# Keys the ingestion functions read, with what they are for
EXPECTED_SECRETS = {
    "SUPABASE_URL": "Supabase project URL",
    "SUPABASE_SERVICE_KEY": "Supabase service role key (full access)",
    "FORTNOX_CLIENT_ID": "Fortnox OAuth client ID",
    "FORTNOX_CLIENT_SECRET": "Fortnox OAuth client secret",
    "FORTNOX_REDIRECT_URI": "Redirect URI registered for the fortnox_callback function",
}

_secrets_client = None


def _get_secrets_client():
    global _secrets_client
    if _secrets_client is None:
        _secrets_client = boto3.client("secretsmanager")
    return _secrets_client


@lru_cache(maxsize=1)
def get_all_secrets() -> dict[str, Any]:
    """
    The decoded secret document, cached for the execution context.

    Raises:
        ClientError: If the secret cannot be read
    """
    try:
        response = _get_secrets_client().get_secret_value(SecretId=SECRET_NAME)
    except ClientError as e:
        error_code = e.response.get("Error", {}).get("Code", "Unknown")
        logger.error(f"Failed to retrieve secret {SECRET_NAME}: {error_code}")
        raise

    secrets = json.loads(response["SecretString"])
    logger.info(f"Loaded {len(secrets)} keys from {SECRET_NAME}")
    return secrets


def get_secret(key: str, default: Any = None) -> Any:
    """Environment override first, then the Secrets Manager document."""
    if os.environ.get(key):
        return os.environ[key]
    return get_all_secrets().get(key, default)


def require_secrets(*keys: str) -> dict[str, Any]:
    """
    Look up several keys at once.

    Raises:
        ConfigurationError: Naming every key that is missing or empty
    """
    values = {key: get_secret(key) for key in keys}
    missing = [key for key, value in values.items() if not value]
    if missing:
        raise ConfigurationError(f"Missing configuration: {', '.join(missing)}")
    return values


def missing_secrets(keys: Iterable[str] = EXPECTED_SECRETS) -> list[str]:
    """Keys from `keys` with no usable value. Empty when fully configured."""
    missing = [key for key in keys if not get_secret(key)]
    if missing:
        logger.warning(f"Missing secrets: {missing}")
    return missing


def clear_secrets_cache() -> None:
    """Drop the cached document, e.g. after rotating the Fortnox app credentials."""
    get_all_secrets.cache_clear()
    logger.info("Secrets cache cleared")


class ConfigurationError(Exception):
    """Raised when required configuration is absent."""
    pass
