"""
Budget Dashboard - Common Utilities
===================================

Shared utilities for all Lambda functions.
"""

from .supabase_client import SupabaseClient, DatabaseError
from .fortnox_client import (
    FortnoxClient,
    FortnoxAPIError,
    FortnoxNetworkError,
    RateLimitExceededError,
    SessionExpiredError,
)
from .token_manager import TokenManager, AccessToken, NotConnectedError, TokenRefreshError
from .secrets import get_secret, get_all_secrets, require_secrets, ConfigurationError

__all__ = [
    "SupabaseClient",
    "DatabaseError",
    "FortnoxClient",
    "FortnoxAPIError",
    "FortnoxNetworkError",
    "RateLimitExceededError",
    "SessionExpiredError",
    "TokenManager",
    "AccessToken",
    "NotConnectedError",
    "TokenRefreshError",
    "get_secret",
    "get_all_secrets",
    "require_secrets",
    "ConfigurationError",
]
