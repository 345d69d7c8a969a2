"""
Fortnox OAuth Token Manager
===========================

Keeps a valid Fortnox access token for each (company, user_id),
refreshing it shortly before expiry.

Refreshes rotate the refresh token, so two callers refreshing with the
same refresh token would invalidate each other. Refreshes are therefore
serialized per (company, user_id) inside a process, and token writes use
optimistic locking on the row version so a refresh that loses a race
across processes adopts the winner's token instead of failing.
"""

import base64
import json
import os
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from urllib.parse import urlencode

import httpx
from aws_lambda_powertools import Logger

from models import OAuthToken

from .secrets import require_secrets

logger = Logger()

# Fortnox OAuth endpoints
FORTNOX_AUTH_URL = "https://apps.fortnox.se/oauth-v1/auth"
FORTNOX_TOKEN_URL = "https://apps.fortnox.se/oauth-v1/token"
FORTNOX_SCOPES = "companyinformation bookkeeping"

# Token buffer (refresh 5 minutes before expiry)
TOKEN_BUFFER_SECONDS = int(os.environ.get("TOKEN_BUFFER_SECONDS", "300"))

# One lock per connected (company, user) pair for the life of the container.
# Never pruned; bounded by the connections this container has served.
_refresh_locks: dict[tuple[str, str], threading.Lock] = {}
_refresh_locks_guard = threading.Lock()


def _refresh_lock(company: str, user_id: str) -> threading.Lock:
    with _refresh_locks_guard:
        return _refresh_locks.setdefault((company, user_id), threading.Lock())


@dataclass(frozen=True)
class AccessToken:
    """An access token ready to use, with the headers Fortnox expects."""
    access_token: str
    headers: dict

    @classmethod
    def from_token(cls, token: OAuthToken) -> "AccessToken":
        return cls(access_token=token.access_token, headers=token.auth_headers)


class TokenManager:
    """
    Manages Fortnox OAuth tokens stored in Supabase.

    Only expiry is inspected; the token itself is opaque to callers.
    """

    def __init__(
        self,
        supabase,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        http_client: Optional[httpx.Client] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.supabase = supabase
        self._client_id = client_id
        self._client_secret = client_secret
        self._http = http_client
        self._now = clock or (lambda: datetime.now(timezone.utc))

    def ensure_access_token(self, company: str, user_id: str, force_refresh: bool = False) -> AccessToken:
        """
        Get a valid Fortnox access token, refreshing if necessary.

        Args:
            company: Company the Fortnox connection belongs to
            user_id: User who connected Fortnox
            force_refresh: Refresh even if the token is not near expiry
                (used after the API rejected the token with a 401)

        Returns:
            AccessToken with bearer headers

        Raises:
            NotConnectedError: No token stored for (company, user_id)
            TokenRefreshError: The refresh grant failed; the user must reconnect
        """
        token = self._load(company, user_id)

        if not force_refresh and not token.expires_within(TOKEN_BUFFER_SECONDS, self._now()):
            logger.debug("Using stored access token (still valid)")
            return AccessToken.from_token(token)

        with _refresh_lock(company, user_id):
            # Another thread may have refreshed while we waited for the lock
            current = self._load(company, user_id)
            if current.version != token.version and self._is_fresh(current):
                logger.info("Token was refreshed concurrently, using updated token")
                return AccessToken.from_token(current)

            logger.info(f"Access token for {company} expired or expiring soon, refreshing...")
            return self._refresh(current)

    def _load(self, company: str, user_id: str) -> OAuthToken:
        token = self.supabase.get_fortnox_token(company, user_id)
        if token is None:
            raise NotConnectedError(f"No Fortnox connection found for {company}")
        return token

    def _is_fresh(self, token: OAuthToken) -> bool:
        return not token.expires_within(TOKEN_BUFFER_SECONDS, self._now())

    def _refresh(self, current: OAuthToken) -> AccessToken:
        """
        Refresh the access token with optimistic locking.

        Args:
            current: Token row as last read from Supabase

        Returns:
            The new access token, or the one stored by a concurrent winner
        """
        if not current.refresh_token:
            raise TokenRefreshError("No refresh token available")

        try:
            grant = self._call_token_endpoint({
                "grant_type": "refresh_token",
                "refresh_token": current.refresh_token,
            })
        except TokenRefreshError:
            # The refresh token is single use; if someone else already rotated
            # it the stored row now holds a working token.
            latest = self.supabase.get_fortnox_token(current.company, current.user_id)
            if latest and latest.version != current.version and self._is_fresh(latest):
                logger.info("Refresh grant rejected but token was rotated by another instance")
                return AccessToken.from_token(latest)
            raise

        refreshed = self._token_from_grant(grant, current.company, current.user_id, current.version + 1)

        if not self.supabase.update_fortnox_token(refreshed, expected_version=current.version):
            logger.info("Token was refreshed by another instance, fetching updated token")
            return AccessToken.from_token(self._load(current.company, current.user_id))

        logger.info("Successfully refreshed Fortnox access token")
        return AccessToken.from_token(refreshed)

    def exchange_authorization_code(self, code: str, redirect_uri: str, company: str, user_id: str) -> OAuthToken:
        """
        Exchange an OAuth authorization code and store the resulting tokens.

        Replaces any existing connection for (company, user_id).
        """
        grant = self._call_token_endpoint({
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
        })

        existing = self.supabase.get_fortnox_token(company, user_id)
        version = existing.version + 1 if existing else 1

        token = self._token_from_grant(grant, company, user_id, version)
        self.supabase.upsert_fortnox_token(token)
        logger.info(f"Stored Fortnox tokens for company: {company}")
        return token

    def _token_from_grant(self, grant: dict, company: str, user_id: str, version: int) -> OAuthToken:
        now = self._now()
        return OAuthToken(
            company=company,
            user_id=user_id,
            access_token=grant["access_token"],
            refresh_token=grant["refresh_token"],
            expires_at=now + timedelta(seconds=grant["expires_in"]),
            updated_at=now,
            version=version,
        )

    def _credentials(self) -> tuple[str, str]:
        if self._client_id and self._client_secret:
            return self._client_id, self._client_secret
        secrets = require_secrets("FORTNOX_CLIENT_ID", "FORTNOX_CLIENT_SECRET")
        return secrets["FORTNOX_CLIENT_ID"], secrets["FORTNOX_CLIENT_SECRET"]

    def _call_token_endpoint(self, data: dict) -> dict:
        """
        POST a grant to the Fortnox token endpoint.

        Returns:
            Dictionary with access_token, refresh_token, expires_in
        """
        headers = {
            "Accept": "application/json",
            "Content-Type": "application/x-www-form-urlencoded",
        }

        try:
            if self._http is not None:
                response = self._http.post(
                    FORTNOX_TOKEN_URL, headers=headers, data=data, auth=self._credentials(), timeout=30.0
                )
            else:
                with httpx.Client() as client:
                    response = client.post(
                        FORTNOX_TOKEN_URL, headers=headers, data=data, auth=self._credentials(), timeout=30.0
                    )
        except httpx.TransportError as e:
            logger.error(f"Fortnox token endpoint unreachable: {e}")
            raise TokenRefreshError(f"Fortnox token endpoint unreachable: {e}")

        if response.status_code != 200:
            logger.error(f"Fortnox token grant failed: {response.status_code} - {response.text}")
            raise TokenRefreshError(f"Fortnox token endpoint returned {response.status_code}")

        result = response.json()
        if not result.get("access_token") or not result.get("refresh_token"):
            raise TokenRefreshError("Missing tokens in Fortnox response")

        return {
            "access_token": result["access_token"],
            "refresh_token": result["refresh_token"],  # Always save the rotated refresh token
            "expires_in": int(result.get("expires_in", 3600)),
        }


def build_authorization_url(client_id: str, redirect_uri: str, user_id: str, company: str, app_origin: str = "") -> str:
    """Fortnox consent URL; state carries who is connecting which company."""
    params = {
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "scope": FORTNOX_SCOPES,
        "state": encode_state(user_id, company, app_origin),
        "response_type": "code",
        "access_type": "offline",
    }
    return f"{FORTNOX_AUTH_URL}?{urlencode(params)}"


def encode_state(user_id: str, company: str, app_origin: str = "") -> str:
    payload = json.dumps({"u": user_id, "c": company, "o": app_origin})
    return base64.urlsafe_b64encode(payload.encode()).decode()


def decode_state(state: str) -> dict:
    """Inverse of encode_state. Raises ValueError on malformed state."""
    try:
        padded = state + "=" * (-len(state) % 4)
        decoded = json.loads(base64.urlsafe_b64decode(padded.encode()).decode())
    except (ValueError, UnicodeDecodeError) as e:
        raise ValueError(f"Invalid state parameter: {e}")
    if not isinstance(decoded, dict) or not decoded.get("u") or not decoded.get("c"):
        raise ValueError("Invalid state parameter")
    return decoded


class NotConnectedError(Exception):
    """Raised when no Fortnox token is stored for a company/user."""
    pass


class TokenRefreshError(Exception):
    """Raised when token refresh fails. The user must reconnect Fortnox."""
    pass
