"""
Supabase Client Utilities
=========================

HTTP-based Supabase client for database operations.
Uses httpx for direct REST API calls to avoid heavy SDK dependencies.

This is the storage interface of the ingestion core: monthly summaries,
Fortnox tokens, import jobs and budget documents.
"""

from typing import Any, Optional
from datetime import datetime, timezone

import httpx
from aws_lambda_powertools import Logger

from models import MonthlySummary, OAuthToken
from models.monthly_summary import STORED_AMOUNT_FIELDS

from .secrets import require_secrets

logger = Logger()

SUMMARY_TABLE = "fortnox_historical_data"
TOKEN_TABLE = "fortnox_tokens"
JOB_TABLE = "fortnox_import_jobs"
BUDGET_TABLE = "budget_data"

# Cached configuration
_config: Optional[dict] = None


def _get_config() -> dict:
    """Get cached Supabase configuration."""
    global _config
    if _config is None:
        secrets = require_secrets("SUPABASE_URL", "SUPABASE_SERVICE_KEY")
        _config = {"url": secrets["SUPABASE_URL"], "key": secrets["SUPABASE_SERVICE_KEY"]}
    return _config


class SupabaseClient:
    """
    High-level Supabase operations for budget data ingestion.
    Uses httpx for direct REST API calls.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        key: Optional[str] = None,
        http_client: Optional[httpx.Client] = None,
    ):
        if url is None or key is None:
            config = _get_config()
            url = url or config["url"]
            key = key or config["key"]
        self.url = url.rstrip("/")
        self.key = key
        self._client = http_client or httpx.Client(timeout=30.0)
        self._client.headers.update({
            "apikey": key,
            "Authorization": f"Bearer {key}",
            "Content-Type": "application/json",
            "Prefer": "return=representation",
        })

    def close(self) -> None:
        self._client.close()

    def _rest_url(self, table: str) -> str:
        """Get REST API URL for a table."""
        return f"{self.url}/rest/v1/{table}"

    @staticmethod
    def _eq(filters: dict) -> dict:
        return {k: f"eq.{v}" for k, v in filters.items()}

    @staticmethod
    def _check(response: httpx.Response, action: str) -> None:
        if response.status_code >= 400:
            logger.error(f"Supabase {action} failed: {response.status_code} - {response.text}")
            raise DatabaseError(
                f"Supabase {action} returned {response.status_code}",
                status_code=response.status_code,
                response_body=response.text,
            )

    def _query(self, table: str, params: dict = None) -> list[dict]:
        """Execute a SELECT query."""
        response = self._client.get(self._rest_url(table), params=params or {})
        self._check(response, f"select on {table}")
        return response.json()

    def _insert(self, table: str, data: dict) -> dict:
        """Insert a record."""
        response = self._client.post(self._rest_url(table), json=data)
        self._check(response, f"insert into {table}")
        result = response.json()
        return result[0] if isinstance(result, list) and result else result

    def _upsert(self, table: str, data: dict, on_conflict: str) -> dict:
        """Insert or update a record keyed by the on_conflict columns."""
        response = self._client.post(
            self._rest_url(table),
            json=data,
            params={"on_conflict": on_conflict},
            headers={"Prefer": "resolution=merge-duplicates,return=representation"},
        )
        self._check(response, f"upsert into {table}")
        result = response.json()
        return result[0] if isinstance(result, list) and result else {}

    def _update(self, table: str, data: dict, filters: dict) -> list[dict]:
        """Update records matching filters. Returns the updated rows."""
        response = self._client.patch(self._rest_url(table), json=data, params=self._eq(filters))
        self._check(response, f"update on {table}")
        result = response.json()
        return result if isinstance(result, list) else [result]

    def _delete(self, table: str, filters: dict) -> None:
        """Delete records matching filters."""
        response = self._client.delete(self._rest_url(table), params=self._eq(filters))
        self._check(response, f"delete on {table}")

    # =========================================================================
    # AUTH
    # =========================================================================

    def get_user_id(self, access_token: str) -> Optional[str]:
        """Resolve a user's Supabase JWT to their user id."""
        response = self._client.get(
            f"{self.url}/auth/v1/user",
            headers={"Authorization": f"Bearer {access_token}"},
        )
        if response.status_code != 200:
            logger.warning(f"Supabase auth rejected token: {response.status_code}")
            return None
        return response.json().get("id")

    # =========================================================================
    # MONTHLY SUMMARY OPERATIONS
    # =========================================================================

    def get_monthly_summaries(self, company: str, year: int) -> list[MonthlySummary]:
        """Fetch stored summaries for a company and year, ordered by month."""
        rows = self._query(SUMMARY_TABLE, {
            "company": f"eq.{company}",
            "year": f"eq.{year}",
            "order": "month.asc",
        })
        return [MonthlySummary.from_dict(row) for row in rows]

    def upsert_monthly_summary(self, summary: MonthlySummary) -> dict:
        """Insert or overwrite the row for (company, year, month)."""
        return self._upsert(SUMMARY_TABLE, summary.to_row(), on_conflict="company,year,month")

    def delete_zero_monthly_summaries(self, company: str, year: int) -> None:
        """Delete rows for (company, year) whose stored totals are all zero."""
        filters = {"company": company, "year": year}
        filters.update({name: 0 for name in STORED_AMOUNT_FIELDS})
        self._delete(SUMMARY_TABLE, filters)

    # =========================================================================
    # FORTNOX TOKEN OPERATIONS
    # =========================================================================

    def get_fortnox_token(self, company: str, user_id: str) -> Optional[OAuthToken]:
        """Fetch the stored token set for (company, user_id)."""
        results = self._query(TOKEN_TABLE, {
            "company": f"eq.{company}",
            "user_id": f"eq.{user_id}",
            "limit": "1",
        })
        return OAuthToken.from_dict(results[0]) if results else None

    def upsert_fortnox_token(self, token: OAuthToken) -> dict:
        """Store a token set, replacing any existing one for (user_id, company)."""
        return self._upsert(TOKEN_TABLE, token.to_row(), on_conflict="user_id,company")

    def update_fortnox_token(self, token: OAuthToken, expected_version: int) -> bool:
        """
        Write refreshed tokens only if the stored version is unchanged.

        Returns False when another writer got there first.
        """
        data = token.to_row()
        rows = self._update(TOKEN_TABLE, data, {
            "company": token.company,
            "user_id": token.user_id,
            "version": expected_version,
        })
        return bool(rows)

    # =========================================================================
    # IMPORT JOB OPERATIONS
    # =========================================================================

    def create_import_job(self, data: dict) -> dict:
        """Insert a new import job row."""
        return self._insert(JOB_TABLE, data)

    def get_import_job(self, job_id: str) -> Optional[dict]:
        """Fetch a single import job by ID."""
        results = self._query(JOB_TABLE, {"id": f"eq.{job_id}", "limit": "1"})
        return results[0] if results else None

    def update_import_job(self, job_id: str, data: dict) -> dict:
        """Update import job fields."""
        data["updated_at"] = datetime.now(timezone.utc).isoformat()
        rows = self._update(JOB_TABLE, data, {"id": job_id})
        return rows[0] if rows else {}

    def get_running_import_jobs(self, company: str) -> list[dict]:
        """Running jobs for a company, used to keep one writer per company."""
        return self._query(JOB_TABLE, {
            "company": f"eq.{company}",
            "status": "eq.running",
            "select": "id,user_id,company,start_year,end_year,status,progress",
        })

    # =========================================================================
    # BUDGET OPERATIONS
    # =========================================================================

    def get_budget(self, company: str, year: int) -> Optional[dict]:
        """Fetch the budget row for (company, year)."""
        results = self._query(BUDGET_TABLE, {
            "company": f"eq.{company}",
            "year": f"eq.{year}",
            "limit": "1",
        })
        return results[0] if results else None

    def upsert_budget(self, company: str, year: int, data: dict) -> dict:
        """Store a budget document for (company, year)."""
        return self._upsert(BUDGET_TABLE, {
            "company": company,
            "year": year,
            "data": data,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }, on_conflict="company,year")


class DatabaseError(Exception):
    """Raised when a Supabase REST call fails."""

    def __init__(self, message: str, status_code: int = 0, response_body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body
