"""
Budget Dashboard - Data Models
==============================

Typed data models for ledger ingestion and Fortnox imports.
"""

from .ledger_transaction import Category, LedgerTransaction
from .monthly_summary import MonthlySummary
from .oauth_token import OAuthToken
from .import_job import ImportJob, JobStatus, SyncStats, InvalidJobTransition

__all__ = [
    "Category",
    "LedgerTransaction",
    "MonthlySummary",
    "OAuthToken",
    "ImportJob",
    "JobStatus",
    "SyncStats",
    "InvalidJobTransition",
]
