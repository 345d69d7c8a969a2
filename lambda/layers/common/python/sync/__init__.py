"""
Fortnox voucher sync and import job tracking.
"""

from .voucher_sync import VoucherSyncEngine, SyncResult, SyncCancelledError, find_financial_year, month_window
from .job_tracker import ImportJobTracker, JobConflictError, CANCELLED_MESSAGE

__all__ = [
    "VoucherSyncEngine",
    "SyncResult",
    "SyncCancelledError",
    "find_financial_year",
    "month_window",
    "ImportJobTracker",
    "JobConflictError",
    "CANCELLED_MESSAGE",
]
