"""
Import Job Data Model
=====================

Represents a long-running multi-year Fortnox import and the
statistics it accumulates. Maps to the fortnox_import_jobs table.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class JobStatus(str, Enum):
    """Import job status."""
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({JobStatus.SUCCEEDED, JobStatus.FAILED})

ALLOWED_TRANSITIONS = {
    JobStatus.QUEUED: {JobStatus.RUNNING, JobStatus.FAILED},
    JobStatus.RUNNING: {JobStatus.SUCCEEDED, JobStatus.FAILED},
    JobStatus.SUCCEEDED: set(),
    JobStatus.FAILED: set(),
}


@dataclass
class SyncStats:
    """
    Counters for one sync run.

    A single SyncStats instance is owned by the run and passed by
    reference to the fetch client, which is its only other writer.
    """

    api_calls: int = 0
    retries: int = 0
    rate_limit_hits: int = 0
    vouchers_total: int = 0
    months_imported: int = 0
    months_skipped: int = 0
    detail_fetches: int = 0
    voucher_detail_failures: int = 0
    per_year: dict[int, dict[str, int]] = field(default_factory=dict)

    def year(self, year: int) -> dict[str, int]:
        """Per-year counters, created on first use."""
        return self.per_year.setdefault(year, {"months": 0, "vouchers": 0})

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "SyncStats":
        data = data or {}
        per_year = {
            int(year): {"months": int(v.get("months", 0)), "vouchers": int(v.get("vouchers", 0))}
            for year, v in (data.get("per_year") or {}).items()
        }
        return cls(
            api_calls=int(data.get("api_calls", 0)),
            retries=int(data.get("retries", 0)),
            rate_limit_hits=int(data.get("rate_limit_hits", 0)),
            vouchers_total=int(data.get("vouchers_total", 0)),
            months_imported=int(data.get("months_imported", 0)),
            months_skipped=int(data.get("months_skipped", 0)),
            detail_fetches=int(data.get("detail_fetches", 0)),
            voucher_detail_failures=int(data.get("voucher_detail_failures", 0)),
            per_year=per_year,
        )

    def to_dict(self) -> dict:
        return {
            "api_calls": self.api_calls,
            "retries": self.retries,
            "rate_limit_hits": self.rate_limit_hits,
            "vouchers_total": self.vouchers_total,
            "months_imported": self.months_imported,
            "months_skipped": self.months_skipped,
            "detail_fetches": self.detail_fetches,
            "voucher_detail_failures": self.voucher_detail_failures,
            # JSON object keys are strings
            "per_year": {str(year): dict(v) for year, v in sorted(self.per_year.items())},
        }


@dataclass
class ImportJob:
    """
    A range import from start_year to end_year (inclusive).

    The cursor points at the next month to process; it is what a
    resumed worker invocation continues from.
    """

    id: str
    user_id: str
    company: str
    start_year: int
    end_year: int

    status: JobStatus = JobStatus.QUEUED
    progress: int = 0
    stats: SyncStats = field(default_factory=SyncStats)
    last_error: Optional[str] = None

    cursor_year: Optional[int] = None
    cursor_month: int = 1
    cancel_requested: bool = False

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if self.end_year < self.start_year:
            raise ValueError(f"end_year {self.end_year} is before start_year {self.start_year}")
        if self.cursor_year is None:
            self.cursor_year = self.start_year

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def total_months(self) -> int:
        return (self.end_year - self.start_year + 1) * 12

    @property
    def months_processed(self) -> int:
        done = (self.cursor_year - self.start_year) * 12 + (self.cursor_month - 1)
        return max(0, min(done, self.total_months))

    def transition_to(self, status: JobStatus) -> None:
        """Move to a new status, rejecting transitions out of terminal states."""
        if status not in ALLOWED_TRANSITIONS[self.status]:
            raise InvalidJobTransition(
                f"Job {self.id}: cannot move from {self.status.value} to {status.value}"
            )
        self.status = status

    def advance_cursor(self, year: int, month: int) -> None:
        """Mark (year, month) as processed."""
        if month == 12:
            self.cursor_year, self.cursor_month = year + 1, 1
        else:
            self.cursor_year, self.cursor_month = year, month + 1

    @classmethod
    def from_dict(cls, data: dict) -> "ImportJob":
        """Create ImportJob from database row dictionary."""
        cursor = data.get("cursor") or {}
        return cls(
            id=str(data.get("id", "")),
            user_id=data.get("user_id", ""),
            company=data.get("company", ""),
            start_year=int(data["start_year"]),
            end_year=int(data["end_year"]),
            status=JobStatus(data.get("status", "queued")),
            progress=int(data.get("progress") or 0),
            stats=SyncStats.from_dict(data.get("stats")),
            last_error=data.get("last_error"),
            cursor_year=cursor.get("year"),
            cursor_month=int(cursor.get("month", 1)),
            cancel_requested=bool(data.get("cancel_requested", False)),
            created_at=cls._parse_datetime(data.get("created_at")),
            updated_at=cls._parse_datetime(data.get("updated_at")),
        )

    def to_dict(self) -> dict:
        """Snapshot returned to pollers."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "company": self.company,
            "start_year": self.start_year,
            "end_year": self.end_year,
            "status": self.status.value,
            "progress": self.progress,
            "stats": self.stats.to_dict(),
            "last_error": self.last_error,
            "cursor": {"year": self.cursor_year, "month": self.cursor_month},
            "cancel_requested": self.cancel_requested,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    @staticmethod
    def _parse_datetime(value: Any) -> Optional[datetime]:
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                return datetime.fromisoformat(value.replace("Z", "+00:00"))
            except ValueError:
                return None
        return None


class InvalidJobTransition(Exception):
    """Raised on a status change the job state machine does not allow."""
    pass
