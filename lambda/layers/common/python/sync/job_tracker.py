"""
Import Job Tracker
==================

Records status, progress and statistics of range imports so callers
can poll them. States run queued -> running -> succeeded | failed;
jobs are created straight into running and never leave a terminal state.
"""

import time
from typing import Callable, Optional

from aws_lambda_powertools import Logger

from models import ImportJob, JobStatus

from .voucher_sync import SyncCancelledError

logger = Logger()

# How often a running import re-reads its cancel flag
CANCEL_POLL_SECONDS = 5.0

CANCELLED_MESSAGE = "Import cancelled by user"


class ImportJobTracker:
    """Job persistence and state transitions on top of Supabase."""

    def __init__(self, supabase, clock: Callable[[], float] = time.monotonic):
        self.supabase = supabase
        self._clock = clock

    def create_job(self, user_id: str, company: str, start_year: int, end_year: int) -> ImportJob:
        """
        Create a job in the running state.

        Raises:
            JobConflictError: A running job for the company overlaps the range
        """
        conflict = self.find_conflicting_job(company, start_year, end_year)
        if conflict is not None:
            raise JobConflictError(
                f"An import for {company} is already running (job {conflict['id']})",
                job_id=str(conflict["id"]),
            )

        job = ImportJob(id="", user_id=user_id, company=company, start_year=start_year, end_year=end_year)
        job.transition_to(JobStatus.RUNNING)

        row = self.supabase.create_import_job({
            "user_id": user_id,
            "company": company,
            "start_year": start_year,
            "end_year": end_year,
            "status": job.status.value,
            "progress": 0,
            "stats": job.stats.to_dict(),
            "cursor": {"year": job.cursor_year, "month": job.cursor_month},
            "cancel_requested": False,
        })
        if not row or not row.get("id"):
            raise ValueError("Failed to create import job")

        created = ImportJob.from_dict(row)
        logger.info(f"Created import job {created.id} for {company} {start_year}-{end_year}")
        return created

    def find_conflicting_job(self, company: str, start_year: int, end_year: int) -> Optional[dict]:
        """A running job for the company whose year range overlaps, if any."""
        for row in self.supabase.get_running_import_jobs(company):
            if int(row["start_year"]) <= end_year and start_year <= int(row["end_year"]):
                return row
        return None

    def get_job(self, job_id: str) -> Optional[ImportJob]:
        row = self.supabase.get_import_job(job_id)
        return ImportJob.from_dict(row) if row else None

    def record_progress(self, job: ImportJob) -> None:
        """
        Persist cursor, stats and progress after a processed month.

        Progress never decreases and stays below 100 until the job succeeds.
        """
        if job.is_terminal:
            raise ValueError(f"Job {job.id} is already {job.status.value}")

        progress = round(job.months_processed / job.total_months * 100)
        job.progress = max(job.progress, min(progress, 99))

        self.supabase.update_import_job(job.id, {
            "progress": job.progress,
            "stats": job.stats.to_dict(),
            "cursor": {"year": job.cursor_year, "month": job.cursor_month},
        })

    def complete(self, job: ImportJob) -> None:
        job.transition_to(JobStatus.SUCCEEDED)
        job.progress = 100
        self.supabase.update_import_job(job.id, {
            "status": job.status.value,
            "progress": job.progress,
            "stats": job.stats.to_dict(),
            "cursor": {"year": job.cursor_year, "month": job.cursor_month},
        })
        logger.info(f"Import job {job.id} succeeded")

    def fail(self, job: ImportJob, error: str) -> None:
        job.transition_to(JobStatus.FAILED)
        job.last_error = error
        self.supabase.update_import_job(job.id, {
            "status": job.status.value,
            "last_error": error,
            "stats": job.stats.to_dict(),
            "cursor": {"year": job.cursor_year, "month": job.cursor_month},
        })
        logger.warning(f"Import job {job.id} failed: {error}")

    def request_cancel(self, job_id: str) -> Optional[ImportJob]:
        """
        Ask a running job to stop. The worker notices at its next
        checkpoint. Terminal jobs are returned unchanged.
        """
        job = self.get_job(job_id)
        if job is None or job.is_terminal:
            return job

        job.cancel_requested = True
        self.supabase.update_import_job(job.id, {"cancel_requested": True})
        logger.info(f"Cancellation requested for import job {job.id}")
        return job

    def cancellation_checkpoint(self, job: ImportJob) -> Callable[[], None]:
        """
        Checkpoint for the sync engine. Re-reads the job's cancel flag at
        most every CANCEL_POLL_SECONDS and raises SyncCancelledError once set.
        """
        last_poll: Optional[float] = None

        def checkpoint() -> None:
            nonlocal last_poll
            now = self._clock()
            if not job.cancel_requested and (last_poll is None or now - last_poll >= CANCEL_POLL_SECONDS):
                last_poll = now
                row = self.supabase.get_import_job(job.id)
                job.cancel_requested = bool(row and row.get("cancel_requested"))
            if job.cancel_requested:
                raise SyncCancelledError(CANCELLED_MESSAGE)

        return checkpoint


class JobConflictError(Exception):
    """Raised when another import for the same company is still running."""

    def __init__(self, message: str, job_id: str = ""):
        super().__init__(message)
        self.job_id = job_id
