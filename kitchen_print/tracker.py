"""
Print job lifecycle tracking.

    pending -> printing -> completed
                        -> failed -> (retry) -> pending

Only the backend dispatching a job moves it forward. Polling clients use the
read side, which never changes a job.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from kitchen_print.models import JobStatus, PrintJob
from kitchen_print.store import JobStore

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    JobStatus.PENDING: {JobStatus.PRINTING},
    JobStatus.PRINTING: {JobStatus.COMPLETED, JobStatus.FAILED},
    JobStatus.COMPLETED: set(),
    JobStatus.FAILED: set(),
}

INTERRUPTED_CODE = "INTERRUPTED"
INTERRUPTED_ERROR = "Interrupted before printing finished (service restarted)"


class InvalidTransitionError(Exception):
    """Raised when a job is asked to move to a state it cannot reach."""

    def __init__(self, job_id: str, current: JobStatus, target: JobStatus):
        super().__init__(
            f"Job {job_id} cannot move from {current.value} to {target.value}"
        )
        self.job_id = job_id
        self.current = current
        self.target = target


class RetryLimitExceeded(Exception):
    """Raised when a job has already failed max_retries times."""
    pass


class JobTracker:
    """Guarded reads and updates of print job state."""

    def __init__(
        self,
        jobs: JobStore,
        max_retries: int = 3,
        clock: Callable[[], datetime] = datetime.now
    ):
        self._jobs = jobs
        self.max_retries = max_retries
        self._clock = clock

    async def get_job(self, job_id: str) -> Optional[PrintJob]:
        return await self._jobs.get(job_id)

    async def list_jobs(
        self,
        status: Optional[JobStatus] = None,
        printer_id: Optional[str] = None,
        order_id: Optional[str] = None
    ) -> list[PrintJob]:
        return await self._jobs.query(status=status, printer_id=printer_id, order_id=order_id)

    async def update_job(
        self,
        job_id: str,
        mutator: Callable[[PrintJob], None]
    ) -> Optional[PrintJob]:
        """
        Apply mutator to a job. Returns None (and does nothing) when the job
        has been deleted in the meantime.
        """
        job = await self._jobs.update(job_id, mutator)
        if job is None:
            logger.warning(f"Job {job_id} no longer exists, update skipped")
        return job

    async def delete_job(self, job_id: str) -> Optional[PrintJob]:
        removed = await self._jobs.delete(job_id)
        if removed:
            logger.info(f"[JOB_DELETED] {job_id}")
        return removed

    async def transition(
        self,
        job_id: str,
        target: JobStatus,
        error: Optional[str] = None,
        error_code: Optional[str] = None
    ) -> Optional[PrintJob]:
        now = self._clock()

        def apply(job: PrintJob) -> None:
            if target not in ALLOWED_TRANSITIONS[job.status]:
                raise InvalidTransitionError(job.id, job.status, target)

            job.status = target
            if target == JobStatus.COMPLETED:
                job.completed_at = now
            elif target == JobStatus.FAILED:
                job.completed_at = now
                job.error = error or "Unknown printer error"
                job.error_code = error_code
                job.retry_count += 1

        job = await self.update_job(job_id, apply)
        if job is not None:
            logger.info(f"[JOB_{target.name}] {job_id}" + (f": {error}" if error else ""))
        return job

    async def mark_printing(self, job_id: str) -> Optional[PrintJob]:
        return await self.transition(job_id, JobStatus.PRINTING)

    async def mark_completed(self, job_id: str) -> Optional[PrintJob]:
        return await self.transition(job_id, JobStatus.COMPLETED)

    async def mark_failed(
        self,
        job_id: str,
        error: str,
        error_code: Optional[str] = None
    ) -> Optional[PrintJob]:
        return await self.transition(job_id, JobStatus.FAILED, error=error, error_code=error_code)

    async def retry(self, job_id: str) -> Optional[PrintJob]:
        """
        Put a failed job back to pending for another dispatch attempt.

        The record and its retry_count are kept; retry_count already went up
        when the job failed. Returns None if the job does not exist.
        """
        def apply(job: PrintJob) -> None:
            if job.status != JobStatus.FAILED:
                raise InvalidTransitionError(job.id, job.status, JobStatus.PENDING)
            if job.retry_count >= self.max_retries:
                raise RetryLimitExceeded(
                    f"Job {job.id} already failed {job.retry_count} time(s) "
                    f"(max {self.max_retries})"
                )
            job.status = JobStatus.PENDING
            job.error = None
            job.error_code = None
            job.completed_at = None

        job = await self._jobs.update(job_id, apply)
        if job is not None:
            logger.info(f"[JOB_RETRY] {job_id} (attempt {job.retry_count + 1})")
        return job

    async def recover_interrupted(self) -> int:
        """
        Fail jobs a previous run left pending or printing.

        Nothing dispatches those jobs any more, so they are marked failed with
        code INTERRUPTED and can be retried. Only jobs that had started
        printing count the attempt in retry_count. Returns how many were failed.
        """
        now = self._clock()

        def apply(job: PrintJob) -> None:
            if job.status not in (JobStatus.PENDING, JobStatus.PRINTING):
                return
            if job.status == JobStatus.PRINTING:
                job.retry_count += 1
            job.status = JobStatus.FAILED
            job.completed_at = now
            job.error = INTERRUPTED_ERROR
            job.error_code = INTERRUPTED_CODE

        stale = [
            *await self._jobs.query(status=JobStatus.PENDING),
            *await self._jobs.query(status=JobStatus.PRINTING),
        ]
        for job in stale:
            await self._jobs.update(job.id, apply)

        if stale:
            logger.warning(f"[JOB_INTERRUPTED] {len(stale)} unfinished job(s) from the last run marked failed")
        return len(stale)
