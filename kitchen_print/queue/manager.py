"""
Background dispatch of print jobs.

Each job runs as its own asyncio task, so the caller that created the jobs
gets its response straight away and clients follow progress by polling.
Jobs for different printers and backends finish in no particular order.

Callers that persist jobs before handing them over reserve dispatch slots
first, so a full queue is reported before any job is written.
"""

import asyncio
import logging
from typing import Optional

from kitchen_print.backends import DispatchBackend
from kitchen_print.models import PrinterConfig, PrintJob

logger = logging.getLogger(__name__)


class DispatchQueueFull(Exception):
    """Raised when too many dispatches are already in flight."""
    pass


class Reservation:
    """
    Dispatch slots held for jobs that are about to be created.

    Use as a context manager; slots not used by submit() are given back on exit.
    """

    def __init__(self, dispatcher: "Dispatcher", count: int):
        self._dispatcher = dispatcher
        self.remaining = count

    def submit(
        self,
        backend: DispatchBackend,
        job: PrintJob,
        printer: Optional[PrinterConfig] = None,
        title: Optional[str] = None
    ) -> asyncio.Task:
        if self.remaining <= 0:
            raise DispatchQueueFull("No reserved dispatch slot left")
        self.remaining -= 1
        self._dispatcher._reserved -= 1
        return self._dispatcher._start(backend, job, printer, title)

    def release(self) -> None:
        self._dispatcher._reserved -= self.remaining
        self.remaining = 0

    def __enter__(self) -> "Reservation":
        return self

    def __exit__(self, *exc_info) -> None:
        self.release()


class Dispatcher:
    """Owns the in-flight dispatch tasks."""

    def __init__(self, max_pending: int = 100):
        self._max_pending = max_pending
        self._tasks: dict[str, asyncio.Task] = {}
        self._reserved = 0

    @property
    def pending_count(self) -> int:
        return sum(1 for task in self._tasks.values() if not task.done())

    def is_dispatching(self, job_id: str) -> bool:
        task = self._tasks.get(job_id)
        return task is not None and not task.done()

    def _check_capacity(self, count: int) -> None:
        if self.pending_count + self._reserved + count > self._max_pending:
            raise DispatchQueueFull(f"Dispatch queue full (max {self._max_pending} jobs)")

    def reserve(self, count: int = 1) -> Reservation:
        """Hold count dispatch slots. Raises DispatchQueueFull if they are not free."""
        self._check_capacity(count)
        self._reserved += count
        return Reservation(self, count)

    def submit(
        self,
        backend: DispatchBackend,
        job: PrintJob,
        printer: Optional[PrinterConfig] = None,
        title: Optional[str] = None
    ) -> asyncio.Task:
        """Start dispatching a job in the background."""
        if self.is_dispatching(job.id):
            return self._tasks[job.id]
        self._check_capacity(1)
        return self._start(backend, job, printer, title)

    def _start(
        self,
        backend: DispatchBackend,
        job: PrintJob,
        printer: Optional[PrinterConfig],
        title: Optional[str]
    ) -> asyncio.Task:
        if self.is_dispatching(job.id):
            return self._tasks[job.id]

        task = asyncio.create_task(
            backend.dispatch(job, printer, title),
            name=f"dispatch-{job.id}"
        )
        self._tasks[job.id] = task
        task.add_done_callback(lambda t, job_id=job.id: self._on_done(job_id, t))
        logger.info(f"Job {job.id} handed to {backend.name} backend")
        return task

    def _on_done(self, job_id: str, task: asyncio.Task) -> None:
        # a retry may already have put a newer task under this id
        if self._tasks.get(job_id) is task:
            del self._tasks[job_id]
        if task.cancelled():
            logger.warning(f"Dispatch of job {job_id} was cancelled")
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Dispatch of job {job_id} crashed: {error}")

    async def wait_idle(self, timeout: Optional[float] = None) -> None:
        """Wait until every in-flight dispatch has finished."""
        while self._tasks:
            await asyncio.wait(list(self._tasks.values()), timeout=timeout)
            if timeout is not None:
                return

    async def shutdown(self) -> None:
        """Cancel outstanding dispatches. Their jobs end up failed."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info(f"Cancelled {len(tasks)} in-flight dispatch(es)")
