import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Optional

from kitchen_print.models import PrinterConfig, PrintJob
from kitchen_print.tracker import JobTracker

logger = logging.getLogger(__name__)


class DispatchError(Exception):
    """A backend could not produce output for a job."""

    code = "PRINT_ERROR"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        if code:
            self.code = code


class MissingDependencyError(DispatchError):
    """A library or external helper the backend needs is not installed."""

    code = "MISSING_DEPENDENCY"


def job_title(job: PrintJob) -> str:
    """Heading printed on top of a job."""
    meta = job.metadata
    if "title" in meta:
        return str(meta["title"])
    parts = []
    if meta.get("printer_name"):
        parts.append(str(meta["printer_name"]))
    if meta.get("table_number"):
        parts.append(f"Table {meta['table_number']}")
    return " - ".join(parts) or f"Order {job.order_id}"


class DispatchBackend(ABC):
    """
    Base class for dispatch backends.

    dispatch() owns the lifecycle of one job: it marks the job printing,
    runs the backend's output step under a timeout, and marks the job
    completed or failed. Subclasses only implement output().
    """

    name = "base"

    def __init__(self, tracker: JobTracker, config: Optional[dict] = None):
        self.tracker = tracker
        self.config = config or {}
        self.timeout_sec = float(self.config.get("timeout_sec", 10.0))

    @abstractmethod
    async def output(self, job: PrintJob, printer: Optional[PrinterConfig], title: str) -> None:
        """Produce physical or logical output. Raise DispatchError on failure."""
        pass

    async def dispatch(
        self,
        job: PrintJob,
        printer: Optional[PrinterConfig] = None,
        title: Optional[str] = None
    ) -> Optional[PrintJob]:
        """
        Run one dispatch attempt for a pending job.

        Returns the job in its final state, or None if it vanished.
        """
        started = await self.tracker.mark_printing(job.id)
        if started is None:
            return None

        title = title or job_title(started)

        try:
            await asyncio.wait_for(self.output(started, printer, title), timeout=self.timeout_sec)
        except asyncio.TimeoutError:
            logger.error(f"[{self.name}] Job {job.id} timed out after {self.timeout_sec}s")
            return await self.tracker.mark_failed(
                job.id, f"Printer did not respond within {self.timeout_sec:g}s", "TIMEOUT"
            )
        except asyncio.CancelledError:
            await self.tracker.mark_failed(job.id, "Dispatch cancelled", "CANCELLED")
            raise
        except DispatchError as e:
            logger.warning(f"[{self.name}] Job {job.id} failed: {e}")
            return await self.tracker.mark_failed(job.id, str(e), e.code)
        except Exception as e:
            logger.exception(f"[{self.name}] Unexpected error printing job {job.id}")
            return await self.tracker.mark_failed(job.id, str(e) or type(e).__name__, "PRINT_ERROR")

        return await self.tracker.mark_completed(job.id)

    def to_dict(self) -> dict:
        return {"name": self.name, "timeout_sec": self.timeout_sec}
