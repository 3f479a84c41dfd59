"""
Print service: the entry points used by the HTTP layer.

Ties routing, job tracking and dispatch together. Jobs are created and
persisted synchronously; printing happens in the background.
"""

import logging
from typing import Optional

from kitchen_print.backends import BackendRegistry, DispatchBackend
from kitchen_print.models import OrderItem, PrintJob, PrintJobItem
from kitchen_print.queue import Dispatcher, Reservation
from kitchen_print.routing import OrderRouter, RoutingResult, group_items_by_category
from kitchen_print.store import JobStore, MappingStore, PrinterStore
from kitchen_print.tracker import JobTracker

logger = logging.getLogger(__name__)

REPORT_TEMPLATE = "payments-report"


class UnknownBackendError(Exception):
    """Raised when a caller asks for a backend that is not registered."""
    pass


class JobNotFoundError(Exception):
    pass


class PrintService:
    def __init__(
        self,
        printers: PrinterStore,
        mappings: MappingStore,
        jobs: JobStore,
        tracker: JobTracker,
        backends: BackendRegistry,
        dispatcher: Dispatcher
    ):
        self.printers = printers
        self.mappings = mappings
        self.jobs = jobs
        self.tracker = tracker
        self.backends = backends
        self.dispatcher = dispatcher
        self.router = OrderRouter(printers, mappings, jobs)

    def backend(self, name: Optional[str] = None) -> DispatchBackend:
        backend = self.backends.get(name)
        if backend is None:
            raise UnknownBackendError(
                f"Unknown backend: '{name}'. Available: {self.backends.names()}"
            )
        return backend

    async def _schedule(self, slots: Reservation, backend: DispatchBackend, job: PrintJob) -> None:
        printer = await self.printers.get(job.printer_id)
        slots.submit(backend, job, printer)

    async def print_order(
        self,
        order_id: str,
        items: list[OrderItem],
        table_number: Optional[str] = None,
        guest_count: Optional[int] = None,
        order_time: Optional[str] = None,
        backend: Optional[str] = None
    ) -> RoutingResult:
        """Route an order and start printing its jobs without waiting for them."""
        dispatch_backend = self.backend(backend)

        # at most one job per category
        with self.dispatcher.reserve(len(group_items_by_category(items or []))) as slots:
            result = await self.router.route_order(
                order_id, items,
                table_number=table_number,
                guest_count=guest_count,
                order_time=order_time
            )

            for job in result.jobs:
                await self._schedule(slots, dispatch_backend, job)

        logger.info(f"Order {order_id}: {result.message}")
        return result

    async def create_job(
        self,
        printer_id: str,
        order_id: str,
        items: list[PrintJobItem],
        template: Optional[str] = None,
        metadata: Optional[dict] = None,
        backend: Optional[str] = None
    ) -> PrintJob:
        """Create and schedule a single job for an explicit printer."""
        dispatch_backend = self.backend(backend)
        job = PrintJob(
            order_id=order_id,
            printer_id=printer_id,
            items=items,
            template=template or "default",
            metadata=metadata or {},
        )
        with self.dispatcher.reserve(1) as slots:
            job = await self.jobs.add(job)
            await self._schedule(slots, dispatch_backend, job)
        return job

    async def retry_job(self, job_id: str, backend: Optional[str] = None) -> PrintJob:
        """
        Send a failed job through dispatch again.

        Raises JobNotFoundError, InvalidTransitionError, RetryLimitExceeded
        or DispatchQueueFull. A full queue leaves the job failed.
        """
        dispatch_backend = self.backend(backend)
        with self.dispatcher.reserve(1) as slots:
            job = await self.tracker.retry(job_id)
            if job is None:
                raise JobNotFoundError(f"Job not found: {job_id}")
            await self._schedule(slots, dispatch_backend, job)
        return job

    async def print_report(
        self,
        title: str,
        items: list[PrintJobItem],
        backend: str
    ) -> PrintJob:
        """
        Print an ad-hoc report (e.g. the payments list) and wait for the result.

        The job is recorded like any other so it shows up in the jobs view.
        """
        dispatch_backend = self.backend(backend)
        job = PrintJob(
            order_id=f"report-{title}",
            printer_id=dispatch_backend.name,
            items=items,
            template=REPORT_TEMPLATE,
            metadata={"title": title, "printer_name": dispatch_backend.name},
        )
        job = await self.jobs.add(job)
        finished = await dispatch_backend.dispatch(job, title=title)
        return finished or job

    async def summary(self) -> dict:
        return {
            "printers": await self.printers.count(),
            "active_printers": len(await self.printers.list_active()),
            "mappings": await self.mappings.count(),
            "jobs": await self.jobs.count_by_status(),
            "dispatching": self.dispatcher.pending_count,
        }
