"""
API routes for the kitchen print gateway.

Base URL: /v1
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, HTTPException, Query

from kitchen_print.api.dependencies import get_print_service
from kitchen_print.api.schemas import (
    MappingIn,
    MappingTable,
    PaymentsReportRequest,
    PrinterCreate,
    PrinterUpdate,
    PrintJobCreate,
    PrintOrderRequest,
)
from kitchen_print.models import (
    CategoryPrinterMapping,
    JobStatus,
    PrinterConfig,
    PrinterType,
    Transport,
)
from kitchen_print.queue import DispatchQueueFull
from kitchen_print.routing import RoutingError
from kitchen_print.service import JobNotFoundError, UnknownBackendError
from kitchen_print.store import DuplicateRecordError, StoreValidationError
from kitchen_print.tracker import InvalidTransitionError, RetryLimitExceeded

router = APIRouter(prefix="/v1")

# Track server start time
_server_start_time = datetime.now()

# HTTP status for report failures the operator has to fix
REPORT_ERROR_STATUS = {
    "NO_PORT": 404,
    "MISSING_DEPENDENCY": 500,
}


@router.get("/health")
async def health_check(detailed: bool = Query(default=False)):
    """
    Health check endpoint.

    Args:
        detailed: If true, include store and dispatch counters
    """
    if not detailed:
        return {"status": "ok"}

    service = get_print_service()
    summary = await service.summary()
    uptime_seconds = (datetime.now() - _server_start_time).total_seconds()

    return {
        "status": "ok" if summary["active_printers"] else "degraded",
        "uptime_seconds": int(uptime_seconds),
        **summary,
        "backends": [b.to_dict() for b in service.backends.list_all()],
        "default_backend": service.backends.default,
    }


# =============================================================================
# Order printing and job tracking
# =============================================================================

@router.post("/print-order")
async def print_order(body: PrintOrderRequest):
    """
    Split an order by category and send each part to its kitchen printer.

    Returns as soon as the jobs exist; poll /print-jobs for their progress.
    """
    service = get_print_service()

    try:
        result = await service.print_order(
            order_id=body.order_id,
            items=[item.to_order_item() for item in body.order_items] if body.order_items is not None else None,
            table_number=str(body.table_number) if body.table_number is not None else None,
            guest_count=body.guest_count,
            order_time=body.order_time,
            backend=body.backend,
        )
    except (RoutingError, UnknownBackendError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except DispatchQueueFull as e:
        raise HTTPException(status_code=503, detail=str(e))

    return {
        "jobs": [job.to_dict() for job in result.jobs],
        "warnings": result.warnings,
        "message": result.message,
    }


@router.get("/print-jobs")
async def list_print_jobs(
    status: Optional[JobStatus] = None,
    printer_id: Optional[str] = None,
    order_id: Optional[str] = None
):
    """List print jobs, newest first."""
    service = get_print_service()
    jobs = await service.tracker.list_jobs(status=status, printer_id=printer_id, order_id=order_id)
    return {"jobs": [job.to_dict() for job in jobs]}


@router.post("/print-jobs")
async def create_print_job(body: PrintJobCreate):
    """Create a print job for an explicit printer and start printing it."""
    service = get_print_service()

    try:
        job = await service.create_job(
            printer_id=body.printer_id,
            order_id=body.order_id,
            items=[item.to_job_item() for item in body.items],
            template=body.template,
            metadata=body.metadata,
            backend=body.backend,
        )
    except UnknownBackendError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except DispatchQueueFull as e:
        raise HTTPException(status_code=503, detail=str(e))

    return {"job": job.to_dict(), "message": "Print job created successfully"}


@router.get("/print-jobs/{job_id}")
async def get_print_job(job_id: str):
    """Get a specific print job."""
    job = await get_print_service().tracker.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail=f"Job not found: {job_id}")
    return job.to_dict()


@router.delete("/print-jobs/{job_id}")
async def delete_print_job(job_id: str):
    """Remove a print job record."""
    removed = await get_print_service().tracker.delete_job(job_id)
    if removed is None:
        raise HTTPException(status_code=404, detail=f"Job not found: {job_id}")
    return {"message": "Job deleted", "job_id": job_id}


@router.post("/print-jobs/{job_id}/retry")
async def retry_print_job(job_id: str, backend: Optional[str] = None):
    """Dispatch a failed job again."""
    service = get_print_service()

    try:
        job = await service.retry_job(job_id, backend=backend)
    except JobNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except (InvalidTransitionError, RetryLimitExceeded) as e:
        raise HTTPException(status_code=409, detail=str(e))
    except UnknownBackendError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except DispatchQueueFull as e:
        raise HTTPException(status_code=503, detail=str(e))

    return {"job": job.to_dict(), "message": "Job queued for retry"}


@router.post("/print-report")
async def print_payments_report(body: PaymentsReportRequest):
    """
    Print a payments report on a serial/Bluetooth or spooler printer.

    Unlike order printing this waits for the printer and reports the outcome.
    """
    if not body.payments:
        raise HTTPException(status_code=400, detail="No payments provided")

    service = get_print_service()
    try:
        job = await service.print_report(body.title, body.to_job_items(), backend=body.backend)
    except UnknownBackendError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if job.status == JobStatus.FAILED:
        raise HTTPException(
            status_code=REPORT_ERROR_STATUS.get(job.error_code, 502),
            detail=job.error
        )

    return {"job": job.to_dict(), "message": f"Payments report sent to {body.backend} printer"}


# =============================================================================
# Printer registry
# =============================================================================

@router.get("/printers")
async def list_printers():
    printers = await get_print_service().printers.list_all()
    return {"printers": [p.to_dict() for p in printers]}


@router.post("/printers")
async def create_printer(body: PrinterCreate):
    service = get_print_service()

    try:
        printer = PrinterConfig(
            name=body.name,
            ip_address=body.ip_address,
            port=body.port,
            type=PrinterType(body.type),
            transport=Transport(body.transport) if body.transport else None,
            is_active=body.is_active,
            categories=body.categories,
        )
        printer = await service.printers.add(printer)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Invalid printer: {e}")
    except (StoreValidationError, DuplicateRecordError) as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {"printer": printer.to_dict(), "message": "Printer created successfully"}


@router.get("/printers/{printer_id}")
async def get_printer(printer_id: str):
    printer = await get_print_service().printers.get(printer_id)
    if printer is None:
        raise HTTPException(status_code=404, detail="Printer not found")
    return printer.to_dict()


@router.put("/printers/{printer_id}")
async def update_printer(printer_id: str, body: PrinterUpdate):
    service = get_print_service()
    changes = body.model_dump(exclude_unset=True)

    nulls = sorted(key for key, value in changes.items() if value is None)
    if nulls:
        raise HTTPException(status_code=400, detail=f"Fields cannot be null: {', '.join(nulls)}")

    try:
        if "type" in changes:
            changes["type"] = PrinterType(changes["type"])
        if "transport" in changes:
            changes["transport"] = Transport(changes["transport"])
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Invalid printer: {e}")

    def apply(printer: PrinterConfig) -> None:
        for key, value in changes.items():
            setattr(printer, key, value)

    try:
        printer = await service.printers.update(printer_id, apply)
    except (StoreValidationError, DuplicateRecordError) as e:
        raise HTTPException(status_code=400, detail=str(e))

    if printer is None:
        raise HTTPException(status_code=404, detail="Printer not found")
    return {"printer": printer.to_dict(), "message": "Printer updated successfully"}


@router.delete("/printers/{printer_id}")
async def delete_printer(printer_id: str):
    printer = await get_print_service().printers.delete(printer_id)
    if printer is None:
        raise HTTPException(status_code=404, detail="Printer not found")
    return {"printer": printer.to_dict(), "message": "Printer deleted successfully"}


# =============================================================================
# Category to printer mappings
# =============================================================================

@router.get("/category-printer-mappings")
async def list_mappings():
    mappings = await get_print_service().mappings.list_all()
    return {"mappings": [m.to_dict() for m in mappings]}


@router.post("/category-printer-mappings")
async def create_mapping(body: MappingIn):
    service = get_print_service()
    mapping = CategoryPrinterMapping(
        category_id=body.category_id,
        printer_id=body.printer_id,
        priority=body.priority or 1,
        is_active=body.is_active is not False,
    )

    try:
        mapping = await service.mappings.add(mapping)
    except (StoreValidationError, DuplicateRecordError) as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {"mapping": mapping.to_dict(), "message": "Category-printer mapping created successfully"}


@router.put("/category-printer-mappings")
async def replace_mappings(body: MappingTable):
    """Replace the whole mapping table with the submitted rows."""
    service = get_print_service()

    try:
        mappings = await service.mappings.replace_all(
            [m.model_dump() for m in body.mappings]
        )
    except (StoreValidationError, DuplicateRecordError) as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {
        "mappings": [m.to_dict() for m in mappings],
        "message": "Category-printer mappings updated successfully",
    }


@router.delete("/category-printer-mappings/{mapping_id}")
async def delete_mapping(mapping_id: str):
    mapping = await get_print_service().mappings.delete(mapping_id)
    if mapping is None:
        raise HTTPException(status_code=404, detail="Mapping not found")
    return {"mapping": mapping.to_dict(), "message": "Mapping deleted successfully"}
