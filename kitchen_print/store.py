"""
Record stores for printers, category mappings and print jobs.

Every mutation runs under the store's lock and touches a single record (or
inserts a batch in one step), so concurrent requests never overwrite each
other's changes with a stale snapshot.

When a path is given the store also keeps a JSON snapshot on disk. The file
is rewritten atomically after each mutation, while the lock is still held.
"""

import asyncio
import copy
import ipaddress
import json
import logging
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Callable, Generic, Iterable, Optional, TypeVar

from kitchen_print.models import (
    CategoryPrinterMapping,
    JobStatus,
    PrinterConfig,
    PrinterType,
    PrintJob,
    Transport,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StoreError(Exception):
    """Base class for store errors."""
    pass


class StoreValidationError(StoreError):
    """Raised when a record fails validation."""
    pass


class DuplicateRecordError(StoreError):
    """Raised when a record would break a uniqueness rule."""
    pass


class RecordStore(Generic[T]):
    """
    In-memory keyed store with optional JSON persistence.

    Records are handed out as copies. Callers change a record only through
    update(), which applies a mutator to a fresh copy and swaps it in.
    """

    record_name = "record"

    def __init__(self, path: Optional[Path] = None):
        self._records: dict[str, T] = {}
        self._lock = asyncio.Lock()
        self._path = Path(path) if path else None

        if self._path and self._path.exists():
            self._load()

    # Subclass hooks

    def _to_dict(self, record: T) -> dict:
        return record.to_dict()

    def _from_dict(self, data: dict) -> T:
        raise NotImplementedError

    def _validate(self, record: T, others: Iterable[T]) -> None:
        """Raise StoreValidationError / DuplicateRecordError if record is unacceptable."""
        pass

    # Reads

    async def get(self, record_id: str) -> Optional[T]:
        record = self._records.get(record_id)
        return copy.deepcopy(record) if record is not None else None

    async def list_all(self) -> list[T]:
        return [copy.deepcopy(r) for r in self._records.values()]

    async def count(self) -> int:
        return len(self._records)

    # Writes

    async def add(self, record: T) -> T:
        async with self._lock:
            self._validate(record, self._records.values())
            self._commit({**self._records, record.id: copy.deepcopy(record)})
        logger.debug(f"Added {self.record_name} {record.id}")
        return copy.deepcopy(record)

    async def add_many(self, records: list[T]) -> list[T]:
        """Insert a batch of records in a single write."""
        async with self._lock:
            accepted: list[T] = []
            for record in records:
                self._validate(record, [*self._records.values(), *accepted])
                accepted.append(record)
            candidate = dict(self._records)
            for record in accepted:
                candidate[record.id] = copy.deepcopy(record)
            self._commit(candidate)
        return [copy.deepcopy(r) for r in records]

    async def update(self, record_id: str, mutator: Callable[[T], None]) -> Optional[T]:
        """
        Apply mutator to a copy of one record and store the result.

        Returns the updated record, or None if the record does not exist.
        Exceptions raised by the mutator leave the stored record untouched.
        """
        async with self._lock:
            current = self._records.get(record_id)
            if current is None:
                return None

            updated = copy.deepcopy(current)
            mutator(updated)
            if hasattr(updated, "updated_at"):
                updated.updated_at = datetime.now()

            others = [r for rid, r in self._records.items() if rid != record_id]
            self._validate(updated, others)

            self._commit({**self._records, record_id: updated})
            return copy.deepcopy(updated)

    async def delete(self, record_id: str) -> Optional[T]:
        async with self._lock:
            if record_id not in self._records:
                return None
            candidate = dict(self._records)
            removed = candidate.pop(record_id)
            self._commit(candidate)
        return removed

    # Persistence

    def _load(self) -> None:
        with open(self._path) as f:
            raw = json.load(f)
        for data in raw:
            record = self._from_dict(data)
            self._records[record.id] = record
        logger.info(f"Loaded {len(self._records)} {self.record_name}(s) from {self._path}")

    def _commit(self, records: dict[str, T]) -> None:
        """Write records to disk, then make them the live set. A failed write changes nothing."""
        self._persist(records)
        self._records = records

    def _persist(self, records: dict[str, T]) -> None:
        if self._path is None:
            return

        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = [self._to_dict(r) for r in records.values()]

        fd, temp_path = tempfile.mkstemp(dir=self._path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(payload, f, indent=2)
            os.replace(temp_path, self._path)
        except Exception:
            os.unlink(temp_path)
            raise


class PrinterStore(RecordStore[PrinterConfig]):
    """Printer registry."""

    record_name = "printer"

    def _from_dict(self, data: dict) -> PrinterConfig:
        return PrinterConfig.from_dict(data)

    def _validate(self, record: PrinterConfig, others: Iterable[PrinterConfig]) -> None:
        if not record.name or not isinstance(record.name, str):
            raise StoreValidationError("Printer name is required")

        if not isinstance(record.type, PrinterType):
            raise StoreValidationError("Printer type must be one of: thermal, inkjet, laser")
        if not isinstance(record.transport, Transport):
            raise StoreValidationError("Transport must be one of: network, serial, spooler")
        if not isinstance(record.is_active, bool):
            raise StoreValidationError("is_active must be true or false")

        try:
            ipaddress.IPv4Address(record.ip_address)
        except ValueError:
            raise StoreValidationError("Invalid IP address format")

        if not isinstance(record.port, int) or not 1 <= record.port <= 65535:
            raise StoreValidationError("Port must be between 1 and 65535")

        if not isinstance(record.categories, list):
            raise StoreValidationError("Categories must be provided as a list")

        if not record.is_active:
            return

        for other in others:
            if other.is_active and other.endpoint == record.endpoint:
                raise DuplicateRecordError(
                    f"Printer with address {record.ip_address}:{record.port} "
                    f"already exists for transport '{record.transport.value}'"
                )

    async def list_active(self) -> list[PrinterConfig]:
        return [p for p in await self.list_all() if p.is_active]


class MappingStore(RecordStore[CategoryPrinterMapping]):
    """Category to printer mapping table."""

    record_name = "mapping"

    def _from_dict(self, data: dict) -> CategoryPrinterMapping:
        return CategoryPrinterMapping.from_dict(data)

    def _validate(
        self,
        record: CategoryPrinterMapping,
        others: Iterable[CategoryPrinterMapping]
    ) -> None:
        if not record.category_id or not record.printer_id:
            raise StoreValidationError("Category ID and Printer ID are required")

        if not isinstance(record.priority, int) or isinstance(record.priority, bool):
            raise StoreValidationError("Priority must be an integer")

        for other in others:
            if other.pair == record.pair:
                raise DuplicateRecordError(
                    "Mapping between this category and printer already exists"
                )

    async def for_category(self, category_id: str) -> list[CategoryPrinterMapping]:
        """All mappings for a category, in insertion order."""
        return [m for m in await self.list_all() if m.category_id == category_id]

    async def replace_all(self, entries: list[dict]) -> list[CategoryPrinterMapping]:
        """
        Replace the mapping table with the given entries.

        Entries matching an existing (category, printer) pair keep the
        existing id and creation time; missing priority / is_active fields
        fall back to the existing row, or to 1 / True for new rows.
        """
        async with self._lock:
            by_pair = {m.pair: m for m in self._records.values()}
            now = datetime.now()
            result: list[CategoryPrinterMapping] = []

            for entry in entries:
                pair = (entry.get("category_id"), entry.get("printer_id"))
                existing = by_pair.get(pair)

                if existing:
                    mapping = copy.deepcopy(existing)
                    if entry.get("priority") is not None:
                        mapping.priority = entry["priority"]
                    if entry.get("is_active") is not None:
                        mapping.is_active = entry["is_active"]
                    mapping.updated_at = now
                else:
                    mapping = CategoryPrinterMapping(
                        category_id=pair[0],
                        printer_id=pair[1],
                        priority=entry.get("priority") or 1,
                        is_active=entry.get("is_active", True) is not False,
                    )

                self._validate(mapping, result)
                result.append(mapping)

            self._commit({m.id: m for m in result})

        logger.info(f"Mapping table replaced ({len(result)} mapping(s))")
        return [copy.deepcopy(m) for m in result]


class JobStore(RecordStore[PrintJob]):
    """Print job store. Jobs are never removed automatically."""

    record_name = "print job"

    def _from_dict(self, data: dict) -> PrintJob:
        return PrintJob.from_dict(data)

    async def query(
        self,
        status: Optional[JobStatus] = None,
        printer_id: Optional[str] = None,
        order_id: Optional[str] = None
    ) -> list[PrintJob]:
        """Filtered jobs, newest first."""
        jobs = await self.list_all()
        if status:
            jobs = [j for j in jobs if j.status == status]
        if printer_id:
            jobs = [j for j in jobs if j.printer_id == printer_id]
        if order_id:
            jobs = [j for j in jobs if j.order_id == order_id]
        return sorted(jobs, key=lambda j: j.created_at, reverse=True)

    async def count_by_status(self) -> dict[str, int]:
        counts = {status.value: 0 for status in JobStatus}
        for job in self._records.values():
            counts[job.status.value] += 1
        return counts
