"""
Records shared by the routing engine, the stores and the dispatch backends.
"""

import uuid
from dataclasses import dataclass, field, fields
from datetime import datetime
from enum import Enum
from typing import Any, Optional

UNCATEGORIZED = "uncategorized"
UNKNOWN_CATEGORY_NAME = "Unknown Category"


class PrinterType(Enum):
    THERMAL = "thermal"
    INKJET = "inkjet"
    LASER = "laser"


class Transport(Enum):
    NETWORK = "network"
    SERIAL = "serial"
    SPOOLER = "spooler"


class JobStatus(Enum):
    PENDING = "pending"
    PRINTING = "printing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED)

# Thermal printers speak raw ESC/POS over the network; the rest go through the OS spooler
DEFAULT_TRANSPORTS = {
    PrinterType.THERMAL: Transport.NETWORK,
    PrinterType.INKJET: Transport.SPOOLER,
    PrinterType.LASER: Transport.SPOOLER,
}


def new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_dt(value) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


@dataclass
class PrinterConfig:
    name: str
    ip_address: str
    port: int = 9100
    type: PrinterType = PrinterType.THERMAL
    transport: Optional[Transport] = None
    is_active: bool = True
    categories: list[str] = field(default_factory=list)
    id: str = field(default_factory=lambda: new_id("printer"))
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    def __post_init__(self):
        if isinstance(self.type, str):
            self.type = PrinterType(self.type)
        if isinstance(self.transport, str):
            self.transport = Transport(self.transport)
        if self.transport is None:
            self.transport = DEFAULT_TRANSPORTS[self.type]

    @property
    def endpoint(self) -> tuple[str, int, Transport]:
        return self.ip_address, self.port, self.transport

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "ip_address": self.ip_address,
            "port": self.port,
            "type": self.type.value,
            "transport": self.transport.value,
            "is_active": self.is_active,
            "categories": list(self.categories),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PrinterConfig":
        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in data.items() if k in known}
        for key in ("created_at", "updated_at"):
            if key in kwargs:
                kwargs[key] = _parse_dt(kwargs[key])
        return cls(**kwargs)


@dataclass
class CategoryPrinterMapping:
    category_id: str
    printer_id: str
    priority: int = 1
    is_active: bool = True
    id: str = field(default_factory=lambda: new_id("mapping"))
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    @property
    def pair(self) -> tuple[str, str]:
        return self.category_id, self.printer_id

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "category_id": self.category_id,
            "printer_id": self.printer_id,
            "priority": self.priority,
            "is_active": self.is_active,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CategoryPrinterMapping":
        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in data.items() if k in known}
        for key in ("created_at", "updated_at"):
            if key in kwargs:
                kwargs[key] = _parse_dt(kwargs[key])
        return cls(**kwargs)


@dataclass
class OrderItem:
    """A line of an order as handed over by the order subsystem."""

    id: str
    name: str
    quantity: int
    price: float
    category_id: Optional[str] = None
    category_name: Optional[str] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class PrintJobItem:
    """Snapshot of an order line at job creation time."""

    id: str
    name: str
    quantity: int
    price: float = 0.0
    notes: str = ""
    category_id: Optional[str] = None
    category_name: str = UNKNOWN_CATEGORY_NAME

    @classmethod
    def from_order_item(cls, item: OrderItem) -> "PrintJobItem":
        return cls(
            id=item.id,
            name=item.name,
            quantity=item.quantity,
            price=item.price,
            notes=item.notes or "",
            category_id=item.category_id,
            category_name=item.category_name or UNKNOWN_CATEGORY_NAME,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "quantity": self.quantity,
            "price": self.price,
            "notes": self.notes,
            "category_id": self.category_id,
            "category_name": self.category_name,
        }


@dataclass
class PrintJob:
    order_id: str
    printer_id: str
    items: list[PrintJobItem] = field(default_factory=list)
    template: str = "default"
    status: JobStatus = JobStatus.PENDING
    retry_count: int = 0
    metadata: dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    error_code: Optional[str] = None
    id: str = field(default_factory=lambda: new_id("print-job"))
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "printer_id": self.printer_id,
            "items": [item.to_dict() for item in self.items],
            "template": self.template,
            "status": self.status.value,
            "retry_count": self.retry_count,
            "metadata": dict(self.metadata),
            "error": self.error,
            "error_code": self.error_code,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "completed_at": _iso(self.completed_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PrintJob":
        return cls(
            id=data["id"],
            order_id=data["order_id"],
            printer_id=data["printer_id"],
            items=[PrintJobItem(**item) for item in data.get("items", [])],
            template=data.get("template", "default"),
            status=JobStatus(data.get("status", "pending")),
            retry_count=data.get("retry_count", 0),
            metadata=data.get("metadata") or {},
            error=data.get("error"),
            error_code=data.get("error_code"),
            created_at=_parse_dt(data.get("created_at")) or datetime.now(),
            updated_at=_parse_dt(data.get("updated_at")),
            completed_at=_parse_dt(data.get("completed_at")),
        )
