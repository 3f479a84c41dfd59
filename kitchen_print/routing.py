"""
Category-based routing for kitchen print jobs.

Splits an order into category groups and sends each group to the
highest-priority active printer mapped to that category.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from kitchen_print.models import (
    UNCATEGORIZED,
    OrderItem,
    PrinterConfig,
    PrintJob,
    PrintJobItem,
)
from kitchen_print.store import JobStore, MappingStore, PrinterStore

logger = logging.getLogger(__name__)

KITCHEN_TEMPLATE = "kitchen-order"


class RoutingError(Exception):
    """Base class for errors that abort a whole routing call."""
    pass


class OrderValidationError(RoutingError):
    """The order is malformed (missing id, no items)."""
    pass


class PrinterConfigurationError(RoutingError):
    """No printers are registered at all."""
    pass


@dataclass
class RoutingResult:
    jobs: list[PrintJob] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def message(self) -> str:
        order_id = self.jobs[0].order_id if self.jobs else None
        text = f"Created {len(self.jobs)} print job(s)"
        if order_id:
            text += f" for order {order_id}"
        if self.warnings:
            text += f". Warning: {len(self.warnings)} category(ies) could not be printed."
        return text


def group_items_by_category(items: list[OrderItem]) -> dict[str, list[OrderItem]]:
    """Group items by category id, keeping first-occurrence order."""
    groups: dict[str, list[OrderItem]] = {}
    for item in items:
        groups.setdefault(item.category_id or UNCATEGORIZED, []).append(item)
    return groups


class OrderRouter:
    """
    Routes order items to printers through the category mapping table.

    Only the first (lowest priority number) active printer of a category
    gets the job. There is no fan-out to the other candidates and no
    failover to them when the chosen printer fails at dispatch time.
    """

    def __init__(self, printers: PrinterStore, mappings: MappingStore, jobs: JobStore):
        self._printers = printers
        self._mappings = mappings
        self._jobs = jobs

    async def find_printers_for_category(self, category_id: str) -> list[PrinterConfig]:
        """Active printers serving a category, best candidate first."""
        mappings = [m for m in await self._mappings.for_category(category_id) if m.is_active]
        # sorted() is stable, equal priorities keep insertion order
        mappings = sorted(mappings, key=lambda m: m.priority)

        candidates = []
        for mapping in mappings:
            printer = await self._printers.get(mapping.printer_id)
            if printer and printer.is_active:
                candidates.append(printer)
        return candidates

    async def resolve(self, category_id: str) -> Optional[PrinterConfig]:
        candidates = await self.find_printers_for_category(category_id)
        return candidates[0] if candidates else None

    async def route_order(
        self,
        order_id: str,
        items: list[OrderItem],
        table_number: Optional[str] = None,
        guest_count: Optional[int] = None,
        order_time: Optional[str] = None
    ) -> RoutingResult:
        """
        Create one pending job per category that resolves to a printer.

        Raises:
            OrderValidationError: missing order id or no items
            PrinterConfigurationError: the printer registry is empty
        """
        if not order_id:
            raise OrderValidationError("Order ID and order items are required")
        if items is None:
            raise OrderValidationError("Order ID and order items are required")
        if not items:
            raise OrderValidationError("Order must contain at least one item")

        if await self._printers.count() == 0:
            raise PrinterConfigurationError("No printers configured. Please set up printers first.")

        result = RoutingResult()
        order_time = order_time or datetime.now().isoformat()

        for category_id, group in group_items_by_category(items).items():
            printer = await self.resolve(category_id)
            if printer is None:
                warning = f"No active printer found for category: {category_id}"
                logger.warning(f"[ROUTE_SKIPPED] order={order_id} {warning}")
                result.warnings.append(warning)
                continue

            job = PrintJob(
                order_id=order_id,
                printer_id=printer.id,
                items=[PrintJobItem.from_order_item(item) for item in group],
                template=KITCHEN_TEMPLATE,
                metadata={
                    "table_number": table_number or "Unknown",
                    "guest_count": guest_count or 1,
                    "order_time": order_time,
                    "category_id": category_id,
                    "printer_name": printer.name,
                    "categories": list(printer.categories),
                },
            )
            result.jobs.append(job)
            logger.info(
                f"[ROUTED] order={order_id} category={category_id} -> {printer.name} ({printer.id})"
            )

        if result.jobs:
            await self._jobs.add_many(result.jobs)

        return result
