"""
Request bodies.

Field names follow the order subsystem and admin UI (camelCase); snake_case
is accepted as well.
"""

from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from kitchen_print.models import OrderItem, PrintJobItem


class _Body(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class CategoryRef(_Body):
    id: Optional[str] = None
    name: Optional[str] = None


class OrderItemIn(_Body):
    id: Union[str, int]
    name: str
    quantity: int = 1
    price: float = 0.0
    category_id: Optional[str] = Field(default=None, alias="categoryId")
    category_name: Optional[str] = Field(default=None, alias="categoryName")
    category: Optional[CategoryRef] = None
    notes: Optional[str] = None

    def to_order_item(self) -> OrderItem:
        category = self.category or CategoryRef()
        return OrderItem(
            id=str(self.id),
            name=self.name,
            quantity=self.quantity,
            price=self.price,
            category_id=self.category_id or category.id,
            category_name=self.category_name or category.name,
            notes=self.notes,
        )

    def to_job_item(self) -> PrintJobItem:
        return PrintJobItem.from_order_item(self.to_order_item())


class PrintOrderRequest(_Body):
    order_id: Optional[str] = Field(default=None, alias="orderId")
    order_items: Optional[list[OrderItemIn]] = Field(default=None, alias="orderItems")
    table_number: Optional[Union[str, int]] = Field(default=None, alias="tableNumber")
    guest_count: Optional[int] = Field(default=None, alias="guestCount")
    order_time: Optional[str] = Field(default=None, alias="orderTime")
    backend: Optional[str] = None


class PrintJobCreate(_Body):
    printer_id: str = Field(alias="printerId")
    order_id: str = Field(alias="orderId")
    items: list[OrderItemIn] = Field(min_length=1)
    template: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    backend: Optional[str] = None


class PrinterCreate(_Body):
    name: str = Field(min_length=1)
    ip_address: str = Field(alias="ipAddress")
    port: int
    type: str
    transport: Optional[str] = None
    is_active: bool = Field(default=True, alias="isActive")
    categories: list[str]


class PrinterUpdate(_Body):
    name: Optional[str] = None
    ip_address: Optional[str] = Field(default=None, alias="ipAddress")
    port: Optional[int] = None
    type: Optional[str] = None
    transport: Optional[str] = None
    is_active: Optional[bool] = Field(default=None, alias="isActive")
    categories: Optional[list[str]] = None


class MappingIn(_Body):
    category_id: str = Field(alias="categoryId")
    printer_id: str = Field(alias="printerId")
    priority: Optional[int] = None
    is_active: Optional[bool] = Field(default=None, alias="isActive")


class MappingTable(_Body):
    mappings: list[MappingIn]


class PaymentIn(_Body):
    payment_id: str = Field(alias="paymentId")
    total_amount: float = Field(default=0.0, alias="totalAmount")
    table_number: Optional[Union[str, int]] = Field(default=None, alias="tableNumber")


class PaymentsReportRequest(_Body):
    title: str = "Payments Report"
    payments: list[PaymentIn] = Field(default_factory=list)
    backend: str = "serial"

    def to_job_items(self) -> list[PrintJobItem]:
        return [
            PrintJobItem(
                id=str(index),
                name=f"{p.payment_id} £{p.total_amount:.2f} Table {p.table_number or ''}".rstrip(),
                quantity=1,
                price=p.total_amount,
            )
            for index, p in enumerate(self.payments, start=1)
        ]
