"""Request and response models for the HTTP API."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    """camelCase on the wire, snake_case in Python; either is accepted on input."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# Requests

class OrderLineIn(ApiModel):
    item_id: UUID
    quantity: Decimal = Field(gt=0)
    uom: Optional[str] = None
    unit_price: Decimal = Field(default=Decimal("0"), ge=0)
    discount: Decimal = Field(default=Decimal("0"), ge=0)
    description: Optional[str] = None
    line_number: Optional[int] = Field(default=None, gt=0)
    notes: Optional[str] = None


class CreateOrderRequest(ApiModel):
    order_number: str = Field(min_length=1)
    customer_reference: str = Field(min_length=1)
    site_id: Optional[str] = None
    customer_po: Optional[str] = None
    order_date: Optional[datetime] = None
    requested_date: Optional[datetime] = None
    ship_to_name: Optional[str] = None
    ship_to_address1: Optional[str] = None
    ship_to_address2: Optional[str] = None
    ship_to_city: Optional[str] = None
    ship_to_state: Optional[str] = None
    ship_to_zip: Optional[str] = None
    ship_to_country: str = "US"
    shipping_method: Optional[str] = None
    shipping_amount: Decimal = Field(default=Decimal("0"), ge=0)
    discount_amount: Decimal = Field(default=Decimal("0"), ge=0)
    notes: Optional[str] = None
    lines: List[OrderLineIn] = Field(min_length=1)


class CancelOrderRequest(ApiModel):
    release_allocations: bool = False


class CreatePickTaskRequest(ApiModel):
    assigned_to: Optional[str] = None


class RecordPickRequest(ApiModel):
    quantity: Decimal = Field(ge=0)
    short: bool = False


class ShipmentLineIn(ApiModel):
    sales_order_line_id: UUID
    quantity: Decimal = Field(gt=0)


class PackageIn(ApiModel):
    package_type: Optional[str] = None
    tracking_number: Optional[str] = None
    length: Optional[Decimal] = Field(default=None, ge=0)
    width: Optional[Decimal] = Field(default=None, ge=0)
    height: Optional[Decimal] = Field(default=None, ge=0)
    weight: Optional[Decimal] = Field(default=None, ge=0)
    contents: List[dict] = Field(default_factory=list)


class CreateShipmentRequest(ApiModel):
    sales_order_id: UUID
    lines: List[ShipmentLineIn] = Field(min_length=1)
    carrier: Optional[str] = None
    service_level: Optional[str] = None
    ship_to_name: Optional[str] = None
    ship_to_address1: Optional[str] = None
    ship_to_address2: Optional[str] = None
    ship_to_city: Optional[str] = None
    ship_to_state: Optional[str] = None
    ship_to_zip: Optional[str] = None
    ship_to_country: Optional[str] = None
    notes: Optional[str] = None


class DispatchRequest(ApiModel):
    tracking_number: Optional[str] = None
    ship_date: Optional[datetime] = None
    carrier: Optional[str] = None
    packages: List[PackageIn] = Field(default_factory=list)


class DeliverRequest(ApiModel):
    delivered_at: Optional[datetime] = None


class InventoryEventRequest(ApiModel):
    event_type: str
    item_id: UUID
    quantity: Decimal = Field(ge=0)
    uom: Optional[str] = None
    from_location_id: Optional[UUID] = None
    to_location_id: Optional[UUID] = None
    reference_type: Optional[str] = None
    reference_id: Optional[str] = None
    reason_code: Optional[str] = None
    notes: Optional[str] = None


class CreateItemRequest(ApiModel):
    sku: str = Field(min_length=1)
    item_name: str = Field(min_length=1)
    base_uom: str = "EA"
    uom_conversions: Optional[dict[str, Decimal]] = None
    reorder_point: Decimal = Field(default=Decimal("0"), ge=0)
    unit_cost: Optional[Decimal] = Field(default=None, ge=0)
    description: Optional[str] = None


class CreateLocationRequest(ApiModel):
    site_id: str = Field(min_length=1)
    location_code: str = Field(min_length=1)
    location_type: str = "STOCK"
    pick_sequence: int = 100


# Responses

class OrderLineOut(ApiModel):
    sales_order_line_id: UUID
    line_number: int
    item_id: UUID
    description: Optional[str]
    qty_entered: Decimal
    uom_entered: str
    qty_ordered: Decimal
    qty_allocated: Decimal
    qty_picked: Decimal
    qty_shipped: Decimal
    unit_price: Decimal
    line_total: Decimal
    status: str


class OrderOut(ApiModel):
    sales_order_id: UUID
    order_number: str
    customer_reference: str
    site_id: str
    status: str
    order_date: datetime
    subtotal: Decimal
    shipping_amount: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    lines: List[OrderLineOut] = Field(default_factory=list)


class ShortageOut(ApiModel):
    line_id: UUID
    requested: Decimal
    available: Decimal


class AllocationOut(ApiModel):
    allocated_count: int
    shortages: List[ShortageOut]


class PickTaskCreatedOut(ApiModel):
    pick_task_id: UUID
    task_number: str
    line_count: int


class PickTaskLineOut(ApiModel):
    pick_task_line_id: UUID
    sales_order_line_id: UUID
    item_id: UUID
    location_id: Optional[UUID]
    qty_to_pick: Decimal
    qty_picked: Decimal
    short_closed: bool
    status: str


class PickTaskOut(ApiModel):
    pick_task_id: UUID
    task_number: str
    sales_order_id: UUID
    status: str
    assigned_to: Optional[str]
    lines: List[PickTaskLineOut] = Field(default_factory=list)


class ShipmentLineOut(ApiModel):
    shipment_line_id: UUID
    sales_order_line_id: UUID
    item_id: UUID
    qty_shipped: Decimal


class PackageOut(ApiModel):
    shipment_package_id: UUID
    package_number: int
    package_type: Optional[str]
    tracking_number: Optional[str]
    weight: Optional[Decimal]


class ShipmentOut(ApiModel):
    shipment_id: UUID
    shipment_number: str
    sales_order_id: UUID
    status: str
    carrier: Optional[str]
    tracking_number: Optional[str]
    ship_date: Optional[datetime]
    delivered_at: Optional[datetime]
    lines: List[ShipmentLineOut] = Field(default_factory=list)
    packages: List[PackageOut] = Field(default_factory=list)


class InventoryEventOut(ApiModel):
    inventory_event_id: UUID
    event_type: str
    item_id: UUID
    quantity_entered: Decimal
    uom_entered: str
    quantity_base: Decimal
    from_location_id: Optional[UUID]
    to_location_id: Optional[UUID]
    reference_type: Optional[str]
    reference_id: Optional[str]
    occurred_at: datetime


class BalanceOut(ApiModel):
    stock_balance_id: UUID
    site_id: str
    item_id: UUID
    location_id: UUID
    quantity_on_hand: Decimal
    quantity_reserved: Decimal
    quantity_available: Decimal
    last_movement_at: Optional[datetime]


class ItemOut(ApiModel):
    item_id: UUID
    sku: str
    item_name: str
    base_uom: str
    uom_conversions: Optional[dict]
    reorder_point: Decimal
    unit_cost: Optional[Decimal]


class LocationOut(ApiModel):
    location_id: UUID
    site_id: str
    location_code: str
    location_type: str
    pick_sequence: int
