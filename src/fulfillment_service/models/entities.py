"""Fulfillment database models: catalog, inventory ledger, orders, picking and shipping."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, CheckConstraint, Column, DateTime, Index, UniqueConstraint, Uuid, func, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlmodel import Field, SQLModel

# JSONB on PostgreSQL, plain JSON text elsewhere (SQLite in tests).
PortableJSON = JSON().with_variant(JSONB(), "postgresql")

ZERO = Decimal("0")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def uuid_field() -> Field:
    """Generate UUID primary key field with default value."""
    return Field(default_factory=uuid4, primary_key=True, sa_type=Uuid(as_uuid=True))


def created_at_field() -> Field:
    """Generate created_at timestamp field."""
    return Field(
        default_factory=utcnow,
        sa_column=Column(
            DateTime(timezone=True),
            nullable=False,
            server_default=func.now(),
        ),
    )


def updated_at_field() -> Field:
    """Generate updated_at timestamp field with auto-update."""
    return Field(
        default_factory=utcnow,
        sa_column=Column(
            DateTime(timezone=True),
            nullable=False,
            server_default=func.now(),
            onupdate=func.now(),
        ),
    )


def timestamp_field() -> Field:
    return Field(default=None, sa_type=DateTime(timezone=True))


def quantity_field(default: Optional[Decimal] = ZERO) -> Field:
    if default is None:
        return Field(max_digits=18, decimal_places=3)
    return Field(default=default, max_digits=18, decimal_places=3)


def json_field(nullable: bool = True) -> Field:
    return Field(default=None, sa_column=Column(PortableJSON, nullable=nullable))


def _in_list(column: str, values: tuple[str, ...]) -> str:
    quoted = ", ".join(f"'{value}'" for value in values)
    return f"{column} IN ({quoted})"


LOCATION_TYPES = ("RECEIVING", "STOCK", "WIP", "QC_HOLD", "SHIPPING")
EVENT_TYPES = ("RECEIVE", "MOVE", "ISSUE", "SCRAP", "ADJUST", "COUNT", "RETURN")
RESERVATION_STATUSES = ("active", "released", "consumed")
ORDER_STATUSES = ("DRAFT", "CONFIRMED", "ALLOCATED", "PICKING", "PACKED", "SHIPPED", "DELIVERED", "CANCELLED")
LINE_STATUSES = ("OPEN", "ALLOCATED", "PICKING", "PICKED", "PACKED", "SHIPPED", "CANCELLED")
PICK_TASK_STATUSES = ("PENDING", "IN_PROGRESS", "COMPLETED", "CANCELLED")
OPEN_PICK_TASK_FILTER = _in_list("status", ("PENDING", "IN_PROGRESS"))
SHIPMENT_STATUSES = ("DRAFT", "READY_TO_SHIP", "SHIPPED", "DELIVERED", "CANCELLED")


# 1. Catalog

class Item(SQLModel, table=True):
    """Stock keeping unit with its base unit of measure and conversions."""

    __tablename__ = "item"
    __table_args__ = (
        UniqueConstraint("tenant_id", "sku", name="uq_item_tenant_sku"),
        CheckConstraint("reorder_point >= 0", name="ck_item_reorder_point"),
    )

    item_id: UUID = uuid_field()
    tenant_id: str = Field(index=True)
    sku: str = Field(index=True)
    item_name: str
    description: Optional[str] = None
    base_uom: str = Field(default="EA")
    # uom -> factor to base uom, e.g. {"ROLL": "50"}
    uom_conversions: Optional[dict] = json_field()
    reorder_point: Decimal = quantity_field()
    unit_cost: Optional[Decimal] = Field(default=None, max_digits=18, decimal_places=4)
    is_active: bool = Field(default=True)
    created_at: datetime = created_at_field()
    updated_at: datetime = updated_at_field()


class Location(SQLModel, table=True):
    """Physical bin within a site; pick_sequence orders the walk to shipping."""

    __tablename__ = "location"
    __table_args__ = (
        UniqueConstraint("tenant_id", "site_id", "location_code", name="uq_location_site_code"),
        CheckConstraint(_in_list("location_type", LOCATION_TYPES), name="ck_location_type"),
    )

    location_id: UUID = uuid_field()
    tenant_id: str = Field(index=True)
    site_id: str = Field(index=True)
    location_code: str
    location_type: str = Field(default="STOCK")
    pick_sequence: int = Field(default=100)
    is_active: bool = Field(default=True)
    created_at: datetime = created_at_field()


# 2. Inventory ledger

class StockBalance(SQLModel, table=True):
    """Current quantity per item and location, derived from inventory events."""

    __tablename__ = "stock_balance"
    __table_args__ = (
        UniqueConstraint("tenant_id", "site_id", "item_id", "location_id", name="uq_stock_balance_unique"),
        CheckConstraint("quantity_on_hand >= 0", name="ck_stock_balance_on_hand"),
        CheckConstraint("quantity_reserved >= 0", name="ck_stock_balance_reserved"),
        CheckConstraint("quantity_reserved <= quantity_on_hand", name="ck_stock_balance_reserved_le_on_hand"),
        Index("ix_stock_balance_item", "tenant_id", "site_id", "item_id"),
    )

    stock_balance_id: UUID = uuid_field()
    tenant_id: str
    site_id: str
    item_id: UUID = Field(foreign_key="item.item_id")
    location_id: UUID = Field(foreign_key="location.location_id")
    quantity_on_hand: Decimal = quantity_field()
    quantity_reserved: Decimal = quantity_field()
    version: int = Field(default=0)
    first_received_at: Optional[datetime] = timestamp_field()
    last_movement_at: Optional[datetime] = timestamp_field()

    @property
    def quantity_available(self) -> Decimal:
        return self.quantity_on_hand - self.quantity_reserved


class InventoryEvent(SQLModel, table=True):
    """Append-only ledger entry; balances are the running sum of these."""

    __tablename__ = "inventory_event"
    __table_args__ = (
        CheckConstraint(_in_list("event_type", EVENT_TYPES), name="ck_inventory_event_type"),
        CheckConstraint("quantity_base >= 0", name="ck_inventory_event_quantity"),
        Index("ix_inventory_event_occurred_at", "occurred_at"),
        Index("ix_inventory_event_item", "tenant_id", "item_id"),
        Index("ix_inventory_event_reference", "reference_type", "reference_id"),
    )

    inventory_event_id: UUID = uuid_field()
    tenant_id: str
    site_id: str
    event_type: str
    item_id: UUID = Field(foreign_key="item.item_id")
    quantity_entered: Decimal = quantity_field(None)
    uom_entered: str
    quantity_base: Decimal = quantity_field(None)
    from_location_id: Optional[UUID] = Field(default=None, foreign_key="location.location_id")
    to_location_id: Optional[UUID] = Field(default=None, foreign_key="location.location_id")
    reference_type: Optional[str] = None
    reference_id: Optional[str] = None
    reason_code: Optional[str] = None
    notes: Optional[str] = None
    actor_id: Optional[str] = None
    occurred_at: datetime = created_at_field()


class InventoryReservation(SQLModel, table=True):
    """Soft reservation of stock at one location for one sales order line."""

    __tablename__ = "inventory_reservation"
    __table_args__ = (
        CheckConstraint(_in_list("reservation_status", RESERVATION_STATUSES), name="ck_reservation_status"),
        CheckConstraint("reserved_quantity > 0", name="ck_reservation_quantity"),
        CheckConstraint("consumed_quantity <= reserved_quantity", name="ck_reservation_consumed"),
        Index("ix_reservation_line", "sales_order_line_id", "reservation_status"),
    )

    inventory_reservation_id: UUID = uuid_field()
    tenant_id: str
    sales_order_id: UUID = Field(foreign_key="sales_order.sales_order_id", index=True)
    sales_order_line_id: UUID = Field(foreign_key="sales_order_line.sales_order_line_id")
    stock_balance_id: UUID = Field(foreign_key="stock_balance.stock_balance_id")
    item_id: UUID = Field(foreign_key="item.item_id")
    location_id: UUID = Field(foreign_key="location.location_id")
    reserved_quantity: Decimal = quantity_field(None)
    consumed_quantity: Decimal = quantity_field()
    reservation_status: str = Field(default="active")
    allocation_rank: int = Field(default=0)
    created_at: datetime = created_at_field()
    released_at: Optional[datetime] = timestamp_field()

    @property
    def outstanding_quantity(self) -> Decimal:
        return self.reserved_quantity - self.consumed_quantity


# 3. Sales orders

class SalesOrder(SQLModel, table=True):
    """Customer sales order; status is derived from its lines."""

    __tablename__ = "sales_order"
    __table_args__ = (
        UniqueConstraint("tenant_id", "order_number", name="uq_sales_order_number"),
        CheckConstraint(_in_list("status", ORDER_STATUSES), name="ck_sales_order_status"),
    )

    sales_order_id: UUID = uuid_field()
    tenant_id: str = Field(index=True)
    site_id: str
    order_number: str
    customer_reference: str
    customer_po: Optional[str] = None
    order_date: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
    requested_date: Optional[datetime] = timestamp_field()
    ship_to_name: Optional[str] = None
    ship_to_address1: Optional[str] = None
    ship_to_address2: Optional[str] = None
    ship_to_city: Optional[str] = None
    ship_to_state: Optional[str] = None
    ship_to_zip: Optional[str] = None
    ship_to_country: str = Field(default="US")
    shipping_method: Optional[str] = None
    subtotal: Decimal = Field(default=ZERO, max_digits=18, decimal_places=2)
    shipping_amount: Decimal = Field(default=ZERO, max_digits=18, decimal_places=2)
    discount_amount: Decimal = Field(default=ZERO, max_digits=18, decimal_places=2)
    total_amount: Decimal = Field(default=ZERO, max_digits=18, decimal_places=2)
    status: str = Field(default="DRAFT", index=True)
    notes: Optional[str] = None
    created_by: Optional[str] = None
    confirmed_at: Optional[datetime] = timestamp_field()
    created_at: datetime = created_at_field()
    updated_at: datetime = updated_at_field()


class SalesOrderLine(SQLModel, table=True):
    """Order line with monotonic fulfillment counters in the item's base uom."""

    __tablename__ = "sales_order_line"
    __table_args__ = (
        UniqueConstraint("sales_order_id", "line_number", name="uq_sales_order_line_number"),
        CheckConstraint(_in_list("status", LINE_STATUSES), name="ck_sales_order_line_status"),
        CheckConstraint("qty_ordered > 0", name="ck_line_qty_ordered"),
        CheckConstraint("qty_allocated >= 0 AND qty_allocated <= qty_ordered", name="ck_line_qty_allocated"),
        CheckConstraint("qty_picked >= 0 AND qty_picked <= qty_allocated", name="ck_line_qty_picked"),
        CheckConstraint("qty_shipped >= 0 AND qty_shipped <= qty_picked", name="ck_line_qty_shipped"),
    )

    sales_order_line_id: UUID = uuid_field()
    sales_order_id: UUID = Field(foreign_key="sales_order.sales_order_id", ondelete="CASCADE", index=True)
    tenant_id: str
    line_number: int
    item_id: UUID = Field(foreign_key="item.item_id")
    description: Optional[str] = None
    qty_entered: Decimal = quantity_field(None)
    uom_entered: str
    qty_ordered: Decimal = quantity_field(None)
    unit_price: Decimal = Field(default=ZERO, max_digits=18, decimal_places=4)
    discount: Decimal = Field(default=ZERO, max_digits=18, decimal_places=2)
    line_total: Decimal = Field(default=ZERO, max_digits=18, decimal_places=2)
    qty_allocated: Decimal = quantity_field()
    qty_picked: Decimal = quantity_field()
    qty_shipped: Decimal = quantity_field()
    status: str = Field(default="OPEN")
    notes: Optional[str] = None


# 4. Picking

class PickTask(SQLModel, table=True):
    __tablename__ = "pick_task"
    __table_args__ = (
        UniqueConstraint("tenant_id", "task_number", name="uq_pick_task_number"),
        CheckConstraint(_in_list("status", PICK_TASK_STATUSES), name="ck_pick_task_status"),
        # At most one open task per order.
        Index(
            "uq_pick_task_open_order",
            "sales_order_id",
            unique=True,
            sqlite_where=text(OPEN_PICK_TASK_FILTER),
            postgresql_where=text(OPEN_PICK_TASK_FILTER),
        ),
    )

    pick_task_id: UUID = uuid_field()
    tenant_id: str
    sales_order_id: UUID = Field(foreign_key="sales_order.sales_order_id", index=True)
    task_number: str
    status: str = Field(default="PENDING")
    assigned_to: Optional[str] = None
    created_by: Optional[str] = None
    created_at: datetime = created_at_field()
    started_at: Optional[datetime] = timestamp_field()
    completed_at: Optional[datetime] = timestamp_field()


class PickTaskLine(SQLModel, table=True):
    __tablename__ = "pick_task_line"
    __table_args__ = (
        CheckConstraint(_in_list("status", PICK_TASK_STATUSES), name="ck_pick_task_line_status"),
        CheckConstraint("qty_to_pick > 0", name="ck_pick_line_qty_to_pick"),
        CheckConstraint("qty_picked >= 0 AND qty_picked <= qty_to_pick", name="ck_pick_line_qty_picked"),
    )

    pick_task_line_id: UUID = uuid_field()
    pick_task_id: UUID = Field(foreign_key="pick_task.pick_task_id", ondelete="CASCADE", index=True)
    sales_order_line_id: UUID = Field(foreign_key="sales_order_line.sales_order_line_id", index=True)
    item_id: UUID = Field(foreign_key="item.item_id")
    location_id: Optional[UUID] = Field(default=None, foreign_key="location.location_id")
    qty_to_pick: Decimal = quantity_field(None)
    qty_picked: Decimal = quantity_field()
    short_closed: bool = Field(default=False)
    status: str = Field(default="PENDING")
    picked_by: Optional[str] = None
    last_picked_at: Optional[datetime] = timestamp_field()


# 5. Shipping

class Shipment(SQLModel, table=True):
    __tablename__ = "shipment"
    __table_args__ = (
        UniqueConstraint("tenant_id", "shipment_number", name="uq_shipment_number"),
        CheckConstraint(_in_list("status", SHIPMENT_STATUSES), name="ck_shipment_status"),
    )

    shipment_id: UUID = uuid_field()
    tenant_id: str
    site_id: str
    sales_order_id: UUID = Field(foreign_key="sales_order.sales_order_id", index=True)
    shipment_number: str
    status: str = Field(default="DRAFT")
    carrier: Optional[str] = None
    service_level: Optional[str] = None
    ship_to_name: Optional[str] = None
    ship_to_address1: Optional[str] = None
    ship_to_address2: Optional[str] = None
    ship_to_city: Optional[str] = None
    ship_to_state: Optional[str] = None
    ship_to_zip: Optional[str] = None
    ship_to_country: Optional[str] = None
    tracking_number: Optional[str] = None
    ship_date: Optional[datetime] = timestamp_field()
    delivered_at: Optional[datetime] = timestamp_field()
    notes: Optional[str] = None
    created_by: Optional[str] = None
    shipped_by: Optional[str] = None
    created_at: datetime = created_at_field()


class ShipmentLine(SQLModel, table=True):
    __tablename__ = "shipment_line"
    __table_args__ = (
        UniqueConstraint("shipment_id", "sales_order_line_id", name="uq_shipment_line_order_line"),
        CheckConstraint("qty_shipped > 0", name="ck_shipment_line_qty"),
    )

    shipment_line_id: UUID = uuid_field()
    shipment_id: UUID = Field(foreign_key="shipment.shipment_id", ondelete="CASCADE", index=True)
    sales_order_line_id: UUID = Field(foreign_key="sales_order_line.sales_order_line_id", index=True)
    item_id: UUID = Field(foreign_key="item.item_id")
    qty_shipped: Decimal = quantity_field(None)


class ShipmentPackage(SQLModel, table=True):
    __tablename__ = "shipment_package"
    __table_args__ = (
        UniqueConstraint("shipment_id", "package_number", name="uq_shipment_package_number"),
    )

    shipment_package_id: UUID = uuid_field()
    shipment_id: UUID = Field(foreign_key="shipment.shipment_id", ondelete="CASCADE", index=True)
    package_number: int
    package_type: Optional[str] = None
    tracking_number: Optional[str] = None
    length: Optional[Decimal] = Field(default=None, max_digits=10, decimal_places=2)
    width: Optional[Decimal] = Field(default=None, max_digits=10, decimal_places=2)
    height: Optional[Decimal] = Field(default=None, max_digits=10, decimal_places=2)
    weight: Optional[Decimal] = Field(default=None, max_digits=10, decimal_places=3)
    # [{"sales_order_line_id": ..., "quantity": ...}]
    contents: Optional[list] = json_field()
    created_at: datetime = created_at_field()


# 6. Numbering

class DocumentSequence(SQLModel, table=True):
    """Per-tenant counters behind PICK-000001 / SHP-000001 style numbers."""

    __tablename__ = "document_sequence"
    __table_args__ = (
        UniqueConstraint("tenant_id", "sequence_name", name="uq_document_sequence"),
    )

    document_sequence_id: UUID = uuid_field()
    tenant_id: str
    sequence_name: str
    last_value: int = Field(default=0)


# 7. Audit and Events

class AuditLog(SQLModel, table=True):
    """Audit trail: one row per state transition."""

    __tablename__ = "audit_log"
    __table_args__ = (
        Index("ix_audit_log_recorded_at", "recorded_at"),
        Index("ix_audit_log_entity", "entity_table_name", "entity_primary_identifier"),
    )

    audit_log_id: UUID = uuid_field()
    tenant_id: str
    recorded_at: datetime = created_at_field()
    actor_id: Optional[str] = None
    audited_action: str  # CREATE, CONFIRM, ALLOCATE, PICK, DISPATCH, ...
    entity_table_name: str
    entity_primary_identifier: UUID = Field(sa_type=Uuid(as_uuid=True))
    before_state: Optional[dict] = json_field()
    after_state: Optional[dict] = json_field()
    correlation_identifier: Optional[UUID] = Field(default=None, sa_type=Uuid(as_uuid=True))


class DomainEvent(SQLModel, table=True):
    """Business domain events for integration."""

    __tablename__ = "domain_event"
    __table_args__ = (
        Index("ix_domain_event_occurred_at", "occurred_at"),
        Index("ix_domain_event_aggregate", "aggregate_type", "aggregate_identifier"),
    )

    domain_event_id: UUID = uuid_field()
    tenant_id: str
    occurred_at: datetime = created_at_field()
    event_name: str  # OrderConfirmed, InventoryAllocated, ShipmentDispatched, ...
    aggregate_type: str  # sales_order, pick_task, shipment, inventory_event
    aggregate_identifier: UUID = Field(sa_type=Uuid(as_uuid=True))
    event_payload: dict = json_field(nullable=False)
    actor_id: Optional[str] = None
    correlation_identifier: Optional[UUID] = Field(default=None, sa_type=Uuid(as_uuid=True))


__all__ = [
    "utcnow",
    "Item", "Location",
    "StockBalance", "InventoryEvent", "InventoryReservation",
    "SalesOrder", "SalesOrderLine",
    "PickTask", "PickTaskLine",
    "Shipment", "ShipmentLine", "ShipmentPackage",
    "DocumentSequence",
    "AuditLog", "DomainEvent",
    "LOCATION_TYPES", "EVENT_TYPES",
]
