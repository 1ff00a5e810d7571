"""Sales order lifecycle: creation, confirmation, cancellation and reads."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional
from uuid import UUID

from sqlalchemy import update
from sqlmodel import func, select

from fulfillment_service.auth.capabilities import Action, Actor
from fulfillment_service.db import atomic
from fulfillment_service.domain.status import LineStatus, OrderStatus
from fulfillment_service.exceptions import (
    ContentionError,
    DuplicateOrderNumber,
    InvalidTransition,
    ItemNotFound,
    OrderNotFound,
    ValidationError,
)
from fulfillment_service.models import Item, SalesOrder, SalesOrderLine, Shipment, utcnow
from fulfillment_service.services.allocation_service import AllocationService
from fulfillment_service.services.base import FulfillmentService, snapshot, to_json
from fulfillment_service.services.ledger_service import convert_quantity
from fulfillment_service.services.status_sync import count_open_pick_tasks, order_lines, refresh_order_status

CENTS = Decimal("0.01")


@dataclass
class OrderLineRequest:
    item_id: UUID
    quantity: Decimal
    uom: Optional[str] = None
    unit_price: Decimal = Decimal("0")
    discount: Decimal = Decimal("0")
    description: Optional[str] = None
    line_number: Optional[int] = None
    notes: Optional[str] = None


class OrderService(FulfillmentService):
    """Service for sales order operations."""

    component = "orders"

    def create_order(
        self,
        actor: Actor,
        order_number: str,
        customer_reference: str,
        lines: Iterable[OrderLineRequest],
        *,
        site_id: Optional[str] = None,
        order_date: Optional[datetime] = None,
        shipping_amount: Decimal = Decimal("0"),
        discount_amount: Decimal = Decimal("0"),
        **header,
    ) -> SalesOrder:
        """Create a DRAFT order; quantities are converted to each item's base unit."""
        self._authorize(actor, Action.ORDER_CREATE)
        lines = list(lines)
        site_id = site_id or actor.site_id
        if not site_id:
            raise ValidationError("site_id is required")
        if not lines:
            raise ValidationError("An order needs at least one line")

        duplicate = self.session.exec(
            select(SalesOrder).where(SalesOrder.tenant_id == actor.tenant_id, SalesOrder.order_number == order_number)
        ).first()
        if duplicate:
            raise DuplicateOrderNumber(details={"order_number": order_number})

        item_ids = {line.item_id for line in lines}
        items = {
            item.item_id: item
            for item in self.session.exec(
                select(Item).where(Item.tenant_id == actor.tenant_id, Item.item_id.in_(item_ids))
            )
        }
        missing = item_ids - items.keys()
        if missing:
            raise ItemNotFound(
                message="One or more items not found",
                details={"item_ids": sorted(str(item_id) for item_id in missing)},
            )

        order = SalesOrder(
            tenant_id=actor.tenant_id,
            site_id=site_id,
            order_number=order_number,
            customer_reference=customer_reference,
            order_date=order_date or utcnow(),
            shipping_amount=shipping_amount,
            discount_amount=discount_amount,
            created_by=actor.actor_id,
            **header,
        )
        with atomic(self.session):
            self.session.add(order)
            self.session.flush()

            subtotal = Decimal("0")
            for index, request in enumerate(lines, start=1):
                quantity = Decimal(request.quantity)
                if quantity <= 0:
                    raise ValidationError("Line quantity must be positive", details={"line": index})
                item = items[request.item_id]
                line_total = (quantity * request.unit_price - request.discount).quantize(CENTS)
                subtotal += line_total
                self.session.add(
                    SalesOrderLine(
                        sales_order_id=order.sales_order_id,
                        tenant_id=actor.tenant_id,
                        line_number=request.line_number or index,
                        item_id=item.item_id,
                        description=request.description or item.item_name,
                        qty_entered=quantity,
                        uom_entered=(request.uom or item.base_uom).upper(),
                        qty_ordered=convert_quantity(item, quantity, request.uom),
                        unit_price=request.unit_price,
                        discount=request.discount,
                        line_total=line_total,
                        notes=request.notes,
                    )
                )

            order.subtotal = subtotal
            order.total_amount = (subtotal + shipping_amount - discount_amount).quantize(CENTS)
            self.session.add(order)
            self.session.flush()
            self._create_audit_log(
                actor, "CREATE", "sales_order", order.sales_order_id, after_state=snapshot(order, "order_number", "status")
            )
            self._create_domain_event(
                actor,
                "SalesOrderCreated",
                "sales_order",
                order.sales_order_id,
                to_json({"order_number": order_number, "line_count": len(lines), "total_amount": order.total_amount}),
            )

        self.log.info("Sales order created", order_number=order_number, lines=len(lines), tenant_id=actor.tenant_id)
        self.session.refresh(order)
        return order

    def confirm(self, actor: Actor, order_id: UUID) -> SalesOrder:
        """Move a DRAFT order to CONFIRMED; confirming again is a no-op."""
        self._authorize(actor, Action.ORDER_CONFIRM)
        with atomic(self.session):
            order = self._get_owned(SalesOrder, order_id, actor, OrderNotFound)
            now = utcnow()
            flipped = self._execute(
                update(SalesOrder)
                .where(
                    SalesOrder.sales_order_id == order.sales_order_id,
                    SalesOrder.status == OrderStatus.DRAFT.value,
                )
                .values(status=OrderStatus.CONFIRMED.value, confirmed_at=now, updated_at=now)
            )
            self.session.refresh(order)
            if not flipped:
                if order.status == OrderStatus.CANCELLED.value:
                    raise InvalidTransition(
                        "Cannot confirm a cancelled order",
                        details={"order_id": str(order_id), "status": order.status},
                    )
                return order

            self._create_audit_log(
                actor,
                "CONFIRM",
                "sales_order",
                order.sales_order_id,
                before_state={"status": OrderStatus.DRAFT.value},
                after_state={"status": OrderStatus.CONFIRMED.value},
            )
            self._create_domain_event(
                actor, "OrderConfirmed", "sales_order", order.sales_order_id, {"order_number": order.order_number}
            )

        self.log.info("Sales order confirmed", order_number=order.order_number)
        self.session.refresh(order)
        return order

    def cancel(self, actor: Actor, order_id: UUID, *, release_allocations: bool = False) -> SalesOrder:
        """Cancel an order that has not been picked.

        DRAFT and CONFIRMED orders cancel directly. ALLOCATED orders only
        cancel when ``release_allocations`` is set, which returns their
        reservations to stock. Anything picked or shipped is refused.
        """
        self._authorize(actor, Action.ORDER_CANCEL)
        with atomic(self.session):
            order = self._get_owned(SalesOrder, order_id, actor, OrderNotFound)
            self.session.refresh(order)
            status = OrderStatus(order.status)
            if status == OrderStatus.CANCELLED:
                return order

            details = {"order_id": str(order_id), "status": status.value}
            if status == OrderStatus.ALLOCATED and not release_allocations:
                raise InvalidTransition("Allocated orders must be cancelled with release_allocations", details=details)
            if status not in (OrderStatus.DRAFT, OrderStatus.CONFIRMED, OrderStatus.ALLOCATED):
                raise InvalidTransition(f"Cannot cancel an order in status {status.value}", details=details)
            # Lock the order row before reading its reservations.
            if not self._guard_order(order, [status]):
                raise ContentionError("Order changed while cancelling; retry", details=details)

            lines = order_lines(self.session, order)
            picked = sum((line.qty_picked for line in lines), Decimal("0"))
            shipments = self.session.exec(
                select(func.count()).select_from(Shipment).where(Shipment.sales_order_id == order.sales_order_id)
            ).one()
            if picked > 0 or shipments or count_open_pick_tasks(self.session, order.sales_order_id):
                raise InvalidTransition("Order has picking or shipping activity", details=details)

            released = AllocationService(self.session, self._settings).release_order_reservations(actor, order)
            for line in lines:
                line.status = LineStatus.CANCELLED.value
                self.session.add(line)
            order.status = OrderStatus.CANCELLED.value
            self.session.add(order)

            self._create_audit_log(
                actor,
                "CANCEL",
                "sales_order",
                order.sales_order_id,
                before_state={"status": status.value},
                after_state={"status": OrderStatus.CANCELLED.value, "released_quantity": str(released)},
            )
            self._create_domain_event(
                actor,
                "OrderCancelled",
                "sales_order",
                order.sales_order_id,
                to_json({"order_number": order.order_number, "released_quantity": released}),
            )

        self.log.info("Sales order cancelled", order_number=order.order_number, released=str(released))
        self.session.refresh(order)
        return order

    def get_order(self, actor: Actor, order_id: UUID) -> SalesOrder:
        """Load an order with its status re-derived from the current lines."""
        self._authorize(actor, Action.VIEW)
        with atomic(self.session):
            order = self._get_owned(SalesOrder, order_id, actor, OrderNotFound)
            refresh_order_status(self.session, order)
        self.session.refresh(order)
        return order

    def get_lines(self, actor: Actor, order_id: UUID) -> List[SalesOrderLine]:
        order = self._get_owned(SalesOrder, order_id, actor, OrderNotFound)
        return order_lines(self.session, order)

    def list_orders(
        self,
        actor: Actor,
        *,
        status: Optional[str] = None,
        search: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[SalesOrder]:
        """Get sales orders with filtering, newest first."""
        self._authorize(actor, Action.VIEW)
        stmt = select(SalesOrder).where(SalesOrder.tenant_id == actor.tenant_id)
        if status:
            try:
                wanted = OrderStatus(status.upper())
            except ValueError as exc:
                raise ValidationError(f"Unknown order status {status}") from exc
            stmt = stmt.where(SalesOrder.status == wanted.value)
        if search:
            pattern = f"%{search}%"
            stmt = stmt.where(SalesOrder.order_number.ilike(pattern) | SalesOrder.customer_reference.ilike(pattern))
        stmt = stmt.order_by(SalesOrder.order_date.desc()).offset(offset).limit(limit)
        return list(self.session.exec(stmt))


__all__ = ["OrderService", "OrderLineRequest"]
