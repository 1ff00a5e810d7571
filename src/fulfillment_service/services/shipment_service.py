"""Shipment building, packing, dispatch and delivery."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional
from uuid import UUID

from sqlalchemy import update
from sqlmodel import func, select

from fulfillment_service.auth.capabilities import Action, Actor
from fulfillment_service.db import atomic
from fulfillment_service.domain.status import DISPATCHABLE_SHIPMENT_STATUSES, OrderStatus, ShipmentStatus
from fulfillment_service.exceptions import (
    AlreadyShipped,
    ExceedsPicked,
    InvalidTransition,
    OrderLineNotFound,
    OrderNotFound,
    OverShipment,
    ShipmentNotFound,
    ValidationError,
)
from fulfillment_service.models import (
    SalesOrder,
    SalesOrderLine,
    Shipment,
    ShipmentLine,
    ShipmentPackage,
    utcnow,
)
from fulfillment_service.services.allocation_service import AllocationService
from fulfillment_service.services.base import FulfillmentService, to_json
from fulfillment_service.services.status_sync import order_lines, refresh_order_status

SHIP_TO_FIELDS = (
    "ship_to_name",
    "ship_to_address1",
    "ship_to_address2",
    "ship_to_city",
    "ship_to_state",
    "ship_to_zip",
    "ship_to_country",
)
_DISPATCHABLE = [status.value for status in DISPATCHABLE_SHIPMENT_STATUSES]


@dataclass
class ShipmentLineRequest:
    sales_order_line_id: UUID
    quantity: Decimal


@dataclass
class PackageRequest:
    package_type: Optional[str] = None
    tracking_number: Optional[str] = None
    length: Optional[Decimal] = None
    width: Optional[Decimal] = None
    height: Optional[Decimal] = None
    weight: Optional[Decimal] = None
    contents: List[dict] = field(default_factory=list)


class ShipmentService(FulfillmentService):
    """Service for building and dispatching shipments of picked goods."""

    component = "shipping"

    def create_shipment(
        self,
        actor: Actor,
        order_id: UUID,
        lines: Iterable[ShipmentLineRequest],
        *,
        carrier: Optional[str] = None,
        service_level: Optional[str] = None,
        ship_to: Optional[dict] = None,
        notes: Optional[str] = None,
    ) -> Shipment:
        """Create a DRAFT shipment for picked quantities of an order.

        Quantities already on undispatched shipments count against what
        has been picked, so the same picked unit is never planned twice.
        """
        self._authorize(actor, Action.SHIPMENT_CREATE)
        requested: dict[UUID, Decimal] = {}
        for request in lines:
            quantity = Decimal(request.quantity)
            if quantity <= 0:
                raise ValidationError("Shipment quantity must be positive", details={"line_id": str(request.sales_order_line_id)})
            requested[request.sales_order_line_id] = requested.get(request.sales_order_line_id, Decimal("0")) + quantity
        if not requested:
            raise ValidationError("A shipment needs at least one line")

        with atomic(self.session):
            order = self._get_owned(SalesOrder, order_id, actor, OrderNotFound)
            if order.status in (OrderStatus.DRAFT.value, OrderStatus.CANCELLED.value):
                raise InvalidTransition(
                    f"Cannot ship an order in status {order.status}",
                    details={"order_id": str(order_id), "status": order.status},
                )

            lines_by_id = {line.sales_order_line_id: line for line in order_lines(self.session, order)}
            pending = self._pending_quantities(order.sales_order_id)
            for line_id, quantity in requested.items():
                line = lines_by_id.get(line_id)
                if line is None:
                    raise OrderLineNotFound(line_id, details={"order_id": str(order_id)})
                planned = line.qty_shipped + pending.get(line_id, Decimal("0"))
                if planned + quantity > line.qty_picked:
                    raise ExceedsPicked(
                        details={
                            "line_id": str(line_id),
                            "requested": str(quantity),
                            "qty_picked": str(line.qty_picked),
                            "already_planned": str(planned),
                        }
                    )

            destination = {name: getattr(order, name) for name in SHIP_TO_FIELDS}
            destination.update({key: value for key, value in (ship_to or {}).items() if key in SHIP_TO_FIELDS and value})
            shipment = Shipment(
                tenant_id=order.tenant_id,
                site_id=order.site_id,
                sales_order_id=order.sales_order_id,
                shipment_number=self._next_document_number(
                    order.tenant_id, "shipment", self.settings.allocation.shipment_prefix
                ),
                carrier=carrier,
                service_level=service_level or order.shipping_method,
                notes=notes,
                created_by=actor.actor_id,
                **destination,
            )
            self.session.add(shipment)
            self.session.flush()
            for line_id, quantity in requested.items():
                self.session.add(
                    ShipmentLine(
                        shipment_id=shipment.shipment_id,
                        sales_order_line_id=line_id,
                        item_id=lines_by_id[line_id].item_id,
                        qty_shipped=quantity,
                    )
                )

            self._create_audit_log(
                actor,
                "CREATE_SHIPMENT",
                "shipment",
                shipment.shipment_id,
                after_state=to_json({"shipment_number": shipment.shipment_number, "lines": requested}),
            )
            self._create_domain_event(
                actor,
                "ShipmentCreated",
                "shipment",
                shipment.shipment_id,
                to_json({"shipment_number": shipment.shipment_number, "order_id": order.sales_order_id}),
            )

        self.log.info("Shipment created", shipment_number=shipment.shipment_number, order_number=order.order_number)
        self.session.refresh(shipment)
        return shipment

    def add_package(self, actor: Actor, shipment_id: UUID, package: PackageRequest) -> ShipmentPackage:
        """Attach a package to an undispatched shipment, making it ready to ship."""
        self._authorize(actor, Action.SHIPMENT_CREATE)
        with atomic(self.session):
            shipment = self._get_owned(Shipment, shipment_id, actor, ShipmentNotFound)
            self._ensure_dispatchable(shipment)
            created = self._add_packages(shipment, [package])[0]
            shipment.status = ShipmentStatus.READY_TO_SHIP.value
            self.session.add(shipment)
            order = self.session.get(SalesOrder, shipment.sales_order_id)
            refresh_order_status(self.session, order)
            self._create_audit_log(
                actor,
                "ADD_PACKAGE",
                "shipment",
                shipment.shipment_id,
                after_state={"package_number": created.package_number, "status": shipment.status},
            )
        self.session.refresh(created)
        return created

    def dispatch(
        self,
        actor: Actor,
        shipment_id: UUID,
        *,
        tracking_number: Optional[str] = None,
        ship_date: Optional[datetime] = None,
        carrier: Optional[str] = None,
        packages: Optional[Iterable[PackageRequest]] = None,
    ) -> Shipment:
        """Ship a shipment: flip its status, count the units and issue the stock.

        Everything happens in one transaction; a failure anywhere leaves
        the shipment, the order counters and the ledger untouched.
        """
        self._authorize(actor, Action.SHIPMENT_DISPATCH)
        with atomic(self.session):
            shipment = self._get_owned(Shipment, shipment_id, actor, ShipmentNotFound)
            before_status = shipment.status
            values = {
                "status": ShipmentStatus.SHIPPED.value,
                "ship_date": ship_date or utcnow(),
                "shipped_by": actor.actor_id,
            }
            if tracking_number:
                values["tracking_number"] = tracking_number
            if carrier:
                values["carrier"] = carrier
            flipped = self._execute(
                update(Shipment)
                .where(Shipment.shipment_id == shipment.shipment_id, Shipment.status.in_(_DISPATCHABLE))
                .values(**values)
            )
            self.session.refresh(shipment)
            if not flipped:
                self._ensure_dispatchable(shipment)

            if packages:
                self._add_packages(shipment, list(packages))

            shipment_lines = self.session.exec(
                select(ShipmentLine).where(ShipmentLine.shipment_id == shipment.shipment_id)
            ).all()
            allocation = AllocationService(self.session, self._settings)
            issued = []
            for shipment_line in shipment_lines:
                order_line = self.session.get(SalesOrderLine, shipment_line.sales_order_line_id)
                self._increment_shipped(order_line, shipment_line.qty_shipped)
                issued.extend(
                    allocation.consume_line_reservations(
                        actor,
                        order_line,
                        shipment_line.qty_shipped,
                        reference_type="shipment",
                        reference_id=shipment.shipment_number,
                    )
                )

            order = self.session.get(SalesOrder, shipment.sales_order_id)
            order_status = refresh_order_status(self.session, order)
            self._create_audit_log(
                actor,
                "DISPATCH",
                "shipment",
                shipment.shipment_id,
                before_state={"status": before_status},
                after_state={"status": ShipmentStatus.SHIPPED.value, "order_status": order_status.value},
            )
            self._create_domain_event(
                actor,
                "ShipmentDispatched",
                "shipment",
                shipment.shipment_id,
                to_json(
                    {
                        "shipment_number": shipment.shipment_number,
                        "order_id": order.sales_order_id,
                        "tracking_number": shipment.tracking_number,
                        "inventory_events": [event.inventory_event_id for event in issued],
                    }
                ),
            )

        self.log.info(
            "Shipment dispatched",
            shipment_number=shipment.shipment_number,
            events=len(issued),
            order_status=order_status.value,
        )
        self.session.refresh(shipment)
        return shipment

    def mark_delivered(self, actor: Actor, shipment_id: UUID, delivered_at: Optional[datetime] = None) -> Shipment:
        """Record carrier delivery; the order follows once all its shipments are delivered."""
        self._authorize(actor, Action.SHIPMENT_DELIVER)
        with atomic(self.session):
            shipment = self._get_owned(Shipment, shipment_id, actor, ShipmentNotFound)
            flipped = self._execute(
                update(Shipment)
                .where(Shipment.shipment_id == shipment.shipment_id, Shipment.status == ShipmentStatus.SHIPPED.value)
                .values(status=ShipmentStatus.DELIVERED.value, delivered_at=delivered_at or utcnow())
            )
            self.session.refresh(shipment)
            if not flipped:
                if shipment.status == ShipmentStatus.DELIVERED.value:
                    return shipment
                raise InvalidTransition(
                    f"Cannot deliver a shipment in status {shipment.status}",
                    details={"shipment_number": shipment.shipment_number, "status": shipment.status},
                )

            order = self.session.get(SalesOrder, shipment.sales_order_id)
            if refresh_order_status(self.session, order) == OrderStatus.SHIPPED and self._all_delivered(order):
                order.status = OrderStatus.DELIVERED.value
                self.session.add(order)
                self._create_audit_log(
                    actor,
                    "DELIVER",
                    "sales_order",
                    order.sales_order_id,
                    before_state={"status": OrderStatus.SHIPPED.value},
                    after_state={"status": OrderStatus.DELIVERED.value},
                )
            self._create_audit_log(
                actor,
                "DELIVER",
                "shipment",
                shipment.shipment_id,
                before_state={"status": ShipmentStatus.SHIPPED.value},
                after_state={"status": ShipmentStatus.DELIVERED.value},
            )
            self._create_domain_event(
                actor,
                "ShipmentDelivered",
                "shipment",
                shipment.shipment_id,
                to_json({"shipment_number": shipment.shipment_number, "order_id": order.sales_order_id}),
            )

        self.session.refresh(shipment)
        return shipment

    def get_shipment(self, actor: Actor, shipment_id: UUID) -> Shipment:
        self._authorize(actor, Action.VIEW)
        return self._get_owned(Shipment, shipment_id, actor, ShipmentNotFound)

    def get_shipment_lines(self, actor: Actor, shipment_id: UUID) -> List[ShipmentLine]:
        shipment = self.get_shipment(actor, shipment_id)
        return list(self.session.exec(select(ShipmentLine).where(ShipmentLine.shipment_id == shipment.shipment_id)))

    def get_packages(self, actor: Actor, shipment_id: UUID) -> List[ShipmentPackage]:
        shipment = self.get_shipment(actor, shipment_id)
        return list(
            self.session.exec(
                select(ShipmentPackage)
                .where(ShipmentPackage.shipment_id == shipment.shipment_id)
                .order_by(ShipmentPackage.package_number)
            )
        )

    def _ensure_dispatchable(self, shipment: Shipment) -> None:
        details = {"shipment_number": shipment.shipment_number, "status": shipment.status}
        if shipment.status in (ShipmentStatus.SHIPPED.value, ShipmentStatus.DELIVERED.value):
            raise AlreadyShipped(details=details)
        if shipment.status not in _DISPATCHABLE:
            raise InvalidTransition(f"Shipment is {shipment.status}", details=details)

    def _add_packages(self, shipment: Shipment, packages: List[PackageRequest]) -> List[ShipmentPackage]:
        count = self.session.exec(
            select(func.count()).select_from(ShipmentPackage).where(ShipmentPackage.shipment_id == shipment.shipment_id)
        ).one()
        created = []
        for offset, package in enumerate(packages, start=1):
            record = ShipmentPackage(
                shipment_id=shipment.shipment_id,
                package_number=count + offset,
                package_type=package.package_type,
                tracking_number=package.tracking_number,
                length=package.length,
                width=package.width,
                height=package.height,
                weight=package.weight,
                contents=to_json(package.contents) or None,
            )
            self.session.add(record)
            created.append(record)
        self.session.flush()
        return created

    def _pending_quantities(self, order_id: UUID) -> dict:
        stmt = (
            select(ShipmentLine.sales_order_line_id, func.sum(ShipmentLine.qty_shipped))
            .join(Shipment, Shipment.shipment_id == ShipmentLine.shipment_id)
            .where(Shipment.sales_order_id == order_id, Shipment.status.in_(_DISPATCHABLE))
            .group_by(ShipmentLine.sales_order_line_id)
        )
        return {line_id: Decimal(str(total)) for line_id, total in self.session.exec(stmt)}

    def _increment_shipped(self, line: SalesOrderLine, quantity: Decimal) -> None:
        changed = self._execute(
            update(SalesOrderLine)
            .where(
                SalesOrderLine.sales_order_line_id == line.sales_order_line_id,
                SalesOrderLine.qty_shipped + quantity <= SalesOrderLine.qty_ordered,
                SalesOrderLine.qty_shipped + quantity <= SalesOrderLine.qty_picked,
            )
            .values(qty_shipped=SalesOrderLine.qty_shipped + quantity)
        )
        self.session.refresh(line)
        if not changed:
            raise OverShipment(
                details={
                    "line_id": str(line.sales_order_line_id),
                    "requested": str(quantity),
                    "qty_shipped": str(line.qty_shipped),
                    "qty_picked": str(line.qty_picked),
                    "qty_ordered": str(line.qty_ordered),
                }
            )

    def _all_delivered(self, order: SalesOrder) -> bool:
        undelivered = self.session.exec(
            select(func.count())
            .select_from(Shipment)
            .where(
                Shipment.sales_order_id == order.sales_order_id,
                Shipment.status.in_([ShipmentStatus.SHIPPED.value, *_DISPATCHABLE]),
            )
        ).one()
        return undelivered == 0


__all__ = ["ShipmentService", "ShipmentLineRequest", "PackageRequest"]
