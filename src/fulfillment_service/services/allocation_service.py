"""Reservation engine: allocate scarce stock to confirmed orders without over-committing it."""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from sqlalchemy import case, update
from sqlmodel import func, select

from fulfillment_service.auth.capabilities import Action, Actor
from fulfillment_service.db import atomic
from fulfillment_service.domain.status import LineStatus, OrderStatus
from fulfillment_service.exceptions import (
    AllocationContention,
    ContentionError,
    InsufficientStock,
    InvalidTransition,
    OrderNotConfirmed,
    OrderNotFound,
)
from fulfillment_service.models import (
    InventoryEvent,
    InventoryReservation,
    Location,
    SalesOrder,
    SalesOrderLine,
    StockBalance,
    utcnow,
)
from fulfillment_service.services.base import FulfillmentService, snapshot, to_json
from fulfillment_service.services.ledger_service import LedgerService
from fulfillment_service.services.status_sync import order_lines, refresh_order_status

ZERO = Decimal("0")

ALLOCATABLE_STATUSES = frozenset({OrderStatus.CONFIRMED, OrderStatus.ALLOCATED, OrderStatus.PICKING})
PICKABLE_LOCATION_TYPES = ("SHIPPING", "STOCK")


@dataclass
class Shortage:
    line_id: UUID
    requested: Decimal
    available: Decimal

    def to_dict(self) -> dict:
        return {"lineId": str(self.line_id), "requested": str(self.requested), "available": str(self.available)}


@dataclass
class AllocationResult:
    order_id: UUID
    allocated_line_count: int = 0
    allocated_quantity: Decimal = ZERO
    shortages: List[Shortage] = field(default_factory=list)
    reservations: List[InventoryReservation] = field(default_factory=list)

    @property
    def fully_allocated(self) -> bool:
        return not self.shortages

    def to_dict(self) -> dict:
        return {
            "allocatedCount": self.allocated_line_count,
            "shortages": [shortage.to_dict() for shortage in self.shortages],
        }


class AllocationService(FulfillmentService):
    """Service for reserving, releasing and consuming inventory for sales orders."""

    component = "allocation"

    def allocate(self, actor: Actor, order_id: UUID) -> AllocationResult:
        """Reserve available stock for every unallocated order line.

        Lines that cannot be fully covered keep what was found and are
        reported as shortages; running allocate again later fills them.
        """
        self._authorize(actor, Action.ORDER_ALLOCATE)
        with atomic(self.session):
            order = self._get_owned(SalesOrder, order_id, actor, OrderNotFound)
            self.session.refresh(order)
            status = OrderStatus(order.status)
            if status == OrderStatus.DRAFT:
                raise OrderNotConfirmed(details={"order_id": str(order_id), "status": status.value})
            if status not in ALLOCATABLE_STATUSES:
                raise InvalidTransition(
                    f"Cannot allocate an order in status {status.value}",
                    details={"order_id": str(order_id), "status": status.value},
                )

            before = snapshot(order, "status")
            result = AllocationResult(order_id=order.sales_order_id)
            for line in order_lines(self.session, order):
                if line.status == LineStatus.CANCELLED.value:
                    continue
                remaining = line.qty_ordered - line.qty_allocated
                if remaining <= 0:
                    continue

                taken, reservations = self._reserve_line(order, line, remaining)
                if taken > 0:
                    self._increment_allocated(line, taken)
                    result.allocated_line_count += 1
                    result.allocated_quantity += taken
                    result.reservations.extend(reservations)
                if taken < remaining:
                    result.shortages.append(Shortage(line.sales_order_line_id, remaining, taken))

            # Re-check the status under the row lock; a committed cancel wins.
            if not self._guard_order(order, ALLOCATABLE_STATUSES):
                self.session.refresh(order)
                raise InvalidTransition(
                    f"Order moved to {order.status} while allocating",
                    details={"order_id": str(order_id), "status": order.status},
                )

            new_status = refresh_order_status(self.session, order)
            self._create_audit_log(
                actor,
                "ALLOCATE",
                "sales_order",
                order.sales_order_id,
                before_state=before,
                after_state={
                    "status": new_status.value,
                    **to_json(result.to_dict()),
                },
            )
            if result.allocated_line_count:
                self._create_domain_event(
                    actor,
                    "InventoryAllocated",
                    "sales_order",
                    order.sales_order_id,
                    to_json(
                        {
                            "order_number": order.order_number,
                            "reservations_created": len(result.reservations),
                            "allocated_quantity": result.allocated_quantity,
                            "fully_allocated": result.fully_allocated,
                        }
                    ),
                )

        self.log.info(
            "Order allocated",
            order_id=str(order_id),
            allocated_lines=result.allocated_line_count,
            shortages=len(result.shortages),
        )
        return result

    def release_order_reservations(self, actor: Actor, order: SalesOrder) -> Decimal:
        """Give back every active reservation of an order, inside the caller's transaction."""
        released = ZERO
        reservations = self.session.exec(
            select(InventoryReservation)
            .where(
                InventoryReservation.sales_order_id == order.sales_order_id,
                InventoryReservation.reservation_status == "active",
            )
            .order_by(InventoryReservation.created_at, InventoryReservation.allocation_rank)
        ).all()
        now = utcnow()
        for reservation in reservations:
            outstanding = reservation.outstanding_quantity
            if outstanding > 0:
                changed = self._execute(
                    update(StockBalance)
                    .where(
                        StockBalance.stock_balance_id == reservation.stock_balance_id,
                        StockBalance.quantity_reserved >= outstanding,
                    )
                    .values(
                        quantity_reserved=StockBalance.quantity_reserved - outstanding,
                        version=StockBalance.version + 1,
                    )
                )
                if not changed:
                    raise ContentionError(
                        "Reserved quantity on balance is lower than the reservation",
                        details={"reservation_id": str(reservation.inventory_reservation_id)},
                    )
                released += outstanding
            reservation.reservation_status = "released"
            reservation.released_at = now
            self.session.add(reservation)

        if released:
            self._create_domain_event(
                actor,
                "InventoryReleased",
                "sales_order",
                order.sales_order_id,
                to_json({"order_number": order.order_number, "released_quantity": released}),
            )
        return released

    def consume_line_reservations(
        self,
        actor: Actor,
        line: SalesOrderLine,
        quantity: Decimal,
        *,
        reference_type: str,
        reference_id: str,
    ) -> List[InventoryEvent]:
        """Consume a line's reservations oldest first and issue the stock.

        One ISSUE event is appended per source balance, so a line served
        from a single location produces exactly one event.
        """
        reservations = self.session.exec(
            select(InventoryReservation)
            .where(
                InventoryReservation.sales_order_line_id == line.sales_order_line_id,
                InventoryReservation.reservation_status == "active",
            )
            .order_by(InventoryReservation.created_at, InventoryReservation.allocation_rank)
            .execution_options(populate_existing=True)
        ).all()

        remaining = quantity
        per_balance: "OrderedDict[UUID, Decimal]" = OrderedDict()
        for reservation in reservations:
            if remaining <= 0:
                break
            take = min(remaining, reservation.outstanding_quantity)
            if take <= 0:
                continue
            changed = self._execute(
                update(InventoryReservation)
                .where(
                    InventoryReservation.inventory_reservation_id == reservation.inventory_reservation_id,
                    InventoryReservation.reservation_status == "active",
                    InventoryReservation.consumed_quantity + take <= InventoryReservation.reserved_quantity,
                )
                .values(
                    consumed_quantity=InventoryReservation.consumed_quantity + take,
                    reservation_status=case(
                        (InventoryReservation.consumed_quantity + take >= InventoryReservation.reserved_quantity, "consumed"),
                        else_="active",
                    ),
                )
            )
            if not changed:
                raise ContentionError(
                    "Reservation was consumed concurrently",
                    details={"reservation_id": str(reservation.inventory_reservation_id)},
                )
            self.session.refresh(reservation)
            per_balance[reservation.stock_balance_id] = per_balance.get(reservation.stock_balance_id, ZERO) + take
            remaining -= take

        if remaining > 0:
            raise InsufficientStock(
                "Line has fewer reserved units than it is shipping",
                details={
                    "line_id": str(line.sales_order_line_id),
                    "requested": str(quantity),
                    "missing": str(remaining),
                },
            )

        ledger = LedgerService(self.session, self._settings)
        events = []
        for balance_id, issued in per_balance.items():
            balance = self.session.get(StockBalance, balance_id)
            events.append(
                ledger.issue_reserved(
                    actor,
                    balance,
                    issued,
                    reference_type=reference_type,
                    reference_id=reference_id,
                    notes=f"line {line.line_number}",
                )
            )
        return events

    def outstanding_by_item(self, tenant_id: Optional[str] = None) -> dict:
        """Sum of unconsumed active reservations per (tenant, site, item)."""
        stmt = (
            select(
                StockBalance.tenant_id,
                StockBalance.site_id,
                StockBalance.item_id,
                func.sum(InventoryReservation.reserved_quantity - InventoryReservation.consumed_quantity),
            )
            .join(StockBalance, StockBalance.stock_balance_id == InventoryReservation.stock_balance_id)
            .where(InventoryReservation.reservation_status == "active")
            .group_by(StockBalance.tenant_id, StockBalance.site_id, StockBalance.item_id)
        )
        if tenant_id:
            stmt = stmt.where(StockBalance.tenant_id == tenant_id)
        return {
            (tenant, site, item): Decimal(str(total))
            for tenant, site, item, total in self.session.exec(stmt)
        }

    def _candidates(self, order: SalesOrder, item_id: UUID) -> List[StockBalance]:
        """Balances that can serve an order, best pick first.

        Shipping lanes before stock bins, then walking order, then oldest
        stock first, then location code so the result is deterministic.
        """
        stmt = (
            select(StockBalance)
            .join(Location, Location.location_id == StockBalance.location_id)
            .where(
                StockBalance.tenant_id == order.tenant_id,
                StockBalance.site_id == order.site_id,
                StockBalance.item_id == item_id,
                Location.location_type.in_(PICKABLE_LOCATION_TYPES),
                Location.is_active.is_(True),
                StockBalance.quantity_on_hand - StockBalance.quantity_reserved > 0,
            )
            .order_by(
                case((Location.location_type == "SHIPPING", 0), else_=1),
                Location.pick_sequence,
                StockBalance.first_received_at,
                Location.location_code,
            )
            .execution_options(populate_existing=True)
        )
        if self.settings.allocation.row_locks:
            stmt = stmt.with_for_update(of=StockBalance)
        return list(self.session.exec(stmt))

    def _try_reserve(self, balance: StockBalance, quantity: Decimal) -> bool:
        """Compare-and-swap the reserved counter against the version that was read."""
        changed = self._execute(
            update(StockBalance)
            .where(
                StockBalance.stock_balance_id == balance.stock_balance_id,
                StockBalance.version == balance.version,
                StockBalance.quantity_on_hand - StockBalance.quantity_reserved >= quantity,
            )
            .values(
                quantity_reserved=StockBalance.quantity_reserved + quantity,
                version=StockBalance.version + 1,
            )
        )
        return bool(changed)

    def _reserve_line(
        self, order: SalesOrder, line: SalesOrderLine, remaining: Decimal
    ) -> tuple[Decimal, List[InventoryReservation]]:
        max_attempts = self.settings.allocation.max_attempts
        rank = self.session.exec(
            select(func.count())
            .select_from(InventoryReservation)
            .where(InventoryReservation.sales_order_line_id == line.sales_order_line_id)
        ).one()

        taken = ZERO
        reservations: List[InventoryReservation] = []
        conflicts = 0
        while remaining > 0:
            conflicted = False
            for balance in self._candidates(order, line.item_id):
                take = min(remaining, balance.quantity_available)
                if take <= 0:
                    continue
                if not self._try_reserve(balance, take):
                    conflicted = True
                    break
                reservation = InventoryReservation(
                    tenant_id=order.tenant_id,
                    sales_order_id=order.sales_order_id,
                    sales_order_line_id=line.sales_order_line_id,
                    stock_balance_id=balance.stock_balance_id,
                    item_id=line.item_id,
                    location_id=balance.location_id,
                    reserved_quantity=take,
                    allocation_rank=rank + len(reservations),
                )
                self.session.add(reservation)
                reservations.append(reservation)
                taken += take
                remaining -= take
                if remaining <= 0:
                    break

            if not conflicted:
                break
            conflicts += 1
            self.log.debug("Balance changed during allocation, re-reading", line_id=str(line.sales_order_line_id), attempt=conflicts)
            if conflicts >= max_attempts:
                raise AllocationContention(
                    details={
                        "order_id": str(order.sales_order_id),
                        "line_id": str(line.sales_order_line_id),
                        "attempts": conflicts,
                    }
                )

        self.session.flush()
        return taken, reservations

    def _increment_allocated(self, line: SalesOrderLine, quantity: Decimal) -> None:
        changed = self._execute(
            update(SalesOrderLine)
            .where(
                SalesOrderLine.sales_order_line_id == line.sales_order_line_id,
                SalesOrderLine.qty_allocated + quantity <= SalesOrderLine.qty_ordered,
            )
            .values(qty_allocated=SalesOrderLine.qty_allocated + quantity)
        )
        if not changed:
            raise AllocationContention(
                "Order line was allocated concurrently",
                details={"line_id": str(line.sales_order_line_id)},
            )
        self.session.refresh(line)


__all__ = ["AllocationService", "AllocationResult", "Shortage"]
