"""Pick task generation and pick recording."""

from __future__ import annotations

from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from fulfillment_service.auth.capabilities import Action, Actor
from fulfillment_service.db import atomic
from fulfillment_service.domain.status import LineStatus, OrderStatus, PickTaskStatus
from fulfillment_service.exceptions import (
    ExceedsAllocation,
    InvalidTransition,
    NothingToPick,
    OrderNotFound,
    PickTaskAlreadyOpen,
    PickTaskNotFound,
    ValidationError,
)
from fulfillment_service.models import InventoryReservation, PickTask, PickTaskLine, SalesOrder, SalesOrderLine, utcnow
from fulfillment_service.services.base import FulfillmentService, to_json
from fulfillment_service.services.status_sync import (
    count_open_pick_tasks,
    order_lines,
    refresh_order_status,
    refresh_pick_task_status,
)


class PickingService(FulfillmentService):
    """Turn allocations into pick work and record what was picked."""

    component = "picking"

    def create_pick_task(self, actor: Actor, order_id: UUID, *, assigned_to: Optional[str] = None) -> PickTask:
        """Create one pick task covering every allocated-but-unpicked line of an order."""
        self._authorize(actor, Action.PICK_TASK_CREATE)
        with atomic(self.session):
            order = self._get_owned(SalesOrder, order_id, actor, OrderNotFound)
            details = {"order_id": str(order_id)}
            if count_open_pick_tasks(self.session, order.sales_order_id):
                raise PickTaskAlreadyOpen(details=details)

            status = refresh_order_status(self.session, order)
            if status != OrderStatus.ALLOCATED:
                raise InvalidTransition(
                    f"Order must be ALLOCATED to create a pick task, not {status.value}",
                    details={**details, "status": status.value},
                )

            to_pick = [
                (line, line.qty_allocated - line.qty_picked)
                for line in order_lines(self.session, order)
                if line.status != LineStatus.CANCELLED.value and line.qty_allocated > line.qty_picked
            ]
            if not to_pick:
                raise NothingToPick(details=details)

            task = PickTask(
                tenant_id=order.tenant_id,
                sales_order_id=order.sales_order_id,
                task_number=self._next_document_number(
                    order.tenant_id, "pick_task", self.settings.allocation.pick_task_prefix
                ),
                assigned_to=assigned_to,
                created_by=actor.actor_id,
            )
            self.session.add(task)
            try:
                self.session.flush()
            except IntegrityError as exc:
                if "sales_order_id" not in str(exc.orig):
                    raise
                raise PickTaskAlreadyOpen(details=details) from exc

            for line, quantity in to_pick:
                self.session.add(
                    PickTaskLine(
                        pick_task_id=task.pick_task_id,
                        sales_order_line_id=line.sales_order_line_id,
                        item_id=line.item_id,
                        location_id=self._suggested_location(line),
                        qty_to_pick=quantity,
                    )
                )
            if not self._guard_order(order, [OrderStatus.ALLOCATED]):
                raise InvalidTransition("Order changed while creating the pick task", details=details)
            refresh_order_status(self.session, order)

            self._create_audit_log(
                actor,
                "CREATE_PICK_TASK",
                "pick_task",
                task.pick_task_id,
                after_state={"task_number": task.task_number, "line_count": len(to_pick)},
            )
            self._create_domain_event(
                actor,
                "PickTaskCreated",
                "pick_task",
                task.pick_task_id,
                to_json(
                    {
                        "task_number": task.task_number,
                        "order_id": order.sales_order_id,
                        "line_count": len(to_pick),
                    }
                ),
            )

        self.log.info("Pick task created", task_number=task.task_number, order_number=order.order_number, lines=len(to_pick))
        self.session.refresh(task)
        return task

    def record_pick(
        self,
        actor: Actor,
        task_line_id: UUID,
        quantity: Decimal,
        *,
        short: bool = False,
    ) -> PickTaskLine:
        """Record picked units against a task line.

        ``short=True`` closes the line even when fewer units than requested
        were found; a zero quantity is only accepted together with it.
        """
        self._authorize(actor, Action.PICK_RECORD)
        quantity = Decimal(quantity)
        if quantity < 0 or (quantity == 0 and not short):
            raise ValidationError("Picked quantity must be positive", details={"quantity": str(quantity)})

        with atomic(self.session):
            line = self.session.get(PickTaskLine, task_line_id)
            task = self.session.get(PickTask, line.pick_task_id) if line else None
            if task is None or task.tenant_id != actor.tenant_id:
                raise PickTaskNotFound(task_line_id)
            if task.status in (PickTaskStatus.CANCELLED.value, PickTaskStatus.COMPLETED.value) or line.short_closed:
                raise InvalidTransition(
                    "Pick task line is closed",
                    details={"task_number": task.task_number, "status": task.status},
                )

            now = utcnow()
            if quantity > 0:
                self._increment_task_line(line, quantity, actor, now)
                self._increment_order_line(line, quantity)
            if short:
                line.short_closed = True
                self.session.add(line)
            if task.started_at is None:
                task.started_at = now
                self.session.add(task)

            task_status = refresh_pick_task_status(self.session, task)
            if task_status == PickTaskStatus.COMPLETED and task.completed_at is None:
                task.completed_at = now
                self.session.add(task)
            order = self.session.get(SalesOrder, task.sales_order_id)
            refresh_order_status(self.session, order)

            self._create_audit_log(
                actor,
                "PICK",
                "pick_task_line",
                line.pick_task_line_id,
                after_state=to_json(
                    {
                        "quantity": quantity,
                        "qty_picked": line.qty_picked,
                        "qty_to_pick": line.qty_to_pick,
                        "short_closed": line.short_closed,
                    }
                ),
            )
            self._create_domain_event(
                actor,
                "ItemsPicked",
                "pick_task",
                task.pick_task_id,
                to_json(
                    {
                        "task_number": task.task_number,
                        "sales_order_line_id": line.sales_order_line_id,
                        "quantity": quantity,
                        "short": short,
                    }
                ),
            )

        self.log.info("Pick recorded", task_number=task.task_number, quantity=str(quantity), short=short)
        self.session.refresh(line)
        return line

    def get_pick_task(self, actor: Actor, task_id: UUID) -> PickTask:
        self._authorize(actor, Action.VIEW)
        return self._get_owned(PickTask, task_id, actor, PickTaskNotFound)

    def get_task_lines(self, actor: Actor, task_id: UUID) -> List[PickTaskLine]:
        task = self.get_pick_task(actor, task_id)
        return list(
            self.session.exec(
                select(PickTaskLine)
                .where(PickTaskLine.pick_task_id == task.pick_task_id)
                .order_by(PickTaskLine.location_id, PickTaskLine.pick_task_line_id)
            )
        )

    def _suggested_location(self, line: SalesOrderLine) -> Optional[UUID]:
        reservation = self.session.exec(
            select(InventoryReservation)
            .where(
                InventoryReservation.sales_order_line_id == line.sales_order_line_id,
                InventoryReservation.reservation_status == "active",
            )
            .order_by(InventoryReservation.created_at, InventoryReservation.allocation_rank)
        ).first()
        return reservation.location_id if reservation else None

    def _increment_task_line(self, line: PickTaskLine, quantity: Decimal, actor: Actor, now) -> None:
        changed = self._execute(
            update(PickTaskLine)
            .where(
                PickTaskLine.pick_task_line_id == line.pick_task_line_id,
                PickTaskLine.short_closed.is_(False),
                PickTaskLine.qty_picked + quantity <= PickTaskLine.qty_to_pick,
            )
            .values(
                qty_picked=PickTaskLine.qty_picked + quantity,
                picked_by=actor.actor_id,
                last_picked_at=now,
            )
        )
        self.session.refresh(line)
        if not changed:
            raise ExceedsAllocation(
                details={
                    "task_line_id": str(line.pick_task_line_id),
                    "qty_to_pick": str(line.qty_to_pick),
                    "qty_picked": str(line.qty_picked),
                    "requested": str(quantity),
                }
            )

    def _increment_order_line(self, line: PickTaskLine, quantity: Decimal) -> None:
        changed = self._execute(
            update(SalesOrderLine)
            .where(
                SalesOrderLine.sales_order_line_id == line.sales_order_line_id,
                SalesOrderLine.qty_picked + quantity <= SalesOrderLine.qty_allocated,
            )
            .values(qty_picked=SalesOrderLine.qty_picked + quantity)
        )
        if not changed:
            raise ExceedsAllocation(
                "Picked quantity would exceed the allocated quantity",
                details={"sales_order_line_id": str(line.sales_order_line_id), "requested": str(quantity)},
            )


__all__ = ["PickingService"]
