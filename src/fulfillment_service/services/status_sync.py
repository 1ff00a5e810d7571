"""Recompute and persist line, order and pick task statuses from stored counters."""

from __future__ import annotations

from typing import List

from sqlmodel import Session, func, select

from fulfillment_service.domain.status import (
    DISPATCHABLE_SHIPMENT_STATUSES,
    OPEN_PICK_TASK_STATUSES,
    LineStatus,
    OrderStatus,
    PickTaskStatus,
    derive_line_status,
    derive_order_status,
    derive_pick_line_status,
    derive_pick_task_status,
)
from fulfillment_service.models import (
    PickTask,
    PickTaskLine,
    SalesOrder,
    SalesOrderLine,
    Shipment,
    ShipmentLine,
    ShipmentPackage,
)


def _open_pick_line_ids(session: Session, order_id) -> set:
    stmt = (
        select(PickTaskLine.sales_order_line_id)
        .join(PickTask, PickTask.pick_task_id == PickTaskLine.pick_task_id)
        .where(
            PickTask.sales_order_id == order_id,
            PickTask.status.in_([status.value for status in OPEN_PICK_TASK_STATUSES]),
            PickTaskLine.status != PickTaskStatus.COMPLETED.value,
        )
    )
    return set(session.exec(stmt))


def _packaged_shipment_filter(order_id):
    packaged = select(ShipmentPackage.shipment_id).where(ShipmentPackage.shipment_id == Shipment.shipment_id)
    return (
        Shipment.sales_order_id == order_id,
        Shipment.status.in_([status.value for status in DISPATCHABLE_SHIPMENT_STATUSES]),
        packaged.exists(),
    )


def _packed_line_ids(session: Session, order_id) -> set:
    stmt = (
        select(ShipmentLine.sales_order_line_id)
        .join(Shipment, Shipment.shipment_id == ShipmentLine.shipment_id)
        .where(*_packaged_shipment_filter(order_id))
    )
    return set(session.exec(stmt))


def _has_packaged_shipment(session: Session, order_id) -> bool:
    stmt = select(func.count()).select_from(Shipment).where(*_packaged_shipment_filter(order_id))
    return session.exec(stmt).one() > 0


def order_lines(session: Session, order: SalesOrder) -> List[SalesOrderLine]:
    stmt = (
        select(SalesOrderLine)
        .where(SalesOrderLine.sales_order_id == order.sales_order_id)
        .order_by(SalesOrderLine.line_number)
        .execution_options(populate_existing=True)
    )
    return list(session.exec(stmt))


def refresh_order_status(session: Session, order: SalesOrder) -> OrderStatus:
    """Re-derive every line status and the order status; stage changes on the session."""
    session.flush()
    session.refresh(order)
    picking = _open_pick_line_ids(session, order.sales_order_id)
    packed_lines = _packed_line_ids(session, order.sales_order_id)

    statuses = []
    fully_picked = True
    for line in order_lines(session, order):
        if line.status != LineStatus.CANCELLED.value and line.qty_picked < line.qty_ordered:
            fully_picked = False
        status = derive_line_status(
            line.qty_ordered,
            line.qty_allocated,
            line.qty_picked,
            line.qty_shipped,
            picking=line.sales_order_line_id in picking,
            packed=line.sales_order_line_id in packed_lines,
            cancelled=line.status == LineStatus.CANCELLED.value,
        )
        if line.status != status.value:
            line.status = status.value
            session.add(line)
        statuses.append(status)

    packed = fully_picked and _has_packaged_shipment(session, order.sales_order_id)
    new_status = derive_order_status(OrderStatus(order.status), statuses, packed=packed)
    if order.status != new_status.value:
        order.status = new_status.value
        session.add(order)
    return new_status


def refresh_pick_task_status(session: Session, task: PickTask) -> PickTaskStatus:
    """Re-derive pick line statuses and the task status from picked quantities."""
    session.flush()
    session.refresh(task)
    lines = list(
        session.exec(
            select(PickTaskLine)
            .where(PickTaskLine.pick_task_id == task.pick_task_id)
            .execution_options(populate_existing=True)
        )
    )
    statuses = []
    for line in lines:
        status = derive_pick_line_status(line.qty_to_pick, line.qty_picked, short_closed=line.short_closed)
        if line.status != status.value:
            line.status = status.value
            session.add(line)
        statuses.append(status)

    new_status = derive_pick_task_status(statuses, cancelled=task.status == PickTaskStatus.CANCELLED.value)
    if task.status != new_status.value:
        task.status = new_status.value
        session.add(task)
    return new_status


def count_open_pick_tasks(session: Session, order_id) -> int:
    stmt = select(func.count()).select_from(PickTask).where(
        PickTask.sales_order_id == order_id,
        PickTask.status.in_([status.value for status in OPEN_PICK_TASK_STATUSES]),
    )
    return session.exec(stmt).one()


__all__ = ["order_lines", "refresh_order_status", "refresh_pick_task_status", "count_open_pick_tasks"]
