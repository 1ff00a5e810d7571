"""Status vocabularies and the parent-from-children derivation rule.

Stored status columns are a cache. Every operation recomputes them with the
functions below from the counters and child statuses it just wrote, so a
stale value from an earlier request is never trusted.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Iterable, Optional, Sequence, TypeVar


class OrderStatus(str, Enum):
    DRAFT = "DRAFT"
    CONFIRMED = "CONFIRMED"
    ALLOCATED = "ALLOCATED"
    PICKING = "PICKING"
    PACKED = "PACKED"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


class LineStatus(str, Enum):
    OPEN = "OPEN"
    ALLOCATED = "ALLOCATED"
    PICKING = "PICKING"
    PICKED = "PICKED"
    PACKED = "PACKED"
    SHIPPED = "SHIPPED"
    CANCELLED = "CANCELLED"


class PickTaskStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class ShipmentStatus(str, Enum):
    DRAFT = "DRAFT"
    READY_TO_SHIP = "READY_TO_SHIP"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


LINE_STAGES: tuple[LineStatus, ...] = (
    LineStatus.OPEN,
    LineStatus.ALLOCATED,
    LineStatus.PICKING,
    LineStatus.PICKED,
    LineStatus.PACKED,
    LineStatus.SHIPPED,
)

PICK_STAGES: tuple[PickTaskStatus, ...] = (
    PickTaskStatus.PENDING,
    PickTaskStatus.IN_PROGRESS,
    PickTaskStatus.COMPLETED,
)

# The order has no PICKED stage: a picked-but-unpacked order is still picking.
ORDER_STATUS_BY_LINE_STATUS: dict[LineStatus, OrderStatus] = {
    LineStatus.OPEN: OrderStatus.CONFIRMED,
    LineStatus.ALLOCATED: OrderStatus.ALLOCATED,
    LineStatus.PICKING: OrderStatus.PICKING,
    LineStatus.PICKED: OrderStatus.PICKING,
    LineStatus.PACKED: OrderStatus.PACKED,
    LineStatus.SHIPPED: OrderStatus.SHIPPED,
    LineStatus.CANCELLED: OrderStatus.CANCELLED,
}

OPEN_PICK_TASK_STATUSES = frozenset({PickTaskStatus.PENDING, PickTaskStatus.IN_PROGRESS})
DISPATCHABLE_SHIPMENT_STATUSES = frozenset({ShipmentStatus.DRAFT, ShipmentStatus.READY_TO_SHIP})

S = TypeVar("S")


def derive_status(
    statuses: Iterable[S],
    stages: Sequence[S],
    *,
    cancelled: bool = False,
    cancelled_status: Optional[S] = None,
) -> Optional[S]:
    """Derive a parent status from its children's statuses.

    * an explicitly cancelled parent stays cancelled;
    * cancelled children are ignored;
    * if every remaining child shares one status, that is the parent status;
    * otherwise the earliest stage among children not yet at the final stage.

    Returns ``None`` when there is no active child to derive from.
    """
    if cancelled:
        return cancelled_status

    active = [status for status in statuses if status != cancelled_status]
    if not active:
        return None

    distinct = set(active)
    if len(distinct) == 1:
        return active[0]

    final = stages[-1]
    unfinished = [status for status in distinct if status != final]
    return min(unfinished, key=stages.index)


def derive_line_status(
    qty_ordered: Decimal,
    qty_allocated: Decimal,
    qty_picked: Decimal,
    qty_shipped: Decimal,
    *,
    picking: bool = False,
    packed: bool = False,
    cancelled: bool = False,
) -> LineStatus:
    """Map an order line's counters (and open work) to its status."""
    if cancelled:
        return LineStatus.CANCELLED
    if qty_shipped > 0 and qty_shipped >= qty_ordered:
        return LineStatus.SHIPPED
    if packed and qty_picked > 0 and qty_picked >= qty_ordered:
        return LineStatus.PACKED
    if picking and qty_allocated > 0:
        return LineStatus.PICKING
    if qty_allocated > qty_picked:
        return LineStatus.ALLOCATED
    if qty_picked > 0:
        return LineStatus.PICKED
    return LineStatus.OPEN


def derive_pick_line_status(qty_to_pick: Decimal, qty_picked: Decimal, *, short_closed: bool = False) -> PickTaskStatus:
    if short_closed or qty_picked >= qty_to_pick:
        return PickTaskStatus.COMPLETED
    if qty_picked > 0:
        return PickTaskStatus.IN_PROGRESS
    return PickTaskStatus.PENDING


def derive_pick_task_status(line_statuses: Iterable[PickTaskStatus], *, cancelled: bool = False) -> PickTaskStatus:
    status = derive_status(
        line_statuses,
        PICK_STAGES,
        cancelled=cancelled,
        cancelled_status=PickTaskStatus.CANCELLED,
    )
    return status or PickTaskStatus.PENDING


def derive_order_status(
    current: OrderStatus, line_statuses: Iterable[LineStatus], *, packed: bool = False
) -> OrderStatus:
    """Recompute an order's status from its lines.

    DRAFT orders are not derived (nothing has been committed yet), DELIVERED
    is terminal and CANCELLED is sticky. ``packed`` marks an order whose
    active lines are all fully picked and which has a packaged, undispatched
    shipment: it reads PACKED even when that shipment covers only some lines.
    """
    current = OrderStatus(current)
    if current in (OrderStatus.DRAFT, OrderStatus.DELIVERED):
        return current

    line_status = derive_status(
        line_statuses,
        LINE_STAGES,
        cancelled=current == OrderStatus.CANCELLED,
        cancelled_status=LineStatus.CANCELLED,
    )
    if line_status is None:
        return OrderStatus.CONFIRMED
    status = ORDER_STATUS_BY_LINE_STATUS[LineStatus(line_status)]
    if packed and status == OrderStatus.PICKING:
        return OrderStatus.PACKED
    return status


__all__ = [
    "OrderStatus",
    "LineStatus",
    "PickTaskStatus",
    "ShipmentStatus",
    "LINE_STAGES",
    "PICK_STAGES",
    "ORDER_STATUS_BY_LINE_STATUS",
    "OPEN_PICK_TASK_STATUSES",
    "DISPATCHABLE_SHIPMENT_STATUSES",
    "derive_status",
    "derive_line_status",
    "derive_pick_line_status",
    "derive_pick_task_status",
    "derive_order_status",
]
