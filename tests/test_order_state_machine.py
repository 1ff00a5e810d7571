from __future__ import annotations

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlmodel import select

from fulfillment_service.domain.status import LineStatus, OrderStatus
from fulfillment_service.exceptions import (
    DuplicateOrderNumber,
    InvalidTransition,
    ItemNotFound,
    OrderNotConfirmed,
    ValidationError,
)
from fulfillment_service.models import AuditLog, DomainEvent, InventoryReservation
from fulfillment_service.services import (
    AllocationService,
    LedgerService,
    OrderLineRequest,
    OrderService,
    PickingService,
)


def test_create_order_computes_totals(session, sales, warehouse):
    item_id = warehouse["item"].item_id
    order = OrderService(session).create_order(
        sales,
        "SO-100",
        "CUST-9",
        [
            OrderLineRequest(item_id=item_id, quantity=Decimal("4"), unit_price=Decimal("2.50")),
            OrderLineRequest(item_id=item_id, quantity=Decimal("2"), uom="BOX", unit_price=Decimal("20"), discount=Decimal("5")),
        ],
        shipping_amount=Decimal("5"),
        discount_amount=Decimal("2"),
    )

    assert order.status == OrderStatus.DRAFT.value
    assert order.site_id == sales.site_id
    assert order.subtotal == Decimal("45.00")
    assert order.total_amount == Decimal("48.00")

    lines = OrderService(session).get_lines(sales, order.sales_order_id)
    assert [line.line_number for line in lines] == [1, 2]
    assert lines[1].qty_entered == Decimal("2")
    assert lines[1].uom_entered == "BOX"
    assert lines[1].qty_ordered == Decimal("20")
    assert all(line.status == LineStatus.OPEN.value for line in lines)


def test_duplicate_order_number_is_rejected(session, place_order):
    place_order(1, number="SO-7")
    with pytest.raises(DuplicateOrderNumber):
        place_order(1, number="SO-7")


def test_unknown_item_is_rejected(session, sales, warehouse):
    with pytest.raises(ItemNotFound):
        OrderService(session).create_order(
            sales, "SO-1", "CUST-1", [OrderLineRequest(item_id=uuid4(), quantity=Decimal("1"))]
        )


def test_confirm_is_idempotent(session, sales, place_order):
    order = place_order(3, confirm=False)
    service = OrderService(session)

    first = service.confirm(sales, order.sales_order_id)
    second = service.confirm(sales, order.sales_order_id)

    assert first.status == second.status == OrderStatus.CONFIRMED.value
    confirmations = session.exec(select(AuditLog).where(AuditLog.audited_action == "CONFIRM")).all()
    events = session.exec(select(DomainEvent).where(DomainEvent.event_name == "OrderConfirmed")).all()
    assert len(confirmations) == 1
    assert len(events) == 1


def test_draft_orders_cannot_be_allocated(session, admin, receive, place_order):
    receive(10)
    order = place_order(3, confirm=False)
    with pytest.raises(OrderNotConfirmed):
        AllocationService(session).allocate(admin, order.sales_order_id)


def test_cancel_confirmed_order(session, sales, place_order):
    order = place_order(2, 3)
    service = OrderService(session)

    cancelled = service.cancel(sales, order.sales_order_id)

    assert cancelled.status == OrderStatus.CANCELLED.value
    assert {line.status for line in service.get_lines(sales, order.sales_order_id)} == {LineStatus.CANCELLED.value}
    with pytest.raises(InvalidTransition):
        service.confirm(sales, order.sales_order_id)
    # cancelling again is a no-op
    assert service.cancel(sales, order.sales_order_id).status == OrderStatus.CANCELLED.value


def test_cancel_allocated_order_needs_release(session, admin, sales, warehouse, receive, place_order):
    receive(10)
    order = place_order(6)
    AllocationService(session).allocate(admin, order.sales_order_id)
    service = OrderService(session)

    with pytest.raises(InvalidTransition):
        service.cancel(sales, order.sales_order_id)

    cancelled = service.cancel(sales, order.sales_order_id, release_allocations=True)

    assert cancelled.status == OrderStatus.CANCELLED.value
    balance = LedgerService(session).get_balances(admin, item_id=warehouse["item"].item_id)[0]
    assert balance.quantity_reserved == Decimal("0")
    statuses = session.exec(select(InventoryReservation.reservation_status)).all()
    assert statuses == ["released"]


def test_cancel_refused_once_picking_started(session, admin, sales, receive, place_order):
    receive(10)
    order = place_order(5)
    AllocationService(session).allocate(admin, order.sales_order_id)
    PickingService(session).create_pick_task(admin, order.sales_order_id)

    with pytest.raises(InvalidTransition):
        OrderService(session).cancel(sales, order.sales_order_id, release_allocations=True)


def test_list_orders_filters_by_status(session, sales, place_order):
    place_order(1, number="SO-1")
    place_order(1, number="SO-2", confirm=False)
    service = OrderService(session)

    drafts = service.list_orders(sales, status="draft")
    assert [order.order_number for order in drafts] == ["SO-2"]
    assert len(service.list_orders(sales, search="SO-")) == 2
    with pytest.raises(ValidationError):
        service.list_orders(sales, status="LOST")
