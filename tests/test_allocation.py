from __future__ import annotations

import threading
from decimal import Decimal

import pytest
from sqlmodel import Session, select

from fulfillment_service.domain.status import LineStatus, OrderStatus
from fulfillment_service.exceptions import AllocationContention, ContentionError, InvalidTransition
from fulfillment_service.models import InventoryReservation, SalesOrderLine, StockBalance
from fulfillment_service.services import AllocationService, LedgerService, OrderService


def _reservations(session, order):
    return session.exec(
        select(InventoryReservation)
        .where(InventoryReservation.sales_order_id == order.sales_order_id)
        .order_by(InventoryReservation.allocation_rank)
    ).all()


def test_full_allocation(session, admin, sales, warehouse, receive, place_order):
    receive(100)
    order = place_order(60)

    result = AllocationService(session).allocate(admin, order.sales_order_id)

    assert result.fully_allocated
    assert result.to_dict() == {"allocatedCount": 1, "shortages": []}
    order = OrderService(session).get_order(sales, order.sales_order_id)
    assert order.status == OrderStatus.ALLOCATED.value
    balance = LedgerService(session).get_balances(admin, item_id=warehouse["item"].item_id)[0]
    assert balance.quantity_reserved == Decimal("60")
    assert balance.quantity_available == Decimal("40")


def test_partial_allocation_reports_shortage_and_tops_up_later(session, admin, sales, receive, place_order):
    receive(30)
    order = place_order(50)
    service = AllocationService(session)

    result = service.allocate(admin, order.sales_order_id)

    assert result.allocated_line_count == 1
    assert len(result.shortages) == 1
    shortage = result.shortages[0]
    assert shortage.requested == Decimal("50")
    assert shortage.available == Decimal("30")
    line = OrderService(session).get_lines(sales, order.sales_order_id)[0]
    assert line.qty_allocated == Decimal("30")
    assert line.status == LineStatus.ALLOCATED.value

    receive(20, "B-01")
    again = service.allocate(admin, order.sales_order_id)

    assert again.fully_allocated
    line = OrderService(session).get_lines(sales, order.sales_order_id)[0]
    assert line.qty_allocated == Decimal("50")
    assert sum(r.reserved_quantity for r in _reservations(session, order)) == Decimal("50")


def test_reallocating_a_fully_allocated_order_reserves_nothing(session, admin, receive, place_order):
    receive(10)
    order = place_order(10)
    service = AllocationService(session)
    service.allocate(admin, order.sales_order_id)

    result = service.allocate(admin, order.sales_order_id)

    assert result.allocated_line_count == 0
    assert result.shortages == []
    assert len(_reservations(session, order)) == 1


def test_shipping_lane_first_then_walk_order(session, admin, warehouse, receive, place_order):
    receive(10, "B-01")
    receive(10, "A-01")
    receive(5, "SHIP-01")
    receive(50, "QC-01")
    order = place_order(12)

    AllocationService(session).allocate(admin, order.sales_order_id)

    locations = {location.location_id: code for code, location in warehouse["locations"].items()}
    taken = [(locations[r.location_id], r.reserved_quantity) for r in _reservations(session, order)]
    assert taken == [("SHIP-01", Decimal("5")), ("A-01", Decimal("7"))]


def test_quality_hold_stock_is_never_allocated(session, admin, receive, place_order):
    receive(50, "QC-01")
    order = place_order(5)

    result = AllocationService(session).allocate(admin, order.sales_order_id)

    assert result.allocated_line_count == 0
    assert result.shortages[0].available == Decimal("0")


def test_persistent_conflicts_raise_contention(monkeypatch, session, admin, receive, place_order):
    receive(10)
    order = place_order(5)
    monkeypatch.setattr(AllocationService, "_try_reserve", lambda self, balance, quantity: False)

    with pytest.raises(AllocationContention):
        AllocationService(session).allocate(admin, order.sales_order_id)

    assert _reservations(session, order) == []


def test_concurrent_allocations_never_overcommit(engine, session, admin, warehouse, receive, place_order):
    receive(100)
    orders = [place_order(60, number="SO-A"), place_order(60, number="SO-B")]
    barrier = threading.Barrier(len(orders))
    errors = []

    def allocate(order_id):
        with Session(engine) as worker_session:
            barrier.wait()
            try:
                AllocationService(worker_session).allocate(admin, order_id)
            except Exception as exc:  # surfaced by the assertion below
                errors.append(exc)

    threads = [threading.Thread(target=allocate, args=(order.sales_order_id,)) for order in orders]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert errors == []
    allocated = sorted(line.qty_allocated for line in session.exec(select(SalesOrderLine)).all())
    assert allocated == [Decimal("40"), Decimal("60")]
    balance = session.exec(select(StockBalance)).one()
    assert balance.quantity_reserved == Decimal("100")
    outstanding = AllocationService(session).outstanding_by_item(admin.tenant_id)
    assert sum(outstanding.values()) <= balance.quantity_on_hand


def test_cancel_during_allocation_leaves_no_reservation(engine, session, admin, warehouse, receive, place_order, monkeypatch):
    receive(100)
    order = place_order(60)
    reserve_line = AllocationService._reserve_line

    def cancel_then_reserve(self, *args):
        with Session(engine) as other_session:
            OrderService(other_session).cancel(admin, order.sales_order_id)
        return reserve_line(self, *args)

    monkeypatch.setattr(AllocationService, "_reserve_line", cancel_then_reserve)

    with pytest.raises(InvalidTransition):
        AllocationService(session).allocate(admin, order.sales_order_id)

    assert OrderService(session).get_order(admin, order.sales_order_id).status == OrderStatus.CANCELLED.value
    assert [r for r in _reservations(session, order) if r.reservation_status == "active"] == []
    assert session.exec(select(StockBalance)).one().quantity_reserved == Decimal("0")
    assert AllocationService(session).outstanding_by_item(admin.tenant_id) == {}


def test_allocation_committed_during_cancel_is_not_lost(engine, session, admin, warehouse, receive, place_order, monkeypatch):
    receive(100)
    order = place_order(60)
    guard_order = OrderService._guard_order
    interleaved = []

    def allocate_then_guard(self, *args):
        if not interleaved:
            interleaved.append(True)
            with Session(engine) as other_session:
                AllocationService(other_session).allocate(admin, order.sales_order_id)
        return guard_order(self, *args)

    monkeypatch.setattr(OrderService, "_guard_order", allocate_then_guard)

    with pytest.raises(ContentionError):
        OrderService(session).cancel(admin, order.sales_order_id)

    assert OrderService(session).get_order(admin, order.sales_order_id).status == OrderStatus.ALLOCATED.value
    assert session.exec(select(StockBalance)).one().quantity_reserved == Decimal("60")

    cancelled = OrderService(session).cancel(admin, order.sales_order_id, release_allocations=True)
    assert cancelled.status == OrderStatus.CANCELLED.value
    assert session.exec(select(StockBalance)).one().quantity_reserved == Decimal("0")
