from __future__ import annotations

from decimal import Decimal

import pytest
from sqlmodel import select

from fulfillment_service.domain.status import LineStatus, OrderStatus, ShipmentStatus
from fulfillment_service.exceptions import AlreadyShipped, ExceedsPicked, InvalidTransition, OverShipment
from fulfillment_service.models import InventoryReservation, ShipmentLine
from fulfillment_service.services import (
    AllocationService,
    LedgerService,
    OrderService,
    PackageRequest,
    PickingService,
    ShipmentLineRequest,
    ShipmentService,
)


@pytest.fixture
def picked_order(session, admin, receive, place_order):
    receive(100)
    order = place_order(100)
    AllocationService(session).allocate(admin, order.sales_order_id)
    picking = PickingService(session)
    task = picking.create_pick_task(admin, order.sales_order_id)
    line = picking.get_task_lines(admin, task.pick_task_id)[0]
    picking.record_pick(admin, line.pick_task_line_id, Decimal("100"))
    return order


def _order_line(session, sales, order):
    return OrderService(session).get_lines(sales, order.sales_order_id)[0]


def _ship(session, admin, sales, order, quantity):
    line = _order_line(session, sales, order)
    return ShipmentService(session).create_shipment(
        admin, order.sales_order_id, [ShipmentLineRequest(line.sales_order_line_id, Decimal(quantity))], carrier="UPS"
    )


def _issues(session, admin):
    return LedgerService(session).get_events(admin, event_type="ISSUE")


def test_happy_path_ships_and_issues_stock_once(session, admin, sales, warehouse, picked_order):
    service = ShipmentService(session)
    shipment = _ship(session, admin, sales, picked_order, 100)
    assert shipment.shipment_number == "SHP-000001"
    assert shipment.status == ShipmentStatus.DRAFT.value

    package = service.add_package(admin, shipment.shipment_id, PackageRequest(package_type="BOX", weight=Decimal("12.5")))
    assert package.package_number == 1
    assert service.get_shipment(admin, shipment.shipment_id).status == ShipmentStatus.READY_TO_SHIP.value
    assert OrderService(session).get_order(sales, picked_order.sales_order_id).status == OrderStatus.PACKED.value

    shipped = service.dispatch(admin, shipment.shipment_id, tracking_number="1Z999")

    assert shipped.status == ShipmentStatus.SHIPPED.value
    assert shipped.tracking_number == "1Z999"
    assert shipped.ship_date is not None
    assert OrderService(session).get_order(sales, picked_order.sales_order_id).status == OrderStatus.SHIPPED.value
    assert _order_line(session, sales, picked_order).qty_shipped == Decimal("100")

    issues = _issues(session, admin)
    assert len(issues) == 1
    assert issues[0].quantity_base == Decimal("100")
    assert issues[0].from_location_id == warehouse["locations"]["A-01"].location_id
    assert issues[0].reference_type == "shipment"
    assert issues[0].reference_id == shipment.shipment_number

    balance = LedgerService(session).get_balances(admin, item_id=warehouse["item"].item_id, include_empty=True)[0]
    assert balance.quantity_on_hand == Decimal("0")
    assert balance.quantity_reserved == Decimal("0")
    reservation = session.exec(select(InventoryReservation)).one()
    assert reservation.reservation_status == "consumed"

    delivered = service.mark_delivered(admin, shipment.shipment_id)
    assert delivered.status == ShipmentStatus.DELIVERED.value
    assert OrderService(session).get_order(sales, picked_order.sales_order_id).status == OrderStatus.DELIVERED.value
    # delivering again changes nothing
    assert service.mark_delivered(admin, shipment.shipment_id).status == ShipmentStatus.DELIVERED.value


def test_double_dispatch_is_rejected(session, admin, sales, picked_order):
    service = ShipmentService(session)
    shipment = _ship(session, admin, sales, picked_order, 100)
    service.dispatch(admin, shipment.shipment_id)

    with pytest.raises(AlreadyShipped):
        service.dispatch(admin, shipment.shipment_id)

    assert len(_issues(session, admin)) == 1
    assert _order_line(session, sales, picked_order).qty_shipped == Decimal("100")


def test_shipment_cannot_exceed_picked(session, admin, sales, picked_order):
    with pytest.raises(ExceedsPicked):
        _ship(session, admin, sales, picked_order, 101)

    _ship(session, admin, sales, picked_order, 60)
    with pytest.raises(ExceedsPicked):
        _ship(session, admin, sales, picked_order, 60)


def test_over_shipment_rolls_back_dispatch(session, admin, sales, picked_order):
    shipment = _ship(session, admin, sales, picked_order, 100)
    shipment_line = session.exec(select(ShipmentLine).where(ShipmentLine.shipment_id == shipment.shipment_id)).one()
    shipment_line.qty_shipped = Decimal("150")
    session.add(shipment_line)
    session.commit()

    service = ShipmentService(session)
    with pytest.raises(OverShipment):
        service.dispatch(admin, shipment.shipment_id)

    assert service.get_shipment(admin, shipment.shipment_id).status == ShipmentStatus.DRAFT.value
    assert _issues(session, admin) == []
    assert _order_line(session, sales, picked_order).qty_shipped == Decimal("0")


def test_partial_shipments(session, admin, sales, picked_order):
    service = ShipmentService(session)

    service.dispatch(admin, _ship(session, admin, sales, picked_order, 40).shipment_id)
    assert OrderService(session).get_order(sales, picked_order.sales_order_id).status == OrderStatus.PICKING.value

    second = _ship(session, admin, sales, picked_order, 60)
    assert second.shipment_number == "SHP-000002"
    service.dispatch(admin, second.shipment_id)

    assert OrderService(session).get_order(sales, picked_order.sales_order_id).status == OrderStatus.SHIPPED.value
    assert sorted(event.quantity_base for event in _issues(session, admin)) == [Decimal("40"), Decimal("60")]


def test_undispatched_shipment_cannot_be_delivered(session, admin, sales, picked_order):
    shipment = _ship(session, admin, sales, picked_order, 100)
    with pytest.raises(InvalidTransition):
        ShipmentService(session).mark_delivered(admin, shipment.shipment_id)


def test_packaging_part_of_a_fully_picked_order_marks_it_packed(session, admin, sales, receive, place_order):
    receive(100)
    order = place_order(30, 20)
    AllocationService(session).allocate(admin, order.sales_order_id)
    picking = PickingService(session)
    task = picking.create_pick_task(admin, order.sales_order_id)
    for task_line in picking.get_task_lines(admin, task.pick_task_id):
        picking.record_pick(admin, task_line.pick_task_line_id, task_line.qty_to_pick)

    orders = OrderService(session)
    first, second = orders.get_lines(sales, order.sales_order_id)
    service = ShipmentService(session)
    shipment = service.create_shipment(
        admin, order.sales_order_id, [ShipmentLineRequest(first.sales_order_line_id, Decimal("30"))]
    )
    assert orders.get_order(sales, order.sales_order_id).status == OrderStatus.PICKING.value

    service.add_package(admin, shipment.shipment_id, PackageRequest(package_type="BOX"))

    assert orders.get_order(sales, order.sales_order_id).status == OrderStatus.PACKED.value
    first, second = orders.get_lines(sales, order.sales_order_id)
    assert first.status == LineStatus.PACKED.value
    assert second.status == LineStatus.PICKED.value
