"""API routes for orders, pick tasks and shipments."""

from __future__ import annotations

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlmodel import Session

from fulfillment_service.auth.capabilities import Actor
from fulfillment_service.models import PickTask, SalesOrder, Shipment
from fulfillment_service.routes.dependencies import get_actor, get_session
from fulfillment_service.routes.schemas import (
    AllocationOut,
    CancelOrderRequest,
    CreateOrderRequest,
    CreatePickTaskRequest,
    CreateShipmentRequest,
    DeliverRequest,
    DispatchRequest,
    OrderLineOut,
    OrderOut,
    PackageIn,
    PackageOut,
    PickTaskCreatedOut,
    PickTaskLineOut,
    PickTaskOut,
    RecordPickRequest,
    ShipmentLineOut,
    ShipmentOut,
)
from fulfillment_service.services import (
    AllocationService,
    OrderLineRequest,
    OrderService,
    PackageRequest,
    PickingService,
    ShipmentLineRequest,
    ShipmentService,
)

router = APIRouter(prefix="/api/v1", tags=["fulfillment"])


def _order_out(service: OrderService, actor: Actor, order: SalesOrder) -> OrderOut:
    payload = OrderOut.model_validate(order)
    payload.lines = [OrderLineOut.model_validate(line) for line in service.get_lines(actor, order.sales_order_id)]
    return payload


def _pick_task_out(service: PickingService, actor: Actor, task: PickTask) -> PickTaskOut:
    payload = PickTaskOut.model_validate(task)
    payload.lines = [PickTaskLineOut.model_validate(line) for line in service.get_task_lines(actor, task.pick_task_id)]
    return payload


def _shipment_out(service: ShipmentService, actor: Actor, shipment: Shipment) -> ShipmentOut:
    payload = ShipmentOut.model_validate(shipment)
    payload.lines = [ShipmentLineOut.model_validate(line) for line in service.get_shipment_lines(actor, shipment.shipment_id)]
    payload.packages = [PackageOut.model_validate(package) for package in service.get_packages(actor, shipment.shipment_id)]
    return payload


def _package_request(package: PackageIn) -> PackageRequest:
    return PackageRequest(**package.model_dump())


# Orders

@router.post("/orders", response_model=OrderOut, status_code=status.HTTP_201_CREATED)
def create_order(
    request: CreateOrderRequest,
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
):
    """Create a DRAFT sales order."""
    service = OrderService(session)
    header = request.model_dump(exclude={"order_number", "customer_reference", "site_id", "lines", "order_date"})
    order = service.create_order(
        actor,
        request.order_number,
        request.customer_reference,
        [OrderLineRequest(**line.model_dump()) for line in request.lines],
        site_id=request.site_id,
        order_date=request.order_date,
        **header,
    )
    return _order_out(service, actor, order)


@router.get("/orders", response_model=List[OrderOut])
def list_orders(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    search: Optional[str] = None,
    limit: int = 100,
    offset: int = 0,
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
):
    service = OrderService(session)
    orders = service.list_orders(actor, status=status_filter, search=search, limit=limit, offset=offset)
    return [OrderOut.model_validate(order) for order in orders]


@router.get("/orders/{order_id}", response_model=OrderOut)
def get_order(
    order_id: UUID,
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
):
    service = OrderService(session)
    return _order_out(service, actor, service.get_order(actor, order_id))


@router.post("/orders/{order_id}/confirm", response_model=OrderOut)
def confirm_order(
    order_id: UUID,
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
):
    service = OrderService(session)
    return _order_out(service, actor, service.confirm(actor, order_id))


@router.post("/orders/{order_id}/allocate", response_model=AllocationOut)
def allocate_order(
    order_id: UUID,
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
):
    """Reserve stock for the order; shortages are reported, not raised."""
    result = AllocationService(session).allocate(actor, order_id)
    return AllocationOut(
        allocated_count=result.allocated_line_count,
        shortages=[
            {"line_id": shortage.line_id, "requested": shortage.requested, "available": shortage.available}
            for shortage in result.shortages
        ],
    )


@router.post("/orders/{order_id}/cancel", response_model=OrderOut)
def cancel_order(
    order_id: UUID,
    request: Optional[CancelOrderRequest] = None,
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
):
    request = request or CancelOrderRequest()
    service = OrderService(session)
    order = service.cancel(actor, order_id, release_allocations=request.release_allocations)
    return _order_out(service, actor, order)


@router.post("/orders/{order_id}/pick", response_model=PickTaskCreatedOut, status_code=status.HTTP_201_CREATED)
def create_pick_task(
    order_id: UUID,
    request: Optional[CreatePickTaskRequest] = None,
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
):
    request = request or CreatePickTaskRequest()
    service = PickingService(session)
    task = service.create_pick_task(actor, order_id, assigned_to=request.assigned_to)
    return PickTaskCreatedOut(
        pick_task_id=task.pick_task_id,
        task_number=task.task_number,
        line_count=len(service.get_task_lines(actor, task.pick_task_id)),
    )


# Pick tasks

@router.get("/pick-tasks/{task_id}", response_model=PickTaskOut)
def get_pick_task(
    task_id: UUID,
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
):
    service = PickingService(session)
    return _pick_task_out(service, actor, service.get_pick_task(actor, task_id))


@router.post("/pick-tasks/lines/{line_id}/picks", response_model=PickTaskLineOut)
def record_pick(
    line_id: UUID,
    request: RecordPickRequest,
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
):
    line = PickingService(session).record_pick(actor, line_id, request.quantity, short=request.short)
    return PickTaskLineOut.model_validate(line)


# Shipments

@router.post("/shipments", response_model=ShipmentOut, status_code=status.HTTP_201_CREATED)
def create_shipment(
    request: CreateShipmentRequest,
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
):
    service = ShipmentService(session)
    ship_to = request.model_dump(include={name for name in CreateShipmentRequest.model_fields if name.startswith("ship_to_")})
    shipment = service.create_shipment(
        actor,
        request.sales_order_id,
        [ShipmentLineRequest(line.sales_order_line_id, line.quantity) for line in request.lines],
        carrier=request.carrier,
        service_level=request.service_level,
        ship_to=ship_to,
        notes=request.notes,
    )
    return _shipment_out(service, actor, shipment)


@router.get("/shipments/{shipment_id}", response_model=ShipmentOut)
def get_shipment(
    shipment_id: UUID,
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
):
    service = ShipmentService(session)
    return _shipment_out(service, actor, service.get_shipment(actor, shipment_id))


@router.post("/shipments/{shipment_id}", response_model=ShipmentOut)
def dispatch_shipment(
    shipment_id: UUID,
    request: Optional[DispatchRequest] = None,
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
):
    """Ship the shipment: issues the reserved stock and updates the order."""
    request = request or DispatchRequest()
    service = ShipmentService(session)
    shipment = service.dispatch(
        actor,
        shipment_id,
        tracking_number=request.tracking_number,
        ship_date=request.ship_date,
        carrier=request.carrier,
        packages=[_package_request(package) for package in request.packages],
    )
    return _shipment_out(service, actor, shipment)


@router.post("/shipments/{shipment_id}/packages", response_model=PackageOut, status_code=status.HTTP_201_CREATED)
def add_package(
    shipment_id: UUID,
    request: PackageIn,
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
):
    package = ShipmentService(session).add_package(actor, shipment_id, _package_request(request))
    return PackageOut.model_validate(package)


@router.post("/shipments/{shipment_id}/deliver", response_model=ShipmentOut)
def deliver_shipment(
    shipment_id: UUID,
    request: Optional[DeliverRequest] = None,
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
):
    request = request or DeliverRequest()
    service = ShipmentService(session)
    shipment = service.mark_delivered(actor, shipment_id, delivered_at=request.delivered_at)
    return _shipment_out(service, actor, shipment)
