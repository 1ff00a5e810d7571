"""API routes for the inventory ledger and the item/location catalog."""

from __future__ import annotations

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlmodel import Session

from fulfillment_service.auth.capabilities import Actor
from fulfillment_service.routes.dependencies import get_actor, get_session
from fulfillment_service.routes.schemas import (
    BalanceOut,
    CreateItemRequest,
    CreateLocationRequest,
    InventoryEventOut,
    InventoryEventRequest,
    ItemOut,
    LocationOut,
)
from fulfillment_service.services import CatalogService, LedgerService

router = APIRouter(prefix="/api/v1", tags=["inventory"])


@router.post("/inventory/events", response_model=InventoryEventOut, status_code=status.HTTP_201_CREATED)
def record_inventory_event(
    request: InventoryEventRequest,
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
):
    """Append a receipt, transfer, adjustment, count, scrap or return."""
    payload = request.model_dump(exclude={"event_type", "item_id", "quantity", "uom"})
    event = LedgerService(session).record_event(
        actor, request.event_type, request.item_id, request.quantity, request.uom, **payload
    )
    return InventoryEventOut.model_validate(event)


@router.get("/inventory/events", response_model=List[InventoryEventOut])
def list_inventory_events(
    item_id: Optional[UUID] = None,
    event_type: Optional[str] = None,
    reference_type: Optional[str] = None,
    reference_id: Optional[str] = None,
    limit: int = 100,
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
):
    events = LedgerService(session).get_events(
        actor,
        item_id=item_id,
        event_type=event_type,
        reference_type=reference_type,
        reference_id=reference_id,
        limit=limit,
    )
    return [InventoryEventOut.model_validate(event) for event in events]


@router.get("/inventory/balances", response_model=List[BalanceOut])
def list_balances(
    item_id: Optional[UUID] = None,
    location_id: Optional[UUID] = None,
    site_id: Optional[str] = None,
    include_empty: bool = False,
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
):
    balances = LedgerService(session).get_balances(
        actor, item_id=item_id, location_id=location_id, site_id=site_id, include_empty=include_empty
    )
    return [BalanceOut.model_validate(balance) for balance in balances]


@router.post("/items", response_model=ItemOut, status_code=status.HTTP_201_CREATED)
def create_item(
    request: CreateItemRequest,
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
):
    options = request.model_dump(exclude={"sku", "item_name", "base_uom"})
    item = CatalogService(session).create_item(actor, request.sku, request.item_name, request.base_uom, **options)
    return ItemOut.model_validate(item)


@router.get("/items", response_model=List[ItemOut])
def list_items(
    search: Optional[str] = None,
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
):
    return [ItemOut.model_validate(item) for item in CatalogService(session).list_items(actor, search)]


@router.post("/locations", response_model=LocationOut, status_code=status.HTTP_201_CREATED)
def create_location(
    request: CreateLocationRequest,
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
):
    location = CatalogService(session).create_location(actor, **request.model_dump())
    return LocationOut.model_validate(location)


@router.get("/locations", response_model=List[LocationOut])
def list_locations(
    site_id: Optional[str] = None,
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
):
    return [LocationOut.model_validate(location) for location in CatalogService(session).list_locations(actor, site_id)]
