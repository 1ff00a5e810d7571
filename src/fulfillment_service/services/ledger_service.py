"""Inventory ledger: append-only events and the balances derived from them."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import List, Optional
from uuid import UUID

from sqlalchemy import case, func, update
from sqlmodel import select

from fulfillment_service.auth.capabilities import Action, Actor
from fulfillment_service.db import atomic
from fulfillment_service.exceptions import (
    ContentionError,
    InsufficientStock,
    InvalidUnitOfMeasure,
    ItemNotFound,
    LocationNotFound,
    ValidationError,
)
from fulfillment_service.models import InventoryEvent, Item, Location, StockBalance, utcnow
from fulfillment_service.services.base import FulfillmentService, snapshot, to_json

QUANTUM = Decimal("0.001")

# event type -> (needs from location, needs to location)
LOCATION_REQUIREMENTS: dict[str, tuple[bool, bool]] = {
    "RECEIVE": (False, True),
    "MOVE": (True, True),
    "ISSUE": (True, False),
    "SCRAP": (True, False),
    "RETURN": (False, True),
    "COUNT": (False, True),
}
REASON_REQUIRED = frozenset({"SCRAP", "ADJUST"})


def convert_quantity(item: Item, quantity: Decimal, uom: Optional[str] = None) -> Decimal:
    """Convert an entered quantity to the item's base unit of measure."""
    uom = (uom or item.base_uom).upper()
    if uom == item.base_uom.upper():
        factor = Decimal("1")
    else:
        conversions = {key.upper(): value for key, value in (item.uom_conversions or {}).items()}
        if uom not in conversions:
            raise InvalidUnitOfMeasure(
                f"Unit {uom} is not defined for item {item.sku}",
                details={"sku": item.sku, "uom": uom, "base_uom": item.base_uom},
            )
        try:
            factor = Decimal(str(conversions[uom]))
        except InvalidOperation as exc:
            raise InvalidUnitOfMeasure(details={"sku": item.sku, "uom": uom}) from exc
    return (Decimal(quantity) * factor).quantize(QUANTUM)


class LedgerService(FulfillmentService):
    """Append inventory events and keep stock balances in step with them."""

    component = "ledger"

    def get_item(self, actor: Actor, item_id: UUID) -> Item:
        return self._get_owned(Item, item_id, actor, ItemNotFound)

    def get_location(self, actor: Actor, location_id: UUID) -> Location:
        return self._get_owned(Location, location_id, actor, LocationNotFound)

    def record_event(
        self,
        actor: Actor,
        event_type: str,
        item_id: UUID,
        quantity: Decimal,
        uom: Optional[str] = None,
        *,
        from_location_id: Optional[UUID] = None,
        to_location_id: Optional[UUID] = None,
        reference_type: Optional[str] = None,
        reference_id: Optional[str] = None,
        reason_code: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> InventoryEvent:
        """Validate, append and apply one inventory event in a single transaction."""
        self._authorize(actor, Action.INVENTORY_RECORD)
        with atomic(self.session):
            event = self.apply_event(
                actor,
                event_type,
                item_id,
                quantity,
                uom,
                from_location_id=from_location_id,
                to_location_id=to_location_id,
                reference_type=reference_type,
                reference_id=reference_id,
                reason_code=reason_code,
                notes=notes,
            )
        self.session.refresh(event)
        return event

    def apply_event(
        self,
        actor: Actor,
        event_type: str,
        item_id: UUID,
        quantity: Decimal,
        uom: Optional[str] = None,
        *,
        from_location_id: Optional[UUID] = None,
        to_location_id: Optional[UUID] = None,
        reference_type: Optional[str] = None,
        reference_id: Optional[str] = None,
        reason_code: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> InventoryEvent:
        """Same as :meth:`record_event` but inside the caller's transaction."""
        event_type = event_type.upper()
        if event_type not in LOCATION_REQUIREMENTS and event_type != "ADJUST":
            raise ValidationError(f"Unsupported event type {event_type}", details={"event_type": event_type})

        item = self.get_item(actor, item_id)
        quantity = Decimal(quantity)
        if quantity < 0 or (quantity == 0 and event_type != "COUNT"):
            raise ValidationError("Quantity must be positive", details={"quantity": str(quantity)})
        if event_type in REASON_REQUIRED and not reason_code:
            raise ValidationError("Reason code is required", details={"event_type": event_type})

        needs_from, needs_to = LOCATION_REQUIREMENTS.get(event_type, (False, False))
        if needs_from and not from_location_id:
            raise ValidationError("from_location_id is required", details={"event_type": event_type})
        if needs_to and not to_location_id:
            raise ValidationError("to_location_id is required", details={"event_type": event_type})
        if event_type == "ADJUST" and not (from_location_id or to_location_id):
            raise ValidationError("from_location_id or to_location_id is required", details={"event_type": event_type})
        if event_type == "MOVE" and from_location_id == to_location_id:
            raise ValidationError("MOVE needs two different locations")

        source = self.get_location(actor, from_location_id) if from_location_id else None
        destination = self.get_location(actor, to_location_id) if to_location_id else None
        site_id = (destination or source).site_id
        if source and destination and source.site_id != destination.site_id:
            raise ValidationError("Locations belong to different sites")

        quantity_base = convert_quantity(item, quantity, uom)
        now = utcnow()

        if event_type == "COUNT":
            balance = self._get_or_create_balance(actor.tenant_id, site_id, item.item_id, destination.location_id)
            self._apply_delta(
                balance,
                quantity_base - balance.quantity_on_hand,
                now,
                expected_version=balance.version,
            )
        else:
            if source is not None:
                balance = self._get_or_create_balance(actor.tenant_id, site_id, item.item_id, source.location_id)
                self._apply_delta(balance, -quantity_base, now)
            if destination is not None:
                balance = self._get_or_create_balance(actor.tenant_id, site_id, item.item_id, destination.location_id)
                self._apply_delta(balance, quantity_base, now)

        event = InventoryEvent(
            tenant_id=actor.tenant_id,
            site_id=site_id,
            event_type=event_type,
            item_id=item.item_id,
            quantity_entered=quantity,
            uom_entered=(uom or item.base_uom).upper(),
            quantity_base=quantity_base,
            from_location_id=from_location_id,
            to_location_id=to_location_id,
            reference_type=reference_type,
            reference_id=reference_id,
            reason_code=reason_code,
            notes=notes,
            actor_id=actor.actor_id,
            occurred_at=now,
        )
        self.session.add(event)
        self.session.flush()

        self._create_audit_log(
            actor,
            action=f"INVENTORY_{event_type}",
            entity_table="inventory_event",
            entity_id=event.inventory_event_id,
            after_state=snapshot(event),
        )
        self._create_domain_event(
            actor,
            event_name="InventoryEventRecorded",
            aggregate_type="inventory_event",
            aggregate_id=event.inventory_event_id,
            payload=to_json(
                {
                    "event_type": event_type,
                    "item_id": item.item_id,
                    "quantity_base": quantity_base,
                    "from_location_id": from_location_id,
                    "to_location_id": to_location_id,
                    "reference_type": reference_type,
                    "reference_id": reference_id,
                }
            ),
        )
        self.log.info(
            "Inventory event recorded",
            event_type=event_type,
            sku=item.sku,
            quantity_base=str(quantity_base),
            tenant_id=actor.tenant_id,
        )
        return event

    def issue_reserved(
        self,
        actor: Actor,
        balance: StockBalance,
        quantity: Decimal,
        *,
        reference_type: str,
        reference_id: str,
        notes: Optional[str] = None,
    ) -> InventoryEvent:
        """Ship reserved stock: drop on-hand and reserved together and append an ISSUE event.

        Runs inside the caller's transaction.
        """
        now = utcnow()
        changed = self._execute(
            update(StockBalance)
            .where(
                StockBalance.stock_balance_id == balance.stock_balance_id,
                StockBalance.quantity_reserved >= quantity,
                StockBalance.quantity_on_hand >= quantity,
            )
            .values(
                quantity_on_hand=StockBalance.quantity_on_hand - quantity,
                quantity_reserved=StockBalance.quantity_reserved - quantity,
                version=StockBalance.version + 1,
                last_movement_at=now,
            )
        )
        if not changed:
            raise InsufficientStock(
                "Reserved stock is no longer available to issue",
                details={"stock_balance_id": str(balance.stock_balance_id), "quantity": str(quantity)},
            )
        self.session.refresh(balance)

        item = self.session.get(Item, balance.item_id)
        event = InventoryEvent(
            tenant_id=balance.tenant_id,
            site_id=balance.site_id,
            event_type="ISSUE",
            item_id=balance.item_id,
            quantity_entered=quantity,
            uom_entered=item.base_uom.upper(),
            quantity_base=quantity,
            from_location_id=balance.location_id,
            reference_type=reference_type,
            reference_id=reference_id,
            notes=notes,
            actor_id=actor.actor_id,
            occurred_at=now,
        )
        self.session.add(event)
        self.session.flush()
        return event

    def get_balances(
        self,
        actor: Actor,
        *,
        item_id: Optional[UUID] = None,
        location_id: Optional[UUID] = None,
        site_id: Optional[str] = None,
        include_empty: bool = False,
    ) -> List[StockBalance]:
        """Get current stock balances with optional filtering."""
        stmt = select(StockBalance).where(StockBalance.tenant_id == actor.tenant_id)
        if item_id:
            stmt = stmt.where(StockBalance.item_id == item_id)
        if location_id:
            stmt = stmt.where(StockBalance.location_id == location_id)
        if site_id:
            stmt = stmt.where(StockBalance.site_id == site_id)
        if not include_empty:
            stmt = stmt.where(StockBalance.quantity_on_hand > 0)
        stmt = stmt.order_by(StockBalance.site_id, StockBalance.item_id, StockBalance.location_id)
        return list(self.session.exec(stmt))

    def get_available(self, actor: Actor, item_id: UUID, site_id: Optional[str] = None) -> Decimal:
        """Unreserved on-hand quantity of an item across a tenant (or one site)."""
        stmt = select(
            func.coalesce(func.sum(StockBalance.quantity_on_hand - StockBalance.quantity_reserved), 0)
        ).where(StockBalance.tenant_id == actor.tenant_id, StockBalance.item_id == item_id)
        if site_id:
            stmt = stmt.where(StockBalance.site_id == site_id)
        return Decimal(str(self.session.exec(stmt).one()))

    def get_events(
        self,
        actor: Actor,
        *,
        item_id: Optional[UUID] = None,
        reference_type: Optional[str] = None,
        reference_id: Optional[str] = None,
        event_type: Optional[str] = None,
        limit: int = 100,
    ) -> List[InventoryEvent]:
        """Get inventory event history with filtering, oldest first."""
        stmt = select(InventoryEvent).where(InventoryEvent.tenant_id == actor.tenant_id)
        if item_id:
            stmt = stmt.where(InventoryEvent.item_id == item_id)
        if reference_type:
            stmt = stmt.where(InventoryEvent.reference_type == reference_type)
        if reference_id:
            stmt = stmt.where(InventoryEvent.reference_id == reference_id)
        if event_type:
            stmt = stmt.where(InventoryEvent.event_type == event_type.upper())
        stmt = stmt.order_by(InventoryEvent.occurred_at).limit(limit)
        return list(self.session.exec(stmt))

    def _get_or_create_balance(self, tenant_id: str, site_id: str, item_id: UUID, location_id: UUID) -> StockBalance:
        stmt = (
            select(StockBalance)
            .where(
                StockBalance.tenant_id == tenant_id,
                StockBalance.site_id == site_id,
                StockBalance.item_id == item_id,
                StockBalance.location_id == location_id,
            )
            .execution_options(populate_existing=True)
        )
        balance = self.session.exec(stmt).first()
        if balance is None:
            balance = StockBalance(tenant_id=tenant_id, site_id=site_id, item_id=item_id, location_id=location_id)
            self.session.add(balance)
            self.session.flush()
        return balance

    def _apply_delta(
        self,
        balance: StockBalance,
        delta: Decimal,
        occurred_at: datetime,
        *,
        expected_version: Optional[int] = None,
    ) -> None:
        """Conditionally apply an on-hand delta; never below zero or below reserved."""
        values = {
            "quantity_on_hand": StockBalance.quantity_on_hand + delta,
            "version": StockBalance.version + 1,
            "last_movement_at": occurred_at,
        }
        if delta > 0:
            # FIFO age restarts when an empty bin is replenished.
            values["first_received_at"] = case(
                (StockBalance.quantity_on_hand == 0, occurred_at),
                else_=func.coalesce(StockBalance.first_received_at, occurred_at),
            )
        stmt = update(StockBalance).where(
            StockBalance.stock_balance_id == balance.stock_balance_id,
            StockBalance.quantity_on_hand + delta >= StockBalance.quantity_reserved,
        )
        if expected_version is not None:
            stmt = stmt.where(StockBalance.version == expected_version)

        if self._execute(stmt.values(**values)):
            self.session.refresh(balance)
            return

        self.session.refresh(balance)
        if expected_version is not None and balance.version != expected_version:
            raise ContentionError(
                "Balance changed while the count was applied",
                details={"stock_balance_id": str(balance.stock_balance_id)},
            )
        raise InsufficientStock(
            details={
                "item_id": str(balance.item_id),
                "location_id": str(balance.location_id),
                "on_hand": str(balance.quantity_on_hand),
                "reserved": str(balance.quantity_reserved),
                "requested_change": str(delta),
            }
        )


__all__ = ["LedgerService", "convert_quantity", "LOCATION_REQUIREMENTS"]
