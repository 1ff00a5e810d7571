"""Items and locations referenced by orders and the inventory ledger."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import List, Optional
from uuid import UUID

from sqlmodel import select

from fulfillment_service.auth.capabilities import Action, Actor
from fulfillment_service.db import atomic
from fulfillment_service.exceptions import ItemNotFound, LocationNotFound, ValidationError
from fulfillment_service.models import LOCATION_TYPES, Item, Location
from fulfillment_service.services.base import FulfillmentService, snapshot


class CatalogService(FulfillmentService):
    """Service for item and location master data."""

    component = "catalog"

    def create_item(
        self,
        actor: Actor,
        sku: str,
        item_name: str,
        base_uom: str = "EA",
        *,
        uom_conversions: Optional[dict] = None,
        reorder_point: Decimal = Decimal("0"),
        unit_cost: Optional[Decimal] = None,
        description: Optional[str] = None,
    ) -> Item:
        self._authorize(actor, Action.CATALOG_MANAGE)
        sku = sku.strip()
        if not sku:
            raise ValidationError("SKU is required")
        existing = self.session.exec(
            select(Item).where(Item.tenant_id == actor.tenant_id, Item.sku == sku)
        ).first()
        if existing:
            raise ValidationError(f"SKU {sku} already exists", details={"sku": sku})

        item = Item(
            tenant_id=actor.tenant_id,
            sku=sku,
            item_name=item_name,
            description=description,
            base_uom=base_uom.upper(),
            uom_conversions=self._clean_conversions(uom_conversions),
            reorder_point=reorder_point,
            unit_cost=unit_cost,
        )
        with atomic(self.session):
            self.session.add(item)
            self.session.flush()
            self._create_audit_log(
                actor, "CREATE", "item", item.item_id, after_state=snapshot(item, "sku", "item_name", "base_uom")
            )
        self.log.info("Item created", sku=sku, tenant_id=actor.tenant_id)
        self.session.refresh(item)
        return item

    def update_item(
        self,
        actor: Actor,
        item_id: UUID,
        *,
        item_name: Optional[str] = None,
        description: Optional[str] = None,
        reorder_point: Optional[Decimal] = None,
        unit_cost: Optional[Decimal] = None,
        uom_conversions: Optional[dict] = None,
    ) -> Item:
        """Edit descriptive and costing metadata; SKU and base unit stay fixed."""
        self._authorize(actor, Action.CATALOG_MANAGE)
        item = self._get_owned(Item, item_id, actor, ItemNotFound)
        before = snapshot(item)
        with atomic(self.session):
            if item_name is not None:
                item.item_name = item_name
            if description is not None:
                item.description = description
            if reorder_point is not None:
                item.reorder_point = reorder_point
            if unit_cost is not None:
                item.unit_cost = unit_cost
            if uom_conversions is not None:
                item.uom_conversions = self._clean_conversions(uom_conversions)
            self.session.add(item)
            self.session.flush()
            self._create_audit_log(actor, "UPDATE", "item", item.item_id, before_state=before, after_state=snapshot(item))
        self.session.refresh(item)
        return item

    def list_items(self, actor: Actor, search: Optional[str] = None) -> List[Item]:
        stmt = select(Item).where(Item.tenant_id == actor.tenant_id, Item.is_active.is_(True))
        if search:
            pattern = f"%{search}%"
            stmt = stmt.where(Item.sku.ilike(pattern) | Item.item_name.ilike(pattern))
        return list(self.session.exec(stmt.order_by(Item.sku)))

    def create_location(
        self,
        actor: Actor,
        site_id: str,
        location_code: str,
        location_type: str = "STOCK",
        pick_sequence: int = 100,
    ) -> Location:
        self._authorize(actor, Action.CATALOG_MANAGE)
        location_type = location_type.upper()
        if location_type not in LOCATION_TYPES:
            raise ValidationError(
                f"Unknown location type {location_type}",
                details={"location_type": location_type, "allowed": list(LOCATION_TYPES)},
            )
        existing = self.session.exec(
            select(Location).where(
                Location.tenant_id == actor.tenant_id,
                Location.site_id == site_id,
                Location.location_code == location_code,
            )
        ).first()
        if existing:
            raise ValidationError(f"Location {location_code} already exists", details={"location_code": location_code})

        location = Location(
            tenant_id=actor.tenant_id,
            site_id=site_id,
            location_code=location_code,
            location_type=location_type,
            pick_sequence=pick_sequence,
        )
        with atomic(self.session):
            self.session.add(location)
            self.session.flush()
            self._create_audit_log(actor, "CREATE", "location", location.location_id, after_state=snapshot(location))
        self.session.refresh(location)
        return location

    def get_location(self, actor: Actor, location_id: UUID) -> Location:
        return self._get_owned(Location, location_id, actor, LocationNotFound)

    def list_locations(self, actor: Actor, site_id: Optional[str] = None) -> List[Location]:
        stmt = select(Location).where(Location.tenant_id == actor.tenant_id)
        if site_id:
            stmt = stmt.where(Location.site_id == site_id)
        return list(self.session.exec(stmt.order_by(Location.site_id, Location.pick_sequence, Location.location_code)))

    @staticmethod
    def _clean_conversions(conversions: Optional[dict]) -> Optional[dict]:
        if not conversions:
            return None
        cleaned = {}
        for uom, factor in conversions.items():
            try:
                value = Decimal(str(factor))
            except InvalidOperation as exc:
                raise ValidationError(f"Invalid conversion factor for {uom}") from exc
            if value <= 0:
                raise ValidationError(f"Conversion factor for {uom} must be positive")
            cleaned[uom.upper()] = str(value)
        return cleaned
