from __future__ import annotations

from decimal import Decimal

import pytest

from fulfillment_service.exceptions import PermissionDenied, ValidationError
from fulfillment_service.services import CatalogService


def test_create_item_normalises_units(session, admin):
    item = CatalogService(session).create_item(admin, " BOLT-8 ", "Bolt", "ea", uom_conversions={"box": 100})

    assert item.sku == "BOLT-8"
    assert item.base_uom == "EA"
    assert item.uom_conversions == {"BOX": "100"}


def test_duplicate_sku_and_bad_factor_are_rejected(session, admin):
    catalog = CatalogService(session)
    catalog.create_item(admin, "BOLT-8", "Bolt")

    with pytest.raises(ValidationError):
        catalog.create_item(admin, "BOLT-8", "Bolt again")
    with pytest.raises(ValidationError):
        catalog.create_item(admin, "NUT-8", "Nut", uom_conversions={"BAG": "0"})


def test_update_item_keeps_sku(session, admin):
    catalog = CatalogService(session)
    item = catalog.create_item(admin, "BOLT-8", "Bolt")

    updated = catalog.update_item(admin, item.item_id, item_name="Hex bolt", reorder_point=Decimal("25"))

    assert updated.item_name == "Hex bolt"
    assert updated.reorder_point == Decimal("25")
    assert updated.sku == "BOLT-8"


def test_locations_are_listed_in_walk_order(session, admin, warehouse):
    codes = [location.location_code for location in CatalogService(session).list_locations(admin, "SITE-1")]
    assert codes == ["QC-01", "A-01", "B-01", "SHIP-01"]


def test_unknown_location_type_is_rejected(session, admin):
    with pytest.raises(ValidationError):
        CatalogService(session).create_location(admin, "SITE-1", "X-01", "ROOF")


def test_sales_cannot_manage_catalog(session, sales):
    with pytest.raises(PermissionDenied):
        CatalogService(session).create_item(sales, "BOLT-8", "Bolt")
