from __future__ import annotations

from decimal import Decimal

import pytest
from sqlmodel import Session

from fulfillment_service.auth import Actor, Role
from fulfillment_service.config import get_settings
from fulfillment_service.db import get_engine, init_db, reset_engine
from fulfillment_service.services import CatalogService, LedgerService, OrderLineRequest, OrderService

TENANT = "tenant-a"
SITE = "SITE-1"


@pytest.fixture(autouse=True)
def database_env(monkeypatch, tmp_path):
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'fulfillment.db'}")
    monkeypatch.setenv("LOG_LEVEL", "WARNING")
    get_settings.cache_clear()
    reset_engine()
    yield
    reset_engine()
    get_settings.cache_clear()


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def engine():
    engine = get_engine()
    init_db(engine)
    return engine


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def admin() -> Actor:
    return Actor(actor_id="admin-1", tenant_id=TENANT, role=Role.ADMIN, site_id=SITE)


@pytest.fixture
def sales() -> Actor:
    return Actor(actor_id="sales-1", tenant_id=TENANT, role=Role.SALES, site_id=SITE)


@pytest.fixture
def operator() -> Actor:
    return Actor(actor_id="picker-1", tenant_id=TENANT, role=Role.OPERATOR, site_id=SITE)


@pytest.fixture
def warehouse(session, admin):
    """One item (with a BOX of 10) and three bins: a shipping lane and two stock bins."""
    catalog = CatalogService(session)
    item = catalog.create_item(admin, "WIDGET-1", "Widget", "EA", uom_conversions={"BOX": "10"})
    locations = {
        "A-01": catalog.create_location(admin, SITE, "A-01", "STOCK", pick_sequence=10),
        "B-01": catalog.create_location(admin, SITE, "B-01", "STOCK", pick_sequence=20),
        "SHIP-01": catalog.create_location(admin, SITE, "SHIP-01", "SHIPPING", pick_sequence=90),
        "QC-01": catalog.create_location(admin, SITE, "QC-01", "QC_HOLD", pick_sequence=5),
    }
    return {"item": item, "locations": locations}


@pytest.fixture
def receive(session, admin, warehouse):
    def _receive(quantity, location_code="A-01"):
        return LedgerService(session).record_event(
            admin,
            "RECEIVE",
            warehouse["item"].item_id,
            Decimal(quantity),
            to_location_id=warehouse["locations"][location_code].location_id,
            reference_type="purchase_order",
            reference_id="PO-1",
        )

    return _receive


@pytest.fixture
def place_order(session, sales, warehouse):
    """Create (and by default confirm) an order for the warehouse item."""

    def _place(*quantities, number="SO-1", confirm=True):
        service = OrderService(session)
        order = service.create_order(
            sales,
            number,
            "CUST-1",
            [
                OrderLineRequest(item_id=warehouse["item"].item_id, quantity=Decimal(qty), unit_price=Decimal("2.50"))
                for qty in quantities
            ],
        )
        if confirm:
            order = service.confirm(sales, order.sales_order_id)
        return order

    return _place
