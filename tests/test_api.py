from __future__ import annotations

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from fulfillment_service.app import create_app

ADMIN = {"X-Actor-Id": "admin-1", "X-Tenant-Id": "tenant-a", "X-Actor-Role": "Admin", "X-Site-Id": "SITE-1"}
VIEWER = {**ADMIN, "X-Actor-Id": "viewer-1", "X-Actor-Role": "Viewer"}


@pytest.fixture
def client(engine):
    with TestClient(create_app()) as client:
        yield client


@pytest.fixture
def stocked(client):
    item = client.post("/api/v1/items", json={"sku": "WIDGET-1", "itemName": "Widget"}, headers=ADMIN)
    assert item.status_code == 201, item.text
    location = client.post(
        "/api/v1/locations", json={"siteId": "SITE-1", "locationCode": "A-01", "pickSequence": 10}, headers=ADMIN
    )
    assert location.status_code == 201, location.text
    receipt = client.post(
        "/api/v1/inventory/events",
        json={
            "eventType": "RECEIVE",
            "itemId": item.json()["itemId"],
            "quantity": 100,
            "toLocationId": location.json()["locationId"],
        },
        headers=ADMIN,
    )
    assert receipt.status_code == 201, receipt.text
    return {"item_id": item.json()["itemId"], "location_id": location.json()["locationId"]}


def _create_order(client, stocked, quantity=100, number="SO-1"):
    response = client.post(
        "/api/v1/orders",
        json={
            "orderNumber": number,
            "customerReference": "CUST-1",
            "lines": [{"itemId": stocked["item_id"], "quantity": quantity, "unitPrice": "1.25"}],
        },
        headers=ADMIN,
    )
    assert response.status_code == 201, response.text
    return response.json()


def test_health_and_status(client):
    assert client.get("/health").json()["status"] == "ok"
    assert client.get("/api/status").json() == {"status": "ok"}


def test_identity_headers_are_required(client):
    response = client.get("/api/v1/orders")
    assert response.status_code == 401


def test_unknown_order_is_404(client):
    response = client.get("/api/v1/orders/00000000-0000-0000-0000-000000000000", headers=ADMIN)
    assert response.status_code == 404
    assert response.json()["error"] == "not_found"
    assert response.json()["code"] == "ORDER_NOT_FOUND"


def test_viewer_cannot_create_orders(client, stocked):
    response = client.post(
        "/api/v1/orders",
        json={"orderNumber": "SO-9", "customerReference": "C", "lines": [{"itemId": stocked["item_id"], "quantity": 1}]},
        headers=VIEWER,
    )
    assert response.status_code == 403
    assert response.json()["error"] == "permission"


def test_invalid_payload_is_422(client):
    response = client.post("/api/v1/orders", json={"orderNumber": "SO-1", "lines": []}, headers=ADMIN)
    assert response.status_code == 422


def test_order_to_shipment_over_http(client, stocked):
    order = _create_order(client, stocked)
    order_id = order["salesOrderId"]
    assert order["status"] == "DRAFT"
    assert Decimal(order["totalAmount"]) == Decimal("125")

    allocate_draft = client.post(f"/api/v1/orders/{order_id}/allocate", headers=ADMIN)
    assert allocate_draft.status_code == 400
    assert allocate_draft.json()["code"] == "ORDER_NOT_CONFIRMED"

    confirmed = client.post(f"/api/v1/orders/{order_id}/confirm", headers=ADMIN)
    assert confirmed.json()["status"] == "CONFIRMED"

    allocated = client.post(f"/api/v1/orders/{order_id}/allocate", headers=ADMIN)
    assert allocated.status_code == 200
    assert allocated.json() == {"allocatedCount": 1, "shortages": []}

    task = client.post(f"/api/v1/orders/{order_id}/pick", headers=ADMIN)
    assert task.status_code == 201
    assert task.json()["taskNumber"] == "PICK-000001"
    assert task.json()["lineCount"] == 1

    duplicate = client.post(f"/api/v1/orders/{order_id}/pick", headers=ADMIN)
    assert duplicate.status_code == 400
    assert duplicate.json()["code"] == "PICK_TASK_ALREADY_OPEN"

    detail = client.get(f"/api/v1/pick-tasks/{task.json()['pickTaskId']}", headers=ADMIN).json()
    task_line = detail["lines"][0]
    picked = client.post(
        f"/api/v1/pick-tasks/lines/{task_line['pickTaskLineId']}/picks", json={"quantity": 100}, headers=ADMIN
    )
    assert picked.status_code == 200
    assert picked.json()["status"] == "COMPLETED"

    shipment = client.post(
        "/api/v1/shipments",
        json={
            "salesOrderId": order_id,
            "carrier": "UPS",
            "lines": [{"salesOrderLineId": task_line["salesOrderLineId"], "quantity": 100}],
        },
        headers=ADMIN,
    )
    assert shipment.status_code == 201, shipment.text
    shipment_id = shipment.json()["shipmentId"]

    package = client.post(f"/api/v1/shipments/{shipment_id}/packages", json={"packageType": "BOX"}, headers=ADMIN)
    assert package.status_code == 201
    assert package.json()["packageNumber"] == 1

    shipped = client.post(f"/api/v1/shipments/{shipment_id}", json={"trackingNumber": "1Z1"}, headers=ADMIN)
    assert shipped.status_code == 200
    assert shipped.json()["status"] == "SHIPPED"
    assert len(shipped.json()["packages"]) == 1

    again = client.post(f"/api/v1/shipments/{shipment_id}", headers=ADMIN)
    assert again.status_code == 400
    assert again.json()["code"] == "ALREADY_SHIPPED"

    final = client.get(f"/api/v1/orders/{order_id}", headers=ADMIN).json()
    assert final["status"] == "SHIPPED"
    assert Decimal(final["lines"][0]["qtyShipped"]) == Decimal("100")

    issues = client.get("/api/v1/inventory/events", params={"event_type": "ISSUE"}, headers=ADMIN)
    assert [Decimal(event["quantityBase"]) for event in issues.json()] == [Decimal("100")]

    delivered = client.post(f"/api/v1/shipments/{shipment_id}/deliver", headers=ADMIN)
    assert delivered.json()["status"] == "DELIVERED"
    assert client.get(f"/api/v1/orders/{order_id}", headers=ADMIN).json()["status"] == "DELIVERED"


def test_partial_allocation_over_http(client, stocked):
    order = _create_order(client, stocked, quantity=150)
    client.post(f"/api/v1/orders/{order['salesOrderId']}/confirm", headers=ADMIN)

    result = client.post(f"/api/v1/orders/{order['salesOrderId']}/allocate", headers=ADMIN).json()

    assert result["allocatedCount"] == 1
    shortage = result["shortages"][0]
    assert shortage["lineId"] == order["lines"][0]["salesOrderLineId"]
    assert Decimal(shortage["requested"]) == Decimal("150")
    assert Decimal(shortage["available"]) == Decimal("100")

    balances = client.get("/api/v1/inventory/balances", headers=ADMIN).json()
    assert Decimal(balances[0]["quantityAvailable"]) == Decimal("0")
