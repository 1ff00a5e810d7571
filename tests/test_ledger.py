from __future__ import annotations

from decimal import Decimal

import pytest

from fulfillment_service.auth import Actor, Role
from fulfillment_service.exceptions import (
    InsufficientStock,
    InvalidUnitOfMeasure,
    ItemNotFound,
    PermissionDenied,
    ValidationError,
)
from fulfillment_service.services import AllocationService, LedgerService


def _on_hand(session, actor, location):
    balances = LedgerService(session).get_balances(actor, location_id=location.location_id, include_empty=True)
    return balances[0].quantity_on_hand if balances else Decimal("0")


def test_receive_creates_balance_and_event(session, admin, warehouse, receive):
    event = receive(25)

    assert event.event_type == "RECEIVE"
    assert event.quantity_base == Decimal("25")
    assert event.actor_id == admin.actor_id
    balance = LedgerService(session).get_balances(admin, item_id=warehouse["item"].item_id)[0]
    assert balance.quantity_on_hand == Decimal("25")
    assert balance.quantity_reserved == Decimal("0")
    assert balance.first_received_at is not None
    assert balance.version == 1


def test_receive_converts_to_base_unit(session, admin, warehouse):
    event = LedgerService(session).record_event(
        admin,
        "RECEIVE",
        warehouse["item"].item_id,
        Decimal("3"),
        "box",
        to_location_id=warehouse["locations"]["A-01"].location_id,
    )

    assert event.quantity_entered == Decimal("3")
    assert event.uom_entered == "BOX"
    assert event.quantity_base == Decimal("30")
    assert _on_hand(session, admin, warehouse["locations"]["A-01"]) == Decimal("30")


def test_unknown_unit_is_rejected(session, admin, warehouse):
    with pytest.raises(InvalidUnitOfMeasure):
        LedgerService(session).record_event(
            admin,
            "RECEIVE",
            warehouse["item"].item_id,
            Decimal("1"),
            "PALLET",
            to_location_id=warehouse["locations"]["A-01"].location_id,
        )


def test_move_between_bins(session, admin, warehouse, receive):
    receive(10)
    locations = warehouse["locations"]

    LedgerService(session).record_event(
        admin,
        "MOVE",
        warehouse["item"].item_id,
        Decimal("4"),
        from_location_id=locations["A-01"].location_id,
        to_location_id=locations["SHIP-01"].location_id,
    )

    assert _on_hand(session, admin, locations["A-01"]) == Decimal("6")
    assert _on_hand(session, admin, locations["SHIP-01"]) == Decimal("4")


def test_issue_beyond_on_hand_leaves_ledger_untouched(session, admin, warehouse, receive):
    receive(5)
    ledger = LedgerService(session)

    with pytest.raises(InsufficientStock):
        ledger.record_event(
            admin,
            "ISSUE",
            warehouse["item"].item_id,
            Decimal("6"),
            from_location_id=warehouse["locations"]["A-01"].location_id,
        )

    assert _on_hand(session, admin, warehouse["locations"]["A-01"]) == Decimal("5")
    assert [event.event_type for event in ledger.get_events(admin)] == ["RECEIVE"]


def test_scrap_requires_reason(session, admin, warehouse, receive):
    receive(5)
    ledger = LedgerService(session)
    location_id = warehouse["locations"]["A-01"].location_id

    with pytest.raises(ValidationError):
        ledger.record_event(admin, "SCRAP", warehouse["item"].item_id, Decimal("1"), from_location_id=location_id)

    event = ledger.record_event(
        admin, "SCRAP", warehouse["item"].item_id, Decimal("1"), from_location_id=location_id, reason_code="DAMAGED"
    )
    assert event.reason_code == "DAMAGED"
    assert _on_hand(session, admin, warehouse["locations"]["A-01"]) == Decimal("4")


def test_count_sets_absolute_quantity(session, admin, warehouse, receive):
    receive(10)

    event = LedgerService(session).record_event(
        admin,
        "COUNT",
        warehouse["item"].item_id,
        Decimal("7"),
        to_location_id=warehouse["locations"]["A-01"].location_id,
    )

    assert event.quantity_base == Decimal("7")
    assert _on_hand(session, admin, warehouse["locations"]["A-01"]) == Decimal("7")


def test_count_cannot_drop_below_reserved(session, admin, warehouse, receive, place_order):
    receive(10)
    order = place_order(8)
    AllocationService(session).allocate(admin, order.sales_order_id)

    with pytest.raises(InsufficientStock):
        LedgerService(session).record_event(
            admin,
            "COUNT",
            warehouse["item"].item_id,
            Decimal("5"),
            to_location_id=warehouse["locations"]["A-01"].location_id,
        )
    assert _on_hand(session, admin, warehouse["locations"]["A-01"]) == Decimal("10")


def test_available_excludes_reserved(session, admin, warehouse, receive, place_order):
    receive(10)
    order = place_order(4)
    AllocationService(session).allocate(admin, order.sales_order_id)

    assert LedgerService(session).get_available(admin, warehouse["item"].item_id) == Decimal("6")


def test_viewer_cannot_record_events(session, warehouse):
    viewer = Actor(actor_id="viewer-1", tenant_id="tenant-a", role=Role.VIEWER)
    with pytest.raises(PermissionDenied):
        LedgerService(session).record_event(
            viewer,
            "RECEIVE",
            warehouse["item"].item_id,
            Decimal("1"),
            to_location_id=warehouse["locations"]["A-01"].location_id,
        )


def test_items_of_other_tenants_are_not_found(session, warehouse):
    outsider = Actor(actor_id="admin-2", tenant_id="tenant-b", role=Role.ADMIN)
    with pytest.raises(ItemNotFound):
        LedgerService(session).record_event(
            outsider,
            "RECEIVE",
            warehouse["item"].item_id,
            Decimal("1"),
            to_location_id=warehouse["locations"]["A-01"].location_id,
        )
