from __future__ import annotations

import threading
from decimal import Decimal

import pytest
from sqlalchemy import update

from fulfillment_service.models import StockBalance
from fulfillment_service.services import AllocationService
from fulfillment_service.system_checks import CheckResult, DatabaseCheck, InventoryInvariantCheck, run_checks
from fulfillment_service.system_checks.startup import main, parse_args


@pytest.mark.anyio(backend="asyncio")
async def test_database_check_passes(engine):
    result = await DatabaseCheck(engine).run()
    assert result.ok
    assert "sqlite" in result.details


@pytest.mark.anyio(backend="asyncio")
async def test_invariant_check_passes_after_allocation(engine, session, admin, receive, place_order):
    receive(10)
    order = place_order(7)
    AllocationService(session).allocate(admin, order.sales_order_id)

    results = await run_checks([DatabaseCheck(engine), InventoryInvariantCheck(engine)])

    assert all(result.ok for result in results)


@pytest.mark.anyio(backend="asyncio")
async def test_invariant_check_flags_drifted_reserved_counter(engine, session, admin, receive, place_order):
    receive(10)
    order = place_order(7)
    AllocationService(session).allocate(admin, order.sales_order_id)
    session.exec(update(StockBalance).values(quantity_reserved=Decimal("3")))
    session.commit()

    result = await InventoryInvariantCheck(engine).run()

    assert not result.ok
    assert "reserved counter" in result.details


@pytest.mark.anyio(backend="asyncio")
async def test_startup_main_reports_failures(monkeypatch):
    async def failing_checks():
        return [CheckResult(name="database", ok=False, details="unreachable")]

    monkeypatch.setattr("fulfillment_service.system_checks.startup.run_checks", failing_checks)
    assert await main(create_schema=False) == 1


@pytest.mark.anyio(backend="asyncio")
async def test_startup_main_can_create_schema():
    assert await main(create_schema=True) == 0


def test_parse_args():
    assert parse_args(["--create-schema"]).create_schema is True
    assert parse_args([]).create_schema is False


@pytest.mark.anyio(backend="asyncio")
async def test_checks_query_off_the_event_loop_thread(engine, monkeypatch):
    loop_thread = threading.get_ident()
    seen = []
    ping = DatabaseCheck._ping

    def recording_ping(self):
        seen.append(threading.get_ident())
        return ping(self)

    monkeypatch.setattr(DatabaseCheck, "_ping", recording_ping)

    result = await DatabaseCheck(engine).run()

    assert result.ok
    assert seen and seen[0] != loop_thread
