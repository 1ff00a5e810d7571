"""Health check runner."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Protocol

from sqlalchemy import func, text
from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from fulfillment_service.db import get_engine
from fulfillment_service.logging import get_logger
from fulfillment_service.models import StockBalance
from fulfillment_service.services.allocation_service import AllocationService

logger = get_logger("system_checks")


class Check(Protocol):
    name: str

    async def run(self) -> "CheckResult":
        ...


@dataclass(slots=True)
class CheckResult:
    name: str
    ok: bool
    details: str


class DatabaseCheck:
    name = "database"

    def __init__(self, engine: Engine | None = None):
        self._engine = engine

    async def run(self) -> CheckResult:
        try:
            backend = await asyncio.to_thread(self._ping)
        except Exception as exc:  # pragma: no cover - real connection required
            return CheckResult(name=self.name, ok=False, details=str(exc))
        return CheckResult(name=self.name, ok=True, details=f"{backend} reachable")

    def _ping(self) -> str:
        engine = self._engine or get_engine()
        with engine.connect() as connection:
            connection.execute(text("SELECT 1")).fetchone()
        return engine.url.get_backend_name()


class InventoryInvariantCheck:
    """Outstanding reservations never exceed what is on the shelf.

    Checked per (tenant, site, item): the reserved counters on the balances
    must equal the outstanding reservation rows and stay within on-hand.
    """

    name = "inventory_invariant"

    def __init__(self, engine: Engine | None = None):
        self._engine = engine

    async def run(self) -> CheckResult:
        try:
            violations = await asyncio.to_thread(self._collect)
        except Exception as exc:  # pragma: no cover - real connection required
            return CheckResult(name=self.name, ok=False, details=str(exc))
        if violations:
            return CheckResult(name=self.name, ok=False, details="; ".join(violations))
        return CheckResult(name=self.name, ok=True, details="Reservations within on-hand stock")

    def _collect(self) -> list[str]:
        with Session(self._engine or get_engine()) as session:
            return self._violations(session)

    @staticmethod
    def _violations(session: Session) -> list[str]:
        outstanding = AllocationService(session).outstanding_by_item()
        rows = session.exec(
            select(
                StockBalance.tenant_id,
                StockBalance.site_id,
                StockBalance.item_id,
                func.sum(StockBalance.quantity_on_hand),
                func.sum(StockBalance.quantity_reserved),
            ).group_by(StockBalance.tenant_id, StockBalance.site_id, StockBalance.item_id)
        )
        violations = []
        for tenant, site, item, on_hand, reserved in rows:
            on_hand, reserved = Decimal(str(on_hand)), Decimal(str(reserved))
            pending = outstanding.pop((tenant, site, item), Decimal("0"))
            label = f"{tenant}/{site}/{item}"
            if pending > on_hand:
                violations.append(f"{label}: outstanding {pending} exceeds on-hand {on_hand}")
            if pending != reserved:
                violations.append(f"{label}: reserved counter {reserved} != outstanding {pending}")
        for (tenant, site, item), pending in outstanding.items():
            violations.append(f"{tenant}/{site}/{item}: outstanding {pending} without a balance")
        return violations


async def run_checks(checks: Iterable[Check] | None = None) -> list[CheckResult]:
    checks = list(checks or [DatabaseCheck(), InventoryInvariantCheck()])
    results = await asyncio.gather(*(check.run() for check in checks))
    status = all(result.ok for result in results)
    for result in results:
        if result.ok:
            logger.info("Health check passed", check=result.name, details=result.details)
        else:
            logger.error("Health check failed", check=result.name, details=result.details)
    logger.info("Overall health", ok=status)
    return results
