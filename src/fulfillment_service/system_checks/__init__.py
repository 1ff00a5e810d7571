"""System health checks executed on startup and from deployment probes."""

from __future__ import annotations

from fulfillment_service.system_checks.runner import CheckResult, DatabaseCheck, InventoryInvariantCheck, run_checks

__all__ = ["CheckResult", "DatabaseCheck", "InventoryInvariantCheck", "run_checks"]
