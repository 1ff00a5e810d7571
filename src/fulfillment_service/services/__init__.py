"""Fulfillment service layer."""

from fulfillment_service.services.allocation_service import AllocationResult, AllocationService, Shortage
from fulfillment_service.services.catalog_service import CatalogService
from fulfillment_service.services.ledger_service import LedgerService, convert_quantity
from fulfillment_service.services.order_service import OrderLineRequest, OrderService
from fulfillment_service.services.picking_service import PickingService
from fulfillment_service.services.shipment_service import PackageRequest, ShipmentLineRequest, ShipmentService

__all__ = [
    "AllocationResult",
    "AllocationService",
    "CatalogService",
    "LedgerService",
    "OrderLineRequest",
    "OrderService",
    "PackageRequest",
    "PickingService",
    "ShipmentLineRequest",
    "ShipmentService",
    "Shortage",
    "convert_quantity",
]
