"""Typed errors raised by the fulfillment pipeline.

Every error carries a machine readable ``code``, a ``kind`` that the HTTP
layer maps to a status code, and a ``details`` dict with the data needed to
explain the failure (which line, how much was requested, ...).
"""

from __future__ import annotations

from typing import Any


class FulfillmentError(Exception):
    """Base exception for the fulfillment service."""

    kind = "internal"
    code = "FULFILLMENT_ERROR"
    default_message = "An error occurred in the fulfillment service"

    def __init__(self, message: str | None = None, *, details: dict[str, Any] | None = None):
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.kind, "code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


# Kinds

class ValidationError(FulfillmentError):
    kind = "validation"
    code = "VALIDATION_ERROR"
    default_message = "Validation error"


class PreconditionError(FulfillmentError):
    kind = "precondition"
    code = "PRECONDITION_FAILED"
    default_message = "Operation is not allowed in the current state"


class ContentionError(FulfillmentError):
    kind = "contention"
    code = "CONTENTION"
    default_message = "Concurrent update conflict, retry later"


class ResourceNotFound(FulfillmentError):
    kind = "not_found"
    code = "NOT_FOUND"
    default_message = "Resource not found"

    def __init__(self, identifier: Any = None, message: str | None = None, **kwargs: Any):
        if message is None and identifier is not None:
            message = f"{self.default_message}: {identifier}"
        super().__init__(message, **kwargs)
        self.identifier = identifier


class PermissionDenied(FulfillmentError):
    kind = "permission"
    code = "PERMISSION_DENIED"
    default_message = "Permission denied"


# Validation

class DuplicateOrderNumber(ValidationError):
    code = "DUPLICATE_ORDER_NUMBER"
    default_message = "Order number already exists"


class InvalidUnitOfMeasure(ValidationError):
    code = "INVALID_UOM"
    default_message = "Unit of measure is not allowed for item"


# Preconditions

class InvalidTransition(PreconditionError):
    code = "INVALID_TRANSITION"
    default_message = "Invalid status transition"


class OrderNotConfirmed(PreconditionError):
    code = "ORDER_NOT_CONFIRMED"
    default_message = "Order must be confirmed before allocation"


class AlreadyShipped(PreconditionError):
    code = "ALREADY_SHIPPED"
    default_message = "Shipment has already been shipped"


class ExceedsAllocation(PreconditionError):
    code = "EXCEEDS_ALLOCATION"
    default_message = "Picked quantity would exceed quantity to pick"


class ExceedsPicked(PreconditionError):
    code = "EXCEEDS_PICKED"
    default_message = "Shipment quantity exceeds picked quantity"


class OverShipment(PreconditionError):
    code = "OVER_SHIPMENT"
    default_message = "Shipped quantity would exceed ordered quantity"


class PickTaskAlreadyOpen(PreconditionError):
    code = "PICK_TASK_ALREADY_OPEN"
    default_message = "Order already has an open pick task"


class NothingToPick(PreconditionError):
    code = "NOTHING_TO_PICK"
    default_message = "No allocated quantity remains to be picked"


class InsufficientStock(PreconditionError):
    code = "INSUFFICIENT_STOCK"
    default_message = "Insufficient unreserved stock"


# Contention

class AllocationContention(ContentionError):
    code = "ALLOCATION_CONTENTION"
    default_message = "Inventory balance changed concurrently too many times"


# Not found

class OrderNotFound(ResourceNotFound):
    code = "ORDER_NOT_FOUND"
    default_message = "Sales order not found"


class OrderLineNotFound(ResourceNotFound):
    code = "ORDER_LINE_NOT_FOUND"
    default_message = "Sales order line not found"


class ShipmentNotFound(ResourceNotFound):
    code = "SHIPMENT_NOT_FOUND"
    default_message = "Shipment not found"


class PickTaskNotFound(ResourceNotFound):
    code = "PICK_TASK_NOT_FOUND"
    default_message = "Pick task not found"


class ItemNotFound(ResourceNotFound):
    code = "ITEM_NOT_FOUND"
    default_message = "Item not found"


class LocationNotFound(ResourceNotFound):
    code = "LOCATION_NOT_FOUND"
    default_message = "Location not found"


__all__ = [
    "FulfillmentError",
    "ValidationError",
    "PreconditionError",
    "ContentionError",
    "ResourceNotFound",
    "PermissionDenied",
    "DuplicateOrderNumber",
    "InvalidUnitOfMeasure",
    "InvalidTransition",
    "OrderNotConfirmed",
    "AlreadyShipped",
    "ExceedsAllocation",
    "ExceedsPicked",
    "OverShipment",
    "PickTaskAlreadyOpen",
    "NothingToPick",
    "InsufficientStock",
    "AllocationContention",
    "OrderNotFound",
    "OrderLineNotFound",
    "ShipmentNotFound",
    "PickTaskNotFound",
    "ItemNotFound",
    "LocationNotFound",
]
