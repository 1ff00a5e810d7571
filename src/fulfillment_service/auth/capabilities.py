"""Role based capability checks for pipeline operations."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from fulfillment_service.exceptions import PermissionDenied


class Role(str, Enum):
    """Roles assigned to actors by the upstream identity provider."""
    ADMIN = "Admin"
    SUPERVISOR = "Supervisor"
    SALES = "Sales"
    INVENTORY = "Inventory"
    OPERATOR = "Operator"
    VIEWER = "Viewer"


class Action(str, Enum):
    """Operations guarded by a capability check."""
    VIEW = "view"
    ORDER_CREATE = "order.create"
    ORDER_CONFIRM = "order.confirm"
    ORDER_CANCEL = "order.cancel"
    ORDER_ALLOCATE = "order.allocate"
    PICK_TASK_CREATE = "pick_task.create"
    PICK_RECORD = "pick_task.record_pick"
    SHIPMENT_CREATE = "shipment.create"
    SHIPMENT_DISPATCH = "shipment.dispatch"
    SHIPMENT_DELIVER = "shipment.deliver"
    INVENTORY_RECORD = "inventory.record_event"
    CATALOG_MANAGE = "catalog.manage"


_SALES_DESK = frozenset({Role.ADMIN, Role.SUPERVISOR, Role.SALES})
_WAREHOUSE = frozenset({Role.ADMIN, Role.SUPERVISOR, Role.INVENTORY})

ROLE_CAPABILITIES: dict[Action, frozenset[Role]] = {
    Action.VIEW: frozenset(Role),
    Action.ORDER_CREATE: _SALES_DESK,
    Action.ORDER_CONFIRM: _SALES_DESK,
    Action.ORDER_CANCEL: _SALES_DESK,
    Action.ORDER_ALLOCATE: _SALES_DESK | {Role.INVENTORY},
    Action.PICK_TASK_CREATE: _WAREHOUSE,
    Action.PICK_RECORD: _WAREHOUSE | {Role.OPERATOR},
    Action.SHIPMENT_CREATE: _WAREHOUSE,
    Action.SHIPMENT_DISPATCH: _WAREHOUSE,
    Action.SHIPMENT_DELIVER: _WAREHOUSE,
    Action.INVENTORY_RECORD: _WAREHOUSE,
    Action.CATALOG_MANAGE: frozenset({Role.ADMIN, Role.SUPERVISOR}),
}


@dataclass(frozen=True)
class Actor:
    """Who is performing an operation, scoped to one tenant."""

    actor_id: str
    tenant_id: str
    role: Role
    site_id: Optional[str] = None


def can_perform(actor: Actor, action: Action) -> bool:
    return actor.role in ROLE_CAPABILITIES.get(action, frozenset())


def require_capability(actor: Actor, action: Action) -> None:
    """Raise PermissionDenied unless the actor's role grants the action."""
    if not can_perform(actor, action):
        raise PermissionDenied(
            f"Role {actor.role.value} may not perform {action.value}",
            details={"actor_id": actor.actor_id, "role": actor.role.value, "action": action.value},
        )


__all__ = ["Action", "Actor", "Role", "ROLE_CAPABILITIES", "can_perform", "require_capability"]
