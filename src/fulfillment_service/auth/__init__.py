"""Actor identity and capability checks."""

from fulfillment_service.auth.capabilities import Action, Actor, Role, can_perform, require_capability

__all__ = ["Action", "Actor", "Role", "can_perform", "require_capability"]
