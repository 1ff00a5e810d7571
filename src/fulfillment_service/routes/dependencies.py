"""FastAPI dependencies: database session and the acting user."""

from __future__ import annotations

from typing import Iterator, Optional

from fastapi import Header, HTTPException, status
from sqlmodel import Session

from fulfillment_service.auth.capabilities import Actor, Role
from fulfillment_service.db import session_scope

_ROLES = {role.value.lower(): role for role in Role}


def get_session() -> Iterator[Session]:
    """Get database session."""
    with session_scope() as session:
        yield session


def get_actor(
    x_actor_id: Optional[str] = Header(default=None),
    x_tenant_id: Optional[str] = Header(default=None),
    x_actor_role: Optional[str] = Header(default=None),
    x_site_id: Optional[str] = Header(default=None),
) -> Actor:
    """Build the actor from identity headers set by the upstream gateway."""
    if not (x_actor_id and x_tenant_id and x_actor_role):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-Actor-Id, X-Tenant-Id and X-Actor-Role headers are required",
        )
    role = _ROLES.get(x_actor_role.strip().lower())
    if role is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"Unknown role {x_actor_role}")
    return Actor(actor_id=x_actor_id, tenant_id=x_tenant_id, role=role, site_id=x_site_id)


__all__ = ["get_actor", "get_session"]
