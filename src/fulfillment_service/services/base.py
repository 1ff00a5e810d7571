"""Shared plumbing for fulfillment services: audit trail, domain events, numbering."""

from __future__ import annotations

from typing import Any, Iterable, Optional, TypeVar
from uuid import UUID

from pydantic import TypeAdapter
from sqlalchemy import update
from sqlmodel import Session, SQLModel, select

from fulfillment_service.auth.capabilities import Action, Actor, require_capability
from fulfillment_service.config import Settings, get_settings
from fulfillment_service.exceptions import ResourceNotFound
from fulfillment_service.logging import get_logger
from fulfillment_service.models import AuditLog, DocumentSequence, DomainEvent, SalesOrder, utcnow

M = TypeVar("M", bound=SQLModel)

_JSON = TypeAdapter(Any)


def to_json(value: Any) -> Any:
    """Convert Decimals, UUIDs and datetimes to their JSON representations."""
    return _JSON.dump_python(value, mode="json")


def snapshot(model: Optional[SQLModel], *fields: str) -> Optional[dict]:
    """JSON-safe copy of a row's columns (or a subset) for the audit trail."""
    if model is None:
        return None
    names = fields or tuple(model.__table__.columns.keys())
    return to_json({name: getattr(model, name) for name in names})


class FulfillmentService:
    """Base class: one service instance per unit of work, bound to a session."""

    component = "service"

    def __init__(self, session: Session, settings: Optional[Settings] = None):
        self.session = session
        self._settings = settings
        self.log = get_logger(self.component)

    @property
    def settings(self) -> Settings:
        if self._settings is None:
            self._settings = get_settings()
        return self._settings

    def _authorize(self, actor: Actor, action: Action) -> None:
        require_capability(actor, action)

    def _get_owned(
        self,
        model: type[M],
        identifier: UUID,
        actor: Actor,
        not_found: type[ResourceNotFound],
    ) -> M:
        """Load a tenant-scoped row; rows of other tenants are reported as missing."""
        instance = self.session.get(model, identifier)
        if instance is None or getattr(instance, "tenant_id", None) != actor.tenant_id:
            raise not_found(identifier)
        return instance

    def _execute(self, statement) -> int:
        """Run a conditional UPDATE and return the number of rows it changed.

        Pending ORM changes are flushed first so the statement sees them.
        """
        self.session.flush()
        result = self.session.connection().execute(statement)
        return result.rowcount

    def _guard_order(self, order: SalesOrder, statuses: Iterable[str]) -> bool:
        """Touch the order row only while it is still in one of ``statuses``.

        The UPDATE holds the row's write lock until commit, so competing
        transitions on one order are applied one after the other.
        """
        changed = self._execute(
            update(SalesOrder)
            .where(
                SalesOrder.sales_order_id == order.sales_order_id,
                SalesOrder.status.in_([str(getattr(status, "value", status)) for status in statuses]),
            )
            .values(updated_at=utcnow())
        )
        return bool(changed)

    def _next_document_number(self, tenant_id: str, sequence_name: str, prefix: str) -> str:
        bumped = self._execute(
            update(DocumentSequence)
            .where(
                DocumentSequence.tenant_id == tenant_id,
                DocumentSequence.sequence_name == sequence_name,
            )
            .values(last_value=DocumentSequence.last_value + 1)
        )
        if not bumped:
            self.session.add(DocumentSequence(tenant_id=tenant_id, sequence_name=sequence_name, last_value=1))
            self.session.flush()
        value = self.session.exec(
            select(DocumentSequence.last_value).where(
                DocumentSequence.tenant_id == tenant_id,
                DocumentSequence.sequence_name == sequence_name,
            )
        ).one()
        return f"{prefix}-{value:06d}"

    def _create_audit_log(
        self,
        actor: Actor,
        action: str,
        entity_table: str,
        entity_id: UUID,
        before_state: Optional[dict] = None,
        after_state: Optional[dict] = None,
        correlation_identifier: Optional[UUID] = None,
    ) -> None:
        """Create audit log entry."""
        self.session.add(
            AuditLog(
                tenant_id=actor.tenant_id,
                actor_id=actor.actor_id,
                audited_action=action,
                entity_table_name=entity_table,
                entity_primary_identifier=entity_id,
                before_state=before_state,
                after_state=after_state,
                correlation_identifier=correlation_identifier,
            )
        )

    def _create_domain_event(
        self,
        actor: Actor,
        event_name: str,
        aggregate_type: str,
        aggregate_id: UUID,
        payload: dict[str, Any],
        correlation_identifier: Optional[UUID] = None,
    ) -> None:
        """Create domain event."""
        self.session.add(
            DomainEvent(
                tenant_id=actor.tenant_id,
                event_name=event_name,
                aggregate_type=aggregate_type,
                aggregate_identifier=aggregate_id,
                event_payload=payload,
                actor_id=actor.actor_id,
                correlation_identifier=correlation_identifier,
            )
        )
