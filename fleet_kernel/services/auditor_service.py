"""
AuditorService -- append-only audit trail for workflow and ledger changes.

Responsibility:
    Writes one AuditEvent per workflow transition, ledger mutation and
    control-number reservation, in the same transaction as the change it
    describes.  Provides per-entity trace queries.

Invariants enforced:
    - Append-only: AuditEvent rows are protected by ORM listeners.
    - payload_hash = SHA-256 over the canonical JSON payload, so a stored
      payload can be re-hashed and compared.
    - Events of one entity are numbered 1..n by ``entity_seq``; writers of
      the same entity are already serialized by the document's row lock.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from fleet_kernel.domain.clock import Clock, SystemClock
from fleet_kernel.domain.context import ActorContext
from fleet_kernel.logging_config import get_logger
from fleet_kernel.models.audit_event import AuditAction, AuditEvent
from fleet_kernel.utils.hashing import hash_payload, to_json_safe

logger = get_logger("services.auditor")


@dataclass(frozen=True)
class AuditTraceEntry:
    entity_seq: int
    action: AuditAction
    occurred_at: datetime
    actor_id: str
    actor_role: str | None
    payload: dict[str, Any]
    payload_hash: str

    @property
    def hash_matches(self) -> bool:
        return hash_payload(self.payload) == self.payload_hash


@dataclass(frozen=True)
class AuditTrace:
    """All audit events of one entity in recording order."""

    entity_type: str
    entity_id: UUID
    entries: tuple[AuditTraceEntry, ...]

    @property
    def is_empty(self) -> bool:
        return len(self.entries) == 0

    @property
    def actions(self) -> tuple[AuditAction, ...]:
        return tuple(e.action for e in self.entries)

    @property
    def last_action(self) -> AuditAction | None:
        return self.entries[-1].action if self.entries else None


class AuditorService:
    """Creates audit events.  Flushes, never commits."""

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    def record(
        self,
        actor: ActorContext,
        entity_type: str,
        entity_id: UUID,
        action: AuditAction,
        payload: dict[str, Any] | None = None,
    ) -> AuditEvent:
        """Append one audit event for ``entity_type``/``entity_id``."""
        payload_data = to_json_safe(payload or {})
        computed_hash = hash_payload(payload_data)

        last_seq = self._session.execute(
            select(func.max(AuditEvent.entity_seq)).where(
                AuditEvent.entity_type == entity_type,
                AuditEvent.entity_id == entity_id,
            )
        ).scalar_one()

        audit_event = AuditEvent(
            organization_id=actor.organization_id,
            entity_type=entity_type,
            entity_id=entity_id,
            entity_seq=(last_seq or 0) + 1,
            action=action.value,
            actor_id=actor.actor_id,
            actor_role=actor.role.value,
            occurred_at=self._clock.now(),
            payload=payload_data,
            payload_hash=computed_hash,
        )
        self._session.add(audit_event)
        self._session.flush()

        logger.debug(
            "audit_event_created",
            extra={
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "action": action.value,
                "entity_seq": audit_event.entity_seq,
            },
        )
        return audit_event

    def get_trace(self, entity_type: str, entity_id: UUID) -> AuditTrace:
        events = self._session.execute(
            select(AuditEvent)
            .where(
                AuditEvent.entity_type == entity_type,
                AuditEvent.entity_id == entity_id,
            )
            .order_by(AuditEvent.entity_seq)
        ).scalars().all()

        return AuditTrace(
            entity_type=entity_type,
            entity_id=entity_id,
            entries=tuple(
                AuditTraceEntry(
                    entity_seq=e.entity_seq,
                    action=AuditAction(e.action),
                    occurred_at=e.occurred_at,
                    actor_id=e.actor_id,
                    actor_role=e.actor_role,
                    payload=e.payload or {},
                    payload_hash=e.payload_hash,
                )
                for e in events
            ),
        )
