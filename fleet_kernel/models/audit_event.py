"""
Module: fleet_kernel.models.audit_event
Responsibility: Append-only audit trail of workflow transitions and ledger
    mutations.

Invariants enforced:
    - Audit rows are never updated or deleted (ORM listeners).
    - payload_hash = SHA-256 of the canonical JSON payload (AuditorService).

Rows are ordered per entity by ``entity_seq``.  There is no global sequence
or hash chain, so unrelated documents never contend on a shared counter.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, Index, String, UniqueConstraint, event
from sqlalchemy.orm import Mapped, mapped_column

from fleet_kernel.db.base import Base, TZDateTime, UUIDString
from fleet_kernel.exceptions import ImmutabilityViolationError


class AuditAction(str, Enum):
    """Types of auditable actions."""

    # Requisition lifecycle
    REQUISITION_SUBMITTED = "requisition_submitted"
    REQUISITION_REVISED = "requisition_revised"
    REQUISITION_VALIDATED = "requisition_validated"
    REQUISITION_RETURNED = "requisition_returned"
    REQUISITION_REJECTED = "requisition_rejected"
    REQUISITION_ISSUED = "requisition_issued"
    REQUISITION_AWAITING_RECEIPT = "requisition_awaiting_receipt"
    RECEIPT_SUBMITTED = "receipt_submitted"
    RECEIPT_UPDATED = "receipt_updated"
    REQUISITION_VERIFIED = "requisition_verified"
    RECEIPT_RETURNED = "receipt_returned"
    REQUISITION_CANCELLED = "requisition_cancelled"
    REQUISITION_VOIDED = "requisition_voided"

    # Contract ledger
    CONTRACT_OPENED = "contract_opened"
    CONTRACT_UPDATED = "contract_updated"
    CONTRACT_DEDUCTED = "contract_deducted"
    CONTRACT_ADJUSTED = "contract_adjusted"

    # Control numbers
    CONTROL_NUMBER_RESERVED = "control_number_reserved"
    RESERVATION_ATTACHED = "reservation_attached"

    # Trip tickets
    TRIP_TICKET_CREATED = "trip_ticket_created"
    TRIP_TICKET_EDITED = "trip_ticket_edited"
    TRIP_TICKET_NUMBER_RESERVED = "trip_ticket_number_reserved"
    TRIP_TICKET_APPROVED = "trip_ticket_approved"
    TRIP_TICKET_REJECTED = "trip_ticket_rejected"
    TRIP_TICKET_CANCELLED = "trip_ticket_cancelled"
    TRIP_STARTED = "trip_started"
    TRIP_COMPLETED = "trip_completed"


class AuditEvent(Base):
    __tablename__ = "audit_events"

    __table_args__ = (
        UniqueConstraint(
            "entity_type", "entity_id", "entity_seq", name="uq_audit_entity_seq",
        ),
        Index("idx_audit_action", "action"),
        Index("idx_audit_occurred", "occurred_at"),
    )

    organization_id: Mapped[str] = mapped_column(String(64), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    entity_seq: Mapped[int] = mapped_column(nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    actor_id: Mapped[str] = mapped_column(String(64), nullable=False)
    actor_role: Mapped[str | None] = mapped_column(String(20), nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(TZDateTime(), nullable=False)
    payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<AuditEvent {self.action} on {self.entity_type}:{self.entity_id}>"


@event.listens_for(AuditEvent, "before_update")
def prevent_audit_update(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="AuditEvent",
        entity_id=str(target.id),
        reason="audit events are append-only",
    )


@event.listens_for(AuditEvent, "before_delete")
def prevent_audit_delete(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="AuditEvent",
        entity_id=str(target.id),
        reason="audit events are append-only",
    )
