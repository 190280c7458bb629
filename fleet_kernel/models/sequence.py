"""
Module: fleet_kernel.models.sequence
Responsibility: ORM persistence for control-number counters and standalone
    control-number reservations.

Invariants enforced:
    - One counter row per (kind, period, organization); ``current_value`` is
      the highest ordinal issued or reserved in that period and never
      decreases.  Rows are mutated only while locked.
    - A control number appears in at most one reservation per organization
      (uq_serial_reservation_number).
    - A reservation moves reserved -> used once; used reservations and all
      deletions are rejected by ORM listeners.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    Index,
    String,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import Mapped, attributes, mapped_column

from fleet_kernel.db.base import Base, TZDateTime, UUIDString
from fleet_kernel.domain.control_number import DocumentKind, ReservationSnapshot
from fleet_kernel.exceptions import ImmutabilityViolationError


class SequenceCounter(Base):
    """Counter row; row-level locking serializes allocation per key."""

    __tablename__ = "sequence_counters"

    __table_args__ = (
        UniqueConstraint(
            "kind", "period", "organization_id", name="uq_sequence_counter_key",
        ),
    )

    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    period: Mapped[str] = mapped_column(String(10), nullable=False)
    organization_id: Mapped[str] = mapped_column(String(64), nullable=False)
    current_value: Mapped[int] = mapped_column(nullable=False, default=0)

    def __repr__(self) -> str:
        return (
            f"<SequenceCounter {self.kind}/{self.period}/{self.organization_id} "
            f"= {self.current_value}>"
        )


class ReservationStatus(str, Enum):
    RESERVED = "reserved"
    USED = "used"


class SerialReservation(Base):
    """A control number set aside before the document that will carry it."""

    __tablename__ = "serial_reservations"

    __table_args__ = (
        UniqueConstraint(
            "kind", "organization_id", "control_number",
            name="uq_serial_reservation_number",
        ),
        CheckConstraint(
            "status IN ('reserved', 'used')",
            name="ck_serial_reservations_valid_status",
        ),
        Index("idx_serial_reservation_document", "document_id"),
    )

    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    control_number: Mapped[str] = mapped_column(String(32), nullable=False)
    period: Mapped[str] = mapped_column(String(10), nullable=False)
    ordinal: Mapped[int] = mapped_column(nullable=False)
    organization_id: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ReservationStatus.RESERVED.value,
    )
    document_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    reserved_by: Mapped[str] = mapped_column(String(64), nullable=False)
    reserved_at: Mapped[datetime] = mapped_column(TZDateTime(), nullable=False)
    used_at: Mapped[datetime | None] = mapped_column(TZDateTime(), nullable=True)

    def __repr__(self) -> str:
        return f"<SerialReservation {self.control_number} {self.status}>"

    @property
    def is_used(self) -> bool:
        return self.status == ReservationStatus.USED.value

    def to_dto(self) -> ReservationSnapshot:
        return ReservationSnapshot(
            id=self.id,
            kind=DocumentKind(self.kind),
            control_number=self.control_number,
            period=self.period,
            ordinal=self.ordinal,
            organization_id=self.organization_id,
            status=self.status,
            document_id=self.document_id,
            reserved_by=self.reserved_by,
            reserved_at=self.reserved_at,
            used_at=self.used_at,
        )


@event.listens_for(SerialReservation, "before_update")
def prevent_used_reservation_update(mapper, connection, target):
    hist = attributes.get_history(target, "status")
    loaded = (hist.deleted or hist.unchanged or [None])[0]
    if loaded == ReservationStatus.USED.value:
        raise ImmutabilityViolationError(
            entity_type="SerialReservation",
            entity_id=str(target.id),
            reason="a used reservation cannot change",
        )


@event.listens_for(SerialReservation, "before_delete")
def prevent_reservation_delete(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="SerialReservation",
        entity_id=str(target.id),
        reason="reservations are never deleted",
    )
