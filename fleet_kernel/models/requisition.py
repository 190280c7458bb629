"""
Module: fleet_kernel.models.requisition
Responsibility: ORM persistence for fuel requisitions.
Architecture position: Kernel > Models.  May import from db/base.py,
    domain/ and exceptions only.

Invariants enforced:
    - ``version`` is SQLAlchemy's version_id_col: every UPDATE is qualified
      by the version that was loaded and bumps it by one.  A flush that
      loses a race raises StaleDataError (mapped to ConflictError by the
      workflow service).
    - risNumber is unique per organization; refNumber is unique per
      organization (uq_requisition_*).
    - Rows are never deleted; a row whose stored status is terminal is never
      updated (ORM listeners).
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import Mapped, attributes, mapped_column

from fleet_kernel.db.base import TrackedBase, TZDateTime, UUIDString
from fleet_kernel.domain.requisition import (
    TERMINAL_REQUISITION_STATUSES,
    RequisitionSnapshot,
    RequisitionStatus,
)
from fleet_kernel.exceptions import ImmutabilityViolationError

_STATUS_VALUES = ", ".join(f"'{s.value}'" for s in RequisitionStatus)


class Requisition(TrackedBase):
    """A request for fuel, from trip details through receipt verification."""

    __tablename__ = "fuel_requisitions"

    __table_args__ = (
        CheckConstraint(
            f"status IN ({_STATUS_VALUES})",
            name="ck_fuel_requisitions_valid_status",
        ),
        UniqueConstraint("organization_id", "ris_number", name="uq_requisition_ris_number"),
        UniqueConstraint("organization_id", "ref_number", name="uq_requisition_ref_number"),
        Index("idx_requisition_org_status", "organization_id", "status"),
        Index("idx_requisition_requester", "organization_id", "requester_id"),
    )

    organization_id: Mapped[str] = mapped_column(String(64), nullable=False)
    requester_id: Mapped[str] = mapped_column(String(64), nullable=False)
    ref_number: Mapped[int] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(30), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    # Trip details
    vehicle_id: Mapped[str] = mapped_column(String(64), nullable=False)
    driver_name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    office: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    destination: Mapped[str] = mapped_column(String(500), nullable=False)
    purpose: Mapped[str] = mapped_column(Text, nullable=False)
    passengers: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    trip_from: Mapped[date | None] = mapped_column(Date, nullable=True)
    trip_to: Mapped[date | None] = mapped_column(Date, nullable=True)

    # Volumes and money
    requested_liters: Mapped[Decimal] = mapped_column(nullable=False)
    validated_liters: Mapped[Decimal | None] = mapped_column(nullable=True)
    actual_liters: Mapped[Decimal | None] = mapped_column(nullable=True)
    price_at_issuance: Mapped[Decimal | None] = mapped_column(nullable=True)
    price_at_purchase: Mapped[Decimal | None] = mapped_column(nullable=True)
    total_amount: Mapped[Decimal | None] = mapped_column(nullable=True)

    contract_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("contracts.id"), nullable=True,
    )
    supplier_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    ris_number: Mapped[str | None] = mapped_column(String(32), nullable=True)
    valid_until: Mapped[date | None] = mapped_column(Date, nullable=True)
    last_edited_at: Mapped[datetime | None] = mapped_column(TZDateTime(), nullable=True)

    # EMD validation
    validated_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    validated_at: Mapped[datetime | None] = mapped_column(TZDateTime(), nullable=True)
    validation_remarks: Mapped[str | None] = mapped_column(Text, nullable=True)

    # SPMS issuance
    issued_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    issued_at: Mapped[datetime | None] = mapped_column(TZDateTime(), nullable=True)
    issuance_remarks: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Receipt
    charge_invoice_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    charge_invoice_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    refuel_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    odometer_at_refuel: Mapped[int | None] = mapped_column(nullable=True)
    receipt_submitted_at: Mapped[datetime | None] = mapped_column(TZDateTime(), nullable=True)

    # EMD verification
    verified_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    verified_at: Mapped[datetime | None] = mapped_column(TZDateTime(), nullable=True)
    verification_remarks: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Return / reject / cancel / void
    returned_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    returned_at: Mapped[datetime | None] = mapped_column(TZDateTime(), nullable=True)
    return_remarks: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejected_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(TZDateTime(), nullable=True)
    rejection_remarks: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancelled_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(TZDateTime(), nullable=True)
    voided_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    voided_at: Mapped[datetime | None] = mapped_column(TZDateTime(), nullable=True)
    void_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<Requisition ref={self.ref_number} ris={self.ris_number} "
            f"status={self.status} v{self.version}>"
        )

    @property
    def current_status(self) -> RequisitionStatus:
        return RequisitionStatus(self.status)

    def to_dto(self) -> RequisitionSnapshot:
        """Convert ORM model to frozen domain DTO."""
        return RequisitionSnapshot(
            id=self.id,
            organization_id=self.organization_id,
            requester_id=self.requester_id,
            ref_number=self.ref_number,
            status=RequisitionStatus(self.status),
            version=self.version,
            vehicle_id=self.vehicle_id,
            driver_name=self.driver_name,
            office=self.office,
            destination=self.destination,
            purpose=self.purpose,
            passengers=tuple(self.passengers or ()),
            trip_from=self.trip_from,
            trip_to=self.trip_to,
            requested_liters=self.requested_liters,
            validated_liters=self.validated_liters,
            actual_liters=self.actual_liters,
            contract_id=self.contract_id,
            supplier_id=self.supplier_id,
            ris_number=self.ris_number,
            price_at_issuance=self.price_at_issuance,
            price_at_purchase=self.price_at_purchase,
            total_amount=self.total_amount,
            valid_until=self.valid_until,
            created_at=self.created_at,
            last_edited_at=self.last_edited_at,
            validated_by=self.validated_by,
            validated_at=self.validated_at,
            validation_remarks=self.validation_remarks,
            issued_by=self.issued_by,
            issued_at=self.issued_at,
            issuance_remarks=self.issuance_remarks,
            verified_by=self.verified_by,
            verified_at=self.verified_at,
            verification_remarks=self.verification_remarks,
            charge_invoice_number=self.charge_invoice_number,
            charge_invoice_date=self.charge_invoice_date,
            refuel_date=self.refuel_date,
            odometer_at_refuel=self.odometer_at_refuel,
            receipt_submitted_at=self.receipt_submitted_at,
            returned_by=self.returned_by,
            returned_at=self.returned_at,
            return_remarks=self.return_remarks,
            rejected_by=self.rejected_by,
            rejected_at=self.rejected_at,
            rejection_remarks=self.rejection_remarks,
            cancelled_by=self.cancelled_by,
            cancelled_at=self.cancelled_at,
            voided_by=self.voided_by,
            voided_at=self.voided_at,
            void_reason=self.void_reason,
        )


def _loaded_status(target) -> str | None:
    """Status as it was when the row was loaded (before pending changes)."""
    hist = attributes.get_history(target, "status")
    if hist.deleted:
        return hist.deleted[0]
    if hist.unchanged:
        return hist.unchanged[0]
    return None


@event.listens_for(Requisition, "before_update")
def prevent_terminal_requisition_update(mapper, connection, target):
    """Terminal requisitions (rejected, completed, cancelled, voided) are final."""
    loaded = _loaded_status(target)
    if loaded is not None and RequisitionStatus(loaded) in TERMINAL_REQUISITION_STATUSES:
        raise ImmutabilityViolationError(
            entity_type="Requisition",
            entity_id=str(target.id),
            reason=f"requisition is {loaded} and can no longer change",
        )


@event.listens_for(Requisition, "before_delete")
def prevent_requisition_delete(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="Requisition",
        entity_id=str(target.id),
        reason="requisitions are never deleted",
    )
