"""
Module: fleet_kernel.models.trip_ticket
Responsibility: ORM persistence for driver's trip tickets.

Invariants enforced:
    - serial_number is unique per organization (uq_trip_ticket_serial).
    - version_id_col optimistic versioning, as for requisitions.
    - Tickets are never deleted; terminal tickets are never updated.
"""

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Date,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import Mapped, attributes, mapped_column

from fleet_kernel.db.base import TrackedBase, TZDateTime
from fleet_kernel.domain.trip_ticket import (
    TERMINAL_TRIP_TICKET_STATUSES,
    Passenger,
    TripTicketSnapshot,
    TripTicketStatus,
)
from fleet_kernel.exceptions import ImmutabilityViolationError

_STATUS_VALUES = ", ".join(f"'{s.value}'" for s in TripTicketStatus)


class TripTicket(TrackedBase):
    __tablename__ = "trip_tickets"

    __table_args__ = (
        CheckConstraint(
            f"status IN ({_STATUS_VALUES})",
            name="ck_trip_tickets_valid_status",
        ),
        UniqueConstraint("organization_id", "serial_number", name="uq_trip_ticket_serial"),
        Index("idx_trip_ticket_org_status", "organization_id", "status"),
        Index("idx_trip_ticket_reserved", "organization_id", "serial_number_reserved"),
    )

    organization_id: Mapped[str] = mapped_column(String(64), nullable=False)
    driver_id: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(String(30), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    vehicle_id: Mapped[str] = mapped_column(String(64), nullable=False)
    driver_name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    office: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    destination: Mapped[str] = mapped_column(String(500), nullable=False)
    purposes: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    passengers: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    period_from: Mapped[date] = mapped_column(Date, nullable=False)
    period_to: Mapped[date] = mapped_column(Date, nullable=False)
    approving_authority: Mapped[str | None] = mapped_column(String(200), nullable=True)
    recommending_officer: Mapped[str | None] = mapped_column(String(200), nullable=True)

    serial_number: Mapped[str | None] = mapped_column(String(32), nullable=True)
    serial_number_reserved: Mapped[str | None] = mapped_column(String(32), nullable=True)

    approved_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(TZDateTime(), nullable=True)
    rejected_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(TZDateTime(), nullable=True)
    rejection_remarks: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(TZDateTime(), nullable=True)

    departed_at: Mapped[datetime | None] = mapped_column(TZDateTime(), nullable=True)
    arrived_at: Mapped[datetime | None] = mapped_column(TZDateTime(), nullable=True)
    odometer_start: Mapped[int | None] = mapped_column(nullable=True)
    odometer_end: Mapped[int | None] = mapped_column(nullable=True)
    places_visited: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    fuel_purchased_liters: Mapped[Decimal | None] = mapped_column(nullable=True)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<TripTicket {self.serial_number or self.id} status={self.status}>"

    @property
    def current_status(self) -> TripTicketStatus:
        return TripTicketStatus(self.status)

    def to_dto(self) -> TripTicketSnapshot:
        distance = None
        if self.odometer_start is not None and self.odometer_end is not None:
            distance = self.odometer_end - self.odometer_start
        return TripTicketSnapshot(
            id=self.id,
            organization_id=self.organization_id,
            driver_id=self.driver_id,
            status=TripTicketStatus(self.status),
            version=self.version,
            vehicle_id=self.vehicle_id,
            driver_name=self.driver_name,
            office=self.office,
            destination=self.destination,
            purposes=tuple(self.purposes or ()),
            passengers=tuple(
                Passenger(name=p["name"], position=p.get("position", ""))
                for p in (self.passengers or ())
            ),
            period_from=self.period_from,
            period_to=self.period_to,
            approving_authority=self.approving_authority,
            recommending_officer=self.recommending_officer,
            serial_number=self.serial_number,
            serial_number_reserved=self.serial_number_reserved,
            approved_by=self.approved_by,
            approved_at=self.approved_at,
            rejected_by=self.rejected_by,
            rejected_at=self.rejected_at,
            rejection_remarks=self.rejection_remarks,
            cancelled_at=self.cancelled_at,
            departed_at=self.departed_at,
            arrived_at=self.arrived_at,
            odometer_start=self.odometer_start,
            odometer_end=self.odometer_end,
            distance_traveled=distance,
            places_visited=tuple(self.places_visited or ()),
            fuel_purchased_liters=self.fuel_purchased_liters,
            created_at=self.created_at,
        )


@event.listens_for(TripTicket, "before_update")
def prevent_terminal_ticket_update(mapper, connection, target):
    hist = attributes.get_history(target, "status")
    loaded = (hist.deleted or hist.unchanged or [None])[0]
    if loaded is not None and TripTicketStatus(loaded) in TERMINAL_TRIP_TICKET_STATUSES:
        raise ImmutabilityViolationError(
            entity_type="TripTicket",
            entity_id=str(target.id),
            reason=f"trip ticket is {loaded} and can no longer change",
        )


@event.listens_for(TripTicket, "before_delete")
def prevent_ticket_delete(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="TripTicket",
        entity_id=str(target.id),
        reason="trip tickets are never deleted",
    )
