"""
Driver's trip ticket lifecycle (``fleet_kernel.domain.trip_ticket``).

A ticket is requested by a driver, approved or rejected by SPMS, and on
approval receives its DTT serial number.  Approved tickets are then driven:
``start_trip`` records departure, ``complete_trip`` records arrival.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from fleet_kernel.domain.context import Role
from fleet_kernel.domain.validation import (
    require_date_order,
    require_text,
    to_decimal,
)
from fleet_kernel.domain.workflow import Guard, Transition, Workflow
from fleet_kernel.exceptions import ValidationError


class TripTicketStatus(str, Enum):
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REJECTED = "rejected"


TERMINAL_TRIP_TICKET_STATUSES: frozenset[TripTicketStatus] = frozenset({
    TripTicketStatus.COMPLETED,
    TripTicketStatus.CANCELLED,
    TripTicketStatus.REJECTED,
})


class TripTicketAction(str, Enum):
    CREATE = "create"
    EDIT = "edit"
    RESERVE_NUMBER = "reserve_number"
    APPROVE = "approve"
    REJECT = "reject"
    CANCEL = "cancel"
    START_TRIP = "start_trip"
    COMPLETE_TRIP = "complete_trip"


_S = TripTicketStatus
_A = TripTicketAction
_PENDING = frozenset({_S.PENDING_APPROVAL})
_OWNER = frozenset({Role.DRIVER})

TRIP_TICKET_WORKFLOW = Workflow(
    name="trip_ticket",
    initial_state=_S.PENDING_APPROVAL,
    states=frozenset(_S),
    terminal_states=TERMINAL_TRIP_TICKET_STATUSES,
    transitions=(
        Transition(_A.CREATE.value, frozenset(), _S.PENDING_APPROVAL, roles=_OWNER),
        Transition(
            _A.EDIT.value, _PENDING, _S.PENDING_APPROVAL,
            roles=_OWNER, owner_roles=_OWNER,
        ),
        Transition(
            _A.RESERVE_NUMBER.value, _PENDING, _S.PENDING_APPROVAL,
            roles=frozenset({Role.SPMS}),
            guards=(Guard("serial_free", "DTT number not issued or held elsewhere"),),
        ),
        Transition(
            _A.APPROVE.value, _PENDING, _S.APPROVED,
            roles=frozenset({Role.SPMS}),
            guards=(Guard("serial_free", "DTT number not issued or held elsewhere"),),
        ),
        Transition(
            _A.REJECT.value, _PENDING, _S.REJECTED,
            roles=frozenset({Role.SPMS}),
            guards=(Guard("remarks", "remarks are required"),),
        ),
        Transition(
            _A.CANCEL.value, _PENDING, _S.CANCELLED,
            roles=_OWNER, owner_roles=_OWNER,
        ),
        Transition(
            _A.START_TRIP.value, frozenset({_S.APPROVED}), _S.IN_PROGRESS,
            roles=_OWNER, owner_roles=_OWNER,
        ),
        Transition(
            _A.COMPLETE_TRIP.value,
            frozenset({_S.APPROVED, _S.IN_PROGRESS}),
            _S.COMPLETED,
            roles=_OWNER, owner_roles=_OWNER,
        ),
    ),
)


@dataclass(frozen=True)
class Passenger:
    name: str
    position: str = ""


@dataclass(frozen=True)
class TripTicketDetails:
    """What the driver fills in when requesting a ticket."""

    vehicle_id: str
    driver_name: str
    office: str
    destination: str
    purposes: tuple[str, ...]
    period_from: date
    period_to: date
    passengers: tuple[Passenger, ...] = ()
    approving_authority: str | None = None
    recommending_officer: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "vehicle_id", require_text(self.vehicle_id, "vehicle_id"))
        object.__setattr__(self, "destination", require_text(self.destination, "destination"))
        purposes = tuple(p.strip() for p in self.purposes if p and p.strip())
        if not purposes:
            raise ValidationError("purposes", "at least one purpose is required")
        object.__setattr__(self, "purposes", purposes)
        object.__setattr__(self, "passengers", tuple(self.passengers))
        require_date_order(self.period_from, self.period_to, "period_covered")


@dataclass(frozen=True)
class TripCompletion:
    """Odometer and fuel readings recorded when the trip ends."""

    odometer_end: int | None = None
    places_visited: tuple[str, ...] = ()
    fuel_purchased_liters: Decimal | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "places_visited", tuple(self.places_visited))
        if self.fuel_purchased_liters is not None:
            liters = to_decimal(self.fuel_purchased_liters, "fuel_purchased_liters")
            if liters < 0:
                raise ValidationError("fuel_purchased_liters", "must not be negative")
            object.__setattr__(self, "fuel_purchased_liters", liters)


@dataclass(frozen=True)
class TripTicketSnapshot:
    id: UUID
    organization_id: str
    driver_id: str
    status: TripTicketStatus
    version: int
    vehicle_id: str
    driver_name: str
    office: str
    destination: str
    purposes: tuple[str, ...]
    passengers: tuple[Passenger, ...]
    period_from: date
    period_to: date
    approving_authority: str | None
    recommending_officer: str | None
    serial_number: str | None
    serial_number_reserved: str | None
    approved_by: str | None
    approved_at: datetime | None
    rejected_by: str | None
    rejected_at: datetime | None
    rejection_remarks: str | None
    cancelled_at: datetime | None
    departed_at: datetime | None
    arrived_at: datetime | None
    odometer_start: int | None
    odometer_end: int | None
    distance_traveled: int | None
    places_visited: tuple[str, ...]
    fuel_purchased_liters: Decimal | None
    created_at: datetime

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_TRIP_TICKET_STATUSES
