"""ORM models for the fleet kernel."""

from fleet_kernel.models.audit_event import AuditAction, AuditEvent
from fleet_kernel.models.contract import Contract, ContractTransaction
from fleet_kernel.models.requisition import Requisition
from fleet_kernel.models.sequence import (
    ReservationStatus,
    SequenceCounter,
    SerialReservation,
)
from fleet_kernel.models.trip_ticket import TripTicket

__all__ = [
    "AuditAction",
    "AuditEvent",
    "Contract",
    "ContractTransaction",
    "Requisition",
    "ReservationStatus",
    "SequenceCounter",
    "SerialReservation",
    "TripTicket",
]
