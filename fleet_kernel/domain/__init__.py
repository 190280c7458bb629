"""
Pure domain layer.

Statuses, workflow tables, control-number formats, ledger replay and the
payload / snapshot DTOs.  No dependencies on the ORM, the database or
wall-clock time.
"""

from fleet_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from fleet_kernel.domain.context import ActorContext, Role
from fleet_kernel.domain.control_number import (
    DEFAULT_FORMATS,
    ControlNumberFormat,
    CounterScope,
    DocumentKind,
    ParsedControlNumber,
)
from fleet_kernel.domain.ledger import (
    ContractSnapshot,
    ContractStatus,
    ContractTransactionRecord,
    DeductionContext,
    LedgerEntry,
    TransactionType,
    replay_balance,
    verify_ledger,
)
from fleet_kernel.domain.requisition import (
    REQUISITION_WORKFLOW,
    ReceiptDetails,
    RequisitionAction,
    RequisitionDetails,
    RequisitionSnapshot,
    RequisitionStatus,
)
from fleet_kernel.domain.trip_ticket import (
    TRIP_TICKET_WORKFLOW,
    Passenger,
    TripCompletion,
    TripTicketAction,
    TripTicketDetails,
    TripTicketSnapshot,
    TripTicketStatus,
)
from fleet_kernel.domain.workflow import Guard, Transition, Workflow

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "ActorContext",
    "Role",
    "DEFAULT_FORMATS",
    "ControlNumberFormat",
    "CounterScope",
    "DocumentKind",
    "ParsedControlNumber",
    "ContractSnapshot",
    "ContractStatus",
    "ContractTransactionRecord",
    "DeductionContext",
    "LedgerEntry",
    "TransactionType",
    "replay_balance",
    "verify_ledger",
    "REQUISITION_WORKFLOW",
    "ReceiptDetails",
    "RequisitionAction",
    "RequisitionDetails",
    "RequisitionSnapshot",
    "RequisitionStatus",
    "TRIP_TICKET_WORKFLOW",
    "Passenger",
    "TripCompletion",
    "TripTicketAction",
    "TripTicketDetails",
    "TripTicketSnapshot",
    "TripTicketStatus",
    "Guard",
    "Transition",
    "Workflow",
]
