"""Services for the fleet kernel (write side)."""

from fleet_kernel.services.auditor_service import AuditorService, AuditTrace, AuditTraceEntry
from fleet_kernel.services.ledger_service import ContractLedger
from fleet_kernel.services.requisition_service import RequisitionWorkflow
from fleet_kernel.services.sequence_service import SequenceAllocator
from fleet_kernel.services.trip_ticket_service import TripTicketWorkflow

__all__ = [
    "AuditorService",
    "AuditTrace",
    "AuditTraceEntry",
    "ContractLedger",
    "RequisitionWorkflow",
    "SequenceAllocator",
    "TripTicketWorkflow",
]
