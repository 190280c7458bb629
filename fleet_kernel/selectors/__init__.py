"""Selectors for the fleet kernel (read side)."""

from fleet_kernel.selectors.ledger_selector import ContractTotals, LedgerSelector
from fleet_kernel.selectors.requisition_selector import (
    RequisitionSelector,
    TripTicketSelector,
)
from fleet_kernel.selectors.reservation_selector import ReservationSelector

__all__ = [
    "ContractTotals",
    "LedgerSelector",
    "RequisitionSelector",
    "ReservationSelector",
    "TripTicketSelector",
]
