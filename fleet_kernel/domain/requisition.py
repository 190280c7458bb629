"""
Fuel requisition lifecycle (``fleet_kernel.domain.requisition``).

Pure value objects: statuses, the declarative role/status table and the
payload and snapshot DTOs exchanged with callers.

    PENDING_EMD --validate--> EMD_VALIDATED --issue--> RIS_ISSUED
        |  ^                                              |   |
        |  | revise                                       |   +--void--> VOIDED
        v  |                                              v
      RETURNED                                  AWAITING_RECEIPT
                                                          |
    RECEIPT_RETURNED <--return_receipt-- RECEIPT_SUBMITTED <--submit_receipt
                                                 |
                                                 +--verify--> COMPLETED

PENDING_EMD and RETURNED may also go to REJECTED (emd) or CANCELLED (owner).
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
    require_positive,
    require_text,
)
from fleet_kernel.domain.workflow import Guard, Transition, Workflow


class RequisitionStatus(str, Enum):
    PENDING_EMD = "PENDING_EMD"
    RETURNED = "RETURNED"
    REJECTED = "REJECTED"
    EMD_VALIDATED = "EMD_VALIDATED"
    RIS_ISSUED = "RIS_ISSUED"
    AWAITING_RECEIPT = "AWAITING_RECEIPT"
    RECEIPT_SUBMITTED = "RECEIPT_SUBMITTED"
    RECEIPT_RETURNED = "RECEIPT_RETURNED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    VOIDED = "VOIDED"


TERMINAL_REQUISITION_STATUSES: frozenset[RequisitionStatus] = frozenset({
    RequisitionStatus.REJECTED,
    RequisitionStatus.COMPLETED,
    RequisitionStatus.CANCELLED,
    RequisitionStatus.VOIDED,
})


class RequisitionAction(str, Enum):
    SUBMIT = "submit"
    REVISE = "revise"
    VALIDATE = "validate"
    RETURN_TO_REQUESTER = "return_to_requester"
    REJECT = "reject"
    ISSUE = "issue"
    AWAIT_RECEIPT = "await_receipt"
    SUBMIT_RECEIPT = "submit_receipt"
    UPDATE_RECEIPT = "update_receipt"
    VERIFY = "verify"
    RETURN_RECEIPT = "return_receipt"
    CANCEL = "cancel"
    VOID = "void"


_S = RequisitionStatus
_A = RequisitionAction
_OPEN_FOR_REVIEW = frozenset({_S.PENDING_EMD, _S.RETURNED})

REQUISITION_WORKFLOW = Workflow(
    name="fuel_requisition",
    initial_state=_S.PENDING_EMD,
    states=frozenset(_S),
    terminal_states=TERMINAL_REQUISITION_STATUSES,
    transitions=(
        Transition(
            _A.SUBMIT.value, frozenset(), _S.PENDING_EMD,
            roles=frozenset({Role.DRIVER}),
        ),
        Transition(
            _A.REVISE.value, _OPEN_FOR_REVIEW, _S.PENDING_EMD,
            roles=frozenset({Role.DRIVER}),
            owner_roles=frozenset({Role.DRIVER}),
        ),
        Transition(
            _A.VALIDATE.value,
            _OPEN_FOR_REVIEW | {_S.EMD_VALIDATED},
            _S.EMD_VALIDATED,
            roles=frozenset({Role.EMD}),
            guards=(Guard("active_contract", "contract exists and is ACTIVE"),),
        ),
        Transition(
            _A.RETURN_TO_REQUESTER.value, _OPEN_FOR_REVIEW, _S.RETURNED,
            roles=frozenset({Role.EMD}),
            guards=(Guard("remarks", "remarks are required"),),
        ),
        Transition(
            _A.REJECT.value, _OPEN_FOR_REVIEW, _S.REJECTED,
            roles=frozenset({Role.EMD}),
            guards=(Guard("remarks", "remarks are required"),),
        ),
        Transition(
            _A.ISSUE.value, frozenset({_S.EMD_VALIDATED}), _S.RIS_ISSUED,
            roles=frozenset({Role.SPMS}),
            guards=(Guard("ris_number", "RIS number is unique"),),
        ),
        Transition(
            _A.AWAIT_RECEIPT.value, frozenset({_S.RIS_ISSUED}), _S.AWAITING_RECEIPT,
            roles=frozenset({Role.DRIVER, Role.SPMS}),
            owner_roles=frozenset({Role.DRIVER}),
        ),
        Transition(
            _A.SUBMIT_RECEIPT.value,
            frozenset({_S.RIS_ISSUED, _S.AWAITING_RECEIPT, _S.RECEIPT_RETURNED}),
            _S.RECEIPT_SUBMITTED,
            roles=frozenset({Role.DRIVER}),
            owner_roles=frozenset({Role.DRIVER}),
        ),
        Transition(
            _A.UPDATE_RECEIPT.value,
            frozenset({_S.RECEIPT_SUBMITTED}),
            _S.RECEIPT_SUBMITTED,
            roles=frozenset({Role.DRIVER}),
            owner_roles=frozenset({Role.DRIVER}),
        ),
        Transition(
            _A.VERIFY.value, frozenset({_S.RECEIPT_SUBMITTED}), _S.COMPLETED,
            roles=frozenset({Role.EMD}),
            guards=(Guard("ledger", "contract deduction commits with the status"),),
        ),
        Transition(
            _A.RETURN_RECEIPT.value,
            frozenset({_S.RECEIPT_SUBMITTED}),
            _S.RECEIPT_RETURNED,
            roles=frozenset({Role.EMD}),
            guards=(Guard("remarks", "remarks are required"),),
        ),
        Transition(
            _A.CANCEL.value, _OPEN_FOR_REVIEW, _S.CANCELLED,
            roles=frozenset({Role.DRIVER}),
            owner_roles=frozenset({Role.DRIVER}),
        ),
        Transition(
            _A.VOID.value, frozenset({_S.RIS_ISSUED}), _S.VOIDED,
            roles=frozenset({Role.SPMS}),
            guards=(Guard("reason", "void reason is required"),),
        ),
    ),
)


# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RequisitionDetails:
    """Trip details and requested volume entered by the requester."""

    vehicle_id: str
    office: str
    destination: str
    purpose: str
    requested_liters: Decimal
    driver_name: str = ""
    passengers: tuple[str, ...] = ()
    trip_from: date | None = None
    trip_to: date | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "vehicle_id", require_text(self.vehicle_id, "vehicle_id"))
        object.__setattr__(self, "destination", require_text(self.destination, "destination"))
        object.__setattr__(self, "purpose", require_text(self.purpose, "purpose"))
        object.__setattr__(
            self,
            "requested_liters",
            require_positive(self.requested_liters, "requested_liters"),
        )
        object.__setattr__(self, "passengers", tuple(self.passengers))
        require_date_order(self.trip_from, self.trip_to, "trip_period")


@dataclass(frozen=True)
class ReceiptDetails:
    """Charge invoice data uploaded by the requester after refuelling."""

    charge_invoice_number: str
    charge_invoice_date: date
    actual_liters: Decimal
    refuel_date: date | None = None
    odometer_at_refuel: int | None = None

    def __post_init__(self) -> None:
        object.__setattr__(
            self,
            "charge_invoice_number",
            require_text(self.charge_invoice_number, "charge_invoice_number"),
        )
        object.__setattr__(
            self, "actual_liters", require_positive(self.actual_liters, "actual_liters"),
        )


# ---------------------------------------------------------------------------
# Snapshot
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RequisitionSnapshot:
    """Read-only view of a requisition, returned by every operation."""

    id: UUID
    organization_id: str
    requester_id: str
    ref_number: int
    status: RequisitionStatus
    version: int
    vehicle_id: str
    driver_name: str
    office: str
    destination: str
    purpose: str
    passengers: tuple[str, ...]
    trip_from: date | None
    trip_to: date | None
    requested_liters: Decimal
    validated_liters: Decimal | None
    actual_liters: Decimal | None
    contract_id: UUID | None
    supplier_id: str | None
    ris_number: str | None
    price_at_issuance: Decimal | None
    price_at_purchase: Decimal | None
    total_amount: Decimal | None
    valid_until: date | None
    created_at: datetime
    last_edited_at: datetime | None
    validated_by: str | None
    validated_at: datetime | None
    validation_remarks: str | None
    issued_by: str | None
    issued_at: datetime | None
    issuance_remarks: str | None
    verified_by: str | None
    verified_at: datetime | None
    verification_remarks: str | None
    charge_invoice_number: str | None
    charge_invoice_date: date | None
    refuel_date: date | None
    odometer_at_refuel: int | None
    receipt_submitted_at: datetime | None
    returned_by: str | None
    returned_at: datetime | None
    return_remarks: str | None
    rejected_by: str | None
    rejected_at: datetime | None
    rejection_remarks: str | None
    cancelled_by: str | None
    cancelled_at: datetime | None
    voided_by: str | None
    voided_at: datetime | None
    void_reason: str | None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_REQUISITION_STATUSES
