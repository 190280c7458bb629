"""
RequisitionWorkflow -- fuel requisition lifecycle.

Responsibility:
    Every mutating entry point of a requisition: submission, EMD review,
    SPMS issuance, receipt upload and verification, cancellation and void.

Architecture position:
    Kernel > Services -- imperative shell.  Consults REQUISITION_WORKFLOW
    for role, ownership and source status; delegates RIS numbers to
    SequenceAllocator and the contract deduction to ContractLedger.

Invariants enforced:
    - Optimistic concurrency: each call (except submit) names the version
      the caller read.  The row is re-read under a lock in the caller's
      transaction and a different stored version raises ConflictError
      before anything is written.
    - verify writes the COMPLETED status and the ledger DEDUCTION in the
      same transaction; both commit or neither does.
    - totalAmount = actualLiters x priceAtPurchase, set only at verify.
    - Repeat validation leaves validatedAt/By untouched and stamps
      lastEditedAt.

Failure modes:
    - RequisitionNotFoundError / ContractNotFoundError
    - PreconditionFailedError (role, owner, status, contract status)
    - ConflictError (stale version)
    - AlreadyInUseError / InvalidFormatError (manual RIS number)
    - ValidationError (non-positive liters or price, missing remarks)
"""

from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import attributes

from fleet_kernel.domain.context import ActorContext
from fleet_kernel.domain.control_number import DocumentKind
from fleet_kernel.domain.ledger import ContractStatus, DeductionContext
from fleet_kernel.domain.requisition import (
    REQUISITION_WORKFLOW,
    ReceiptDetails,
    RequisitionAction,
    RequisitionDetails,
    RequisitionSnapshot,
    RequisitionStatus,
)
from fleet_kernel.domain.validation import require_positive, require_text
from fleet_kernel.exceptions import (
    ContractNotFoundError,
    PreconditionFailedError,
    RequisitionNotFoundError,
)
from fleet_kernel.logging_config import LogContext, get_logger
from fleet_kernel.models.audit_event import AuditAction
from fleet_kernel.models.contract import Contract
from fleet_kernel.models.requisition import Requisition
from fleet_kernel.services.auditor_service import AuditorService
from fleet_kernel.services.base import BaseService
from fleet_kernel.services.ledger_service import ContractLedger
from fleet_kernel.services.sequence_service import SequenceAllocator

logger = get_logger("services.requisition")

_A = RequisitionAction


class RequisitionWorkflow(BaseService[Requisition]):
    """Requisition state machine.  Flushes, never commits."""

    model = Requisition
    entity_type = "Requisition"
    not_found = RequisitionNotFoundError

    def __init__(
        self,
        session,
        clock=None,
        allocator: SequenceAllocator | None = None,
        ledger: ContractLedger | None = None,
        auditor: AuditorService | None = None,
    ):
        super().__init__(session, clock)
        self._auditor = auditor or AuditorService(session, self.clock)
        self._allocator = allocator or SequenceAllocator(
            session, self.clock, auditor=self._auditor,
        )
        self._ledger = ledger or ContractLedger(session, self.clock, auditor=self._auditor)

    # ------------------------------------------------------------------
    # Shared steps
    # ------------------------------------------------------------------

    def _begin(
        self,
        action: RequisitionAction,
        actor: ActorContext,
        requisition_id: UUID,
        version: int,
    ) -> Requisition:
        """Lock, compare versions, then ask the workflow table."""
        row = self._lock_document(requisition_id, actor.organization_id)
        self._check_version(row, version)
        REQUISITION_WORKFLOW.authorize(
            action.value, actor, row.current_status, owner_id=row.requester_id,
        )
        return row

    def _finish(
        self,
        row: Requisition,
        version: int,
        actor: ActorContext,
        audit_action: AuditAction,
        event: str,
        payload: dict[str, Any] | None = None,
    ) -> RequisitionSnapshot:
        history = attributes.get_history(row, "status")
        previous = (history.deleted or history.unchanged or [None])[0]
        row.touch(actor.actor_id, self.clock.now())
        self._flush_versioned(row, version)

        self._auditor.record(
            actor, self.entity_type, row.id, audit_action,
            {"from": previous, "to": row.status, **(payload or {})},
        )
        logger.info(
            event,
            extra={
                "requisition_id": str(row.id),
                "ref_number": row.ref_number,
                "status": row.status,
                "version": row.version,
            },
        )
        return row.to_dto()

    def _active_contract(
        self, action: RequisitionAction, actor: ActorContext, contract_id: UUID,
    ) -> Contract:
        """The caller's organization's contract, which must still be ACTIVE."""
        contract = self.session.execute(
            select(Contract).where(
                Contract.id == contract_id,
                Contract.organization_id == actor.organization_id,
            )
        ).scalar_one_or_none()
        if contract is None:
            raise ContractNotFoundError(str(contract_id))
        if not contract.is_active:
            raise PreconditionFailedError(
                action.value, "contract_status",
                {ContractStatus.ACTIVE.value}, contract.status,
            )
        return contract

    @staticmethod
    def _apply_details(row: Requisition, details: RequisitionDetails) -> None:
        row.vehicle_id = details.vehicle_id
        row.driver_name = details.driver_name
        row.office = details.office
        row.destination = details.destination
        row.purpose = details.purpose
        row.passengers = list(details.passengers)
        row.trip_from = details.trip_from
        row.trip_to = details.trip_to
        row.requested_liters = details.requested_liters

    # ------------------------------------------------------------------
    # Requester
    # ------------------------------------------------------------------

    def submit(self, actor: ActorContext, details: RequisitionDetails) -> RequisitionSnapshot:
        """Create a requisition in PENDING_EMD with the next reference number."""
        REQUISITION_WORKFLOW.authorize(_A.SUBMIT.value, actor, None, owner_id=actor.actor_id)
        with LogContext.for_actor(actor):
            now = self.clock.now()
            row = Requisition(
                organization_id=actor.organization_id,
                requester_id=actor.actor_id,
                ref_number=self._allocator.next_reference_number(actor.organization_id),
                status=RequisitionStatus.PENDING_EMD.value,
                created_at=now,
                created_by_id=actor.actor_id,
            )
            self._apply_details(row, details)
            row.touch(actor.actor_id, now)
            self.session.add(row)
            self.session.flush()

            self._auditor.record(
                actor, self.entity_type, row.id, AuditAction.REQUISITION_SUBMITTED,
                {
                    "to": row.status,
                    "ref_number": row.ref_number,
                    "requested_liters": row.requested_liters,
                },
            )
            logger.info(
                "requisition_submitted",
                extra={"requisition_id": str(row.id), "ref_number": row.ref_number},
            )
            return row.to_dto()

    def revise(
        self,
        actor: ActorContext,
        requisition_id: UUID,
        version: int,
        details: RequisitionDetails,
    ) -> RequisitionSnapshot:
        """Edit trip details; a RETURNED requisition goes back to PENDING_EMD."""
        with LogContext.for_actor(actor, requisition_id):
            row = self._begin(_A.REVISE, actor, requisition_id, version)
            self._apply_details(row, details)
            row.status = RequisitionStatus.PENDING_EMD.value
            row.last_edited_at = self.clock.now()
            return self._finish(
                row, version, actor, AuditAction.REQUISITION_REVISED,
                "requisition_revised",
                {"requested_liters": row.requested_liters},
            )

    def cancel(
        self, actor: ActorContext, requisition_id: UUID, version: int,
    ) -> RequisitionSnapshot:
        with LogContext.for_actor(actor, requisition_id):
            row = self._begin(_A.CANCEL, actor, requisition_id, version)
            row.status = RequisitionStatus.CANCELLED.value
            row.cancelled_by = actor.actor_id
            row.cancelled_at = self.clock.now()
            return self._finish(
                row, version, actor, AuditAction.REQUISITION_CANCELLED,
                "requisition_cancelled", None,
            )

    # ------------------------------------------------------------------
    # EMD review
    # ------------------------------------------------------------------

    def validate(
        self,
        actor: ActorContext,
        requisition_id: UUID,
        version: int,
        contract_id: UUID,
        validated_liters: Decimal,
        valid_until: date | None = None,
        remarks: str | None = None,
    ) -> RequisitionSnapshot:
        """
        Approve the request against an ACTIVE contract.

        Calling again while EMD_VALIDATED edits contract, liters, validity
        and remarks; the original validation stamp is kept.
        """
        liters = require_positive(validated_liters, "validated_liters")
        with LogContext.for_actor(actor, requisition_id):
            row = self._begin(_A.VALIDATE, actor, requisition_id, version)

            contract = self._active_contract(_A.VALIDATE, actor, contract_id)

            now = self.clock.now()
            row.contract_id = contract.id
            row.supplier_id = contract.supplier_id
            row.validated_liters = liters
            row.valid_until = valid_until
            row.validation_remarks = remarks
            editing = row.current_status is RequisitionStatus.EMD_VALIDATED
            if editing:
                row.last_edited_at = now
            else:
                row.status = RequisitionStatus.EMD_VALIDATED.value
                row.validated_by = actor.actor_id
                row.validated_at = now
            return self._finish(
                row, version, actor, AuditAction.REQUISITION_VALIDATED,
                "requisition_validated",
                {
                    "contract_id": contract.id,
                    "validated_liters": liters,
                    "edit": editing,
                },
            )

    def return_to_requester(
        self, actor: ActorContext, requisition_id: UUID, version: int, remarks: str,
    ) -> RequisitionSnapshot:
        remarks = require_text(remarks, "remarks")
        with LogContext.for_actor(actor, requisition_id):
            row = self._begin(_A.RETURN_TO_REQUESTER, actor, requisition_id, version)
            row.status = RequisitionStatus.RETURNED.value
            row.returned_by = actor.actor_id
            row.returned_at = self.clock.now()
            row.return_remarks = remarks
            return self._finish(
                row, version, actor, AuditAction.REQUISITION_RETURNED,
                "requisition_returned", {"remarks": remarks},
            )

    def reject(
        self, actor: ActorContext, requisition_id: UUID, version: int, remarks: str,
    ) -> RequisitionSnapshot:
        remarks = require_text(remarks, "remarks")
        with LogContext.for_actor(actor, requisition_id):
            row = self._begin(_A.REJECT, actor, requisition_id, version)
            row.status = RequisitionStatus.REJECTED.value
            row.rejected_by = actor.actor_id
            row.rejected_at = self.clock.now()
            row.rejection_remarks = remarks
            return self._finish(
                row, version, actor, AuditAction.REQUISITION_REJECTED,
                "requisition_rejected", {"remarks": remarks},
            )

    # ------------------------------------------------------------------
    # SPMS issuance
    # ------------------------------------------------------------------

    def issue(
        self,
        actor: ActorContext,
        requisition_id: UUID,
        version: int,
        price_at_issuance: Decimal,
        ris_number: str | None = None,
        contract_id: UUID | None = None,
        valid_until: date | None = None,
        remarks: str | None = None,
    ) -> RequisitionSnapshot:
        """
        Issue the RIS.  The number is the manual one when given, else one
        reserved for this requisition, else the next automatic number.

        SPMS may move the requisition to another ACTIVE contract (the one
        ``verify`` will charge) and set or extend its validity.
        """
        price = require_positive(price_at_issuance, "price_at_issuance")
        manual = bool(ris_number and ris_number.strip())
        with LogContext.for_actor(actor, requisition_id):
            row = self._begin(_A.ISSUE, actor, requisition_id, version)
            if contract_id is not None and contract_id != row.contract_id:
                contract = self._active_contract(_A.ISSUE, actor, contract_id)
                row.contract_id = contract.id
                row.supplier_id = contract.supplier_id
            if valid_until is not None:
                row.valid_until = valid_until
            number = self._allocator.issue_for_document(
                DocumentKind.RIS, actor.organization_id, row.id,
                manual=ris_number if manual else None,
            )
            row.ris_number = number
            row.price_at_issuance = price
            row.issuance_remarks = remarks.strip() if remarks and remarks.strip() else None
            row.status = RequisitionStatus.RIS_ISSUED.value
            row.issued_by = actor.actor_id
            row.issued_at = self.clock.now()
            return self._finish(
                row, version, actor, AuditAction.REQUISITION_ISSUED,
                "requisition_issued",
                {
                    "ris_number": number,
                    "manual": manual,
                    "price_at_issuance": price,
                    "contract_id": row.contract_id,
                },
            )

    def await_receipt(
        self, actor: ActorContext, requisition_id: UUID, version: int,
    ) -> RequisitionSnapshot:
        with LogContext.for_actor(actor, requisition_id):
            row = self._begin(_A.AWAIT_RECEIPT, actor, requisition_id, version)
            row.status = RequisitionStatus.AWAITING_RECEIPT.value
            return self._finish(
                row, version, actor, AuditAction.REQUISITION_AWAITING_RECEIPT,
                "requisition_awaiting_receipt", None,
            )

    def void(
        self, actor: ActorContext, requisition_id: UUID, version: int, reason: str,
    ) -> RequisitionSnapshot:
        """Withdraw an issued RIS.  The RIS number stays consumed."""
        reason = require_text(reason, "reason")
        with LogContext.for_actor(actor, requisition_id):
            row = self._begin(_A.VOID, actor, requisition_id, version)
            row.status = RequisitionStatus.VOIDED.value
            row.voided_by = actor.actor_id
            row.voided_at = self.clock.now()
            row.void_reason = reason
            return self._finish(
                row, version, actor, AuditAction.REQUISITION_VOIDED,
                "requisition_voided",
                {"ris_number": row.ris_number, "reason": reason},
            )

    # ------------------------------------------------------------------
    # Receipt
    # ------------------------------------------------------------------

    @staticmethod
    def _apply_receipt(row: Requisition, receipt: ReceiptDetails) -> None:
        row.charge_invoice_number = receipt.charge_invoice_number
        row.charge_invoice_date = receipt.charge_invoice_date
        row.actual_liters = receipt.actual_liters
        row.refuel_date = receipt.refuel_date
        row.odometer_at_refuel = receipt.odometer_at_refuel

    def submit_receipt(
        self,
        actor: ActorContext,
        requisition_id: UUID,
        version: int,
        receipt: ReceiptDetails,
    ) -> RequisitionSnapshot:
        with LogContext.for_actor(actor, requisition_id):
            row = self._begin(_A.SUBMIT_RECEIPT, actor, requisition_id, version)
            self._apply_receipt(row, receipt)
            row.status = RequisitionStatus.RECEIPT_SUBMITTED.value
            row.receipt_submitted_at = self.clock.now()
            return self._finish(
                row, version, actor, AuditAction.RECEIPT_SUBMITTED,
                "receipt_submitted",
                {
                    "charge_invoice_number": receipt.charge_invoice_number,
                    "actual_liters": receipt.actual_liters,
                },
            )

    def update_receipt(
        self,
        actor: ActorContext,
        requisition_id: UUID,
        version: int,
        receipt: ReceiptDetails,
    ) -> RequisitionSnapshot:
        """Re-upload invoice data while the receipt awaits verification."""
        with LogContext.for_actor(actor, requisition_id):
            row = self._begin(_A.UPDATE_RECEIPT, actor, requisition_id, version)
            self._apply_receipt(row, receipt)
            row.last_edited_at = self.clock.now()
            return self._finish(
                row, version, actor, AuditAction.RECEIPT_UPDATED,
                "receipt_updated",
                {
                    "charge_invoice_number": receipt.charge_invoice_number,
                    "actual_liters": receipt.actual_liters,
                },
            )

    def verify(
        self,
        actor: ActorContext,
        requisition_id: UUID,
        version: int,
        actual_liters: Decimal,
        price_at_purchase: Decimal,
        remarks: str | None = None,
    ) -> RequisitionSnapshot:
        """
        Accept the receipt and charge the contract.

        The deduction and the COMPLETED status are written in the caller's
        transaction; a failure in either leaves both unwritten.
        """
        liters = require_positive(actual_liters, "actual_liters")
        price = require_positive(price_at_purchase, "price_at_purchase")
        with LogContext.for_actor(actor, requisition_id):
            row = self._begin(_A.VERIFY, actor, requisition_id, version)
            if row.contract_id is None:
                raise PreconditionFailedError(
                    _A.VERIFY.value, "contract", {"validated contract"}, None,
                )

            total = liters * price
            deduction = self._ledger.deduct(
                row.contract_id,
                total,
                DeductionContext(
                    actor=actor,
                    requisition_id=row.id,
                    liters=liters,
                    price_per_liter=price,
                    remarks=f"RIS {row.ris_number}" if row.ris_number else None,
                ),
            )

            row.actual_liters = liters
            row.price_at_purchase = price
            row.total_amount = total
            row.status = RequisitionStatus.COMPLETED.value
            row.verified_by = actor.actor_id
            row.verified_at = self.clock.now()
            row.verification_remarks = remarks
            return self._finish(
                row, version, actor, AuditAction.REQUISITION_VERIFIED,
                "requisition_verified",
                {
                    "total_amount": total,
                    "contract_id": row.contract_id,
                    "ledger_sequence": deduction.sequence,
                },
            )

    def return_receipt(
        self, actor: ActorContext, requisition_id: UUID, version: int, remarks: str,
    ) -> RequisitionSnapshot:
        remarks = require_text(remarks, "remarks")
        with LogContext.for_actor(actor, requisition_id):
            row = self._begin(_A.RETURN_RECEIPT, actor, requisition_id, version)
            row.status = RequisitionStatus.RECEIPT_RETURNED.value
            row.returned_by = actor.actor_id
            row.returned_at = self.clock.now()
            row.return_remarks = remarks
            return self._finish(
                row, version, actor, AuditAction.RECEIPT_RETURNED,
                "receipt_returned", {"remarks": remarks},
            )
