"""
Tests for RequisitionWorkflow.

Covers:
- Submission and dense reference numbers
- EMD validation against ACTIVE contracts, repeat validation
- Return / revise / reject / cancel
- RIS issuance: automatic, manual, reserved, collisions
- Receipt upload, return, update and verification with the ledger deduction
- Optimistic concurrency, role and ownership checks
- Terminal rows stay final
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from fleet_kernel.domain.control_number import DocumentKind
from fleet_kernel.domain.ledger import ContractStatus, DeductionContext, TransactionType
from fleet_kernel.domain.requisition import REQUISITION_WORKFLOW, RequisitionStatus
from fleet_kernel.exceptions import (
    AlreadyInUseError,
    ConflictError,
    ContractNotFoundError,
    ImmutabilityViolationError,
    InvalidFormatError,
    PreconditionFailedError,
    RequisitionNotFoundError,
    ValidationError,
)
from fleet_kernel.models.audit_event import AuditAction
from fleet_kernel.models.requisition import Requisition
from fleet_kernel.models.sequence import ReservationStatus
from fleet_kernel.selectors.ledger_selector import LedgerSelector
from fleet_kernel.selectors.requisition_selector import RequisitionSelector
from fleet_kernel.selectors.reservation_selector import ReservationSelector
from tests.builders import ORG, receipt_details, requisition_details

S = RequisitionStatus


def _to_receipt_submitted(requisitions, issued, driver, liters="48"):
    waiting = requisitions.await_receipt(driver, issued.id, issued.version)
    return requisitions.submit_receipt(
        driver, waiting.id, waiting.version, receipt_details(liters),
    )


def _status(session, requisition_id):
    return RequisitionSelector(session).get(ORG, requisition_id).status


class TestSubmit:

    def test_submit_starts_pending_with_reference_number(self, requisitions, driver):
        first = requisitions.submit(driver, requisition_details())
        second = requisitions.submit(driver, requisition_details("20"))

        assert first.status == S.PENDING_EMD
        assert first.requester_id == "drv-1"
        assert first.version == 1
        assert (first.ref_number, second.ref_number) == (1, 2)
        assert first.passengers == ("Engr. Santos",)

    def test_submit_is_audited(self, requisitions, driver, auditor_service):
        submitted = requisitions.submit(driver, requisition_details())
        trace = auditor_service.get_trace("Requisition", submitted.id)
        assert trace.actions == (AuditAction.REQUISITION_SUBMITTED,)

    def test_emd_cannot_submit(self, requisitions, emd):
        with pytest.raises(PreconditionFailedError) as exc_info:
            requisitions.submit(emd, requisition_details())
        assert exc_info.value.check == "role"
        assert exc_info.value.expected == ("driver",)

    @pytest.mark.parametrize("liters", ["0", "-5"])
    def test_requested_liters_must_be_positive(self, liters):
        with pytest.raises(ValidationError) as exc_info:
            requisition_details(liters)
        assert exc_info.value.field == "requested_liters"

    def test_trip_period_must_be_ordered(self):
        with pytest.raises(ValidationError):
            requisition_details(trip_from=date(2025, 1, 21), trip_to=date(2025, 1, 20))

    def test_selector_lists_newest_first(self, requisitions, driver, session):
        requisitions.submit(driver, requisition_details())
        requisitions.submit(driver, requisition_details())
        refs = [r.ref_number for r in RequisitionSelector(session).list_requisitions(ORG)]
        assert refs == [2, 1]


class TestValidate:

    def test_validate_links_contract(self, validated_requisition, contract, deterministic_clock):
        assert validated_requisition.status == S.EMD_VALIDATED
        assert validated_requisition.contract_id == contract.id
        assert validated_requisition.supplier_id == "SUP-PETRON"
        assert validated_requisition.validated_liters == Decimal("48")
        assert validated_requisition.validated_by == "emd-1"
        assert validated_requisition.validated_at == deterministic_clock.now()

    def test_repeat_validation_keeps_original_stamp(
        self, requisitions, validated_requisition, contract, emd, deterministic_clock,
    ):
        original_at = validated_requisition.validated_at
        deterministic_clock.advance(3600)

        edited = requisitions.validate(
            emd, validated_requisition.id, validated_requisition.version,
            contract.id, Decimal("45"), remarks="Reduced allocation",
        )

        assert edited.status == S.EMD_VALIDATED
        assert edited.validated_liters == Decimal("45")
        assert edited.validated_at == original_at
        assert edited.last_edited_at == deterministic_clock.now()
        assert edited.version == validated_requisition.version + 1

    def test_repeat_validation_audited_as_edit(
        self, requisitions, validated_requisition, contract, emd, auditor_service,
    ):
        requisitions.validate(
            emd, validated_requisition.id, validated_requisition.version,
            contract.id, Decimal("45"),
        )
        trace = auditor_service.get_trace("Requisition", validated_requisition.id)
        assert [e.payload.get("edit") for e in trace.entries[1:]] == [False, True]

    def test_exhausted_contract_rejected(self, requisitions, ledger, driver, emd, spms):
        contract = ledger.open(spms, "CT-SMALL", "SUP-PETRON", Decimal("100"))
        ledger.deduct(contract.id, Decimal("100"), DeductionContext(actor=spms))
        submitted = requisitions.submit(driver, requisition_details())

        with pytest.raises(PreconditionFailedError) as exc_info:
            requisitions.validate(emd, submitted.id, submitted.version, contract.id, Decimal("10"))
        assert exc_info.value.check == "contract_status"
        assert exc_info.value.actual == ContractStatus.EXHAUSTED.value

    def test_other_organization_contract_not_found(
        self, requisitions, ledger, driver, emd, foreign_spms,
    ):
        foreign = ledger.open(foreign_spms, "CT-FOREIGN", "SUP-SHELL", Decimal("100"))
        submitted = requisitions.submit(driver, requisition_details())
        with pytest.raises(ContractNotFoundError):
            requisitions.validate(emd, submitted.id, submitted.version, foreign.id, Decimal("10"))

    def test_driver_cannot_validate(self, requisitions, contract, driver):
        submitted = requisitions.submit(driver, requisition_details())
        with pytest.raises(PreconditionFailedError) as exc_info:
            requisitions.validate(driver, submitted.id, submitted.version, contract.id, Decimal("10"))
        assert exc_info.value.check == "role"

    def test_validated_liters_must_be_positive(self, requisitions, contract, driver, emd):
        submitted = requisitions.submit(driver, requisition_details())
        with pytest.raises(ValidationError):
            requisitions.validate(emd, submitted.id, submitted.version, contract.id, Decimal("0"))

    def test_cannot_validate_after_issue(self, requisitions, issued_requisition, contract, emd):
        with pytest.raises(PreconditionFailedError) as exc_info:
            requisitions.validate(
                emd, issued_requisition.id, issued_requisition.version,
                contract.id, Decimal("10"),
            )
        assert exc_info.value.check == "status"
        assert exc_info.value.actual == S.RIS_ISSUED.value

    def test_stale_version_conflicts_before_role_check(
        self, requisitions, validated_requisition, contract, driver,
    ):
        with pytest.raises(ConflictError) as exc_info:
            requisitions.validate(
                driver, validated_requisition.id, 1, contract.id, Decimal("10"),
            )
        assert exc_info.value.expected_version == 1
        assert exc_info.value.actual_version == validated_requisition.version
        assert exc_info.value.current.status == S.EMD_VALIDATED

    def test_unknown_requisition(self, requisitions, contract, emd):
        with pytest.raises(RequisitionNotFoundError):
            requisitions.validate(emd, uuid4(), 1, contract.id, Decimal("10"))


class TestReturnRejectCancel:

    def test_return_and_revise(self, requisitions, driver, emd):
        submitted = requisitions.submit(driver, requisition_details())
        returned = requisitions.return_to_requester(
            emd, submitted.id, submitted.version, "Attach trip order",
        )
        assert returned.status == S.RETURNED
        assert returned.return_remarks == "Attach trip order"

        revised = requisitions.revise(
            driver, returned.id, returned.version, requisition_details("35"),
        )
        assert revised.status == S.PENDING_EMD
        assert revised.requested_liters == Decimal("35")
        assert revised.last_edited_at is not None

    def test_identical_revision_still_bumps_version(self, requisitions, driver):
        submitted = requisitions.submit(driver, requisition_details())
        revised = requisitions.revise(
            driver, submitted.id, submitted.version, requisition_details(),
        )
        assert revised.version == submitted.version + 1
        with pytest.raises(ConflictError):
            requisitions.revise(
                driver, submitted.id, submitted.version, requisition_details(),
            )

    def test_return_requires_remarks(self, requisitions, driver, emd):
        submitted = requisitions.submit(driver, requisition_details())
        with pytest.raises(ValidationError):
            requisitions.return_to_requester(emd, submitted.id, submitted.version, "  ")

    def test_only_owner_revises(self, requisitions, driver, other_driver):
        submitted = requisitions.submit(driver, requisition_details())
        with pytest.raises(PreconditionFailedError) as exc_info:
            requisitions.revise(
                other_driver, submitted.id, submitted.version, requisition_details("10"),
            )
        assert exc_info.value.check == "owner"
        assert exc_info.value.actual == "drv-2"

    def test_admin_revises_any_requisition(self, requisitions, driver, admin):
        submitted = requisitions.submit(driver, requisition_details())
        revised = requisitions.revise(
            admin, submitted.id, submitted.version, requisition_details("10"),
        )
        assert revised.requested_liters == Decimal("10")
        assert revised.requester_id == "drv-1"

    def test_reject_is_final(self, requisitions, driver, emd):
        submitted = requisitions.submit(driver, requisition_details())
        rejected = requisitions.reject(emd, submitted.id, submitted.version, "Duplicate request")
        assert rejected.status == S.REJECTED
        assert rejected.is_terminal

        with pytest.raises(PreconditionFailedError) as exc_info:
            requisitions.cancel(driver, rejected.id, rejected.version)
        assert exc_info.value.check == "status"

    def test_owner_cancels(self, requisitions, driver):
        submitted = requisitions.submit(driver, requisition_details())
        cancelled = requisitions.cancel(driver, submitted.id, submitted.version)
        assert cancelled.status == S.CANCELLED
        assert cancelled.cancelled_by == "drv-1"

    def test_cannot_cancel_validated(self, requisitions, validated_requisition, driver):
        with pytest.raises(PreconditionFailedError) as exc_info:
            requisitions.cancel(driver, validated_requisition.id, validated_requisition.version)
        assert exc_info.value.expected == (S.PENDING_EMD.value, S.RETURNED.value)


class TestIssue:

    def test_automatic_ris_number(self, issued_requisition, deterministic_clock):
        assert issued_requisition.status == S.RIS_ISSUED
        assert issued_requisition.ris_number == "2025-01-8225"
        assert issued_requisition.price_at_issuance == Decimal("65.50")
        assert issued_requisition.issued_by == "spms-1"
        assert issued_requisition.issued_at == deterministic_clock.now()

    def test_issue_reassigns_contract_and_validity(
        self, requisitions, validated_requisition, ledger, contract, driver, emd, spms, session,
    ):
        replacement = ledger.open(spms, "CT-2025-002", "SUP-SHELL", Decimal("50000"))
        issued = requisitions.issue(
            spms, validated_requisition.id, validated_requisition.version, Decimal("65.50"),
            contract_id=replacement.id, valid_until=date(2025, 1, 31),
            remarks="  Shell station on duty  ",
        )
        assert issued.contract_id == replacement.id
        assert issued.supplier_id == "SUP-SHELL"
        assert issued.valid_until == date(2025, 1, 31)
        assert issued.issuance_remarks == "Shell station on duty"

        submitted = _to_receipt_submitted(requisitions, issued, driver)
        requisitions.verify(emd, submitted.id, submitted.version, Decimal("48"), Decimal("65.50"))
        selector = LedgerSelector(session)
        assert selector.get_contract(ORG, replacement.id).remaining_balance == Decimal("46856.00")
        assert selector.get_contract(ORG, contract.id).remaining_balance == Decimal("100000")

    def test_issue_keeps_validation_choices_by_default(self, issued_requisition, contract):
        assert issued_requisition.contract_id == contract.id
        assert issued_requisition.valid_until is None
        assert issued_requisition.issuance_remarks is None

    def test_issue_onto_exhausted_contract_rejected(
        self, requisitions, validated_requisition, ledger, spms, session,
    ):
        spent = ledger.open(spms, "CT-SPENT", "SUP-SHELL", Decimal("100"))
        ledger.deduct(spent.id, Decimal("100"), DeductionContext(actor=spms))
        with pytest.raises(PreconditionFailedError) as exc_info:
            requisitions.issue(
                spms, validated_requisition.id, validated_requisition.version,
                Decimal("65.50"), contract_id=spent.id,
            )
        assert exc_info.value.operation == "issue"
        assert exc_info.value.check == "contract_status"
        assert _status(session, validated_requisition.id) == S.EMD_VALIDATED

    def test_issue_onto_foreign_contract_not_found(
        self, requisitions, validated_requisition, ledger, spms, foreign_spms,
    ):
        foreign = ledger.open(foreign_spms, "CT-FOREIGN", "SUP-SHELL", Decimal("100"))
        with pytest.raises(ContractNotFoundError):
            requisitions.issue(
                spms, validated_requisition.id, validated_requisition.version,
                Decimal("65.50"), contract_id=foreign.id,
            )

    @pytest.mark.parametrize("entered", [None, "", "   "])
    def test_blank_number_is_automatic(
        self, requisitions, validated_requisition, spms, auditor_service, entered,
    ):
        issued = requisitions.issue(
            spms, validated_requisition.id, validated_requisition.version,
            Decimal("65.50"), ris_number=entered,
        )
        assert issued.ris_number == "2025-01-8225"
        trace = auditor_service.get_trace("Requisition", issued.id)
        assert trace.entries[-1].payload["manual"] is False

    def test_manual_number_audited_as_manual(
        self, requisitions, validated_requisition, spms, auditor_service,
    ):
        issued = requisitions.issue(
            spms, validated_requisition.id, validated_requisition.version,
            Decimal("65.50"), ris_number="2025-01-8300",
        )
        trace = auditor_service.get_trace("Requisition", issued.id)
        assert trace.entries[-1].payload["manual"] is True

    def test_manual_ris_number_bumps_counter(
        self, requisitions, validated_requisition, spms, allocator,
    ):
        issued = requisitions.issue(
            spms, validated_requisition.id, validated_requisition.version,
            Decimal("65.50"), ris_number="2025-01-8300",
        )
        assert issued.ris_number == "2025-01-8300"
        assert allocator.next_number(DocumentKind.RIS, ORG) == "2025-01-8301"

    def test_manual_number_reserved_elsewhere_rejected(
        self, requisitions, validated_requisition, spms, allocator, session,
    ):
        allocator.reserve(spms, DocumentKind.RIS, "2025-01-8230")

        with pytest.raises(AlreadyInUseError) as exc_info:
            requisitions.issue(
                spms, validated_requisition.id, validated_requisition.version,
                Decimal("65.50"), ris_number="2025-01-8230",
            )
        assert exc_info.value.value == "2025-01-8230"
        assert _status(session, validated_requisition.id) == S.EMD_VALIDATED

    def test_manual_number_used_by_other_requisition_rejected(
        self, requisitions, validated_requisition, contract, driver, emd, spms,
    ):
        requisitions.issue(
            spms, validated_requisition.id, validated_requisition.version,
            Decimal("65.50"), ris_number="2025-01-8300",
        )
        other = requisitions.submit(driver, requisition_details())
        other = requisitions.validate(emd, other.id, other.version, contract.id, Decimal("20"))

        with pytest.raises(AlreadyInUseError):
            requisitions.issue(
                spms, other.id, other.version, Decimal("65.50"), ris_number="2025-01-8300",
            )

    def test_malformed_manual_number(self, requisitions, validated_requisition, spms, session):
        with pytest.raises(InvalidFormatError) as exc_info:
            requisitions.issue(
                spms, validated_requisition.id, validated_requisition.version,
                Decimal("65.50"), ris_number="RIS-2025-0001",
            )
        assert exc_info.value.expected == "YYYY-MM-NNNN"
        assert _status(session, validated_requisition.id) == S.EMD_VALIDATED

    def test_reservation_for_requisition_is_consumed(
        self, requisitions, validated_requisition, spms, allocator, session,
    ):
        allocator.reserve(
            spms, DocumentKind.RIS, "2025-01-8240", document_id=validated_requisition.id,
        )
        issued = requisitions.issue(
            spms, validated_requisition.id, validated_requisition.version, Decimal("65.50"),
        )

        assert issued.ris_number == "2025-01-8240"
        [reservation] = ReservationSelector(session).list_reservations(
            ORG, document_id=validated_requisition.id,
        )
        assert reservation.status == ReservationStatus.USED.value

    def test_driver_cannot_issue(self, requisitions, validated_requisition, driver):
        with pytest.raises(PreconditionFailedError):
            requisitions.issue(
                driver, validated_requisition.id, validated_requisition.version, Decimal("65.50"),
            )

    def test_ris_lookup(self, issued_requisition, session):
        found = RequisitionSelector(session).by_ris_number(ORG, " 2025-01-8225 ")
        assert found is not None and found.id == issued_requisition.id

    def test_void_keeps_number_consumed(
        self, requisitions, issued_requisition, contract, driver, emd, spms,
    ):
        voided = requisitions.void(
            spms, issued_requisition.id, issued_requisition.version, "Vehicle breakdown",
        )
        assert voided.status == S.VOIDED
        assert voided.void_reason == "Vehicle breakdown"
        assert voided.ris_number == "2025-01-8225"

        other = requisitions.submit(driver, requisition_details())
        other = requisitions.validate(emd, other.id, other.version, contract.id, Decimal("20"))
        with pytest.raises(AlreadyInUseError):
            requisitions.issue(
                spms, other.id, other.version, Decimal("65.50"), ris_number="2025-01-8225",
            )
        reissued = requisitions.issue(spms, other.id, other.version, Decimal("65.50"))
        assert reissued.ris_number == "2025-01-8226"

    def test_void_requires_reason(self, requisitions, issued_requisition, spms):
        with pytest.raises(ValidationError):
            requisitions.void(spms, issued_requisition.id, issued_requisition.version, "")


class TestReceiptAndVerify:

    def test_full_lifecycle_deducts_contract(
        self, requisitions, issued_requisition, contract, driver, emd, session,
    ):
        submitted = _to_receipt_submitted(requisitions, issued_requisition, driver)
        assert submitted.status == S.RECEIPT_SUBMITTED
        assert submitted.charge_invoice_number == "CI-0001"

        completed = requisitions.verify(
            emd, submitted.id, submitted.version, Decimal("48"), Decimal("65.50"),
        )

        assert completed.status == S.COMPLETED
        assert completed.total_amount == Decimal("3144.00")
        assert completed.verified_by == "emd-1"

        selector = LedgerSelector(session)
        [deduction] = selector.deductions_for_requisition(completed.id)
        assert deduction.amount == Decimal("3144.00")
        assert deduction.remarks == "RIS 2025-01-8225"
        assert deduction.liters == Decimal("48")
        snapshot = selector.get_contract(ORG, contract.id)
        assert snapshot.remaining_balance == Decimal("96856.00")
        assert selector.history(contract.id)[-1].transaction_type == TransactionType.DEDUCTION

    def test_status_path_follows_workflow(
        self, requisitions, issued_requisition, driver, emd, auditor_service,
    ):
        submitted = _to_receipt_submitted(requisitions, issued_requisition, driver)
        completed = requisitions.verify(
            emd, submitted.id, submitted.version, Decimal("48"), Decimal("65.50"),
        )

        trace = auditor_service.get_trace("Requisition", completed.id)
        path = [S(entry.payload["to"]) for entry in trace.entries]
        assert path[0] == S.PENDING_EMD and path[-1] == S.COMPLETED
        assert REQUISITION_WORKFLOW.is_path(path)
        assert trace.entries[-1].payload["from"] == S.RECEIPT_SUBMITTED.value
        assert all(entry.hash_matches for entry in trace.entries)

    def test_receipt_straight_from_issued(self, requisitions, issued_requisition, driver):
        submitted = requisitions.submit_receipt(
            driver, issued_requisition.id, issued_requisition.version, receipt_details(),
        )
        assert submitted.status == S.RECEIPT_SUBMITTED

    def test_spms_may_mark_awaiting_receipt(self, requisitions, issued_requisition, spms):
        waiting = requisitions.await_receipt(
            spms, issued_requisition.id, issued_requisition.version,
        )
        assert waiting.status == S.AWAITING_RECEIPT

    def test_returned_receipt_can_be_resubmitted(
        self, requisitions, issued_requisition, driver, emd,
    ):
        submitted = _to_receipt_submitted(requisitions, issued_requisition, driver)
        returned = requisitions.return_receipt(
            emd, submitted.id, submitted.version, "Invoice illegible",
        )
        assert returned.status == S.RECEIPT_RETURNED

        again = requisitions.submit_receipt(
            driver, returned.id, returned.version, receipt_details("47", invoice="CI-0002"),
        )
        assert again.status == S.RECEIPT_SUBMITTED
        assert again.charge_invoice_number == "CI-0002"

    def test_update_receipt_in_place(self, requisitions, issued_requisition, driver):
        submitted = _to_receipt_submitted(requisitions, issued_requisition, driver)
        updated = requisitions.update_receipt(
            driver, submitted.id, submitted.version, receipt_details("47.5", invoice="CI-0009"),
        )
        assert updated.status == S.RECEIPT_SUBMITTED
        assert updated.actual_liters == Decimal("47.5")
        assert updated.charge_invoice_number == "CI-0009"
        assert updated.version == submitted.version + 1

    def test_stale_verify_writes_nothing(
        self, requisitions, issued_requisition, contract, driver, emd, session,
    ):
        submitted = _to_receipt_submitted(requisitions, issued_requisition, driver)
        requisitions.update_receipt(
            driver, submitted.id, submitted.version, receipt_details("40"),
        )

        with pytest.raises(ConflictError):
            requisitions.verify(
                emd, submitted.id, submitted.version, Decimal("48"), Decimal("65.50"),
            )
        assert LedgerSelector(session).transaction_count(contract.id) == 1
        assert _status(session, submitted.id) == S.RECEIPT_SUBMITTED

    def test_verify_overdraws_small_contract(
        self, requisitions, ledger, driver, emd, spms, session,
    ):
        small = ledger.open(spms, "CT-SMALL", "SUP-PETRON", Decimal("1000"))
        req = requisitions.submit(driver, requisition_details())
        req = requisitions.validate(emd, req.id, req.version, small.id, Decimal("48"))
        req = requisitions.issue(spms, req.id, req.version, Decimal("65.50"))
        req = _to_receipt_submitted(requisitions, req, driver)

        completed = requisitions.verify(emd, req.id, req.version, Decimal("48"), Decimal("65.50"))

        assert completed.status == S.COMPLETED
        snapshot = LedgerSelector(session).get_contract(ORG, small.id)
        assert snapshot.remaining_balance == Decimal("-2144.00")
        assert snapshot.status == ContractStatus.EXHAUSTED

    def test_driver_cannot_verify(self, requisitions, issued_requisition, driver):
        submitted = _to_receipt_submitted(requisitions, issued_requisition, driver)
        with pytest.raises(PreconditionFailedError) as exc_info:
            requisitions.verify(
                driver, submitted.id, submitted.version, Decimal("48"), Decimal("65.50"),
            )
        assert exc_info.value.check == "role"

    def test_only_owner_submits_receipt(self, requisitions, issued_requisition, other_driver):
        with pytest.raises(PreconditionFailedError) as exc_info:
            requisitions.submit_receipt(
                other_driver, issued_requisition.id, issued_requisition.version,
                receipt_details(),
            )
        assert exc_info.value.check == "owner"

    def test_admin_submits_receipt_on_behalf(self, requisitions, issued_requisition, admin):
        submitted = requisitions.submit_receipt(
            admin, issued_requisition.id, issued_requisition.version, receipt_details(),
        )
        assert submitted.status == S.RECEIPT_SUBMITTED

    def test_admin_does_not_bypass_status(self, requisitions, validated_requisition, admin):
        with pytest.raises(PreconditionFailedError) as exc_info:
            requisitions.verify(
                admin, validated_requisition.id, validated_requisition.version,
                Decimal("48"), Decimal("65.50"),
            )
        assert exc_info.value.check == "status"

    def test_verify_logs_with_actor_context(
        self, requisitions, issued_requisition, driver, emd, captured_logs,
    ):
        submitted = _to_receipt_submitted(requisitions, issued_requisition, driver)
        requisitions.verify(emd, submitted.id, submitted.version, Decimal("48"), Decimal("65.50"))

        [record] = [r for r in captured_logs() if r["message"] == "requisition_verified"]
        assert record["actor_id"] == "emd-1"
        assert record["status"] == S.COMPLETED.value


class TestTerminalRows:

    def test_completed_requisition_cannot_be_modified(
        self, requisitions, issued_requisition, driver, emd, session,
    ):
        submitted = _to_receipt_submitted(requisitions, issued_requisition, driver)
        requisitions.verify(emd, submitted.id, submitted.version, Decimal("48"), Decimal("65.50"))

        row = session.get(Requisition, submitted.id)
        row.purpose = "Rewritten afterwards"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_cancelled_requisition_cannot_be_modified(self, requisitions, driver, session):
        submitted = requisitions.submit(driver, requisition_details())
        requisitions.cancel(driver, submitted.id, submitted.version)

        row = session.get(Requisition, submitted.id)
        row.status = S.PENDING_EMD.value
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_requisitions_are_never_deleted(self, requisitions, driver, session):
        submitted = requisitions.submit(driver, requisition_details())
        session.delete(session.get(Requisition, submitted.id))
        with pytest.raises(ImmutabilityViolationError):
            session.flush()


def test_period_rollover_for_ris(requisitions, validated_requisition, spms, deterministic_clock):
    deterministic_clock.set_time(datetime(2025, 1, 31, 16, 30, tzinfo=timezone.utc))
    issued = requisitions.issue(
        spms, validated_requisition.id, validated_requisition.version, Decimal("65.50"),
    )
    assert issued.ris_number == "2025-02-8225"
