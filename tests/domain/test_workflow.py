"""
Tests for the declarative workflow tables.

Covers:
- Table consistency (no transitions out of terminal states)
- authorize(): role, ownership and status checks and their error data
- ADMIN bypasses role and ownership but never status
- is_path() over observed status sequences
"""

from enum import Enum

import pytest

from fleet_kernel.domain.context import ActorContext, Role
from fleet_kernel.domain.requisition import (
    REQUISITION_WORKFLOW,
    TERMINAL_REQUISITION_STATUSES,
    RequisitionStatus,
)
from fleet_kernel.domain.trip_ticket import TRIP_TICKET_WORKFLOW, TripTicketStatus
from fleet_kernel.domain.workflow import Transition, Workflow
from fleet_kernel.exceptions import PreconditionFailedError

S = RequisitionStatus

DRIVER = ActorContext("drv-1", Role.DRIVER, "org-1")
EMD = ActorContext("emd-1", Role.EMD, "org-1")
ADMIN = ActorContext("admin-1", Role.ADMIN, "org-1")


class TestTables:

    @pytest.mark.parametrize("workflow", [REQUISITION_WORKFLOW, TRIP_TICKET_WORKFLOW])
    def test_terminal_states_have_no_successors(self, workflow):
        for state in workflow.terminal_states:
            assert workflow.successors(state) == frozenset()

    def test_every_requisition_status_reachable(self):
        reachable = {REQUISITION_WORKFLOW.initial_state}
        frontier = [REQUISITION_WORKFLOW.initial_state]
        while frontier:
            for nxt in REQUISITION_WORKFLOW.successors(frontier.pop()):
                if nxt not in reachable:
                    reachable.add(nxt)
                    frontier.append(nxt)
        assert reachable == set(S)

    def test_transition_out_of_terminal_state_rejected(self):
        class Doc(str, Enum):
            OPEN = "open"
            DONE = "done"

        with pytest.raises(ValueError, match="terminal"):
            Workflow(
                name="broken",
                initial_state=Doc.OPEN,
                states=frozenset(Doc),
                terminal_states=frozenset({Doc.DONE}),
                transitions=(
                    Transition("reopen", frozenset({Doc.DONE}), Doc.OPEN, frozenset({Role.EMD})),
                ),
            )

    def test_unknown_action(self):
        with pytest.raises(ValueError):
            REQUISITION_WORKFLOW.transition("teleport")


class TestAuthorize:

    def test_allowed(self):
        t = REQUISITION_WORKFLOW.authorize("validate", EMD, S.PENDING_EMD)
        assert t.to_state is S.EMD_VALIDATED

    def test_wrong_role(self):
        with pytest.raises(PreconditionFailedError) as exc_info:
            REQUISITION_WORKFLOW.authorize("validate", DRIVER, S.PENDING_EMD)
        err = exc_info.value
        assert (err.operation, err.check, err.expected, err.actual) == (
            "validate", "role", ("emd",), "driver",
        )
        assert err.code == "PRECONDITION_FAILED"

    def test_wrong_status_lists_sources(self):
        with pytest.raises(PreconditionFailedError) as exc_info:
            REQUISITION_WORKFLOW.authorize("verify", EMD, S.AWAITING_RECEIPT)
        assert exc_info.value.check == "status"
        assert exc_info.value.expected == ("RECEIPT_SUBMITTED",)
        assert exc_info.value.actual == "AWAITING_RECEIPT"

    def test_owner_check(self):
        with pytest.raises(PreconditionFailedError) as exc_info:
            REQUISITION_WORKFLOW.authorize("cancel", DRIVER, S.PENDING_EMD, owner_id="drv-2")
        assert exc_info.value.check == "owner"

    def test_admin_passes_role_and_owner(self):
        REQUISITION_WORKFLOW.authorize("cancel", ADMIN, S.PENDING_EMD, owner_id="drv-2")
        REQUISITION_WORKFLOW.authorize("verify", ADMIN, S.RECEIPT_SUBMITTED)

    @pytest.mark.parametrize("status", sorted(TERMINAL_REQUISITION_STATUSES))
    def test_admin_never_passes_status(self, status):
        with pytest.raises(PreconditionFailedError) as exc_info:
            REQUISITION_WORKFLOW.authorize("cancel", ADMIN, status, owner_id="drv-1")
        assert exc_info.value.check == "status"

    def test_create_requires_no_document(self):
        with pytest.raises(PreconditionFailedError):
            REQUISITION_WORKFLOW.authorize("submit", DRIVER, S.PENDING_EMD, owner_id="drv-1")


class TestIsPath:

    def test_happy_path(self):
        assert REQUISITION_WORKFLOW.is_path([
            S.PENDING_EMD, S.EMD_VALIDATED, S.EMD_VALIDATED, S.RIS_ISSUED,
            S.AWAITING_RECEIPT, S.RECEIPT_SUBMITTED, S.RECEIPT_RETURNED,
            S.RECEIPT_SUBMITTED, S.COMPLETED,
        ])

    def test_skipping_a_step(self):
        assert not REQUISITION_WORKFLOW.is_path([S.PENDING_EMD, S.RIS_ISSUED])

    def test_must_start_at_initial_state(self):
        assert not REQUISITION_WORKFLOW.is_path([S.EMD_VALIDATED, S.RIS_ISSUED])
        assert not REQUISITION_WORKFLOW.is_path([])

    def test_terminal_state_does_not_repeat(self):
        assert not REQUISITION_WORKFLOW.is_path([S.PENDING_EMD, S.REJECTED, S.REJECTED])

    def test_trip_ticket_path(self):
        T = TripTicketStatus
        assert TRIP_TICKET_WORKFLOW.is_path([T.PENDING_APPROVAL, T.APPROVED, T.COMPLETED])
