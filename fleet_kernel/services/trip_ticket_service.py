"""
TripTicketWorkflow -- driver's trip ticket approval and execution.

Responsibility:
    Ticket request and edit by the driver, DTT number reservation, approval
    and rejection by SPMS, and the trip itself (start, completion).

Architecture position:
    Kernel > Services -- imperative shell.  Consults TRIP_TICKET_WORKFLOW;
    DTT numbers come from SequenceAllocator.

Invariants enforced:
    - Optimistic versioning as for requisitions.
    - A ticket holds at most one reserved number at a time.
    - On approval the serial number is, in order of preference, the manual
      number, the ticket's reserved number, or the next automatic number;
      serial_number_reserved is cleared in the same write.
"""

from typing import Any
from uuid import UUID

from sqlalchemy.orm import attributes

from fleet_kernel.domain.context import ActorContext
from fleet_kernel.domain.control_number import DocumentKind
from fleet_kernel.domain.trip_ticket import (
    TRIP_TICKET_WORKFLOW,
    TripCompletion,
    TripTicketAction,
    TripTicketDetails,
    TripTicketSnapshot,
    TripTicketStatus,
)
from fleet_kernel.domain.validation import require_text
from fleet_kernel.exceptions import (
    PreconditionFailedError,
    TripTicketNotFoundError,
    ValidationError,
)
from fleet_kernel.logging_config import LogContext, get_logger
from fleet_kernel.models.audit_event import AuditAction
from fleet_kernel.models.trip_ticket import TripTicket
from fleet_kernel.services.auditor_service import AuditorService
from fleet_kernel.services.base import BaseService
from fleet_kernel.services.sequence_service import SequenceAllocator

logger = get_logger("services.trip_ticket")

_A = TripTicketAction


class TripTicketWorkflow(BaseService[TripTicket]):
    """Trip ticket state machine.  Flushes, never commits."""

    model = TripTicket
    entity_type = "TripTicket"
    not_found = TripTicketNotFoundError

    def __init__(
        self,
        session,
        clock=None,
        allocator: SequenceAllocator | None = None,
        auditor: AuditorService | None = None,
    ):
        super().__init__(session, clock)
        self._auditor = auditor or AuditorService(session, self.clock)
        self._allocator = allocator or SequenceAllocator(
            session, self.clock, auditor=self._auditor,
        )

    def _begin(
        self, action: TripTicketAction, actor: ActorContext, ticket_id: UUID, version: int,
    ) -> TripTicket:
        row = self._lock_document(ticket_id, actor.organization_id)
        self._check_version(row, version)
        TRIP_TICKET_WORKFLOW.authorize(
            action.value, actor, row.current_status, owner_id=row.driver_id,
        )
        return row

    def _finish(
        self,
        row: TripTicket,
        version: int,
        actor: ActorContext,
        audit_action: AuditAction,
        event: str,
        payload: dict[str, Any] | None = None,
    ) -> TripTicketSnapshot:
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
                "trip_ticket_id": str(row.id),
                "serial_number": row.serial_number,
                "status": row.status,
                "version": row.version,
            },
        )
        return row.to_dto()

    @staticmethod
    def _apply_details(row: TripTicket, details: TripTicketDetails) -> None:
        row.vehicle_id = details.vehicle_id
        row.driver_name = details.driver_name
        row.office = details.office
        row.destination = details.destination
        row.purposes = list(details.purposes)
        row.passengers = [
            {"name": p.name, "position": p.position} for p in details.passengers
        ]
        row.period_from = details.period_from
        row.period_to = details.period_to
        row.approving_authority = details.approving_authority
        row.recommending_officer = details.recommending_officer

    # ------------------------------------------------------------------
    # Driver
    # ------------------------------------------------------------------

    def create(self, actor: ActorContext, details: TripTicketDetails) -> TripTicketSnapshot:
        TRIP_TICKET_WORKFLOW.authorize(_A.CREATE.value, actor, None, owner_id=actor.actor_id)
        with LogContext.for_actor(actor):
            now = self.clock.now()
            row = TripTicket(
                organization_id=actor.organization_id,
                driver_id=actor.actor_id,
                status=TripTicketStatus.PENDING_APPROVAL.value,
                places_visited=[],
                created_at=now,
                created_by_id=actor.actor_id,
            )
            self._apply_details(row, details)
            row.touch(actor.actor_id, now)
            self.session.add(row)
            self.session.flush()

            self._auditor.record(
                actor, self.entity_type, row.id, AuditAction.TRIP_TICKET_CREATED,
                {"to": row.status, "destination": row.destination},
            )
            logger.info("trip_ticket_created", extra={"trip_ticket_id": str(row.id)})
            return row.to_dto()

    def edit(
        self, actor: ActorContext, ticket_id: UUID, version: int, details: TripTicketDetails,
    ) -> TripTicketSnapshot:
        with LogContext.for_actor(actor, ticket_id):
            row = self._begin(_A.EDIT, actor, ticket_id, version)
            self._apply_details(row, details)
            return self._finish(
                row, version, actor, AuditAction.TRIP_TICKET_EDITED, "trip_ticket_edited",
            )

    def cancel(self, actor: ActorContext, ticket_id: UUID, version: int) -> TripTicketSnapshot:
        with LogContext.for_actor(actor, ticket_id):
            row = self._begin(_A.CANCEL, actor, ticket_id, version)
            row.status = TripTicketStatus.CANCELLED.value
            row.cancelled_at = self.clock.now()
            return self._finish(
                row, version, actor, AuditAction.TRIP_TICKET_CANCELLED,
                "trip_ticket_cancelled",
            )

    def start_trip(
        self,
        actor: ActorContext,
        ticket_id: UUID,
        version: int,
        odometer_start: int | None = None,
    ) -> TripTicketSnapshot:
        if odometer_start is not None and odometer_start < 0:
            raise ValidationError("odometer_start", "must not be negative")
        with LogContext.for_actor(actor, ticket_id):
            row = self._begin(_A.START_TRIP, actor, ticket_id, version)
            row.status = TripTicketStatus.IN_PROGRESS.value
            row.departed_at = self.clock.now()
            row.odometer_start = odometer_start
            return self._finish(
                row, version, actor, AuditAction.TRIP_STARTED, "trip_started",
                {"odometer_start": odometer_start},
            )

    def complete_trip(
        self,
        actor: ActorContext,
        ticket_id: UUID,
        version: int,
        completion: TripCompletion,
    ) -> TripTicketSnapshot:
        with LogContext.for_actor(actor, ticket_id):
            row = self._begin(_A.COMPLETE_TRIP, actor, ticket_id, version)
            if (
                completion.odometer_end is not None
                and row.odometer_start is not None
                and completion.odometer_end < row.odometer_start
            ):
                raise ValidationError(
                    "odometer_end",
                    f"{completion.odometer_end} is below odometer_start {row.odometer_start}",
                )
            row.status = TripTicketStatus.COMPLETED.value
            row.arrived_at = self.clock.now()
            row.odometer_end = completion.odometer_end
            row.places_visited = list(completion.places_visited)
            row.fuel_purchased_liters = completion.fuel_purchased_liters
            return self._finish(
                row, version, actor, AuditAction.TRIP_COMPLETED, "trip_completed",
                {
                    "odometer_end": completion.odometer_end,
                    "fuel_purchased_liters": completion.fuel_purchased_liters,
                },
            )

    # ------------------------------------------------------------------
    # SPMS
    # ------------------------------------------------------------------

    def reserve_number(
        self, actor: ActorContext, ticket_id: UUID, version: int, serial_number: str,
    ) -> TripTicketSnapshot:
        """Set a DTT number aside for this ticket ahead of approval."""
        with LogContext.for_actor(actor, ticket_id):
            row = self._begin(_A.RESERVE_NUMBER, actor, ticket_id, version)
            if row.serial_number_reserved:
                raise PreconditionFailedError(
                    _A.RESERVE_NUMBER.value, "serial_number_reserved",
                    set(), row.serial_number_reserved,
                )
            reservation = self._allocator.reserve(
                actor, DocumentKind.DTT, serial_number, document_id=row.id,
            )
            row.serial_number_reserved = reservation.control_number
            return self._finish(
                row, version, actor, AuditAction.TRIP_TICKET_NUMBER_RESERVED,
                "trip_ticket_number_reserved",
                {"serial_number_reserved": reservation.control_number},
            )

    def approve(
        self,
        actor: ActorContext,
        ticket_id: UUID,
        version: int,
        serial_number: str | None = None,
    ) -> TripTicketSnapshot:
        with LogContext.for_actor(actor, ticket_id):
            row = self._begin(_A.APPROVE, actor, ticket_id, version)
            entered = bool(serial_number and serial_number.strip())
            manual = serial_number if entered else row.serial_number_reserved
            number = self._allocator.issue_for_document(
                DocumentKind.DTT, actor.organization_id, row.id, manual=manual,
            )
            row.serial_number = number
            row.serial_number_reserved = None
            row.status = TripTicketStatus.APPROVED.value
            row.approved_by = actor.actor_id
            row.approved_at = self.clock.now()
            return self._finish(
                row, version, actor, AuditAction.TRIP_TICKET_APPROVED,
                "trip_ticket_approved",
                {"serial_number": number, "manual": entered},
            )

    def reject(
        self, actor: ActorContext, ticket_id: UUID, version: int, remarks: str,
    ) -> TripTicketSnapshot:
        remarks = require_text(remarks, "remarks")
        with LogContext.for_actor(actor, ticket_id):
            row = self._begin(_A.REJECT, actor, ticket_id, version)
            row.status = TripTicketStatus.REJECTED.value
            row.rejected_by = actor.actor_id
            row.rejected_at = self.clock.now()
            row.rejection_remarks = remarks
            return self._finish(
                row, version, actor, AuditAction.TRIP_TICKET_REJECTED,
                "trip_ticket_rejected", {"remarks": remarks},
            )
