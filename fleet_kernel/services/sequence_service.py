"""
SequenceAllocator -- control-number allocation via locked counter rows.

Responsibility:
    Issues DTT and RIS control numbers three ways: automatically from the
    period counter, by manual entry, and by standalone pre-reservation.
    Also hands out the dense requisition reference number.

Architecture position:
    Kernel > Services -- imperative shell.  Called by RequisitionWorkflow
    (RIS at issuance, reference number at submission) and TripTicketWorkflow
    (DTT at approval), and directly by SPMS for reservations.

Invariants enforced:
    - Whenever number N is durably claimed, the (kind, period, organization)
      counter is >= N's ordinal.  The uniqueness checks and the counter bump
      run after the counter row is locked, in the caller's transaction, so
      two claimants of the same period are serialized on that row.
    - The aggregate max-plus-one pattern is never used; the counter row is
      the only source of the next ordinal.
    - A number is never handed out twice: not if it is a document's serial,
      not if another ticket holds it as its reserved number, not if another
      document (or nobody yet) holds its reservation.

Failure modes:
    - InvalidFormatError: manual number does not match the kind's format.
    - AlreadyInUseError: manual / reserved number collides.
    - TripTicketNotFoundError / RequisitionNotFoundError: a reservation names
      a document that is not of the kind's type in the organization.
    - SequenceExhaustedError: the period's ordinal field is full.
    - IntegrityError on concurrent counter creation (savepoint and re-read).
"""

from datetime import timezone, tzinfo
from typing import Mapping
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from fleet_kernel.domain.clock import Clock
from fleet_kernel.domain.context import ActorContext, Role
from fleet_kernel.domain.control_number import (
    DEFAULT_FORMATS,
    REF_COUNTER_KIND,
    REF_COUNTER_PERIOD,
    ControlNumberFormat,
    DocumentKind,
    ParsedControlNumber,
    ReservationSnapshot,
)
from fleet_kernel.exceptions import (
    AlreadyInUseError,
    PreconditionFailedError,
    RequisitionNotFoundError,
    ReservationNotFoundError,
    TripTicketNotFoundError,
)
from fleet_kernel.logging_config import LogContext, get_logger
from fleet_kernel.models.audit_event import AuditAction
from fleet_kernel.models.requisition import Requisition
from fleet_kernel.models.sequence import (
    ReservationStatus,
    SequenceCounter,
    SerialReservation,
)
from fleet_kernel.models.trip_ticket import TripTicket
from fleet_kernel.services.auditor_service import AuditorService
from fleet_kernel.services.base import BaseService

logger = get_logger("services.sequence")

_RESERVING_ROLES = frozenset({Role.SPMS})


class SequenceAllocator(BaseService[SequenceCounter]):
    """
    Allocates control numbers.  Flushes, never commits.

    ``timezone`` decides which period "now" falls into for automatic
    numbers; manual numbers carry their own period.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        formats: Mapping[DocumentKind, ControlNumberFormat] | None = None,
        timezone: tzinfo = timezone.utc,
        auditor: AuditorService | None = None,
    ):
        super().__init__(session, clock)
        self._formats = dict(formats or DEFAULT_FORMATS)
        self._tz = timezone
        self._auditor = auditor or AuditorService(session, self.clock)

    def format_for(self, kind: DocumentKind) -> ControlNumberFormat:
        return self._formats[DocumentKind(kind)]

    # ------------------------------------------------------------------
    # Counter rows
    # ------------------------------------------------------------------

    def _select_counter(self, kind: str, period: str, organization_id: str):
        return self.session.execute(
            select(SequenceCounter)
            .where(
                SequenceCounter.kind == kind,
                SequenceCounter.period == period,
                SequenceCounter.organization_id == organization_id,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _lock_counter(
        self, kind: str, period: str, organization_id: str, seed: int = 0,
    ) -> SequenceCounter:
        """Lock the counter row, creating it at ``seed`` on first use."""
        counter = self._select_counter(kind, period, organization_id)
        if counter is not None:
            return counter

        savepoint = self.session.begin_nested()
        try:
            counter = SequenceCounter(
                kind=kind,
                period=period,
                organization_id=organization_id,
                current_value=seed,
            )
            self.session.add(counter)
            self.session.flush()
            savepoint.commit()
            logger.debug(
                "sequence_counter_created",
                extra={"kind": kind, "period": period, "seed": seed},
            )
            return counter
        except IntegrityError:
            logger.debug(
                "sequence_counter_race_retry",
                extra={"kind": kind, "period": period},
            )
            savepoint.rollback()
            counter = self._select_counter(kind, period, organization_id)
            if counter is None:
                raise
            return counter

    # ------------------------------------------------------------------
    # Collision checks (caller holds the counter lock)
    # ------------------------------------------------------------------

    def _holder_of(
        self,
        kind: DocumentKind,
        value: str,
        organization_id: str,
        document_id: UUID | None,
    ) -> str | None:
        """Describe who already holds ``value``, or None if it is free."""
        if kind is DocumentKind.DTT:
            ticket = self.session.execute(
                select(TripTicket.id).where(
                    TripTicket.organization_id == organization_id,
                    TripTicket.serial_number == value,
                )
            ).scalar_one_or_none()
            if ticket is not None:
                return f"trip ticket {ticket}"
            holder = self.session.execute(
                select(TripTicket.id).where(
                    TripTicket.organization_id == organization_id,
                    TripTicket.serial_number_reserved == value,
                )
            ).scalars().first()
            if holder is not None and holder != document_id:
                return f"reserved for trip ticket {holder}"
        else:
            requisition = self.session.execute(
                select(Requisition.id).where(
                    Requisition.organization_id == organization_id,
                    Requisition.ris_number == value,
                )
            ).scalar_one_or_none()
            if requisition is not None:
                return f"requisition {requisition}"

        reservation = self._find_reservation(kind, value, organization_id)
        if reservation is not None:
            held_by_caller = (
                document_id is not None
                and reservation.document_id == document_id
                and not reservation.is_used
            )
            if not held_by_caller:
                if reservation.document_id is None:
                    return f"reservation {reservation.id}"
                return f"reservation {reservation.id} for document {reservation.document_id}"
        return None

    def _find_reservation(
        self, kind: DocumentKind, value: str, organization_id: str,
    ) -> SerialReservation | None:
        return self.session.execute(
            select(SerialReservation)
            .where(
                SerialReservation.kind == kind.value,
                SerialReservation.organization_id == organization_id,
                SerialReservation.control_number == value,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _require_document(
        self, kind: DocumentKind, organization_id: str, document_id: UUID,
    ) -> None:
        """A DTT goes to a trip ticket, an RIS to a requisition, of the same organization."""
        model, not_found = (
            (TripTicket, TripTicketNotFoundError)
            if kind is DocumentKind.DTT
            else (Requisition, RequisitionNotFoundError)
        )
        found = self.session.execute(
            select(model.id).where(
                model.id == document_id,
                model.organization_id == organization_id,
            )
        ).scalar_one_or_none()
        if found is None:
            raise not_found(str(document_id))

    # ------------------------------------------------------------------
    # Allocation
    # ------------------------------------------------------------------

    def next_number(self, kind: DocumentKind, organization_id: str) -> str:
        """Automatic allocation: next ordinal of the current period."""
        kind = DocumentKind(kind)
        fmt = self.format_for(kind)
        period = fmt.period_for(self.clock.now(), self._tz)
        counter = self._lock_counter(kind.value, period, organization_id, fmt.seed_offset)

        ordinal = counter.current_value + 1
        value = fmt.format(period, ordinal)
        # Numbers entered outside the counter (imported data) are skipped.
        while self._holder_of(kind, value, organization_id, None) is not None:
            ordinal += 1
            value = fmt.format(period, ordinal)

        counter.current_value = ordinal
        self.session.flush()

        logger.info(
            "control_number_allocated",
            extra={"kind": kind.value, "period": period, "control_number": value},
        )
        return value

    def claim(
        self,
        kind: DocumentKind,
        control_number: str,
        organization_id: str,
        document_id: UUID | None = None,
    ) -> ParsedControlNumber:
        """
        Manual entry: validate ``control_number`` and make it unavailable to
        everyone except ``document_id``.

        Raises:
            InvalidFormatError: malformed number.
            AlreadyInUseError: number issued or held by someone else.
        """
        kind = DocumentKind(kind)
        fmt = self.format_for(kind)
        parsed = fmt.parse(control_number)

        counter = self._lock_counter(
            kind.value, parsed.period, organization_id, fmt.seed_offset,
        )
        holder = self._holder_of(kind, parsed.value, organization_id, document_id)
        if holder is not None:
            logger.warning(
                "control_number_conflict",
                extra={
                    "kind": kind.value,
                    "control_number": parsed.value,
                    "held_by": holder,
                },
            )
            raise AlreadyInUseError(kind.value, parsed.value, holder)

        if counter.current_value < parsed.ordinal:
            counter.current_value = parsed.ordinal
        self.session.flush()

        logger.info(
            "control_number_claimed",
            extra={
                "kind": kind.value,
                "control_number": parsed.value,
                "counter": counter.current_value,
            },
        )
        return parsed

    def reserve(
        self,
        actor: ActorContext,
        kind: DocumentKind,
        control_number: str,
        document_id: UUID | None = None,
    ) -> ReservationSnapshot:
        """
        Pre-reserve a number, standalone or for a given document.

        Reserving the same number again for the same document returns the
        existing reservation.
        """
        kind = DocumentKind(kind)
        if not actor.has_role(_RESERVING_ROLES):
            raise PreconditionFailedError(
                "reserve", "role", {r.value for r in _RESERVING_ROLES}, actor.role.value,
            )

        with LogContext.for_actor(actor, document_id):
            if document_id is not None:
                self._require_document(kind, actor.organization_id, document_id)
            parsed = self.claim(kind, control_number, actor.organization_id, document_id)

            existing = self._find_reservation(kind, parsed.value, actor.organization_id)
            if existing is not None:
                return existing.to_dto()

            reservation = SerialReservation(
                kind=kind.value,
                control_number=parsed.value,
                period=parsed.period,
                ordinal=parsed.ordinal,
                organization_id=actor.organization_id,
                status=ReservationStatus.RESERVED.value,
                document_id=document_id,
                reserved_by=actor.actor_id,
                reserved_at=self.clock.now(),
            )
            self.session.add(reservation)
            self.session.flush()

            self._auditor.record(
                actor,
                "SerialReservation",
                reservation.id,
                AuditAction.CONTROL_NUMBER_RESERVED,
                {
                    "kind": kind.value,
                    "control_number": parsed.value,
                    "document_id": document_id,
                },
            )
            logger.info(
                "control_number_reserved",
                extra={"kind": kind.value, "control_number": parsed.value},
            )
            return reservation.to_dto()

    def attach(
        self,
        actor: ActorContext,
        reservation_id: UUID,
        document_id: UUID,
    ) -> ReservationSnapshot:
        """Hand a standalone reservation to the document that will use it."""
        if not actor.has_role(_RESERVING_ROLES):
            raise PreconditionFailedError(
                "attach", "role", {r.value for r in _RESERVING_ROLES}, actor.role.value,
            )

        reservation = self.session.execute(
            select(SerialReservation)
            .where(
                SerialReservation.id == reservation_id,
                SerialReservation.organization_id == actor.organization_id,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if reservation is None:
            raise ReservationNotFoundError(str(reservation_id))
        self._require_document(
            DocumentKind(reservation.kind), actor.organization_id, document_id,
        )
        if reservation.is_used:
            raise PreconditionFailedError(
                "attach", "reservation_status",
                {ReservationStatus.RESERVED.value}, reservation.status,
            )
        if reservation.document_id is not None and reservation.document_id != document_id:
            raise PreconditionFailedError(
                "attach", "document", {str(reservation.document_id)}, str(document_id),
            )

        reservation.document_id = document_id
        self.session.flush()

        self._auditor.record(
            actor,
            "SerialReservation",
            reservation.id,
            AuditAction.RESERVATION_ATTACHED,
            {"control_number": reservation.control_number, "document_id": document_id},
        )
        logger.info(
            "reservation_attached",
            extra={
                "control_number": reservation.control_number,
                "document_id": str(document_id),
            },
        )
        return reservation.to_dto()

    def issue_for_document(
        self,
        kind: DocumentKind,
        organization_id: str,
        document_id: UUID,
        manual: str | None = None,
    ) -> str:
        """
        Resolve the number a document receives at issuance/approval.

        Order: the manual number if given; else the oldest unused
        reservation held by the document; else the next automatic number.
        A reservation the document holds for the chosen number is marked
        used.
        """
        kind = DocumentKind(kind)
        if manual is not None and manual.strip():
            parsed = self.claim(kind, manual, organization_id, document_id)
            reservation = self._find_reservation(kind, parsed.value, organization_id)
            if reservation is not None:
                self._consume(reservation, document_id)
            return parsed.value

        reservation = self.session.execute(
            select(SerialReservation)
            .where(
                SerialReservation.kind == kind.value,
                SerialReservation.organization_id == organization_id,
                SerialReservation.document_id == document_id,
                SerialReservation.status == ReservationStatus.RESERVED.value,
            )
            .order_by(SerialReservation.reserved_at, SerialReservation.ordinal)
            .limit(1)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if reservation is not None:
            self._consume(reservation, document_id)
            return reservation.control_number

        return self.next_number(kind, organization_id)

    def _consume(self, reservation: SerialReservation, document_id: UUID) -> None:
        reservation.status = ReservationStatus.USED.value
        reservation.document_id = document_id
        reservation.used_at = self.clock.now()
        self.session.flush()
        logger.info(
            "reservation_consumed",
            extra={
                "control_number": reservation.control_number,
                "document_id": str(document_id),
            },
        )

    def next_value(self, name: str, organization_id: str) -> int:
        """Dense integer counter (requisition reference numbers)."""
        counter = self._lock_counter(name, REF_COUNTER_PERIOD, organization_id)
        counter.current_value += 1
        self.session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": name, "value": counter.current_value},
        )
        return counter.current_value

    def next_reference_number(self, organization_id: str) -> int:
        return self.next_value(REF_COUNTER_KIND, organization_id)
