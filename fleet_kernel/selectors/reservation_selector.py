"""
Module: fleet_kernel.selectors.reservation_selector
Responsibility: Read-only views of control-number reservations and counters.
Architecture position: Kernel > Selectors.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select

from fleet_kernel.domain.control_number import DocumentKind, ReservationSnapshot
from fleet_kernel.models.sequence import ReservationStatus, SequenceCounter, SerialReservation
from fleet_kernel.selectors.base import BaseSelector


class ReservationSelector(BaseSelector[SerialReservation]):

    def list_reservations(
        self,
        organization_id: str,
        kind: DocumentKind | None = None,
        status: ReservationStatus | None = None,
        document_id: UUID | None = None,
    ) -> list[ReservationSnapshot]:
        """Reservations ordered by control number."""
        query = select(SerialReservation).where(
            SerialReservation.organization_id == organization_id,
        )
        if kind is not None:
            query = query.where(SerialReservation.kind == DocumentKind(kind).value)
        if status is not None:
            query = query.where(SerialReservation.status == ReservationStatus(status).value)
        if document_id is not None:
            query = query.where(SerialReservation.document_id == document_id)
        query = query.order_by(SerialReservation.control_number)
        return [r.to_dto() for r in self.session.execute(query).scalars()]

    def unattached(self, organization_id: str, kind: DocumentKind) -> list[ReservationSnapshot]:
        """Standalone reservations still waiting for a document."""
        rows = self.session.execute(
            select(SerialReservation)
            .where(
                SerialReservation.organization_id == organization_id,
                SerialReservation.kind == DocumentKind(kind).value,
                SerialReservation.status == ReservationStatus.RESERVED.value,
                SerialReservation.document_id.is_(None),
            )
            .order_by(SerialReservation.control_number)
        ).scalars()
        return [r.to_dto() for r in rows]

    def counter_value(self, kind: str, period: str, organization_id: str) -> int | None:
        """Current counter value, or None if the period has never been used."""
        return self.session.execute(
            select(SequenceCounter.current_value).where(
                SequenceCounter.kind == kind,
                SequenceCounter.period == period,
                SequenceCounter.organization_id == organization_id,
            )
        ).scalar_one_or_none()
