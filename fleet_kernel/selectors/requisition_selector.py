"""
Module: fleet_kernel.selectors.requisition_selector
Responsibility: Read-only queries over requisitions and trip tickets:
    point reads and the filtered, ordered lists used by the role queues
    (EMD review, SPMS issuance, a driver's own documents).
Architecture position: Kernel > Selectors.
"""

from __future__ import annotations

from typing import Iterable
from uuid import UUID

from sqlalchemy import select

from fleet_kernel.domain.requisition import RequisitionSnapshot, RequisitionStatus
from fleet_kernel.domain.trip_ticket import TripTicketSnapshot, TripTicketStatus
from fleet_kernel.exceptions import RequisitionNotFoundError, TripTicketNotFoundError
from fleet_kernel.models.requisition import Requisition
from fleet_kernel.models.trip_ticket import TripTicket
from fleet_kernel.selectors.base import BaseSelector


class RequisitionSelector(BaseSelector[Requisition]):
    """Requisition reads, scoped to one organization."""

    def get(self, organization_id: str, requisition_id: UUID) -> RequisitionSnapshot:
        row = self.session.execute(
            select(Requisition).where(
                Requisition.id == requisition_id,
                Requisition.organization_id == organization_id,
            )
        ).scalar_one_or_none()
        if row is None:
            raise RequisitionNotFoundError(str(requisition_id))
        return row.to_dto()

    def by_ris_number(self, organization_id: str, ris_number: str) -> RequisitionSnapshot | None:
        row = self.session.execute(
            select(Requisition).where(
                Requisition.organization_id == organization_id,
                Requisition.ris_number == ris_number.strip().upper(),
            )
        ).scalar_one_or_none()
        return row.to_dto() if row is not None else None

    def list_requisitions(
        self,
        organization_id: str,
        statuses: Iterable[RequisitionStatus] | None = None,
        requester_id: str | None = None,
        contract_id: UUID | None = None,
        newest_first: bool = True,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[RequisitionSnapshot]:
        """
        Filtered requisition list ordered by reference number.

        Args:
            statuses: Only these statuses (e.g. PENDING_EMD for the EMD queue).
            requester_id: Only one requester's documents.
            contract_id: Only requisitions charged to this contract.
        """
        query = select(Requisition).where(Requisition.organization_id == organization_id)
        if statuses is not None:
            query = query.where(
                Requisition.status.in_([RequisitionStatus(s).value for s in statuses])
            )
        if requester_id is not None:
            query = query.where(Requisition.requester_id == requester_id)
        if contract_id is not None:
            query = query.where(Requisition.contract_id == contract_id)

        order = Requisition.ref_number.desc() if newest_first else Requisition.ref_number
        query = query.order_by(order)
        if limit is not None:
            query = query.limit(limit)
        if offset is not None:
            query = query.offset(offset)

        return [r.to_dto() for r in self.session.execute(query).scalars()]


class TripTicketSelector(BaseSelector[TripTicket]):
    """Trip ticket reads, scoped to one organization."""

    def get(self, organization_id: str, ticket_id: UUID) -> TripTicketSnapshot:
        row = self.session.execute(
            select(TripTicket).where(
                TripTicket.id == ticket_id,
                TripTicket.organization_id == organization_id,
            )
        ).scalar_one_or_none()
        if row is None:
            raise TripTicketNotFoundError(str(ticket_id))
        return row.to_dto()

    def list_tickets(
        self,
        organization_id: str,
        statuses: Iterable[TripTicketStatus] | None = None,
        driver_id: str | None = None,
        limit: int | None = None,
    ) -> list[TripTicketSnapshot]:
        query = select(TripTicket).where(TripTicket.organization_id == organization_id)
        if statuses is not None:
            query = query.where(
                TripTicket.status.in_([TripTicketStatus(s).value for s in statuses])
            )
        if driver_id is not None:
            query = query.where(TripTicket.driver_id == driver_id)
        query = query.order_by(TripTicket.created_at.desc(), TripTicket.id)
        if limit is not None:
            query = query.limit(limit)
        return [t.to_dto() for t in self.session.execute(query).scalars()]
