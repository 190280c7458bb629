"""
BaseService -- abstract base for the workflow services.

Services receive a SQLAlchemy ``Session`` and a ``Clock``, flush their
changes and never commit or roll back; the caller (usually
``run_in_transaction``) owns the transaction boundary.

The shared document helpers implement the read half of optimistic
concurrency: re-read the row inside the transaction (row-locked where the
store supports it), then compare the version the caller saw.
"""

from abc import ABC
from typing import ClassVar, Generic, TypeVar
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from fleet_kernel.db.base import Base
from fleet_kernel.domain.clock import Clock, SystemClock
from fleet_kernel.exceptions import ConflictError, NotFoundError

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all kernel services.

    Subclasses that manage a versioned document set ``model``,
    ``entity_type`` and ``not_found``.
    """

    model: ClassVar[type | None] = None
    entity_type: ClassVar[str] = "Document"
    not_found: ClassVar[type[NotFoundError]] = NotFoundError

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self.clock = clock or SystemClock()

    def _lock_document(self, document_id: UUID, organization_id: str) -> ModelType:
        """
        Re-read a document of the caller's organization under a row lock.

        Raises:
            NotFoundError subclass: absent, or owned by another organization.
        """
        row = self.session.execute(
            select(self.model)
            .where(
                self.model.id == document_id,
                self.model.organization_id == organization_id,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if row is None:
            raise self.not_found(str(document_id))
        return row

    def _check_version(self, row: ModelType, expected_version: int) -> None:
        if row.version != expected_version:
            raise ConflictError(
                self.entity_type,
                str(row.id),
                expected_version,
                row.version,
                current=row.to_dto(),
            )

    def _flush_versioned(self, row: ModelType, expected_version: int) -> None:
        """Flush; a lost version race surfaces as ConflictError."""
        try:
            self.session.flush()
        except StaleDataError as exc:
            raise ConflictError(
                self.entity_type, str(row.id), expected_version, None,
            ) from exc
