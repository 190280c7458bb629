"""
Module: fleet_kernel.models.contract
Responsibility: ORM persistence for fuel supply contracts and their
    balance ledger.
Architecture position: Kernel > Models.  May import from db/base.py,
    domain/ and exceptions only.

Invariants enforced:
    - contract_number is unique per organization, compared case-insensitively
      (``contract_number_key`` holds the folded form under a unique constraint).
    - ContractTransaction rows are append-only (ORM listeners) and ordered by
      a per-contract ``sequence`` allocated from ``Contract.transaction_count``
      while the contract row is locked.
    - Contracts are never deleted.

Audit relevance:
    Replaying a contract's transactions in sequence order reproduces
    remaining_balance exactly; ``fleet-verify-ledger`` checks this.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column

from fleet_kernel.db.base import Base, TrackedBase, TZDateTime, UUIDString
from fleet_kernel.domain.ledger import (
    ContractSnapshot,
    ContractStatus,
    ContractTransactionRecord,
    TransactionType,
)
from fleet_kernel.exceptions import ImmutabilityViolationError


class Contract(TrackedBase):
    """A prepaid fuel contract with a supplier and its remaining balance."""

    __tablename__ = "contracts"

    __table_args__ = (
        UniqueConstraint(
            "organization_id", "contract_number_key", name="uq_contract_number",
        ),
        CheckConstraint(
            "status IN ('ACTIVE', 'EXHAUSTED')",
            name="ck_contracts_valid_status",
        ),
        Index("idx_contract_org_status", "organization_id", "status"),
    )

    organization_id: Mapped[str] = mapped_column(String(64), nullable=False)
    contract_number: Mapped[str] = mapped_column(String(100), nullable=False)
    contract_number_key: Mapped[str] = mapped_column(String(100), nullable=False)
    supplier_id: Mapped[str] = mapped_column(String(64), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(nullable=False)
    remaining_balance: Mapped[Decimal] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ContractStatus.ACTIVE.value,
    )
    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    exhausted_at: Mapped[datetime | None] = mapped_column(TZDateTime(), nullable=True)
    transaction_count: Mapped[int] = mapped_column(nullable=False, default=0)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<Contract {self.contract_number} balance={self.remaining_balance} "
            f"status={self.status}>"
        )

    @staticmethod
    def number_key(contract_number: str) -> str:
        return contract_number.strip().casefold()

    @property
    def is_active(self) -> bool:
        return self.status == ContractStatus.ACTIVE.value

    def to_dto(self) -> ContractSnapshot:
        return ContractSnapshot(
            id=self.id,
            organization_id=self.organization_id,
            contract_number=self.contract_number,
            supplier_id=self.supplier_id,
            total_amount=self.total_amount,
            remaining_balance=self.remaining_balance,
            status=ContractStatus(self.status),
            start_date=self.start_date,
            exhausted_at=self.exhausted_at,
            transaction_count=self.transaction_count,
            version=self.version,
            created_at=self.created_at,
        )


class ContractTransaction(Base):
    """One immutable balance movement on a contract."""

    __tablename__ = "contract_transactions"

    __table_args__ = (
        UniqueConstraint("contract_id", "sequence", name="uq_contract_transaction_seq"),
        CheckConstraint(
            "transaction_type IN ('INITIAL', 'DEDUCTION', 'ADJUSTMENT')",
            name="ck_contract_transactions_valid_type",
        ),
        Index("idx_contract_tx_requisition", "requisition_id"),
    )

    contract_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("contracts.id"), nullable=False,
    )
    sequence: Mapped[int] = mapped_column(nullable=False)
    transaction_type: Mapped[str] = mapped_column(String(20), nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    balance_before: Mapped[Decimal] = mapped_column(nullable=False)
    balance_after: Mapped[Decimal] = mapped_column(nullable=False)
    requisition_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    liters: Mapped[Decimal | None] = mapped_column(nullable=True)
    price_per_liter: Mapped[Decimal | None] = mapped_column(nullable=True)
    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)
    actor_id: Mapped[str] = mapped_column(String(64), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(TZDateTime(), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<ContractTransaction #{self.sequence} {self.transaction_type} "
            f"{self.amount} -> {self.balance_after}>"
        )

    def to_dto(self) -> ContractTransactionRecord:
        return ContractTransactionRecord(
            id=self.id,
            contract_id=self.contract_id,
            sequence=self.sequence,
            transaction_type=TransactionType(self.transaction_type),
            amount=self.amount,
            balance_before=self.balance_before,
            balance_after=self.balance_after,
            requisition_id=self.requisition_id,
            liters=self.liters,
            price_per_liter=self.price_per_liter,
            remarks=self.remarks,
            actor_id=self.actor_id,
            occurred_at=self.occurred_at,
        )


@event.listens_for(Contract, "before_delete")
def prevent_contract_delete(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="Contract",
        entity_id=str(target.id),
        reason="contracts are never deleted",
    )


@event.listens_for(ContractTransaction, "before_update")
def prevent_contract_transaction_update(mapper, connection, target):
    """Ledger rows are append-only; corrections are new ADJUSTMENT rows."""
    raise ImmutabilityViolationError(
        entity_type="ContractTransaction",
        entity_id=str(target.id),
        reason="ledger rows cannot be modified",
    )


@event.listens_for(ContractTransaction, "before_delete")
def prevent_contract_transaction_delete(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="ContractTransaction",
        entity_id=str(target.id),
        reason="ledger rows cannot be deleted",
    )
