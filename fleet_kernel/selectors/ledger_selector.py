"""
Module: fleet_kernel.selectors.ledger_selector
Responsibility: Read-only contract queries: contract lookups, transaction
    history in ledger order, and the per-type totals that the balance
    identity is checked against.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - History is returned in ``sequence`` order, the order replay uses.
    - Totals are Decimal; an empty sum is Decimal("0"), never None.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from fleet_kernel.domain.ledger import (
    ContractSnapshot,
    ContractStatus,
    ContractTransactionRecord,
    TransactionType,
)
from fleet_kernel.exceptions import ContractNotFoundError
from fleet_kernel.models.contract import Contract, ContractTransaction
from fleet_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class ContractTotals:
    """Per-type sums over one contract's ledger."""

    contract_id: UUID
    initial: Decimal
    deductions: Decimal
    adjustments: Decimal

    @property
    def expected_balance(self) -> Decimal:
        """totalAmount + adjustments - deductions."""
        return self.initial + self.adjustments - self.deductions


class LedgerSelector(BaseSelector[ContractTransaction]):
    """Contract and ledger reads."""

    def get_contract(self, organization_id: str, contract_id: UUID) -> ContractSnapshot:
        row = self.session.execute(
            select(Contract).where(
                Contract.id == contract_id,
                Contract.organization_id == organization_id,
            )
        ).scalar_one_or_none()
        if row is None:
            raise ContractNotFoundError(str(contract_id))
        return row.to_dto()

    def find_by_number(self, organization_id: str, contract_number: str) -> ContractSnapshot | None:
        """Case-insensitive lookup by contract number."""
        row = self.session.execute(
            select(Contract).where(
                Contract.organization_id == organization_id,
                Contract.contract_number_key == Contract.number_key(contract_number),
            )
        ).scalar_one_or_none()
        return row.to_dto() if row is not None else None

    def list_contracts(
        self,
        organization_id: str,
        status: ContractStatus | None = None,
        supplier_id: str | None = None,
    ) -> list[ContractSnapshot]:
        query = select(Contract).where(Contract.organization_id == organization_id)
        if status is not None:
            query = query.where(Contract.status == ContractStatus(status).value)
        if supplier_id is not None:
            query = query.where(Contract.supplier_id == supplier_id)
        query = query.order_by(Contract.contract_number_key)
        return [c.to_dto() for c in self.session.execute(query).scalars()]

    def all_contract_ids(self) -> list[UUID]:
        return list(
            self.session.execute(select(Contract.id).order_by(Contract.id)).scalars()
        )

    def history(
        self,
        contract_id: UUID,
        transaction_type: TransactionType | None = None,
    ) -> list[ContractTransactionRecord]:
        query = select(ContractTransaction).where(
            ContractTransaction.contract_id == contract_id,
        )
        if transaction_type is not None:
            query = query.where(
                ContractTransaction.transaction_type == TransactionType(transaction_type).value
            )
        query = query.order_by(ContractTransaction.sequence)
        return [t.to_dto() for t in self.session.execute(query).scalars()]

    def deductions_for_requisition(self, requisition_id: UUID) -> list[ContractTransactionRecord]:
        rows = self.session.execute(
            select(ContractTransaction)
            .where(
                ContractTransaction.requisition_id == requisition_id,
                ContractTransaction.transaction_type == TransactionType.DEDUCTION.value,
            )
            .order_by(ContractTransaction.occurred_at)
        ).scalars()
        return [t.to_dto() for t in rows]

    def totals(self, contract_id: UUID) -> ContractTotals:
        """
        Sum amounts per transaction type.

        Summed in Python; SQLite stores amounts as text.
        """
        sums = {t: Decimal("0") for t in TransactionType}
        rows = self.session.execute(
            select(ContractTransaction.transaction_type, ContractTransaction.amount)
            .where(ContractTransaction.contract_id == contract_id)
        ).all()
        for transaction_type, amount in rows:
            sums[TransactionType(transaction_type)] += amount
        return ContractTotals(
            contract_id=contract_id,
            initial=sums[TransactionType.INITIAL],
            deductions=sums[TransactionType.DEDUCTION],
            adjustments=sums[TransactionType.ADJUSTMENT],
        )

    def transaction_count(self, contract_id: UUID) -> int:
        return self.session.execute(
            select(func.count())
            .select_from(ContractTransaction)
            .where(ContractTransaction.contract_id == contract_id)
        ).scalar_one()
