"""
ContractLedger -- balance-tracking ledger for fuel supply contracts.

Responsibility:
    Opens contracts, deducts the cost of verified requisitions, applies
    signed manual adjustments and replays the log to prove the stored
    balance.

Architecture position:
    Kernel > Services -- imperative shell.  ``deduct`` is called by
    RequisitionWorkflow.verify inside the same transaction as the status
    write; the other entry points are called by SPMS directly.

Invariants enforced:
    - Every balance change appends exactly one ContractTransaction whose
      balance_before is the locked balance and whose balance_after is the
      new balance; rows are never edited.
    - ``sequence`` comes from ``Contract.transaction_count`` read under the
      contract's row lock, so rows of one contract are numbered 1..n.
    - Deductions have no floor (the purchase already happened); adjustments
      may not take the balance below zero.

Failure modes:
    - DuplicateContractNumberError: case-insensitive number clash.
    - ContractNotFoundError: unknown id or other organization.
    - InvalidAdjustmentError: adjustment would make the balance negative.
    - LedgerReplayMismatchError: replay diverges from the stored state.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from fleet_kernel.domain.context import ActorContext, Role
from fleet_kernel.domain.ledger import (
    ContractSnapshot,
    ContractStatus,
    ContractTransactionRecord,
    DeductionContext,
    TransactionType,
    status_for_balance,
    verify_ledger,
)
from fleet_kernel.domain.validation import (
    require_nonzero,
    require_positive,
    require_text,
)
from fleet_kernel.exceptions import (
    ContractNotFoundError,
    DuplicateContractNumberError,
    InvalidAdjustmentError,
    PreconditionFailedError,
)
from fleet_kernel.logging_config import LogContext, get_logger
from fleet_kernel.models.audit_event import AuditAction
from fleet_kernel.models.contract import Contract, ContractTransaction
from fleet_kernel.services.auditor_service import AuditorService
from fleet_kernel.services.base import BaseService

logger = get_logger("services.ledger")

_LEDGER_ROLES = frozenset({Role.SPMS})


class ContractLedger(BaseService[Contract]):
    """Contract balance mutations.  Flushes, never commits."""

    model = Contract
    entity_type = "Contract"
    not_found = ContractNotFoundError

    def __init__(self, session, clock=None, auditor: AuditorService | None = None):
        super().__init__(session, clock)
        self._auditor = auditor or AuditorService(session, self.clock)

    def _require_ledger_role(self, operation: str, actor: ActorContext) -> None:
        if not actor.has_role(_LEDGER_ROLES):
            raise PreconditionFailedError(
                operation, "role", {r.value for r in _LEDGER_ROLES}, actor.role.value,
            )

    def _ensure_number_free(
        self, contract_number: str, organization_id: str, exclude: UUID | None = None,
    ) -> str:
        key = Contract.number_key(contract_number)
        stmt = select(Contract.id).where(
            Contract.organization_id == organization_id,
            Contract.contract_number_key == key,
        )
        if exclude is not None:
            stmt = stmt.where(Contract.id != exclude)
        if self.session.execute(stmt).first() is not None:
            raise DuplicateContractNumberError(contract_number.strip(), organization_id)
        return key

    def _append(
        self,
        contract: Contract,
        transaction_type: TransactionType,
        amount: Decimal,
        balance_before: Decimal,
        balance_after: Decimal,
        actor_id: str,
        *,
        requisition_id: UUID | None = None,
        liters: Decimal | None = None,
        price_per_liter: Decimal | None = None,
        remarks: str | None = None,
    ) -> ContractTransaction:
        contract.transaction_count += 1
        row = ContractTransaction(
            contract_id=contract.id,
            sequence=contract.transaction_count,
            transaction_type=transaction_type.value,
            amount=amount,
            balance_before=balance_before,
            balance_after=balance_after,
            requisition_id=requisition_id,
            liters=liters,
            price_per_liter=price_per_liter,
            remarks=remarks,
            actor_id=actor_id,
            occurred_at=self.clock.now(),
        )
        self.session.add(row)
        return row

    def _apply_balance(self, contract: Contract, new_balance: Decimal) -> None:
        contract.remaining_balance = new_balance
        status = status_for_balance(new_balance)
        if status is ContractStatus.EXHAUSTED and not contract.exhausted_at:
            contract.exhausted_at = self.clock.now()
        elif status is ContractStatus.ACTIVE:
            contract.exhausted_at = None
        contract.status = status.value

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def open(
        self,
        actor: ActorContext,
        contract_number: str,
        supplier_id: str,
        total_amount: Decimal,
        start_date: date | None = None,
    ) -> ContractSnapshot:
        """Create a contract with its INITIAL ledger row (0 -> total)."""
        self._require_ledger_role("open", actor)
        contract_number = require_text(contract_number, "contract_number")
        supplier_id = require_text(supplier_id, "supplier_id")
        total = require_positive(total_amount, "total_amount")

        with LogContext.for_actor(actor):
            key = self._ensure_number_free(contract_number, actor.organization_id)
            now = self.clock.now()
            contract = Contract(
                organization_id=actor.organization_id,
                contract_number=contract_number,
                contract_number_key=key,
                supplier_id=supplier_id,
                total_amount=total,
                remaining_balance=total,
                status=ContractStatus.ACTIVE.value,
                start_date=start_date,
                transaction_count=0,
                created_at=now,
                created_by_id=actor.actor_id,
            )
            contract.touch(actor.actor_id, now)
            self.session.add(contract)
            self.session.flush()

            self._append(
                contract, TransactionType.INITIAL, total,
                Decimal("0"), total, actor.actor_id,
            )
            self.session.flush()

            self._auditor.record(
                actor, self.entity_type, contract.id, AuditAction.CONTRACT_OPENED,
                {
                    "contract_number": contract_number,
                    "supplier_id": supplier_id,
                    "total_amount": total,
                },
            )
            logger.info(
                "contract_opened",
                extra={
                    "contract_id": str(contract.id),
                    "contract_number": contract_number,
                    "total_amount": str(total),
                },
            )
            return contract.to_dto()

    def deduct(
        self,
        contract_id: UUID,
        amount: Decimal,
        context: DeductionContext,
    ) -> ContractTransactionRecord:
        """
        Subtract ``amount`` from the locked balance.

        No floor: a purchase larger than the balance overdraws the contract
        and leaves it EXHAUSTED.
        """
        amount = require_positive(amount, "amount")
        actor = context.actor
        contract = self._lock_document(contract_id, actor.organization_id)

        before = contract.remaining_balance
        after = before - amount
        self._apply_balance(contract, after)
        contract.touch(actor.actor_id, self.clock.now())
        row = self._append(
            contract, TransactionType.DEDUCTION, amount, before, after, actor.actor_id,
            requisition_id=context.requisition_id,
            liters=context.liters,
            price_per_liter=context.price_per_liter,
            remarks=context.remarks,
        )
        self.session.flush()

        self._auditor.record(
            actor, self.entity_type, contract.id, AuditAction.CONTRACT_DEDUCTED,
            {
                "sequence": row.sequence,
                "amount": amount,
                "balance_after": after,
                "requisition_id": context.requisition_id,
            },
        )
        log = logger.warning if after < 0 else logger.info
        log(
            "contract_deducted",
            extra={
                "contract_id": str(contract.id),
                "amount": str(amount),
                "balance_before": str(before),
                "balance_after": str(after),
                "status": contract.status,
            },
        )
        return row.to_dto()

    def adjust(
        self,
        actor: ActorContext,
        contract_id: UUID,
        amount: Decimal,
        remarks: str,
    ) -> ContractTransactionRecord:
        """Apply a signed correction; the balance may not go below zero."""
        self._require_ledger_role("adjust", actor)
        amount = require_nonzero(amount, "amount")
        remarks = require_text(remarks, "remarks")

        with LogContext.for_actor(actor, contract_id):
            contract = self._lock_document(contract_id, actor.organization_id)
            before = contract.remaining_balance
            after = before + amount
            if after < 0:
                raise InvalidAdjustmentError(str(contract.id), str(before), str(amount))

            self._apply_balance(contract, after)
            contract.touch(actor.actor_id, self.clock.now())
            row = self._append(
                contract, TransactionType.ADJUSTMENT, amount, before, after,
                actor.actor_id, remarks=remarks,
            )
            self.session.flush()

            self._auditor.record(
                actor, self.entity_type, contract.id, AuditAction.CONTRACT_ADJUSTED,
                {"sequence": row.sequence, "amount": amount, "remarks": remarks},
            )
            logger.info(
                "contract_adjusted",
                extra={
                    "contract_id": str(contract.id),
                    "amount": str(amount),
                    "balance_after": str(after),
                },
            )
            return row.to_dto()

    def update_details(
        self,
        actor: ActorContext,
        contract_id: UUID,
        version: int,
        contract_number: str | None = None,
        supplier_id: str | None = None,
        start_date: date | None = None,
    ) -> ContractSnapshot:
        """Edit descriptive fields.  Never touches the balance."""
        self._require_ledger_role("update_details", actor)
        with LogContext.for_actor(actor, contract_id):
            contract = self._lock_document(contract_id, actor.organization_id)
            self._check_version(contract, version)

            changes: dict[str, object] = {}
            if contract_number is not None:
                contract_number = require_text(contract_number, "contract_number")
                key = self._ensure_number_free(
                    contract_number, actor.organization_id, exclude=contract.id,
                )
                contract.contract_number = contract_number
                contract.contract_number_key = key
                changes["contract_number"] = contract_number
            if supplier_id is not None:
                contract.supplier_id = require_text(supplier_id, "supplier_id")
                changes["supplier_id"] = contract.supplier_id
            if start_date is not None:
                contract.start_date = start_date
                changes["start_date"] = start_date

            contract.touch(actor.actor_id, self.clock.now())
            self._flush_versioned(contract, version)
            self._auditor.record(
                actor, self.entity_type, contract.id, AuditAction.CONTRACT_UPDATED, changes,
            )
            logger.info(
                "contract_updated",
                extra={"contract_id": str(contract.id), "fields": sorted(changes)},
            )
            return contract.to_dto()

    def replay(self, contract_id: UUID) -> Decimal:
        """Recompute the balance from the log and check it against the row."""
        contract = self.session.get(Contract, contract_id)
        if contract is None:
            raise ContractNotFoundError(str(contract_id))
        rows = self.session.execute(
            select(ContractTransaction)
            .where(ContractTransaction.contract_id == contract_id)
            .order_by(ContractTransaction.sequence)
        ).scalars().all()

        balance = verify_ledger(
            str(contract.id),
            [r.to_dto().to_entry() for r in rows],
            contract.remaining_balance,
            contract.total_amount,
        )
        logger.debug(
            "contract_replayed",
            extra={"contract_id": str(contract.id), "rows": len(rows)},
        )
        return balance
