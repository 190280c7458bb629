"""
Contract balance ledger -- pure core (``fleet_kernel.domain.ledger``).

Every change to a contract's remaining balance is one immutable
transaction row carrying the balance before and after.  Replaying the rows
in sequence order must reproduce the stored balance:

    INITIAL     delta = +amount   (amount = contract total)
    DEDUCTION   delta = -amount   (amount > 0, no floor)
    ADJUSTMENT  delta = amount    (signed, non-zero)

Zero I/O; the service layer feeds ORM rows through ``LedgerEntry``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Iterable
from uuid import UUID

from fleet_kernel.domain.context import ActorContext
from fleet_kernel.exceptions import LedgerReplayMismatchError


class TransactionType(str, Enum):
    INITIAL = "INITIAL"
    DEDUCTION = "DEDUCTION"
    ADJUSTMENT = "ADJUSTMENT"


class ContractStatus(str, Enum):
    ACTIVE = "ACTIVE"
    EXHAUSTED = "EXHAUSTED"


def status_for_balance(balance: Decimal) -> ContractStatus:
    """A contract is exhausted once nothing (or less than nothing) remains."""
    return ContractStatus.EXHAUSTED if balance <= 0 else ContractStatus.ACTIVE


@dataclass(frozen=True)
class LedgerEntry:
    sequence: int
    transaction_type: TransactionType
    amount: Decimal
    balance_before: Decimal
    balance_after: Decimal

    @property
    def delta(self) -> Decimal:
        if self.transaction_type is TransactionType.DEDUCTION:
            return -self.amount
        return self.amount


def replay_balance(entries: Iterable[LedgerEntry]) -> Decimal:
    """Sum of deltas in sequence order."""
    return sum(
        (e.delta for e in sorted(entries, key=lambda e: e.sequence)),
        Decimal("0"),
    )


def verify_ledger(
    contract_id: str,
    entries: Iterable[LedgerEntry],
    remaining_balance: Decimal,
    total_amount: Decimal,
) -> Decimal:
    """
    Check a contract's transaction log against its stored state.

    The log must start with exactly one INITIAL row for ``total_amount``,
    sequences must be 1..n without gaps, each row's balance_before must be
    the previous row's balance_after, each balance_after must equal
    balance_before + delta, and the final balance must equal
    ``remaining_balance``.

    Returns the replayed balance.

    Raises:
        LedgerReplayMismatchError: on the first divergence found.
    """
    ordered = sorted(entries, key=lambda e: e.sequence)
    if not ordered:
        raise LedgerReplayMismatchError(
            contract_id, None, "INITIAL row", "no rows", "empty ledger",
        )

    first = ordered[0]
    if first.transaction_type is not TransactionType.INITIAL:
        raise LedgerReplayMismatchError(
            contract_id, first.sequence, TransactionType.INITIAL.value,
            first.transaction_type.value, "ledger must open with INITIAL",
        )
    if first.amount != total_amount:
        raise LedgerReplayMismatchError(
            contract_id, first.sequence, str(total_amount), str(first.amount),
            "INITIAL amount differs from contract total",
        )

    balance = Decimal("0")
    for expected_seq, entry in enumerate(ordered, start=1):
        if entry.sequence != expected_seq:
            raise LedgerReplayMismatchError(
                contract_id, entry.sequence, str(expected_seq), str(entry.sequence),
                "sequence gap",
            )
        if expected_seq > 1 and entry.transaction_type is TransactionType.INITIAL:
            raise LedgerReplayMismatchError(
                contract_id, entry.sequence, "DEDUCTION|ADJUSTMENT",
                entry.transaction_type.value, "second INITIAL row",
            )
        if entry.balance_before != balance:
            raise LedgerReplayMismatchError(
                contract_id, entry.sequence, str(balance), str(entry.balance_before),
                "balance_before breaks the chain",
            )
        balance = balance + entry.delta
        if entry.balance_after != balance:
            raise LedgerReplayMismatchError(
                contract_id, entry.sequence, str(balance), str(entry.balance_after),
                "balance_after is not balance_before + delta",
            )

    if balance != remaining_balance:
        raise LedgerReplayMismatchError(
            contract_id, ordered[-1].sequence, str(balance), str(remaining_balance),
            "stored remaining balance differs from replay",
        )
    return balance


# ---------------------------------------------------------------------------
# DTOs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DeductionContext:
    """Why a deduction happens: the verifying actor and the source document."""

    actor: ActorContext
    requisition_id: UUID | None = None
    liters: Decimal | None = None
    price_per_liter: Decimal | None = None
    remarks: str | None = None


@dataclass(frozen=True)
class ContractSnapshot:
    id: UUID
    organization_id: str
    contract_number: str
    supplier_id: str
    total_amount: Decimal
    remaining_balance: Decimal
    status: ContractStatus
    start_date: date | None
    exhausted_at: datetime | None
    transaction_count: int
    version: int
    created_at: datetime


@dataclass(frozen=True)
class ContractTransactionRecord:
    id: UUID
    contract_id: UUID
    sequence: int
    transaction_type: TransactionType
    amount: Decimal
    balance_before: Decimal
    balance_after: Decimal
    requisition_id: UUID | None
    liters: Decimal | None
    price_per_liter: Decimal | None
    remarks: str | None
    actor_id: str
    occurred_at: datetime

    def to_entry(self) -> LedgerEntry:
        return LedgerEntry(
            sequence=self.sequence,
            transaction_type=self.transaction_type,
            amount=self.amount,
            balance_before=self.balance_before,
            balance_after=self.balance_after,
        )
