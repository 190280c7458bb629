"""
Typed exception hierarchy for the fleet kernel.

Every error carries a machine-readable ``code`` class attribute and the
structured data needed to act on it.  Callers catch by type and read
attributes; they never parse message strings.

    FleetKernelError (base)
    |
    +-- ValidationError
    |   +-- InvalidFormatError
    |
    +-- PreconditionFailedError
    |
    +-- ConflictError
    |
    +-- AlreadyInUseError
    |   +-- DuplicateContractNumberError
    |
    +-- LedgerError
    |   +-- InvalidAdjustmentError
    |   +-- LedgerReplayMismatchError
    |
    +-- NotFoundError
    |   +-- RequisitionNotFoundError
    |   +-- ContractNotFoundError
    |   +-- TripTicketNotFoundError
    |   +-- ReservationNotFoundError
    |
    +-- SequenceExhaustedError
    +-- TransientStoreError
    +-- ImmutabilityViolationError
    +-- ConfigError

Code                        | When raised
----------------------------|------------------------------------------------
VALIDATION_ERROR            | Malformed or out-of-range input field
INVALID_FORMAT              | Control number does not match its kind's format
PRECONDITION_FAILED         | Wrong role, wrong owner or wrong source status
OPTIMISTIC_LOCK_CONFLICT    | Caller's version differs from the stored one
ALREADY_IN_USE              | Control number already issued or reserved
DUPLICATE_CONTRACT_NUMBER   | Contract number exists in the organization
INVALID_ADJUSTMENT          | Adjustment would drive the balance below zero
LEDGER_REPLAY_MISMATCH      | Transaction log does not reproduce the balance
NOT_FOUND                   | Document absent (or in another organization)
SEQUENCE_EXHAUSTED          | Ordinal exceeds the four-digit field
TRANSIENT_STORE_ERROR       | Retry budget spent on deadlocks / lock timeouts
IMMUTABILITY_VIOLATION      | UPDATE or DELETE of an append-only row
CONFIG_ERROR                | Configuration file missing or invalid
"""

from typing import Any, Iterable


class FleetKernelError(Exception):
    """Base exception for all fleet kernel errors."""

    code: str = "FLEET_KERNEL_ERROR"


# Input validation


class ValidationError(FleetKernelError):
    """A payload field is missing, malformed or out of range."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"Invalid {field}: {message}")


class InvalidFormatError(ValidationError):
    """Control number does not match the configured format of its kind."""

    code: str = "INVALID_FORMAT"

    def __init__(self, kind: str, value: str, expected: str):
        self.kind = kind
        self.value = value
        self.expected = expected
        super().__init__(
            "control_number",
            f"{kind} value {value!r} does not match {expected}",
        )


# Workflow guards


class PreconditionFailedError(FleetKernelError):
    """
    Operation not permitted for this actor or document state.

    ``expected`` is the set of acceptable values (roles or statuses) and
    ``actual`` the value that failed the check.
    """

    code: str = "PRECONDITION_FAILED"

    def __init__(
        self,
        operation: str,
        check: str,
        expected: Iterable[str],
        actual: str | None,
    ):
        self.operation = operation
        self.check = check
        self.expected = tuple(sorted(expected))
        self.actual = actual
        super().__init__(
            f"{operation}: {check} must be one of {list(self.expected)}, "
            f"got {actual!r}"
        )


class ConflictError(FleetKernelError):
    """
    The document changed since the caller read it.

    ``current`` holds a snapshot DTO of the stored document so the caller
    can re-render and retry.
    """

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        expected_version: int | None,
        actual_version: int | None,
        current: Any = None,
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        self.current = current
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            f"expected version {expected_version}, found {actual_version}"
        )


# Uniqueness


class AlreadyInUseError(FleetKernelError):
    """A control number is already issued, reserved or claimed."""

    code: str = "ALREADY_IN_USE"

    def __init__(self, kind: str, value: str, held_by: str):
        self.kind = kind
        self.value = value
        self.held_by = held_by
        super().__init__(f"{kind} number {value} is already in use ({held_by})")


class DuplicateContractNumberError(AlreadyInUseError):
    """Contract number already exists in the organization."""

    code: str = "DUPLICATE_CONTRACT_NUMBER"

    def __init__(self, contract_number: str, organization_id: str):
        self.organization_id = organization_id
        super().__init__("CONTRACT", contract_number, "existing contract")


# Ledger


class LedgerError(FleetKernelError):
    """Base exception for contract ledger errors."""

    code: str = "LEDGER_ERROR"


class InvalidAdjustmentError(LedgerError):
    """Adjustment would leave a negative remaining balance."""

    code: str = "INVALID_ADJUSTMENT"

    def __init__(self, contract_id: str, balance: str, amount: str):
        self.contract_id = contract_id
        self.balance = balance
        self.amount = amount
        super().__init__(
            f"Adjustment {amount} on contract {contract_id} would take "
            f"balance {balance} below zero"
        )


class LedgerReplayMismatchError(LedgerError):
    """Replaying the transaction log does not reproduce the stored state."""

    code: str = "LEDGER_REPLAY_MISMATCH"

    def __init__(
        self,
        contract_id: str,
        sequence: int | None,
        expected: str,
        actual: str,
        reason: str,
    ):
        self.contract_id = contract_id
        self.sequence = sequence
        self.expected = expected
        self.actual = actual
        self.reason = reason
        super().__init__(
            f"Ledger replay mismatch on contract {contract_id} "
            f"(sequence {sequence}): {reason}; expected {expected}, got {actual}"
        )


# Lookup


class NotFoundError(FleetKernelError):
    """Base exception for missing documents."""

    code: str = "NOT_FOUND"
    entity_type: str = "Document"

    def __init__(self, entity_id: str):
        self.entity_id = entity_id
        super().__init__(f"{self.entity_type} not found: {entity_id}")


class RequisitionNotFoundError(NotFoundError):
    entity_type = "Requisition"


class ContractNotFoundError(NotFoundError):
    entity_type = "Contract"


class TripTicketNotFoundError(NotFoundError):
    entity_type = "TripTicket"


class ReservationNotFoundError(NotFoundError):
    entity_type = "SerialReservation"


# Sequence allocation


class SequenceExhaustedError(FleetKernelError):
    """The counter for a period has run past the ordinal field width."""

    code: str = "SEQUENCE_EXHAUSTED"

    def __init__(self, kind: str, period: str, ordinal: int, maximum: int):
        self.kind = kind
        self.period = period
        self.ordinal = ordinal
        self.maximum = maximum
        super().__init__(
            f"{kind} sequence for {period} exhausted: {ordinal} > {maximum}"
        )


# Store


class TransientStoreError(FleetKernelError):
    """Deadlock, serialization failure or lock timeout persisted past retries."""

    code: str = "TRANSIENT_STORE_ERROR"

    def __init__(self, attempts: int, cause: str):
        self.attempts = attempts
        self.cause = cause
        super().__init__(
            f"Transaction failed after {attempts} attempt(s): {cause}"
        )


class ImmutabilityViolationError(FleetKernelError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Configuration


class ConfigError(FleetKernelError):
    """Configuration file is missing, unreadable or invalid."""

    code: str = "CONFIG_ERROR"

    def __init__(self, source: str, message: str):
        self.source = source
        super().__init__(f"Configuration error in {source}: {message}")
