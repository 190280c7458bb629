"""
Concurrent issuance and deduction tests.

Each worker runs its unit of work through run_in_transaction in its own
session, the way a request handler would.  The counter row and the contract
row are the serialization points; the outcome must be the same as if the
workers had run one after another.

On SQLite every transaction takes the database write lock at BEGIN, so the
workers queue on the lock; on PostgreSQL (DATABASE_URL) they queue on the
row locks.
"""

from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from threading import Barrier

import pytest

from fleet_config.bridges import build_control_number_formats, build_timezone
from fleet_kernel.db.engine import run_in_transaction
from fleet_kernel.domain.context import ActorContext, Role
from fleet_kernel.domain.control_number import DocumentKind
from fleet_kernel.domain.ledger import DeductionContext
from fleet_kernel.exceptions import AlreadyInUseError
from fleet_kernel.selectors.ledger_selector import LedgerSelector
from fleet_kernel.services.auditor_service import AuditorService
from fleet_kernel.services.ledger_service import ContractLedger
from fleet_kernel.services.requisition_service import RequisitionWorkflow
from fleet_kernel.services.sequence_service import SequenceAllocator
from tests.builders import ORG, requisition_details

pytestmark = pytest.mark.slow_locks

WORKERS = 8

DRIVER = ActorContext("drv-1", Role.DRIVER, ORG)
EMD = ActorContext("emd-1", Role.EMD, ORG)
SPMS = ActorContext("spms-1", Role.SPMS, ORG)


@pytest.fixture
def make_services(db_engine, deterministic_clock, fleet_config):
    formats = build_control_number_formats(fleet_config)
    tz = build_timezone(fleet_config)

    def _make(session):
        auditor = AuditorService(session, deterministic_clock)
        allocator = SequenceAllocator(
            session, deterministic_clock, formats=formats, timezone=tz, auditor=auditor,
        )
        ledger = ContractLedger(session, deterministic_clock, auditor=auditor)
        workflow = RequisitionWorkflow(
            session, deterministic_clock, allocator=allocator, ledger=ledger, auditor=auditor,
        )
        return allocator, ledger, workflow

    return _make


def _run_parallel(fn, args):
    barrier = Barrier(len(args))

    def _worker(arg):
        barrier.wait()
        return fn(arg)

    with ThreadPoolExecutor(max_workers=len(args)) as pool:
        return list(pool.map(_worker, args))


def test_parallel_automatic_numbers_are_consecutive(make_services):
    def allocate(_):
        return run_in_transaction(
            lambda s: make_services(s)[0].next_number(DocumentKind.RIS, ORG)
        )

    numbers = _run_parallel(allocate, list(range(WORKERS)))

    assert sorted(numbers) == [f"2025-01-{8225 + i}" for i in range(WORKERS)]


def test_parallel_ris_issuance(make_services):
    def setup(session):
        _, ledger, workflow = make_services(session)
        contract = ledger.open(SPMS, "CT-2025-001", "SUP-PETRON", Decimal("100000"))
        validated = []
        for _ in range(WORKERS):
            req = workflow.submit(DRIVER, requisition_details("20"))
            req = workflow.validate(EMD, req.id, req.version, contract.id, Decimal("20"))
            validated.append((req.id, req.version))
        return validated

    validated = run_in_transaction(setup)

    def issue(item):
        requisition_id, version = item
        return run_in_transaction(
            lambda s: make_services(s)[2].issue(SPMS, requisition_id, version, Decimal("65.50"))
        ).ris_number

    numbers = _run_parallel(issue, validated)

    assert len(set(numbers)) == WORKERS
    assert sorted(numbers) == [f"2025-01-{8225 + i}" for i in range(WORKERS)]


def test_parallel_deductions_sum_exactly(make_services):
    contract = run_in_transaction(
        lambda s: make_services(s)[1].open(SPMS, "CT-2025-001", "SUP-PETRON", Decimal("10000"))
    )

    def deduct(_):
        return run_in_transaction(
            lambda s: make_services(s)[1].deduct(
                contract.id, Decimal("123.45"), DeductionContext(actor=SPMS),
            )
        ).sequence

    sequences = _run_parallel(deduct, list(range(WORKERS)))

    assert sorted(sequences) == list(range(2, WORKERS + 2))

    def check(session):
        _, ledger, _ = make_services(session)
        snapshot = LedgerSelector(session).get_contract(ORG, contract.id)
        return snapshot.remaining_balance, ledger.replay(contract.id)

    balance, replayed = run_in_transaction(check)
    expected = Decimal("10000") - WORKERS * Decimal("123.45")
    assert balance == expected
    assert replayed == expected


def test_parallel_reservations_of_one_number(make_services):
    def reserve(_):
        try:
            return run_in_transaction(
                lambda s: make_services(s)[0].reserve(SPMS, DocumentKind.DTT, "DTT-2025-0042")
            ).control_number
        except AlreadyInUseError:
            return "IN_USE"

    outcomes = _run_parallel(reserve, list(range(WORKERS)))

    assert outcomes.count("DTT-2025-0042") == 1
    assert outcomes.count("IN_USE") == WORKERS - 1


def test_manual_and_automatic_numbers_interleave(make_services):
    manual = [f"2025-01-{8226 + 2 * i}" for i in range(WORKERS // 2)]

    def allocate(arg):
        def work(session):
            allocator = make_services(session)[0]
            if arg is None:
                return allocator.next_number(DocumentKind.RIS, ORG)
            return allocator.reserve(SPMS, DocumentKind.RIS, arg).control_number
        return run_in_transaction(work)

    numbers = _run_parallel(allocate, manual + [None] * (WORKERS - len(manual)))

    assert len(set(numbers)) == WORKERS
    assert set(manual) <= set(numbers)
    following = run_in_transaction(
        lambda s: make_services(s)[0].next_number(DocumentKind.RIS, ORG)
    )
    highest = max(int(number.rsplit("-", 1)[1]) for number in numbers)
    assert int(following.rsplit("-", 1)[1]) == highest + 1
