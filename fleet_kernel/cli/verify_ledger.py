"""
Replay every contract ledger and compare it with the stored balances.

For each contract the transaction log is replayed in sequence order; the
chain of balance_before/balance_after values and the final balance must
match the contract row exactly.

Usage:
    fleet-verify-ledger --db-url sqlite:///fleet.db
    python3 -m fleet_kernel.cli.verify_ledger --db-url postgresql://... --contract <uuid>

Exit status is 0 when every ledger replays cleanly, 1 otherwise.
"""

import argparse
import logging
import os
import sys
from uuid import UUID

from fleet_kernel.db.engine import get_session, init_engine_from_url
from fleet_kernel.exceptions import FleetKernelError
from fleet_kernel.selectors.ledger_selector import LedgerSelector
from fleet_kernel.services.ledger_service import ContractLedger

DEFAULT_DB_URL = os.environ.get("DATABASE_URL", "sqlite:///fleet.db")


def verify_all(session, contract_ids=None, out=None) -> int:
    """Replay the given (or all) contracts; return the number of failures."""
    out = out or sys.stdout
    ledger = ContractLedger(session)
    ids = contract_ids or LedgerSelector(session).all_contract_ids()
    failures = 0
    for contract_id in ids:
        try:
            balance = ledger.replay(contract_id)
        except FleetKernelError as exc:
            failures += 1
            print(f"  FAIL  {contract_id}  {exc}", file=out)
        else:
            print(f"  OK    {contract_id}  balance={balance}", file=out)
    print(f"\n  {len(ids)} contract(s) checked, {failures} failure(s)", file=out)
    return failures


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        prog="fleet-verify-ledger",
        description="Replay contract ledgers and verify stored balances.",
    )
    parser.add_argument(
        "--db-url", default=DEFAULT_DB_URL,
        help="Database URL (default: $DATABASE_URL or sqlite:///fleet.db)",
    )
    parser.add_argument(
        "--contract", action="append", type=UUID, default=None,
        help="Contract id to verify (repeatable; default: all contracts)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Emit kernel logs")
    args = parser.parse_args(argv)

    if not args.verbose:
        logging.disable(logging.CRITICAL)

    try:
        init_engine_from_url(args.db_url, echo=False)
    except Exception as exc:
        print(f"  ERROR: {exc}", file=sys.stderr)
        return 1

    session = get_session()
    try:
        return 1 if verify_all(session, args.contract) else 0
    finally:
        session.close()


if __name__ == "__main__":
    sys.exit(main())
