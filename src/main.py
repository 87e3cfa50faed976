import argparse
import csv
import logging
import sys
from typing import List, Optional

from pydantic import ValidationError

from config import AccountCreationPolicy, LedgerSettings
from payments_engine import PaymentsEngine
from records import RecordFormatError, write_accounts

logger = logging.getLogger(__name__)


def _parse_args(argv: Optional[List[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="toy-ledger",
        description="Apply a CSV stream of transactions and print final client balances as CSV.",
    )
    parser.add_argument("input", help="Path to the transactions CSV (type, client, tx, amount).")
    parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Consumer threads, transactions sharded by client id (default: LEDGER_WORKERS or 1).",
    )
    parser.add_argument(
        "--allow-unknown-clients",
        action="store_true",
        help="Open a zero-balance account for any transaction, not only deposits.",
    )
    parser.add_argument(
        "--allow-duplicate-withdrawals",
        action="store_true",
        help="Do not reject withdrawals that reuse a transaction id.",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="DEBUG, INFO, WARNING or ERROR (default: LEDGER_LOG_LEVEL or WARNING).",
    )
    return parser.parse_args(argv)


def _build_settings(args: argparse.Namespace) -> LedgerSettings:
    overrides = {}
    if args.workers is not None:
        overrides["workers"] = args.workers
    if args.allow_unknown_clients:
        overrides["account_creation"] = AccountCreationPolicy.ON_ANY_TRANSACTION
    if args.allow_duplicate_withdrawals:
        overrides["deduplicate_withdrawals"] = False
    if args.log_level is not None:
        overrides["log_level"] = args.log_level
    return LedgerSettings(**overrides)


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)

    try:
        settings = _build_settings(args)
    except ValidationError as e:
        print(f"Invalid settings: {e}", file=sys.stderr)
        return 2

    logging.basicConfig(
        level=settings.log_level,
        format="%(levelname)s: %(message)s",
        stream=sys.stderr,
    )

    engine = PaymentsEngine(settings)
    try:
        accounts = engine.process_file(args.input)
    except (OSError, UnicodeDecodeError, csv.Error, RecordFormatError) as e:
        logger.error(f"Cannot process {args.input}: {e}")
        return 1

    write_accounts(accounts, sys.stdout)
    return 0


if __name__ == "__main__":
    sys.exit(main())
