import csv
import logging
from decimal import Decimal, InvalidOperation
from typing import Callable, Dict, Iterable, Iterator, Optional, TextIO

from amounts import format_amount
from models import MAX_CLIENT_ID, MAX_TRANSACTION_ID, AccountSnapshot, Transaction, TransactionType

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("type", "client", "tx")
OUTPUT_COLUMNS = ("client", "available", "held", "total", "locked")


class RecordFormatError(ValueError):
    """A CSV header or row that cannot be decoded into a Transaction."""

    code = "MALFORMED_RECORD"


def parse_csv_row(row: Dict[str, Optional[str]]) -> Transaction:
    """Parse CSV row into Transaction."""
    normalized = {
        k.strip().lower(): (v or "").strip()
        for k, v in row.items()
        if isinstance(k, str)
    }

    try:
        transaction_type = TransactionType(normalized["type"].lower())
    except KeyError:
        raise RecordFormatError("missing type")
    except ValueError:
        raise RecordFormatError(f"unknown transaction type {normalized['type']!r}")

    client_id = _parse_id(normalized, "client", MAX_CLIENT_ID)
    transaction_id = _parse_id(normalized, "tx", MAX_TRANSACTION_ID)

    amount = None
    amount_str = normalized.get("amount", "")
    if amount_str:
        try:
            amount = Decimal(amount_str)
        except (InvalidOperation, ValueError):
            raise RecordFormatError(f"invalid amount {amount_str!r}")
        if not amount.is_finite():
            raise RecordFormatError(f"invalid amount {amount_str!r}")

    return Transaction(
        transaction_type=transaction_type,
        client_id=client_id,
        transaction_id=transaction_id,
        amount=amount,
    )


def _parse_id(normalized: Dict[str, str], column: str, maximum: int) -> int:
    raw = normalized.get(column, "")
    if not (raw.isascii() and raw.isdigit()):
        raise RecordFormatError(f"invalid {column} {raw!r}")

    value = int(raw)
    if value > maximum:
        raise RecordFormatError(f"{column} {value} out of range 0..{maximum}")
    return value


def _check_encoding(row: Dict[str, Optional[str]]) -> None:
    # Input is opened with errors="surrogateescape"; undecodable bytes survive
    # as lone surrogates and only the row holding them is rejected.
    for value in row.values():
        if isinstance(value, str):
            try:
                value.encode("utf-8")
            except UnicodeEncodeError:
                raise RecordFormatError("row contains bytes that are not valid UTF-8")


def read_transactions(
    stream: TextIO,
    on_malformed: Optional[Callable[[RecordFormatError], None]] = None,
) -> Iterator[Transaction]:
    """
    Yield transactions from a CSV stream in file order.

    A missing or incomplete header is fatal (RecordFormatError). Rows that
    fail to decode, including rows the csv module itself refuses, are logged,
    reported to on_malformed and skipped.
    """
    reader = csv.DictReader(stream, skipinitialspace=True)
    if reader.fieldnames is None:
        raise RecordFormatError("input has no header")

    columns = {name.strip().lower() for name in reader.fieldnames if name}
    missing = [name for name in REQUIRED_COLUMNS if name not in columns]
    if missing:
        raise RecordFormatError(f"header is missing columns: {', '.join(missing)}")

    while True:
        row = None
        try:
            row = next(reader)
            _check_encoding(row)
            transaction = parse_csv_row(row)
        except StopIteration:
            return
        except (csv.Error, RecordFormatError) as e:
            error = e if isinstance(e, RecordFormatError) else RecordFormatError(str(e))
            logger.warning(f"Failed to parse row {reader.line_num} {row if row is not None else ''}: {error}")
            if on_malformed is not None:
                on_malformed(error)
            continue

        yield transaction


def write_accounts(snapshots: Iterable[AccountSnapshot], stream: TextIO) -> None:
    """Write one CSV row per account, sorted by client id."""
    writer = csv.writer(stream, lineterminator="\n")
    writer.writerow(OUTPUT_COLUMNS)
    for snapshot in sorted(snapshots, key=lambda s: s.client_id):
        writer.writerow([
            snapshot.client_id,
            format_amount(snapshot.available),
            format_amount(snapshot.held),
            format_amount(snapshot.total),
            str(snapshot.locked).lower(),
        ])
