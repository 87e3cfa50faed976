import sys
import os
import io
import logging
from decimal import Decimal

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from config import AccountCreationPolicy, LedgerSettings
from payments_engine import PaymentsEngine
from records import RecordFormatError


def run(tmp_path, lines, **settings):
    csv_file = tmp_path / "test.csv"
    csv_file.write_text('\n'.join(lines))

    engine = PaymentsEngine(LedgerSettings(**settings))
    return {s.client_id: s for s in engine.process_file(str(csv_file))}, engine


class TestPaymentsEngine:
    def test_basic_transactions(self, tmp_path):
        accounts, engine = run(tmp_path, [
            "type, client, tx, amount",
            "deposit, 1, 1, 1.0",
            "deposit, 2, 2, 2.0",
            "deposit, 1, 3, 2.0",
            "withdrawal, 1, 4, 1.5",
            "withdrawal, 2, 5, 3.0",
        ])

        assert set(accounts) == {1, 2}

        assert accounts[1].available == Decimal("1.5")
        assert accounts[1].held == Decimal("0")
        assert accounts[1].total == Decimal("1.5")

        assert accounts[2].available == Decimal("2.0")
        assert accounts[2].held == Decimal("0")
        assert accounts[2].total == Decimal("2.0")

        assert engine.stats.processed == 4
        assert engine.stats.failed == 1
        assert engine.stats.failures_by_code["INVALID_AMOUNT"] == 1

    def test_dispute_resolve(self, tmp_path):
        accounts, _ = run(tmp_path, [
            "type, client, tx, amount",
            "deposit, 1, 1, 100.0",
            "dispute, 1, 1,",
            "resolve, 1, 1,",
        ])

        assert accounts[1].available == Decimal("100")
        assert accounts[1].held == Decimal("0")
        assert accounts[1].locked is False

    def test_chargeback(self, tmp_path):
        accounts, _ = run(tmp_path, [
            "type, client, tx, amount",
            "deposit, 1, 1, 100.0",
            "dispute, 1, 1,",
            "chargeback, 1, 1,",
        ])

        assert accounts[1].available == Decimal("0")
        assert accounts[1].held == Decimal("0")
        assert accounts[1].total == Decimal("0")
        assert accounts[1].locked is True

    def test_dispute_before_deposit_rejected(self, tmp_path):
        """Transactions are applied in file order; an early dispute is not retried."""
        accounts, engine = run(tmp_path, [
            "type, client, tx, amount",
            "dispute, 1, 1,",
            "deposit, 1, 1, 100.0",
        ])

        assert accounts[1].available == Decimal("100")
        assert accounts[1].held == Decimal("0")
        assert engine.stats.failures_by_code["INVALID_CLIENT"] == 1

    def test_non_deposit_for_unknown_client_creates_no_account(self, tmp_path):
        accounts, _ = run(tmp_path, [
            "type, client, tx, amount",
            "deposit, 1, 1, 1.0",
            "dispute, 2, 99,",
            "withdrawal, 3, 5, 1.0",
        ])

        assert set(accounts) == {1}

    def test_unknown_client_account_created_when_allowed(self, tmp_path):
        accounts, _ = run(
            tmp_path,
            [
                "type, client, tx, amount",
                "dispute, 2, 99,",
            ],
            account_creation=AccountCreationPolicy.ON_ANY_TRANSACTION,
        )

        assert accounts[2].total == Decimal("0")
        assert accounts[2].locked is False

    def test_decimal_precision(self, tmp_path):
        accounts, _ = run(tmp_path, [
            "type, client, tx, amount",
            "deposit, 1, 1, 1.2345",
            "deposit, 1, 2, 0.0001",
            "withdrawal, 1, 3, 0.2346",
            "deposit, 1, 4, 0.00001",
        ])

        # 1.2345 + 0.0001 - 0.2346 = 1.0000, the 5-digit deposit is rejected
        assert accounts[1].available == Decimal("1.0000")

    def test_frozen_account_rejects_operations(self, tmp_path):
        accounts, engine = run(tmp_path, [
            "type, client, tx, amount",
            "deposit, 1, 1, 100.0",
            "dispute, 1, 1,",
            "chargeback, 1, 1,",
            "deposit, 1, 2, 50.0",
            "withdrawal, 1, 3, 10.0",
        ])

        assert accounts[1].available == Decimal("0")
        assert accounts[1].total == Decimal("0")
        assert accounts[1].locked is True
        assert engine.stats.failures_by_code["LOCKED_ACCOUNT"] == 2

    def test_chargeback_after_resolve_ignored(self, tmp_path):
        accounts, _ = run(tmp_path, [
            "type, client, tx, amount",
            "deposit, 1, 1, 100.0",
            "dispute, 1, 1,",
            "resolve, 1, 1,",
            "chargeback, 1, 1,",
        ])

        assert accounts[1].available == Decimal("100")
        assert accounts[1].held == Decimal("0")
        assert accounts[1].locked is False

    def test_redispute_after_resolve_rejected(self, tmp_path):
        accounts, engine = run(tmp_path, [
            "type, client, tx, amount",
            "deposit, 1, 1, 100.0",
            "dispute, 1, 1,",
            "resolve, 1, 1,",
            "dispute, 1, 1,",
            "chargeback, 1, 1,",
        ])

        assert accounts[1].available == Decimal("100")
        assert accounts[1].total == Decimal("100")
        assert accounts[1].locked is False
        assert engine.stats.failures_by_code["INVALID_OPERATION"] == 2

    def test_duplicate_deposit_rejected(self, tmp_path):
        accounts, engine = run(tmp_path, [
            "type, client, tx, amount",
            "deposit, 1, 1, 100.0",
            "deposit, 1, 1, 100.0",
            "deposit, 1, 1, 100.0",
        ])

        assert accounts[1].available == Decimal("100")
        assert engine.stats.failures_by_code["INVALID_TX_ID"] == 2

    def test_duplicate_withdrawal_rejected(self, tmp_path):
        accounts, _ = run(tmp_path, [
            "type, client, tx, amount",
            "deposit, 1, 1, 200.0",
            "withdrawal, 1, 2, 50.0",
            "withdrawal, 1, 2, 50.0",
            "withdrawal, 1, 2, 50.0",
        ])

        assert accounts[1].available == Decimal("150")

    def test_malformed_rows_skipped(self, tmp_path):
        accounts, engine = run(tmp_path, [
            "type, client, tx, amount",
            "deposit, 1, 1, 10.0",
            "transfer, 1, 2, 5.0",
            "deposit, x, 3, 5.0",
            "deposit, 1, 4, abc",
            "deposit, 70000, 5, 1.0",
            "DEPOSIT , 1, 6, 2.5 ",
        ])

        assert set(accounts) == {1}
        assert accounts[1].available == Decimal("12.5")
        assert engine.stats.processed == 2
        assert engine.stats.failed == 4
        assert engine.stats.failures_by_code["MALFORMED_RECORD"] == 4

    def test_oversized_field_skipped(self, tmp_path):
        accounts, engine = run(tmp_path, [
            "type, client, tx, amount",
            "deposit, 1, 1, 1.0",
            "deposit, 1, 2, 1" + "0" * 200_000,
            "deposit, 1, 3, 2.0",
        ])

        assert accounts[1].available == Decimal("3.0")
        assert engine.stats.processed == 2
        assert engine.stats.failures_by_code["MALFORMED_RECORD"] == 1

    def test_invalid_utf8_row_skipped(self, tmp_path):
        csv_file = tmp_path / "test.csv"
        csv_file.write_bytes(
            b"type, client, tx, amount\n"
            b"deposit, 1, 1, 1.0\n"
            b"deposit, 1, 2, \xff\xfe\n"
            b"deposit, 1\xff, 3, 1.0\n"
            b"deposit, 1, 4, 2.0\n"
        )

        engine = PaymentsEngine(LedgerSettings())
        accounts = {s.client_id: s for s in engine.process_file(str(csv_file))}

        assert accounts[1].available == Decimal("3.0")
        assert engine.stats.processed == 2
        assert engine.stats.failures_by_code["MALFORMED_RECORD"] == 2

    def test_failures_logged_with_transaction(self, tmp_path, caplog):
        with caplog.at_level(logging.WARNING):
            run(tmp_path, [
                "type, client, tx, amount",
                "dispute, 3, 8,",
            ])

        assert "Failed to process Transaction(dispute, client=3, tx=8, amount=None): INVALID_CLIENT" in caplog.text

    def test_missing_amount_counted(self, tmp_path):
        _, engine = run(tmp_path, [
            "type, client, tx, amount",
            "deposit, 1, 1, 10.0",
            "withdrawal, 1, 2,",
        ])

        assert engine.stats.failures_by_code["MISSING_AMOUNT"] == 1

    def test_header_only(self, tmp_path):
        accounts, _ = run(tmp_path, ["type, client, tx, amount"])
        assert accounts == {}

    def test_missing_header_columns_fatal(self, tmp_path):
        with pytest.raises(RecordFormatError):
            run(tmp_path, ["type, client, amount", "deposit, 1, 1.0"])

    def test_empty_file_fatal(self, tmp_path):
        with pytest.raises(RecordFormatError):
            run(tmp_path, [])

    def test_missing_file(self, tmp_path):
        engine = PaymentsEngine()
        with pytest.raises(OSError):
            engine.process_file(str(tmp_path / "missing.csv"))

    def test_process_stream(self):
        engine = PaymentsEngine()
        accounts = engine.process_stream(io.StringIO("type,client,tx,amount\ndeposit,4,1,3\n"))

        assert len(accounts) == 1
        assert accounts[0].client_id == 4
        assert accounts[0].total == Decimal("3")

    def test_summary_printed_to_stderr(self, tmp_path, capsys):
        run(tmp_path, [
            "type, client, tx, amount",
            "deposit, 1, 1, 1.0",
            "withdrawal, 1, 2, 5.0",
        ])

        captured = capsys.readouterr()
        assert "Processed: 1, Failed: 1 (INVALID_AMOUNT: 1)" in captured.err
        assert captured.out == ""

    def test_summary_breakdown_sorted_by_code(self, tmp_path, capsys):
        run(tmp_path, [
            "type, client, tx, amount",
            "deposit, 1, 1, 1.0",
            "resolve, 1, 1,",
            "withdrawal, 1, 2, 5.0",
            "bogus, 1, 3,",
        ])

        assert "Processed: 1, Failed: 3 (INVALID_AMOUNT: 1, INVALID_OPERATION: 1, MALFORMED_RECORD: 1)" \
            in capsys.readouterr().err

    def test_summary_without_failures(self, tmp_path, capsys):
        run(tmp_path, ["type, client, tx, amount", "deposit, 1, 1, 1.0"])

        err = capsys.readouterr().err
        assert "Processed: 1, Failed: 0" in err
        assert "(" not in err


class TestShardedEngine:
    LINES = [
        "type, client, tx, amount",
        "deposit, 1, 1, 100.0",
        "deposit, 2, 2, 50.0",
        "withdrawal, 1, 3, 30.0",
        "dispute, 2, 2,",
        "deposit, 3, 4, 10.0",
        "dispute, 1, 1,",
        "chargeback, 2, 2,",
        "deposit, 2, 5, 1.0",
        "deposit, 1, 6, 40.0",
        "dispute, 1, 1,",
        "resolve, 1, 1,",
    ]

    @pytest.mark.parametrize("workers", [2, 3, 4])
    def test_matches_sequential_run(self, tmp_path, workers):
        sequential, sequential_engine = run(tmp_path, self.LINES)
        sharded, sharded_engine = run(tmp_path, self.LINES, workers=workers)

        assert sharded == sequential
        assert sharded_engine.stats.summary() == sequential_engine.stats.summary()

    def test_sharded_balances(self, tmp_path):
        accounts, _ = run(tmp_path, self.LINES, workers=2)

        assert accounts[1].available == Decimal("110")
        assert accounts[1].held == Decimal("0")
        assert accounts[2].total == Decimal("0")
        assert accounts[2].locked is True
        assert accounts[3].total == Decimal("10")
