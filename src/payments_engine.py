import logging
import sys
import threading
from typing import List, Optional, TextIO

from config import LedgerSettings
from errors import TransactionError
from message_queue import ShardedQueue
from models import AccountSnapshot, ProcessingStats, Transaction
from records import RecordFormatError, read_transactions
from transaction_router import TransactionRouter

logger = logging.getLogger(__name__)


class PaymentsEngine:
    """
    Drives a CSV transaction stream through the router.

    With one worker every transaction is routed in file order on the calling
    thread. With more, a publisher shards transactions by client id and one
    consumer thread per shard routes them; per-client order is preserved, so
    the final balances match a sequential run.
    """

    def __init__(self, settings: Optional[LedgerSettings] = None):
        self._settings = settings or LedgerSettings()
        self._router = TransactionRouter(
            account_creation=self._settings.account_creation,
            deduplicate_withdrawals=self._settings.deduplicate_withdrawals,
        )
        self._stats = ProcessingStats()

    @property
    def stats(self) -> ProcessingStats:
        return self._stats

    @property
    def router(self) -> TransactionRouter:
        return self._router

    def process_file(self, filepath: str) -> List[AccountSnapshot]:
        """Process CSV file and return final account states."""
        # Undecodable bytes become surrogates so only the rows holding them are rejected
        with open(filepath, "r", newline="", encoding="utf-8", errors="surrogateescape") as f:
            return self.process_stream(f)

    def process_stream(self, stream: TextIO) -> List[AccountSnapshot]:
        transactions = read_transactions(stream, on_malformed=self._record_malformed)

        if self._settings.workers == 1:
            for transaction in transactions:
                self._process_transaction(transaction)
        else:
            self._process_sharded(transactions, self._settings.workers)

        # Print final processing report to stderr
        print(self._format_report(), file=sys.stderr)

        return self._router.snapshot()

    def _format_report(self) -> str:
        summary = self._stats.summary()
        report = f"Processed: {summary.pop('processed')}, Failed: {summary.pop('failed')}"
        if summary:
            breakdown = ", ".join(f"{code}: {count}" for code, count in sorted(summary.items()))
            report += f" ({breakdown})"
        return report

    def _record_malformed(self, error: RecordFormatError) -> None:
        self._stats.record_failure(error.code)

    def _process_sharded(self, transactions, workers: int) -> None:
        logger.info(f"Starting sharded processing with {workers} consumers")
        queue = ShardedQueue(workers)

        consumer_threads = []
        for shard in range(queue.shard_count):
            consumer_thread = threading.Thread(target=self._consume_transactions, args=(queue, shard))
            consumer_thread.start()
            consumer_threads.append(consumer_thread)

        try:
            for transaction in transactions:
                queue.publish_message(transaction)
        finally:
            queue.shutdown()
            for consumer_thread in consumer_threads:
                consumer_thread.join()

        logger.info("Sharded processing complete")

    def _consume_transactions(self, queue: ShardedQueue, shard: int) -> None:
        """Consumer loop: pull from one shard until it is drained after shutdown."""
        while True:
            transaction = queue.consume_message(shard)
            if transaction is None:
                if queue.is_shutdown() and queue.is_empty(shard):
                    break
                continue

            self._process_transaction(transaction)

    def _process_transaction(self, transaction: Transaction) -> None:
        try:
            self._router.route(transaction)
        except TransactionError as e:
            self._stats.record_failure(e.code)
            logger.warning(f"Failed to process {transaction}: {e}")
        else:
            self._stats.record_success()
