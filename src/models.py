import threading
from collections import Counter
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Dict, Optional

MAX_CLIENT_ID = 2**16 - 1
MAX_TRANSACTION_ID = 2**32 - 1


class TransactionType(Enum):
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    DISPUTE = "dispute"
    RESOLVE = "resolve"
    CHARGEBACK = "chargeback"


class DepositStatus(Enum):
    """
    Dispute lifecycle of a deposit.
    NORMAL -> DISPUTED -> RESOLVED | CHARGED_BACK, never backwards.
    """

    NORMAL = "normal"
    DISPUTED = "disputed"
    RESOLVED = "resolved"
    CHARGED_BACK = "charged_back"


@dataclass(frozen=True)
class Transaction:
    transaction_type: TransactionType
    client_id: int
    transaction_id: int
    amount: Optional[Decimal] = None

    def __repr__(self) -> str:
        return f"Transaction({self.transaction_type.value}, client={self.client_id}, tx={self.transaction_id}, amount={self.amount})"


@dataclass
class DepositRecord:
    amount: Decimal
    status: DepositStatus = DepositStatus.NORMAL


@dataclass(frozen=True)
class AccountSnapshot:
    """Read-only view of one account, as reported at the end of a run."""

    client_id: int
    available: Decimal
    held: Decimal
    total: Decimal
    locked: bool


class ProcessingStats:
    """Thread-safe counters for tracking processing statistics."""

    def __init__(self):
        self._lock = threading.Lock()
        self.processed = 0
        self.failed = 0
        self.failures_by_code: Counter = Counter()

    def record_success(self):
        with self._lock:
            self.processed += 1

    def record_failure(self, code: str):
        with self._lock:
            self.failed += 1
            self.failures_by_code[code] += 1

    def summary(self) -> Dict[str, int]:
        with self._lock:
            return {"processed": self.processed, "failed": self.failed, **self.failures_by_code}
