import logging
from decimal import Decimal
from typing import Dict, Optional, Set

from amounts import ZERO, checked_add, checked_sub, to_fixed_scale
from errors import (
    InvalidAmountError,
    InvalidOperationError,
    InvalidTxIdError,
    LockedAccountError,
    MissingAmountError,
    TransactionError,
)
from models import AccountSnapshot, DepositRecord, DepositStatus, Transaction, TransactionType

logger = logging.getLogger(__name__)


class AccountLedger:
    """
    Balance state and dispute history of a single client account.

    apply() either commits every balance change of a transaction or raises a
    TransactionError and changes nothing. After every successful call:
    total == available + held, and all three are >= 0.
    No I/O and no locking: the caller serializes transactions per client.
    """

    def __init__(self, client_id: int, deduplicate_withdrawals: bool = True):
        self.client_id = client_id
        self._available = ZERO
        self._held = ZERO
        self._total = ZERO
        self._locked = False
        self._deduplicate_withdrawals = deduplicate_withdrawals
        self._deposits: Dict[int, DepositRecord] = {}
        self._withdrawal_ids: Set[int] = set()

    @property
    def available(self) -> Decimal:
        return self._available

    @property
    def held(self) -> Decimal:
        return self._held

    @property
    def total(self) -> Decimal:
        return self._total

    @property
    def locked(self) -> bool:
        return self._locked

    def deposit_status(self, transaction_id: int) -> Optional[DepositStatus]:
        record = self._deposits.get(transaction_id)
        return record.status if record else None

    def snapshot(self) -> AccountSnapshot:
        return AccountSnapshot(
            client_id=self.client_id,
            available=self._available,
            held=self._held,
            total=self._total,
            locked=self._locked,
        )

    def apply(self, transaction: Transaction) -> None:
        """
        Apply a single transaction to this account.

        Raises:
            LockedAccountError: the account was frozen by an earlier chargeback
            MissingAmountError: deposit/withdrawal without an amount
            InvalidAmountError: bad amount, insufficient funds, or overflow
            InvalidTxIdError: unknown deposit id, or a replayed id
            InvalidOperationError: deposit is not in the status the operation needs
        """
        logger.debug(f"Client {self.client_id}: applying {transaction}")

        try:
            if self._locked:
                raise LockedAccountError(f"account {self.client_id} is locked")

            match transaction.transaction_type:
                case TransactionType.DEPOSIT:
                    self._handle_deposit(transaction)
                case TransactionType.WITHDRAWAL:
                    self._handle_withdrawal(transaction)
                case TransactionType.DISPUTE:
                    self._handle_dispute(transaction)
                case TransactionType.RESOLVE:
                    self._handle_resolve(transaction)
                case TransactionType.CHARGEBACK:
                    self._handle_chargeback(transaction)
        except TransactionError as e:
            e.client_id = self.client_id
            e.transaction_id = transaction.transaction_id
            raise

    def _validate_amount(self, transaction: Transaction) -> Decimal:
        if transaction.amount is None:
            raise MissingAmountError(f"{transaction.transaction_type.value} requires an amount")

        amount = to_fixed_scale(transaction.amount)
        if amount <= ZERO:
            raise InvalidAmountError(f"amount must be positive, got {transaction.amount}")
        return amount

    def _find_deposit(self, transaction: Transaction, expected: DepositStatus) -> DepositRecord:
        record = self._deposits.get(transaction.transaction_id)
        if record is None:
            raise InvalidTxIdError(f"no deposit {transaction.transaction_id} on account {self.client_id}")

        if record.status != expected:
            raise InvalidOperationError(
                f"cannot {transaction.transaction_type.value} deposit {transaction.transaction_id} "
                f"in status {record.status.value}"
            )
        return record

    def _handle_deposit(self, transaction: Transaction) -> None:
        amount = self._validate_amount(transaction)

        if transaction.transaction_id in self._deposits:
            raise InvalidTxIdError(f"deposit {transaction.transaction_id} already processed")

        available = checked_add(self._available, amount)
        total = checked_add(self._total, amount)

        self._available = available
        self._total = total
        self._deposits[transaction.transaction_id] = DepositRecord(amount=amount)

    def _handle_withdrawal(self, transaction: Transaction) -> None:
        amount = self._validate_amount(transaction)

        # available <= total always holds, so checking available covers total too
        if amount > self._available:
            raise InvalidAmountError(f"insufficient funds: available {self._available}, requested {amount}")

        if self._deduplicate_withdrawals and transaction.transaction_id in self._withdrawal_ids:
            raise InvalidTxIdError(f"withdrawal {transaction.transaction_id} already processed")

        available = checked_sub(self._available, amount)
        total = checked_sub(self._total, amount)
        if available < ZERO or total < ZERO:
            raise InvalidAmountError(f"withdrawal of {amount} would leave a negative balance")

        self._available = available
        self._total = total
        self._withdrawal_ids.add(transaction.transaction_id)

    def _handle_dispute(self, transaction: Transaction) -> None:
        record = self._find_deposit(transaction, DepositStatus.NORMAL)

        available = checked_sub(self._available, record.amount)
        held = checked_add(self._held, record.amount)
        if available < ZERO:
            raise InvalidAmountError(
                f"cannot hold {record.amount}: only {self._available} available"
            )

        self._available = available
        self._held = held
        record.status = DepositStatus.DISPUTED

    def _handle_resolve(self, transaction: Transaction) -> None:
        record = self._find_deposit(transaction, DepositStatus.DISPUTED)

        held = checked_sub(self._held, record.amount)
        available = checked_add(self._available, record.amount)
        if held < ZERO:
            raise InvalidAmountError(f"cannot release {record.amount}: only {self._held} held")

        self._held = held
        self._available = available
        record.status = DepositStatus.RESOLVED

    def _handle_chargeback(self, transaction: Transaction) -> None:
        record = self._find_deposit(transaction, DepositStatus.DISPUTED)

        held = checked_sub(self._held, record.amount)
        total = checked_sub(self._total, record.amount)
        if held < ZERO or total < ZERO:
            raise InvalidAmountError(f"cannot charge back {record.amount}: only {self._held} held")

        self._held = held
        self._total = total
        record.status = DepositStatus.CHARGED_BACK
        # No operation ever unlocks an account.
        self._locked = True
        logger.info(f"Client {self.client_id}: locked after chargeback of tx {transaction.transaction_id}")
