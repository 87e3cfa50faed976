import logging
import threading
from typing import Dict, List, Optional

from account_ledger import AccountLedger
from config import AccountCreationPolicy
from errors import InvalidClientError
from models import AccountSnapshot, Transaction, TransactionType

logger = logging.getLogger(__name__)


class TransactionRouter:
    """
    Owns the client id -> AccountLedger mapping and forwards each transaction
    to the account it addresses.
    """

    def __init__(
        self,
        account_creation: AccountCreationPolicy = AccountCreationPolicy.ON_DEPOSIT,
        deduplicate_withdrawals: bool = True,
    ):
        self._account_creation = account_creation
        self._deduplicate_withdrawals = deduplicate_withdrawals
        self._accounts: Dict[int, AccountLedger] = {}

        # Guards insertion into _accounts and snapshotting. Per-account state is
        # not covered: every client's transactions come from a single worker.
        self._accounts_lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._accounts)

    def __contains__(self, client_id: int) -> bool:
        return client_id in self._accounts

    def get_account(self, client_id: int) -> Optional[AccountLedger]:
        return self._accounts.get(client_id)

    def route(self, transaction: Transaction) -> None:
        """
        Apply a transaction to the account of its client.

        Unknown clients get a new account only when the creation policy allows
        it; under ON_DEPOSIT the account is kept only if the deposit succeeds.
        Raises TransactionError subclasses from AccountLedger.apply.
        """
        account = self._accounts.get(transaction.client_id)
        if account is not None:
            account.apply(transaction)
            return

        if self._account_creation == AccountCreationPolicy.ON_ANY_TRANSACTION:
            account = self._insert_account(self._new_account(transaction.client_id))
            account.apply(transaction)
            return

        if transaction.transaction_type != TransactionType.DEPOSIT:
            raise InvalidClientError(
                f"no account for client {transaction.client_id}",
                client_id=transaction.client_id,
                transaction_id=transaction.transaction_id,
            )

        account = self._new_account(transaction.client_id)
        account.apply(transaction)
        self._insert_account(account)

    def snapshot(self) -> List[AccountSnapshot]:
        """Balances of every known account, in no particular order."""
        with self._accounts_lock:
            return [account.snapshot() for account in self._accounts.values()]

    def _new_account(self, client_id: int) -> AccountLedger:
        return AccountLedger(client_id, deduplicate_withdrawals=self._deduplicate_withdrawals)

    def _insert_account(self, account: AccountLedger) -> AccountLedger:
        with self._accounts_lock:
            existing = self._accounts.setdefault(account.client_id, account)
        if existing is account:
            logger.info(f"Client {account.client_id}: account created")
        return existing
