"""
Typed per-transaction errors.

Every rejected transaction raises one of these. They are never fatal: the
caller logs the error with the offending transaction and moves on, and the
addressed account is left exactly as it was.

    TransactionError (base)
    +-- InvalidClientError      INVALID_CLIENT
    +-- MissingAmountError      MISSING_AMOUNT
    +-- InvalidAmountError      INVALID_AMOUNT
    +-- InvalidTxIdError        INVALID_TX_ID
    +-- LockedAccountError      LOCKED_ACCOUNT
    +-- InvalidOperationError   INVALID_OPERATION
"""

from typing import Optional


class TransactionError(Exception):
    """Base class for transactions the ledger refuses to apply."""

    code: str = "TRANSACTION_ERROR"
    default_message: str = "transaction rejected"

    def __init__(
        self,
        message: Optional[str] = None,
        client_id: Optional[int] = None,
        transaction_id: Optional[int] = None,
    ):
        self.message = message or self.default_message
        self.client_id = client_id
        self.transaction_id = transaction_id
        super().__init__(self.message)

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class InvalidClientError(TransactionError):
    """A non-deposit transaction addressed a client with no account."""

    code = "INVALID_CLIENT"
    default_message = "invalid client"


class MissingAmountError(TransactionError):
    """A deposit or withdrawal arrived without an amount."""

    code = "MISSING_AMOUNT"
    default_message = "missing amount"


class InvalidAmountError(TransactionError):
    """Amount is non-positive, too precise, larger than the funds, or overflows."""

    code = "INVALID_AMOUNT"
    default_message = "invalid amount"


class InvalidTxIdError(TransactionError):
    """Transaction id is unknown, or already used by an earlier deposit/withdrawal."""

    code = "INVALID_TX_ID"
    default_message = "invalid tx id"


class LockedAccountError(TransactionError):
    code = "LOCKED_ACCOUNT"
    default_message = "locked account"


class InvalidOperationError(TransactionError):
    """Dispute, resolve or chargeback against a deposit in the wrong status."""

    code = "INVALID_OPERATION"
    default_message = "invalid operation"
