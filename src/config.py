"""
Runtime settings, read from ``LEDGER_*`` environment variables.

CLI flags in main.py override whatever the environment provides.
"""

from enum import Enum

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AccountCreationPolicy(str, Enum):
    """When the router may open an account for a client it has not seen."""

    # Only a deposit opens an account; anything else fails with InvalidClientError.
    ON_DEPOSIT = "on_deposit"
    # Any transaction opens a zero-balance account before being applied.
    ON_ANY_TRANSACTION = "on_any_transaction"


class LedgerSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="LEDGER_")

    account_creation: AccountCreationPolicy = AccountCreationPolicy.ON_DEPOSIT
    deduplicate_withdrawals: bool = True
    workers: int = 1
    log_level: str = "WARNING"

    @field_validator("workers")
    @classmethod
    def _at_least_one_worker(cls, value: int) -> int:
        if value < 1:
            raise ValueError("workers must be at least 1")
        return value

    @field_validator("log_level")
    @classmethod
    def _known_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level {value}")
        return level
