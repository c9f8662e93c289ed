"""
Engine configuration.

Defaults live in module constants; ``LedgerConfig.from_env`` overrides them
from SHOPCHAIN_* environment variables.
"""

import os
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

from .blockchain.ledger import DEFAULT_DIFFICULTY, MAX_ATTEMPTS, MAX_DIFFICULTY
from .core_crypto.hashing import to_amount


ENV_PREFIX = "SHOPCHAIN_"
DEFAULT_MAX_BLOCK_TRANSACTIONS = 100
DEFAULT_SELLER_ADDRESS = "0x1234567890abcdef"  # Store address
DEFAULT_STARTING_BALANCE = Decimal("5.0")


@dataclass
class LedgerConfig:
    """Settings for one engine instance."""
    difficulty: int = DEFAULT_DIFFICULTY
    max_attempts: int = MAX_ATTEMPTS
    max_block_transactions: int = DEFAULT_MAX_BLOCK_TRANSACTIONS
    seller_address: str = DEFAULT_SELLER_ADDRESS
    starting_balance: Decimal = field(default=DEFAULT_STARTING_BALANCE)
    chain_path: Optional[str] = None

    def __post_init__(self):
        self.starting_balance = to_amount(self.starting_balance)

    def validate(self) -> 'LedgerConfig':
        """
        Raises:
            ValueError: If any setting is out of range
        """
        if not 0 <= self.difficulty <= MAX_DIFFICULTY:
            raise ValueError(f"difficulty must be between 0 and {MAX_DIFFICULTY}")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.max_block_transactions < 1:
            raise ValueError("max_block_transactions must be at least 1")
        if not self.seller_address:
            raise ValueError("seller_address cannot be empty")
        return self

    @classmethod
    def from_env(cls, prefix: str = ENV_PREFIX) -> 'LedgerConfig':
        """Build a config from environment variables, falling back to defaults."""
        def get(name: str, default):
            value = os.getenv(prefix + name)
            return default if value in (None, "") else value

        return cls(
            difficulty=int(get("DIFFICULTY", DEFAULT_DIFFICULTY)),
            max_attempts=int(get("MAX_ATTEMPTS", MAX_ATTEMPTS)),
            max_block_transactions=int(
                get("MAX_BLOCK_TRANSACTIONS", DEFAULT_MAX_BLOCK_TRANSACTIONS)
            ),
            seller_address=get("SELLER_ADDRESS", DEFAULT_SELLER_ADDRESS),
            starting_balance=get("STARTING_BALANCE", DEFAULT_STARTING_BALANCE),
            chain_path=get("CHAIN_PATH", None),
        ).validate()
