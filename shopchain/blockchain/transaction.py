"""
Purchase Transaction

A transaction records one purchase: who bought which product from whom and
for how much. Its hash is computed once, when the transaction is created,
and is carried unchanged into the block that mines it.
"""

import time
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from ..core_crypto.hashing import (
    format_amount, hash_transaction_fields, to_amount, transaction_preimage
)


@dataclass(frozen=True)
class Transaction:
    """Immutable purchase record."""
    id: str
    product_id: str
    buyer_address: str
    seller_address: str
    amount: Decimal
    timestamp: int
    hash: str

    @classmethod
    def create(
        cls,
        product_id: str,
        buyer_address: str,
        seller_address: str,
        amount: Union[Decimal, int, float, str],
        timestamp: Optional[int] = None,
        tx_id: Optional[str] = None,
    ) -> 'Transaction':
        """
        Build a new transaction and compute its hash.

        Args:
            product_id: Catalog entry being bought
            buyer_address: Opaque buyer label
            seller_address: Opaque seller label
            amount: Total price (non-negative)
            timestamp: Creation time, defaults to now
            tx_id: Identifier, defaults to a fresh uuid4

        Raises:
            ValueError: If the amount is negative or not a number
        """
        amount = to_amount(amount)
        tx_id = tx_id or str(uuid.uuid4())
        timestamp = int(time.time()) if timestamp is None else int(timestamp)
        tx_hash = hash_transaction_fields(
            tx_id, product_id, buyer_address, seller_address, amount, timestamp
        )
        return cls(
            id=tx_id,
            product_id=product_id,
            buyer_address=buyer_address,
            seller_address=seller_address,
            amount=amount,
            timestamp=timestamp,
            hash=tx_hash,
        )

    def compute_hash(self) -> str:
        """Recompute the hash from the current fields."""
        return hash_transaction_fields(
            self.id, self.product_id, self.buyer_address,
            self.seller_address, self.amount, self.timestamp
        )

    def has_valid_hash(self) -> bool:
        try:
            return self.compute_hash() == self.hash
        except ValueError:
            return False

    def preimage(self) -> List[Any]:
        """Fields in hashing order, followed by the stored hash."""
        return transaction_preimage(
            self.id, self.product_id, self.buyer_address,
            self.seller_address, self.amount, self.timestamp
        ) + [self.hash]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'product_id': self.product_id,
            'buyer_address': self.buyer_address,
            'seller_address': self.seller_address,
            'amount': format_amount(self.amount),
            'timestamp': self.timestamp,
            'hash': self.hash,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Transaction':
        """Restore a transaction exactly as stored; the hash is not recomputed."""
        return cls(
            id=data['id'],
            product_id=data['product_id'],
            buyer_address=data['buyer_address'],
            seller_address=data['seller_address'],
            amount=to_amount(data['amount']),
            timestamp=int(data['timestamp']),
            hash=data['hash'],
        )

    def __str__(self) -> str:
        return (
            f"Tx {self.id[:8]}... {self.buyer_address} -> {self.seller_address} "
            f"{format_amount(self.amount)} ({self.product_id})"
        )
