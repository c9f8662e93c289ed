"""
Transaction Pool

Holds submitted transactions until the miner seals them into a block.

Each id moves through three sets, and is only ever in one of them:
- pending: waiting, FIFO order
- in flight: drained for a mining attempt, not yet committed
- settled: mined into a block, remembered forever
"""

import logging
import threading
from collections import OrderedDict
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from ..errors import DuplicateIDError
from .transaction import Transaction

logger = logging.getLogger(__name__)


class TransactionPool:
    """Thread-safe FIFO pool of pending transactions."""

    def __init__(self, settled_ids: Optional[Iterable[str]] = None):
        """
        Args:
            settled_ids: Ids already mined on the chain this pool feeds
        """
        self._lock = threading.Lock()
        self._pending: 'OrderedDict[str, Transaction]' = OrderedDict()
        self._in_flight: Dict[str, Transaction] = {}
        self._settled = set(settled_ids or ())

    def submit(self, tx: Transaction) -> int:
        """
        Add a transaction to the back of the queue.

        Returns:
            Number of pending transactions

        Raises:
            DuplicateIDError: If the id is pending, in flight or mined
        """
        with self._lock:
            if self._known(tx.id):
                raise DuplicateIDError(tx.id)
            self._pending[tx.id] = tx
            logger.debug("Submitted %s, %d pending", tx.id, len(self._pending))
            return len(self._pending)

    def drain(self, max_count: int) -> List[Transaction]:
        """Remove and return up to ``max_count`` transactions, oldest first."""
        if max_count < 0:
            raise ValueError("max_count must be non-negative")
        with self._lock:
            batch = []
            while self._pending and len(batch) < max_count:
                _, tx = self._pending.popitem(last=False)
                self._in_flight[tx.id] = tx
                batch.append(tx)
            return batch

    def restore(self, transactions: Iterable[Transaction]) -> None:
        """
        Put drained transactions back at the front of the queue.

        Their relative order is kept and they go ahead of anything
        submitted while they were out.
        """
        with self._lock:
            restored: 'OrderedDict[str, Transaction]' = OrderedDict()
            for tx in transactions:
                if self._in_flight.pop(tx.id, None) is not None:
                    restored[tx.id] = tx
            restored.update(self._pending)
            self._pending = restored

    def settle(self, transactions: Iterable[Transaction]) -> None:
        """Mark drained transactions as mined."""
        with self._lock:
            for tx in transactions:
                self._in_flight.pop(tx.id, None)
                self._settled.add(tx.id)

    def discard(self, tx_id: str) -> Optional[Transaction]:
        """Withdraw a pending transaction; returns it, or None if not pending."""
        with self._lock:
            return self._pending.pop(tx_id, None)

    def peek_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def pending(self) -> Tuple[Transaction, ...]:
        """Snapshot of pending transactions in FIFO order."""
        with self._lock:
            return tuple(self._pending.values())

    def unmined(self) -> Tuple[Transaction, ...]:
        """In-flight then pending transactions, read under one lock."""
        with self._lock:
            return tuple(self._in_flight.values()) + tuple(self._pending.values())

    def outgoing(self, address: str) -> Decimal:
        """Total that ``address`` spends in transactions not yet settled."""
        with self._lock:
            queued = list(self._in_flight.values()) + list(self._pending.values())
        return sum(
            (tx.amount for tx in queued if tx.buyer_address == address), Decimal(0)
        )

    def in_flight_count(self) -> int:
        with self._lock:
            return len(self._in_flight)

    def is_settled(self, tx_id: str) -> bool:
        with self._lock:
            return tx_id in self._settled

    def __contains__(self, tx_id: str) -> bool:
        with self._lock:
            return self._known(tx_id)

    def __len__(self) -> int:
        return self.peek_count()

    def _known(self, tx_id: str) -> bool:
        return (
            tx_id in self._pending
            or tx_id in self._in_flight
            or tx_id in self._settled
        )
