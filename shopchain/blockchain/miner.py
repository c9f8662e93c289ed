"""
Block Miner

Turns a batch of pending transactions into a sealed block on top of the
chain tip. The seal timestamp is read once before the nonce search starts;
a pinned timestamp makes mining fully reproducible.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional

from ..errors import MiningTimeoutError
from .ledger import MAX_ATTEMPTS, Block, Chain, ProofOfWork
from .mempool import TransactionPool
from .transaction import Transaction

logger = logging.getLogger(__name__)


@dataclass
class MinerStats:
    blocks_mined: int = 0
    total_attempts: int = 0
    failures: int = 0
    last_block_seconds: float = 0.0


class Miner:
    """Proof-of-work block sealer."""

    def __init__(
        self,
        difficulty: int,
        max_attempts: int = MAX_ATTEMPTS,
        clock: Optional[Callable[[], float]] = None,
    ):
        """
        Args:
            difficulty: Leading zero hex digits required
            max_attempts: Nonce attempts before MiningTimeoutError
            clock: Source of seal timestamps, defaults to time.time
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._pow = ProofOfWork(difficulty)
        self.max_attempts = max_attempts
        self._clock = clock or time.time
        self.stats = MinerStats()

    @property
    def difficulty(self) -> int:
        return self._pow.difficulty

    def seal(
        self,
        index: int,
        previous_hash: str,
        transactions: Iterable[Transaction],
        timestamp: Optional[int] = None,
    ) -> Block:
        """
        Find a nonce for the candidate block and return it sealed.

        Raises:
            MiningTimeoutError: If max_attempts nonces all miss the target
        """
        transactions = tuple(transactions)
        if timestamp is None:
            timestamp = int(self._clock())

        started = time.perf_counter()
        try:
            nonce, block_hash = self._pow.mine(
                index=index,
                timestamp=timestamp,
                transactions=transactions,
                previous_hash=previous_hash,
                max_attempts=self.max_attempts,
            )
        except MiningTimeoutError:
            self.stats.failures += 1
            self.stats.total_attempts += self.max_attempts
            logger.warning(
                "Mining block #%d timed out after %d attempts", index, self.max_attempts
            )
            raise

        elapsed = time.perf_counter() - started
        self.stats.blocks_mined += 1
        self.stats.total_attempts += nonce + 1
        self.stats.last_block_seconds = elapsed
        logger.info(
            "Sealed block #%d nonce=%d hash=%s... in %.3fs",
            index, nonce, block_hash[:16], elapsed
        )
        return Block(
            index=index,
            timestamp=timestamp,
            transactions=transactions,
            previous_hash=previous_hash,
            nonce=nonce,
            hash=block_hash,
        )

    def mine_pending(
        self,
        pool: TransactionPool,
        chain: Chain,
        max_count: int,
        timestamp: Optional[int] = None,
    ) -> Block:
        """
        Drain the pool and seal a block on the chain's current tip.

        The block is returned, not appended. On timeout the batch goes back
        to the pool unaltered before the error propagates.

        Raises:
            ValueError: If the pool has nothing to mine
            MiningTimeoutError: If no nonce was found
        """
        batch: List[Transaction] = pool.drain(max_count)
        if not batch:
            raise ValueError("No pending transactions to mine")

        tip = chain.tip
        try:
            return self.seal(tip.index + 1, tip.hash, batch, timestamp)
        except MiningTimeoutError:
            pool.restore(batch)
            raise
