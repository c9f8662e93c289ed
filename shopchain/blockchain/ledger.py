"""
Blockchain Ledger Module

An append-only chain of purchase blocks:
- SHA-256 content hashes over a fixed field order
- Proof of Work measured in leading zero hex digits
- Link and proof checks on every append
- Full chain validation returning the first bad index
- Merkle inclusion proofs for mined transactions
- JSON persistence that re-hashes identically after reload

Blocks are frozen dataclasses and the chain publishes its blocks as an
immutable tuple, so readers never see a half-appended block.
"""

import json
import logging
import os
import tempfile
import threading
from collections import namedtuple
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

from cryptography.hazmat.primitives import hashes

from ..core_crypto.hashing import (
    HASH_HEX_LENGTH, block_header_prefix, hash_block_fields, leading_zero_digits
)
from ..core_crypto.merkle import MerkleTree, ProofStep
from ..errors import (
    DuplicateIDError, InvalidLinkError, InvalidProofError,
    MiningTimeoutError, ValidationError
)
from .transaction import Transaction

logger = logging.getLogger(__name__)


# ============================================================================
# Constants
# ============================================================================

GENESIS_PREV_HASH = '0' * HASH_HEX_LENGTH
GENESIS_DIFFICULTY = 0  # Genesis is sealed without work
GENESIS_TIMESTAMP = 0
DEFAULT_DIFFICULTY = 2  # Leading zero hex digits
MAX_DIFFICULTY = HASH_HEX_LENGTH
MAX_ATTEMPTS = 2 ** 20  # Nonce attempts before giving up


# ============================================================================
# Block Structure (Immutable)
# ============================================================================

@dataclass(frozen=True)
class Block:
    """
    Sealed block of purchase transactions.

    ``hash`` is stored so that validation can compare it with the value
    recomputed from the other fields; any edit to a field shows up as a
    mismatch.
    """
    index: int
    timestamp: int
    transactions: Tuple[Transaction, ...]
    previous_hash: str
    nonce: int
    hash: str

    @classmethod
    def seal(
        cls,
        index: int,
        timestamp: int,
        transactions: Iterable[Transaction],
        previous_hash: str,
        nonce: int,
    ) -> 'Block':
        """Build a block whose hash is computed from the given fields."""
        transactions = tuple(transactions)
        return cls(
            index=index,
            timestamp=timestamp,
            transactions=transactions,
            previous_hash=previous_hash,
            nonce=nonce,
            hash=compute_block_hash(index, timestamp, transactions, previous_hash, nonce),
        )

    def compute_hash(self) -> str:
        return compute_block_hash(
            self.index, self.timestamp, self.transactions,
            self.previous_hash, self.nonce
        )

    @property
    def merkle_root(self) -> Optional[bytes]:
        """Merkle root over the transaction hashes (None for an empty block)."""
        if not self.transactions:
            return None
        return MerkleTree().build([_leaf(tx) for tx in self.transactions])

    def to_dict(self) -> Dict[str, Any]:
        """Serialize with keys in hashing order."""
        return {
            'index': self.index,
            'timestamp': self.timestamp,
            'transactions': [tx.to_dict() for tx in self.transactions],
            'previous_hash': self.previous_hash,
            'nonce': self.nonce,
            'hash': self.hash,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Block':
        """Restore a block as stored; nothing is recomputed."""
        return cls(
            index=int(data['index']),
            timestamp=int(data['timestamp']),
            transactions=tuple(Transaction.from_dict(tx) for tx in data['transactions']),
            previous_hash=data['previous_hash'],
            nonce=int(data['nonce']),
            hash=data['hash'],
        )

    def __str__(self) -> str:
        return (
            f"Block #{self.index}\n"
            f"  Hash: {self.hash[:16]}...\n"
            f"  Prev: {self.previous_hash[:16]}...\n"
            f"  Nonce: {self.nonce}\n"
            f"  Transactions: {len(self.transactions)}"
        )


def compute_block_hash(
    index: int,
    timestamp: int,
    transactions: Iterable[Transaction],
    previous_hash: str,
    nonce: int,
) -> str:
    """Compute hash for a block (public function)."""
    return hash_block_fields(
        index, timestamp, [tx.preimage() for tx in transactions], previous_hash, nonce
    )


def _leaf(tx: Transaction) -> bytes:
    return bytes.fromhex(tx.hash)


# ============================================================================
# Proof of Work
# ============================================================================

class ProofOfWork:
    """
    Proof of Work with difficulty counted in leading zero hex digits.

    A hash is valid when its value, read as a 256-bit unsigned integer, is
    below ``16 ** (64 - difficulty)``. That is the same as the hex digest
    starting with ``difficulty`` zeros.
    """

    def __init__(self, difficulty: int = DEFAULT_DIFFICULTY):
        """
        Args:
            difficulty: Leading zero hex digits required (0-64)
        """
        if not 0 <= difficulty <= MAX_DIFFICULTY:
            raise ValueError(f"Difficulty must be between 0 and {MAX_DIFFICULTY}")
        self.difficulty = difficulty
        self._target = 16 ** (HASH_HEX_LENGTH - difficulty)

    @property
    def target(self) -> int:
        return self._target

    def hash_meets_target(self, block_hash: str) -> bool:
        """Check if a hex digest meets the difficulty target."""
        if len(block_hash) != HASH_HEX_LENGTH:
            return False
        try:
            return int(block_hash, 16) < self._target
        except ValueError:
            return False

    @staticmethod
    def count_leading_zeros(block_hash: str) -> int:
        return leading_zero_digits(block_hash)

    def mine(
        self,
        index: int,
        timestamp: int,
        transactions: Iterable[Transaction],
        previous_hash: str,
        max_attempts: int = MAX_ATTEMPTS,
    ) -> Tuple[int, str]:
        """
        Search nonces 0, 1, 2, ... for a hash under the target.

        The timestamp is part of the hashed fields and stays fixed for the
        whole search.

        Returns:
            Tuple of (nonce, hash)

        Raises:
            MiningTimeoutError: If no valid nonce found within max_attempts
        """
        prefix = block_header_prefix(
            index, timestamp, [tx.preimage() for tx in transactions], previous_hash
        )
        base = hashes.Hash(hashes.SHA256())
        base.update(prefix)

        for nonce in range(max_attempts):
            candidate = base.copy()
            candidate.update(b'%d]' % nonce)
            block_hash = candidate.finalize().hex()
            if int(block_hash, 16) < self._target:
                return nonce, block_hash

        raise MiningTimeoutError(max_attempts)


# ============================================================================
# Chain Validation Result
# ============================================================================

@dataclass(frozen=True)
class ChainValidation:
    """Outcome of a full chain check. Falsy when the chain is broken."""
    valid: bool
    index: Optional[int] = None
    reason: str = ""

    def __bool__(self) -> bool:
        return self.valid

    def to_dict(self) -> Dict[str, Any]:
        return {'valid': self.valid, 'index': self.index, 'reason': self.reason}


_Snapshot = namedtuple('_Snapshot', ['blocks', 'tx_index'])


# ============================================================================
# Blockchain
# ============================================================================

class Chain:
    """
    Ordered, validated sequence of blocks from genesis to tip.

    Appends are serialized by an internal lock; reads work on an immutable
    snapshot swapped in as a whole after each append.
    """

    def __init__(
        self,
        difficulty: int = DEFAULT_DIFFICULTY,
        blocks: Optional[Iterable[Block]] = None,
    ):
        """
        Args:
            difficulty: PoW difficulty required of every non-genesis block
            blocks: Existing blocks to adopt as-is (used when loading);
                a fresh genesis block is created when omitted
        """
        self._pow = ProofOfWork(difficulty)
        self._genesis_pow = ProofOfWork(GENESIS_DIFFICULTY)
        self._write_lock = threading.Lock()

        blocks = tuple(blocks) if blocks is not None else (self._create_genesis_block(),)
        tx_index = {}
        for block in blocks:
            for tx in block.transactions:
                tx_index.setdefault(tx.id, block.index)
        self._snapshot = _Snapshot(blocks, tx_index)

    @classmethod
    def genesis(cls, difficulty: int = DEFAULT_DIFFICULTY) -> 'Chain':
        """Create a chain holding only the genesis block."""
        return cls(difficulty)

    def _create_genesis_block(self) -> Block:
        nonce, block_hash = self._genesis_pow.mine(
            index=0,
            timestamp=GENESIS_TIMESTAMP,
            transactions=(),
            previous_hash=GENESIS_PREV_HASH,
        )
        return Block(
            index=0,
            timestamp=GENESIS_TIMESTAMP,
            transactions=(),
            previous_hash=GENESIS_PREV_HASH,
            nonce=nonce,
            hash=block_hash,
        )

    # ------------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------------

    @property
    def blocks(self) -> Tuple[Block, ...]:
        return self._snapshot.blocks

    @property
    def length(self) -> int:
        return len(self._snapshot.blocks)

    def __len__(self) -> int:
        return self.length

    @property
    def tip(self) -> Block:
        return self._snapshot.blocks[-1]

    def tip_hash(self) -> str:
        return self._snapshot.blocks[-1].hash

    @property
    def difficulty(self) -> int:
        return self._pow.difficulty

    @property
    def proof_of_work(self) -> ProofOfWork:
        return self._pow

    def mined_transactions(self) -> List[Transaction]:
        """All mined transactions, flattened in chain order."""
        return [tx for block in self._snapshot.blocks for tx in block.transactions]

    def transaction_ids(self) -> List[str]:
        return list(self._snapshot.tx_index)

    def contains_transaction(self, tx_id: str) -> bool:
        return tx_id in self._snapshot.tx_index

    def find_transaction(self, tx_id: str) -> Optional[Tuple[int, Transaction]]:
        """Locate a mined transaction; returns (block_index, tx) or None."""
        snapshot = self._snapshot
        block_index = snapshot.tx_index.get(tx_id)
        if block_index is None:
            return None
        for tx in snapshot.blocks[block_index].transactions:
            if tx.id == tx_id:
                return block_index, tx
        return None

    def net_flow(self, address: str) -> Decimal:
        """Amount received as seller minus amount spent as buyer."""
        total = Decimal(0)
        for tx in self.mined_transactions():
            if tx.seller_address == address:
                total += tx.amount
            if tx.buyer_address == address:
                total -= tx.amount
        return total

    # ------------------------------------------------------------------------
    # Append
    # ------------------------------------------------------------------------

    def verify_candidate(self, block: Block) -> None:
        """
        Run every append check against the current tip without committing.

        Raises:
            InvalidLinkError: Wrong index or previous_hash
            InvalidProofError: Hash inconsistent with fields or above target
            DuplicateIDError: A transaction id is already mined
            ValidationError: Non-genesis block without transactions
        """
        self._check_block(block, self._snapshot)

    def append(self, block: Block, precommit: Optional[Callable[[], None]] = None) -> None:
        """
        Append a sealed block.

        The chain is left unmodified when any check fails.

        Args:
            block: Sealed block to add on top of the tip
            precommit: Called after all checks pass and before the block is
                published, while the tip is still locked; if it raises, the
                block is not appended and the error propagates

        Raises:
            Same as verify_candidate
        """
        with self._write_lock:
            snapshot = self._snapshot
            self._check_block(block, snapshot)
            if precommit is not None:
                precommit()

            tx_index = dict(snapshot.tx_index)
            for tx in block.transactions:
                tx_index[tx.id] = block.index
            self._snapshot = _Snapshot(snapshot.blocks + (block,), tx_index)

        logger.info(
            "Appended block #%d (%s...) with %d transactions",
            block.index, block.hash[:16], len(block.transactions)
        )

    def _check_block(self, block: Block, snapshot: _Snapshot) -> None:
        expected_index = len(snapshot.blocks)
        if block.index != expected_index:
            raise InvalidLinkError(
                f"Invalid index: expected {expected_index}, got {block.index}",
                block.index,
            )
        if block.previous_hash != snapshot.blocks[-1].hash:
            raise InvalidLinkError("Previous hash mismatch", block.index)

        self._check_proof(block, self._pow)

        seen = set()
        for tx in block.transactions:
            if tx.id in seen or tx.id in snapshot.tx_index:
                raise DuplicateIDError(tx.id)
            seen.add(tx.id)

    @staticmethod
    def _check_proof(block: Block, pow: ProofOfWork) -> None:
        if block.index > 0 and not block.transactions:
            raise ValidationError("Block has no transactions", block.index)
        for tx in block.transactions:
            if not tx.has_valid_hash():
                raise InvalidProofError(
                    f"Transaction hash mismatch: {tx.id}", block.index
                )
        try:
            computed = block.compute_hash()
        except (TypeError, ValueError) as e:
            raise InvalidProofError(f"Block fields not hashable: {e}", block.index)
        if computed != block.hash:
            raise InvalidProofError("Block hash mismatch", block.index)
        if not pow.hash_meets_target(block.hash):
            raise InvalidProofError("Block does not meet difficulty target", block.index)

    # ------------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------------

    def validate(self) -> ChainValidation:
        """
        Re-verify every link and proof from genesis to tip.

        Never raises and never mutates the chain.

        Returns:
            ChainValidation naming the first bad index, if any
        """
        blocks = self._snapshot.blocks
        if not blocks:
            return ChainValidation(False, 0, "Chain is empty")

        try:
            genesis = blocks[0]
            if genesis.index != 0:
                raise InvalidLinkError("Genesis index must be 0", 0)
            if genesis.previous_hash != GENESIS_PREV_HASH:
                raise InvalidLinkError("Invalid genesis previous hash", 0)
            if genesis.transactions:
                raise ValidationError("Genesis block must be empty", 0)
            self._check_proof(genesis, self._genesis_pow)

            seen = set()
            for i in range(1, len(blocks)):
                block, prev = blocks[i], blocks[i - 1]
                if block.index != i:
                    raise InvalidLinkError(
                        f"Invalid index: expected {i}, got {block.index}", i
                    )
                if block.previous_hash != prev.hash:
                    raise InvalidLinkError("Previous hash mismatch", i)
                self._check_proof(block, self._pow)
                for tx in block.transactions:
                    if tx.id in seen:
                        raise ValidationError(f"Transaction mined twice: {tx.id}", i)
                    seen.add(tx.id)
        except ValidationError as e:
            logger.error("Chain validation failed at block #%s: %s", e.index, e)
            return ChainValidation(False, e.index, str(e))

        return ChainValidation(True)

    # ------------------------------------------------------------------------
    # Merkle proofs
    # ------------------------------------------------------------------------

    def get_transaction_proof(
        self,
        block_index: int,
        tx_id: str,
    ) -> Optional[Tuple[int, List[ProofStep]]]:
        """
        Get Merkle proof for a transaction in a block.

        Returns:
            Tuple of (tx_index, proof) or None if not found
        """
        blocks = self._snapshot.blocks
        if block_index < 0 or block_index >= len(blocks):
            return None

        block = blocks[block_index]
        ids = [tx.id for tx in block.transactions]
        if tx_id not in ids:
            return None

        tx_index = ids.index(tx_id)
        tree = MerkleTree()
        tree.build([_leaf(tx) for tx in block.transactions])
        return tx_index, tree.get_proof(tx_index)

    def verify_transaction(
        self,
        block_index: int,
        tx: Transaction,
        proof: List[ProofStep],
    ) -> bool:
        """Verify a transaction is in a block using a Merkle proof."""
        blocks = self._snapshot.blocks
        if block_index < 0 or block_index >= len(blocks):
            return False
        root = blocks[block_index].merkle_root
        if root is None or not tx.has_valid_hash():
            return False
        return MerkleTree.verify_proof(_leaf(tx), proof, root)

    # ------------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            'difficulty': self.difficulty,
            'chain': [block.to_dict() for block in self._snapshot.blocks],
        }

    def to_json(self, indent: Optional[int] = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Chain':
        """
        Rebuild and validate a chain.

        Raises:
            ValidationError: If the stored chain is malformed or invalid
        """
        try:
            blocks = [Block.from_dict(block) for block in data['chain']]
            chain = cls(int(data['difficulty']), blocks=blocks)
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError(f"Malformed chain data: {e}")

        result = chain.validate()
        if not result.valid:
            raise ValidationError(result.reason, result.index)
        return chain

    @classmethod
    def from_json(cls, json_str: str) -> 'Chain':
        """Deserialize and validate a chain from JSON."""
        try:
            data = json.loads(json_str)
        except json.JSONDecodeError as e:
            raise ValidationError(f"Malformed chain data: {e}")
        return cls.from_dict(data)

    def save(self, path: Union[str, Path]) -> None:
        """Write the chain to ``path`` atomically."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=str(path.parent), suffix='.tmp')
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                f.write(self.to_json())
            os.replace(tmp, path)
        except BaseException:
            os.unlink(tmp)
            raise
        logger.info("Saved chain (%d blocks) to %s", self.length, path)

    @classmethod
    def load(cls, path: Union[str, Path]) -> 'Chain':
        with open(path, 'r', encoding='utf-8') as f:
            chain = cls.from_json(f.read())
        logger.info("Loaded chain (%d blocks) from %s", chain.length, path)
        return chain
