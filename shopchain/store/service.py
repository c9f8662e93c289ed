"""
Ledger Service

Runs a purchase end to end: check the catalog and the buyer's balance,
record a transaction, mine it into a block, append the block and take the
stock away. Either all of that happens or none of it does.

Writes go through a single worker thread, so purchases are handled one at
a time in the order they arrive. Reads never wait for that worker; they
work on the chain's published snapshot.

Every engine error is turned into a failed PurchaseResult here. Nothing
below this boundary is retried automatically.
"""

import logging
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from ..blockchain.ledger import Block, Chain, ChainValidation
from ..blockchain.mempool import TransactionPool
from ..blockchain.miner import Miner
from ..blockchain.transaction import Transaction
from ..config import LedgerConfig
from ..core_crypto.hashing import format_amount, format_balance, to_amount
from ..errors import (
    InsufficientBalanceError, InsufficientStockError, LedgerError,
    MiningTimeoutError, ProductNotFoundError
)
from .catalog import Catalog
from .wallet import BalanceSource, ChainWallet

logger = logging.getLogger(__name__)

CHAIN_CORRUPTED = "ChainCorrupted"
INVALID_REQUEST = "InvalidRequest"


@dataclass
class PurchaseResult:
    """What a caller gets back from ``purchase``."""
    success: bool
    message: str
    transaction_id: Optional[str] = None
    transaction_hash: Optional[str] = None
    block_index: Optional[int] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {'success': self.success, 'message': self.message}
        if self.transaction_id is not None:
            data['transaction_id'] = self.transaction_id
            data['transaction_hash'] = self.transaction_hash
            data['block_index'] = self.block_index
        if self.error is not None:
            data['error'] = self.error
        return data


class LedgerService:
    """
    One engine instance: a chain, its pending pool and a miner, owned
    together. Instances share nothing, so several can run side by side.
    """

    def __init__(
        self,
        catalog: Catalog,
        wallet: Optional[BalanceSource] = None,
        chain: Optional[Chain] = None,
        pool: Optional[TransactionPool] = None,
        miner: Optional[Miner] = None,
        config: Optional[LedgerConfig] = None,
        clock: Optional[Callable[[], float]] = None,
        id_factory: Optional[Callable[[], str]] = None,
    ):
        """
        Args:
            catalog: Product price/stock source
            wallet: Balance source, defaults to a ChainWallet on this chain
            chain: Existing chain, defaults to a fresh genesis chain
            pool: Pending pool, defaults to one seeded with the chain's ids
            miner: Block sealer, defaults to one at the chain's difficulty
            config: Engine settings
            clock: Timestamp source for transactions and blocks
            id_factory: Transaction id generator, defaults to uuid4
        """
        self.config = (config if config is not None else LedgerConfig()).validate()
        self.catalog = catalog
        self.chain = chain if chain is not None else Chain.genesis(self.config.difficulty)
        if pool is None:
            pool = TransactionPool(settled_ids=self.chain.transaction_ids())
        self.pool = pool
        self._clock = clock or time.time
        if miner is None:
            miner = Miner(self.chain.difficulty, self.config.max_attempts, clock=self._clock)
        self.miner = miner
        if wallet is None:
            wallet = ChainWallet(self.chain, self.config.starting_balance)
        self.wallet = wallet
        self._id_factory = id_factory or (lambda: str(uuid.uuid4()))
        self._trusted = True
        self._closed = False
        self._writer = ThreadPoolExecutor(max_workers=1, thread_name_prefix='ledger-writer')

    @classmethod
    def from_file(
        cls,
        path: Union[str, Path],
        catalog: Catalog,
        config: Optional[LedgerConfig] = None,
        **kwargs
    ) -> 'LedgerService':
        """
        Resume from a saved chain.

        Raises:
            ValidationError: If the stored chain does not validate
        """
        return cls(catalog, chain=Chain.load(path), config=config, **kwargs)

    # ========================================================================
    # Lifecycle
    # ========================================================================

    def close(self) -> None:
        """Stop the writer after queued work finishes."""
        self._closed = True
        self._writer.shutdown(wait=True)

    def __enter__(self) -> 'LedgerService':
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    @property
    def trusted(self) -> bool:
        """False once validate_chain has found the chain corrupted."""
        return self._trusted

    def _run(self, fn: Callable, *args):
        if self._closed:
            raise RuntimeError("Ledger service is closed")
        return self._writer.submit(fn, *args).result()

    # ========================================================================
    # Purchases
    # ========================================================================

    def purchase(self, product_id: str, buyer_address: str, quantity: int) -> PurchaseResult:
        """
        Buy ``quantity`` units of a product.

        Queued behind any purchase already in progress. Never raises for
        engine errors; the outcome is in the returned result.
        """
        return self._run(self._purchase, product_id, buyer_address, quantity)

    def _purchase(self, product_id: str, buyer_address: str, quantity: int) -> PurchaseResult:
        if not self._trusted:
            return PurchaseResult(
                False, "Chain failed validation; purchases are disabled",
                error=CHAIN_CORRUPTED,
            )
        try:
            tx, block = self._execute_purchase(product_id, buyer_address, quantity)
        except LedgerError as e:
            logger.warning(
                "Purchase of %s x%s by %s failed: %s",
                product_id, quantity, buyer_address, e
            )
            return PurchaseResult(False, str(e), error=e.code)
        except ValueError as e:
            logger.warning("Rejected purchase request: %s", e)
            return PurchaseResult(False, str(e), error=INVALID_REQUEST)

        product = self.catalog.get_product(product_id)
        name = product.name if product is not None else product_id
        logger.info(
            "Purchase %s settled in block #%d: %s x%d for %s",
            tx.id, block.index, name, quantity, format_amount(tx.amount)
        )
        return PurchaseResult(
            True,
            f"Successfully purchased {name} x{quantity}",
            transaction_id=tx.id,
            transaction_hash=tx.hash,
            block_index=block.index,
        )

    def _execute_purchase(self, product_id: str, buyer_address: str, quantity: int):
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise ValueError("Quantity must be a positive integer")
        if not buyer_address:
            raise ValueError("Buyer address cannot be empty")

        product = self.catalog.get_product(product_id)
        if product is None:
            raise ProductNotFoundError(product_id)
        if quantity > product.stock:
            raise InsufficientStockError(
                f"Insufficient stock: {product.stock} left, {quantity} requested"
            )

        amount = to_amount(to_amount(product.price) * quantity)
        # Queued spends are mined ahead of this purchase.
        balance = self.wallet.get_balance(buyer_address) - self.pool.outgoing(buyer_address)
        if balance < amount:
            raise InsufficientBalanceError(
                f"Insufficient balance: {format_balance(balance)} available, "
                f"{format_amount(amount)} required"
            )

        tx = Transaction.create(
            product_id=product_id,
            buyer_address=buyer_address,
            seller_address=self.config.seller_address,
            amount=amount,
            timestamp=int(self._clock()),
            tx_id=self._id_factory(),
        )
        self.pool.submit(tx)

        def reserve_stock() -> None:
            if not self.catalog.decrement_stock(product_id, quantity):
                raise InsufficientStockError("Stock changed before the purchase could settle")

        try:
            block = self._mine_until_included(tx, reserve_stock)
        except Exception:
            self.pool.discard(tx.id)
            raise
        return tx, block

    def _mine_until_included(self, tx: Transaction, reserve_stock: Callable[[], None]) -> Block:
        """
        Mine FIFO batches until the block holding ``tx`` is appended.

        Stock is reserved only for the block that carries ``tx``.
        """
        while True:
            block = self.miner.mine_pending(
                self.pool, self.chain, self.config.max_block_transactions
            )
            included = any(t.id == tx.id for t in block.transactions)
            self._commit(block, reserve_stock if included else None)
            if included:
                return block

    def _commit(self, block: Block, precommit: Optional[Callable[[], None]] = None) -> None:
        try:
            self.chain.append(block, precommit=precommit)
        except Exception:
            self.pool.restore(block.transactions)
            raise
        self.pool.settle(block.transactions)

    # ========================================================================
    # Queued transactions
    # ========================================================================

    def submit_transaction(
        self,
        product_id: str,
        buyer_address: str,
        amount: Union[str, int, float],
        seller_address: Optional[str] = None,
        tx_id: Optional[str] = None,
    ) -> Transaction:
        """
        Queue a transaction without mining it or touching stock.

        Raises:
            DuplicateIDError: If ``tx_id`` was already used
            ValueError: If the amount is invalid
        """
        return self._run(
            self._submit_transaction, product_id, buyer_address, amount, seller_address, tx_id
        )

    def _submit_transaction(self, product_id, buyer_address, amount, seller_address, tx_id):
        tx = Transaction.create(
            product_id=product_id,
            buyer_address=buyer_address,
            seller_address=seller_address or self.config.seller_address,
            amount=amount,
            timestamp=int(self._clock()),
            tx_id=tx_id or self._id_factory(),
        )
        self.pool.submit(tx)
        return tx

    def mine_pending_transactions(self) -> Optional[Block]:
        """
        Seal the next FIFO batch of queued transactions.

        Returns:
            The appended block, or None if nothing is pending

        Raises:
            MiningTimeoutError: Batch returned to the pool
        """
        return self._run(self._mine_pending)

    def _mine_pending(self) -> Optional[Block]:
        if not self.pool.peek_count():
            return None
        try:
            block = self.miner.mine_pending(
                self.pool, self.chain, self.config.max_block_transactions
            )
        except MiningTimeoutError:
            logger.warning("Pending batch returned to the pool after mining timeout")
            raise
        self._commit(block)
        return block

    # ========================================================================
    # Reads
    # ========================================================================

    def list_products(self) -> List[Dict[str, Any]]:
        return [product.to_dict() for product in self.catalog.list_products()]

    def list_chain(self) -> Dict[str, Any]:
        """
        Snapshot of the chain and the pool.

        ``pending_transactions`` also lists transactions being mined right
        now. The pool is read before the chain, so a transaction appended
        in between is reported once, as mined.
        """
        unmined = self.pool.unmined()
        blocks = self.chain.blocks
        mined_ids = {tx.id for block in blocks for tx in block.transactions}
        return {
            'blocks': [block.to_dict() for block in blocks],
            'difficulty': self.chain.difficulty,
            'pending_transactions': [
                tx.to_dict() for tx in unmined if tx.id not in mined_ids
            ],
            'length': len(blocks),
        }

    def list_mined_transactions(self) -> List[Dict[str, Any]]:
        """Every mined transaction in chain order."""
        return [tx.to_dict() for tx in self.chain.mined_transactions()]

    def get_transaction(self, tx_id: str) -> Optional[Dict[str, Any]]:
        """Receipt for a mined transaction, or None."""
        found = self.chain.find_transaction(tx_id)
        if found is None:
            return None
        block_index, tx = found
        receipt = tx.to_dict()
        receipt['block_index'] = block_index
        return receipt

    def balance_of(self, address: str) -> str:
        return format_balance(self.wallet.get_balance(address))

    def pending_count(self) -> int:
        return self.pool.peek_count()

    def validate_chain(self) -> ChainValidation:
        """
        Check the whole chain. A failure disables further purchases on this
        instance; it is reported, not raised.
        """
        result = self.chain.validate()
        if not result.valid and self._trusted:
            self._trusted = False
            logger.error(
                "Chain marked untrusted: block #%s %s", result.index, result.reason
            )
        return result

    # ========================================================================
    # Persistence
    # ========================================================================

    def save(self, path: Optional[Union[str, Path]] = None) -> Path:
        """
        Write the chain to ``path`` (or the configured chain_path).

        Raises:
            ValueError: If no path is given or configured
        """
        path = path or self.config.chain_path
        if not path:
            raise ValueError("No chain path given or configured")
        self.chain.save(path)
        return Path(path)
