"""
Unit tests for the block miner.

Tests:
- Sealed blocks satisfy the difficulty
- Pinned timestamps make mining reproducible
- Attempt budget and pool rollback
"""

import pytest

from shopchain.blockchain.ledger import Chain, ProofOfWork
from shopchain.blockchain.mempool import TransactionPool
from shopchain.blockchain.miner import Miner
from shopchain.blockchain.transaction import Transaction
from shopchain.errors import MiningTimeoutError

TS = 1700000000


def make_tx(tx_id):
    return Transaction.create(
        product_id="prod",
        buyer_address="0xbuyer",
        seller_address="0xstore",
        amount="1.25",
        timestamp=TS,
        tx_id=tx_id,
    )


class TestSeal:
    """Tests for sealing a block."""

    @pytest.mark.parametrize("difficulty", [0, 1, 2, 3])
    def test_sealed_block_meets_difficulty(self, difficulty):
        block = Miner(difficulty).seal(1, "0" * 64, [make_tx("t1")], TS)
        assert ProofOfWork(difficulty).hash_meets_target(block.hash)
        assert block.hash.startswith("0" * difficulty)
        assert block.hash == block.compute_hash()

    def test_pinned_timestamp_is_reproducible(self):
        """Two miners given the same inputs produce the same block."""
        a = Miner(2).seal(1, "0" * 64, [make_tx("t1"), make_tx("t2")], TS)
        b = Miner(2).seal(1, "0" * 64, [make_tx("t1"), make_tx("t2")], TS)
        assert a == b

    def test_timestamp_read_once_from_clock(self):
        """The clock is read once per search, not per attempt."""
        calls = []

        def clock():
            calls.append(1)
            return TS + len(calls)

        block = Miner(2, clock=clock).seal(1, "0" * 64, [make_tx("t1")])
        assert len(calls) == 1
        assert block.timestamp == TS + 1

    def test_timeout(self):
        miner = Miner(64, max_attempts=5)
        with pytest.raises(MiningTimeoutError) as exc:
            miner.seal(1, "0" * 64, [make_tx("t1")], TS)
        assert exc.value.attempts == 5
        assert miner.stats.failures == 1

    def test_stats(self):
        miner = Miner(1)
        miner.seal(1, "0" * 64, [make_tx("t1")], TS)
        miner.seal(2, "0" * 64, [make_tx("t2")], TS)
        assert miner.stats.blocks_mined == 2
        assert miner.stats.total_attempts >= 2

    def test_invalid_attempt_budget(self):
        with pytest.raises(ValueError):
            Miner(1, max_attempts=0)


class TestMinePending:
    """Tests for draining the pool into a block."""

    def test_links_to_tip(self):
        chain = Chain.genesis(difficulty=1)
        pool = TransactionPool()
        pool.submit(make_tx("t1"))
        block = Miner(1).mine_pending(pool, chain, max_count=10, timestamp=TS)
        assert block.index == 1
        assert block.previous_hash == chain.tip_hash()
        chain.append(block)
        assert chain.validate().valid

    def test_respects_max_count(self):
        chain = Chain.genesis(difficulty=1)
        pool = TransactionPool()
        for i in range(3):
            pool.submit(make_tx(f"t{i}"))
        block = Miner(1).mine_pending(pool, chain, max_count=2, timestamp=TS)
        assert [tx.id for tx in block.transactions] == ["t0", "t1"]
        assert pool.peek_count() == 1

    def test_timeout_returns_batch_to_pool(self):
        """A timed-out batch goes back to the pool unaltered and in order."""
        chain = Chain.genesis(difficulty=1)
        pool = TransactionPool()
        txs = [make_tx(f"t{i}") for i in range(3)]
        for tx in txs:
            pool.submit(tx)

        with pytest.raises(MiningTimeoutError):
            Miner(64, max_attempts=3).mine_pending(pool, chain, max_count=2, timestamp=TS)

        assert pool.pending() == tuple(txs)
        assert pool.in_flight_count() == 0
        assert chain.length == 1

    def test_empty_pool(self):
        with pytest.raises(ValueError):
            Miner(1).mine_pending(TransactionPool(), Chain.genesis(1), max_count=5)
