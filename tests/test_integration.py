"""
End-to-end tests for the ledger service.

Runs the full purchase flow through catalog, pool, miner and chain, with
concurrent buyers and a save/reload cycle.
"""

import threading
from dataclasses import replace
from decimal import Decimal

import pytest

from shopchain.blockchain.ledger import Chain
from shopchain.config import LedgerConfig
from shopchain.store.catalog import InMemoryCatalog, Product, default_products
from shopchain.store.service import LedgerService
from shopchain.store.wallet import ChainWallet

pytestmark = pytest.mark.integration


def make_catalog(stock=3):
    return InMemoryCatalog([
        Product(id="P", name="Web3 Starter Kit", price=Decimal("2.0"), stock=stock),
    ])


class TestPurchaseFlow:
    """Purchase, reject, then check chain and stock agree."""

    def test_purchase_then_overdraw_stock(self):
        catalog = make_catalog()
        config = LedgerConfig(difficulty=1)

        with LedgerService(catalog, config=config) as service:
            first = service.purchase("P", "buyer-1", 1)
            assert first.success
            assert catalog.get_product("P").stock == 2
            assert service.chain.length == 2

            mined = service.list_mined_transactions()
            assert len(mined) == 1
            assert Decimal(mined[0]['amount']) == Decimal("2.0")
            assert mined[0]['buyer_address'] == "buyer-1"

            second = service.purchase("P", "buyer-1", 3)
            assert not second.success
            assert second.error == "InsufficientStock"
            assert service.chain.length == 2
            assert catalog.get_product("P").stock == 2

            assert service.validate_chain().valid
            assert service.trusted

    def test_balance_runs_out(self):
        """Starting balance 5.0 covers two purchases at 2.0, not a third."""
        catalog = make_catalog(stock=10)
        with LedgerService(catalog, config=LedgerConfig(difficulty=1)) as service:
            assert service.purchase("P", "buyer-1", 1).success
            assert service.purchase("P", "buyer-1", 1).success
            third = service.purchase("P", "buyer-1", 1)
            assert third.error == "InsufficientBalance"
            assert service.balance_of("buyer-1") == "1.00000000"
            assert catalog.get_product("P").stock == 8

    def test_default_catalog(self):
        catalog = InMemoryCatalog(default_products())
        product = next(p for p in catalog.list_products() if p.name == "NFT Art Collection")
        with LedgerService(catalog, config=LedgerConfig(difficulty=1)) as service:
            result = service.purchase(product.id, "buyer-1", 2)
            assert result.success
            assert service.chain.tip.transactions[0].amount == Decimal("2.4")
            assert catalog.get_product(product.id).stock == 48


class TestConcurrentPurchases:
    """Many buyers racing for the same stock."""

    def test_stock_never_oversold(self):
        catalog = make_catalog(stock=3)
        results = []
        lock = threading.Lock()

        with LedgerService(catalog, config=LedgerConfig(difficulty=1)) as service:
            def buy(buyer):
                result = service.purchase("P", buyer, 1)
                with lock:
                    results.append(result)

            threads = [
                threading.Thread(target=buy, args=(f"buyer-{i}",)) for i in range(5)
            ]
            for t in threads:
                t.start()
            for t in threads:
                t.join()

            succeeded = [r for r in results if r.success]
            failed = [r for r in results if not r.success]
            assert len(succeeded) == 3
            assert all(r.error == "InsufficientStock" for r in failed)
            assert catalog.get_product("P").stock == 0
            assert service.chain.length == 4
            assert service.validate_chain().valid
            assert len({r.transaction_id for r in succeeded}) == 3

    def test_reads_during_writes(self):
        """Readers always see a whole, valid snapshot."""
        catalog = make_catalog(stock=20)
        stop = threading.Event()
        seen = []

        with LedgerService(catalog, config=LedgerConfig(difficulty=1)) as service:
            def read():
                while True:
                    snapshot = service.list_chain()
                    seen.append(snapshot['length'] == len(snapshot['blocks']))
                    if stop.is_set():
                        break

            reader = threading.Thread(target=read)
            reader.start()
            try:
                for i in range(4):
                    assert service.purchase("P", f"buyer-{i}", 1).success
            finally:
                stop.set()
                reader.join()

        assert seen
        assert all(seen)


class TestPersistence:
    """Save, reload and keep going."""

    def test_save_and_resume(self, tmp_path):
        path = tmp_path / "data" / "chain.json"
        config = LedgerConfig(difficulty=1, chain_path=str(path))
        catalog = make_catalog(stock=5)

        with LedgerService(catalog, config=config) as service:
            first = service.purchase("P", "buyer-1", 1)
            service.save()
            saved_tip = service.chain.tip_hash()

        with LedgerService.from_file(path, catalog, config=config) as resumed:
            assert resumed.chain.length == 2
            assert resumed.chain.tip_hash() == saved_tip
            assert resumed.get_transaction(first.transaction_id)['block_index'] == 1
            assert resumed.balance_of("buyer-1") == "3.00000000"

            second = resumed.purchase("P", "buyer-2", 1)
            assert second.success
            assert second.block_index == 2
            assert resumed.validate_chain().valid

    def test_resumed_pool_knows_mined_ids(self, tmp_path):
        path = tmp_path / "chain.json"
        config = LedgerConfig(difficulty=1)
        catalog = make_catalog()

        with LedgerService(catalog, config=config, id_factory=lambda: "order-1") as service:
            assert service.purchase("P", "buyer-1", 1).success
            service.save(path)

        with LedgerService.from_file(
            path, catalog, config=config, id_factory=lambda: "order-1"
        ) as resumed:
            assert resumed.purchase("P", "buyer-1", 1).error == "DuplicateID"

    def test_wallet_follows_reloaded_chain(self, tmp_path):
        path = tmp_path / "chain.json"
        config = LedgerConfig(difficulty=1)
        with LedgerService(make_catalog(), config=config) as service:
            service.purchase("P", "buyer-1", 1)
            service.save(path)

        wallet = ChainWallet(Chain.genesis(1))
        assert wallet.get_balance("buyer-1") == Decimal("5")
        wallet.attach(Chain.load(path))
        assert wallet.get_balance("buyer-1") == Decimal("3")


class TestCorruption:
    """A tampered chain disables purchases on that instance."""

    def test_purchases_disabled_after_tamper(self):
        catalog = make_catalog(stock=5)
        with LedgerService(catalog, config=LedgerConfig(difficulty=1)) as service:
            assert service.purchase("P", "buyer-1", 1).success

            blocks = list(service.chain.blocks)
            blocks[1] = replace(blocks[1], nonce=blocks[1].nonce + 1)
            service.chain._snapshot = service.chain._snapshot._replace(blocks=tuple(blocks))

            report = service.validate_chain()
            assert not report.valid
            assert report.index == 1
            assert not service.trusted

            result = service.purchase("P", "buyer-2", 1)
            assert result.error == "ChainCorrupted"
            assert catalog.get_product("P").stock == 4
