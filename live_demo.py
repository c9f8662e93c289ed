#!/usr/bin/env python
"""
╔══════════════════════════════════════════════════════════════════════════════╗
║                         SHOPCHAIN LIVE DEMO                                   ║
╚══════════════════════════════════════════════════════════════════════════════╝

Step-by-step walkthrough of the ledger engine:
- Buying a product and mining the purchase into a block
- Rejected purchases leaving stock and chain untouched
- Merkle proof for a mined transaction
- Tamper detection by full chain validation
- Saving and reloading the chain
"""

import dataclasses
import os
import sys
import tempfile
from decimal import Decimal

from shopchain.blockchain.ledger import Chain
from shopchain.config import LedgerConfig
from shopchain.store.catalog import InMemoryCatalog, Product
from shopchain.store.service import LedgerService


def print_header(title):
    """Print a formatted section header"""
    print("\n" + "═" * 70)
    print(f"  {title}")
    print("═" * 70)


def print_step(step_num, description):
    """Print a numbered step"""
    print(f"\n  [{step_num}] {description}")


def pause(message="Press ENTER to continue..."):
    """Pause for presenter to explain"""
    if "--no-pause" in sys.argv:
        return
    print(f"\n  [PAUSE] {message}")
    input()


def main():
    print("\n" * 2)
    print("╔" + "═" * 68 + "╗")
    print("║" + "        SHOPCHAIN - PROOF-OF-WORK STORE LEDGER".center(68) + "║")
    print("╚" + "═" * 68 + "╝")

    catalog = InMemoryCatalog([
        Product(id="course", name="Blockchain Developer Course", price=Decimal("0.5"), stock=100),
        Product(id="defi", name="DeFi Protocol Analysis", price=Decimal("2.0"), stock=3),
    ])
    service = LedgerService(catalog, config=LedgerConfig(difficulty=3))
    alice = "0xa11ce"

    print_header("PART 1: PURCHASE AND MINING")

    print_step("1.1", "Alice buys one DeFi Protocol Analysis")
    print(f"  Balance before: {service.balance_of(alice)}")
    result = service.purchase("defi", alice, 1)
    print(f"  [OK] {result.message}")
    print(f"  Transaction: {result.transaction_id}")
    print(f"  Mined in block #{result.block_index}")
    print(f"  Balance after:  {service.balance_of(alice)}")
    print(f"  Stock left:     {catalog.get_product('defi').stock}")

    block = service.chain.tip
    print(f"\n  Block #{block.index}:")
    print(f"  - Nonce: {block.nonce}")
    print(f"  - Hash: {block.hash[:32]}...")
    print(f"  - Previous Hash: {block.previous_hash[:32]}...")

    pause()

    print_step("1.2", "Alice tries to buy 3 more (only 2 left)")
    result = service.purchase("defi", alice, 3)
    print(f"  [X] {result.error}: {result.message}")
    print(f"  Chain length still {service.chain.length}, stock still {catalog.get_product('defi').stock}")

    pause()

    print_header("PART 2: MERKLE PROOF")

    tx = service.chain.mined_transactions()[0]
    tx_index, proof = service.chain.get_transaction_proof(1, tx.id)
    print(f"  Transaction {tx.id[:8]}... is leaf {tx_index}, proof length {len(proof)}")
    print(f"  Verified: {service.chain.verify_transaction(1, tx, proof)}")

    pause()

    print_header("PART 3: PERSISTENCE")

    path = os.path.join(tempfile.mkdtemp(), "chain.json")
    service.save(path)
    reloaded = Chain.load(path)
    print(f"  Saved and reloaded {reloaded.length} blocks")
    print(f"  Same tip hash: {reloaded.tip_hash() == service.chain.tip_hash()}")

    pause()

    print_header("PART 4: TAMPER DETECTION")

    blocks = list(reloaded.blocks)
    forged = dataclasses.replace(
        blocks[1].transactions[0], amount=Decimal("0.00000001")
    )
    blocks[1] = dataclasses.replace(blocks[1], transactions=(forged,))
    tampered = Chain(reloaded.difficulty, blocks=blocks)
    check = tampered.validate()
    print(f"  Amount rewritten in block #1 -> valid: {check.valid}")
    print(f"  Report: {check.to_dict()}")

    service.close()

    print("\n\n" + "═" * 70)
    print("  DEMONSTRATION COMPLETE!")
    print("═" * 70)


if __name__ == "__main__":
    main()
