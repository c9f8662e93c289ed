"""
ShopChain - Main Entry Point
Starts an engine from SHOPCHAIN_* settings and runs one demo purchase.
"""

import logging
import os

from .config import LedgerConfig
from .store.catalog import InMemoryCatalog, default_products
from .store.service import LedgerService


def build_service(config: LedgerConfig) -> LedgerService:
    """Create a service, resuming from ``config.chain_path`` when it exists."""
    catalog = InMemoryCatalog(default_products())
    if config.chain_path and os.path.exists(config.chain_path):
        return LedgerService.from_file(config.chain_path, catalog, config=config)
    return LedgerService(catalog, config=config)


def main():
    """Main entry point for ShopChain."""
    logging.basicConfig(
        level=os.getenv("SHOPCHAIN_LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    config = LedgerConfig.from_env()

    print("=" * 50)
    print("Welcome to ShopChain")
    print("=" * 50)
    print(f"\nDifficulty: {config.difficulty} leading zero hex digits")
    print(f"Store address: {config.seller_address}")

    with build_service(config) as service:
        product = service.catalog.list_products()[0]
        buyer = "0xdemo-buyer"
        print(f"\nBuying 1 x {product.name} as {buyer}...")
        result = service.purchase(product.id, buyer, 1)
        print(f"  {result.message}")
        if result.success:
            print(f"  Transaction: {result.transaction_id}")
            print(f"  Hash:        {result.transaction_hash}")

        snapshot = service.list_chain()
        print(f"\nChain length: {snapshot['length']}")
        print(f"Chain valid:  {bool(service.validate_chain())}")
        print(f"Balance of {buyer}: {service.balance_of(buyer)}")

        if config.chain_path:
            service.save()
            print(f"Saved chain to {config.chain_path}")
    print("\n")


if __name__ == "__main__":
    main()
