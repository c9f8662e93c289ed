"""
Product Catalog

The ledger only needs two things from a catalog: a product's price and
stock, and a way to take stock away once a purchase is mined.
InMemoryCatalog is the implementation used by the demo and the tests.
"""

import logging
import threading
import uuid
from dataclasses import asdict, dataclass, replace
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Protocol

from ..core_crypto.hashing import format_amount, to_amount

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Product:
    id: str
    name: str
    price: Decimal
    stock: int
    description: str = ""
    image_url: str = ""

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['price'] = format_amount(self.price)
        return data


class Catalog(Protocol):
    """What the ledger service consumes from a catalog."""

    def get_product(self, product_id: str) -> Optional[Product]:
        ...

    def decrement_stock(self, product_id: str, quantity: int) -> bool:
        ...

    def list_products(self) -> List[Product]:
        ...


class InMemoryCatalog:
    """Thread-safe dictionary-backed catalog."""

    def __init__(self, products: Optional[Iterable[Product]] = None):
        self._lock = threading.Lock()
        self._products: Dict[str, Product] = {}
        for product in products or ():
            self.add_product(product)

    def add_product(self, product: Product) -> Product:
        if product.stock < 0:
            raise ValueError("Stock must be non-negative")
        product = replace(product, price=to_amount(product.price))
        with self._lock:
            self._products[product.id] = product
        return product

    def get_product(self, product_id: str) -> Optional[Product]:
        with self._lock:
            return self._products.get(product_id)

    def decrement_stock(self, product_id: str, quantity: int) -> bool:
        """Take ``quantity`` units away; False if unknown or not enough left."""
        with self._lock:
            product = self._products.get(product_id)
            if product is None or quantity < 0 or product.stock < quantity:
                return False
            self._products[product_id] = replace(product, stock=product.stock - quantity)
            logger.debug("Stock of %s now %d", product_id, product.stock - quantity)
            return True

    def list_products(self) -> List[Product]:
        with self._lock:
            return list(self._products.values())


def default_products() -> List[Product]:
    """The store's starter inventory."""
    items = [
        ("Blockchain Developer Course",
         "Complete guide to blockchain development with Rust and Solana",
         "0.5", 100, "https://images.unsplash.com/photo-1639762681485-074b7f938ba0?w=400"),
        ("NFT Art Collection",
         "Exclusive digital art collection on the blockchain",
         "1.2", 50, "https://images.unsplash.com/photo-1620641788421-7a1c342ea42e?w=400"),
        ("Smart Contract Template",
         "Production-ready smart contract templates for e-commerce",
         "0.8", 75, "https://images.unsplash.com/photo-1551288049-bebda4e38f71?w=400"),
        ("Web3 Starter Kit",
         "Complete Web3 development toolkit with React integration",
         "1.5", 30, "https://images.unsplash.com/photo-1633356122544-f134324a6cee?w=400"),
        ("Crypto Wallet Security Guide",
         "Best practices for securing cryptocurrency wallets",
         "0.3", 200, "https://images.unsplash.com/photo-1563986768609-322da13575f3?w=400"),
        ("DeFi Protocol Analysis",
         "In-depth analysis of popular DeFi protocols and strategies",
         "2.0", 25, "https://images.unsplash.com/photo-1621761191319-c6fb62004040?w=400"),
    ]
    return [
        Product(
            id=str(uuid.uuid4()),
            name=name,
            description=description,
            price=Decimal(price),
            stock=stock,
            image_url=image_url,
        )
        for name, description, price, stock, image_url in items
    ]
