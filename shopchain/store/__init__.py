# Store Module
"""
Purchase orchestration on top of the ledger:
- Product catalog collaborator
- Balance sources
- LedgerService, the single entry point for purchases and chain reads
"""

from .catalog import InMemoryCatalog, Product, default_products
from .service import LedgerService, PurchaseResult
from .wallet import ChainWallet, StaticWallet

__all__ = [
    'ChainWallet',
    'InMemoryCatalog',
    'LedgerService',
    'Product',
    'PurchaseResult',
    'StaticWallet',
    'default_products',
]
