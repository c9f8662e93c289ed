"""
ShopChain - proof-of-work ledger engine for a product store.
"""

__version__ = "1.0.0"
