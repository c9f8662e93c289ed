# Blockchain Module
"""
Ledger engine:
- Purchase transactions with content hashes
- FIFO transaction pool
- Proof of Work mining with a bounded attempt budget
- Append-only chain with link/proof checks and full validation
"""

_MODULES = ('ledger', 'mempool', 'miner', 'transaction')


# Lazy imports to avoid RuntimeWarning when running module directly
def __getattr__(name):
    """Resolve public names from the submodules on first access."""
    import importlib
    for module_name in _MODULES:
        module = importlib.import_module(f'{__name__}.{module_name}')
        if hasattr(module, name):
            return getattr(module, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    'Block',
    'Chain',
    'ChainValidation',
    'ProofOfWork',
    'Miner',
    'TransactionPool',
    'Transaction',
    'compute_block_hash',
    'GENESIS_PREV_HASH',
    'GENESIS_DIFFICULTY',
    'DEFAULT_DIFFICULTY',
    'MAX_ATTEMPTS',
]
