# Core Crypto Module
"""
Hashing primitives for the ledger:
- Canonical SHA-256 content hashes for transactions and blocks
- Merkle trees for transaction inclusion proofs
"""
