"""
Content Hashing

Deterministic SHA-256 digests for transactions and blocks.

Canonical pre-image (fixed, so any implementation reproduces the bytes):
- Values are encoded as a compact JSON array (separators ",", ":"),
  ASCII-only, UTF-8 bytes. Integers are JSON integers.
- Amounts are decimal strings with exactly 8 fractional digits,
  e.g. "2.00000000".
- Transaction: [id, product_id, buyer_address, seller_address, amount, timestamp]
- Block: [index, timestamp, [tx..., each with its hash appended], previous_hash, nonce]

Digests are lowercase hex strings (64 chars).
"""

import json
from decimal import Decimal, ROUND_HALF_EVEN
from typing import Any, Iterable, List, Sequence, Union

from cryptography.hazmat.primitives import hashes


AMOUNT_PLACES = 8
AMOUNT_QUANTUM = Decimal(1).scaleb(-AMOUNT_PLACES)  # 0.00000001
HASH_HEX_LENGTH = 64


def sha256(data: bytes) -> bytes:
    """Compute the SHA-256 digest of ``data``."""
    digest = hashes.Hash(hashes.SHA256())
    digest.update(data)
    return digest.finalize()


def sha256_hex(data: bytes) -> str:
    """Compute SHA-256 and return it as a 64-character hex string."""
    return sha256(data).hex()


def canonical_json(value: Any) -> bytes:
    """Serialize ``value`` to the compact, order-preserving JSON pre-image."""
    return json.dumps(
        value, separators=(',', ':'), ensure_ascii=True, allow_nan=False
    ).encode('utf-8')


def to_amount(value: Union[Decimal, int, float, str]) -> Decimal:
    """
    Normalize a currency amount to a Decimal with 8 fractional digits.

    Floats go through ``str`` first so 2.0 becomes Decimal("2.00000000")
    rather than its binary expansion.

    Raises:
        ValueError: If the amount is negative or not a finite number
    """
    if isinstance(value, float):
        value = repr(value)
    try:
        amount = Decimal(value)
    except (ArithmeticError, TypeError, ValueError):
        raise ValueError(f"Invalid amount: {value!r}")
    if not amount.is_finite():
        raise ValueError(f"Invalid amount: {value!r}")
    if amount < 0:
        raise ValueError("Amount must be non-negative")
    return amount.quantize(AMOUNT_QUANTUM, rounding=ROUND_HALF_EVEN)


def format_amount(value: Union[Decimal, int, float, str]) -> str:
    """Format an amount as its canonical 8-digit decimal string."""
    return format(to_amount(value), 'f')


def format_balance(value: Union[Decimal, int, str]) -> str:
    """Format an account balance, which unlike an amount may be negative."""
    return format(Decimal(value).quantize(AMOUNT_QUANTUM, rounding=ROUND_HALF_EVEN), 'f')


def transaction_preimage(
    tx_id: str,
    product_id: str,
    buyer_address: str,
    seller_address: str,
    amount: Union[Decimal, str],
    timestamp: int,
) -> List[Any]:
    """Ordered field list hashed for a transaction."""
    return [
        tx_id,
        product_id,
        buyer_address,
        seller_address,
        format_amount(amount),
        int(timestamp),
    ]


def hash_transaction_fields(
    tx_id: str,
    product_id: str,
    buyer_address: str,
    seller_address: str,
    amount: Union[Decimal, str],
    timestamp: int,
) -> str:
    """Hash the fields of a transaction (its own hash excluded)."""
    return sha256_hex(canonical_json(transaction_preimage(
        tx_id, product_id, buyer_address, seller_address, amount, timestamp
    )))


def hash_block_fields(
    index: int,
    timestamp: int,
    transactions: Iterable[Sequence[Any]],
    previous_hash: str,
    nonce: int,
) -> str:
    """
    Hash the fields of a block (its own hash excluded).

    Args:
        index: Block position in the chain
        timestamp: Seal time, fixed for the whole nonce search
        transactions: Transaction pre-images, each with the tx hash appended
        previous_hash: Hash of the preceding block
        nonce: Proof-of-work counter

    Returns:
        64-character hex digest
    """
    return sha256_hex(block_header_bytes(index, timestamp, transactions, previous_hash, nonce))


def block_header_bytes(
    index: int,
    timestamp: int,
    transactions: Iterable[Sequence[Any]],
    previous_hash: str,
    nonce: int,
) -> bytes:
    return canonical_json([
        int(index),
        int(timestamp),
        [list(tx) for tx in transactions],
        previous_hash,
        int(nonce),
    ])


def block_header_prefix(
    index: int,
    timestamp: int,
    transactions: Iterable[Sequence[Any]],
    previous_hash: str,
) -> bytes:
    """
    Block pre-image up to, but excluding, the nonce.

    ``prefix + str(nonce) + "]"`` equals ``block_header_bytes(..., nonce)``,
    which lets the miner serialize the transactions once per search.
    """
    head = canonical_json([
        int(index),
        int(timestamp),
        [list(tx) for tx in transactions],
        previous_hash,
    ])
    return head[:-1] + b','


def leading_zero_digits(hex_digest: str) -> int:
    """Count leading '0' characters in a hex digest."""
    return len(hex_digest) - len(hex_digest.lstrip('0'))
