"""
Ledger Errors

Every failure the engine can report derives from LedgerError. Each class
carries a short ``code`` that the service returns to callers in a failed
PurchaseResult, so an HTTP layer can map it without importing the classes.
"""

from typing import Optional


class LedgerError(Exception):
    """Base class for all ledger engine errors."""
    code = "LedgerError"


class DuplicateIDError(LedgerError):
    """Raised when a transaction id is already pending, in flight or mined."""
    code = "DuplicateID"

    def __init__(self, tx_id: str):
        super().__init__(f"Transaction id already used: {tx_id}")
        self.tx_id = tx_id


class ProductNotFoundError(LedgerError):
    """Raised when the catalog has no product with the requested id."""
    code = "ProductNotFound"

    def __init__(self, product_id: str):
        super().__init__(f"Product not found: {product_id}")
        self.product_id = product_id


class InsufficientStockError(LedgerError):
    """Raised when the requested quantity exceeds available stock."""
    code = "InsufficientStock"


class InsufficientBalanceError(LedgerError):
    """Raised when the buyer cannot cover price * quantity."""
    code = "InsufficientBalance"


class MiningTimeoutError(LedgerError):
    """Raised when no valid nonce is found within the attempt budget."""
    code = "MiningTimeout"

    def __init__(self, attempts: int):
        super().__init__(f"Failed to find valid nonce after {attempts} attempts")
        self.attempts = attempts


class ValidationError(LedgerError):
    """Raised when a block or a loaded chain fails validation."""
    code = "InvalidChain"

    def __init__(self, message: str, index: Optional[int] = None):
        super().__init__(message)
        self.index = index


class InvalidLinkError(ValidationError):
    """Block index or previous_hash does not match the chain tip."""
    code = "InvalidLink"


class InvalidProofError(ValidationError):
    """Block hash is inconsistent with its fields or misses the target."""
    code = "InvalidProof"
