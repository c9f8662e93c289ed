"""
Balance sources

The ledger reads balances and never writes them. Addresses are opaque
labels; nothing here assumes they were derived from a key.
"""

from decimal import Decimal
from typing import Dict, Optional, Protocol, Union

from ..blockchain.ledger import Chain
from ..core_crypto.hashing import to_amount


Amount = Union[Decimal, int, float, str]


class BalanceSource(Protocol):
    def get_balance(self, address: str) -> Decimal:
        ...


class StaticWallet:
    """Fixed balances, e.g. supplied by an external wallet service."""

    def __init__(self, balances: Optional[Dict[str, Amount]] = None, default: Amount = 0):
        self._balances = {addr: to_amount(value) for addr, value in (balances or {}).items()}
        self._default = to_amount(default)

    def set_balance(self, address: str, amount: Amount) -> None:
        self._balances[address] = to_amount(amount)

    def get_balance(self, address: str) -> Decimal:
        return self._balances.get(address, self._default)


class ChainWallet:
    """
    Starting allowance plus everything the chain says the address received,
    minus everything it spent.
    """

    def __init__(
        self,
        chain: Chain,
        starting_balance: Amount = Decimal("5.0"),
        allowances: Optional[Dict[str, Amount]] = None,
    ):
        self._chain = chain
        self._starting_balance = to_amount(starting_balance)
        self._allowances = {addr: to_amount(v) for addr, v in (allowances or {}).items()}

    def attach(self, chain: Chain) -> None:
        """Follow a different chain (after a reload)."""
        self._chain = chain

    def get_balance(self, address: str) -> Decimal:
        allowance = self._allowances.get(address, self._starting_balance)
        return allowance + self._chain.net_flow(address)
