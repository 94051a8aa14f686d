# escrow/contract/transfers.py
"""
Outward value movement. The ledger only decides *who* gets *how much*; the
hosting environment supplies the mechanism that actually pays out.
"""

from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Dict, List

from escrow.core.errors import TransferFailed
from escrow.core.types import Transfer


class TransferBackend(ABC):
    """Pays value out of the ledger. Must either complete or raise."""

    @abstractmethod
    def send(self, recipient: str, amount: int) -> None:
        pass


class InMemoryTransfers(TransferBackend):
    """Credits recipients in a local balance table and keeps the transfer history."""

    def __init__(self) -> None:
        self.balances: Dict[str, int] = defaultdict(int)
        self.history: List[Transfer] = []

    def send(self, recipient: str, amount: int) -> None:
        if not recipient:
            raise TransferFailed(recipient, amount, "empty recipient")
        if amount <= 0:
            raise TransferFailed(recipient, amount, "amount must be positive")
        self.balances[recipient] += amount
        self.history.append(Transfer(recipient=recipient, amount=amount))

    def balance_of(self, identity: str) -> int:
        return self.balances.get(identity, 0)

    def total_sent(self) -> int:
        return sum(t.amount for t in self.history)
